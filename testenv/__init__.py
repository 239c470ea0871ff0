"""Ephemeral test environment orchestrator.

Provisions database and identity provider containers for integration tests,
publishes them through a phase-gated process-wide registry and tears them
down deterministically after the test run.
"""

__version__ = "0.1.0"

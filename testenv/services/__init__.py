"""Test environment services.

Import from specific modules:
    from testenv.services.orchestrator import Orchestrator
    from testenv.services.provisioner import ContainerProvisioner
    from testenv.services.runtime_bridge import RuntimeBridge
"""

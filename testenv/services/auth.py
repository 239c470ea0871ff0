"""Authorization token acquisition for the test environment.

The default post-initialization step requests a token from the identity
provider with the OAuth2 password grant and stores it in the registry as
``"Bearer <access_token>"``. A failed request stores the empty string, so
tests that read the token never block and simply send no credentials.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from testenv.core.exceptions import TokenAcquisitionError
from testenv.core.logging import get_logger, sanitize_error
from testenv.services.environment.registry import TOKEN_KEY

if TYPE_CHECKING:
    from testenv.services.environment.registry import GlobalRegistry
    from testenv.services.environment.settings import EnvironmentSettings

logger = get_logger(__name__)

TOKEN_REQUEST_TIMEOUT = 10.0


async def fetch_token(
    settings: EnvironmentSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Request an access token with the password grant.

    Args:
        settings: Resolved settings with the token URL and client credentials.
        transport: Optional httpx transport, used by tests.

    Returns:
        ``"Bearer <access_token>"``, or ``""`` when no token URL is configured.

    Raises:
        TokenAcquisitionError: If the request fails or the response has no token.
    """
    if not settings.oauth2_token_url:
        logger.warning("No token URL configured, skipping token acquisition")
        return ""

    form = {
        "grant_type": "password",
        "username": settings.oauth2_username or "",
        "password": settings.oauth2_password or "",
        "client_id": settings.oauth2_client_id or "",
        "client_secret": settings.oauth2_client_secret or "",
        "scope": settings.oauth2_scope,
    }

    try:
        async with httpx.AsyncClient(timeout=TOKEN_REQUEST_TIMEOUT, transport=transport) as client:
            response = await client.post(settings.oauth2_token_url, data=form)
            response.raise_for_status()
            payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise TokenAcquisitionError(
            f"Token request to {settings.oauth2_token_url} failed: {sanitize_error(e)}"
        ) from e

    access_token = payload.get("access_token") if isinstance(payload, dict) else None
    if not access_token:
        raise TokenAcquisitionError("Token response did not contain an access_token")

    return f"Bearer {access_token}"


async def default_post_init(settings: EnvironmentSettings, registry: GlobalRegistry) -> None:
    """Obtain an authorization token and store it in the registry."""
    logger.info("Getting authorization token ...")
    try:
        token = await fetch_token(settings)
    except TokenAcquisitionError as e:
        logger.error(f"Failed to obtain authorization token: {e.message}")
        token = ""

    registry.set(TOKEN_KEY, token)
    if token:
        logger.info(f"Authorization token obtained ({len(token)} characters)")

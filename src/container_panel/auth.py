"""Authentication for the Container Panel server."""

import hmac
from typing import Any, Optional

from container_panel.config import Settings, get_settings
from container_panel.utils import get_logger

logger = get_logger(__name__)

BEARER_PRINCIPAL = "api-client"


def create_auth_provider(settings: Optional[Settings] = None) -> Any | None:
    """
    Create the FastMCP authentication provider based on configuration.

    Returns:
        Authentication provider instance or None for no authentication

    Raises:
        ValueError: If bearer mode is selected without a token
    """
    settings = settings or get_settings()

    if settings.auth_mode == "none":
        logger.info("No authentication configured")
        return None

    if settings.auth_mode == "bearer":
        if not settings.bearer_token:
            raise ValueError("Bearer token authentication requires PANEL_BEARER_TOKEN to be set")

        from fastmcp.server.auth import StaticTokenVerifier

        logger.info("Configuring bearer token authentication with StaticTokenVerifier")

        # StaticTokenVerifier expects a dict of token -> claims
        tokens = {settings.bearer_token: {"client_id": BEARER_PRINCIPAL, "scopes": ["panel"]}}
        return StaticTokenVerifier(tokens=tokens)

    raise ValueError(f"Invalid auth_mode: {settings.auth_mode}")


class TokenValidator:
    """
    Request-scoped token check for routes served outside the MCP tool layer.

    Holds no session state: every request presents its token and gets back
    the principal it maps to, or None.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    @property
    def required(self) -> bool:
        return self.settings.auth_mode != "none"

    def validate(self, token: Optional[str]) -> Optional[str]:
        """
        Validate a bearer token.

        Args:
            token: Token presented by the caller, without the ``Bearer`` prefix

        Returns:
            Principal name, or None if the token is rejected
        """
        if not self.required:
            return "anonymous"

        expected = self.settings.bearer_token
        if not token or not expected:
            return None

        if hmac.compare_digest(token.encode(), expected.encode()):
            return BEARER_PRINCIPAL
        return None

    def validate_header(self, authorization: Optional[str]) -> Optional[str]:
        """Validate an ``Authorization: Bearer <token>`` header value."""
        if not self.required:
            return "anonymous"
        if not authorization:
            return None
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer":
            return None
        return self.validate(token.strip())

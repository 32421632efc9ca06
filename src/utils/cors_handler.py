"""CORS utilities for the CORS Relay."""

from typing import Dict, Optional
from urllib.parse import urlparse

from config.models import SecurityConfig
from services.models import ProxyResponse
from utils.logger import get_logger

logger = get_logger(__name__)

ALLOWED_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
ALLOWED_HEADERS = "Content-Type, Authorization, X-Requested-With"


class CORSHandler:
    """Handles origin matching and CORS header generation."""

    def __init__(self, security_config: SecurityConfig):
        """Initialize CORS handler.

        Args:
            security_config: Security configuration containing CORS settings.
        """
        self.security_config = security_config

    @property
    def allows_any_origin(self) -> bool:
        return "*" in self.security_config.allowed_origins

    def validate_origin(self, origin: Optional[str]) -> bool:
        """Validate if the request origin is allowed.

        Args:
            origin: Origin header from the request.

        Returns:
            bool: True if origin is allowed, False otherwise.
        """
        if self.allows_any_origin:
            return True

        if not origin:
            # No origin header - could be same-origin or non-browser request
            logger.debug("No origin header present")
            return True

        if origin in self.security_config.allowed_origins:
            logger.debug("Origin %s is explicitly allowed", origin)
            return True

        # Basic subdomain matching (*.example.com)
        for allowed_origin in self.security_config.allowed_origins:
            if allowed_origin.startswith("*."):
                domain = allowed_origin[2:]
                origin_host = urlparse(origin).netloc
                if origin_host.endswith(f".{domain}") or origin_host == domain:
                    logger.debug(
                        "Origin %s matches wildcard pattern %s", origin, allowed_origin
                    )
                    return True

        logger.warning("Origin %s is not allowed", origin)
        return False

    def allow_origin_headers(self, origin: Optional[str] = None) -> Dict[str, str]:
        """Get the Access-Control-Allow-Origin header for a request origin.

        A wildcard configuration answers `*`; an explicit list echoes a
        matching origin and adds `Vary: Origin`. A rejected origin gets no
        allow-origin header at all.
        """
        if self.allows_any_origin:
            return {"Access-Control-Allow-Origin": "*"}
        headers = {"Vary": "Origin"}
        if origin and self.validate_origin(origin):
            headers["Access-Control-Allow-Origin"] = origin
        elif not origin:
            headers["Access-Control-Allow-Origin"] = (
                self.security_config.allowed_origins[0]
            )
        return headers

    def get_cors_headers(self, origin: Optional[str] = None) -> Dict[str, str]:
        """Get CORS headers for relayed and error responses.

        Args:
            origin: Origin header from the request.

        Returns:
            Dict[str, str]: CORS headers to include in response.
        """
        headers = self.allow_origin_headers(origin)
        headers["Access-Control-Allow-Methods"] = ALLOWED_METHODS
        headers["Access-Control-Allow-Headers"] = ALLOWED_HEADERS
        headers["Access-Control-Max-Age"] = str(self.security_config.max_age)
        return headers

    def handle_preflight(self, origin: Optional[str] = None) -> ProxyResponse:
        """Handle CORS preflight request.

        Always answers 200 with an empty body; a disallowed origin only loses
        its allow-origin header.

        Args:
            origin: Origin header from the request.

        Returns:
            ProxyResponse: Response for the preflight request.
        """
        headers = self.get_cors_headers(origin)
        if self.security_config.allow_credentials:
            headers["Access-Control-Allow-Credentials"] = "true"
        return ProxyResponse(status_code=200, headers=headers, body="")

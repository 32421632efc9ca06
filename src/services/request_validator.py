"""Validation of relay request envelopes."""

import base64
import binascii
import json
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from config.models import ProxyConfig
from services.errors import ForbiddenTargetError, RequestValidationError
from services.models import RelayRequest, RequestOptions, TargetDescriptor
from utils.logger import get_logger

logger = get_logger(__name__)

INVALID_BODY = "Invalid request body"
MISSING_URL = "URL is required"
INVALID_URL = "Invalid URL"
INVALID_OPTIONS = "Invalid options"

_OPTION_FIELDS = {"method", "headers", "body", "timeoutMs"}


class RequestValidator:
    """Turns a raw API Gateway event into a validated `RelayRequest`.

    Checks run in a fixed order: body shape, URL presence, URL syntax,
    local-address policy, then options.
    """

    def __init__(self, config: ProxyConfig):
        self._config = config

    def validate(self, event: Dict[str, Any]) -> RelayRequest:
        """Validate the event body.

        Args:
            event: API Gateway event object.

        Returns:
            RelayRequest: Parsed target and options.

        Raises:
            RequestValidationError: If the body, URL or options are invalid.
            ForbiddenTargetError: If the target is a local address in
                production.
        """
        payload = self.parse_body(event)
        url = payload.get("url")
        if url is None or url == "":
            raise RequestValidationError(
                MISSING_URL, "Please provide a URL in the request body"
            )
        target = self.parse_target(url)
        self.check_target_policy(target)
        options = self.parse_options(payload.get("options"))
        return RelayRequest(target=target, options=options)

    @staticmethod
    def parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
        raw_body = event.get("body")
        if raw_body is None or raw_body == "":
            return {}
        try:
            if event.get("isBase64Encoded"):
                raw_body = base64.b64decode(raw_body).decode("utf-8")
            payload = json.loads(raw_body)
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise RequestValidationError(
                INVALID_BODY, "The request body must be valid JSON"
            ) from e
        if not isinstance(payload, dict):
            raise RequestValidationError(
                INVALID_BODY, "The request body must be a JSON object"
            )
        return payload

    @staticmethod
    def parse_target(url: Any) -> TargetDescriptor:
        """Parse an absolute URL into a `TargetDescriptor`.

        Raises:
            RequestValidationError: If the URL is not a well-formed absolute
                URL with a host.
        """
        invalid = RequestValidationError(INVALID_URL, "The provided URL is not valid")
        if not isinstance(url, str):
            raise invalid
        try:
            parts = urlsplit(url.strip())
            port = parts.port
        except ValueError as e:
            raise invalid from e
        if not parts.scheme or not parts.netloc or not parts.hostname:
            raise invalid
        if any(char.isspace() for char in parts.netloc):
            raise invalid

        scheme = parts.scheme.lower()
        path = parts.path or "/"
        normalized = urlunsplit((scheme, parts.netloc, path, parts.query, parts.fragment))
        return TargetDescriptor(scheme=scheme,
                                hostname=parts.hostname,
                                port=port,
                                path=path,
                                url=normalized)

    def check_target_policy(self, target: TargetDescriptor) -> None:
        if not self._config.is_production:
            return
        if self._config.policy.is_blocked_host(target.hostname):
            logger.warning("Blocked request to local address %s", target.hostname)
            raise ForbiddenTargetError(
                "Cannot proxy to local addresses in production"
            )

    def parse_options(self, options: Optional[Any]) -> RequestOptions:
        """Parse caller options into the recognized `RequestOptions` fields.

        Unrecognized fields are dropped and logged.
        """
        if options is None:
            return RequestOptions()
        if not isinstance(options, dict):
            raise RequestValidationError(INVALID_OPTIONS, "options must be an object")

        ignored = sorted(set(options) - _OPTION_FIELDS)
        if ignored:
            logger.warning("Ignoring unsupported options: %s", ", ".join(ignored))

        method = options.get("method", "GET")
        if not isinstance(method, str) or not method.strip():
            raise RequestValidationError(
                INVALID_OPTIONS, "options.method must be a non-empty string"
            )

        return RequestOptions(
            method=method.strip().upper(),
            headers=self._parse_headers(options.get("headers")),
            body=options.get("body"),
            timeout_ms=self._parse_timeout(options.get("timeoutMs")),
        )

    @staticmethod
    def _parse_headers(headers: Optional[Any]) -> Dict[str, str]:
        if headers is None:
            return {}
        if not isinstance(headers, dict):
            raise RequestValidationError(
                INVALID_OPTIONS, "options.headers must be an object"
            )
        parsed = {}
        for key, value in headers.items():
            if isinstance(value, bool) or not isinstance(value, (str, int, float)):
                raise RequestValidationError(
                    INVALID_OPTIONS, f"Header {key!r} must have a string value"
                )
            parsed[key] = str(value)
        return parsed

    def _parse_timeout(self, timeout_ms: Optional[Any]) -> Optional[int]:
        if timeout_ms is None:
            return None
        limit = self._config.policy.timeout
        if (isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int)
                or not 0 < timeout_ms <= limit):
            raise RequestValidationError(
                INVALID_OPTIONS,
                f"options.timeoutMs must be an integer between 1 and {limit}",
            )
        return timeout_ms

"""Proxy service for relaying requests to arbitrary third-party APIs."""
import json
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Dict, Any, Optional, Tuple

import requests
from urllib3.exceptions import ReadTimeoutError

from config.models import ProxyConfig
from services.errors import (
    ProxyError,
    UpstreamNetworkError,
    UpstreamTimeoutError,
)
from services.models import ProxyResponse, RelayRequest, RequestOptions
from services.request_validator import RequestValidator
from utils.cors_handler import CORSHandler
from utils.logger import get_logger

logger = get_logger(__name__)

NOT_JSON_NOTE = "Response is not valid JSON, returning as text"


class ProxyService:
    """Service for relaying a single request on behalf of a browser caller."""

    SERVICE_NAME = "CORS Relay"
    VERSION = "1.0"
    PROXY_BY = "CORS-Relay"
    _STRIPPED_HEADERS = {"host", "origin", "referer"}
    _BODYLESS_METHODS = {"GET", "HEAD"}
    _CHUNK_SIZE = 8192

    def __init__(self, config: ProxyConfig):
        """Initialize the proxy service.

        Args:
            config: Relay configuration; decides the production policy,
                timeout and CORS headers for every request.
        """
        self._config = config
        self._validator = RequestValidator(config)
        self._cors_handler = CORSHandler(config.security)

    @property
    def cors_handler(self) -> CORSHandler:
        return self._cors_handler

    def forward_request(self, event: Dict[str, Any]) -> ProxyResponse:
        """Validate the event body and relay it to the target URL.

        Every failure is rendered as a JSON error response; nothing is
        raised to the caller.

        Args:
            event: API Gateway event whose body is `{url, options}`.

        Returns:
            ProxyResponse: The upstream response or a classified error.
        """
        origin = request_origin(event)
        try:
            relay_request = self._validator.validate(event)
            return self._relay(relay_request, origin)
        except ProxyError as e:
            return self._error_response(e, origin)
        except Exception as e:
            logger.error(
                "Unexpected error forwarding request: %s", e,
                exc_info=True,
                extra={
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "cause": repr(e.__cause__) if e.__cause__ else None,
                },
            )
            return self._json_response(
                500,
                {"error": ProxyError.error,
                 "message": str(e),
                 "type": type(e).__name__},
                self._cors_handler.get_cors_headers(origin),
            )

    def describe(self, event: Optional[Dict[str, Any]] = None) -> ProxyResponse:
        """Return the static service descriptor."""
        info = {
            "service": self.SERVICE_NAME,
            "version": self.VERSION,
            "endpoints": {
                "POST": "/proxy - Proxy any HTTP request",
                "GET": "/proxy - This info page",
                "OPTIONS": "/proxy - CORS preflight",
            },
            "usage": {
                "example": (
                    "await fetch('/proxy', {\n"
                    "  method: 'POST',\n"
                    "  headers: { 'Content-Type': 'application/json' },\n"
                    "  body: JSON.stringify({\n"
                    "    url: 'https://api.example.com/data',\n"
                    "    options: { method: 'GET' }\n"
                    "  })\n"
                    "})"
                ),
            },
        }
        origin = request_origin(event or {})
        return self._json_response(
            200, info, self._cors_handler.allow_origin_headers(origin)
        )

    def _relay(self, relay_request: RelayRequest, origin: Optional[str]) -> ProxyResponse:
        target = relay_request.target
        options = relay_request.options
        headers = self._prepare_headers(options.headers)
        data = self._prepare_body(options, headers)
        timeout = (options.timeout_ms or self._config.policy.timeout) / 1000

        logger.info(
            "Forwarding %s request to %s", options.method, target.url,
            extra={
                "method": options.method,
                "target_url": target.url,
                "timeout": timeout,
            },
        )
        status_code, reason, text = self._execute(
            options.method, target.url, headers, data, timeout
        )
        logger.info(
            "Received response from %s", target.url,
            extra={
                "status_code": status_code,
                "status_text": reason,
                "response_size": len(text),
            },
        )

        response_headers = self._cors_handler.get_cors_headers(origin)
        response_headers.update({
            "X-Proxy-By": self.PROXY_BY,
            "X-Target-URL": target.url,
            "X-Target-Status": str(status_code),
        })
        return self._json_response(
            status_code, self._normalize_body(text), response_headers
        )

    def _execute(self,
                 method: str,
                 url: str,
                 headers: Dict[str, str],
                 data: Optional[bytes],
                 timeout: float) -> Tuple[int, str, str]:
        """Issue the outbound call and read the whole body within `timeout`.

        The call runs on a worker thread so the deadline covers connect,
        headers and body together; a trickling upstream cannot extend it.

        Returns:
            Tuple of (status_code, reason, body_text).

        Raises:
            UpstreamTimeoutError: If the call or the body read exceeds the
                timeout.
            UpstreamNetworkError: If the call fails at the transport layer.
        """
        session = requests.Session()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="relay")
        try:
            future = executor.submit(
                self._fetch, session, method, url, headers, data, timeout
            )
            return future.result(timeout=timeout)
        except FutureTimeoutError as e:
            raise UpstreamTimeoutError(
                f"No complete response from {url} within {timeout:g}s"
            ) from e
        except requests.RequestException as e:
            if _is_timeout(e):
                raise UpstreamTimeoutError(
                    f"No response from {url} within {timeout:g}s"
                ) from e
            raise UpstreamNetworkError(str(e)) from e
        finally:
            session.close()
            # A worker still blocked on the socket ends at its own read timeout
            executor.shutdown(wait=False)

    def _fetch(self,
               session: requests.Session,
               method: str,
               url: str,
               headers: Dict[str, str],
               data: Optional[bytes],
               timeout: float) -> Tuple[int, str, str]:
        response = session.request(
            method=method,
            url=url,
            headers=headers,
            data=data,
            timeout=timeout,
            allow_redirects=True,
            stream=True,
        )
        try:
            content = b"".join(response.iter_content(chunk_size=self._CHUNK_SIZE))
            return response.status_code, response.reason, self._decode(response, content)
        finally:
            response.close()

    @staticmethod
    def _decode(response, content: bytes) -> str:
        # Only trust the response encoding when the upstream declared a charset.
        content_type = response.headers.get("Content-Type", "")
        encoding = response.encoding if "charset=" in content_type.lower() else None
        try:
            return content.decode(encoding or "utf-8", errors="replace")
        except LookupError:
            return content.decode("utf-8", errors="replace")

    def _prepare_headers(self, caller_headers: Dict[str, str]) -> Dict[str, str]:
        """Merge caller headers over the defaults and drop identity headers.

        Args:
            caller_headers: Headers from `options.headers`.

        Returns:
            Dict[str, str]: Headers for the outbound request.
        """
        headers = {
            "Accept": "application/json",
            "User-Agent": self._config.policy.user_agent,
        }
        for key, value in caller_headers.items():
            _drop_header(headers, key)
            headers[key] = value
        return {key: value for key, value in headers.items()
                if key.lower() not in self._STRIPPED_HEADERS}

    @classmethod
    def _prepare_body(cls,
                      options: RequestOptions,
                      headers: Dict[str, str]) -> Optional[bytes]:
        """Encode the outbound body, forcing a JSON content type for objects.

        Mutates `headers` when the body is serialized to JSON.
        """
        body = options.body
        if options.method in cls._BODYLESS_METHODS or _is_empty_body(body):
            return None
        if isinstance(body, str):
            return body.encode("utf-8")
        _drop_header(headers, "Content-Type")
        headers["Content-Type"] = "application/json"
        return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    @staticmethod
    def _normalize_body(text: str) -> Any:
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return {"_proxy_note": NOT_JSON_NOTE, "text": text}

    def _error_response(self, error: ProxyError, origin: Optional[str]) -> ProxyResponse:
        if error.status_code >= 500:
            logger.error(
                "Proxy error: %s", error,
                exc_info=True,
                extra={
                    "error_type": type(error).__name__,
                    "error_message": str(error),
                    "cause": repr(error.__cause__) if error.__cause__ else None,
                },
            )
        else:
            logger.warning("Rejected request (%s): %s", error.status_code, error)
        return self._json_response(
            error.status_code,
            {"error": error.error,
             "message": str(error),
             "type": type(error).__name__},
            self._cors_handler.get_cors_headers(origin),
        )

    @staticmethod
    def _json_response(status_code: int,
                       data: Any,
                       headers: Dict[str, str]) -> ProxyResponse:
        return ProxyResponse(
            status_code=status_code,
            headers={"Content-Type": "application/json", **headers},
            body=json.dumps(data, ensure_ascii=False),
        )


def request_origin(event: Dict[str, Any]) -> Optional[str]:
    headers = event.get("headers") or {}
    return headers.get("Origin") or headers.get("origin")


def _drop_header(headers: Dict[str, str], name: str) -> None:
    for key in [key for key in headers if key.lower() == name.lower()]:
        del headers[key]


def _is_empty_body(body: Any) -> bool:
    # null, false, 0 and "" are never sent; {} and [] are
    return body is None or body == "" or (not isinstance(body, (dict, list)) and body == 0)


def _is_timeout(error: requests.RequestException) -> bool:
    """True for timeouts, including read timeouts requests wraps in ConnectionError."""
    if isinstance(error, requests.Timeout):
        return True
    reason = error.args[0] if error.args else None
    return (isinstance(reason, ReadTimeoutError)
            or isinstance(error.__cause__, ReadTimeoutError)
            or isinstance(error.__context__, ReadTimeoutError))

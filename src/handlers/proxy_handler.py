"""Main Lambda handler for the CORS Relay."""
import json
import sys
from pathlib import Path
from typing import Dict, Any

from cachetools import TTLCache, cached

# Add src directory to Python path for proper imports
src_path = str(Path(__file__).parent.parent)
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from config.config_loader import ConfigLoader
from services.proxy_service import ProxyService, request_origin
from services.models import ProxyResponse
from utils.logger import get_logger, log_request, log_response, set_log_level

logger = get_logger(__name__)

ALLOWED_METHODS = "GET, POST, OPTIONS"

# Rebuilt every 10 minutes so configuration edits reach warm containers
_service_cache = TTLCache(maxsize=1, ttl=600)


@cached(cache=_service_cache)
def get_proxy_service() -> ProxyService:
    config = ConfigLoader().load_config()
    set_log_level(config.monitoring.log_level)
    logger.info(
        "Configuration loaded and validated",
        extra={"environment": str(config.environment)},
    )
    return ProxyService(config)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Main Lambda handler for relay requests.

    Args:
        event: API Gateway event object.
        context: Lambda context object.

    Returns:
        Dict: API Gateway response object.
    """
    log_request(logger, event)
    try:
        proxy_service = get_proxy_service()
    except Exception as e:
        logger.error("Failed to initialize proxy service: %s", e, exc_info=True)
        response = ProxyResponse(
            status_code=500,
            headers={"Content-Type": "application/json",
                     "Access-Control-Allow-Origin": "*"},
            body=json.dumps({"error": "Internal proxy error",
                             "message": "Proxy is misconfigured",
                             "type": type(e).__name__}),
        )
        log_response(logger, response.status_code, len(response.body))
        return response.to_lambda()

    method = http_method(event)
    if method == "OPTIONS":
        response = proxy_service.cors_handler.handle_preflight(request_origin(event))
    elif method == "GET":
        response = proxy_service.describe(event)
    elif method == "POST":
        response = proxy_service.forward_request(event)
    else:
        response = method_not_allowed(proxy_service, event, method)

    log_response(logger,
                 response.status_code,
                 len(response.body),
                 response.headers.get("X-Target-URL"))
    return response.to_lambda()


def http_method(event: Dict[str, Any]) -> str:
    """Read the method from a REST API (v1) or HTTP API (v2) event."""
    method = event.get("httpMethod")
    if not method:
        method = (event.get("requestContext") or {}).get("http", {}).get("method", "")
    return method.upper()


def method_not_allowed(proxy_service: ProxyService,
                       event: Dict[str, Any],
                       method: str) -> ProxyResponse:
    logger.warning("Method not allowed: %s", method)
    headers = {"Content-Type": "application/json", "Allow": ALLOWED_METHODS}
    headers.update(proxy_service.cors_handler.get_cors_headers(request_origin(event)))
    return ProxyResponse(
        status_code=405,
        headers=headers,
        body=json.dumps({"error": "Method not allowed",
                         "message": f"{method or 'Unknown method'} is not supported",
                         "type": "MethodNotAllowed"}),
    )

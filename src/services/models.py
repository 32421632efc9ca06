from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ProxyResponse:
    """Proxy response."""
    status_code: int
    headers: Dict[str, str]
    body: str

    def to_lambda(self) -> Dict[str, Any]:
        """Render as an API Gateway proxy integration response."""
        return {"statusCode": self.status_code,
                "headers": self.headers,
                "body": self.body}


@dataclass
class RequestOptions:
    """Caller options recognized for the outbound call."""
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    timeout_ms: Optional[int] = None


@dataclass
class TargetDescriptor:
    """A validated absolute target URL."""
    scheme: str
    hostname: str
    port: Optional[int]
    path: str
    url: str

    def __str__(self):
        return self.url


@dataclass
class RelayRequest:
    """Validated request envelope."""
    target: TargetDescriptor
    options: RequestOptions

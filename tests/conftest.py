"""Pytest configuration and fixtures for CORS Relay tests."""

import json
import logging
import pytest
from unittest.mock import Mock, patch

from config.models import (
    Environment,
    MonitoringConfig,
    ProxyConfig,
    RelayPolicy,
    SecurityConfig,
)


@pytest.fixture
def sample_config():
    """Development configuration with the default policies."""
    return ProxyConfig(
        environment=Environment.DEVELOPMENT,
        policy=RelayPolicy(timeout=30000),
        security=SecurityConfig(allowed_origins=["*"]),
        monitoring=MonitoringConfig(log_level="INFO"),
    )


@pytest.fixture
def production_config():
    """Production configuration: local targets are blocked."""
    return ProxyConfig(environment=Environment.PRODUCTION)


@pytest.fixture
def sample_config_json():
    """Sample configuration as JSON string."""
    return json.dumps(
        {
            "environment": "production",
            "policy": {
                "timeout": 20000,
                "blockedHosts": ["localhost", "127.0.0.1", "0.0.0.0"],
                "blockedHostSuffixes": [".local", ".internal"],
                "userAgent": "Test-Relay/2.0",
            },
            "security": {
                "allowedOrigins": ["https://example.com"],
                "allowCredentials": False,
                "maxAge": 600,
            },
            "monitoring": {"logLevel": "DEBUG"},
        }
    )


@pytest.fixture
def sample_config_data_dict(sample_config_json):
    """Sample configuration as dictionary."""
    return json.loads(sample_config_json)


@pytest.fixture
def make_event():
    """Factory for API Gateway events carrying a relay envelope."""

    def _make_event(payload=None, method="POST", headers=None, raw_body=None):
        body = raw_body if raw_body is not None else (
            json.dumps(payload) if payload is not None else None
        )
        return {
            "httpMethod": method,
            "path": "/proxy",
            "headers": headers if headers is not None else {
                "Content-Type": "application/json",
                "Origin": "https://app.example.com",
                "User-Agent": "Mozilla/5.0",
            },
            "queryStringParameters": None,
            "body": body,
            "isBase64Encoded": False,
            "requestContext": {
                "requestId": "test-request-id",
                "identity": {"sourceIp": "192.168.1.1"},
            },
        }

    return _make_event


@pytest.fixture
def sample_lambda_event(make_event):
    """Sample relay event for testing."""
    return make_event({"url": "https://api.example.com/data"})


@pytest.fixture
def sample_lambda_context():
    """Sample Lambda context for testing."""
    context = Mock()
    context.function_name = "cors-relay-test"
    context.function_version = "$LATEST"
    context.invoked_function_arn = (
        "arn:aws:lambda:eu-west-1:123456789012:function:cors-relay-test"
    )
    context.memory_limit_in_mb = "128"
    context.remaining_time_in_millis = lambda: 30000
    context.aws_request_id = "test-request-id"
    return context


@pytest.fixture
def mock_response():
    """Upstream response returning a small JSON document."""
    response = Mock()
    response.status_code = 200
    response.reason = "OK"
    response.url = "https://api.example.com/data"
    response.headers = {"Content-Type": "application/json"}
    response.encoding = "utf-8"
    response.iter_content.return_value = [b'{"success": true}']
    return response


@pytest.fixture
def mock_requests(mock_response):
    """Mock requests.Session for testing."""
    with patch("requests.Session") as mock_session_class:
        mock_session = Mock()
        mock_session.request.return_value = mock_response
        mock_session_class.return_value = mock_session
        yield mock_session


@pytest.fixture
def propagate_logs():
    """Let caplog see records from the relay's non-propagating loggers."""
    names = [name for name in logging.root.manager.loggerDict
             if name.split(".")[0] in {"config", "services", "handlers", "utils"}]
    loggers = [logging.getLogger(name) for name in names]
    previous = [logger.propagate for logger in loggers]
    for logger in loggers:
        logger.propagate = True
    yield
    for logger, value in zip(loggers, previous):
        logger.propagate = value


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-west-1")
    for name in ("CORS_RELAY_ENV",
                 "CORS_RELAY_TIMEOUT_MS",
                 "CORS_RELAY_CONFIG_PATH",
                 "CORS_RELAY_CONFIG_S3_BUCKET",
                 "CORS_RELAY_CONFIG_S3_KEY"):
        monkeypatch.delenv(name, raising=False)
    yield

"""
Tests for the error registry and the GatewayError envelope.
"""

import textwrap

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from commgate.core.errors import (
    AlreadyResolved,
    GatewayError,
    NotFound,
    RateLimitExceeded,
)
from commgate.core.errors.middleware import gateway_error_handler
from commgate.core.errors.registry import ErrorRegistry, RegistryValidationError, error_registry

EXPECTED_STATUS = {
    "unauthorized": 401,
    "bad_request": 400,
    "contact_consent_denied": 403,
    "recipient_not_allowed": 403,
    "rate_limit_exceeded": 429,
    "content_blocked": 400,
    "not_found": 404,
    "already_resolved": 409,
    "local_only": 403,
    "delivery_failed": 502,
    "internal_error": 500,
}


class TestRegistry:
    def test_loaded(self):
        assert error_registry.loaded
        assert len(error_registry) >= len(EXPECTED_STATUS)

    @pytest.mark.parametrize("code,status", sorted(EXPECTED_STATUS.items()))
    def test_http_status(self, code, status):
        assert error_registry.get(code).http_status == status

    def test_rate_limit_is_retryable(self):
        assert error_registry.get("rate_limit_exceeded").retryable
        assert not error_registry.get("contact_consent_denied").retryable

    def test_rejects_duplicate_codes(self, tmp_path):
        path = tmp_path / "registry.yaml"
        entry = textwrap.dedent("""\
          - code: not_found
            domain: QUEUE
            title: t
            severity: INFO
            retryable: false
            http_status: 404
            safe_message: m
        """)
        path.write_text("schema_version: 1\nerrors:\n" + textwrap.indent(entry, "  ") * 2)
        with pytest.raises(RegistryValidationError, match="Duplicate"):
            ErrorRegistry().load(str(path))

    def test_rejects_unknown_domain(self, tmp_path):
        path = tmp_path / "registry.yaml"
        path.write_text(textwrap.dedent("""\
            schema_version: 1
            errors:
              - code: odd_error
                domain: NOPE
                title: t
                severity: INFO
                retryable: false
                http_status: 400
                safe_message: m
        """))
        with pytest.raises(RegistryValidationError, match="domain"):
            ErrorRegistry().load(str(path))


class TestGatewayError:
    def test_subclass_codes(self):
        assert NotFound().code == "not_found"
        assert AlreadyResolved(context={"status": "sent"}).status == "sent"

    def test_invalid_code_format(self):
        with pytest.raises(ValueError):
            GatewayError(code="Bad-Code")


class TestHandler:
    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.add_exception_handler(GatewayError, gateway_error_handler)

        @app.get("/limited")
        def limited():
            raise RateLimitExceeded(
                detail="internal only",
                context={"retry_after_seconds": 120, "limit_type": "daily", "current_count": 50, "limit": 50},
            )

        @app.get("/custom")
        def custom():
            raise NotFound(message="Nothing here.")

        @app.get("/unregistered")
        def unregistered():
            raise GatewayError(code="made_up_code")

        return TestClient(app)

    def test_envelope_with_context_and_retry_after(self, client):
        resp = client.get("/limited")
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "120"
        assert resp.json() == {
            "success": False,
            "error": "rate_limit_exceeded",
            "message": error_registry.get("rate_limit_exceeded").safe_message,
            "retry_after_seconds": 120,
            "limit_type": "daily",
            "current_count": 50,
            "limit": 50,
        }

    def test_detail_never_returned(self, client):
        assert "internal only" not in client.get("/limited").text

    def test_message_override(self, client):
        assert client.get("/custom").json()["message"] == "Nothing here."

    def test_unregistered_code_falls_back_to_500(self, client):
        resp = client.get("/unregistered")
        assert resp.status_code == 500
        assert resp.json()["error"] == "internal_error"

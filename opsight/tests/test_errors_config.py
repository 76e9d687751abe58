import logging
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from opsight.core.config import validate_config
from opsight.core.errors import (
    AppError,
    DatastoreUnavailableError,
    PersistenceError,
    ValidationError,
    app_error_handler,
    unhandled_exception_handler,
)
from opsight.core.logging import log_event
from opsight.core.middleware.request_id import RequestIdMiddleware


class TestValidateConfig:
    def test_strict_mode_raises_on_missing_keys(self):
        cfg = SimpleNamespace(DATABASE_URL=None, GROQ_API_KEY=None, CONFIG_STRICT=True)
        with pytest.raises(RuntimeError) as exc:
            validate_config(settings_obj=cfg)
        assert "DATABASE_URL" in str(exc.value)
        assert "GROQ_API_KEY" in str(exc.value)

    def test_non_strict_mode_only_warns(self, caplog):
        cfg = SimpleNamespace(DATABASE_URL=None, GROQ_API_KEY="secret-key", CONFIG_STRICT=False)
        with caplog.at_level(logging.WARNING, logger="opsight"):
            assert validate_config(settings_obj=cfg) is True
        assert "DATABASE_URL" in caplog.text
        assert "secret-key" not in caplog.text

    def test_complete_config_passes_strict(self):
        cfg = SimpleNamespace(DATABASE_URL="sqlite://", GROQ_API_KEY="k", CONFIG_STRICT=True)
        assert validate_config(settings_obj=cfg) is True


def build_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/invalid")
    def invalid():
        raise ValidationError("project key must not be empty")

    @app.get("/write")
    def write():
        raise PersistenceError("duplicate prediction id")

    @app.get("/down")
    def down():
        raise DatastoreUnavailableError("connection refused")

    return app


class TestErrorHandlers:
    client = TestClient(build_app())

    @pytest.mark.parametrize(
        "path,status,code",
        [
            ("/invalid", 400, "validation_error"),
            ("/write", 500, "persistence_error"),
            ("/down", 503, "datastore_unavailable"),
        ],
    )
    def test_payload_shape(self, path, status, code):
        response = self.client.get(path, headers={"x-request-id": "rid-1"})

        assert response.status_code == status
        body = response.json()
        assert body["error"]["code"] == code
        assert body["error"]["request_id"] == "rid-1"
        assert body["detail"] == body["error"]["message"]
        assert response.headers["x-request-id"] == "rid-1"

    def test_error_classes_carry_defaults(self):
        exc = PersistenceError("x", code="custom_code")
        assert exc.code == "custom_code"
        assert exc.status_code == 500
        assert isinstance(ValidationError("y"), ValueError)


def test_log_event_adds_structured_fields(caplog):
    with caplog.at_level(logging.INFO, logger="opsight.insights.test"):
        log_event(
            "info",
            "insights.test.event",
            request_id="rid-9",
            organization_id="org-1",
            error_code="model_response_error",
            extra={"reason": "x" * 600},
            logger_name="opsight.insights.test",
        )

    record = caplog.records[-1]
    assert record.getMessage() == "insights.test.event"
    assert record.organization_id == "org-1"
    assert record.error_code == "model_response_error"
    assert record.reason.endswith("...<truncated>")

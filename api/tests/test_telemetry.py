from fastapi import FastAPI

from hiring_notifications.core.config import Settings
from hiring_notifications.core.telemetry import parse_otlp_headers, setup_api_telemetry, shutdown_api_telemetry


def test_parse_otlp_headers() -> None:
    assert parse_otlp_headers(None) == {}
    assert parse_otlp_headers("authorization=Bearer abc, x-tenant = campus ,broken,=empty") == {
        "authorization": "Bearer abc",
        "x-tenant": "campus",
    }


def test_disabled_telemetry_leaves_app_uninstrumented() -> None:
    app = FastAPI()
    runtime = setup_api_telemetry(app, Settings(otel_enabled=False))

    assert runtime.enabled is False
    assert runtime.provider is None
    shutdown_api_telemetry(app, runtime)

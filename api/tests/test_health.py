from fastapi.testclient import TestClient

from hiring_notifications.main import app
from hiring_notifications.services.repository import RepositoryUnavailableError, get_repository


class _Repository:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    async def ping(self) -> None:
        if self.error is not None:
            raise self.error


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root_reports_service_name() -> None:
    client = TestClient(app)
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "hiring-notifications-api"}


def test_readyz_reports_database_state() -> None:
    client = TestClient(app)

    app.dependency_overrides[get_repository] = lambda: _Repository()
    assert client.get("/readyz").json() == {"status": "ready"}

    app.dependency_overrides[get_repository] = lambda: _Repository(RepositoryUnavailableError("database unavailable"))
    response = client.get("/readyz")
    app.dependency_overrides.clear()

    assert response.status_code == 503
    assert response.json() == {"detail": "database unavailable"}

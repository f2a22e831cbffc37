from typing import Any, Dict, Optional, Tuple

import pytest
import requests
from requests.structures import CaseInsensitiveDict
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from english_notebook import db
from english_notebook.offline_cache import APP_SHELL, OfflineCacheAdapter

ORIGIN = "http://notebook.test"


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    # Use a temporary SQLite DB, and rebind engine/session to it
    test_db = str(tmp_path / "test_notebook.db")
    monkeypatch.setenv("ENGLISH_NOTEBOOK_DB", test_db)
    db.engine = create_engine(f"sqlite:///{test_db}")
    db.SessionLocal = sessionmaker(bind=db.engine, expire_on_commit=False)
    db.init_db()
    yield


def make_response(request: requests.PreparedRequest, status: int, body: bytes,
                  content_type: str = "text/plain; charset=utf-8") -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.reason = "OK" if status < 400 else "Error"
    response._content = body
    response.headers = CaseInsensitiveDict({"Content-Type": content_type})
    response.url = request.url
    response.request = request
    response.encoding = "utf-8"
    return response


class FakeNetworkCache(OfflineCacheAdapter):
    """Offline cache whose 'network' is a dict of url -> (status, body)."""

    def __init__(self, routes: Optional[Dict[str, Tuple[int, bytes]]] = None, **kwargs: Any) -> None:
        super().__init__(ORIGIN, **kwargs)
        self.routes = dict(routes or {})
        self.online = True
        self.requests = []

    def _fetch(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        self.requests.append((request.method, request.url))
        if not self.online:
            raise requests.ConnectionError("network unreachable")
        status, body = self.routes.get(request.url, (404, b"not found"))
        return make_response(request, status, body)


def shell_routes() -> Dict[str, Tuple[int, bytes]]:
    return {ORIGIN + path: (200, f"shell {path}".encode()) for path in APP_SHELL}


@pytest.fixture
def network_cache() -> FakeNetworkCache:
    return FakeNetworkCache(shell_routes())


@pytest.fixture
def session(network_cache: FakeNetworkCache) -> requests.Session:
    http = requests.Session()
    http.mount("http://", network_cache)
    http.mount("https://", network_cache)
    return http

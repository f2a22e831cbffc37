import base64
import os
from typing import Any, Optional

import requests

from .offline_cache import CACHE_NAME, OfflineCacheAdapter

DEFAULT_SERVER_URL = os.environ.get("NOTEBOOK_SERVER_URL", "http://127.0.0.1:3000")


class NotebookApiError(Exception):
    pass


def _error_from(response: requests.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return default


class NotebookClient:
    """Talks to the notebook server; every request passes through the offline cache."""

    def __init__(self, base_url: str = DEFAULT_SERVER_URL,
                 session: Optional[requests.Session] = None,
                 cache: Optional[OfflineCacheAdapter] = None,
                 cache_name: str = CACHE_NAME) -> None:
        self.base_url = base_url.rstrip("/")
        self.cache = cache or OfflineCacheAdapter(self.base_url, cache_name=cache_name)
        self.session = session or requests.Session()
        self.session.mount("http://", self.cache)
        self.session.mount("https://", self.cache)

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def prepare_offline(self) -> bool:
        return self.cache.ensure_installed()

    def get(self, path: str, navigate: bool = False, **kwargs: Any) -> requests.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if navigate:
            headers.setdefault("Accept", "text/html")
            headers.setdefault("Sec-Fetch-Mode", "navigate")
        return self.session.get(self.url(path), headers=headers, **kwargs)

    def translate(self, japanese: str) -> str:
        response = self.session.post(self.url("/api/translate"), json={"japanese": japanese})
        if not response.ok:
            raise NotebookApiError(_error_from(response, "Translation failed."))
        return str(response.json().get("english") or "")

    def synthesize(self, english: str) -> str:
        """Return generated speech as a data URL ready to be stored on an item."""
        response = self.session.post(self.url("/api/tts"), json={"english": english})
        if not response.ok:
            raise NotebookApiError(_error_from(response, "Voice generation failed."))
        content_type = response.headers.get("Content-Type", "audio/mpeg").split(";")[0].strip()
        encoded = base64.b64encode(response.content).decode("ascii")
        return f"data:{content_type};base64,{encoded}"

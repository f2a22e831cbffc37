"""
Offline cache for the application shell.

Mounted on a requests.Session, the adapter sees every outbound request the
client makes. GET responses from the notebook server are kept in the local
database under a versioned cache name so the shell stays available without
a network connection.

Policy:
  - non-GET requests go straight to the network and are never stored
  - same-origin navigations are network-first, falling back to the stored
    copy and finally to the stored index page
  - every other GET is cache-first and never revalidated; a new cache
    version is the only way entries are refreshed or evicted
"""

import os
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from requests.utils import get_encoding_from_headers

from . import db

DEBUG_MODE = os.getenv("DEBUG", "0") == "1"

CACHE_PREFIX = "english-study-notebook-"
CACHE_VERSION = "v1"
CACHE_NAME = f"{CACHE_PREFIX}{CACHE_VERSION}"

APP_SHELL = [
    "/",
    "/index.html",
    "/styles.css",
    "/app.js",
    "/manifest.webmanifest",
    "/icons/icon-192.svg",
    "/icons/icon-512.svg",
]
FALLBACK_PAGE = "/index.html"


class ShellInstallError(Exception):
    """Raised when any shell resource could not be fetched during install."""


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}".lower()


def snapshot(response: requests.Response) -> Dict[str, Any]:
    """Copy a response into a storable entry.

    The body is read here, before the response is returned to the caller:
    a streamed body can only be consumed once, so the stored copy must own
    its own bytes.
    """
    body = response.content
    return {
        "method": "GET",
        "url": response.request.url if response.request is not None else response.url,
        "status": response.status_code,
        "reason": response.reason,
        "headers": dict(response.headers),
        "body": bytes(body) if body is not None else b"",
    }


class OfflineCacheAdapter(HTTPAdapter):
    def __init__(self, origin: str, cache_name: str = CACHE_NAME, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.origin = _origin(origin)
        self.cache_name = cache_name

    # --- lifecycle ---

    def install(self) -> int:
        """Fetch and store every shell resource, all or nothing."""
        entries = []
        for path in APP_SHELL:
            request = requests.Request("GET", self.origin + path).prepare()
            try:
                response = self._fetch(request)
            except requests.RequestException as e:
                raise ShellInstallError(f"Could not fetch {path}: {e}") from e
            if not response.ok:
                raise ShellInstallError(f"Could not fetch {path}: HTTP {response.status_code}")
            entries.append(snapshot(response))
        stored = db.put_cache_entries(self.cache_name, entries, mark_installed=True)
        if DEBUG_MODE:
            print(f"✅ Installed shell into {self.cache_name} ({stored} resources)")
        return stored

    def activate(self) -> List[str]:
        """Drop every cache generation except the current one."""
        stale = [name for name in db.list_cache_names() if name != self.cache_name]
        for name in stale:
            db.delete_cache(name)
            if DEBUG_MODE:
                print(f"🗑️ Deleted stale cache {name}")
        return stale

    def is_installed(self) -> bool:
        """True only once a full install of this generation has committed."""
        return db.is_cache_installed(self.cache_name)

    def ensure_installed(self) -> bool:
        """Install and activate once per cache version; failures are ignored."""
        if self.is_installed():
            return True
        try:
            self.install()
            self.activate()
            return True
        except (ShellInstallError, requests.RequestException) as e:
            if DEBUG_MODE:
                print(f"⚠️ Offline shell not installed: {e}")
            return False

    # --- interception ---

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:  # type: ignore[override]
        if request.method != "GET":
            return self._fetch(request, **kwargs)
        if self._is_navigation(request) and self._is_same_origin(request.url):
            return self._network_first(request, **kwargs)
        return self._cache_first(request, **kwargs)

    def match(self, url: str) -> Optional[db.CacheEntry]:
        return db.match_cache_entry(self.cache_name, "GET", url)

    def _fetch(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        return super().send(request, **kwargs)

    def _network_first(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        try:
            response = self._fetch(request, **kwargs)
        except requests.RequestException:
            entry = self.match(request.url or "") or self.match(self.origin + FALLBACK_PAGE)
            if entry is None:
                raise
            return self._build_response(request, entry)
        if response.ok:
            self._store(response)
        return response

    def _cache_first(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        entry = self.match(request.url or "")
        if entry is not None:
            return self._build_response(request, entry)
        response = self._fetch(request, **kwargs)
        if response.ok and self._is_same_origin(request.url):
            self._store(response)
        return response

    def _store(self, response: requests.Response) -> None:
        try:
            db.put_cache_entries(self.cache_name, [snapshot(response)])
        except Exception as e:
            if DEBUG_MODE:
                print(f"⚠️ Could not cache {response.url}: {e}")

    def _is_same_origin(self, url: Optional[str]) -> bool:
        return bool(url) and _origin(url) == self.origin

    @staticmethod
    def _is_navigation(request: requests.PreparedRequest) -> bool:
        if request.headers.get("Sec-Fetch-Mode", "").lower() == "navigate":
            return True
        return "text/html" in request.headers.get("Accept", "")

    @staticmethod
    def _build_response(request: requests.PreparedRequest, entry: db.CacheEntry) -> requests.Response:
        response = requests.Response()
        response.status_code = entry.status
        response.reason = entry.reason
        response.headers = CaseInsensitiveDict(entry.header_dict())
        response._content = entry.body
        response._content_consumed = True  # no raw stream behind a cached body
        response.url = request.url or entry.url
        response.request = request
        response.encoding = get_encoding_from_headers(response.headers)
        response.from_cache = True  # type: ignore[attr-defined]
        return response

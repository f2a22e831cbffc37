"""Optional Supabase mirror of the note list, over the PostgREST HTTP interface."""

import datetime
import os
from typing import Any, Dict, List, Optional

import requests

from .notes import CloudConfig, StudyItem

DEBUG_MODE = os.getenv("DEBUG", "0") == "1"

TABLE_NAME = "study_sentences"


class CloudError(Exception):
    pass


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text or f"HTTP {response.status_code}"


class CloudMirror:
    def __init__(self, config: CloudConfig, session: Optional[requests.Session] = None) -> None:
        if not config.enabled:
            raise CloudError("Set Supabase URL and anon key first.")
        self.config = config
        self.session = session or requests.Session()
        self.endpoint = f"{config.url.rstrip('/')}/rest/v1/{TABLE_NAME}"

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.config.anon_key,
            "Authorization": f"Bearer {self.config.anon_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(self, action: str, method: str, **kwargs: Any) -> requests.Response:
        try:
            response = self.session.request(method, self.endpoint, **kwargs)
        except requests.RequestException as e:
            raise CloudError(f"Cloud {action} failed: {e}") from e
        if not response.ok:
            raise CloudError(f"Cloud {action} failed: {_error_message(response)}")
        return response

    def upsert_item(self, item: StudyItem) -> None:
        payload = {
            "id": item.id,
            "user_id": self.config.user_id,
            "english": item.english,
            "japanese": item.japanese,
            "audio_url": item.audio_url or "",
            "updated_at": datetime.datetime.now(datetime.UTC).isoformat(),
        }
        self._request(
            "save", "POST",
            json=payload,
            headers=self._headers(prefer="resolution=merge-duplicates,return=minimal"),
        )
        if DEBUG_MODE:
            print(f"☁️ Upserted {item.id} for {self.config.user_id}")

    def delete_item(self, item_id: str) -> None:
        self._request(
            "delete", "DELETE",
            params={"id": f"eq.{item_id}", "user_id": f"eq.{self.config.user_id}"},
            headers=self._headers(),
        )
        if DEBUG_MODE:
            print(f"☁️ Deleted {item_id} for {self.config.user_id}")

    def load_items(self) -> List[StudyItem]:
        """Fetch every row for the user, most recently updated first."""
        response = self._request(
            "load", "GET",
            params={
                "select": "id,english,japanese,audio_url",
                "user_id": f"eq.{self.config.user_id}",
                "order": "updated_at.desc",
            },
            headers=self._headers(),
        )
        try:
            rows = response.json()
        except ValueError as e:
            raise CloudError(f"Cloud load failed: {e}") from e
        if rows is None:
            rows = []
        if not isinstance(rows, list):
            raise CloudError(f"Cloud load failed: expected a list of rows, got {type(rows).__name__}")
        for row in rows:
            if not isinstance(row, dict) or row.get("id") in (None, ""):
                raise CloudError(f"Cloud load failed: malformed row {row!r}")
        return [
            StudyItem(
                id=str(row["id"]),
                english=str(row.get("english") or ""),
                japanese=str(row.get("japanese") or ""),
                audio_url=str(row.get("audio_url") or ""),
            )
            for row in rows
        ]

"""Local note list and cloud connection settings.

Both are stored as single JSON blobs under versioned keys, the way the
browser build keeps them in local storage. A blob that cannot be read back
is replaced by defaults rather than migrated.
"""

import json
import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from . import db

DEBUG_MODE = os.getenv("DEBUG", "0") == "1"

NOTES_KEY = "english_practice_notes_v3"
CLOUD_CONFIG_KEY = "english_practice_cloud_config_v1"
DEFAULT_USER_ID = "default-user"


@dataclass(frozen=True)
class StudyItem:
    id: str
    english: str
    japanese: str
    audio_url: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "english": self.english,
            "japanese": self.japanese,
            "audioUrl": self.audio_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StudyItem":
        return cls(
            id=str(data["id"]),
            english=str(data.get("english") or ""),
            japanese=str(data.get("japanese") or ""),
            audio_url=str(data.get("audioUrl") or ""),
        )


@dataclass(frozen=True)
class CloudConfig:
    url: str = ""
    anon_key: str = ""
    user_id: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.anon_key)

    def to_dict(self) -> Dict[str, str]:
        return {"url": self.url, "anonKey": self.anon_key, "userId": self.user_id}

    @classmethod
    def from_input(cls, url: str, anon_key: str, user_id: str) -> "CloudConfig":
        """Build a config from user input; a blank user id means the default user."""
        return cls(
            url=(url or "").strip(),
            anon_key=(anon_key or "").strip(),
            user_id=(user_id or "").strip() or DEFAULT_USER_ID,
        )


def new_item_id(existing: Iterable[str] = ()) -> str:
    taken: Set[str] = set(existing)
    while True:
        candidate = str(uuid.uuid4())
        if candidate not in taken:
            return candidate


def default_items() -> List[StudyItem]:
    return [
        StudyItem(
            id=new_item_id(),
            english="Nice to meet you. I study English every day.",
            japanese="はじめまして。毎日英語を勉強しています。",
        )
    ]


def serialize_items(items: Sequence[StudyItem]) -> str:
    return json.dumps([item.to_dict() for item in items], ensure_ascii=False)


def deserialize_items(raw: Optional[str]) -> Optional[List[StudyItem]]:
    """Parse a stored list; returns None when the blob is missing or malformed."""
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(parsed, list):
        return None
    items: List[StudyItem] = []
    for entry in parsed:
        if not isinstance(entry, dict) or "id" not in entry:
            return None
        items.append(StudyItem.from_dict(entry))
    return items


def prepend_item(items: Sequence[StudyItem], item: StudyItem) -> List[StudyItem]:
    return [item] + [existing for existing in items if existing.id != item.id]


def remove_item(items: Sequence[StudyItem], item_id: str) -> List[StudyItem]:
    return [item for item in items if item.id != item_id]


class NoteStore:
    """Ordered list of study items, newest first, persisted on every change."""

    def __init__(self, key: str = NOTES_KEY) -> None:
        self.key = key
        self.items: List[StudyItem] = []

    def load(self) -> List[StudyItem]:
        try:
            raw = db.get_item(self.key)
        except Exception as e:
            if DEBUG_MODE:
                print(f"⚠️ Could not read {self.key}: {e}")
            raw = None
        items = deserialize_items(raw)
        self.items = items if items is not None else default_items()
        return list(self.items)

    def save(self) -> None:
        db.set_item(self.key, serialize_items(self.items))

    def add(self, english: str, japanese: str, audio_url: str = "") -> StudyItem:
        item = StudyItem(
            id=new_item_id(item.id for item in self.items),
            english=english,
            japanese=japanese,
            audio_url=audio_url,
        )
        self.items = prepend_item(self.items, item)
        self.save()
        return item

    def delete(self, item_id: str) -> bool:
        remaining = remove_item(self.items, item_id)
        if len(remaining) == len(self.items):
            return False
        self.items = remaining
        self.save()
        return True

    def replace(self, items: Iterable[StudyItem]) -> None:
        self.items = list(items)
        self.save()


def serialize_cloud_config(config: CloudConfig) -> str:
    return json.dumps(config.to_dict())


def deserialize_cloud_config(raw: Optional[str]) -> CloudConfig:
    if not raw:
        return CloudConfig()
    try:
        parsed = json.loads(raw)
    except ValueError:
        return CloudConfig()
    if not isinstance(parsed, dict):
        return CloudConfig()
    return CloudConfig(
        url=str(parsed.get("url") or ""),
        anon_key=str(parsed.get("anonKey") or ""),
        user_id=str(parsed.get("userId") or ""),
    )


def load_cloud_config() -> CloudConfig:
    try:
        return deserialize_cloud_config(db.get_item(CLOUD_CONFIG_KEY))
    except Exception as e:
        if DEBUG_MODE:
            print(f"⚠️ Could not read cloud settings: {e}")
        return CloudConfig()


def save_cloud_config(config: CloudConfig) -> None:
    db.set_item(CLOUD_CONFIG_KEY, serialize_cloud_config(config))

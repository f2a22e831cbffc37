"""
Command handlers for the notebook UI.

handle(state, intent, result) is a pure function returning the next state and
a list of effects for the caller to run. Intents that need an external call
are handled twice: first without a result (which emits the request effect),
then again with the Outcome of that call.
"""

from dataclasses import dataclass, field, replace
from typing import Any, FrozenSet, List, Optional, Tuple

from .notes import CloudConfig, StudyItem, new_item_id, prepend_item, remove_item

CLOUD_NOT_CONFIGURED = "Set Supabase URL and anon key first."


@dataclass(frozen=True)
class AppState:
    items: Tuple[StudyItem, ...] = ()
    cloud_config: CloudConfig = field(default_factory=CloudConfig)
    show_japanese: bool = True
    draft_english: str = ""
    draft_japanese: str = ""
    generated_audio_url: str = ""
    status: str = ""
    status_is_error: bool = False
    busy: FrozenSet[str] = frozenset()

    def find(self, item_id: str) -> Optional[StudyItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


@dataclass(frozen=True)
class Outcome:
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# Intents

@dataclass(frozen=True)
class AddNote:
    english: str
    japanese: str


@dataclass(frozen=True)
class DeleteNote:
    item_id: str


@dataclass(frozen=True)
class Translate:
    japanese: str


@dataclass(frozen=True)
class GenerateSpeech:
    english: str


@dataclass(frozen=True)
class PlayNote:
    item_id: str


@dataclass(frozen=True)
class SpeakNote:
    item_id: str


@dataclass(frozen=True)
class ToggleJapanese:
    show: Optional[bool] = None


@dataclass(frozen=True)
class SaveCloudSettings:
    url: str
    anon_key: str
    user_id: str


@dataclass(frozen=True)
class LoadCloud:
    pass


@dataclass(frozen=True)
class ReportError:
    message: str


# Effects

@dataclass(frozen=True)
class SaveItems:
    items: Tuple[StudyItem, ...]


@dataclass(frozen=True)
class SaveCloudConfig:
    config: CloudConfig


@dataclass(frozen=True)
class UpsertCloudItem:
    item: StudyItem
    config: CloudConfig


@dataclass(frozen=True)
class DeleteCloudItem:
    item_id: str
    config: CloudConfig


@dataclass(frozen=True)
class FetchCloudItems:
    config: CloudConfig


@dataclass(frozen=True)
class RequestTranslation:
    japanese: str


@dataclass(frozen=True)
class RequestSpeech:
    english: str


@dataclass(frozen=True)
class PlayAudio:
    url: str


@dataclass(frozen=True)
class SpeakText:
    text: str
    lang: str = "en-US"


@dataclass(frozen=True)
class Render:
    pass


Result = Tuple[AppState, List[Any]]


def _status(state: AppState, message: str, error: bool = False, **changes: Any) -> AppState:
    return replace(state, status=message, status_is_error=error, **changes)


def _add_note(state: AppState, intent: AddNote, result: Optional[Outcome]) -> Result:
    if result is not None:
        # Mirror finished; failures leave the local add untouched
        if result.ok:
            return _status(state, "Added and synced to cloud."), []
        return state, []

    english = intent.english.strip()
    japanese = intent.japanese.strip()
    if not japanese:
        return _status(state, "Japanese is required.", error=True), []
    if not english:
        return _status(state, "English is required.", error=True), []

    item = StudyItem(
        id=new_item_id(existing.id for existing in state.items),
        english=english,
        japanese=japanese,
        audio_url=state.generated_audio_url,
    )
    items = tuple(prepend_item(state.items, item))
    state = _status(state, "Added.", items=items, draft_english="", draft_japanese="",
                    generated_audio_url="")
    effects: List[Any] = [SaveItems(items), Render()]
    if state.cloud_config.enabled:
        effects.append(UpsertCloudItem(item, state.cloud_config))
    return state, effects


def _delete_note(state: AppState, intent: DeleteNote, result: Optional[Outcome]) -> Result:
    if result is not None:
        return state, []
    if state.find(intent.item_id) is None:
        return state, []
    items = tuple(remove_item(state.items, intent.item_id))
    state = replace(state, items=items)
    effects: List[Any] = [SaveItems(items), Render()]
    if state.cloud_config.enabled:
        effects.append(DeleteCloudItem(intent.item_id, state.cloud_config))
    return state, effects


def _translate(state: AppState, intent: Translate, result: Optional[Outcome]) -> Result:
    if result is None:
        japanese = intent.japanese.strip()
        if not japanese:
            return _status(state, "Enter Japanese text first.", error=True), []
        if "translate" in state.busy:
            return state, []
        state = _status(state, "Translating...", busy=state.busy | {"translate"},
                        draft_japanese=japanese)
        return state, [RequestTranslation(japanese)]

    busy = state.busy - {"translate"}
    if not result.ok:
        return _status(state, result.error or "Translation failed.", error=True, busy=busy), []
    return _status(state, "Translated.", busy=busy, draft_english=str(result.value or "")), []


def _generate_speech(state: AppState, intent: GenerateSpeech, result: Optional[Outcome]) -> Result:
    if result is None:
        english = intent.english.strip()
        if not english:
            return _status(state, "Enter English text first.", error=True), []
        if "tts" in state.busy:
            return state, []
        state = _status(state, "Generating voice...", busy=state.busy | {"tts"},
                        draft_english=english)
        return state, [RequestSpeech(english)]

    busy = state.busy - {"tts"}
    if not result.ok:
        return _status(state, result.error or "Voice generation failed.", error=True, busy=busy), []
    audio_url = str(result.value or "")
    state = _status(state, "Voice generated and playing.", busy=busy, generated_audio_url=audio_url)
    return state, [PlayAudio(audio_url)]


def _play_note(state: AppState, intent: PlayNote, result: Optional[Outcome]) -> Result:
    item = state.find(intent.item_id)
    if item is None:
        return _status(state, "No such sentence.", error=True), []
    if not item.audio_url:
        return _status(state, "No generated audio for this sentence.", error=True), []
    return state, [PlayAudio(item.audio_url)]


def _speak_note(state: AppState, intent: SpeakNote, result: Optional[Outcome]) -> Result:
    item = state.find(intent.item_id)
    if item is None:
        return _status(state, "No such sentence.", error=True), []
    return state, [SpeakText(item.english)]


def _toggle_japanese(state: AppState, intent: ToggleJapanese, result: Optional[Outcome]) -> Result:
    show = (not state.show_japanese) if intent.show is None else intent.show
    return replace(state, show_japanese=show), [Render()]


def _save_cloud_settings(state: AppState, intent: SaveCloudSettings, result: Optional[Outcome]) -> Result:
    config = CloudConfig.from_input(intent.url, intent.anon_key, intent.user_id)
    state = replace(state, cloud_config=config)
    effects: List[Any] = [SaveCloudConfig(config)]
    if not config.enabled:
        return _status(state, CLOUD_NOT_CONFIGURED, error=True), effects
    return _status(state, "Cloud settings saved."), effects


def _load_cloud(state: AppState, intent: LoadCloud, result: Optional[Outcome]) -> Result:
    if result is None:
        if not state.cloud_config.enabled:
            return _status(state, CLOUD_NOT_CONFIGURED, error=True), []
        if "cloud" in state.busy:
            return state, []
        state = _status(state, "Loading from cloud...", busy=state.busy | {"cloud"})
        return state, [FetchCloudItems(state.cloud_config)]

    busy = state.busy - {"cloud"}
    if not result.ok:
        return _status(state, result.error or "Cloud load failed.", error=True, busy=busy), []
    items = tuple(result.value or ())
    state = _status(state, "Loaded from cloud.", busy=busy, items=items)
    return state, [SaveItems(items), Render()]


def _report_error(state: AppState, intent: ReportError, result: Optional[Outcome]) -> Result:
    return _status(state, intent.message, error=True), []


HANDLERS = {
    AddNote: _add_note,
    DeleteNote: _delete_note,
    Translate: _translate,
    GenerateSpeech: _generate_speech,
    PlayNote: _play_note,
    SpeakNote: _speak_note,
    ToggleJapanese: _toggle_japanese,
    SaveCloudSettings: _save_cloud_settings,
    LoadCloud: _load_cloud,
    ReportError: _report_error,
}


def handle(state: AppState, intent: Any, result: Optional[Outcome] = None) -> Result:
    try:
        handler = HANDLERS[type(intent)]
    except KeyError:
        raise ValueError(f"Unknown intent: {intent!r}") from None
    return handler(state, intent, result)

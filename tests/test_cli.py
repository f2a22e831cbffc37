"""
Command line tests. The runtime is built with fake collaborators and
handed to click through ``obj`` so nothing touches the network.
"""

from typing import List, Optional

import pytest
import requests
from click.testing import CliRunner

from english_notebook import notes
from english_notebook.cli import Runtime, SpeechUnavailableError, cli, render_items
from english_notebook.client import NotebookApiError, NotebookClient
from english_notebook.cloud import CloudError, CloudMirror
from english_notebook.notes import CloudConfig, NoteStore, StudyItem
from english_notebook.offline_cache import CACHE_NAME

from conftest import ORIGIN, FakeNetworkCache, shell_routes


class FakeClient:
    def __init__(self, english: str = "Hello.", error: Optional[str] = None) -> None:
        self.english = english
        self.error = error
        self.translated: List[str] = []
        self.synthesized: List[str] = []

    def prepare_offline(self) -> bool:
        return True

    def translate(self, japanese: str) -> str:
        self.translated.append(japanese)
        if self.error:
            raise NotebookApiError(self.error)
        return self.english

    def synthesize(self, english: str) -> str:
        self.synthesized.append(english)
        if self.error:
            raise NotebookApiError(self.error)
        return "data:audio/mpeg;base64,SUQz"


class FakeMirror:
    upserted: List[StudyItem] = []
    deleted: List[str] = []
    remote: List[StudyItem] = []
    fail = False

    def __init__(self, config: CloudConfig) -> None:
        self.config = config

    def upsert_item(self, item: StudyItem) -> None:
        if FakeMirror.fail:
            raise CloudError("Cloud save failed: offline")
        FakeMirror.upserted.append(item)

    def delete_item(self, item_id: str) -> None:
        if FakeMirror.fail:
            raise requests.ConnectionError("offline")
        FakeMirror.deleted.append(item_id)

    def load_items(self) -> List[StudyItem]:
        if FakeMirror.fail:
            raise CloudError("Cloud load failed: offline")
        return list(FakeMirror.remote)


@pytest.fixture(autouse=True)
def reset_mirror():
    FakeMirror.upserted = []
    FakeMirror.deleted = []
    FakeMirror.remote = []
    FakeMirror.fail = False


@pytest.fixture
def played():
    return []


@pytest.fixture
def spoken():
    return []


def make_runtime(client=None, played=None, spoken=None, speaker=None) -> Runtime:
    played = played if played is not None else []
    spoken = spoken if spoken is not None else []
    return Runtime(
        NoteStore(),
        client or FakeClient(),
        mirror_factory=FakeMirror,
        player=played.append,
        speaker=speaker or (lambda text, lang: spoken.append((text, lang))),
    )


def invoke(runtime: Runtime, *args: str):
    return CliRunner().invoke(cli, list(args), obj=runtime)


def test_list_shows_default_sentence():
    result = invoke(make_runtime(), "list")
    assert result.exit_code == 0
    assert "Nice to meet you." in result.output
    assert "はじめまして" in result.output


def test_list_can_hide_japanese():
    result = invoke(make_runtime(), "list", "--hide-japanese")
    assert result.exit_code == 0
    assert "Nice to meet you." in result.output
    assert "はじめまして" not in result.output


def test_add_saves_newest_first():
    result = invoke(make_runtime(), "add", "-j", "おはよう", "-e", "Good morning.")

    assert result.exit_code == 0
    assert "Added." in result.output
    items = NoteStore().load()
    assert (items[0].english, items[0].japanese) == ("Good morning.", "おはよう")


def test_add_with_translation():
    client = FakeClient(english="Good evening.")
    result = invoke(make_runtime(client=client), "add", "-j", "こんばんは", "--translate")

    assert result.exit_code == 0
    assert client.translated == ["こんばんは"]
    assert NoteStore().load()[0].english == "Good evening."


def test_add_with_generated_audio(played):
    result = invoke(make_runtime(played=played), "add", "-j", "ありがとう", "-e", "Thanks.", "--tts")

    assert result.exit_code == 0
    assert played == ["data:audio/mpeg;base64,SUQz"]
    assert NoteStore().load()[0].audio_url == "data:audio/mpeg;base64,SUQz"


def test_add_without_english_fails():
    result = invoke(make_runtime(), "add", "-j", "こんにちは")

    assert result.exit_code == 1
    assert "English is required." in result.output
    assert len(NoteStore().load()) == 1


def test_add_syncs_to_cloud_when_configured():
    notes.save_cloud_config(CloudConfig("https://abc.supabase.co", "anon", "me"))

    result = invoke(make_runtime(), "add", "-j", "はい", "-e", "Yes.")

    assert result.exit_code == 0
    assert "Added and synced to cloud." in result.output
    assert [item.english for item in FakeMirror.upserted] == ["Yes."]


def test_cloud_failure_does_not_undo_add():
    notes.save_cloud_config(CloudConfig("https://abc.supabase.co", "anon", "me"))
    FakeMirror.fail = True

    result = invoke(make_runtime(), "add", "-j", "はい", "-e", "Yes.")

    assert result.exit_code == 0
    assert "Added." in result.output
    assert NoteStore().load()[0].english == "Yes."


def test_delete_by_id_prefix():
    NoteStore().replace([StudyItem("abc12345-x", "Keep?", "残す？"), StudyItem("def67890-y", "Stay.", "いる。")])

    result = invoke(make_runtime(), "delete", "abc123")

    assert result.exit_code == 0
    assert [item.id for item in NoteStore().load()] == ["def67890-y"]


def test_delete_swallows_cloud_errors():
    notes.save_cloud_config(CloudConfig("https://abc.supabase.co", "anon", "me"))
    NoteStore().replace([StudyItem("one", "One.", "一。")])
    FakeMirror.fail = True

    result = invoke(make_runtime(), "delete", "one")

    assert result.exit_code == 0
    assert NoteStore().load() == []


def test_translate_prints_english():
    result = invoke(make_runtime(client=FakeClient(english="Hello.")), "translate", "こんにちは")
    assert result.exit_code == 0
    assert "Hello." in result.output
    assert "Translated." in result.output


def test_translate_reports_server_error():
    client = FakeClient(error="translate failed: quota exceeded")
    result = invoke(make_runtime(client=client), "translate", "こんにちは")

    assert result.exit_code == 1
    assert "translate failed: quota exceeded" in result.output


def test_tts_plays_generated_audio(played):
    result = invoke(make_runtime(played=played), "tts", "Hello.")
    assert result.exit_code == 0
    assert played == ["data:audio/mpeg;base64,SUQz"]


def test_play_needs_audio():
    NoteStore().replace([StudyItem("silent", "Quiet.", "静か。")])
    result = invoke(make_runtime(), "play", "silent")
    assert result.exit_code == 1


def test_speak_uses_on_device_speech(spoken):
    NoteStore().replace([StudyItem("s1", "Read me.", "読んで。")])
    result = invoke(make_runtime(spoken=spoken), "speak", "s1")
    assert result.exit_code == 0
    assert spoken == [("Read me.", "en-US")]


def test_speak_without_synthesizer():
    def unavailable(text, lang):
        raise SpeechUnavailableError("Speech synthesis is not supported on this system.")

    NoteStore().replace([StudyItem("s1", "Read me.", "読んで。")])
    result = invoke(make_runtime(speaker=unavailable), "speak", "s1")

    assert result.exit_code == 1
    assert "not supported" in result.output


def test_cloud_configure_and_load():
    FakeMirror.remote = [StudyItem("r1", "From the cloud.", "クラウドから。")]
    runtime = make_runtime()

    result = invoke(runtime, "cloud", "configure", "--url", "https://abc.supabase.co", "--anon-key", "anon")
    assert result.exit_code == 0
    assert notes.load_cloud_config().user_id == "default-user"

    result = invoke(runtime, "cloud", "load")
    assert result.exit_code == 0
    assert "Loaded from cloud." in result.output
    assert NoteStore().load() == [StudyItem("r1", "From the cloud.", "クラウドから。")]


def test_cloud_load_reports_malformed_rows():
    class RowsSession:
        def request(self, method, url, **kwargs):
            response = requests.Response()
            response.status_code = 200
            response._content = b'{"not": "a list"}'
            return response

    notes.save_cloud_config(CloudConfig("https://abc.supabase.co", "anon", "me"))
    NoteStore().replace([StudyItem("keep", "Keep.", "残す。")])
    runtime = make_runtime()
    runtime.mirror_factory = lambda config: CloudMirror(config, session=RowsSession())

    result = invoke(runtime, "cloud", "load")

    assert result.exit_code == 1
    assert "Cloud load failed" in result.output
    assert [item.id for item in NoteStore().load()] == ["keep"]


def test_cloud_load_without_settings():
    result = invoke(make_runtime(), "cloud", "load")
    assert result.exit_code == 1
    assert "Set Supabase URL and anon key first." in result.output


def test_shell_install_and_offline_fetch():
    cache = FakeNetworkCache(shell_routes())
    runtime = make_runtime(client=NotebookClient(ORIGIN, cache=cache))

    result = invoke(runtime, "shell", "install")
    assert result.exit_code == 0
    assert CACHE_NAME in result.output

    cache.online = False
    result = invoke(runtime, "shell", "fetch", "/styles.css")
    assert result.exit_code == 0
    assert "shell /styles.css" in result.output
    assert "(cache)" in result.output


def test_shell_install_failure_is_reported():
    cache = FakeNetworkCache(shell_routes())
    cache.online = False
    runtime = make_runtime(client=NotebookClient(ORIGIN, cache=cache))

    result = invoke(runtime, "shell", "install")

    assert result.exit_code != 0
    assert "Could not fetch" in result.output


def test_render_items_marks_audio():
    text = render_items([StudyItem("12345678-abcd", "Hi.", "やあ。", "data:x")], show_japanese=False)
    assert "[12345678]" in text
    assert "♪" in text
    assert "やあ" not in text

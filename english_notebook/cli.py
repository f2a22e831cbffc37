import base64
import os
import shutil
import subprocess
import tempfile
from typing import Any, Callable, Optional, Sequence

import click
import requests

from . import controller, db, notes
from .client import DEFAULT_SERVER_URL, NotebookApiError, NotebookClient
from .cloud import CloudError, CloudMirror
from .controller import (
    AddNote, AppState, DeleteNote, GenerateSpeech, LoadCloud, Outcome, PlayNote,
    ReportError, SaveCloudSettings, SpeakNote, Translate, ToggleJapanese,
)
from .notes import NoteStore, StudyItem
from .offline_cache import APP_SHELL, ShellInstallError

DEBUG_MODE = os.getenv("DEBUG", "0") == "1"

SHORT_ID = 8


class SpeechUnavailableError(Exception):
    pass


class AudioPlaybackError(Exception):
    pass


def play_audio(url: str) -> None:
    """Open generated audio with the system's default player."""
    target = url
    if url.startswith("data:"):
        header, _, payload = url.partition(",")
        try:
            audio = base64.b64decode(payload)
        except ValueError as e:
            raise AudioPlaybackError(f"Cannot play audio: {e}") from e
        suffix = ".mp3" if "mpeg" in header else ".audio"
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as handle:
            handle.write(audio)
            target = handle.name
    if click.launch(target) != 0:
        raise AudioPlaybackError("Cannot play audio.")


SPEECH_COMMANDS = (
    ("say", lambda text, lang: ["say", text]),
    ("espeak", lambda text, lang: ["espeak", "-v", lang.lower(), text]),
    ("spd-say", lambda text, lang: ["spd-say", "-w", "-l", lang.split("-")[0], text]),
)


def speak_text(text: str, lang: str = "en-US") -> None:
    """Read text aloud with whichever on-device synthesizer is installed."""
    for name, build in SPEECH_COMMANDS:
        if shutil.which(name):
            try:
                subprocess.run(build(text, lang), check=True)
            except (OSError, subprocess.CalledProcessError) as e:
                raise SpeechUnavailableError(f"Speech synthesis failed: {e}") from e
            return
    raise SpeechUnavailableError("Speech synthesis is not supported on this system.")


def render_items(items: Sequence[StudyItem], show_japanese: bool = True) -> str:
    if not items:
        return "No sentences yet."
    lines = []
    for index, item in enumerate(items, 1):
        audio = " ♪" if item.audio_url else ""
        lines.append(f"{index:>3}. [{item.id[:SHORT_ID]}] {item.english}{audio}")
        if show_japanese:
            lines.append(f"     {item.japanese}")
    return "\n".join(lines)


class Runtime:
    """Owns the application state and runs the effects the controller asks for."""

    def __init__(self, store: NoteStore, client: NotebookClient,
                 mirror_factory: Callable[[notes.CloudConfig], Any] = CloudMirror,
                 player: Callable[[str], None] = play_audio,
                 speaker: Callable[[str, str], None] = speak_text) -> None:
        self.store = store
        self.client = client
        self.mirror_factory = mirror_factory
        self.player = player
        self.speaker = speaker
        self.state = AppState(
            items=tuple(store.load()),
            cloud_config=notes.load_cloud_config(),
        )

    def dispatch(self, intent: Any, result: Optional[Outcome] = None) -> AppState:
        self.state, effects = controller.handle(self.state, intent, result)
        for effect in effects:
            self._run(intent, effect)
        return self.state

    def render(self) -> None:
        click.echo(render_items(self.state.items, self.state.show_japanese))

    def resolve_id(self, prefix: str) -> str:
        """Expand a shortened id as printed by `list`; unknown prefixes pass through."""
        matches = [item.id for item in self.state.items if item.id.startswith(prefix)]
        return matches[0] if len(matches) == 1 else prefix

    def _call(self, intent: Any, func: Callable[[], Any], *errors: type) -> None:
        try:
            value = func()
        except errors as e:
            self.dispatch(intent, Outcome(error=str(e)))
        else:
            self.dispatch(intent, Outcome(value=value))

    def _run(self, intent: Any, effect: Any) -> None:
        if isinstance(effect, controller.SaveItems):
            self.store.replace(effect.items)
        elif isinstance(effect, controller.SaveCloudConfig):
            notes.save_cloud_config(effect.config)
        elif isinstance(effect, controller.Render):
            self.render()
        elif isinstance(effect, controller.UpsertCloudItem):
            self._call(intent, lambda: self.mirror_factory(effect.config).upsert_item(effect.item),
                       CloudError, requests.RequestException)
        elif isinstance(effect, controller.DeleteCloudItem):
            try:
                self.mirror_factory(effect.config).delete_item(effect.item_id)
            except (CloudError, requests.RequestException) as e:
                if DEBUG_MODE:
                    print(f"⚠️ Cloud delete skipped: {e}")
        elif isinstance(effect, controller.FetchCloudItems):
            self._call(intent, lambda: self.mirror_factory(effect.config).load_items(),
                       CloudError, requests.RequestException)
        elif isinstance(effect, controller.RequestTranslation):
            self.client.prepare_offline()
            self._call(intent, lambda: self.client.translate(effect.japanese),
                       NotebookApiError, requests.RequestException)
        elif isinstance(effect, controller.RequestSpeech):
            self.client.prepare_offline()
            self._call(intent, lambda: self.client.synthesize(effect.english),
                       NotebookApiError, requests.RequestException)
        elif isinstance(effect, controller.PlayAudio):
            try:
                self.player(effect.url)
            except (AudioPlaybackError, OSError):
                message = "Cannot play audio."
                if isinstance(intent, GenerateSpeech):
                    message = "Voice generated, but it could not be played."
                self.dispatch(ReportError(message))
        elif isinstance(effect, controller.SpeakText):
            try:
                self.speaker(effect.text, effect.lang)
            except SpeechUnavailableError as e:
                self.dispatch(ReportError(str(e)))
        else:
            raise ValueError(f"Unknown effect: {effect!r}")


def _finish(ctx: click.Context, runtime: Runtime) -> None:
    state = runtime.state
    if state.status:
        if state.status_is_error:
            click.secho(state.status, fg="red", err=True)
            ctx.exit(1)
        click.echo(state.status)


@click.group()
@click.option("--server", envvar="NOTEBOOK_SERVER_URL", default=DEFAULT_SERVER_URL,
              show_default=True, help="Notebook server URL")
@click.pass_context
def cli(ctx: click.Context, server: str) -> None:
    """Personal English study notebook."""
    if ctx.obj is None:
        if not db.is_db_initialized():
            db.init_db()
        ctx.obj = Runtime(NoteStore(), NotebookClient(server))


@cli.command("list")
@click.option("--hide-japanese", is_flag=True, help="Hide the Japanese column")
@click.pass_obj
def list_items(runtime: Runtime, hide_japanese: bool) -> None:
    """Show every saved sentence, newest first."""
    if hide_japanese:
        runtime.dispatch(ToggleJapanese(show=False))
    else:
        runtime.render()


@cli.command("add")
@click.option("--japanese", "-j", required=True, help="Japanese sentence")
@click.option("--english", "-e", default="", help="English sentence")
@click.option("--translate", "use_translate", is_flag=True, help="Fill in the English with the AI translation")
@click.option("--tts", "use_tts", is_flag=True, help="Generate audio for the English sentence")
@click.pass_context
def add_item(ctx: click.Context, japanese: str, english: str, use_translate: bool, use_tts: bool) -> None:
    """Add a sentence pair to the top of the list."""
    runtime: Runtime = ctx.obj
    if use_translate and not english.strip():
        state = runtime.dispatch(Translate(japanese))
        if state.status_is_error:
            _finish(ctx, runtime)
        english = state.draft_english
    if use_tts:
        state = runtime.dispatch(GenerateSpeech(english))
        if state.status_is_error and not state.generated_audio_url:
            _finish(ctx, runtime)
    runtime.dispatch(AddNote(english, japanese))
    _finish(ctx, runtime)


@cli.command("delete")
@click.argument("item_id")
@click.pass_context
def delete_item(ctx: click.Context, item_id: str) -> None:
    """Delete a sentence by id (or the id prefix shown by `list`)."""
    runtime: Runtime = ctx.obj
    runtime.dispatch(DeleteNote(runtime.resolve_id(item_id)))
    _finish(ctx, runtime)


@cli.command("translate")
@click.argument("japanese")
@click.pass_context
def translate(ctx: click.Context, japanese: str) -> None:
    """Translate Japanese into natural spoken English."""
    runtime: Runtime = ctx.obj
    state = runtime.dispatch(Translate(japanese))
    if not state.status_is_error:
        click.echo(state.draft_english)
    _finish(ctx, runtime)


@cli.command("tts")
@click.argument("english")
@click.pass_context
def tts(ctx: click.Context, english: str) -> None:
    """Generate and play AI speech for an English sentence."""
    runtime: Runtime = ctx.obj
    runtime.dispatch(GenerateSpeech(english))
    _finish(ctx, runtime)


@cli.command("play")
@click.argument("item_id")
@click.pass_context
def play(ctx: click.Context, item_id: str) -> None:
    """Play the generated audio saved with a sentence."""
    runtime: Runtime = ctx.obj
    runtime.dispatch(PlayNote(runtime.resolve_id(item_id)))
    _finish(ctx, runtime)


@cli.command("speak")
@click.argument("item_id")
@click.pass_context
def speak(ctx: click.Context, item_id: str) -> None:
    """Read a sentence aloud with on-device speech synthesis."""
    runtime: Runtime = ctx.obj
    runtime.dispatch(SpeakNote(runtime.resolve_id(item_id)))
    _finish(ctx, runtime)


@cli.group("cloud")
def cloud() -> None:
    """Supabase mirror settings and sync."""


@cloud.command("configure")
@click.option("--url", default="", help="Supabase project URL")
@click.option("--anon-key", default="", help="Supabase anon key")
@click.option("--user-id", default="", help="Row owner id (default: default-user)")
@click.pass_context
def cloud_configure(ctx: click.Context, url: str, anon_key: str, user_id: str) -> None:
    """Save the cloud connection settings."""
    runtime: Runtime = ctx.obj
    runtime.dispatch(SaveCloudSettings(url, anon_key, user_id))
    _finish(ctx, runtime)


@cloud.command("load")
@click.pass_context
def cloud_load(ctx: click.Context) -> None:
    """Replace the local list with the cloud copy."""
    runtime: Runtime = ctx.obj
    runtime.dispatch(LoadCloud())
    _finish(ctx, runtime)


@cli.group("shell")
def shell() -> None:
    """Offline copy of the application shell."""


@shell.command("install")
@click.pass_obj
def shell_install(runtime: Runtime) -> None:
    """Download the shell into the offline cache and drop older versions."""
    cache = runtime.client.cache
    try:
        stored = cache.install()
    except ShellInstallError as e:
        raise click.ClickException(str(e))
    removed = cache.activate()
    click.echo(f"Cached {stored} of {len(APP_SHELL)} shell resources in {cache.cache_name}.")
    for name in removed:
        click.echo(f"Removed old cache {name}.")


@shell.command("fetch")
@click.argument("path")
@click.option("--navigate", is_flag=True, help="Fetch as a page navigation (network first)")
@click.option("--output", "-o", type=click.Path(dir_okay=False, writable=True), help="Write the body to a file")
@click.pass_obj
def shell_fetch(runtime: Runtime, path: str, navigate: bool, output: Optional[str]) -> None:
    """GET a path through the offline cache."""
    runtime.client.prepare_offline()
    try:
        response = runtime.client.get(path, navigate=navigate)
    except requests.RequestException as e:
        raise click.ClickException(f"{path} is not available offline: {e}")
    source = "cache" if getattr(response, "from_cache", False) else "network"
    click.echo(f"{response.status_code} {path} ({source})", err=True)
    if output:
        with open(output, "wb") as handle:
            handle.write(response.content)
    else:
        click.echo(response.text)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

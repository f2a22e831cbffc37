import os
from typing import Any, Iterable, Optional

DEBUG_MODE = os.getenv("DEBUG", "0") == "1"

TRANSLATE_SYSTEM_PROMPT = (
    "You are an expert English tutor. Translate Japanese into natural spoken "
    "English for learners. Return only the English sentence."
)


def _field(obj: Any, name: str) -> Any:
    """Read a field from either a decoded JSON dict or an SDK response object."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _text_from_output_text(data: Any) -> Optional[str]:
    text = _field(data, "output_text")
    return None if _blank(text) else text.strip()


def _text_from_output_blocks(data: Any) -> Optional[str]:
    output = _field(data, "output")
    if not isinstance(output, (list, tuple)):
        return None
    for item in output:
        contents = _field(item, "content")
        if not isinstance(contents, (list, tuple)):
            continue
        for content in contents:
            text = _field(content, "text")
            if not _blank(text):
                return text.strip()
    return None


DECODERS = (_text_from_output_text, _text_from_output_blocks)


def decode_response_text(data: Any, decoders: Iterable = DECODERS) -> str:
    """
    Pull the answer text out of a Responses API result.

    Tries the aggregated ``output_text`` field first, then scans
    ``output[].content[]`` for the first non-blank text block. Returns an
    empty string when neither shape carries any text.
    """
    for decode in decoders:
        text = decode(data)
        if text:
            return text
    return ""


def translate_to_english(client: Any, japanese: str, model: str) -> str:
    """Ask the model for a natural English rendering of a Japanese sentence."""
    if DEBUG_MODE:
        print(f"🤖 OpenAI translate call:")
        print(f"   Model: {model}")
        print(f"   Input length: {len(japanese)} characters")

    response = client.responses.create(
        model=model,
        input=[
            {"role": "system", "content": TRANSLATE_SYSTEM_PROMPT},
            {"role": "user", "content": japanese},
        ],
    )
    english = decode_response_text(response)

    if DEBUG_MODE:
        print(f"✅ OpenAI translate response: {len(english)} characters")
    return english


def synthesize_speech(client: Any, english: str, model: str, voice: str) -> bytes:
    """Generate MP3 audio for an English sentence."""
    if DEBUG_MODE:
        print(f"🔊 OpenAI speech call: model={model} voice={voice} chars={len(english)}")

    response = client.audio.speech.create(
        model=model,
        voice=voice,
        input=english,
        response_format="mp3",
    )
    return response.read()

#!/usr/bin/env python3
"""
English Study Notebook - Flask Web Server
Serves the notebook shell and proxies translation and text-to-speech
requests to the OpenAI API so the API key never reaches the browser.
"""

import os
import argparse
from pathlib import Path
from typing import Any, Optional, Tuple

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, send_from_directory

import openai
from openai import OpenAI

from english_notebook import tutor

BASE_DIR = Path(__file__).resolve().parent
STATIC_DIR = BASE_DIR / "static"

# Values already present in the environment win over the .env file
load_dotenv(BASE_DIR / ".env", override=False)

DEBUG = os.environ.get("DEBUG", "0") == "1"

TRANSLATE_MODEL = os.environ.get("OPENAI_TRANSLATE_MODEL", "gpt-4o-mini")
TTS_MODEL = os.environ.get("OPENAI_TTS_MODEL", "gpt-4o-mini-tts")
TTS_VOICE = os.environ.get("OPENAI_TTS_VOICE", "alloy")
OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL") or None

# Global OpenAI client, rebuilt when the key changes
client: Optional[OpenAI] = None


def get_api_key() -> str:
    return str(os.environ.get("OPENAI_API_KEY") or "").strip()


def get_client(api_key: str) -> Any:
    """Return an OpenAI client for the key; upstream calls are never retried."""
    global client
    if client is None or client.api_key != api_key:
        client = OpenAI(api_key=api_key, base_url=OPENAI_BASE_URL, max_retries=0)
        if DEBUG:
            print(f"✅ OpenAI client initialized (translate={TRANSLATE_MODEL}, tts={TTS_MODEL}/{TTS_VOICE})")
    return client


def error_response(message: str, status: int) -> Tuple[Response, int]:
    return jsonify({"error": message}), status


def missing_key_response() -> Tuple[Response, int]:
    return error_response("OPENAI_API_KEY is not set. Set it in env or .env.", 500)


def required_field(name: str) -> str:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    return str(data.get(name) or "").strip()


def upstream_error_text(error: openai.APIStatusError) -> str:
    return error.response.text or str(error)


app = Flask(__name__, static_folder=str(STATIC_DIR), static_url_path="")
app.config["MAX_CONTENT_LENGTH"] = 3 * 1024 * 1024  # 3MB JSON bodies


@app.route("/api/translate", methods=["POST"])
def api_translate() -> Any:
    """Translate Japanese into natural spoken English."""
    api_key = get_api_key()
    if not api_key:
        return missing_key_response()

    japanese = required_field("japanese")
    if not japanese:
        return error_response("japanese is required.", 400)

    try:
        english = tutor.translate_to_english(get_client(api_key), japanese, TRANSLATE_MODEL)
    except openai.APIStatusError as e:
        return error_response(f"translate failed: {upstream_error_text(e)}", 500)
    except Exception as e:
        if DEBUG:
            print(f"❌ Translate error: {e}")
        return error_response(f"translate error: {e}", 500)

    if not english:
        return error_response(
            "Translate succeeded but no text was returned. Check model response format.", 500
        )
    return jsonify({"english": english})


@app.route("/api/tts", methods=["POST"])
def api_tts() -> Any:
    """Generate MP3 speech for an English sentence."""
    api_key = get_api_key()
    if not api_key:
        return missing_key_response()

    english = required_field("english")
    if not english:
        return error_response("english is required.", 400)

    try:
        audio = tutor.synthesize_speech(get_client(api_key), english, TTS_MODEL, TTS_VOICE)
    except openai.APIStatusError as e:
        return error_response(f"tts failed: {upstream_error_text(e)}", 500)
    except Exception as e:
        if DEBUG:
            print(f"❌ TTS error: {e}")
        return error_response(f"tts error: {e}", 500)

    return Response(audio, mimetype="audio/mpeg")


@app.route("/")
def index() -> Any:
    return send_from_directory(STATIC_DIR, "index.html")


@app.route("/healthz")
def healthz() -> Any:
    return jsonify({"ok": True}), 200


def main(argv: Optional[list] = None) -> None:
    global DEBUG

    parser = argparse.ArgumentParser(description="English Study Notebook server")
    parser.add_argument("--host", default=os.environ.get("HOST", "0.0.0.0"), help="Host to bind to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", "3000")), help="Port to bind to (default: 3000)")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    args = parser.parse_args(argv)

    if args.debug:
        DEBUG = True
        tutor.DEBUG_MODE = True

    if not get_api_key():
        print("⚠️  OPENAI_API_KEY is not set. Translation and voice generation will fail.")

    print(f"🚀 Server running: http://{args.host}:{args.port}")
    app.run(debug=DEBUG, host=args.host, port=args.port)


if __name__ == "__main__":
    main()

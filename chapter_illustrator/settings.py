"""
Configuration read from the environment (and a local .env file).

Each getter returns a plain dict so callers can log or override single values.
"""

import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_STYLE = (
    "Style: Studio Ghibli warmth, Pixar quality, child-friendly, vibrant colors, "
    "magical lighting. NO TEXT in the image."
)

_dotenv_loaded = False


def _ensure_dotenv():
    global _dotenv_loaded
    if not _dotenv_loaded:
        load_dotenv()
        _dotenv_loaded = True


def _env_number(name: str, default, cast=float, minimum=None):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("Ignoring %s=%r below %s, using %s", name, raw, minimum, default)
        return default
    return value


def get_text_image_provider() -> str:
    """Return the text-to-image backend: 'openai' (default) or 'gemini'."""
    _ensure_dotenv()
    provider = os.getenv("TEXT_IMAGE_PROVIDER", "openai").strip().lower()
    if provider in {"gemini", "google", "google-genai"}:
        return "gemini"
    return "openai"


def get_openai_config() -> dict:
    _ensure_dotenv()
    return {
        "api_key": os.getenv("OPENAI_API_KEY"),
        "model": os.getenv("OPENAI_IMAGE_MODEL") or "dall-e-3",
        "quality": os.getenv("OPENAI_IMAGE_QUALITY") or "hd",
        "timeout": _env_number("IMAGE_REQUEST_TIMEOUT", 60.0),
    }


def get_gemini_config() -> dict:
    _ensure_dotenv()
    return {
        "api_key": os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
        "model": os.getenv("GEMINI_IMAGE_MODEL") or "gemini-2.5-flash-image",
        "timeout": _env_number("IMAGE_REQUEST_TIMEOUT", 60.0),
    }


def get_generation_config() -> dict:
    """Pacing and retry settings for a generation run."""
    _ensure_dotenv()
    return {
        "delay": _env_number("GENERATION_DELAY", 3.0, minimum=0),
        "retry_max_attempts": _env_number("RETRY_MAX_ATTEMPTS", 3, cast=int, minimum=1),
        "retry_delay": _env_number("RETRY_DELAY", 3.0, minimum=0),
        "style": os.getenv("IMAGE_STYLE") or DEFAULT_STYLE,
    }


def get_content_root() -> str:
    _ensure_dotenv()
    return os.getenv("CONTENT_ROOT") or "."


def get_log_file() -> str | None:
    _ensure_dotenv()
    return os.getenv("LOG_FILE") or None

"""
Image synthesis backends.

Two backends are supported:

- OpenAI DALL-E (openai SDK) for plain text-to-image illustrations
- Google Gemini (google-genai SDK) for text-to-image and for images that must
  keep a character consistent with one or more reference images

Both raise ``TransientGenerationError`` when a call produced no usable image
and ``PermanentGenerationError`` for failures retrying won't fix.
"""

import base64
import logging
from io import BytesIO
from pathlib import Path

import httpx
import openai
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from PIL import Image

from .errors import PermanentGenerationError, TransientGenerationError
from .settings import get_gemini_config, get_openai_config, get_text_image_provider

logger = logging.getLogger(__name__)

# DALL-E 3 only accepts these three sizes.
OPENAI_SIZES = {
    "landscape": "1792x1024",
    "portrait": "1024x1792",
    "square": "1024x1024",
}

GEMINI_SIZE_LINES = {
    "landscape": "Wide landscape composition.",
    "portrait": "Tall portrait composition.",
    "square": "Square composition, subject centered.",
}

_PIL_SAVE_FORMATS = {".jpg": "JPEG", ".jpeg": "JPEG", ".png": "PNG", ".webp": "WEBP"}


def _is_transient_status(status) -> bool:
    return status == 429 or (isinstance(status, int) and status >= 500)


def guess_mime_type(data: bytes) -> str:
    """Best-effort MIME type for image bytes; defaults to JPEG."""
    try:
        with Image.open(BytesIO(data)) as img:
            return Image.MIME.get(img.format, "image/jpeg")
    except Exception:
        return "image/jpeg"


def convert_for_path(data: bytes, path) -> bytes:
    """Re-encode image bytes to match the target file's extension.

    DALL-E returns PNG and Gemini may return PNG or JPEG; chapter files name
    their images ``*.jpg``.
    """
    fmt = _PIL_SAVE_FORMATS.get(Path(path).suffix.lower())
    if fmt is None:
        return data
    try:
        img = Image.open(BytesIO(data))
        if img.format == fmt:
            return data
        if fmt == "JPEG" and img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        out = BytesIO()
        img.save(out, fmt, **({"quality": 92} if fmt == "JPEG" else {}))
        return out.getvalue()
    except Exception as e:
        raise PermanentGenerationError(f"Service returned undecodable image data: {e}") from e


class OpenAIImageService:
    """Text-to-image via the OpenAI Images API."""

    name = "openai"

    def __init__(self, api_key: str, model: str = "dall-e-3", quality: str = "hd", timeout: float = 60.0):
        # Retries are handled by call_with_retry, not by the SDK.
        self.client = openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.quality = quality

    def generate_from_text(self, prompt_text: str, size_hint: str = "landscape") -> bytes:
        size = OPENAI_SIZES.get(size_hint, OPENAI_SIZES["landscape"])
        try:
            resp = self.client.images.generate(
                model=self.model,
                prompt=prompt_text,
                n=1,
                size=size,
                quality=self.quality,
                response_format="b64_json",
            )
        except openai.APIStatusError as e:
            if _is_transient_status(e.status_code):
                raise TransientGenerationError(f"OpenAI returned {e.status_code}: {e.message}") from e
            raise PermanentGenerationError(f"OpenAI returned {e.status_code}: {e.message}") from e
        except openai.APIError as e:
            raise PermanentGenerationError(f"OpenAI request failed: {e}") from e

        if not resp or not getattr(resp, "data", None):
            raise TransientGenerationError("OpenAI returned no image data")

        b64_json = getattr(resp.data[0], "b64_json", None)
        if not b64_json:
            raise TransientGenerationError("OpenAI response had no b64_json payload")
        return base64.b64decode(b64_json)

    def generate_from_reference(self, prompt_text: str, reference_images: list[bytes]) -> bytes:
        raise PermanentGenerationError("OpenAI backend does not support reference images")


class GeminiImageService:
    """Text-to-image and reference-conditioned image generation via Gemini."""

    name = "gemini"

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash-image", timeout: float = 60.0):
        self.client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout * 1000)),
        )
        self.model = model

    def _generate(self, contents) -> bytes:
        config = types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"])
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as e:
            if _is_transient_status(e.code):
                raise TransientGenerationError(f"Gemini returned {e.code}: {e.message}") from e
            raise PermanentGenerationError(f"Gemini returned {e.code}: {e.message}") from e
        except httpx.HTTPError as e:
            # Connection and timeout failures surface from the SDK's transport unwrapped.
            raise PermanentGenerationError(f"Gemini request failed: {e}") from e

        return self._extract_image(response)

    @staticmethod
    def _extract_image(response) -> bytes:
        if not response or not response.candidates:
            raise TransientGenerationError("Gemini returned no candidates")

        content = response.candidates[0].content
        parts = content.parts if content and content.parts else []
        text_preview = ""
        for part in parts:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                return inline.data
            if getattr(part, "text", None):
                text_preview = part.text[:100]

        if text_preview:
            raise TransientGenerationError(f"Gemini answered with text only: {text_preview}")
        raise TransientGenerationError("Gemini response contained no image")

    def generate_from_text(self, prompt_text: str, size_hint: str = "landscape") -> bytes:
        size_line = GEMINI_SIZE_LINES.get(size_hint, GEMINI_SIZE_LINES["landscape"])
        return self._generate(f"{prompt_text}\n\n{size_line}")

    def generate_from_reference(self, prompt_text: str, reference_images: list[bytes]) -> bytes:
        if not reference_images:
            raise PermanentGenerationError("No reference image supplied")
        contents = [prompt_text]
        for data in reference_images:
            contents.append(types.Part.from_bytes(data=data, mime_type=guess_mime_type(data)))
        return self._generate(contents)


class ImageRouter:
    """Sends text-only prompts to one backend and reference prompts to another."""

    def __init__(self, text_service, reference_service=None):
        self.text_service = text_service
        self.reference_service = reference_service

    def describe(self, with_reference: bool) -> str:
        service = self.reference_service if with_reference else self.text_service
        return getattr(service, "name", type(service).__name__) if service else "unconfigured"

    def generate_from_text(self, prompt_text: str, size_hint: str = "landscape") -> bytes:
        return self.text_service.generate_from_text(prompt_text, size_hint)

    def generate_from_reference(self, prompt_text: str, reference_images: list[bytes]) -> bytes:
        if self.reference_service is None:
            raise PermanentGenerationError(
                "Reference generation needs Gemini; set GEMINI_API_KEY in .env"
            )
        return self.reference_service.generate_from_reference(prompt_text, reference_images)


def setup_services() -> ImageRouter:
    """
    Build the image backends from environment configuration.

    TEXT_IMAGE_PROVIDER picks the text-to-image backend (openai by default);
    reference images always go to Gemini.

    Raises:
        ValueError: if neither OPENAI_API_KEY nor GEMINI_API_KEY is set
    """
    openai_cfg = get_openai_config()
    gemini_cfg = get_gemini_config()

    gemini = None
    if gemini_cfg["api_key"]:
        gemini = GeminiImageService(
            api_key=gemini_cfg["api_key"],
            model=gemini_cfg["model"],
            timeout=gemini_cfg["timeout"],
        )
        logger.info("Gemini image backend configured (model=%s)", gemini_cfg["model"])
    else:
        logger.warning("GEMINI_API_KEY not set: sections with character references will fail")

    provider = get_text_image_provider()
    text_service = None
    if provider == "openai" and openai_cfg["api_key"]:
        text_service = OpenAIImageService(
            api_key=openai_cfg["api_key"],
            model=openai_cfg["model"],
            quality=openai_cfg["quality"],
            timeout=openai_cfg["timeout"],
        )
        logger.info("OpenAI image backend configured (model=%s)", openai_cfg["model"])
    elif gemini is not None:
        if provider == "openai":
            logger.warning("OPENAI_API_KEY not set, using Gemini for text-to-image")
        text_service = gemini

    if text_service is None:
        raise ValueError("API key is required: set OPENAI_API_KEY and/or GEMINI_API_KEY in .env")

    return ImageRouter(text_service, gemini)

from io import BytesIO

import pytest
import yaml
from PIL import Image

from chapter_illustrator.content_store import ContentStore
from chapter_illustrator.errors import PermanentGenerationError, TransientGenerationError


def png_bytes(color="red", size=(16, 12)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, "PNG")
    return buf.getvalue()


class FakeServices:
    """Records calls; fails sections whose prompt mentions a configured marker."""

    def __init__(self, fail_on=(), transient_failures=0):
        self.calls = []
        self.fail_on = tuple(fail_on)
        self.transient_failures = transient_failures

    def _maybe_fail(self, prompt):
        if self.transient_failures:
            self.transient_failures -= 1
            raise TransientGenerationError("text-only response")
        for marker in self.fail_on:
            if marker in prompt:
                raise PermanentGenerationError(f"refused: {marker}")

    def generate_from_text(self, prompt_text, size_hint="landscape"):
        self.calls.append(("text", prompt_text, size_hint))
        self._maybe_fail(prompt_text)
        return png_bytes("red")

    def generate_from_reference(self, prompt_text, reference_images):
        self.calls.append(("reference", prompt_text, list(reference_images)))
        self._maybe_fail(prompt_text)
        return png_bytes("blue")


def write_chapter(root, chapter_id, data):
    path = root / "chapters" / f"{chapter_id}.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")
    return path


BEAVERS = {
    "meta": {
        "id": "beavers",
        "title": {"en": "The Busy Beavers", "es": "Los castores", "ru": "Бобры"},
        "subtitle": {"en": "Builders of the river"},
        "issueNumber": 3,
    },
    "imageGeneration": {"style": "Watercolor, soft light. NO TEXT in the image."},
    "sections": [
        {
            "id": "hero-river",
            "image": "hero-river.jpg",
            "title": {"en": "The River", "es": "El río"},
            "imageAlt": {"en": "A calm river at dawn"},
        },
        {
            "id": "teamwork-lifting",
            "image": "teamwork-lifting.jpg",
            "action": "lifting a log together",
            "use_characters": ["${meet-baby-beaver.image}", "${papa-beaver-arrives.image}"],
        },
        {
            "id": "meet-baby-beaver",
            "image": "baby-beaver-portrait.jpg",
            "generate_character": True,
            "imageAlt": {"en": "A baby beaver portrait"},
            "content": {"en": "Meet Baby Beaver.", "es": "Conoce al castor bebé."},
        },
        {
            "id": "papa-beaver-arrives",
            "image": "papa-beaver.jpg",
            "generate_character": True,
            "imageAlt": {"en": "Papa beaver portrait"},
        },
        {
            "id": "gathering-sticks",
            "image": "gathering-sticks.jpg",
            "use_character": "${meet-baby-beaver.image}",
            "action": "gathering sticks by the bank",
        },
        {"id": "secret-notes", "hidden": True, "image": "secret.jpg"},
        {"id": "intro-text", "content": {"en": "Beavers build dams."}},
    ],
    "funFacts": {"facts": [{"title": {"en": "Teeth"}, "content": {"en": "Their teeth never stop growing."}}]},
}


@pytest.fixture
def store(tmp_path):
    return ContentStore(tmp_path)


@pytest.fixture
def beavers(tmp_path, store):
    write_chapter(tmp_path, "beavers", BEAVERS)
    return store.load("beavers")


@pytest.fixture
def services():
    return FakeServices()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("LOG_FILE", "CONTENT_ROOT", "GENERATION_DELAY", "RETRY_DELAY", "RETRY_MAX_ATTEMPTS"):
        monkeypatch.delenv(name, raising=False)

from types import SimpleNamespace

import httpx
import pytest
from PIL import Image

from chapter_illustrator.content_store import Chapter
from chapter_illustrator.errors import CircularDependencyError
from chapter_illustrator.image_services import GeminiImageService, ImageRouter
from chapter_illustrator.recursive_generator import (
    RecursiveImageGenerator,
    build_prompt,
    chapter_style,
    size_hint,
)
from chapter_illustrator.resolver import ArtifactRegistry, resolve
from chapter_illustrator.retry import RetryPolicy
from chapter_illustrator.sections import sections_from_list

from .conftest import FakeServices, png_bytes


def make_generator(services, store, sleeps=None):
    sleep = sleeps.append if sleeps is not None else (lambda s: None)
    return RecursiveImageGenerator(
        services, store, retry_policy=RetryPolicy(max_attempts=2, delay=0), delay=3.0, sleep=sleep
    )


def chapter(*sections):
    return Chapter(id="test", sections=sections_from_list(list(sections)))


def test_reference_section_gets_generated_dependency(store):
    services = FakeServices()
    ch = chapter({"id": "a", "image": "a.jpg"}, {"id": "b", "image": "b.jpg", "reference": "a"})
    summary = make_generator(services, store).process_chapter(ch)

    assert summary.order == ["a", "b"]
    assert summary.generated == ["a", "b"]
    assert summary.ok
    assert [c[0] for c in services.calls] == ["text", "reference"]

    a_path = store.image_dir(ch) / "a.jpg"
    assert summary.registry.get("a") == a_path
    assert summary.resolutions["b"].available == {"a": a_path}
    # The reference call receives the bytes written for "a".
    assert services.calls[1][2] == [a_path.read_bytes()]


def test_written_files_match_extension(store):
    ch = chapter({"id": "a", "image": "a.jpg"}, {"id": "p", "image": "p.png"})
    make_generator(FakeServices(), store).process_chapter(ch)
    image_dir = store.image_dir(ch)
    with Image.open(image_dir / "a.jpg") as img:
        assert img.format == "JPEG"
    with Image.open(image_dir / "p.png") as img:
        assert img.format == "PNG"


def test_dangling_reference_fails_after_second_pass(store):
    services = FakeServices()
    ch = chapter(
        {"id": "c", "image": "c.jpg", "reference": "missing-id"},
        {"id": "d", "image": "d.jpg"},
        {"id": "e", "image": "e.jpg", "reference": "d"},
    )
    summary = make_generator(services, store).process_chapter(ch)

    assert "c" in summary.failed
    assert "missing-id" in summary.failed["c"]
    assert summary.generated == ["d", "e"]
    assert summary.regenerated == []
    assert not summary.ok
    assert not (store.image_dir(ch) / "c.jpg").exists()
    assert len(services.calls) == 2


def test_failed_dependency_defers_then_fails_dependent(store):
    services = FakeServices(fail_on=["portrait of papa"])
    ch = chapter(
        {"id": "papa", "image": "papa.jpg", "imageAlt": {"en": "portrait of papa"}},
        {"id": "scene", "image": "scene.jpg", "use_character": "${papa.image}"},
        {"id": "river", "image": "river.jpg"},
    )
    summary = make_generator(services, store).process_chapter(ch)
    assert set(summary.failed) == {"papa", "scene"}
    assert summary.failed["scene"] == "missing references: papa"
    assert summary.generated == ["river"]


def test_existing_images_are_skipped_and_registered(store):
    services = FakeServices()
    ch = chapter(
        {"id": "baby", "image": "baby.jpg", "generate_character": True},
        {"id": "swim", "image": "swim.jpg", "reference": "baby"},
    )
    existing = store.write(store.image_dir(ch) / "baby.jpg", png_bytes("green"))

    sleeps = []
    summary = make_generator(services, store, sleeps).process_chapter(ch)
    assert summary.skipped == ["baby"]
    assert summary.generated == ["swim"]
    assert summary.characters == ["baby"]
    assert services.calls[0][0] == "reference"
    assert services.calls[0][2] == [existing.read_bytes()]
    # pacing only after real generations
    assert sleeps == [3.0]


def test_force_regenerates_existing(store):
    services = FakeServices()
    ch = chapter({"id": "a", "image": "a.jpg"})
    store.write(store.image_dir(ch) / "a.jpg", b"old")
    summary = make_generator(services, store).process_chapter(ch, force=True)
    assert summary.generated == ["a"]
    assert (store.image_dir(ch) / "a.jpg").read_bytes() != b"old"


def test_text_only_sections_are_not_counted(store):
    services = FakeServices()
    ch = chapter({"id": "intro", "content": {"en": "Hello"}}, {"id": "a", "image": "a.jpg"})
    summary = make_generator(services, store).process_chapter(ch)
    assert summary.order == ["intro", "a"]
    assert summary.counts()["generated"] == 1
    assert summary.ok


def test_reference_to_text_only_section_fails(store):
    ch = chapter({"id": "intro"}, {"id": "a", "image": "a.jpg", "reference": "intro"})
    summary = make_generator(FakeServices(), store).process_chapter(ch)
    assert "a" in summary.failed


def test_cycle_aborts_before_any_call(store):
    services = FakeServices()
    ch = chapter({"id": "a", "image": "a.jpg", "reference": "b"}, {"id": "b", "image": "b.jpg", "reference": "a"})
    with pytest.raises(CircularDependencyError):
        make_generator(services, store).process_chapter(ch)
    assert services.calls == []


def test_transient_errors_are_retried(store):
    services = FakeServices(transient_failures=1)
    ch = chapter({"id": "a", "image": "a.jpg"})
    summary = make_generator(services, store).process_chapter(ch)
    assert summary.generated == ["a"]
    assert len(services.calls) == 2


def test_retry_exhaustion_is_isolated(store):
    services = FakeServices(transient_failures=2)
    ch = chapter({"id": "a", "image": "a.jpg"}, {"id": "b", "image": "b.jpg"})
    summary = make_generator(services, store).process_chapter(ch)
    assert "a" in summary.failed
    assert summary.generated == ["b"]


def test_multiple_references_send_all_images(store, beavers):
    services = FakeServices()
    summary = make_generator(services, store).process_chapter(beavers)

    assert summary.order.index("meet-baby-beaver") < summary.order.index("teamwork-lifting")
    assert summary.order.index("papa-beaver-arrives") < summary.order.index("teamwork-lifting")
    assert sorted(summary.characters) == ["meet-baby-beaver", "papa-beaver-arrives"]
    assert summary.ok

    teamwork = [c for c in services.calls if "lifting a log" in c[1]]
    assert len(teamwork) == 1
    assert teamwork[0][0] == "reference"
    assert len(teamwork[0][2]) == 2
    assert "Watercolor" in teamwork[0][1]


def test_plan_makes_no_calls(store, beavers):
    generator = RecursiveImageGenerator(None, store)
    steps = generator.plan(beavers)

    assert [s["id"] for s in steps][:3] == ["hero-river", "meet-baby-beaver", "papa-beaver-arrives"]
    assert all(s["action"] == "generate" for s in steps)
    assert not (store.image_dir(beavers)).exists()
    teamwork = next(s for s in steps if s["id"] == "teamwork-lifting")
    assert teamwork["service"] == "reference"


def test_plan_reports_unresolvable_and_existing(store):
    ch = chapter({"id": "a", "image": "a.jpg"}, {"id": "c", "image": "c.jpg", "reference": "nope"})
    store.write(store.image_dir(ch) / "a.jpg", b"x")
    steps = {s["id"]: s for s in RecursiveImageGenerator(None, store).plan(ch)}
    assert steps["a"]["action"] == "skip"
    assert steps["c"]["action"] == "fail"
    assert steps["c"]["unresolved"] == ["nope"]


def test_prompts_and_size_hints():
    sections = sections_from_list(
        [
            {"id": "baby", "generate_character": True, "imageAlt": {"en": "Baby beaver"}},
            {"id": "swim", "reference": "baby", "action": "swimming", "title": {"en": "Swim"}},
            {"id": "map", "imageType": "vertical"},
        ]
    )
    registry = ArtifactRegistry()
    registry.register("baby", "baby.jpg")

    text_prompt = build_prompt(resolve(sections[0], registry), "STYLE")
    assert text_prompt.startswith("Create: Baby beaver")
    assert text_prompt.rstrip().endswith("STYLE")

    ref_prompt = build_prompt(resolve(sections[1], registry), "STYLE")
    assert "reference image, show: swimming" in ref_prompt
    assert "Scene: Swim" in ref_prompt

    assert size_hint(sections[0]) == "square"
    assert size_hint(sections[1]) == "landscape"
    assert size_hint(sections[2]) == "portrait"


def test_chapter_style_variants():
    assert chapter_style(Chapter("x", [], {"imageGeneration": {"style": "Ink"}})) == "Ink"
    style = chapter_style(Chapter("x", [], {"imageGeneration": {"style": {"art": "Ghibli", "mood": "warm"}}}))
    assert style == "Style: Ghibli, warm. NO TEXT in the image."
    assert chapter_style(Chapter("x", []), default="D") == "D"


def test_unreachable_reference_backend_fails_only_its_section(store):
    class UnreachableModels:
        def generate_content(self, model, contents, config):
            raise httpx.ConnectError("[Errno 111] Connection refused")

    gemini = GeminiImageService.__new__(GeminiImageService)
    gemini.model = "gemini-test"
    gemini.client = SimpleNamespace(models=UnreachableModels())
    router = ImageRouter(FakeServices(), gemini)

    ch = chapter(
        {"id": "hero", "image": "hero.jpg"},
        {"id": "scene", "image": "scene.jpg", "reference": "${hero.image}"},
        {"id": "river", "image": "river.jpg"},
    )
    summary = make_generator(router, store).process_chapter(ch)

    assert set(summary.failed) == {"scene"}
    assert "Connection refused" in summary.failed["scene"]
    assert sorted(summary.generated) == ["hero", "river"]
    assert (store.image_dir(ch) / "river.jpg").exists()


def test_negative_delay_rejected(store):
    with pytest.raises(ValueError, match="negative"):
        RecursiveImageGenerator(FakeServices(), store, delay=-1)

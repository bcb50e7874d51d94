"""
Recursive image generation for a chapter.

Character portraits are generated first and then fed back to Gemini as
reference images for every scene that reuses the character, so the same
beaver looks the same on every page.

A run has two passes. Pass 1 walks the dependency order and generates every
section whose references are available, deferring the rest. Pass 2 retries
each deferred section once. Whatever is still missing a reference after that
is reported as failed.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from .content_store import Chapter, ContentStore
from .errors import GenerationError
from .image_services import convert_for_path
from .resolver import ArtifactRegistry, ResolvedSection, build_order, resolve
from .retry import RetryPolicy, call_with_retry
from .sections import Section
from .settings import DEFAULT_STYLE

logger = logging.getLogger(__name__)

GENERATED = "generated"
SKIPPED = "skipped"
DEFERRED = "deferred"
FAILED = "failed"
TEXT_ONLY = "text-only"

_SQUARE_TYPES = {"portrait", "character"}
_TALL_TYPES = {"vertical", "tall", "poster"}


@dataclass
class SectionResult:
    section_id: str
    status: str
    path: Path | None = None
    service: str | None = None
    error: str | None = None
    missing: tuple[str, ...] = ()


@dataclass
class GenerationSummary:
    chapter_id: str
    order: list[str] = field(default_factory=list)
    generated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    regenerated: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    resolutions: dict[str, ResolvedSection] = field(default_factory=dict)
    registry: ArtifactRegistry = field(default_factory=ArtifactRegistry)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def characters(self) -> list[str]:
        return list(self.registry.characters)

    def counts(self) -> dict[str, int]:
        return {
            "generated": len(self.generated),
            "skipped": len(self.skipped),
            "regenerated": len(self.regenerated),
            "failed": len(self.failed),
            "characters": len(self.characters),
        }


def size_hint(section: Section) -> str:
    image_type = str(section.fields.get("imageType") or "").lower()
    if section.generates_character or image_type in _SQUARE_TYPES:
        return "square"
    if image_type in _TALL_TYPES:
        return "portrait"
    return "landscape"


def chapter_style(chapter: Chapter, default: str = DEFAULT_STYLE) -> str:
    """House style line for a chapter's prompts (``imageGeneration.style``)."""
    style = chapter.image_generation.get("style")
    if isinstance(style, str) and style.strip():
        return style.strip()
    if isinstance(style, dict):
        parts = [str(v).strip() for v in style.values() if isinstance(v, str) and v.strip()]
        if parts:
            return "Style: " + ", ".join(parts) + ". NO TEXT in the image."
    return default


def build_prompt(resolved: ResolvedSection, style: str = DEFAULT_STYLE) -> str:
    section = resolved.section
    title = section.text("title")
    scene_line = f"Scene: {title}\n" if title else ""

    if resolved.available:
        subject = section.text("action") or section.text("imageAlt") or section.text("content")
        subject = subject or "the character in a new scene"
        if len(resolved.available) > 1:
            lead = "Using the characters from the reference images, show"
            keep = "Keep every character's appearance EXACTLY the same as in the references."
        else:
            lead = "Using the character from the reference image, show"
            keep = "IMPORTANT: Keep the character's appearance EXACTLY the same as in the reference."
        return f"{lead}: {subject}\n\n{keep}\n{scene_line}\n{style}"

    subject = section.text("imageAlt") or section.text("action") or section.text("content")
    subject = subject or "Generate image"
    return f"Create: {subject}\n\n{scene_line}\n{style}"


class RecursiveImageGenerator:
    """
    Generates a chapter's illustrations in dependency order.

    Args:
        services: object with ``generate_from_text(prompt, size_hint)`` and
            ``generate_from_reference(prompt, reference_images)``
        store: ContentStore used for existence checks, reads and writes
        retry_policy: bounded retry applied to each service call
        delay: seconds to wait after each image actually generated (rate limiting)
        style: fallback style line when the chapter doesn't define one
    """

    def __init__(
        self,
        services,
        store: ContentStore,
        retry_policy: RetryPolicy | None = None,
        delay: float = 3.0,
        style: str = DEFAULT_STYLE,
        sleep=time.sleep,
    ):
        if delay < 0:
            raise ValueError("delay must not be negative")
        self.services = services
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.delay = delay
        self.style = style
        self._sleep = sleep

    def _service_label(self, with_reference: bool) -> str:
        describe = getattr(self.services, "describe", None)
        if describe:
            return describe(with_reference)
        return "reference" if with_reference else "text"

    def generate_section(
        self,
        resolved: ResolvedSection,
        image_dir: Path,
        registry: ArtifactRegistry,
        style: str,
        force: bool = False,
    ) -> SectionResult:
        section = resolved.section
        if not section.image:
            return SectionResult(section.id, TEXT_ONLY)

        output_path = Path(image_dir) / section.image
        logger.info("Generating %s (section %s)", section.image, section.id)

        if resolved.missing:
            logger.warning(
                "Section %s is missing references: %s", section.id, ", ".join(resolved.missing)
            )
            return SectionResult(section.id, DEFERRED, missing=resolved.missing)

        if self.store.exists(output_path) and not force:
            logger.info("Already exists: %s", output_path)
            registry.register(section.id, output_path, character=section.generates_character)
            return SectionResult(section.id, SKIPPED, path=output_path)

        with_reference = bool(resolved.available)
        service = self._service_label(with_reference)
        prompt = build_prompt(resolved, style)
        try:
            if with_reference:
                references = [self.store.read(p) for p in resolved.reference_paths]
                logger.info("Using references: %s", ", ".join(resolved.available))
                data = call_with_retry(
                    self.services.generate_from_reference,
                    prompt,
                    references,
                    policy=self.retry_policy,
                    sleep=self._sleep,
                )
            else:
                data = call_with_retry(
                    self.services.generate_from_text,
                    prompt,
                    size_hint(section),
                    policy=self.retry_policy,
                    sleep=self._sleep,
                )
            self.store.write(output_path, convert_for_path(data, output_path))
        except (GenerationError, OSError) as e:
            logger.error("Section %s failed: %s", section.id, e)
            return SectionResult(section.id, FAILED, service=service, error=str(e))

        registry.register(section.id, output_path, character=section.generates_character)
        logger.info("Generated %s with %s", output_path.name, service)
        return SectionResult(section.id, GENERATED, path=output_path, service=service)

    def _pace(self, result: SectionResult):
        if result.status == GENERATED and self.delay:
            self._sleep(self.delay)

    def process_chapter(self, chapter: Chapter, force: bool = False) -> GenerationSummary:
        """
        Run both generation passes for a chapter.

        Raises:
            CircularDependencyError: before any image is requested, if the
                chapter's references form a cycle.
        """
        ordered = build_order(chapter.sections)
        image_dir = self.store.image_dir(chapter)
        style = chapter_style(chapter, self.style)
        summary = GenerationSummary(chapter_id=chapter.id, order=[s.id for s in ordered])
        registry = summary.registry

        logger.info("Generation order for %s: %s", chapter.id, ", ".join(summary.order))

        deferred: list[Section] = []
        for section in ordered:
            resolved = resolve(section, registry)
            summary.resolutions[section.id] = resolved
            result = self.generate_section(resolved, image_dir, registry, style, force=force)
            if result.status == GENERATED:
                summary.generated.append(section.id)
            elif result.status == SKIPPED:
                summary.skipped.append(section.id)
            elif result.status == DEFERRED:
                deferred.append(section)
            elif result.status == FAILED:
                summary.failed[section.id] = result.error or "generation failed"
            self._pace(result)

        if deferred:
            logger.info("Retrying %d deferred sections", len(deferred))

        for section in deferred:
            resolved = resolve(section, registry)
            summary.resolutions[section.id] = resolved
            result = self.generate_section(resolved, image_dir, registry, style, force=force)
            if result.status == GENERATED:
                summary.regenerated.append(section.id)
            elif result.status == SKIPPED:
                summary.skipped.append(section.id)
            elif result.status == DEFERRED:
                summary.failed[section.id] = "missing references: " + ", ".join(result.missing)
            elif result.status == FAILED:
                summary.failed[section.id] = result.error or "generation failed"
            self._pace(result)

        return summary

    def plan(self, chapter: Chapter) -> list[dict]:
        """
        Dry run: what ``process_chapter`` would do, without calling any service.

        A reference counts as satisfiable when it names a section with an
        image that comes earlier in the order.
        """
        ordered = build_order(chapter.sections)
        image_dir = self.store.image_dir(chapter)
        planned: set[str] = set()
        steps = []
        for section in ordered:
            if not section.image:
                continue
            deps = section.dependency_ids
            unresolved = [d for d in deps if d not in planned]
            output_path = image_dir / section.image
            if unresolved:
                action = "fail"
            elif self.store.exists(output_path):
                action = "skip"
            else:
                action = "generate"
            if action != "fail":
                planned.add(section.id)
            steps.append(
                {
                    "id": section.id,
                    "image": section.image,
                    "path": output_path,
                    "references": list(deps),
                    "unresolved": unresolved,
                    "service": self._service_label(bool(deps)),
                    "action": action,
                    "character": section.generates_character,
                }
            )
        return steps

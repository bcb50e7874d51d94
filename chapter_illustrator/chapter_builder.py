"""
Chapter page builder.

Renders ``<chapter>/index.html`` from the chapter YAML with a Jinja2 template
and writes ``assets/images/generation-manifest.json`` describing every image
the page needs.
"""

import json
import logging
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .content_store import Chapter, ContentStore
from .resolver import ArtifactRegistry, ResolvedSection, resolve
from .sections import Section

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

LANGUAGE_FLAGS = {"en": "🇬🇧", "es": "🇪🇸", "ru": "🇷🇺", "de": "🇩🇪", "fr": "🇫🇷"}

# Image types that usually carry labels and so need per-language versions.
TEXT_IMAGE_TYPES = {"diagram", "chart", "map", "comparison", "labeled"}
TEXT_INDICATORS = ("label", "text", "diagram", "chart", "map", "comparison")

# Sub-steps of a scene (e.g. first-floating-attempt / -struggle / -success).
ACTION_SEQUENCE_SUFFIXES = (
    "-attempt",
    "-struggle",
    "-success",
    "-preparation",
    "-practicing",
    "-complete",
    "-first-glimpse",
    "-introduction",
    "-together",
)

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "j2"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def placeholder_name(filename: str) -> str:
    return Path(filename).stem + "-placeholder.jpg"


def needs_translated_versions(section: Section) -> bool:
    if str(section.fields.get("imageType") or "").lower() in TEXT_IMAGE_TYPES:
        return True
    alt = section.text("imageAlt").lower()
    return any(word in alt for word in TEXT_INDICATORS)


def is_action_sequence(section_id: str) -> bool:
    return any(section_id.endswith(suffix) for suffix in ACTION_SEQUENCE_SUFFIXES)


def chapter_languages(chapter: Chapter) -> list[str]:
    langs = chapter.meta.get("languages")
    if isinstance(langs, list) and langs:
        return [str(lang) for lang in langs]
    title = chapter.meta.get("title") or chapter.data.get("chapterTitle")
    if isinstance(title, dict) and title:
        return list(title)
    return ["en"]


class ChapterBuilder:
    def __init__(self, store: ContentStore, template_name: str = "chapter.html.j2"):
        self.store = store
        self.template = _env.get_template(template_name)

    def section_context(
        self,
        index: int,
        section: Section,
        resolved: ResolvedSection | None,
        registry: ArtifactRegistry | None,
        image_dir: Path,
    ) -> dict:
        ctx = dict(section.fields)
        ctx.update(
            {
                "id": section.id,
                "image": section.image,
                "titleKey": section.fields.get("titleKey") or f"section{index}Title",
                "contentKey": section.fields.get("contentKey") or f"section{index}Content",
                "imageAltKey": section.fields.get("imageAltKey") or f"section{index}ImageAlt",
                "hasTranslations": needs_translated_versions(section),
                "isActionSequence": is_action_sequence(section.id),
                "isCharacter": section.generates_character,
                "references": list(section.dependency_ids),
                "missingReferences": list(resolved.missing) if resolved else [],
            }
        )
        if section.image:
            ctx["imageSrc"] = f"assets/images/{section.image}"
            generated = registry.get(section.id) if registry else None
            ctx["imageExists"] = generated is not None or self.store.exists(image_dir / section.image)
            placeholder = placeholder_name(section.image)
            if self.store.exists(image_dir / placeholder):
                ctx["placeholderSrc"] = f"assets/images/{placeholder}"
        return ctx

    def image_list(self, chapter: Chapter, resolutions: dict[str, ResolvedSection]) -> list[dict]:
        images = []
        hero = chapter.data.get("hero") or {}
        if hero.get("image"):
            images.append(
                {
                    "filename": hero["image"],
                    "type": hero.get("imageType") or "landscape",
                    "alt": hero.get("imageAlt"),
                    "references": [],
                }
            )
        for section in chapter.sections:
            if not section.image:
                continue
            resolved = resolutions.get(section.id)
            images.append(
                {
                    "id": section.id,
                    "filename": section.image,
                    "type": section.fields.get("imageType") or "content",
                    "alt": section.fields.get("imageAlt"),
                    "references": list(section.dependency_ids),
                    "resolvedReferences": {k: str(v) for k, v in resolved.available.items()}
                    if resolved
                    else {},
                    "missingReferences": list(resolved.missing) if resolved else [],
                    "generatesCharacter": section.generates_character,
                    "needsTranslations": needs_translated_versions(section),
                }
            )
        return images

    def render(
        self,
        chapter: Chapter,
        registry: ArtifactRegistry | None = None,
        resolutions: dict[str, ResolvedSection] | None = None,
    ) -> str:
        image_dir = self.store.image_dir(chapter)
        resolutions = resolutions or {}
        sections = [
            self.section_context(i, s, resolutions.get(s.id), registry, image_dir)
            for i, s in enumerate(chapter.sections)
        ]

        fun_facts = chapter.data.get("funFacts") or {}
        facts = fun_facts.get("facts") if isinstance(fun_facts, dict) else fun_facts
        facts = [
            dict(fact, key=fact.get("key") or f"funFact{i + 1}")
            for i, fact in enumerate(facts or [])
            if isinstance(fact, dict)
        ]

        languages = chapter_languages(chapter)
        return self.template.render(
            chapter=chapter.data,
            meta=chapter.meta,
            title=chapter.title,
            hero=chapter.data.get("hero") or {},
            sections=sections,
            fun_facts=facts,
            languages=[{"code": lang, "flag": LANGUAGE_FLAGS.get(lang, lang.upper())} for lang in languages],
            default_language=languages[0],
        )

    def build(
        self,
        chapter: Chapter,
        registry: ArtifactRegistry | None = None,
        resolutions: dict[str, ResolvedSection] | None = None,
    ) -> dict:
        """
        Write the chapter page and its image manifest.

        Without a registry from a generation run, references are resolved
        against the images already on disk.

        Returns:
            dict with ``output_path``, ``manifest_path`` and ``image_count``
        """
        image_dir = self.store.image_dir(chapter)
        if resolutions is None:
            registry = registry or self._registry_from_disk(chapter, image_dir)
            resolutions = {s.id: resolve(s, registry) for s in chapter.sections}

        html = self.render(chapter, registry, resolutions)
        output_path = self.store.write_text(self.store.chapter_dir(chapter) / "index.html", html)
        logger.info("HTML saved to: %s", output_path)

        images = self.image_list(chapter, resolutions)
        gen = chapter.image_generation
        manifest = {
            "chapter": chapter.id,
            "style": gen.get("style") or {},
            "routing": gen.get("routing") or {},
            "characters": gen.get("characters") or {},
            "actions": gen.get("actions") or [],
            "images": images,
        }
        manifest_path = self.store.write_text(
            image_dir / "generation-manifest.json",
            json.dumps(manifest, indent=2, ensure_ascii=False),
        )
        logger.info("Image manifest saved to: %s (%d images)", manifest_path, len(images))

        return {
            "chapter_id": chapter.id,
            "output_path": output_path,
            "manifest_path": manifest_path,
            "image_count": len(images),
        }

    def _registry_from_disk(self, chapter: Chapter, image_dir: Path) -> ArtifactRegistry:
        registry = ArtifactRegistry()
        for section in chapter.sections:
            if section.image and self.store.exists(image_dir / section.image):
                registry.register(section.id, image_dir / section.image, character=section.generates_character)
        return registry

"""
Flat-file content store.

Layout under the content root::

    chapters/<chapter-id>.yaml        chapter definitions
    <folder>/index.html               rendered chapter page
    <folder>/assets/images/...        generated illustrations

``<folder>`` is ``meta.folderName`` from the chapter file, or the chapter id.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ChapterNotFoundError
from .sections import Section, sections_from_list

logger = logging.getLogger(__name__)


@dataclass
class Chapter:
    id: str
    sections: list[Section]
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def meta(self) -> dict:
        return self.data.get("meta") or {}

    @property
    def folder_name(self) -> str:
        return self.meta.get("folderName") or self.id

    @property
    def title(self) -> str:
        title = self.meta.get("title") or self.data.get("chapterTitle")
        if isinstance(title, dict):
            title = title.get("en")
        return title or self.id.replace("-", " ").title()

    @property
    def image_generation(self) -> dict:
        return self.data.get("imageGeneration") or {}


class ContentStore:
    def __init__(self, root="."):
        self.root = Path(root)
        self.chapters_dir = self.root / "chapters"

    def chapter_path(self, chapter_id: str) -> Path:
        return self.chapters_dir / f"{chapter_id}.yaml"

    def list_chapter_ids(self) -> list[str]:
        if not self.chapters_dir.exists():
            return []
        return sorted(p.stem for p in self.chapters_dir.glob("*.yaml"))

    def load_raw(self, chapter_id: str) -> dict:
        path = self.chapter_path(chapter_id)
        if not path.exists():
            raise ChapterNotFoundError(chapter_id, path)
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"{path}: invalid YAML: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping at the top level")
        return data

    def load(self, chapter_id: str) -> Chapter:
        """
        Load a chapter definition.

        Hidden sections (``hidden: true``) are dropped before parsing.

        Raises:
            ChapterNotFoundError: no YAML file for ``chapter_id``
            ValueError: the file is not valid YAML or not shaped like a chapter
            StructuralError: a section has a bad reference or a duplicate id
        """
        data = self.load_raw(chapter_id)
        raw_sections = data.get("sections") or []
        if not isinstance(raw_sections, list):
            raise ValueError(f"{self.chapter_path(chapter_id)}: 'sections' must be a list")
        for i, s in enumerate(raw_sections):
            if not isinstance(s, dict):
                raise ValueError(f"{self.chapter_path(chapter_id)}: section {i} is not a mapping: {s!r}")
        visible = [s for s in raw_sections if not s.get("hidden")]
        sections = sections_from_list(visible)
        logger.info("Loaded chapter %s: %d sections", chapter_id, len(sections))
        return Chapter(id=(data.get("meta") or {}).get("id") or chapter_id, sections=sections, data=data)

    def chapter_dir(self, chapter: Chapter) -> Path:
        return self.root / chapter.folder_name

    def image_dir(self, chapter: Chapter) -> Path:
        return self.chapter_dir(chapter) / "assets" / "images"

    def exists(self, path) -> bool:
        return Path(path).exists()

    def read(self, path) -> bytes:
        return Path(path).read_bytes()

    def write(self, path, data: bytes) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def write_text(self, path, text: str) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

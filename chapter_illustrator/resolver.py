"""
Reference resolution and dependency ordering for chapter sections.

``build_order`` puts every section after the sections whose images it reuses,
and ``resolve`` looks a section's references up in the run's
``ArtifactRegistry``.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .errors import CircularDependencyError
from .sections import Section

logger = logging.getLogger(__name__)

_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


class ArtifactRegistry:
    """Run-scoped map of section id -> generated image path.

    Append-only: once an id is registered it keeps its path for the rest of
    the run.
    """

    def __init__(self):
        self._paths: dict[str, Path] = {}
        self._characters: dict[str, Path] = {}

    def register(self, section_id: str, path, character: bool = False) -> None:
        path = Path(path)
        current = self._paths.get(section_id)
        if current is not None and current != path:
            raise ValueError(
                f"Section '{section_id}' is already registered at {current}, not {path}"
            )
        self._paths[section_id] = path
        if character:
            self._characters[section_id] = path
            logger.info("Character registered: %s", section_id)

    def get(self, section_id: str) -> Path | None:
        return self._paths.get(section_id)

    def __contains__(self, section_id) -> bool:
        return section_id in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def as_dict(self) -> dict[str, Path]:
        return dict(self._paths)

    @property
    def characters(self) -> dict[str, Path]:
        return dict(self._characters)


@dataclass(frozen=True)
class ResolvedSection:
    section: Section
    available: dict[str, Path] = field(default_factory=dict)
    missing: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return self.section.id

    @property
    def has_missing(self) -> bool:
        return bool(self.missing)

    @property
    def reference_paths(self) -> list[Path]:
        """Available reference paths in the order the section lists them."""
        return [self.available[i] for i in self.section.dependency_ids if i in self.available]


def build_order(sections: list[Section]) -> list[Section]:
    """Return ``sections`` ordered so each one follows everything it references.

    Depth-first topological sort. Sections with no dependency relationship keep
    their input order. References to ids outside ``sections`` are ignored here;
    they show up later as missing references.

    Raises:
        CircularDependencyError: a section is reached again while its own
            dependencies are still being visited.
    """
    by_id = {s.id: s for s in sections}
    state = {s.id: _UNVISITED for s in sections}
    order: list[Section] = []

    def visit(section: Section):
        mark = state[section.id]
        if mark == _DONE:
            return
        if mark == _IN_PROGRESS:
            raise CircularDependencyError(section.id)

        state[section.id] = _IN_PROGRESS
        for dep_id in section.dependency_ids:
            dep = by_id.get(dep_id)
            if dep is not None:
                visit(dep)
        state[section.id] = _DONE
        order.append(section)

    for section in sections:
        visit(section)

    return order


def resolve(section: Section, registry: ArtifactRegistry) -> ResolvedSection:
    """Look up each of the section's references in ``registry``.

    References not yet in the registry are reported in ``missing`` rather
    than raised, so the caller can defer the section.
    """
    available = {}
    missing = []
    for ref_id in section.dependency_ids:
        path = registry.get(ref_id)
        if path is not None:
            available[ref_id] = path
        else:
            missing.append(ref_id)
    return ResolvedSection(section=section, available=available, missing=tuple(missing))

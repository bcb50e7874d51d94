"""
Section data model and reference parsing.

Chapter YAML files describe sections like this::

    - id: papa-beaver-arrives
      image: papa-beaver.jpg
      generate_character: true
    - id: teamwork-lifting
      image: teamwork-lifting.jpg
      use_characters:
        - ${meet-baby-beaver.image}
        - ${papa-beaver-arrives.image}

References are parsed once, here, into one of three reference shapes so the
resolver never has to look at raw strings again.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from .errors import DuplicateSectionError, InvalidReferenceError

_PLACEHOLDER_RE = re.compile(r"^\$\{([^.{}\s]+)\.image\}$")
_BARE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")

# YAML keys holding a single reference / a list of references, in merge order.
SINGLE_REFERENCE_KEYS = ("reference", "use_character", "referenceImage")
MULTI_REFERENCE_KEYS = ("references", "use_characters")
CHARACTER_KEYS = ("generate_character", "generatesCharacter")


def parse_reference(ref) -> str | None:
    """Return the section id named by ``ref``, or None if it doesn't parse.

    Accepts ``${section-id.image}`` and a bare section id.
    """
    if not isinstance(ref, str):
        return None
    s = ref.strip()
    m = _PLACEHOLDER_RE.match(s)
    if m:
        return m.group(1)
    if _BARE_ID_RE.match(s):
        return s
    return None


@dataclass(frozen=True)
class NoReference:
    @property
    def ids(self) -> tuple[str, ...]:
        return ()


@dataclass(frozen=True)
class SingleReference:
    section_id: str

    @property
    def ids(self) -> tuple[str, ...]:
        return (self.section_id,)


@dataclass(frozen=True)
class MultipleReferences:
    section_ids: tuple[str, ...]

    @property
    def ids(self) -> tuple[str, ...]:
        return self.section_ids


Reference = NoReference | SingleReference | MultipleReferences


@dataclass(frozen=True)
class Section:
    id: str
    image: str | None = None
    reference: Reference = field(default_factory=NoReference)
    generates_character: bool = False
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def dependency_ids(self) -> tuple[str, ...]:
        return self.reference.ids

    def text(self, key: str, lang: str = "en") -> str:
        """Read a (possibly per-language) text field, e.g. ``title`` or ``imageAlt``."""
        value = self.fields.get(key)
        if isinstance(value, dict):
            value = value.get(lang)
        return str(value).strip() if value else ""


def _parse_reference_fields(section_id: str, data: dict) -> Reference:
    ids: list[str] = []
    is_multi = False

    def _add(raw):
        # Section ids are stringified, so numeric YAML references must be too.
        if isinstance(raw, int) and not isinstance(raw, bool):
            raw = str(raw)
        ref_id = parse_reference(raw)
        if ref_id is None:
            raise InvalidReferenceError(section_id, raw)
        if ref_id not in ids:
            ids.append(ref_id)

    for key in SINGLE_REFERENCE_KEYS + MULTI_REFERENCE_KEYS:
        raw = data.get(key)
        if raw is None:
            continue
        if isinstance(raw, (list, tuple)):
            is_multi = True
            for item in raw:
                _add(item)
        else:
            if key in MULTI_REFERENCE_KEYS:
                is_multi = True
            _add(raw)

    if not ids:
        return NoReference()
    if len(ids) == 1 and not is_multi:
        return SingleReference(ids[0])
    return MultipleReferences(tuple(ids))


def section_from_dict(data: dict) -> Section:
    """Build a Section from one YAML mapping.

    Raises:
        InvalidReferenceError: a reference value doesn't name a section.
        ValueError: the mapping has no ``id``.
    """
    section_id = data.get("id")
    if not section_id:
        raise ValueError(f"Section without an id: {data!r}")
    section_id = str(section_id)

    reserved = set(SINGLE_REFERENCE_KEYS + MULTI_REFERENCE_KEYS + CHARACTER_KEYS)
    reserved.update({"id", "image"})
    extra = {k: v for k, v in data.items() if k not in reserved}

    return Section(
        id=section_id,
        image=data.get("image") or None,
        reference=_parse_reference_fields(section_id, data),
        generates_character=any(bool(data.get(k)) for k in CHARACTER_KEYS),
        fields=extra,
    )


def sections_from_list(items: list[dict]) -> list[Section]:
    """Parse a chapter's section list, rejecting duplicate ids."""
    sections = []
    seen = set()
    for item in items or []:
        section = section_from_dict(item)
        if section.id in seen:
            raise DuplicateSectionError(section.id)
        seen.add(section.id)
        sections.append(section)
    return sections

"""
Error types for chapter illustration runs.

Structural errors invalidate a whole chapter and are raised before any image
service is called. Generation errors belong to a single section and are
recorded in the run summary instead of aborting the run.
"""


class ChapterIllustratorError(Exception):
    """Base class for all errors raised by this package."""


class StructuralError(ChapterIllustratorError):
    """The chapter definition itself is invalid."""


class CircularDependencyError(StructuralError):
    def __init__(self, section_id: str):
        self.section_id = section_id
        super().__init__(f"Circular dependency detected at {section_id}")


class InvalidReferenceError(StructuralError):
    def __init__(self, section_id: str, reference):
        self.section_id = section_id
        self.reference = reference
        super().__init__(
            f"Section '{section_id}' has an unparsable reference: {reference!r} "
            "(expected '${section-id.image}' or a bare section id)"
        )


class DuplicateSectionError(StructuralError):
    def __init__(self, section_id: str):
        self.section_id = section_id
        super().__init__(f"Section id '{section_id}' is defined more than once")


class ChapterNotFoundError(ChapterIllustratorError):
    def __init__(self, chapter_id: str, path):
        self.chapter_id = chapter_id
        self.path = path
        super().__init__(f"Chapter '{chapter_id}' not found: {path}")


class GenerationError(ChapterIllustratorError):
    """An image could not be produced for a section."""


class TransientGenerationError(GenerationError):
    """The service gave no usable image this time; worth another attempt."""


class PermanentGenerationError(GenerationError):
    """Retries are exhausted or the service failed in a way retrying won't fix."""

"""
Low-resolution placeholders for progressive image loading.

For every ``name.jpg`` in a chapter's image folder a tiny blurred
``name-placeholder.jpg`` is written; the chapter page shows it until the
full image has loaded.
"""

import logging
from pathlib import Path

from PIL import Image, ImageFilter

logger = logging.getLogger(__name__)

PLACEHOLDER_WIDTH = 100
PLACEHOLDER_QUALITY = 20
PLACEHOLDER_BLUR = 8

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png"}


def is_source_image(path: Path) -> bool:
    name = path.name
    return (
        path.suffix.lower() in IMAGE_SUFFIXES
        and "-placeholder" not in name
        and "-old" not in name
    )


def placeholder_path(path: Path) -> Path:
    return path.with_name(path.stem + "-placeholder.jpg")


def create_placeholder(input_path: Path, output_path: Path) -> tuple[int, int]:
    """Write a small, blurred, low-quality JPEG copy of ``input_path``."""
    with Image.open(input_path) as img:
        img = img.convert("RGB")
        width = min(PLACEHOLDER_WIDTH, img.width)
        height = max(1, round(img.height * width / img.width))
        small = img.resize((width, height), Image.Resampling.LANCZOS)
        small = small.filter(ImageFilter.GaussianBlur(PLACEHOLDER_BLUR))
        small.save(output_path, "JPEG", quality=PLACEHOLDER_QUALITY)
        return small.size


def generate_placeholders(images_dir: Path) -> dict[str, list[str]]:
    """
    Create missing placeholders for every source image in ``images_dir``.

    Returns:
        dict with ``created``, ``existing`` and ``failed`` filename lists
    """
    result = {"created": [], "existing": [], "failed": []}
    images_dir = Path(images_dir)
    if not images_dir.exists():
        logger.warning("Skipping %s: images directory not found", images_dir)
        return result

    for path in sorted(images_dir.iterdir()):
        if not path.is_file() or not is_source_image(path):
            continue
        target = placeholder_path(path)
        if target.exists():
            result["existing"].append(path.name)
            continue
        try:
            create_placeholder(path, target)
            result["created"].append(path.name)
            logger.info("Created placeholder for %s", path.name)
        except OSError as e:
            logger.error("Failed to create placeholder for %s: %s", path, e)
            result["failed"].append(path.name)

    return result

#!/usr/bin/env python3
"""
Command line entry point.

Usage:
    chapter-illustrator generate beavers --dry-run
    chapter-illustrator run beavers
    chapter-illustrator build beavers
    chapter-illustrator placeholders beavers sea-otters
    chapter-illustrator index

Exit codes: 0 on success, 1 if any section failed after both passes,
2 if the chapter itself is invalid (cycle, bad reference, missing file).
"""

import argparse
import logging
import sys

from .chapter_builder import ChapterBuilder
from .content_store import ContentStore
from .errors import ChapterNotFoundError, StructuralError
from .image_services import setup_services
from .index_generator import IndexGenerator
from .placeholders import generate_placeholders
from .recursive_generator import GenerationSummary, RecursiveImageGenerator
from .retry import RetryPolicy
from .settings import get_content_root, get_generation_config, get_log_file

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


def configure_logging(verbose: bool = False):
    handlers = [logging.StreamHandler(sys.stderr)]
    log_file = get_log_file()
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def _make_generator(store: ContentStore, args, dry_run: bool) -> RecursiveImageGenerator:
    cfg = get_generation_config()
    delay = cfg["delay"] if getattr(args, "delay", None) is None else args.delay
    # A dry run must work without API keys.
    services = None if dry_run else setup_services()
    return RecursiveImageGenerator(
        services,
        store,
        retry_policy=RetryPolicy(max_attempts=cfg["retry_max_attempts"], delay=cfg["retry_delay"]),
        delay=delay,
        style=cfg["style"],
    )


def print_plan(chapter_id: str, steps: list[dict]) -> int:
    print(f"\n📋 Generation plan for {chapter_id} ({len(steps)} images):")
    failures = 0
    for i, step in enumerate(steps, start=1):
        refs = f" (uses {', '.join(step['references'])})" if step["references"] else ""
        marker = {"generate": "🎨", "skip": "✓", "fail": "❌"}[step["action"]]
        print(f"   {i}. {marker} {step['id']} -> {step['image']} [{step['service']}]{refs}")
        if step["unresolved"]:
            failures += 1
            print(f"      ⚠️  unresolved references: {', '.join(step['unresolved'])}")
    return EXIT_FAILED if failures else EXIT_OK


def print_summary(summary: GenerationSummary):
    counts = summary.counts()
    print("\n" + "=" * 50)
    print(f"✨ Recursive generation complete: {summary.chapter_id}")
    print(f"   Generated: {counts['generated']}")
    print(f"   Skipped: {counts['skipped']}")
    print(f"   Regenerated: {counts['regenerated']}")
    print(f"   Failed: {counts['failed']}")
    print(f"   Characters created: {counts['characters']}")
    for section_id, reason in summary.failed.items():
        print(f"   ❌ {section_id}: {reason}")


def cmd_generate(args, store: ContentStore, build_after: bool = False) -> int:
    chapter = store.load(args.chapter_id)
    generator = _make_generator(store, args, dry_run=args.dry_run)

    if args.dry_run:
        return print_plan(chapter.id, generator.plan(chapter))

    summary = generator.process_chapter(chapter, force=args.force)
    print_summary(summary)

    if build_after:
        if summary.generated or summary.skipped or summary.regenerated:
            result = ChapterBuilder(store).build(chapter, summary.registry, summary.resolutions)
            print(f"\n📄 Chapter page: {result['output_path']}")
        else:
            print("\n❌ No images were generated successfully; page not built")

    return EXIT_OK if summary.ok else EXIT_FAILED


def cmd_build(args, store: ContentStore) -> int:
    chapter = store.load(args.chapter_id)
    result = ChapterBuilder(store).build(chapter)
    print(f"✅ HTML saved to: {result['output_path']}")
    print(f"📋 Manifest: {result['manifest_path']} ({result['image_count']} images)")
    return EXIT_OK


def cmd_placeholders(args, store: ContentStore) -> int:
    chapter_ids = args.chapter_ids or store.list_chapter_ids()
    failed = 0
    for chapter_id in chapter_ids:
        chapter = store.load(chapter_id)
        result = generate_placeholders(store.image_dir(chapter))
        failed += len(result["failed"])
        print(
            f"📁 {chapter_id}: {len(result['created'])} created, "
            f"{len(result['existing'])} already present, {len(result['failed'])} failed"
        )
    return EXIT_FAILED if failed else EXIT_OK


def cmd_index(args, store: ContentStore) -> int:
    output_path, chapters = IndexGenerator(store).generate()
    print(f"✅ Index generated with {len(chapters)} chapters: {output_path}")
    return EXIT_OK


def _non_negative_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chapter-illustrator",
        description="Generate chapter illustrations and build static chapter pages.",
    )
    parser.add_argument("--root", default=None, help="Content root (default: CONTENT_ROOT or .)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("generate", "Generate a chapter's images in dependency order."),
        ("run", "Generate a chapter's images, then build its page."),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("chapter_id", help="Chapter id (chapters/<id>.yaml).")
        p.add_argument("--dry-run", action="store_true", help="Show the plan without calling any API.")
        p.add_argument("--force", action="store_true", help="Regenerate images that already exist.")
        p.add_argument("--delay", type=_non_negative_float, default=None, help="Seconds between generations.")

    p = sub.add_parser("build", help="Render a chapter page and image manifest.")
    p.add_argument("chapter_id")

    p = sub.add_parser("placeholders", help="Create low-res placeholders for lazy loading.")
    p.add_argument("chapter_ids", nargs="*", help="Chapters to process (default: all).")

    sub.add_parser("index", help="Build the magazine index page.")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    store = ContentStore(args.root or get_content_root())

    try:
        if args.command == "generate":
            return cmd_generate(args, store)
        if args.command == "run":
            return cmd_generate(args, store, build_after=True)
        if args.command == "build":
            return cmd_build(args, store)
        if args.command == "placeholders":
            return cmd_placeholders(args, store)
        return cmd_index(args, store)
    except (StructuralError, ChapterNotFoundError, ValueError) as e:
        logger.error("%s", e)
        print(f"❌ {e}")
        return EXIT_INVALID
    except KeyboardInterrupt:
        print("\n\n⚠️  Generation interrupted by user")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())

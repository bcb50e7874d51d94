"""Magazine index page listing every chapter under ``chapters/``."""

import logging

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .chapter_builder import TEMPLATES_DIR
from .content_store import ContentStore

logger = logging.getLogger(__name__)

DEFAULT_ISSUE_NUMBER = 999


def format_title(chapter_id: str) -> str:
    return " ".join(word.capitalize() for word in chapter_id.split("-"))


def _texts(value) -> list[str]:
    if isinstance(value, dict):
        return [str(v) for v in value.values() if v]
    if value:
        return [str(value)]
    return []


def build_search_content(data: dict) -> str:
    """Lower-cased text blob used by the index page's search box."""
    content = []
    meta = data.get("meta") or {}
    content += _texts(meta.get("title"))
    content += _texts(meta.get("subtitle"))
    content += _texts(data.get("chapterTitle"))
    content += _texts(data.get("subtitle"))

    for section in data.get("sections") or []:
        if isinstance(section, dict) and not section.get("hidden"):
            content += _texts(section.get("title"))
            content += _texts(section.get("content"))

    fun_facts = data.get("funFacts") or []
    if isinstance(fun_facts, dict):
        fun_facts = fun_facts.get("facts") or []
    for fact in fun_facts:
        if isinstance(fact, dict):
            content += _texts(fact.get("title"))
            content += _texts(fact.get("content"))

    return " ".join(content).lower()


def extract_chapter_info(data: dict, chapter_id: str) -> dict | None:
    """Index card data for one chapter file, or None if it has no title info."""
    meta = data.get("meta")
    if meta:
        folder = meta.get("folderName") or meta.get("id") or chapter_id
        title = meta.get("title") or format_title(meta.get("id") or chapter_id)
        description = meta.get("subtitle") or meta.get("description") or {}
        issue = meta.get("issueNumber")
        cover = meta.get("coverImage")
    elif data.get("chapterTitle"):
        folder = chapter_id
        title = data["chapterTitle"]
        description = data.get("subtitle") or {}
        issue = data.get("issueNumber")
        cover = None
    else:
        return None

    return {
        "id": (meta or {}).get("id") or chapter_id,
        "title": title if isinstance(title, dict) else {"en": title},
        "description": description if isinstance(description, dict) else {"en": description},
        "folderName": folder,
        "issueNumber": int(issue) if str(issue).strip().isdigit() else DEFAULT_ISSUE_NUMBER,
        "coverImage": cover or f"{folder}/assets/images/magazine-cover.jpg",
        "searchContent": build_search_content(data),
    }


class IndexGenerator:
    def __init__(self, store: ContentStore, template_name: str = "index.html.j2"):
        self.store = store
        env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html", "j2"]),
        )
        self.template = env.get_template(template_name)

    def load_chapters(self) -> list[dict]:
        chapters = []
        for chapter_id in self.store.list_chapter_ids():
            try:
                data = self.store.load_raw(chapter_id)
            except (OSError, ValueError) as e:
                logger.warning("Skipping %s: %s", chapter_id, e)
                continue
            info = extract_chapter_info(data, chapter_id)
            if info:
                chapters.append(info)
        chapters.sort(key=lambda c: c["issueNumber"])
        return chapters

    def generate(self, title: str = "Magazine Collection"):
        chapters = self.load_chapters()
        html = self.template.render(title=title, chapters=chapters)
        output_path = self.store.write_text(self.store.root / "index.html", html)
        logger.info("Index generated with %d chapters: %s", len(chapters), output_path)
        return output_path, chapters

"""
Markdown rendering of a digest. Pure functions, no persistence.
"""
from datetime import date
from typing import Dict, List, Mapping

from core.entities import DigestEntry, Section

MAX_ITEMS_PER_SECTION = 5
SUMMARY_CHARS = 150
MAX_TAGS = 3
EMPTY_SECTION = "*No items for today*"

DIGEST_TEMPLATE = """# Tech Digest - {date}

## 🚨 Critical Updates (Security/Breaking Changes)
{critical}

## 🚀 Major Releases
{releases}

## 📰 Notable News
{news}

## 🤖 AI/ML Updates
{ai}

## 📚 Worth Reading
{reading}

## 📊 Trending This Week
{trending}

---

*Generated automatically by Tech Intelligence System*
"""


def digest_title(day: date) -> str:
    return f"Tech Digest - {day.strftime('%B')} {day.day}, {day.year}"


def _truncate(text: str, limit: int = SUMMARY_CHARS) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def format_entry(entry: DigestEntry) -> str:
    tags = " ".join(f"`{tag}`" for tag in entry.tags[:MAX_TAGS])
    line = f"- **[{entry.title}]({entry.url})** - {_truncate(entry.summary)}\n  *Source: {entry.source_name}*"
    if tags:
        line += f" {tags}"
    return line


def format_section(entries: List[DigestEntry]) -> str:
    if not entries:
        return EMPTY_SECTION
    return "\n\n".join(format_entry(e) for e in entries[:MAX_ITEMS_PER_SECTION])


def render_digest(day: date, sections: Mapping[Section, List[DigestEntry]]) -> str:
    """
    Fill the template with at most five entries per section, in the order
    given. Missing sections render as empty.
    """
    rendered: Dict[str, str] = {
        section.value: format_section(list(sections.get(section, []))) for section in Section
    }
    return DIGEST_TEMPLATE.format(date=day.isoformat(), **rendered)

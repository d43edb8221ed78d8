"""
Section assignment for digest entries.
"""
from typing import Iterable

from core.entities import Section, UrgencyLevel

CRITICAL_CATEGORIES = {"security", "breaking-change"}
READING_CATEGORIES = {"tutorial", "deep-dive"}


def assign_section(urgency_level: UrgencyLevel, categories: Iterable[str]) -> Section:
    """
    First matching rule wins: critical, ai, releases, reading, then news.
    `Section.TRENDING` is never assigned.
    """
    labels = {c.lower() for c in categories}

    if urgency_level == UrgencyLevel.CRITICAL or labels & CRITICAL_CATEGORIES:
        return Section.CRITICAL
    if "ai" in labels:
        return Section.AI
    if "release" in labels:
        return Section.RELEASES
    if labels & READING_CATEGORIES:
        return Section.READING
    return Section.NEWS

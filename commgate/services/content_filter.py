"""
Content Filter
==============

Pattern rules evaluated against outbound message text.

``ContentFilterMatcher`` holds an immutable ``CompiledFilterSet`` built from
the enabled rows. ``reload()`` builds a fresh set and swaps the reference in
one assignment, so a request in flight keeps evaluating against the set it
started with.

Evaluation order: every deny rule against every text first (first match
wins and blocks), then flag rules (first match flags). Regex rules are
case-insensitive; literal rules are case-insensitive substrings. A regex
that does not compile is skipped with a warning.
"""

import logging
import re
import threading
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence, Tuple

from sqlmodel import select

from commgate.core.database import get_session_context
from commgate.models.content_filter import ContentFilter, FilterAction, PatternType

logger = logging.getLogger(__name__)

# (pattern, pattern_type, action, description)
DEFAULT_FILTERS: Tuple[Tuple[str, str, str, str], ...] = (
    (r"\b\d{3}-\d{2}-\d{4}\b", "regex", "deny", "Social Security Number"),
    (r"\b(?:\d{4}[- ]?){3}\d{4}\b", "regex", "deny", "Credit card number"),
    ("password", "literal", "flag", "Contains word 'password'"),
    (
        r"\b(?:api[_-]?key|secret[_-]?key|access[_-]?token)\s*[:=]\s*\S+",
        "regex",
        "deny",
        "API key or secret",
    ),
)


@dataclass(frozen=True)
class CompiledFilter:
    filter_id: int
    name: str
    description: Optional[str]
    action: str
    regex: Optional[Pattern[str]] = None
    literal: Optional[str] = None

    def matches(self, text: str) -> bool:
        if self.regex is not None:
            return self.regex.search(text) is not None
        return self.literal is not None and self.literal in text.lower()


@dataclass(frozen=True)
class FilterMatch:
    action: str
    filter_id: int
    name: str
    description: Optional[str]

    @property
    def is_deny(self) -> bool:
        return self.action == FilterAction.DENY.value


@dataclass(frozen=True)
class CompiledFilterSet:
    deny: Tuple[CompiledFilter, ...] = ()
    flag: Tuple[CompiledFilter, ...] = ()
    skipped: int = 0

    def __len__(self) -> int:
        return len(self.deny) + len(self.flag)

    def evaluate(self, texts: Sequence[str]) -> Optional[FilterMatch]:
        """Return the deciding match, or None when nothing matched."""
        texts = [t for t in texts if t]
        for group in (self.deny, self.flag):
            for rule in group:
                if any(rule.matches(t) for t in texts):
                    return FilterMatch(
                        action=rule.action,
                        filter_id=rule.filter_id,
                        name=rule.name,
                        description=rule.description,
                    )
        return None


def compile_filters(rows: Sequence[ContentFilter]) -> CompiledFilterSet:
    deny: List[CompiledFilter] = []
    flag: List[CompiledFilter] = []
    skipped = 0
    for row in rows:
        if not row.enabled:
            continue
        if row.action not in (FilterAction.DENY.value, FilterAction.FLAG.value):
            logger.warning("Skipping content filter %s: unknown action %r", row.id, row.action)
            skipped += 1
            continue
        if row.pattern_type == PatternType.LITERAL.value:
            compiled = CompiledFilter(
                filter_id=row.id, name=row.display_name, description=row.description,
                action=row.action, literal=row.pattern.lower(),
            )
        else:
            try:
                regex = re.compile(row.pattern, re.IGNORECASE)
            except re.error as exc:
                logger.warning("Skipping content filter %s: invalid regex %r (%s)", row.id, row.pattern, exc)
                skipped += 1
                continue
            compiled = CompiledFilter(
                filter_id=row.id, name=row.display_name, description=row.description,
                action=row.action, regex=regex,
            )
        (deny if row.action == FilterAction.DENY.value else flag).append(compiled)
    return CompiledFilterSet(deny=tuple(deny), flag=tuple(flag), skipped=skipped)


class ContentFilterMatcher:
    """Holds the current compiled set; ``reload()`` replaces it wholesale."""

    def __init__(self, filter_set: Optional[CompiledFilterSet] = None):
        self._set = filter_set if filter_set is not None else CompiledFilterSet()
        self._reload_lock = threading.Lock()

    @classmethod
    def from_database(cls) -> "ContentFilterMatcher":
        matcher = cls()
        matcher.reload()
        return matcher

    @property
    def current(self) -> CompiledFilterSet:
        return self._set

    def reload(self) -> CompiledFilterSet:
        with self._reload_lock:
            new_set = compile_filters(list_filters(enabled_only=True))
            self._set = new_set
        logger.info(
            "Content filters loaded: %d deny, %d flag, %d skipped",
            len(new_set.deny), len(new_set.flag), new_set.skipped,
        )
        return new_set

    def check(self, subject: Optional[str], body: str) -> Optional[FilterMatch]:
        filter_set = self._set
        texts = [subject, body] if subject else [body]
        return filter_set.evaluate(texts)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def list_filters(enabled_only: bool = False) -> List[ContentFilter]:
    with get_session_context() as session:
        stmt = select(ContentFilter).order_by(ContentFilter.id)
        if enabled_only:
            stmt = stmt.where(ContentFilter.enabled == True)  # noqa: E712
        return list(session.exec(stmt).all())


def add_filter(
    pattern: str,
    pattern_type: str = PatternType.REGEX.value,
    action: str = FilterAction.DENY.value,
    description: Optional[str] = None,
) -> ContentFilter:
    if not pattern:
        raise ValueError("Filter pattern must not be empty")
    if pattern_type not in (PatternType.REGEX.value, PatternType.LITERAL.value):
        raise ValueError(f"Unknown pattern type: {pattern_type!r}")
    if action not in (FilterAction.DENY.value, FilterAction.FLAG.value):
        raise ValueError(f"Unknown filter action: {action!r}")
    if pattern_type == PatternType.REGEX.value:
        try:
            re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"Invalid regex: {exc}") from exc

    record = ContentFilter(
        pattern=pattern, pattern_type=pattern_type, action=action, description=description,
    )
    with get_session_context() as session:
        session.add(record)
        session.commit()
        session.refresh(record)
    logger.info("Added %s filter %s (%s)", action, record.id, record.display_name)
    return record


def set_filter_enabled(filter_id: int, enabled: bool) -> bool:
    with get_session_context() as session:
        record = session.get(ContentFilter, filter_id)
        if record is None:
            return False
        record.enabled = enabled
        session.add(record)
        session.commit()
    return True


def remove_filter(filter_id: int) -> bool:
    with get_session_context() as session:
        record = session.get(ContentFilter, filter_id)
        if record is None:
            return False
        session.delete(record)
        session.commit()
    return True


def seed_default_filters() -> int:
    """Insert the default rules into an empty filter table. Returns rows added."""
    with get_session_context() as session:
        if session.exec(select(ContentFilter)).first() is not None:
            return 0
        for pattern, pattern_type, action, description in DEFAULT_FILTERS:
            session.add(ContentFilter(
                pattern=pattern, pattern_type=pattern_type, action=action, description=description,
            ))
        session.commit()
    return len(DEFAULT_FILTERS)

"""Current intent ("what am I working on") plus pinned and recent lists.

Not a task system: one free-text tag, a small pinned set, and an MRU list of
recent tags. All comparisons are case-insensitive and every stored entry is
sanitized.
"""
from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

MAX_INTENT_LENGTH = 80
MAX_PINNED = 25
MAX_RECENTS = 10
ELLIPSIS = "…"


def _is_separator(ch: str) -> bool:
    return ch.isspace() or unicodedata.category(ch) == "Cc"


def sanitize(raw: Optional[str]) -> Optional[str]:
    if raw is None or not raw.strip():
        return None

    out: List[str] = []
    last_was_space = False
    for ch in raw.strip():
        if _is_separator(ch):
            if not last_was_space:
                out.append(" ")
                last_was_space = True
            continue
        out.append(ch)
        last_was_space = False

    normalized = "".join(out).strip()
    if len(normalized) > MAX_INTENT_LENGTH:
        normalized = normalized[:MAX_INTENT_LENGTH].strip()
    return normalized or None


def truncate_for_ui(text: str, max_chars: int) -> str:
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    if max_chars <= 1:
        return text[:1]
    return text[: max_chars - 1] + ELLIPSIS


def _key(s: Optional[str]) -> Optional[str]:
    return None if s is None else s.casefold()


def _normalize_list(items: Optional[Iterable[Any]], cap: int) -> List[str]:
    seen = set()
    out: List[str] = []
    for item in items or ():
        s = sanitize(item if isinstance(item, str) else None)
        if s is None or s.casefold() in seen:
            continue
        seen.add(s.casefold())
        out.append(s)
        if len(out) >= cap:
            break
    return out


def _remove_first(items: List[str], value: str) -> bool:
    for i, item in enumerate(items):
        if item.casefold() == value.casefold():
            del items[i]
            return True
    return False


def _add_mru(items: List[str], value: str, cap: int) -> None:
    _remove_first(items, value)
    items.insert(0, value)
    del items[cap:]


@dataclass
class TaskIntentState:
    current_intent: Optional[str] = None
    pinned: List[str] = field(default_factory=list)
    recents: List[str] = field(default_factory=list)

    def normalize(self) -> None:
        self.current_intent = sanitize(self.current_intent)
        self.pinned = _normalize_list(self.pinned, MAX_PINNED)
        self.recents = _normalize_list(self.recents, MAX_RECENTS)
        if self.current_intent is not None:
            _add_mru(self.recents, self.current_intent, MAX_RECENTS)

    def set_current_intent(self, raw: Optional[str], add_to_recents: bool) -> bool:
        """Set (or clear) the current intent; True when it changed ignoring case."""
        value = sanitize(raw)
        changed = _key(self.current_intent) != _key(value)
        self.current_intent = value

        if add_to_recents and value is not None:
            _add_mru(self.recents, value, MAX_RECENTS)

        self.pinned = _normalize_list(self.pinned, MAX_PINNED)
        self.recents = _normalize_list(self.recents, MAX_RECENTS)
        return changed

    def pin(self, raw: Optional[str]) -> bool:
        value = sanitize(raw)
        if value is None or self.is_pinned(value):
            return False
        self.pinned.append(value)
        self.pinned = _normalize_list(self.pinned, MAX_PINNED)
        return True

    def unpin(self, raw: Optional[str]) -> bool:
        value = sanitize(raw)
        if value is None:
            return False
        removed = _remove_first(self.pinned, value)
        if removed:
            self.pinned = _normalize_list(self.pinned, MAX_PINNED)
        return removed

    def is_pinned(self, raw: Optional[str]) -> bool:
        value = sanitize(raw)
        if value is None:
            return False
        return any(p.casefold() == value.casefold() for p in self.pinned)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "CurrentIntent": self.current_intent,
            "Pinned": list(self.pinned),
            "Recents": list(self.recents),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TaskIntentState":
        current = d.get("CurrentIntent")
        pinned = d.get("Pinned")
        recents = d.get("Recents")
        state = cls(
            current_intent=current if isinstance(current, str) else None,
            pinned=list(pinned) if isinstance(pinned, list) else [],
            recents=list(recents) if isinstance(recents, list) else [],
        )
        state.normalize()
        return state

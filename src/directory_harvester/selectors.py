"""Selector specs and prioritized probing."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class SelectorSpec:
    """A CSS selector with optional text and descendant filters.

    ``text`` is a case-sensitive substring, or a compiled pattern matched with
    ``search``. ``has`` is a CSS selector that must match a descendant.
    """

    css: str
    text: str | re.Pattern[str] | None = None
    has: str | None = None
    label: str = ""

    def describe(self) -> str:
        if self.label:
            return self.label
        parts = [self.css]
        if self.text is not None:
            pattern = self.text.pattern if isinstance(self.text, re.Pattern) else self.text
            parts.append(f"text={pattern!r}")
        if self.has:
            parts.append(f"has={self.has!r}")
        return " ".join(parts)

    def matches_text(self, value: str) -> bool:
        if self.text is None:
            return True
        if isinstance(self.text, re.Pattern):
            return self.text.search(value or "") is not None
        return self.text in (value or "")


@dataclass(frozen=True)
class ProbeHit(Generic[T]):
    """The first successful probe: which spec matched and what it returned."""

    spec: SelectorSpec
    value: T


def first_match(
    specs: Iterable[SelectorSpec],
    probe: Callable[[SelectorSpec], T | None],
) -> ProbeHit[T] | None:
    """Evaluate probes in priority order and return the first truthy result."""
    for spec in specs:
        value = probe(spec)
        if value:
            return ProbeHit(spec=spec, value=value)
    return None

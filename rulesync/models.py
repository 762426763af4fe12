"""
models.py - Data Structures Shared by the Refresh Engine

Items are immutable for the duration of a cycle. A RefreshJob is just the
ordered tuple of items handed to the orchestrator, and the RefreshReport is
everything the orchestrator hands back.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple


# =============================================================================
# INPUT
# =============================================================================

@dataclass(frozen=True)
class Item:
    """
    One rule-list source entry.

    Attributes:
        title: Display label, not guaranteed to be unique
        location: URL, content reference, file path URI or bare host
        enabled: Disabled items are never fetched

    Example:
        >>> Item("Adaway", "https://adaway.org/hosts.txt").enabled
        True
    """
    title: str
    location: str
    enabled: bool = True


class RefreshJob(NamedTuple):
    """The items processed by one refresh cycle, in configuration order."""
    items: tuple[Item, ...]

    @classmethod
    def of(cls, items) -> RefreshJob:
        return cls(tuple(items))

    @property
    def enabled_items(self) -> tuple[Item, ...]:
        return tuple(item for item in self.items if item.enabled)


# =============================================================================
# OUTPUT
# =============================================================================

class ErrorEntry(NamedTuple):
    """A failure recorded for one item."""
    title: str
    message: str

    def __str__(self) -> str:
        return f"{self.title}: {self.message}"


@dataclass
class RefreshReport:
    """
    Outcome of one refresh cycle.

    Attributes:
        errors: One entry per failed item, in completion order
        done: Titles of the items whose fetch task finished
        skipped: Titles of disabled items (never submitted)
        cancelled: Titles of enabled items not submitted because of cancel()
    """
    errors: list[ErrorEntry] = field(default_factory=list)
    done: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

"""
mirror.py - Item Sources and Local Mirror Locations

Maps item locations to the local file that mirrors them, and loads the item
list from a sources file.

Location kinds:
    http://, https://   -> <mirror_dir>/<percent-encoded URL>, downloadable
    content:/...        -> <mirror_dir>/<percent-encoded reference>, needs a
                           read grant, never downloaded by the engine
    file:/path          -> /path itself, never downloaded
    anything else       -> no mirror (bare hosts, unknown schemes)

Sources file formats:
    *.json  {"items": [{"title": ..., "location": ..., "enabled": ...}]}
            (or a bare list of such objects)
    other   one location per line, "title = location" to name it, "!" prefix
            to disable it, "#" comments and blank lines ignored
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from urllib.parse import quote_plus, urlparse

from rulesync.atomicfile import WriteRegistry
from rulesync.models import Item

logger = logging.getLogger(__name__)

DOWNLOADABLE_SCHEMES = ("http://", "https://")
CONTENT_PREFIX = "content:/"
FILE_PREFIX = "file:/"


def is_content_reference(location: str) -> bool:
    return location.startswith(CONTENT_PREFIX)


def is_downloadable(location: str) -> bool:
    return location.startswith(DOWNLOADABLE_SCHEMES)


def location_to_filename(location: str) -> str:
    """
    Encode a location into a single, collision-free file name.

    Example:
        >>> location_to_filename("http://example.com/")
        'http%3A%2F%2Fexample.com%2F'
    """
    return quote_plus(location, safe="")


class MirrorResolver:
    """
    Deterministic location -> local mirror path mapping.

    Also owns the WriteRegistry for its mirrors, so every writer that
    resolves through the same resolver is excluded per mirror path.
    """

    def __init__(self, mirror_dir: str | Path) -> None:
        self.mirror_dir = Path(mirror_dir)
        self.writes = WriteRegistry()

    def __call__(self, location: str) -> Path | None:
        if is_downloadable(location) or is_content_reference(location):
            return self.mirror_dir / location_to_filename(location)
        if location.startswith(FILE_PREFIX):
            return Path(urlparse(location).path)
        return None


# =============================================================================
# SOURCES FILE
# =============================================================================

_TRUE_STRINGS = frozenset({"true", "yes", "on", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "off", "0"})


def parse_enabled(value) -> bool | None:
    """
    Interpret an "enabled" value from a sources file, None if it is unclear.

    Example:
        >>> parse_enabled("No")
        False
        >>> parse_enabled("maybe") is None
        True
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    return None


def _item_from_dict(entry: dict) -> Item | None:
    location = str(entry.get("location", "")).strip()
    if not location:
        return None
    title = str(entry.get("title") or location)
    enabled = parse_enabled(entry.get("enabled", True))
    if enabled is None:
        logger.warning(
            "Ignoring %s: unrecognised enabled value %r", location, entry.get("enabled")
        )
        return None
    return Item(title=title, location=location, enabled=enabled)


def _item_from_line(line: str) -> Item | None:
    enabled = True
    if line.startswith("!"):
        enabled = False
        line = line[1:].strip()
    title, sep, location = line.partition(" = ")
    if not sep:
        title = location = line
    title, location = title.strip(), location.strip()
    if not location:
        return None
    return Item(title=title, location=location, enabled=enabled)


def load_items(sources_file: str | Path) -> list[Item]:
    """Load items from a JSON or plain-text sources file."""
    path = Path(sources_file)
    if not path.exists():
        logger.error("Sources file not found: %s", path)
        return []

    items: list[Item] = []
    if path.suffix == ".json":
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logger.error("Could not load %s: %s", path, e)
            return []
        entries = data.get("items", []) if isinstance(data, dict) else data
        if not isinstance(entries, list):
            logger.error("Could not load %s: expected a list of items", path)
            return []
        for entry in entries:
            if not isinstance(entry, dict):
                logger.warning("Ignoring malformed entry in %s: %r", path, entry)
                continue
            item = _item_from_dict(entry)
            if item is not None:
                items.append(item)
        return items

    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                item = _item_from_line(line)
                if item is not None:
                    items.append(item)
    except (UnicodeDecodeError, OSError) as e:
        logger.error("Could not load %s: %s", path, e)
        return []
    return items

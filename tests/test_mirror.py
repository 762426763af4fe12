import json
from pathlib import Path

from rulesync.mirror import (
    MirrorResolver,
    is_content_reference,
    is_downloadable,
    load_items,
    location_to_filename,
    parse_enabled,
)
from rulesync.models import Item


def test_resolver_maps_locations():
    resolve = MirrorResolver("/dir")

    assert resolve("http://example.com/") == Path("/dir/http%3A%2F%2Fexample.com%2F")
    assert resolve("https://example.com/") == Path("/dir/https%3A%2F%2Fexample.com%2F")
    assert resolve("file:/myfile") == Path("/myfile")
    assert resolve("content://provider/doc") == Path("/dir") / location_to_filename("content://provider/doc")
    assert resolve("ahost.com") is None
    assert resolve("ftp://example.com/list") is None


def test_distinct_locations_get_distinct_files():
    names = {
        location_to_filename(loc)
        for loc in ("http://a/b?c=1", "http://a/b?c=2", "http://a/b/c", "http://a/b%2Fc")
    }
    assert len(names) == 4


def test_location_kinds():
    assert is_downloadable("https://example.com/hosts")
    assert not is_downloadable("content://foo")
    assert is_content_reference("content://foo")
    assert not is_content_reference("http://foo")


def test_load_items_json(tmp_path):
    path = tmp_path / "sources.json"
    path.write_text(json.dumps({"items": [
        {"title": "Adaway", "location": "https://adaway.org/hosts.txt"},
        {"title": "Off", "location": "http://example.com/off", "enabled": False},
        {"location": "http://example.com/untitled"},
        {"title": "no location"},
        "garbage",
    ]}))

    assert load_items(path) == [
        Item("Adaway", "https://adaway.org/hosts.txt"),
        Item("Off", "http://example.com/off", enabled=False),
        Item("http://example.com/untitled", "http://example.com/untitled"),
    ]


def test_load_items_text(tmp_path):
    path = tmp_path / "sources.txt"
    path.write_text(
        "# comment\n"
        "\n"
        "https://example.com/a.txt\n"
        "Named list = https://example.com/b.txt\n"
        "! https://example.com/c.txt\n"
    )

    assert load_items(path) == [
        Item("https://example.com/a.txt", "https://example.com/a.txt"),
        Item("Named list", "https://example.com/b.txt"),
        Item("https://example.com/c.txt", "https://example.com/c.txt", enabled=False),
    ]


def test_load_items_missing_or_broken(tmp_path):
    assert load_items(tmp_path / "nope.json") == []
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    assert load_items(broken) == []


def test_load_items_enabled_values(tmp_path):
    path = tmp_path / "sources.json"
    path.write_text(json.dumps([
        {"title": "quoted-off", "location": "http://example.com/a", "enabled": "false"},
        {"title": "quoted-on", "location": "http://example.com/b", "enabled": "Yes"},
        {"title": "zero", "location": "http://example.com/c", "enabled": 0},
        {"title": "unclear", "location": "http://example.com/d", "enabled": "maybe"},
        {"title": "number", "location": "http://example.com/e", "enabled": 3},
    ]))

    assert load_items(path) == [
        Item("quoted-off", "http://example.com/a", enabled=False),
        Item("quoted-on", "http://example.com/b"),
        Item("zero", "http://example.com/c", enabled=False),
    ]


def test_parse_enabled():
    assert parse_enabled(True) is True
    assert parse_enabled(" OFF ") is False
    assert parse_enabled("1") is True
    assert parse_enabled(None) is None
    assert parse_enabled([]) is None


def test_load_items_unexpected_shapes(tmp_path):
    null_items = tmp_path / "null.json"
    null_items.write_text('{"items": null}')
    scalar = tmp_path / "scalar.json"
    scalar.write_text("42")

    assert load_items(null_items) == []
    assert load_items(scalar) == []


def test_load_items_unreadable_text(tmp_path):
    binary = tmp_path / "sources.txt"
    binary.write_bytes(b"https://example.com/a\n\xff\xfe\x80 not utf-8\n")
    directory = tmp_path / "folder.txt"
    directory.mkdir()

    assert load_items(binary) == []
    assert load_items(directory) == []

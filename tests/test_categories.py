# -*- coding: utf-8 -*-
import pytest
import requests

from map_logic import categories
from map_logic.categories import (
    DEFAULT_COLOR,
    PALETTE,
    CategoryLoadError,
    CategoryTable,
    ColorAssignment,
    build_color_rule,
    compound_key,
    convert_to_csv_url,
    fetch_category_rows,
    parse_category_rows,
)


ROWS = [
    {"都道府県名": "熊本県", "訪問済み": " 上益城郡益城町 ", "予定": "熊本市"},
    {"都道府県名": "東京都", "訪問済み": "千代田区", "予定": ""},
    {"都道府県名": "東京都", "訪問済み": "千代田区"},
]


class FakeResponse:
    def __init__(self, text, status_code=200):
        self.text = text
        self.status_code = status_code
        self.encoding = None

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_parse_rows_excludes_prefecture_and_trims():
    parsed = parse_category_rows(ROWS)
    assert list(parsed.keys()) == ["訪問済み", "予定"]
    assert parsed["訪問済み"] == {"上益城郡益城町", "千代田区"}
    assert parsed["予定"] == {"熊本市"}


def test_parse_rows_excludes_english_prefecture_header():
    parsed = parse_category_rows([{"Prefecture": "Tokyo", "Visited": "Chiyoda-ku"}])
    assert list(parsed.keys()) == ["Visited"]


def test_parse_rows_skips_nan_cells():
    parsed = parse_category_rows([{"A": float("nan"), "B": None, "C": "x"}])
    assert parsed == {"C": {"x"}}


def test_compound_key():
    assert compound_key("Kamimashiki-gun", "Mashiki-machi") == "Kamimashiki-gunMashiki-machi"
    assert compound_key(None, "千代田区") == "千代田区"
    assert compound_key(None, None) == ""
    assert compound_key(float("nan"), "益城町") == "益城町"


def test_compound_key_keeps_surrounding_spaces():
    # 地図側の式と同じく前後の空白は詰めない
    assert compound_key(None, " 益城町") == " 益城町"
    rule = build_color_rule({"A": {"益城町"}})
    assert rule.color_for(None, " 益城町") == DEFAULT_COLOR
    assert rule.color_for_properties({"N03_004": " 益城町"}) == DEFAULT_COLOR
    assert rule.color_for(None, "益城町") == PALETTE[0]


def test_first_inserted_category_wins():
    rule = build_color_rule({"A": {"Kamimashiki-gunMashiki-machi"}, "B": {"Kamimashiki-gunMashiki-machi", "X"}})
    assert rule.color_for("Kamimashiki-gun", "Mashiki-machi") == PALETTE[0]
    assert rule.color_for(None, "X") == PALETTE[1]
    assert rule.color_for(None, "Y") == DEFAULT_COLOR


def test_palette_cycles_by_position():
    cats = {f"c{i}": {f"m{i}"} for i in range(9)}
    rule = build_color_rule(cats)
    assert [e.color for e in rule.entries] == PALETTE + [PALETTE[0]]


def test_explicit_color_overrides_default():
    colors = ColorAssignment()
    colors.set("B", "#000000")
    colors.set("A", "")
    rule = build_color_rule({"A": {"a"}, "B": {"b"}}, colors)
    assert rule.legend() == [("A", PALETTE[0]), ("B", "#000000")]
    assert rule.pairs()[1] == (frozenset({"b"}), "#000000")


def test_expression_layout():
    rule = build_color_rule({"A": {"b", "a"}})
    assert rule.to_expression() == [
        "case",
        ["in", ["concat", ["coalesce", ["get", "N03_003"], ""], ["coalesce", ["get", "N03_004"], ""]], ["literal", ["a", "b"]]],
        PALETTE[0],
        DEFAULT_COLOR,
    ]
    assert build_color_rule({}).to_expression() == DEFAULT_COLOR


def test_reload_replaces_table():
    table = CategoryTable({"old": {"x"}})
    table.reload(ROWS)
    assert table.names() == ["訪問済み", "予定"]
    assert "old" not in table.categories


def test_failed_reload_preserves_table():
    table = CategoryTable().reload(ROWS)
    before = table.categories

    def broken_rows():
        yield {"新しい列": "益城町"}
        raise IOError("connection reset")

    with pytest.raises(CategoryLoadError):
        table.reload(broken_rows())
    assert table.categories == before


@pytest.mark.parametrize(
    "url, expected",
    [
        (
            "https://docs.google.com/spreadsheets/d/abc_123/edit#gid=42",
            "https://docs.google.com/spreadsheets/d/abc_123/export?format=csv&gid=42",
        ),
        (
            "https://docs.google.com/spreadsheets/d/abc/edit",
            "https://docs.google.com/spreadsheets/d/abc/export?format=csv&gid=0",
        ),
        (
            "https://docs.google.com/spreadsheets/d/e/XYZ/pubhtml",
            "https://docs.google.com/spreadsheets/d/e/XYZ/pub?output=csv",
        ),
        (
            "https://docs.google.com/spreadsheets/d/e/XYZ/pub?output=csv",
            "https://docs.google.com/spreadsheets/d/e/XYZ/pub?output=csv",
        ),
        ("https://example.com/list.csv", "https://example.com/list.csv"),
    ],
)
def test_convert_to_csv_url(url, expected):
    assert convert_to_csv_url(url) == expected


def test_fetch_category_rows(monkeypatch):
    calls = []

    def fake_get(url, timeout):
        calls.append(url)
        return FakeResponse("都道府県,訪問済み,予定\n熊本県,上益城郡益城町,\n東京都,千代田区,中央区\n")

    monkeypatch.setattr(categories.requests, "get", fake_get)
    rows = fetch_category_rows("https://docs.google.com/spreadsheets/d/abc/edit")
    assert calls == ["https://docs.google.com/spreadsheets/d/abc/export?format=csv&gid=0"]
    assert rows[0] == {"都道府県": "熊本県", "訪問済み": "上益城郡益城町", "予定": ""}
    assert parse_category_rows(rows) == {"訪問済み": {"上益城郡益城町", "千代田区"}, "予定": {"中央区"}}


def test_fetch_category_rows_http_error(monkeypatch):
    monkeypatch.setattr(categories.requests, "get", lambda url, timeout: FakeResponse("", status_code=404))
    with pytest.raises(CategoryLoadError):
        fetch_category_rows("https://example.com/list.csv")


def test_fetch_category_rows_connection_error(monkeypatch):
    def fake_get(url, timeout):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(categories.requests, "get", fake_get)
    with pytest.raises(CategoryLoadError):
        fetch_category_rows("https://example.com/list.csv")

# -*- coding: utf-8 -*-
"""
Category / color logic
- スプレッドシート（CSV）の列ごとに市区町村名の集合を作る
- 列名→色の割り当て（明示指定＞パレットの既定色）
- 先頭一致で色を決めるルールと MapLibre 用の式を生成
"""
from __future__ import annotations

import io
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

import pandas as pd
import requests

from .core import PROP_CITY, PROP_GUN, AdministrativeUnit, safe_strip

DEFAULT_CSV_URL = ""
DEFAULT_COLOR = "#cccccc"  # どのカテゴリにも含まれない市区町村（グレー）
PALETTE = [
    "#4a90d9",  # 青
    "#50e3c2",  # 水色
    "#f5a623",  # オレンジ
    "#9013fe",  # 紫
    "#b8e986",  # 黄緑
    "#ff6b35",  # 赤橙
    "#8b572a",  # 茶色
    "#7ed321",  # 緑
]
# 都道府県列はメタデータなのでカテゴリにしない
PREFECTURE_TOKENS = ("都道府県", "prefecture")
FETCH_TIMEOUT_SEC = 30


class CategoryLoadError(RuntimeError):
    """カテゴリ表の取得・解析に失敗した（既存の表はそのまま）。"""


def is_prefecture_header(header: str) -> bool:
    h = str(header).lower()
    return any(token in h for token in PREFECTURE_TOKENS)


def _key_part(val: Optional[Any]) -> str:
    # 欠損は空文字。前後の空白は残す（地図側の concat と同じ値にする）
    if val is None or (isinstance(val, float) and math.isnan(val)):
        return ""
    return str(val)


def compound_key(county: Optional[str], city: Optional[str]) -> str:
    # 郡・政令市名 + 市区町村名（例: "上益城郡" + "益城町" = "上益城郡益城町"）
    return _key_part(county) + _key_part(city)


def parse_category_rows(rows: Iterable[Mapping[str, Any]]) -> Dict[str, Set[str]]:
    """
    行（ヘッダー→セル値）から {カテゴリ名: 市区町村名の集合} を作る。
    ヘッダーの初出順を保持する。空セル・欠損セルはスキップ。
    """
    categories: Dict[str, Set[str]] = {}
    for row in rows:
        for header, value in row.items():
            if header is None or is_prefecture_header(header):
                continue
            name = safe_strip(value)
            if not name:
                continue
            categories.setdefault(str(header), set()).add(name)
    return categories


class CategoryTable:
    """カテゴリ表。再読込は全件構築後に差し替える（途中状態は見せない）。"""

    def __init__(self, categories: Optional[Mapping[str, Iterable[str]]] = None):
        self._categories: Dict[str, FrozenSet[str]] = {
            k: frozenset(v) for k, v in (categories or {}).items()
        }

    @property
    def categories(self) -> Dict[str, FrozenSet[str]]:
        return dict(self._categories)

    def names(self) -> List[str]:
        return list(self._categories.keys())

    def __len__(self) -> int:
        return len(self._categories)

    def __iter__(self):
        return iter(self._categories)

    def all_members(self) -> Set[str]:
        out: Set[str] = set()
        for members in self._categories.values():
            out.update(members)
        return out

    def reload(self, rows: Iterable[Mapping[str, Any]]) -> "CategoryTable":
        try:
            parsed = parse_category_rows(rows)
        except CategoryLoadError:
            raise
        except Exception as e:
            raise CategoryLoadError(f"カテゴリ表の解析に失敗しました: {e}") from e
        self._categories = {k: frozenset(v) for k, v in parsed.items()}
        return self


class ColorAssignment:
    """カテゴリ名→色。明示指定はカテゴリ表の再読込後も保持する。"""

    def __init__(self, explicit: Optional[Mapping[str, str]] = None, palette: Optional[List[str]] = None):
        self.explicit: Dict[str, str] = dict(explicit or {})
        self.palette: List[str] = list(palette or PALETTE)

    def set(self, category: str, color: str) -> None:
        if not color or not isinstance(color, str):
            return
        self.explicit[category] = color

    def reset(self, category: Optional[str] = None) -> None:
        if category is None:
            self.explicit.clear()
        else:
            self.explicit.pop(category, None)

    def default_color(self, category: str, names: List[str]) -> str:
        # 全カテゴリ名の中での位置でパレットを循環
        try:
            index = names.index(category)
        except ValueError:
            index = len(names)
        return self.palette[index % len(self.palette)]

    def resolve(self, category: str, names: List[str]) -> str:
        return self.explicit.get(category) or self.default_color(category, names)


@dataclass(frozen=True)
class ColorRuleEntry:
    category: str
    members: FrozenSet[str]
    color: str


@dataclass(frozen=True)
class ColorRule:
    entries: Tuple[ColorRuleEntry, ...]
    default: str = DEFAULT_COLOR

    def color_for_key(self, key: str) -> str:
        # 先頭一致（カテゴリの挿入順）
        for entry in self.entries:
            if key in entry.members:
                return entry.color
        return self.default

    def category_for_key(self, key: str) -> Optional[str]:
        for entry in self.entries:
            if key in entry.members:
                return entry.category
        return None

    def color_for(self, county: Optional[str], city: Optional[str]) -> str:
        return self.color_for_key(compound_key(county, city))

    def color_for_unit(self, unit: AdministrativeUnit) -> str:
        return self.color_for(unit.county, unit.city)

    def color_for_properties(self, props: Mapping[str, Any]) -> str:
        return self.color_for(props.get(PROP_GUN), props.get(PROP_CITY))

    def pairs(self) -> List[Tuple[FrozenSet[str], str]]:
        return [(e.members, e.color) for e in self.entries]

    def legend(self) -> List[Tuple[str, str]]:
        return [(e.category, e.color) for e in self.entries]

    def to_expression(self) -> Any:
        """MapLibre の fill-color 式（case 文）を組み立てる。"""
        if not any(e.members for e in self.entries):
            return self.default
        conditions: List[Any] = []
        for entry in self.entries:
            conditions.append(
                [
                    "in",
                    [
                        "concat",
                        ["coalesce", ["get", PROP_GUN], ""],
                        ["coalesce", ["get", PROP_CITY], ""],
                    ],
                    ["literal", sorted(entry.members)],
                ]
            )
            conditions.append(entry.color)
        return ["case", *conditions, self.default]


def build_color_rule(
    categories: Mapping[str, Iterable[str]],
    assignment: Optional[ColorAssignment] = None,
    default: str = DEFAULT_COLOR,
) -> ColorRule:
    assignment = assignment or ColorAssignment()
    names = list(categories.keys())
    entries = tuple(
        ColorRuleEntry(category=name, members=frozenset(categories[name]), color=assignment.resolve(name, names))
        for name in names
    )
    return ColorRule(entries=entries, default=default)


def convert_to_csv_url(url: str) -> str:
    # スプレッドシートURLをCSV出力URLに変換
    url = safe_strip(url)
    if "output=csv" in url or "export?format=csv" in url:
        return url
    # 公開URL形式: /d/e/XXXXX/pubhtml → /d/e/XXXXX/pub?output=csv
    if "/pubhtml" in url:
        return url.replace("/pubhtml", "/pub?output=csv")
    # 編集URL形式: /d/XXXXX/edit → /d/XXXXX/export?format=csv
    edit_match = re.search(r"/d/([a-zA-Z0-9_-]+)", url)
    if edit_match:
        spreadsheet_id = edit_match.group(1)
        gid_match = re.search(r"gid=(\d+)", url)
        gid = gid_match.group(1) if gid_match else "0"
        return f"https://docs.google.com/spreadsheets/d/{spreadsheet_id}/export?format=csv&gid={gid}"
    return url


def read_category_csv(text: str) -> List[Dict[str, Any]]:
    df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
    df.columns = [str(c).strip() for c in df.columns]
    return df.to_dict(orient="records")


def fetch_category_rows(url: str, timeout: float = FETCH_TIMEOUT_SEC) -> List[Dict[str, Any]]:
    """CSVを取得して行のリストを返す。失敗は CategoryLoadError。"""
    csv_url = convert_to_csv_url(url)
    try:
        resp = requests.get(csv_url, timeout=timeout)
        resp.raise_for_status()
        resp.encoding = "utf-8"
        return read_category_csv(resp.text)
    except requests.RequestException as e:
        raise CategoryLoadError(f"CSV読み込みエラー: {e}") from e
    except (ValueError, pd.errors.ParserError) as e:
        raise CategoryLoadError(f"CSV解析エラー: {e}") from e

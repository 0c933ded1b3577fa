# -*- coding: utf-8 -*-
"""
地図1枚分の状態をまとめて持つセッション

- 検索インデックス / カテゴリ表 / 色割り当て / 色ルール / ハイライト
- モジュール変数には持たず、呼び出し側（API・Streamlit）がインスタンスを保持する
- 再構築は常に丸ごと差し替え
"""
from __future__ import annotations

import os
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .categories import (
    DEFAULT_CSV_URL,
    CategoryTable,
    ColorAssignment,
    ColorRule,
    build_color_rule,
    fetch_category_rows,
)
from .core import CACHE_DIR, AdministrativeUnit, Bounds, SearchIndex, aggregate_units, safe_strip
from .highlight import HighlightController

CONFIG_PATH = os.path.join(CACHE_DIR, "spreadsheet_url.txt")


class SpreadsheetUrlStore:
    """最後に読み込めたスプレッドシートURL（保存する設定はこの1つだけ）。"""

    def __init__(self, path: str = CONFIG_PATH):
        self.path = path

    def load(self) -> str:
        if not self.path or not os.path.exists(self.path):
            return DEFAULT_CSV_URL
        with open(self.path, encoding="utf-8") as f:
            return f.read().strip()

    def save(self, url: str) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(url.strip())


class MapSession:
    def __init__(
        self,
        index: Optional[SearchIndex] = None,
        highlight: Optional[HighlightController] = None,
        url_store: Optional[SpreadsheetUrlStore] = None,
        fetch_rows=fetch_category_rows,
    ):
        self.index = index or SearchIndex()
        self.table = CategoryTable()
        self.colors = ColorAssignment()
        self.highlighter = highlight or HighlightController()
        self.url_store = url_store
        self.fetch_rows = fetch_rows
        self._rule = build_color_rule({}, self.colors)

    # 検索インデックス
    def load_units(self, features: Iterable[Dict[str, Any]], progress_cb=None) -> SearchIndex:
        self.index = SearchIndex(aggregate_units(features, progress_cb=progress_cb))
        return self.index

    def load_index(self, records: Iterable[Dict[str, Any]]) -> SearchIndex:
        self.index = SearchIndex.from_records(records)
        return self.index

    def search(self, text: Optional[str]) -> List[AdministrativeUnit]:
        return self.index.query(text)

    # カテゴリ・色
    @property
    def color_rule(self) -> ColorRule:
        return self._rule

    def rebuild_rule(self) -> ColorRule:
        self._rule = build_color_rule(self.table.categories, self.colors)
        return self._rule

    def load_categories(self, rows: Iterable[Mapping[str, Any]]) -> ColorRule:
        # 失敗時は CategoryLoadError。表もルールも元のまま
        self.table.reload(rows)
        return self.rebuild_rule()

    def load_spreadsheet(self, url: str) -> ColorRule:
        rows = self.fetch_rows(url)
        rule = self.load_categories(rows)
        if self.url_store is not None:
            self.url_store.save(url)
        return rule

    def saved_url(self) -> str:
        if self.url_store is None:
            return DEFAULT_CSV_URL
        return self.url_store.load()

    def set_category_color(self, category: str, color: str) -> ColorRule:
        self.colors.set(category, color)
        return self.rebuild_rule()

    def reset_category_colors(self, category: Optional[str] = None) -> ColorRule:
        # 明示指定を外してパレットの既定色に戻す（None なら全カテゴリ）
        self.colors.reset(category)
        return self.rebuild_rule()

    def color_for(self, code: str) -> str:
        unit = self.index.get(code)
        if unit is None:
            return self._rule.default
        return self._rule.color_for_unit(unit)

    def unmatched_members(self) -> List[str]:
        # どの市区町村とも一致しないカテゴリ値（検証はせず報告のみ）
        known = {u.full_name for u in self.index}
        return sorted(m for m in self.table.all_members() if m not in known)

    # ハイライト
    @property
    def highlighted_code(self) -> Optional[str]:
        return self.highlighter.active_code

    def highlight(self, code: str) -> bool:
        code = safe_strip(code)
        self.highlighter.highlight(code)
        return code in self.index

    def clear_highlight(self) -> None:
        self.highlighter.clear()

    def fly_to(self, code: str) -> Optional[Bounds]:
        unit = self.index.get(safe_strip(code))
        self.highlight(code)
        if unit is None:
            return None
        return unit.bounds

    def status(self) -> Dict[str, Any]:
        return {
            "units": len(self.index),
            "categories": len(self.table),
            "selected": len(self.table.all_members()),
            "highlighted": self.highlighted_code,
            "spreadsheet_url": self.saved_url(),
        }

# -*- coding: utf-8 -*-
"""
Core municipality logic
- 座標のフラット化（Polygon / MultiPolygon / 不定深さ）
- 面積（シューレース公式）による小さな島の除去
- 団体コード単位の集約（中心座標・バウンド）
- 検索インデックス
"""
from __future__ import annotations

import copy
import json
import math
import os
from dataclasses import dataclass
from numbers import Number
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import pandas as pd

# 定数定義
BASE_DIR = os.path.dirname(__file__)
CACHE_DIR = os.path.join(BASE_DIR, "cache")
PUBLIC_DIR = os.path.abspath(os.path.join(BASE_DIR, "..", "public"))
GEOJSON_PATH = os.path.abspath(os.path.join(BASE_DIR, "..", "N03-20240101.geojson"))
SEARCH_DATA_NAME = "search-data.json"
PREFECTURES_NAME = "prefectures.json"
SEARCH_DATA_PATH = os.path.join(PUBLIC_DIR, SEARCH_DATA_NAME)
COORD_PRECISION = 4  # 小数点4桁に丸める
SEARCH_LIMIT = 10  # 検索結果の最大件数
MIN_POLYGON_AREA = 1e-6  # 度単位の平面面積（相対比較用。実面積ではない）

# 国土数値情報 行政区域データ（N03）のプロパティ名
PROP_PREF = "N03_001"  # 都道府県名
PROP_GUN = "N03_003"  # 郡・政令市名
PROP_CITY = "N03_004"  # 市区町村名
PROP_KU = "N03_005"  # 区名（政令市の場合）
PROP_CODE = "N03_007"  # 行政区域コード

Point = Tuple[float, float]
Bounds = Tuple[Point, Point]


# ユーティリティ
def safe_strip(val: Optional[Any]) -> str:
    if val is None or (isinstance(val, float) and math.isnan(val)):
        return ""
    return str(val).strip()


def round_half_up(values: Any, digits: int = COORD_PRECISION) -> Any:
    # 0.5 は +∞ 方向に丸める（JavaScript の Math.round と同じ）。float / Series / DataFrame 共通
    scale = 10 ** digits
    return (values * scale + 0.5) // 1 / scale


def _is_number(val: Any) -> bool:
    return isinstance(val, Number) and not isinstance(val, bool)


def _is_point(node: Any) -> bool:
    return (
        isinstance(node, (list, tuple))
        and len(node) >= 2
        and _is_number(node[0])
        and _is_number(node[1])
    )


def flatten_coordinates(coords: Any) -> List[Point]:
    """
    入れ子の座標配列から点列を取り出す（深さ優先・出現順）。
    再帰は使わずスタックで処理する（大きな境界データでも深さ制限に当たらない）。
    点でも配列でもない要素は無視し、空/不正なジオメトリは [] を返す。
    """
    points: List[Point] = []
    if not isinstance(coords, (list, tuple)):
        return points
    stack: List[Any] = [coords]
    while stack:
        item = stack.pop()
        if not isinstance(item, (list, tuple)):
            continue
        if _is_point(item):
            points.append((float(item[0]), float(item[1])))
            continue
        # 出現順を保つため逆順に積む
        for child in reversed(item):
            stack.append(child)
    return points


def ring_area(ring: Any) -> float:
    # シューレース公式（閉じていないリングも可）
    pts = flatten_coordinates(ring)
    n = len(pts)
    if n < 3:
        return 0.0
    total = 0.0
    for i in range(n):
        x1, y1 = pts[i]
        x2, y2 = pts[(i + 1) % n]
        total += x1 * y2 - x2 * y1
    return abs(total) / 2.0


def polygon_area(polygon: Any) -> float:
    # 外周リング（index 0）の面積
    if not isinstance(polygon, (list, tuple)) or not polygon:
        return 0.0
    return ring_area(polygon[0])


def filter_small_polygons(multipolygon: Any, threshold: float = MIN_POLYGON_AREA) -> List[Any]:
    """MultiPolygon の各ポリゴンのうち、外周面積が閾値以上のものだけを返す。"""
    if not isinstance(multipolygon, (list, tuple)):
        return []
    return [poly for poly in multipolygon if polygon_area(poly) >= threshold]


def filter_feature(feature: Dict[str, Any], threshold: float = MIN_POLYGON_AREA) -> Optional[Dict[str, Any]]:
    """
    小さな島を除去したフィーチャーを返す。全ポリゴンが閾値未満なら None。
    閾値は絶対値（最大ポリゴンとの相対比ではない）。測地補正はしない。
    """
    geometry = feature.get("geometry") or {}
    geom_type = geometry.get("type")
    coords = geometry.get("coordinates")

    if geom_type == "MultiPolygon":
        kept = filter_small_polygons(coords, threshold)
        if not kept:
            return None
        out = copy.deepcopy(feature)
        out["geometry"]["coordinates"] = kept
        return out
    if geom_type == "Polygon":
        # 単一ポリゴンのMultiPolygonとして扱う
        if not filter_small_polygons([coords], threshold):
            return None
        return copy.deepcopy(feature)
    return copy.deepcopy(feature)


def filter_features(features: Iterable[Dict[str, Any]], threshold: float = MIN_POLYGON_AREA) -> List[Dict[str, Any]]:
    out = []
    for feature in features:
        filtered = filter_feature(feature, threshold)
        if filtered is not None:
            out.append(filtered)
    return out


@dataclass(frozen=True)
class AdministrativeUnit:
    code: str
    prefecture: str
    county: str
    city: str
    centroid: Point
    bounds: Bounds

    @property
    def full_name(self) -> str:
        return self.county + self.city

    def to_record(self) -> Dict[str, Any]:
        # search-data.json の1レコード
        (min_x, min_y), (max_x, max_y) = self.bounds
        return {
            "code": self.code,
            "pref": self.prefecture,
            "gun": self.county,
            "city": self.city,
            "full": self.full_name,
            "center": [self.centroid[0], self.centroid[1]],
            "bounds": [[min_x, min_y], [max_x, max_y]],
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "AdministrativeUnit":
        center = record.get("center") or [0.0, 0.0]
        bounds = record.get("bounds") or [[0.0, 0.0], [0.0, 0.0]]
        return cls(
            code=safe_strip(record.get("code")),
            prefecture=safe_strip(record.get("pref")),
            county=safe_strip(record.get("gun")),
            city=safe_strip(record.get("city")),
            centroid=(float(center[0]), float(center[1])),
            bounds=(
                (float(bounds[0][0]), float(bounds[0][1])),
                (float(bounds[1][0]), float(bounds[1][1])),
            ),
        )


def aggregate_units(features: Iterable[Dict[str, Any]], progress_cb=None) -> List[AdministrativeUnit]:
    """
    団体コード別に集約して AdministrativeUnit のリストを返す。
    - コード/市区町村名のないフィーチャーはスキップ
    - 同じコードの複数フィーチャーは座標をまとめて計算
    - 中心座標は全頂点の単純平均（面積重み付けなし）
    - 点が1つもないコードは出力しない
    - 出力はコード順
    """
    names: Dict[str, Tuple[str, str, str]] = {}
    geometries: Dict[str, List[Any]] = {}

    for feature in features:
        props = feature.get("properties") or {}
        code = safe_strip(props.get(PROP_CODE))
        city = safe_strip(props.get(PROP_CITY))
        if not code or not city:
            continue
        if code not in names:
            names[code] = (safe_strip(props.get(PROP_PREF)), safe_strip(props.get(PROP_GUN)), city)
            geometries[code] = []
        geometry = feature.get("geometry") or {}
        if geometry.get("coordinates"):
            geometries[code].append(geometry["coordinates"])

    total = len(geometries)
    codes: List[str] = []
    xs: List[float] = []
    ys: List[float] = []
    for i, (code, coords) in enumerate(geometries.items(), start=1):
        for x, y in flatten_coordinates(coords):
            codes.append(code)
            xs.append(x)
            ys.append(y)
        if progress_cb:
            progress_cb(i, total, "aggregate", code)

    if not codes:
        return []

    df = pd.DataFrame({"code": codes, "x": xs, "y": ys})
    # groupby はキーを文字列順に並べる
    stats = df.groupby("code", sort=True).agg(
        cx=("x", "mean"),
        cy=("y", "mean"),
        min_x=("x", "min"),
        min_y=("y", "min"),
        max_x=("x", "max"),
        max_y=("y", "max"),
    )
    stats = round_half_up(stats)

    units = []
    for code, row in stats.iterrows():
        pref, gun, city = names[code]
        units.append(
            AdministrativeUnit(
                code=code,
                prefecture=pref,
                county=gun,
                city=city,
                centroid=(float(row["cx"]), float(row["cy"])),
                bounds=(
                    (float(row["min_x"]), float(row["min_y"])),
                    (float(row["max_x"]), float(row["max_y"])),
                ),
            )
        )
    return units


class SearchIndex:
    """市区町村の検索用インデックス（読み取り専用）。"""

    def __init__(self, units: Iterable[AdministrativeUnit] = ()):
        self._units: Tuple[AdministrativeUnit, ...] = tuple(units)
        self._by_code: Dict[str, AdministrativeUnit] = {u.code: u for u in self._units}

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[AdministrativeUnit]:
        return iter(self._units)

    def __contains__(self, code: object) -> bool:
        return code in self._by_code

    def get(self, code: str) -> Optional[AdministrativeUnit]:
        return self._by_code.get(code)

    def query(self, text: Optional[str], limit: int = SEARCH_LIMIT) -> List[AdministrativeUnit]:
        # 空白のみは「該当なし」
        q = safe_strip(text).lower()
        if not q:
            return []
        results = []
        for unit in self._units:
            if (
                q in unit.full_name.lower()
                or q in unit.city.lower()
                or q in unit.prefecture.lower()
            ):
                results.append(unit)
                if len(results) >= limit:
                    break
        return results

    def prefectures(self) -> List[str]:
        return sorted({u.prefecture for u in self._units if u.prefecture})

    def to_records(self) -> List[Dict[str, Any]]:
        return [u.to_record() for u in self._units]

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "SearchIndex":
        return cls(AdministrativeUnit.from_record(r) for r in records if safe_strip(r.get("code")))

    def save_json(self, path: str) -> str:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            # コンパクト形式
            json.dump(self.to_records(), f, ensure_ascii=False, separators=(",", ":"))
        return path

    @classmethod
    def load_json(cls, path: str) -> "SearchIndex":
        with open(path, encoding="utf-8") as f:
            return cls.from_records(json.load(f))

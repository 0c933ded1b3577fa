# -*- coding: utf-8 -*-
"""
File-level task helpers (Streamlit/FastAPI/CLI 共通ロジック)

- GeoJSON を読み込み、小さな島を除去して団体コード単位に集約
- 検索用データ（search-data.json）と都道府県リスト（prefectures.json）を出力
- カテゴリ表ファイル（CSV/Excel）の読み込み
- 色分け結果の CSV / Excel 出力、folium のプレビュー地図
"""
from __future__ import annotations

import io
import json
import os
import tempfile
import zipfile
from typing import Any, Dict, List, Optional, Tuple

import folium
import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from . import core as logic
from .categories import CategoryLoadError, ColorRule, read_category_csv

PUBLIC_DIR = logic.PUBLIC_DIR
SEARCH_DATA_NAME = logic.SEARCH_DATA_NAME
PREFECTURES_NAME = logic.PREFECTURES_NAME
MIN_POLYGON_AREA = logic.MIN_POLYGON_AREA
HIGHLIGHT_COLOR = "#ff6b35"
FILL_OPACITY = 0.6


def load_geojson(path: str) -> List[Dict[str, Any]]:
    if not os.path.exists(path):
        raise FileNotFoundError(f"GeoJSONファイルが見つかりません: {path}")
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict) and data.get("type") == "FeatureCollection":
        return list(data.get("features") or [])
    if isinstance(data, list):
        return data
    return []


def feature_label(props: Dict[str, Any]) -> str:
    # ポップアップ表示用: "都道府県 郡・政令市名+市区町村名+区名"
    pref = logic.safe_strip(props.get(logic.PROP_PREF))
    gun = logic.safe_strip(props.get(logic.PROP_GUN))
    city = logic.safe_strip(props.get(logic.PROP_CITY)) or logic.safe_strip(props.get("name")) or "不明"
    ku = logic.safe_strip(props.get(logic.PROP_KU))
    return f"{pref} {gun}{city}{ku}".strip()


def build_search_data(
    geojson_path: str,
    out_dir: str = PUBLIC_DIR,
    *,
    area_threshold: Optional[float] = None,
    progress_cb=None,
) -> Dict[str, Any]:
    """
    検索用データを生成し、出力パスと件数を返す。
    area_threshold を指定した場合は集約前に小さな島を除去する。
    progress_cb が渡された場合は progress_cb(done, total, phase, message) で進捗通知する。
    """
    if progress_cb:
        progress_cb(0, 1, "prepare", "GeoJSON読込")
    features = load_geojson(geojson_path)
    if progress_cb:
        progress_cb(1, 1, "prepare", f"GeoJSON読込完了 features={len(features)}")

    if area_threshold is not None:
        before = len(features)
        features = logic.filter_features(features, area_threshold)
        if progress_cb:
            progress_cb(1, 1, "filter", f"フィーチャー数: {before} → {len(features)}")

    def agg_prog(done, total, phase, code):
        if progress_cb and (done % 100 == 0 or done == total):
            progress_cb(done, total, phase, f"{done}/{total}")

    units = logic.aggregate_units(features, progress_cb=agg_prog)
    index = logic.SearchIndex(units)

    os.makedirs(out_dir, exist_ok=True)
    search_path = index.save_json(os.path.join(out_dir, SEARCH_DATA_NAME))
    pref_path = os.path.join(out_dir, PREFECTURES_NAME)
    with open(pref_path, "w", encoding="utf-8") as f:
        json.dump(index.prefectures(), f, ensure_ascii=False)

    if progress_cb:
        progress_cb(1, 1, "done", f"{len(index)} 市区町村")
    return {
        "search_data_path": search_path,
        "prefectures_path": pref_path,
        "units": len(index),
        "prefectures": len(index.prefectures()),
    }


def write_filtered_geojson(geojson_path: str, out_path: str, threshold: float = MIN_POLYGON_AREA) -> Tuple[int, int]:
    # タイル生成（外部ツール）前の島除去。戻り値は (入力件数, 出力件数)
    features = load_geojson(geojson_path)
    kept = logic.filter_features(features, threshold)
    os.makedirs(os.path.dirname(os.path.abspath(out_path)), exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump({"type": "FeatureCollection", "features": kept}, f, ensure_ascii=False)
    return len(features), len(kept)


def save_upload(filename: Optional[str], content: bytes, prefix: str = "upload_", default_name: str = "upload") -> str:
    # 一時ディレクトリに保存してパスを返す。クライアント側のファイル名はベース名だけ使う
    name = os.path.basename((filename or "").replace("\\", "/"))
    if name in ("", ".", ".."):
        name = default_name
    tmpdir = tempfile.mkdtemp(prefix=prefix)
    path = os.path.join(tmpdir, name)
    with open(path, "wb") as f:
        f.write(content)
    return path


def load_category_file(file_path: str, sheet_name: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    カテゴリ表ファイル（CSV/Excel）を行のリストとして読み込む。
    読めない・壊れているファイルは CategoryLoadError。
    """
    lower = os.path.basename(file_path).lower()
    try:
        if lower.endswith(".csv"):
            with open(file_path, encoding="utf-8-sig") as f:
                return read_category_csv(f.read())
        xls = pd.ExcelFile(file_path)
        sheet = sheet_name or (xls.sheet_names[0] if xls.sheet_names else 0)
        df = pd.read_excel(xls, sheet_name=sheet, dtype=str).fillna("")
    except (ValueError, OSError, KeyError, ImportError, zipfile.BadZipFile, InvalidFileException) as e:
        raise CategoryLoadError(f"カテゴリ表の読み込みに失敗しました: {e}") from e
    df.columns = [str(c).strip() for c in df.columns]
    return df.to_dict(orient="records")


def build_color_table(index: logic.SearchIndex, rule: ColorRule) -> pd.DataFrame:
    # 市区町村ごとのカテゴリと色の一覧
    rows = []
    for unit in index:
        key = unit.full_name
        rows.append(
            {
                "code": unit.code,
                "pref": unit.prefecture,
                "full": key,
                "category": rule.category_for_key(key) or "",
                "color": rule.color_for_key(key),
            }
        )
    return pd.DataFrame(rows, columns=["code", "pref", "full", "category", "color"])


def build_csv_output(df: pd.DataFrame) -> io.BytesIO:
    buf = io.BytesIO()
    df.to_csv(buf, index=False, encoding="utf-8-sig")
    buf.seek(0)
    return buf


def build_excel_output(df: pd.DataFrame, sheet_name: str = "colors") -> io.BytesIO:
    """Excel出力をBytesIOに作成。色列のセルはその色で塗りつぶす。"""
    from openpyxl.styles import PatternFill

    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False)
        if "color" in df.columns and not df.empty:
            ws = writer.book[sheet_name]
            col_num = df.columns.get_loc("color") + 1
            for i, color in enumerate(df["color"].tolist()):
                hex_color = str(color).lstrip("#").upper()
                if len(hex_color) != 6:
                    continue
                fill = PatternFill(start_color=hex_color, end_color=hex_color, fill_type="solid")
                ws.cell(row=i + 2, column=col_num).fill = fill
    buf.seek(0)
    return buf


def build_preview_map(
    features: List[Dict[str, Any]],
    rule: ColorRule,
    highlight_code: Optional[str] = None,
    center: Tuple[float, float] = (35.0, 137.0),
    zoom_start: int = 5,
) -> folium.Map:
    """色分けルールを適用したプレビュー地図（folium）。"""
    m = folium.Map(location=list(center), zoom_start=zoom_start, tiles="OpenStreetMap")
    collection = {"type": "FeatureCollection", "features": []}
    for i, feature in enumerate(features):
        if not feature.get("geometry"):
            continue
        props = dict(feature.get("properties") or {})
        props["_label"] = feature_label(props)
        props["_color"] = rule.color_for_properties(props)
        collection["features"].append(
            {"type": "Feature", "id": str(i), "properties": props, "geometry": feature["geometry"]}
        )

    if collection["features"]:
        folium.GeoJson(
            collection,
            name="municipalities",
            style_function=lambda x: {
                "fillColor": x["properties"]["_color"],
                "fillOpacity": FILL_OPACITY,
                "color": "#ffffff",
                "weight": 1,
            },
            tooltip=folium.GeoJsonTooltip(fields=["_label"], labels=False),
        ).add_to(m)

    if highlight_code:
        selected = [f for f in collection["features"] if logic.safe_strip(f["properties"].get(logic.PROP_CODE)) == highlight_code]
        if selected:
            folium.GeoJson(
                {"type": "FeatureCollection", "features": selected},
                name="highlight",
                style_function=lambda x: {"fillOpacity": 0.0, "color": HIGHLIGHT_COLOR, "weight": 4, "opacity": 0.9},
            ).add_to(m)
    return m

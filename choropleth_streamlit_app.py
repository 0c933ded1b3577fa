# -*- coding: utf-8 -*-
"""
Municipality Choropleth (Streamlit)
- map_logic を利用し、スプレッドシートの列ごとに市区町村を色分け
- 市区町村名で検索し、選んだ市区町村を一定時間ハイライト
- 色分け結果を CSV / Excel でダウンロード
"""

import json
import os
import shutil
import sys
from datetime import datetime

import pandas as pd
import streamlit as st
from streamlit_folium import st_folium

BASE_DIR = os.path.dirname(__file__)
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from map_logic import core as logic  # noqa: E402
from map_logic import tasks  # noqa: E402
from map_logic.categories import CategoryLoadError  # noqa: E402
from map_logic.session import MapSession, SpreadsheetUrlStore  # noqa: E402

SEARCH_DATA_PATH = logic.SEARCH_DATA_PATH


def _log(log_box, msg: str):
    # ログ追記
    ts = datetime.now().strftime("%H:%M:%S")
    logs = st.session_state.setdefault("logs", [])
    logs.append(f"[{ts}] {msg}")
    log_box.write("\n".join(logs))


def _get_session(log_box) -> MapSession:
    # ブラウザのセッションごとに1つ
    session = st.session_state.get("map_session")
    if session is None:
        session = MapSession(url_store=SpreadsheetUrlStore())
        if os.path.exists(SEARCH_DATA_PATH):
            with open(SEARCH_DATA_PATH, encoding="utf-8") as f:
                session.load_index(json.load(f))
            _log(log_box, f"検索用データを読み込みました: {len(session.index)} 件")
        else:
            _log(log_box, f"検索用データがありません: {SEARCH_DATA_PATH}")
        st.session_state["map_session"] = session
    return session


def _load_spreadsheet(session: MapSession, url: str, log_box):
    _log(log_box, f"スプレッドシートを読み込み中: {url}")
    try:
        session.load_spreadsheet(url)
    except CategoryLoadError as e:
        # 前回の色分けはそのまま
        st.error(f"エラー: {e}")
        _log(log_box, f"読み込みエラー: {e}")
        return
    _log(log_box, f"読み込み完了: {len(session.table.all_members())} 市区町村を選択中")


def _render_search(session: MapSession, log_box):
    query = st.text_input("市区町村を検索", key="search_query")
    if not query.strip():
        return
    results = session.search(query)
    if not results:
        st.caption("該当する市区町村がありません")
        return
    for unit in results:
        col_name, col_btn = st.columns([4, 1])
        col_name.write(f"{unit.full_name}（{unit.prefecture}）")
        if col_btn.button("移動", key=f"fly_{unit.code}"):
            session.fly_to(unit.code)
            _log(log_box, f"ハイライト: {unit.code} {unit.full_name}")


def _render_colors(session: MapSession):
    # カテゴリごとの色変更
    for category, color in session.color_rule.legend():
        picked = st.color_picker(category, value=color, key=f"color_{category}")
        if picked != color:
            session.set_category_color(category, picked)
    if session.color_rule.legend() and st.button("色をリセット"):
        # ピッカー側の値も消さないと次回描画で元の色に戻る
        for category, _ in session.color_rule.legend():
            st.session_state.pop(f"color_{category}", None)
        session.reset_category_colors()
        st.rerun()


def _render_map(session: MapSession, features):
    m = tasks.build_preview_map(features, session.color_rule, highlight_code=session.highlighted_code)
    code = session.highlighted_code
    unit = session.index.get(code) if code else None
    if unit is not None:
        (min_x, min_y), (max_x, max_y) = unit.bounds
        m.fit_bounds([[min_y, min_x], [max_y, max_x]], max_zoom=12)
    st_folium(m, width=None, height=620)


def main():
    st.set_page_config(page_title="Municipality Choropleth", layout="wide")
    st.title("Municipality Choropleth")
    st.caption("スプレッドシートの列ごとに市区町村を色分けして表示するアプリです。")

    log_box = st.empty()
    session = _get_session(log_box)

    url = st.text_input("スプレッドシートURL", value=session.saved_url())
    if st.button("読み込み", type="primary") and url.strip():
        _load_spreadsheet(session, url.strip(), log_box)

    category_file = st.file_uploader("カテゴリ表をアップロード（任意・CSV/Excel）", type=["csv", "xlsx", "xls"])
    if category_file is not None and st.button("カテゴリ表を反映"):
        tmp_path = tasks.save_upload(category_file.name, category_file.read(), prefix="categories_", default_name="categories.csv")
        try:
            session.load_categories(tasks.load_category_file(tmp_path))
            _log(log_box, f"カテゴリ表を反映しました: {category_file.name}")
        except CategoryLoadError as e:
            st.error(f"エラー: {e}")
        finally:
            shutil.rmtree(os.path.dirname(tmp_path), ignore_errors=True)

    col_left, col_right = st.columns([1, 2])
    with col_left:
        _render_search(session, log_box)
        _render_colors(session)
        unmatched = session.unmatched_members()
        if unmatched and len(session.index):
            st.warning(f"該当する市区町村がない値: {', '.join(unmatched[:20])}")

    with col_right:
        geojson_file = st.file_uploader("プレビュー用GeoJSON（任意・軽量化済み推奨）", type=["geojson", "json"])
        if geojson_file is not None:
            data = json.loads(geojson_file.getvalue().decode("utf-8"))
            features = data.get("features", []) if isinstance(data, dict) else data
            if not len(session.index):
                session.load_units(features)
                _log(log_box, f"GeoJSONから検索用データを作成しました: {len(session.index)} 件")
            _render_map(session, features)

    df_colors = tasks.build_color_table(session.index, session.color_rule)
    if not df_colors.empty:
        st.download_button(
            label="色分け結果をダウンロード (CSV)",
            data=tasks.build_csv_output(df_colors).getvalue(),
            file_name="colors.csv",
            mime="text/csv",
        )
        st.download_button(
            label="色分け結果をダウンロード (Excel)",
            data=tasks.build_excel_output(df_colors).getvalue(),
            file_name="colors.xlsx",
            mime="application/octet-stream",
        )
        st.dataframe(pd.DataFrame(session.color_rule.legend(), columns=["category", "color"]))


if __name__ == "__main__":
    main()

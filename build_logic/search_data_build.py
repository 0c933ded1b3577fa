"""
国土数値情報の行政区域データ（N03 GeoJSON）から検索用データを生成するスクリプト。
仕様:
- 入力: N03-20240101.geojson（プロパティ N03_001/N03_003/N03_004/N03_007）
- 同じ行政区域コードのフィーチャーは1件に集約し、中心座標とバウンドを付与
- --min-area を指定した場合は集約前に小さな島（外周面積が閾値未満のポリゴン）を除去
出力:
    public/search-data.json（コンパクト形式、コード順）
    public/prefectures.json（都道府県名のリスト）
"""

import argparse
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from map_logic import core as logic  # noqa: E402
from map_logic.core import SearchIndex  # noqa: E402
from map_logic.tasks import build_search_data  # noqa: E402

GEOJSON_PATH = Path(logic.GEOJSON_PATH)
OUT_DIR = Path(logic.PUBLIC_DIR)


def print_progress(done, total, phase, message):
    if phase in ("prepare", "filter", "done"):
        print(f"[{phase}] {message}")


def print_sample(search_path: Path, pref: str = "東京都", limit: int = 5) -> None:
    # サンプル出力（指定した都道府県の最初の数件）
    index = SearchIndex.load_json(str(search_path))
    for unit in [u for u in index if u.prefecture == pref][:limit]:
        print(f"  {unit.code}: {unit.full_name} @ [{unit.centroid[0]}, {unit.centroid[1]}]")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="検索用データ生成")
    parser.add_argument("geojson", nargs="?", default=str(GEOJSON_PATH))
    parser.add_argument("out_dir", nargs="?", default=str(OUT_DIR))
    parser.add_argument("--min-area", type=float, default=None, help="島除去の面積閾値（度単位）")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    geojson = Path(args.geojson)
    if not geojson.exists():
        print(f"GeoJSONファイルが見つかりません: {geojson}")
        return 1

    result = build_search_data(
        str(geojson),
        args.out_dir,
        area_threshold=args.min_area,
        progress_cb=print_progress,
    )
    search_path = Path(result["search_data_path"])
    size_kb = search_path.stat().st_size / 1024
    print(f"Saved: {search_path} ({size_kb:.1f} KB) / {result['units']} 市区町村")
    print(f"Saved: {result['prefectures_path']} / {result['prefectures']} 都道府県")
    print_sample(search_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())

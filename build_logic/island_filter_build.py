"""
行政区域 GeoJSON から小さな島を除去するスクリプト（タイル生成の前処理）。
仕様:
- MultiPolygon は外周リング（index 0）の面積が閾値未満のポリゴンを除去
- 全ポリゴンが閾値未満のフィーチャーは出力しない
- 面積は経緯度のままシューレース公式で計算（実面積ではなく大小判定用）
出力: .temp/filtered.geojson（mapshaper / tippecanoe に渡す）
"""

import argparse
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from map_logic import core as logic  # noqa: E402
from map_logic.tasks import write_filtered_geojson  # noqa: E402

GEOJSON_PATH = Path(logic.GEOJSON_PATH)
OUT_PATH = BASE_DIR / ".temp" / "filtered.geojson"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="小さな島の除去")
    parser.add_argument("geojson", nargs="?", default=str(GEOJSON_PATH))
    parser.add_argument("out_path", nargs="?", default=str(OUT_PATH))
    parser.add_argument("--min-area", type=float, default=logic.MIN_POLYGON_AREA)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    if not Path(args.geojson).exists():
        print(f"入力ファイルが見つかりません: {args.geojson}")
        return 1
    before, after = write_filtered_geojson(args.geojson, args.out_path, args.min_area)
    print(f"Saved: {args.out_path}")
    print(f"  フィーチャー数: {before} → {after} (min_area={args.min_area})")
    return 0


if __name__ == "__main__":
    sys.exit(main())

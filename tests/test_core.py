# -*- coding: utf-8 -*-
import pandas as pd
import pytest

from map_logic.core import (
    AdministrativeUnit,
    SearchIndex,
    aggregate_units,
    filter_feature,
    filter_features,
    filter_small_polygons,
    flatten_coordinates,
    ring_area,
    round_half_up,
)


def _unit(code, full, city=None, pref="東京都"):
    return AdministrativeUnit(
        code=code,
        prefecture=pref,
        county="",
        city=city or full,
        centroid=(0.0, 0.0),
        bounds=((0.0, 0.0), (1.0, 1.0)),
    )


# フラット化
def test_flatten_polygon_keeps_order():
    polygon = [[[0, 0], [1, 0], [1, 1]], [[5, 5], [6, 6]]]
    assert flatten_coordinates(polygon) == [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (5.0, 5.0), (6.0, 6.0)]


def test_flatten_multipolygon_and_irregular_depth():
    coords = [[[[0, 0], [1, 1]]], [[[2, 2]], [[[3, 3]]]], [4, 4]]
    assert flatten_coordinates(coords) == [(0.0, 0.0), (1.0, 1.0), (2.0, 2.0), (3.0, 3.0), (4.0, 4.0)]


def test_flatten_is_idempotent():
    flat = flatten_coordinates([[[0, 0], [2, 0], [2, 2]]])
    assert flatten_coordinates(flat) == flat


def test_flatten_ignores_malformed_input():
    assert flatten_coordinates(None) == []
    assert flatten_coordinates([]) == []
    assert flatten_coordinates("abc") == []
    assert flatten_coordinates([["a", "b"], [None], [1, 2, 3]]) == [(1.0, 2.0)]


def test_flatten_deep_nesting_without_recursion():
    nested = [[1.5, 2.5]]
    for _ in range(5000):
        nested = [nested]
    assert flatten_coordinates(nested) == [(1.5, 2.5)]


# 面積
def test_ring_area_square_closed_and_open():
    assert ring_area([[0, 0], [2, 0], [2, 2], [0, 2], [0, 0]]) == pytest.approx(4.0)
    assert ring_area([[0, 0], [2, 0], [2, 2], [0, 2]]) == pytest.approx(4.0)
    assert ring_area([[0, 0], [1, 1]]) == 0.0


def test_filter_keeps_only_polygons_above_threshold():
    small = [[[0, 0], [0.5, 0], [0.5, 0.5], [0, 0.5]]]
    large = [[[10, 10], [12, 10], [12, 12], [10, 12]]]
    assert filter_small_polygons([small, large], threshold=1.0) == [large]


def test_filter_drops_feature_when_all_polygons_are_small():
    small = [[[0, 0], [0.1, 0], [0.1, 0.1], [0, 0.1]]]
    feature = {"type": "Feature", "properties": {}, "geometry": {"type": "MultiPolygon", "coordinates": [small, small]}}
    assert filter_feature(feature, threshold=1.0) is None
    assert filter_features([feature], threshold=1.0) == []


def test_filter_does_not_mutate_input(features):
    original = features[2]["geometry"]["coordinates"]
    out = filter_features(features)
    assert len(original) == 2
    kept = [f for f in out if f["properties"]["N03_007"] == "43443"]
    assert len(kept[0]["geometry"]["coordinates"]) == 1


def test_filter_passes_through_other_geometries():
    point = {"type": "Feature", "properties": {}, "geometry": {"type": "Point", "coordinates": [0, 0]}}
    assert filter_feature(point) == point


# 集約
def test_aggregate_merges_features_with_same_code():
    features = [
        {"properties": {"N03_007": "1", "N03_004": "A"}, "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [3, 0], [0, 3]]]}},
        {"properties": {"N03_007": "1", "N03_004": "A"}, "geometry": {"type": "Polygon", "coordinates": [[[10, 10], [13, 10], [10, 13]]]}},
    ]
    units = aggregate_units(features)
    assert len(units) == 1
    assert units[0].centroid == (6.0, 6.0)
    assert units[0].bounds == ((0.0, 0.0), (13.0, 13.0))


def test_aggregate_centroid_example():
    features = [{"properties": {"N03_007": "1", "N03_004": "A"}, "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [2, 0], [2, 2], [0, 2]]]}}]
    unit = aggregate_units(features)[0]
    assert unit.centroid == (1.0, 1.0)
    assert unit.bounds == ((0.0, 0.0), (2.0, 2.0))


def test_aggregate_rounds_to_four_decimals():
    features = [{"properties": {"N03_007": "1", "N03_004": "A"}, "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [0, 1]]]}}]
    unit = aggregate_units(features)[0]
    assert unit.centroid == (0.3333, 0.3333)


def test_round_half_up_rounds_ties_upward():
    # 0.25 / 0.75 / -0.25 は2進で正確に表せる .5 の境界
    assert round_half_up(pd.Series([0.25, 0.75, -0.25]), 1).tolist() == [0.3, 0.8, -0.2]
    assert pd.Series([0.25, 0.75, -0.25]).round(1).tolist() == [0.2, 0.8, -0.2]
    df = round_half_up(pd.DataFrame({"x": [2.5, 3.5], "y": [-0.4, 1.49]}), 0)
    assert df["x"].tolist() == [3.0, 4.0]
    assert df["y"].tolist() == [0.0, 1.0]
    assert round_half_up(130.12344) == 130.1234


def test_aggregate_skips_missing_code_and_empty_geometry(features):
    features = features + [
        {"properties": {"N03_007": "99999", "N03_004": "空"}, "geometry": {"type": "Polygon", "coordinates": []}},
        {"properties": {"N03_007": "99998"}, "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1, 1], [1, 0]]]}},
    ]
    units = aggregate_units(features)
    assert [u.code for u in units] == ["13101", "13102", "43443"]
    masuki = units[2]
    assert masuki.full_name == "上益城郡益城町"
    assert masuki.prefecture == "熊本県"
    assert masuki.bounds == ((130.8, 32.7), (131.0001, 32.9))


def test_unit_record_roundtrip():
    unit = AdministrativeUnit("43443", "熊本県", "上益城郡", "益城町", (130.9, 32.8), ((130.8, 32.7), (131.0, 32.9)))
    record = unit.to_record()
    assert record == {
        "code": "43443",
        "pref": "熊本県",
        "gun": "上益城郡",
        "city": "益城町",
        "full": "上益城郡益城町",
        "center": [130.9, 32.8],
        "bounds": [[130.8, 32.7], [131.0, 32.9]],
    }
    assert AdministrativeUnit.from_record(record) == unit


# 検索
def test_search_returns_matches_in_storage_order():
    index = SearchIndex([_unit("1", "Shibuya-ku"), _unit("2", "Shinjuku-ku"), _unit("3", "Minato-ku")])
    assert [u.full_name for u in index.query("Shi")] == ["Shibuya-ku", "Shinjuku-ku"]


def test_search_is_case_insensitive_and_capped():
    index = SearchIndex([_unit(str(i), f"Shi-{i}") for i in range(15)])
    results = index.query("shi")
    assert len(results) == 10
    assert [u.code for u in results] == [str(i) for i in range(10)]


def test_search_empty_query_returns_nothing():
    index = SearchIndex([_unit("1", "Shibuya-ku")])
    assert index.query("") == []
    assert index.query("   ") == []
    assert index.query(None) == []


def test_search_matches_prefecture():
    index = SearchIndex([_unit("1", "益城町", pref="熊本県"), _unit("2", "千代田区")])
    assert [u.code for u in index.query("熊本")] == ["1"]


def test_index_lookup_and_json(tmp_path, features):
    index = SearchIndex(aggregate_units(features))
    assert "13101" in index
    assert index.get("00000") is None
    assert index.prefectures() == ["東京都", "熊本県"]
    path = index.save_json(str(tmp_path / "out" / "search-data.json"))
    loaded = SearchIndex.load_json(path)
    assert list(loaded) == list(index)

# -*- coding: utf-8 -*-
import json

import pytest


def square(x, y, size):
    return [[x, y], [x + size, y], [x + size, y + size], [x, y + size], [x, y]]


def make_feature(code, pref, gun, city, geometry, ku=None):
    props = {"N03_001": pref, "N03_003": gun, "N03_004": city, "N03_007": code}
    if ku is not None:
        props["N03_005"] = ku
    return {"type": "Feature", "properties": props, "geometry": geometry}


@pytest.fixture
def features():
    return [
        make_feature("13102", "東京都", None, "中央区", {"type": "Polygon", "coordinates": [square(139.76, 35.66, 0.04)]}),
        make_feature("13101", "東京都", None, "千代田区", {"type": "Polygon", "coordinates": [square(139.72, 35.67, 0.04)]}),
        make_feature(
            "43443",
            "熊本県",
            "上益城郡",
            "益城町",
            {"type": "MultiPolygon", "coordinates": [[square(130.8, 32.7, 0.1)], [square(131.0, 32.7, 0.0001)]]},
        ),
        make_feature("43443", "熊本県", "上益城郡", "益城町", {"type": "Polygon", "coordinates": [square(130.9, 32.8, 0.1)]}),
        make_feature("", "熊本県", None, "所属未定地", {"type": "Polygon", "coordinates": [square(130.0, 32.0, 0.1)]}),
    ]


@pytest.fixture
def geojson_path(tmp_path, features):
    path = tmp_path / "N03-test.geojson"
    path.write_text(json.dumps({"type": "FeatureCollection", "features": features}, ensure_ascii=False), encoding="utf-8")
    return path

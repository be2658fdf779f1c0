import math

import pytest

from map_narrator.core.geo import fmt_km, km_between
from map_narrator.models.schemas import GeoPoint


def test_same_point_is_zero():
    assert km_between(50.082, -5.4265, 50.082, -5.4265) == 0.0


def test_one_degree_of_latitude():
    assert km_between(0, 0, 1, 0) == pytest.approx(111.19, rel=1e-3)


def test_distance_is_symmetric():
    a = km_between(50.082, -5.4265, 50.1, -5.5)
    b = km_between(50.1, -5.5, 50.082, -5.4265)
    assert a == pytest.approx(b)


def test_fmt_km_one_decimal():
    assert fmt_km(1.26) == "1.3"
    assert fmt_km(0) == "0.0"
    assert fmt_km(math.inf) == "?"


def test_geopoint_rejects_non_finite():
    with pytest.raises(ValueError):
        GeoPoint(lat=float("nan"), lon=0)


def test_geopoint_rounding_keeps_original():
    point = GeoPoint(lat=50.08204, lon=-5.42651)
    assert point.rounded(3) == GeoPoint(lat=50.082, lon=-5.427)
    assert point.lat == 50.08204

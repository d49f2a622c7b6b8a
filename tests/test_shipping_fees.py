from __future__ import annotations

import pytest

from shipping.services import (
    SCOPE_DISTANCE,
    SCOPE_IN_REGION,
    SCOPE_OUT_OF_REGION,
    SCOPE_UNKNOWN,
    build_shipping_summary,
    compute_rush_fee,
    compute_shipping_for_seller,
    haversine_distance_km,
    is_same_province,
    normalize_method,
    normalize_province_name,
    round_half_up,
)

HANOI = {"province": "Hà Nội", "lat": 21.0285, "lng": 105.8542}
HCMC = {"province": "Hồ Chí Minh", "lat": 10.8231, "lng": 106.6297}


def test_province_names_normalize_prefixes_and_diacritics():
    assert normalize_province_name("Thành phố Hà Nội") == "ha noi"
    assert normalize_province_name("Tỉnh Đồng Nai") == "dong nai"
    assert normalize_province_name("TP. Hồ Chí Minh") == "ho chi minh"
    assert is_same_province("Hà Nội", "thanh pho ha noi")
    assert not is_same_province("Hà Nội", "")


def test_haversine_hanoi_to_saigon():
    km = haversine_distance_km(HANOI["lat"], HANOI["lng"], HCMC["lat"], HCMC["lng"])
    assert 1130 < km < 1145


@pytest.mark.parametrize(
    "method,dest,fee,scope",
    [
        ("standard", {"province": "Thành phố Hà Nội"}, 12_000, SCOPE_IN_REGION),
        ("standard", {"province": "Đà Nẵng"}, 28_000, SCOPE_OUT_OF_REGION),
        ("express", {"province": "Hà Nội"}, 22_000, SCOPE_IN_REGION),
        ("express", {"province": "Đà Nẵng"}, 42_000, SCOPE_OUT_OF_REGION),
    ],
)
def test_tiered_fees_by_province(method, dest, fee, scope):
    result = compute_shipping_for_seller(seller_id=1, shop={"province": "Hà Nội"}, destination=dest, method=method)
    assert result.fee == fee
    assert result.scope == scope
    assert result.distance_km is None


def test_coordinates_take_precedence_over_province_names():
    # Across a province border but well inside the region threshold.
    shop = {"province": "Bắc Ninh", "lat": 21.10, "lng": 105.99}
    result = compute_shipping_for_seller(seller_id=1, shop=shop, destination=HANOI, method="standard")
    assert result.scope == SCOPE_IN_REGION
    assert result.fee == 12_000
    assert result.distance_km < 30

    far = compute_shipping_for_seller(seller_id=1, shop=HANOI, destination=HCMC, method="express")
    assert far.scope == SCOPE_OUT_OF_REGION
    assert far.fee == 42_000


def test_rush_without_coordinates_uses_default_distance():
    result = compute_shipping_for_seller(
        seller_id=1, shop={"province": "Hà Nội"}, destination={"province": "Hà Nội"}, method="rush"
    )
    assert result.scope == SCOPE_DISTANCE
    assert result.distance_km == 8.0
    assert result.fee == 30_000 + 5 * 7_000
    assert result.used_fallback_distance is True
    assert result.as_summary()["usedFallbackDistance"] is True


def test_rush_requested_distance_is_clamped():
    short = compute_shipping_for_seller(
        seller_id=1, shop=None, destination={}, method="rush", requested_rush_distance_km=0.2
    )
    assert short.distance_km == 1.0
    assert short.fee == 30_000

    long = compute_shipping_for_seller(
        seller_id=1, shop=None, destination={}, method="rush", requested_rush_distance_km=900
    )
    assert long.distance_km == 150.0
    assert long.fee == 30_000 + 147 * 7_000


def test_rush_with_coordinates_ignores_requested_distance():
    shop = {"province": "Hà Nội", "lat": 21.0285, "lng": 105.8542}
    dest = {"province": "Hà Nội", "lat": 21.0285, "lng": 105.9542}
    result = compute_shipping_for_seller(
        seller_id=1, shop=shop, destination=dest, method="rush", requested_rush_distance_km=50
    )
    assert result.used_fallback_distance is False
    assert 10 < result.distance_km < 11
    assert result.fee == compute_rush_fee(result.distance_km)


def test_unknown_method_costs_nothing():
    result = compute_shipping_for_seller(seller_id=1, shop=None, destination={}, method="drone")
    assert result.fee == 0
    assert result.scope == SCOPE_UNKNOWN
    assert normalize_method("DRONE") == "standard"
    assert normalize_method(" Express ") == "express"


def test_summary_totals_the_breakdown():
    a = compute_shipping_for_seller(seller_id=1, shop={"province": "Hà Nội"}, destination={"province": "Hà Nội"}, method="standard")
    b = compute_shipping_for_seller(seller_id=2, shop={"province": "Huế"}, destination={"province": "Hà Nội"}, method="standard")
    summary = build_shipping_summary([a, b], method="standard")
    assert summary["totalShippingFee"] == 40_000
    assert [e["sellerId"] for e in summary["breakdown"]] == [1, 2]


def test_rush_fee_rounds_half_up(settings):
    settings.SHIPPING_RUSH_PER_KM = 5
    assert compute_rush_fee(3.5) == 30_003
    assert round_half_up(12_000.5) == 12_001
    assert round_half_up(0.49) == 0

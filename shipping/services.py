"""Per-seller shipping fee calculator.

Pure functions of (shop location, destination, method). Fee tiers and rush
parameters come from settings so they can be tuned per deployment.
"""

from __future__ import annotations

import math
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Iterable

from django.conf import settings

EARTH_RADIUS_KM = 6371.0

METHOD_STANDARD = "standard"
METHOD_EXPRESS = "express"
METHOD_RUSH = "rush"
SHIPPING_METHODS = (METHOD_STANDARD, METHOD_EXPRESS, METHOD_RUSH)

SCOPE_IN_REGION = "in_province"
SCOPE_OUT_OF_REGION = "out_of_province"
SCOPE_DISTANCE = "distance"
SCOPE_UNKNOWN = "unknown"

_PROVINCE_NOISE = re.compile(r"tinh|thanh pho|city|province|tp\.?")
_SPACES = re.compile(r"\s+")


@dataclass(frozen=True)
class Location:
    province: str = ""
    lat: float | None = None
    lng: float | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


@dataclass(frozen=True)
class ShippingComputation:
    seller_id: int
    shop_id: int | None
    method: str
    fee: int
    scope: str
    distance_km: float | None = None
    shop_province: str = ""
    destination_province: str = ""
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def used_fallback_distance(self) -> bool:
        return bool(self.meta.get("usedFallbackDistance", False))

    def as_summary(self) -> dict[str, Any]:
        return {
            "sellerId": self.seller_id,
            "shopId": self.shop_id,
            "method": self.method,
            "fee": self.fee,
            "scope": self.scope,
            "distanceKm": self.distance_km,
            "shopProvince": self.shop_province,
            "destinationProvince": self.destination_province,
            "usedFallbackDistance": self.used_fallback_distance,
        }


def _coerce_float(value) -> float | None:
    if value is None or value == "":
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(out):
        return None
    return out


def location_from(obj) -> Location:
    """Build a Location from a Shop, a dict address, or None."""

    if obj is None:
        return Location()
    if isinstance(obj, Location):
        return obj
    if isinstance(obj, dict):
        return Location(
            province=str(obj.get("province") or "").strip(),
            lat=_coerce_float(obj.get("lat")),
            lng=_coerce_float(obj.get("lng")),
        )
    return Location(
        province=str(getattr(obj, "province", "") or "").strip(),
        lat=_coerce_float(getattr(obj, "lat", None)),
        lng=_coerce_float(getattr(obj, "lng", None)),
    )


def haversine_distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def remove_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return stripped.replace("đ", "d").replace("Đ", "D")


def normalize_province_name(province: str) -> str:
    cleaned = remove_diacritics(str(province or "").lower())
    cleaned = _PROVINCE_NOISE.sub("", cleaned)
    return _SPACES.sub(" ", cleaned).strip()


def is_same_province(a: str, b: str) -> bool:
    if not a or not b:
        return False
    return normalize_province_name(a) == normalize_province_name(b)


def clamp(value: float | None, low: float, high: float) -> float:
    if value is None:
        return low
    return min(max(float(value), low), high)


def round_half_up(value: float) -> int:
    """Nearest integer, halves away from zero for the non-negative amounts used here."""

    return int(math.floor(float(value) + 0.5))


def compute_rush_fee(distance_km: float) -> int:
    base = int(getattr(settings, "SHIPPING_RUSH_BASE_FEE", 30000))
    included = float(getattr(settings, "SHIPPING_RUSH_INCLUDED_KM", 3.0))
    per_km = int(getattr(settings, "SHIPPING_RUSH_PER_KM", 7000))
    min_km = float(getattr(settings, "SHIPPING_RUSH_MIN_KM", 1.0))

    distance = max(float(distance_km), min_km)
    extra_km = max(0.0, distance - included)
    return round_half_up(base + extra_km * per_km)


def resolve_rush_distance_km(
    *, shop: Location, destination: Location, requested_km: float | None = None
) -> tuple[float, bool]:
    """Return (distance, used_fallback)."""

    min_km = float(getattr(settings, "SHIPPING_RUSH_MIN_KM", 1.0))
    max_km = float(getattr(settings, "SHIPPING_RUSH_MAX_KM", 150.0))

    if shop.has_coordinates and destination.has_coordinates:
        computed = haversine_distance_km(shop.lat, shop.lng, destination.lat, destination.lng)
        return clamp(computed, min_km, max_km), False

    fallback = requested_km
    if fallback is None:
        fallback = float(getattr(settings, "SHIPPING_RUSH_DEFAULT_DISTANCE_KM", 8.0))
    return clamp(fallback, min_km, max_km), True


def compute_shipping_for_seller(
    *,
    seller_id: int,
    shop,
    destination,
    method: str,
    shop_id: int | None = None,
    requested_rush_distance_km: float | None = None,
) -> ShippingComputation:
    shop_loc = location_from(shop)
    dest_loc = location_from(destination)
    if shop_id is None and shop is not None and not isinstance(shop, (dict, Location)):
        shop_id = getattr(shop, "id", None)

    distance_km = None
    if shop_loc.has_coordinates and dest_loc.has_coordinates:
        distance_km = haversine_distance_km(shop_loc.lat, shop_loc.lng, dest_loc.lat, dest_loc.lng)

    common = {
        "seller_id": seller_id,
        "shop_id": shop_id,
        "method": method,
        "shop_province": shop_loc.province,
        "destination_province": dest_loc.province,
    }

    if method in (METHOD_STANDARD, METHOD_EXPRESS):
        if distance_km is not None:
            in_region = distance_km <= float(getattr(settings, "SHIPPING_REGION_THRESHOLD_KM", 30.0))
        else:
            in_region = is_same_province(shop_loc.province, dest_loc.province)

        if method == METHOD_STANDARD:
            fee = (
                getattr(settings, "SHIPPING_STANDARD_FEE_IN_REGION", 12000)
                if in_region
                else getattr(settings, "SHIPPING_STANDARD_FEE_OUT_OF_REGION", 28000)
            )
        else:
            fee = (
                getattr(settings, "SHIPPING_EXPRESS_FEE_IN_REGION", 22000)
                if in_region
                else getattr(settings, "SHIPPING_EXPRESS_FEE_OUT_OF_REGION", 42000)
            )
        return ShippingComputation(
            fee=int(fee),
            scope=SCOPE_IN_REGION if in_region else SCOPE_OUT_OF_REGION,
            distance_km=distance_km,
            **common,
        )

    if method == METHOD_RUSH:
        rush_km, used_fallback = resolve_rush_distance_km(
            shop=shop_loc,
            destination=dest_loc,
            requested_km=requested_rush_distance_km,
        )
        return ShippingComputation(
            fee=compute_rush_fee(rush_km),
            scope=SCOPE_DISTANCE,
            distance_km=rush_km,
            meta={
                "usedFallbackDistance": used_fallback,
                "requestedRushDistanceKm": requested_rush_distance_km,
            },
            **common,
        )

    return ShippingComputation(fee=0, scope=SCOPE_UNKNOWN, distance_km=distance_km, **common)


def normalize_method(method: str | None) -> str:
    m = (method or "").strip().lower()
    return m if m in SHIPPING_METHODS else METHOD_STANDARD


def build_shipping_summary(computations: Iterable[ShippingComputation], *, method: str) -> dict[str, Any]:
    breakdown = [c.as_summary() for c in computations]
    return {
        "method": method,
        "totalShippingFee": sum(int(entry["fee"] or 0) for entry in breakdown),
        "breakdown": breakdown,
    }

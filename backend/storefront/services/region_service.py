# Overview: Pure shipping-region classification for Philippine destinations.

"""
Region Resolver

WHY: Shipping is priced per region tag, and the tag depends on where the
parcel goes relative to the store's own city/province.

RULES (first match wins):
1. Same city as the store origin -> "local"
2. Same province as the store origin -> the province name (e.g. "cebu")
3. Metro Manila city -> "luzon"
4. No origin province configured and destination is Cebu -> "cebu"
5. Static province tables -> "luzon" / "visayas" / "mindanao"
6. Anything else -> the configured default region

No I/O here; callers supply the origin and default from CommerceConfig.
"""

from __future__ import annotations

import re


REGION_LOCAL = "local"
REGION_CEBU = "cebu"
REGION_LUZON = "luzon"
REGION_VISAYAS = "visayas"
REGION_MINDANAO = "mindanao"

KNOWN_REGIONS = (REGION_LOCAL, REGION_CEBU, REGION_LUZON, REGION_VISAYAS, REGION_MINDANAO)


# =============================================================================
# LOOKUP TABLES
# =============================================================================

NCR_CITIES = frozenset({
    "manila", "quezon city", "makati", "pasig", "mandaluyong", "pasay", "taguig", "caloocan",
    "malabon", "navotas", "valenzuela", "parañaque", "paranaque", "las piñas", "las pinas",
    "marikina", "muntinlupa", "san juan", "pateros",
})

NCR_PROVINCES = frozenset({"metro manila", "ncr", "national capital region"})

LUZON_PROVINCES = frozenset({
    "abra", "apayao", "aurora", "bataan", "batangas", "benguet", "bulacan", "cagayan",
    "camarines norte", "camarines sur", "cavite", "ifugao", "ilocos norte", "ilocos sur",
    "isabela", "kalinga", "la union", "laguna", "nueva ecija", "nueva vizcaya",
    "occidental mindoro", "oriental mindoro", "palawan", "pampanga", "pangasinan", "quezon",
    "quirino", "rizal", "romblon", "sorsogon", "tarlac", "zambales",
})

VISAYAS_PROVINCES = frozenset({
    "aklan", "antique", "biliran", "bohol", "capiz", "cebu", "eastern samar", "guimaras",
    "iloilo", "leyte", "negros occidental", "negros oriental", "northern samar", "samar",
    "western samar", "southern leyte", "siquijor",
})

MINDANAO_PROVINCES = frozenset({
    "agusan del norte", "agusan del sur", "basilan", "bukidnon", "camiguin", "compostela valley",
    "cotabato", "davao de oro", "davao del norte", "davao del sur", "davao occidental",
    "davao oriental", "dinagat islands", "lanao del norte", "lanao del sur", "maguindanao",
    "misamis occidental", "misamis oriental", "north cotabato", "sarangani", "south cotabato",
    "sultan kudarat", "sulu", "surigao del norte", "surigao del sur", "tawi-tawi",
    "zamboanga del norte", "zamboanga del sur", "zamboanga sibugay",
})

_CITY_PREFIX_RE = re.compile(r"^city\s+of\s+")
_CITY_SUFFIX_RE = re.compile(r"\s+city$")
_SPACES_RE = re.compile(r"\s+")


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_text(value: str | None) -> str:
    """Trim, lowercase and collapse inner whitespace."""
    return _SPACES_RE.sub(" ", (value or "").strip().lower())


def normalize_city(value: str | None) -> str:
    """
    Normalize a city name for comparison.

    "Cebu City", "City of Cebu" and " cebu " all become "cebu".
    """
    city = normalize_text(value)
    city = _CITY_PREFIX_RE.sub("", city)
    city = _CITY_SUFFIX_RE.sub("", city)
    return city


# =============================================================================
# RESOLUTION
# =============================================================================

def resolve_region(
    city: str | None,
    province: str | None,
    origin_city: str | None = None,
    origin_province: str | None = None,
    default_region: str = REGION_LUZON,
) -> str:
    """
    Map a destination (city, province) to a shipping region tag.

    Examples:
        resolve_region("Mandaue", "Cebu", "Cebu City", "Cebu") -> "cebu"
        resolve_region("Davao City", "Davao del Sur")          -> "mindanao"
    """
    raw_city = normalize_text(city)
    city_norm = normalize_city(city)
    prov = normalize_text(province)
    origin_city_norm = normalize_city(origin_city)
    origin_prov = normalize_text(origin_province)

    if origin_city_norm and city_norm and city_norm == origin_city_norm:
        return REGION_LOCAL

    if origin_prov and prov and prov == origin_prov:
        return prov

    if raw_city in NCR_CITIES or city_norm in NCR_CITIES or prov in NCR_PROVINCES:
        return REGION_LUZON

    if not origin_prov and prov == REGION_CEBU:
        return REGION_CEBU

    if prov in LUZON_PROVINCES:
        return REGION_LUZON
    if prov in VISAYAS_PROVINCES:
        return REGION_VISAYAS
    if prov in MINDANAO_PROVINCES:
        return REGION_MINDANAO

    return normalize_text(default_region) or REGION_LUZON


def priceable_regions(origin_province: str | None = None, default_region: str | None = None) -> tuple[str, ...]:
    """
    Every tag resolve_region can produce for this store origin.

    Same-province destinations resolve to the origin province itself, and
    unmatched destinations to the configured default, so both are regions an
    admin must be able to price.
    """
    regions = list(KNOWN_REGIONS)
    for extra in (normalize_text(origin_province), normalize_text(default_region)):
        if extra and extra not in regions:
            regions.append(extra)
    return tuple(regions)

"""
Linksy Service-Area Filter

Splits providers by whether they serve the caller's ZIP code.
"""

from typing import Any, Optional


def serves_zip(provider: dict[str, Any], zip_code: str) -> bool:
    """True if the provider has no ZIP list or lists *zip_code* exactly."""
    service_zips = provider.get("service_zip_codes") or []
    if not service_zips:
        return True
    return zip_code in service_zips


def filter_by_service_area(
    providers: list[dict[str, Any]],
    zip_code: Optional[str],
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """
    Partition *providers* into (included, excluded_by_zip).

    With no ZIP code every provider is included. Excluded entries carry only
    the fields a client needs to explain the omission.
    """
    if not zip_code or not zip_code.strip():
        return list(providers), []

    target = zip_code.strip()
    included: list[dict[str, Any]] = []
    excluded: list[dict[str, Any]] = []
    for provider in providers:
        if serves_zip(provider, target):
            included.append(provider)
        else:
            excluded.append({
                "id": provider["id"],
                "name": provider["name"],
                "service_zip_codes": provider.get("service_zip_codes") or [],
            })
    return included, excluded

"""
Linksy Indexer Module

Keeps the derived search data in the directory up to date:

    reindex_needs          — Embed need names + synonyms into linksy_needs.embedding
    build_context_card     — Render a provider as the markdown card the summarizer reads
    generate_context_cards — Build and store cards for active providers
    geocode_locations      — Fill coordinates for addresses never geocoded

Calls embeddings.py for all OpenAI API interactions; never calls the API
directly. Failures on one record are logged and counted, never fatal to
the batch.
"""

import time
from typing import Any, Optional

import httpx
import structlog
from sqlalchemy.orm import Session

from linksy.config import settings
from linksy.db import dal
from linksy.search.embeddings import build_need_embedding_text, embed_texts
from linksy.search.geocode import geocode_address_sync
from linksy.search.proximity import get_primary_location

logger = structlog.get_logger(__name__)

SECTOR_LABELS = {
    "nonprofit": "Nonprofit",
    "faith_based": "Faith-based",
    "government": "Government",
    "business": "Business",
}


# ── Needs ──────────────────────────────────────────────────────────────────


def reindex_needs(db: Session, openai_client, force: bool = False) -> dict[str, int]:
    """
    Embed every active need that lacks a vector (all of them with *force*).

    Needs are embedded and saved in EMBEDDING_BATCH_SIZE chunks so a failure
    part-way keeps the batches already written.

    Returns:
        ``{"total", "succeeded", "failed"}``.
    """
    start_time = time.time()
    needs = dal.get_needs_for_indexing(db=db, force=force)
    batch_size = settings.EMBEDDING_BATCH_SIZE
    succeeded = 0
    failed = 0

    for i in range(0, len(needs), batch_size):
        batch = needs[i : i + batch_size]
        texts = [build_need_embedding_text(n) for n in batch]
        try:
            vectors = embed_texts(texts, openai_client)
            succeeded += dal.save_need_embeddings(
                [(n["id"], v) for n, v in zip(batch, vectors)],
                db=db,
            )
        except (RuntimeError, ValueError) as exc:
            failed += len(batch)
            logger.error("need_batch_save_failed", batch_start=i, batch_size=len(batch), error=str(exc))

    logger.info(
        "reindex_needs_complete",
        total=len(needs),
        succeeded=succeeded,
        failed=failed,
        force=force,
        elapsed_seconds=round(time.time() - start_time, 3),
    )
    return {"total": len(needs), "succeeded": succeeded, "failed": failed}


# ── Context cards ──────────────────────────────────────────────────────────


def build_context_card(provider: dict[str, Any]) -> str:
    """Render a provider dict (as returned by the DAL) as a markdown context card."""
    lines = [f"## {provider['name']}"]
    lines.append(f"**Type:** {SECTOR_LABELS.get(provider['sector'], provider['sector'])}")

    need_names = [
        pn["need"]["name"] for pn in provider.get("provider_needs") or [] if pn.get("need")
    ]
    if need_names:
        lines.append(f"**Services:** {', '.join(need_names)}")

    primary = get_primary_location(provider)
    if primary:
        parts = [
            primary.get(k) for k in ("address_line1", "city", "state", "postal_code") if primary.get(k)
        ]
        if parts:
            lines.append(f"**Location:** {', '.join(parts)}")

    if provider.get("phone"):
        lines.append(f"**Phone:** {provider['phone']}")
    if provider.get("email"):
        lines.append(f"**Email:** {provider['email']}")
    if provider.get("website"):
        lines.append(f"**Website:** {provider['website']}")
    if provider.get("hours"):
        lines.append(f"**Hours:** {provider['hours']}")

    if provider.get("referral_type") == "contact_directly" and provider.get("referral_instructions"):
        lines.append(f"**Referral:** Contact directly: {provider['referral_instructions']}")
    elif provider.get("referral_type") == "standard":
        lines.append("**Referral:** Standard (no prior contact required)")

    if provider.get("description"):
        lines.append("")
        lines.append(provider["description"])

    return "\n".join(lines)


def generate_context_cards(db: Session, force: bool = False) -> dict[str, int]:
    """
    Build and store context cards.

    Returns:
        ``{"updated", "total"}`` where total is the number of providers considered.
    """
    providers = dal.get_providers_for_context_cards(db=db, force=force)
    updated = 0
    for provider in providers:
        try:
            updated += dal.save_context_card(provider["id"], build_context_card(provider), db=db)
        except RuntimeError as exc:
            logger.error("context_card_save_failed", provider_id=provider["id"], error=str(exc))

    logger.info("context_cards_generated", updated=updated, total=len(providers), force=force)
    return {"updated": updated, "total": len(providers)}


# ── Location geocoding ─────────────────────────────────────────────────────


def build_address_string(location: dict[str, Any]) -> Optional[str]:
    """Comma-joined street address, or ``None`` when there is nothing to geocode."""
    parts = [
        location.get(k)
        for k in ("address_line1", "address_line2", "city", "state", "postal_code")
        if location.get(k)
    ]
    return ", ".join(parts) if parts else None


def geocode_locations(db: Session, delay_seconds: Optional[float] = None) -> dict[str, int]:
    """
    Geocode every location with an address and no ``geocoded_at``.

    Sleeps *delay_seconds* between lookups to stay under the Google rate
    limit (defaults to GEOCODE_BATCH_DELAY_SECONDS).

    Returns:
        ``{"total", "geocoded", "failed"}``.
    """
    delay = settings.GEOCODE_BATCH_DELAY_SECONDS if delay_seconds is None else delay_seconds
    locations = dal.get_ungeocoded_locations(db=db)
    geocoded = 0
    failed = 0

    with httpx.Client(timeout=settings.GEOCODER_TIMEOUT_SECONDS) as client:
        for loc in locations:
            address = build_address_string(loc)
            point = geocode_address_sync(address, client) if address else None
            if point is None:
                failed += 1
            else:
                try:
                    geocoded += dal.save_location_coordinates(loc["id"], point["lat"], point["lng"], db=db)
                except RuntimeError as exc:
                    failed += 1
                    logger.error("location_geocode_save_failed", location_id=loc["id"], error=str(exc))
            if delay:
                time.sleep(delay)

    logger.info("geocode_locations_complete", total=len(locations), geocoded=geocoded, failed=failed)
    return {"total": len(locations), "geocoded": geocoded, "failed": failed}

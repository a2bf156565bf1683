"""
Linksy Data Access Layer (DAL)

The module where the search service's relational queries live. The need
similarity query sits in ``linksy.search.needs`` next to its scoring code;
everything else goes through here.

Every public function:
    - Accepts a SQLAlchemy ``Session`` as the keyword argument ``db``.
    - Logs the function name and wall-clock execution time (ms) via structlog.
    - Returns plain Python dicts (never SQLAlchemy model instances).
    - Raises ``ValueError`` for invalid / missing inputs.
    - Raises ``RuntimeError`` for unexpected database errors.

Usage counters (session message/token counts, host monthly usage) are only
ever changed through single UPDATE ... SET col = col + n statements. There is
no read-then-write path for them.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from geoalchemy2.functions import ST_DWithin
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from linksy.db.models import (
    CrisisKeyword,
    HostCrisisOverride,
    Interaction,
    Need,
    Provider,
    ProviderLocation,
    ProviderNeed,
    SearchSession,
)

logger = structlog.get_logger(__name__)


# ── Helpers ────────────────────────────────────────────────────────────────

def _as_uuid(value: Any, field: str) -> uuid.UUID:
    """Coerce *value* to a UUID or raise ``ValueError`` naming *field*."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {field}: {value!r}")


def _location_to_dict(row: ProviderLocation) -> dict[str, Any]:
    """Convert a ProviderLocation ORM instance to a plain dict."""
    return {
        "id": str(row.id),
        "name": row.name,
        "address_line1": row.address_line1,
        "address_line2": row.address_line2,
        "city": row.city,
        "state": row.state,
        "postal_code": row.postal_code,
        "is_primary": row.is_primary,
        "latitude": row.latitude,
        "longitude": row.longitude,
    }


def _provider_to_dict(row: Provider, need_ids: Optional[set[uuid.UUID]] = None) -> dict[str, Any]:
    """
    Convert a Provider ORM instance to a plain dict.

    When *need_ids* is given only the matching need associations are kept,
    so callers see which of the searched needs each provider offers.
    """
    provider_needs = [
        {
            "need_id": str(pn.need_id),
            "need": {"id": str(pn.need.id), "name": pn.need.name} if pn.need else None,
        }
        for pn in row.provider_needs
        if need_ids is None or pn.need_id in need_ids
    ]
    return {
        "id": str(row.id),
        "name": row.name,
        "description": row.description,
        "phone": row.phone,
        "email": row.email,
        "website": row.website,
        "hours": row.hours,
        "sector": row.sector,
        "referral_type": row.referral_type,
        "referral_instructions": row.referral_instructions,
        "llm_context_card": row.llm_context_card,
        "is_active": row.is_active,
        "provider_status": row.provider_status,
        "service_zip_codes": row.service_zip_codes,
        "provider_needs": provider_needs,
        "locations": [_location_to_dict(loc) for loc in row.locations],
    }


def _host_to_dict(row: Provider) -> dict[str, Any]:
    """Convert a Provider ORM instance to the host view used by the search gate."""
    return {
        "id": str(row.id),
        "name": row.name,
        "is_active": row.is_active,
        "is_host": row.is_host,
        "host_embed_active": row.host_embed_active,
        "host_widget_config": row.host_widget_config or {},
        "host_monthly_token_budget": row.host_monthly_token_budget,
        "host_tokens_used_this_month": row.host_tokens_used_this_month or 0,
        "excluded_search_terms": row.excluded_search_terms or [],
    }


def _timed(fn_name: str, start: float) -> None:
    """Log elapsed time in milliseconds."""
    elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
    logger.info("dal_query", function=fn_name, elapsed_ms=elapsed_ms)


# ── Hosts ──────────────────────────────────────────────────────────────────


def get_host(host_provider_id: str, *, db: Session) -> Optional[dict[str, Any]]:
    """
    Return the host view of a provider, or ``None`` if it does not exist.

    A malformed id is treated as "does not exist" so the caller answers 403
    rather than 400.
    """
    start = time.perf_counter()
    try:
        try:
            host_uuid = _as_uuid(host_provider_id, "host_provider_id")
        except ValueError:
            return None
        row = db.execute(select(Provider).where(Provider.id == host_uuid)).scalar_one_or_none()
        return _host_to_dict(row) if row is not None else None
    except Exception as exc:
        raise RuntimeError(f"get_host failed: {exc}") from exc
    finally:
        _timed("get_host", start)


# ── Provider search ────────────────────────────────────────────────────────


def get_nearby_provider_ids(
    lat: float,
    lng: float,
    radius_meters: float,
    *,
    db: Session,
) -> list[str]:
    """
    Return ids of active providers with at least one location within
    *radius_meters* of (*lat*, *lng*).

    Uses PostGIS ``ST_DWithin`` on the ``linksy_locations.geom`` GEOGRAPHY column.
    """
    start = time.perf_counter()
    try:
        point_wkt = f"SRID=4326;POINT({lng} {lat})"
        stmt = (
            select(ProviderLocation.provider_id)
            .join(Provider, Provider.id == ProviderLocation.provider_id)
            .where(Provider.provider_status == "active")
            .where(
                ST_DWithin(
                    ProviderLocation.geom,
                    func.ST_GeogFromText(point_wkt),
                    radius_meters,
                )
            )
            .distinct()
        )
        rows = db.execute(stmt).scalars().all()
        return [str(r) for r in rows]
    except Exception as exc:
        # Callers carry on with this session after a failed lookup
        db.rollback()
        raise RuntimeError(f"get_nearby_provider_ids failed: {exc}") from exc
    finally:
        _timed("get_nearby_provider_ids", start)


def get_providers_for_needs(
    need_ids: list[str],
    *,
    db: Session,
    provider_ids: Optional[list[str]] = None,
    limit: int = 10,
) -> list[dict[str, Any]]:
    """
    Return up to *limit* active providers offering at least one of *need_ids*.

    Locations and need associations are eagerly loaded. When *provider_ids*
    is non-empty the result is further restricted to those providers. No
    ordering is applied here; ranking happens in-process.
    """
    start = time.perf_counter()
    try:
        need_uuids = {_as_uuid(n, "need_id") for n in need_ids}
        if not need_uuids:
            return []

        offering = select(ProviderNeed.provider_id).where(ProviderNeed.need_id.in_(need_uuids))
        stmt = (
            select(Provider)
            .where(Provider.provider_status == "active")
            .where(Provider.id.in_(offering))
            .options(
                selectinload(Provider.locations),
                selectinload(Provider.provider_needs).selectinload(ProviderNeed.need),
            )
            .limit(limit)
        )
        if provider_ids:
            stmt = stmt.where(Provider.id.in_([_as_uuid(p, "provider_id") for p in provider_ids]))

        rows = db.execute(stmt).scalars().all()
        return [_provider_to_dict(r, need_uuids) for r in rows]
    except ValueError:
        raise
    except Exception as exc:
        raise RuntimeError(f"get_providers_for_needs failed: {exc}") from exc
    finally:
        _timed("get_providers_for_needs", start)


# ── Sessions & usage ───────────────────────────────────────────────────────


def create_search_session(
    *,
    db: Session,
    initial_query: str,
    tokens_used: int,
    model_used: str,
    site_id: Optional[str] = None,
    location: Optional[dict[str, float]] = None,
    zip_code: Optional[str] = None,
    host_provider_id: Optional[str] = None,
    search_radius_miles: Optional[int] = None,
) -> str:
    """Insert a new search session and return its id."""
    start = time.perf_counter()
    try:
        session = SearchSession(
            id=uuid.uuid4(),
            site_id=_as_uuid(site_id, "site_id") if site_id else None,
            initial_query=initial_query,
            message_count=1,
            total_tokens_used=max(0, int(tokens_used)),
            model_used=model_used,
            zip_code_searched=zip_code,
            host_provider_id=_as_uuid(host_provider_id, "host_provider_id") if host_provider_id else None,
            services_clicked=[],
        )
        if location is not None:
            session.user_latitude = location["lat"]
            session.user_longitude = location["lng"]
            if search_radius_miles:
                session.search_radius_miles = search_radius_miles

        db.add(session)
        db.commit()
        return str(session.id)
    except ValueError:
        db.rollback()
        raise
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"create_search_session failed: {exc}") from exc
    finally:
        _timed("create_search_session", start)


def increment_session_usage(session_id: str, tokens: int, *, db: Session) -> int:
    """
    Atomically add one message and *tokens* tokens to a session.

    Returns the number of rows updated (0 when the session does not exist).
    """
    start = time.perf_counter()
    try:
        stmt = (
            update(SearchSession)
            .where(SearchSession.id == _as_uuid(session_id, "session_id"))
            .values(
                message_count=SearchSession.message_count + 1,
                total_tokens_used=SearchSession.total_tokens_used + max(0, int(tokens)),
                last_active_at=func.now(),
            )
        )
        result = db.execute(stmt)
        db.commit()
        return result.rowcount
    except ValueError:
        raise
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"increment_session_usage failed: {exc}") from exc
    finally:
        _timed("increment_session_usage", start)


def increment_host_usage(host_provider_id: str, tokens: int, *, db: Session) -> int:
    """
    Atomically add *tokens* to a host's monthly token counter and count one search.

    Returns the number of rows updated.
    """
    start = time.perf_counter()
    try:
        stmt = (
            update(Provider)
            .where(Provider.id == _as_uuid(host_provider_id, "host_provider_id"))
            .values(
                host_tokens_used_this_month=Provider.host_tokens_used_this_month + max(0, int(tokens)),
                host_searches_this_month=Provider.host_searches_this_month + 1,
            )
        )
        result = db.execute(stmt)
        db.commit()
        return result.rowcount
    except ValueError:
        raise
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"increment_host_usage failed: {exc}") from exc
    finally:
        _timed("increment_host_usage", start)


def reset_host_monthly_usage(month_start: datetime, *, db: Session) -> int:
    """
    Zero the monthly counters of every host not yet reset since *month_start*.

    Returns the number of hosts reset.
    """
    start = time.perf_counter()
    try:
        stmt = (
            update(Provider)
            .where(Provider.is_host == True)  # noqa: E712
            .where(
                or_(
                    Provider.host_usage_reset_at.is_(None),
                    Provider.host_usage_reset_at < month_start,
                )
            )
            .values(
                host_tokens_used_this_month=0,
                host_searches_this_month=0,
                host_usage_reset_at=month_start,
            )
        )
        result = db.execute(stmt)
        db.commit()
        return result.rowcount
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"reset_host_monthly_usage failed: {exc}") from exc
    finally:
        _timed("reset_host_monthly_usage", start)


# ── Interactions ───────────────────────────────────────────────────────────


def record_interaction(
    *,
    db: Session,
    provider_id: str,
    interaction_type: str,
    session_id: Optional[str] = None,
    need_id: Optional[str] = None,
) -> str:
    """Insert a provider interaction and return its id."""
    start = time.perf_counter()
    try:
        interaction = Interaction(
            id=uuid.uuid4(),
            provider_id=_as_uuid(provider_id, "provider_id"),
            interaction_type=interaction_type,
            session_id=_as_uuid(session_id, "session_id") if session_id else None,
            need_id=_as_uuid(need_id, "need_id") if need_id else None,
        )
        db.add(interaction)
        db.commit()
        return str(interaction.id)
    except ValueError:
        db.rollback()
        raise
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"record_interaction failed: {exc}") from exc
    finally:
        _timed("record_interaction", start)


def add_service_clicked(session_id: str, provider_id: str, *, db: Session) -> bool:
    """
    Append *provider_id* to a session's ``services_clicked`` list once.

    Returns ``True`` if the list changed.
    """
    start = time.perf_counter()
    try:
        session = db.execute(
            select(SearchSession)
            .where(SearchSession.id == _as_uuid(session_id, "session_id"))
            .with_for_update()
        ).scalar_one_or_none()
        if session is None:
            return False

        clicked = list(session.services_clicked or [])
        if provider_id in clicked:
            db.commit()  # releases the row lock
            return False

        session.services_clicked = clicked + [provider_id]
        db.commit()
        return True
    except ValueError:
        raise
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"add_service_clicked failed: {exc}") from exc
    finally:
        _timed("add_service_clicked", start)


# ── Crisis keywords ────────────────────────────────────────────────────────


def get_crisis_keywords(
    *,
    db: Session,
    site_id: Optional[str] = None,
    host_provider_id: Optional[str] = None,
) -> list[dict[str, Any]]:
    """
    Return the crisis keywords that apply to a site, after host overrides.

    An ``exclude`` override removes an active keyword for that host; an
    ``include`` override enables a keyword that is otherwise inactive.
    """
    start = time.perf_counter()
    try:
        stmt = select(CrisisKeyword)
        if site_id:
            stmt = stmt.where(CrisisKeyword.site_id == _as_uuid(site_id, "site_id"))
        keywords = db.execute(stmt).scalars().all()

        overrides: dict[uuid.UUID, str] = {}
        if host_provider_id:
            try:
                host_uuid = _as_uuid(host_provider_id, "host_provider_id")
            except ValueError:
                host_uuid = None
            if host_uuid is not None:
                rows = db.execute(
                    select(HostCrisisOverride).where(HostCrisisOverride.host_id == host_uuid)
                ).scalars().all()
                overrides = {r.keyword_id: r.action for r in rows}

        applicable = []
        for kw in keywords:
            action = overrides.get(kw.id)
            if action == "exclude":
                continue
            if not kw.is_active and action != "include":
                continue
            applicable.append({
                "id": str(kw.id),
                "keyword": kw.keyword,
                "crisis_type": kw.crisis_type,
                "severity": kw.severity,
                "response_template": kw.response_template,
                "emergency_resources": kw.emergency_resources or [],
            })
        return applicable
    except ValueError:
        raise
    except Exception as exc:
        # Crisis checks share the search request's session
        db.rollback()
        raise RuntimeError(f"get_crisis_keywords failed: {exc}") from exc
    finally:
        _timed("get_crisis_keywords", start)


# ── Index maintenance ──────────────────────────────────────────────────────


def get_needs_for_indexing(*, db: Session, force: bool = False) -> list[dict[str, Any]]:
    """Return active needs lacking an embedding (all active needs when *force*)."""
    start = time.perf_counter()
    try:
        stmt = select(Need.id, Need.name, Need.synonyms).where(Need.is_active == True)  # noqa: E712
        if not force:
            stmt = stmt.where(Need.embedding.is_(None))
        stmt = stmt.order_by(Need.name.asc())
        rows = db.execute(stmt).all()
        return [{"id": str(r.id), "name": r.name, "synonyms": r.synonyms or []} for r in rows]
    except Exception as exc:
        raise RuntimeError(f"get_needs_for_indexing failed: {exc}") from exc
    finally:
        _timed("get_needs_for_indexing", start)


def save_need_embeddings(pairs: list[tuple[str, list[float]]], *, db: Session) -> int:
    """Persist ``(need_id, vector)`` pairs in one transaction. Returns rows updated."""
    start = time.perf_counter()
    try:
        now = datetime.now(timezone.utc)
        updated = 0
        for need_id, vector in pairs:
            result = db.execute(
                update(Need)
                .where(Need.id == _as_uuid(need_id, "need_id"))
                .values(embedding=vector, embedding_updated_at=now)
            )
            updated += result.rowcount
        db.commit()
        return updated
    except ValueError:
        db.rollback()
        raise
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"save_need_embeddings failed: {exc}") from exc
    finally:
        _timed("save_need_embeddings", start)


def get_providers_for_context_cards(*, db: Session, force: bool = False) -> list[dict[str, Any]]:
    """Return active providers without a context card (all of them when *force*)."""
    start = time.perf_counter()
    try:
        stmt = (
            select(Provider)
            .where(Provider.is_active == True)  # noqa: E712
            .options(
                selectinload(Provider.locations),
                selectinload(Provider.provider_needs).selectinload(ProviderNeed.need),
            )
            .order_by(Provider.name.asc())
        )
        if not force:
            stmt = stmt.where(Provider.llm_context_card.is_(None))
        rows = db.execute(stmt).scalars().all()
        return [_provider_to_dict(r) for r in rows]
    except Exception as exc:
        raise RuntimeError(f"get_providers_for_context_cards failed: {exc}") from exc
    finally:
        _timed("get_providers_for_context_cards", start)


def save_context_card(provider_id: str, card: str, *, db: Session) -> int:
    """Store a generated context card. Returns rows updated."""
    start = time.perf_counter()
    try:
        result = db.execute(
            update(Provider)
            .where(Provider.id == _as_uuid(provider_id, "provider_id"))
            .values(llm_context_card=card, llm_context_card_generated_at=datetime.now(timezone.utc))
        )
        db.commit()
        return result.rowcount
    except ValueError:
        raise
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"save_context_card failed: {exc}") from exc
    finally:
        _timed("save_context_card", start)


def get_context_card_stats(*, db: Session) -> dict[str, int]:
    """Count active providers with and without a context card."""
    start = time.perf_counter()
    try:
        total = db.execute(
            select(func.count(Provider.id)).where(Provider.is_active == True)  # noqa: E712
        ).scalar() or 0
        generated = db.execute(
            select(func.count(Provider.id))
            .where(Provider.is_active == True)  # noqa: E712
            .where(Provider.llm_context_card.is_not(None))
        ).scalar() or 0
        return {"total": total, "generated": generated, "missing": total - generated}
    except Exception as exc:
        raise RuntimeError(f"get_context_card_stats failed: {exc}") from exc
    finally:
        _timed("get_context_card_stats", start)


def get_ungeocoded_locations(*, db: Session) -> list[dict[str, Any]]:
    """Return locations with a street address that have never been geocoded."""
    start = time.perf_counter()
    try:
        rows = db.execute(
            select(ProviderLocation)
            .where(ProviderLocation.geocoded_at.is_(None))
            .where(ProviderLocation.address_line1.is_not(None))
        ).scalars().all()
        return [_location_to_dict(r) for r in rows]
    except Exception as exc:
        raise RuntimeError(f"get_ungeocoded_locations failed: {exc}") from exc
    finally:
        _timed("get_ungeocoded_locations", start)


def save_location_coordinates(
    location_id: str,
    lat: float,
    lng: float,
    *,
    db: Session,
    source: str = "google",
) -> int:
    """Store geocoded coordinates and the matching PostGIS point. Returns rows updated."""
    start = time.perf_counter()
    try:
        result = db.execute(
            update(ProviderLocation)
            .where(ProviderLocation.id == _as_uuid(location_id, "location_id"))
            .values(
                latitude=lat,
                longitude=lng,
                geom=func.ST_GeogFromText(f"SRID=4326;POINT({lng} {lat})"),
                geocoded_at=datetime.now(timezone.utc),
                geocode_source=source,
            )
        )
        db.commit()
        return result.rowcount
    except ValueError:
        raise
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"save_location_coordinates failed: {exc}") from exc
    finally:
        _timed("save_location_coordinates", start)


def get_geocode_stats(*, db: Session) -> dict[str, int]:
    """Count geocoded vs. ungeocoded locations."""
    start = time.perf_counter()
    try:
        total = db.execute(select(func.count(ProviderLocation.id))).scalar() or 0
        geocoded = db.execute(
            select(func.count(ProviderLocation.id)).where(ProviderLocation.geocoded_at.is_not(None))
        ).scalar() or 0
        return {"total": total, "geocoded": geocoded, "ungeocoded": total - geocoded}
    except Exception as exc:
        raise RuntimeError(f"get_geocode_stats failed: {exc}") from exc
    finally:
        _timed("get_geocode_stats", start)

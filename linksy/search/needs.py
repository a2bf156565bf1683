"""
Linksy Need Matching

Semantic similarity search over need embeddings using pgvector's cosine
distance operator (<=>).

Rules:
    - Similarity is 1 - cosine_distance; results below NEED_MATCH_THRESHOLD
      are never returned (the threshold itself is included)
    - At most NEED_MATCH_COUNT needs, highest similarity first, ties by id
    - Errors propagate; an empty list means "no match", never "failed"
"""

import time
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from linksy.config import settings
from linksy.db.models import Need, NeedCategory

logger = structlog.get_logger(__name__)


def match_needs(
    query_vector: list[float],
    *,
    db: Session,
    threshold: Optional[float] = None,
    limit: Optional[int] = None,
) -> list[dict[str, Any]]:
    """
    Return the needs most similar to *query_vector*.

    Args:
        query_vector: Embedding of the search query.
        db: SQLAlchemy session.
        threshold: Inclusive similarity floor. Defaults to NEED_MATCH_THRESHOLD.
        limit: Max needs returned. Defaults to NEED_MATCH_COUNT.

    Returns:
        List of dicts with: id, name, category, synonyms, similarity.
    """
    start_time = time.time()
    threshold = settings.NEED_MATCH_THRESHOLD if threshold is None else threshold
    limit = settings.NEED_MATCH_COUNT if limit is None else limit

    cosine_distance = Need.embedding.cosine_distance(query_vector)
    stmt = (
        select(
            Need.id,
            Need.name,
            Need.synonyms,
            NeedCategory.name.label("category_name"),
            cosine_distance.label("cosine_distance"),
        )
        .outerjoin(NeedCategory, Need.category_id == NeedCategory.id)
        .where(Need.is_active == True)  # noqa: E712
        .where(Need.embedding.is_not(None))
        .where(cosine_distance <= 1.0 - threshold)
        .order_by(cosine_distance.asc(), Need.id.asc())
        .limit(limit)
    )
    rows = db.execute(stmt).all()

    results = []
    for row in rows:
        similarity = 1.0 - float(row.cosine_distance)
        if similarity < threshold:
            continue
        results.append({
            "id": str(row.id),
            "name": row.name,
            "category": row.category_name,
            "synonyms": row.synonyms or [],
            "similarity": round(similarity, 4),
        })

    results.sort(key=lambda r: (-r["similarity"], r["id"]))
    results = results[:limit]

    logger.info(
        "match_needs",
        result_count=len(results),
        candidate_count=len(rows),
        elapsed_seconds=round(time.time() - start_time, 3),
    )
    return results

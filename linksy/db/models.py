"""
Linksy Database Models

SQLAlchemy 2.x ORM models for the referral directory tables the search
service reads and writes. Tables are defined in FK-dependency order for
migration compatibility.

Tables:
    1. linksy_need_categories   - Taxonomy groups
    2. linksy_needs             - Taxonomy leaves with pgvector embeddings
    3. linksy_providers         - Organizations (and embed hosts)
    4. linksy_locations         - Provider sites with PostGIS points
    5. linksy_provider_needs    - Provider ↔ need associations
    6. linksy_search_sessions   - One row per widget conversation
    7. linksy_crisis_keywords   - Crisis phrases per site
    8. linksy_host_crisis_overrides - Per-host keyword include/exclude
    9. linksy_interactions      - Provider card clicks
"""

from datetime import datetime
from typing import Optional
import uuid

from geoalchemy2 import Geography
from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Double,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

EMBEDDING_DIMENSIONS = 1536


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# Table 1: linksy_need_categories
# =============================================================================
class NeedCategory(Base):
    """Top-level grouping of needs (e.g. "Housing", "Food")."""
    __tablename__ = "linksy_need_categories"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    needs: Mapped[list["Need"]] = relationship("Need", back_populates="category")


# =============================================================================
# Table 2: linksy_needs
# =============================================================================
class Need(Base):
    """
    A taxonomy leaf a person can ask for help with.

    The embedding is built from name + synonyms and is only written by the
    indexing job; searches treat needs as read-only.
    """
    __tablename__ = "linksy_needs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("linksy_need_categories.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    synonyms: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    embedding = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=True, deferred=True)
    embedding_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    category: Mapped[Optional["NeedCategory"]] = relationship("NeedCategory", back_populates="needs")


# =============================================================================
# Table 3: linksy_providers
# =============================================================================
class Provider(Base):
    """
    An organization offering services.

    A provider flagged ``is_host`` can embed the search widget on its own
    site; the ``host_*`` columns hold its budget and usage counters.
    """
    __tablename__ = "linksy_providers"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    hours: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sector: Mapped[str] = mapped_column(
        String(20),
        CheckConstraint("sector IN ('nonprofit', 'faith_based', 'government', 'business')"),
        default="nonprofit",
        nullable=False,
    )
    referral_type: Mapped[str] = mapped_column(
        String(20),
        CheckConstraint("referral_type IN ('standard', 'contact_directly')"),
        default="standard",
        nullable=False,
    )
    referral_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    provider_status: Mapped[str] = mapped_column(
        String(20),
        CheckConstraint("provider_status IN ('active', 'paused', 'inactive', 'pending_approval')"),
        default="active",
        nullable=False,
    )
    service_zip_codes: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)

    # AI / search
    llm_context_card: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    llm_context_card_generated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Host fields
    is_host: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    host_embed_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    host_widget_config: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict, nullable=True)
    host_monthly_token_budget: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    host_tokens_used_this_month: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    host_searches_this_month: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    host_usage_reset_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    excluded_search_terms: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    locations: Mapped[list["ProviderLocation"]] = relationship(
        "ProviderLocation", back_populates="provider", order_by="ProviderLocation.created_at"
    )
    provider_needs: Mapped[list["ProviderNeed"]] = relationship("ProviderNeed", back_populates="provider")


# =============================================================================
# Table 4: linksy_locations
# =============================================================================
class ProviderLocation(Base):
    """
    A physical site of a provider.

    At most one location per provider should be ``is_primary``; this is a
    convention, not a constraint. ``geom`` mirrors latitude/longitude for
    PostGIS radius queries and is deferred so ORM loads never select it.
    """
    __tablename__ = "linksy_locations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("linksy_providers.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address_line1: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address_line2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    latitude: Mapped[Optional[float]] = mapped_column(Double, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Double, nullable=True)
    geom = mapped_column(
        Geography(geometry_type="POINT", srid=4326, spatial_index=False),
        nullable=True,
        deferred=True,
    )
    geocoded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    geocode_source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    provider: Mapped["Provider"] = relationship("Provider", back_populates="locations")


# =============================================================================
# Table 5: linksy_provider_needs
# =============================================================================
class ProviderNeed(Base):
    """Association of a provider with a need it serves."""
    __tablename__ = "linksy_provider_needs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("linksy_providers.id", ondelete="CASCADE"), nullable=False
    )
    need_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("linksy_needs.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("provider_id", "need_id", name="uq_provider_needs_provider_need"),
    )

    provider: Mapped["Provider"] = relationship("Provider", back_populates="provider_needs")
    need: Mapped["Need"] = relationship("Need")


# =============================================================================
# Table 6: linksy_search_sessions
# =============================================================================
class SearchSession(Base):
    """
    One record per widget conversation.

    Created on the first query; later queries only increment
    ``message_count`` and ``total_tokens_used`` server-side.
    """
    __tablename__ = "linksy_search_sessions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    site_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    initial_query: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    message_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_tokens_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    model_used: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_latitude: Mapped[Optional[float]] = mapped_column(Double, nullable=True)
    user_longitude: Mapped[Optional[float]] = mapped_column(Double, nullable=True)
    zip_code_searched: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    host_provider_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("linksy_providers.id"), nullable=True
    )
    search_radius_miles: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    services_clicked: Mapped[Optional[list]] = mapped_column(JSONB, default=list, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_active_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


# =============================================================================
# Table 7: linksy_crisis_keywords
# =============================================================================
class CrisisKeyword(Base):
    """A phrase that signals a crisis and the resources to show for it."""
    __tablename__ = "linksy_crisis_keywords"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    site_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    keyword: Mapped[str] = mapped_column(String(255), nullable=False)
    crisis_type: Mapped[str] = mapped_column(
        String(30),
        CheckConstraint("crisis_type IN ('suicide', 'domestic_violence', 'trafficking', 'child_abuse')"),
        nullable=False,
    )
    severity: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint("severity IN ('low', 'medium', 'high', 'critical')"),
        default="high",
        nullable=False,
    )
    response_template: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    emergency_resources: Mapped[Optional[list]] = mapped_column(JSONB, default=list, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


# =============================================================================
# Table 8: linksy_host_crisis_overrides
# =============================================================================
class HostCrisisOverride(Base):
    """Per-host include/exclude switch for a crisis keyword."""
    __tablename__ = "linksy_host_crisis_overrides"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    host_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("linksy_providers.id", ondelete="CASCADE"), nullable=False
    )
    keyword_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("linksy_crisis_keywords.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint("action IN ('include', 'exclude')"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("host_id", "keyword_id", name="uq_host_crisis_overrides_host_keyword"),
    )

    keyword: Mapped["CrisisKeyword"] = relationship("CrisisKeyword")


# =============================================================================
# Table 9: linksy_interactions
# =============================================================================
class Interaction(Base):
    """A click on a provider card shown in search results."""
    __tablename__ = "linksy_interactions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("linksy_search_sessions.id"), nullable=True
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("linksy_providers.id", ondelete="CASCADE"), nullable=False
    )
    need_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("linksy_needs.id"), nullable=True
    )
    interaction_type: Mapped[str] = mapped_column(
        String(30),
        CheckConstraint(
            "interaction_type IN ('phone_click', 'website_click', 'directions_click', 'profile_view')"
        ),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

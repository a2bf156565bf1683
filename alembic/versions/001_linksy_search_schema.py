"""
001 - Linksy Search Schema

Create the directory tables the search service reads and writes.

IMPORTANT: Tables are created in FK-dependency order:
    1. linksy_need_categories
    2. linksy_needs (FK → need_categories)
    3. linksy_providers
    4. linksy_locations (FK → providers)
    5. linksy_provider_needs (FK → providers, needs)
    6. linksy_search_sessions (FK → providers)
    7. linksy_crisis_keywords
    8. linksy_host_crisis_overrides (FK → providers, crisis_keywords)
    9. linksy_interactions (FK → search_sessions, providers, needs)

PostGIS and pgvector columns are added via raw SQL after table creation.
This migration is hand-written - do NOT use Alembic autogenerate.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    """Create all tables and indexes."""

    # =========================================================================
    # Enable PostgreSQL Extensions
    # =========================================================================
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # =========================================================================
    # Table 1: linksy_need_categories
    # =========================================================================
    op.create_table(
        "linksy_need_categories",
        _uuid_pk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug", name="uq_need_categories_slug"),
    )

    # =========================================================================
    # Table 2: linksy_needs
    # =========================================================================
    op.create_table(
        "linksy_needs",
        _uuid_pk(),
        sa.Column("category_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("synonyms", postgresql.JSONB(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("embedding_updated_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        # embedding vector column added below via raw SQL
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["category_id"], ["linksy_need_categories.id"], name="fk_needs_category"),
    )
    op.execute("ALTER TABLE linksy_needs ADD COLUMN embedding vector(1536)")
    op.execute("""
        CREATE INDEX idx_needs_embedding
        ON linksy_needs
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64)
    """)

    # =========================================================================
    # Table 3: linksy_providers
    # =========================================================================
    op.create_table(
        "linksy_providers",
        _uuid_pk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("hours", sa.Text(), nullable=True),
        sa.Column("sector", sa.String(20), server_default="nonprofit", nullable=False),
        sa.Column("referral_type", sa.String(20), server_default="standard", nullable=False),
        sa.Column("referral_instructions", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("provider_status", sa.String(20), server_default="active", nullable=False),
        sa.Column("service_zip_codes", postgresql.JSONB(), nullable=True),
        sa.Column("llm_context_card", sa.Text(), nullable=True),
        sa.Column("llm_context_card_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_host", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("host_embed_active", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("host_widget_config", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb"), nullable=True),
        sa.Column("host_monthly_token_budget", sa.Integer(), nullable=True),
        sa.Column("host_tokens_used_this_month", sa.Integer(), server_default="0", nullable=False),
        sa.Column("host_searches_this_month", sa.Integer(), server_default="0", nullable=False),
        sa.Column("host_usage_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("excluded_search_terms", postgresql.JSONB(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug", name="uq_providers_slug"),
        sa.CheckConstraint(
            "sector IN ('nonprofit', 'faith_based', 'government', 'business')",
            name="ck_providers_sector",
        ),
        sa.CheckConstraint(
            "referral_type IN ('standard', 'contact_directly')",
            name="ck_providers_referral_type",
        ),
        sa.CheckConstraint(
            "provider_status IN ('active', 'paused', 'inactive', 'pending_approval')",
            name="ck_providers_status",
        ),
    )
    op.create_index("idx_providers_status", "linksy_providers", ["provider_status"])

    # =========================================================================
    # Table 4: linksy_locations
    # =========================================================================
    op.create_table(
        "linksy_locations",
        _uuid_pk(),
        sa.Column("provider_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("address_line1", sa.String(255), nullable=True),
        sa.Column("address_line2", sa.String(255), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("state", sa.String(50), nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("is_primary", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("latitude", sa.Double(), nullable=True),
        sa.Column("longitude", sa.Double(), nullable=True),
        sa.Column("geocoded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("geocode_source", sa.String(50), nullable=True),
        _created_at(),
        # geom geography column added below via raw SQL
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["provider_id"], ["linksy_providers.id"], name="fk_locations_provider", ondelete="CASCADE"
        ),
    )
    op.execute("ALTER TABLE linksy_locations ADD COLUMN geom GEOGRAPHY(POINT, 4326)")
    op.execute("CREATE INDEX idx_locations_geom ON linksy_locations USING GIST (geom)")
    op.create_index("idx_locations_provider_id", "linksy_locations", ["provider_id"])

    # =========================================================================
    # Table 5: linksy_provider_needs
    # =========================================================================
    op.create_table(
        "linksy_provider_needs",
        _uuid_pk(),
        sa.Column("provider_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("need_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["provider_id"], ["linksy_providers.id"], name="fk_provider_needs_provider", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["need_id"], ["linksy_needs.id"], name="fk_provider_needs_need", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("provider_id", "need_id", name="uq_provider_needs_provider_need"),
    )
    op.create_index("idx_provider_needs_need_id", "linksy_provider_needs", ["need_id"])

    # =========================================================================
    # Table 6: linksy_search_sessions
    # =========================================================================
    op.create_table(
        "linksy_search_sessions",
        _uuid_pk(),
        sa.Column("site_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("initial_query", sa.Text(), nullable=True),
        sa.Column("message_count", sa.Integer(), server_default="1", nullable=False),
        sa.Column("total_tokens_used", sa.Integer(), server_default="0", nullable=False),
        sa.Column("model_used", sa.String(100), nullable=True),
        sa.Column("user_latitude", sa.Double(), nullable=True),
        sa.Column("user_longitude", sa.Double(), nullable=True),
        sa.Column("zip_code_searched", sa.String(20), nullable=True),
        sa.Column("host_provider_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("search_radius_miles", sa.Integer(), nullable=True),
        sa.Column("services_clicked", postgresql.JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=True),
        _created_at(),
        sa.Column("last_active_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["host_provider_id"], ["linksy_providers.id"], name="fk_sessions_host"),
    )
    op.create_index("idx_search_sessions_host", "linksy_search_sessions", ["host_provider_id"])

    # =========================================================================
    # Table 7: linksy_crisis_keywords
    # =========================================================================
    op.create_table(
        "linksy_crisis_keywords",
        _uuid_pk(),
        sa.Column("site_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("keyword", sa.String(255), nullable=False),
        sa.Column("crisis_type", sa.String(30), nullable=False),
        sa.Column("severity", sa.String(10), server_default="high", nullable=False),
        sa.Column("response_template", sa.Text(), nullable=True),
        sa.Column("emergency_resources", postgresql.JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "crisis_type IN ('suicide', 'domestic_violence', 'trafficking', 'child_abuse')",
            name="ck_crisis_keywords_type",
        ),
        sa.CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')",
            name="ck_crisis_keywords_severity",
        ),
    )

    # =========================================================================
    # Table 8: linksy_host_crisis_overrides
    # =========================================================================
    op.create_table(
        "linksy_host_crisis_overrides",
        _uuid_pk(),
        sa.Column("host_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("keyword_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(10), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["host_id"], ["linksy_providers.id"], name="fk_crisis_overrides_host", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["keyword_id"], ["linksy_crisis_keywords.id"], name="fk_crisis_overrides_keyword", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("host_id", "keyword_id", name="uq_host_crisis_overrides_host_keyword"),
        sa.CheckConstraint("action IN ('include', 'exclude')", name="ck_crisis_overrides_action"),
    )

    # =========================================================================
    # Table 9: linksy_interactions
    # =========================================================================
    op.create_table(
        "linksy_interactions",
        _uuid_pk(),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("provider_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("need_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("interaction_type", sa.String(30), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["session_id"], ["linksy_search_sessions.id"], name="fk_interactions_session"),
        sa.ForeignKeyConstraint(
            ["provider_id"], ["linksy_providers.id"], name="fk_interactions_provider", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["need_id"], ["linksy_needs.id"], name="fk_interactions_need"),
        sa.CheckConstraint(
            "interaction_type IN ('phone_click', 'website_click', 'directions_click', 'profile_view')",
            name="ck_interactions_type",
        ),
    )
    op.create_index("idx_interactions_provider", "linksy_interactions", ["provider_id"])


def downgrade() -> None:
    """Drop all tables in reverse FK order."""
    op.drop_table("linksy_interactions")
    op.drop_table("linksy_host_crisis_overrides")
    op.drop_table("linksy_crisis_keywords")
    op.drop_table("linksy_search_sessions")
    op.drop_table("linksy_provider_needs")
    op.execute("DROP INDEX IF EXISTS idx_locations_geom")
    op.drop_table("linksy_locations")
    op.drop_table("linksy_providers")
    op.execute("DROP INDEX IF EXISTS idx_needs_embedding")
    op.drop_table("linksy_needs")
    op.drop_table("linksy_need_categories")
    op.execute("DROP EXTENSION IF EXISTS vector")

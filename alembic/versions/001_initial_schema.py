"""Initial schema: catalog, reading history, quality, graph, profiles and candidate cache

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""

import sqlalchemy as sa
from pgvector.sqlalchemy import Vector

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

EMBEDDING_DIMENSIONS = 1536


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # Catalog
    op.create_table(
        "works",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("catalog_key", sa.String(50), nullable=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("publication_year", sa.Integer(), nullable=True),
        sa.Column("series_name", sa.String(255), nullable=True),
        sa.Column("language", sa.String(10), nullable=True),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column("community_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_works_catalog_key", "works", ["catalog_key"], unique=True)
    op.create_index("ix_works_title", "works", ["title"])
    op.create_index("ix_works_publication_year", "works", ["publication_year"])
    op.create_index("ix_works_series_name", "works", ["series_name"])
    op.create_index("ix_works_community_id", "works", ["community_id"])
    # IVFFlat index for cosine kNN
    op.execute(
        "CREATE INDEX ix_works_embedding ON works "
        "USING ivfflat (embedding vector_cosine_ops) WITH (lists = 100)"
    )

    op.create_table(
        "authors",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_authors_name", "authors", ["name"])

    op.create_table(
        "work_authors",
        sa.Column("work_id", sa.Integer(), nullable=False),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["work_id"], ["works.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["authors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("work_id", "author_id"),
    )

    op.create_table(
        "work_subjects",
        sa.Column("work_id", sa.Integer(), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.ForeignKeyConstraint(["work_id"], ["works.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("work_id", "subject"),
    )
    op.create_index("ix_work_subjects_subject", "work_subjects", ["subject"])

    # Reading history
    op.create_table(
        "reading_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("work_id", sa.Integer(), nullable=False),
        sa.Column("shelf", sa.String(32), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("source", sa.String(50), nullable=False, server_default="goodreads_import"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["work_id"], ["works.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "work_id", name="unique_user_work_event"),
    )
    op.create_index("ix_reading_events_user_id", "reading_events", ["user_id"])
    op.create_index("ix_reading_events_work_id", "reading_events", ["work_id"])
    op.create_index("ix_reading_events_shelf", "reading_events", ["shelf"])
    op.create_index("ix_reading_events_finished_at", "reading_events", ["finished_at"])
    op.create_index("ix_reading_events_created_at", "reading_events", ["created_at"])
    op.create_index("ix_reading_events_updated_at", "reading_events", ["updated_at"])

    op.create_table(
        "reading_aggregates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("work_id", sa.Integer(), nullable=False),
        sa.Column("total_seconds", sa.Float(), nullable=True),
        sa.Column("last_read_at", sa.DateTime(), nullable=True),
        sa.Column("last_30d_seconds", sa.Float(), nullable=True),
        sa.Column("avg_session_seconds", sa.Float(), nullable=True),
        sa.Column("max_session_seconds", sa.Float(), nullable=True),
        sa.Column("sessions", sa.Integer(), nullable=True),
        sa.Column("completion_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("acquisition_type", sa.String(32), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["work_id"], ["works.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "work_id", name="unique_user_work_aggregate"),
    )
    op.create_index("ix_reading_aggregates_user_id", "reading_aggregates", ["user_id"])
    op.create_index("ix_reading_aggregates_work_id", "reading_aggregates", ["work_id"])
    op.create_index("ix_reading_aggregates_updated_at", "reading_aggregates", ["updated_at"])

    op.create_table(
        "blocks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("work_id", sa.Integer(), nullable=True),
        sa.Column("author_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["work_id"], ["works.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["authors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_blocks_user_id", "blocks", ["user_id"])

    # Quality priors
    op.create_table(
        "work_ratings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("work_id", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("avg", sa.Float(), nullable=True),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["work_id"], ["works.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("work_id", "source", name="unique_work_rating_source"),
    )
    op.create_index("ix_work_ratings_work_id", "work_ratings", ["work_id"])

    op.create_table(
        "work_quality",
        sa.Column("work_id", sa.Integer(), nullable=False),
        sa.Column("blended_avg", sa.Float(), nullable=False),
        sa.Column("blended_wilson", sa.Float(), nullable=False),
        sa.Column("total_ratings", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["work_id"], ["works.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("work_id"),
    )

    # Graph and collaborative sources
    op.create_table(
        "work_graph_features",
        sa.Column("work_id", sa.Integer(), nullable=False),
        sa.Column("author_affinity", sa.Float(), nullable=False, server_default="0"),
        sa.Column("subject_overlap", sa.Float(), nullable=False, server_default="0"),
        sa.Column("same_series", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("proximity_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("computed_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["work_id"], ["works.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("work_id"),
    )

    op.create_table(
        "reading_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("reader_key", sa.String(100), nullable=False),
        sa.Column("catalog_key", sa.String(50), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reading_logs_reader_key", "reading_logs", ["reader_key"])
    op.create_index("ix_reading_logs_catalog_key", "reading_logs", ["catalog_key"])
    op.create_index("ix_reading_logs_status", "reading_logs", ["status"])

    op.create_table(
        "list_seeds",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("list_id", sa.String(100), nullable=False),
        sa.Column("seed_key", sa.String(50), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_list_seeds_list_id", "list_seeds", ["list_id"])
    op.create_index("ix_list_seeds_seed_key", "list_seeds", ["seed_key"])

    op.create_table(
        "work_cooccurrence",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("work_key_a", sa.String(50), nullable=False),
        sa.Column("work_key_b", sa.String(50), nullable=False),
        sa.Column("overlap", sa.Integer(), nullable=False),
        sa.Column("jaccard", sa.Float(), nullable=False),
        sa.Column("readers_a", sa.Integer(), nullable=False),
        sa.Column("readers_b", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_work_cooccurrence_work_key_a", "work_cooccurrence", ["work_key_a"])
    op.create_index("ix_work_cooccurrence_work_key_b", "work_cooccurrence", ["work_key_b"])
    op.create_index("ix_work_cooccurrence_jaccard", "work_cooccurrence", ["jaccard"])

    # Profiles and candidate cache
    op.create_table(
        "user_profiles",
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("profile_vector", Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column("anchors", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "candidate_cache",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("mode", sa.String(32), nullable=False),
        sa.Column("cache_key", sa.String(255), nullable=False),
        sa.Column("work_ids", sa.JSON(), nullable=False),
        sa.Column("scores", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "mode", "cache_key", name="unique_candidate_cache_key"),
    )
    op.create_index("ix_candidate_cache_user_id", "candidate_cache", ["user_id"])
    op.create_index("ix_candidate_cache_expires_at", "candidate_cache", ["expires_at"])


def downgrade() -> None:
    op.drop_table("candidate_cache")
    op.drop_table("user_profiles")
    op.drop_table("work_cooccurrence")
    op.drop_table("list_seeds")
    op.drop_table("reading_logs")
    op.drop_table("work_graph_features")
    op.drop_table("work_quality")
    op.drop_table("work_ratings")
    op.drop_table("blocks")
    op.drop_table("reading_aggregates")
    op.drop_table("reading_events")
    op.drop_table("work_subjects")
    op.drop_table("work_authors")
    op.drop_table("authors")
    op.drop_table("works")
    op.execute("DROP EXTENSION IF EXISTS vector")

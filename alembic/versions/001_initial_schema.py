"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Documentation sources
    op.create_table(
        "docs_sources",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("url", sa.Text(), nullable=False, unique=True),
        sa.Column("title", sa.Text()),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("crawl_options", sa.JSON()),
        sa.Column("total_pages", sa.Integer(), server_default="0"),
        sa.Column("crawled_pages", sa.Integer(), server_default="0"),
        sa.Column("error_message", sa.Text()),
        sa.Column("last_crawled_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_docs_sources_url", "docs_sources", ["url"])
    op.create_index("ix_docs_sources_status", "docs_sources", ["status"])

    # Crawled pages
    op.create_table(
        "docs_pages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "source_id",
            sa.Integer(),
            sa.ForeignKey("docs_sources.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text()),
        sa.Column("content", sa.Text()),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("file_path", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("source_id", "url", name="uq_source_page_url"),
    )
    op.create_index("ix_docs_pages_source_id", "docs_pages", ["source_id"])

    # Chunks (embedding stored as a JSON float array)
    op.create_table(
        "docs_chunks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "page_id",
            sa.Integer(),
            sa.ForeignKey("docs_pages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("chunk_type", sa.String(10), server_default="text"),
        sa.Column("language", sa.String(50)),
        sa.Column("embedding", sa.Text()),
        sa.Column("heading_path", sa.Text()),
        sa.Column("section_position", sa.Integer()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_docs_chunks_page_id", "docs_chunks", ["page_id"])


def downgrade() -> None:
    op.drop_table("docs_chunks")
    op.drop_table("docs_pages")
    op.drop_table("docs_sources")

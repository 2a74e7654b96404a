"""Initial schema - all 10 Drift Engine tables.

Revision ID: 001_initial
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enums are stored by value in short VARCHAR columns (no native DB enums).
ENUM = sa.String(16)


def _user_fk(name: str, *, primary_key: bool = False, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=primary_key,
        nullable=nullable,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # ── 1. users ────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String, unique=True, index=True, nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
    )

    # ── 2. profiles ─────────────────────────────────────────────────
    op.create_table(
        "profiles",
        _user_fk("user_id", primary_key=True),
        sa.Column("display_name", sa.String, nullable=False),
        sa.Column("age", sa.Integer, nullable=True),
        sa.Column("bio", sa.String, nullable=True),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("hide_location", sa.Boolean, server_default="false", nullable=False),
        sa.Column(
            "interests",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
            comment="Array of interest tags",
        ),
        sa.Column("looking_for", ENUM, nullable=False, comment="dating / friends / both"),
        sa.Column("verified", sa.Boolean, server_default="false", nullable=False),
        sa.Column("onboarding_completed", sa.Boolean, server_default="true", nullable=False),
        sa.Column("preferred_min_age", sa.Integer, nullable=True),
        sa.Column("preferred_max_age", sa.Integer, nullable=True),
        sa.Column("preferred_max_distance_miles", sa.Integer, nullable=True),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
    )
    op.create_index(
        "ix_profiles_discovery",
        "profiles",
        ["is_active", "looking_for", "last_active_at"],
    )

    # ── 3. swipes ───────────────────────────────────────────────────
    op.create_table(
        "swipes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _user_fk("swiper_id"),
        _user_fk("target_id"),
        sa.Column("mode", ENUM, nullable=False),
        sa.Column("direction", ENUM, nullable=False, comment="left / right / up"),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("swiper_id", "target_id", "mode", name="uq_swipe_pair_mode"),
    )
    op.create_index("ix_swipes_target_mode", "swipes", ["target_id", "mode"])

    # ── 4. matches (pair like ledger) ───────────────────────────────
    op.create_table(
        "matches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _user_fk("user_lo_id"),
        _user_fk("user_hi_id"),
        sa.Column("mode", ENUM, nullable=False),
        sa.Column("lo_liked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hi_liked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "matched_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Set once, never cleared",
        ),
        sa.Column(
            "matched_by_id",
            postgresql.UUID(as_uuid=True),
            nullable=True,
            comment="User whose like completed the match",
        ),
        _created_at(),
        sa.UniqueConstraint("user_lo_id", "user_hi_id", "mode", name="uq_match_pair_mode"),
        sa.CheckConstraint("user_lo_id <> user_hi_id", name="ck_match_not_self"),
    )
    op.create_index("ix_matches_lo_matched", "matches", ["user_lo_id", "matched_at"])
    op.create_index("ix_matches_hi_matched", "matches", ["user_hi_id", "matched_at"])

    # ── 5. friend_requests ──────────────────────────────────────────
    op.create_table(
        "friend_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_lo_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_hi_id", postgresql.UUID(as_uuid=True), nullable=False),
        _user_fk("requester_id"),
        _user_fk("addressee_id"),
        sa.Column(
            "status",
            ENUM,
            nullable=False,
            server_default="pending",
            comment="pending / accepted / declined",
        ),
        sa.Column(
            "message",
            sa.String,
            nullable=True,
            comment="Becomes the first message on acceptance",
        ),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_lo_id", "user_hi_id", name="uq_friend_request_pair"),
        sa.CheckConstraint("requester_id <> addressee_id", name="ck_friend_request_not_self"),
    )
    op.create_index(
        "ix_friend_requests_addressee_status",
        "friend_requests",
        ["addressee_id", "status"],
    )
    op.create_index(
        "ix_friend_requests_requester_status",
        "friend_requests",
        ["requester_id", "status"],
    )

    # ── 6. blocks ───────────────────────────────────────────────────
    op.create_table(
        "blocks",
        _user_fk("blocker_id", primary_key=True),
        _user_fk("blocked_id", primary_key=True),
        _created_at(),
        sa.CheckConstraint("blocker_id <> blocked_id", name="ck_block_not_self"),
    )
    op.create_index("ix_blocks_blocked", "blocks", ["blocked_id"])

    # ── 7. conversations ────────────────────────────────────────────
    op.create_table(
        "conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("type", ENUM, nullable=False, comment="dating / friends / activity"),
        _user_fk("user_lo_id"),
        _user_fk("user_hi_id"),
        sa.Column("activity_id", postgresql.UUID(as_uuid=True), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_lo_id", "user_hi_id", "type", name="uq_conversation_pair_type"),
        sa.CheckConstraint("user_lo_id <> user_hi_id", name="ck_conversation_not_self"),
    )

    # ── 8. conversation_participants ────────────────────────────────
    op.create_table(
        "conversation_participants",
        sa.Column(
            "conversation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        _user_fk("user_id", primary_key=True),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("hidden_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "history_cleared_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Messages at or before this instant stay gone after re-entry",
        ),
        sa.Column("is_muted", sa.Boolean, server_default="false", nullable=False),
    )
    op.create_index(
        "ix_participants_user",
        "conversation_participants",
        ["user_id", "left_at", "hidden_at"],
    )

    # ── 9. messages ─────────────────────────────────────────────────
    op.create_table(
        "messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "conversation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _user_fk("sender_id"),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column(
            "client_message_id",
            sa.String(64),
            nullable=True,
            comment="Idempotency key supplied by the sender",
        ),
        _created_at(),
        sa.UniqueConstraint(
            "conversation_id",
            "sender_id",
            "client_message_id",
            name="uq_message_client_id",
        ),
    )
    op.create_index(
        "ix_messages_conversation_created",
        "messages",
        ["conversation_id", "created_at"],
    )

    # ── 10. reports ─────────────────────────────────────────────────
    op.create_table(
        "reports",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _user_fk("reporter_id"),
        _user_fk("reported_user_id"),
        sa.Column("category", ENUM, nullable=False),
        sa.Column(
            "content_type",
            ENUM,
            nullable=False,
            server_default="profile",
            comment="profile / message",
        ),
        sa.Column(
            "message_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("messages.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("description", sa.Text, nullable=True),
        _created_at(),
        sa.CheckConstraint("reporter_id <> reported_user_id", name="ck_report_not_self"),
    )
    op.create_index(
        "ix_reports_reported_user",
        "reports",
        ["reported_user_id", "created_at"],
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_index("ix_reports_reported_user", table_name="reports")
    op.drop_table("reports")

    op.drop_index("ix_messages_conversation_created", table_name="messages")
    op.drop_table("messages")

    op.drop_index("ix_participants_user", table_name="conversation_participants")
    op.drop_table("conversation_participants")
    op.drop_table("conversations")

    op.drop_index("ix_blocks_blocked", table_name="blocks")
    op.drop_table("blocks")

    op.drop_index("ix_friend_requests_requester_status", table_name="friend_requests")
    op.drop_index("ix_friend_requests_addressee_status", table_name="friend_requests")
    op.drop_table("friend_requests")

    op.drop_index("ix_matches_hi_matched", table_name="matches")
    op.drop_index("ix_matches_lo_matched", table_name="matches")
    op.drop_table("matches")

    op.drop_index("ix_swipes_target_mode", table_name="swipes")
    op.drop_table("swipes")

    op.drop_index("ix_profiles_discovery", table_name="profiles")
    op.drop_table("profiles")
    op.drop_table("users")

"""Initial schema — all tables, enums, constraints, and indexes.

Revision: 001_initial_schema

Append-only: never edit this file after it has been applied to a database.
Schema changes go in a NEW migration file.

Creation order:
  1. PostgreSQL enum types (must exist before the expenses table)
  2. Tables in FK dependency order (users → groups → memberships →
     pending_members → expenses → splits → expense_items →
     expense_item_participants → settlements → notifications)
  3. Indexes, including the two partial indexes:
       idx_expenses_active              WHERE deleted_at IS NULL
       uq_settlements_pending_direction WHERE NOT confirmed_by_recipient
                                        (UNIQUE: one pending per direction)

ON DELETE policies:
  pending_members.group_id       → CASCADE   (tracked per group)
  splits.expense_id              → CASCADE   (owned by expense)
  expense_items.expense_id       → CASCADE   (owned by expense)
  expense_item_participants.*    → CASCADE on item, RESTRICT on people
  notifications.user_id          → CASCADE   (owned by user)
  everything else                → RESTRICT
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


_SPLIT_MODE = postgresql.ENUM(
    "equal", "custom", "itemized",
    name="split_mode_enum",
    create_type=False,
)

_CATEGORY = postgresql.ENUM(
    "food", "transport", "entertainment", "utilities",
    "shopping", "travel", "health", "other",
    name="category_enum",
    create_type=False,
)


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


def upgrade() -> None:
    # ── Step 1: PostgreSQL enum types ─────────────────────────────────────
    op.execute("CREATE TYPE split_mode_enum AS ENUM ('equal', 'custom', 'itemized')")
    op.execute("""
        CREATE TYPE category_enum AS ENUM (
            'food',
            'transport',
            'entertainment',
            'utilities',
            'shopping',
            'travel',
            'health',
            'other'
        )
    """)

    # ── Step 2: users ──────────────────────────────────────────────────────
    # phone holds the normalized "+<digits>" form and is the reconciliation key.

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("phone", name="uq_users_phone"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_users_name_nonempty"),
        sa.CheckConstraint("email LIKE '%@%'", name="ck_users_email_format"),
    )

    # ── Step 3: groups ─────────────────────────────────────────────────────

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "creator_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_groups_creator"),
            nullable=False,
        ),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_groups_name_nonempty"),
    )

    # ── Step 4: memberships ────────────────────────────────────────────────
    # is_admin = TRUE rows form the group's admin set.

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_memberships_user"),
            nullable=False,
        ),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_memberships_group"),
            nullable=False,
        ),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")),
        _created_at("joined_at"),
        sa.PrimaryKeyConstraint("id", name="pk_memberships"),
        sa.UniqueConstraint("user_id", "group_id", name="uq_memberships_user_group"),
    )
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])
    op.create_index("ix_memberships_group_id", "memberships", ["group_id"])

    # ── Step 5: pending_members ────────────────────────────────────────────

    op.create_table(
        "pending_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_pending_members_group"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(20), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_pending_members"),
        sa.UniqueConstraint("group_id", "phone", name="uq_pending_members_group_phone"),
    )
    op.create_index("ix_pending_members_group_id", "pending_members", ["group_id"])
    op.create_index("ix_pending_members_phone", "pending_members", ["phone"])

    # ── Step 6: expenses ───────────────────────────────────────────────────
    # Exactly one payer reference. deleted_at IS NULL = active.

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_expenses_group"),
            nullable=False,
        ),
        sa.Column(
            "paid_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_expenses_payer"),
            nullable=True,
        ),
        sa.Column(
            "paid_by_pending_id",
            sa.Integer(),
            sa.ForeignKey(
                "pending_members.id",
                ondelete="RESTRICT",
                name="fk_expenses_pending_payer",
            ),
            nullable=True,
        ),
        sa.Column(
            "created_by_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_expenses_creator"),
            nullable=False,
        ),
        sa.Column("description", sa.String(100), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("split_mode", _SPLIT_MODE, nullable=False),
        sa.Column("category", _CATEGORY, nullable=False, server_default="other"),
        sa.Column(
            "expense_date",
            sa.Date(),
            nullable=False,
            server_default=sa.text("CURRENT_DATE"),
        ),
        sa.Column("notes", sa.String(500), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
        sa.CheckConstraint(
            "(paid_by_user_id IS NULL) <> (paid_by_pending_id IS NULL)",
            name="ck_expenses_single_payer",
        ),
    )
    op.create_index("ix_expenses_group_id", "expenses", ["group_id"])
    op.create_index("ix_expenses_paid_by_user_id", "expenses", ["paid_by_user_id"])
    op.create_index("ix_expenses_paid_by_pending_id", "expenses", ["paid_by_pending_id"])
    op.create_index(
        "idx_expenses_active",
        "expenses",
        ["group_id"],
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    # ── Step 7: splits ─────────────────────────────────────────────────────

    op.create_table(
        "splits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_splits_expense"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_splits_user"),
            nullable=True,
        ),
        sa.Column(
            "pending_member_id",
            sa.Integer(),
            sa.ForeignKey(
                "pending_members.id",
                ondelete="RESTRICT",
                name="fk_splits_pending_member",
            ),
            nullable=True,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_splits"),
        sa.UniqueConstraint("expense_id", "user_id", name="uq_splits_expense_user"),
        sa.UniqueConstraint(
            "expense_id",
            "pending_member_id",
            name="uq_splits_expense_pending",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_splits_amount_non_negative"),
        sa.CheckConstraint(
            "(user_id IS NULL) <> (pending_member_id IS NULL)",
            name="ck_splits_single_participant",
        ),
    )
    op.create_index("ix_splits_expense_id", "splits", ["expense_id"])
    op.create_index("ix_splits_pending_member_id", "splits", ["pending_member_id"])

    # ── Step 8: expense_items + expense_item_participants ──────────────────

    op.create_table(
        "expense_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_expense_items_expense"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_expense_items"),
    )
    op.create_index("ix_expense_items_expense_id", "expense_items", ["expense_id"])

    op.create_table(
        "expense_item_participants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey(
                "expense_items.id",
                ondelete="CASCADE",
                name="fk_item_participants_item",
            ),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_item_participants_user"),
            nullable=True,
        ),
        sa.Column(
            "pending_member_id",
            sa.Integer(),
            sa.ForeignKey(
                "pending_members.id",
                ondelete="RESTRICT",
                name="fk_item_participants_pending",
            ),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_expense_item_participants"),
        sa.UniqueConstraint("item_id", "user_id", name="uq_item_participants_user"),
        sa.UniqueConstraint(
            "item_id",
            "pending_member_id",
            name="uq_item_participants_pending",
        ),
        sa.CheckConstraint(
            "(user_id IS NULL) <> (pending_member_id IS NULL)",
            name="ck_item_participants_single_ref",
        ),
    )
    op.create_index(
        "ix_expense_item_participants_item_id",
        "expense_item_participants",
        ["item_id"],
    )
    op.create_index(
        "ix_expense_item_participants_pending_member_id",
        "expense_item_participants",
        ["pending_member_id"],
    )

    # ── Step 9: settlements ────────────────────────────────────────────────
    # confirmed_by_recipient FALSE = pending, TRUE = confirmed (terminal).

    op.create_table(
        "settlements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_settlements_group"),
            nullable=False,
        ),
        sa.Column(
            "from_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_settlements_from"),
            nullable=False,
        ),
        sa.Column(
            "to_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_settlements_to"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column(
            "confirmed_by_recipient",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        _created_at(),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_settlements"),
        sa.CheckConstraint("amount > 0", name="ck_settlements_amount_positive"),
        sa.CheckConstraint(
            "from_user_id <> to_user_id",
            name="ck_settlements_no_self_settlement",
        ),
    )
    op.create_index("ix_settlements_group_id", "settlements", ["group_id"])
    op.create_index(
        "uq_settlements_pending_direction",
        "settlements",
        ["group_id", "from_user_id", "to_user_id"],
        unique=True,
        postgresql_where=sa.text("NOT confirmed_by_recipient"),
    )

    # ── Step 10: notifications ─────────────────────────────────────────────

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_notifications_user"),
            nullable=False,
        ),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        _created_at(),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_notifications"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    """Drops everything in reverse dependency order."""
    op.drop_table("notifications")
    op.drop_index("uq_settlements_pending_direction", table_name="settlements")
    op.drop_table("settlements")
    op.drop_table("expense_item_participants")
    op.drop_table("expense_items")
    op.drop_table("splits")
    op.drop_index("idx_expenses_active", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("pending_members")
    op.drop_table("memberships")
    op.drop_table("groups")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS category_enum")
    op.execute("DROP TYPE IF EXISTS split_mode_enum")

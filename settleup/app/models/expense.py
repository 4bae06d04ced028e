"""
models/expense.py — Expense table definition.

No business logic. No imports from services or routes.

Key design points:
  - The payer is either a registered user or a pending member of the group.
    Exactly one of paid_by_user_id / paid_by_pending_id is set; a CHECK
    constraint rejects both-set and neither-set rows. Service code never reads
    the two columns directly; it goes through services.ledger.participant_from_refs().
  - `deleted_at` is NULL for active expenses, non-null for soft-deleted ones.
    Balance queries only ever see active rows.
  - `amount` uses Numeric(12, 2) — never Float.
  - SplitMode and Category are Python enums so they can be imported and used
    throughout the service layer without repeating string literals.
"""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settleup.app.extensions import db


# ── Enum Definitions ───────────────────────────────────────────────────────

class SplitMode(str, enum.Enum):
    EQUAL    = "equal"
    CUSTOM   = "custom"
    ITEMIZED = "itemized"


class Category(str, enum.Enum):
    FOOD          = "food"
    TRANSPORT     = "transport"
    ENTERTAINMENT = "entertainment"
    UTILITIES     = "utilities"
    SHOPPING      = "shopping"
    TRAVEL        = "travel"
    HEALTH        = "health"
    OTHER         = "other"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'custom'), not names ('CUSTOM')."""
    return [member.value for member in enum_cls]


# ── Model ──────────────────────────────────────────────────────────────────

class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),

        CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),

        # Exactly one payer reference.
        CheckConstraint(
            "(paid_by_user_id IS NULL) <> (paid_by_pending_id IS NULL)",
            name="ck_expenses_single_payer",
        ),

        # Balance reads always filter deleted_at IS NULL.
        Index(
            "idx_expenses_active",
            "group_id",
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    paid_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    paid_by_pending_id: Mapped[int | None] = mapped_column(
        ForeignKey("pending_members.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    # Who recorded the expense; may differ from the payer when an admin
    # records on behalf of someone else. Governs edit rights.
    created_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    split_mode: Mapped[SplitMode] = mapped_column(
        Enum(
            SplitMode,
            name="split_mode_enum",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=SplitMode.EQUAL,
    )

    category: Mapped[Category] = mapped_column(
        Enum(
            Category,
            name="category_enum",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=Category.OTHER,
    )

    expense_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        default=date.today,
    )

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # NULL = active; NOT NULL = soft-deleted. Never hard-delete via the API.
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="expenses",
    )

    payer: Mapped["User | None"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[paid_by_user_id],
    )

    pending_payer: Mapped["PendingMember | None"] = relationship(  # noqa: F821
        "PendingMember",
        foreign_keys=[paid_by_pending_id],
    )

    # Splits and items are owned by their expense.
    splits: Mapped[list["Split"]] = relationship(  # noqa: F821
        "Split",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    items: Mapped[list["ExpenseItem"]] = relationship(  # noqa: F821
        "ExpenseItem",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_deleted(self) -> bool:
        """True if this expense has been soft-deleted."""
        return self.deleted_at is not None

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"group_id={self.group_id} "
            f"amount={self.amount} "
            f"deleted={self.is_deleted}>"
        )

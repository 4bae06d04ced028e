"""
models/split.py — Split table definition.

One participant's share of one expense. The participant is a registered user
or a pending member; exactly one of user_id / pending_member_id is set.

  - amount uses Numeric(12, 2) and may be zero (a participant listed on an
    itemized expense who ended up with no items).
  - A participant appears at most once per expense; the two partial
    uniqueness rules below cover each reference column.
  - Whether sum(splits) equals the expense amount is checked by
    expense_service on write. Balance computation tolerates mismatches.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settleup.app.extensions import db


class Split(db.Model):
    __tablename__ = "splits"

    __table_args__ = (
        # NULLs never collide, so each constraint only bites for its own kind.
        UniqueConstraint("expense_id", "user_id", name="uq_splits_expense_user"),
        UniqueConstraint(
            "expense_id",
            "pending_member_id",
            name="uq_splits_expense_pending",
        ),

        CheckConstraint("amount >= 0", name="ck_splits_amount_non_negative"),

        CheckConstraint(
            "(user_id IS NULL) <> (pending_member_id IS NULL)",
            name="ck_splits_single_participant",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
    )

    pending_member_id: Mapped[int | None] = mapped_column(
        ForeignKey("pending_members.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="splits",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Split id={self.id} "
            f"expense_id={self.expense_id} "
            f"user_id={self.user_id} "
            f"pending_member_id={self.pending_member_id} "
            f"amount={self.amount}>"
        )

"""
models/expense_item.py — Line items of an itemized expense.

Each item lists the participants involved in it. Involvement rows reference
a registered user or a pending member, never both; the reconciler moves rows
from the pending column to the user column when a pending member signs up.

The splits of an itemized expense are derived from its items when it is
written; afterwards the splits are the authoritative shares.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settleup.app.extensions import db


class ExpenseItem(db.Model):
    __tablename__ = "expense_items"

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="items",
    )

    participants: Mapped[list["ExpenseItemParticipant"]] = relationship(
        "ExpenseItemParticipant",
        back_populates="item",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<ExpenseItem id={self.id} expense_id={self.expense_id} name={self.name!r}>"


class ExpenseItemParticipant(db.Model):
    __tablename__ = "expense_item_participants"

    __table_args__ = (
        UniqueConstraint("item_id", "user_id", name="uq_item_participants_user"),
        UniqueConstraint("item_id", "pending_member_id", name="uq_item_participants_pending"),
        CheckConstraint(
            "(user_id IS NULL) <> (pending_member_id IS NULL)",
            name="ck_item_participants_single_ref",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    item_id: Mapped[int] = mapped_column(
        ForeignKey("expense_items.id", ondelete="CASCADE"),
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

    item: Mapped[ExpenseItem] = relationship(
        "ExpenseItem",
        back_populates="participants",
    )

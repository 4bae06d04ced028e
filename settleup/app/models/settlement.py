"""
models/settlement.py — Settlement table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(12, 2) — never Float.
  - CHECK(from_user_id <> to_user_id) backs the SELF_SETTLEMENT check in
    settlement_service.py.
  - `confirmed_by_recipient` is the whole state machine on disk:
      False → PENDING   (not balance-affecting)
      True  → CONFIRMED (terminal, balance-affecting)
    Rejected settlements are deleted, so there is no REJECTED row state.
  - uq_settlements_pending_direction is a partial UNIQUE index over
    (group_id, from_user_id, to_user_id) restricted to pending rows. Two
    concurrent creates for the same direction cannot both commit; the loser
    gets an IntegrityError which settlement_service turns into a
    ConflictError. Confirmed rows are outside the index, so any number of
    historical payments per direction is allowed.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settleup.app.extensions import db


class SettlementStatus(str, enum.Enum):
    PENDING   = "pending"
    CONFIRMED = "confirmed"


class Settlement(db.Model):
    __tablename__ = "settlements"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_settlements_amount_positive"),

        CheckConstraint(
            "from_user_id <> to_user_id",
            name="ck_settlements_no_self_settlement",
        ),

        # At most one PENDING settlement per direction per group.
        Index(
            "uq_settlements_pending_direction",
            "group_id",
            "from_user_id",
            "to_user_id",
            unique=True,
            postgresql_where=text("NOT confirmed_by_recipient"),
            sqlite_where=text("NOT confirmed_by_recipient"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # The payer. Their debt shrinks once the recipient confirms.
    from_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # The recipient. Only they may confirm or reject.
    to_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    note: Mapped[str | None] = mapped_column(String(255), nullable=True)

    confirmed_by_recipient: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="0",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="settlements",
    )

    payer: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[from_user_id],
    )

    recipient: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[to_user_id],
    )

    @property
    def status(self) -> SettlementStatus:
        if self.confirmed_by_recipient:
            return SettlementStatus.CONFIRMED
        return SettlementStatus.PENDING

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Settlement id={self.id} "
            f"group_id={self.group_id} "
            f"from={self.from_user_id} "
            f"to={self.to_user_id} "
            f"amount={self.amount} "
            f"status={self.status.value}>"
        )

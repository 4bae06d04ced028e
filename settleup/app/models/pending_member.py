"""
models/pending_member.py — PendingMember table definition.

An unregistered person tracked by name and phone inside exactly one group.
Pending members can pay for and share expenses but cannot log in, so they
never confirm settlements. When someone registers with the same phone the
reconciler rewrites every reference to the new user and deletes this row.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settleup.app.extensions import db


class PendingMember(db.Model):
    __tablename__ = "pending_members"

    __table_args__ = (
        UniqueConstraint("group_id", "phone", name="uq_pending_members_group_phone"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Normalized; looked up by the reconciler.
    phone: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="pending_members",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<PendingMember id={self.id} "
            f"group_id={self.group_id} "
            f"name={self.name!r}>"
        )

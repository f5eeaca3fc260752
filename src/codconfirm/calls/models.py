"""
SQLAlchemy models for call attempts.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from codconfirm.shared.database import Base


class CallResult(str, Enum):
    """Classified outcome of one completed call."""

    CONFIRMED = "confirmado"
    REJECTED = "rechazado"
    CALLBACK = "callback"
    NO_ANSWER = "no_contesta"
    VOICEMAIL = "buzon"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class CallAttempt(Base):
    """One outbound confirmation call placed for an order."""

    __tablename__ = "call_attempts"
    __table_args__ = (
        UniqueConstraint("order_id", "attempt_number", name="uq_call_attempts_order_attempt"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    order_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_call_id: Mapped[str | None] = mapped_column(
        String(128),
        unique=True,
        nullable=True,
        index=True,
    )
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 4), nullable=True)
    ended_reason: Mapped[str | None] = mapped_column(String(128), nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    recording_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[CallResult | None] = mapped_column(
        SQLEnum(
            CallResult,
            name="call_result",
            native_enum=False,
            length=32,
            values_callable=_enum_values,
        ),
        nullable=True,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<CallAttempt(id={self.id}, order_id={self.order_id}, "
            f"attempt={self.attempt_number}, result={self.result})>"
        )

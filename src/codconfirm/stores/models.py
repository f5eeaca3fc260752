"""
SQLAlchemy model for connected commerce stores.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from codconfirm.shared.database import Base

DEFAULT_COD_GATEWAY_NAME = "Cash on Delivery"


class Store(Base):
    """A connected shop whose COD orders are confirmed by phone."""

    __tablename__ = "stores"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    cod_gateway_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default=DEFAULT_COD_GATEWAY_NAME,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Store(id={self.id}, name={self.name}, url={self.url})>"

"""
Module: ledger_kernel.db.base
Responsibility: The declarative base every voucher, statement, allocation,
    posting and sequence table is mapped on.
Architecture position: Kernel > DB.  Imported by models/ and by the engine
    helpers that create and drop tables; imports nothing from the kernel.

Column conventions:
    - Row ids are uuid4 values in a portable String(36) column, so the same
      schema runs on SQLite and PostgreSQL.  Ids arriving as text from the
      API are normalized before they are bound.
    - Every Decimal column is Numeric(38, 9): voucher amounts, remaining
      balances and allocation amounts compare exactly, never through float.
    - Every datetime column is timezone-aware; history and allocation
      timestamps are UTC.
    - Voucher and statement rows carry a ``version`` column used as
      ``version_id_col`` (see models/), so a lost update surfaces as
      StaleDataError at flush.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character text form.  Accepts UUID or str on bind."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value if isinstance(value, UUID) else UUID(str(value)))

    def process_result_value(self, value, dialect):
        return UUID(value) if value is not None else None


class Base(DeclarativeBase):
    """Declarative base: uuid4 ``id`` plus the shared column type map."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TimestampedBase(Base):
    """
    Adds database-side ``created_at`` / ``updated_at``.

    ``updated_at`` is row bookkeeping rather than voucher data; the
    immutability listeners let it move on a posted voucher.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

from __future__ import annotations

import datetime as dt
from enum import StrEnum
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.sqltypes import BigInteger, Date, DateTime, Integer, String, Text


class Base(DeclarativeBase):
    pass


class ReservationStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"


class NotificationStatus(StrEnum):
    UNSET = "unset"
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationChannel(StrEnum):
    """Notification kinds; each value names its status column on Reservation."""

    CONFIRMATION_EMAIL = "confirmation_email_status"
    CONFIRMATION_SMS = "confirmation_sms_status"
    PAYMENT_REQUEST_EMAIL = "payment_request_email_status"
    EXPIRY_EMAIL = "expiry_email_status"
    EXPIRY_SMS = "expiry_sms_status"
    CANCELLATION_EMAIL = "cancellation_email_status"
    CANCELLATION_SMS = "cancellation_sms_status"


def _enum_column(enum_cls: type[StrEnum], default: StrEnum) -> Any:
    return mapped_column(
        Enum(
            enum_cls,
            values_callable=lambda cls: [e.value for e in cls],
            native_enum=False,
        ),
        nullable=False,
        default=default,
    )


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="chk_res_amount"),
        UniqueConstraint("payment_handle", name="uq_res_payment_handle"),
        Index("idx_res_date", "date"),
        Index("idx_res_status_deadline", "status", "hold_deadline"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    slots: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[ReservationStatus] = _enum_column(ReservationStatus, ReservationStatus.PENDING)
    hold_deadline: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    payment_handle: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payment_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    last_payment_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    confirmation_email_status: Mapped[NotificationStatus] = _enum_column(NotificationStatus, NotificationStatus.UNSET)
    confirmation_sms_status: Mapped[NotificationStatus] = _enum_column(NotificationStatus, NotificationStatus.UNSET)
    payment_request_email_status: Mapped[NotificationStatus] = _enum_column(
        NotificationStatus, NotificationStatus.UNSET
    )
    expiry_email_status: Mapped[NotificationStatus] = _enum_column(NotificationStatus, NotificationStatus.UNSET)
    expiry_sms_status: Mapped[NotificationStatus] = _enum_column(NotificationStatus, NotificationStatus.UNSET)
    cancellation_email_status: Mapped[NotificationStatus] = _enum_column(NotificationStatus, NotificationStatus.UNSET)
    cancellation_sms_status: Mapped[NotificationStatus] = _enum_column(NotificationStatus, NotificationStatus.UNSET)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class ReservationSlot(Base):
    """One claimed (date, slot) pair. The unique constraint serializes competing holds."""

    __tablename__ = "reservation_slots"
    __table_args__ = (
        UniqueConstraint("date", "slot", name="uq_reservation_slots_date_slot"),
        Index("idx_reservation_slots_reservation", "reservation_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    reservation_id: Mapped[int] = mapped_column(ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    slot: Mapped[str] = mapped_column(String(32), nullable=False)


class Setting(Base):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)

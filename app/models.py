from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class TransactionType(str, Enum):
    IN = 'in'
    OUT = 'out'


class PrescriptionStatus(str, Enum):
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class PaymentStatus(str, Enum):
    PAID = 'paid'
    PENDING = 'pending'
    FAILED = 'failed'


def _uuid_pk():
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


def _created_at():
    return mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


def _updated_at():
    return mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class AuthUser(Base):
    __tablename__ = 'auth_users'

    id: Mapped[uuid.UUID] = _uuid_pk()
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='1')
    created_at: Mapped[datetime] = _created_at()


class WebSession(Base):
    __tablename__ = 'web_sessions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    auth_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('auth_users.id', ondelete='CASCADE'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = _created_at()


class Profile(Base):
    __tablename__ = 'profiles'

    # Same id as the auth account; role is free text and validated when read.
    id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('auth_users.id', ondelete='CASCADE'), primary_key=True)
    full_name: Mapped[str | None] = mapped_column(Text)
    role: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Medicine(Base):
    __tablename__ = 'medicines'
    __table_args__ = (
        CheckConstraint('stock_quantity >= 0', name='ck_medicines_stock_non_negative'),
        CheckConstraint('reorder_level >= 0', name='ck_medicines_reorder_non_negative'),
        CheckConstraint('unit_price >= 0', name='ck_medicines_price_non_negative'),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(Text, nullable=False)
    generic_name: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(Text)
    manufacturer: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    reorder_level: Mapped[int] = mapped_column(Integer, nullable=False, default=10, server_default='10')
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'))
    expiry_date: Mapped[date | None] = mapped_column(Date)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class InventoryTransaction(Base):
    __tablename__ = 'inventory_transactions'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_inventory_transactions_quantity_positive'),
        CheckConstraint("transaction_type IN ('in', 'out')", name='ck_inventory_transactions_type'),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    medicine_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('medicines.id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(8), nullable=False)
    reference_number: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey('auth_users.id'))
    created_at: Mapped[datetime] = _created_at()


class Customer(Base):
    __tablename__ = 'customers'

    id: Mapped[uuid.UUID] = _uuid_pk()
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Supplier(Base):
    __tablename__ = 'suppliers'

    id: Mapped[uuid.UUID] = _uuid_pk()
    company_name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_person: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    tax_number: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Prescription(Base):
    __tablename__ = 'prescriptions'

    id: Mapped[uuid.UUID] = _uuid_pk()
    customer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey('customers.id', ondelete='SET NULL'))
    doctor_name: Mapped[str] = mapped_column(Text, nullable=False)
    prescription_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PrescriptionStatus.ACTIVE.value, server_default='active'
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey('auth_users.id'))
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class PrescriptionItem(Base):
    __tablename__ = 'prescription_items'
    __table_args__ = (CheckConstraint('quantity > 0', name='ck_prescription_items_quantity_positive'),)

    id: Mapped[uuid.UUID] = _uuid_pk()
    prescription_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey('prescriptions.id', ondelete='CASCADE'), nullable=False
    )
    medicine_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('medicines.id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'))
    dosage: Mapped[str | None] = mapped_column(Text)
    instructions: Mapped[str | None] = mapped_column(Text)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = _created_at()


class Sale(Base):
    __tablename__ = 'sales'

    id: Mapped[uuid.UUID] = _uuid_pk()
    customer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey('customers.id', ondelete='SET NULL'))
    prescription_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey('prescriptions.id'))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'))
    payment_method: Mapped[str | None] = mapped_column(Text)
    payment_status: Mapped[str | None] = mapped_column(String(16))
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey('auth_users.id'))
    created_at: Mapped[datetime] = _created_at()


class SaleItem(Base):
    __tablename__ = 'sale_items'

    id: Mapped[uuid.UUID] = _uuid_pk()
    sale_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('sales.id', ondelete='CASCADE'), nullable=False)
    medicine_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('medicines.id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = _created_at()


class Invoice(Base):
    __tablename__ = 'invoices'

    id: Mapped[uuid.UUID] = _uuid_pk()
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    customer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey('customers.id', ondelete='SET NULL'))
    sale_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey('sales.id'))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'))
    status: Mapped[str | None] = mapped_column(String(16))
    due_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey('auth_users.id'))
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempted_email: Mapped[str] = mapped_column(Text, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    auth_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey('auth_users.id', ondelete='SET NULL'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = _created_at()


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey('auth_users.id', ondelete='SET NULL'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = _created_at()

from __future__ import annotations

import re
import uuid
from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.auth import Role
from app.models import PrescriptionStatus, TransactionType
from app.security.passwords import MIN_PASSWORD_LENGTH

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

FormT = TypeVar('FormT', bound='FormModel')


class FormModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra='ignore')


def _check_email(value: str | None) -> str | None:
    if value is not None and not EMAIL_RE.match(value):
        raise ValueError('Invalid email address')
    return value


class LoginForm(FormModel):
    email: str
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)

    check_email = field_validator('email')(_check_email)


class SignupForm(FormModel):
    full_name: str
    email: str
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    role: Role = Role.CASHIER

    check_email = field_validator('email')(_check_email)


class MedicineForm(FormModel):
    name: str
    generic_name: str | None = None
    category: str | None = None
    manufacturer: str | None = None
    description: str | None = None
    stock_quantity: int = Field(default=0, ge=0)
    reorder_level: int = Field(default=10, ge=0)
    unit_price: Decimal = Field(default=Decimal('0'), ge=0, decimal_places=2)
    expiry_date: date | None = None


class CustomerForm(FormModel):
    full_name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None

    check_email = field_validator('email')(_check_email)


class SupplierForm(FormModel):
    company_name: str
    contact_person: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    tax_number: str | None = None

    check_email = field_validator('email')(_check_email)


class InventoryTransactionForm(FormModel):
    medicine_id: uuid.UUID
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0, decimal_places=2)
    transaction_type: TransactionType
    reference_number: str | None = None
    notes: str | None = None


class PrescriptionForm(FormModel):
    customer_id: uuid.UUID | None = None
    doctor_name: str
    prescription_date: date
    status: PrescriptionStatus = PrescriptionStatus.ACTIVE
    notes: str | None = None


class PrescriptionItemForm(FormModel):
    medicine_id: uuid.UUID
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)
    dosage: str | None = None
    instructions: str | None = None


_FIELD_LABELS = {
    'full_name': 'Name',
    'company_name': 'Company name',
    'doctor_name': 'Doctor name',
    'medicine_id': 'Medicine',
    'prescription_date': 'Prescription date',
    'unit_price': 'Unit price',
    'stock_quantity': 'Stock quantity',
    'reorder_level': 'Reorder level',
    'transaction_type': 'Transaction type',
}


def _describe(error: dict) -> str:
    field = str(error['loc'][0]) if error.get('loc') else ''
    label = _FIELD_LABELS.get(field, field.replace('_', ' ').capitalize())
    if error.get('type') == 'missing':
        return f'{label} is required'
    message = str(error.get('msg', 'is invalid')).removeprefix('Value error, ')
    return f'{label}: {message}' if label else message


def parse_form(schema: type[FormT], data: Mapping[str, Any]) -> FormT:
    """Validate submitted form data, raising ValueError with a readable first error."""
    try:
        # Blank inputs count as "not submitted" so optional fields keep their defaults.
        values = {key: value for key, value in data.items() if not (isinstance(value, str) and not value.strip())}
        return schema.model_validate(values)
    except ValidationError as exc:
        raise ValueError(_describe(exc.errors()[0])) from exc

"""
schema.py - Canonical record schema for loans and payment records.

One snake_case schema is used on every boundary. Records are plain mappings
of JSON-friendly values: amounts as decimal strings, dates as ISO strings,
enums as their values. Loading is strict: unknown keys (including camelCase
spellings such as 'loanAmount') and missing required keys raise
SchemaViolation, so a field cannot silently go missing between layers.
"""

from __future__ import annotations
from dataclasses import fields, MISSING
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Tuple

from .core import (
    Loan, LoanStatus, PaymentKind, PaymentMethod, PaymentRecord,
    InvalidField, SchemaViolation, MONEY_FIELDS,
    to_decimal, to_money,
)


LOAN_FIELDS: Tuple[str, ...] = tuple(f.name for f in fields(Loan))
PAYMENT_FIELDS: Tuple[str, ...] = tuple(f.name for f in fields(PaymentRecord))

LOAN_REQUIRED_FIELDS = frozenset(
    f.name for f in fields(Loan) if f.default is MISSING and f.default_factory is MISSING
)
PAYMENT_REQUIRED_FIELDS = frozenset(
    f.name for f in fields(PaymentRecord) if f.default is MISSING and f.default_factory is MISSING
)

_LOAN_DATE_FIELDS = ('loan_issued_date', 'due_date')
_LOAN_INT_FIELDS = ('loan_term', 'version')


def _check_keys(record: Mapping[str, Any], allowed: Tuple[str, ...], required: frozenset, kind: str) -> None:
    if not isinstance(record, Mapping):
        raise SchemaViolation(f"{kind} record must be a mapping, got {type(record).__name__}")
    unknown = sorted(set(record) - set(allowed))
    if unknown:
        raise SchemaViolation(f"Unknown {kind} fields: {', '.join(map(str, unknown))}")
    missing = sorted(required - set(record))
    if missing:
        raise SchemaViolation(f"Missing {kind} fields: {', '.join(missing)}")


def _parse_date(value: Any, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise InvalidField(f"{field_name} is not an ISO date: {value!r}")


def _parse_datetime(value: Any, field_name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    raise InvalidField(f"{field_name} is not an ISO timestamp: {value!r}")


def _parse_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise InvalidField(f"{field_name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return int(value)
    raise InvalidField(f"{field_name} must be an integer, got {value!r}")


def _parse_enum(enum_type, value: Any, field_name: str):
    try:
        return enum_type(value)
    except ValueError:
        raise InvalidField(f"{field_name} has unknown value {value!r}") from None


def _dump(value: Any) -> Any:
    if isinstance(value, (LoanStatus, PaymentMethod, PaymentKind)):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


# ============================================================================
# LOANS
# ============================================================================

def load_loan(record: Mapping[str, Any]) -> Loan:
    """
    Build a Loan from a canonical record.

    Raises:
        SchemaViolation: on unknown or missing keys.
        InvalidAmount: on a malformed amount.
        InvalidField: on a malformed date, integer or enum value.
    """
    _check_keys(record, LOAN_FIELDS, LOAN_REQUIRED_FIELDS, 'loan')
    values: Dict[str, Any] = dict(record)
    for name in MONEY_FIELDS:
        if name in values:
            values[name] = to_money(values[name], name)
    values['interest_rate'] = to_decimal(values['interest_rate'], 'interest_rate')
    for name in _LOAN_DATE_FIELDS:
        values[name] = _parse_date(values[name], name)
    for name in _LOAN_INT_FIELDS:
        if name in values:
            values[name] = _parse_int(values[name], name)
    if 'status' in values:
        values['status'] = _parse_enum(LoanStatus, values['status'], 'status')
    return Loan(**values)


def to_record(loan: Loan) -> Dict[str, Any]:
    """Dump a Loan to a canonical record with every field present."""
    return {name: _dump(getattr(loan, name)) for name in LOAN_FIELDS}


# ============================================================================
# PAYMENT RECORDS
# ============================================================================

def load_payment(record: Mapping[str, Any]) -> PaymentRecord:
    """Build a PaymentRecord from a canonical record. Same errors as load_loan."""
    _check_keys(record, PAYMENT_FIELDS, PAYMENT_REQUIRED_FIELDS, 'payment')
    values: Dict[str, Any] = dict(record)
    values['amount'] = to_money(values['amount'], 'amount')
    if 'overpayment' in values:
        values['overpayment'] = to_money(values['overpayment'], 'overpayment')
    values['method'] = _parse_enum(PaymentMethod, values['method'], 'method')
    if 'kind' in values:
        values['kind'] = _parse_enum(PaymentKind, values['kind'], 'kind')
    values['timestamp'] = _parse_datetime(values['timestamp'], 'timestamp')
    return PaymentRecord(**values)


def payment_to_record(payment: PaymentRecord) -> Dict[str, Any]:
    """Dump a PaymentRecord to a canonical record with every field present."""
    return {name: _dump(getattr(payment, name)) for name in PAYMENT_FIELDS}

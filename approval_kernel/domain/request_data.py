"""
Request payloads (``approval_kernel.domain.request_data``).

Responsibility
--------------
One frozen payload class per ``ApprovalType``.  Payloads are validated at
construction from their wire mapping (camelCase keys) and round-trip back
to a JSON-safe dict for storage.  Beyond required-field validation the
engine treats payloads opaquely; unknown keys survive in ``extras``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects, zero I/O.

Failure modes
-------------
* ``RequestDataValidationError`` listing every missing/invalid field.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, ClassVar, Mapping

from approval_kernel.domain.approval import ApprovalType
from approval_kernel.exceptions import RequestDataValidationError


# =========================================================================
# Field parsers -- raise ValueError with a short reason
# =========================================================================


def _amount(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("must be a number")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError("must be a number") from None
    if not amount.is_finite():
        raise ValueError("must be a finite number")
    if amount < 0:
        raise ValueError("must not be negative")
    return amount


def _signed_amount(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("must be a number")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError("must be a number") from None
    if not amount.is_finite():
        raise ValueError("must be a finite number")
    return amount


def _percentage(value: Any) -> Decimal:
    pct = _amount(value)
    if pct > 100:
        raise ValueError("must be between 0 and 100")
    return pct


def _text(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("must be a non-blank string")
    return value.strip()


def _scalar(value: Any) -> Any:
    if isinstance(value, str):
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return value
    raise ValueError("must be a string or number")


@dataclass(frozen=True)
class _Field:
    attr: str
    wire: str
    parse: Callable[[Any], Any]


# =========================================================================
# Base payload
# =========================================================================


@dataclass(frozen=True, kw_only=True)
class RequestData:
    """Base for all approval payloads."""

    approval_type: ClassVar[ApprovalType]
    fields_spec: ClassVar[tuple[_Field, ...]] = ()

    extras: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RequestData:
        """Validate a wire mapping and build the typed payload."""
        errors: dict[str, str] = {}
        values: dict[str, Any] = {}
        for spec in cls.fields_spec:
            raw = data.get(spec.wire)
            if raw is None:
                errors[spec.wire] = "is required"
                continue
            try:
                values[spec.attr] = spec.parse(raw)
            except ValueError as exc:
                errors[spec.wire] = str(exc)

        known = {spec.wire for spec in cls.fields_spec}
        extras = {k: v for k, v in data.items() if k not in known}
        for key, value in extras.items():
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                errors[key] = "must be JSON-serializable"

        if not errors:
            errors.update(cls._cross_field_errors(values))
        if errors:
            raise RequestDataValidationError(cls.approval_type.value, errors)
        return cls(extras=extras, **values)

    @classmethod
    def _cross_field_errors(cls, values: dict[str, Any]) -> dict[str, str]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe wire form (Decimals as strings)."""
        out: dict[str, Any] = dict(self.extras)
        for spec in self.fields_spec:
            value = getattr(self, spec.attr)
            out[spec.wire] = str(value) if isinstance(value, Decimal) else value
        return out

    @property
    def financial_amount(self) -> Decimal | None:
        """Amount compared against dual-control thresholds."""
        return None


# =========================================================================
# Variants
# =========================================================================


@dataclass(frozen=True, kw_only=True)
class DiscountApprovalData(RequestData):
    approval_type: ClassVar[ApprovalType] = ApprovalType.DISCOUNT_APPROVAL
    fields_spec: ClassVar[tuple[_Field, ...]] = (
        _Field("original_price", "originalPrice", _amount),
        _Field("discount_percentage", "discountPercentage", _percentage),
        _Field("discount_amount", "discountAmount", _amount),
        _Field("sale_price", "salePrice", _amount),
    )

    original_price: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    sale_price: Decimal

    @classmethod
    def _cross_field_errors(cls, values: dict[str, Any]) -> dict[str, str]:
        if values["discount_amount"] > values["original_price"]:
            return {"discountAmount": "must not exceed originalPrice"}
        return {}

    @property
    def financial_amount(self) -> Decimal:
        return self.discount_amount


@dataclass(frozen=True, kw_only=True)
class SaleCancellationData(RequestData):
    approval_type: ClassVar[ApprovalType] = ApprovalType.SALE_CANCELLATION
    fields_spec: ClassVar[tuple[_Field, ...]] = (
        _Field("sale_value", "saleValue", _amount),
        _Field("reason", "reason", _text),
    )

    sale_value: Decimal
    reason: str

    @property
    def financial_amount(self) -> Decimal:
        return self.sale_value


@dataclass(frozen=True, kw_only=True)
class PriceOverrideData(RequestData):
    approval_type: ClassVar[ApprovalType] = ApprovalType.PRICE_OVERRIDE
    fields_spec: ClassVar[tuple[_Field, ...]] = (
        _Field("base_price", "basePrice", _amount),
        _Field("current_price", "currentPrice", _amount),
        _Field("proposed_price", "proposedPrice", _amount),
        _Field("deviation_percentage", "deviationPercentage", _signed_amount),
    )

    base_price: Decimal
    current_price: Decimal
    proposed_price: Decimal
    deviation_percentage: Decimal

    @property
    def financial_amount(self) -> Decimal:
        return abs(self.proposed_price - self.current_price)


@dataclass(frozen=True, kw_only=True)
class RefundApprovalData(RequestData):
    approval_type: ClassVar[ApprovalType] = ApprovalType.REFUND_APPROVAL
    fields_spec: ClassVar[tuple[_Field, ...]] = (
        _Field("refund_amount", "refundAmount", _amount),
        _Field("original_payment_amount", "originalPaymentAmount", _amount),
        _Field("reason", "reason", _text),
    )

    refund_amount: Decimal
    original_payment_amount: Decimal
    reason: str

    @classmethod
    def _cross_field_errors(cls, values: dict[str, Any]) -> dict[str, str]:
        if values["refund_amount"] > values["original_payment_amount"]:
            return {"refundAmount": "must not exceed originalPaymentAmount"}
        return {}

    @property
    def financial_amount(self) -> Decimal:
        return self.refund_amount


@dataclass(frozen=True, kw_only=True)
class InstallmentModificationData(RequestData):
    approval_type: ClassVar[ApprovalType] = ApprovalType.INSTALLMENT_MODIFICATION
    fields_spec: ClassVar[tuple[_Field, ...]] = (
        _Field("modification_type", "modificationType", _text),
        _Field("original_value", "originalValue", _scalar),
        _Field("proposed_value", "proposedValue", _scalar),
    )

    modification_type: str
    original_value: Any
    proposed_value: Any

    @property
    def financial_amount(self) -> Decimal | None:
        # Values may be dates or counts; only numeric changes are amounts.
        try:
            return abs(_signed_amount(self.proposed_value) - _signed_amount(self.original_value))
        except ValueError:
            return None


@dataclass(frozen=True, kw_only=True)
class CommissionPayoutData(RequestData):
    approval_type: ClassVar[ApprovalType] = ApprovalType.COMMISSION_PAYOUT
    fields_spec: ClassVar[tuple[_Field, ...]] = (
        _Field("amount", "amount", _amount),
        _Field("payee", "payee", _text),
    )

    amount: Decimal
    payee: str

    @property
    def financial_amount(self) -> Decimal:
        return self.amount


@dataclass(frozen=True, kw_only=True)
class InvoiceApprovalData(RequestData):
    approval_type: ClassVar[ApprovalType] = ApprovalType.INVOICE_APPROVAL
    fields_spec: ClassVar[tuple[_Field, ...]] = (
        _Field("invoice_amount", "invoiceAmount", _amount),
        _Field("invoice_type", "invoiceType", _text),
    )

    invoice_amount: Decimal
    invoice_type: str

    @property
    def financial_amount(self) -> Decimal:
        return self.invoice_amount


REQUEST_DATA_TYPES: dict[ApprovalType, type[RequestData]] = {
    cls.approval_type: cls
    for cls in (
        DiscountApprovalData,
        SaleCancellationData,
        PriceOverrideData,
        RefundApprovalData,
        InstallmentModificationData,
        CommissionPayoutData,
        InvoiceApprovalData,
    )
}


def parse_request_data(
    approval_type: ApprovalType,
    data: RequestData | Mapping[str, Any],
) -> RequestData:
    """Return the typed payload for ``approval_type``.

    Accepts either an already-built payload (checked for the right variant)
    or a wire mapping (validated).
    """
    payload_cls = REQUEST_DATA_TYPES[approval_type]
    if isinstance(data, RequestData):
        if not isinstance(data, payload_cls):
            raise RequestDataValidationError(
                approval_type.value,
                {"requestData": f"expected {payload_cls.__name__}, got {type(data).__name__}"},
            )
        return data
    if not isinstance(data, Mapping):
        raise RequestDataValidationError(
            approval_type.value, {"requestData": "must be an object"},
        )
    return payload_cls.from_mapping(data)

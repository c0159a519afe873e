"""Typed outcomes returned by the checkout services.

Expected failures (a coupon that no longer applies, a forged signature,
a carrier that is down) come back as values, never as exceptions, so
every caller has to decide what to do with each kind.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class CouponRejection(str, Enum):
    INACTIVE = "inactive"
    OUT_OF_WINDOW = "out_of_window"
    EXHAUSTED = "exhausted"
    MINIMUM_NOT_MET = "minimum_not_met"
    RACE_LOST = "race_lost"
    NOT_FOUND = "not_found"


COUPON_MESSAGES = {
    CouponRejection.INACTIVE: "This coupon is no longer active",
    CouponRejection.OUT_OF_WINDOW: "This coupon has expired or is not valid yet",
    CouponRejection.EXHAUSTED: "This coupon has reached its usage limit",
    CouponRejection.MINIMUM_NOT_MET: "Order amount is below the coupon minimum",
    CouponRejection.RACE_LOST: "This coupon was used up while you were checking out",
    CouponRejection.NOT_FOUND: "Invalid coupon code",
}


@dataclass(frozen=True)
class CouponCheck:
    """Result of validating or redeeming a coupon."""

    ok: bool
    rejection: CouponRejection | None = None

    @classmethod
    def valid(cls) -> "CouponCheck":
        return cls(ok=True)

    @classmethod
    def rejected(cls, reason: CouponRejection) -> "CouponCheck":
        return cls(ok=False, rejection=reason)

    @property
    def message(self) -> str | None:
        return COUPON_MESSAGES.get(self.rejection) if self.rejection else None


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    SIGNATURE_MISMATCH = "signature_mismatch"
    UNKNOWN_ORDER = "unknown_order"


@dataclass(frozen=True)
class VerificationResult:
    status: VerificationStatus
    order_id: int | None = None
    already_processed: bool = False

    @property
    def ok(self) -> bool:
        return self.status is VerificationStatus.VERIFIED


class FailureKind(str, Enum):
    AUTHENTICATION_FAILURE = "authentication_failure"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass(frozen=True)
class CarrierResult:
    """Uniform result of an outbound carrier or gateway call."""

    ok: bool
    data: Any = None
    kind: FailureKind | None = None
    message: str | None = None
    errors: Any = None
    status_code: int | None = None

    @classmethod
    def success(cls, data, status_code=None) -> "CarrierResult":
        return cls(ok=True, data=data, status_code=status_code)

    @classmethod
    def failure(cls, kind: FailureKind, message: str, errors=None, status_code=None) -> "CarrierResult":
        return cls(ok=False, kind=kind, message=message, errors=errors, status_code=status_code)

    def as_api(self) -> dict:
        if self.ok:
            return {"success": True, "data": self.data}
        return {
            "success": False,
            "kind": self.kind.value if self.kind else None,
            "message": self.message,
            "errors": self.errors,
        }


class TransitionError(str, Enum):
    UNKNOWN_ORDER = "unknown_order"
    INVALID_TRANSITION = "invalid_transition"
    NO_SHIPMENT = "no_shipment"


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of driving an order through the state machine."""

    ok: bool
    order: Any = None
    error: TransitionError | None = None
    message: str | None = None
    changed: bool = True

    @classmethod
    def success(cls, order, changed=True) -> "TransitionResult":
        return cls(ok=True, order=order, changed=changed)

    @classmethod
    def failure(cls, error: TransitionError, message: str, order=None) -> "TransitionResult":
        return cls(ok=False, order=order, error=error, message=message, changed=False)


@dataclass(frozen=True)
class CheckoutResult:
    """Outcome of ``create_order``."""

    ok: bool
    order: Any = None
    coupon_rejection: CouponRejection | None = None
    message: str | None = None
    details: dict = field(default_factory=dict)

    @classmethod
    def success(cls, order) -> "CheckoutResult":
        return cls(ok=True, order=order)

    @classmethod
    def coupon_rejected(cls, reason: CouponRejection) -> "CheckoutResult":
        return cls(ok=False, coupon_rejection=reason, message=COUPON_MESSAGES[reason])

    @classmethod
    def rejected(cls, message: str, **details) -> "CheckoutResult":
        return cls(ok=False, message=message, details=details)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    tax: Decimal
    cod_fee: Decimal
    total: Decimal

    def as_api(self) -> dict:
        return {
            "subtotal": float(self.subtotal),
            "discount_amount": float(self.discount),
            "shipping": float(self.shipping),
            "tax": float(self.tax),
            "cod_fee": float(self.cod_fee),
            "total": float(self.total),
        }

"""
errors.py
SubTracker exceptions.

Every error carries a machine-readable code and a context dict so it can be
logged as structured data or rendered by the UI.
"""

from __future__ import annotations

from typing import Any


class SubTrackerError(Exception):
    """
    Base error with context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        context: Additional data about the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or "SUBTRACKER_ERROR"
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class LunarOutOfRangeError(SubTrackerError, ValueError):
    """Date has no lunar representation (supported years are 1900-2100)."""

    def __init__(self, message: str, year: int | None = None):
        super().__init__(message, "LUNAR_OUT_OF_RANGE", {"year": year} if year is not None else None)


class LunarSolarRoundTripError(SubTrackerError):
    """A lunar date has no solar date that converts back to it."""

    def __init__(self, message: str, lunar: Any = None):
        context = {"lunar": str(lunar)} if lunar is not None else None
        super().__init__(message, "LUNAR_ROUND_TRIP", context)


class InvalidTimezoneError(SubTrackerError, ValueError):
    def __init__(self, name: str):
        super().__init__(f"Unknown timezone: {name!r}", "INVALID_TIMEZONE", {"timezone": name})


class MalformedSubscriptionError(SubTrackerError):
    """Subscription is missing the fields an operation needs (e.g. its period)."""

    def __init__(self, message: str, subscription_id: str | None = None):
        context = {"subscription_id": subscription_id} if subscription_id else None
        super().__init__(message, "MALFORMED_SUBSCRIPTION", context)


class SubscriptionNotFoundError(SubTrackerError):
    def __init__(self, subscription_id: str):
        super().__init__(
            f"Subscription {subscription_id} not found",
            "SUBSCRIPTION_NOT_FOUND",
            {"subscription_id": subscription_id},
        )


class PaymentNotFoundError(SubTrackerError):
    def __init__(self, payment_id: str, subscription_id: str | None = None):
        context = {"payment_id": payment_id}
        if subscription_id:
            context["subscription_id"] = subscription_id
        super().__init__(f"Payment record {payment_id} not found", "PAYMENT_NOT_FOUND", context)


class ValidationError(SubTrackerError, ValueError):
    """Input validation failed; ``messages`` lists every problem found."""

    def __init__(self, messages: list[str]):
        self.messages = list(messages)
        super().__init__("; ".join(self.messages) or "Invalid input", "VALIDATION_ERROR",
                         {"messages": self.messages})

from __future__ import annotations

from typing import Optional


class ApiError(Exception):
    """Transport failure or a non-2xx answer from the shop server."""

    def __init__(self, status: Optional[int], message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"{self.status}: {self.message}"


class AuthRequiredError(Exception):
    pass


class ChatBusyError(Exception):
    pass


class PaymentError(Exception):
    """Carries the payment processor's message as-is."""


class OrderSyncError(Exception):
    def __init__(self, order_id: int, payment_intent_id: str, message: str) -> None:
        super().__init__(message)
        self.order_id = order_id
        self.payment_intent_id = payment_intent_id

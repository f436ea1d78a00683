"""
Payment and Escrow Exceptions

Hierarchy of errors raised by the pricing, purchase and escrow services.
Views turn them into `{"error": ...}` responses with the carried status code.

Author: Academy Development Team
Version: 1.0.0
"""

from typing import Any, Dict, Optional

from rest_framework.response import Response


class PaymentError(Exception):
    """
    Base exception for payment processing.

    Attributes:
        message (str): Human-readable error message returned to the client
        status_code (int): HTTP status code for the response
        error_code (Optional[str]): Machine-readable error identifier
        details (Dict[str, Any]): Extra fields merged into the response body
    """

    default_status_code = 400

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code or self.default_status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, **self.details}
        if self.error_code:
            body["error_code"] = self.error_code
        return body


class PaymentConfigurationError(PaymentError):
    """Missing operator key, RPC endpoint or contract configuration."""

    default_status_code = 500


class BlockchainError(PaymentError):
    """A chain call or transaction failed."""

    default_status_code = 502


class EscrowNotFoundError(PaymentError):
    default_status_code = 404


class EscrowRegistrationError(PaymentError):
    """Payment arrived but the escrow could not be registered on-chain."""

    default_status_code = 500


def error_response(exc: PaymentError) -> Response:
    return Response(exc.to_dict(), status=exc.status_code)

"""
Certification Test Exceptions

Author: Academy Development Team
Version: 1.0.0
"""

from typing import Any, Dict, Optional

from rest_framework.response import Response


class CertificationError(Exception):
    """
    Base exception for certification tests and certificates.

    Attributes:
        message (str): Human-readable error message
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


class CertificationNotFound(CertificationError):
    default_status_code = 404


class InsufficientQuestions(CertificationError):
    pass


class AttemptLimitReached(CertificationError):
    default_status_code = 403


class InvalidTestSession(CertificationError):
    default_status_code = 403


class TimeLimitExceeded(CertificationError):
    pass


def error_response(exc: CertificationError) -> Response:
    return Response(exc.to_dict(), status=exc.status_code)

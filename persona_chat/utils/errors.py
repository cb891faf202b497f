"""HTTP error taxonomy.

Every error is an ``HTTPException`` so FastAPI renders it as-is; the
``detail`` carries a stable ``error`` code the client branches on.
"""

from fastapi import HTTPException, status


class Unauthenticated(HTTPException):
    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "UNAUTHENTICATED", "message": message},
            headers={"WWW-Authenticate": "Bearer"},
        )


class PaymentRequired(HTTPException):
    def __init__(self, message: str = "No tokens remaining. Please purchase a plan to continue chatting."):
        super().__init__(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"error": "PAYMENT_REQUIRED", "message": message},
        )


class ValidationFailed(HTTPException):
    def __init__(self, message: str = "Invalid request"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "VALIDATION_FAILED", "message": message},
        )


class NotFound(HTTPException):
    def __init__(self, message: str = "Not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "NOT_FOUND", "message": message},
        )


class UpstreamUnavailable(HTTPException):
    def __init__(self, message: str = "The AI service is unavailable. Please try again."):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "UPSTREAM_UNAVAILABLE", "message": message},
        )


class InternalError(HTTPException):
    def __init__(self, message: str = "Internal server error"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "INTERNAL", "message": message},
        )


class PaymentProviderError(HTTPException):
    def __init__(self, message: str = "The payment provider rejected the request"):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "PAYMENT_PROVIDER_ERROR", "message": message},
        )

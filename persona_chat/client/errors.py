import httpx


class NotSignedIn(Exception):
    """An authenticated call was attempted without an access token."""


class ApiError(Exception):
    def __init__(self, status: int, message: str, code: str | None = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.code = code

    @property
    def payment_required(self) -> bool:
        return self.status == 402

    @property
    def unauthenticated(self) -> bool:
        return self.status == 401


class PaymentRequiredError(ApiError):
    """Balance exhausted; show an upgrade prompt instead of a generic error."""


def error_from_response(r: httpx.Response) -> ApiError:
    message, code = r.reason_phrase or f"http {r.status_code}", None
    try:
        data = r.json()
    except ValueError:
        data = None
    detail = data.get("detail") if isinstance(data, dict) else None
    if isinstance(detail, dict):
        message = detail.get("message") or message
        code = detail.get("error")
    elif isinstance(detail, str):
        message = detail
    cls = PaymentRequiredError if r.status_code == 402 else ApiError
    return cls(r.status_code, message, code)

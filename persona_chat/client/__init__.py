"""
Async Python client for the chat API.

    session = SessionClient("https://api.example.com")
    await session.sign_in(email, password)
    api = ChatApi(session)
    cache = ChatCache(api)
    thread = ThreadController(api, cache, influencer_id, session.user_id)
"""

from .errors import ApiError, NotSignedIn, PaymentRequiredError
from .session import SessionClient
from .api import ChatApi
from .cache import ChatCache
from .thread import PendingSave, ThreadController

__all__ = [
    "NotSignedIn",
    "SessionClient",
    "ApiError",
    "ChatApi",
    "PaymentRequiredError",
    "ChatCache",
    "PendingSave",
    "ThreadController",
]

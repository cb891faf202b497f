import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from persona_chat.core.config import settings
from persona_chat.api import auth, billing, chat, health_router, influencer, user, webhooks
from persona_chat.utils.redis_pool import close_redis

log = logging.getLogger("persona_chat")
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_redis()


app = FastAPI(title="persona-chat", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"detail": {"error": "VALIDATION_FAILED", "message": f"{field}: {message}" if field else message}},
    )


app.include_router(auth.router)
app.include_router(user.router)
app.include_router(influencer.router)
app.include_router(chat.router)
app.include_router(billing.router)
app.include_router(webhooks.router)
app.include_router(health_router.router)

import os
import logging

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from proofly.errors import (
    AuthError,
    InvalidTransitionError,
    NotFoundError,
    NotificationDispatchError,
    PersistenceError,
    PhotoLimitError,
    ProoflyError,
    ValidationError,
)
from proofly.routes import auth, jobs, maintenance, remote_signing, usage

LOGGER = structlog.get_logger(__name__)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging() -> None:
    logging.basicConfig(level=LOG_LEVEL, format='{"level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}')


configure_logging()

app = FastAPI(title="Proofly API", version="1.0")

WEB_APP_DOMAIN = os.getenv("WEB_APP_DOMAIN")  # optional

# Local dev origins
LOCAL_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:8081",
    "http://127.0.0.1:8081",
    "http://localhost:19006",
]

EXACT_ORIGINS = set(LOCAL_ORIGINS)
if WEB_APP_DOMAIN:
    EXACT_ORIGINS.add(f"https://{WEB_APP_DOMAIN}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(EXACT_ORIGINS),       # must be specific when using credentials
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
)

# Routers
app.include_router(auth.router, prefix="/api", tags=["auth"])
app.include_router(jobs.router, prefix="/api", tags=["jobs"])
app.include_router(remote_signing.router, prefix="/api", tags=["remote-signing"])
app.include_router(usage.router, prefix="/api", tags=["usage"])
app.include_router(maintenance.router, prefix="/api", tags=["maintenance"])
app.include_router(remote_signing.review_router, tags=["review"])


# --- Error mapping: service errors -> HTTP ---
ERROR_STATUS = {
    ValidationError: 422,
    AuthError: 401,
    NotFoundError: 404,
    PhotoLimitError: 402,
    InvalidTransitionError: 409,
    PersistenceError: 500,
    NotificationDispatchError: 502,
}


@app.exception_handler(ProoflyError)
async def proofly_error_handler(request: Request, exc: ProoflyError):
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ValidationError):
        body["fields"] = exc.fields
    if isinstance(exc, NotificationDispatchError):
        # the request exists (pending) even though the client was not reached
        body["success"] = False
        body["requestId"] = exc.request_id
        body["reviewUrl"] = exc.review_url
    if status >= 500:
        LOGGER.error("request_failed", path=request.url.path, error=str(exc), kind=type(exc).__name__)
    return JSONResponse(body, status_code=status)


# Health & root
@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/")
def root():
    return {"ok": True, "docs": "/docs"}

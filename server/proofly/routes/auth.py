# proofly/routes/auth.py
import os, time
from typing import Optional
from fastapi import APIRouter, HTTPException, Response, Request
from jose import jwt, JWTError

from proofly.schemas import LoginIn

router = APIRouter()

JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "change-me")
JWT_AUDIENCE = "proofly-worker"
JWT_ISSUER = "proofly-api"
SESSION_COOKIE = "pf_session"
SESSION_TTL = 60 * 60 * 8  # 8 hours

WORKER_USER = os.getenv("WORKER_USERNAME", "worker")
WORKER_PASS = os.getenv("WORKER_PASSWORD", "worker123")  # change in env!
SECURE_COOKIE = os.getenv("COOKIE_SECURE", "true").lower() == "true"


def make_jwt(sub: str) -> str:
    now = int(time.time())
    payload = {"sub": sub, "iat": now, "exp": now + SESSION_TTL, "aud": JWT_AUDIENCE, "iss": JWT_ISSUER}
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def verify_token(tok: Optional[str]) -> Optional[str]:
    if not tok:
        return None
    try:
        data = jwt.decode(tok, JWT_SECRET, algorithms=["HS256"], audience=JWT_AUDIENCE, issuer=JWT_ISSUER)
        return str(data.get("sub"))
    except JWTError:
        return None


def verify_request(req: Request) -> Optional[str]:
    """Current worker id from `Authorization: Bearer` or the session cookie, else None."""
    header = req.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return verify_token(header[7:].strip())
    return verify_token(req.cookies.get(SESSION_COOKIE))


@router.post("/auth/login")
def login(payload: LoginIn, response: Response):
    if payload.username != WORKER_USER or payload.password != WORKER_PASS:
        raise HTTPException(401, "Invalid credentials")
    token = make_jwt(WORKER_USER)
    response.set_cookie(
        key=SESSION_COOKIE, value=token, httponly=True, secure=SECURE_COOKIE, samesite="none", max_age=SESSION_TTL, path="/"
    )
    return {"ok": True, "token": token}


@router.get("/auth/me")
def me(req: Request):
    sub = verify_request(req)
    if not sub:
        raise HTTPException(401, "Not authenticated")
    return {"user": {"id": sub}}


@router.post("/auth/logout")
def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE, path="/")
    return {"ok": True}

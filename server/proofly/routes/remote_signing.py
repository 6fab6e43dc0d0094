from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional

from proofly.deps import get_signing_manager, require_user
from proofly.errors import NotFoundError
from proofly.models import APPROVED, REJECTED
from proofly.schemas import ReviewDecision, SigningRequestOut
from proofly.services.remote_signing import RemoteSigningManager

# worker side, mounted under /api
router = APIRouter()

# client side; the token in the path is the only credential
review_router = APIRouter()


def _public(r: dict) -> dict:
    # never echo the token or the signature blob back
    return {k: v for k, v in r.items() if k not in ("secureToken", "signatureData", "userId")}


@router.get("/remote-signing/pending", response_model=List[SigningRequestOut])
def list_pending(user_id: str = Depends(require_user),
                 signing: RemoteSigningManager = Depends(get_signing_manager)):
    return [_public(r) for r in signing.list_pending() if r["userId"] == user_id]


@router.get("/remote-signing/{request_id}", response_model=SigningRequestOut)
def get_request(request_id: str,
                user_id: str = Depends(require_user),
                signing: RemoteSigningManager = Depends(get_signing_manager)):
    r = signing.get(request_id)
    if r["userId"] != user_id:
        raise HTTPException(404, "Remote signing request not found")
    return _public(r)


@review_router.get("/review/{token}")
def open_review(token: str, signing: RemoteSigningManager = Depends(get_signing_manager)):
    r = signing.open_for_review(token)
    if r is None:
        raise HTTPException(404, "This review link is invalid or has expired")
    try:
        job = signing.jobs.get(r["jobId"]) if signing.jobs is not None else None
    except NotFoundError:
        job = None
    return {
        "request": _public(r),
        "job": {
            "clientName": job.get("clientName"),
            "serviceType": job.get("serviceType"),
            "address": job.get("address"),
            "photos": job.get("photos", []),
        } if job else None,
    }


def _decide(token: str, decision: str, payload: Optional[ReviewDecision], signing: RemoteSigningManager):
    extra = payload.model_dump(exclude_none=True) if payload else {}
    return {"request": _public(signing.review(token, decision, extra))}


@review_router.post("/review/{token}/approve")
def approve(token: str, payload: Optional[ReviewDecision] = None,
            signing: RemoteSigningManager = Depends(get_signing_manager)):
    return _decide(token, APPROVED, payload, signing)


@review_router.post("/review/{token}/reject")
def reject(token: str, payload: Optional[ReviewDecision] = None,
           signing: RemoteSigningManager = Depends(get_signing_manager)):
    return _decide(token, REJECTED, payload, signing)

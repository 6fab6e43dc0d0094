from fastapi import APIRouter, Depends

from proofly.deps import get_outbox, get_signing_manager, require_user
from proofly.services.mirror import MirrorOutbox
from proofly.services.remote_signing import RemoteSigningManager

router = APIRouter()


@router.post("/maintenance/cleanup-expired")
def cleanup_expired(_: str = Depends(require_user),
                    signing: RemoteSigningManager = Depends(get_signing_manager)):
    return {"expired": signing.cleanup_expired()}


@router.get("/maintenance/outbox")
def outbox_status(_: str = Depends(require_user), outbox: MirrorOutbox = Depends(get_outbox)):
    pending = outbox.pending()
    return {"pending": len(pending), "items": pending}


@router.post("/maintenance/flush-outbox")
def flush_outbox(_: str = Depends(require_user), outbox: MirrorOutbox = Depends(get_outbox)):
    return outbox.flush()

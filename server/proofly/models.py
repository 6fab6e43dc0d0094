from typing import List, Optional, Literal, Dict, Any
from datetime import datetime, timedelta
import uuid

from proofly.utils import utcnow, to_iso

# Stored “documents” (runtime dicts) – not Pydantic models.
# Keys are camelCase because that is what lands in the local JSON store.

JobStatus = Literal["created", "in_progress", "pending_remote_signature", "completed"]
PhotoTag = Literal["before", "during", "after"]
ContactMethod = Literal["email", "sms"]
SigningStatus = Literal["pending", "viewed", "approved", "rejected", "expired"]

JOB_CREATED = "created"
JOB_IN_PROGRESS = "in_progress"
JOB_PENDING_REMOTE_SIGNATURE = "pending_remote_signature"
JOB_COMPLETED = "completed"

PENDING = "pending"
VIEWED = "viewed"
APPROVED = "approved"
REJECTED = "rejected"
EXPIRED = "expired"

ACTIVE_STATUSES = {PENDING, VIEWED}
TERMINAL_STATUSES = {APPROVED, REJECTED, EXPIRED}

# Fixed, not configurable.
SIGNING_TTL = timedelta(hours=48)

PHOTO_TAGS = ("before", "during", "after")
CONTACT_METHODS = ("email", "sms")


def new_id() -> str:
    return str(uuid.uuid4())


def new_job(user_id: str, client_name: str, client_phone: str, service_type: str, address: str,
            client_email: Optional[str] = None, notes: Optional[str] = None,
            now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    return {
        "id": new_id(),
        "userId": user_id,
        "status": JOB_CREATED,
        "clientName": client_name,
        "clientPhone": client_phone,
        "clientEmail": client_email,
        "serviceType": service_type,
        "address": address,
        "notes": notes,
        "photos": [],
        "signature": None,
        "clientSignedName": None,
        "remoteSigningData": None,
        "createdAt": to_iso(now),
        "completedAt": None,
    }


def new_photo(blob_ref: str, tag: PhotoTag, now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "id": new_id(),
        "uri": blob_ref,
        "type": tag,
        "timestamp": to_iso(now or utcnow()),
    }


def new_signing_request(job_id: str, user_id: str, method: ContactMethod, address: str,
                        secure_token: str, now: datetime) -> Dict[str, Any]:
    return {
        "id": new_id(),
        "jobId": job_id,
        "userId": user_id,
        "clientEmail": address if method == "email" else None,
        "clientPhone": address if method == "sms" else None,
        "contactMethod": method,
        "secureToken": secure_token,
        "expiresAt": to_iso(now + SIGNING_TTL),
        "status": PENDING,
        "createdAt": to_iso(now),
        "reviewedAt": None,
        "clientFeedback": None,
        "signatureData": None,
        "clientSignedName": None,
    }


def remote_signing_pointer(request: Dict[str, Any]) -> Dict[str, Any]:
    """Denormalized copy of a request kept on the job."""
    return {
        "requestId": request["id"],
        "contactMethod": request["contactMethod"],
        "sentTo": request.get("clientEmail") or request.get("clientPhone"),
        "expiresAt": request["expiresAt"],
        "status": request["status"],
    }


def missing_job_fields(payload: Dict[str, Any]) -> List[str]:
    labels = {
        "clientName": "Client name is required",
        "clientPhone": "Phone number is required",
        "serviceType": "Service type is required",
        "address": "Address is required",
    }
    return [msg for key, msg in labels.items() if not (payload.get(key) or "").strip()]

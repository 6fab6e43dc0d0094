"""
Remote approval workflow.

A worker sends the client a link carrying a secure token; the client opens
it, then approves or rejects the work. Request states:

    pending -> viewed -> approved | rejected
    pending | viewed  -> expired        (once now > expiresAt)

Expiry is evaluated lazily by `get_by_token` and by the `cleanup_expired`
sweep, both through `is_expired`. No timers.

Every write goes to the local store first. Only after that commit is the
change mirrored remotely (through the outbox, deferred) and the client
notified.
"""
import secrets
import string
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from proofly.errors import (
    AuthError,
    InvalidTransitionError,
    NotFoundError,
    NotificationDispatchError,
    ValidationError,
)
from proofly.models import (
    ACTIVE_STATUSES,
    APPROVED,
    CONTACT_METHODS,
    EXPIRED,
    PENDING,
    REJECTED,
    VIEWED,
    new_signing_request,
)
from proofly.services.kv_store import REMOTE_SIGNING_REQUESTS, KeyValueStore
from proofly.services.mirror import MirrorOutbox, insert_op, run_now, update_op
from proofly.utils import from_iso, review_url, to_iso, utcnow

LOGGER = structlog.get_logger(__name__)

TOKEN_ALPHABET = string.ascii_letters + string.digits
TOKEN_LENGTH = 64

TRANSITIONS = {
    PENDING: {VIEWED, APPROVED, REJECTED, EXPIRED},
    VIEWED: {APPROVED, REJECTED, EXPIRED},
    APPROVED: set(),
    REJECTED: set(),
    EXPIRED: set(),
}

REVIEW_FIELDS = ("clientFeedback", "signatureData", "clientSignedName")

# local camelCase -> remote column
MIRROR_COLUMNS = {
    "id": "id",
    "jobId": "job_id",
    "userId": "user_id",
    "clientEmail": "client_email",
    "clientPhone": "client_phone",
    "contactMethod": "contact_method",
    "secureToken": "secure_token",
    "expiresAt": "expires_at",
    "status": "status",
    "createdAt": "created_at",
    "reviewedAt": "reviewed_at",
    "clientFeedback": "client_feedback",
    "signatureData": "signature_data",
    "clientSignedName": "client_signed_name",
}


def generate_secure_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def is_expired(request: Dict[str, Any], now: datetime) -> bool:
    """The one expiry predicate: a non-terminal request past its deadline."""
    return request["status"] in ACTIVE_STATUSES and now > from_iso(request["expiresAt"])


def validate_contact(method: str, address: str) -> str:
    if method not in CONTACT_METHODS:
        raise ValidationError(f"Contact method must be one of {', '.join(CONTACT_METHODS)}", fields=["contactMethod"])
    address = (address or "").strip()
    if method == "email" and "@" not in address:
        raise ValidationError("Please enter a valid email address", fields=["address"])
    if method == "sms" and len(address) < 10:
        raise ValidationError("Please enter a valid phone number", fields=["address"])
    return address


def to_mirror_doc(request: Dict[str, Any], fields=None) -> Dict[str, Any]:
    keys = fields or MIRROR_COLUMNS.keys()
    return {MIRROR_COLUMNS[k]: request.get(k) for k in keys}


class RemoteSigningManager:
    def __init__(self, store: KeyValueStore, outbox: MirrorOutbox, notifier,
                 identity: Callable[[], Optional[str]], jobs=None,
                 clock: Callable[[], datetime] = utcnow,
                 defer: Callable[..., Any] = run_now):
        self.store = store
        self.outbox = outbox
        self.notifier = notifier
        self.identity = identity
        self.jobs = jobs
        self._clock = clock
        self.defer = defer

    # ---------- helpers ----------
    def _all(self) -> List[Dict[str, Any]]:
        return self.store.get(REMOTE_SIGNING_REQUESTS, [])

    def _mirror(self, op: Dict[str, Any]) -> None:
        # queued durably now; only the delivery attempt is deferred
        self.outbox.enqueue(op)
        self.defer(self.outbox.flush, [op["key"]])

    def _mirror_status(self, request: Dict[str, Any]) -> None:
        self._mirror(update_op(
            REMOTE_SIGNING_REQUESTS,
            request["id"],
            {"id": request["id"]},
            to_mirror_doc(request, ("status", "reviewedAt") + REVIEW_FIELDS),
        ))

    def _sync_job(self, request: Dict[str, Any]) -> None:
        if self.jobs is None:
            return
        try:
            self.jobs.sync_remote_signing(request["jobId"], request)
        except NotFoundError:
            LOGGER.warning("remote_signing_job_missing", request_id=request["id"], job_id=request["jobId"])

    def _expire_stale(self, only_ids=None) -> List[Dict[str, Any]]:
        now = self._clock()
        flipped: List[Dict[str, Any]] = []
        stale_ids = [r["id"] for r in self._all()
                     if is_expired(r, now) and (only_ids is None or r["id"] in only_ids)]
        if not stale_ids:
            return flipped

        def _flip(requests):
            for r in requests:
                # re-check under the lock; a concurrent sweep may have got here first
                if r["id"] in stale_ids and is_expired(r, now):
                    r["status"] = EXPIRED
                    flipped.append(dict(r))
            return requests

        self.store.update(REMOTE_SIGNING_REQUESTS, _flip, default=[])
        for r in flipped:
            LOGGER.info("remote_signing_expired", request_id=r["id"], job_id=r["jobId"])
            self._mirror_status(r)
            self._sync_job(r)
        return flipped

    # ---------- operations ----------
    def create_request(self, job: Dict[str, Any], method: str, address: str) -> Dict[str, Any]:
        """
        Returns {"success": True, "reviewUrl", "requestId"}.
        Raises ValidationError/AuthError before anything is written,
        PersistenceError if the local commit fails, and
        NotificationDispatchError if the client could not be reached; in
        that last case the request stays stored as pending.
        """
        address = validate_contact(method, address)
        user_id = self.identity()
        if not user_id:
            raise AuthError("User not authenticated")

        now = self._clock()
        created = {}

        def _append(requests):
            taken = {r["secureToken"] for r in requests}
            token = generate_secure_token()
            while token in taken:
                token = generate_secure_token()
            request = new_signing_request(job["id"], user_id, method, address, token, now)
            requests.append(request)
            created["request"] = request
            return requests

        self.store.update(REMOTE_SIGNING_REQUESTS, _append, default=[])
        request = created["request"]
        LOGGER.info("remote_signing_created", request_id=request["id"], job_id=job["id"], channel=method)
        self._mirror(insert_op(REMOTE_SIGNING_REQUESTS, request["id"], to_mirror_doc(request)))

        if self.jobs is not None:
            self.jobs.attach_remote_signing(job["id"], request)

        url = review_url(request["secureToken"])
        try:
            self.notifier.send(method, address, job, url)
        except NotificationDispatchError as e:
            LOGGER.warning("remote_signing_notify_failed", request_id=request["id"], channel=method, error=str(e))
            e.request_id = request["id"]
            e.review_url = url
            raise
        return {"success": True, "reviewUrl": url, "requestId": request["id"]}

    def get(self, request_id: str) -> Dict[str, Any]:
        for r in self._all():
            if r["id"] == request_id:
                return r
        raise NotFoundError("Remote signing request not found")

    def get_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        """None for unknown, expired, or just-expired tokens."""
        if not token:
            return None
        request = next((r for r in self._all() if r["secureToken"] == token), None)
        if request is None or request["status"] == EXPIRED:
            return None
        if is_expired(request, self._clock()):
            self._expire_stale(only_ids={request["id"]})
            return None
        return request

    def update_status(self, request_id: str, new_status: str,
                      extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        extra = dict(extra or {})
        if "signatureBlob" in extra:
            extra["signatureData"] = extra.pop("signatureBlob")
        now = self._clock()
        result = {}

        def _apply(requests):
            for r in requests:
                if r["id"] != request_id:
                    continue
                if new_status != EXPIRED and is_expired(r, now):
                    r["status"] = EXPIRED
                    result["expired"] = dict(r)
                    return requests
                if new_status not in TRANSITIONS.get(r["status"], set()):
                    raise InvalidTransitionError(r["status"], new_status)
                r["status"] = new_status
                r["reviewedAt"] = to_iso(now)
                for key in REVIEW_FIELDS:
                    if extra.get(key) is not None:
                        r[key] = extra[key]
                result["request"] = dict(r)
                return requests
            raise NotFoundError("Remote signing request not found")

        self.store.update(REMOTE_SIGNING_REQUESTS, _apply, default=[])

        if "expired" in result:
            expired = result["expired"]
            LOGGER.info("remote_signing_expired", request_id=expired["id"], job_id=expired["jobId"])
            self._mirror_status(expired)
            self._sync_job(expired)
            raise InvalidTransitionError(EXPIRED, new_status)

        request = result["request"]
        LOGGER.info("remote_signing_status_changed", request_id=request_id, status=new_status)
        self._mirror_status(request)
        self._sync_job(request)
        return request

    def open_for_review(self, token: str) -> Optional[Dict[str, Any]]:
        """Client opened the link: a pending request becomes viewed."""
        request = self.get_by_token(token)
        if request is not None and request["status"] == PENDING:
            request = self.update_status(request["id"], VIEWED)
        return request

    def review(self, token: str, decision: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if decision not in (APPROVED, REJECTED):
            raise ValidationError("Decision must be approved or rejected", fields=["decision"])
        request = self.get_by_token(token)
        if request is None:
            raise NotFoundError("This review link is invalid or has expired")
        return self.update_status(request["id"], decision, extra)

    def list_pending(self) -> List[Dict[str, Any]]:
        now = self._clock()
        return [r for r in self._all() if r["status"] in ACTIVE_STATUSES and not is_expired(r, now)]

    def cleanup_expired(self) -> int:
        return len(self._expire_stale())

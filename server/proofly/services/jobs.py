from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from proofly.errors import NotFoundError, PhotoLimitError, ValidationError
from proofly.models import (
    APPROVED,
    JOB_COMPLETED,
    PHOTO_TAGS,
    missing_job_fields,
    new_job,
    new_photo,
    remote_signing_pointer,
)
from proofly.services.job_status import with_resolved_status
from proofly.services.kv_store import JOBS, KeyValueStore
from proofly.utils import utcnow, to_iso


class JobRepository:
    """
    Jobs live in the local store under one list key. Status is never written
    directly: every write and every read recomputes it from the job's data.
    """

    def __init__(self, store: KeyValueStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock

    def list(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        jobs = self.store.get(JOBS, [])
        if user_id is not None:
            jobs = [j for j in jobs if j.get("userId") == user_id]
        return [with_resolved_status(j) for j in jobs]

    def count_for(self, user_id: str) -> int:
        return len(self.list(user_id))

    def get(self, job_id: str) -> Dict[str, Any]:
        for j in self.store.get(JOBS, []):
            if j["id"] == job_id:
                return with_resolved_status(j)
        raise NotFoundError("Job not found")

    def create(self, user_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        missing = missing_job_fields(payload)
        if missing:
            raise ValidationError("; ".join(missing), fields=missing)
        job = new_job(
            user_id,
            payload["clientName"].strip(),
            payload["clientPhone"].strip(),
            payload["serviceType"].strip(),
            payload["address"].strip(),
            client_email=payload.get("clientEmail"),
            notes=payload.get("notes"),
            now=self._clock(),
        )

        def _append(jobs):
            jobs.append(job)
            return jobs

        self.store.update(JOBS, _append, default=[])
        return job

    def _mutate(self, job_id: str, fn: Callable[[Dict[str, Any]], None]) -> Dict[str, Any]:
        found = {}

        def _apply(jobs):
            for j in jobs:
                if j["id"] == job_id:
                    fn(j)
                    before = j.get("status")
                    with_resolved_status(j)
                    if j["status"] == JOB_COMPLETED and before != JOB_COMPLETED and not j.get("completedAt"):
                        j["completedAt"] = to_iso(self._clock())
                    found["job"] = j
                    return jobs
            raise NotFoundError("Job not found")

        self.store.update(JOBS, _apply, default=[])
        return found["job"]

    def add_photo(self, job_id: str, blob_ref: str, tag: str,
                  max_photos: Optional[int] = None) -> Dict[str, Any]:
        """
        Append a photo. With `max_photos`, the count is checked under the
        store lock, so concurrent uploads cannot push a job past its limit.
        """
        if tag not in PHOTO_TAGS:
            raise ValidationError(f"Photo tag must be one of {', '.join(PHOTO_TAGS)}", fields=["type"])
        if not blob_ref:
            raise ValidationError("Photo blob reference is required", fields=["uri"])
        photo = new_photo(blob_ref, tag, now=self._clock())

        def _append(j):
            if max_photos is not None and len(j["photos"]) >= max_photos:
                raise PhotoLimitError(len(j["photos"]), max_photos)
            j["photos"].append(photo)

        return self._mutate(job_id, _append)

    def attach_signature(self, job_id: str, signature: str, signed_name: Optional[str] = None) -> Dict[str, Any]:
        if not signature:
            raise ValidationError("Signature is required", fields=["signature"])

        def _sign(j):
            j["signature"] = signature
            if signed_name:
                j["clientSignedName"] = signed_name

        return self._mutate(job_id, _sign)

    def attach_remote_signing(self, job_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
        def _attach(j):
            j["remoteSigningData"] = remote_signing_pointer(request)

        return self._mutate(job_id, _attach)

    def sync_remote_signing(self, job_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
        """Refresh the job's pointer after the request moved; an approval with a signature signs the job."""

        def _sync(j):
            pointer = j.get("remoteSigningData")
            if pointer and pointer.get("requestId") == request["id"]:
                pointer["status"] = request["status"]
            if request["status"] == APPROVED and request.get("signatureData") and not j.get("signature"):
                j["signature"] = request["signatureData"]
                j["clientSignedName"] = request.get("clientSignedName")

        return self._mutate(job_id, _sync)

from typing import Any, Dict

from proofly.models import (
    JOB_COMPLETED,
    JOB_CREATED,
    JOB_IN_PROGRESS,
    JOB_PENDING_REMOTE_SIGNATURE,
)


def resolve_status(job: Dict[str, Any]) -> str:
    """
    Derive a job's lifecycle state from its data. First match wins:
      signature present        -> completed
      remoteSigningData present -> pending_remote_signature
      at least one photo       -> in_progress
      otherwise                -> created
    The signature is terminal: it wins even when the approval request on the
    job has since expired.
    """
    if job.get("signature"):
        return JOB_COMPLETED
    if job.get("remoteSigningData"):
        return JOB_PENDING_REMOTE_SIGNATURE
    if job.get("photos"):
        return JOB_IN_PROGRESS
    return JOB_CREATED


def with_resolved_status(job: Dict[str, Any]) -> Dict[str, Any]:
    job["status"] = resolve_status(job)
    return job


STATUS_TEXT = {
    JOB_CREATED: "Created",
    JOB_IN_PROGRESS: "In Progress",
    JOB_PENDING_REMOTE_SIGNATURE: "Awaiting Client Approval",
    JOB_COMPLETED: "Completed",
}


def status_description(job: Dict[str, Any]) -> str:
    status = resolve_status(job)
    if status == JOB_COMPLETED:
        return "Client signed off"
    if status == JOB_PENDING_REMOTE_SIGNATURE:
        return "Waiting for the client to review remotely"
    if status == JOB_IN_PROGRESS:
        return f"{len(job['photos'])} photos taken"
    return "Ready to start"

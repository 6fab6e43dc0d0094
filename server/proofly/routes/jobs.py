from fastapi import APIRouter, Depends, HTTPException
from typing import List

from proofly.deps import get_jobs, get_policy_engine, get_signing_manager, require_user
from proofly.schemas import CreateJob, CreateRemoteSigning, JobOut, PhotoIn, RemoteSigningOut, SignatureIn
from proofly.services.job_status import STATUS_TEXT
from proofly.services.jobs import JobRepository
from proofly.services.remote_signing import RemoteSigningManager
from proofly.services.usage_policy import UsagePolicyEngine

router = APIRouter()


def job_out(j: dict) -> dict:
    return {**j, "statusText": STATUS_TEXT.get(j["status"], j["status"])}


def _owned_job(jobs: JobRepository, job_id: str, user_id: str) -> dict:
    job = jobs.get(job_id)
    if job.get("userId") != user_id:
        raise HTTPException(404, "Job not found")
    return job


@router.get("/jobs", response_model=List[JobOut])
def list_jobs(user_id: str = Depends(require_user), jobs: JobRepository = Depends(get_jobs)):
    items = sorted(jobs.list(user_id), key=lambda j: j["createdAt"], reverse=True)
    return [job_out(j) for j in items]


@router.post("/jobs")
def create_job(payload: CreateJob,
               user_id: str = Depends(require_user),
               jobs: JobRepository = Depends(get_jobs),
               policy: UsagePolicyEngine = Depends(get_policy_engine)):
    decision = policy.check_action(user_id, "create_job", {"jobCount": jobs.count_for(user_id)})
    if not decision.allowed:
        raise HTTPException(402, decision.to_dict())
    job = jobs.create(user_id, payload.model_dump())
    return {"job": job_out(job), "policy": decision.to_dict()}


@router.get("/jobs/{job_id}", response_model=JobOut)
def get_job(job_id: str, user_id: str = Depends(require_user), jobs: JobRepository = Depends(get_jobs)):
    return job_out(_owned_job(jobs, job_id, user_id))


@router.post("/jobs/{job_id}/photos")
def add_photo(job_id: str, payload: PhotoIn,
              user_id: str = Depends(require_user),
              jobs: JobRepository = Depends(get_jobs),
              policy: UsagePolicyEngine = Depends(get_policy_engine)):
    job = _owned_job(jobs, job_id, user_id)
    added = {}

    def commit(max_photos):
        added["job"] = jobs.add_photo(job_id, payload.uri, payload.type, max_photos=max_photos)

    decision = policy.attempt_photo(user_id, len(job["photos"]), commit=commit)
    if not decision.allowed:
        # rate limit -> 429, tier limit -> 402
        raise HTTPException(429 if decision.rate_window else 402, decision.to_dict())
    return {"job": job_out(added["job"]), "policy": decision.to_dict()}


@router.post("/jobs/{job_id}/signature", response_model=JobOut)
def sign_job(job_id: str, payload: SignatureIn,
             user_id: str = Depends(require_user),
             jobs: JobRepository = Depends(get_jobs)):
    _owned_job(jobs, job_id, user_id)
    return job_out(jobs.attach_signature(job_id, payload.signature, payload.clientSignedName))


@router.post("/jobs/{job_id}/remote-signing", response_model=RemoteSigningOut)
def request_remote_signing(job_id: str, payload: CreateRemoteSigning,
                           user_id: str = Depends(require_user),
                           jobs: JobRepository = Depends(get_jobs),
                           signing: RemoteSigningManager = Depends(get_signing_manager)):
    job = _owned_job(jobs, job_id, user_id)
    return signing.create_request(job, payload.contactMethod, payload.address)

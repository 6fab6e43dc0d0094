from fastapi import APIRouter, Depends

from proofly.deps import get_jobs, get_policy_engine, require_user
from proofly.schemas import UsageCheck
from proofly.services.jobs import JobRepository
from proofly.services.policy_catalog import TIERS
from proofly.services.usage_policy import UsagePolicyEngine

router = APIRouter()


@router.get("/usage")
def usage_summary(user_id: str = Depends(require_user),
                  jobs: JobRepository = Depends(get_jobs),
                  policy: UsagePolicyEngine = Depends(get_policy_engine)):
    return policy.usage_summary(user_id, jobs.count_for(user_id))


@router.post("/usage/check")
def check_usage(payload: UsageCheck,
                user_id: str = Depends(require_user),
                jobs: JobRepository = Depends(get_jobs),
                policy: UsagePolicyEngine = Depends(get_policy_engine)):
    usage = {
        "jobCount": payload.jobCount if payload.jobCount is not None else jobs.count_for(user_id),
        "photosInJob": payload.photosInJob or 0,
    }
    return policy.check_action(user_id, payload.action, usage).to_dict()


@router.get("/tiers")
def list_tiers():
    return [
        {
            "id": t.id,
            "name": t.name,
            "price": t.price,
            "maxJobs": t.max_jobs,
            "photosPerJob": t.photos_per_job,
            "features": t.features,
            "photoRate": {
                "perMinute": t.photo_rate.per_minute,
                "perHour": t.photo_rate.per_hour,
                "perDay": t.photo_rate.per_day,
            },
        }
        for t in TIERS.values()
    ]

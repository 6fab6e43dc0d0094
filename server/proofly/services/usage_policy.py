from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional

import structlog

from proofly.errors import PhotoLimitError
from proofly.services.policy_catalog import FEATURE_ACTIONS, FEATURE_DENIAL, Tier, get_tier
from proofly.services.rate_limiter import RateDecision, SlidingWindowRateLimiter

LOGGER = structlog.get_logger(__name__)

NEAR_LIMIT_RATIO = 0.8


@dataclass
class UpgradeAdvisory:
    title: str
    message: str
    urgency: str  # low | medium | high


@dataclass
class PolicyDecision:
    allowed: bool
    reason: Optional[str] = None
    current_count: Optional[int] = None
    limit: Optional[int] = None
    upgrade_advisory: Optional[UpgradeAdvisory] = None
    fail_open: bool = False
    rate_window: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "currentCount": self.current_count,
            "limit": self.limit,
            "upgradeAdvisory": asdict(self.upgrade_advisory) if self.upgrade_advisory else None,
            "failOpen": self.fail_open,
            "rateWindow": self.rate_window,
        }


FAIL_OPEN = PolicyDecision(True, fail_open=True)


def _job_decision(tier: Tier, job_count: int) -> PolicyDecision:
    limit = tier.max_jobs
    if limit is None:
        return PolicyDecision(True, current_count=job_count)
    if job_count >= limit:
        return PolicyDecision(
            False,
            reason=f"You've reached your limit of {limit} jobs",
            current_count=job_count,
            limit=limit,
            upgrade_advisory=UpgradeAdvisory(
                "Job Limit Reached!",
                f"You've created {job_count}/{limit} jobs on the {tier.name} plan.\n\n"
                "Upgrade to Pro for unlimited jobs, professional PDFs, and client portal access.",
                "high",
            ),
        )
    if job_count >= limit * NEAR_LIMIT_RATIO:
        return PolicyDecision(
            True,
            current_count=job_count,
            limit=limit,
            upgrade_advisory=UpgradeAdvisory(
                "Almost at Your Limit!",
                f"You've used {job_count}/{limit} jobs.\n\n"
                "Upgrade now to avoid interruptions to your business.",
                "medium",
            ),
        )
    return PolicyDecision(True, current_count=job_count, limit=limit)


def _photo_decision(tier: Tier, photos_in_job: int) -> PolicyDecision:
    limit = tier.photos_per_job
    if limit is None:
        return PolicyDecision(True, current_count=photos_in_job)
    if photos_in_job >= limit:
        return PolicyDecision(
            False,
            reason=f"Maximum {limit} photos per job on {tier.name} plan",
            current_count=photos_in_job,
            limit=limit,
            upgrade_advisory=UpgradeAdvisory(
                "Photo Limit Reached!",
                f"You've reached the {limit} photo limit for this job.\n\n"
                "Upgrade to Pro for unlimited photos per job and professional documentation features.",
                "high",
            ),
        )
    if photos_in_job >= limit * NEAR_LIMIT_RATIO:
        return PolicyDecision(
            True,
            current_count=photos_in_job,
            limit=limit,
            upgrade_advisory=UpgradeAdvisory(
                "Almost at Photo Limit",
                f"You've used {photos_in_job}/{limit} photos for this job.\n\n"
                "Upgrade to Pro for unlimited photos and better client documentation.",
                "low",
            ),
        )
    return PolicyDecision(True, current_count=photos_in_job, limit=limit)


def _feature_decision(tier: Tier, action: str) -> PolicyDecision:
    if tier.has_feature(FEATURE_ACTIONS[action]):
        return PolicyDecision(True)
    reason, prompt = FEATURE_DENIAL[action]
    return PolicyDecision(
        False,
        reason=reason,
        upgrade_advisory=UpgradeAdvisory("Upgrade to Pro", prompt, "high"),
    )


def can_perform(tier_id: Optional[str], action: str, usage: Optional[Dict[str, int]] = None) -> PolicyDecision:
    """Pure gate: tier limits + counts supplied by the caller."""
    tier = get_tier(tier_id)
    usage = usage or {}
    if action == "create_job":
        return _job_decision(tier, int(usage.get("jobCount", 0)))
    if action == "add_photo":
        return _photo_decision(tier, int(usage.get("photosInJob", 0)))
    if action in FEATURE_ACTIONS:
        return _feature_decision(tier, action)
    return PolicyDecision(True)


class UsagePolicyEngine:
    """
    Resolves the caller's tier and applies `can_perform` plus the photo
    rate limiter. Any failure while looking up the tier fails open.
    """

    def __init__(self, tier_provider, rate_limiter: SlidingWindowRateLimiter):
        self.tier_provider = tier_provider
        self.rate_limiter = rate_limiter

    def resolve_tier(self, user_id: str) -> Optional[Tier]:
        try:
            return get_tier(self.tier_provider.tier_for(user_id))
        except Exception as e:
            LOGGER.warning("policy_lookup_failed_fail_open", user_id=user_id, error=str(e))
            return None

    def check_action(self, user_id: str, action: str, usage: Optional[Dict[str, int]] = None) -> PolicyDecision:
        tier = self.resolve_tier(user_id)
        if tier is None:
            return FAIL_OPEN
        return can_perform(tier.id, action, usage)

    def attempt_photo(self, user_id: str, photos_in_job: int,
                      commit: Optional[Callable[[Optional[int]], Any]] = None) -> PolicyDecision:
        """
        Gate one photo upload. `commit(max_photos)` performs the write; it runs
        inside the rate limiter's attempt, after the window and per-job checks,
        so the event is recorded only once the photo is actually stored. If
        `commit` raises, nothing is recorded and the exception propagates,
        except PhotoLimitError (the job filled up meanwhile), which becomes a
        per-job denial.
        """
        tier = self.resolve_tier(user_id)
        if tier is None:
            if commit is not None:
                commit(None)
            return FAIL_OPEN

        per_job = {}

        def guard() -> RateDecision:
            decision = _photo_decision(tier, photos_in_job)
            if decision.allowed and commit is not None:
                try:
                    commit(tier.photos_per_job)
                except PhotoLimitError as e:
                    decision = _photo_decision(tier, e.current_count)
            per_job["decision"] = decision
            return RateDecision(decision.allowed, decision.reason)

        rate = self.rate_limiter.attempt(user_id, tier.photo_rate, guard=guard)
        if "decision" in per_job:
            return per_job["decision"]
        return PolicyDecision(False, reason=rate.reason, rate_window=rate.window)

    def usage_summary(self, user_id: str, job_count: int) -> Dict[str, Any]:
        tier = self.resolve_tier(user_id)
        if tier is None:
            # fail open: report the default tier, never block
            tier = get_tier(None)
            job_check = FAIL_OPEN
        else:
            job_check = _job_decision(tier, job_count)
        advisory = job_check.upgrade_advisory
        return {
            "tier": tier.id,
            "tierName": tier.name,
            "jobsUsed": f"{job_count} jobs" if tier.max_jobs is None else f"{job_count}/{tier.max_jobs} jobs",
            "canCreateJobs": job_check.allowed,
            "upgradeRecommended": bool(advisory) and advisory.urgency != "low",
            "upgradeUrgent": bool(advisory) and advisory.urgency == "high",
            "photosToday": self.rate_limiter.daily_count(user_id),
            "dailyPhotoLimit": tier.photo_rate.per_day,
            "remainingDailyPhotos": self.rate_limiter.remaining_daily(user_id, tier.photo_rate),
            "rateLimits": self.rate_limiter.status(user_id, tier.photo_rate),
        }

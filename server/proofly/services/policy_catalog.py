# Static per-tier limits. None always means "unlimited" / "never blocks".
from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class RateCeilings:
    per_minute: Optional[int]
    per_hour: Optional[int]
    per_day: Optional[int]


@dataclass(frozen=True)
class Tier:
    id: str
    name: str
    price: int
    max_jobs: Optional[int]
    photos_per_job: Optional[int]
    features: Dict[str, bool] = field(default_factory=dict)
    photo_rate: RateCeilings = RateCeilings(None, None, None)

    def has_feature(self, feature: str) -> bool:
        return bool(self.features.get(feature, False))


TIERS: Dict[str, Tier] = {
    "free": Tier(
        id="free", name="Free", price=0,
        max_jobs=20, photos_per_job=25,
        features={"cloud_storage": False, "professional_pdfs": False, "client_portal": False},
        photo_rate=RateCeilings(per_minute=5, per_hour=50, per_day=200),
    ),
    "starter": Tier(
        id="starter", name="Starter", price=9,
        max_jobs=200, photos_per_job=None,
        features={"cloud_storage": True, "professional_pdfs": False, "client_portal": False},
        photo_rate=RateCeilings(per_minute=10, per_hour=200, per_day=1000),
    ),
    "professional": Tier(
        id="professional", name="Professional", price=19,
        max_jobs=None, photos_per_job=None,
        features={"cloud_storage": True, "professional_pdfs": True, "client_portal": True},
        photo_rate=RateCeilings(per_minute=20, per_hour=500, per_day=2000),
    ),
    "business": Tier(
        id="business", name="Business", price=49,
        max_jobs=None, photos_per_job=None,
        features={"cloud_storage": True, "professional_pdfs": True, "client_portal": True},
        photo_rate=RateCeilings(per_minute=None, per_hour=None, per_day=None),
    ),
}

# action name -> feature flag it is gated on
FEATURE_ACTIONS = {
    "generate_professional_pdf": "professional_pdfs",
    "access_client_portal": "client_portal",
    "cloud_backup": "cloud_storage",
}

FEATURE_DENIAL = {
    "generate_professional_pdf": (
        "Professional PDF templates require Pro plan",
        "Upgrade to Pro for branded, professional PDFs!",
    ),
    "access_client_portal": (
        "The client portal requires Pro plan",
        "Upgrade to Pro so clients can review and approve work online!",
    ),
    "cloud_backup": (
        "Cloud backup is not included in the Free plan",
        "Upgrade to keep your jobs backed up and synced!",
    ),
}


def get_tier(tier_id: Optional[str]) -> Tier:
    return TIERS.get((tier_id or "").lower(), TIERS["free"])

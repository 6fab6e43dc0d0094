from typing import Dict, Optional

import structlog
from pymongo.errors import PyMongoError

from proofly.errors import PolicyLookupError
from proofly.utils import DEFAULT_TIER

LOGGER = structlog.get_logger(__name__)


class MongoTierProvider:
    """Reads the caller's subscription tier from the `profiles` collection."""

    def __init__(self, db, default_tier: str = DEFAULT_TIER):
        self.db = db
        self.default_tier = default_tier

    def tier_for(self, user_id: str) -> str:
        if self.db is None:
            raise PolicyLookupError("Profile datastore is not configured")
        try:
            profile = self.db.profiles.find_one({"_id": user_id}, {"subscription_tier": 1})
        except PyMongoError as e:
            raise PolicyLookupError(f"Could not load profile for {user_id}: {e}") from e
        if not profile:
            return self.default_tier
        return profile.get("subscription_tier") or self.default_tier


class StaticTierProvider:
    def __init__(self, tiers: Optional[Dict[str, str]] = None, default_tier: str = DEFAULT_TIER):
        self.tiers = dict(tiers or {})
        self.default_tier = default_tier

    def tier_for(self, user_id: str) -> str:
        return self.tiers.get(user_id, self.default_tier)

import os
from functools import lru_cache
from typing import Optional

import structlog
from dotenv import load_dotenv
from fastapi import BackgroundTasks, Depends, HTTPException, Request
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from proofly.routes.auth import verify_request
from proofly.services.jobs import JobRepository
from proofly.services.kv_store import KeyValueStore, build_store
from proofly.services.mirror import MirrorOutbox, RemoteMirror
from proofly.services.notify import NotificationDispatcher
from proofly.services.rate_limiter import SlidingWindowRateLimiter
from proofly.services.remote_signing import RemoteSigningManager
from proofly.services.tiers import MongoTierProvider
from proofly.services.usage_policy import UsagePolicyEngine

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI")
DB_NAME = os.getenv("DB_NAME", "proofly")

LOGGER = structlog.get_logger(__name__)


@lru_cache()
def get_db():
    """Remote mirror datastore. None when MONGO_URI is unset or unreachable at startup."""
    if not MONGO_URI:
        LOGGER.warning("mongo_not_configured", detail="remote mirror disabled; ops will queue in the outbox")
        return None
    try:
        client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=5000)
        client.admin.command("ping")
    except PyMongoError as e:
        LOGGER.error("mongo_connect_failed", error=str(e))
        return None
    LOGGER.info("mongo_connected", db=DB_NAME)
    return client[DB_NAME]


@lru_cache()
def get_store() -> KeyValueStore:
    return build_store()


@lru_cache()
def get_rate_limiter() -> SlidingWindowRateLimiter:
    # one ledger per process
    return SlidingWindowRateLimiter()


@lru_cache()
def get_notifier() -> NotificationDispatcher:
    return NotificationDispatcher()


def get_outbox(store: KeyValueStore = Depends(get_store), db=Depends(get_db)) -> MirrorOutbox:
    return MirrorOutbox(store, RemoteMirror(db))


def get_jobs(store: KeyValueStore = Depends(get_store)) -> JobRepository:
    return JobRepository(store)


def get_policy_engine(db=Depends(get_db),
                      limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter)) -> UsagePolicyEngine:
    return UsagePolicyEngine(MongoTierProvider(db), limiter)


def current_user_id(request: Request) -> Optional[str]:
    return verify_request(request)


def require_user(user_id: Optional[str] = Depends(current_user_id)) -> str:
    if not user_id:
        raise HTTPException(401, "Not authenticated")
    return user_id


def get_signing_manager(background: BackgroundTasks,
                        user_id: Optional[str] = Depends(current_user_id),
                        store: KeyValueStore = Depends(get_store),
                        outbox: MirrorOutbox = Depends(get_outbox),
                        notifier: NotificationDispatcher = Depends(get_notifier),
                        jobs: JobRepository = Depends(get_jobs)) -> RemoteSigningManager:
    # mirror writes run after the response is sent
    return RemoteSigningManager(
        store,
        outbox,
        notifier,
        identity=lambda: user_id,
        jobs=jobs,
        defer=background.add_task,
    )

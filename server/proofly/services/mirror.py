import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog
from pymongo.errors import DuplicateKeyError, PyMongoError

from proofly.errors import MirrorSyncError
from proofly.models import new_id
from proofly.services.kv_store import MIRROR_OUTBOX, KeyValueStore
from proofly.utils import utcnow, to_iso

LOGGER = structlog.get_logger(__name__)

_FLUSH_LOCK = threading.Lock()


def insert_op(collection: str, key: str, doc: Dict[str, Any]) -> Dict[str, Any]:
    return {"op": "insert", "collection": collection, "key": key, "doc": doc}


def update_op(collection: str, key: str, filter_: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    return {"op": "update", "collection": collection, "key": key, "filter": filter_, "doc": fields}


class RemoteMirror:
    """Best-effort replica in MongoDB. Only insert and update-by-filter are used."""

    def __init__(self, db):
        self.db = db

    def apply(self, op: Dict[str, Any]) -> None:
        if self.db is None:
            raise MirrorSyncError("Remote datastore is not configured")
        coll = self.db[op["collection"]]
        try:
            if op["op"] == "insert":
                # _id = record id, so a replayed insert is idempotent
                doc = dict(op["doc"], _id=op["key"])
                try:
                    coll.insert_one(doc)
                except DuplicateKeyError:
                    LOGGER.info("mirror_insert_already_present", collection=op["collection"], key=op["key"])
            elif op["op"] == "update":
                coll.update_one(op["filter"], {"$set": op["doc"]})
            else:
                raise MirrorSyncError(f"Unknown mirror op {op['op']!r}")
        except PyMongoError as e:
            raise MirrorSyncError(f"{op['op']} on {op['collection']} failed: {e}") from e


class MirrorOutbox:
    """
    Durable queue of mirror operations. `enqueue` stores an op in the local
    store before anything else happens, so it survives a dropped background
    task or a failed request. `flush` replays queued ops in order and drops the
    ones that got through. Ops for one record are never applied out of order.
    """

    def __init__(self, store: KeyValueStore, mirror: RemoteMirror,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.mirror = mirror
        self._clock = clock

    def pending(self) -> List[Dict[str, Any]]:
        return self.store.get(MIRROR_OUTBOX, [])

    def enqueue(self, op: Dict[str, Any]) -> str:
        entry = dict(op, id=new_id(), attempts=0, lastError=None, enqueuedAt=to_iso(self._clock()))

        def _append(queue):
            queue.append(entry)
            return queue

        self.store.update(MIRROR_OUTBOX, _append, default=[])
        LOGGER.info("mirror_op_queued", collection=op["collection"], key=op["key"], op=op["op"])
        return entry["id"]

    def flush(self, keys: Optional[Iterable[str]] = None) -> Dict[str, int]:
        """Replay queued ops (only those for `keys` when given)."""
        only = set(keys) if keys is not None else None
        # one replay at a time per process, so two drains never reorder a record's ops
        with _FLUSH_LOCK:
            done, failed = set(), {}
            blocked_keys = set()
            for entry in self.pending():
                if only is not None and entry["key"] not in only:
                    continue
                if entry["key"] in blocked_keys:
                    continue
                try:
                    self.mirror.apply(entry)
                    done.add(entry["id"])
                except MirrorSyncError as e:
                    LOGGER.warning("mirror_sync_failed", collection=entry["collection"], key=entry["key"], error=str(e))
                    failed[entry["id"]] = str(e)
                    blocked_keys.add(entry["key"])

            def _prune(current):
                kept = []
                for entry in current:
                    if entry["id"] in done:
                        continue
                    if entry["id"] in failed:
                        entry["attempts"] = entry.get("attempts", 0) + 1
                        entry["lastError"] = failed[entry["id"]]
                    kept.append(entry)
                return kept

            remaining = self.store.update(MIRROR_OUTBOX, _prune, default=[])
        LOGGER.info("mirror_outbox_flushed", flushed=len(done), pending=len(remaining))
        return {"flushed": len(done), "pending": len(remaining)}

    def push(self, op: Dict[str, Any]) -> bool:
        """Queue the op, then try to deliver it (and anything queued before it for the same record)."""
        entry_id = self.enqueue(op)
        self.flush(keys=[op["key"]])
        return all(e["id"] != entry_id for e in self.pending())


def run_now(fn: Callable, *args, **kwargs) -> Optional[Any]:
    """Default `defer` hook: run inline."""
    return fn(*args, **kwargs)

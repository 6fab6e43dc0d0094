import os, json, uuid, threading, copy
from typing import Any, Callable, Dict

import structlog
from dotenv import load_dotenv

from proofly.errors import PersistenceError

load_dotenv()

USE_LOCAL = os.getenv("USE_LOCAL_STORAGE", "1") == "1"
BUCKET = os.getenv("S3_BUCKET", "")
REGION = os.getenv("AWS_REGION", "us-east-1")
STATE_PREFIX = os.getenv("S3_STATE_PREFIX", "state/")

LOCAL_DIR = os.getenv("LOCAL_STORAGE_DIR", "./_local_state")

LOGGER = structlog.get_logger(__name__)

# Collection keys
REMOTE_SIGNING_REQUESTS = "remote_signing_requests"
JOBS = "jobs"
MIRROR_OUTBOX = "mirror_outbox"


class KeyValueStore:
    """
    Durable get/set of JSON-serializable values by string key.

    Subclasses implement `_read` / `_write`. `update` is the only
    read-modify-write path and holds a per-key lock for its whole duration,
    so bursts of calls on one key never lose a write inside this process.
    """

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    def _read(self, key: str) -> Any:
        raise NotImplementedError

    def _write(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock(key):
            try:
                value = self._read(key)
            except Exception as e:
                LOGGER.error("store_read_failed", key=key, error=repr(e))
                raise PersistenceError(f"Could not read '{key}' from local store") from e
        return default if value is None else value

    def set(self, key: str, value: Any) -> None:
        with self._lock(key):
            try:
                self._write(key, value)
            except Exception as e:
                LOGGER.error("store_write_failed", key=key, error=repr(e))
                raise PersistenceError(f"Could not write '{key}' to local store") from e

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Apply fn to the current value and store what it returns. Returns the new value."""
        with self._lock(key):
            current = self.get(key, copy.deepcopy(default))
            new_value = fn(current)
            self.set(key, new_value)
            return new_value


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self):
        super().__init__()
        self._data: Dict[str, str] = {}

    def _read(self, key: str) -> Any:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def _write(self, key: str, value: Any) -> None:
        # serialize so stored values never alias caller objects
        self._data[key] = json.dumps(value)


class LocalKeyValueStore(KeyValueStore):
    """One JSON file per key under LOCAL_DIR, replaced atomically."""

    def __init__(self, root: str = LOCAL_DIR):
        super().__init__()
        self.root = root
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.root, f"{key}.json")

    def _read(self, key: str) -> Any:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = f"{path}.{uuid.uuid4().hex[:8]}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(value, f, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)


class S3KeyValueStore(KeyValueStore):
    """One JSON object per key under STATE_PREFIX in BUCKET."""

    def __init__(self, client=None, bucket: str = BUCKET, prefix: str = STATE_PREFIX):
        super().__init__()
        if client is None:
            import boto3
            from botocore.client import Config

            client = boto3.client("s3", region_name=REGION, config=Config(signature_version="s3v4"))
        self.s3 = client
        self.bucket = bucket
        self.prefix = prefix

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}{key}.json"

    def _read(self, key: str) -> Any:
        from botocore.exceptions import ClientError

        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=self._object_key(key))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise
        return json.loads(obj["Body"].read())

    def _write(self, key: str, value: Any) -> None:
        self.s3.put_object(
            Bucket=self.bucket,
            Key=self._object_key(key),
            Body=json.dumps(value, ensure_ascii=False).encode("utf-8"),
            ContentType="application/json",
        )


def build_store() -> KeyValueStore:
    if USE_LOCAL:
        return LocalKeyValueStore(LOCAL_DIR)
    return S3KeyValueStore()

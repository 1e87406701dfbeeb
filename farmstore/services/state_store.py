"""
Local persisted state for the POS terminal.

The cart and the recently-viewed list live under one namespaced key as a
single JSON document:

    {"state": {"cart": [...], "viewedProducts": [...]}, "version": 0}

Each ledger reads and writes only its own section, so sections written by a
newer build survive a round trip through an older one.

Section writes are read-modify-write on the whole document and run under a
per-namespace lock. The Redis backend additionally wraps them in a
WATCH/MULTI transaction so several processes can share one namespace. The
file backend is meant for a single process.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, date
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

STATE_VERSION = 0


def _serialize(value: Any) -> str:
    def default_handler(obj: Any) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        raise TypeError(f"Object of type {type(obj)} is not JSON serializable")
    return json.dumps(value, default=default_handler)


def _apply_update(document: Dict[str, Any], section: str,
                  update: Callable[[Any], Any], default: Any) -> Dict[str, Any]:
    state = document.setdefault('state', {})
    state[section] = update(state.get(section, default))
    document.setdefault('version', STATE_VERSION)
    return document


class StateStore:
    """Key/value document store used by the cart and viewed-products ledgers."""

    def __init__(self):
        self._namespace_locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def load(self, namespace: str) -> Dict[str, Any]:
        raise NotImplementedError

    def save(self, namespace: str, document: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, namespace: str) -> None:
        raise NotImplementedError

    def namespace_lock(self, namespace: str) -> threading.RLock:
        """The lock every section write of `namespace` goes through."""
        with self._locks_guard:
            lock = self._namespace_locks.get(namespace)
            if lock is None:
                lock = threading.RLock()
                self._namespace_locks[namespace] = lock
            return lock

    def read_section(self, namespace: str, section: str, default: Any = None) -> Any:
        document = self.load(namespace)
        return document.get('state', {}).get(section, default)

    def update_section(self, namespace: str, section: str,
                       update: Callable[[Any], Any], default: Any = None) -> Any:
        """
        Replace a section with `update(current)` atomically per namespace.

        `update` may be called more than once by backends that retry, so it
        must derive its result from the value it is given. Returns the new value.
        """
        with self.namespace_lock(namespace):
            document = _apply_update(self.load(namespace), section, update, default)
            self.save(namespace, document)
            return document['state'][section]

    def write_section(self, namespace: str, section: str, value: Any) -> None:
        self.update_section(namespace, section, lambda _current: value)


class MemoryStateStore(StateStore):
    """Process-local store. Documents are kept serialized so reads never alias writes."""

    def __init__(self):
        super().__init__()
        self._documents: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, namespace: str) -> Dict[str, Any]:
        with self._lock:
            raw = self._documents.get(namespace)
        return json.loads(raw) if raw else {}

    def save(self, namespace: str, document: Dict[str, Any]) -> None:
        with self._lock:
            self._documents[namespace] = _serialize(document)

    def delete(self, namespace: str) -> None:
        with self._lock:
            self._documents.pop(namespace, None)


class FileStateStore(StateStore):
    """One JSON file per namespace under `directory`."""

    def __init__(self, directory: str):
        super().__init__()
        self.directory = directory
        self._lock = threading.Lock()
        os.makedirs(directory, exist_ok=True)

    def _path(self, namespace: str) -> str:
        safe = ''.join(c if c.isalnum() or c in '-_.' else '_' for c in namespace)
        return os.path.join(self.directory, f'{safe}.json')

    def load(self, namespace: str) -> Dict[str, Any]:
        path = self._path(namespace)
        with self._lock:
            if not os.path.exists(path):
                return {}
            try:
                with open(path, 'r', encoding='utf-8') as fh:
                    return json.load(fh)
            except json.JSONDecodeError as e:
                logger.warning(f"[STATE] Corrupt state file {path}: {e}. Starting empty.")
                return {}

    def save(self, namespace: str, document: Dict[str, Any]) -> None:
        path = self._path(namespace)
        payload = _serialize(document)
        with self._lock:
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix='.tmp')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as fh:
                    fh.write(payload)
                os.replace(tmp_path, path)
            except OSError:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise

    def delete(self, namespace: str) -> None:
        path = self._path(namespace)
        with self._lock:
            if os.path.exists(path):
                os.remove(path)


class RedisStateStore(StateStore):
    """Redis-backed store so terminals behind a load balancer share state."""

    def __init__(self, client: redis.Redis, prefix: str = 'farmstore'):
        super().__init__()
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str, prefix: str = 'farmstore') -> 'RedisStateStore':
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=3,
            retry_on_timeout=True,
            health_check_interval=30
        )
        return cls(client, prefix)

    def _key(self, namespace: str) -> str:
        return f"{self.prefix}:state:{namespace}"

    def _decode(self, namespace: str, raw: Optional[str]) -> Dict[str, Any]:
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"[STATE] Corrupt state for {namespace}: {e}. Starting empty.")
            return {}

    def load(self, namespace: str) -> Dict[str, Any]:
        try:
            raw = self.client.get(self._key(namespace))
        except RedisError as e:
            logger.error(f"[STATE] Redis read failed for {namespace}: {e}")
            raise
        return self._decode(namespace, raw)

    def save(self, namespace: str, document: Dict[str, Any]) -> None:
        self.client.set(self._key(namespace), _serialize(document))

    def delete(self, namespace: str) -> None:
        self.client.delete(self._key(namespace))

    def update_section(self, namespace: str, section: str,
                       update: Callable[[Any], Any], default: Any = None) -> Any:
        """WATCH the key, rebuild the document, MULTI/EXEC; retried on conflict."""
        key = self._key(namespace)

        def apply(pipe):
            document = _apply_update(self._decode(namespace, pipe.get(key)), section, update, default)
            pipe.multi()
            pipe.set(key, _serialize(document))
            return document['state'][section]

        with self.namespace_lock(namespace):
            try:
                return self.client.transaction(apply, key, value_from_callable=True)
            except RedisError as e:
                logger.error(f"[STATE] Redis write failed for {namespace}: {e}")
                raise


def build_state_store(config) -> StateStore:
    """Create the store selected by STATE_BACKEND."""
    backend = (config.get('STATE_BACKEND') or 'file').lower()
    if backend == 'redis':
        logger.info(f"[STATE] Using Redis state store: {config.get('REDIS_URL')}")
        return RedisStateStore.from_url(config['REDIS_URL'])
    if backend == 'memory':
        return MemoryStateStore()
    directory: Optional[str] = config.get('STATE_DIR')
    logger.info(f"[STATE] Using file state store: {directory}")
    return FileStateStore(directory)

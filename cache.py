import hashlib
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

from bson import json_util

logger = logging.getLogger(__name__)


def fingerprint(obj: Any) -> str:
    """
    Content hash of any JSON / BSON-compatible value. Key order inside
    objects does not change the result.
    """
    canonical = json_util.dumps(obj, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _detach(dataset: Dict[str, Any]) -> Dict[str, Any]:
    # callers get their own outer dict and row lists; row dicts stay shared
    copy = dict(dataset)
    for key in ("rows", "sampleRows"):
        if isinstance(copy.get(key), list):
            copy[key] = list(copy[key])
    return copy


class DatasetCache:
    """
    Bounded LRU of built datasets keyed by content fingerprint.

    One instance per app (see main.py); nothing is cached at module level.
    Entries are copied in and out, so callers may edit what they get back.
    """

    def __init__(self, max_entries: int = 100):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            dataset = self._entries.get(key)
            if dataset is None:
                return None
            self._entries.move_to_end(key)
            return _detach(dataset)

    def put(self, key: str, dataset: Dict[str, Any]) -> None:
        with self._lock:
            self._entries[key] = _detach(dataset)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted dataset %s", evicted[:12])

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_or_build(self, key: str, builder: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        dataset = self.get(key)
        if dataset is not None:
            logger.debug("Dataset cache hit %s", key[:12])
            return dataset
        dataset = builder()
        self.put(key, dataset)
        return dataset

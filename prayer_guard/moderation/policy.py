import logging
import time
from typing import Any, Callable, Mapping, Optional

from .errors import PersistenceError
from .schemas import DEFAULT_POLICY, PolicyConfig

logger = logging.getLogger(__name__)

CONFIG_CACHE_TTL = 60.0


class PolicyCache:
    """
    Process-wide moderation policy with a short time-to-live.

    Reads may be stale for up to ``ttl`` seconds; writes go through
    ``update`` which invalidates so the next read hits the store.
    """

    def __init__(
        self,
        store,
        ttl: float = CONFIG_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._cached: Optional[PolicyConfig] = None
        self._fetched_at = 0.0

    def get(self) -> PolicyConfig:
        now = self._clock()
        if self._cached is not None and (now - self._fetched_at) < self._ttl:
            return self._cached

        try:
            policy = self._store.read_policy()
        except PersistenceError:
            logger.warning("Moderation config unavailable, using defaults")
            return DEFAULT_POLICY

        if policy is None:
            return DEFAULT_POLICY

        self._cached = policy
        self._fetched_at = now
        return policy

    def invalidate(self) -> None:
        self._cached = None
        self._fetched_at = 0.0

    def update(self, changes: Mapping[str, Any], updated_by: Optional[str] = None) -> PolicyConfig:
        """Merge ``changes`` into the stored policy and write it back.

        ``thresholds`` is merged per category. Raises ``pydantic.ValidationError``
        for unknown categories or out-of-range values and ``PersistenceError``
        when the stored policy cannot be read or written. An unreadable row
        is never replaced by the defaults.
        """
        current = self._store.read_policy() or DEFAULT_POLICY

        data = current.model_dump()
        for key, value in changes.items():
            if key not in PolicyConfig.model_fields:
                raise KeyError(key)
            if key == "thresholds":
                merged = dict(data["thresholds"])
                merged.update(value or {})
                data["thresholds"] = merged
            else:
                data[key] = value

        policy = PolicyConfig.model_validate(data)
        self._store.write_policy(policy, updated_by=updated_by)
        self.invalidate()
        return policy

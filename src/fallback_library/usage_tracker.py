import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

lib_logger = logging.getLogger("fallback_library")

# Cool-down windows (seconds)
RATE_LIMIT_COOLDOWN = 5 * 60
RECENT_USE_COOLDOWN = 60


@dataclass
class ModelUsageRecord:
    last_used: float
    rate_limited: bool = False


class ModelUsageTracker:
    """
    Tracks, per (tier, model), when a model was last used and whether that
    use hit a rate limit.

    This is an advisory store: the model selector uses it to skip models
    proactively. Records are never deleted; old records simply read as
    eligible again.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._records: Dict[str, ModelUsageRecord] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _get_key(tier: str, model: str) -> str:
        return f"{tier}-{model}"

    def mark_used(self, tier: str, model: str) -> None:
        with self._lock:
            self._records[self._get_key(tier, model)] = ModelUsageRecord(
                last_used=self._clock(), rate_limited=False
            )

    def mark_rate_limited(self, tier: str, model: str) -> None:
        with self._lock:
            self._records[self._get_key(tier, model)] = ModelUsageRecord(
                last_used=self._clock(), rate_limited=True
            )
        lib_logger.info(f"Model {model} marked as rate limited for {tier} tier")

    def get_record(self, tier: str, model: str) -> Optional[ModelUsageRecord]:
        with self._lock:
            return self._records.get(self._get_key(tier, model))

    def is_eligible(self, tier: str, model: str) -> bool:
        """
        True if the model has no record, was rate limited at least five
        minutes ago, or was used (without a rate limit) at least a minute ago.
        """
        record = self.get_record(tier, model)
        if record is None:
            return True

        elapsed = self._clock() - record.last_used
        if record.rate_limited:
            return elapsed >= RATE_LIMIT_COOLDOWN
        return elapsed >= RECENT_USE_COOLDOWN

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            items = list(self._records.items())
        now = self._clock()
        return {
            key: {
                "last_used_seconds_ago": round(now - record.last_used, 1),
                "rate_limited": record.rate_limited,
            }
            for key, record in items
        }

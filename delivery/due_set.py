"""
Delivery - Due-Set Resolver.

============================================================
RESPONSIBILITY
============================================================
Decides, from artifact metadata alone, whether an artifact is
due. This is the reconciliation path: it catches artifacts
whose binding was never created, expired, or was missed
during downtime.

============================================================
RULES
============================================================
- is_scheduled must be true
- on_demand is never due
- never sent -> due
- otherwise due iff now - last_sent_at >= frequency interval
  (hourly 1h, daily 24h, weekly 7d, monthly 30d; realtime and
  unknown frequencies use 24h)

schedule_config is never consulted.

============================================================
"""

from datetime import datetime
from typing import Any, Iterable, List

from core.clock import ensure_utc
from delivery.models import Frequency, interval_for


class DueSetResolver:
    """
    Pure due-set computation.

    Works on anything exposing is_scheduled, frequency and
    last_sent_at (ORM rows or snapshots). No side effects.
    """

    def is_due(self, artifact: Any, now: datetime) -> bool:
        if not artifact.is_scheduled:
            return False

        frequency = Frequency.parse(artifact.frequency)
        if frequency == Frequency.ON_DEMAND:
            return False

        if artifact.last_sent_at is None:
            return True

        elapsed = ensure_utc(now) - ensure_utc(artifact.last_sent_at)
        return elapsed >= interval_for(artifact.frequency)

    def find_due(self, artifacts: Iterable[Any], now: datetime) -> List[Any]:
        """Artifacts that are due at `now`, in input order."""
        return [artifact for artifact in artifacts if self.is_due(artifact, now)]

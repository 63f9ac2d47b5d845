"""Reconciliation of a scraped batch against previously persisted events."""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Tuple

from processor.models import EconomicEvent, NaturalKey, ReconcileResult

logger = logging.getLogger(__name__)

# Fields compared to decide whether a persisted event must be rewritten.
# event_id is regenerated on every parse and never compared.
CONTENT_FIELDS = ('actual', 'forecast', 'previous', 'level', 'explanation')


def events_differ(updated: EconomicEvent, current: EconomicEvent) -> bool:
    """
    Compare the content of two events sharing a natural key.

    Args:
        updated: Freshly scraped event
        current: Persisted event

    Returns:
        True if any of actual, forecast, previous, level or explanation differs
    """
    return any(
        getattr(updated, name) != getattr(current, name) for name in CONTENT_FIELDS
    )


def covering_range(events: Iterable[EconomicEvent]) -> Tuple[datetime, datetime]:
    """
    Return the (min, max) timestamps of a batch.

    Raises:
        ValueError: If the batch is empty
    """
    timestamps = [event.timestamp for event in events]
    if not timestamps:
        raise ValueError("Cannot compute the time range of an empty batch")
    return min(timestamps), max(timestamps)


class EventReconciler:
    """Classifies scraped events into new, changed and unchanged sets."""

    def reconcile(
        self,
        scraped: List[EconomicEvent],
        existing: List[EconomicEvent]
    ) -> ReconcileResult:
        """
        Compare a scraped batch with the events persisted for its time range.

        Matching uses the natural key (timestamp, title, currency). When the
        persisted batch holds the same key more than once, the first
        occurrence is the one compared against. Scraped records are
        classified one by one, so duplicate keys in the scraped batch each
        land in the same category as their twin.

        Args:
            scraped: Events parsed on this run
            existing: Persisted events between the min and max scraped timestamps

        Returns:
            ReconcileResult with to_add, to_check, to_update and unchanged lists
        """
        if not existing:
            logger.info(
                "Found no existing events. Will add the whole batch as new events"
            )
            return ReconcileResult(to_add=list(scraped))

        logger.info(f"Found {len(existing)} existing events in range")

        current_by_key: Dict[NaturalKey, EconomicEvent] = {}
        for event in existing:
            current_by_key.setdefault(event.key, event)

        result = ReconcileResult()
        for event in scraped:
            current = current_by_key.get(event.key)
            if current is None:
                result.to_add.append(event)
                continue

            result.to_check.append(event)
            if events_differ(event, current):
                self._log_change(event, current)
                result.to_update.append(event)
            else:
                result.unchanged.append(event)

        if result.to_add:
            logger.info(
                f"Found {len(result.to_add)} new events that are not stored. Will add them"
            )
            for event in result.to_add:
                logger.info(f"\t{event.describe()}")

        logger.info(
            f"Checked {len(result.to_check)} events already stored: "
            f"{len(result.to_update)} updated, {len(result.unchanged)} unchanged"
        )
        return result

    def _log_change(self, updated: EconomicEvent, current: EconomicEvent) -> None:
        logger.info(f"Event {updated.describe()} changed and needs to be updated")
        for name in CONTENT_FIELDS:
            before = getattr(current, name)
            after = getattr(updated, name)
            if before != after:
                logger.info(f"\t{name}: {before!r} -> {after!r}")

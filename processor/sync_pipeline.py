"""Orchestrates fetch, parse, reconcile and write for one sync run."""
import logging
from typing import Dict, List, Optional

from processor.errors import CalendarSyncError, EmptyBatchError, StoreError
from processor.models import (
    DestinationTally,
    EconomicEvent,
    ReconcileResult,
    RunOutcome,
    RunState,
    SyncResult,
)
from processor.reconciler import EventReconciler, covering_range

logger = logging.getLogger(__name__)


class CalendarSyncPipeline:
    """
    One best-effort pass from the calendar page to the configured stores.

    Collaborators are injected:

    * scraper: exposes fetch_page() returning the page markup
    * parser: exposes parse(html) returning a list of EconomicEvent
    * backends: stores exposing name, get_in_range(start, end) and
      add_or_update(event). Each backend holds its own persisted events, so
      each one is reconciled and written on its own
    * destinations: write-only stores exposing name and
      add_or_update(event) returning a WriteResult. They receive every event
      that at least one backend needed to add or update
    """

    def __init__(
        self,
        scraper,
        parser,
        backends: List,
        destinations: Optional[List] = None,
        reconciler: Optional[EventReconciler] = None
    ):
        self.scraper = scraper
        self.parser = parser
        self.backends = list(backends)
        self.destinations = list(destinations) if destinations is not None else []
        self.reconciler = reconciler or EventReconciler()
        self.state = RunState.IDLE

    def run(self) -> SyncResult:
        """
        Run fetch, parse, reconcile and write once.

        Returns:
            SyncResult with the outcome, the stage reached and all counts
        """
        self.state = RunState.IDLE
        tallies = {
            store.name: DestinationTally(store.name)
            for store in self.backends + self.destinations
        }
        result = SyncResult(
            outcome=RunOutcome.FAILED, state=self.state, destinations=tallies
        )

        try:
            events = self._fetch_and_parse(result)
            plans = self._reconcile_all(events, result)
        except CalendarSyncError as e:
            logger.error(
                f"Sync run aborted while {self.state.value}: {e}",
                extra={'error_type': type(e).__name__}
            )
            result.errors.append(f"{type(e).__name__}: {e}")
            result.state = self.state
            return result

        self.state = RunState.WRITING
        write_counts = {}
        for backend in self.backends:
            plan = plans.get(backend.name)
            if plan is None:
                continue
            write_counts[backend.name] = self._write_all(
                backend, plan.to_write, tallies[backend.name], result.errors
            )

        merged = merge_writes(plans.values())
        for destination in self.destinations:
            write_counts[destination.name] = self._write_all(
                destination, merged, tallies[destination.name], result.errors
            )

        self.state = RunState.DONE
        result.state = self.state
        failed = sum(tally.failed for tally in tallies.values())
        skipped = len(plans) < len(self.backends)
        result.outcome = RunOutcome.PARTIAL if failed or skipped else RunOutcome.SUCCESS

        for name, tally in tallies.items():
            if name not in write_counts:
                continue
            log = logger.error if tally.failed else logger.info
            log(
                f"Destination {name}: {tally.success} succeeded, "
                f"{tally.failed} failed out of {write_counts[name]} events"
            )
        logger.info(f"Sync run finished: {result.outcome.value}")
        return result

    def _fetch_and_parse(self, result: SyncResult) -> List[EconomicEvent]:
        self.state = RunState.FETCHING
        html_content = self.scraper.fetch_page()

        self.state = RunState.PARSING
        events = self.parser.parse(html_content)
        result.events_parsed = len(events)
        if not events:
            raise EmptyBatchError("Found no event to process")
        return events

    def _reconcile_all(
        self,
        events: List[EconomicEvent],
        result: SyncResult
    ) -> Dict[str, ReconcileResult]:
        """
        Reconcile the batch against each backend's stored events.

        A backend whose stored events cannot be read is left out of the run.

        Raises:
            StoreError: If no backend could be read
        """
        self.state = RunState.RECONCILING
        events = sorted(events)
        start, end = covering_range(events)

        plans = {}
        for backend in self.backends:
            logger.info(
                f"Loading stored events from {backend.name} between "
                f"{start.isoformat()} and {end.isoformat()}"
            )
            try:
                existing = backend.get_in_range(start, end)
            except StoreError as e:
                logger.error(
                    f"Skipping {backend.name}, stored events unavailable: {e}",
                    extra={'error_type': type(e).__name__}
                )
                result.errors.append(f"{backend.name}: {type(e).__name__}: {e}")
                continue

            plan = self.reconciler.reconcile(events, existing)
            plans[backend.name] = plan
            counts = plan.counts()
            result.plans[backend.name] = counts
            result.events_added += counts['added']
            result.events_updated += counts['updated']
            result.events_unchanged += counts['unchanged']
            logger.info(
                f"Sync plan for {backend.name}: {counts['added']} to add, "
                f"{counts['updated']} to update, {counts['unchanged']} unchanged"
            )

        if not plans:
            raise StoreError("Stored events unavailable from every backend")
        return plans

    def _write_all(
        self,
        store,
        events: List[EconomicEvent],
        tally: DestinationTally,
        errors: List[str]
    ) -> int:
        """
        Upsert every event to one store.

        A failed event is counted and logged, then processing moves on.

        Returns:
            Number of events attempted
        """
        if not events:
            logger.info(f"No new or updated events for {store.name}. Nothing to write")
            return 0

        logger.info(f"About to add/update {len(events)} events in {store.name}")
        for event in events:
            try:
                write_result = store.add_or_update(event)
                success = write_result.success
                message = write_result.message
            except Exception as e:
                success = False
                message = f"{type(e).__name__}: {e}"

            if success:
                tally.record_success()
                logger.info(
                    f"Added/updated {event.describe()} in {store.name} "
                    f"(success: {tally.success}, failed: {tally.failed})"
                )
            else:
                tally.record_failure()
                logger.error(
                    f"Failed to add/update {event.describe()} in {store.name} "
                    f"(success: {tally.success}, failed: {tally.failed}): {message}"
                )
                errors.append(f"{store.name}: {event.describe()}: {message}")
        return len(events)


def merge_writes(plans) -> List[EconomicEvent]:
    """Events any plan needs written, once per natural key, first seen wins."""
    merged = {}
    for plan in plans:
        for event in plan.to_write:
            merged.setdefault(event.key, event)
    return list(merged.values())

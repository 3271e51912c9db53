"""Enrichment worker: classify and describe newly tracked found items.

Each invocation reads the consumer checkpoint, polls the change log, and fans
the batch out over a thread pool. Per record the ledger is consulted before any
AI call; the enriched row and its ledger entry commit together. The checkpoint
then advances over the contiguous prefix of records whose outcome is final
(enriched, duplicate or quarantined), so anything still failing or cancelled
is surfaced again by the next poll.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from lostfound.classification.classifier import ImageClassifier
from lostfound.classification.vocabulary import CATEGORY_LABELS
from lostfound.errors import (
    ClassificationError,
    DescriptionError,
    DuplicateEnrichmentAttempt,
    RecordStoreUnavailable,
    ResolutionError,
    TransientModelError,
)
from lostfound.extraction.describer import ItemDescriber
from lostfound.observability import Observability, get_observability
from lostfound.settings import Settings, get_settings
from lostfound.storage.images import ImageStore
from lostfound.store.change_tracker import ChangeTracker
from lostfound.store.enrichment_run_tracker import EnrichmentRunTracker
from lostfound.store.enrichment_store import LEDGER_ENRICHED, LEDGER_QUARANTINED, EnrichmentStore
from lostfound.store.schema import FoundItem, UnparsedDetails
from lostfound.util.retry import call_with_retry

LOGGER = logging.getLogger(__name__)

OUTCOME_ENRICHED = "enriched"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_QUARANTINED = "quarantined"
OUTCOME_FAILED = "failed"
OUTCOME_CANCELLED = "cancelled"

FINAL_OUTCOMES = frozenset({OUTCOME_ENRICHED, OUTCOME_DUPLICATE, OUTCOME_QUARANTINED})


@dataclass(slots=True)
class RecordOutcome:
    """Result of processing one found item."""

    filename: str
    seq: int
    outcome: str
    unparsed: bool = False
    error: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.outcome in FINAL_OUTCOMES


@dataclass(slots=True)
class EnrichmentRunSummary:
    """Counters and checkpoint movement for one worker invocation."""

    run_id: Optional[str]
    consumer: str
    status: str
    checkpoint_before: int
    checkpoint_after: int
    outcomes: List[RecordOutcome] = field(default_factory=list)
    error: Optional[str] = None

    def count(self, outcome: str) -> int:
        return sum(1 for item in self.outcomes if item.outcome == outcome)

    @property
    def polled(self) -> int:
        return len(self.outcomes)

    @property
    def enriched(self) -> int:
        return self.count(OUTCOME_ENRICHED)

    @property
    def duplicates(self) -> int:
        return self.count(OUTCOME_DUPLICATE)

    @property
    def quarantined(self) -> int:
        return self.count(OUTCOME_QUARANTINED)

    @property
    def failed(self) -> int:
        return self.count(OUTCOME_FAILED)

    @property
    def cancelled(self) -> int:
        return self.count(OUTCOME_CANCELLED)

    @property
    def unparsed(self) -> int:
        return sum(1 for item in self.outcomes if item.unparsed)

    def counters(self) -> Dict[str, int]:
        return {
            "polled_count": self.polled,
            "enriched_count": self.enriched,
            "duplicate_count": self.duplicates,
            "unparsed_count": self.unparsed,
            "failed_count": self.failed,
            "quarantined_count": self.quarantined,
        }


def advance_offset(offset: int, outcomes: List[RecordOutcome]) -> int:
    """Return the highest ``seq`` of the contiguous final prefix after ``offset``."""

    new_offset = offset
    for outcome in sorted(outcomes, key=lambda item: item.seq):
        if outcome.seq <= offset:
            continue
        if not outcome.is_final:
            break
        new_offset = outcome.seq
    return new_offset


class EnrichmentWorker:
    """Consume the change log and write one enrichment per found item."""

    def __init__(
        self,
        *,
        tracker: ChangeTracker,
        enrichment_store: EnrichmentStore,
        image_store: ImageStore,
        classifier: ImageClassifier,
        describer: ItemDescriber,
        run_tracker: EnrichmentRunTracker | None = None,
        settings: Settings | None = None,
        observability: Observability | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.tracker = tracker
        self.store = enrichment_store
        self.images = image_store
        self.classifier = classifier
        self.describer = describer
        self.run_tracker = run_tracker
        self.observability = observability or get_observability(component="enrichment", settings=self.settings)
        self._sleep = sleep
        config = self.settings.enrichment
        self.consumer = config.consumer_name
        self.batch_limit = config.batch_limit
        self.max_workers = max(1, int(config.max_workers))
        self.max_retries = config.max_retries
        self.retry_base_delay = config.retry_base_delay_seconds
        self.retry_max_delay = config.retry_max_delay_seconds
        self.quarantine_threshold = max(1, int(config.quarantine_threshold))
        self.dry_run = bool(config.dry_run)

    def run_if_pending(self, cancel_event: threading.Event | None = None) -> Optional[EnrichmentRunSummary]:
        """Run only when the change log has records past the checkpoint or late stragglers."""

        if not self.tracker.has_pending(self.consumer) and not self.tracker.straggler_count(
            self.tracker.load_checkpoint(self.consumer)
        ):
            LOGGER.info("No pending found items for consumer=%s", self.consumer)
            return None
        return self.run(cancel_event=cancel_event)

    def run(self, cancel_event: threading.Event | None = None) -> EnrichmentRunSummary:
        """Process one batch from the change log.

        Raises:
            RecordStoreUnavailable: the record store failed; the checkpoint is left untouched.
        """

        started = time.perf_counter()
        offset = self.tracker.load_checkpoint(self.consumer)
        late = self.tracker.stragglers(offset, limit=self.batch_limit)
        batch = self.tracker.poll(offset, limit=self.batch_limit)
        items = late + batch.items
        if self.dry_run:
            LOGGER.info(
                "Dry run: %d pending found items after offset=%s for consumer=%s", len(items), offset, self.consumer
            )
            return EnrichmentRunSummary(
                run_id=None, consumer=self.consumer, status="dry_run", checkpoint_before=offset, checkpoint_after=offset
            )

        run_id = self.run_tracker.start_run(consumer=self.consumer, checkpoint_before=offset) if self.run_tracker else None
        summary = EnrichmentRunSummary(
            run_id=run_id, consumer=self.consumer, status="running", checkpoint_before=offset, checkpoint_after=offset
        )
        abort = threading.Event()

        def should_stop() -> bool:
            return abort.is_set() or bool(cancel_event is not None and cancel_event.is_set())

        fatal: RecordStoreUnavailable | None = None
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="enrich") as pool:
            futures = {pool.submit(self._process_record, item, should_stop): item for item in items}
            for future in as_completed(futures):
                item = futures[future]
                try:
                    outcome = future.result()
                except RecordStoreUnavailable as exc:
                    abort.set()
                    fatal = fatal or exc
                    outcome = RecordOutcome(item.filename, item.seq, OUTCOME_FAILED, error=str(exc))
                except Exception as exc:
                    LOGGER.exception("Unexpected error enriching filename=%s", item.filename)
                    outcome = RecordOutcome(item.filename, item.seq, OUTCOME_FAILED, error=repr(exc))
                summary.outcomes.append(outcome)
                self._report_outcome(outcome)

        summary.outcomes.sort(key=lambda outcome: outcome.seq)
        if fatal is not None:
            self._finish(summary, status="failed", error=str(fatal), started=started)
            raise fatal

        new_offset = advance_offset(offset, summary.outcomes)
        if new_offset > offset:
            try:
                self.tracker.commit_checkpoint(self.consumer, new_offset)
            except RecordStoreUnavailable as exc:
                LOGGER.error("Checkpoint commit failed consumer=%s offset=%s: %s", self.consumer, new_offset, exc)
                self._finish(summary, status="failed", error=str(exc), started=started)
                raise
            summary.checkpoint_after = new_offset

        status = "cancelled" if summary.cancelled else "succeeded"
        self._finish(summary, status=status, error=None, started=started)
        return summary

    def _process_record(self, item: FoundItem, should_stop: Callable[[], bool]) -> RecordOutcome:
        if should_stop():
            return RecordOutcome(item.filename, item.seq, OUTCOME_CANCELLED)

        try:
            ledger = self.store.ledger_status(item.filename)
            if ledger == LEDGER_ENRICHED:
                raise DuplicateEnrichmentAttempt(f"{item.filename} already enriched", filename=item.filename)
            if ledger == LEDGER_QUARANTINED:
                return RecordOutcome(item.filename, item.seq, OUTCOME_QUARANTINED, error="previously quarantined")

            try:
                image = self.images.resolve(item.filename)
            except ResolutionError as exc:
                return self._count_failure(item, exc, kind="resolution")

            try:
                result = call_with_retry(
                    lambda: self.classifier.classify(image, CATEGORY_LABELS),
                    retry_on=(ClassificationError,),
                    max_retries=self.max_retries,
                    base_delay=self.retry_base_delay,
                    max_delay=self.retry_max_delay,
                    label=f"classify {item.filename}",
                    sleep=self._sleep,
                )
                details = call_with_retry(
                    lambda: self.describer.describe(image, result.label),
                    retry_on=(DescriptionError,),
                    max_retries=self.max_retries,
                    base_delay=self.retry_base_delay,
                    max_delay=self.retry_max_delay,
                    label=f"describe {item.filename}",
                    sleep=self._sleep,
                )
            except TransientModelError as exc:
                kind = "classification" if isinstance(exc, ClassificationError) else "description"
                self.store.record_failure(item.filename, kind=kind, error=str(exc))
                self.store.quarantine(item.filename, reason=f"{kind}: {exc}")
                return RecordOutcome(item.filename, item.seq, OUTCOME_QUARANTINED, error=str(exc))

            self.store.commit_enrichment(item, classification=result.label, details=details)
            return RecordOutcome(
                item.filename, item.seq, OUTCOME_ENRICHED, unparsed=isinstance(details, UnparsedDetails)
            )
        except DuplicateEnrichmentAttempt:
            LOGGER.debug("Skipping already enriched filename=%s", item.filename)
            return RecordOutcome(item.filename, item.seq, OUTCOME_DUPLICATE)
        except RecordStoreUnavailable:
            raise
        except Exception as exc:
            LOGGER.exception("Unexpected error enriching filename=%s", item.filename)
            return self._count_failure(item, exc, kind="unexpected")

    def _count_failure(self, item: FoundItem, exc: Exception, *, kind: str) -> RecordOutcome:
        """Record a failed attempt and quarantine once the threshold is reached."""

        failures = self.store.record_failure(item.filename, kind=kind, error=str(exc) or repr(exc))
        if failures >= self.quarantine_threshold:
            self.store.quarantine(item.filename, reason=f"{kind} failed {failures} times: {exc!r}")
            return RecordOutcome(item.filename, item.seq, OUTCOME_QUARANTINED, error=str(exc))
        LOGGER.warning(
            "Enrichment attempt failed filename=%s kind=%s failures=%d/%d: %s",
            item.filename,
            kind,
            failures,
            self.quarantine_threshold,
            exc,
        )
        return RecordOutcome(item.filename, item.seq, OUTCOME_FAILED, error=str(exc))

    def _report_outcome(self, outcome: RecordOutcome) -> None:
        self.observability.emit_event(
            "enrichment.record",
            filename=outcome.filename,
            seq=outcome.seq,
            outcome=outcome.outcome,
            unparsed=outcome.unparsed,
            error=outcome.error,
        )
        self.observability.increment("enrichment.records", tags={"outcome": outcome.outcome})

    def _finish(self, summary: EnrichmentRunSummary, *, status: str, error: Optional[str], started: float) -> None:
        summary.status = status
        summary.error = error
        if self.run_tracker is not None and summary.run_id is not None:
            try:
                self.run_tracker.complete_run(
                    summary.run_id,
                    status=status,
                    counters=summary.counters(),
                    checkpoint_after=summary.checkpoint_after,
                    last_error=error,
                )
            except Exception:
                LOGGER.exception("Failed to record completion of enrichment run %s", summary.run_id)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        self.observability.record_timing("enrichment.run_ms", elapsed_ms, tags={"status": status})
        self.observability.emit_event("enrichment.run", run_id=summary.run_id, status=status, **summary.counters())


__all__ = [
    "EnrichmentRunSummary",
    "EnrichmentWorker",
    "FINAL_OUTCOMES",
    "RecordOutcome",
    "advance_offset",
]

"""Job entrypoint for the trigger-gated enrichment worker."""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading

from lostfound.errors import RecordStoreUnavailable
from lostfound.services.factories import build_enrichment_worker
from lostfound.settings import get_settings

LOGGER = logging.getLogger("lostfound.worker.jobs.enrich")


def _configure_logging() -> None:
    level_name = os.getenv("LOSTFOUND_RUNTIME__LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _env_flag(name: str) -> bool | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return None


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handler(signum, _frame) -> None:
        LOGGER.info("Received signal %s; stopping after in-flight records", signum)
        stop.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(signum, _handler)
        except ValueError:  # pragma: no cover - not on the main thread
            return


def run_once(worker, stop: threading.Event) -> int:
    """Run one gated invocation and map its outcome to an exit code."""

    try:
        summary = worker.run_if_pending(cancel_event=stop)
    except RecordStoreUnavailable:
        LOGGER.exception("Record store unavailable; checkpoint left unadvanced")
        return 1
    if summary is None:
        return 0
    LOGGER.info(
        "Enrichment run %s status=%s polled=%d enriched=%d duplicates=%d unparsed=%d failed=%d quarantined=%d offset=%s->%s",
        summary.run_id,
        summary.status,
        summary.polled,
        summary.enriched,
        summary.duplicates,
        summary.unparsed,
        summary.failed,
        summary.quarantined,
        summary.checkpoint_before,
        summary.checkpoint_after,
    )
    return 0


def main() -> int:
    """Run enrichment once, or keep polling when ``LOSTFOUND_ENRICH_WATCH`` is set."""

    _configure_logging()
    settings = get_settings()
    watch = bool(_env_flag("LOSTFOUND_ENRICH_WATCH"))

    try:
        worker = build_enrichment_worker(settings=settings)
    except Exception:
        LOGGER.exception("Failed to initialise enrichment worker")
        return 1

    stop = threading.Event()
    _install_signal_handlers(stop)
    if not watch:
        return run_once(worker, stop)

    interval = max(1, int(settings.enrichment.poll_interval_seconds))
    LOGGER.info("Watching change log every %ss for consumer=%s", interval, worker.consumer)
    exit_code = 0
    while not stop.is_set():
        exit_code = run_once(worker, stop)
        stop.wait(interval)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

"""Job entrypoint loading found-item JSON drops into ``found_items``."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Iterator, List

from lostfound.services.factories import build_found_item_store
from lostfound.settings import get_settings

LOGGER = logging.getLogger("lostfound.worker.jobs.ingest")


def _configure_logging() -> None:
    level_name = os.getenv("LOSTFOUND_RUNTIME__LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _load_records(path: Path) -> Iterator[dict]:
    """Yield records from a JSON object, a JSON array, or JSON lines."""

    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        for line_no, raw in enumerate(text.splitlines(), start=1):
            raw = raw.strip()
            if not raw:
                continue
            try:
                yield json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ValueError(f"{path}: failed to parse JSON on line {line_no}: {exc}") from exc
        return
    if isinstance(payload, list):
        yield from (record for record in payload if isinstance(record, dict))
    elif isinstance(payload, dict):
        yield payload
    else:
        raise ValueError(f"{path}: expected a JSON object or array")


def discover_drop_files(source_dir: Path, area: str) -> List[Path]:
    """Return ``<source_dir>/<area>/json/*.json`` sorted by name."""

    drop_dir = source_dir / area / "json"
    if not drop_dir.is_dir():
        return []
    return sorted(drop_dir.glob("*.json"))


def main() -> int:
    """Load every drop file; already-known filenames are skipped."""

    _configure_logging()
    settings = get_settings()
    files = discover_drop_files(Path(settings.ingestion.source_dir), settings.ingestion.area)
    if not files:
        LOGGER.info("No drop files under %s/%s/json; exiting", settings.ingestion.source_dir, settings.ingestion.area)
        return 0

    try:
        store = build_found_item_store()
    except Exception:
        LOGGER.exception("Failed to initialise found item store")
        return 1

    inserted = skipped = rejected = 0
    failures = 0
    for path in files:
        try:
            result = store.bulk_load(_load_records(path))
        except Exception:
            failures += 1
            LOGGER.exception("Failed to load drop file %s", path)
            continue
        inserted += result.inserted
        skipped += result.skipped
        rejected += result.rejected
        for error in result.errors:
            LOGGER.warning("%s: %s", path.name, error)

    LOGGER.info(
        "Ingest complete: files=%d inserted=%d skipped=%d rejected=%d failures=%d",
        len(files),
        inserted,
        skipped,
        rejected,
        failures,
    )
    return 0 if failures == 0 else 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

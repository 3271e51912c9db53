"""Job entrypoint exporting matches for every outstanding claim as JSON lines."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import IO

from lostfound.services.factories import build_matching_engine
from lostfound.settings import get_settings

LOGGER = logging.getLogger("lostfound.worker.jobs.match")


def _configure_logging() -> None:
    level_name = os.getenv("LOSTFOUND_RUNTIME__LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def export_matches(engine, handle: IO[str], *, page_size: int = 500) -> int:
    """Write every match to ``handle`` page by page and return the row count."""

    written = 0
    offset = 0
    while True:
        page = engine.match_all(limit=page_size, offset=offset)
        for match in page:
            handle.write(json.dumps(match.to_dict()) + "\n")
        written += len(page)
        if len(page) < page_size:
            return written
        offset += page_size


def main() -> int:
    _configure_logging()
    settings = get_settings()
    output = os.getenv("LOSTFOUND_MATCH_OUTPUT")

    try:
        engine = build_matching_engine(settings=settings)
    except Exception:
        LOGGER.exception("Failed to initialise matching engine")
        return 1

    try:
        if output:
            path = Path(output)
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                written = export_matches(engine, handle)
        else:
            written = export_matches(engine, sys.stdout)
    except Exception:
        LOGGER.exception("Match export failed")
        return 1

    LOGGER.info("Exported %d match row(s)%s", written, f" to {output}" if output else "")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

"""Cache cleaner CLI for stale on-disk relay temporaries."""

from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional

from canvasproxy.workflows.temporary import TEMP_PREFIX

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = 300


def clean_stale_files(
    directory: Path,
    max_age: float = DEFAULT_MAX_AGE,
    *,
    now: Optional[float] = None,
    dry_run: bool = False,
) -> List[Dict[str, str]]:
    """Remove ``~``-prefixed files older than ``max_age`` seconds."""

    if not directory.is_dir():
        return []
    now = time.time() if now is None else now
    results: List[Dict[str, str]] = []

    for path in sorted(directory.iterdir()):
        if not path.name.startswith(TEMP_PREFIX) or not path.is_file():
            continue
        age = now - path.stat().st_mtime
        if age <= max_age:
            continue
        if dry_run:
            logger.info("dry-run: would remove %s (%.0fs old)", path, age)
            results.append({"path": str(path), "age": f"{age:.0f}", "status": "skipped"})
            continue
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        logger.info("removed %s (%.0fs old)", path, age)
        results.append({"path": str(path), "age": f"{age:.0f}", "status": "removed"})
    return results


def main() -> None:
    parser = argparse.ArgumentParser(description="Remove stale canvasproxy temporaries")
    parser.add_argument("directory", type=Path, help="Directory used as the on-disk temporary location")
    parser.add_argument(
        "--max-age",
        type=float,
        default=DEFAULT_MAX_AGE,
        help=f"Remove files older than this many seconds (default: {DEFAULT_MAX_AGE})",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print actions without deleting")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    clean_stale_files(args.directory, args.max_age, dry_run=args.dry_run)


if __name__ == "__main__":
    main()

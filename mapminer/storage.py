"""
Crash-safe persistence of per-term artifacts.

Every file is written to a temporary sibling, fsynced and renamed over the
target, so readers only ever see the previous version or the complete new one.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Union

from mapminer.errors import PersistenceError
from mapminer.utils import sanitize_term

logger = logging.getLogger(__name__)


def atomic_write_json(path: Union[str, Path], data: Any):
    """
    Atomically write JSON data to ``path``.

    Raises:
        PersistenceError: if any step fails (the temp file is removed)
    """
    target = Path(path)
    temp_path = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
        )
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, target)
        temp_path = None
    except (OSError, TypeError, ValueError) as e:
        raise PersistenceError(target, e) from e
    finally:
        if temp_path and os.path.exists(temp_path):
            try:
                os.unlink(temp_path)
            except OSError as cleanup_error:
                logger.debug(f"Could not remove temp file {temp_path}: {cleanup_error}")


class ResultStore:
    """Writes one results file and one status file per term."""

    def __init__(self, output_dir: str = "results"):
        self.output_dir = Path(output_dir)

    def results_path(self, term: str) -> Path:
        return self.output_dir / f"{sanitize_term(term)}.json"

    def status_path(self, term: str) -> Path:
        return self.output_dir / f"{sanitize_term(term)}_urls.json"

    def save_results(self, term: str, records: List[Dict[str, Any]]) -> Path:
        """
        Persist the final result array for a term.

        Args:
            term: Search term
            records: Extracted records

        Returns:
            Path of the written file
        """
        path = self.results_path(term)
        atomic_write_json(path, records)
        logger.info(f"Saved {len(records)} places for \"{term}\" to {path}")
        return path

    def save_statuses(self, term: str, entries: List[Dict[str, Any]]) -> Path:
        path = self.status_path(term)
        atomic_write_json(path, entries)
        logger.info(f"Saved {len(entries)} URL statuses for \"{term}\" to {path}")
        return path

    def load_results(self, term: str) -> List[Dict[str, Any]]:
        """Read back a term's results, empty list if none were written."""
        path = self.results_path(term)
        if not path.exists():
            return []
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

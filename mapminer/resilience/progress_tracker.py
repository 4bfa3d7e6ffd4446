"""
Progress tracking for resumable extractions.
Persists the set of completed terms to disk for recovery after a crash.
"""

import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Set

from mapminer.models import ProgressCheckpoint
from mapminer.storage import atomic_write_json

logger = logging.getLogger(__name__)


class ProgressTracker:
    """Manages the resume checkpoint."""

    def __init__(self, state_dir: str = "scraper_state", enabled: bool = True):
        """
        Initialize tracker with state directory.

        Args:
            state_dir: Directory to store state files
            enabled: When False nothing is read or written
        """
        self.state_dir = Path(state_dir)
        self.state_file = self.state_dir / "progress.json"
        self.enabled = enabled
        self._state: Optional[ProgressCheckpoint] = None

    def load_state(self) -> ProgressCheckpoint:
        """
        Load existing checkpoint from disk.

        Returns:
            The saved checkpoint, or an empty one if missing, disabled or corrupted
        """
        self._state = ProgressCheckpoint()
        if not self.enabled or not self.state_file.exists():
            return self._state

        try:
            with open(self.state_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self._state = ProgressCheckpoint.from_dict(data)
            logger.info(f"Resuming from previous session ({len(self._state.completed_terms)} completed)")
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Progress file corrupted: {e}")
            self._backup_corrupted()
            self._state = ProgressCheckpoint()
        return self._state

    def _backup_corrupted(self):
        """Create backup of corrupted state file."""
        if self.state_file.exists():
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = self.state_dir / f"progress.corrupted.{timestamp}.json"
            try:
                shutil.move(str(self.state_file), str(backup_path))
                logger.warning(f"Backed up corrupted state to {backup_path}")
            except OSError as e:
                logger.error(f"Failed to backup corrupted state: {e}")

    def save_state(self, state: ProgressCheckpoint):
        """
        Atomically save checkpoint to disk.

        Args:
            state: ProgressCheckpoint to persist
        """
        self._state = state
        state.last_updated = datetime.now().isoformat()
        if not self.enabled:
            return
        atomic_write_json(self.state_file, state.to_dict())

    def mark_completed(self, terms: Iterable[str]):
        """
        Mark terms as completed and persist immediately.

        Args:
            terms: Terms whose output was written
        """
        if self._state is None:
            self.load_state()

        changed = False
        for term in terms:
            if term not in self._state.completed_terms:
                self._state.completed_terms.append(term)
                changed = True
        if changed:
            self.save_state(self._state)

    def completed_terms(self) -> Set[str]:
        if self._state is None:
            return set()
        return set(self._state.completed_terms)

    def pending(self, terms: List[str]) -> List[str]:
        """Filter ``terms`` down to the ones not completed yet, order kept."""
        done = self.completed_terms()
        return [t for t in terms if t not in done]

    def clear(self):
        """Delete the resume file after a fully successful run."""
        self._state = None
        if self.state_file.exists():
            try:
                self.state_file.unlink()
                logger.info("Progress file cleared")
            except OSError as e:
                logger.error(f"Failed to clear progress: {e}")

    def get_stats(self) -> dict:
        return {
            'completed': len(self.completed_terms()),
            'state_file': str(self.state_file),
            'enabled': self.enabled,
        }

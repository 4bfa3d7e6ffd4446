"""
Data models for the extraction pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

NOT_FOUND_MARKERS = ('Not found', '(Not found reviews)')


@dataclass(frozen=True)
class WorkItem:
    """One discovered place link, tagged with the term that found it."""
    url: str
    term: str


class OutcomeStatus(str, Enum):
    SUCCESS = "SUCCESS"
    SKIPPED_INVALID_URL = "SKIPPED_INVALID_URL"
    SKIPPED_NO_NAME = "SKIPPED_NO_NAME"
    SKIPPED_LOW_QUALITY = "SKIPPED_LOW_QUALITY"
    FAILED = "FAILED"
    UNRESOLVED = "UNRESOLVED"


@dataclass(frozen=True)
class ExtractionOutcome:
    """Final resolution of a single WorkItem."""
    status: OutcomeStatus
    record: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    missing: Optional[int] = None

    @classmethod
    def success(cls, record: Dict[str, Any]) -> "ExtractionOutcome":
        return cls(OutcomeStatus.SUCCESS, record=record)

    @classmethod
    def skipped_invalid(cls) -> "ExtractionOutcome":
        return cls(OutcomeStatus.SKIPPED_INVALID_URL)

    @classmethod
    def skipped_no_identity(cls) -> "ExtractionOutcome":
        return cls(OutcomeStatus.SKIPPED_NO_NAME)

    @classmethod
    def skipped_low_quality(cls, missing: int) -> "ExtractionOutcome":
        return cls(OutcomeStatus.SKIPPED_LOW_QUALITY, missing=missing)

    @classmethod
    def failed(cls, reason: str) -> "ExtractionOutcome":
        return cls(OutcomeStatus.FAILED, reason=reason)

    def to_status_entry(self, url: str) -> Dict[str, Any]:
        """Serialize as one entry of the per-term status file."""
        entry: Dict[str, Any] = {'url': url, 'status': self.status.value}
        if self.reason:
            entry['reason'] = self.reason
        if self.missing is not None:
            entry['missing'] = self.missing
        return entry


class TermPhase(str, Enum):
    QUEUED = "queued"
    DISCOVERING = "discovering"
    EXTRACTING = "extracting"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass
class TermState:
    """
    Per-term bookkeeping owned by the scheduler.

    The status log is write-once per URL and the results list only grows
    until the term is persisted.
    """
    term: str
    phase: TermPhase = TermPhase.QUEUED
    links: List[str] = field(default_factory=list)
    status_log: Dict[str, ExtractionOutcome] = field(default_factory=dict)
    results: List[Dict[str, Any]] = field(default_factory=list)
    completed: int = 0
    error: Optional[str] = None

    @property
    def links_found(self) -> int:
        return len(self.links)

    def add_links(self, urls: List[str]):
        self.links.extend(urls)

    def record(self, url: str, outcome: ExtractionOutcome) -> bool:
        """
        Record the outcome for a URL.

        Returns:
            False if the URL already had an outcome (the new one is dropped)
        """
        if url in self.status_log:
            logger.warning(f"Ignoring second outcome for {url} ({outcome.status.value})")
            return False
        self.status_log[url] = outcome
        self.completed += 1
        if outcome.status is OutcomeStatus.SUCCESS and outcome.record is not None:
            self.results.append(outcome.record)
        return True

    def status_entries(self) -> List[Dict[str, Any]]:
        """Status entries for every discovered link, unresolved ones included."""
        entries = []
        seen = set()
        for url in self.links:
            if url in seen:
                continue
            seen.add(url)
            outcome = self.status_log.get(url, ExtractionOutcome(OutcomeStatus.UNRESOLVED))
            entries.append(outcome.to_status_entry(url))
        for url, outcome in self.status_log.items():
            if url not in seen:
                entries.append(outcome.to_status_entry(url))
        return entries


@dataclass
class ProgressCheckpoint:
    """Persistent resume state: which terms are fully done."""
    completed_terms: List[str] = field(default_factory=list)
    last_updated: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'completedKeywords': list(self.completed_terms),
            'lastUpdated': self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressCheckpoint":
        completed = data.get('completedKeywords', [])
        if not isinstance(completed, list):
            raise TypeError("completedKeywords must be a list")
        return cls(
            completed_terms=[str(t) for t in completed],
            last_updated=data.get('lastUpdated', ''),
        )


@dataclass
class DetectionState:
    count: int = 0
    last_seen: Optional[datetime] = None


@dataclass
class TermStartEvent:
    term: str
    index: int
    total: int


@dataclass
class ProgressEvent:
    term: str
    phase: str
    fraction: float
    links_found: int = 0
    extracted_count: int = 0


@dataclass
class TermCompleteEvent:
    term: str
    count: int
    results: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class ExtractionResult:
    """Result of an extraction run."""
    success: bool
    started_at: str
    completed_at: str
    total_terms: int
    completed_terms: int
    failed_terms: int
    resumed_terms: int
    total_places: int
    detections: int = 0
    restarts: int = 0
    cancelled: bool = False
    failed: List[dict] = field(default_factory=list)
    duration_seconds: float = 0.0
    places_per_hour: float = 0.0

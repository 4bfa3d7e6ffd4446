"""
Exception taxonomy for the extraction pipeline.
"""


class MapMinerError(Exception):
    """Base class for all pipeline errors."""


class TransientItemError(MapMinerError):
    """Network or timeout problem on a single item. Retried with backoff."""


class DetectionError(MapMinerError):
    """
    Automation challenge detected on a page.

    Never retried: it escalates to the restart controller so the whole
    worker browser can be relaunched.
    """

    def __init__(self, url: str = "", message: str = "bot detection"):
        self.url = url
        super().__init__(f"{message}: {url}" if url else message)


class DiscoveryError(MapMinerError):
    """A discovery step failed. Logged; the scroll loop keeps going."""


class BrowserDisconnectedError(MapMinerError):
    """A browser process went away. Fatal to the current batch and run."""


class CancellationError(MapMinerError):
    """Raised cooperatively when the cancellation signal is observed."""


class PersistenceError(MapMinerError):
    """Writing an artifact to disk failed."""

    def __init__(self, path, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to write {path}: {cause}")

import logging
import threading
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


# Sentinel returned by FragmentCache.get when a path has not been cached
MISSING = _Missing()


class FragmentCache:
    """
    Parsed schema fragments keyed by absolute file path.

    A cache belongs to one compilation run: the compiler calls init before scanning and
    clear when done, so a later compilation never sees stale content. Access is
    serialized with a lock since directory scans run on worker threads. Two threads
    loading the same path for the first time may both parse it; the last put wins,
    which is harmless because file content does not change during a run.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fragments: dict[Path, Any] = {}
        self._initialized = False

    def init(self) -> None:
        with self._lock:
            if self._initialized:
                logger.info(
                    "Fragment cache already initialized; clearing %d cached"
                    " fragment(s)",
                    len(self._fragments),
                )
            self._fragments.clear()
            self._initialized = True

    def get(self, path: Path) -> Any:
        with self._lock:
            return self._fragments.get(path, MISSING)

    def put(self, path: Path, fragment: Any) -> Any:
        with self._lock:
            self._fragments[path] = fragment
        return fragment

    def clear(self) -> None:
        with self._lock:
            self._fragments.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._fragments)

    def __contains__(self, path: Path) -> bool:
        with self._lock:
            return path in self._fragments

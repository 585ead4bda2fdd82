import logging
import threading

from ocsf_schema_engine.exceptions import UnresolvedReferenceError

logger = logging.getLogger(__name__)


class Diagnostics:
    """
    Counts and logs the problems tolerated during one compilation. Scans run on worker
    threads, so the counters are guarded by a lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.error_count: int = 0
        self.warning_count: int = 0
        self.unresolved: list[UnresolvedReferenceError] = []

    def warning(self, message: str, *args, **kwargs) -> None:
        with self._lock:
            self.warning_count += 1
        logger.warning(message, *args, **kwargs)

    def error(self, message: str, *args, **kwargs) -> None:
        with self._lock:
            self.error_count += 1
        logger.error(message, *args, **kwargs)

    def unresolved_reference(self, error: UnresolvedReferenceError) -> None:
        with self._lock:
            self.error_count += 1
            self.unresolved.append(error)
        logger.error("%s", error)

    def log_summary(self) -> None:
        if self.error_count and self.warning_count:
            logger.error(
                "Compile completed with %d error(s) and %d warning(s)",
                self.error_count,
                self.warning_count,
            )
        elif self.error_count:
            logger.error(
                "Compile completed with %d (tolerated) error(s)", self.error_count
            )
        elif self.warning_count:
            logger.warning("Compile completed with %d warning(s)", self.warning_count)
        else:
            logger.info("Compile completed successfully")

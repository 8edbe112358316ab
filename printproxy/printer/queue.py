"""Per-printer job serialization with an end-to-end deadline."""
import logging
import threading
import time
from typing import Callable, Dict, Optional

from printproxy.errors import PrintTimeout
from printproxy.models import JobState, PrintJob, PrintOutcome, utcnow

logger = logging.getLogger(__name__)

JobAction = Callable[[float], object]


class PrintQueue:
    """Runs at most one job per printer at a time.

    Each printer id gets a lock, created on first use and kept for the life
    of the queue. A job waits for its printer's lock at most ``deadline``
    seconds; time spent waiting is taken out of the budget the job itself
    gets. Every fault is turned into a PrintOutcome.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._counter_lock = threading.Lock()
        self._processed = 0
        self._failed = 0
        self._timed_out = 0

    def lock_for(self, printer_id: str) -> threading.Lock:
        """Get or create the lock for a printer."""
        with self._locks_guard:
            lock = self._locks.get(printer_id)
            if lock is None:
                lock = self._locks[printer_id] = threading.Lock()
            return lock

    def execute(self, printer_id: str, job_action: JobAction, deadline: float,
                printer_name: Optional[str] = None) -> PrintOutcome:
        """Run ``job_action`` exclusively for ``printer_id`` within ``deadline`` seconds.

        ``job_action`` receives the absolute monotonic deadline it must finish
        by and should raise on failure. Returns a Success, Failure or Timeout
        outcome; never raises.
        """
        job = PrintJob(printer_id=printer_id, printer_name=printer_name or printer_id)
        started = self._clock()
        deadline_at = started + deadline
        logger.info("Print job %s queued for printer %s", job.job_id, job.printer_name)

        lock = self.lock_for(printer_id)
        if not lock.acquire(timeout=max(0.0, deadline)):
            logger.warning("Print job %s timed out waiting for printer %s", job.job_id, job.printer_name)
            return self._finish(job, PrintOutcome.timeout(
                "Printer is busy. Please try again later.", "Timeout waiting for printer"))

        try:
            job.started_at = utcnow()
            logger.debug("Print job %s started on printer %s after waiting %.0fms",
                         job.job_id, job.printer_name, (self._clock() - started) * 1000)
            try:
                if self._clock() >= deadline_at:
                    raise PrintTimeout("No time left after waiting for printer")
                job_action(deadline_at)
            except PrintTimeout as e:
                logger.warning("Print job %s timed out during execution on %s: %s",
                               job.job_id, job.printer_name, e)
                return self._finish(job, PrintOutcome.timeout(
                    "Print operation timed out", str(e) or "Operation exceeded timeout limit"))
            except Exception as e:
                logger.error("Print job %s failed with exception on %s: %s",
                             job.job_id, job.printer_name, e, exc_info=e)
                return self._finish(job, PrintOutcome.fail("Print operation failed", str(e)))

            return self._finish(job, PrintOutcome.ok("Print successful", job.printer_name))
        finally:
            lock.release()

    def _finish(self, job: PrintJob, outcome: PrintOutcome) -> PrintOutcome:
        job.completed_at = utcnow()
        job.outcome = outcome
        with self._counter_lock:
            if outcome.state is JobState.SUCCESS:
                self._processed += 1
            elif outcome.state is JobState.TIMEOUT:
                self._timed_out += 1
            else:
                self._failed += 1
        if outcome.success:
            logger.info("Print job %s completed successfully on %s in %.0fms",
                        job.job_id, job.printer_name, job.duration_ms or 0)
        return outcome

    @property
    def total_processed(self) -> int:
        return self._processed

    @property
    def total_failed(self) -> int:
        return self._failed

    @property
    def total_timed_out(self) -> int:
        return self._timed_out

    def stats(self) -> dict:
        with self._counter_lock:
            return {
                "processed": self._processed,
                "failed": self._failed,
                "timedOut": self._timed_out,
            }

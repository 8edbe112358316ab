"""Printer registry: cached discovery snapshot, refresh scheduling and lookup."""
import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from printproxy.errors import PrinterNotFound
from printproxy.models import PrinterDescriptor, PrinterStatus, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """Immutable list of descriptors plus the monotonic time it was taken."""
    printers: Tuple[PrinterDescriptor, ...] = ()
    refreshed_at: float = 0.0

    def __len__(self) -> int:
        return len(self.printers)


def resolve_printer(printers: Sequence[PrinterDescriptor],
                    identifier: Optional[str]) -> PrinterDescriptor:
    """Find the printer an identifier refers to.

    Tried in order, first hit wins, all case-insensitive: exact id, exact
    name, exact address or bare IP, then a substring of id or name. An
    empty identifier selects the first online printer.
    """
    if not identifier or not identifier.strip():
        for printer in printers:
            if printer.status is PrinterStatus.ONLINE:
                return printer
        raise PrinterNotFound("No available printers found")

    wanted = identifier.strip().lower()
    matchers = (
        lambda p: p.id.lower() == wanted,
        lambda p: p.name.lower() == wanted,
        lambda p: p.address.lower() == wanted or (p.ip_address or "").lower() == wanted,
        lambda p: wanted in p.id.lower() or wanted in p.name.lower(),
    )
    for matches in matchers:
        for printer in printers:
            if matches(printer):
                return printer
    raise PrinterNotFound(f"Printer not found: {identifier}")


class RefreshScheduler:
    """Background thread calling a refresh function every ``interval`` seconds.

    The first call happens immediately on start. ``stop()`` wakes the thread
    and waits for it to exit.
    """

    def __init__(self, interval: float, action: Callable[[], object], name: str = "printer-refresh"):
        self.interval = interval
        self.action = action
        self.name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.action()
            except Exception:
                logger.exception("Scheduled printer refresh failed")
            self._stop.wait(self.interval)


class PrinterRegistry:
    """Owns the current snapshot and keeps it fresh.

    Readers always see a complete snapshot: refreshes build a new one and
    swap the reference. Only one refresh runs at a time; callers arriving
    while one is in flight get the existing snapshot instead of waiting.
    """

    def __init__(self, discover: Callable[[], List[PrinterDescriptor]],
                 cache_ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self._discover = discover
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._snapshot = Snapshot()
        self._refresh_lock = threading.Lock()
        self._update_lock = threading.Lock()
        self._scheduler = RefreshScheduler(cache_ttl, self.refresh)

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def is_stale(self) -> bool:
        snapshot = self._snapshot
        return snapshot.refreshed_at == 0.0 or self._clock() - snapshot.refreshed_at >= self.cache_ttl

    def get_printers(self) -> Tuple[PrinterDescriptor, ...]:
        """Current printers, refreshing first when the cache has expired."""
        if self.is_stale():
            return self.refresh().printers
        return self._snapshot.printers

    def refresh(self) -> Snapshot:
        """Re-run discovery and install the result.

        Returns the existing snapshot immediately if a refresh is already in
        progress. A failed discovery keeps the previous snapshot.
        """
        if not self._refresh_lock.acquire(blocking=False):
            logger.debug("Skipping refresh - already in progress")
            return self._snapshot
        try:
            logger.debug("Refreshing printer list...")
            try:
                printers = tuple(self._discover())
            except Exception:
                logger.exception("Error refreshing printer list")
                return self._snapshot
            with self._update_lock:
                refreshed_at = max(self._clock(), self._snapshot.refreshed_at)
                self._snapshot = Snapshot(printers, refreshed_at)
            logger.info("Printer refresh complete. Found %d printers (%d online)",
                        len(printers), sum(1 for p in printers if p.is_online))
            return self._snapshot
        finally:
            self._refresh_lock.release()

    def get_printer(self, identifier: Optional[str]) -> PrinterDescriptor:
        """Resolve an identifier against the current printers."""
        return resolve_printer(self.get_printers(), identifier)

    def record_result(self, printer_id: str, error: Optional[str] = None) -> None:
        """Note the outcome of a send: last_seen on success, last_error on failure."""
        with self._update_lock:
            snapshot = self._snapshot
            printers = []
            changed = False
            for printer in snapshot.printers:
                if printer.id == printer_id:
                    if error is None:
                        printer = dataclasses.replace(printer, last_seen=utcnow(), last_error=None)
                    else:
                        printer = dataclasses.replace(printer, last_error=error)
                    changed = True
                printers.append(printer)
            if changed:
                self._snapshot = Snapshot(tuple(printers), snapshot.refreshed_at)

    def available_count(self) -> int:
        return sum(1 for printer in self._snapshot.printers if printer.is_online)

    # Background refresh

    def start(self) -> None:
        """Start periodic refreshing; the first refresh runs right away."""
        logger.info("Printer registry started with %ss refresh interval", self.cache_ttl)
        self._scheduler.start()

    def stop(self) -> None:
        self._scheduler.stop()

    @property
    def scheduler_running(self) -> bool:
        return self._scheduler.running

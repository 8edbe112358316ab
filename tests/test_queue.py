"""Tests for per-printer serialization and job deadlines."""
import threading
import time

from printproxy.errors import PrintTimeout, TransportFailure
from printproxy.models import JobState
from printproxy.printer.queue import PrintQueue


def test_success_outcome():
    queue = PrintQueue()
    outcome = queue.execute("lan_1", lambda deadline: None, 1.0, printer_name="Kitchen")
    assert outcome.state is JobState.SUCCESS
    assert outcome.message == "Print successful"
    assert outcome.printer_used == "Kitchen"


def test_action_receives_absolute_deadline():
    seen = []
    queue = PrintQueue(clock=lambda: 1000.0)
    queue.execute("lan_1", seen.append, 5.0)
    assert seen == [1005.0]


def test_same_printer_is_serialized():
    queue = PrintQueue()
    active = []
    overlaps = []
    guard = threading.Lock()

    def action(deadline):
        with guard:
            active.append(1)
            if len(active) > 1:
                overlaps.append(1)
        time.sleep(0.05)
        with guard:
            active.pop()

    threads = [threading.Thread(target=queue.execute, args=("lan_1", action, 5.0)) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)
    assert overlaps == []
    assert queue.total_processed == 4


def test_different_printers_run_in_parallel():
    queue = PrintQueue()
    barrier = threading.Barrier(2, timeout=2)
    outcomes = {}

    def run(printer_id):
        outcomes[printer_id] = queue.execute(printer_id, lambda deadline: barrier.wait(), 5.0)

    threads = [threading.Thread(target=run, args=(pid,)) for pid in ("lan_1", "usb_2")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)
    assert all(outcome.success for outcome in outcomes.values())


def test_busy_printer_times_out_without_running_action():
    queue = PrintQueue()
    acquired = threading.Event()
    second_ran = []

    def first(deadline):
        acquired.set()
        time.sleep(0.3)

    worker = threading.Thread(target=queue.execute, args=("lan_1", first, 0.3))
    worker.start()
    assert acquired.wait(5)

    outcome = queue.execute("lan_1", second_ran.append, 0.1)
    worker.join(5)

    assert outcome.state is JobState.TIMEOUT
    assert outcome.message == "Printer is busy. Please try again later."
    assert outcome.error == "Timeout waiting for printer"
    assert second_ran == []
    assert queue.total_timed_out == 1


def test_waiting_time_counts_against_budget():
    queue = PrintQueue()
    acquired = threading.Event()
    budgets = []

    def first(deadline):
        acquired.set()
        time.sleep(0.2)

    worker = threading.Thread(target=queue.execute, args=("lan_1", first, 1.0))
    worker.start()
    assert acquired.wait(5)
    queue.execute("lan_1", lambda deadline: budgets.append(deadline - time.monotonic()), 1.0)
    worker.join(5)

    assert budgets and budgets[0] < 0.9


def test_action_timeout_becomes_timeout_outcome():
    def slow(deadline):
        raise PrintTimeout("Deadline exceeded")

    outcome = PrintQueue().execute("lan_1", slow, 1.0)
    assert outcome.state is JobState.TIMEOUT
    assert outcome.message == "Print operation timed out"
    assert outcome.error == "Deadline exceeded"


def test_action_error_becomes_failure_outcome():
    def broken(deadline):
        raise TransportFailure("Connection refused")

    queue = PrintQueue()
    outcome = queue.execute("lan_1", broken, 1.0)
    assert outcome.state is JobState.FAILURE
    assert outcome.message == "Print operation failed"
    assert outcome.error == "Connection refused"
    assert queue.stats() == {"processed": 0, "failed": 1, "timedOut": 0}


def test_lock_released_after_failure():
    queue = PrintQueue()
    queue.execute("lan_1", lambda deadline: 1 / 0, 1.0)
    assert queue.execute("lan_1", lambda deadline: None, 0.1).success
    assert not queue.lock_for("lan_1").locked()


def test_lock_is_created_once_per_printer():
    queue = PrintQueue()
    assert queue.lock_for("lan_1") is queue.lock_for("lan_1")
    assert queue.lock_for("lan_1") is not queue.lock_for("usb_2")

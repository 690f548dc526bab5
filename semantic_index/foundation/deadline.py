"""Run blocking third-party calls with a wall-clock budget."""
from __future__ import annotations

from concurrent.futures import TimeoutError as FutureTimeout
import threading
from typing import Any, Callable

__all__ = ["FutureTimeout", "call_with_deadline"]


def call_with_deadline(
    func: Callable[..., Any], *args: Any, timeout: float, name: str = "deadline-call"
) -> Any:
    """Return ``func(*args)`` or raise ``FutureTimeout`` after ``timeout`` seconds.

    Each call gets its own daemon thread and the budget starts once that
    thread is running. A call that overruns is abandoned: its thread keeps
    running on its own and never holds up later calls.
    """

    outcome: dict[str, Any] = {}
    started = threading.Event()

    def target() -> None:
        started.set()
        try:
            outcome["value"] = func(*args)
        except BaseException as exc:  # re-raised on the caller's thread
            outcome["error"] = exc

    worker = threading.Thread(target=target, name=name, daemon=True)
    worker.start()
    started.wait()
    worker.join(timeout)
    if worker.is_alive():
        raise FutureTimeout(f"{name} did not finish within {timeout:g}s")
    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("value")

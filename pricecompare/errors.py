"""Exception types raised by the pipeline."""


class PriceCompareError(Exception):
    """Base class for application errors."""


class IngestionError(PriceCompareError):
    """Price observations could not be read or stored."""


class RunAlreadyActiveError(PriceCompareError):
    """A scheduler run is already in progress."""

    def __init__(self, lock_info: dict | None = None):
        self.lock_info = lock_info or {}
        run_id = self.lock_info.get("run_id")
        super().__init__(
            f"Scheduler run already active (run_id: {run_id})" if run_id
            else "Scheduler run already active"
        )


class TaskTimeoutError(PriceCompareError):
    """An orchestrator task exceeded its time budget."""

    def __init__(self, task_name: str, timeout_seconds: float):
        self.task_name = task_name
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Task '{task_name}' timed out after {timeout_seconds:.0f} seconds")


class DealUpdateError(PriceCompareError):
    """Featured deals could not be refreshed for any scope."""


class RunAbortedError(PriceCompareError):
    """A run lost the run lock or was closed by the watchdog while executing."""

    def __init__(self, run_id: int, reason: str):
        self.run_id = run_id
        self.reason = reason
        super().__init__(f"Run {run_id} aborted: {reason}")

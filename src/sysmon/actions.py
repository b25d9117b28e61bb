"""Process termination action."""

from dataclasses import dataclass

import psutil
import structlog

log = structlog.get_logger()


@dataclass(slots=True, frozen=True)
class TerminationResult:
    """Outcome of a termination request."""

    pid: int
    success: bool
    message: str


def terminate_process(pid: int) -> TerminationResult:
    """Send SIGTERM (TerminateProcess on Windows) to ``pid``.

    Failures are returned, never raised. No permission pre-check, no retry.
    """
    try:
        psutil.Process(pid).terminate()
    except psutil.NoSuchProcess:
        result = TerminationResult(pid, False, f"No such process: {pid}")
    except psutil.AccessDenied:
        result = TerminationResult(pid, False, f"Permission denied: {pid}")
    except (OSError, TypeError, ValueError, psutil.Error) as e:
        result = TerminationResult(pid, False, f"Failed to terminate {pid}: {e}")
    else:
        result = TerminationResult(pid, True, f"Sent SIGTERM to {pid}")

    log.info("process_terminate_requested", pid=pid, success=result.success, message=result.message)
    return result

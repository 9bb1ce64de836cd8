"""Exception taxonomy for the submission pipeline."""


class PlatformError(Exception):
    """Base class for errors raised by the platform."""


class AdmissionError(PlatformError):
    """Raised when a submitted package fails format or safety validation.

    Admission errors are caused by the submitter and never touch the
    submission store or the job queue.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ExecutionTimeout(PlatformError):
    """Raised when a sandboxed run exceeds its deadline."""


class ExecutionCrash(PlatformError):
    """Raised when a sandbox dies without a structured response."""


class AnalysisReportedError(PlatformError):
    """The analysis itself declared the package ungradable."""


class InvalidTransition(PlatformError):
    """Raised when a record is asked to move along an edge that does not exist."""

    def __init__(self, content_hash: str, current: str, target: str) -> None:
        super().__init__(
            f"Invalid transition for {content_hash[:12]}: {current} -> {target}"
        )
        self.content_hash = content_hash
        self.current = current
        self.target = target


class RecordNotFound(PlatformError, KeyError):
    """Raised when a hash has no submission record."""


class LedgerBusy(PlatformError):
    """Raised when the ledger lock could not be acquired in time."""

    status_code = 503

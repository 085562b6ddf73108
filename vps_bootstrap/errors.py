"""Exceptions raised by the swap subsystem."""


class SwapError(RuntimeError):
    """Raised when a swap operation cannot be completed."""


class MetricsUnavailable(SwapError):
    """Memory or swap figures could not be read from the kernel."""


class InvalidSwapRequest(SwapError):
    """The requested mode/size combination cannot be turned into a target."""


class InsufficientDiskSpace(SwapError):
    def __init__(self, path: str, required_mb: int, available_mb: int) -> None:
        super().__init__(
            f"Insufficient disk space for {path}. "
            f"Available: {available_mb}MB, Required: {required_mb}MB"
        )
        self.path = path
        self.required_mb = required_mb
        self.available_mb = available_mb


class SwapFileSizeMismatch(SwapError):
    def __init__(self, path: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Swap file {path} has {actual} bytes, expected {expected} bytes"
        )
        self.path = path
        self.expected = expected
        self.actual = actual


class SwapFileBusy(SwapError):
    """A file the tool wants to (re)create is currently an active swap area."""


class ActivationFailed(SwapError):
    pass


class RetireFailed(SwapError):
    pass


class EmergencyProvisionFailed(SwapError):
    pass


class SafetyAbort(SwapError):
    """Memory pressure is too high to touch swap right now."""


class MigrationLocked(SwapError):
    """Another swap migration holds the lock file."""


class InvalidTransition(SwapError):
    pass

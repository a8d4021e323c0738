class TabflowError(Exception):
    """Base exception for all tabflow errors."""


class SurfaceCreationError(TabflowError):
    """Raised when the tab creator cannot provide an execution surface for a run."""

    def __init__(self, target_url: str, cause: Exception | None = None):
        super().__init__(f"Failed to create execution surface for {target_url!r}: {cause}")
        self.target_url = target_url
        self.cause = cause


class StepTimeoutError(TabflowError):
    """Raised when a block dispatch does not settle within the step's timeout."""

    def __init__(self, timeout_ms: float):
        super().__init__("Step timeout")
        self.timeout_ms = timeout_ms


class ExpressionError(TabflowError):
    """Raised for expressions that cannot be parsed or evaluated."""

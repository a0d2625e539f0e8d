"""Exceptions raised while building state tables."""


class StateIOError(Exception):
    """Base class for disaggregation errors."""


class SchemaError(StateIOError):
    """Sets/elements catalog is inconsistent with itself or with the fact table."""

    def __init__(self, message, offending=None):
        self.offending = sorted(map(str, offending)) if offending is not None else []
        if self.offending:
            message = f"{message}: {', '.join(self.offending)}"
        super().__init__(message)


class EmptyJoinError(StateIOError):
    """A pipeline stage joined its inputs and got no rows back."""

    def __init__(self, stage, detail=""):
        self.stage = stage
        message = f"Stage '{stage}' produced an empty join"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class SolverConvergenceError(StateIOError):
    """The labor share solver did not reach an optimal point."""

    def __init__(self, termination, detail=""):
        self.termination = termination
        message = f"Labor share solve terminated with '{termination}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

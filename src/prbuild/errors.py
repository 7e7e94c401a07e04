"""Error taxonomy for prbuild runs.

Every fatal failure is a ``PipelineError`` subclass. The pipeline runner is
the only place that catches them and turns them into a run outcome.
``ReportingError`` is raised and caught inside the status reporter and never
leaves it.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for errors that abort a run."""

    step: str = "pipeline"

    def __init__(self, message: str, *, step: str | None = None):
        super().__init__(message)
        if step is not None:
            self.step = step


class ConfigError(PipelineError):
    """Config file missing or failing validation."""

    step = "config"


class ResolutionError(PipelineError):
    """A CheckoutPlan was built that violates the plan invariant.

    The resolver cannot produce one; this only fires when a plan is
    constructed by hand with inconsistent fields.
    """

    step = "resolve"


class CheckoutError(PipelineError):
    """Ref or PR does not exist, or the credential was rejected."""

    step = "checkout"


class ToolInvocationError(PipelineError):
    """An external tool exited non-zero, timed out, or is not installed."""

    step = "tool"

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        output: str = "",
        step: str | None = None,
    ):
        super().__init__(message, step=step)
        self.command = command or []
        self.returncode = returncode
        self.output = output


class ValidationError(PipelineError):
    """Build output directory missing or empty."""

    step = "validate"

    def __init__(self, message: str, *, entry_count: int = 0):
        super().__init__(message)
        self.entry_count = entry_count


class ReportingError(Exception):
    """Status reporting failed. Logged by the reporter, never propagated."""

"""Core data models for prbuild."""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from prbuild.errors import ResolutionError


# ── Trigger & Checkout ───────────────────────────────────────────────────────


class TriggerContext(BaseModel):
    """Snapshot of every signal that can pick what a run builds.

    Built once per run from the environment and job parameters, then never
    touched again. Trigger values are stored as given; trimming them is the
    resolver's job. ``default_branch`` is normalized here so a blank value
    falls back to ``main``.
    """

    model_config = ConfigDict(frozen=True)

    change_id: str | None = Field(default=None, description="CHANGE_ID from PR discovery")
    change_branch: str | None = Field(default=None, description="CHANGE_BRANCH")
    change_target: str | None = Field(default=None, description="CHANGE_TARGET (informational)")
    param_pr_number: str | None = Field(default=None, description="PR_NUMBER job parameter")
    param_branch_name: str | None = Field(default=None, description="BRANCH_NAME job parameter")
    env_branch_name: str | None = Field(default=None, description="BRANCH_NAME from environment")
    default_branch: str = "main"

    @field_validator("default_branch", mode="before")
    @classmethod
    def _validate_default_branch(cls, v: str | None) -> str:
        return (v or "").strip() or "main"


class CheckoutMode(str, enum.Enum):
    """How the source for a run is obtained."""

    AUTOMATED_PR = "automated_pr"
    MANUAL_PR = "manual_pr"
    MANUAL_BRANCH = "manual_branch"
    DEFAULT_BRANCH = "default_branch"


PR_MODES = frozenset({CheckoutMode.AUTOMATED_PR, CheckoutMode.MANUAL_PR})


class CheckoutPlan(BaseModel):
    """Resolved checkout strategy and identity for one run.

    The single input to checkout and to status reporting. ``pr_number`` is
    the correlation key status reporting uses.
    """

    model_config = ConfigDict(frozen=True)

    mode: CheckoutMode
    pr_number: str | None = None
    branch_ref: str | None = None
    source_refspec: str | None = None
    change_target: str | None = None

    @model_validator(mode="after")
    def _check_invariant(self) -> CheckoutPlan:
        is_pr = self.mode in PR_MODES
        if is_pr != bool(self.pr_number):
            raise ResolutionError(
                f"pr_number must be set iff mode is a PR mode (mode={self.mode.value}, "
                f"pr_number={self.pr_number!r})"
            )
        if (self.mode != CheckoutMode.MANUAL_PR) != bool(self.branch_ref):
            raise ResolutionError(
                f"branch_ref must be set iff mode is not manual_pr (mode={self.mode.value}, "
                f"branch_ref={self.branch_ref!r})"
            )
        if (self.mode == CheckoutMode.MANUAL_PR) != bool(self.source_refspec):
            raise ResolutionError(
                f"source_refspec must be set iff mode is manual_pr (mode={self.mode.value})"
            )
        return self

    @property
    def is_pull_request(self) -> bool:
        return self.mode in PR_MODES

    @property
    def correlation_key(self) -> str | None:
        return self.pr_number

    @property
    def local_ref(self) -> str:
        """Local branch the workspace ends up on after checkout."""
        if self.mode == CheckoutMode.MANUAL_PR:
            return f"PR-{self.pr_number}"
        return self.branch_ref or ""

    def change_env(self) -> dict[str, str]:
        """CHANGE_* variables for tool subprocesses.

        A manual PR run exports the same CHANGE_ID an automated PR run would
        have, so later steps cannot tell the two apart.
        """
        if not self.is_pull_request:
            return {}
        env = {"CHANGE_ID": self.pr_number or "", "CHANGE_BRANCH": self.local_ref}
        if self.change_target:
            env["CHANGE_TARGET"] = self.change_target
        return env

    def describe(self) -> str:
        """One-line human summary, e.g. 'manual_pr #42 (PR-42)'."""
        if self.is_pull_request:
            return f"{self.mode.value} #{self.pr_number} ({self.local_ref})"
        return f"{self.mode.value} {self.branch_ref}"


# ── Run Results ──────────────────────────────────────────────────────────────


class RunOutcome(str, enum.Enum):
    """Terminal state of a run."""

    SUCCESS = "success"
    FAILURE = "failure"
    UNSTABLE = "unstable"

    @property
    def exit_code(self) -> int:
        return {"success": 0, "failure": 1, "unstable": 2}[self.value]


class StepStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepRecord(BaseModel):
    """Result of one pipeline step."""

    name: str
    status: StepStatus
    duration: float = 0.0
    detail: str = ""


class RunReport(BaseModel):
    """Everything known about a finished run."""

    plan: CheckoutPlan
    outcome: RunOutcome
    steps: list[StepRecord] = Field(default_factory=list)
    error: str | None = Field(default=None, description="Message of the fatal error, if any")
    head_sha: str | None = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def failed_step(self) -> str | None:
        for step in self.steps:
            if step.status == StepStatus.FAILED:
                return step.name
        return None

    def summary(self) -> str:
        """Markdown summary used for PR comments."""
        icon = {"success": "✅", "failure": "❌", "unstable": "⚠️"}[self.outcome.value]
        lines = [f"{icon} **prbuild {self.outcome.value}** for {self.plan.describe()}", ""]
        if self.head_sha:
            lines.append(f"Commit: `{self.head_sha[:12]}`")
            lines.append("")
        lines.append("| Step | Status | Duration |")
        lines.append("|---|---|---|")
        for step in self.steps:
            lines.append(f"| {step.name} | {step.status.value} | {step.duration:.1f}s |")
        if self.error:
            lines.extend(["", f"Error: {self.error}"])
        return "\n".join(lines)


class ReportResult(BaseModel):
    """Outcome of a status report attempt. Logged, then discarded."""

    posted: bool
    state: str | None = None
    error: str | None = None

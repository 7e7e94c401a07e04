"""Best-effort status reporting to GitHub.

Reporting is a side channel: every failure here is caught, logged and turned
into a ReportResult. Nothing raised in this module reaches the pipeline, and
a failed report never changes a run's outcome.
"""

from __future__ import annotations

import logging

import httpx

from prbuild.errors import ReportingError
from prbuild.github_client import GitHubClient
from prbuild.models import CheckoutPlan, ReportResult, RunOutcome, RunReport

logger = logging.getLogger(__name__)

# GitHub has no "unstable" state; an unstable run is reported as a failure
# with its own description.
OUTCOME_STATES = {
    RunOutcome.SUCCESS: "success",
    RunOutcome.FAILURE: "failure",
    RunOutcome.UNSTABLE: "failure",
}


def describe_outcome(report: RunReport) -> str:
    if report.outcome == RunOutcome.SUCCESS:
        return "Build succeeded"
    if report.outcome == RunOutcome.UNSTABLE:
        return "Build unstable: post-build checks failed"
    step = report.failed_step or "pipeline"
    return f"Build failed at {step}: {report.error or 'unknown error'}"


class StatusReporter:
    """Posts commit statuses (and optionally PR comments) for a run."""

    def __init__(
        self,
        github: GitHubClient | None,
        *,
        owner: str,
        repo: str,
        context: str = "ci/prbuild",
        target_url: str | None = None,
        comment_on_pr: bool = False,
    ):
        self.github = github
        self.owner = owner
        self.repo = repo
        self.context = context
        self.target_url = target_url or None
        self.comment_on_pr = comment_on_pr
        self._pr_head_sha: dict[str, str] = {}

    async def report_pending(self, plan: CheckoutPlan, sha: str | None) -> ReportResult:
        return await self._safely(plan, sha, "pending", "Build in progress")

    async def report(self, report: RunReport) -> ReportResult:
        """Post the final status for a finished run."""
        state = OUTCOME_STATES[report.outcome]
        result = await self._safely(report.plan, report.head_sha, state, describe_outcome(report))
        if result.posted and self.comment_on_pr and report.plan.is_pull_request:
            await self._comment(report)
        return result

    async def _safely(
        self, plan: CheckoutPlan, sha: str | None, state: str, description: str
    ) -> ReportResult:
        if self.github is None:
            logger.info("Status reporting disabled, not posting %s", state)
            return ReportResult(posted=False, state=state, error="reporting disabled")
        try:
            await self._post(plan, sha, state, description)
        except (ReportingError, httpx.HTTPError, RuntimeError) as e:
            logger.warning("Status report (%s) for %s failed: %s", state, plan.describe(), e)
            return ReportResult(posted=False, state=state, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error posting %s status for %s", state, plan.describe())
            return ReportResult(posted=False, state=state, error=str(e))
        logger.info("Posted %s status for %s", state, plan.describe())
        return ReportResult(posted=True, state=state)

    async def _post(
        self, plan: CheckoutPlan, sha: str | None, state: str, description: str
    ) -> None:
        if not self.owner or not self.repo:
            raise ReportingError("project.owner and project.repo must be set to report status")
        target_sha = await self._target_sha(plan, sha)
        await self.github.create_commit_status(
            self.owner,
            self.repo,
            target_sha,
            state=state,
            context=self.context,
            description=description,
            target_url=self.target_url,
        )

    async def _target_sha(self, plan: CheckoutPlan, sha: str | None) -> str:
        """Commit the status belongs to.

        PR runs report on the PR head (the checked-out commit may be a merge
        commit the host never sees); branch runs report on what was built.
        """
        key = plan.correlation_key
        if key is None:
            if not sha:
                raise ReportingError("No commit SHA known for a branch run")
            return sha
        if key not in self._pr_head_sha:
            pr = await self.github.get_pull_request(self.owner, self.repo, key)
            head_sha = (pr.get("head") or {}).get("sha")
            if not head_sha:
                raise ReportingError(f"PR #{key} has no head SHA")
            self._pr_head_sha[key] = head_sha
        return self._pr_head_sha[key]

    async def _comment(self, report: RunReport) -> None:
        try:
            await self.github.comment_on_issue(
                self.owner, self.repo, report.plan.correlation_key, report.summary()
            )
        except httpx.HTTPError as e:
            logger.warning("Failed to comment on PR #%s: %s", report.plan.correlation_key, e)
        except Exception:
            logger.exception("Unexpected error commenting on PR #%s", report.plan.correlation_key)

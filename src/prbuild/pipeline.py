"""Pipeline runner — executes one run for a resolved CheckoutPlan.

Steps run strictly in order:

    checkout → versions → credentials → install → build → validate → checks

followed by the status report. The first PipelineError aborts everything
after it; the run as a whole is bounded by ``runtime.run_timeout``. Post-build
checks are the only non-fatal step: a failing check makes the run unstable.
The final status report happens outside the timeout and can never change
the outcome.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable, Mapping
from contextlib import ExitStack
from datetime import datetime, timezone
from pathlib import Path

from prbuild.artifacts import validate_output_dir
from prbuild.config import PrbuildConfig
from prbuild.credentials import build_tool_env, resolve_credential, scoped_npmrc
from prbuild.errors import PipelineError, ToolInvocationError
from prbuild.git import SourceCheckout
from prbuild.github_client import GitHubClient
from prbuild.models import CheckoutPlan, RunOutcome, RunReport, StepRecord, StepStatus
from prbuild.status import StatusReporter
from prbuild.tools import check_tool_versions, run_tool

logger = logging.getLogger(__name__)

STEP_NAMES = ("checkout", "versions", "credentials", "install", "build", "validate", "checks")


class PipelineRunner:
    """Runs the fixed step sequence for one CheckoutPlan."""

    def __init__(
        self,
        config: PrbuildConfig,
        *,
        workspace: Path,
        checkout: SourceCheckout,
        reporter: StatusReporter | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.workspace = workspace
        self.checkout = checkout
        self.reporter = reporter
        self.environ = os.environ if environ is None else environ
        self._current_step: str | None = None
        self._step_started: float = 0.0
        self._change_env: dict[str, str] = {}

    @property
    def project_dir(self) -> Path:
        return self.workspace / self.config.tools.working_dir

    @property
    def output_dir(self) -> Path:
        return self.project_dir / self.config.artifacts.output_dir

    @property
    def secret_env_names(self) -> set[str]:
        """Env vars never passed to tool subprocesses, configured or not."""
        creds = self.config.credentials
        return {
            *creds.secret_env_vars,
            creds.npm_token_env,
            creds.git_credentials_id,
            self.config.status.github_token_env,
        }

    async def run(self, plan: CheckoutPlan) -> RunReport:
        """Execute the run and report its status. Never raises PipelineError."""
        report = RunReport(plan=plan, outcome=RunOutcome.FAILURE)
        self._change_env = plan.change_env()
        timeout = self.config.runtime.run_timeout
        logger.info("Starting run for %s in %s", plan.describe(), self.workspace)

        try:
            report.outcome = await asyncio.wait_for(self._execute(report), timeout=timeout)
        except PipelineError as e:
            report.outcome = RunOutcome.FAILURE
            report.error = str(e)
            logger.error("Run failed at %s: %s", e.step, e)
        except asyncio.TimeoutError:
            report.outcome = RunOutcome.FAILURE
            report.error = f"Run exceeded wall-clock timeout of {timeout}s"
            if self._current_step is not None:
                report.steps.append(
                    StepRecord(
                        name=self._current_step,
                        status=StepStatus.FAILED,
                        duration=time.monotonic() - self._step_started,
                        detail="aborted by run timeout",
                    )
                )
            logger.error(report.error)

        self._skip_remaining(report)
        report.finished_at = datetime.now(timezone.utc)
        logger.info("Run finished: %s", report.outcome.value)

        if self.reporter is not None:
            result = await self.reporter.report(report)
            logger.debug("Status report result: %s", result.model_dump())
        return report

    # ── Steps ────────────────────────────────────────────────────────────

    async def _execute(self, report: RunReport) -> RunOutcome:
        plan = report.plan
        creds = self.config.credentials
        tools = self.config.tools

        async def checkout() -> str:
            report.head_sha = await self.checkout.checkout(plan)
            return report.head_sha

        await self._run_step(report, "checkout", checkout)

        if self.reporter is not None and self.config.status.post_pending:
            await self.reporter.report_pending(plan, report.head_sha)

        async def versions() -> str:
            if not self.project_dir.is_dir():
                raise ToolInvocationError(
                    f"Project directory {self.project_dir} does not exist", step="versions"
                )
            found = await check_tool_versions(
                tools.version_commands,
                cwd=self.project_dir,
                env=self._tool_env({}),
                timeout=tools.version_timeout,
            )
            return ", ".join(f"{name} {version}" for name, version in found.items())

        await self._run_step(report, "versions", versions)

        with ExitStack() as stack:
            npm_env: dict[str, str] = {}

            async def credentials() -> str:
                token = resolve_credential(creds.npm_token_env, self.environ)
                try:
                    npm_env.update(stack.enter_context(scoped_npmrc(creds.npm_registry, token)))
                except OSError as e:
                    raise PipelineError(
                        f"Could not write npm credentials: {e}", step="credentials"
                    ) from e
                return "npm userconfig created" if npm_env else "no npm token"

            await self._run_step(report, "credentials", credentials)
            await self._run_step(
                report, "install", lambda: self._tool("install", tools.install, npm_env)
            )

        await self._run_step(report, "build", lambda: self._tool("build", tools.build, {}))

        async def validate() -> str:
            return f"{validate_output_dir(self.output_dir)} entries"

        await self._run_step(report, "validate", validate)

        return await self._run_checks(report)

    async def _run_checks(self, report: RunReport) -> RunOutcome:
        checks = self.config.tools.checks
        if not checks:
            report.steps.append(
                StepRecord(name="checks", status=StepStatus.SKIPPED, detail="no checks configured")
            )
            return RunOutcome.SUCCESS

        self._current_step = "checks"
        self._step_started = time.monotonic()
        started = self._step_started
        failures: list[str] = []
        for cmd in checks:
            try:
                await self._tool("checks", cmd, {})
            except ToolInvocationError as e:
                logger.warning("Post-build check failed: %s", e)
                failures.append(str(e))

        status = StepStatus.FAILED if failures else StepStatus.SUCCEEDED
        report.steps.append(
            StepRecord(
                name="checks",
                status=status,
                duration=time.monotonic() - started,
                detail="; ".join(failures) or f"{len(checks)} passed",
            )
        )
        self._current_step = None
        return RunOutcome.UNSTABLE if failures else RunOutcome.SUCCESS

    async def _tool(self, step: str, cmd: list[str], extra: Mapping[str, str]) -> str:
        await run_tool(
            step,
            cmd,
            cwd=self.project_dir,
            env=self._tool_env(extra),
            timeout=self.config.tools.step_timeout,
        )
        return "ok"

    def _tool_env(self, extra: Mapping[str, str]) -> dict[str, str]:
        return build_tool_env(
            self.secret_env_names,
            extra={**self._change_env, **extra},
            base=self.environ,
        )

    async def _run_step(
        self, report: RunReport, name: str, func: Callable[[], Awaitable[str]]
    ) -> None:
        self._current_step = name
        self._step_started = time.monotonic()
        logger.info("── %s", name)
        try:
            detail = await func()
        except (PipelineError, OSError) as e:
            report.steps.append(
                StepRecord(
                    name=name,
                    status=StepStatus.FAILED,
                    duration=time.monotonic() - self._step_started,
                    detail=str(e),
                )
            )
            self._current_step = None
            if isinstance(e, PipelineError):
                raise
            raise PipelineError(f"{name}: {e}", step=name) from e
        report.steps.append(
            StepRecord(
                name=name,
                status=StepStatus.SUCCEEDED,
                duration=time.monotonic() - self._step_started,
                detail=detail or "",
            )
        )
        self._current_step = None

    @staticmethod
    def _skip_remaining(report: RunReport) -> None:
        done = {step.name for step in report.steps}
        for name in STEP_NAMES:
            if name not in done:
                report.steps.append(
                    StepRecord(name=name, status=StepStatus.SKIPPED, detail="not run")
                )


# ── Wiring ───────────────────────────────────────────────────────────────────


def create_github_client(config: PrbuildConfig, environ: Mapping[str, str]) -> GitHubClient | None:
    """GitHub client from a token or GitHub App credentials; None if neither is set."""
    token = resolve_credential(config.status.github_token_env, environ)
    if token:
        return GitHubClient(token=token)

    app_id = environ.get("GITHUB_APP_ID")
    private_key = environ.get("GITHUB_PRIVATE_KEY")
    installation_id = environ.get("GITHUB_INSTALLATION_ID")
    if app_id and private_key and installation_id:
        return GitHubClient(
            app_id=app_id, private_key=private_key, installation_id=installation_id
        )
    return None


async def run_pipeline(
    config: PrbuildConfig,
    plan: CheckoutPlan,
    *,
    workspace: Path,
    report_status: bool = True,
    environ: Mapping[str, str] | None = None,
) -> RunReport:
    """Build a runner from config and execute one run."""
    environ = os.environ if environ is None else environ
    creds = config.credentials

    checkout = SourceCheckout(
        workspace,
        repo_url=config.project.clone_url,
        username=creds.git_username,
        credentials_id=creds.git_credentials_id,
        environ=environ,
        timeout=config.tools.step_timeout,
    )

    github: GitHubClient | None = None
    if report_status and config.status.enabled:
        github = create_github_client(config, environ)
        if github is None:
            logger.warning("No GitHub credentials found, status will not be reported")

    reporter = StatusReporter(
        github,
        owner=config.project.owner,
        repo=config.project.repo,
        context=config.status.context,
        target_url=config.status.target_url or environ.get("BUILD_URL"),
        comment_on_pr=config.status.comment_on_pr,
    )
    runner = PipelineRunner(
        config, workspace=workspace, checkout=checkout, reporter=reporter, environ=environ
    )

    if github is None:
        return await runner.run(plan)
    async with github:
        return await runner.run(plan)

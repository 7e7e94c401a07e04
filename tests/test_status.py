"""Tests for the best-effort status reporter."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from prbuild.github_client import GitHubClient
from prbuild.models import (
    CheckoutMode,
    CheckoutPlan,
    RunOutcome,
    RunReport,
    StepRecord,
    StepStatus,
    TriggerContext,
)
from prbuild.resolver import resolve_checkout_plan
from prbuild.status import StatusReporter, describe_outcome

API = "https://api.github.com/repos/acme/webapp"
HEAD = "feedface" * 5
BUILT = "0badc0de" * 5


@pytest.fixture
async def github():
    client = GitHubClient(token="ghp_fake_token")
    await client.start()
    yield client
    await client.close()


@pytest.fixture
def reporter(github) -> StatusReporter:
    return StatusReporter(
        github,
        owner="acme",
        repo="webapp",
        context="ci/prbuild",
        target_url="https://ci.example.com/job/7",
    )


def _report(plan: CheckoutPlan, outcome: RunOutcome, **kwargs) -> RunReport:
    return RunReport(plan=plan, outcome=outcome, head_sha=BUILT, **kwargs)


BRANCH_PLAN = CheckoutPlan(mode=CheckoutMode.MANUAL_BRANCH, branch_ref="feature/x")
MANUAL_PR_PLAN = resolve_checkout_plan(TriggerContext(param_pr_number="42"))
AUTO_PR_PLAN = resolve_checkout_plan(TriggerContext(change_id="42", change_branch="PR-42"))


class TestBranchRuns:
    @respx.mock
    async def test_posts_on_built_commit(self, reporter):
        route = respx.post(f"{API}/statuses/{BUILT}").mock(
            return_value=httpx.Response(201, json={})
        )
        result = await reporter.report(_report(BRANCH_PLAN, RunOutcome.SUCCESS))

        assert result.posted is True
        assert result.state == "success"
        body = json.loads(route.calls[0].request.content)
        assert body["context"] == "ci/prbuild"
        assert body["description"] == "Build succeeded"
        assert body["target_url"] == "https://ci.example.com/job/7"

    async def test_branch_run_without_sha_not_posted(self, reporter):
        report = RunReport(plan=BRANCH_PLAN, outcome=RunOutcome.FAILURE)
        result = await reporter.report(report)
        assert result.posted is False
        assert "No commit SHA" in result.error


class TestPullRequestRuns:
    @pytest.mark.parametrize("plan", [MANUAL_PR_PLAN, AUTO_PR_PLAN])
    @respx.mock
    async def test_manual_and_automated_pr_report_identically(self, reporter, plan):
        respx.get(f"{API}/pulls/42").mock(
            return_value=httpx.Response(200, json={"number": 42, "head": {"sha": HEAD}})
        )
        route = respx.post(f"{API}/statuses/{HEAD}").mock(
            return_value=httpx.Response(201, json={})
        )
        result = await reporter.report(_report(plan, RunOutcome.SUCCESS))
        assert result.posted is True
        assert route.called

    @respx.mock
    async def test_pr_head_looked_up_once(self, reporter):
        pulls = respx.get(f"{API}/pulls/42").mock(
            return_value=httpx.Response(200, json={"head": {"sha": HEAD}})
        )
        respx.post(f"{API}/statuses/{HEAD}").mock(return_value=httpx.Response(201, json={}))

        await reporter.report_pending(MANUAL_PR_PLAN, BUILT)
        await reporter.report(_report(MANUAL_PR_PLAN, RunOutcome.SUCCESS))
        assert pulls.call_count == 1

    @respx.mock
    async def test_comment_on_pr(self, github):
        reporter = StatusReporter(github, owner="acme", repo="webapp", comment_on_pr=True)
        respx.get(f"{API}/pulls/42").mock(
            return_value=httpx.Response(200, json={"head": {"sha": HEAD}})
        )
        respx.post(f"{API}/statuses/{HEAD}").mock(return_value=httpx.Response(201, json={}))
        comment = respx.post(f"{API}/issues/42/comments").mock(
            return_value=httpx.Response(201, json={"id": 1})
        )

        await reporter.report(
            _report(
                MANUAL_PR_PLAN,
                RunOutcome.SUCCESS,
                steps=[StepRecord(name="build", status=StepStatus.SUCCEEDED)],
            )
        )
        body = json.loads(comment.calls[0].request.content)["body"]
        assert "prbuild success" in body
        assert "| build | succeeded |" in body


class TestFailuresAreSwallowed:
    @respx.mock
    async def test_http_error_returns_result(self, reporter):
        respx.post(f"{API}/statuses/{BUILT}").mock(
            return_value=httpx.Response(500, json={"message": "boom"})
        )
        result = await reporter.report(_report(BRANCH_PLAN, RunOutcome.FAILURE))
        assert result.posted is False
        assert result.state == "failure"
        assert result.error

    @respx.mock
    async def test_network_error_returns_result(self, reporter):
        respx.post(f"{API}/statuses/{BUILT}").mock(side_effect=httpx.ConnectError("down"))
        result = await reporter.report(_report(BRANCH_PLAN, RunOutcome.SUCCESS))
        assert result.posted is False

    @respx.mock
    async def test_pr_without_head_sha(self, reporter):
        respx.get(f"{API}/pulls/42").mock(return_value=httpx.Response(200, json={}))
        result = await reporter.report(_report(MANUAL_PR_PLAN, RunOutcome.SUCCESS))
        assert result.posted is False
        assert "head SHA" in result.error

    @respx.mock
    async def test_malformed_comment_response(self, github):
        reporter = StatusReporter(github, owner="acme", repo="webapp", comment_on_pr=True)
        respx.get(f"{API}/pulls/42").mock(
            return_value=httpx.Response(200, json={"head": {"sha": HEAD}})
        )
        respx.post(f"{API}/statuses/{HEAD}").mock(return_value=httpx.Response(201, json={}))
        comment = respx.post(f"{API}/issues/42/comments").mock(
            return_value=httpx.Response(201, content=b"<html>not json</html>")
        )

        result = await reporter.report(_report(MANUAL_PR_PLAN, RunOutcome.SUCCESS))
        assert comment.called
        assert result.posted is True
        assert result.state == "success"

    async def test_missing_credentials(self):
        async with GitHubClient() as client:
            reporter = StatusReporter(client, owner="acme", repo="webapp")
            result = await reporter.report(_report(BRANCH_PLAN, RunOutcome.SUCCESS))
        assert result.posted is False

    async def test_missing_owner(self, github):
        reporter = StatusReporter(github, owner="", repo="")
        result = await reporter.report(_report(BRANCH_PLAN, RunOutcome.SUCCESS))
        assert result.posted is False
        assert "project.owner" in result.error

    async def test_disabled(self):
        reporter = StatusReporter(None, owner="acme", repo="webapp")
        result = await reporter.report(_report(BRANCH_PLAN, RunOutcome.SUCCESS))
        assert result.posted is False
        assert result.error == "reporting disabled"


class TestDescribeOutcome:
    def test_unstable_maps_to_failure_state(self):
        report = _report(BRANCH_PLAN, RunOutcome.UNSTABLE)
        assert describe_outcome(report).startswith("Build unstable")

    def test_failure_names_step(self):
        report = _report(
            BRANCH_PLAN,
            RunOutcome.FAILURE,
            error="npm ci exited with status 1",
            steps=[StepRecord(name="install", status=StepStatus.FAILED)],
        )
        assert describe_outcome(report) == "Build failed at install: npm ci exited with status 1"

    @respx.mock
    async def test_unstable_posts_failure(self, reporter):
        route = respx.post(f"{API}/statuses/{BUILT}").mock(
            return_value=httpx.Response(201, json={})
        )
        result = await reporter.report(_report(BRANCH_PLAN, RunOutcome.UNSTABLE))
        assert result.state == "failure"
        assert json.loads(route.calls[0].request.content)["state"] == "failure"

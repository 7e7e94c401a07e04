"""Trigger resolution — picks what a run checks out.

Signals are checked in a fixed priority order and the first one present
wins:

1. ``CHANGE_ID`` from PR discovery (the commit is already staged)
2. ``PR_NUMBER`` job parameter (fetch ``pull/<n>/head`` ourselves)
3. ``BRANCH_NAME`` job parameter
4. ambient ``BRANCH_NAME``, else the default branch

Automated discovery always beats manual parameters, so a stale parameter
left on a job can never override a discovered PR.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from prbuild.models import CheckoutMode, CheckoutPlan, TriggerContext

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"


def _present(value: str | None) -> str | None:
    """Return the trimmed value, or None for null/empty/whitespace-only."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def pr_refspec(pr_number: str) -> str:
    """Refspec fetching a PR head into the local ``PR-<n>`` namespace."""
    return f"+refs/pull/{pr_number}/head:refs/remotes/origin/PR-{pr_number}"


def resolve_checkout_plan(ctx: TriggerContext) -> CheckoutPlan:
    """Classify a trigger context into exactly one CheckoutPlan.

    Pure: no I/O, no hidden state, and case 4 always matches, so this never
    fails.
    """
    change_id = _present(ctx.change_id)
    if change_id:
        return CheckoutPlan(
            mode=CheckoutMode.AUTOMATED_PR,
            pr_number=change_id,
            branch_ref=_present(ctx.change_branch) or f"PR-{change_id}",
            change_target=_present(ctx.change_target),
        )

    pr_number = _present(ctx.param_pr_number)
    if pr_number:
        return CheckoutPlan(
            mode=CheckoutMode.MANUAL_PR,
            pr_number=pr_number,
            source_refspec=pr_refspec(pr_number),
        )

    branch_name = _present(ctx.param_branch_name)
    if branch_name:
        return CheckoutPlan(mode=CheckoutMode.MANUAL_BRANCH, branch_ref=branch_name)

    return CheckoutPlan(
        mode=CheckoutMode.DEFAULT_BRANCH,
        branch_ref=_present(ctx.env_branch_name) or ctx.default_branch,
    )


def trigger_context_from_env(
    environ: Mapping[str, str],
    params: Mapping[str, str | None] | None = None,
    *,
    default_branch: str = DEFAULT_BRANCH,
) -> TriggerContext:
    """Snapshot the environment and job parameters into a TriggerContext.

    ``PR_NUMBER`` falls back to the environment because CI hosts export job
    parameters there. ``BRANCH_NAME`` in the environment is the ambient branch
    and only counts as a manual override when passed in ``params``.
    """
    params = params or {}
    pr_number = params.get("PR_NUMBER")
    if pr_number is None:
        pr_number = environ.get("PR_NUMBER")

    ctx = TriggerContext(
        change_id=environ.get("CHANGE_ID"),
        change_branch=environ.get("CHANGE_BRANCH"),
        change_target=environ.get("CHANGE_TARGET"),
        param_pr_number=pr_number,
        param_branch_name=params.get("BRANCH_NAME"),
        env_branch_name=environ.get("BRANCH_NAME"),
        default_branch=default_branch,
    )
    logger.debug("Trigger context: %s", ctx.model_dump(exclude_none=True))
    return ctx

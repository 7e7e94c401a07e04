"""Source checkout — executes a CheckoutPlan with git.

The plan decides; this module only acts. Any git failure (missing ref,
missing PR, rejected credential) raises CheckoutError.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping
from pathlib import Path

from prbuild.credentials import git_auth_args, mask_secret, resolve_credential
from prbuild.errors import CheckoutError
from prbuild.models import CheckoutMode, CheckoutPlan
from prbuild.tools import CommandResult, run_command

logger = logging.getLogger(__name__)


class SourceCheckout:
    """Obtains the source described by a CheckoutPlan into a workspace."""

    def __init__(
        self,
        workspace: Path,
        *,
        repo_url: str = "",
        username: str = "x-access-token",
        credentials_id: str = "GIT_TOKEN",
        environ: Mapping[str, str] | None = None,
        git_exe: str = "git",
        timeout: float = 600,
    ) -> None:
        self.workspace = workspace
        self.repo_url = repo_url
        self.username = username
        self.credentials_id = credentials_id
        self.environ = environ
        self.git_exe = git_exe
        self.timeout = timeout

    async def checkout(self, plan: CheckoutPlan) -> str:
        """Check out the plan's source and return the resulting HEAD SHA.

        - automated_pr: the integration already staged the commit; only
          verify the workspace holds a checkout.
        - manual_pr: fetch ``pull/<n>/head`` into ``PR-<n>`` and switch to it.
        - manual_branch / default_branch: fetch the branch and switch to it.
        """
        if plan.mode == CheckoutMode.AUTOMATED_PR:
            logger.info("PR #%s already staged by discovery, skipping fetch", plan.pr_number)
        elif plan.mode == CheckoutMode.MANUAL_PR:
            await self._prepare_repo()
            await self._fetch(plan.source_refspec or "")
            await self._switch(plan.local_ref)
        else:
            branch = plan.branch_ref or ""
            await self._prepare_repo()
            await self._fetch(f"+refs/heads/{branch}:refs/remotes/origin/{branch}")
            await self._switch(branch)

        sha = await self.head_sha()
        if sha is None:
            raise CheckoutError(f"No commit checked out in {self.workspace} for {plan.describe()}")
        logger.info("Checked out %s at %s", plan.describe(), sha[:12])
        return sha

    async def head_sha(self) -> str | None:
        """Current HEAD commit, or None if the workspace has no checkout."""
        if not self.workspace.is_dir():
            return None
        result = await self._git("rev-parse", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    async def _prepare_repo(self) -> None:
        if not self.repo_url:
            raise CheckoutError("No repository URL configured (project.repo_url or owner/repo)")
        self.workspace.mkdir(parents=True, exist_ok=True)
        if not (self.workspace / ".git").exists():
            await self._git("init", "--quiet")

        existing = await self._git("remote", "get-url", "origin", check=False)
        if existing.returncode != 0:
            await self._git("remote", "add", "origin", self.repo_url)
        elif existing.stdout.strip() != self.repo_url:
            await self._git("remote", "set-url", "origin", self.repo_url)

    async def _fetch(self, refspec: str) -> None:
        # Resolved per fetch, never kept on the instance.
        token = resolve_credential(self.credentials_id, self.environ)
        if token is None:
            logger.warning("%s is not set, fetching without credentials", self.credentials_id)
        logger.info("Fetching %s from %s", refspec, self.repo_url)
        await self._git(
            *git_auth_args(self.username, token),
            "fetch",
            "--no-tags",
            "origin",
            refspec,
            secrets=(token,),
        )

    async def _switch(self, branch: str) -> None:
        await self._git("checkout", "--force", "-B", branch, f"refs/remotes/origin/{branch}")

    async def _git(
        self, *args: str, check: bool = True, secrets: tuple[str | None, ...] = ()
    ) -> CommandResult:
        cmd = [self.git_exe, *args]
        try:
            result = await run_command(
                cmd,
                cwd=self.workspace,
                env={"GIT_TERMINAL_PROMPT": "0", **_passthrough_env()},
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise CheckoutError(f"git executable not found: {self.git_exe}") from e
        except asyncio.TimeoutError as e:
            raise CheckoutError(
                f"git {self._display(args)} timed out after {self.timeout:.0f}s"
            ) from e
        except OSError as e:
            raise CheckoutError(
                f"git {self._display(args)} could not start in {self.workspace}: "
                f"{e.strerror or e}"
            ) from e

        if check and result.returncode != 0:
            raise CheckoutError(
                f"git {self._display(args)} failed ({result.returncode}): "
                f"{mask_secret(result.tail(5), secrets)}"
            )
        return result

    def _display(self, args: tuple[str, ...]) -> str:
        # Auth header args are never shown.
        shown: list[str] = []
        skip = False
        for arg in args:
            if skip:
                skip = False
                continue
            if arg == "-c":
                skip = True
                continue
            shown.append(arg)
        return " ".join(shown)


def _passthrough_env() -> dict[str, str]:
    """Minimal environment git needs (PATH, HOME, proxy settings)."""
    keep = ("PATH", "HOME", "LANG", "HTTPS_PROXY", "HTTP_PROXY", "NO_PROXY", "SSL_CERT_FILE")
    return {k: os.environ[k] for k in keep if k in os.environ}

"""GitHub API client for prbuild status reporting.

Authenticates with a plain token (``GITHUB_TOKEN``) or as a GitHub App
(JWT → installation token), tracks rate limits, and exposes the handful of
async REST operations the status reporter needs. Every request is made once;
callers decide what a failure means.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

import httpx

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"

# GitHub truncates commit status descriptions at 140 characters.
MAX_STATUS_DESCRIPTION = 140


class GitHubClient:
    """Async GitHub API client."""

    def __init__(
        self,
        *,
        token: str | None = None,
        app_id: str | None = None,
        private_key: str | None = None,
        installation_id: str | None = None,
        base_url: str = GITHUB_API,
    ):
        self.app_id = app_id
        self.private_key = private_key
        self.installation_id = installation_id
        self.base_url = base_url

        # Static token, or installation token cached for its 1-hour TTL
        self._token: str | None = token
        self._static_token = token is not None
        self._token_expires_at: float = 0

        self._rate_limit_remaining: int = 5000
        self._rate_limit_reset: float = 0

        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": "prbuild/0.1.0",
            },
            timeout=30.0,
        )
        logger.debug("GitHub client started")

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> GitHubClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("GitHub client not started")
        return self._client

    # ── Authentication ───────────────────────────────────────────────────

    async def _ensure_token(self) -> str:
        """Return the static token, or a valid installation access token.

        GitHub App flow:
        1. Generate JWT from App ID + private key
        2. Exchange JWT for installation access token
        3. Token valid for 1 hour
        """
        if self._token and (self._static_token or time.time() < self._token_expires_at - 60):
            return self._token

        if not self.app_id or not self.private_key or not self.installation_id:
            raise RuntimeError(
                "GitHub credentials not configured. "
                "Set GITHUB_TOKEN, or GITHUB_APP_ID, GITHUB_PRIVATE_KEY, GITHUB_INSTALLATION_ID"
            )

        jwt = self._generate_jwt()
        resp = await self.client.post(
            f"/app/installations/{self.installation_id}/access_tokens",
            headers={"Authorization": f"Bearer {jwt}"},
        )
        resp.raise_for_status()
        data = resp.json()
        self._token = data["token"]
        self._token_expires_at = time.time() + 3500  # ~58 min (conservative)
        logger.info("Obtained GitHub installation token (expires in ~58m)")
        return self._token

    def _generate_jwt(self) -> str:
        """Generate JWT for GitHub App authentication."""
        import jwt as pyjwt

        now = int(time.time())
        payload = {
            "iat": now - 10,  # Issued 10 seconds in the past for clock skew
            "exp": now + 540,  # Expires in 9 minutes (keep under 10-min GitHub limit)
            "iss": self.app_id,
        }
        return pyjwt.encode(payload, self.private_key, algorithm="RS256")

    async def _auth_headers(self) -> dict[str, str]:
        token = await self._ensure_token()
        return {"Authorization": f"token {token}"}

    # ── Requests ─────────────────────────────────────────────────────────

    def _update_rate_limit(self, response: httpx.Response) -> None:
        """Track rate limits from response headers."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset = response.headers.get("X-RateLimit-Reset")
        if remaining:
            self._rate_limit_remaining = int(remaining)
        if reset:
            self._rate_limit_reset = float(reset)

        if self._rate_limit_remaining < 100:
            logger.warning(
                "GitHub API rate limit low: %d remaining (resets at %s)",
                self._rate_limit_remaining,
                datetime.fromtimestamp(self._rate_limit_reset, tz=timezone.utc).isoformat(),
            )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Execute an authenticated request and track rate limits."""
        headers = await self._auth_headers()
        headers.update(kwargs.pop("headers", {}))
        resp = await self.client.request(method, path, headers=headers, **kwargs)
        self._update_rate_limit(resp)
        resp.raise_for_status()
        return resp

    # ── Pull Requests & Statuses ─────────────────────────────────────────

    async def get_pull_request(self, owner: str, repo: str, pr_number: int | str) -> dict:
        resp = await self._request("GET", f"/repos/{owner}/{repo}/pulls/{pr_number}")
        return resp.json()

    async def create_commit_status(
        self,
        owner: str,
        repo: str,
        sha: str,
        *,
        state: str,
        context: str,
        description: str = "",
        target_url: str | None = None,
    ) -> dict:
        """Post a commit status.

        Args:
            state: ``"pending"``, ``"success"``, ``"failure"`` or ``"error"``.
            context: Label distinguishing this status from other CI systems.
        """
        payload: dict[str, str] = {
            "state": state,
            "context": context,
            "description": description[:MAX_STATUS_DESCRIPTION],
        }
        if target_url:
            payload["target_url"] = target_url
        resp = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/statuses/{sha}",
            json=payload,
        )
        return resp.json()

    async def comment_on_issue(
        self, owner: str, repo: str, issue_number: int | str, body: str
    ) -> dict:
        """Comment on an issue or pull request (PRs share the issues API)."""
        resp = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            json={"body": body},
        )
        return resp.json()

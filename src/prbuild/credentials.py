"""Scoped credential handling.

Credentials are looked up by logical name (an environment variable) right
before the step that needs them and are not kept afterwards:

- git gets its token per command through ``http.extraheader``; nothing is
  written to git config.
- npm gets a throwaway userconfig file that exists only for the duration of
  the install step.
- install/build subprocesses run with a scrubbed copy of the environment.
"""

from __future__ import annotations

import base64
import logging
import os
import tempfile
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

_SECRET_PATTERNS = frozenset(
    {
        "API_KEY",
        "SECRET_KEY",
        "PRIVATE_KEY",
        "ACCESS_TOKEN",
        "AUTH_TOKEN",
    }
)

REDACTED = "***"


def resolve_credential(credentials_id: str, environ: Mapping[str, str] | None = None) -> str | None:
    """Return the secret registered under ``credentials_id``, or None."""
    environ = os.environ if environ is None else environ
    value = environ.get(credentials_id, "").strip()
    return value or None


def mask_secret(text: str, secrets: Iterable[str | None]) -> str:
    """Replace every occurrence of each secret in ``text``."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def git_auth_args(username: str, token: str | None) -> list[str]:
    """``git -c`` arguments carrying basic auth for a single invocation."""
    if not token:
        return []
    basic = base64.b64encode(f"{username}:{token}".encode()).decode()
    return ["-c", f"http.extraheader=AUTHORIZATION: basic {basic}"]


def build_tool_env(
    strip: Iterable[str],
    *,
    extra: Mapping[str, str] | None = None,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Build a scrubbed copy of the environment for a tool subprocess.

    Drops every variable named in ``strip`` plus anything whose name looks
    like a secret, then layers ``extra`` on top. Never mutates ``os.environ``.
    """
    env = dict(os.environ if base is None else base)
    strip_set = set(strip)

    stripped: list[str] = []
    for key in list(env.keys()):
        key_upper = key.upper()
        if key in strip_set or any(p in key_upper for p in _SECRET_PATTERNS):
            del env[key]
            stripped.append(key)

    if stripped:
        logger.debug("Env scrub: stripped %d secret vars: %s", len(stripped), ", ".join(sorted(stripped)))

    if extra:
        env.update(extra)
    return env


@contextmanager
def scoped_npmrc(registry: str, token: str | None) -> Iterator[dict[str, str]]:
    """Write a temporary npm userconfig holding the registry auth token.

    Yields the environment variables pointing npm at it (empty when there is
    no token). The file and its directory are removed on exit, including
    when the wrapped step fails.
    """
    if not token:
        logger.warning("No npm token available, installing without registry credentials")
        yield {}
        return

    registry = registry.strip().removeprefix("https://").removeprefix("http://").rstrip("/")
    with tempfile.TemporaryDirectory(prefix="prbuild-npm-") as tmp:
        npmrc = Path(tmp) / ".npmrc"
        npmrc.write_text(
            f"registry=https://{registry}/\n//{registry}/:_authToken={token}\nalways-auth=true\n"
        )
        npmrc.chmod(0o600)
        logger.info("Created scoped npm credentials for %s", registry)
        try:
            yield {"NPM_CONFIG_USERCONFIG": str(npmrc)}
        finally:
            npmrc.unlink(missing_ok=True)
            logger.info("Removed scoped npm credentials")

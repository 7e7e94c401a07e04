"""prbuild CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import subprocess
import sys
from pathlib import Path

from prbuild.config import CONFIG_DIR_NAME, CONFIG_FILE_NAME, load_config
from prbuild.errors import ConfigError
from prbuild.models import RunOutcome
from prbuild.resolver import resolve_checkout_plan, trigger_context_from_env

# ── Default template for `prbuild init` ──────────────────────────────────────

_DEFAULT_CONFIG = """\
# .prbuild/config.yaml — prbuild pipeline configuration

project:
  name: "{project_name}"
  owner: "{owner}"
  repo: "{repo}"
  default_branch: main

credentials:
  git_credentials_id: GIT_TOKEN
  npm_registry: registry.npmjs.org
  npm_token_env: NPM_TOKEN

tools:
  working_dir: "."
  version_commands:
    - [node, --version]
    - [npm, --version]
  install: [npm, ci]
  build: [npm, run, build]
  checks: []
  step_timeout: 900

artifacts:
  output_dir: dist

status:
  enabled: true
  context: ci/prbuild
  post_pending: true
  comment_on_pr: false

runtime:
  run_timeout: 3600
"""


def _git_remote(repo_root: Path) -> tuple[str, str]:
    """Best-effort (owner, repo) from the origin remote; empty strings if unknown."""
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            cwd=str(repo_root),
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired):
        return "", ""
    if result.returncode != 0:
        return "", ""

    url = result.stdout.strip()
    if "github.com" not in url:
        return "", ""
    parts = url.removesuffix(".git").split("github.com")[-1].lstrip("/:").split("/")
    if len(parts) >= 2:
        return parts[0], parts[1]
    return "", ""


def _init_project(repo_root: Path) -> None:
    """Scaffold a .prbuild/ directory with default configuration."""
    config_dir = repo_root / CONFIG_DIR_NAME
    if config_dir.exists():
        print(f"Error: {config_dir} already exists", file=sys.stderr)
        print("Remove it first if you want to re-initialize.", file=sys.stderr)
        sys.exit(1)

    owner, repo = _git_remote(repo_root)
    project_name = repo or repo_root.name

    config_dir.mkdir(parents=True)
    (config_dir / CONFIG_FILE_NAME).write_text(
        _DEFAULT_CONFIG.format(project_name=project_name, owner=owner, repo=repo or project_name)
    )

    print(f"Initialized prbuild config at {config_dir / CONFIG_FILE_NAME}")
    print(f"  Project: {project_name}")
    if owner:
        print(f"  Owner:   {owner}")
    print()
    print("Next steps:")
    print("  1. Review the tools and artifacts sections")
    print("  2. Set GITHUB_TOKEN (status reporting) and GIT_TOKEN / NPM_TOKEN as needed")
    print(f"  3. Run: prbuild run --repo-root {repo_root}")


def _params(args: argparse.Namespace) -> dict[str, str | None]:
    return {"PR_NUMBER": args.pr_number, "BRANCH_NAME": args.branch_name}


def _resolve(args: argparse.Namespace) -> None:
    try:
        config = load_config(args.repo_root / CONFIG_DIR_NAME, required=False)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    ctx = trigger_context_from_env(
        os.environ, _params(args), default_branch=config.project.default_branch
    )
    plan = resolve_checkout_plan(ctx)
    if args.json:
        print(json.dumps(plan.model_dump(mode="json"), indent=2))
    else:
        print(plan.describe())
        if plan.source_refspec:
            print(f"  refspec: {plan.source_refspec}")


def _run(args: argparse.Namespace) -> int:
    from prbuild.pipeline import run_pipeline

    try:
        config = load_config(args.repo_root / CONFIG_DIR_NAME, required=False)
    except ConfigError as e:
        logging.getLogger("prbuild").error("%s", e)
        return RunOutcome.FAILURE.exit_code

    workspace = args.workspace or Path(config.runtime.workspace or args.repo_root)
    ctx = trigger_context_from_env(
        os.environ, _params(args), default_branch=config.project.default_branch
    )
    plan = resolve_checkout_plan(ctx)
    logging.getLogger("prbuild").info("Resolved %s", plan.describe())

    report = asyncio.run(
        run_pipeline(config, plan, workspace=workspace.resolve(), report_status=not args.no_status)
    )
    for step in report.steps:
        print(f"  {step.name:<12} {step.status.value:<10} {step.duration:6.1f}s  {step.detail}")
    print(f"Result: {report.outcome.value}")
    return report.outcome.exit_code


def main():
    parser = argparse.ArgumentParser(
        prog="prbuild",
        description="prbuild — pull request and branch builds for frontend projects",
    )
    subparsers = parser.add_subparsers(dest="command")

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--repo-root",
            type=Path,
            default=Path.cwd(),
            help="Directory holding .prbuild/ (default: current directory)",
        )

    def add_trigger(p: argparse.ArgumentParser) -> None:
        p.add_argument("--pr-number", help="Build this pull request (PR_NUMBER parameter)")
        p.add_argument("--branch-name", help="Build this branch (BRANCH_NAME parameter)")

    init_parser = subparsers.add_parser("init", help="Create a default .prbuild/config.yaml")
    add_common(init_parser)

    resolve_parser = subparsers.add_parser(
        "resolve", help="Print the checkout plan for the current trigger"
    )
    add_common(resolve_parser)
    add_trigger(resolve_parser)
    resolve_parser.add_argument("--json", action="store_true", help="Print the plan as JSON")

    run_parser = subparsers.add_parser("run", help="Check out, build, validate and report")
    add_common(run_parser)
    add_trigger(run_parser)
    run_parser.add_argument(
        "--workspace",
        type=Path,
        help="Checkout directory (default: runtime.workspace or the repo root)",
    )
    run_parser.add_argument(
        "--no-status", action="store_true", help="Do not report status to GitHub"
    )
    run_parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "init":
        _init_project(args.repo_root)
        return

    logging.basicConfig(
        level=getattr(logging, getattr(args, "log_level", "WARNING")),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "resolve":
        _resolve(args)
        return

    sys.exit(_run(args))


if __name__ == "__main__":
    main()

"""CLI for stacksmith — built on cyclopts (same framework as FastMCP's CLI)."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import cyclopts

if TYPE_CHECKING:
    from stacksmith.models import MultiRepoStacksResult
    from stacksmith.server import Services

app = cyclopts.App(
    name="stacksmith",
    help="stacksmith — stacked pull request review MCP server.",
)

repos_app = cyclopts.App(name="repos", help="Manage the repositories listed in .stacksmith.toml.")
app.command(repos_app)


def _configure_logging(level: str) -> None:
    """Apply *level* to the ``stacksmith`` logger, adding a stderr handler once."""
    package_logger = logging.getLogger("stacksmith")
    package_logger.setLevel(level)
    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        package_logger.addHandler(handler)


@app.default
def serve() -> None:
    """Run the stacksmith MCP server (default command)."""
    from stacksmith.config import load_config  # noqa: PLC0415

    config, _ = load_config()
    _configure_logging(config.logging.level)

    from stacksmith.server import mcp  # noqa: PLC0415

    mcp.run()


@app.command(name="check-env")
def check_env() -> None:
    """Validate GITHUB_* / STACKSMITH_* environment variables and print a diagnostic summary.

    Lists the recognized variables and their current values (masking
    sensitive ones), warns about unrecognized STACKSMITH_* variables
    (typo detection), validates the config, and checks for a GitHub token.
    """
    print("stacksmith check-env")
    print("=" * 40)

    # 1. Collect relevant env vars
    env_vars = {k: v for k, v in sorted(os.environ.items()) if _is_relevant_var(k)}

    if not env_vars:
        print("\nNo stacksmith environment variables set.")
        print("Using .stacksmith.toml and defaults.")
    else:
        print(f"\nFound {len(env_vars)} variable(s):\n")
        for key, value in env_vars.items():
            display = _mask_value(key, value)
            marker = "" if _is_known_var(key) else "  ⚠️  UNRECOGNIZED"
            print(f"  {key} = {display}{marker}")

    # 2. Check for unrecognized vars
    unknown = [k for k in env_vars if not _is_known_var(k)]
    if unknown:
        print(f"\n⚠️  {len(unknown)} unrecognized variable(s) (possible typos):")
        for k in unknown:
            print(f"  - {k}")

    # 3. Try loading config and validate
    print("\n" + "-" * 40)
    print("Validating configuration...\n")
    try:
        from stacksmith.config import load_config  # noqa: PLC0415

        config, path = load_config()
    except Exception as exc:
        print(f"❌ Configuration error: {exc}")
        sys.exit(1)

    print(f"  Source: {path or 'defaults'}")
    _print_config_summary(config)

    # 4. Check GitHub token
    print("-" * 40)
    print("Checking GitHub token...\n")
    from stacksmith.github_api import resolve_token_sync  # noqa: PLC0415

    if resolve_token_sync():
        print("  ✅ GitHub token found")
    else:
        print("  ❌ No GitHub token: set GH_TOKEN or GITHUB_TOKEN, or run 'gh auth login'")

    print()


@app.command(name="config")
def config_cmd(*, init: bool = False) -> None:
    """Manage stacksmith configuration.

    Args:
        init: Create a new .stacksmith.toml with all settings and their defaults.
    """
    if init:
        from stacksmith.config import init_config  # noqa: PLC0415

        init_config()
        return

    from stacksmith.config import load_config  # noqa: PLC0415

    try:
        config, path = load_config()
    except ValueError as exc:
        print(f"❌ {exc}")
        sys.exit(1)
    print(f"Config: {path or 'defaults (no .stacksmith.toml found)'}\n")
    _print_config_summary(config)


@repos_app.command(name="add")
def repos_add(repo: str) -> None:
    """Add an owner/repo to [github].repos."""
    from stacksmith.config import add_repo  # noqa: PLC0415

    try:
        path, added = add_repo(repo)
    except ValueError as exc:
        print(f"❌ {exc}")
        sys.exit(1)
    print(f"Added {repo} to {path}" if added else f"{repo} is already listed in {path}")


@repos_app.command(name="remove")
def repos_remove(repo: str) -> None:
    """Remove an owner/repo from [github].repos."""
    from stacksmith.config import remove_repo  # noqa: PLC0415

    path, removed = remove_repo(repo)
    if not removed:
        print(f"{repo} is not listed in {path}")
        sys.exit(1)
    print(f"Removed {repo} from {path}")


@repos_app.command(name="list")
def repos_list() -> None:
    """List configured repositories; the first one is the default."""
    from stacksmith.config import load_config  # noqa: PLC0415

    config, _ = load_config()
    if not config.github.repos:
        print("No repositories configured.")
        return
    for index, repo in enumerate(config.github.repos):
        print(f"{repo}{'  (default)' if index == 0 else ''}")


@app.command(name="stacks")
def stacks_cmd(repo: str | None = None) -> None:
    """Refresh and print stacks for one repository, or for all of them.

    Args:
        repo: Repository in "owner/repo" format. All configured repos when omitted.
    """
    from stacksmith.config import load_config  # noqa: PLC0415
    from stacksmith.server import build_services  # noqa: PLC0415

    config, path = load_config()
    services = build_services(config, path)
    result = asyncio.run(_collect_stacks(services, repo))

    for status in result.repos:
        if not status.ok:
            print(f"⚠️  {status.repo}: {status.error}")
    if not result.stacks:
        print("No stacks found.")
        return
    for stack in result.stacks:
        print(f"{stack.id}  {stack.name}  [{stack.repo_owner}/{stack.repo_name}]")
        for pr in stack.prs:
            marker = "merged" if pr.merged_at else pr.state
            print(f"  {pr.stack_order}. #{pr.number} {pr.title} ({pr.head.ref} → {pr.base.ref}, {marker})")


async def _collect_stacks(services: Services, repo: str | None) -> MultiRepoStacksResult:
    from stacksmith.models import MultiRepoStacksResult, RepoRefreshStatus  # noqa: PLC0415
    from stacksmith.tools.stack import refresh_all_stacks, refresh_stacks  # noqa: PLC0415

    if repo is None:
        return await refresh_all_stacks(services.registry, services.store, services.config.stacks)

    client = services.registry.get(repo)
    stacks = await refresh_stacks(client, services.store, services.config.stacks)
    return MultiRepoStacksResult(
        stacks=stacks,
        repos=[RepoRefreshStatus(repo=client.full_name, ok=True, stack_count=len(stacks))],
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_MASK_MIN_LENGTH = 4
_TRUNCATE_LENGTH = 80

_KNOWN_ENV_VARS = frozenset({
    "GITHUB_REPOS",
    "GITHUB_CURRENT_USER",
    "GITHUB_TOKEN",
    "GH_TOKEN",
    "STACKSMITH_METADATA_PATH",
    "STACKSMITH_NAME_POLICY",
    "STACKSMITH_LOG_LEVEL",
})


def _is_relevant_var(key: str) -> bool:
    return key in _KNOWN_ENV_VARS or key.startswith("STACKSMITH_")


def _is_known_var(key: str) -> bool:
    """Check if an env var is one stacksmith reads."""
    return key in _KNOWN_ENV_VARS


def _mask_value(key: str, value: str) -> str:
    """Mask sensitive values."""
    sensitive_keywords = ("token", "secret", "key", "password")
    if any(kw in key.lower() for kw in sensitive_keywords):
        if len(value) > _MASK_MIN_LENGTH:
            return value[:2] + "*" * (len(value) - _MASK_MIN_LENGTH) + value[-2:]
        return "****"
    # Truncate very long values (e.g. long repo lists)
    if len(value) > _TRUNCATE_LENGTH:
        return value[: _TRUNCATE_LENGTH - 3] + "..."
    return value


def _print_config_summary(config: object) -> None:
    """Print a human-readable config summary."""
    from stacksmith.config import Config  # noqa: PLC0415

    if not isinstance(config, Config):  # pragma: no cover
        return

    repos = config.github.repos
    print(f"  Repositories: {', '.join(repos) if repos else 'none'}")
    if repos:
        print(f"    default: {repos[0]}")
    if config.github.current_user:
        print(f"  Current user: {config.github.current_user}")

    st = config.stacks
    print(f"  Stack names: {st.name_policy.value}")
    print(f"  Namespaced ids: {'yes' if st.namespace_ids else 'no'}")
    print(f"  Metadata file: {Path(st.metadata_path)}")
    print(f"  Open PRs per repo: {st.max_open_prs}")
    print(f"  Log level: {config.logging.level}")
    print()

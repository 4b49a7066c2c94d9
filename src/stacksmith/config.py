"""Configuration for stacksmith.

Loads ``.stacksmith.toml`` from the project root (walking up to ``.git``),
applies environment overrides, validates with Pydantic, and provides sensible
defaults so zero-config still works (repos then come from ``GITHUB_REPOS``).
"""

from __future__ import annotations

import logging
import os
import tomllib
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".stacksmith.toml"

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class NamePolicy(StrEnum):
    """How freshly inferred stacks are named."""

    TITLE = "title"
    BRANCH = "branch"


def _is_repo_slug(value: str) -> bool:
    owner, _, name = value.partition("/")
    return bool(owner) and bool(name) and "/" not in name and not any(c.isspace() for c in value)


class GithubConfig(BaseModel):
    """Repositories to watch and who the current user is."""

    model_config = ConfigDict(extra="ignore")

    repos: list[str] = Field(default_factory=list, description="Repositories in 'owner/repo' form; the first is the default")
    current_user: str | None = Field(default=None, description="GitHub login shown as 'you' in review summaries")

    @field_validator("repos")
    @classmethod
    def _validate_repos(cls, value: list[str]) -> list[str]:
        cleaned: list[str] = []
        for raw in value:
            repo = raw.strip()
            if not _is_repo_slug(repo):
                msg = f"invalid repository {raw!r}, expected 'owner/repo'"
                raise ValueError(msg)
            if repo.lower() not in {r.lower() for r in cleaned}:
                cleaned.append(repo)
        return cleaned


class StacksConfig(BaseModel):
    """Stack inference and persistence settings."""

    model_config = ConfigDict(extra="ignore")

    name_policy: NamePolicy = Field(default=NamePolicy.TITLE, description="Name fresh stacks after the root PR title or its branch")
    namespace_ids: bool = Field(default=True, description="Prefix stack ids with 'owner-repo-'")
    metadata_path: str = Field(default=".stacksmith/stacks.json", description="JSON file holding known stacks")
    max_open_prs: int = Field(default=1000, ge=1, description="Most open PRs fetched per repository for inference")


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    level: str = Field(default="INFO", description="Level applied to the 'stacksmith' logger")

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            msg = f"invalid log level {value!r}, expected one of {sorted(_LOG_LEVELS)}"
            raise ValueError(msg)
        return level


class Config(BaseModel):
    """Top-level stacksmith configuration."""

    model_config = ConfigDict(extra="ignore")

    github: GithubConfig = Field(default_factory=GithubConfig, description="GitHub repositories")
    stacks: StacksConfig = Field(default_factory=StacksConfig, description="Stack inference settings")
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging settings")


def _collect_unknown_keys(
    data: dict[str, Any],
    model_cls: type[BaseModel],
    prefix: str = "",
) -> list[str]:
    """Recursively find keys in *data* that don't match any field in *model_cls*.

    Returns dotted key paths like ``stacks.name_polcy``.
    """
    known = set(model_cls.model_fields)
    unknown: list[str] = []

    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if key not in known:
            unknown.append(dotted)
            continue
        annotation = model_cls.model_fields[key].annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel) and isinstance(value, dict):
            unknown.extend(_collect_unknown_keys(value, annotation, prefix=f"{dotted}."))

    return unknown


def _find_config_file(start: Path) -> Path | None:
    """Walk up from *start* looking for ``.stacksmith.toml``, stopping at ``.git`` root."""
    current = start.resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        # Stop at filesystem root
        if current.parent == current:
            return None
        # Stop if we just checked a directory that contains .git
        if (current / ".git").exists():
            return None
        current = current.parent


# -- Environment overrides -----------------------------------------------------


def parse_repo_list(raw: str) -> list[str]:
    """Split a comma-separated ``owner/repo`` list, dropping malformed entries."""
    repos: list[str] = []
    for part in raw.split(","):
        item = part.strip()
        if not item:
            continue
        if not _is_repo_slug(item):
            logger.warning("Ignoring invalid repository %r in GITHUB_REPOS (expected 'owner/repo')", item)
            continue
        repos.append(item)
    return repos


def _apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Overlay supported environment variables onto raw config data."""
    merged = {section: dict(values) if isinstance(values, dict) else values for section, values in data.items()}

    def section(name: str) -> dict[str, Any]:
        current = merged.get(name)
        if not isinstance(current, dict):
            current = {}
            merged[name] = current
        return current

    if (raw_repos := environ.get("GITHUB_REPOS")) is not None:
        section("github")["repos"] = parse_repo_list(raw_repos)
    if user := environ.get("GITHUB_CURRENT_USER"):
        section("github")["current_user"] = user
    if path := environ.get("STACKSMITH_METADATA_PATH"):
        section("stacks")["metadata_path"] = path
    if policy := environ.get("STACKSMITH_NAME_POLICY"):
        section("stacks")["name_policy"] = policy.strip().lower()
    if level := environ.get("STACKSMITH_LOG_LEVEL"):
        section("logging")["level"] = level
    return merged


ENV_VARS: tuple[str, ...] = (
    "GITHUB_REPOS",
    "GITHUB_CURRENT_USER",
    "STACKSMITH_METADATA_PATH",
    "STACKSMITH_NAME_POLICY",
    "STACKSMITH_LOG_LEVEL",
)


def load_config(
    cwd: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> tuple[Config, Path | None]:
    """Load configuration from ``.stacksmith.toml`` plus environment overrides.

    Walks up from *cwd* (defaulting to the current directory) looking for the
    config file.  If not found, environment variables and defaults apply.

    Returns:
        (config, config_path) — the parsed config and the file path (or None
        if no config file was found).

    Raises ``ValueError`` on invalid TOML or validation errors so the server
    can refuse to start with a broken config.
    """
    environ = os.environ if environ is None else environ
    start = Path(cwd) if cwd else Path.cwd()
    config_path = _find_config_file(start)

    data: dict[str, Any] = {}
    if config_path is None:
        logger.info("No %s found, using defaults", CONFIG_FILENAME)
    else:
        logger.info("Loading config from %s", config_path)
        try:
            data = tomllib.loads(config_path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as exc:
            msg = f"Invalid TOML in {config_path}: {exc}"
            raise ValueError(msg) from exc

        for key in _collect_unknown_keys(data, Config):
            logger.warning("Unknown config key '%s' in %s", key, config_path)

    source = config_path or "environment"
    try:
        config = Config.model_validate(_apply_env_overrides(data, environ))
    except Exception as exc:
        msg = f"Invalid config in {source}: {exc}"
        raise ValueError(msg) from exc

    return config, config_path


# -- Template and repo list editing for ``stacksmith config`` / ``stacksmith repos`` --

DEFAULT_CONFIG_TEMPLATE = """\
# .stacksmith.toml — configuration for stacksmith
# All settings are optional. Omitted values use sensible defaults.
# Place this file in your project root (next to .git/).

[github]
repos = []                        # e.g. ["octo-org/api", "octo-org/web"]; the first is the default
# current_user = "octocat"        # Your login, used to highlight your own reviews

[stacks]
name_policy = "title"             # "title" (root PR title) or "branch" (cleaned root branch name)
namespace_ids = true              # Prefix stack ids with "owner-repo-"
metadata_path = ".stacksmith/stacks.json"  # Where known stacks are persisted
max_open_prs = 1000               # Most open PRs fetched per repository (all pages)

[logging]
level = "INFO"                    # DEBUG, INFO, WARNING, ERROR, CRITICAL
"""


def init_config(cwd: Path | None = None) -> Path:
    """Create a new ``.stacksmith.toml`` in the given directory.

    Raises ``SystemExit(1)`` if the file already exists.

    Returns:
        Path to the created file.
    """
    target = (cwd or Path.cwd()) / CONFIG_FILENAME
    if target.exists():
        print(f"Error: {CONFIG_FILENAME} already exists in {target.parent}")  # noqa: T201
        print("Hint: use 'stacksmith repos add owner/repo' to add repositories")  # noqa: T201
        raise SystemExit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    print(f"Created {target}")  # noqa: T201
    return target


def _config_target(cwd: Path | None) -> Path:
    start = cwd or Path.cwd()
    return _find_config_file(start) or start / CONFIG_FILENAME


def add_repo(repo: str, cwd: Path | None = None) -> tuple[Path, bool]:
    """Append *repo* to ``[github].repos`` using tomlkit (style-preserving).

    Creates the config file if none exists.

    Returns:
        (config path, whether the repo was added — False if already present).

    Raises:
        ValueError: If *repo* is not in ``owner/repo`` form.
    """
    import tomlkit  # noqa: PLC0415

    repo = repo.strip()
    if not _is_repo_slug(repo):
        msg = f"Invalid repository {repo!r}, expected 'owner/repo'"
        raise ValueError(msg)

    target = _config_target(cwd)
    doc = tomlkit.loads(target.read_text(encoding="utf-8")) if target.exists() else tomlkit.document()

    github = doc.get("github")
    if github is None:
        github = tomlkit.table()
        doc["github"] = github
    repos = github.get("repos")
    if repos is None:
        repos = tomlkit.array()
        github["repos"] = repos

    if any(str(existing).lower() == repo.lower() for existing in repos):
        return target, False

    repos.append(repo)
    target.write_text(tomlkit.dumps(doc), encoding="utf-8")
    logger.info("Added %s to %s", repo, target)
    return target, True


def remove_repo(repo: str, cwd: Path | None = None) -> tuple[Path, bool]:
    """Remove *repo* from ``[github].repos`` using tomlkit (style-preserving).

    Returns:
        (config path, whether the repo was found and removed).
    """
    import tomlkit  # noqa: PLC0415

    target = _config_target(cwd)
    if not target.exists():
        return target, False

    doc = tomlkit.loads(target.read_text(encoding="utf-8"))
    repos = (doc.get("github") or {}).get("repos")
    if not repos:
        return target, False

    for index, existing in enumerate(list(repos)):
        if str(existing).lower() == repo.strip().lower():
            del repos[index]
            target.write_text(tomlkit.dumps(doc), encoding="utf-8")
            logger.info("Removed %s from %s", repo, target)
            return target, True
    return target, False

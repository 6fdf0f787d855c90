"""
Configuration loading and validation for the approval gate.

This module handles:
- Loading an optional approval-gate.yaml file
- Environment variable resolution (${VAR} syntax) inside the YAML
- GitHub Actions inputs (INPUT_* variables) and runner variables
- Validation of required fields and default values
- Building the per-session SessionConfig once approvers are resolved
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

import yaml

from approval_gate.errors import ConfigurationError
from approval_gate.issue_text import build_issue_body, build_issue_title
from approval_gate.keywords import Vocabulary, get_registry
from approval_gate.labels import parse_csv, parse_labels
from approval_gate.quorum import effective_threshold, normalize_login

if TYPE_CHECKING:
    from approval_gate.github.tracker import IssueTracker

DEFAULT_CONFIG_FILE = "approval-gate.yaml"
DEFAULT_POLL_INTERVAL_SECONDS = 10.0
DEFAULT_TIMEOUT_MINUTES = 360.0


@dataclass
class GitHubConfig:
    """Workflow run and repository context."""
    repository: str = ""                       # "owner/repo" the workflow runs in
    owner: str = ""                            # Repository owner
    run_id: int = 0                            # Workflow run id
    server_url: str = "https://github.com"     # Base URL for run links
    actor: str = ""                            # User that triggered the run
    token: str = ""                            # Token passed to gh as GH_TOKEN


@dataclass
class IssueConfig:
    """Tracking issue content and destination."""
    title: str = ""                            # Empty uses the default title
    body: str = ""                             # Extra text appended to the body
    body_file: str = ""                        # File whose contents replace body
    labels: list[str] = field(default_factory=list)
    target_owner: str = ""                     # Defaults to the repository owner
    target_repo: str = ""                      # Defaults to the repository name


@dataclass
class ApprovalConfig:
    """Who can approve and how many approvals are needed."""
    approvers: list[str] = field(default_factory=list)  # Logins or org/team slugs
    minimum_approvals: int = 0                 # 0 means every approver
    exclude_initiator: bool = False            # Drop the run's actor from approvers
    fail_on_denial: bool = True                # Denied exits non-zero
    additional_approved_words: list[str] = field(default_factory=list)
    additional_denied_words: list[str] = field(default_factory=list)

    def vocabulary(self) -> Vocabulary:
        """Vocabulary with this run's custom words and any registered ones."""
        return Vocabulary.with_custom_words(
            self.additional_approved_words,
            self.additional_denied_words,
        ).merge(get_registry().snapshot())


@dataclass
class PollingConfig:
    """Poll loop timing."""
    interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60


@dataclass
class GateConfig:
    """
    Main configuration for an approval gate run.

    Loaded from approval-gate.yaml (optional) overlaid with environment inputs.
    """
    github: GitHubConfig = field(default_factory=GitHubConfig)
    issue: IssueConfig = field(default_factory=IssueConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    output_path: str = ""                      # GITHUB_OUTPUT file, empty disables
    log_dir: str = ""                          # JSONL event log dir, empty disables

    @property
    def target_owner(self) -> str:
        return self.issue.target_owner or self.github.owner

    @property
    def target_repo(self) -> str:
        if self.issue.target_repo:
            return self.issue.target_repo
        return self.github.repository.split("/", 1)[-1]

    @property
    def run_url(self) -> str:
        server = self.github.server_url.rstrip("/")
        return f"{server}/{self.github.repository}/actions/runs/{self.github.run_id}"

    @property
    def logs_path(self) -> Optional[Path]:
        return Path(self.log_dir) if self.log_dir else None


@dataclass(frozen=True)
class SessionConfig:
    """
    Everything a single approval session needs.

    Built from GateConfig once approvers have been resolved.
    """
    owner: str
    repo: str
    approvers: tuple[str, ...]
    minimum_approvals: int = 0
    labels: tuple[str, ...] = ()
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    timeout_seconds: float = DEFAULT_TIMEOUT_MINUTES * 60
    issue_title: str = ""
    issue_body: str = ""
    vocabulary: Vocabulary = field(default_factory=Vocabulary)

    def __post_init__(self) -> None:
        effective_threshold(self.approvers, self.minimum_approvals)
        if self.poll_interval_seconds <= 0:
            raise ConfigurationError("poll interval must be positive")
        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout must be positive")

    @property
    def required_approvals(self) -> int:
        return effective_threshold(self.approvers, self.minimum_approvals)


# GitHub Actions input name -> (section, key, kind)
INPUT_ENV_VARS: dict[str, tuple[Optional[str], str, str]] = {
    "INPUT_APPROVERS": ("approval", "approvers", "csv"),
    "INPUT_MINIMUM-APPROVALS": ("approval", "minimum_approvals", "int"),
    "INPUT_EXCLUDE-WORKFLOW-INITIATOR-AS-APPROVER": ("approval", "exclude_initiator", "bool"),
    "INPUT_FAIL-ON-DENIAL": ("approval", "fail_on_denial", "bool"),
    "INPUT_ADDITIONAL-APPROVED-WORDS": ("approval", "additional_approved_words", "csv"),
    "INPUT_ADDITIONAL-DENIED-WORDS": ("approval", "additional_denied_words", "csv"),
    "INPUT_ISSUE-TITLE": ("issue", "title", "str"),
    "INPUT_ISSUE-BODY": ("issue", "body", "str"),
    "INPUT_ISSUE-BODY-FILE-PATH": ("issue", "body_file", "str"),
    "INPUT_LABELS": ("issue", "labels", "labels"),
    "INPUT_TARGET-REPOSITORY-OWNER": ("issue", "target_owner", "str"),
    "INPUT_TARGET-REPOSITORY": ("issue", "target_repo", "str"),
    "INPUT_POLLING-INTERVAL-SECONDS": ("polling", "interval_seconds", "float"),
    "INPUT_TIMEOUT-MINUTES": ("polling", "timeout_minutes", "float"),
    "INPUT_SECRET": ("github", "token", "str"),
    "INPUT_LOG-DIR": (None, "log_dir", "str"),
    "GITHUB_REPOSITORY": ("github", "repository", "str"),
    "GITHUB_REPOSITORY_OWNER": ("github", "owner", "str"),
    "GITHUB_RUN_ID": ("github", "run_id", "int"),
    "GITHUB_SERVER_URL": ("github", "server_url", "str"),
    "GITHUB_ACTOR": ("github", "actor", "str"),
    "GITHUB_OUTPUT": (None, "output_path", "str"),
}


def _resolve_env_vars(value: Any, env: Mapping[str, str]) -> Any:
    """
    Resolve environment variables in a value.

    Supports ${VAR} syntax for environment variable substitution.
    Returns the original value if it's not a string.
    """
    if isinstance(value, str):
        pattern = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

        def replace(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = env.get(var_name)
            if env_value is None:
                raise ConfigurationError(f"Environment variable ${{{var_name}}} is not set")
            return env_value

        return pattern.sub(replace, value)

    if isinstance(value, dict):
        return {k: _resolve_env_vars(v, env) for k, v in value.items()}

    if isinstance(value, list):
        return [_resolve_env_vars(item, env) for item in value]

    return value


def _to_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "1", "on"):
        return True
    if text in ("false", "no", "0", "off", ""):
        return False
    raise ConfigurationError(f"{name} must be true or false, got {value!r}")


def _to_int(name: str, value: Any) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _to_float(name: str, value: Any) -> float:
    try:
        return float(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def _to_list(value: Any) -> list[str]:
    """Accept either a YAML list or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return parse_csv(str(value))


def _convert_input(name: str, raw: str, kind: str) -> Any:
    if kind == "csv":
        return parse_csv(raw)
    if kind == "labels":
        return parse_labels(raw)
    if kind == "int":
        return _to_int(name, raw)
    if kind == "float":
        return _to_float(name, raw)
    if kind == "bool":
        return _to_bool(name, raw)
    return raw


def _apply_env_inputs(data: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    """Overlay non-empty environment inputs onto the YAML data."""
    for section in ("github", "issue", "approval", "polling"):
        if not isinstance(data.get(section), dict):
            data[section] = {}

    for var_name, (section, key, kind) in INPUT_ENV_VARS.items():
        raw = env.get(var_name)
        if raw is None or raw.strip() == "":
            continue
        value = _convert_input(var_name, raw, kind)
        if section is None:
            data[key] = value
        else:
            data[section][key] = value

    # Fallback token for local runs
    github = data["github"]
    if not github.get("token") and env.get("GITHUB_TOKEN"):
        github["token"] = env["GITHUB_TOKEN"]
    return data


def _parse_github_config(data: dict[str, Any]) -> GitHubConfig:
    """Parse GitHub run context from dict."""
    repository = str(data.get("repository", "")).strip()
    if not repository or "/" not in repository:
        raise ConfigurationError(
            "github.repository is required in owner/repo form (GITHUB_REPOSITORY)"
        )
    return GitHubConfig(
        repository=repository,
        owner=str(data.get("owner") or repository.split("/", 1)[0]),
        run_id=_to_int("github.run_id", data.get("run_id", 0)),
        server_url=str(data.get("server_url", "https://github.com")),
        actor=str(data.get("actor", "")),
        token=str(data.get("token", "")),
    )


def _parse_issue_config(data: dict[str, Any]) -> IssueConfig:
    """Parse issue configuration from dict."""
    labels = data.get("labels", [])
    return IssueConfig(
        title=str(data.get("title", "")),
        body=str(data.get("body", "")),
        body_file=str(data.get("body_file", "")),
        labels=parse_labels(labels) if isinstance(labels, str) else _to_list(labels),
        target_owner=str(data.get("target_owner", "")),
        target_repo=str(data.get("target_repo", "")),
    )


def _parse_approval_config(data: dict[str, Any]) -> ApprovalConfig:
    """Parse approval configuration from dict."""
    approvers = _to_list(data.get("approvers"))
    if not approvers:
        raise ConfigurationError("approval.approvers is required (INPUT_APPROVERS)")

    minimum = _to_int("approval.minimum_approvals", data.get("minimum_approvals", 0))
    if minimum < 0:
        raise ConfigurationError(f"minimum approvals must be >= 0, got {minimum}")

    return ApprovalConfig(
        approvers=approvers,
        minimum_approvals=minimum,
        exclude_initiator=_to_bool(
            "approval.exclude_initiator", data.get("exclude_initiator", False)
        ),
        fail_on_denial=_to_bool("approval.fail_on_denial", data.get("fail_on_denial", True)),
        additional_approved_words=_to_list(data.get("additional_approved_words")),
        additional_denied_words=_to_list(data.get("additional_denied_words")),
    )


def _parse_polling_config(data: dict[str, Any]) -> PollingConfig:
    """Parse polling configuration from dict."""
    interval = _to_float(
        "polling.interval_seconds",
        data.get("interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS),
    )
    timeout = _to_float(
        "polling.timeout_minutes",
        data.get("timeout_minutes", DEFAULT_TIMEOUT_MINUTES),
    )
    if interval <= 0:
        raise ConfigurationError("polling.interval_seconds must be positive")
    if timeout <= 0:
        raise ConfigurationError("polling.timeout_minutes must be positive")
    return PollingConfig(interval_seconds=interval, timeout_minutes=timeout)


def _read_yaml(path: Path, env: Mapping[str, str]) -> dict[str, Any]:
    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file: {e}")

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise ConfigurationError("Configuration file must contain a mapping")
    return _resolve_env_vars(raw_data, env)


def load_config(
    config_path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> GateConfig:
    """
    Load configuration from an optional YAML file and the environment.

    Environment inputs win over YAML values so a workflow step can override
    a checked-in file.

    Args:
        config_path: Path to a YAML file. If not provided, approval-gate.yaml
                     in the current directory is used when present.
        env: Environment mapping. Defaults to os.environ.

    Returns:
        GateConfig: Loaded and validated configuration.

    Raises:
        ConfigurationError: If config is invalid or cannot be loaded.
    """
    env = os.environ if env is None else env

    data: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        data = _read_yaml(path, env)
    elif Path(DEFAULT_CONFIG_FILE).exists():
        data = _read_yaml(Path(DEFAULT_CONFIG_FILE), env)

    data = _apply_env_inputs(data, env)

    return GateConfig(
        github=_parse_github_config(data.get("github", {})),
        issue=_parse_issue_config(data.get("issue", {})),
        approval=_parse_approval_config(data.get("approval", {})),
        polling=_parse_polling_config(data.get("polling", {})),
        output_path=str(data.get("output_path") or ""),
        log_dir=str(data.get("log_dir") or ""),
    )


def read_issue_body(config: GateConfig) -> str:
    """
    Custom issue body text.

    The body file, when set, takes precedence over the inline body.
    """
    if not config.issue.body_file:
        return config.issue.body
    try:
        return Path(config.issue.body_file).read_text()
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read issue body file {config.issue.body_file}: {e}"
        )


def resolve_approvers(
    config: GateConfig,
    tracker: "IssueTracker",
    timeout: Optional[float] = None,
) -> list[str]:
    """
    Expand and filter the configured approvers.

    Entries of the form org/team are expanded to the team's members.
    Duplicates are dropped case-insensitively, keeping the first spelling.
    The workflow initiator is removed when exclude_initiator is set.

    Raises:
        ConfigurationError: If no approvers remain or the minimum cannot be met.
        TrackerError: If a team lookup fails.
    """
    expanded: list[str] = []
    for entry in config.approval.approvers:
        if "/" in entry:
            org, team = entry.split("/", 1)
            expanded.extend(tracker.team_members(org, team, timeout=timeout))
        else:
            expanded.append(entry)

    initiator = normalize_login(config.github.actor)
    seen: set[str] = set()
    approvers: list[str] = []
    for login in expanded:
        key = normalize_login(login)
        if not key or key in seen:
            continue
        if config.approval.exclude_initiator and key == initiator:
            continue
        seen.add(key)
        approvers.append(login.strip())

    if not approvers:
        raise ConfigurationError("No approvers left after resolving teams and exclusions")

    effective_threshold(approvers, config.approval.minimum_approvals)
    return approvers


def build_session_config(config: GateConfig, approvers: list[str]) -> SessionConfig:
    """
    Combine loaded configuration with resolved approvers.

    The issue title and body are rendered here so the session only ever
    sees final text.
    """
    vocabulary = config.approval.vocabulary()
    return SessionConfig(
        owner=config.target_owner,
        repo=config.target_repo,
        approvers=tuple(approvers),
        minimum_approvals=config.approval.minimum_approvals,
        labels=tuple(config.issue.labels),
        poll_interval_seconds=config.polling.interval_seconds,
        timeout_seconds=config.polling.timeout_seconds,
        issue_title=build_issue_title(config.github.run_id, config.issue.title),
        issue_body=build_issue_body(
            config.run_url,
            approvers,
            config.approval.minimum_approvals,
            vocabulary,
            read_issue_body(config),
        ),
        vocabulary=vocabulary,
    )

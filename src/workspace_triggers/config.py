"""Trigger configuration models and YAML loading.

A trigger file lists one entry per trigger instance:

    state_dir: .triggers/state
    triggers:
      - id: new_invoices
        provider: gmail
        interval: PT5M
        query: "has:attachment subject:invoice"
        sender: billing@example.com
        max_items_per_poll: 50
        credentials:
          client_id_env: GMAIL_CLIENT_ID
          client_secret_env: GMAIL_CLIENT_SECRET
          refresh_token_env: GMAIL_REFRESH_TOKEN
        on_match:
          script: ./scripts/on_invoice.sh

Every option is validated when the file is loaded, so contradictory or
out-of-range settings fail before any poll is attempted.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .models import DEFAULT_MAX_SEEN
from .time_utils import parse_duration

MIN_INTERVAL = timedelta(minutes=1)
DEFAULT_INTERVAL = timedelta(minutes=5)
DEFAULT_MAX_ITEMS_PER_POLL = 100
DEFAULT_ESCALATE_AFTER = 3
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_READ_TIMEOUT = 20.0
DEFAULT_STATE_DIR = ".triggers/state"

EVENT_STATUSES = ("confirmed", "tentative", "cancelled")


class TriggerConfigError(ValueError):
    """Raised when trigger configuration is invalid or contradictory."""


@dataclass
class FilterConfig:
    """Item filters applied to every candidate; all configured filters must match.

    Attributes:
        query: Provider-native search string, passed to the provider verbatim.
        keyword: Substring that must appear in the item text.
        sender: Sender or organizer address the item must come from.
        status: Event status the item must have.
        labels: Labels that must all be present.
        exclude_labels: Labels that must NOT be present.
    """

    query: Optional[str] = None
    keyword: Optional[str] = None
    sender: Optional[str] = None
    status: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    exclude_labels: List[str] = field(default_factory=list)


@dataclass
class OnMatchConfig:
    """What to execute when a trigger fires."""

    script: str  # Path to bash script
    env: Dict[str, str] = field(default_factory=dict)  # Additional env vars to pass


@dataclass
class CredentialsConfig:
    """Where to find credentials for the provider.

    Either a service account (file path or env var holding the JSON key) or
    an OAuth client with a refresh token. Each OAuth value can be given
    literally or through a `<name>_env` indirection.
    """

    service_account_file: Optional[str] = None
    service_account_env: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None
    scopes: List[str] = field(default_factory=list)

    @property
    def uses_service_account(self) -> bool:
        return bool(self.service_account_file or self.service_account_env)


@dataclass
class PollConfig:
    """Configuration for a single trigger instance."""

    id: str
    provider: str
    resources: List[str]
    interval: timedelta = DEFAULT_INTERVAL
    initial_lookback: Optional[timedelta] = None
    filter: FilterConfig = field(default_factory=FilterConfig)
    max_items_per_poll: int = DEFAULT_MAX_ITEMS_PER_POLL
    max_seen: int = DEFAULT_MAX_SEEN
    escalate_after: int = DEFAULT_ESCALATE_AFTER
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    credentials: Optional[CredentialsConfig] = None
    options: Dict[str, Any] = field(default_factory=dict)
    on_match: Optional[OnMatchConfig] = None

    @property
    def lookback(self) -> timedelta:
        """How far back the very first poll looks; defaults to the interval."""
        return self.initial_lookback or self.interval

    @property
    def timeouts(self) -> tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)


@dataclass
class TriggersConfig:
    """Top-level trigger file configuration."""

    triggers: List[PollConfig] = field(default_factory=list)
    state_dir: Path = Path(DEFAULT_STATE_DIR)

    def get(self, trigger_id: str) -> PollConfig:
        for trigger in self.triggers:
            if trigger.id == trigger_id:
                return trigger
        known = ", ".join(trigger.id for trigger in self.triggers) or "none"
        raise TriggerConfigError(f"Unknown trigger '{trigger_id}'. Configured: {known}")


def _str_list(value: Any, where: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise TriggerConfigError(f"{where} must be a string or a list of strings")
    return list(value)


def _optional_str(raw: Dict[str, Any], key: str, where: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise TriggerConfigError(f"{where} '{key}' must be a string")
    stripped = value.strip()
    return stripped or None


def _positive_int(raw: Dict[str, Any], key: str, default: int, where: str) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TriggerConfigError(f"{where} '{key}' must be an integer")
    if value < 1:
        raise TriggerConfigError(f"{where} '{key}' must be at least 1")
    return value


def _positive_float(raw: Dict[str, Any], key: str, default: float, where: str) -> float:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TriggerConfigError(f"{where} '{key}' must be numeric")
    if value <= 0:
        raise TriggerConfigError(f"{where} '{key}' must be greater than zero")
    return float(value)


def _duration(raw: Dict[str, Any], key: str, where: str) -> Optional[timedelta]:
    if raw.get(key) is None:
        return None
    try:
        return parse_duration(raw[key])
    except ValueError as exc:
        raise TriggerConfigError(f"{where} '{key}': {exc}") from exc


def _secret(raw: Dict[str, Any], key: str, where: str) -> Optional[str]:
    env_name = _optional_str(raw, f"{key}_env", where)
    if env_name:
        value = os.environ.get(env_name)
        if not value:
            raise TriggerConfigError(f"{where} environment variable '{env_name}' for '{key}' is not set")
        return value
    return _optional_str(raw, key, where)


def _parse_credentials(raw: Any, where: str) -> Optional[CredentialsConfig]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise TriggerConfigError(f"{where} must be a mapping")

    credentials = CredentialsConfig(
        service_account_file=_optional_str(raw, "service_account_file", where),
        service_account_env=_optional_str(raw, "service_account_env", where),
        client_id=_secret(raw, "client_id", where),
        client_secret=_secret(raw, "client_secret", where),
        refresh_token=_secret(raw, "refresh_token", where),
        scopes=_str_list(raw.get("scopes"), f"{where} 'scopes'"),
    )

    oauth_values = [credentials.client_id, credentials.client_secret, credentials.refresh_token]
    if credentials.uses_service_account and any(oauth_values):
        raise TriggerConfigError(f"{where} cannot combine a service account with OAuth client settings")
    if not credentials.uses_service_account and not all(oauth_values):
        raise TriggerConfigError(
            f"{where} requires either a service account or client_id, client_secret and refresh_token"
        )
    return credentials


def _parse_filter(raw: Dict[str, Any], where: str) -> FilterConfig:
    sender = _optional_str(raw, "sender", where)
    organizer = _optional_str(raw, "organizer", where)
    if sender and organizer and sender != organizer:
        raise TriggerConfigError(f"{where} 'sender' and 'organizer' are aliases and must not differ")

    status = _optional_str(raw, "status", where)
    if status is not None:
        status = status.lower()
        if status not in EVENT_STATUSES:
            raise TriggerConfigError(
                f"{where} 'status' must be one of: {', '.join(EVENT_STATUSES)}"
            )

    return FilterConfig(
        query=_optional_str(raw, "query", where),
        keyword=_optional_str(raw, "keyword", where),
        sender=sender or organizer,
        status=status,
        labels=_str_list(raw.get("labels"), f"{where} 'labels'"),
        exclude_labels=_str_list(raw.get("exclude_labels"), f"{where} 'exclude_labels'"),
    )


def _parse_resources(raw: Dict[str, Any], where: str) -> List[str]:
    has_single = raw.get("resource") is not None
    has_multiple = raw.get("resources") is not None
    if has_single and has_multiple:
        raise TriggerConfigError(f"{where} 'resource' and 'resources' are mutually exclusive")
    if has_single:
        resource = raw["resource"]
        if not isinstance(resource, str) or not resource.strip():
            raise TriggerConfigError(f"{where} 'resource' must be a non-empty string")
        return [resource.strip()]
    if has_multiple:
        resources = _str_list(raw["resources"], f"{where} 'resources'")
        resources = [resource.strip() for resource in resources if resource.strip()]
        if not resources:
            raise TriggerConfigError(f"{where} 'resources' must list at least one resource")
        if len(set(resources)) != len(resources):
            raise TriggerConfigError(f"{where} 'resources' contains duplicates")
        return resources
    return []


def _parse_on_match(raw: Any, where: str) -> Optional[OnMatchConfig]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise TriggerConfigError(f"{where} must be a mapping")
    if "script" not in raw:
        raise TriggerConfigError(f"{where} missing required 'script' field")
    env = raw.get("env", {}) or {}
    if not isinstance(env, dict):
        raise TriggerConfigError(f"{where} 'env' must be a mapping")
    return OnMatchConfig(script=str(raw["script"]), env={str(k): str(v) for k, v in env.items()})


def parse_poll_config(raw: Dict[str, Any], index: int = 0) -> PollConfig:
    """Parse and validate one trigger entry.

    Args:
        raw: The mapping read from the trigger file.
        index: Position of the entry, used in error messages.

    Returns:
        A validated PollConfig.

    Raises:
        TriggerConfigError: If any option is missing, out of range or
            contradicts another option.
    """
    if not isinstance(raw, dict):
        raise TriggerConfigError(f"Trigger {index} must be a mapping")
    if not raw.get("id"):
        raise TriggerConfigError(f"Trigger {index} missing required 'id' field")
    if not raw.get("provider"):
        raise TriggerConfigError(f"Trigger {index} missing required 'provider' field")

    trigger_id = str(raw["id"])
    where = f"Trigger '{trigger_id}'"

    options = raw.get("options", {}) or {}
    if not isinstance(options, dict):
        raise TriggerConfigError(f"{where} 'options' must be a mapping")

    max_items = _positive_int(raw, "max_items_per_poll", DEFAULT_MAX_ITEMS_PER_POLL, where)
    config = PollConfig(
        id=trigger_id,
        provider=str(raw["provider"]),
        resources=_parse_resources(raw, where),
        interval=_duration(raw, "interval", where) or DEFAULT_INTERVAL,
        initial_lookback=_duration(raw, "initial_lookback", where),
        filter=_parse_filter(raw, where),
        max_items_per_poll=max_items,
        max_seen=_positive_int(raw, "max_seen", max(DEFAULT_MAX_SEEN, max_items), where),
        escalate_after=_positive_int(raw, "escalate_after", DEFAULT_ESCALATE_AFTER, where),
        connect_timeout=_positive_float(raw, "connect_timeout", DEFAULT_CONNECT_TIMEOUT, where),
        read_timeout=_positive_float(raw, "read_timeout", DEFAULT_READ_TIMEOUT, where),
        credentials=_parse_credentials(raw.get("credentials"), f"{where} 'credentials'"),
        options=dict(options),
        on_match=_parse_on_match(raw.get("on_match"), f"{where} 'on_match'"),
    )
    validate_poll_config(config)
    return config


def validate_poll_config(config: PollConfig) -> None:
    """Validate a trigger against its provider's limits.

    Fills in the provider's default resource when none was configured.

    Raises:
        TriggerConfigError: If the configuration cannot be polled.
    """
    from .providers import get_provider_class

    where = f"Trigger '{config.id}'"

    if config.interval < MIN_INTERVAL:
        raise TriggerConfigError(f"{where} polling interval must be at least 1 minute (PT1M)")
    if config.initial_lookback is not None and config.initial_lookback <= timedelta(0):
        raise TriggerConfigError(f"{where} 'initial_lookback' must be positive")

    try:
        provider_cls = get_provider_class(config.provider)
    except ValueError as exc:
        raise TriggerConfigError(f"{where}: {exc}") from exc

    ceiling = provider_cls.MAX_ITEMS_PER_POLL
    if not 1 <= config.max_items_per_poll <= ceiling:
        raise TriggerConfigError(
            f"{where} 'max_items_per_poll' must be between 1 and {ceiling} for provider '{config.provider}'"
        )
    if config.max_seen < config.max_items_per_poll:
        # One poll may fire max_items_per_poll items at a single cursor value
        raise TriggerConfigError(
            f"{where} 'max_seen' must be at least 'max_items_per_poll' ({config.max_items_per_poll})"
        )

    if not config.resources:
        if provider_cls.DEFAULT_RESOURCE is None:
            raise TriggerConfigError(f"{where} provider '{config.provider}' requires 'resource' or 'resources'")
        config.resources = [provider_cls.DEFAULT_RESOURCE]

    if provider_cls.REQUIRES_CREDENTIALS and config.credentials is None:
        raise TriggerConfigError(f"{where} provider '{config.provider}' requires 'credentials'")

    provider_cls.validate_options(config)


def load_triggers_config(path: Path) -> TriggersConfig:
    """Load and validate a trigger file."""
    if not path.exists():
        raise TriggerConfigError(f"Trigger config file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise TriggerConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if not raw:
        raise TriggerConfigError(f"Empty trigger config file: {path}")
    if not isinstance(raw, dict):
        raise TriggerConfigError("Trigger config must be a mapping")
    if "triggers" not in raw or not isinstance(raw["triggers"], list):
        raise TriggerConfigError("Trigger config must contain a 'triggers' list")

    triggers: List[PollConfig] = []
    seen_ids: set[str] = set()
    for index, trigger_raw in enumerate(raw["triggers"]):
        trigger = parse_poll_config(trigger_raw, index)
        if trigger.id in seen_ids:
            raise TriggerConfigError(f"Duplicate trigger id detected: {trigger.id}")
        seen_ids.add(trigger.id)
        triggers.append(trigger)

    state_dir = Path(str(raw.get("state_dir") or DEFAULT_STATE_DIR)).expanduser()
    if not state_dir.is_absolute():
        state_dir = path.parent / state_dir

    return TriggersConfig(triggers=triggers, state_dir=state_dir)

"""Tests for trigger configuration loading and validation."""

from datetime import timedelta
from pathlib import Path

import pytest

from workspace_triggers.config import (
    DEFAULT_INTERVAL,
    PollConfig,
    TriggerConfigError,
    load_triggers_config,
    parse_poll_config,
    validate_poll_config,
)

OAUTH = {
    "client_id": "client",
    "client_secret": "secret",
    "refresh_token": "refresh",
}


class TestLoadTriggersConfig:
    """Tests for loading trigger files."""

    def test_load_valid_config(self, tmp_path: Path) -> None:
        """Test loading a trigger file with every common option."""
        config_file = tmp_path / "triggers.yaml"
        config_file.write_text("""
state_dir: state
triggers:
  - id: invoices
    provider: gmail
    interval: PT10M
    initial_lookback: P1D
    query: "has:attachment"
    keyword: Invoice
    sender: Billing@Example.com
    labels: [INBOX]
    exclude_labels: SPAM
    max_items_per_poll: 50
    credentials:
      client_id: client
      client_secret: secret
      refresh_token: refresh
    options:
      include_spam_trash: true
    on_match:
      script: ./on_invoice.sh
      env:
        WORKFLOW: invoices.yaml
""")

        config = load_triggers_config(config_file)

        assert config.state_dir == tmp_path / "state"
        trigger = config.get("invoices")
        assert trigger.provider == "gmail"
        assert trigger.resources == ["me"]
        assert trigger.interval == timedelta(minutes=10)
        assert trigger.lookback == timedelta(days=1)
        assert trigger.filter.query == "has:attachment"
        assert trigger.filter.keyword == "Invoice"
        assert trigger.filter.sender == "Billing@Example.com"
        assert trigger.filter.labels == ["INBOX"]
        assert trigger.filter.exclude_labels == ["SPAM"]
        assert trigger.max_items_per_poll == 50
        assert trigger.credentials.refresh_token == "refresh"
        assert trigger.options == {"include_spam_trash": True}
        assert trigger.on_match.script == "./on_invoice.sh"
        assert trigger.on_match.env == {"WORKFLOW": "invoices.yaml"}

    def test_load_minimal_config(self, tmp_path: Path) -> None:
        """Test defaults applied to a minimal trigger."""
        config_file = tmp_path / "triggers.yaml"
        config_file.write_text("""
triggers:
  - id: local
    provider: memory
""")

        config = load_triggers_config(config_file)

        trigger = config.triggers[0]
        assert trigger.resources == ["default"]
        assert trigger.interval == DEFAULT_INTERVAL
        assert trigger.lookback == DEFAULT_INTERVAL
        assert trigger.max_items_per_poll == 100
        assert trigger.max_seen == 1000
        assert trigger.escalate_after == 3
        assert trigger.timeouts == (5.0, 20.0)
        assert trigger.on_match is None
        assert config.state_dir == tmp_path / ".triggers" / "state"

    def test_load_missing_file(self, tmp_path: Path) -> None:
        """Test error when config file doesn't exist."""
        with pytest.raises(TriggerConfigError, match="not found"):
            load_triggers_config(tmp_path / "nonexistent.yaml")

    def test_load_empty_file(self, tmp_path: Path) -> None:
        """Test error when config file is empty."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        with pytest.raises(TriggerConfigError, match="Empty"):
            load_triggers_config(config_file)

    def test_load_invalid_yaml(self, tmp_path: Path) -> None:
        """Test error when the file is not valid YAML."""
        config_file = tmp_path / "broken.yaml"
        config_file.write_text("triggers: [unclosed")

        with pytest.raises(TriggerConfigError, match="Invalid YAML"):
            load_triggers_config(config_file)

    def test_load_missing_triggers(self, tmp_path: Path) -> None:
        """Test error when the triggers key is missing."""
        config_file = tmp_path / "no_triggers.yaml"
        config_file.write_text("other_key: value")

        with pytest.raises(TriggerConfigError, match="must contain a 'triggers' list"):
            load_triggers_config(config_file)

    def test_duplicate_ids_rejected(self, tmp_path: Path) -> None:
        """Test that two triggers cannot share an id."""
        config_file = tmp_path / "dupes.yaml"
        config_file.write_text("""
triggers:
  - id: same
    provider: memory
  - id: same
    provider: memory
""")

        with pytest.raises(TriggerConfigError, match="Duplicate trigger id"):
            load_triggers_config(config_file)

    def test_get_unknown_trigger(self, tmp_path: Path) -> None:
        """Test looking up a trigger id that is not configured."""
        config_file = tmp_path / "triggers.yaml"
        config_file.write_text("triggers:\n  - id: a\n    provider: memory\n")

        config = load_triggers_config(config_file)

        with pytest.raises(TriggerConfigError, match="Unknown trigger 'b'"):
            config.get("b")


class TestParsePollConfig:
    """Tests for per-trigger validation."""

    def test_interval_below_one_minute_rejected(self) -> None:
        """Test that a sub-minute interval fails before any poll."""
        with pytest.raises(TriggerConfigError, match="at least 1 minute"):
            parse_poll_config({"id": "fast", "provider": "memory", "interval": "PT30S"})

    def test_interval_accepts_seconds(self) -> None:
        """Test that a numeric interval is read as seconds."""
        config = parse_poll_config({"id": "t", "provider": "memory", "interval": 90})

        assert config.interval == timedelta(seconds=90)

    def test_invalid_interval_string(self) -> None:
        """Test that a malformed duration is a configuration error."""
        with pytest.raises(TriggerConfigError, match="'interval'"):
            parse_poll_config({"id": "t", "provider": "memory", "interval": "five minutes"})

    def test_unknown_provider(self) -> None:
        """Test that the provider must be registered."""
        with pytest.raises(TriggerConfigError, match="Unknown provider: outlook"):
            parse_poll_config({"id": "t", "provider": "outlook"})

    def test_missing_id(self) -> None:
        """Test that id is required."""
        with pytest.raises(TriggerConfigError, match="missing required 'id'"):
            parse_poll_config({"provider": "memory"})

    def test_max_items_above_provider_ceiling(self) -> None:
        """Test that max_items_per_poll is bounded by the provider."""
        with pytest.raises(TriggerConfigError, match="between 1 and 500"):
            parse_poll_config({"id": "t", "provider": "gmail", "max_items_per_poll": 501, "credentials": OAUTH})

    def test_max_items_must_be_positive(self) -> None:
        """Test that zero items per poll is rejected."""
        with pytest.raises(TriggerConfigError, match="at least 1"):
            parse_poll_config({"id": "t", "provider": "memory", "max_items_per_poll": 0})

    def test_max_seen_must_hold_one_poll(self) -> None:
        """Test that max_seen below max_items_per_poll is rejected."""
        with pytest.raises(TriggerConfigError, match="'max_seen' must be at least 'max_items_per_poll' \\(10\\)"):
            parse_poll_config({"id": "t", "provider": "memory", "max_items_per_poll": 10, "max_seen": 2})

    def test_max_seen_default_follows_large_max_items(self) -> None:
        """Test that the default seen bound grows with max_items_per_poll."""
        trigger = parse_poll_config({"id": "t", "provider": "memory", "max_items_per_poll": 2500})

        assert trigger.max_seen == 2500

    def test_validate_rejects_constructed_config_with_small_max_seen(self) -> None:
        config = PollConfig(id="t", provider="memory", resources=["default"], max_items_per_poll=2500)

        with pytest.raises(TriggerConfigError, match="'max_seen' must be at least"):
            validate_poll_config(config)

    def test_resource_and_resources_are_exclusive(self) -> None:
        """Test that a trigger cannot name both resource and resources."""
        with pytest.raises(TriggerConfigError, match="mutually exclusive"):
            parse_poll_config({"id": "t", "provider": "memory", "resource": "a", "resources": ["b"]})

    def test_duplicate_resources_rejected(self) -> None:
        """Test that fan-out resources must be distinct."""
        with pytest.raises(TriggerConfigError, match="duplicates"):
            parse_poll_config({"id": "t", "provider": "memory", "resources": ["a", "a"]})

    def test_sheets_requires_resource(self) -> None:
        """Test that spreadsheets have no default resource."""
        with pytest.raises(TriggerConfigError, match="requires 'resource'"):
            parse_poll_config({"id": "t", "provider": "sheets", "credentials": OAUTH})

    def test_google_provider_requires_credentials(self) -> None:
        """Test that credentials are required for Google providers."""
        with pytest.raises(TriggerConfigError, match="requires 'credentials'"):
            parse_poll_config({"id": "t", "provider": "calendar"})

    def test_sender_and_organizer_conflict(self) -> None:
        """Test that the sender aliases must agree."""
        with pytest.raises(TriggerConfigError, match="aliases"):
            parse_poll_config(
                {"id": "t", "provider": "memory", "sender": "a@example.com", "organizer": "b@example.com"}
            )

    def test_organizer_alias(self) -> None:
        """Test that organizer fills the sender filter."""
        config = parse_poll_config({"id": "t", "provider": "memory", "organizer": "boss@example.com"})

        assert config.filter.sender == "boss@example.com"

    def test_status_is_canonicalized(self) -> None:
        """Test that status accepts any case."""
        config = parse_poll_config({"id": "t", "provider": "memory", "status": "CONFIRMED"})

        assert config.filter.status == "confirmed"

    def test_unknown_status_rejected(self) -> None:
        """Test that status must be a known event status."""
        with pytest.raises(TriggerConfigError, match="must be one of"):
            parse_poll_config({"id": "t", "provider": "memory", "status": "maybe"})

    def test_credentials_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that OAuth values can come from environment variables."""
        monkeypatch.setenv("TEST_CLIENT_ID", "env-client")
        monkeypatch.setenv("TEST_CLIENT_SECRET", "env-secret")
        monkeypatch.setenv("TEST_REFRESH_TOKEN", "env-refresh")

        config = parse_poll_config(
            {
                "id": "t",
                "provider": "calendar",
                "credentials": {
                    "client_id_env": "TEST_CLIENT_ID",
                    "client_secret_env": "TEST_CLIENT_SECRET",
                    "refresh_token_env": "TEST_REFRESH_TOKEN",
                },
            }
        )

        assert config.credentials.client_id == "env-client"
        assert config.credentials.refresh_token == "env-refresh"
        assert config.resources == ["primary"]

    def test_missing_credential_environment_variable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that an unset credential variable is reported."""
        monkeypatch.delenv("MISSING_CLIENT_ID", raising=False)

        with pytest.raises(TriggerConfigError, match="MISSING_CLIENT_ID"):
            parse_poll_config(
                {
                    "id": "t",
                    "provider": "calendar",
                    "credentials": {"client_id_env": "MISSING_CLIENT_ID", "client_secret": "s", "refresh_token": "r"},
                }
            )

    def test_service_account_and_oauth_conflict(self) -> None:
        """Test that credentials cannot mix a service account with OAuth."""
        with pytest.raises(TriggerConfigError, match="cannot combine"):
            parse_poll_config(
                {
                    "id": "t",
                    "provider": "drive",
                    "credentials": {"service_account_file": "key.json", **OAUTH},
                }
            )

    def test_incomplete_oauth_rejected(self) -> None:
        """Test that OAuth needs client id, secret and refresh token."""
        with pytest.raises(TriggerConfigError, match="requires either"):
            parse_poll_config({"id": "t", "provider": "drive", "credentials": {"client_id": "c"}})

    def test_unknown_option_rejected(self) -> None:
        """Test that options are checked against the provider."""
        with pytest.raises(TriggerConfigError, match="unknown options"):
            parse_poll_config({"id": "t", "provider": "drive", "credentials": OAUTH, "options": {"colour": "red"}})

    def test_sheets_include_details_must_be_boolean(self) -> None:
        """Test provider-specific option validation."""
        with pytest.raises(TriggerConfigError, match="include_details"):
            parse_poll_config(
                {
                    "id": "t",
                    "provider": "sheets",
                    "resource": "sheet-1",
                    "credentials": OAUTH,
                    "options": {"include_details": "yes"},
                }
            )

    def test_validate_constructed_config(self) -> None:
        """Test validating a config built in code."""
        config = PollConfig(id="t", provider="memory", resources=[], interval=timedelta(seconds=10))

        with pytest.raises(TriggerConfigError, match="at least 1 minute"):
            validate_poll_config(config)

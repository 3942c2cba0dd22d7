"""Tests for the configuration module."""

from pathlib import Path

import pytest

from app.config import (
    AppConfig,
    ConfigurationError,
    EmergencyConfig,
    NotificationsConfig,
    load_config,
    parse_app_config,
)
from app.config.duration import (
    DurationParseError,
    parse_duration,
    seconds_to_human_readable,
    validate_duration_range,
)
from app.config.environment import DEFAULT_DATABASE_URL, load_environment_config
from app.config.validators import check_for_warnings

FULL_CONFIG = """
matching:
  max_results: 5
notifications:
  platform_name: "Kiwi Companion"
  emergency_number: "111"
  channel_workers: 6
  expiry_overrides:
    PaymentReceived: "45d"
emergency:
  fan_out_workers: 2
  branch_workers: 8
  max_attempts: 4
  retry_initial_delay: 0.5
  sweep_interval: "PT10M"
  retry_after: "90s"
email:
  enabled: true
  use_tls: false
logging:
  level: DEBUG
  format: json
  environment: staging
"""


class TestConfigurationLoading:
    """Test configuration loading from YAML files."""

    def test_load_full_config(self, tmp_path, mock_env_vars):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(FULL_CONFIG)

        app_config, env_config = load_config(config_path)

        assert app_config.matching.max_results == 5
        assert app_config.notifications.platform_name == "Kiwi Companion"
        assert app_config.notifications.channel_workers == 6
        assert app_config.notifications.expiry_override_seconds() == {"PaymentReceived": 45 * 86400}
        assert app_config.emergency.max_attempts == 4
        assert app_config.emergency.sweep_interval_seconds == 600
        assert app_config.emergency.retry_after_seconds == 90
        assert app_config.email.use_tls is False
        assert app_config.logging.level == "DEBUG"
        assert app_config.logging.format == "json"
        assert app_config.logging.environment == "staging"
        assert env_config.smtp_host == "smtp.test.com"

    def test_defaults_when_no_file_found(self, tmp_path, mock_env_vars):
        """Without --config and without config.yaml the built-in defaults apply."""
        mock_env_vars.chdir(tmp_path)

        app_config, _ = load_config()

        assert app_config == AppConfig()
        assert app_config.matching.max_results == 10
        assert app_config.notifications.emergency_number == "111"
        assert app_config.emergency.sweep_interval_seconds == 300
        assert app_config.emergency.retry_after_seconds == 120

    def test_default_location_is_used(self, tmp_path, mock_env_vars):
        (tmp_path / "config.yaml").write_text("matching:\n  max_results: 3\n")
        mock_env_vars.chdir(tmp_path)

        app_config, _ = load_config()

        assert app_config.matching.max_results == 3

    def test_empty_file_gives_defaults(self, tmp_path, mock_env_vars):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("")

        app_config, _ = load_config(config_path)

        assert app_config == AppConfig()

    def test_config_file_not_found(self, mock_env_vars):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(Path("nonexistent.yaml"))

        assert "not found" in str(exc_info.value).lower()

    def test_invalid_yaml_syntax(self, tmp_path, mock_env_vars):
        invalid_yaml = tmp_path / "invalid.yaml"
        invalid_yaml.write_text("matching:\n  max_results: 'ten\n    invalid yaml")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(invalid_yaml)

        assert "parse" in str(exc_info.value).lower()

    def test_top_level_must_be_mapping(self, tmp_path, mock_env_vars):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(config_path)

    def test_warnings_are_emitted(self, tmp_path, mock_env_vars):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("email:\n  enabled: false\n")

        with pytest.warns(UserWarning, match="Email is disabled"):
            load_config(config_path)


class TestConfigValidation:
    """Tests for schema validation errors."""

    def test_errors_are_collected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_app_config(
                {
                    "matching": {"max_results": 0},
                    "emergency": {"sweep_interval": "5x"},
                }
            )

        error = exc_info.value
        assert len(error.errors) == 2
        assert any("matching -> max_results" in e for e in error.errors)
        assert any("emergency -> sweep_interval" in e for e in error.errors)
        assert "Validation Errors:" in str(error)
        assert "Suggestions:" in str(error)

    def test_invalid_type_message(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_app_config({"emergency": {"max_attempts": "lots"}})

        assert any("emergency -> max_attempts" in e for e in exc_info.value.errors)

    def test_unknown_expiry_category(self):
        with pytest.raises(ValueError, match="Unknown notification category 'Birthday'"):
            NotificationsConfig(expiry_overrides={"Birthday": "7d"})

    def test_expiry_override_out_of_range(self):
        with pytest.raises(ValueError, match="too short"):
            NotificationsConfig(expiry_overrides={"EmergencyAlert": "10m"})

    def test_blank_platform_name_rejected(self):
        with pytest.raises(ValueError):
            NotificationsConfig(platform_name="   ")

    def test_platform_name_is_stripped(self):
        assert NotificationsConfig(platform_name="  Kiwi  ").platform_name == "Kiwi"

    def test_branch_workers_must_cover_all_branches(self):
        with pytest.raises(ValueError):
            EmergencyConfig(branch_workers=3)

    def test_retained_results_cannot_be_negative(self):
        assert EmergencyConfig().retained_results == 256
        assert EmergencyConfig(retained_results=0).retained_results == 0
        with pytest.raises(ValueError):
            EmergencyConfig(retained_results=-1)

    def test_sweep_interval_range(self):
        with pytest.raises(ValueError, match="too short"):
            EmergencyConfig(sweep_interval="10s")

    def test_computed_seconds(self):
        config = EmergencyConfig(sweep_interval="1h", retry_after="PT5M")

        assert config.sweep_interval_seconds == 3600
        assert config.retry_after_seconds == 300

    def test_invalid_log_format(self):
        with pytest.raises(ConfigurationError):
            parse_app_config({"logging": {"format": "xml"}})


class TestConfigWarnings:
    """Tests for non-fatal configuration checks."""

    def test_clean_config_has_no_warnings(self):
        assert check_for_warnings({}) == []

    def test_single_attempt_warning(self):
        warnings = check_for_warnings({"emergency": {"max_attempts": 1}})

        assert len(warnings) == 1
        assert "max_attempts" in warnings[0]

    def test_single_channel_worker_warning(self):
        warnings = check_for_warnings({"notifications": {"channel_workers": 1}})

        assert "channel_workers" in warnings[0]


class TestDurationParsing:
    """Tests for duration strings."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("30s", 30),
            ("5m", 300),
            ("1h30m", 5400),
            ("7d", 604800),
            ("PT5M", 300),
            ("P7D", 604800),
            ("PT1H30M", 5400),
            ("pt90s", 90),
        ],
    )
    def test_valid_durations(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "   ", "5x", "m5", "0s", "P", "PT", "soon"])
    def test_invalid_durations(self, value):
        with pytest.raises(DurationParseError):
            parse_duration(value)

    def test_range_check(self):
        validate_duration_range(300, min_seconds=60, max_seconds=3600)

        with pytest.raises(DurationParseError, match="Sweep too long: 2 days"):
            validate_duration_range(172800, min_seconds=60, max_seconds=86400, label="Sweep")

    def test_human_readable(self):
        assert seconds_to_human_readable(1) == "1 second"
        assert seconds_to_human_readable(120) == "2 minutes"
        assert seconds_to_human_readable(3600) == "1 hour"
        assert seconds_to_human_readable(7 * 86400) == "7 days"


class TestEnvironmentConfig:
    """Tests for environment variable loading."""

    def test_everything_optional(self, clean_env):
        env_config = load_environment_config()

        assert env_config.smtp_host is None
        assert env_config.smtp_configured is False
        assert env_config.smtp_port == 587
        assert env_config.database_url == DEFAULT_DATABASE_URL
        assert env_config.smtp_sender_name == "Flight Companion"
        assert env_config.push_gateway_url is None

    def test_all_variables(self, clean_env):
        clean_env.setenv("SMTP_HOST", "smtp.test.com")
        clean_env.setenv("SMTP_PORT", "2525")
        clean_env.setenv("SMTP_USER", "mailer")
        clean_env.setenv("SMTP_PASS", "secret")
        clean_env.setenv("SMTP_SENDER_NAME", "Kiwi Companion")
        clean_env.setenv("SMTP_SENDER_ADDRESS", "alerts@example.com")
        clean_env.setenv("DATABASE_URL", "sqlite:///:memory:")
        clean_env.setenv("PUSH_GATEWAY_URL", "https://push.example.com/events")
        clean_env.setenv("PUSH_GATEWAY_TOKEN", "token")
        clean_env.setenv("LOG_LEVEL", "debug")

        env_config = load_environment_config()

        assert env_config.smtp_configured is True
        assert env_config.smtp_port == 2525
        assert env_config.smtp_user == "mailer"
        assert env_config.smtp_sender_address == "alerts@example.com"
        assert env_config.database_url == "sqlite:///:memory:"
        assert env_config.push_gateway_url == "https://push.example.com/events"
        assert env_config.push_gateway_token == "token"
        assert env_config.log_level == "debug"

    def test_invalid_smtp_port(self, clean_env):
        clean_env.setenv("SMTP_PORT", "invalid")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert "SMTP_PORT" in str(exc_info.value)

    def test_smtp_port_out_of_range(self, clean_env):
        clean_env.setenv("SMTP_PORT", "70000")

        with pytest.raises(ConfigurationError, match="between 1 and 65535"):
            load_environment_config()

    def test_credentials_must_come_in_pairs(self, clean_env):
        clean_env.setenv("SMTP_USER", "mailer")

        with pytest.raises(ConfigurationError, match="SMTP_PASS is not"):
            load_environment_config()

    def test_invalid_log_level(self, clean_env):
        clean_env.setenv("LOG_LEVEL", "LOUD")

        with pytest.raises(ConfigurationError, match="Invalid LOG_LEVEL"):
            load_environment_config()

    def test_push_gateway_must_be_http(self, clean_env):
        clean_env.setenv("PUSH_GATEWAY_URL", "ftp://push.example.com")

        with pytest.raises(ConfigurationError, match="PUSH_GATEWAY_URL"):
            load_environment_config()

    def test_errors_are_reported_together(self, clean_env):
        clean_env.setenv("SMTP_PORT", "abc")
        clean_env.setenv("LOG_LEVEL", "LOUD")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert len(exc_info.value.errors) == 2

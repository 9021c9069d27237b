# tests/core/test_config.py
"""Tests for configuration schema and loading."""

import signal
from pathlib import Path

import pytest
from pydantic import ValidationError


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the caller's interface variables out of load_settings()."""
    import os

    for key in list(os.environ):
        if key.startswith("IAC_SUPERVISOR_") or key in {
            "IAC_BINARY",
            "IAC_BINARY_PATH",
            "TERRAGRUNT_WORKING_DIR",
            "TF_CLI_ARGS",
            "TERRAGRUNT_REAL_PATH",
        }:
            monkeypatch.delenv(key)


class TestRelaySettings:
    """Tests for signal relay configuration."""

    def test_defaults(self) -> None:
        from iac_supervisor.core.config import RelaySettings

        relay = RelaySettings()

        assert relay.grace_seconds == 30.0
        assert relay.escalation_signal is None
        assert "SIGTERM" in relay.signals
        assert "SIGINT" in relay.signals
        assert signal.SIGTERM in relay.signal_numbers

    def test_short_names_normalized(self) -> None:
        from iac_supervisor.core.config import RelaySettings

        relay = RelaySettings(signals=("term", "INT"), escalation_signal="term")

        assert relay.signals == ("SIGTERM", "SIGINT")
        assert relay.escalation_signal == "SIGTERM"
        assert relay.escalation_signal_number == signal.SIGTERM

    def test_uncatchable_signal_rejected(self) -> None:
        from iac_supervisor.core.config import RelaySettings

        with pytest.raises(ValidationError, match="cannot be caught"):
            RelaySettings(signals=("SIGTERM", "SIGKILL"))

    def test_unknown_signal_rejected(self) -> None:
        from iac_supervisor.core.config import RelaySettings

        with pytest.raises(ValidationError, match="Unknown signal"):
            RelaySettings(signals=("SIGNOPE",))

    def test_empty_signals_rejected(self) -> None:
        from iac_supervisor.core.config import RelaySettings

        with pytest.raises(ValidationError):
            RelaySettings(signals=())

    def test_grace_must_be_positive(self) -> None:
        from iac_supervisor.core.config import RelaySettings

        with pytest.raises(ValidationError):
            RelaySettings(grace_seconds=0)

    def test_poll_interval_within_grace(self) -> None:
        from iac_supervisor.core.config import RelaySettings

        with pytest.raises(ValidationError, match="poll_interval_seconds"):
            RelaySettings(grace_seconds=1, poll_interval_seconds=2)

    def test_frozen(self) -> None:
        from iac_supervisor.core.config import RelaySettings

        relay = RelaySettings()
        with pytest.raises(ValidationError):
            relay.grace_seconds = 1  # type: ignore[misc]


class TestSupervisorSettings:
    """Tests for top-level settings."""

    def test_defaults(self) -> None:
        from iac_supervisor.core.config import DEFAULT_SEARCH_DIRS, SupervisorSettings

        settings = SupervisorSettings()

        assert settings.binary == "terraform"
        assert settings.binary_path is None
        assert settings.search_dirs == DEFAULT_SEARCH_DIRS
        assert settings.real_suffix == ".real"
        assert settings.separator == "-"
        assert settings.isolate_process_group is True
        assert settings.relay.grace_seconds == 30.0

    def test_orchestrator_defaults(self) -> None:
        """Orchestrator relay: short grace, then SIGTERM, then SIGKILL."""
        from iac_supervisor.core.config import SupervisorSettings

        orchestrator = SupervisorSettings().orchestrator

        assert orchestrator.binary == "terragrunt"
        assert orchestrator.relay.grace_seconds == 8.0
        assert orchestrator.relay.escalation_signal == "SIGTERM"
        assert orchestrator.relay.escalation_grace_seconds == 1.0
        assert set(orchestrator.relay.signals) == {"SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT"}

    def test_empty_binary_rejected(self) -> None:
        from iac_supervisor.core.config import SupervisorSettings

        with pytest.raises(ValidationError):
            SupervisorSettings(binary="  ")

    def test_invalid_log_level_rejected(self) -> None:
        from iac_supervisor.core.config import LoggingSettings

        with pytest.raises(ValidationError, match="Invalid log level"):
            LoggingSettings(level="LOUD")

    def test_log_level_uppercased(self) -> None:
        from iac_supervisor.core.config import LoggingSettings

        assert LoggingSettings(level="debug").level == "DEBUG"

    def test_child_env_overrides(self) -> None:
        """TF_LOG_PATH gets the wrapper pid substituted."""
        from iac_supervisor.core.config import SupervisorSettings

        settings = SupervisorSettings(tf_log="DEBUG", tf_log_path="/tmp/tf-debug-{pid}.log")

        assert settings.child_env_overrides(4242) == {
            "TF_LOG": "DEBUG",
            "TF_LOG_PATH": "/tmp/tf-debug-4242.log",
        }
        assert SupervisorSettings().child_env_overrides(1) == {}

    def test_inspection_env_overrides(self) -> None:
        from iac_supervisor.core.config import SupervisorSettings

        assert SupervisorSettings().inspection_env_overrides() == {"TF_CLI_ARGS": ""}

    def test_resolve_config_is_json_safe(self) -> None:
        import json

        from iac_supervisor.core.config import SupervisorSettings, resolve_config

        resolved = resolve_config(SupervisorSettings())

        assert json.loads(json.dumps(resolved))["relay"]["grace_seconds"] == 30.0
        assert resolved["search_dirs"][0] == "/bin"


class TestLoadSettings:
    """Tests for load_settings with files and environment."""

    def test_defaults_without_file(self) -> None:
        from iac_supervisor.core.config import load_settings

        settings = load_settings(environ={})

        assert settings.binary == "terraform"
        assert settings.relay.grace_seconds == 30.0

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        from iac_supervisor.core.config import load_settings

        from iac_supervisor.contracts import ConfigurationError

        with pytest.raises(ConfigurationError, match="missing.yaml"):
            load_settings(tmp_path / "missing.yaml", environ={})

    def test_yaml_file(self, tmp_path: Path) -> None:
        import yaml

        from iac_supervisor.core.config import load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text(
            yaml.safe_dump(
                {
                    "binary": "tofu",
                    "relay": {"grace_seconds": 12, "poll_interval_seconds": 0.25},
                    "logging": {"level": "debug", "json_output": True},
                }
            )
        )

        settings = load_settings(config_file, environ={})

        assert settings.binary == "tofu"
        assert settings.relay.grace_seconds == 12.0
        assert settings.relay.poll_interval_seconds == 0.25
        assert settings.logging.level == "DEBUG"
        assert settings.logging.json_output is True

    def test_prefixed_environment_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """IAC_SUPERVISOR_* variables override defaults, __ for nesting."""
        from iac_supervisor.core.config import load_settings

        monkeypatch.setenv("IAC_SUPERVISOR_RELAY__GRACE_SECONDS", "5")
        monkeypatch.setenv("IAC_SUPERVISOR_FS_SETTLE_SECONDS", "0")

        settings = load_settings(environ={})

        assert settings.relay.grace_seconds == 5.0
        assert settings.fs_settle_seconds == 0.0

    def test_environment_overrides_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from iac_supervisor.core.config import load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text("relay:\n  grace_seconds: 20\n")
        monkeypatch.setenv("IAC_SUPERVISOR_RELAY__GRACE_SECONDS", "3")

        assert load_settings(config_file, environ={}).relay.grace_seconds == 3.0

    def test_invalid_value_raises_validation_error(self, tmp_path: Path) -> None:
        from iac_supervisor.core.config import load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text("relay:\n  signals: [SIGKILL]\n")

        with pytest.raises(ValidationError):
            load_settings(config_file, environ={})


class TestInterfaceVariables:
    """The fixed interface variables always win."""

    def test_binary_and_paths(self, tmp_path: Path) -> None:
        from iac_supervisor.core.config import load_settings

        settings = load_settings(
            environ={
                "IAC_BINARY": "tofu",
                "IAC_BINARY_PATH": "/opt/tofu/bin/tofu",
                "TERRAGRUNT_WORKING_DIR": str(tmp_path),
                "TERRAGRUNT_REAL_PATH": "/opt/terragrunt",
            }
        )

        assert settings.binary == "tofu"
        assert settings.binary_path == Path("/opt/tofu/bin/tofu")
        assert settings.working_dir_hint == tmp_path
        assert settings.orchestrator.binary_path == Path("/opt/terragrunt")
        # Nested overlay keeps the orchestrator relay defaults
        assert settings.orchestrator.relay.grace_seconds == 8.0

    def test_empty_values_ignored(self) -> None:
        from iac_supervisor.core.config import load_settings

        settings = load_settings(environ={"IAC_BINARY": "", "IAC_BINARY_PATH": ""})

        assert settings.binary == "terraform"
        assert settings.binary_path is None

    def test_empty_cli_args_is_kept(self) -> None:
        """TF_CLI_ARGS= (set but empty) differs from unset."""
        from iac_supervisor.core.config import load_settings

        assert load_settings(environ={"TF_CLI_ARGS": ""}).cli_args == ""
        assert load_settings(environ={}).cli_args is None

    def test_interface_beats_prefixed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from iac_supervisor.core.config import load_settings

        monkeypatch.setenv("IAC_SUPERVISOR_BINARY", "terraform")

        assert load_settings(environ={"IAC_BINARY": "tofu"}).binary == "tofu"


class TestApplyEnvOverrides:
    def test_set_replace_and_remove(self) -> None:
        from iac_supervisor.core.config import apply_env_overrides

        base = {"PATH": "/bin", "TF_CLI_ARGS": "-no-color", "TF_LOG": "TRACE"}
        env = apply_env_overrides(base, {"TF_CLI_ARGS": "", "TF_LOG": None, "NEW": "1"})

        assert env == {"PATH": "/bin", "TF_CLI_ARGS": "", "NEW": "1"}
        # Base mapping untouched
        assert base["TF_CLI_ARGS"] == "-no-color"


class TestSignalNumber:
    def test_names(self) -> None:
        from iac_supervisor.core.config import signal_number

        assert signal_number("SIGTERM") == signal.SIGTERM
        assert signal_number("hup") == signal.SIGHUP

    def test_unknown(self) -> None:
        from iac_supervisor.core.config import signal_number

        with pytest.raises(ValueError, match="Unknown signal"):
            signal_number("SIGFOO")

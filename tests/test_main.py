"""Unit tests for the main entry point.

Tests the main() function including:
- CLI argument parsing
- Configuration loading with priority (CLI > env > config)
- Service wiring
- Run-once mode vs daemon mode
- Exit code handling
- Error handling
"""

from datetime import timedelta
from unittest.mock import Mock, patch

import pytest

from mailroom.config.environment import EnvironmentConfig
from mailroom.config.exceptions import ConfigurationError
from mailroom.config.models import AppConfig, LoggingConfig, ReengageConfig, SchedulerConfig
from mailroom.main import build_services, load_runtime_config, main, run_once
from mailroom.persistence import PersistenceError
from mailroom.reengage.models import ReengageResult
from mailroom.scheduler import REENGAGE_JOB_ID, SCHEDULED_JOB_ID
from mailroom.scheduler.models import ProcessDueResult, ScheduleError
from tests.helpers import RecordingTransport, add_activity, seed_user


@pytest.fixture
def env_config():
    return EnvironmentConfig(
        smtp_host="smtp.example.com",
        smtp_port=587,
        email_from="noreply@example.com",
        app_url="https://app.example.com",
        log_level="INFO",
        database_url="sqlite:///:memory:",
    )


def mock_services(scheduled=None, reengage=None):
    services = Mock()
    services.scheduler.process_due.return_value = scheduled or ProcessDueResult()
    services.reengage.run.return_value = reengage or ReengageResult()
    return services


class TestLoadRuntimeConfig:
    """Test suite for load_runtime_config helper."""

    def test_log_level_priority(self, env_config):
        """Log level priority: CLI > env > config."""
        app_config = AppConfig(logging=LoggingConfig(level="WARNING", format="json"))

        with patch("mailroom.main.load_config", return_value=(app_config, env_config)):
            _, resolved = load_runtime_config(None, "DEBUG")
            assert resolved.log_level == "DEBUG"

            env_config.log_level = "ERROR"
            _, resolved = load_runtime_config(None, None)
            assert resolved.log_level == "ERROR"

            env_config.log_level = None
            _, resolved = load_runtime_config(None, None)
            assert resolved.log_level == "WARNING"

    def test_configuration_error_propagates(self):
        with patch("mailroom.main.load_config", side_effect=ConfigurationError("bad")):
            with pytest.raises(ConfigurationError):
                load_runtime_config(None, None)


class TestRunOnce:
    """One processing cycle per mode."""

    def test_scheduled_only(self):
        services = mock_services()

        assert run_once(services, "scheduled") is False
        services.scheduler.process_due.assert_called_once()
        services.reengage.run.assert_not_called()

    def test_reengage_only(self):
        services = mock_services()

        run_once(services, "reengage")

        services.reengage.run.assert_called_once()
        services.scheduler.process_due.assert_not_called()

    def test_errors_reported(self):
        services = mock_services(
            scheduled=ProcessDueResult(processed=1, errors=[ScheduleError(id=7, message="no address")])
        )

        assert run_once(services, "all") is True
        services.reengage.run.assert_called_once()

    def test_end_to_end_with_real_services(self, db, env_config, clock):
        """Wired services deliver a due nurture and a re-engagement email."""
        transport = RecordingTransport()
        services = build_services(AppConfig(), env_config, transport=transport)
        services.ledger.clock = services.scheduler.clock = services.reengage.clock = clock
        seed_user("u-1", email="ada@example.com", first_name="Ada")
        seed_user("u-2", email="bo@example.com")
        add_activity("u-2", "login", clock() - timedelta(days=30))
        services.scheduler.schedule("u-1", "nurture_day3", clock() + timedelta(hours=1))
        clock.advance(hours=1)

        had_errors = run_once(services, "all")

        assert had_errors is False
        assert sorted(call["to"] for call in transport.calls) == ["ada@example.com", "bo@example.com"]


class TestMain:
    """Test suite for main() function."""

    @patch("mailroom.main.run_once", return_value=False)
    @patch("mailroom.main.build_services")
    @patch("mailroom.main.init_database")
    @patch("mailroom.main.close_database")
    @patch("mailroom.main.configure_logging")
    @patch("mailroom.main.load_runtime_config")
    def test_run_once_success(
        self, mock_load_config, mock_configure_logging, mock_close_db, mock_init_db, mock_build, mock_run_once, env_config
    ):
        mock_load_config.return_value = (AppConfig(), env_config)

        exit_code = main(["--run-once", "scheduled", "--config", "config.yaml"])

        assert exit_code == 0
        mock_configure_logging.assert_called_once()
        mock_init_db.assert_called_once_with("sqlite:///:memory:")
        mock_close_db.assert_called_once()
        mock_run_once.assert_called_once_with(mock_build.return_value, "scheduled")

    @patch("mailroom.main.run_once", return_value=True)
    @patch("mailroom.main.build_services")
    @patch("mailroom.main.init_database")
    @patch("mailroom.main.close_database")
    @patch("mailroom.main.configure_logging")
    @patch("mailroom.main.load_runtime_config")
    def test_run_once_with_errors(
        self, mock_load_config, mock_configure_logging, mock_close_db, mock_init_db, mock_build, mock_run_once, env_config
    ):
        mock_load_config.return_value = (AppConfig(), env_config)

        assert main(["--run-once", "all"]) == 1

    @patch("mailroom.main.run_once", side_effect=PersistenceError("database is locked"))
    @patch("mailroom.main.build_services")
    @patch("mailroom.main.init_database")
    @patch("mailroom.main.close_database")
    @patch("mailroom.main.configure_logging")
    @patch("mailroom.main.load_runtime_config")
    def test_run_once_store_failure_closes_database(
        self, mock_load_config, mock_configure_logging, mock_close_db, mock_init_db, mock_build, mock_run_once, env_config
    ):
        mock_load_config.return_value = (AppConfig(), env_config)

        assert main(["--run-once", "reengage"]) == 1
        mock_close_db.assert_called_once()

    @patch("mailroom.main.SchedulerService")
    @patch("mailroom.main.build_services")
    @patch("mailroom.main.init_database")
    @patch("mailroom.main.close_database")
    @patch("mailroom.main.configure_logging")
    @patch("mailroom.main.load_runtime_config")
    @patch("signal.signal")
    def test_daemon_mode_registers_enabled_jobs(
        self,
        mock_signal,
        mock_load_config,
        mock_configure_logging,
        mock_close_db,
        mock_init_db,
        mock_build,
        mock_scheduler_service,
        env_config,
    ):
        app_config = AppConfig(
            scheduler=SchedulerConfig(poll_interval="2m"),
            reengage=ReengageConfig(enabled=False),
        )
        mock_load_config.return_value = (app_config, env_config)
        scheduler_instance = mock_scheduler_service.return_value
        # Exit immediately instead of blocking on the shutdown event
        scheduler_instance.start.side_effect = KeyboardInterrupt()

        exit_code = main([])

        assert exit_code == 0
        scheduler_instance.start.assert_called_once()
        job_ids = [c.args[0] for c in scheduler_instance.add_job.call_args_list]
        assert job_ids == [SCHEDULED_JOB_ID]
        assert scheduler_instance.add_job.call_args.args[2] == 120
        assert REENGAGE_JOB_ID not in job_ids
        assert mock_signal.call_count == 2

    @patch("mailroom.main.load_runtime_config")
    def test_configuration_error(self, mock_load_config, capsys):
        mock_load_config.side_effect = ConfigurationError(
            "Config file not found",
            suggestions=["Create config.yaml"],
        )

        assert main(["--config", "nonexistent.yaml"]) == 1
        assert "Configuration Error" in capsys.readouterr().err

    @patch("mailroom.main.load_runtime_config")
    def test_keyboard_interrupt(self, mock_load_config):
        mock_load_config.side_effect = KeyboardInterrupt()

        assert main([]) == 0

    @patch("mailroom.main.init_database")
    @patch("mailroom.main.configure_logging")
    @patch("mailroom.main.load_runtime_config")
    def test_startup_failure(self, mock_load_config, mock_configure_logging, mock_init_db, env_config):
        mock_load_config.return_value = (AppConfig(), env_config)
        mock_init_db.side_effect = RuntimeError("disk gone")

        assert main([]) == 1

    @patch("mailroom.main.load_runtime_config")
    def test_log_level_override_is_forwarded(self, mock_load_config):
        mock_load_config.side_effect = ConfigurationError("stop here")

        main(["--log-level", "DEBUG"])

        assert mock_load_config.call_args[0][1] == "DEBUG"

    def test_invalid_run_once_choice(self):
        with pytest.raises(SystemExit):
            main(["--run-once", "bulk"])

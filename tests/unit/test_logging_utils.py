import logging

from ispmonitor.common.config_validator import AppConfig
from ispmonitor.logging_utils import end_phase_timer, get_logger, get_user_logger, start_phase_timer


def test_get_logger_writes_system_log(tmp_path):
    config = AppConfig(logging={"level": "DEBUG", "logs_dir": str(tmp_path / "logs")})
    logger = get_logger("ispmonitor.test", config)
    assert logger.level == logging.DEBUG
    logger.info("hello")
    for handler in logger.handlers:
        handler.flush()
    assert "hello" in (tmp_path / "logs" / "system.log").read_text(encoding="utf-8")


def test_repeated_setup_does_not_duplicate_handlers():
    first = get_logger("ispmonitor.test.repeat")
    second = get_logger("ispmonitor.test.repeat")
    assert first is second
    assert len(second.handlers) == 1


def test_user_logger_is_isolated(tmp_path):
    config = AppConfig(logging={"logs_dir": str(tmp_path)})
    logger = get_user_logger(config)
    assert logger.name == "ispmonitor.user"
    assert not logger.propagate
    assert (tmp_path / "import.log").exists()


def test_phase_timer_accumulates():
    timings = {}
    log = logging.getLogger("ispmonitor.test.timer")
    start = start_phase_timer("MTZ.xlsx")
    end_phase_timer("MTZ.xlsx", start, timings, log)
    end_phase_timer("MTZ.xlsx", start, timings, log)
    assert set(timings) == {"MTZ.xlsx"}
    assert timings["MTZ.xlsx"] >= 0.0

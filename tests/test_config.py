"""
Configuration and logging tests
"""

import logging

from warehouse_nav import config
from warehouse_nav.utils.logger import log_performance, setup_all_loggers, setup_logger


def test_default_config_is_valid():
    assert config.validate_config() is True


def test_invalid_config_is_reported(monkeypatch, caplog):
    monkeypatch.setattr(config, 'AVOID_STOP_DISTANCE', 1.0)

    with caplog.at_level(logging.ERROR, logger=config.__name__):
        assert config.validate_config() is False
    assert 'AVOID_STOP_DISTANCE' in caplog.text


def test_config_summary_mentions_key_parameters():
    summary = config.get_config_summary()
    assert f"radius={config.ROBOT_RADIUS}m" in summary
    assert f"policy={config.FRONTIER_POLICY}" in summary


def test_setup_logger_writes_file(tmp_path):
    log_file = tmp_path / 'logs' / 'nav.log'
    logger = setup_logger('warehouse_nav.test_file', str(log_file), console=False)
    try:
        logger.info('exploration started')
        for handler in logger.handlers:
            handler.flush()

        assert 'exploration started' in log_file.read_text(encoding='utf-8')
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)


def test_setup_logger_does_not_stack_handlers():
    name = 'warehouse_nav.test_stack'
    first = setup_logger(name)
    second = setup_logger(name)
    try:
        assert first is second
        assert len(second.handlers) == 1
    finally:
        for handler in list(second.handlers):
            second.removeHandler(handler)


def test_log_performance_keeps_result(caplog):
    logger = logging.getLogger('warehouse_nav.test_perf')

    @log_performance(logger)
    def double(x):
        return 2 * x

    with caplog.at_level(logging.DEBUG, logger=logger.name):
        assert double(21) == 42
    assert 'double took' in caplog.text


def test_setup_all_loggers_creates_subsystem_files(tmp_path):
    loggers = setup_all_loggers(str(tmp_path), console=False)
    try:
        assert set(loggers) == {'main', 'slam', 'navigation'}
        assert loggers['slam'].name == 'warehouse_nav.slam'
        assert any(p.name.startswith('nav_') for p in tmp_path.iterdir())
    finally:
        for logger in loggers.values():
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)

import logging

from logger_config import setup_logger


def test_handlers_added_once(tmp_path):
    log_file = tmp_path / "audit.log"
    logger = setup_logger("session_audit_test", log_file=str(log_file), level="debug")
    again = setup_logger("session_audit_test", log_file=str(log_file))
    assert logger is again
    assert len(logger.handlers) == 2
    assert logger.level == logging.INFO

    logger.info("проверка")
    for handler in logger.handlers:
        handler.flush()
    assert "[INFO] проверка" in log_file.read_text(encoding="utf-8")

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

import logging

from studytrack_app.logger import ROOT_LOGGER_NAME, configure_logging


def test_configure_logging_adds_named_handlers_once(tmp_path) -> None:
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    before = list(logger.handlers)
    try:
        configure_logging(tmp_path, level="debug", console=True)
        configure_logging(tmp_path, level="debug", console=True)

        names = [h.get_name() for h in logger.handlers if h not in before]
        assert names.count(f"{ROOT_LOGGER_NAME}:file") == 1
        assert names.count(f"{ROOT_LOGGER_NAME}:console") == 1
        assert logger.level == logging.DEBUG

        logging.getLogger(f"{ROOT_LOGGER_NAME}.services").info("hello from test")
        for handler in logger.handlers:
            handler.flush()
        assert "hello from test" in (tmp_path / "logs" / "studytrack.log").read_text(encoding="utf-8")
    finally:
        for handler in list(logger.handlers):
            if handler not in before:
                logger.removeHandler(handler)
                handler.close()

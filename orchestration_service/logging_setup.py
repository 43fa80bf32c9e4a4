import logging

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger("orchestration_service")

_stream_handler = None


def setup_logging(level: int = logging.INFO) -> None:
    """Attach a single stream handler to the root logger.

    Safe to call more than once; the previous handler is replaced rather than
    duplicated.
    """
    global _stream_handler
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if _stream_handler is not None:
        root_logger.removeHandler(_stream_handler)
    _stream_handler = logging.StreamHandler()
    _stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(_stream_handler)
    root_logger.info("[BOOT] Logging initialized at level %s", logging.getLevelName(level))

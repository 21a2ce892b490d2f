import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def configure_logging(level: str = "INFO") -> None:
    """
    Install a single stream handler on the root logger.
    Safe to call more than once (uvicorn reload, CLI + app in one process).
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(getattr(h, "_genqueue", False) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._genqueue = True
    root.addHandler(handler)

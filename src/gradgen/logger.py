import logging
import os

LOG_LEVEL_ENV = "GRADGEN_LOG_LEVEL"


def get_gradgen_logger(name: str | None = None):
    root = logging.getLogger("gradgen")
    if not root.hasHandlers():
        handler = logging.StreamHandler()
        formatter = logging.Formatter('[%(asctime)s][%(levelname)s][%(name)s] %(message)s')
        handler.setFormatter(formatter)
        root.addHandler(handler)
    level_name = os.getenv(LOG_LEVEL_ENV, "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)
    root.setLevel(level)
    if name:
        return root.getChild(name)
    return root

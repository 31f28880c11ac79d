"""projectbot: chat, streaming and summaries for homebuilding project teams."""
import logging
import os

__version__ = "0.1.0"

LOG_FORMAT = "[PROJECTBOT][%(levelname)s] %(name)s: %(message)s"


def _env_level(var: str, default: int) -> int:
    level = logging.getLevelName((os.getenv(var) or "").upper())
    return level if isinstance(level, int) else default


def configure_logging() -> logging.Logger:
    """Attach one stream handler to the ``projectbot`` logger tree.

    ``projectbot.llm`` carries provider traffic and can be tuned on its own.
    """
    root = logging.getLogger("projectbot")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(_env_level("PROJECTBOT_LOG_LEVEL", logging.INFO))
    logging.getLogger("projectbot.llm").setLevel(_env_level("PROJECTBOT_LLM_LOG_LEVEL", root.level))
    return root


configure_logging()

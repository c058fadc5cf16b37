"""
Settings and logging setup for the news bot.

Everything comes from environment variables (a local .env file is loaded
first). Settings are read once at startup and never change afterwards.
"""

import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional

import structlog
from dotenv import load_dotenv

TEXT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _number(name: str, value: Optional[str], cast):
    if value is None or value == "":
        return None
    try:
        return cast(value)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class Settings:
    nyt_api_key: str
    slack_verification_token: str
    slack_bot_token: Optional[str] = None
    slack_command: str = "/news"
    top_n: int = 3
    fetch_timeout: Optional[float] = None
    host: str = "0.0.0.0"
    port: int = 80

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """Build settings from the environment (os.environ by default)."""
        if environ is None:
            load_dotenv()
            environ = os.environ

        nyt_api_key = environ.get("NYT_API_KEY")
        verification_token = environ.get("SLACK_VERIFICATION_TOKEN")

        missing = [
            name
            for name, value in (
                ("NYT_API_KEY", nyt_api_key),
                ("SLACK_VERIFICATION_TOKEN", verification_token),
            )
            if not value
        ]
        if missing:
            raise RuntimeError(f"Missing configuration. Set {' and '.join(missing)}.")

        top_n = _number("NEWS_TOP_N", environ.get("NEWS_TOP_N"), int)
        if top_n is not None and top_n < 1:
            raise RuntimeError(f"NEWS_TOP_N must be at least 1, got {top_n}")
        port = _number("PORT", environ.get("PORT"), int)

        return cls(
            nyt_api_key=nyt_api_key,
            slack_verification_token=verification_token,
            slack_bot_token=environ.get("SLACK_BOT_TOKEN") or None,
            slack_command=environ.get("SLACK_COMMAND") or "/news",
            top_n=top_n if top_n is not None else 3,
            fetch_timeout=_number("NEWS_FETCH_TIMEOUT", environ.get("NEWS_FETCH_TIMEOUT"), float),
            host=environ.get("HOST") or "0.0.0.0",
            port=port if port is not None else 80,
        )


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Send all logs to stdout in either text or single-line JSON format."""
    level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    log_format = (log_format or os.environ.get("LOG_FORMAT") or "text").lower()

    handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        handler.setFormatter(_json_formatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)


def _json_formatter() -> logging.Formatter:
    # Renders stdlib records (tracebacks included) as one JSON object per line.
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    )

import logging
import os

from pydantic import BaseModel

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
LOG_FORMAT = '%(asctime)s:%(name)s:%(levelname)s:%(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class Settings(BaseModel):
    """Connection settings for the OpenRouter gateway.

    ``app_url`` and ``app_title`` are sent as the ``HTTP-Referer`` and
    ``X-Title`` identification headers on every request.

    Args:
        api_key: OpenRouter API key. May be left empty and supplied
            later through a key getter on the client.
        base_url: Gateway root, without the ``/chat/completions`` path.
        app_url: Value of the ``HTTP-Referer`` header.
        app_title: Value of the ``X-Title`` header.
        timeout: Read timeout in seconds for a single network read.
        route: Routing flag forced into every request body.
    """

    api_key: str | None = None
    base_url: str = DEFAULT_BASE_URL
    app_url: str = "https://proxii.app"
    app_title: str = "Proxii"
    timeout: float = 180.0
    route: str = "fallback"

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "api_key": os.getenv("OPENROUTER_API_KEY"),
            "base_url": os.getenv("OPENROUTER_BASE_URL"),
            "app_url": os.getenv("PROXII_APP_URL"),
            "app_title": os.getenv("PROXII_APP_TITLE"),
        }
        return cls(**{k: v for k, v in values.items() if v is not None})

    @property
    def completions_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    @property
    def models_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/models"

    def current_api_key(self) -> str | None:
        return self.api_key


def configure_logging(level: int = logging.INFO, log_file: str | None = None) -> None:
    """Install the proxii log format on the root logger.

    Nothing is configured at import time; applications call this once
    at startup if they want proxii's format.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
    )

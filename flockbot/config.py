"""Configuration loading from config.toml + .env."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from flockbot.errors import ValidationError

DEFAULT_BASE_URL = "https://api.twitter.com/1.1/"


@dataclass(frozen=True)
class ApiConfig:
    base_url: str = DEFAULT_BASE_URL
    page_size: int = 200
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class BotConfig:
    username: str
    directory: Path
    password: str = ""
    token: str = ""
    api: ApiConfig = field(default_factory=ApiConfig)
    bot: str = ""
    log_level: str = "INFO"
    tick_minutes: int = 5

    def __post_init__(self) -> None:
        if not self.username:
            raise ValidationError("no username provided")
        if not self.password and not self.token:
            raise ValidationError("no password or token provided")
        check_directory(self.directory)
        if self.api.page_size < 1:
            raise ValidationError(f"page_size must be positive, got {self.api.page_size}")
        if self.tick_minutes < 1:
            raise ValidationError(f"tick_minutes must be positive, got {self.tick_minutes}")


def check_directory(directory: str | Path | None) -> Path:
    """Return ``directory`` as a Path if it is an existing read/write directory."""
    if directory is None or str(directory) == "":
        raise ValidationError("no directory provided")
    path = Path(directory)
    if not path.is_dir() or not os.access(path, os.R_OK | os.W_OK):
        raise ValidationError(f"directory {path} is not a readable, writable directory")
    return path


def _env(key: str, default: str = "") -> str:
    """Get an environment variable, returning default if not set."""
    return os.environ.get(key, default)


def load_config(config_path: str | Path | None = None) -> BotConfig:
    """Load configuration from config.toml and .env files.

    Args:
        config_path: Path to config.toml. Defaults to config.toml in the
                     current working directory. A .env file next to it is
                     loaded first; variables already set in the environment
                     win.
    """
    if config_path is None:
        config_path = Path.cwd() / "config.toml"
    else:
        config_path = Path(config_path)

    load_dotenv(config_path.parent / ".env")

    try:
        with open(config_path, "rb") as f:
            toml = tomllib.load(f)
    except FileNotFoundError as e:
        raise ValidationError(f"config file {config_path} not found") from e
    except tomllib.TOMLDecodeError as e:
        raise ValidationError(f"config file {config_path} is not valid TOML: {e}") from e

    general = toml.get("general", {})
    api = toml.get("api", {})

    directory = general.get("directory")
    if directory is not None:
        directory = Path(directory)
        if not directory.is_absolute():
            directory = config_path.parent / directory

    return BotConfig(
        username=_env("FLOCKBOT_USERNAME"),
        password=_env("FLOCKBOT_PASSWORD"),
        token=_env("FLOCKBOT_TOKEN"),
        directory=directory,
        bot=general.get("bot", ""),
        log_level=general.get("log_level", "INFO"),
        tick_minutes=general.get("tick_minutes", 5),
        api=ApiConfig(
            base_url=api.get("base_url", DEFAULT_BASE_URL),
            page_size=api.get("page_size", 200),
            timeout_seconds=api.get("timeout_seconds", 30.0),
        ),
    )

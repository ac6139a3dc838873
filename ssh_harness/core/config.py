import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

_PREFIX = "SSH_HARNESS_"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{_PREFIX}{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


@dataclass
class ServerConfig:
    inactivity_timeout: float = field(default_factory=lambda: _env_float('SERVER_INACTIVITY_TIMEOUT', 3600))
    auth_rejection_time: float = field(default_factory=lambda: _env_float('AUTH_REJECTION_TIME', 3))
    accept_backlog: int = field(default_factory=lambda: _env_int('ACCEPT_BACKLOG', 100))
    banner_timeout: float = field(default_factory=lambda: _env_float('BANNER_TIMEOUT', 15))
    read_size: int = 32768


@dataclass
class ClientConfig:
    inactivity_timeout: float = field(default_factory=lambda: _env_float('CLIENT_INACTIVITY_TIMEOUT', 30))
    connect_timeout: float = field(default_factory=lambda: _env_float('CONNECT_TIMEOUT', 10))
    # upper bound on one select() on the channel; exit status is not signalled on the channel fd
    wait_slice: float = 0.1
    read_size: int = 32768


@dataclass
class AppConfig:
    debug: bool = bool(os.getenv(_PREFIX + 'DEBUG', '').lower() == 'true')
    audit_log: Optional[str] = os.getenv(_PREFIX + 'AUDIT_LOG') or None


CONFIG = AppConfig()

from __future__ import annotations
import json
from pathlib import Path
from typing import Any

DEFAULT_TIMEOUT = 30.0      # seconds, connect + header receipt
DEFAULT_REDIRECT_LIMIT = 30
DEFAULT_POOL_SIZE = 5


class Config:
    """
    Client settings shared by a Transport and every Reference built on it.

    Example usage:
        config = Config.from_json_file("firetree.json")
        transport = Transport(config)
    """

    FIELDS = ("timeout", "redirect_limit", "pool_size", "headers")

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, redirect_limit: int = DEFAULT_REDIRECT_LIMIT,
                 pool_size: int = DEFAULT_POOL_SIZE, headers: dict[str, str] | None = None) -> None:
        if timeout is not None and timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if redirect_limit < 0:
            raise ValueError(f"redirect_limit must not be negative, got {redirect_limit}")
        if pool_size < 1:
            raise ValueError(f"pool_size must be at least 1, got {pool_size}")
        self.timeout = timeout
        self.redirect_limit = redirect_limit
        self.pool_size = pool_size
        self.headers = dict(headers or {})

    def __repr__(self):
        return f"Config(timeout={self.timeout}, redirect_limit={self.redirect_limit}, pool_size={self.pool_size})"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        unknown = set(data) - set(cls.FIELDS)
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        return cls(**data)

    @classmethod
    def from_json_file(cls, json_file: str | Path) -> Config:
        path = Path(json_file)
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)

    def as_dict(self) -> dict[str, Any]:
        return {"timeout": self.timeout, "redirect_limit": self.redirect_limit,
                "pool_size": self.pool_size, "headers": dict(self.headers)}

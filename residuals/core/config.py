from __future__ import annotations

import os
from dataclasses import dataclass, field


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


def _default_origins() -> list[str]:
    return ["http://localhost:3000", "http://127.0.0.1:3000"]


@dataclass(frozen=True, slots=True)
class ResidualsSettings:
    api_base: str | None = None
    api_token: str | None = None
    api_timeout: float = 10.0
    poll_interval: float = 5.0
    stale_warning_after: int = 3
    trailing_months: int = 12
    upcoming_months: int = 6
    cors_origins: list[str] = field(default_factory=_default_origins)

    @classmethod
    def from_env(cls) -> "ResidualsSettings":
        origins_env = os.getenv("API_CORS_ORIGINS", "")
        origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
        return cls(
            api_base=os.getenv("RESIDUALS_API_BASE") or None,
            api_token=os.getenv("RESIDUALS_API_TOKEN") or None,
            api_timeout=_float_env("RESIDUALS_API_TIMEOUT", 10.0),
            poll_interval=_float_env("RESIDUALS_POLL_INTERVAL", 5.0),
            stale_warning_after=max(1, _int_env("RESIDUALS_STALE_WARNING_AFTER", 3)),
            trailing_months=_int_env("RESIDUALS_TRAILING_MONTHS", 12),
            upcoming_months=_int_env("RESIDUALS_UPCOMING_MONTHS", 6),
            cors_origins=origins or _default_origins(),
        )

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from .errors import ConfigError
from .gatherers import DEFAULT_GATHERERS, GATHERERS
from .logger import VERBOSITY_LEVELS
from .scoring import DEFAULT_PREFERRED_HOSTS

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off", ""}
TARGET_CHOICES = ("all", "missing_outbound", "video_outbound", "missing_thumbnail", "bad_thumbnail")


def env_int(env: Mapping[str, str], *names: str, default: Optional[int] = None, minimum: int = 0) -> Optional[int]:
    for name in names:
        raw = env.get(name)
        if raw is None or not str(raw).strip():
            continue
        try:
            value = int(str(raw).strip())
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
        if value < minimum:
            raise ConfigError(f"{name} must be >= {minimum}, got {value}")
        return value
    return default


def env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(str(raw).strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value != value or value in (float("inf"), float("-inf")):
        raise ConfigError(f"{name} must be finite, got {raw!r}")
    return value


def env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    val = str(raw).strip().lower()
    if val in TRUE_VALUES:
        return True
    if val in FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean (1/0), got {raw!r}")


def env_csv(env: Mapping[str, str], name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    return tuple(part.strip().lower() for part in str(raw).split(",") if part.strip())


@dataclass
class RepairConfig:
    concurrency: int = 8
    max_items: int = 1000
    request_timeout_ms: int = 10_000
    min_score: float = 0.30
    min_video_score: float = 0.30
    min_web_score: float = 0.42
    resume: bool = True
    force_restart: bool = False
    save_every: int = 25
    progress_every: int = 20
    start_index: int = 0
    start_year: Optional[int] = None
    end_year: Optional[int] = None
    lookahead: int = 8
    allow_any_domain: bool = True
    preferred_hosts: Tuple[str, ...] = DEFAULT_PREFERRED_HOSTS
    gatherers: Tuple[str, ...] = DEFAULT_GATHERERS
    target: str = "all"
    verbosity: str = "info"
    mute: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RepairConfig":
        env = os.environ if env is None else env
        base = cls()
        cfg = cls(
            concurrency=env_int(env, "CONCURRENCY", default=base.concurrency, minimum=1),
            max_items=env_int(env, "MAX_ITEMS", "MAX_FIXES", default=base.max_items, minimum=1),
            request_timeout_ms=env_int(env, "REQUEST_TIMEOUT_MS", default=base.request_timeout_ms, minimum=1),
            min_score=env_float(env, "MIN_SCORE", base.min_score),
            min_video_score=env_float(env, "MIN_VIDEO_SCORE", base.min_video_score),
            min_web_score=env_float(env, "MIN_WEB_SCORE", base.min_web_score),
            resume=env_bool(env, "RESUME", base.resume),
            force_restart=env_bool(env, "FORCE_RESTART", base.force_restart),
            save_every=env_int(env, "SAVE_EVERY", "CHECKPOINT_EVERY", default=base.save_every, minimum=1),
            progress_every=env_int(env, "PROGRESS_EVERY", default=base.progress_every, minimum=1),
            start_index=env_int(env, "START_INDEX", default=base.start_index),
            start_year=env_int(env, "START_YEAR"),
            end_year=env_int(env, "END_YEAR"),
            lookahead=env_int(env, "LOOKAHEAD", default=base.lookahead, minimum=1),
            allow_any_domain=env_bool(env, "ALLOW_ANY_DOMAIN", base.allow_any_domain),
            preferred_hosts=env_csv(env, "PREFERRED_HOSTS", base.preferred_hosts),
            gatherers=env_csv(env, "GATHERERS", base.gatherers),
            target=str(env.get("TARGET") or base.target).strip().lower(),
            verbosity=str(env.get("VERBOSITY") or base.verbosity).strip().lower(),
            mute=env_csv(env, "LOG_MUTE", ()),
        )
        cfg.validate()
        return cfg

    @property
    def request_timeout(self) -> float:
        return self.request_timeout_ms / 1000.0

    def validate(self) -> None:
        if self.concurrency < 1:
            raise ConfigError("concurrency must be >= 1")
        if self.max_items < 1:
            raise ConfigError("max items must be >= 1")
        if self.save_every < 1:
            raise ConfigError("save interval must be >= 1")
        unknown = [name for name in self.gatherers if name not in GATHERERS]
        if unknown or not self.gatherers:
            raise ConfigError(f"Unknown gatherer(s): {', '.join(unknown) or '(none)'}. Choose from: {', '.join(GATHERERS)}")
        if self.target not in TARGET_CHOICES:
            raise ConfigError(f"Unknown target: {self.target}. Choose from: {', '.join(TARGET_CHOICES)}")
        if self.verbosity not in VERBOSITY_LEVELS:
            raise ConfigError(f"Unknown verbosity: {self.verbosity}. Choose from: {', '.join(VERBOSITY_LEVELS)}")
        if self.start_year and self.end_year and self.start_year > self.end_year:
            raise ConfigError("START_YEAR must not be after END_YEAR")

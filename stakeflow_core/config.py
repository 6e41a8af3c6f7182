"""
TOML-based configuration for stakeflow deployments.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from stakeflow_core.config import load_config
    cfg = load_config("stakeflow.toml")

Example file:

    [lockup]
    bucket_period = 604800
    window_length = 31449600
    early_exit_penalty_bps = 5000

    [auction]
    subscription_window = 86400
    release_duration = 2592000
    mint_cap_bps = 100
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from stakeflow_core.lockup import DEFAULT_BUCKET_PERIOD, DEFAULT_WINDOW_LENGTH


@dataclass
class AccumulatorConfig:
    """Round numbering shared by reward accumulators.

    The settled bootstrap entry lives at ``start_round - 1``; the first
    funding event writes ``start_round``.
    """
    start_round: int = 1


@dataclass
class StakingConfig:
    """Staking pool settings."""
    emission_per_second: int = 0     # reward units minted into the pool per second
    start_round: int | None = None   # overrides accumulator.start_round for pools


@dataclass
class LockupConfig:
    """Rolling lockup window settings (seconds)."""
    bucket_period: int = DEFAULT_BUCKET_PERIOD
    window_length: int = DEFAULT_WINDOW_LENGTH
    start_index: int = 0
    early_exit_penalty_bps: int = 0  # share of the locked portion kept on early exit


@dataclass
class AuctionConfig:
    """Subscription auction settings."""
    start_round: int = 1
    subscription_window: int = 86_400
    release_duration: int = 30 * 86_400
    mint_cap_bps: int = 100          # per-round cap as a share of minted-asset supply
    min_mint_cap: int = 0


@dataclass
class GuardConfig:
    """Execution guard settings."""
    check_invariants: bool = False


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class StakeflowConfig:
    """Top-level configuration container."""
    accumulator: AccumulatorConfig = field(default_factory=AccumulatorConfig)
    staking: StakingConfig = field(default_factory=StakingConfig)
    lockup: LockupConfig = field(default_factory=LockupConfig)
    auction: AuctionConfig = field(default_factory=AuctionConfig)
    guard: GuardConfig = field(default_factory=GuardConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def validate_config(cfg: StakeflowConfig) -> list[str]:
    """Return a list of problems; empty when the configuration is usable."""
    problems: list[str] = []
    if cfg.lockup.bucket_period <= 0:
        problems.append("lockup.bucket_period must be positive")
    if cfg.lockup.window_length < 0:
        problems.append("lockup.window_length must be non-negative")
    if not 0 <= cfg.lockup.early_exit_penalty_bps <= 10_000:
        problems.append("lockup.early_exit_penalty_bps must be within 0..10000")
    if cfg.auction.subscription_window <= 0:
        problems.append("auction.subscription_window must be positive")
    if cfg.auction.release_duration <= 0:
        problems.append("auction.release_duration must be positive")
    if not 0 <= cfg.auction.mint_cap_bps <= 10_000:
        problems.append("auction.mint_cap_bps must be within 0..10000")
    if cfg.staking.emission_per_second < 0:
        problems.append("staking.emission_per_second must be non-negative")
    if cfg.logging.format not in ("human", "json"):
        problems.append("logging.format must be 'human' or 'json'")
    return problems


def load_config(path: str | None = None) -> StakeflowConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        STAKEFLOW_LOG_LEVEL         -> logging.level
        STAKEFLOW_LOG_FMT           -> logging.format
        STAKEFLOW_LOG_FILE          -> logging.file
        STAKEFLOW_CHECK_INVARIANTS  -> guard.check_invariants
        STAKEFLOW_WINDOW_LENGTH     -> lockup.window_length
        STAKEFLOW_BUCKET_PERIOD     -> lockup.bucket_period

    Raises ``ValueError`` when the merged configuration is invalid.
    """
    cfg = StakeflowConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("accumulator", cfg.accumulator),
                ("staking", cfg.staking),
                ("lockup", cfg.lockup),
                ("auction", cfg.auction),
                ("guard", cfg.guard),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("STAKEFLOW_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("STAKEFLOW_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("STAKEFLOW_LOG_FILE"):
        cfg.logging.file = v
    if v := os.environ.get("STAKEFLOW_CHECK_INVARIANTS"):
        cfg.guard.check_invariants = _truthy(v)
    if v := os.environ.get("STAKEFLOW_WINDOW_LENGTH"):
        cfg.lockup.window_length = int(v)
    if v := os.environ.get("STAKEFLOW_BUCKET_PERIOD"):
        cfg.lockup.bucket_period = int(v)

    problems = validate_config(cfg)
    if problems:
        raise ValueError("invalid configuration: " + "; ".join(problems))
    return cfg

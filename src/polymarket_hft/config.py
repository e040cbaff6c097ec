from pathlib import Path
from typing import List

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from polymarket_hft.models import OrderExecution


class HftConfig(BaseModel):
    assets: List[str] = Field(default_factory=lambda: ["BTC", "ETH", "SOL", "XRP"])

    # sizing
    size_usd: float = Field(default=5.0, gt=0)
    min_shares: float = Field(default=5.0, ge=0)  # must survive a taker round-trip
    max_shares: float = Field(default=100.0, gt=0)
    max_position_usd: float = Field(default=25.0, gt=0)
    max_positions: int = Field(default=3, ge=1)

    # round timing
    round_duration_sec: int = Field(default=900, gt=0)
    min_time_left_sec: float = Field(default=90.0, gt=0)
    min_round_age_sec: float = Field(default=30.0, ge=0)
    force_exit_sec: float = Field(default=30.0, ge=0)
    warmup_sec: float = Field(default=30.0, ge=0)

    # scanner
    scan_interval_sec: float = Field(default=10.0, gt=0)
    discovery_min_interval_sec: float = Field(default=10.0, ge=0)
    reject_cross_slot: bool = True

    entry_order: OrderExecution = Field(default_factory=OrderExecution)
    max_orderbook_stale_ms: int = Field(default=5000, gt=0)

    exit_order: OrderExecution = Field(default_factory=OrderExecution)
    maker_exits_for_tp_only: bool = True
    sell_cooldown_ms: int = Field(default=2000, ge=0)
    exit_share_buffer: float = Field(default=0.02, ge=0)

    take_profit_pct: float = Field(default=15.0, gt=0)
    stop_loss_pct: float = Field(default=10.0, gt=0)

    ratchet_enabled: bool = True
    ratchet_confirm_ticks: int = Field(default=3, ge=1)
    ratchet_confirm_tolerance_pct: float = Field(default=1.0, ge=0)
    ratchet_giveback_pct: float = Field(default=5.0, gt=0)

    trailing_enabled: bool = True
    trailing_late_pct: float = Field(default=3.0, gt=0)  # <3 min left
    trailing_mid_pct: float = Field(default=5.0, gt=0)  # 3-7 min left
    trailing_wide_pct: float = Field(default=8.0, gt=0)  # >7 min left

    stale_profit_pct: float = Field(default=5.0, gt=0)
    stale_profit_bid_unchanged_sec: float = Field(default=15.0, gt=0)
    stagnant_profit_pct: float = Field(default=5.0, gt=0)
    stagnant_duration_sec: float = Field(default=30.0, gt=0)
    stagnant_band_pct: float = Field(default=1.0, ge=0)
    depth_collapse_threshold_pct: float = Field(default=60.0, gt=0, le=100)

    max_daily_loss_usd: float = Field(default=50.0, gt=0)
    stop_loss_cooldown_sec: float = Field(default=60.0, ge=0)
    exit_cooldown_sec: float = Field(default=30.0, ge=0)
    neg_risk: bool = True
    dry_run: bool = True

    gamma_url: str = "https://gamma-api.polymarket.com"

    @field_validator("assets")
    @classmethod
    def _upper_assets(cls, v: List[str]) -> List[str]:
        out = [a.strip().upper() for a in v if a and a.strip()]
        if not out:
            raise ValueError("at least one asset is required")
        return out

    @model_validator(mode="after")
    def _check_consistency(self) -> "HftConfig":
        if self.min_time_left_sec >= self.round_duration_sec:
            raise ValueError("min_time_left_sec must be < round_duration_sec")
        if self.min_round_age_sec >= self.round_duration_sec:
            raise ValueError("min_round_age_sec must be < round_duration_sec")
        if self.force_exit_sec > self.min_time_left_sec:
            raise ValueError("force_exit_sec must be <= min_time_left_sec")
        if self.min_shares >= self.max_shares:
            raise ValueError("min_shares must be < max_shares")
        if not (self.trailing_late_pct <= self.trailing_mid_pct <= self.trailing_wide_pct):
            raise ValueError("trailing widths must satisfy late <= mid <= wide")
        return self


def load_config(path: str) -> HftConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)
    raw = yaml.safe_load(p.read_text()) or {}
    if isinstance(raw.get("hft"), dict):
        raw = raw["hft"]
    return HftConfig.model_validate(raw)

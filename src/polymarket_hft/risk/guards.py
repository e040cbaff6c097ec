from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from polymarket_hft.config import HftConfig
from polymarket_hft.models import Direction, EntryDecision, OpenPosition, TradeGate


@dataclass
class RiskState:
    started_at: float
    daily_pnl_usd: float = 0.0
    last_stop_loss_at: Optional[float] = None
    # (asset, direction) -> last exit time
    last_exit_at: Dict[Tuple[str, str], float] = field(default_factory=dict)


def size_shares(price: float, cfg: HftConfig) -> float:
    if price <= 0:
        return 0.0
    shares = min(cfg.size_usd / price, cfg.max_shares, cfg.max_position_usd / price)
    return math.floor(round(shares * 100, 6)) / 100


def approve_entry(
    asset: str,
    direction: Direction,
    token_id: str,
    price: float,
    open_positions: Iterable[OpenPosition],
    state: RiskState,
    cfg: HftConfig,
    now: float,
    gate: Optional[TradeGate] = None,
    book_stale: bool = False,
) -> EntryDecision:
    positions = list(open_positions)
    if now - state.started_at < cfg.warmup_sec:
        return EntryDecision(approved=False, reason="warmup")
    if gate is not None and not gate.ok:
        return EntryDecision(approved=False, reason=f"round_gate: {gate.reason}")
    if book_stale:
        return EntryDecision(approved=False, reason="orderbook_stale")
    if not 0 < price < 1:
        return EntryDecision(approved=False, reason="invalid_price")
    if any(p.token_id == token_id for p in positions):
        return EntryDecision(approved=False, reason="already_positioned")
    if len(positions) >= cfg.max_positions:
        return EntryDecision(approved=False, reason="max_positions")
    if state.daily_pnl_usd <= -abs(cfg.max_daily_loss_usd):
        return EntryDecision(approved=False, reason="daily_loss_limit")
    if state.last_stop_loss_at is not None and now - state.last_stop_loss_at < cfg.stop_loss_cooldown_sec:
        return EntryDecision(approved=False, reason="stop_loss_cooldown")
    last_exit = state.last_exit_at.get((asset.upper(), direction.value))
    if last_exit is not None and now - last_exit < cfg.exit_cooldown_sec:
        return EntryDecision(approved=False, reason="exit_cooldown")

    shares = size_shares(price, cfg)
    if shares <= cfg.min_shares:
        return EntryDecision(approved=False, reason="below_min_shares", shares=shares)
    return EntryDecision(approved=True, reason="ok", shares=shares)

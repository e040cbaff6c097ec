"""Exit evaluation for open positions.

Triggers are checked in a fixed priority order and the first match wins:

1. force_exit      round is about to settle
2. stop_loss       loss beyond the stop
3. ratchet_floor   gave back too much from a confirmed high
4. trailing_stop   gave back too much from the high-water-mark
5. depth_collapse  book evaporating while price moves against us
6. stale_profit    in profit but the bid has stopped moving
7. stagnant_profit in profit but PnL has stopped progressing
8. take_profit
"""
from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from polymarket_hft.config import HftConfig
from polymarket_hft.engine.positions import pnl_pct_at
from polymarket_hft.models import ExitDecision, ExitReason, ExitSignals, OpenPosition

WIDE_TRAIL_ABOVE_SEC = 7 * 60
LATE_TRAIL_BELOW_SEC = 3 * 60

Check = Callable[[OpenPosition, HftConfig, ExitSignals, float, float], Optional[str]]


def trailing_width_pct(time_left_sec: float, cfg: HftConfig) -> float:
    if time_left_sec > WIDE_TRAIL_ABOVE_SEC:
        return cfg.trailing_wide_pct
    if time_left_sec >= LATE_TRAIL_BELOW_SEC:
        return cfg.trailing_mid_pct
    return cfg.trailing_late_pct


def _force_exit(pos, cfg, sig, pnl, now):
    if sig.time_left_sec <= cfg.force_exit_sec:
        return f"{sig.time_left_sec:.0f}s left"
    return None


def _stop_loss(pos, cfg, sig, pnl, now):
    if pnl <= -cfg.stop_loss_pct:
        return f"pnl {pnl:.2f}% <= -{cfg.stop_loss_pct}%"
    return None


def _ratchet_floor(pos, cfg, sig, pnl, now):
    if not cfg.ratchet_enabled or pos.confirmed_high <= pos.entry_price:
        return None
    confirmed_pnl = pnl_pct_at(pos.entry_price, pos.confirmed_high)
    floor = confirmed_pnl - cfg.ratchet_giveback_pct
    if pnl < floor:
        return f"pnl {pnl:.2f}% < floor {floor:.2f}%"
    return None


def _trailing_stop(pos, cfg, sig, pnl, now):
    if not cfg.trailing_enabled or pos.high_pnl_pct <= 0:
        return None
    width = trailing_width_pct(sig.time_left_sec, cfg)
    giveback = pos.high_pnl_pct - pnl
    if giveback > width:
        return f"gave back {giveback:.2f}% from {pos.high_pnl_pct:.2f}% (width {width}%)"
    return None


def _depth_collapse(pos, cfg, sig, pnl, now):
    if sig.depth_collapsed and pos.current_price < pos.prev_price:
        return f"depth down >= {cfg.depth_collapse_threshold_pct}% while price falling"
    return None


def _stale_profit(pos, cfg, sig, pnl, now):
    if sig.bid_staleness_sec is None or pnl < cfg.stale_profit_pct:
        return None
    if sig.bid_staleness_sec >= cfg.stale_profit_bid_unchanged_sec:
        return f"bid unchanged {sig.bid_staleness_sec:.0f}s at {pnl:.2f}%"
    return None


def _stagnant_profit(pos, cfg, sig, pnl, now):
    if pnl < cfg.stagnant_profit_pct:
        return None
    idle = now - pos.last_progress_at
    if idle >= cfg.stagnant_duration_sec:
        return f"no progress for {idle:.0f}s at {pnl:.2f}%"
    return None


def _take_profit(pos, cfg, sig, pnl, now):
    if pnl >= cfg.take_profit_pct:
        return f"pnl {pnl:.2f}% >= {cfg.take_profit_pct}%"
    return None


EXIT_PRIORITY: List[Tuple[ExitReason, Check]] = [
    (ExitReason.FORCE_EXIT, _force_exit),
    (ExitReason.STOP_LOSS, _stop_loss),
    (ExitReason.RATCHET_FLOOR, _ratchet_floor),
    (ExitReason.TRAILING_STOP, _trailing_stop),
    (ExitReason.DEPTH_COLLAPSE, _depth_collapse),
    (ExitReason.STALE_PROFIT, _stale_profit),
    (ExitReason.STAGNANT_PROFIT, _stagnant_profit),
    (ExitReason.TAKE_PROFIT, _take_profit),
]


def evaluate_exit(pos: OpenPosition, cfg: HftConfig, signals: ExitSignals, now: float) -> Optional[ExitDecision]:
    pnl = pos.current_pnl_pct
    for reason, check in EXIT_PRIORITY:
        detail = check(pos, cfg, signals, pnl, now)
        if detail is not None:
            return ExitDecision(reason=reason, pnl_pct=pnl, detail=detail)
    return None

from __future__ import annotations

import time
import uuid
from typing import Optional

from polymarket_hft.config import HftConfig
from polymarket_hft.engine.fees import net_pnl, taker_fee_pct
from polymarket_hft.models import ClosedPosition, Direction, ExitReason, OpenPosition


def pnl_pct_at(entry_price: float, price: float) -> float:
    return (price - entry_price) / entry_price * 100.0


def open_position(
    asset: str,
    direction: Direction,
    token_id: str,
    entry_price: float,
    shares: float,
    was_maker_entry: bool,
    *,
    condition_id: str = "",
    strategy: str = "",
    expires_at: float = 0.0,
    initial_depth: float = 0.0,
    now: Optional[float] = None,
) -> OpenPosition:
    if not 0 < entry_price < 1:
        raise ValueError("entry_price must be inside (0, 1)")
    if shares <= 0:
        raise ValueError("shares must be positive")
    now = time.time() if now is None else float(now)
    return OpenPosition(
        id=uuid.uuid4().hex[:12],
        strategy=strategy,
        asset=asset.upper(),
        direction=direction,
        token_id=token_id,
        condition_id=condition_id,
        entry_price=float(entry_price),
        current_price=float(entry_price),
        shares=float(shares),
        cost_usd=float(entry_price) * float(shares),
        was_maker_entry=was_maker_entry,
        entry_fee_pct=0.0 if was_maker_entry else taker_fee_pct(entry_price),
        high_water_mark=float(entry_price),
        entered_at=now,
        expires_at=expires_at,
        last_bid_price=float(entry_price),
        bid_unchanged_since=now,
        last_progress_at=now,
        last_progress_pct=0.0,
        initial_depth=initial_depth,
        prev_price=float(entry_price),
    )


def _update_ratchet(pos: OpenPosition, price: float, cfg: HftConfig):
    tol = cfg.ratchet_confirm_tolerance_pct
    hwm = pos.high_water_mark
    if price > hwm:
        # a jump past the tolerance is unconfirmed noise until it repeats
        if (price - hwm) / price * 100.0 > tol:
            pos.hwm_confirm_count = 1
        else:
            pos.hwm_confirm_count += 1
        pos.high_water_mark = price
    elif (hwm - price) / hwm * 100.0 <= tol:
        pos.hwm_confirm_count += 1
    else:
        pos.hwm_confirm_count = 0

    if pos.hwm_confirm_count >= cfg.ratchet_confirm_ticks and pos.high_water_mark > pos.confirmed_high:
        pos.confirmed_high = pos.high_water_mark


def update_position(pos: OpenPosition, price: float, cfg: HftConfig, *, bid: Optional[float] = None, now: Optional[float] = None) -> OpenPosition:
    """Apply one price tick to an open position (in place)."""
    now = time.time() if now is None else float(now)
    pos.prev_price = pos.current_price
    pos.current_price = float(price)

    pnl = pos.current_pnl_pct
    if pnl > pos.high_pnl_pct:
        pos.high_pnl_pct = pnl
    if pnl < pos.low_pnl_pct:
        pos.low_pnl_pct = pnl
    if pnl > 0:
        pos.was_ever_positive = True

    _update_ratchet(pos, pos.current_price, cfg)

    if bid is not None and bid != pos.last_bid_price:
        pos.last_bid_price = float(bid)
        pos.bid_unchanged_since = now

    if pnl > pos.last_progress_pct + cfg.stagnant_band_pct:
        pos.last_progress_pct = pnl
        pos.last_progress_at = now
    elif pnl < pos.last_progress_pct - cfg.stagnant_band_pct:
        # fell out of the band: the stagnation clock restarts from here
        pos.last_progress_pct = pnl
        pos.last_progress_at = now
    return pos


def close_position(
    pos: OpenPosition,
    exit_price: float,
    reason: ExitReason,
    was_maker_exit: bool,
    now: Optional[float] = None,
) -> ClosedPosition:
    if exit_price < 0 or exit_price > 1:
        raise ValueError("exit_price must be inside [0, 1]")
    now = time.time() if now is None else float(now)
    pnl = net_pnl(pos.entry_price, exit_price, pos.shares, pos.was_maker_entry, was_maker_exit)
    return ClosedPosition(
        **pos.model_dump(),
        exit_price=float(exit_price),
        exit_reason=reason,
        exited_at=now,
        was_maker_exit=was_maker_exit,
        exit_fee_pct=0.0 if was_maker_exit else taker_fee_pct(exit_price),
        pnl_usd=pnl.gross_usd,
        pnl_pct=pnl.gross_pct,
        net_pnl_usd=pnl.net_usd,
        net_pnl_pct=pnl.net_pct,
        hold_time_sec=max(0.0, now - pos.entered_at),
    )


def settle_position(pos: OpenPosition, settle_price: float, now: Optional[float] = None) -> ClosedPosition:
    # resolution pays out without an order, so no exit fee
    return close_position(pos, settle_price, ExitReason.TIME_EXIT, was_maker_exit=True, now=now)

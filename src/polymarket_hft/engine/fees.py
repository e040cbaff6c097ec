from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from polymarket_hft.engine.orderbook import categorize_obi
from polymarket_hft.models import ExitReason, ObiCategory, OrderExecution, OrderIntent, OrderMode, OrderbookSnapshot

TICK = 0.01
MIN_PRICE = 0.01
MAX_PRICE = 0.99

# exits that must leave immediately whatever the configured exit mode
_TAKER_ONLY_EXITS = {ExitReason.FORCE_EXIT, ExitReason.STOP_LOSS}
_MAKER_OK_WHEN_TP_ONLY = {ExitReason.TAKE_PROFIT, ExitReason.TIME_EXIT}


def taker_fee(price: float) -> float:
    """Per-share taker fee: 0.125 * (p * (1 - p))^2."""
    return 0.125 * math.pow(price * (1 - price), 2)


def taker_fee_pct(price: float) -> float:
    if price == 0:
        return 0.0
    return taker_fee(price) / price * 100.0


def obi_maker_timeout_ms(obi: float, is_selling: bool) -> int:
    """How long a maker order may rest before escalating to taker.

    A buyer waits when sellers are stacked on the ask, a seller when buyers are
    stacked on the bid. When the book leans our way there is nobody to fill a
    passive order, so we skip straight to taker.
    """
    cat = categorize_obi(obi)
    if is_selling:
        if cat == ObiCategory.BID_HEAVY:
            return 4000
        if cat in (ObiCategory.BID_LEAN, ObiCategory.BALANCED):
            return 2000
        return 0
    if cat == ObiCategory.ASK_HEAVY:
        return 4000
    if cat in (ObiCategory.ASK_LEAN, ObiCategory.BALANCED):
        return 2000
    return 0


def _clamp_price(px: float) -> float:
    return round(max(MIN_PRICE, min(MAX_PRICE, px)), 4)


def _resolve_mode(mode: OrderMode, obi: float, is_selling: bool, max_timeout_ms: int) -> tuple[OrderMode, int]:
    if mode != OrderMode.MAKER_THEN_TAKER:
        return mode, 0
    # configured timeout caps the OBI-conditioned wait
    timeout = min(max_timeout_ms, obi_maker_timeout_ms(obi, is_selling))
    if timeout <= 0:
        return OrderMode.TAKER, 0
    return mode, timeout


def maker_buy_price(snap: OrderbookSnapshot) -> float:
    # improve the bid by one tick when the spread leaves room, otherwise join it
    if snap.best_bid <= 0:
        return _clamp_price(snap.best_ask - TICK)
    if snap.best_ask - snap.best_bid > TICK + 1e-9:
        return _clamp_price(snap.best_bid + TICK)
    return _clamp_price(snap.best_bid)


def maker_sell_price(snap: OrderbookSnapshot, buffer: float) -> float:
    px = snap.best_ask - buffer
    if px <= snap.best_bid + 1e-9:
        # at or below the bid a post-only sell would cross
        px = min(snap.best_bid + TICK, snap.best_ask)
    return _clamp_price(px)


def plan_entry(snap: OrderbookSnapshot, shares: float, execution: OrderExecution, mode: Optional[OrderMode] = None, reason: str = "") -> OrderIntent:
    mode, timeout = _resolve_mode(mode or execution.mode, snap.obi, False, execution.maker_timeout_ms)
    if mode in (OrderMode.MAKER, OrderMode.MAKER_THEN_TAKER):
        price = maker_buy_price(snap)
    else:
        price = _clamp_price(snap.best_ask + execution.taker_buffer)
    return OrderIntent(mode=mode, side="BUY", token_id=snap.token_id, price=price, size=shares, maker_timeout_ms=timeout, reason=reason)


def exit_mode_for(reason: ExitReason, execution: OrderExecution, maker_exits_for_tp_only: bool) -> OrderMode:
    if reason in _TAKER_ONLY_EXITS:
        return OrderMode.TAKER
    if maker_exits_for_tp_only and reason not in _MAKER_OK_WHEN_TP_ONLY:
        return OrderMode.TAKER
    return execution.mode


def plan_exit(snap: OrderbookSnapshot, shares: float, reason: ExitReason, execution: OrderExecution, maker_exits_for_tp_only: bool = True, share_buffer: float = 0.0) -> OrderIntent:
    size = math.floor(round(max(0.0, shares - share_buffer) * 100, 6)) / 100
    mode, timeout = _resolve_mode(exit_mode_for(reason, execution, maker_exits_for_tp_only), snap.obi, True, execution.maker_timeout_ms)
    if mode in (OrderMode.MAKER, OrderMode.MAKER_THEN_TAKER):
        price = maker_sell_price(snap, execution.maker_exit_buffer)
    else:
        price = _clamp_price(snap.best_bid - execution.taker_buffer)
    return OrderIntent(mode=mode, side="SELL", token_id=snap.token_id, price=price, size=size, maker_timeout_ms=timeout, reason=reason.value)


@dataclass
class PnlBreakdown:
    gross_usd: float
    entry_fee_usd: float
    exit_fee_usd: float
    net_usd: float
    gross_pct: float
    net_pct: float


def net_pnl(entry_price: float, exit_price: float, shares: float, maker_entry: bool, maker_exit: bool) -> PnlBreakdown:
    cost = entry_price * shares
    gross = (exit_price - entry_price) * shares
    entry_fee = 0.0 if maker_entry else taker_fee(entry_price) * shares
    exit_fee = 0.0 if maker_exit else taker_fee(exit_price) * shares
    net = gross - entry_fee - exit_fee
    return PnlBreakdown(
        gross_usd=gross,
        entry_fee_usd=entry_fee,
        exit_fee_usd=exit_fee,
        net_usd=net,
        gross_pct=gross / cost * 100.0 if cost > 0 else 0.0,
        net_pct=net / cost * 100.0 if cost > 0 else 0.0,
    )

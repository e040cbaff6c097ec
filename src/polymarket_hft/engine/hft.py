"""Evaluation-loop scaffolding around the scanner, analytics and position model.

The engine never talks to an exchange: it returns `OrderIntent`s and expects
the caller to report fills back through `on_entry_fill` / `on_exit_fill`.
All methods are meant to be driven from one evaluation context.
"""
from __future__ import annotations

import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from polymarket_hft.config import HftConfig
from polymarket_hft.engine.exits import evaluate_exit
from polymarket_hft.engine.fees import plan_entry, plan_exit
from polymarket_hft.engine.orderbook import OrderbookAnalytics
from polymarket_hft.engine.positions import close_position, open_position, settle_position, update_position
from polymarket_hft.engine.scanner import MarketScanner
from polymarket_hft.engine.stats import compute_stats
from polymarket_hft.models import (
    ClosedPosition,
    EntryDecision,
    ExitDecision,
    ExitReason,
    HftStats,
    OpenPosition,
    OrderbookSnapshot,
    OrderIntent,
    OrderMode,
    TradeSignal,
)
from polymarket_hft.risk.guards import RiskState, approve_entry
from polymarket_hft.utils.logger import get_logger

logger = get_logger("hft")


class HftEngine:
    def __init__(
        self,
        cfg: HftConfig,
        scanner: MarketScanner,
        analytics: Optional[OrderbookAnalytics] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cfg = cfg
        self.scanner = scanner
        self.analytics = analytics or OrderbookAnalytics()
        self._clock = clock
        self.risk = RiskState(started_at=clock())
        self.positions: Dict[str, OpenPosition] = {}
        self.closed: List[ClosedPosition] = []
        self._last_sell_attempt: Dict[str, float] = {}

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else float(now)

    def on_book(self, token_id: str, bids: Iterable, asks: Iterable, ts: Optional[float] = None) -> OrderbookSnapshot:
        snap = self.analytics.observe(token_id, bids, asks, ts)
        if snap.best_bid <= 0:
            # no bid to sell into: leave marks untouched
            logger.debug("Book has no bid, positions not marked", token_id=token_id)
            return snap
        for pos in self.positions.values():
            if pos.token_id == token_id:
                update_position(pos, snap.best_bid, self.cfg, bid=snap.best_bid, now=snap.timestamp)
        return snap

    def request_entry(self, signal: TradeSignal, now: Optional[float] = None) -> Tuple[EntryDecision, Optional[OrderIntent]]:
        now = self._now(now)
        snap = self.analytics.latest(signal.token_id)
        price = snap.best_ask if snap is not None else signal.price
        decision = approve_entry(
            signal.asset,
            signal.direction,
            signal.token_id,
            price,
            self.positions.values(),
            self.risk,
            self.cfg,
            now,
            gate=self.scanner.can_trade(),
            book_stale=self.analytics.is_book_stale(signal.token_id, self.cfg.max_orderbook_stale_ms, now),
        )
        if not decision.approved:
            logger.debug("Entry rejected", asset=signal.asset, direction=signal.direction.value, reason=decision.reason)
            return decision, None
        intent = plan_entry(snap, decision.shares, self.cfg.entry_order, signal.order_mode, reason=signal.reason or signal.strategy)
        return decision, intent

    def on_entry_fill(self, signal: TradeSignal, fill_price: float, shares: float, was_maker: bool, now: Optional[float] = None) -> OpenPosition:
        now = self._now(now)
        market = self.scanner.get_market(signal.asset)
        depth = self.analytics.depths.get_current_depth(signal.token_id)
        pos = open_position(
            signal.asset,
            signal.direction,
            signal.token_id,
            fill_price,
            shares,
            was_maker,
            condition_id=signal.condition_id,
            strategy=signal.strategy,
            expires_at=market.expires_at if market is not None else 0.0,
            initial_depth=sum(depth) if depth else 0.0,
            now=now,
        )
        self.positions[pos.id] = pos
        logger.info(
            "Position opened",
            id=pos.id,
            asset=pos.asset,
            direction=pos.direction.value,
            price=pos.entry_price,
            shares=pos.shares,
            maker=was_maker,
        )
        return pos

    def _time_left(self, pos: OpenPosition, now: float) -> float:
        if pos.expires_at > 0:
            return max(0.0, pos.expires_at - now)
        return self.scanner.get_round().time_left_sec

    def evaluate(self, now: Optional[float] = None) -> List[Tuple[OpenPosition, ExitDecision, OrderIntent]]:
        now = self._now(now)
        out: List[Tuple[OpenPosition, ExitDecision, OrderIntent]] = []
        for pos in list(self.positions.values()):
            signals = self.analytics.exit_signals(
                pos.token_id, self._time_left(pos, now), self.cfg.depth_collapse_threshold_pct, now
            )
            decision = evaluate_exit(pos, self.cfg, signals, now)
            if decision is None:
                continue
            last = self._last_sell_attempt.get(pos.id)
            if last is not None and (now - last) * 1000.0 < self.cfg.sell_cooldown_ms:
                continue
            self._last_sell_attempt[pos.id] = now

            snap = self.analytics.latest(pos.token_id)
            if snap is None:
                # no book to price against: cross at whatever is there
                size = max(0.0, pos.shares - self.cfg.exit_share_buffer)
                intent = OrderIntent(mode=OrderMode.TAKER, side="SELL", token_id=pos.token_id, size=round(size, 2), reason=decision.reason.value)
            else:
                intent = plan_exit(
                    snap,
                    pos.shares,
                    decision.reason,
                    self.cfg.exit_order,
                    self.cfg.maker_exits_for_tp_only,
                    self.cfg.exit_share_buffer,
                )
            logger.info("Exit triggered", id=pos.id, asset=pos.asset, reason=decision.reason.value, detail=decision.detail, mode=intent.mode.value)
            out.append((pos, decision, intent))
        return out

    def on_exit_fill(self, position_id: str, exit_price: float, reason: ExitReason, was_maker: bool, now: Optional[float] = None) -> ClosedPosition:
        now = self._now(now)
        pos = self.positions.pop(position_id)
        self._last_sell_attempt.pop(position_id, None)
        closed = close_position(pos, exit_price, reason, was_maker, now)
        self._record_close(closed, now)
        return closed

    def settle_expired(self, settle_prices: Optional[Dict[str, float]] = None, now: Optional[float] = None) -> List[ClosedPosition]:
        """Close positions whose round expired while still held, then drop books nobody watches."""
        now = self._now(now)
        settle_prices = settle_prices or {}
        out: List[ClosedPosition] = []
        for pid, pos in list(self.positions.items()):
            if pos.expires_at <= 0 or now < pos.expires_at:
                continue
            del self.positions[pid]
            self._last_sell_attempt.pop(pid, None)
            closed = settle_position(pos, settle_prices.get(pos.token_id, pos.current_price), now)
            self._record_close(closed, now)
            out.append(closed)
        self._prune_books()
        return out

    def _prune_books(self):
        # keep books for held tokens and the scanner's current markets only
        keep = {pos.token_id for pos in self.positions.values()}
        for m in self.scanner.get_markets():
            keep.update((m.up_token_id, m.down_token_id))
        dropped = self.analytics.retain(keep)
        if dropped:
            logger.debug("Dropped books for inactive tokens", count=dropped)

    def _record_close(self, closed: ClosedPosition, now: float):
        self.closed.append(closed)
        self.risk.daily_pnl_usd = compute_stats(self.closed, len(self.positions), now).daily_pnl_usd
        self.risk.last_exit_at[(closed.asset, closed.direction.value)] = now
        if closed.exit_reason == ExitReason.STOP_LOSS:
            self.risk.last_stop_loss_at = now
        logger.info(
            "Position closed",
            id=closed.id,
            asset=closed.asset,
            reason=closed.exit_reason.value,
            net_pnl_usd=round(closed.net_pnl_usd, 4),
            net_pnl_pct=round(closed.net_pnl_pct, 2),
            hold_sec=round(closed.hold_time_sec, 1),
        )

    def stats(self, now: Optional[float] = None) -> HftStats:
        return compute_stats(self.closed, len(self.positions), self._now(now))

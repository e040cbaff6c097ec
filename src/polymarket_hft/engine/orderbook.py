"""Orderbook analytics: snapshots, OBI buckets and rolling per-token trackers.

Trackers prune lazily when a sample is written. Tokens from finished rounds
are dropped explicitly with `forget` or `retain`.
Each tracker guards its map with a lock, but all writes for one token are
expected to come from a single evaluation context.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple

from polymarket_hft.models import ExitSignals, ObiCategory, OrderbookSnapshot

SPREAD_WINDOW_SEC = 60.0
SPREAD_MIN_SAMPLES = 10
MM_CAP_SPREAD_RATIO_BOOST = 2.0
MM_CAP_SPREAD_RATIO_SKIP = 1.2

DEPTH_WINDOW_SEC = 30.0
DEPTH_CHANGE_WINDOW_SEC = 10.0


def _as_float(x, default: float = 0.0) -> float:
    try:
        return float(x)
    except (TypeError, ValueError):
        return default


def _levels(raw: Iterable) -> List[Tuple[float, float]]:
    out: List[Tuple[float, float]] = []
    for lvl in raw or []:
        if isinstance(lvl, dict):
            px, qty = _as_float(lvl.get("price")), _as_float(lvl.get("size"))
        else:
            px, qty = _as_float(lvl[0]), _as_float(lvl[1])
        if px <= 0 or qty <= 0:
            continue
        out.append((px, qty))
    return out


def build_snapshot(token_id: str, bids: Iterable, asks: Iterable, timestamp: Optional[float] = None) -> OrderbookSnapshot:
    bid_levels = sorted(_levels(bids), key=lambda x: x[0], reverse=True)
    ask_levels = sorted(_levels(asks), key=lambda x: x[0])

    bid_depth = sum(q for _, q in bid_levels)
    ask_depth = sum(q for _, q in ask_levels)
    total = bid_depth + ask_depth
    obi = (bid_depth - ask_depth) / total if total > 0 else 0.0

    # one-sided books keep spread and mid finite
    best_bid = bid_levels[0][0] if bid_levels else 0.0
    best_ask = ask_levels[0][0] if ask_levels else 1.0
    spread = best_ask - best_bid
    mid = (best_bid + best_ask) / 2.0
    spread_pct = spread / mid * 100.0 if mid > 0 else 0.0

    return OrderbookSnapshot(
        token_id=token_id,
        bids=bid_levels,
        asks=ask_levels,
        bid_depth=bid_depth,
        ask_depth=ask_depth,
        obi=obi,
        spread=spread,
        spread_pct=spread_pct,
        best_bid=best_bid,
        best_ask=best_ask,
        mid_price=mid,
        timestamp=time.time() if timestamp is None else float(timestamp),
    )


def categorize_obi(obi: float) -> ObiCategory:
    if obi > 0.3:
        return ObiCategory.BID_HEAVY
    if obi > 0:
        return ObiCategory.BID_LEAN
    if obi > -0.3:
        return ObiCategory.BALANCED
    if obi > -0.6:
        return ObiCategory.ASK_LEAN
    return ObiCategory.ASK_HEAVY


class SpreadTracker:
    """Rolling 60s spread history per token.

    The ratio of the latest spread to the window average tells whether market
    makers have pulled their quotes (>= 2.0) or are pinning a tight band (< 1.2).
    """

    def __init__(self, window_sec: float = SPREAD_WINDOW_SEC, min_samples: int = SPREAD_MIN_SAMPLES):
        self.window_sec = window_sec
        self.min_samples = min_samples
        self._history: Dict[str, Deque[Tuple[float, float]]] = {}
        self._lock = threading.Lock()

    def record(self, token_id: str, spread: float, ts: Optional[float] = None):
        ts = time.time() if ts is None else float(ts)
        with self._lock:
            dq = self._history.setdefault(token_id, deque())
            dq.append((ts, float(spread)))
            cutoff = ts - self.window_sec
            while dq and dq[0][0] < cutoff:
                dq.popleft()

    def _samples(self, token_id: str) -> Optional[List[float]]:
        with self._lock:
            dq = self._history.get(token_id)
            if not dq or len(dq) < self.min_samples:
                return None
            return [s for _, s in dq]

    def get_avg_spread(self, token_id: str) -> Optional[float]:
        samples = self._samples(token_id)
        if samples is None:
            return None
        return sum(samples) / len(samples)

    def get_spread_ratio(self, token_id: str) -> Optional[float]:
        samples = self._samples(token_id)
        if samples is None:
            return None
        avg = sum(samples) / len(samples)
        if avg == 0:
            return None
        return samples[-1] / avg

    def forget(self, token_id: str):
        with self._lock:
            self._history.pop(token_id, None)

    def is_mm_capitulation(self, token_id: str) -> bool:
        ratio = self.get_spread_ratio(token_id)
        return ratio is not None and ratio >= MM_CAP_SPREAD_RATIO_BOOST

    def is_mm_low_conviction(self, token_id: str) -> bool:
        ratio = self.get_spread_ratio(token_id)
        return ratio is not None and ratio < MM_CAP_SPREAD_RATIO_SKIP


@dataclass
class DepthSample:
    bid_depth: float
    ask_depth: float
    total: float
    ts: float


class DepthTracker:
    def __init__(self, window_sec: float = DEPTH_WINDOW_SEC):
        self.window_sec = window_sec
        self._history: Dict[str, Deque[DepthSample]] = {}
        self._lock = threading.Lock()

    def record(self, token_id: str, bid_depth: float, ask_depth: float, ts: Optional[float] = None):
        ts = time.time() if ts is None else float(ts)
        sample = DepthSample(bid_depth=bid_depth, ask_depth=ask_depth, total=bid_depth + ask_depth, ts=ts)
        with self._lock:
            dq = self._history.setdefault(token_id, deque())
            dq.append(sample)
            cutoff = ts - self.window_sec
            while dq and dq[0].ts < cutoff:
                dq.popleft()

    def get_depth_change(self, token_id: str, window_sec: float = DEPTH_CHANGE_WINDOW_SEC) -> Optional[float]:
        """Signed % change of total depth over the window; negative means the book thinned."""
        with self._lock:
            dq = self._history.get(token_id)
            if not dq or len(dq) < 2:
                return None
            current = dq[-1]
            cutoff = current.ts - window_sec
            baseline = next((s for s in dq if s.ts >= cutoff), dq[0])
        if baseline.total == 0:
            return None
        return (current.total - baseline.total) / baseline.total * 100.0

    def is_collapsed(self, token_id: str, threshold_pct: float, window_sec: float = DEPTH_CHANGE_WINDOW_SEC) -> bool:
        change = self.get_depth_change(token_id, window_sec)
        return change is not None and change <= -abs(threshold_pct)

    def forget(self, token_id: str):
        with self._lock:
            self._history.pop(token_id, None)

    def get_current_depth(self, token_id: str) -> Optional[Tuple[float, float]]:
        with self._lock:
            dq = self._history.get(token_id)
            if not dq:
                return None
            return dq[-1].bid_depth, dq[-1].ask_depth


class BidTracker:
    def __init__(self):
        self._last_bid: Dict[str, float] = {}
        self._unchanged_since: Dict[str, float] = {}
        self._lock = threading.Lock()

    def record(self, token_id: str, bid: float, ts: Optional[float] = None):
        ts = time.time() if ts is None else float(ts)
        with self._lock:
            prev = self._last_bid.get(token_id)
            if prev is None or prev != bid:
                self._unchanged_since[token_id] = ts
            self._last_bid[token_id] = bid

    def get_staleness_sec(self, token_id: str, now: Optional[float] = None) -> float:
        now = time.time() if now is None else float(now)
        with self._lock:
            since = self._unchanged_since.get(token_id)
        if since is None:
            return 0.0
        return max(0.0, now - since)

    def get_bid(self, token_id: str) -> Optional[float]:
        with self._lock:
            return self._last_bid.get(token_id)

    def forget(self, token_id: str):
        with self._lock:
            self._last_bid.pop(token_id, None)
            self._unchanged_since.pop(token_id, None)


class OrderbookAnalytics:
    """Feeds every raw book observation into the snapshot cache and all trackers."""

    def __init__(self):
        self.spreads = SpreadTracker()
        self.depths = DepthTracker()
        self.bids = BidTracker()
        self._latest: Dict[str, OrderbookSnapshot] = {}
        self._lock = threading.Lock()

    def observe(self, token_id: str, bids: Iterable, asks: Iterable, ts: Optional[float] = None) -> OrderbookSnapshot:
        snap = build_snapshot(token_id, bids, asks, ts)
        self.spreads.record(token_id, snap.spread, snap.timestamp)
        self.depths.record(token_id, snap.bid_depth, snap.ask_depth, snap.timestamp)
        self.bids.record(token_id, snap.best_bid, snap.timestamp)
        with self._lock:
            self._latest[token_id] = snap
        return snap

    def latest(self, token_id: str) -> Optional[OrderbookSnapshot]:
        with self._lock:
            return self._latest.get(token_id)

    def tokens(self) -> Set[str]:
        with self._lock:
            return set(self._latest)

    def forget(self, token_id: str):
        self.spreads.forget(token_id)
        self.depths.forget(token_id)
        self.bids.forget(token_id)
        with self._lock:
            self._latest.pop(token_id, None)

    def retain(self, token_ids: Iterable[str]) -> int:
        """Drop every tracked token not in `token_ids`; returns how many were dropped."""
        keep = set(token_ids)
        stale = self.tokens() - keep
        for token_id in stale:
            self.forget(token_id)
        return len(stale)

    def is_book_stale(self, token_id: str, max_age_ms: float, now: Optional[float] = None) -> bool:
        snap = self.latest(token_id)
        if snap is None:
            return True
        now = time.time() if now is None else float(now)
        return (now - snap.timestamp) * 1000.0 > max_age_ms

    def exit_signals(self, token_id: str, time_left_sec: float, collapse_threshold_pct: float, now: Optional[float] = None) -> ExitSignals:
        staleness = None
        if self.bids.get_bid(token_id) is not None:
            staleness = self.bids.get_staleness_sec(token_id, now)
        return ExitSignals(
            time_left_sec=time_left_sec,
            depth_collapsed=self.depths.is_collapsed(token_id, collapse_threshold_pct),
            bid_staleness_sec=staleness,
        )

"""Round-based market discovery and rotation.

Rounds are slots on a fixed grid (``floor(unix_ts / round_duration_sec)``).
When the slot changes the scanner fetches the new round's markets, one per
asset, and gates trading on round age and time left.
"""
from __future__ import annotations

import math
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from polymarket_hft.config import HftConfig
from polymarket_hft.models import Market, RoundState, TradeGate
from polymarket_hft.utils.logger import get_logger

logger = get_logger("scanner")

# slack for catalogs whose expiry is not exactly on the round grid
EXPIRY_SLACK_SEC = 60.0

UP_LABELS = {"yes", "up"}
DOWN_LABELS = {"no", "down"}

FetchFn = Callable[[str], List[dict]]


def _parse_ts(s: str) -> Optional[float]:
    try:
        dt = datetime.fromisoformat((s or "").replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def discovery_queries(asset: str) -> List[str]:
    # the catalog has no symbol search, so try a few phrasings
    return [f"Will {asset} go up", f"{asset} price", f"Will the price of {asset}"]


class MarketScanner:
    def __init__(self, cfg: HftConfig, fetch: FetchFn, clock: Callable[[], float] = time.time):
        self.cfg = cfg
        self._fetch = fetch
        self._clock = clock
        self._markets: Dict[str, Market] = {}
        self._by_condition: Dict[str, Market] = {}
        self._current_slot: Optional[int] = None
        self._last_refresh_at: Optional[float] = None
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def slot_at(self, now: float) -> int:
        return int(math.floor(now / self.cfg.round_duration_sec))

    def slot_expiry(self, slot: int) -> float:
        return float((slot + 1) * self.cfg.round_duration_sec)

    def market_slot(self, expires_at: float) -> int:
        # slot whose expiry is the grid boundary nearest to the market's expiry
        return int(round(expires_at / self.cfg.round_duration_sec)) - 1

    def get_round(self) -> RoundState:
        now = self._clock()
        slot = self.slot_at(now)
        expires_at = self.slot_expiry(slot)
        time_left = max(0.0, expires_at - now)
        with self._lock:
            markets = list(self._markets.values())
        return RoundState(
            slot=slot,
            expires_at=expires_at,
            markets=markets,
            age_sec=self.cfg.round_duration_sec - time_left,
            time_left_sec=time_left,
        )

    def get_markets(self) -> List[Market]:
        with self._lock:
            return list(self._markets.values())

    def get_market(self, asset: str) -> Optional[Market]:
        with self._lock:
            return self._markets.get(asset.upper())

    def can_trade(self) -> TradeGate:
        rnd = self.get_round()
        if not rnd.markets:
            return TradeGate(ok=False, reason="No active markets")
        now = self._clock()
        if not any(m.expires_at > now for m in rnd.markets):
            return TradeGate(ok=False, reason="Cached markets have expired")
        if rnd.age_sec < self.cfg.min_round_age_sec:
            return TradeGate(ok=False, reason=f"Round too young ({rnd.age_sec:.0f}s < {self.cfg.min_round_age_sec:.0f}s)")
        if rnd.time_left_sec < self.cfg.min_time_left_sec:
            return TradeGate(ok=False, reason=f"Too close to expiry ({rnd.time_left_sec:.0f}s < {self.cfg.min_time_left_sec:.0f}s)")
        return TradeGate(ok=True)

    def update_price(self, condition_id: str, up_price: float, down_price: float):
        with self._lock:
            m = self._by_condition.get(condition_id)
            if m is not None:
                m.up_price = float(up_price)
                m.down_price = float(down_price)

    def _candidate(self, asset: str, m: dict, now: float, slot: int) -> Optional[Market]:
        if m.get("closed") or not m.get("active"):
            return None
        tokens = m.get("tokens") or []
        if len(tokens) < 2:
            return None
        question = str(m.get("question", ""))
        if asset.lower() not in question.lower():
            return None

        expires_at = _parse_ts(str(m.get("end_date_iso", "")))
        if expires_at is None:
            return None
        secs_left = expires_at - now
        if secs_left <= 0 or secs_left > self.cfg.round_duration_sec + EXPIRY_SLACK_SEC:
            return None

        up = next((t for t in tokens if str(t.get("outcome", "")).lower() in UP_LABELS), None)
        down = next((t for t in tokens if str(t.get("outcome", "")).lower() in DOWN_LABELS), None)
        if up is None or down is None:
            return None

        round_slot = self.market_slot(expires_at)
        if self.cfg.reject_cross_slot and round_slot != slot:
            logger.debug("Skipping market from another round", asset=asset, market_slot=round_slot, slot=slot)
            return None

        neg_risk = m.get("neg_risk")
        return Market(
            asset=asset,
            condition_id=str(m.get("condition_id", "")),
            question_id=str(m.get("question_id", "")),
            up_token_id=str(up.get("token_id", "")),
            down_token_id=str(down.get("token_id", "")),
            up_price=float(up.get("price") or 0.0),
            down_price=float(down.get("price") or 0.0),
            expires_at=expires_at,
            round_slot=round_slot,
            neg_risk=True if neg_risk is None else bool(neg_risk),
            question=question,
        )

    def _discover_asset(self, asset: str, now: float, slot: int) -> Optional[Market]:
        best: Optional[Market] = None
        for query in discovery_queries(asset):
            for m in self._fetch(query):
                cand = self._candidate(asset, m, now, slot)
                if cand is None:
                    continue
                if best is None or cand.expires_at < best.expires_at:
                    best = cand
            if best is not None:
                break
        return best

    def _discover(self, now: float, slot: int) -> Dict[str, Market]:
        with self._lock:
            previous = dict(self._markets)
        found: Dict[str, Market] = {}
        for asset in self.cfg.assets:
            try:
                m = self._discover_asset(asset, now, slot)
            except Exception as e:
                logger.warning("Market scan failed for asset", asset=asset, error=str(e))
                # keep operating on the last known market for this asset
                prev = previous.get(asset)
                if prev is not None and prev.expires_at > now:
                    found[asset] = prev
                continue
            if m is not None:
                found[asset] = m
        return found

    def _apply(self, markets: Dict[str, Market], slot: int):
        with self._lock:
            prev_slot = self._current_slot
            self._markets = markets
            self._by_condition = {m.condition_id: m for m in markets.values()}
            self._current_slot = slot
        if markets and slot != prev_slot:
            now = self._clock()
            logger.info(
                "New round - markets loaded",
                slot=slot,
                markets=[f"{m.asset}({m.expires_at - now:.0f}s)" for m in markets.values()],
            )

    def _rate_limited(self, now: float) -> bool:
        return self._last_refresh_at is not None and (now - self._last_refresh_at) < self.cfg.discovery_min_interval_sec

    def refresh(self) -> List[Market]:
        now = self._clock()
        if self._rate_limited(now):
            logger.debug("Discovery throttled", since_last=round(now - self._last_refresh_at, 2))
            return self.get_markets()
        self._last_refresh_at = now
        slot = self.slot_at(now)
        markets = self._discover(now, slot)
        self._apply(markets, slot)
        return list(markets.values())

    def maybe_refresh(self):
        now = self._clock()
        slot = self.slot_at(now)
        with self._lock:
            stale = slot != self._current_slot or not self._markets
        if not stale or self._rate_limited(now):
            return
        self._last_refresh_at = now
        markets = self._discover(now, slot)
        if self._stop.is_set():
            # stopped while the fetch was in flight
            return
        self._apply(markets, slot)

    def start(self):
        if self._running:
            return
        self._running = True
        self._stop.clear()
        if self._thread is not None and self._thread.is_alive():
            # previous poller has not noticed the stop yet; it keeps polling
            return
        self._thread = threading.Thread(target=self._run, name="market-scanner", daemon=True)
        self._thread.start()

    def stop(self):
        self._running = False
        self._stop.set()

    @property
    def running(self) -> bool:
        return self._running

    def _run(self):
        while not self._stop.is_set():
            try:
                self.maybe_refresh()
            except Exception:
                logger.exception("Scanner poll failed")
            self._stop.wait(self.cfg.scan_interval_sec)

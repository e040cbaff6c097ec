from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Sequence

from polymarket_hft.models import ClosedPosition, HftStats


def _utc_day(ts: float):
    return datetime.fromtimestamp(ts, tz=timezone.utc).date()


def compute_stats(closed: Sequence[ClosedPosition], open_positions: int, now: float) -> HftStats:
    if not closed:
        return HftStats(open_positions=open_positions)

    n = len(closed)
    wins = sum(1 for c in closed if c.net_pnl_usd > 0)
    gross = sum(c.pnl_usd for c in closed)
    net = sum(c.net_pnl_usd for c in closed)
    today = _utc_day(now)
    return HftStats(
        total_trades=n,
        wins=wins,
        losses=n - wins,
        win_rate=wins / n * 100.0,
        gross_pnl_usd=gross,
        fees_usd=gross - net,
        net_pnl_usd=net,
        daily_pnl_usd=sum(c.net_pnl_usd for c in closed if _utc_day(c.exited_at) == today),
        open_positions=open_positions,
        best_trade_pct=max(c.net_pnl_pct for c in closed),
        worst_trade_pct=min(c.net_pnl_pct for c in closed),
        avg_hold_time_sec=sum(c.hold_time_sec for c in closed) / n,
        maker_entry_rate=sum(1 for c in closed if c.was_maker_entry) / n * 100.0,
        maker_exit_rate=sum(1 for c in closed if c.was_maker_exit) / n * 100.0,
        exit_reasons=dict(Counter(c.exit_reason.value for c in closed)),
    )

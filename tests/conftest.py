"""Shared fixtures: injected clocks, configs and Gamma-shaped market payloads."""

from datetime import datetime, timezone

import pytest

from polymarket_hft.config import HftConfig

# start of a 900s round slot
ROUND_START = 900 * 2_000_000


class FakeClock:
    def __init__(self, t: float):
        self.t = float(t)

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float):
        self.t += seconds


def iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def feed_market(
    asset: str = "BTC",
    expires_at: float = ROUND_START + 900,
    condition_id: str = "cond-btc",
    up: str = "Up",
    down: str = "Down",
    active: bool = True,
    closed: bool = False,
    **overrides,
) -> dict:
    m = {
        "condition_id": condition_id,
        "question_id": f"q-{condition_id}",
        "question": f"Will {asset} go up in the next 15 minutes?",
        "tokens": [
            {"token_id": f"{condition_id}-up", "outcome": up, "price": 0.52},
            {"token_id": f"{condition_id}-down", "outcome": down, "price": 0.48},
        ],
        "end_date_iso": iso(expires_at),
        "active": active,
        "closed": closed,
        "neg_risk": False,
        "volume": "1000",
        "liquidity": "500",
        "slug": f"{asset.lower()}-updown-15m",
    }
    m.update(overrides)
    return m


@pytest.fixture
def clock():
    return FakeClock(ROUND_START + 100)


@pytest.fixture
def make_cfg():
    def _make(**overrides) -> HftConfig:
        base = {"assets": ["BTC"], "warmup_sec": 0}
        base.update(overrides)
        return HftConfig(**base)

    return _make

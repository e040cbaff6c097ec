import pytest

from polymarket_hft.engine.fees import (
    maker_sell_price,
    net_pnl,
    obi_maker_timeout_ms,
    plan_entry,
    plan_exit,
    taker_fee,
    taker_fee_pct,
)
from polymarket_hft.engine.orderbook import build_snapshot
from polymarket_hft.models import ExitReason, OrderExecution, OrderMode


def test_taker_fee_matches_formula_on_price_grid():
    for cents in range(0, 101):
        p = cents / 100
        assert taker_fee(p) == pytest.approx(0.125 * (p * (1 - p)) ** 2)


def test_taker_fee_vanishes_at_edges_and_peaks_at_half():
    assert taker_fee(0.0) == 0.0
    assert taker_fee(1.0) == 0.0
    assert taker_fee(0.5) == 0.0078125
    assert all(taker_fee(c / 100) <= taker_fee(0.5) for c in range(0, 101))


def test_taker_fee_pct():
    assert taker_fee_pct(0) == 0.0
    assert taker_fee_pct(0.5) == pytest.approx(1.5625)
    # cheap contracts pay a much smaller share of price
    assert taker_fee_pct(0.05) < taker_fee_pct(0.5)


@pytest.mark.parametrize(
    "obi,buy_ms,sell_ms",
    [
        (-0.8, 4000, 0),  # ask_heavy
        (-0.4, 2000, 0),  # ask_lean
        (0.0, 2000, 2000),  # balanced
        (0.1, 0, 2000),  # bid_lean
        (0.6, 0, 4000),  # bid_heavy
    ],
)
def test_obi_maker_timeout(obi, buy_ms, sell_ms):
    assert obi_maker_timeout_ms(obi, is_selling=False) == buy_ms
    assert obi_maker_timeout_ms(obi, is_selling=True) == sell_ms


def _bid_heavy_book():
    return build_snapshot("tok", [(0.45, 500)], [(0.48, 50)], timestamp=1.0)


def _ask_heavy_book():
    return build_snapshot("tok", [(0.45, 50)], [(0.48, 500)], timestamp=1.0)


def test_entry_skips_maker_when_book_is_bid_heavy():
    intent = plan_entry(_bid_heavy_book(), 20, OrderExecution())
    assert intent.mode == OrderMode.TAKER
    assert intent.side == "BUY"
    assert intent.price == pytest.approx(0.49)
    assert intent.maker_timeout_ms == 0


def test_entry_waits_for_maker_when_sellers_are_stacked():
    intent = plan_entry(_ask_heavy_book(), 20, OrderExecution())
    assert intent.mode == OrderMode.MAKER_THEN_TAKER
    assert intent.maker_timeout_ms == 4000
    # improves the bid inside the spread
    assert intent.price == pytest.approx(0.46)


def test_configured_timeout_caps_obi_wait():
    intent = plan_entry(_ask_heavy_book(), 20, OrderExecution(maker_timeout_ms=1500))
    assert intent.maker_timeout_ms == 1500


def test_stop_loss_exit_is_always_taker():
    ex = OrderExecution(mode=OrderMode.MAKER)
    intent = plan_exit(_bid_heavy_book(), 100, ExitReason.STOP_LOSS, ex, maker_exits_for_tp_only=False)
    assert intent.mode == OrderMode.TAKER
    assert intent.side == "SELL"
    assert intent.price == pytest.approx(0.44)


def test_take_profit_exit_posts_inside_spread():
    intent = plan_exit(_bid_heavy_book(), 100, ExitReason.TAKE_PROFIT, OrderExecution(), share_buffer=0.02)
    assert intent.mode == OrderMode.MAKER_THEN_TAKER
    assert intent.maker_timeout_ms == 4000
    assert intent.price == pytest.approx(0.47)
    assert intent.size == pytest.approx(99.98)


def test_maker_exits_for_tp_only_sends_other_exits_as_taker():
    book = _bid_heavy_book()
    tp_only = plan_exit(book, 10, ExitReason.TRAILING_STOP, OrderExecution(), maker_exits_for_tp_only=True)
    assert tp_only.mode == OrderMode.TAKER
    relaxed = plan_exit(book, 10, ExitReason.TRAILING_STOP, OrderExecution(), maker_exits_for_tp_only=False)
    assert relaxed.mode == OrderMode.MAKER_THEN_TAKER


def test_maker_sell_never_crosses_bid():
    book = build_snapshot("tok", [(0.50, 10)], [(0.51, 10)], timestamp=1.0)
    assert maker_sell_price(book, 0.05) == pytest.approx(0.51)


def test_net_pnl_charges_only_taker_legs():
    both = net_pnl(0.40, 0.50, 100, maker_entry=False, maker_exit=False)
    assert both.gross_usd == pytest.approx(10.0)
    assert both.entry_fee_usd == pytest.approx(0.72)
    assert both.exit_fee_usd == pytest.approx(0.78125)
    assert both.net_usd == pytest.approx(8.49875)
    assert both.gross_pct == pytest.approx(25.0)

    maker_in = net_pnl(0.40, 0.50, 100, maker_entry=True, maker_exit=False)
    assert maker_in.entry_fee_usd == 0.0
    assert maker_in.net_usd == pytest.approx(10.0 - 0.78125)

import pytest

from polymarket_hft.engine.exits import evaluate_exit, trailing_width_pct
from polymarket_hft.engine.positions import close_position, open_position, settle_position, update_position
from polymarket_hft.models import Direction, ExitReason, ExitSignals

T0 = 1_000_000.0


def _position(entry=0.50, shares=10.0, maker=False, now=T0):
    return open_position("btc", Direction.UP, "tok-up", entry, shares, maker, condition_id="c1", strategy="test", now=now)


def _signals(time_left=600.0, collapsed=False, staleness=None):
    return ExitSignals(time_left_sec=time_left, depth_collapsed=collapsed, bid_staleness_sec=staleness)


def test_open_position_initial_state():
    pos = _position(entry=0.40, shares=12.5)
    assert pos.asset == "BTC"
    assert pos.cost_usd == pytest.approx(5.0)
    assert pos.high_water_mark == 0.40
    assert pos.confirmed_high == 0.0
    assert pos.entry_fee_pct > 0
    assert pos.current_pnl_pct == 0.0
    assert len(pos.id) == 12

    maker = _position(maker=True)
    assert maker.entry_fee_pct == 0.0


@pytest.mark.parametrize("entry,shares", [(0.0, 10), (1.0, 10), (0.5, 0)])
def test_open_position_rejects_bad_inputs(entry, shares):
    with pytest.raises(ValueError):
        _position(entry=entry, shares=shares)


def test_ratchet_confirms_after_consecutive_ticks(make_cfg):
    cfg = make_cfg()
    pos = _position()
    update_position(pos, 0.55, cfg, now=T0 + 1)
    assert pos.hwm_confirm_count == 1
    assert pos.confirmed_high == 0.0
    update_position(pos, 0.55, cfg, now=T0 + 2)
    assert pos.hwm_confirm_count == 2
    update_position(pos, 0.552, cfg, now=T0 + 3)
    assert pos.hwm_confirm_count == 3
    assert pos.high_water_mark == 0.552
    assert pos.confirmed_high == 0.552


def test_ratchet_outlier_resets_confirmation(make_cfg):
    cfg = make_cfg()
    pos = _position()
    update_position(pos, 0.55, cfg, now=T0 + 1)
    update_position(pos, 0.50, cfg, now=T0 + 2)
    assert pos.hwm_confirm_count == 0
    assert pos.high_water_mark == 0.55
    assert pos.confirmed_high == 0.0


def test_ratchet_floor_exit(make_cfg):
    cfg = make_cfg()
    pos = _position()
    for i, px in enumerate((0.55, 0.55, 0.552)):
        update_position(pos, px, cfg, now=T0 + i)
    update_position(pos, 0.525, cfg, now=T0 + 4)
    decision = evaluate_exit(pos, cfg, _signals(), T0 + 5)
    assert decision.reason == ExitReason.RATCHET_FLOOR
    assert decision.pnl_pct == pytest.approx(5.0)


def test_unconfirmed_high_does_not_arm_ratchet(make_cfg):
    cfg = make_cfg(trailing_enabled=False)
    pos = _position()
    update_position(pos, 0.60, cfg, now=T0 + 1)
    update_position(pos, 0.52, cfg, now=T0 + 2)
    assert evaluate_exit(pos, cfg, _signals(), T0 + 3) is None


@pytest.mark.parametrize(
    "time_left,width",
    [(900, 8.0), (421, 8.0), (420, 5.0), (360, 5.0), (180, 5.0), (179, 3.0), (10, 3.0)],
)
def test_trailing_width_by_time_left(make_cfg, time_left, width):
    assert trailing_width_pct(time_left, make_cfg()) == width


def test_trailing_stop_round_trip(make_cfg):
    cfg = make_cfg(take_profit_pct=50, ratchet_enabled=False, trailing_mid_pct=10, trailing_wide_pct=15)
    pos = _position(entry=0.40, shares=20)

    update_position(pos, 0.48, cfg, now=T0 + 10)
    assert pos.high_pnl_pct == pytest.approx(20.0)
    update_position(pos, 0.46, cfg, now=T0 + 12)
    assert evaluate_exit(pos, cfg, _signals(time_left=360), T0 + 13) is None

    update_position(pos, 0.43, cfg, now=T0 + 14)
    decision = evaluate_exit(pos, cfg, _signals(time_left=360), T0 + 15)
    assert decision.reason == ExitReason.TRAILING_STOP
    assert decision.pnl_pct == pytest.approx(7.5)

    # same giveback with more time left sits inside the wide trail
    assert evaluate_exit(pos, cfg, _signals(time_left=600), T0 + 15) is None

    closed = close_position(pos, 0.43, decision.reason, was_maker_exit=False, now=T0 + 16)
    assert closed.exit_reason == ExitReason.TRAILING_STOP
    assert closed.pnl_usd == pytest.approx(0.6)
    assert closed.net_pnl_usd < closed.pnl_usd
    assert closed.hold_time_sec == pytest.approx(16.0)


def test_trailing_needs_positive_high(make_cfg):
    cfg = make_cfg()
    pos = _position()
    update_position(pos, 0.47, cfg, now=T0 + 1)
    assert pos.high_pnl_pct == 0.0
    assert pos.low_pnl_pct == pytest.approx(-6.0)
    assert not pos.was_ever_positive
    assert evaluate_exit(pos, cfg, _signals(time_left=100), T0 + 2) is None


def test_force_exit_beats_stop_loss(make_cfg):
    cfg = make_cfg()
    pos = _position()
    update_position(pos, 0.44, cfg, now=T0 + 1)
    assert evaluate_exit(pos, cfg, _signals(time_left=20), T0 + 2).reason == ExitReason.FORCE_EXIT
    assert evaluate_exit(pos, cfg, _signals(time_left=600), T0 + 2).reason == ExitReason.STOP_LOSS


def test_depth_collapse_needs_falling_price(make_cfg):
    cfg = make_cfg(trailing_enabled=False)
    pos = _position()
    update_position(pos, 0.52, cfg, now=T0 + 1)
    assert evaluate_exit(pos, cfg, _signals(collapsed=True), T0 + 2) is None
    update_position(pos, 0.51, cfg, now=T0 + 3)
    assert evaluate_exit(pos, cfg, _signals(collapsed=True), T0 + 4).reason == ExitReason.DEPTH_COLLAPSE


def test_stale_profit(make_cfg):
    cfg = make_cfg()
    pos = _position()
    update_position(pos, 0.53, cfg, now=T0 + 1)
    assert evaluate_exit(pos, cfg, _signals(staleness=10), T0 + 2) is None
    assert evaluate_exit(pos, cfg, _signals(staleness=None), T0 + 2) is None
    assert evaluate_exit(pos, cfg, _signals(staleness=16), T0 + 2).reason == ExitReason.STALE_PROFIT


def test_stagnant_profit(make_cfg):
    cfg = make_cfg()
    pos = _position()
    update_position(pos, 0.53, cfg, now=T0 + 1)
    update_position(pos, 0.532, cfg, now=T0 + 20)
    # inside the band, so progress clock still reads T0 + 1
    assert pos.last_progress_at == T0 + 1
    assert evaluate_exit(pos, cfg, _signals(), T0 + 25) is None
    decision = evaluate_exit(pos, cfg, _signals(), T0 + 35)
    assert decision.reason == ExitReason.STAGNANT_PROFIT


def test_take_profit(make_cfg):
    cfg = make_cfg()
    pos = _position(entry=0.40)
    update_position(pos, 0.48, cfg, now=T0 + 1)
    decision = evaluate_exit(pos, cfg, _signals(), T0 + 2)
    assert decision.reason == ExitReason.TAKE_PROFIT
    assert decision.pnl_pct == pytest.approx(20.0)


def test_close_position_net_of_fees():
    pos = _position(entry=0.40, shares=100)
    closed = close_position(pos, 0.50, ExitReason.TAKE_PROFIT, was_maker_exit=False, now=T0 + 60)
    assert closed.pnl_usd == pytest.approx(10.0)
    assert closed.pnl_pct == pytest.approx(25.0)
    assert closed.net_pnl_usd == pytest.approx(8.49875)
    assert closed.exit_fee_pct == pytest.approx(1.5625)
    assert closed.id == pos.id

    with pytest.raises(ValueError):
        close_position(pos, 1.2, ExitReason.MANUAL, was_maker_exit=False)


def test_settle_position_pays_no_exit_fee():
    pos = _position(entry=0.40, shares=100, maker=True)
    closed = settle_position(pos, 1.0, now=T0 + 900)
    assert closed.exit_reason == ExitReason.TIME_EXIT
    assert closed.was_maker_exit
    assert closed.net_pnl_usd == pytest.approx(60.0)


@pytest.mark.parametrize("wide_pct,expected", [(10.0, ExitReason.TRAILING_STOP), (15.0, None)])
def test_confirmed_high_retrace_with_eight_minutes_left(make_cfg, wide_pct, expected):
    cfg = make_cfg(take_profit_pct=50, ratchet_giveback_pct=20, trailing_mid_pct=8, trailing_wide_pct=wide_pct)
    pos = _position(entry=0.40, shares=100, maker=True)
    for i in range(3):
        update_position(pos, 0.55, cfg, now=T0 + 1 + i)
    assert pos.high_water_mark == 0.55
    assert pos.confirmed_high == 0.55

    update_position(pos, 0.50, cfg, now=T0 + 5)
    assert pos.confirmed_high == 0.55
    decision = evaluate_exit(pos, cfg, _signals(time_left=480), T0 + 6)
    if expected is None:
        assert decision is None
    else:
        assert decision.reason == expected


def test_ratchet_giveback_equal_to_allowance_holds(make_cfg):
    # confirmed high at 0.75 is +50% on a 0.50 entry; price back at entry
    pos = _position()
    pos.confirmed_high = 0.75
    at_allowance = make_cfg(trailing_enabled=False, ratchet_giveback_pct=50)
    assert evaluate_exit(pos, at_allowance, _signals(), T0 + 1) is None
    beyond = make_cfg(trailing_enabled=False, ratchet_giveback_pct=49)
    assert evaluate_exit(pos, beyond, _signals(), T0 + 1).reason == ExitReason.RATCHET_FLOOR


def test_trailing_giveback_equal_to_width_holds(make_cfg):
    cfg = make_cfg(ratchet_enabled=False)
    pos = _position()
    pos.high_pnl_pct = 8.0
    assert evaluate_exit(pos, cfg, _signals(time_left=600), T0 + 1) is None
    pos.high_pnl_pct = 8.5
    assert evaluate_exit(pos, cfg, _signals(time_left=600), T0 + 1).reason == ExitReason.TRAILING_STOP

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class OrderMode(str, Enum):
    MAKER = "maker"  # post-only, 0 fee, rejected if it would cross
    TAKER = "taker"
    FOK = "fok"
    MAKER_THEN_TAKER = "maker_then_taker"


class ObiCategory(str, Enum):
    BID_HEAVY = "bid_heavy"
    BID_LEAN = "bid_lean"
    BALANCED = "balanced"
    ASK_LEAN = "ask_lean"
    ASK_HEAVY = "ask_heavy"


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    RATCHET_FLOOR = "ratchet_floor"
    TRAILING_STOP = "trailing_stop"
    DEPTH_COLLAPSE = "depth_collapse"
    STALE_PROFIT = "stale_profit"
    STAGNANT_PROFIT = "stagnant_profit"
    TIME_EXIT = "time_exit"
    FORCE_EXIT = "force_exit"
    MANUAL = "manual"


class OrderExecution(BaseModel):
    mode: OrderMode = OrderMode.MAKER_THEN_TAKER
    # upper bound on the OBI-conditioned maker wait
    maker_timeout_ms: int = Field(default=4000, ge=0)
    # price units: 0.01 is one cent
    taker_buffer: float = Field(default=0.01, ge=0.0, lt=0.5)
    maker_exit_buffer: float = Field(default=0.01, ge=0.0, lt=0.5)


class Market(BaseModel):
    asset: str
    condition_id: str
    question_id: str = ""
    up_token_id: str
    down_token_id: str
    up_price: float = 0.0
    down_price: float = 0.0
    expires_at: float
    round_slot: int
    neg_risk: bool = True
    question: str = ""

    def token_for(self, direction: Direction) -> str:
        return self.up_token_id if direction == Direction.UP else self.down_token_id


class RoundState(BaseModel):
    slot: int
    expires_at: float
    markets: List[Market] = Field(default_factory=list)
    age_sec: float
    time_left_sec: float


class TradeGate(BaseModel):
    ok: bool
    reason: Optional[str] = None


class OrderbookSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_id: str
    bids: List[Tuple[float, float]] = Field(default_factory=list)  # best first
    asks: List[Tuple[float, float]] = Field(default_factory=list)
    bid_depth: float
    ask_depth: float
    obi: float
    spread: float
    spread_pct: float
    best_bid: float
    best_ask: float
    mid_price: float
    timestamp: float


class TradeSignal(BaseModel):
    strategy: str
    asset: str
    direction: Direction
    token_id: str
    condition_id: str
    price: float
    confidence: float = 0.0
    reason: str = ""
    order_mode: Optional[OrderMode] = None  # None = use configured entry mode
    features: Dict[str, float] = Field(default_factory=dict)
    timestamp: float = 0.0


class OrderIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: OrderMode
    side: str  # BUY / SELL
    token_id: str
    price: Optional[float] = None
    size: float
    maker_timeout_ms: int = 0
    reason: str = ""


class OpenPosition(BaseModel):
    id: str
    strategy: str = ""
    asset: str
    direction: Direction
    token_id: str
    condition_id: str = ""
    entry_price: float
    current_price: float
    shares: float
    cost_usd: float
    was_maker_entry: bool = False
    entry_fee_pct: float = 0.0

    # price high-water-mark and its confirmation
    high_water_mark: float
    hwm_confirm_count: int = 0
    confirmed_high: float = 0.0

    entered_at: float
    expires_at: float = 0.0

    last_bid_price: float = 0.0
    bid_unchanged_since: float = 0.0

    last_progress_at: float = 0.0
    last_progress_pct: float = 0.0

    initial_depth: float = 0.0

    high_pnl_pct: float = 0.0
    low_pnl_pct: float = 0.0
    was_ever_positive: bool = False
    prev_price: float = 0.0

    @property
    def current_pnl_pct(self) -> float:
        return (self.current_price - self.entry_price) / self.entry_price * 100.0


class ClosedPosition(OpenPosition):
    model_config = ConfigDict(frozen=True)

    exit_price: float
    exit_reason: ExitReason
    exited_at: float
    was_maker_exit: bool = False
    exit_fee_pct: float = 0.0
    pnl_usd: float
    pnl_pct: float
    net_pnl_usd: float
    net_pnl_pct: float
    hold_time_sec: float


class ExitSignals(BaseModel):
    time_left_sec: float
    depth_collapsed: bool = False
    bid_staleness_sec: Optional[float] = None  # None = unknown, no signal


class ExitDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: ExitReason
    pnl_pct: float
    detail: str = ""


class EntryDecision(BaseModel):
    approved: bool
    reason: str
    shares: float = 0.0


class HftStats(BaseModel):
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    gross_pnl_usd: float = 0.0
    fees_usd: float = 0.0
    net_pnl_usd: float = 0.0
    daily_pnl_usd: float = 0.0
    open_positions: int = 0
    best_trade_pct: float = 0.0
    worst_trade_pct: float = 0.0
    avg_hold_time_sec: float = 0.0
    maker_entry_rate: float = 0.0
    maker_exit_rate: float = 0.0
    exit_reasons: Dict[str, int] = Field(default_factory=dict)

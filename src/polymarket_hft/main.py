import argparse
import time

from rich import print

from polymarket_hft.adapters.gamma import GammaAdapter
from polymarket_hft.config import HftConfig, load_config
from polymarket_hft.engine.fees import taker_fee, taker_fee_pct
from polymarket_hft.engine.scanner import MarketScanner
from polymarket_hft.utils.logger import setup_logging


def run_scan(cfg: HftConfig) -> MarketScanner:
    gamma = GammaAdapter(cfg.gamma_url)
    scanner = MarketScanner(cfg, gamma.search_markets)
    markets = scanner.refresh()
    rnd = scanner.get_round()

    print(
        f"[bold]Round[/bold] slot={rnd.slot} age={rnd.age_sec:.0f}s "
        f"left={rnd.time_left_sec:.0f}s gamma_calls={gamma.call_count}"
    )
    now = time.time()
    for m in markets:
        print(
            f"[cyan]{m.asset}[/cyan] {m.condition_id[:12]} up={m.up_price:.3f} down={m.down_price:.3f} "
            f"expires_in={m.expires_at - now:.0f}s slot={m.round_slot}"
        )

    gate = scanner.can_trade()
    if gate.ok:
        print("[green]Tradeable[/green]")
    else:
        print(f"[yellow]Not tradeable:[/yellow] {gate.reason}")
    return scanner


def print_fee_table():
    print("[bold]price  fee/share  fee %[/bold]")
    for cents in range(5, 100, 5):
        p = cents / 100
        print(f"{p:.2f}   {taker_fee(p):.5f}    {taker_fee_pct(p):.3f}%")


def main():
    parser = argparse.ArgumentParser(prog="polymarket-hft")
    parser.add_argument("--config", default=None)
    parser.add_argument("--log-level", default="WARNING")
    parser.add_argument("--json-logs", action="store_true", help="emit one JSON object per log line")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("scan", help="run one discovery pass and show the current round")
    sub.add_parser("fees", help="print the taker fee curve")
    args = parser.parse_args()

    setup_logging(args.log_level, json_format=args.json_logs)
    if args.command == "fees":
        print_fee_table()
        return

    cfg = load_config(args.config) if args.config else HftConfig()
    run_scan(cfg)


if __name__ == "__main__":
    main()

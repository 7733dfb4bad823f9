"""Replay a price series through a configured monitor + treasuries.

Usage:
    treasury-replay --config system.json --feed ETH_USD 2000 2300 2100
    treasury-replay --config system.json --feed ETH_USD --prices-file eth.txt --step 300

Prices are given in whole units and scaled to 8-decimal fixed point.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from sqlmodel import create_engine

from common.audit import AuditSink
from common.logging import configure_logging
from treasury_observability.metrics import maybe_start_http_server
from treasury_vault.models import PRICE_SCALE

from .engine import ReactiveSystem
from .models import SystemConfig


class ReplayClock:
    """Simulated wall clock advanced by the replay loop."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def set(self, now: float) -> None:
        self.now = float(now)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Replay a price series through the rebalancer")
    ap.add_argument("--config", required=True, help="system topology JSON file")
    ap.add_argument("--feed", required=True, help="feed id to replay")
    ap.add_argument("prices", nargs="*", help="prices in whole units")
    ap.add_argument("--prices-file", help="file with one price per line")
    ap.add_argument("--start", type=int, default=0, help="first observation time (unix seconds)")
    ap.add_argument("--step", type=int, default=60, help="seconds between observations")
    ap.add_argument("--audit-db", help="SQLAlchemy URL to journal events into")
    ap.add_argument("--out", help="write the portfolio summary here instead of stdout")
    return ap.parse_args(argv)


def read_prices(args: argparse.Namespace) -> List[int]:
    raw = list(args.prices)
    if args.prices_file:
        for line in Path(args.prices_file).read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                raw.append(line)
    return [int(Decimal(p) * PRICE_SCALE) for p in raw]


def main(argv: Optional[List[str]] = None) -> int:
    for f in (".env", ".env.local"):
        load_dotenv(dotenv_path=f, override=False)
    configure_logging(service_name="treasury_orchestrator")
    args = parse_args(argv)

    config = SystemConfig.model_validate_json(Path(args.config).read_text())
    prices = read_prices(args)
    if not prices:
        print("no prices given", file=sys.stderr)
        return 1

    maybe_start_http_server()
    audit = AuditSink(create_engine(args.audit_db)) if args.audit_db else None
    clock = ReplayClock(args.start)
    system = ReactiveSystem(config, clock=clock, audit=audit)
    asyncio.run(system.feed(args.feed, prices, start=args.start, step=args.step, tick=clock.set))

    summary = json.dumps(system.summary(), indent=2)
    if args.out:
        Path(args.out).write_text(summary)
    else:
        print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())

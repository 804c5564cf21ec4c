import argparse
from datetime import datetime
import time

from webhook_dedup.config.settings import DedupSettings
from webhook_dedup.ledger.stores import build_store

from .sweeper import RetentionSweeper


def _build_sweeper() -> RetentionSweeper:
    settings = DedupSettings.from_env()
    return RetentionSweeper(build_store(settings), settings)


def sweep_once(cutoff: datetime | None = None) -> int:
    sweeper = _build_sweeper()
    if cutoff is None:
        return sweeper.sweep_expired()
    return sweeper.sweep(cutoff)


def loop(interval: float) -> None:
    sweeper = _build_sweeper()
    while True:
        sweeper.sweep_expired()
        time.sleep(interval)


def _parse_cutoff(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise argparse.ArgumentTypeError("cutoff must include a UTC offset")
    return parsed


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Webhook dedup retention sweeper")
    sub = parser.add_subparsers(dest="command", required=True)

    sweep_parser = sub.add_parser("sweep")
    sweep_parser.add_argument("--cutoff", type=_parse_cutoff, default=None)

    loop_parser = sub.add_parser("loop")
    loop_parser.add_argument("--interval", type=float, default=3600.0)

    args = parser.parse_args(argv)

    if args.command == "sweep":
        deleted = sweep_once(args.cutoff)
        print(f"deleted {deleted} records")
    elif args.command == "loop":
        loop(args.interval)


if __name__ == "__main__":
    main()

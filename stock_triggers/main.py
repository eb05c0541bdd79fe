from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .analyzer import InsufficientDataError
from .config import Config, load_config
from .favorites import FavoritesStore
from .formatters import format_report
from .runner import build_scheduler, build_service


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="stock-triggers", description="Stock Triggers - moving-average deviation alerts")
    p.add_argument("--config", default="config.yaml", help="Path to YAML config")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run the scheduled background checks")

    check = sub.add_parser("check", help="Analyse one symbol now")
    check.add_argument("symbol")

    scan = sub.add_parser("scan", help="Evaluate all favorites once")
    scan.add_argument("--force", action="store_true", help="Bypass the notification window (not weekends)")

    fav = sub.add_parser("favorites", help="Manage favorite symbols")
    fav_sub = fav.add_subparsers(dest="action", required=True)
    fav_sub.add_parser("list")
    fav_sub.add_parser("add").add_argument("symbol")
    fav_sub.add_parser("remove").add_argument("symbol")
    return p


def _favorites(cfg: Config, args) -> int:
    store = FavoritesStore(cfg.favorites.path, cfg.favorites.max_favorites)
    if args.action == "list":
        for sym in sorted(store.get()):
            print(sym)
        return 0
    if args.action == "add":
        if not store.add(args.symbol):
            print(f"Favorites full ({store.max_favorites}); remove one first.", file=sys.stderr)
            return 1
        print(f"Added {args.symbol.strip().upper()}")
        return 0
    store.remove(args.symbol)
    print(f"Removed {args.symbol.strip().upper()}")
    return 0


async def _dispatch(cfg: Config, args) -> int:
    service = build_service(cfg)
    try:
        if args.command == "check":
            try:
                report = await service.evaluate_symbol(args.symbol)
            except InsufficientDataError as e:
                print(f"Insufficient data fetched for {args.symbol.strip().upper()}: {e}", file=sys.stderr)
                return 2
            print(format_report(report, service.window.tz))
            return 0

        if args.command == "scan":
            result = await service.evaluate_all_favorites(force=args.force)
            for sym, res in sorted(result.results.items()):
                print(f"{sym}: {res.signal.value} ({res.percentage_change:+.2f}%)")
            for sym, err in sorted(result.failures.items()):
                print(f"{sym}: failed ({err})")
            print(result.summary())
            return 0

        await build_scheduler(cfg, service).run_forever()
        return 0
    finally:
        # Close shared REST session cleanly.
        await service.repository.close()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config)
        _setup_logging(cfg.app.log_level)

        if args.command == "favorites":
            return _favorites(cfg, args)
        return asyncio.run(_dispatch(cfg, args))
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

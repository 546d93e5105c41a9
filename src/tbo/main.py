from __future__ import annotations

import argparse
import logging
import sys
from datetime import date, timedelta
from typing import Optional, Sequence

from tbo.application.container import build_container
from tbo.config import get_app_paths, load_settings
from tbo.domain.errors import AppError
from tbo.logging_config import setup_logging

log = logging.getLogger("tbo.main")


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tbo", description="Trade back office scheduled tasks.")
    parser.add_argument("--db", help="SQLite database file (defaults to the per-user app directory).")
    sub = parser.add_subparsers(dest="command", required=True)

    exp = sub.add_parser("check-expirations", help="Expire stale lots and alert on lots expiring soon.")
    exp.add_argument("--horizon-days", type=int, default=None)

    sub.add_parser("check-stock", help="Raise out-of-stock and low-stock alerts.")

    rep = sub.add_parser("export-report", help="Write the financial report workbook.")
    rep.add_argument("path")
    rep.add_argument("--start", type=date.fromisoformat, default=None, help="YYYY-MM-DD, defaults to 30 days ago.")
    rep.add_argument("--end", type=date.fromisoformat, default=None, help="YYYY-MM-DD, defaults to today.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)

    try:
        app = build_container(args.db or paths.db_path, settings=load_settings())

        if args.command == "check-expirations":
            report = app.lots.check_expirations(args.horizon_days)
            print(f"expired={len(report.expired)} expiring_soon={len(report.expiring_soon)}")
        elif args.command == "check-stock":
            levels = app.alerts.check_stock_levels()
            print(f"out_of_stock={len(levels.out_of_stock)} low_stock={len(levels.low_stock)}")
        elif args.command == "export-report":
            end = args.end or app.clock.today()
            start = args.start or end - timedelta(days=30)
            app.reporting.export_financial_report_excel(args.path, start, end)
            print(f"report written to {args.path}")
    except AppError as e:
        log.error("command_failed command=%s error=%s", args.command, e.to_dict())
        print(f"error: {e.message}", file=sys.stderr)
        return 2
    except Exception:
        log.exception("command_crashed command=%s", args.command)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

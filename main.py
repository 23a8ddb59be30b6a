# main.py

"""Entry point for the chango price comparison CLI."""

import argparse
import asyncio
import logging
import sys

from src.config.logging_config import setup_logging
from src.config.settings import Settings

logger = logging.getLogger("chango.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    store_labels = ", ".join(s["label"] for s in Settings.STORES)

    parser = argparse.ArgumentParser(
        prog="chango",
        description="Supermarket price comparison and shopping cart.",
        epilog=f"Stores: {store_labels}",
    )
    parser.add_argument(
        "--backend",
        choices=["sqlite", "rest"],
        default=None,
        help="Data backend (default: CHANGO_BACKEND or sqlite).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="List products with trends.")
    list_cmd.add_argument("search", nargs="?", default="")
    list_cmd.add_argument(
        "-t", "--tab", choices=Settings.TABS[:-1], default="home",
    )
    list_cmd.add_argument("--trend", choices=["up", "down"], default=None)
    list_cmd.add_argument(
        "-f", "--format", choices=["json", "table"], default="table",
        dest="output_format",
    )

    detail = sub.add_parser("detail", help="Compare one product's stores.")
    detail.add_argument("product_id", type=int)
    detail.add_argument(
        "-d", "--days", type=int, choices=Settings.DETAIL_WINDOWS,
        default=Settings.DEFAULT_DETAIL_DAYS,
    )
    detail.add_argument(
        "-f", "--format", choices=["json", "table"], default="table",
        dest="output_format",
    )

    cart = sub.add_parser("cart", help="Manage a user's chango.")
    cart.add_argument("-u", "--user", required=True, help="User id.")
    cart.add_argument("--load", metavar="CART_ID", default=None)
    cart.add_argument(
        "--toggle", metavar="ID", type=int, action="append", default=[],
        help="Toggle a product as favorite (repeatable).",
    )
    cart.add_argument(
        "--qty", metavar="ID:DELTA", action="append", default=[],
        help="Change a line's quantity, e.g. 42:+1 (repeatable).",
    )
    cart.add_argument(
        "--purchased", metavar="ID", type=int, action="append", default=[],
    )
    cart.add_argument("--save", metavar="TITLE", default=None)
    cart.add_argument("--share", metavar="CART_ID", default=None)
    cart.add_argument("--delete", metavar="CART_ID", default=None)
    cart.add_argument("--open-shared", metavar="CART_ID", default=None)
    cart.add_argument(
        "--export", choices=["csv", "json", "tsv"], default=None,
        help="Write the cart to results/ (csv, json) or stdout (tsv).",
    )

    imp = sub.add_parser(
        "import-catalog", help="Load a JSON catalog (products, history, profiles) into SQLite.",
    )
    imp.add_argument("path")

    sub.add_parser(
        "record-prices", help="Store today's minimum prices as history.",
    )
    return parser


def main() -> None:
    """Dispatch to the requested CLI command."""
    log_file = setup_logging()
    logger.info("chango starting, log file: %s", log_file)

    args = _build_parser().parse_args()

    from src.cli import runner

    if args.command == "list":
        exit_code = asyncio.run(runner.run_list(
            args.search, args.tab, args.trend, args.output_format,
            args.backend,
        ))
    elif args.command == "detail":
        exit_code = asyncio.run(runner.run_detail(
            args.product_id, args.days, args.output_format, args.backend,
        ))
    elif args.command == "cart":
        actions = runner.CartActions(
            load=args.load,
            toggle=args.toggle,
            quantities=[runner.parse_quantity(q) for q in args.qty],
            purchased=args.purchased,
            save=args.save,
            share=args.share,
            delete=args.delete,
            open_shared=args.open_shared,
            export=args.export,
        )
        exit_code = asyncio.run(
            runner.run_cart(args.user, actions, args.backend)
        )
    elif args.command == "import-catalog":
        exit_code = runner.run_import_catalog(args.path)
    else:
        exit_code = runner.run_record_prices()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

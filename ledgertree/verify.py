#! /usr/bin/env python3

import argparse
import logging
import sys

from ledgertree.parser import ParseError, Price, Transaction
from ledgertree.ledger import LedgerError, resolve_transaction
from ledgertree.printing import price2str, transaction2str
from ledgertree.util import read_ledger, read_price_db

logger = logging.getLogger(__name__)

def parse_args(argv: list[str] | None = None):
    argparser = argparse.ArgumentParser(
        description="Parse a ledger and check that every transaction "
                    "balances.")
    argparser.add_argument("database", type=str,
                           help="ledger file")
    argparser.add_argument("--prices", type=str,
                           default="",
                           help="price db file")
    argparser.add_argument("--print", action="store_true",
                           default=False,
                           help="Print prices and resolved transactions")
    argparser.add_argument("--log-file", type=str,
                           help="Log file")
    return argparser.parse_args(argv)

def check_journal(entries, lines, out=None) -> tuple[int, int, int]:
    """Resolve every transaction, optionally printing as it goes.

    Returns the number of prices, transactions and postings.
    """
    prices = 0
    transactions = 0
    postings = 0
    for i in entries:
        if isinstance(i, Price):
            prices += 1
            if out:
                print(price2str(i), file=out)
            continue
        assert isinstance(i, Transaction)
        x = resolve_transaction(i.header, i.postings, i, lines)
        transactions += 1
        postings += len(x)
        if out:
            print(transaction2str(x), file=out)
    return (prices, transactions, postings)

def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.log_file:
        logging.basicConfig(filename=args.log_file,
                            filemode="w",
                            format='[%(name)s:%(levelname)s] %(message)s',
                            level=logging.DEBUG)

    out = sys.stdout if args.print else None
    try:
        if args.prices:
            prices, _ = read_price_db(args.prices)
            logger.info(f"Read {len(prices)} prices from {args.prices}")
            if out:
                for p in prices:
                    print(price2str(p), file=out)
            print(f"Parsed {len(prices)} prices from {args.prices}")
        entries, lines = read_ledger(args.database)
        n_prices, n_transactions, n_postings = \
            check_journal(entries, lines, out)
    except (ParseError, LedgerError) as e:
        logger.error(str(e))
        print(e, file=sys.stderr)
        return 1
    print(f"Parsed {n_transactions} transactions ({n_postings} postings) "
          f"and {n_prices} prices from {args.database}")
    return 0

if __name__ == "__main__":
    sys.exit(main())

from datetime import tzinfo

from ledgertree.parser import Parser, ParseTree, Price

def read_text(path: str, encoding: str = "utf-8-sig") -> str:
    # newline="" keeps "\r\n" intact; the grammar accepts both endings.
    with open(path, "r", encoding=encoding, newline="") as f:
        return f.read()

def _lines(text: str) -> list[str]:
    return [x.rstrip("\r") for x in text.split("\n")]

def read_ledger(database: str, tz: tzinfo | None = None,
                encoding: str = "utf-8-sig") \
        -> tuple[list[ParseTree], list[str]]:
    text = read_text(database, encoding)
    entries = Parser(database, tz).parse_ledger(text)
    return (entries, _lines(text))

def read_price_db(database: str, tz: tzinfo | None = None,
                  encoding: str = "utf-8-sig") \
        -> tuple[list[Price], list[str]]:
    text = read_text(database, encoding)
    prices = Parser(database, tz).parse_price_db(text)
    return (prices, _lines(text))

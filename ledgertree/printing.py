from decimal import Decimal, localcontext
from datetime import datetime

from ledgertree.parser import Amount, Header, Price, Symbol, \
    SymbolPosition, parse_amount, parse_unquoted_symbol
from ledgertree.ledger import Posting

# https://docs.python.org/3/library/decimal.html#recipes
def moneyfmt(value, places=2, curr='', sep=',', dp='.',
             pos='', neg='-', trailneg=''):
    """Convert Decimal to a money formatted string.

    places:  required number of places after the decimal point
    curr:    optional currency symbol before the sign (may be blank)
    sep:     optional grouping separator (comma, period, space, or blank)
    dp:      decimal point indicator (comma or period)
             only specify as blank when places is zero
    pos:     optional sign for positive numbers: '+', space or blank
    neg:     optional sign for negative numbers: '-', '(', space or blank
    trailneg:optional trailing minus indicator:  '-', ')', space or blank

    >>> d = Decimal('-1234567.8901')
    >>> moneyfmt(d, curr='$')
    '-$1,234,567.89'
    >>> moneyfmt(Decimal(123456789), sep=' ')
    '123 456 789.00'
    """
    q = Decimal(10) ** -places      # 2 places --> '0.01'
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() + places + 2)
        sign, digits, exp = value.quantize(q).as_tuple()
    result = []
    digits = list(map(str, digits))
    build, next = result.append, digits.pop
    if sign:
        build(trailneg)
    for i in range(places):
        build(next() if digits else '0')
    if places:
        build(dp)
    if not digits:
        build('0')
    i = 0
    while digits:
        build(next())
        i += 1
        if i == 3 and digits:
            i = 0
            build(sep)
    build(curr)
    build(neg if sign else pos)
    return ''.join(reversed(result))

def symbol2str(symbol: Symbol) -> str:
    # An unquoted symbol that would not parse back whole gets quoted.
    p, consumed = parse_unquoted_symbol(symbol.value)
    if symbol.quoted or p is None or consumed != len(symbol.value):
        return f'"{symbol.value}"'
    return symbol.value

def quantity2str(quantity: Decimal, comma: bool = False) -> str:
    places = max(0, -quantity.as_tuple().exponent)
    return moneyfmt(quantity, places=places, sep="," if comma else "")

def _join_amount(amount: Amount, symbol: str, quantity: str) -> str:
    spacing = amount.render_options.spacing.value
    if amount.render_options.position == SymbolPosition.LEFT:
        return symbol + spacing + quantity
    return quantity + spacing + symbol

def amount2str(amount: Amount, comma: bool = False) -> str:
    quantity = quantity2str(amount.quantity, comma)
    line = _join_amount(amount, symbol2str(amount.symbol), quantity)
    # A bare symbol can run into the quantity next to it, e.g. "5" + ".X".
    x, consumed = parse_amount(line)
    if x is None or consumed != len(line) or \
            x.symbol.value != amount.symbol.value:
        line = _join_amount(amount, f'"{amount.symbol.value}"', quantity)
    return line

def date2str(date: datetime) -> str:
    return date.strftime('%Y-%m-%d')

def price2str(price: Price) -> str:
    return (f"P {date2str(price.date)} {symbol2str(price.symbol)} "
            f"{amount2str(price.amount)}")

def header2str(header: Header) -> str:
    line = date2str(header.date) + " " + header.status.value + " "
    if header.code is not None:
        line += f"({header.code}) "
    line += header.payee
    if header.comment is not None:
        line += ";" + header.comment
    return line

def posting2str(posting: Posting, indent: str = "    ",
                hard_space: str = "  ") -> str:
    line = indent + posting.account + hard_space + \
        amount2str(posting.amount)
    if posting.comment is not None:
        line += hard_space + ";" + posting.comment
    return line

def transaction2str(postings: list[Posting]) -> str:
    """Render the postings of one resolved transaction, header first."""
    if not postings:
        return ""
    lines = [header2str(postings[0].header)]
    lines += [posting2str(p) for p in postings]
    return "\n".join(lines)

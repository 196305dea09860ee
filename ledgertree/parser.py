from typing import Union
from typing import NamedTuple
from datetime import datetime, tzinfo
from decimal import Decimal, Inexact, InvalidOperation, localcontext
from enum import Enum
import bisect
import logging
import re

logger = logging.getLogger(__name__)

class Position(NamedTuple):
    line: int
    column: int

class Span(NamedTuple):
    start: Position
    end: Position

class ParseError(Exception):
    def __init__(self, message: str,
                 position: Union[Position, None] = None,
                 context: str = ""):
        self.message = message
        self.position = position
        if not position:
            super().__init__(message)
        elif context:
            super().__init__(
                f"{message}\n"
                f"line: {position.line}, column: {position.column}\n"
                f"{context}\n" + (position.column * " ") + "^"
            )
        else:
            super().__init__(
                f"{message}\n"
                f"line: {position.line}, column: {position.column}\n"
            )

class SymbolPosition(Enum):
    LEFT = "left"
    RIGHT = "right"

class Spacing(Enum):
    SPACE = " "
    NO_SPACE = ""

class Status(Enum):
    CLEARED = "*"
    UNCLEARED = "!"

class AmountSource(Enum):
    PROVIDED = "provided"
    INFERRED = "inferred"

class Symbol(NamedTuple):
    value: str
    quoted: bool = False

class RenderOptions(NamedTuple):
    position: SymbolPosition
    spacing: Spacing

class Amount():
    def __init__(self, quantity: Decimal, symbol: Symbol,
                 render_options: RenderOptions | None = None):
        if not isinstance(quantity, Decimal):
            raise TypeError(f"Incorrect type: {type(quantity)}.")
        self._quantity = quantity
        self._symbol = symbol
        if render_options is None:
            render_options = RenderOptions(SymbolPosition.LEFT,
                                           Spacing.NO_SPACE)
        self._render_options = render_options
    @property
    def quantity(self):
        return self._quantity
    @property
    def symbol(self):
        return self._symbol
    @property
    def render_options(self):
        return self._render_options
    def is_zero(self) -> bool:
        return self._quantity == 0
    def __add__(self, other):
        if not isinstance(other, Amount):
            return NotImplemented
        if other.symbol.value != self.symbol.value:
            raise ValueError(
                f"Cannot add '{other.symbol.value}' to "
                f"'{self.symbol.value}'.")
        a, b = self._quantity, other.quantity
        with localcontext() as ctx:
            # Wide enough to hold the exact sum; rounding is an error.
            ctx.prec = max(ctx.prec,
                           max(a.adjusted(), b.adjusted()) -
                           min(a.as_tuple().exponent,
                               b.as_tuple().exponent) + 2)
            ctx.traps[Inexact] = True
            quantity = a + b
        return Amount(quantity, self._symbol, self._render_options)
    def __neg__(self):
        return Amount(self._quantity.copy_negate(), self._symbol,
                      self._render_options)
    def __hash__(self):
        return hash((self._quantity, self._symbol, self._render_options))
    def __eq__(self, other):
        if not isinstance(other, Amount):
            return NotImplemented
        return (self.quantity == other.quantity and
                self.symbol == other.symbol and
                self.render_options == other.render_options)
    def __repr__(self):
        return (f"Amount({self.quantity}, {self.symbol}, "
                f"{self.render_options})")

class Header(NamedTuple):
    date: datetime
    status: Status
    code: str | None
    payee: str
    comment: str | None

class Entity():
    def __init__(self, span: Span | None = None):
        self.span: Span | None = span

class Price(Entity):
    def __init__(self, date: datetime, symbol: Symbol, amount: Amount):
        super().__init__()
        self.date = date
        self.symbol = symbol
        self.amount = amount
    def __eq__(self, other):
        if not isinstance(other, Price):
            return NotImplemented
        return (self.date == other.date and
                self.symbol == other.symbol and
                self.amount == other.amount)
    def __repr__(self):
        return f"Price({self.date:%Y-%m-%d}, {self.symbol}, {self.amount})"

class RawPosting(Entity):
    def __init__(self, sub_accounts: list[str], amount: Amount | None,
                 amount_source: AmountSource | None = None,
                 comment: str | None = None):
        super().__init__()
        if amount_source is None:
            amount_source = (AmountSource.INFERRED if amount is None
                             else AmountSource.PROVIDED)
        self.sub_accounts = list(sub_accounts)
        self.amount = amount
        self.amount_source = amount_source
        self.comment = comment
    @property
    def full_account(self) -> str:
        return ":".join(self.sub_accounts)
    def __eq__(self, other):
        if not isinstance(other, RawPosting):
            return NotImplemented
        return (self.sub_accounts == other.sub_accounts and
                self.amount == other.amount and
                self.amount_source == other.amount_source and
                self.comment == other.comment)
    def __repr__(self):
        return (f"RawPosting({self.full_account}, {self.amount}, "
                f"{self.amount_source}, {self.comment!r})")

class Transaction(Entity):
    def __init__(self, header: Header, postings: list[RawPosting]):
        super().__init__()
        self.header = header
        self.postings = postings
    def __eq__(self, other):
        if not isinstance(other, Transaction):
            return NotImplemented
        return (self.header == other.header and
                self.postings == other.postings)
    def __repr__(self):
        return f"Transaction({self.header}, {self.postings})"

ParseTree = Union[Price, Transaction]

_SPACE = re.compile(r"[ \t]+")
_LINE_ENDING = re.compile(r"\r?\n")
_DATE = re.compile(r"([0-9]{4})-([0-9]{2})-([0-9]{2})")
_QUOTED_SYMBOL = re.compile(r'"([^"\r\n]+)"')
_UNQUOTED_SYMBOL = re.compile(r'[^0-9 \t\-;"\r\n]+')
_QUANTITY = re.compile(r"(-?)([0-9.,]+)")
_STATUS = re.compile(r"[*!]")
_CODE = re.compile(r"\(([^)\r\n]*)\)")
_PAYEE = re.compile(r"[^;\r\n]+")
_COMMENT = re.compile(r";([^\r\n]*)")
_SUB_ACCOUNT = re.compile(r"[^\W_]+")
_BLANK = re.compile(r"[ \t\r\n]*")

def parse_space(text: str, begin: int = 0) -> tuple[str | None, int]:
    if len(text) <= begin:
        return (None, len(text))
    m = _SPACE.match(text, begin)
    if not m:
        return (None, begin)
    return (m.group(0), m.end())

def parse_optional_space(text: str, begin: int = 0) -> tuple[Spacing, int]:
    space, consumed = parse_space(text, begin)
    if space is None:
        return (Spacing.NO_SPACE, begin)
    return (Spacing.SPACE, consumed)

def parse_line_ending(text: str, begin: int = 0) -> tuple[str | None, int]:
    if len(text) <= begin:
        return (None, len(text))
    m = _LINE_ENDING.match(text, begin)
    if not m:
        return (None, begin)
    return ("\n", m.end())

def parse_date(text: str, begin: int = 0, tz: tzinfo | None = None) \
    -> tuple[datetime | None, int]:
    if len(text) <= begin:
        return (None, len(text))
    m = _DATE.match(text, begin)
    if not m:
        return (None, begin)
    try:
        x = datetime(int(m.group(1)), int(m.group(2)), int(m.group(3)),
                     tzinfo=tz)
    except ValueError as e:
        raise ParseError(f"Invalid date '{m.group(0)}': {e}.") from e
    return (x, m.end())

def parse_quoted_symbol(text: str, begin: int = 0) \
    -> tuple[Symbol | None, int]:
    if len(text) <= begin:
        return (None, len(text))
    m = _QUOTED_SYMBOL.match(text, begin)
    if not m:
        return (None, begin)
    return (Symbol(m.group(1), True), m.end())

def parse_unquoted_symbol(text: str, begin: int = 0) \
    -> tuple[Symbol | None, int]:
    if len(text) <= begin:
        return (None, len(text))
    m = _UNQUOTED_SYMBOL.match(text, begin)
    if not m:
        return (None, begin)
    return (Symbol(m.group(0), False), m.end())

def parse_symbol(text: str, begin: int = 0) -> tuple[Symbol | None, int]:
    symbol, consumed = parse_quoted_symbol(text, begin)
    if symbol is not None:
        return (symbol, consumed)
    return parse_unquoted_symbol(text, begin)

def parse_quantity(text: str, begin: int = 0) \
    -> tuple[Decimal | None, int]:
    if len(text) <= begin:
        return (None, len(text))
    m = _QUANTITY.match(text, begin)
    if not m:
        return (None, begin)
    literal = m.group(1) + m.group(2).replace(",", "")
    try:
        quantity = Decimal(literal)
    except InvalidOperation:
        return (None, begin)
    return (quantity, m.end())

def parse_amount(text: str, begin: int = 0) -> tuple[Amount | None, int]:
    if len(text) <= begin:
        return (None, len(text))

    # [symbol] [quantity]
    symbol, consumed = parse_symbol(text, begin)
    if symbol is not None:
        spacing, consumed = parse_optional_space(text, consumed)
        quantity, consumed = parse_quantity(text, consumed)
        if quantity is not None:
            return (Amount(quantity, symbol,
                           RenderOptions(SymbolPosition.LEFT, spacing)),
                    consumed)

    # [quantity] [symbol]
    quantity, consumed = parse_quantity(text, begin)
    if quantity is None:
        return (None, begin)
    spacing, consumed = parse_optional_space(text, consumed)
    symbol, consumed = parse_symbol(text, consumed)
    if symbol is None:
        return (None, begin)
    return (Amount(quantity, symbol,
                   RenderOptions(SymbolPosition.RIGHT, spacing)),
            consumed)

def parse_status(text: str, begin: int = 0) -> tuple[Status | None, int]:
    if len(text) <= begin:
        return (None, len(text))
    m = _STATUS.match(text, begin)
    if not m:
        return (None, begin)
    return (Status(m.group(0)), m.end())

def parse_code(text: str, begin: int = 0) -> tuple[str | None, int]:
    if len(text) <= begin:
        return (None, len(text))
    m = _CODE.match(text, begin)
    if not m:
        return (None, begin)
    return (m.group(1), m.end())

def parse_payee(text: str, begin: int = 0) -> tuple[str | None, int]:
    if len(text) <= begin:
        return (None, len(text))
    m = _PAYEE.match(text, begin)
    if not m:
        return (None, begin)
    return (m.group(0), m.end())

def parse_comment(text: str, begin: int = 0) -> tuple[str | None, int]:
    if len(text) <= begin:
        return (None, len(text))
    m = _COMMENT.match(text, begin)
    if not m:
        return (None, begin)
    return (m.group(1), m.end())

def parse_sub_account(text: str, begin: int = 0) -> tuple[str | None, int]:
    if len(text) <= begin:
        return (None, len(text))
    m = _SUB_ACCOUNT.match(text, begin)
    if not m:
        return (None, begin)
    return (m.group(0), m.end())

def parse_account(text: str, begin: int = 0) \
    -> tuple[list[str] | None, int]:
    sub_account, consumed = parse_sub_account(text, begin)
    if sub_account is None:
        return (None, begin)
    sub_accounts = [sub_account]
    while consumed < len(text) and text[consumed] == ":":
        sub_account, x = parse_sub_account(text, consumed + 1)
        if sub_account is None:
            break
        sub_accounts.append(sub_account)
        consumed = x
    return (sub_accounts, consumed)

class Parser():
    """Parses one in-memory buffer into parse-tree entities.

    Every ``parse_*`` method either returns ``(value, offset)`` with the
    offset just past the match, or ``(None, begin)`` without consuming
    anything. The furthest failure is remembered so that a whole-buffer
    parse can report where the input stopped making sense.
    """

    def __init__(self, name: str = "<string>", tz: tzinfo | None = None):
        self.name = name
        self.tz = tz
        self._text = ""
        self._line_starts = [0]
        self._error_offset = -1
        self._error_expected: list[str] = []

    def _reset(self, text: str) -> None:
        self._text = text
        self._line_starts = [0]
        for m in _LINE_ENDING.finditer(text):
            self._line_starts.append(m.end())
        self._error_offset = -1
        self._error_expected = []

    def _position(self, offset: int) -> Position:
        line = bisect.bisect_right(self._line_starts, offset) - 1
        return Position(line + 1, offset - self._line_starts[line])

    def _context(self, offset: int) -> str:
        line = bisect.bisect_right(self._line_starts, offset) - 1
        start = self._line_starts[line]
        m = _LINE_ENDING.search(self._text, start)
        end = m.start() if m else len(self._text)
        return self._text[start:end]

    def _create_span(self, begin: int, end: int) -> Span:
        return Span(self._position(begin), self._position(end))

    def _expected(self, what: str, offset: int) -> None:
        if offset > self._error_offset:
            self._error_offset = offset
            self._error_expected = [what]
        elif offset == self._error_offset and \
                what not in self._error_expected:
            self._error_expected.append(what)

    def _error(self, offset: int) -> ParseError:
        if self._error_offset >= offset:
            offset = self._error_offset
            message = "Expected " + " or ".join(self._error_expected)
        else:
            message = "Unexpected input"
        return ParseError(f"{self.name}: {message}",
                          self._position(offset), self._context(offset))

    def _parse_date(self, text: str, begin: int) \
        -> tuple[datetime | None, int]:
        try:
            date, consumed = parse_date(text, begin, self.tz)
        except ParseError as e:
            raise ParseError(f"{self.name}: {e.message}",
                             self._position(begin),
                             self._context(begin)) from e
        if date is None:
            self._expected("date", begin)
        return (date, consumed)

    def _parse_space(self, text: str, begin: int) -> tuple[str | None, int]:
        space, consumed = parse_space(text, begin)
        if space is None:
            self._expected("whitespace", begin)
        return (space, consumed)

    def _parse_line_end(self, text: str, begin: int) -> tuple[bool, int]:
        if begin >= len(text):
            return (True, begin)
        ending, consumed = parse_line_ending(text, begin)
        if ending is None:
            self._expected("line ending", begin)
            return (False, begin)
        return (True, consumed)

    def parse_price(self, text: str, begin: int = 0) \
        -> tuple[Price | None, int]:
        if len(text) <= begin or text[begin] != "P":
            self._expected("price", begin)
            return (None, begin)
        space, consumed = self._parse_space(text, begin + 1)
        if space is None:
            return (None, begin)
        date, consumed = self._parse_date(text, consumed)
        if date is None:
            return (None, begin)
        space, consumed = self._parse_space(text, consumed)
        if space is None:
            return (None, begin)
        symbol, consumed = parse_symbol(text, consumed)
        if symbol is None:
            self._expected("symbol", consumed)
            return (None, begin)
        space, consumed = self._parse_space(text, consumed)
        if space is None:
            return (None, begin)
        amount, consumed = parse_amount(text, consumed)
        if amount is None:
            self._expected("amount", consumed)
            return (None, begin)
        price = Price(date, symbol, amount)
        price.span = self._create_span(begin, consumed - 1)
        return (price, consumed)

    def parse_header(self, text: str, begin: int = 0) \
        -> tuple[Header | None, int]:
        date, consumed = self._parse_date(text, begin)
        if date is None:
            return (None, begin)
        space, consumed = self._parse_space(text, consumed)
        if space is None:
            return (None, begin)
        status, consumed = parse_status(text, consumed)
        if status is None:
            self._expected("status ('*' or '!')", consumed)
            return (None, begin)
        space, consumed = self._parse_space(text, consumed)
        if space is None:
            return (None, begin)
        code, x = parse_code(text, consumed)
        if code is not None:
            space, x = self._parse_space(text, x)
            if space is None:
                return (None, begin)
            consumed = x
        payee, consumed = parse_payee(text, consumed)
        if payee is None:
            self._expected("payee", consumed)
            return (None, begin)
        comment, consumed = parse_comment(text, consumed)
        return (Header(date, status, code, payee, comment), consumed)

    def parse_posting(self, text: str, begin: int = 0) \
        -> tuple[RawPosting | None, int]:
        sub_accounts, consumed = parse_account(text, begin)
        if sub_accounts is None:
            self._expected("account", begin)
            return (None, begin)
        spacing, consumed = parse_optional_space(text, consumed)
        amount, consumed = parse_amount(text, consumed)
        spacing, consumed = parse_optional_space(text, consumed)
        comment, consumed = parse_comment(text, consumed)
        posting = RawPosting(sub_accounts, amount, comment=comment)
        posting.span = self._create_span(begin, consumed - 1)
        return (posting, consumed)

    def parse_posting_line(self, text: str, begin: int = 0) \
        -> tuple[RawPosting | None, int]:
        space, consumed = self._parse_space(text, begin)
        if space is None:
            return (None, begin)
        posting, consumed = self.parse_posting(text, consumed)
        if posting is None:
            return (None, begin)
        ok, consumed = self._parse_line_end(text, consumed)
        if not ok:
            return (None, begin)
        return (posting, consumed)

    def parse_comment_line(self, text: str, begin: int = 0) \
        -> tuple[str | None, int]:
        space, consumed = parse_space(text, begin)
        comment, consumed = parse_comment(text, consumed)
        if comment is None:
            return (None, begin)
        ok, consumed = self._parse_line_end(text, consumed)
        if not ok:
            return (None, begin)
        return (comment, consumed)

    def parse_transaction(self, text: str, begin: int = 0) \
        -> tuple[Transaction | None, int]:
        header, consumed = self.parse_header(text, begin)
        if header is None:
            return (None, begin)
        if consumed < len(text):
            ending, consumed = parse_line_ending(text, consumed)
            if ending is None:
                self._expected("line ending", consumed)
                return (None, begin)
        postings = []
        lines = 0
        while consumed < len(text):
            comment, x = self.parse_comment_line(text, consumed)
            if comment is None:
                posting, x = self.parse_posting_line(text, consumed)
                if posting is None:
                    break
                postings.append(posting)
            lines += 1
            consumed = x
        if lines == 0:
            self._expected("posting", consumed)
            return (None, begin)
        transaction = Transaction(header, postings)
        transaction.span = self._create_span(begin, consumed - 1)
        return (transaction, consumed)

    def skip_comment_or_empty_lines(self, text: str, begin: int = 0) \
        -> tuple[None, int]:
        consumed = begin
        while consumed < len(text):
            space, x = parse_space(text, consumed)
            comment, x = parse_comment(text, x)
            if x >= len(text):
                consumed = x
                break
            ending, x = parse_line_ending(text, x)
            if ending is None:
                break
            consumed = x
        return (None, consumed)

    def parse_ledger(self, text: str) -> list[ParseTree]:
        self._reset(text)
        entries: list[ParseTree] = []
        _, consumed = self.skip_comment_or_empty_lines(text, 0)
        while consumed < len(text):
            entry, x = self.parse_transaction(text, consumed)
            if entry is None:
                entry, x = self.parse_price(text, consumed)
            if entry is None:
                break
            entries.append(entry)
            _, consumed = self.skip_comment_or_empty_lines(text, x)
        if consumed < len(text):
            raise self._error(consumed)
        logger.debug(f"{self.name}: parsed {len(entries)} entries")
        return entries

    def parse_price_db(self, text: str) -> list[Price]:
        self._reset(text)
        prices: list[Price] = []
        consumed = 0
        while consumed < len(text):
            price, x = self.parse_price(text, consumed)
            if price is None:
                break
            prices.append(price)
            ending, x = parse_line_ending(text, x)
            consumed = x
            if ending is None:
                self._expected("line ending", x)
                break
        consumed = _BLANK.match(text, consumed).end()
        if consumed < len(text):
            raise self._error(consumed)
        logger.debug(f"{self.name}: parsed {len(prices)} prices")
        return prices

def parse_ledger(text: str, tz: tzinfo | None = None) -> list[ParseTree]:
    return Parser(tz=tz).parse_ledger(text)

def parse_price_db(text: str, tz: tzinfo | None = None) -> list[Price]:
    return Parser(tz=tz).parse_price_db(text)

from typing import NamedTuple, Union
import logging

from ledgertree.parser import Amount, AmountSource, Entity, Header, \
    ParseTree, RawPosting, Transaction

logger = logging.getLogger(__name__)

class LedgerError(Exception):
    def __init__(self, message: str,
                 entity: Entity | None = None,
                 lines: list[str] | None = None):
        position = None
        context = None
        if entity:
            try:
                position = entity.span.start
            except AttributeError:
                position = None
        if lines and position:
            try:
                context = lines[position.line - 1]
            except (IndexError, AttributeError):
                context = None
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

class BalanceError(LedgerError):
    pass

class MultipleAmountsMissingError(BalanceError):
    def __init__(self, count: int,
                 entity: Entity | None = None,
                 lines: list[str] | None = None):
        self.count = count
        super().__init__(
            f"Encountered {count} missing amounts.", entity, lines)

class UnbalancedError(BalanceError):
    def __init__(self, remaining: dict[str, Amount],
                 entity: Entity | None = None,
                 lines: list[str] | None = None):
        self.remaining = remaining
        x = ", ".join(f"{a.quantity} {s}" for s, a in remaining.items())
        super().__init__(
            f"Transaction unbalanced by {x}.", entity, lines)

class Balance(dict):
    """Running total per symbol text.

    The first amount seen for a symbol seeds the entry, so its Symbol and
    RenderOptions are the ones kept for display.
    """
    def __iadd__(self, amount: Amount):
        if not isinstance(amount, Amount):
            raise TypeError(f"Unsupported type {type(amount)} for addition.")
        key = amount.symbol.value
        if key not in self:
            self[key] = amount
        else:
            self[key] = self[key] + amount
        return self
    def unbalanced(self) -> dict[str, Amount]:
        return {k: v for k, v in self.items() if not v.is_zero()}

class Balanced(NamedTuple):
    postings: list[RawPosting]

class InferredAmount(NamedTuple):
    postings: list[RawPosting]
    index: int
    amount: Amount

class MultipleAmountsMissing(NamedTuple):
    count: int

class Unbalanced(NamedTuple):
    remaining: dict[str, Amount]

BalanceStatus = Union[Balanced, InferredAmount,
                      MultipleAmountsMissing, Unbalanced]

def ensure_balanced(postings: list[RawPosting]) -> BalanceStatus:
    """Classify the postings of one transaction.

    At most one posting may lack an amount; it is inferred when exactly one
    symbol is left unbalanced.
    """
    balance = Balance()
    missing = 0
    missing_index = None
    for i, p in enumerate(postings):
        if p.amount is None:
            missing += 1
            missing_index = i
        else:
            balance += p.amount
    remaining = balance.unbalanced()

    if missing > 1:
        return MultipleAmountsMissing(missing)
    if missing == 1 and len(remaining) == 1:
        residual = next(iter(remaining.values()))
        amount = -residual
        elided = postings[missing_index]
        inferred = RawPosting(elided.sub_accounts, amount,
                              AmountSource.INFERRED, elided.comment)
        inferred.span = elided.span
        x = list(postings)
        x[missing_index] = inferred
        return InferredAmount(x, missing_index, amount)
    if len(remaining) == 0:
        return Balanced(list(postings))
    return Unbalanced(remaining)

def build_account_lineage(sub_accounts: list[str]) -> list[str]:
    """["Assets", "Savings"] -> ["Assets", "Assets:Savings"]"""
    lineage = []
    for i in range(len(sub_accounts)):
        lineage.append(":".join(sub_accounts[:i + 1]))
    return lineage

class Posting(NamedTuple):
    header: Header
    account: str
    account_lineage: list[str]
    amount: Amount
    amount_source: AmountSource
    comment: str | None

def into_postings(header: Header, raw_postings: list[RawPosting]) \
    -> list[Posting]:
    # Every posting refers to this one header object.
    return [Posting(header,
                    p.full_account,
                    build_account_lineage(p.sub_accounts),
                    p.amount,
                    p.amount_source,
                    p.comment)
            for p in raw_postings]

def resolve_transaction(header: Header, postings: list[RawPosting],
                        transaction: Transaction | None = None,
                        lines: list[str] | None = None) -> list[Posting]:
    status = ensure_balanced(postings)
    if isinstance(status, MultipleAmountsMissing):
        raise MultipleAmountsMissingError(status.count, transaction, lines)
    if isinstance(status, Unbalanced):
        raise UnbalancedError(status.remaining, transaction, lines)
    if isinstance(status, InferredAmount):
        logger.debug(f"Inferred {status.amount.quantity} "
                     f"{status.amount.symbol.value} for "
                     f"{status.postings[status.index].full_account}")
    for p in status.postings:
        if p.amount is None:
            # Nothing left to infer from.
            raise BalanceError(
                f"Encountered unexpected missing amount for "
                f"'{p.full_account}'.", p if p.span else transaction, lines)
    return into_postings(header, status.postings)

def resolve_ledger(entries: list[ParseTree],
                   lines: list[str] | None = None) -> list[Posting]:
    postings = []
    n = 0
    for txn in entries:
        if not isinstance(txn, Transaction):
            continue
        postings.extend(
            resolve_transaction(txn.header, txn.postings, txn, lines))
        n += 1
    logger.info(f"Resolved {n} transactions into {len(postings)} postings")
    return postings

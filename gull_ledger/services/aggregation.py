"""
Aggregation engine.

Builds per-number summaries from ledger entries. Summaries are
derived data: every call recomputes them from the entries it is
given, so the result never drifts from the ledger.

A bulk record contributes its full (undivided) First and Second
amounts to every number it lists.
"""

from decimal import Decimal
from typing import Iterable

from gull_ledger.models.enums import AmountSide, Category
from gull_ledger.schemas.entry import (
    LedgerStatistics,
    NumberSummary,
    SingleNumberEntry,
    BulkNumberEntry,
    to_record,
)

ZERO = Decimal("0")

Record = SingleNumberEntry | BulkNumberEntry


def _records(entries: Iterable) -> list[Record]:
    return [to_record(e) for e in entries]


def aggregate(entries: Iterable, category: Category) -> dict[str, NumberSummary]:
    """
    Group entries of one category by number.

    Accepts Entry rows, EntrySnapshots or ledger records. Entries of
    other categories are ignored.
    """
    category = Category(category)
    summaries: dict[str, NumberSummary] = {}

    for record in _records(entries):
        if record.category != category:
            continue
        for number in record.numbers:
            summary = summaries.get(number)
            if summary is None:
                summary = NumberSummary(number=number)
                summaries[number] = summary
            summary.first_total += record.first
            summary.second_total += record.second
            summary.entry_count += 1
            summary.entries.append(record)

    return summaries


def number_summary(
    entries: Iterable, number: str, category: Category
) -> NumberSummary:
    """Summary for one number; zero totals when it has no entries."""
    return aggregate(entries, category).get(number) or NumberSummary(number=number)


def entries_for_number(
    entries: Iterable, number: str, category: Category
) -> list[Record]:
    category = Category(category)
    return [
        r for r in _records(entries)
        if r.category == category and number in r.numbers
    ]


def highest_lowest(
    summaries: dict[str, NumberSummary],
) -> tuple[NumberSummary | None, NumberSummary | None]:
    """
    Numbers with the highest and lowest combined total.

    Only numbers with a positive total take part; returns
    (None, None) when there are none.
    """
    active = [s for s in summaries.values() if s.total > ZERO]
    if not active:
        return None, None
    highest = max(active, key=lambda s: (s.total, s.number))
    lowest = min(active, key=lambda s: (s.total, s.number))
    return highest, lowest


def filtered_totals(summaries: dict[str, NumberSummary]) -> tuple[Decimal, Decimal]:
    """Sum of First and Second totals over the given summaries."""
    first = sum((s.first_total for s in summaries.values()), ZERO)
    second = sum((s.second_total for s in summaries.values()), ZERO)
    return first, second


def statistics(entries: Iterable) -> LedgerStatistics:
    """Ledger-wide counts and totals; bulk rows count each of their numbers."""
    records = _records(entries)

    by_category = {c: 0 for c in Category}
    first = ZERO
    second = ZERO
    unique: set[tuple[Category, str]] = set()

    for record in records:
        by_category[record.category] += 1
        first += record.first
        second += record.second
        for number in record.numbers:
            unique.add((record.category, number))

    return LedgerStatistics(
        total_entries=len(records),
        entries_by_category=by_category,
        first_total=first,
        second_total=second,
        unique_numbers=len(unique),
    )


_SORT_KEYS = {
    "number": lambda r: r.numbers[0] if r.numbers else "",
    "first": lambda r: r.first,
    "second": lambda r: r.second,
    "total": lambda r: r.first + r.second,
}


def sort_entries(entries: Iterable, by: str = "date", order: str = "desc") -> list[Record]:
    """Sort records by date, number, first, second or total."""
    if by != "date" and by not in _SORT_KEYS:
        raise ValueError(f"Cannot sort by '{by}'")
    if order not in ("asc", "desc"):
        raise ValueError(f"Sort order must be 'asc' or 'desc', got '{order}'")

    records = _records(entries)
    if by == "date":
        # Undated records always go last
        dated = [r for r in records if r.created_at is not None]
        undated = [r for r in records if r.created_at is None]
        dated.sort(key=lambda r: r.created_at, reverse=(order == "desc"))
        return dated + undated
    return sorted(records, key=_SORT_KEYS[by], reverse=(order == "desc"))


def matches_number(number: str, query: str) -> bool:
    """
    Whether a number matches a search query.

    Queries are "starts:<digits>", "ends:<digits>", "middle:<digit>"
    (three-digit numbers only), a positional wildcard where one digit
    among asterisks pins that position ("1**" first digit, "*2*"
    second, "**1" last), a prefix/suffix wildcard ("1*", "*3", "1*3"),
    or plain digits matched anywhere in the number.
    """
    query = query.strip().lower()
    if not query:
        return False

    if query.startswith("starts:"):
        return number.startswith(query.removeprefix("starts:"))
    if query.startswith("ends:"):
        return number.endswith(query.removeprefix("ends:"))
    if query.startswith("middle:"):
        return len(number) == 3 and number[1] == query.removeprefix("middle:")

    if "*" in query:
        digits = [(i, c) for i, c in enumerate(query) if c != "*"]
        if len(digits) == 1 and len(query) > 1:
            position, digit = digits[0]
            if position == len(query) - 1:
                return number.endswith(digit)
            return len(number) > position and number[position] == digit
        if query.count("*") == 1:
            prefix, suffix = query.split("*")
            return number.startswith(prefix) and number.endswith(suffix)

    return query in number


def search_numbers(
    summaries: dict[str, NumberSummary],
    query: str,
    side: AmountSide | None = None,
) -> list[NumberSummary]:
    """
    Summaries whose number matches query, sorted by number.

    With a side, only numbers holding a positive total on that side
    are returned.
    """
    found = []
    for number, summary in summaries.items():
        if side == AmountSide.FIRST and summary.first_total <= ZERO:
            continue
        if side == AmountSide.SECOND and summary.second_total <= ZERO:
            continue
        if matches_number(number, query):
            found.append(summary)
    return sorted(found, key=lambda s: s.number)

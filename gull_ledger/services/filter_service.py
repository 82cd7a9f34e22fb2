"""
Filter and deduction calculator.

A filter picks the numbers whose First and/or Second total passes a
threshold test. When a side passes and a limit is set for it, the
amount above the limit is deducted: the ledger gets a negative entry
for that number, which brings the total back down to the limit and
credits the difference to the balance.
"""

import operator
from decimal import Decimal
from typing import Callable

from gull_ledger.models.enums import FilterOperator
from gull_ledger.schemas.entry import EntryDraft, NumberSummary
from gull_ledger.schemas.filter import Deduction, FilterCriteria, FilterResult

ZERO = Decimal("0")

DEDUCTION_NOTE = "Filter deduction"

_OPERATORS: dict[FilterOperator, Callable[[Decimal, Decimal], bool]] = {
    FilterOperator.GTE: operator.ge,
    FilterOperator.GT: operator.gt,
    FilterOperator.LTE: operator.le,
    FilterOperator.LT: operator.lt,
    FilterOperator.EQ: operator.eq,
}


def meets(value: Decimal, op: FilterOperator, threshold: Decimal | None) -> bool:
    """A side without a threshold never matches."""
    if threshold is None:
        return False
    return _OPERATORS[FilterOperator(op)](value, threshold)


def evaluate_filter(
    summaries: dict[str, NumberSummary], criteria: FilterCriteria
) -> list[FilterResult]:
    """Every number that passes at least one side's test, sorted by number."""
    results = []
    for number in sorted(summaries):
        summary = summaries[number]
        meets_first = meets(
            summary.first_total, criteria.first_operator, criteria.first_threshold
        )
        meets_second = meets(
            summary.second_total, criteria.second_operator, criteria.second_threshold
        )
        if meets_first or meets_second:
            results.append(FilterResult(
                number=number,
                first_amount=summary.first_total,
                second_amount=summary.second_total,
                meets_first=meets_first,
                meets_second=meets_second,
            ))
    return results


def _side_deduction(total: Decimal, passed: bool, limit: Decimal | None) -> Decimal:
    if not passed or limit is None or limit <= ZERO:
        return ZERO
    return max(ZERO, total - limit)


def compute_deductions(
    summaries: dict[str, NumberSummary], criteria: FilterCriteria
) -> list[Deduction]:
    """
    Amount to take off each matching number, sorted by number.

    Numbers with nothing to deduct on either side are left out.
    """
    deductions = []
    for result in evaluate_filter(summaries, criteria):
        first = _side_deduction(
            result.first_amount, result.meets_first, criteria.first_limit
        )
        second = _side_deduction(
            result.second_amount, result.meets_second, criteria.second_limit
        )
        if first == ZERO and second == ZERO:
            continue
        deductions.append(Deduction(
            number=result.number, first_amount=first, second_amount=second
        ))
    return deductions


def deduction_drafts(
    deductions: list[Deduction], criteria: FilterCriteria
) -> list[EntryDraft]:
    """Negative entries that apply the deductions to the ledger."""
    return [
        EntryDraft(
            number=d.number,
            category=criteria.category,
            first=-d.first_amount,
            second=-d.second_amount,
            notes=DEDUCTION_NOTE,
            is_deduction=True,
        )
        for d in deductions
    ]

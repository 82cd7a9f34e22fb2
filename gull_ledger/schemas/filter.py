"""
Pydantic schemas for the filter / deduction calculator.
"""

from decimal import Decimal

from pydantic import BaseModel, Field

from gull_ledger.models.enums import Category, FilterOperator


class FilterCriteria(BaseModel):
    """
    Threshold test and optional result cap for each side.

    A side with no threshold never matches. A side with no limit
    (or a limit of zero) never produces a deduction.
    """
    category: Category
    first_operator: FilterOperator = FilterOperator.GTE
    first_threshold: Decimal | None = None
    second_operator: FilterOperator = FilterOperator.GTE
    second_threshold: Decimal | None = None
    first_limit: Decimal | None = Field(default=None, ge=0)
    second_limit: Decimal | None = Field(default=None, ge=0)


class FilterResult(BaseModel):
    number: str
    first_amount: Decimal
    second_amount: Decimal
    meets_first: bool
    meets_second: bool


class Deduction(BaseModel):
    """Positive amounts to take off a number; stored as negative entries."""
    number: str
    first_amount: Decimal
    second_amount: Decimal


class FilterPreview(BaseModel):
    results: list[FilterResult]
    deductions: list[Deduction]
    first_total: Decimal
    second_total: Decimal

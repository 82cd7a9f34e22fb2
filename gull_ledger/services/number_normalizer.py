"""
Number normalizer.

Every category stores its numbers at a fixed width with leading
zeros: Open 1 digit, Akra 2, Ring 3, Packet 4. "7" on the Akra grid
is "07", never "7".
"""

from gull_ledger.errors import NumberRangeError, ParseError
from gull_ledger.models.enums import Category


CATEGORY_WIDTHS: dict[Category, int] = {
    Category.OPEN: 1,
    Category.AKRA: 2,
    Category.RING: 3,
    Category.PACKET: 4,
}

_CATEGORY_BY_LENGTH = {width: cat for cat, width in CATEGORY_WIDTHS.items()}


def width_of(category: Category) -> int:
    return CATEGORY_WIDTHS[Category(category)]


def width_max(category: Category) -> int:
    """Largest number the category can hold: 9, 99, 999 or 9999."""
    return 10 ** width_of(category) - 1


def category_for_length(length: int) -> Category | None:
    """Category implied by a token's digit count, or None if out of range."""
    return _CATEGORY_BY_LENGTH.get(length)


def normalize(raw: str, category: Category) -> str:
    """
    Pad a digit string to the category's fixed width.

    Values above the category maximum are clamped and reported with
    NumberRangeError; the clamped form is on the exception.
    """
    if not raw or not raw.isdigit():
        raise ParseError(f"'{raw}' is not a number", token=raw)

    width = width_of(category)
    limit = width_max(category)
    value = int(raw)

    if value > limit:
        clamped = str(limit)
        raise NumberRangeError(
            f"{raw} is out of range for {Category(category).value} "
            f"(0-{limit}); clamped to {clamped}",
            token=raw,
            clamped=clamped,
        )

    return str(value).zfill(width)


def is_valid_number(value: str, category: Category) -> bool:
    """True when value is already in normalized form for category."""
    return (
        value.isdigit()
        and len(value) == width_of(category)
        and int(value) <= width_max(category)
    )


def all_possible_numbers(category: Category) -> list[str]:
    """Every normalized number of a category, in grid order."""
    width = width_of(category)
    return [str(i).zfill(width) for i in range(width_max(category) + 1)]

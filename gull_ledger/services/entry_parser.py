"""
Free-text entry parser.

Turns a pasted block of text into entries. Three shapes are accepted:

Global amounts
    Any run of non-digit characters separates numbers, so
    "90-91-92--93" is four numbers. Amounts come from inline keywords
    ("first 100", "second 50", "f100", "s50"), or from the amounts the
    caller passes in. Every number in the block gets the same amounts.

Structured lines
    "NUMBER FIRST SECOND" on one line ("12 100 50", "12:100:50",
    "12-100-50") or labeled ("12 F:100 S:50"). Such a line carries its
    own amounts and ignores the global ones.

Grouped amounts
    As soon as one line ends in an amount pattern that names both
    sides or is otherwise unambiguous ("F100/S200", "150/250",
    "100 by 200", "ff10", "nil+50", "41(10/50)", "+100/-200"), amounts
    are read per line instead. Lines holding only numbers accumulate,
    and the next amount, on its own line or after more numbers,
    applies to all of them:

        12 34
        56
        100/50        -> 12, 34 and 56 at First 100, Second 50

Problems are collected, not raised, so the caller can show every
error at once and decide whether to continue with the valid part.
"""

import re
from decimal import Decimal

from gull_ledger.errors import ParseError
from gull_ledger.logging_setup import get_logger
from gull_ledger.models.enums import Category
from gull_ledger.schemas.entry import ParsedEntry, ParseResult
from gull_ledger.services.number_normalizer import (
    category_for_length,
    normalize,
)

logger = get_logger(__name__)

ZERO = Decimal("0")

_AMOUNT = r"(\d+(?:\.\d+)?)"

# The keyword must not be the tail of a longer word ("of 5" is not "f 5")
_FIRST_KEYWORD = re.compile(
    r"(?<![A-Za-z])(?:first|f)\s*[:=.]?\s*" + _AMOUNT, re.IGNORECASE
)
_SECOND_KEYWORD = re.compile(
    r"(?<![A-Za-z])(?:second|s)\s*[:=.]?\s*" + _AMOUNT, re.IGNORECASE
)

_LABELED_LINE = re.compile(
    r"^\s*(\d+)[\s,:\-]*F\s*[:=.]?\s*" + _AMOUNT
    + r"[\s,\-]*S\s*[:=.]?\s*" + _AMOUNT + r"\s*$",
    re.IGNORECASE,
)
_PLAIN_LINE = re.compile(
    r"^\s*(\d+)\s*(?::|-|\s)\s*" + _AMOUNT
    + r"\s*(?::|-|\s)\s*" + _AMOUNT + r"\s*$"
)

_NUMBER_SPLIT = re.compile(r"[^0-9]+")

# Chat export prefixes: "[28/10/2025 11:16 pm] Name: " and
# "10/29/25, 7:40 PM - Name: "
_CHAT_BRACKET_PREFIX = re.compile(r"^\[.*?\][^:]*:\s*")
_CHAT_DASH_PREFIX = re.compile(
    r"^\d{1,2}/\d{1,2}/\d{2,4},?\s+\d{1,2}:\d{2}\s*(?:AM|PM)?\s*-\s*[^:]*:\s*",
    re.IGNORECASE,
)

# --- Amount patterns ---

_SEP = r"[\s.]*"
_FIRST = r"(?P<first>\d+(?:\.\d+)?)"
_SECOND = r"(?P<second>\d+(?:\.\d+)?)"
_NIL = r"(?:nil|n)"
_PAIR_JOIN = r"(?:/{1,2}|=|\+|by|x)"


def _forms(*patterns: str) -> list[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# Patterns that name both sides, or one side unambiguously. Any of
# them ending a line switches the block to grouped amounts.
_PAIR_FORMS = _forms(
    r"\(" + _FIRST + _PAIR_JOIN + _SECOND + r"\)",              # (10/50)
    r"f" + _SEP + _FIRST + _SEP + r"(?:[=/+:|-]" + _SEP + r")?"
    + r"s" + _SEP + _SECOND,                                      # F100/S200
    _FIRST + r"f\s+" + _SECOND + r"s",                            # 100f 200s
    r"\+" + _FIRST + _SEP + r"/" + _SEP + r"-" + _SECOND,         # +100/-200
    r"\+" + _FIRST,                                               # +100
    r"ff" + _SEP + _FIRST,                                        # ff10
    r"ss" + _SEP + _SECOND,                                       # ss10
    _FIRST + _SEP + r"[+-]?" + _SEP + r"(?:ff|" + _NIL + r")",   # 10ff, 300+nil
    _SECOND + _SEP + r"[+-]?" + _SEP + r"ss",                     # 10ss, 10-ss
    _NIL + _SEP + r"\+?" + _SEP + _SECOND,                        # nil+200
    _FIRST + _SEP + r"(?:by|x)" + _SEP + _NIL,                    # 20xnil
    _NIL + _SEP + r"(?:by|x)" + _SEP + _SECOND,                   # nil by 100
    _FIRST + _SEP + r"x" + _SEP + r"f+",                          # 10xF
    _SECOND + _SEP + r"x" + _SEP + r"s+",                         # 10xS
    _FIRST + _SEP + r"(?:/{1,2}|by|x)" + _SEP + _SECOND,          # 150/250, 100 by 200
)

# One-sided keywords. Global unless the block uses grouped amounts.
_KEYWORD_FORMS = _forms(
    r"(?:first|f)" + _SEP + r"[:=/|-]?" + _SEP + _FIRST,         # f100, first 100
    r"(?:second|s)" + _SEP + r"[:=/|-]?" + _SEP + _SECOND,       # s50, S:50
    _FIRST + r"f",                                                # 100f
    _SECOND + r"s",                                               # 50s
)

# A number followed by its amounts in brackets: 41(10/50)
_NUMBER_WITH_AMOUNT = re.compile(
    r"(?P<number>\d+)\(" + _FIRST + _PAIR_JOIN + _SECOND + r"\)",
    re.IGNORECASE,
)

_EDGE_PUNCTUATION = ".,;:"

Amount = tuple[Decimal, Decimal]


def strip_chat_prefix(line: str) -> str:
    """Remove a WhatsApp-style timestamp/sender prefix from a line."""
    stripped = line.strip()
    for pattern in (_CHAT_BRACKET_PREFIX, _CHAT_DASH_PREFIX):
        if pattern.match(stripped):
            return pattern.sub("", stripped, count=1)
    return stripped


def split_numbers(text: str) -> list[str]:
    """Split on every run of non-digit characters."""
    return [t for t in _NUMBER_SPLIT.split(text) if t]


def _match_amount(text: str, forms: list[re.Pattern]) -> Amount | None:
    text = text.strip().strip(_EDGE_PUNCTUATION).strip()
    for form in forms:
        match = form.fullmatch(text)
        if match:
            groups = match.groupdict()
            return (
                Decimal(groups.get("first") or ZERO),
                Decimal(groups.get("second") or ZERO),
            )
    return None


def parse_amount(text: str) -> Amount | None:
    """
    Read one amount pattern as (first, second).

    Covers "F100/S200", "150/250", "100 by 200", "100x200", "ff10",
    "10ss", "nil+200", "(10/50)", "+100/-200" and the one-sided
    keywords ("f100", "second 50"). Returns None for anything else,
    including bare numbers.
    """
    return _match_amount(text, _PAIR_FORMS + _KEYWORD_FORMS)


def _split_line_amount(
    line: str, forms: list[re.Pattern]
) -> tuple[str, Amount] | None:
    """Split a line into (number text, amount) when it ends in an amount."""
    amount = _match_amount(line, forms)
    if amount is not None:
        return "", amount

    matches = list(_NUMBER_WITH_AMOUNT.finditer(line))
    if matches:
        bracketed = matches[-1]
        rest = (
            line[:bracketed.start()] + " " + bracketed.group("number")
            + " " + line[bracketed.end():]
        )
        return rest, (
            Decimal(bracketed.group("first")), Decimal(bracketed.group("second"))
        )

    # "100 by 200" spans three tokens, "F100 /S200" two
    tokens = line.split()
    for width in (3, 2, 1):
        if len(tokens) <= width:
            continue
        amount = _match_amount(" ".join(tokens[-width:]), forms)
        if amount is not None:
            return " ".join(tokens[:-width]), amount
    return None


def _last_keyword_amount(
    pattern: re.Pattern, lines: list[str]
) -> Decimal | None:
    amount = None
    for line in lines:
        for match in pattern.finditer(line):
            amount = Decimal(match.group(1))
    return amount


def _resolve_number(
    token: str,
    default_category: Category | None,
    where: str,
    errors: list[str],
) -> tuple[str, Category] | None:
    if default_category is not None:
        try:
            return normalize(token, default_category), Category(default_category)
        except ParseError as e:
            errors.append(f"{where}: {e}")
            return None

    category = category_for_length(len(token))
    if category is None:
        errors.append(
            f"{where}: '{token}' has {len(token)} digits; "
            f"numbers must have 1-4 digits"
        )
        return None
    return token, category


def _emit(
    result: ParseResult,
    tokens: list[tuple[int, str, str]],
    amount: Amount,
    default_category: Category | None,
) -> None:
    """Add one entry per (line, where, token) at the given amount."""
    first, second = amount
    for line_no, where, token in tokens:
        resolved = _resolve_number(token, default_category, where, result.errors)
        if resolved is None:
            continue
        number, category = resolved
        if first == ZERO and second == ZERO:
            result.errors.append(f"{where}: no amount specified for {number}")
            continue
        result.entries.append(ParsedEntry(
            number=number,
            first=first,
            second=second,
            category=category,
            line=line_no,
        ))


def _line_tokens(line_no: int, text: str) -> list[tuple[int, str, str]]:
    return [
        (line_no, f"Line {line_no}, token {token_no}", token)
        for token_no, token in enumerate(split_numbers(text), start=1)
    ]


def parse(
    text: str,
    default_category: Category | None = None,
    *,
    default_first: Decimal | None = None,
    default_second: Decimal | None = None,
) -> ParseResult:
    """
    Parse free-form text into entries.

    default_category forces every number to that category's width;
    without it the category comes from each number's digit count.
    default_first/default_second are the amounts typed into the
    separate amount fields; inline amounts override them.
    """
    result = ParseResult()

    lines = [
        (line_no, strip_chat_prefix(raw))
        for line_no, raw in enumerate(text.splitlines(), start=1)
    ]
    lines = [(n, line) for n, line in lines if line]

    # Labeled structured lines are unambiguous; set them aside before
    # looking for global keywords so their F:/S: labels don't leak.
    labeled: dict[int, re.Match] = {}
    free_lines: list[tuple[int, str]] = []
    for line_no, line in lines:
        match = _LABELED_LINE.match(line)
        if match:
            labeled[line_no] = match
        else:
            free_lines.append((line_no, line))

    grouped = any(
        _split_line_amount(line, _PAIR_FORMS) is not None
        for _, line in free_lines
    )
    if grouped:
        _parse_grouped(
            result, lines, labeled, default_category, default_first, default_second
        )
    else:
        _parse_global(
            result, lines, labeled, free_lines,
            default_category, default_first, default_second,
        )

    logger.debug(
        "Parsed %d entries with %d errors from %d lines (%s amounts)",
        len(result.entries), len(result.errors), len(lines),
        "grouped" if grouped else "global",
    )
    return result


def _parse_global(
    result: ParseResult,
    lines: list[tuple[int, str]],
    labeled: dict[int, re.Match],
    free_lines: list[tuple[int, str]],
    default_category: Category | None,
    default_first: Decimal | None,
    default_second: Decimal | None,
) -> None:
    free_text = [line for _, line in free_lines]
    keyword_first = _last_keyword_amount(_FIRST_KEYWORD, free_text)
    keyword_second = _last_keyword_amount(_SECOND_KEYWORD, free_text)
    has_keywords = keyword_first is not None or keyword_second is not None

    first = keyword_first if keyword_first is not None else (default_first or ZERO)
    second = keyword_second if keyword_second is not None else (default_second or ZERO)

    # Without any global amount, "12 100 50" can only mean number/first/second
    allow_plain_structured = (
        not has_keywords and default_first is None and default_second is None
    )

    for line_no, line in lines:
        structured = labeled.get(line_no)
        if structured is None and allow_plain_structured:
            structured = _PLAIN_LINE.match(line)

        if structured is not None:
            _add_structured(result, structured, default_category, line_no)
            continue

        stripped = _SECOND_KEYWORD.sub(" ", _FIRST_KEYWORD.sub(" ", line))
        _emit(result, _line_tokens(line_no, stripped), (first, second), default_category)


def _parse_grouped(
    result: ParseResult,
    lines: list[tuple[int, str]],
    labeled: dict[int, re.Match],
    default_category: Category | None,
    default_first: Decimal | None,
    default_second: Decimal | None,
) -> None:
    # Only labeled lines are structured here; "12 34 56" is three numbers
    waiting: list[tuple[int, str, str]] = []

    for line_no, line in lines:
        where = f"Line {line_no}"

        structured = labeled.get(line_no)
        if structured is not None:
            _add_structured(result, structured, default_category, line_no)
            continue

        split = _split_line_amount(line, _PAIR_FORMS + _KEYWORD_FORMS)
        if split is None:
            tokens = _line_tokens(line_no, line)
            if not tokens:
                result.errors.append(f"{where}: no numbers or amount in '{line}'")
            waiting.extend(tokens)
            continue

        number_text, amount = split
        group = waiting + _line_tokens(line_no, number_text)
        waiting = []
        if not group:
            result.errors.append(f"{where}: amount without numbers")
            continue
        _emit(result, group, amount, default_category)

    # Numbers after the last amount fall back to the form-field amounts
    if waiting:
        _emit(
            result, waiting,
            (default_first or ZERO, default_second or ZERO),
            default_category,
        )


def _add_structured(
    result: ParseResult,
    match: re.Match,
    default_category: Category | None,
    line_no: int,
) -> None:
    where = f"Line {line_no}"
    token = match.group(1)
    first = Decimal(match.group(2))
    second = Decimal(match.group(3))

    resolved = _resolve_number(token, default_category, where, result.errors)
    if resolved is None:
        return
    number, category = resolved
    if first == ZERO and second == ZERO:
        result.errors.append(f"{where}: no amount specified for {number}")
        return
    result.entries.append(ParsedEntry(
        number=number,
        first=first,
        second=second,
        category=category,
        line=line_no,
    ))

"""Field normalizers for raw tabular cells.

Every function here is pure and total: it accepts whatever a CSV reader or a
workbook reader produced for a cell (text, int, float, datetime, ABSENT, None)
and returns a typed value or ``None``. None of them raise.

Identifier canonicalization (``normalize_ndc``, ``normalize_identifier``) lives
here as well, because the row parsers and the natural-key functions must apply
exactly the same rules to the same identifier.
"""

import math
import numbers
import re
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from rx_loader.domain.raw_row import is_absent

# Spreadsheet serial day 1 is 1900-01-01; the 1899-12-30 epoch absorbs the
# phantom 1900-02-29 of the Lotus/Excel calendar.
SPREADSHEET_EPOCH = date(1899, 12, 30)
MAX_SPREADSHEET_SERIAL = 2958465  # 9999-12-31

NDC_LENGTH = 11

TRUE_VALUES = frozenset({"yes", "true", "1"})

_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")
_CURRENCY_NOISE = re.compile(r"[$,\s]")
_NON_DIGITS = re.compile(r"\D")
_WHITESPACE = re.compile(r"\s+")


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if is_absent(value) or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif _is_number(value):
        result = Decimal(str(value))
    else:
        text = str(value).strip().replace(",", "")
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None
    if not result.is_finite():
        return None
    return result


# ============================================================================
# Text and boolean
# ============================================================================

def normalize_text(value: Any) -> Optional[str]:
    """Trim a cell to text; blank becomes None.

    Integral floats (a workbook MRN of ``12345.0``) are rendered without the
    fractional part so identifiers read from spreadsheets match CSV text.
    """
    if is_absent(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip()
    return text or None


def normalize_boolean(value: Any) -> bool:
    """Case-insensitive yes/true/1 is True; anything else, blank included, is False."""
    if isinstance(value, bool):
        return value
    text = normalize_text(value)
    if text is None:
        return False
    return text.lower() in TRUE_VALUES


# ============================================================================
# Numbers
# ============================================================================

def normalize_integer(value: Any) -> Optional[int]:
    """Parse an integral number; fractional or non-numeric input gives None.

    Handles thousands separators and scientific notation produced by
    spreadsheet exports (``1.234567893E+9``).
    """
    result = _to_decimal(value)
    if result is None or result != result.to_integral_value():
        return None
    return int(result)


def normalize_decimal(value: Any) -> Optional[Decimal]:
    """Parse a plain decimal quantity (package size, quantity dispensed)."""
    return _to_decimal(value)


def normalize_currency(value: Any) -> Optional[Decimal]:
    """Parse a currency amount.

    Strips ``$``, thousands separators and whitespace; ``(12.50)`` is -12.50.
    """
    if is_absent(value) or isinstance(value, bool):
        return None
    if _is_number(value) or isinstance(value, Decimal):
        return _to_decimal(value)

    text = _CURRENCY_NOISE.sub("", str(value))
    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]
    if text.startswith("-"):
        negative = not negative
        text = text[1:]
    if not text or not _NUMERIC.match(text):
        return None

    amount = _to_decimal(text)
    if amount is None:
        return None
    return -amount if negative else amount


# ============================================================================
# Dates
# ============================================================================

def _date_from_serial(serial: Any) -> Optional[date]:
    if not math.isfinite(serial):
        return None
    days = int(serial)
    if days < 1 or days > MAX_SPREADSHEET_SERIAL:
        return None
    return SPREADSHEET_EPOCH + timedelta(days=days)


def _build_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _parse_date_text(text: str) -> Optional[date]:
    match = _US_DATE.match(text)
    if match:
        month, day, year = (int(part) for part in match.groups())
        return _build_date(year, month, day)

    date_part = text.split("T", 1)[0].split(" ", 1)[0]
    match = _ISO_DATE.match(date_part)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return _build_date(year, month, day)

    match = _US_DATE.match(date_part)
    if match:
        month, day, year = (int(part) for part in match.groups())
        return _build_date(year, month, day)

    if _NUMERIC.match(text):
        return _date_from_serial(float(text))

    return None


def parse_date(value: Any) -> Optional[date]:
    """Parse a cell into a ``date`` (see ``normalize_date`` for accepted forms)."""
    if is_absent(value) or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if _is_number(value):
        return _date_from_serial(value)
    return _parse_date_text(str(value).strip())


def normalize_date(value: Any) -> Optional[str]:
    """Normalize a date cell to the canonical ``YYYY-MM-DD`` string.

    Accepted forms:
        - ``MM/DD/YYYY`` text (US source convention)
        - ``YYYY-MM-DD`` text, optionally followed by a time part
        - native date/datetime cells from workbook readers
        - spreadsheet serial day counts (number or numeric text)

    Impossible calendar dates such as ``13/45/2024`` give None.
    """
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else None


def normalize_timestamp(value: Any) -> Optional[datetime]:
    """Normalize a date-time cell; fractional serials carry the time of day."""
    if is_absent(value) or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        # drops tzinfo and pandas.Timestamp subclassing
        return datetime.combine(value.date(), value.time())
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if _is_number(value):
        day = _date_from_serial(value)
        if day is None:
            return None
        seconds = round((float(value) - int(value)) * 86400)
        return datetime.combine(day, time.min) + timedelta(seconds=seconds)

    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text)
        return parsed.replace(tzinfo=None) if parsed.tzinfo else parsed
    except ValueError:
        pass
    for fmt in ("%m/%d/%Y %H:%M:%S", "%m/%d/%Y %H:%M", "%m/%d/%Y %I:%M %p", "%m/%d/%Y %I:%M:%S %p"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    day = _parse_date_text(text)
    if day is None:
        return None
    return datetime.combine(day, time.min)


# ============================================================================
# Identifier canonicalization
# ============================================================================

def normalize_ndc(value: Any) -> Optional[str]:
    """Canonical 11-digit NDC: separators stripped, left-padded with zeros.

    ``"0002-3227-30"`` becomes ``"00002322730"`` and the number ``2322730``
    becomes ``"00002322730"`` as well.
    """
    if is_absent(value) or isinstance(value, bool):
        return None
    if _is_number(value):
        integral = normalize_integer(value)
        if integral is None:
            return None
        digits = str(integral)
    else:
        digits = _NON_DIGITS.sub("", str(value))
    if not digits:
        return None
    return digits.zfill(NDC_LENGTH)


def normalize_identifier(value: Any) -> Optional[str]:
    """Trimmed, upper-cased identifier text (DEA numbers, MRNs, OPAIDs)."""
    text = normalize_text(value)
    if text is None:
        return None
    return _WHITESPACE.sub(" ", text).upper()


def canonical_name(value: Any) -> Optional[str]:
    """Trimmed, whitespace-collapsed, case-folded name used inside natural keys."""
    text = normalize_text(value)
    if text is None:
        return None
    return _WHITESPACE.sub(" ", text).casefold()

"""
Money and Presentation Helpers

Decimal-precise money for loan calculations plus the formatting helpers used
when amounts and dates are shown to people. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from datetime import date, datetime
from typing import Union
from enum import Enum
import re

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')

Number = Union[Decimal, int, str, float]


class Currency(Enum):
    """Portfolio currency with its precision and display conventions"""
    COP = ("COP", 2, "$", ".", ",")  # Colombian peso, es-CO grouping

    def __init__(self, code: str, precision: int, symbol: str,
                 thousands_separator: str, decimal_separator: str):
        self.code = code
        self.precision = precision
        self.symbol = symbol
        self.thousands_separator = thousands_separator
        self.decimal_separator = decimal_separator


def to_decimal(value: Number) -> Decimal:
    """Convert a number to Decimal going through str so floats keep their printed value"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Number) -> Decimal:
    """Round to cents using the accounting rounding rule (half up)"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Money:
    """
    Immutable money amount, always quantized to the currency precision.

    Negative amounts are allowed: a short payment can leave a negative
    principal allocation and that value is recorded as-is.
    """
    amount: Decimal
    currency: Currency = Currency.COP

    def __post_init__(self):
        if isinstance(self.amount, Money):
            object.__setattr__(self, 'amount', self.amount.amount)
        rounded = to_decimal(self.amount).quantize(
            Decimal('0.1') ** self.currency.precision,
            rounding=ROUND_HALF_UP
        )
        # Normalise -0.00 so equal amounts compare and serialise the same
        if rounded.is_zero():
            rounded = abs(rounded)
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency = Currency.COP) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check(self, other: 'Money') -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot combine {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Number) -> 'Money':
        return Money(self.amount * to_decimal(multiplier), self.currency)

    def __truediv__(self, divisor: Number) -> 'Money':
        return Money(self.amount / to_decimal(divisor), self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        return format_currency(self.amount, self.currency)


def format_currency(amount: Union[Money, Number], currency: Currency = Currency.COP) -> str:
    """
    Format an amount the way es-CO locales show pesos.

    Up to two fraction digits are shown and trailing zeros dropped, so
    ``1234567.8`` becomes ``"$ 1.234.567,8"`` and ``1500`` becomes ``"$ 1.500"``.

    Args:
        amount: Money or plain number
        currency: Display conventions to use

    Returns:
        Formatted string
    """
    if isinstance(amount, Money):
        currency = amount.currency
        amount = amount.amount
    value = to_decimal(amount).quantize(
        Decimal('0.1') ** currency.precision, rounding=ROUND_HALF_UP
    )
    sign = "-" if value < 0 else ""

    text = f"{abs(value):,.{currency.precision}f}"
    if currency.precision:
        integer, fraction = text.split(".")
        fraction = fraction.rstrip("0")
    else:
        integer, fraction = text, ""
    integer = integer.replace(",", currency.thousands_separator)

    body = integer + (currency.decimal_separator + fraction if fraction else "")
    return f"{sign}{currency.symbol} {body}"


def format_date(value: Union[date, datetime, str]) -> str:
    """Format a date as ISO ``YYYY-MM-DD`` (datetimes lose their time part)"""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(value[:10]).isoformat()


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert user-entered text to Decimal

    Accepts both ``1.234.567,50`` (es-CO) and ``1,234,567.50`` styles. A single
    separator followed by exactly three digits is read as a thousands separator.

    Args:
        value: String representation of number

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    if ',' in clean_value and '.' in clean_value:
        # The separator appearing last is the decimal one
        if clean_value.rfind(',') > clean_value.rfind('.'):
            clean_value = clean_value.replace('.', '').replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')
    else:
        for separator in (',', '.'):
            if separator not in clean_value:
                continue
            parts = clean_value.split(separator)
            if len(parts) > 2 or len(parts[-1]) == 3:
                clean_value = clean_value.replace(separator, '')
            else:
                clean_value = clean_value.replace(separator, '.')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")

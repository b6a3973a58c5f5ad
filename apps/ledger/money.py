"""
Fixed-point money type.

Amounts inside the ledger are integer counts of minor currency units
(paise, cents, ...). Decimal text entered by users is converted once, at the
boundary, with round-half-to-even; after that every operation is exact
integer arithmetic.

Example::

    >>> price = Money.from_decimal_string('100.005', 'INR')
    >>> price
    Money(minor_units=10000, currency='INR')
    >>> price.multiply_by_ratio(1, 3)
    Money(minor_units=3333, currency='INR')
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from functools import total_ordering


# Number of decimal places of the minor unit, per supported currency.
CURRENCY_EXPONENTS = {
    'INR': 2,
    'USD': 2,
    'EUR': 2,
    'GBP': 2,
    'JPY': 0,
    'CAD': 2,
    'AUD': 2,
    'CHF': 2,
    'CZK': 2,
}

# Minor-unit amounts are stored in signed 64-bit columns.
MAX_MINOR_UNITS = 2 ** 63 - 1


class MoneyError(Exception):
    """Base exception for money conversion and arithmetic errors."""
    pass


class RoundingError(MoneyError):
    """Raised when decimal text cannot be converted to minor units."""
    pass


class UnsupportedCurrencyError(MoneyError):
    """Raised for a currency code without a known minor unit."""
    pass


class CurrencyMismatchError(MoneyError):
    """Raised when two amounts in different currencies are combined."""

    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Currency mismatch: expected {expected}, got {actual}")


def currency_exponent(currency: str) -> int:
    try:
        return CURRENCY_EXPONENTS[currency]
    except KeyError:
        raise UnsupportedCurrencyError(f"Unsupported currency: {currency!r}")


def round_half_even_ratio(numerator: int, denominator: int) -> int:
    """Round ``numerator / denominator`` to the nearest integer, ties to even."""
    if denominator == 0:
        raise ZeroDivisionError("denominator must be non-zero")
    if denominator < 0:
        numerator, denominator = -numerator, -denominator

    quotient, remainder = divmod(numerator, denominator)
    twice = 2 * remainder
    if twice > denominator or (twice == denominator and quotient % 2 == 1):
        quotient += 1
    return quotient


@total_ordering
@dataclass(frozen=True)
class Money:
    """An exact amount of a single currency, stored in minor units."""

    minor_units: int
    currency: str

    def __post_init__(self):
        if isinstance(self.minor_units, bool) or not isinstance(self.minor_units, int):
            raise TypeError("minor_units must be an int")
        currency_exponent(self.currency)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def zero(cls, currency: str) -> 'Money':
        return cls(0, currency)

    @classmethod
    def from_decimal_string(cls, text, currency: str) -> 'Money':
        """
        Convert user-entered decimal text to minor units.

        The value is rounded to the nearest minor unit using
        round-half-to-even, so ``'0.125'`` INR becomes 12 paise and
        ``'0.135'`` becomes 14.

        Args:
            text: Decimal text such as ``'199.99'`` (a ``Decimal`` or ``int``
                is accepted as well; floats are rejected).
            currency: ISO currency code.

        Returns:
            Money in minor units.

        Raises:
            RoundingError: If the text is not a finite decimal number or
                does not fit in a 64-bit count of minor units.
            UnsupportedCurrencyError: If the currency is unknown.
        """
        exponent = currency_exponent(currency)

        if isinstance(text, float):
            raise RoundingError("Floating point input is not accepted; pass decimal text")

        try:
            value = Decimal(str(text).strip())
        except (InvalidOperation, ValueError):
            raise RoundingError(f"Not a decimal amount: {text!r}")

        if not value.is_finite():
            raise RoundingError(f"Not a finite amount: {text!r}")

        try:
            scaled = int(value.scaleb(exponent).quantize(Decimal(1), rounding=ROUND_HALF_EVEN))
        except InvalidOperation:
            raise RoundingError(f"Amount is too large: {text!r}")

        if abs(scaled) > MAX_MINOR_UNITS:
            raise RoundingError(f"Amount is too large: {text!r}")
        return cls(scaled, currency)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def _check_currency(self, other: 'Money'):
        if not isinstance(other, Money):
            raise TypeError(f"Expected Money, got {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def add(self, other: 'Money') -> 'Money':
        self._check_currency(other)
        return Money(self.minor_units + other.minor_units, self.currency)

    def subtract(self, other: 'Money') -> 'Money':
        self._check_currency(other)
        return Money(self.minor_units - other.minor_units, self.currency)

    def negate(self) -> 'Money':
        return Money(-self.minor_units, self.currency)

    def multiply_by_ratio(self, numerator: int, denominator: int) -> 'Money':
        """
        Scale by ``numerator / denominator`` with banker's rounding.

        The result is rounded to a whole minor unit, so the caller is
        responsible for reconciling any rounding remainder.
        """
        return Money(
            round_half_even_ratio(self.minor_units * numerator, denominator),
            self.currency,
        )

    __add__ = add
    __sub__ = subtract
    __neg__ = negate

    def __lt__(self, other):
        self._check_currency(other)
        return self.minor_units < other.minor_units

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def is_zero(self) -> bool:
        return self.minor_units == 0

    @property
    def is_positive(self) -> bool:
        return self.minor_units > 0

    @property
    def is_negative(self) -> bool:
        return self.minor_units < 0

    def to_decimal(self) -> Decimal:
        """Major-unit value, for display and serialization only."""
        return Decimal(self.minor_units).scaleb(-currency_exponent(self.currency))

    def __str__(self):
        return f"{self.to_decimal()} {self.currency}"


def sum_money(amounts, currency: str) -> Money:
    """Sum an iterable of Money, all in ``currency``."""
    total = Money.zero(currency)
    for amount in amounts:
        total = total.add(amount)
    return total

"""
Unit tests for the fixed-point Money type.

No database access; these run without the django_db mark.
"""

from decimal import Decimal

import pytest

from apps.ledger.money import (
    Money,
    RoundingError,
    UnsupportedCurrencyError,
    CurrencyMismatchError,
    currency_exponent,
    round_half_even_ratio,
    sum_money,
)


class TestFromDecimalString:
    """Tests for Money.from_decimal_string."""

    def test_whole_and_fractional_amounts(self):
        assert Money.from_decimal_string('199.99', 'INR') == Money(19999, 'INR')
        assert Money.from_decimal_string('42', 'USD') == Money(4200, 'USD')
        assert Money.from_decimal_string(' 0.5 ', 'EUR') == Money(50, 'EUR')

    def test_rounds_half_to_even(self):
        """Ties go to the even minor unit."""
        assert Money.from_decimal_string('0.125', 'INR').minor_units == 12
        assert Money.from_decimal_string('0.135', 'INR').minor_units == 14
        assert Money.from_decimal_string('100.005', 'INR').minor_units == 10000
        assert Money.from_decimal_string('100.015', 'INR').minor_units == 10002

    def test_rounds_non_ties_to_nearest(self):
        assert Money.from_decimal_string('0.126', 'INR').minor_units == 13
        assert Money.from_decimal_string('0.124', 'INR').minor_units == 12

    def test_negative_amounts(self):
        assert Money.from_decimal_string('-10.25', 'INR') == Money(-1025, 'INR')
        assert Money.from_decimal_string('-0.125', 'INR').minor_units == -12

    def test_zero_exponent_currency(self):
        """JPY has no minor unit."""
        assert currency_exponent('JPY') == 0
        assert Money.from_decimal_string('1500', 'JPY') == Money(1500, 'JPY')
        assert Money.from_decimal_string('2.5', 'JPY').minor_units == 2
        assert Money.from_decimal_string('3.5', 'JPY').minor_units == 4

    def test_accepts_decimal_and_int(self):
        assert Money.from_decimal_string(Decimal('1.10'), 'INR').minor_units == 110
        assert Money.from_decimal_string(7, 'INR').minor_units == 700

    def test_rejects_float(self):
        with pytest.raises(RoundingError):
            Money.from_decimal_string(0.1, 'INR')

    @pytest.mark.parametrize('text', ['', 'abc', '1,50', 'NaN', 'Infinity', '-inf'])
    def test_rejects_non_numeric_text(self, text):
        with pytest.raises(RoundingError):
            Money.from_decimal_string(text, 'INR')

    @pytest.mark.parametrize('text', ['1e30', '-1E40', '99999999999999999999', '92233720368547758.08'])
    def test_rejects_amounts_too_large_to_store(self, text):
        with pytest.raises(RoundingError):
            Money.from_decimal_string(text, 'INR')

    def test_largest_storable_amount(self):
        assert Money.from_decimal_string('92233720368547758.07', 'INR').minor_units == 2 ** 63 - 1
        assert Money.from_decimal_string('1e3', 'INR').minor_units == 100000

    def test_rejects_unknown_currency(self):
        with pytest.raises(UnsupportedCurrencyError):
            Money.from_decimal_string('1.00', 'XYZ')


class TestArithmetic:
    """Tests for Money arithmetic and comparisons."""

    def test_add_and_subtract(self):
        a = Money(1050, 'INR')
        b = Money(250, 'INR')

        assert a.add(b) == Money(1300, 'INR')
        assert a.subtract(b) == Money(800, 'INR')
        assert a + b == Money(1300, 'INR')
        assert b - a == Money(-800, 'INR')

    def test_negate(self):
        assert Money(500, 'INR').negate() == Money(-500, 'INR')
        assert -Money(-1, 'INR') == Money(1, 'INR')

    def test_currency_mismatch(self):
        with pytest.raises(CurrencyMismatchError) as exc_info:
            Money(100, 'INR').add(Money(100, 'USD'))

        assert exc_info.value.expected == 'INR'
        assert exc_info.value.actual == 'USD'

    def test_compare_across_currencies_fails(self):
        with pytest.raises(CurrencyMismatchError):
            Money(1, 'INR') < Money(2, 'EUR')

    def test_ordering(self):
        assert Money(1, 'INR') < Money(2, 'INR')
        assert Money(3, 'INR') >= Money(3, 'INR')
        assert max([Money(5, 'INR'), Money(-5, 'INR')]) == Money(5, 'INR')

    def test_multiply_by_ratio_rounds_half_even(self):
        assert Money(10000, 'INR').multiply_by_ratio(1, 3) == Money(3333, 'INR')
        assert Money(5, 'INR').multiply_by_ratio(1, 2) == Money(2, 'INR')
        assert Money(15, 'INR').multiply_by_ratio(1, 2) == Money(8, 'INR')
        assert Money(-15, 'INR').multiply_by_ratio(1, 2) == Money(-8, 'INR')

    def test_round_half_even_ratio_rejects_zero_denominator(self):
        with pytest.raises(ZeroDivisionError):
            round_half_even_ratio(1, 0)

    def test_round_half_even_ratio_negative_denominator(self):
        assert round_half_even_ratio(7, -2) == -4
        assert round_half_even_ratio(5, -2) == -2

    def test_sum_money(self):
        amounts = [Money(100, 'INR'), Money(-30, 'INR'), Money(5, 'INR')]
        assert sum_money(amounts, 'INR') == Money(75, 'INR')
        assert sum_money([], 'INR') == Money.zero('INR')


class TestInspection:
    """Tests for predicates and display."""

    def test_sign_predicates(self):
        assert Money(0, 'INR').is_zero
        assert Money(1, 'INR').is_positive
        assert Money(-1, 'INR').is_negative
        assert not Money(-1, 'INR').is_positive

    def test_to_decimal_and_str(self):
        assert Money(19999, 'INR').to_decimal() == Decimal('199.99')
        assert str(Money(100, 'INR').to_decimal()) == '1.00'
        assert str(Money(-5, 'USD')) == '-0.05 USD'
        assert str(Money(1500, 'JPY')) == '1500 JPY'

    def test_minor_units_must_be_int(self):
        with pytest.raises(TypeError):
            Money(1.5, 'INR')
        with pytest.raises(TypeError):
            Money(True, 'INR')

    def test_is_hashable_value(self):
        assert {Money(1, 'INR'), Money(1, 'INR')} == {Money(1, 'INR')}

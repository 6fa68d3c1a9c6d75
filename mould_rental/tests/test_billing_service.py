import sys
import unittest
from datetime import datetime
from decimal import Decimal
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from services.billing_service import (
    calculate_billable_days,
    calculate_rental_charges,
    get_days_until_overdue,
    is_rental_overdue,
    validate_return_window,
)
from services.errors import RentalValidationError


# 2024-01-01 is a Monday; 2024-01-07 is a Sunday.
def at(day: int, hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime(2024, 1, day, hour, minute, second)


class BillableDaysTests(unittest.TestCase):
    def test_same_day_morning_to_morning_is_free(self):
        self.assertEqual(calculate_billable_days(at(1, 9), at(1, 9)), 0)

    def test_same_day_morning_to_noon_counts_one(self):
        self.assertEqual(calculate_billable_days(at(1, 9), at(1, 12)), 1)
        self.assertEqual(calculate_billable_days(at(1, 11, 59, 59), at(1, 18)), 1)

    def test_same_day_pickup_at_noon_is_free(self):
        self.assertEqual(calculate_billable_days(at(1, 12), at(1, 17)), 0)

    def test_same_day_sunday_is_free(self):
        self.assertEqual(calculate_billable_days(at(7, 8), at(7, 16)), 0)

    def test_afternoon_pickup_morning_return(self):
        # Monday 14:00 -> Wednesday 10:00: only Tuesday counts.
        self.assertEqual(calculate_billable_days(at(1, 14), at(3, 10)), 1)

    def test_morning_pickup_afternoon_return_counts_both_ends(self):
        self.assertEqual(calculate_billable_days(at(1, 9), at(3, 13)), 3)

    def test_return_boundary_is_noon(self):
        self.assertEqual(calculate_billable_days(at(1, 9), at(2, 11, 59)), 1)
        self.assertEqual(calculate_billable_days(at(1, 9), at(2, 12)), 2)

    def test_sunday_in_between_is_skipped(self):
        # Monday to the following Monday: Sunday the 7th is never charged.
        self.assertEqual(calculate_billable_days(at(1, 9), at(8, 13)), 7)
        self.assertEqual(calculate_billable_days(at(6, 9), at(8, 13)), 2)

    def test_sunday_endpoints_are_skipped(self):
        self.assertEqual(calculate_billable_days(at(6, 9), at(7, 15)), 1)
        self.assertEqual(calculate_billable_days(at(7, 9), at(8, 13)), 1)

    def test_sundays_never_increase_the_count(self):
        without_sunday = calculate_billable_days(at(2, 9), at(6, 13))
        with_sunday = calculate_billable_days(at(2, 9), at(7, 13))
        self.assertEqual(without_sunday, with_sunday)

    def test_return_before_pickup_is_rejected_at_the_boundary(self):
        with self.assertRaises(RentalValidationError):
            validate_return_window(at(3, 9), at(2, 9))
        validate_return_window(at(3, 9), at(3, 9))


class RentalChargesTests(unittest.TestCase):
    def test_additional_payment_when_charge_exceeds_deposit(self):
        charges = calculate_rental_charges(at(1, 9), at(13, 13), 1000, 100)
        self.assertEqual(charges.days_used, 12)
        self.assertEqual(charges.total_charge, Decimal("1200"))
        self.assertEqual(charges.additional_payment, Decimal("200"))
        self.assertEqual(charges.refund_amount, Decimal("0"))

    def test_refund_when_charge_below_deposit(self):
        charges = calculate_rental_charges(at(1, 9), at(3, 13), 1000, 100)
        self.assertEqual(charges.days_used, 3)
        self.assertEqual(charges.total_charge, Decimal("300"))
        self.assertEqual(charges.refund_amount, Decimal("700"))
        self.assertEqual(charges.additional_payment, Decimal("0"))

    def test_charge_equal_to_deposit_settles_to_zero(self):
        charges = calculate_rental_charges(at(1, 9), at(11, 13), 1000, 100)
        self.assertEqual(charges.days_used, 10)
        self.assertEqual(charges.refund_amount, Decimal("0"))
        self.assertEqual(charges.additional_payment, Decimal("0"))

    def test_defaults_match_shop_rates(self):
        charges = calculate_rental_charges(at(1, 9), at(2, 13))
        self.assertEqual(charges.total_charge, Decimal("200"))
        self.assertEqual(charges.refund_amount, Decimal("800"))

    def test_total_is_days_times_rate_and_never_both_positive(self):
        rate = Decimal("45.50")
        for end_day in range(1, 20):
            charges = calculate_rental_charges(at(1, 9), at(end_day, 15), Decimal("250"), rate)
            self.assertEqual(charges.total_charge, rate * charges.days_used)
            self.assertFalse(charges.refund_amount > 0 and charges.additional_payment > 0)

    def test_as_dict_uses_api_keys(self):
        payload = calculate_rental_charges(at(1, 9), at(1, 9), 1000, 100).as_dict()
        self.assertEqual(payload["daysUsed"], 0)
        self.assertEqual(payload["refundAmount"], Decimal("1000"))
        self.assertEqual(set(payload), {"daysUsed", "totalCharge", "refundAmount", "additionalPayment"})


class OverdueTests(unittest.TestCase):
    def test_overdue_after_ten_billable_days(self):
        self.assertFalse(is_rental_overdue(at(1, 9), at(11, 13)))
        self.assertTrue(is_rental_overdue(at(1, 9), at(12, 13)))

    def test_days_until_overdue(self):
        self.assertEqual(get_days_until_overdue(at(1, 9), at(1, 13)), 9)
        self.assertEqual(get_days_until_overdue(at(1, 9), at(11, 13)), 0)
        self.assertEqual(get_days_until_overdue(at(1, 9), at(12, 13)), -1)


if __name__ == "__main__":
    unittest.main()

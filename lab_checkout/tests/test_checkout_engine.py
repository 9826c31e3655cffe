import sys
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import ValidationError

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from schemas.checkout import ActingUser, EquipmentSnapshot, HistoryPage, HoldRecord
from services.checkout_engine import (
    evaluate,
    merge_history_page,
    request_checkout,
    request_history_page,
    request_return,
    request_return_date_update,
)
from services.errors import ConflictError, InvalidInput, PermissionDenied


NOW = datetime(2026, 3, 2, 9, 0)
USER_U = ActingUser(id="u", name="Uma")
USER_V = ActingUser(id="v", name="Victor")


def _hold(holder_id, start_days_ago=1, return_in_days=6, ended=False):
    start = NOW - timedelta(days=start_days_ago)
    return HoldRecord(
        holderId=holder_id,
        holderName=holder_id.upper(),
        startDate=start,
        expectedReturnDate=NOW + timedelta(days=return_in_days) if return_in_days is not None else None,
        endDate=start + timedelta(hours=2) if ended else None,
    )


def _singleton(*holders):
    return EquipmentSnapshot(id="eq-1", name="Oculus Rift", kind="Singleton", currentHolders=holders)


def _collection(*holders):
    return EquipmentSnapshot(id="eq-2", name="Arduino Kit", kind="Collection", currentHolders=holders)


class EvaluateTests(unittest.TestCase):
    def test_available_singleton(self):
        decision = evaluate(_singleton(), USER_U)
        self.assertTrue(decision.canCheckout)
        self.assertFalse(decision.canReturn)
        self.assertEqual(decision.effectiveOccupancy, "Available")

    def test_singleton_held_by_self(self):
        decision = evaluate(_singleton(_hold("u")), USER_U)
        self.assertTrue(decision.canReturn)
        self.assertFalse(decision.canCheckout)
        self.assertEqual(decision.effectiveOccupancy, "HeldBySelf")

    def test_singleton_held_by_other(self):
        decision = evaluate(_singleton(_hold("v")), USER_U)
        self.assertFalse(decision.canReturn)
        self.assertFalse(decision.canCheckout)
        self.assertEqual(decision.effectiveOccupancy, "HeldByOthers")

    def test_collection_always_allows_checkout(self):
        snapshot = _collection(_hold("v", return_in_days=None), _hold("u", return_in_days=None))
        decision = evaluate(snapshot, USER_U)
        self.assertTrue(decision.canCheckout)
        self.assertTrue(decision.canReturn)
        self.assertEqual(decision.effectiveOccupancy, "HeldByMixed")

    def test_collection_with_repeated_self_holds(self):
        snapshot = _collection(_hold("u", return_in_days=None), _hold("u", start_days_ago=2, return_in_days=None))
        self.assertEqual(evaluate(snapshot, USER_U).effectiveOccupancy, "HeldBySelf")

    def test_closed_holds_do_not_grant_return(self):
        snapshot = _collection(_hold("u", ended=True))
        decision = evaluate(snapshot, USER_U)
        self.assertFalse(decision.canReturn)
        self.assertEqual(decision.effectiveOccupancy, "Available")

    def test_evaluate_is_deterministic(self):
        snapshot = _collection(_hold("u", return_in_days=None), _hold("v", return_in_days=None))
        self.assertEqual(evaluate(snapshot, USER_V), evaluate(snapshot, USER_V))


class RequestCheckoutTests(unittest.TestCase):
    def test_singleton_checkout_with_return_date(self):
        return_date = NOW + timedelta(days=7)
        operation = request_checkout(_singleton(), USER_U, return_date, now=NOW)
        self.assertEqual(operation.equipmentId, "eq-1")
        self.assertEqual(operation.holderId, "u")
        self.assertEqual(operation.expectedReturnDate, return_date)

    def test_singleton_requires_return_date(self):
        with self.assertRaises(InvalidInput):
            request_checkout(_singleton(), USER_U, None, now=NOW)

    def test_return_date_in_past_is_rejected(self):
        with self.assertRaises(InvalidInput):
            request_checkout(_collection(), USER_U, NOW - timedelta(minutes=1), now=NOW)

    def test_held_singleton_always_conflicts(self):
        for holder in ("u", "v"):
            with self.subTest(holder=holder):
                with self.assertRaises(ConflictError):
                    request_checkout(_singleton(_hold(holder)), USER_U, NOW + timedelta(days=1), now=NOW)

    def test_timezone_aware_return_date(self):
        aware_now = NOW.astimezone(timezone.utc)
        operation = request_checkout(_singleton(), USER_U, aware_now + timedelta(days=7), now=NOW)
        self.assertIsNone(operation.expectedReturnDate.tzinfo)
        self.assertEqual(operation.expectedReturnDate, NOW + timedelta(days=7))

        with self.assertRaises(InvalidInput):
            request_checkout(_singleton(), USER_U, aware_now - timedelta(days=1), now=NOW)

    def test_timezone_aware_date_against_wall_clock(self):
        operation = request_checkout(_singleton(), USER_U, datetime.now(timezone.utc) + timedelta(days=7))
        self.assertIsNone(operation.expectedReturnDate.tzinfo)

    def test_collection_checkout_without_return_date(self):
        snapshot = _collection(_hold("v", return_in_days=None))
        operation = request_checkout(snapshot, USER_U, None, now=NOW)
        self.assertIsNone(operation.expectedReturnDate)
        self.assertEqual(len(snapshot.currentHolders), 1)


class RequestReturnTests(unittest.TestCase):
    def test_holder_can_return(self):
        snapshot = _singleton(_hold("u"))
        operation = request_return(snapshot, USER_U)
        self.assertEqual((operation.equipmentId, operation.holderId), ("eq-1", "u"))

    def test_non_holder_cannot_return(self):
        with self.assertRaises(PermissionDenied):
            request_return(_singleton(_hold("u")), USER_V)

    def test_collection_member_can_return(self):
        snapshot = _collection(_hold("v", return_in_days=None), _hold("u", return_in_days=None))
        self.assertEqual(request_return(snapshot, USER_U).holderId, "u")


class ReturnDateUpdateTests(unittest.TestCase):
    def test_holder_updates_return_date(self):
        new_date = NOW + timedelta(days=10)
        operation = request_return_date_update(_singleton(_hold("u")), USER_U, new_date, now=NOW)
        self.assertEqual(operation.expectedReturnDate, new_date)
        self.assertEqual(operation.holderId, "u")

    def test_other_member_cannot_update(self):
        with self.assertRaises(PermissionDenied):
            request_return_date_update(_singleton(_hold("v")), USER_U, NOW + timedelta(days=1), now=NOW)

    def test_collection_updates_are_not_supported(self):
        snapshot = _collection(_hold("u"))
        with self.assertRaises(PermissionDenied):
            request_return_date_update(snapshot, USER_U, NOW + timedelta(days=1), now=NOW)

    def test_timezone_aware_update(self):
        new_date = (NOW + timedelta(days=3)).astimezone(timezone.utc)
        operation = request_return_date_update(_singleton(_hold("u")), USER_U, new_date, now=NOW)
        self.assertEqual(operation.expectedReturnDate, NOW + timedelta(days=3))

        with self.assertRaises(InvalidInput):
            request_return_date_update(
                _singleton(_hold("u")), USER_U, NOW.astimezone(timezone.utc) - timedelta(hours=1), now=NOW
            )

    def test_backdated_return_date_is_rejected(self):
        with self.assertRaises(InvalidInput):
            request_return_date_update(_singleton(_hold("u")), USER_U, NOW - timedelta(days=1), now=NOW)


class HistoryTests(unittest.TestCase):
    def setUp(self):
        self.page_a = HistoryPage(
            records=(_hold("a", start_days_ago=1, ended=True), _hold("b", start_days_ago=3, ended=True)),
            hasMore=True,
        )
        self.page_b = HistoryPage(
            records=(_hold("c", start_days_ago=5, ended=True), _hold("b", start_days_ago=3, ended=True)),
            hasMore=False,
        )

    def test_merge_orders_and_deduplicates(self):
        merged = merge_history_page(self.page_a, self.page_b)
        self.assertEqual([record.holderId for record in merged.records], ["a", "b", "c"])
        self.assertFalse(merged.hasMore)

    def test_merge_is_idempotent(self):
        once = merge_history_page(None, self.page_a)
        twice = merge_history_page(once, self.page_a)
        self.assertEqual(once, twice)

    def test_merging_a_page_again_keeps_the_same_records(self):
        a_then_b = merge_history_page(merge_history_page(None, self.page_a), self.page_b)
        again = merge_history_page(a_then_b, self.page_a)
        self.assertEqual(set(a_then_b.records), set(again.records))
        self.assertEqual(len(again.records), 3)

    def test_ties_are_broken_by_holder(self):
        start = NOW - timedelta(days=2)
        page = HistoryPage(
            records=(
                HoldRecord(holderId="z", holderName="Z", startDate=start),
                HoldRecord(holderId="m", holderName="M", startDate=start),
            )
        )
        merged = merge_history_page(None, page)
        self.assertEqual([record.holderId for record in merged.records], ["m", "z"])

    def test_closed_copy_of_record_wins(self):
        active = HistoryPage(records=(_hold("a", start_days_ago=1),), hasMore=False)
        closed = HistoryPage(records=(_hold("a", start_days_ago=1, ended=True),), hasMore=False)
        merged = merge_history_page(active, closed)
        self.assertEqual(len(merged.records), 1)
        self.assertIsNotNone(merged.records[0].endDate)

    def test_remerging_stale_copy_keeps_closed_record(self):
        active = HistoryPage(records=(_hold("a", start_days_ago=1),), hasMore=True)
        closed = HistoryPage(records=(_hold("a", start_days_ago=1, ended=True),), hasMore=True)

        a_then_b = merge_history_page(merge_history_page(None, active), closed)
        again = merge_history_page(a_then_b, active)
        self.assertEqual(a_then_b.records, again.records)
        self.assertEqual(merge_history_page(closed, active).records, merge_history_page(active, closed).records)

    def test_history_query_progression(self):
        snapshot = _singleton()
        first = request_history_page(snapshot, None)
        self.assertIsNone(first.before)
        self.assertEqual(first.equipmentId, "eq-1")

        following = request_history_page(snapshot, self.page_a)
        self.assertEqual(following.before, NOW - timedelta(days=3))
        self.assertEqual(following.beforeHolderId, "b")

        self.assertIsNone(request_history_page(snapshot, self.page_b))


class SnapshotValidationTests(unittest.TestCase):
    def test_singleton_rejects_two_holders(self):
        with self.assertRaises(ValidationError):
            _singleton(_hold("u"), _hold("v"))

    def test_singleton_hold_requires_return_date(self):
        with self.assertRaises(ValidationError):
            _singleton(_hold("u", return_in_days=None))

    def test_return_date_before_start_is_rejected(self):
        with self.assertRaises(ValidationError):
            HoldRecord(holderId="u", holderName="U", startDate=NOW, expectedReturnDate=NOW - timedelta(days=1))

    def test_is_checked_out(self):
        self.assertFalse(_collection().isCheckedOut)
        self.assertTrue(_collection(_hold("u")).isCheckedOut)


if __name__ == "__main__":
    unittest.main()

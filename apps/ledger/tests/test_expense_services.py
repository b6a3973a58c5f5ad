"""
Service layer tests for expenses.

Tests cover:
- Creating expenses with every split policy
- Edits applying new - old as one delta set
- Deletes reversing the original effect
- The approval workflow
- Rejected operations leaving the ledger untouched
"""

import threading
from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

import pytest
from django.db import connection

from apps.groups.models import GroupMembership, GroupRole
from apps.ledger.models import Balance, Expense, ExpenseShare, ExpenseStatus, SplitPolicyType
from apps.ledger.money import Money
from apps.ledger.services import (
    create_expense,
    update_expense,
    delete_expense,
    approve_expense,
    reject_expense,
    mark_expense_settled,
    get_group_expenses,
    get_expense_by_id,
    get_group_version,
    record_settlement,
)
from apps.ledger.services import expense_management
from apps.ledger.services.expense_management import policy_from_shares
from apps.ledger.services.exceptions import (
    ConflictError,
    CurrencyMismatchError,
    ExpenseAlreadySettledError,
    ExpenseNotFoundError,
    ExpenseVersionConflictError,
    GroupNotFoundError,
    InsufficientPermissionsError,
    InvalidAmountError,
    InvalidExpenseStateError,
    LedgerBusyError,
    UnknownMemberError,
)
from apps.ledger.splits import (
    EqualSplit,
    ExactSplit,
    PercentageSplit,
    SharesSplit,
    SplitMismatchError,
)

from .conftest import inr


def balances_of(group):
    return dict(Balance.objects.filter(group=group).values_list('member_id', 'amount_minor'))


@pytest.fixture
def dinner(group, alice, bob, carol):
    """300 INR paid by alice, split equally between the three members."""
    return create_expense(
        group_id=group.id,
        created_by=alice,
        paid_by_id=alice.id,
        title='Dinner',
        amount=inr('300'),
        policy=EqualSplit((alice.id, bob.id, carol.id)),
    )


# =============================================================================
# Create
# =============================================================================

@pytest.mark.django_db
class TestCreateExpense:
    """Tests for create_expense."""

    def test_equal_split_updates_balances(self, group, dinner, alice, bob, carol):
        assert dinner.status == ExpenseStatus.APPROVED
        assert dinner.amount_minor == 30000
        assert dinner.version == 1
        assert [s.amount_minor for s in dinner.get_shares()] == [10000, 10000, 10000]

        assert balances_of(group) == {alice.id: 20000, bob.id: -10000, carol.id: -10000}
        assert get_group_version(group_id=group.id) == 1

    def test_remainder_is_not_lost(self, group, alice, bob, carol):
        expense = create_expense(
            group_id=group.id,
            created_by=bob,
            paid_by_id=bob.id,
            title='Snacks',
            amount=inr('1.00'),
            policy=EqualSplit((alice.id, bob.id, carol.id)),
        )

        assert sum(s.amount_minor for s in expense.get_shares()) == 100
        assert sum(balances_of(group).values()) == 0
        assert balances_of(group)[bob.id] == 100 - ExpenseShare.objects.get(expense=expense, member=bob).amount_minor

    def test_exact_split(self, group, alice, bob):
        create_expense(
            group_id=group.id,
            created_by=alice,
            paid_by_id=bob.id,
            title='Tickets',
            amount=inr('100'),
            policy=ExactSplit(((alice.id, inr('60')), (bob.id, inr('40')))),
        )

        assert balances_of(group) == {alice.id: -6000, bob.id: 6000}

    def test_percentage_split_stores_weights(self, group, alice, bob):
        expense = create_expense(
            group_id=group.id,
            created_by=alice,
            paid_by_id=alice.id,
            title='Rent',
            amount=inr('1000'),
            policy=PercentageSplit(((alice.id, Decimal('70')), (bob.id, Decimal('30')))),
        )

        shares = expense.get_shares()
        assert [s.weight for s in shares] == [Decimal('70'), Decimal('30')]
        assert expense.split_policy == SplitPolicyType.PERCENTAGE
        assert balances_of(group) == {alice.id: 30000, bob.id: -30000}

    def test_shares_split(self, group, alice, bob, carol):
        create_expense(
            group_id=group.id,
            created_by=carol,
            paid_by_id=carol.id,
            title='Cabin',
            amount=inr('400'),
            policy=SharesSplit(((alice.id, 1), (bob.id, 1), (carol.id, 2))),
        )

        assert balances_of(group) == {alice.id: -10000, bob.id: -10000, carol.id: 20000}

    def test_split_error_writes_nothing(self, group, alice, bob):
        with pytest.raises(SplitMismatchError):
            create_expense(
                group_id=group.id,
                created_by=alice,
                paid_by_id=alice.id,
                title='Bad split',
                amount=inr('100'),
                policy=ExactSplit(((alice.id, inr('60')), (bob.id, inr('41')))),
            )

        assert not Expense.objects.exists()
        assert balances_of(group) == {}
        assert get_group_version(group_id=group.id) == 0

    def test_payer_must_be_active_member(self, group, alice, outsider):
        with pytest.raises(UnknownMemberError):
            create_expense(
                group_id=group.id,
                created_by=alice,
                paid_by_id=outsider.id,
                title='Lunch',
                amount=inr('10'),
                policy=EqualSplit((alice.id,)),
            )

        assert not Expense.objects.exists()

    def test_participant_must_be_active_member(self, group, alice, bob):
        GroupMembership.objects.filter(group=group, user=bob).update(is_active=False)

        with pytest.raises(UnknownMemberError) as exc_info:
            create_expense(
                group_id=group.id,
                created_by=alice,
                paid_by_id=alice.id,
                title='Lunch',
                amount=inr('10'),
                policy=EqualSplit((alice.id, bob.id)),
            )

        assert exc_info.value.member_id == bob.id

    def test_creator_must_be_member(self, group, alice, outsider):
        with pytest.raises(InsufficientPermissionsError):
            create_expense(
                group_id=group.id,
                created_by=outsider,
                paid_by_id=alice.id,
                title='Lunch',
                amount=inr('10'),
                policy=EqualSplit((alice.id,)),
            )

    def test_creator_needs_add_expense_permission(self, group, alice, bob):
        GroupMembership.objects.filter(group=group, user=bob).update(can_add_expenses=False)

        with pytest.raises(InsufficientPermissionsError):
            create_expense(
                group_id=group.id,
                created_by=bob,
                paid_by_id=bob.id,
                title='Lunch',
                amount=inr('10'),
                policy=EqualSplit((alice.id, bob.id)),
            )

    def test_amount_must_be_positive(self, group, alice):
        with pytest.raises(InvalidAmountError):
            create_expense(
                group_id=group.id,
                created_by=alice,
                paid_by_id=alice.id,
                title='Nothing',
                amount=inr('0'),
                policy=EqualSplit((alice.id,)),
            )

    def test_amount_must_be_in_group_currency(self, group, alice):
        with pytest.raises(CurrencyMismatchError):
            create_expense(
                group_id=group.id,
                created_by=alice,
                paid_by_id=alice.id,
                title='Abroad',
                amount=Money(1000, 'USD'),
                policy=EqualSplit((alice.id,)),
            )

    def test_unknown_group(self, alice):
        with pytest.raises(GroupNotFoundError):
            create_expense(
                group_id=uuid4(),
                created_by=alice,
                paid_by_id=alice.id,
                title='Lunch',
                amount=inr('10'),
                policy=EqualSplit((alice.id,)),
            )

    def test_stale_pinned_version_conflicts(self, group, alice, bob):
        """Both read version 0: the first wins, the second gets a conflict."""
        policy = EqualSplit((alice.id, bob.id))

        create_expense(
            group_id=group.id, created_by=alice, paid_by_id=alice.id,
            title='First', amount=inr('10'), policy=policy, expected_version=0,
        )
        with pytest.raises(ConflictError) as exc_info:
            create_expense(
                group_id=group.id, created_by=bob, paid_by_id=bob.id,
                title='Second', amount=inr('20'), policy=policy, expected_version=0,
            )

        assert exc_info.value.current_version == 1
        assert list(Expense.objects.values_list('title', flat=True)) == ['First']
        assert balances_of(group) == {alice.id: 500, bob.id: -500}

        # Retrying against the current version succeeds
        create_expense(
            group_id=group.id, created_by=bob, paid_by_id=bob.id,
            title='Second', amount=inr('20'), policy=policy, expected_version=1,
        )
        assert balances_of(group) == {alice.id: -500, bob.id: 500}

    def test_retries_exhausted(self, group, alice, settings):
        settings.LEDGER_MAX_RETRIES = 3

        with patch(
            'apps.ledger.services.expense_management.apply_delta_set',
            side_effect=ConflictError("stale"),
        ) as apply:
            with pytest.raises(LedgerBusyError):
                create_expense(
                    group_id=group.id,
                    created_by=alice,
                    paid_by_id=alice.id,
                    title='Lunch',
                    amount=inr('10'),
                    policy=EqualSplit((alice.id,)),
                )

        assert apply.call_count == 3
        assert not Expense.objects.exists()


# =============================================================================
# Update
# =============================================================================

@pytest.mark.django_db
class TestUpdateExpense:
    """Tests for update_expense."""

    def test_amount_change_reuses_split(self, group, dinner, alice, bob, carol):
        expense = update_expense(
            expense_id=dinner.id,
            user=alice,
            expected_version=1,
            amount=inr('600'),
        )

        assert expense.version == 2
        assert expense.amount_minor == 60000
        assert balances_of(group) == {alice.id: 40000, bob.id: -20000, carol.id: -20000}
        assert get_group_version(group_id=group.id) == 2

    def test_change_payer_and_policy(self, group, dinner, alice, bob, carol):
        update_expense(
            expense_id=dinner.id,
            user=alice,
            expected_version=1,
            paid_by_id=bob.id,
            policy=ExactSplit(((alice.id, inr('100')), (carol.id, inr('200')))),
        )

        assert balances_of(group) == {alice.id: -10000, bob.id: 30000, carol.id: -20000}
        assert dinner.shares.count() == 2

    def test_percentage_amount_change_keeps_weights(self, group, alice, bob):
        expense = create_expense(
            group_id=group.id,
            created_by=alice,
            paid_by_id=alice.id,
            title='Rent',
            amount=inr('100'),
            policy=PercentageSplit(((alice.id, Decimal('25')), (bob.id, Decimal('75')))),
        )

        update_expense(expense_id=expense.id, user=alice, expected_version=1, amount=inr('200'))

        assert balances_of(group) == {alice.id: 15000, bob.id: -15000}

    def test_text_only_edit_leaves_ledger_alone(self, group, dinner, alice):
        update_expense(expense_id=dinner.id, user=alice, expected_version=1, title='Late dinner')

        dinner.refresh_from_db()
        assert dinner.title == 'Late dinner'
        assert dinner.version == 2
        assert get_group_version(group_id=group.id) == 1

    def test_stale_expense_version(self, group, dinner, alice):
        update_expense(expense_id=dinner.id, user=alice, expected_version=1, title='Edit one')

        with pytest.raises(ExpenseVersionConflictError) as exc_info:
            update_expense(expense_id=dinner.id, user=alice, expected_version=1, amount=inr('10'))

        assert exc_info.value.current_version == 2
        assert balances_of(group)[alice.id] == 20000

    def test_only_creator_or_admin(self, group, dinner, alice, bob):
        with pytest.raises(InsufficientPermissionsError):
            update_expense(expense_id=dinner.id, user=bob, expected_version=1, title='Mine now')

        GroupMembership.objects.filter(group=group, user=bob).update(role=GroupRole.ADMIN)
        update_expense(expense_id=dinner.id, user=bob, expected_version=1, title='Admin edit')

    def test_settled_expense_cannot_be_edited(self, group, dinner, alice):
        mark_expense_settled(expense_id=dinner.id, user=alice)

        with pytest.raises(ExpenseAlreadySettledError):
            update_expense(expense_id=dinner.id, user=alice, expected_version=2, amount=inr('1'))

    def test_invalid_new_split_keeps_old_state(self, group, dinner, alice, bob, carol):
        with pytest.raises(SplitMismatchError):
            update_expense(
                expense_id=dinner.id,
                user=alice,
                expected_version=1,
                policy=ExactSplit(((alice.id, inr('1')),)),
            )

        dinner.refresh_from_db()
        assert dinner.version == 1
        assert dinner.shares.count() == 3
        assert balances_of(group) == {alice.id: 20000, bob.id: -10000, carol.id: -10000}

    def test_new_participant_must_be_active(self, group, dinner, alice, outsider):
        with pytest.raises(UnknownMemberError):
            update_expense(
                expense_id=dinner.id,
                user=alice,
                expected_version=1,
                policy=EqualSplit((alice.id, outsider.id)),
            )

    def test_unknown_expense(self, alice):
        with pytest.raises(ExpenseNotFoundError):
            update_expense(expense_id=uuid4(), user=alice, expected_version=1, title='x')


# =============================================================================
# Delete
# =============================================================================

@pytest.mark.django_db
class TestDeleteExpense:
    """Tests for delete_expense."""

    def test_delete_reverses_effect(self, group, dinner, alice, bob, carol):
        delete_expense(expense_id=dinner.id, user=alice)

        assert not Expense.objects.filter(id=dinner.id).exists()
        assert balances_of(group) == {alice.id: 0, bob.id: 0, carol.id: 0}
        assert get_group_version(group_id=group.id) == 2

    def test_settled_expense_cannot_be_deleted(self, group, dinner, alice):
        mark_expense_settled(expense_id=dinner.id, user=alice)
        before = balances_of(group)

        with pytest.raises(ExpenseAlreadySettledError):
            delete_expense(expense_id=dinner.id, user=alice)

        assert Expense.objects.filter(id=dinner.id).exists()
        assert balances_of(group) == before

    def test_delete_pending_has_no_ledger_effect(self, approval_group, alice, bob):
        expense = create_expense(
            group_id=approval_group.id,
            created_by=bob,
            paid_by_id=bob.id,
            title='Taxi',
            amount=inr('50'),
            policy=EqualSplit((alice.id, bob.id)),
        )

        delete_expense(expense_id=expense.id, user=bob)

        assert get_group_version(group_id=approval_group.id) == 0
        assert balances_of(approval_group) == {}

    def test_reversal_may_touch_former_members(self, group, alice, bob):
        expense = create_expense(
            group_id=group.id,
            created_by=alice,
            paid_by_id=alice.id,
            title='Groceries',
            amount=inr('100'),
            policy=EqualSplit((alice.id, bob.id)),
        )
        record_settlement(
            group_id=group.id,
            from_member_id=bob.id,
            to_member_id=alice.id,
            amount=inr('50'),
            recorded_by=bob,
        )
        GroupMembership.objects.filter(group=group, user=bob).update(is_active=False)

        delete_expense(expense_id=expense.id, user=alice)

        assert balances_of(group) == {alice.id: -5000, bob.id: 5000}

    def test_stale_expense_version(self, dinner, alice):
        with pytest.raises(ExpenseVersionConflictError):
            delete_expense(expense_id=dinner.id, user=alice, expected_version=7)

        assert Expense.objects.filter(id=dinner.id).exists()

    def test_stale_ledger_version(self, group, dinner, alice):
        with pytest.raises(ConflictError):
            delete_expense(expense_id=dinner.id, user=alice, expected_ledger_version=0)

        assert Expense.objects.filter(id=dinner.id).exists()
        assert get_group_version(group_id=group.id) == 1

    def test_only_creator_or_admin(self, dinner, carol):
        with pytest.raises(InsufficientPermissionsError):
            delete_expense(expense_id=dinner.id, user=carol)


# =============================================================================
# Approval workflow
# =============================================================================

@pytest.mark.django_db
class TestApprovalWorkflow:
    """Tests for approve, reject and settle."""

    @pytest.fixture
    def pending(self, approval_group, alice, bob):
        return create_expense(
            group_id=approval_group.id,
            created_by=bob,
            paid_by_id=bob.id,
            title='Taxi',
            amount=inr('50'),
            policy=EqualSplit((alice.id, bob.id)),
        )

    def test_pending_expense_has_no_effect(self, approval_group, pending):
        assert pending.status == ExpenseStatus.PENDING
        assert balances_of(approval_group) == {}
        assert get_group_version(group_id=approval_group.id) == 0

    def test_approve_applies_effect(self, approval_group, pending, alice, bob):
        expense = approve_expense(expense_id=pending.id, user=alice)

        assert expense.status == ExpenseStatus.APPROVED
        assert expense.approved_by == alice
        assert expense.approved_at is not None
        assert balances_of(approval_group) == {alice.id: -2500, bob.id: 2500}

    def test_only_admin_approves(self, pending, bob):
        with pytest.raises(InsufficientPermissionsError):
            approve_expense(expense_id=pending.id, user=bob)

    def test_cannot_approve_twice(self, pending, alice):
        approve_expense(expense_id=pending.id, user=alice)

        with pytest.raises(InvalidExpenseStateError):
            approve_expense(expense_id=pending.id, user=alice)

    def test_reject(self, approval_group, pending, alice):
        expense = reject_expense(expense_id=pending.id, user=alice, reason='Duplicate')

        assert expense.status == ExpenseStatus.REJECTED
        assert expense.rejection_reason == 'Duplicate'
        assert balances_of(approval_group) == {}

    def test_rejected_expense_cannot_be_approved(self, pending, alice):
        reject_expense(expense_id=pending.id, user=alice)

        with pytest.raises(InvalidExpenseStateError):
            approve_expense(expense_id=pending.id, user=alice)

    def test_only_approved_expense_can_be_settled(self, pending, bob):
        with pytest.raises(InvalidExpenseStateError):
            mark_expense_settled(expense_id=pending.id, user=bob)

    def test_settle_keeps_effect(self, group, dinner, alice, bob, carol):
        expense = mark_expense_settled(expense_id=dinner.id, user=alice)

        assert expense.status == ExpenseStatus.SETTLED
        assert expense.settled_at is not None
        assert balances_of(group) == {alice.id: 20000, bob.id: -10000, carol.id: -10000}


# =============================================================================
# Queries
# =============================================================================

@pytest.mark.django_db
class TestExpenseQueries:

    def test_group_expenses_filter_by_status(self, group, dinner, alice):
        assert list(get_group_expenses(group_id=group.id)) == [dinner]
        assert list(get_group_expenses(group_id=group.id, status=ExpenseStatus.PENDING)) == []

    def test_get_expense_scoped_to_group(self, group, other_group, dinner):
        assert get_expense_by_id(expense_id=dinner.id, group_id=group.id) == dinner

        with pytest.raises(ExpenseNotFoundError):
            get_expense_by_id(expense_id=dinner.id, group_id=other_group.id)

    def test_policy_from_shares(self, group, alice, bob):
        expense = create_expense(
            group_id=group.id,
            created_by=alice,
            paid_by_id=alice.id,
            title='Cabin',
            amount=inr('90'),
            policy=SharesSplit(((alice.id, 2), (bob.id, 1))),
        )

        policy = policy_from_shares(expense, expense.get_shares())

        assert policy == SharesSplit(((alice.id, 2), (bob.id, 1)))


# =============================================================================
# Concurrency Tests (Race Conditions)
# =============================================================================

@pytest.mark.django_db(transaction=True)
class TestConcurrentWriters:
    """
    Two writers in separate threads, each on its own database connection.

    Both validate against the same ledger version before either writes; the
    writes then commit one after the other (SQLite allows a single writer).
    """

    def test_same_version_one_wins_one_conflicts(self, group, alice, bob, carol):
        version = get_group_version(group_id=group.id)
        everyone = EqualSplit((alice.id, bob.id, carol.id))
        both_validated = threading.Barrier(2, timeout=10)
        first_done = threading.Event()
        real_check = expense_management._check_active_members

        def check_then_wait(group_obj, member_ids):
            real_check(group_obj, member_ids)
            both_validated.wait()
            if threading.current_thread().name == 'second':
                first_done.wait(timeout=10)

        results = []
        conflicts = []
        errors = []

        def add_expense(user, title, amount):
            try:
                expense = create_expense(
                    group_id=group.id,
                    created_by=user,
                    paid_by_id=user.id,
                    title=title,
                    amount=inr(amount),
                    policy=everyone,
                    expected_version=version,
                )
                results.append(expense.title)
            except ConflictError as e:
                conflicts.append((title, e))
            except Exception as e:
                errors.append((title, f"Unexpected error: {e!r}"))
            finally:
                if threading.current_thread().name == 'first':
                    first_done.set()
                connection.close()

        threads = [
            threading.Thread(target=add_expense, args=(alice, 'Groceries', '300'), name='first'),
            threading.Thread(target=add_expense, args=(bob, 'Taxi', '90'), name='second'),
        ]
        with patch(
            'apps.ledger.services.expense_management._check_active_members',
            side_effect=check_then_wait,
        ):
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        assert errors == []
        assert results == ['Groceries']
        assert len(conflicts) == 1
        title, error = conflicts[0]
        assert title == 'Taxi'
        assert error.expected_version == version
        assert error.current_version == version + 1
        assert balances_of(group) == {alice.id: 20000, bob.id: -10000, carol.id: -10000}

        # The loser retries against fresh state
        create_expense(
            group_id=group.id, created_by=bob, paid_by_id=bob.id,
            title='Taxi', amount=inr('90'), policy=everyone,
        )

        assert sum(balances_of(group).values()) == 0
        assert balances_of(group) == {alice.id: 17000, bob.id: -4000, carol.id: -13000}
        assert get_group_version(group_id=group.id) == version + 2

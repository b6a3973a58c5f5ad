from django.core.validators import MinValueValidator
from django.db import models
import uuid

from .money import Money


class ExpenseCategory(models.TextChoices):
    FOOD = 'food', 'Food'
    TRANSPORT = 'transport', 'Transport'
    ENTERTAINMENT = 'entertainment', 'Entertainment'
    SHOPPING = 'shopping', 'Shopping'
    BILLS = 'bills', 'Bills'
    HEALTH = 'health', 'Health'
    TRAVEL = 'travel', 'Travel'
    GROCERIES = 'groceries', 'Groceries'
    HOME = 'home', 'Home'
    GIFTS = 'gifts', 'Gifts'
    OTHER = 'other', 'Other'


class ExpenseStatus(models.TextChoices):
    PENDING = 'pending', 'Pending approval'
    APPROVED = 'approved', 'Approved'
    REJECTED = 'rejected', 'Rejected'
    SETTLED = 'settled', 'Settled'


class SplitPolicyType(models.TextChoices):
    EQUAL = 'equal', 'Equal'
    EXACT = 'exact', 'Exact amounts'
    PERCENTAGE = 'percentage', 'Percentage'
    BY_SHARES = 'by_shares', 'By shares'


class SettlementStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class Expense(models.Model):
    """
    Shared expense paid by one member and split across participants.

    Only approved and settled expenses count towards balances. ``version``
    is bumped on every edit so concurrent editors can detect each other.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    group = models.ForeignKey(
        'groups.Group',
        on_delete=models.CASCADE,
        related_name='expenses'
    )
    created_by = models.ForeignKey(
        'accounts.User',
        on_delete=models.PROTECT,
        related_name='expenses_created'
    )
    paid_by = models.ForeignKey(
        'accounts.User',
        on_delete=models.PROTECT,
        related_name='expenses_paid'
    )

    title = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    category = models.CharField(
        max_length=20,
        choices=ExpenseCategory.choices,
        default=ExpenseCategory.OTHER
    )
    date = models.DateField()

    # Amount in minor currency units
    amount_minor = models.BigIntegerField(validators=[MinValueValidator(1)])
    currency = models.CharField(max_length=3)
    split_policy = models.CharField(
        max_length=20,
        choices=SplitPolicyType.choices,
        default=SplitPolicyType.EQUAL
    )

    # Workflow
    status = models.CharField(
        max_length=20,
        choices=ExpenseStatus.choices,
        default=ExpenseStatus.APPROVED
    )
    approved_by = models.ForeignKey(
        'accounts.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='expenses_approved'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.CharField(max_length=200, blank=True)
    settled_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(default=1)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'expenses'
        indexes = [
            models.Index(fields=['group', 'date'], name='expenses_group_date_idx'),
            models.Index(fields=['group', 'status'], name='expenses_group_status_idx'),
            models.Index(fields=['paid_by', 'date'], name='expenses_paid_by_date_idx'),
        ]
        ordering = ['-date', '-created_at']

    def __str__(self):
        return f"{self.title} - {self.total} ({self.status})"

    @property
    def total(self):
        return Money(self.amount_minor, self.currency)

    @property
    def affects_balances(self):
        """Approved and settled expenses are reflected in balances."""
        return self.status in (ExpenseStatus.APPROVED, ExpenseStatus.SETTLED)

    def get_shares(self):
        """Stored shares in their original participant order."""
        return list(self.shares.order_by('position'))


class ExpenseShare(models.Model):
    """One participant's portion of an expense."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    expense = models.ForeignKey(
        Expense,
        on_delete=models.CASCADE,
        related_name='shares'
    )
    member = models.ForeignKey(
        'accounts.User',
        on_delete=models.PROTECT,
        related_name='expense_shares'
    )
    amount_minor = models.BigIntegerField()

    # Percentage or share count the amount was derived from (None for equal/exact)
    weight = models.DecimalField(max_digits=9, decimal_places=2, null=True, blank=True)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'expense_shares'
        unique_together = [['expense', 'member']]
        indexes = [
            models.Index(fields=['member'], name='expense_shares_member_idx'),
        ]
        ordering = ['position']

    def __str__(self):
        return f"{self.member.get_display_name()} owes {self.amount} for {self.expense.title}"

    @property
    def amount(self):
        return Money(self.amount_minor, self.expense.currency)


class Balance(models.Model):
    """
    A member's running net position within a group.

    Positive means the group owes the member, negative means the member owes
    the group. Rows are only written through the balance ledger service,
    never directly, so the per-group sum stays at exactly zero.
    """

    id = models.BigAutoField(primary_key=True)

    group = models.ForeignKey(
        'groups.Group',
        on_delete=models.CASCADE,
        related_name='balances'
    )
    member = models.ForeignKey(
        'accounts.User',
        on_delete=models.PROTECT,
        related_name='ledger_balances'
    )
    amount_minor = models.BigIntegerField(default=0)
    currency = models.CharField(max_length=3)
    version = models.PositiveBigIntegerField(default=0)

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'balances'
        unique_together = [['group', 'member']]
        indexes = [
            models.Index(fields=['member'], name='balances_member_idx'),
        ]
        ordering = ['group', 'member']

    def __str__(self):
        return f"{self.member.get_display_name()}: {self.amount}"

    @property
    def amount(self):
        return Money(self.amount_minor, self.currency)


class Settlement(models.Model):
    """
    A payment from one member to another, recorded against the group ledger.

    Completed settlements are part of the append-only settlement log and
    are never changed afterwards.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    group = models.ForeignKey(
        'groups.Group',
        on_delete=models.CASCADE,
        related_name='settlements'
    )
    from_member = models.ForeignKey(
        'accounts.User',
        on_delete=models.PROTECT,
        related_name='settlements_paid'
    )
    to_member = models.ForeignKey(
        'accounts.User',
        on_delete=models.PROTECT,
        related_name='settlements_received'
    )

    amount_minor = models.BigIntegerField(validators=[MinValueValidator(1)])
    currency = models.CharField(max_length=3)

    # Optional link to the expense this payment squares up
    expense = models.ForeignKey(
        Expense,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='settlements'
    )
    description = models.CharField(max_length=200, blank=True)

    status = models.CharField(
        max_length=20,
        choices=SettlementStatus.choices,
        default=SettlementStatus.PENDING
    )
    created_by = models.ForeignKey(
        'accounts.User',
        on_delete=models.PROTECT,
        related_name='settlements_created'
    )

    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'settlements'
        indexes = [
            models.Index(fields=['group', 'status'], name='settlements_group_status_idx'),
            models.Index(fields=['from_member', 'created_at'], name='settlements_from_idx'),
            models.Index(fields=['to_member', 'created_at'], name='settlements_to_idx'),
        ]
        ordering = ['-created_at']

    def __str__(self):
        return (
            f"{self.from_member.get_display_name()} -> "
            f"{self.to_member.get_display_name()}: {self.amount} ({self.status})"
        )

    @property
    def amount(self):
        return Money(self.amount_minor, self.currency)

    @property
    def is_final(self):
        return self.status in (SettlementStatus.COMPLETED, SettlementStatus.CANCELLED)

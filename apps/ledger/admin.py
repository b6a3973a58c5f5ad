# ==========================================
# apps/ledger/admin.py
# ==========================================

from django.contrib import admin
from django.utils.html import format_html
from .models import Expense, ExpenseShare, Balance, Settlement, ExpenseStatus, SettlementStatus


STATUS_COLORS = {
    ExpenseStatus.PENDING: ('#E5C49A', '#2C1810'),
    ExpenseStatus.APPROVED: ('#6B8E5E', 'white'),
    ExpenseStatus.REJECTED: ('#B85C5C', 'white'),
    ExpenseStatus.SETTLED: ('#A47449', 'white'),
    SettlementStatus.COMPLETED: ('#6B8E5E', 'white'),
    SettlementStatus.CANCELLED: ('#B85C5C', 'white'),
}


def status_badge(obj):
    """Display status as colored badge."""
    bg, fg = STATUS_COLORS.get(obj.status, ('#ccc', '#666'))
    return format_html(
        '<span style="background: {}; color: {}; padding: 3px 8px; '
        'border-radius: 10px; font-size: 11px;">{}</span>',
        bg, fg, obj.get_status_display()
    )
status_badge.short_description = 'Status'


class ExpenseShareInline(admin.TabularInline):
    """Inline admin for expense shares within an expense."""
    model = ExpenseShare
    extra = 0
    fields = ['member', 'amount_minor', 'weight', 'position']
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        """Shares are created by the expense service only."""
        return False


class ReadOnlyLedgerAdmin(admin.ModelAdmin):
    """
    Ledger rows change only through the ledger services, which keep the
    balances zero-sum. The admin is for inspection.
    """

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Expense)
class ExpenseAdmin(ReadOnlyLedgerAdmin):
    list_display = ['title', 'group', 'paid_by', 'get_amount', 'split_policy', status_badge, 'date']
    list_filter = ['status', 'split_policy', 'category', 'date']
    search_fields = ['title', 'description', 'group__name', 'paid_by__email']
    date_hierarchy = 'date'
    inlines = [ExpenseShareInline]

    def get_amount(self, obj):
        return str(obj.total)
    get_amount.short_description = 'Amount'


@admin.register(Balance)
class BalanceAdmin(ReadOnlyLedgerAdmin):
    list_display = ['member', 'group', 'get_amount', 'version', 'updated_at']
    list_filter = ['currency']
    search_fields = ['member__email', 'group__name']

    def get_amount(self, obj):
        return str(obj.amount)
    get_amount.short_description = 'Balance'


@admin.register(Settlement)
class SettlementAdmin(ReadOnlyLedgerAdmin):
    list_display = ['from_member', 'to_member', 'group', 'get_amount', status_badge, 'created_at']
    list_filter = ['status', 'created_at']
    search_fields = ['from_member__email', 'to_member__email', 'group__name', 'description']

    def get_amount(self, obj):
        return str(obj.amount)
    get_amount.short_description = 'Amount'

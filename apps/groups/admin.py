# ==========================================
# apps/groups/admin.py
# ==========================================

from django.contrib import admin
from apps.groups.models import Group, GroupMembership


class GroupMembershipInline(admin.TabularInline):
    """Inline admin for group memberships."""
    model = GroupMembership
    extra = 0
    fields = ['user', 'role', 'can_add_expenses', 'is_active', 'joined_at', 'deactivated_at']
    readonly_fields = ['joined_at', 'deactivated_at']

    def has_delete_permission(self, request, obj=None):
        """Memberships are deactivated, never deleted."""
        return False


@admin.register(Group)
class GroupAdmin(admin.ModelAdmin):
    """Admin interface for Groups."""

    list_display = [
        'name',
        'owner',
        'member_count',
        'currency',
        'ledger_version',
        'expense_approval_required',
        'created_at'
    ]
    list_filter = ['currency', 'expense_approval_required', 'is_private', 'created_at']
    search_fields = ['name', 'description', 'owner__email', 'invite_code']
    readonly_fields = ['invite_code', 'ledger_version', 'created_at', 'updated_at']
    inlines = [GroupMembershipInline]
    date_hierarchy = 'created_at'
    ordering = ['-created_at']

    fieldsets = (
        ('Basic Information', {
            'fields': ('name', 'description', 'owner', 'is_private')
        }),
        ('Ledger', {
            'fields': ('currency', 'ledger_version', 'expense_approval_required')
        }),
        ('Invitation', {
            'fields': ('invite_code',)
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    def member_count(self, obj):
        """Show number of active members."""
        return obj.memberships.filter(is_active=True).count()
    member_count.short_description = 'Members'


@admin.register(GroupMembership)
class GroupMembershipAdmin(admin.ModelAdmin):
    """Admin interface for Group Memberships."""

    list_display = ['user', 'group', 'role', 'is_active', 'joined_at']
    list_filter = ['role', 'is_active', 'joined_at']
    search_fields = ['user__email', 'group__name']
    readonly_fields = ['joined_at', 'deactivated_at']
    date_hierarchy = 'joined_at'
    ordering = ['-joined_at']

    def get_queryset(self, request):
        """Optimize query."""
        qs = super().get_queryset(request)
        return qs.select_related('user', 'group')

# ==========================================
# apps/groups/models.py
# ==========================================

from django.conf import settings
from django.db import models
import uuid
import secrets


def default_ledger_currency():
    return getattr(settings, 'LEDGER_DEFAULT_CURRENCY', 'INR')


class GroupRole(models.TextChoices):
    OWNER = 'owner', 'Owner'
    ADMIN = 'admin', 'Admin'
    MEMBER = 'member', 'Member'


class Group(models.Model):
    """
    Expense-sharing group.

    A group exclusively owns its ledger: the balances, the settlement log and
    the group-wide ledger version used for optimistic concurrency control.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    is_private = models.BooleanField(default=True)
    invite_code = models.CharField(max_length=16, unique=True, db_index=True, editable=False)
    owner = models.ForeignKey('accounts.User', on_delete=models.CASCADE, related_name='owned_groups')

    # Ledger
    currency = models.CharField(max_length=3, default=default_ledger_currency)
    ledger_version = models.PositiveBigIntegerField(default=0, editable=False)
    expense_approval_required = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'groups'
        indexes = [
            models.Index(fields=['owner', 'created_at'], name='groups_owner_created_idx'),
        ]
        ordering = ['-created_at']

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.invite_code:
            self.invite_code = secrets.token_urlsafe(12)[:16]
        super().save(*args, **kwargs)

    def has_member(self, user):
        """True if the user holds an active membership."""
        return self.memberships.filter(user=user, is_active=True).exists()

    def get_membership(self, user):
        try:
            return self.memberships.get(user=user, is_active=True)
        except GroupMembership.DoesNotExist:
            return None

    def get_user_role(self, user):
        membership = self.get_membership(user)
        return membership.role if membership else None

    def is_admin(self, user):
        role = self.get_user_role(user)
        return role in [GroupRole.OWNER, GroupRole.ADMIN]


class GroupMembership(models.Model):
    """
    User membership in a group with role and permission flags.

    Memberships are deactivated rather than deleted so that historical
    ledger entries keep pointing at a real member.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey('accounts.User', on_delete=models.CASCADE, related_name='group_memberships')
    group = models.ForeignKey(Group, on_delete=models.CASCADE, related_name='memberships')
    role = models.CharField(max_length=20, choices=GroupRole.choices, default=GroupRole.MEMBER)
    can_add_expenses = models.BooleanField(default=True)
    is_active = models.BooleanField(default=True)
    joined_at = models.DateTimeField(auto_now_add=True)
    deactivated_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'group_memberships'
        unique_together = [['user', 'group']]
        indexes = [
            models.Index(fields=['group', 'is_active'], name='memberships_group_active_idx'),
            models.Index(fields=['user', 'joined_at'], name='memberships_user_joined_idx'),
        ]
        ordering = ['joined_at']

    def __str__(self):
        return f"{self.user.get_display_name()} in {self.group.name} ({self.role})"

    def save(self, *args, **kwargs):
        if self.group.owner_id == self.user_id:
            self.role = GroupRole.OWNER
        super().save(*args, **kwargs)

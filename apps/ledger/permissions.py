"""
Custom permission classes for the ledger app.

Every ledger endpoint is nested under a group (``group_id`` URL kwarg);
only active members of that group may read or write its ledger. Finer
rules (creator or admin for edits, admin for approvals) are enforced by the
services.
"""
from rest_framework.exceptions import NotFound
from rest_framework.permissions import BasePermission

from apps.groups.models import Group


class IsLedgerGroupMember(BasePermission):
    """
    Permission to access a group's ledger.

    Usage:
        class ExpenseViewSet(viewsets.GenericViewSet):
            permission_classes = [IsAuthenticated, IsLedgerGroupMember]
    """

    message = 'You must be a member of this group to access its ledger.'

    def has_permission(self, request, view):
        group_id = view.kwargs.get('group_id')
        try:
            group = Group.objects.get(id=group_id)
        except Group.DoesNotExist:
            raise NotFound('Group not found.')
        return group.has_member(request.user)

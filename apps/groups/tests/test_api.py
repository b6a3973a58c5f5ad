import pytest
from django.urls import reverse
from rest_framework import status
from apps.groups.models import Group, GroupMembership, GroupRole


def detail_url(group, action=None):
    if action is None:
        return reverse('groups:group-detail', kwargs={'pk': group.id})
    return reverse(f"groups:group-{action.replace('_', '-')}", kwargs={'pk': group.id})


# =============================================================================
# Group CRUD Tests
# =============================================================================

@pytest.mark.django_db
class TestGroupList:
    """Tests for GET /api/groups/"""

    def test_list_groups_returns_user_groups(self, authenticated_client, group):
        """List returns only groups where user is a member."""
        url = reverse('groups:group-list')
        response = authenticated_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert 'results' in response.data
        assert len(response.data['results']) == 1
        assert response.data['results'][0]['name'] == group.name
        assert response.data['results'][0]['currency'] == 'INR'

    def test_list_groups_excludes_non_member_groups(self, other_client, group):
        """Non-members don't see group in list."""
        url = reverse('groups:group-list')
        response = other_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert len(response.data['results']) == 0

    def test_list_groups_excludes_groups_left(self, member_client, group_with_members, member_user):
        GroupMembership.objects.filter(group=group_with_members, user=member_user).update(is_active=False)

        response = member_client.get(reverse('groups:group-list'))

        assert len(response.data['results']) == 0

    def test_list_groups_unauthenticated(self, api_client):
        """Unauthenticated users cannot list groups."""
        url = reverse('groups:group-list')
        response = api_client.get(url)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.django_db
class TestGroupCreate:
    """Tests for POST /api/groups/"""

    def test_create_group(self, authenticated_client, group_owner):
        """Create a new group."""
        url = reverse('groups:group-list')
        data = {
            'name': 'Weekend Trip',
            'description': 'Cabin and groceries',
            'currency': 'EUR',
            'expense_approval_required': True,
        }
        response = authenticated_client.post(url, data, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['currency'] == 'EUR'
        assert response.data['ledger_version'] == 0
        assert response.data['user_role'] == GroupRole.OWNER
        assert response.data['member_count'] == 1

        group = Group.objects.get(name='Weekend Trip')
        assert group.owner == group_owner
        assert group.expense_approval_required is True
        assert group.get_user_role(group_owner) == GroupRole.OWNER

    def test_create_group_default_currency(self, authenticated_client, settings):
        settings.LEDGER_DEFAULT_CURRENCY = 'INR'
        response = authenticated_client.post(reverse('groups:group-list'), {'name': 'Flat'}, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['currency'] == 'INR'
        assert len(response.data['invite_code']) == 16

    def test_create_group_unknown_currency(self, authenticated_client):
        response = authenticated_client.post(
            reverse('groups:group-list'),
            {'name': 'Flat', 'currency': 'XYZ'},
            format='json',
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'currency' in response.data

    def test_create_group_unauthenticated(self, api_client):
        """Unauthenticated users cannot create groups."""
        url = reverse('groups:group-list')
        response = api_client.post(url, {'name': 'Unauthorized Group'})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.django_db
class TestGroupDetail:
    """Tests for GET/PATCH/DELETE /api/groups/{id}/"""

    def test_retrieve_group(self, member_client, group_with_members):
        response = member_client.get(detail_url(group_with_members))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['member_count'] == 3
        assert response.data['user_role'] == GroupRole.MEMBER

    def test_retrieve_group_non_member(self, other_client, group):
        response = other_client.get(detail_url(group))

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_update_group_as_admin(self, admin_client, group_with_members):
        response = admin_client.patch(
            detail_url(group_with_members),
            {'name': 'Renamed', 'expense_approval_required': True},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['name'] == 'Renamed'
        assert response.data['expense_approval_required'] is True

    def test_update_group_as_member(self, member_client, group_with_members):
        response = member_client.patch(detail_url(group_with_members), {'name': 'Nope'}, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert 'error' in response.data

    def test_update_currency_after_entries(self, authenticated_client, group, unsettled_member):
        response = authenticated_client.patch(detail_url(group), {'currency': 'EUR'}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        group.refresh_from_db()
        assert group.currency == 'INR'

    def test_delete_group(self, authenticated_client, group):
        response = authenticated_client.delete(detail_url(group))

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert not Group.objects.filter(id=group.id).exists()

    def test_delete_group_as_admin(self, admin_client, group_with_members):
        response = admin_client.delete(detail_url(group_with_members))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_delete_group_with_unsettled_balances(self, authenticated_client, group, unsettled_member):
        response = authenticated_client.delete(detail_url(group))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert Group.objects.filter(id=group.id).exists()


# =============================================================================
# Membership Tests
# =============================================================================

@pytest.mark.django_db
class TestGroupMembers:
    """Tests for the membership actions."""

    def test_members(self, member_client, group_with_members):
        response = member_client.get(detail_url(group_with_members, 'members'))

        assert response.status_code == status.HTTP_200_OK
        assert len(response.data) == 3
        assert {m['role'] for m in response.data} == {GroupRole.OWNER, GroupRole.ADMIN, GroupRole.MEMBER}

    def test_join_with_invite_code(self, other_client, group, group_other_user):
        response = other_client.post(
            detail_url(group, 'join'),
            {'invite_code': group.invite_code},
            format='json',
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['role'] == GroupRole.MEMBER
        assert group.has_member(group_other_user)

    def test_join_with_wrong_code(self, other_client, group):
        response = other_client.post(
            detail_url(group, 'join'),
            {'invite_code': 'wrongcode123'},
            format='json',
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_add_member(self, authenticated_client, group, group_other_user):
        response = authenticated_client.post(
            detail_url(group, 'add_member'),
            {'user_id': str(group_other_user.id)},
            format='json',
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['user']['id'] == str(group_other_user.id)

    def test_add_member_as_member(self, member_client, group_with_members, group_other_user):
        response = member_client.post(
            detail_url(group_with_members, 'add_member'),
            {'user_id': str(group_other_user.id)},
            format='json',
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_leave(self, member_client, group_with_members, member_user):
        response = member_client.post(detail_url(group_with_members, 'leave'))

        assert response.status_code == status.HTTP_204_NO_CONTENT
        membership = GroupMembership.objects.get(group=group_with_members, user=member_user)
        assert membership.is_active is False

    def test_owner_cannot_leave(self, authenticated_client, group):
        response = authenticated_client.post(detail_url(group, 'leave'))

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_leave_with_unsettled_balance(self, member_client, group, unsettled_member):
        response = member_client.post(detail_url(group, 'leave'))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert group.has_member(unsettled_member)

    def test_update_member_role(self, authenticated_client, group_with_members, member_user):
        response = authenticated_client.post(
            detail_url(group_with_members, 'update_member_role'),
            {'user_id': str(member_user.id), 'role': GroupRole.ADMIN},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['role'] == GroupRole.ADMIN

    def test_update_owner_role(self, admin_client, group_with_members, group_owner):
        response = admin_client.post(
            detail_url(group_with_members, 'update_member_role'),
            {'user_id': str(group_owner.id), 'role': GroupRole.MEMBER},
            format='json',
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_remove_member(self, admin_client, group_with_members, member_user):
        response = admin_client.post(
            detail_url(group_with_members, 'remove_member'),
            {'user_id': str(member_user.id)},
            format='json',
        )

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert not group_with_members.has_member(member_user)

    def test_remove_member_with_unsettled_balance(self, authenticated_client, group, unsettled_member):
        response = authenticated_client.post(
            detail_url(group, 'remove_member'),
            {'user_id': str(unsettled_member.id)},
            format='json',
        )

        assert response.status_code == status.HTTP_409_CONFLICT


@pytest.mark.django_db
class TestMyGroups:
    """Tests for GET /api/groups/my/"""

    def test_my_groups(self, member_client, group_with_members):
        response = member_client.get(reverse('groups:my-groups'))

        assert response.status_code == status.HTTP_200_OK
        assert [g['name'] for g in response.data] == [group_with_members.name]

    def test_my_groups_unauthenticated(self, api_client):
        response = api_client.get(reverse('groups:my-groups'))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.django_db
class TestExpensePermission:
    """Tests for POST /api/groups/{id}/expense_permission/"""

    def test_admin_revokes_permission(self, admin_client, group_with_members, member_user):
        response = admin_client.post(
            detail_url(group_with_members, 'expense_permission'),
            {'user_id': str(member_user.id), 'can_add_expenses': False},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['can_add_expenses'] is False

    def test_member_cannot_change_permission(self, member_client, group_with_members, admin_user):
        response = member_client.post(
            detail_url(group_with_members, 'expense_permission'),
            {'user_id': str(admin_user.id), 'can_add_expenses': False},
            format='json',
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

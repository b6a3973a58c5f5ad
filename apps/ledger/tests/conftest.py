import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from apps.accounts.models import User
from apps.groups.models import Group, GroupMembership, GroupRole
from apps.ledger.money import Money


def inr(text):
    """Shorthand for INR amounts in tests."""
    return Money.from_decimal_string(text, 'INR')


def client_for(user):
    """Return an API client authenticated as ``user`` using JWT."""
    client = APIClient()
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return client


@pytest.fixture
def api_client():
    """Return an unauthenticated API client."""
    return APIClient()


@pytest.fixture
def alice(db):
    """Group owner."""
    return User.objects.create_user(
        email='alice@example.com',
        password='TestPass123!',
        display_name='Alice',
    )


@pytest.fixture
def bob(db):
    return User.objects.create_user(
        email='bob@example.com',
        password='TestPass123!',
        display_name='Bob',
    )


@pytest.fixture
def carol(db):
    return User.objects.create_user(
        email='carol@example.com',
        password='TestPass123!',
        display_name='Carol',
    )


@pytest.fixture
def dave(db):
    return User.objects.create_user(
        email='dave@example.com',
        password='TestPass123!',
        display_name='Dave',
    )


@pytest.fixture
def outsider(db):
    """A user who belongs to no group."""
    return User.objects.create_user(
        email='outsider@example.com',
        password='TestPass123!',
        display_name='Outsider',
    )


@pytest.fixture
def group(db, alice, bob, carol):
    """INR group owned by alice, with bob and carol as members."""
    group = Group.objects.create(
        name='Flatmates',
        description='Rent and groceries',
        owner=alice,
        currency='INR',
    )
    GroupMembership.objects.create(user=alice, group=group, role=GroupRole.OWNER)
    GroupMembership.objects.create(user=bob, group=group, role=GroupRole.MEMBER)
    GroupMembership.objects.create(user=carol, group=group, role=GroupRole.MEMBER)
    return group


@pytest.fixture
def approval_group(group):
    """The same group, with expense approval switched on."""
    group.expense_approval_required = True
    group.save(update_fields=['expense_approval_required'])
    return group


@pytest.fixture
def other_group(db, outsider):
    """A second group the main members are not part of."""
    group = Group.objects.create(name='Elsewhere', owner=outsider, currency='INR')
    GroupMembership.objects.create(user=outsider, group=group, role=GroupRole.OWNER)
    return group


@pytest.fixture
def alice_client(alice):
    return client_for(alice)


@pytest.fixture
def bob_client(bob):
    return client_for(bob)


@pytest.fixture
def outsider_client(outsider):
    return client_for(outsider)

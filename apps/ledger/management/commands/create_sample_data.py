"""
Management command to create sample data for trying out the API.

Usage:
    python manage.py create_sample_data

This creates:
- 4 users (admin, alice, bob, charlie)
- 2 groups (Flatmates, Weekend Trip)
- Expenses using every split policy
- A completed and a pending settlement
"""

from datetime import date, timedelta

from django.core.management.base import BaseCommand
from django.db import transaction

from apps.accounts.models import User
from apps.groups.models import Group
from apps.groups.services import create_group, add_member
from apps.ledger.models import ExpenseCategory
from apps.ledger.money import Money
from apps.ledger.splits import EqualSplit, ExactSplit, PercentageSplit, SharesSplit
from apps.ledger.services import (
    create_expense,
    record_settlement,
    request_settlement,
    get_group_balances,
)


class Command(BaseCommand):
    help = 'Create sample data for testing the API'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before creating new sample data',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self.clear_data()

        self.stdout.write('Creating sample data...')

        users = self.create_users()
        flat, trip = self.create_groups(users)
        self.create_expenses(users, flat, trip)
        self.create_settlements(users, flat)

        self.stdout.write(self.style.SUCCESS('Sample data created successfully!'))
        for group in (flat, trip):
            state = get_group_balances(group_id=group.id)
            self.stdout.write(f'  {group.name} (ledger version {state.version}):')
            for balance in state.balances:
                member = User.objects.get(id=balance.member_id)
                self.stdout.write(f'    {member.get_display_name():<10} {balance.amount}')

        self.stdout.write('')
        self.stdout.write('Test accounts:')
        self.stdout.write('  admin@example.com / admin123 (superuser)')
        self.stdout.write('  alice@example.com / password123')
        self.stdout.write('  bob@example.com / password123')
        self.stdout.write('  charlie@example.com / password123')

    def clear_data(self):
        """Clear sample groups (with their ledgers) and users."""
        emails = ['admin@example.com', 'alice@example.com', 'bob@example.com', 'charlie@example.com']
        # Cascades to memberships, expenses, balances and settlements
        Group.objects.filter(owner__email__in=emails).delete()
        User.objects.filter(email__in=emails).delete()

    def create_users(self):
        """Create test users."""
        self.stdout.write('  Creating users...')

        admin, _ = User.objects.get_or_create(
            email='admin@example.com',
            defaults={
                'display_name': 'Admin User',
                'is_staff': True,
                'is_superuser': True,
            }
        )
        admin.set_password('admin123')
        admin.save()

        users = {'admin': admin}
        for key, display_name in [('alice', 'Alice'), ('bob', 'Bob'), ('charlie', 'Charlie')]:
            user, _ = User.objects.get_or_create(
                email=f'{key}@example.com',
                defaults={'display_name': display_name}
            )
            user.set_password('password123')
            user.save()
            users[key] = user

        return users

    def create_groups(self, users):
        """Create groups and add members."""
        self.stdout.write('  Creating groups...')

        flat = create_group(
            name='Flatmates',
            owner=users['alice'],
            description='Rent, bills and groceries',
            currency='INR',
        )
        for key in ['bob', 'charlie']:
            add_member(group_id=flat.id, user_id=users[key].id, added_by=users['alice'])

        trip = create_group(
            name='Weekend Trip',
            owner=users['bob'],
            description='Two days in the mountains',
            currency='EUR',
        )
        add_member(group_id=trip.id, user_id=users['alice'].id, added_by=users['bob'])

        return flat, trip

    def create_expenses(self, users, flat, trip):
        """Create expenses with every split policy."""
        self.stdout.write('  Creating expenses...')

        alice, bob, charlie = users['alice'], users['bob'], users['charlie']
        everyone = (alice.id, bob.id, charlie.id)
        today = date.today()

        def inr(text):
            return Money.from_decimal_string(text, 'INR')

        create_expense(
            group_id=flat.id,
            created_by=alice,
            paid_by_id=alice.id,
            title='Groceries',
            amount=inr('1000'),
            policy=EqualSplit(everyone),
            category=ExpenseCategory.GROCERIES,
            date=today - timedelta(days=6),
        )
        create_expense(
            group_id=flat.id,
            created_by=bob,
            paid_by_id=bob.id,
            title='Electricity bill',
            amount=inr('2400.50'),
            policy=PercentageSplit(((alice.id, '40'), (bob.id, '30'), (charlie.id, '30'))),
            category=ExpenseCategory.BILLS,
            date=today - timedelta(days=4),
        )
        create_expense(
            group_id=flat.id,
            created_by=charlie,
            paid_by_id=charlie.id,
            title='Pizza night',
            amount=inr('900'),
            policy=ExactSplit(((alice.id, inr('250')), (bob.id, inr('400')), (charlie.id, inr('250')))),
            category=ExpenseCategory.FOOD,
            date=today - timedelta(days=2),
        )

        create_expense(
            group_id=trip.id,
            created_by=bob,
            paid_by_id=bob.id,
            title='Cabin',
            amount=Money.from_decimal_string('310', 'EUR'),
            policy=SharesSplit(((alice.id, 1), (bob.id, 2))),
            category=ExpenseCategory.TRAVEL,
            date=today - timedelta(days=10),
        )

    def create_settlements(self, users, flat):
        """Create a completed and a pending settlement."""
        self.stdout.write('  Creating settlements...')

        record_settlement(
            group_id=flat.id,
            from_member_id=users['charlie'].id,
            to_member_id=users['alice'].id,
            amount=Money.from_decimal_string('200', 'INR'),
            recorded_by=users['charlie'],
            description='Part of groceries',
        )
        request_settlement(
            group_id=flat.id,
            from_member_id=users['alice'].id,
            to_member_id=users['bob'].id,
            amount=Money.from_decimal_string('150', 'INR'),
            requested_by=users['bob'],
            description='Electricity',
        )

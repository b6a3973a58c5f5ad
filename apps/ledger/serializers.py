from rest_framework import serializers

from apps.groups.serializers import UserMinimalSerializer

from .models import (
    Expense,
    ExpenseShare,
    ExpenseCategory,
    ExpenseStatus,
    Settlement,
    SettlementStatus,
    SplitPolicyType,
)
from .money import Money, MoneyError
from .splits import EqualSplit, ExactSplit, PercentageSplit, SharesSplit


def parse_amount(value, currency, field='amount'):
    """Decimal text from the request -> Money (round-half-to-even)."""
    try:
        return Money.from_decimal_string(value, currency)
    except MoneyError as e:
        raise serializers.ValidationError({field: str(e)})


def build_split_policy(kind, participants, currency):
    """
    Turn validated participant rows into a split policy.

    Each policy only reads the field it needs: ``amount`` for exact,
    ``percentage`` for percentage and ``shares`` for by_shares splits.
    """
    member_ids = tuple(p['member_id'] for p in participants)

    if kind == SplitPolicyType.EQUAL:
        return EqualSplit(member_ids)

    required = {
        SplitPolicyType.EXACT: 'amount',
        SplitPolicyType.PERCENTAGE: 'percentage',
        SplitPolicyType.BY_SHARES: 'shares',
    }[kind]
    missing = [str(p['member_id']) for p in participants if p.get(required) is None]
    if missing:
        raise serializers.ValidationError({
            'participants': f"'{required}' is required for every participant of a {kind} split"
        })

    if kind == SplitPolicyType.EXACT:
        return ExactSplit(tuple(
            (p['member_id'], parse_amount(p['amount'], currency, field='participants'))
            for p in participants
        ))
    if kind == SplitPolicyType.PERCENTAGE:
        return PercentageSplit(tuple((p['member_id'], p['percentage']) for p in participants))
    return SharesSplit(tuple((p['member_id'], p['shares']) for p in participants))


# =============================================================================
# Input Serializers
# =============================================================================

class ParticipantInputSerializer(serializers.Serializer):
    """One participant of a split."""

    member_id = serializers.UUIDField()
    amount = serializers.CharField(max_length=32, required=False)
    percentage = serializers.DecimalField(max_digits=5, decimal_places=2, required=False)
    shares = serializers.IntegerField(required=False)


class ExpenseFilterSerializer(serializers.Serializer):
    """
    Validate query parameters for expense listing.

    Query Parameters:
        status (str): Filter by expense status
    """

    status = serializers.ChoiceField(choices=ExpenseStatus.choices, required=False)


class ExpenseCreateInputSerializer(serializers.Serializer):
    """
    Validate input for creating an expense.

    Expects ``group`` in the serializer context. Adds ``total`` (Money) and
    ``policy`` to the validated data.

    Fields:
        title (str): Short description
        amount (str): Decimal text, e.g. "199.99"
        paid_by (UUID): Payer, defaults to the requesting user
        split_policy (str): equal | exact | percentage | by_shares
        participants (list): Split participants; for equal splits defaults to
            every active member
        expected_version (int): Group ledger version the client read
    """

    title = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    category = serializers.ChoiceField(choices=ExpenseCategory.choices, default=ExpenseCategory.OTHER)
    date = serializers.DateField(required=False)
    amount = serializers.CharField(max_length=32)
    paid_by = serializers.UUIDField(required=False)
    split_policy = serializers.ChoiceField(choices=SplitPolicyType.choices, default=SplitPolicyType.EQUAL)
    participants = ParticipantInputSerializer(many=True, required=False)
    expected_version = serializers.IntegerField(required=False, min_value=0)

    def validate(self, attrs):
        group = self.context['group']
        request = self.context.get('request')

        attrs['total'] = parse_amount(attrs['amount'], group.currency)
        if 'paid_by' not in attrs and request is not None:
            attrs['paid_by'] = request.user.id

        participants = attrs.get('participants')
        if not participants:
            if attrs['split_policy'] != SplitPolicyType.EQUAL:
                raise serializers.ValidationError({
                    'participants': 'Participants are required for this split policy'
                })
            participants = [
                {'member_id': user_id}
                for user_id in group.memberships
                .filter(is_active=True)
                .order_by('joined_at')
                .values_list('user_id', flat=True)
            ]

        attrs['policy'] = build_split_policy(attrs['split_policy'], participants, group.currency)
        return attrs


class ExpenseUpdateInputSerializer(serializers.Serializer):
    """
    Validate input for editing an expense.

    Expects ``expense`` in the serializer context. ``version`` is the expense
    version the client is editing; ``expected_version`` the group ledger
    version.
    """

    version = serializers.IntegerField(min_value=1)
    title = serializers.CharField(max_length=100, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    category = serializers.ChoiceField(choices=ExpenseCategory.choices, required=False)
    date = serializers.DateField(required=False)
    amount = serializers.CharField(max_length=32, required=False)
    paid_by = serializers.UUIDField(required=False)
    split_policy = serializers.ChoiceField(choices=SplitPolicyType.choices, required=False)
    participants = ParticipantInputSerializer(many=True, required=False)
    expected_version = serializers.IntegerField(required=False, min_value=0)

    def validate(self, attrs):
        expense = self.context['expense']
        currency = expense.group.currency

        if 'amount' in attrs:
            attrs['total'] = parse_amount(attrs['amount'], currency)

        if 'split_policy' in attrs or 'participants' in attrs:
            kind = attrs.get('split_policy', expense.split_policy)
            participants = attrs.get('participants')
            if not participants:
                if kind != SplitPolicyType.EQUAL:
                    raise serializers.ValidationError({
                        'participants': 'Participants are required for this split policy'
                    })
                participants = [{'member_id': s.member_id} for s in expense.get_shares()]
            attrs['policy'] = build_split_policy(kind, participants, currency)

        return attrs


class RejectExpenseInputSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')


class LedgerVersionInputSerializer(serializers.Serializer):
    """
    Optional optimistic-concurrency parameters.

    Fields:
        version (int): Expense version the client read
        expected_version (int): Group ledger version the client read
    """

    version = serializers.IntegerField(required=False, min_value=1)
    expected_version = serializers.IntegerField(required=False, min_value=0)


class SettlementFilterSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=SettlementStatus.choices, required=False)


class SettlementCreateInputSerializer(serializers.Serializer):
    """
    Validate input for recording a settlement.

    ``status`` selects between recording a completed payment (default) and
    requesting one that is completed later.
    """

    from_member = serializers.UUIDField(required=False)
    to_member = serializers.UUIDField()
    amount = serializers.CharField(max_length=32)
    expense = serializers.UUIDField(required=False)
    description = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    status = serializers.ChoiceField(
        choices=[SettlementStatus.COMPLETED, SettlementStatus.PENDING],
        default=SettlementStatus.COMPLETED
    )
    expected_version = serializers.IntegerField(required=False, min_value=0)

    def validate(self, attrs):
        group = self.context['group']
        request = self.context.get('request')

        attrs['total'] = parse_amount(attrs['amount'], group.currency)
        if 'from_member' not in attrs and request is not None:
            attrs['from_member'] = request.user.id
        return attrs


# =============================================================================
# Output Serializers
# =============================================================================

class ExpenseShareSerializer(serializers.ModelSerializer):
    """Serializer for expense shares."""

    member = UserMinimalSerializer(read_only=True)
    amount = serializers.SerializerMethodField()

    class Meta:
        model = ExpenseShare
        fields = ['member', 'amount', 'amount_minor', 'weight']
        read_only_fields = fields

    def get_amount(self, obj):
        return str(obj.amount.to_decimal())


class ExpenseSerializer(serializers.ModelSerializer):
    """Main serializer for expenses."""

    paid_by = UserMinimalSerializer(read_only=True)
    created_by = UserMinimalSerializer(read_only=True)
    amount = serializers.SerializerMethodField()
    shares = ExpenseShareSerializer(many=True, read_only=True)

    class Meta:
        model = Expense
        fields = [
            'id',
            'group',
            'title',
            'description',
            'category',
            'date',
            'amount',
            'amount_minor',
            'currency',
            'split_policy',
            'status',
            'version',
            'paid_by',
            'created_by',
            'approved_by',
            'approved_at',
            'rejection_reason',
            'settled_at',
            'shares',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_amount(self, obj):
        return str(obj.total.to_decimal())


class ExpenseListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for list views."""

    paid_by = UserMinimalSerializer(read_only=True)
    amount = serializers.SerializerMethodField()

    class Meta:
        model = Expense
        fields = [
            'id',
            'title',
            'category',
            'date',
            'amount',
            'currency',
            'split_policy',
            'status',
            'version',
            'paid_by',
            'created_at',
        ]
        read_only_fields = fields

    def get_amount(self, obj):
        return str(obj.total.to_decimal())


class BalanceSerializer(serializers.Serializer):
    """Serializer for balance snapshots."""

    member_id = serializers.UUIDField()
    amount = serializers.SerializerMethodField()
    amount_minor = serializers.SerializerMethodField()

    def get_amount(self, obj):
        return str(obj.amount.to_decimal())

    def get_amount_minor(self, obj):
        return obj.amount.minor_units


class LedgerStateSerializer(serializers.Serializer):
    """Balances of a group at one ledger version."""

    group_id = serializers.UUIDField()
    currency = serializers.CharField()
    version = serializers.IntegerField()
    balances = BalanceSerializer(many=True)


class SuggestedPaymentSerializer(serializers.Serializer):
    """Serializer for recommended settlements."""

    from_member = serializers.UUIDField()
    to_member = serializers.UUIDField()
    amount = serializers.SerializerMethodField()
    amount_minor = serializers.SerializerMethodField()
    currency = serializers.SerializerMethodField()

    def get_amount(self, obj):
        return str(obj.amount.to_decimal())

    def get_amount_minor(self, obj):
        return obj.amount.minor_units

    def get_currency(self, obj):
        return obj.amount.currency


class SettlementSerializer(serializers.ModelSerializer):
    """Serializer for settlements."""

    from_member = UserMinimalSerializer(read_only=True)
    to_member = UserMinimalSerializer(read_only=True)
    amount = serializers.SerializerMethodField()

    class Meta:
        model = Settlement
        fields = [
            'id',
            'group',
            'from_member',
            'to_member',
            'amount',
            'amount_minor',
            'currency',
            'expense',
            'description',
            'status',
            'created_by',
            'created_at',
            'completed_at',
            'cancelled_at',
        ]
        read_only_fields = fields

    def get_amount(self, obj):
        return str(obj.amount.to_decimal())

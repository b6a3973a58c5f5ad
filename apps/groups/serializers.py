from rest_framework import serializers
from .models import Group, GroupMembership, GroupRole
from apps.accounts.models import User
from apps.ledger.money import CURRENCY_EXPONENTS


CURRENCY_CHOICES = sorted(CURRENCY_EXPONENTS)


class UserMinimalSerializer(serializers.ModelSerializer):
    """Minimal user info for nested serialization."""

    display_name = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'email', 'display_name']
        read_only_fields = fields

    def get_display_name(self, obj):
        return obj.get_display_name()


class GroupSerializer(serializers.ModelSerializer):
    """Main serializer for groups."""

    owner = UserMinimalSerializer(read_only=True)
    member_count = serializers.SerializerMethodField()
    user_role = serializers.SerializerMethodField()

    class Meta:
        model = Group
        fields = [
            'id',
            'name',
            'description',
            'is_private',
            'invite_code',
            'owner',
            'currency',
            'ledger_version',
            'expense_approval_required',
            'member_count',
            'user_role',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_member_count(self, obj):
        """Number of active members in the group."""
        return obj.memberships.filter(is_active=True).count()

    def get_user_role(self, obj):
        """Get current user's role in the group."""
        request = self.context.get('request')
        if request and request.user.is_authenticated:
            return obj.get_user_role(request.user)
        return None


class GroupCreateSerializer(serializers.Serializer):
    """Serializer for creating groups."""

    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    is_private = serializers.BooleanField(required=False, default=True)
    currency = serializers.ChoiceField(choices=CURRENCY_CHOICES, required=False)
    expense_approval_required = serializers.BooleanField(required=False, default=False)


class GroupUpdateSerializer(serializers.Serializer):
    """Serializer for updating groups; every field is optional."""

    name = serializers.CharField(max_length=100, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    is_private = serializers.BooleanField(required=False)
    currency = serializers.ChoiceField(choices=CURRENCY_CHOICES, required=False)
    expense_approval_required = serializers.BooleanField(required=False)


class GroupListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for list views."""

    owner = UserMinimalSerializer(read_only=True)

    class Meta:
        model = Group
        fields = [
            'id',
            'name',
            'description',
            'is_private',
            'owner',
            'currency',
            'created_at',
        ]
        read_only_fields = fields


class GroupMemberSerializer(serializers.ModelSerializer):
    """Detailed member information."""

    user = UserMinimalSerializer(read_only=True)

    class Meta:
        model = GroupMembership
        fields = ['id', 'user', 'role', 'can_add_expenses', 'is_active', 'joined_at', 'deactivated_at']
        read_only_fields = fields


class JoinGroupSerializer(serializers.Serializer):
    """Serializer for joining a group with invite code."""

    invite_code = serializers.CharField(max_length=16, required=True)


class MemberInputSerializer(serializers.Serializer):
    """Serializer for adding or removing a member."""

    user_id = serializers.UUIDField(required=True)


class UpdateMemberRoleSerializer(serializers.Serializer):
    """Serializer for updating member role."""

    user_id = serializers.UUIDField(required=True)
    role = serializers.ChoiceField(choices=[GroupRole.ADMIN, GroupRole.MEMBER], required=True)


class ExpensePermissionSerializer(serializers.Serializer):
    """Grant or revoke a member's right to add expenses."""

    user_id = serializers.UUIDField()
    can_add_expenses = serializers.BooleanField()

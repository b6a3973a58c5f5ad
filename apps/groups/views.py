from rest_framework import viewsets, status
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from drf_spectacular.utils import extend_schema

from apps.ledger.money import MoneyError

from .models import Group
from .serializers import (
    GroupSerializer,
    GroupCreateSerializer,
    GroupUpdateSerializer,
    GroupListSerializer,
    GroupMemberSerializer,
    JoinGroupSerializer,
    MemberInputSerializer,
    UpdateMemberRoleSerializer,
    ExpensePermissionSerializer,
)
from .permissions import IsGroupMember

from apps.groups.services import (
    create_group,
    update_group,
    delete_group,
    join_group,
    add_member,
    leave_group,
    remove_member,
    get_group_members,
    update_member_role,
    set_can_add_expenses,
    # Exceptions
    GroupNotFoundError,
    UserNotFoundError,
    InvalidInviteCodeError,
    AlreadyMemberError,
    NotMemberError,
    OwnerCannotLeaveError,
    CannotRemoveOwnerError,
    CannotChangeOwnerRoleError,
    UnsettledBalanceError,
    CurrencyLockedError,
    InsufficientPermissionsError,
)


class GroupPagination(PageNumberPagination):
    """Custom pagination for groups."""
    page_size = 20
    page_size_query_param = 'page_size'
    max_page_size = 100


class GroupViewSet(viewsets.ModelViewSet):
    """
    ViewSet for Group CRUD operations.

    All business logic is handled by services.
    Views are thin HTTP handlers only.

    list: Get all groups (user is an active member of)
    create: Create a new group with an empty ledger
    retrieve: Get a specific group
    update: Update a group (admin only)
    partial_update: Partially update a group (admin only)
    destroy: Delete a group (owner only, ledger must be squared up)
    """

    queryset = Group.objects.select_related('owner').prefetch_related('memberships')
    serializer_class = GroupSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = GroupPagination

    def get_queryset(self):
        """Return only groups where user is an active member."""
        user = self.request.user
        return Group.objects.filter(
            memberships__user=user,
            memberships__is_active=True,
        ).select_related('owner').distinct()

    def get_serializer_class(self):
        """Use different serializers for different actions."""
        if self.action == 'list':
            return GroupListSerializer
        elif self.action == 'create':
            return GroupCreateSerializer
        elif self.action in ['update', 'partial_update']:
            return GroupUpdateSerializer
        return GroupSerializer

    def get_permissions(self):
        """Group-level actions need an active membership."""
        if self.action in ['list', 'create', 'join']:
            return [IsAuthenticated()]
        return [IsAuthenticated(), IsGroupMember()]

    def create(self, request, *args, **kwargs):
        """Create a new group."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            group = create_group(
                name=serializer.validated_data['name'],
                owner=request.user,
                description=serializer.validated_data['description'],
                is_private=serializer.validated_data['is_private'],
                currency=serializer.validated_data.get('currency'),
                expense_approval_required=serializer.validated_data['expense_approval_required'],
            )
        except MoneyError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        output_serializer = GroupSerializer(group, context={'request': request})
        return Response(output_serializer.data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        """Update group details (admin only)."""
        group = self.get_object()
        serializer = GroupUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            group = update_group(group_id=group.id, user=request.user, **serializer.validated_data)
        except InsufficientPermissionsError as e:
            return Response({'error': str(e)}, status=status.HTTP_403_FORBIDDEN)
        except (CurrencyLockedError, MoneyError) as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(GroupSerializer(group, context={'request': request}).data)

    def partial_update(self, request, *args, **kwargs):
        return self.update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        """Delete a group."""
        group = self.get_object()
        try:
            delete_group(group_id=group.id, user=request.user)
            return Response(status=status.HTTP_204_NO_CONTENT)
        except InsufficientPermissionsError as e:
            return Response({'error': str(e)}, status=status.HTTP_403_FORBIDDEN)
        except UnsettledBalanceError as e:
            return Response({'error': str(e)}, status=status.HTTP_409_CONFLICT)

    @action(detail=True, methods=['get'])
    def members(self, request, pk=None):
        """Get all active members of the group."""
        group = self.get_object()
        memberships = get_group_members(group_id=group.id)
        serializer = GroupMemberSerializer(memberships, many=True)
        return Response(serializer.data)

    @action(detail=True, methods=['post'])
    def join(self, request, pk=None):
        """Join a group using invite code."""
        serializer = JoinGroupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            membership = join_group(
                group_id=pk,
                user=request.user,
                invite_code=serializer.validated_data['invite_code']
            )
        except GroupNotFoundError as e:
            return Response({'error': str(e)}, status=status.HTTP_404_NOT_FOUND)
        except (InvalidInviteCodeError, AlreadyMemberError) as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        output_serializer = GroupMemberSerializer(membership)
        return Response(output_serializer.data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def add_member(self, request, pk=None):
        """Add a user to the group (admin only)."""
        group = self.get_object()
        serializer = MemberInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            membership = add_member(
                group_id=group.id,
                user_id=serializer.validated_data['user_id'],
                added_by=request.user
            )
        except InsufficientPermissionsError as e:
            return Response({'error': str(e)}, status=status.HTTP_403_FORBIDDEN)
        except UserNotFoundError as e:
            return Response({'error': str(e)}, status=status.HTTP_404_NOT_FOUND)
        except AlreadyMemberError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        output_serializer = GroupMemberSerializer(membership)
        return Response(output_serializer.data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def leave(self, request, pk=None):
        """Leave a group."""
        group = self.get_object()
        try:
            leave_group(group_id=group.id, user=request.user)
            return Response(status=status.HTTP_204_NO_CONTENT)
        except (OwnerCannotLeaveError, NotMemberError) as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
        except UnsettledBalanceError as e:
            return Response({'error': str(e)}, status=status.HTTP_409_CONFLICT)

    @action(detail=True, methods=['post'])
    def update_member_role(self, request, pk=None):
        """Update member's role (admin only)."""
        group = self.get_object()
        serializer = UpdateMemberRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            membership = update_member_role(
                group_id=group.id,
                user_id=serializer.validated_data['user_id'],
                new_role=serializer.validated_data['role'],
                updated_by=request.user
            )
        except InsufficientPermissionsError as e:
            return Response({'error': str(e)}, status=status.HTTP_403_FORBIDDEN)
        except (NotMemberError, CannotChangeOwnerRoleError) as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        output_serializer = GroupMemberSerializer(membership)
        return Response(output_serializer.data)

    @action(detail=True, methods=['post'])
    def expense_permission(self, request, pk=None):
        """Allow or forbid a member to add expenses (admin only)."""
        group = self.get_object()
        serializer = ExpensePermissionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            membership = set_can_add_expenses(
                group_id=group.id,
                user_id=serializer.validated_data['user_id'],
                allowed=serializer.validated_data['can_add_expenses'],
                updated_by=request.user
            )
        except InsufficientPermissionsError as e:
            return Response({'error': str(e)}, status=status.HTTP_403_FORBIDDEN)
        except (NotMemberError, CannotChangeOwnerRoleError) as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(GroupMemberSerializer(membership).data)

    @action(detail=True, methods=['post'])
    def remove_member(self, request, pk=None):
        """Remove a member from the group (admin only)."""
        group = self.get_object()
        serializer = MemberInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            remove_member(
                group_id=group.id,
                user_id=serializer.validated_data['user_id'],
                removed_by=request.user
            )
            return Response(status=status.HTTP_204_NO_CONTENT)
        except InsufficientPermissionsError as e:
            return Response({'error': str(e)}, status=status.HTTP_403_FORBIDDEN)
        except (CannotRemoveOwnerError, NotMemberError) as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
        except UnsettledBalanceError as e:
            return Response({'error': str(e)}, status=status.HTTP_409_CONFLICT)


@extend_schema(
    responses={200: GroupListSerializer(many=True)},
    description="Get all groups where the current user is an active member.",
    tags=['groups'],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def my_groups(request):
    """Get all groups where user is a member."""
    groups = Group.objects.filter(
        memberships__user=request.user,
        memberships__is_active=True,
    ).select_related('owner').distinct()

    serializer = GroupListSerializer(groups, many=True, context={'request': request})
    return Response(serializer.data)

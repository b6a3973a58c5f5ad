import re

from rest_framework import viewsets, status
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from drf_spectacular.utils import extend_schema

from apps.groups.models import Group

from .money import Money, MoneyError
from .splits import SplitError, SplitMismatchError
from .permissions import IsLedgerGroupMember
from .serializers import (
    ExpenseSerializer,
    ExpenseListSerializer,
    LedgerStateSerializer,
    SuggestedPaymentSerializer,
    SettlementSerializer,
    # Input serializers
    ExpenseFilterSerializer,
    ExpenseCreateInputSerializer,
    ExpenseUpdateInputSerializer,
    RejectExpenseInputSerializer,
    LedgerVersionInputSerializer,
    SettlementFilterSerializer,
    SettlementCreateInputSerializer,
)
from .models import SettlementStatus
from .services import (
    create_expense,
    update_expense,
    delete_expense,
    approve_expense,
    reject_expense,
    mark_expense_settled,
    get_group_expenses,
    get_expense_by_id,
    get_group_balances,
    record_settlement,
    request_settlement,
    complete_settlement,
    cancel_settlement,
    get_recommended_settlements,
    get_group_settlements,
    get_settlement_by_id,
    # Exceptions
    LedgerServiceError,
    ConflictError,
    ExpenseVersionConflictError,
    LedgerBusyError,
    LedgerInvariantError,
    InsufficientPermissionsError,
    GroupNotFoundError,
    ExpenseNotFoundError,
    SettlementNotFoundError,
)


LEDGER_ERRORS = (LedgerServiceError, MoneyError, SplitError)

# Checked in order; anything else is a 400
ERROR_STATUS = [
    (LedgerBusyError, status.HTTP_503_SERVICE_UNAVAILABLE),
    ((ConflictError, ExpenseVersionConflictError), status.HTTP_409_CONFLICT),
    (InsufficientPermissionsError, status.HTTP_403_FORBIDDEN),
    ((GroupNotFoundError, ExpenseNotFoundError, SettlementNotFoundError), status.HTTP_404_NOT_FOUND),
    (LedgerInvariantError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def error_code(exc):
    """SplitMismatchError -> 'split_mismatch'."""
    name = re.sub(r'Error$', '', type(exc).__name__)
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def ledger_error_response(exc):
    """Translate a ledger, money or split error into an HTTP response."""
    http_status = status.HTTP_400_BAD_REQUEST
    for error_types, candidate in ERROR_STATUS:
        if isinstance(exc, error_types):
            http_status = candidate
            break

    body = {'error': str(exc), 'code': error_code(exc)}
    if isinstance(exc, SplitMismatchError):
        discrepancy = exc.discrepancy
        if isinstance(discrepancy, Money):
            discrepancy = discrepancy.to_decimal()
        body['discrepancy'] = str(discrepancy)
    if isinstance(exc, (ConflictError, ExpenseVersionConflictError)):
        body['current_version'] = exc.current_version

    return Response(body, status=http_status)


class LedgerPagination(PageNumberPagination):
    """Custom pagination for ledger lists."""
    page_size = 20
    page_size_query_param = 'page_size'
    max_page_size = 100


class GroupLedgerMixin:
    """Resolves the group from the ``group_id`` URL kwarg."""

    permission_classes = [IsAuthenticated, IsLedgerGroupMember]
    pagination_class = LedgerPagination

    def get_group(self):
        if not hasattr(self, '_group'):
            self._group = Group.objects.get(id=self.kwargs['group_id'])
        return self._group


class ExpenseViewSet(GroupLedgerMixin, viewsets.GenericViewSet):
    """
    ViewSet for group expenses.

    All business logic is handled by services.
    Views are thin HTTP handlers only.

    list: Get the group's expenses (filterable by status)
    create: Record an expense and apply its split to the balances
    retrieve: Get a specific expense with its shares
    partial_update: Edit an expense (creator or admin, version-checked)
    destroy: Delete an expense, reversing its effect (creator or admin)
    """

    serializer_class = ExpenseSerializer

    def get_queryset(self):
        filter_serializer = ExpenseFilterSerializer(data=self.request.query_params)
        filter_serializer.is_valid(raise_exception=True)
        return get_group_expenses(
            group_id=self.kwargs['group_id'],
            status=filter_serializer.validated_data.get('status'),
        )

    def list(self, request, group_id=None):
        page = self.paginate_queryset(self.get_queryset())
        serializer = ExpenseListSerializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    @extend_schema(request=ExpenseCreateInputSerializer, responses={201: ExpenseSerializer})
    def create(self, request, group_id=None):
        group = self.get_group()
        serializer = ExpenseCreateInputSerializer(
            data=request.data,
            context={'request': request, 'group': group}
        )
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            expense = create_expense(
                group_id=group.id,
                created_by=request.user,
                paid_by_id=data['paid_by'],
                title=data['title'],
                amount=data['total'],
                policy=data['policy'],
                description=data['description'],
                category=data['category'],
                date=data.get('date'),
                expected_version=data.get('expected_version'),
            )
        except LEDGER_ERRORS as e:
            return ledger_error_response(e)

        return Response(ExpenseSerializer(expense).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, group_id=None, pk=None):
        try:
            expense = get_expense_by_id(expense_id=pk, group_id=group_id)
        except ExpenseNotFoundError as e:
            return ledger_error_response(e)
        return Response(ExpenseSerializer(expense).data)

    @extend_schema(request=ExpenseUpdateInputSerializer, responses={200: ExpenseSerializer})
    def partial_update(self, request, group_id=None, pk=None):
        try:
            expense = get_expense_by_id(expense_id=pk, group_id=group_id)
        except ExpenseNotFoundError as e:
            return ledger_error_response(e)

        serializer = ExpenseUpdateInputSerializer(
            data=request.data,
            context={'request': request, 'expense': expense}
        )
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            expense = update_expense(
                expense_id=expense.id,
                user=request.user,
                expected_version=data['version'],
                title=data.get('title'),
                description=data.get('description'),
                category=data.get('category'),
                date=data.get('date'),
                amount=data.get('total'),
                paid_by_id=data.get('paid_by'),
                policy=data.get('policy'),
                expected_ledger_version=data.get('expected_version'),
            )
        except LEDGER_ERRORS as e:
            return ledger_error_response(e)

        return Response(ExpenseSerializer(expense).data)

    @extend_schema(parameters=[LedgerVersionInputSerializer])
    def destroy(self, request, group_id=None, pk=None):
        params = LedgerVersionInputSerializer(data=request.query_params)
        params.is_valid(raise_exception=True)

        try:
            expense = get_expense_by_id(expense_id=pk, group_id=group_id)
            delete_expense(
                expense_id=expense.id,
                user=request.user,
                expected_version=params.validated_data.get('version'),
                expected_ledger_version=params.validated_data.get('expected_version'),
            )
        except LEDGER_ERRORS as e:
            return ledger_error_response(e)

        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(request=LedgerVersionInputSerializer, responses={200: ExpenseSerializer})
    @action(detail=True, methods=['post'])
    def approve(self, request, group_id=None, pk=None):
        """Approve a pending expense (admin only)."""
        params = LedgerVersionInputSerializer(data=request.data)
        params.is_valid(raise_exception=True)

        try:
            expense = get_expense_by_id(expense_id=pk, group_id=group_id)
            expense = approve_expense(
                expense_id=expense.id,
                user=request.user,
                expected_ledger_version=params.validated_data.get('expected_version'),
            )
        except LEDGER_ERRORS as e:
            return ledger_error_response(e)

        return Response(ExpenseSerializer(expense).data)

    @extend_schema(request=RejectExpenseInputSerializer, responses={200: ExpenseSerializer})
    @action(detail=True, methods=['post'])
    def reject(self, request, group_id=None, pk=None):
        """Reject a pending expense (admin only)."""
        serializer = RejectExpenseInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            expense = get_expense_by_id(expense_id=pk, group_id=group_id)
            expense = reject_expense(
                expense_id=expense.id,
                user=request.user,
                reason=serializer.validated_data['reason'],
            )
        except LEDGER_ERRORS as e:
            return ledger_error_response(e)

        return Response(ExpenseSerializer(expense).data)

    @extend_schema(request=None, responses={200: ExpenseSerializer})
    @action(detail=True, methods=['post'])
    def settle(self, request, group_id=None, pk=None):
        """Mark an approved expense as settled."""
        try:
            expense = get_expense_by_id(expense_id=pk, group_id=group_id)
            expense = mark_expense_settled(expense_id=expense.id, user=request.user)
        except LEDGER_ERRORS as e:
            return ledger_error_response(e)

        return Response(ExpenseSerializer(expense).data)


class SettlementViewSet(GroupLedgerMixin, viewsets.GenericViewSet):
    """
    ViewSet for group settlements.

    list: Get the group's settlement log (filterable by status)
    create: Record a completed payment, or request one (status=pending)
    retrieve: Get a specific settlement
    complete: Complete a pending settlement
    cancel: Cancel a pending settlement
    """

    serializer_class = SettlementSerializer

    def get_queryset(self):
        filter_serializer = SettlementFilterSerializer(data=self.request.query_params)
        filter_serializer.is_valid(raise_exception=True)
        return get_group_settlements(
            group_id=self.kwargs['group_id'],
            status=filter_serializer.validated_data.get('status'),
        )

    def list(self, request, group_id=None):
        page = self.paginate_queryset(self.get_queryset())
        serializer = SettlementSerializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    @extend_schema(request=SettlementCreateInputSerializer, responses={201: SettlementSerializer})
    def create(self, request, group_id=None):
        group = self.get_group()
        serializer = SettlementCreateInputSerializer(
            data=request.data,
            context={'request': request, 'group': group}
        )
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            if data['status'] == SettlementStatus.PENDING:
                settlement = request_settlement(
                    group_id=group.id,
                    from_member_id=data['from_member'],
                    to_member_id=data['to_member'],
                    amount=data['total'],
                    requested_by=request.user,
                    expense_id=data.get('expense'),
                    description=data['description'],
                )
            else:
                settlement = record_settlement(
                    group_id=group.id,
                    from_member_id=data['from_member'],
                    to_member_id=data['to_member'],
                    amount=data['total'],
                    recorded_by=request.user,
                    expected_version=data.get('expected_version'),
                    expense_id=data.get('expense'),
                    description=data['description'],
                )
        except LEDGER_ERRORS as e:
            return ledger_error_response(e)

        return Response(SettlementSerializer(settlement).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, group_id=None, pk=None):
        try:
            settlement = get_settlement_by_id(settlement_id=pk, group_id=group_id)
        except SettlementNotFoundError as e:
            return ledger_error_response(e)
        return Response(SettlementSerializer(settlement).data)

    @extend_schema(request=LedgerVersionInputSerializer, responses={200: SettlementSerializer})
    @action(detail=True, methods=['post'])
    def complete(self, request, group_id=None, pk=None):
        """Complete a pending settlement (payer, payee or admin)."""
        params = LedgerVersionInputSerializer(data=request.data)
        params.is_valid(raise_exception=True)

        try:
            settlement = get_settlement_by_id(settlement_id=pk, group_id=group_id)
            settlement = complete_settlement(
                settlement_id=settlement.id,
                user=request.user,
                expected_version=params.validated_data.get('expected_version'),
            )
        except LEDGER_ERRORS as e:
            return ledger_error_response(e)

        return Response(SettlementSerializer(settlement).data)

    @extend_schema(request=None, responses={200: SettlementSerializer})
    @action(detail=True, methods=['post'])
    def cancel(self, request, group_id=None, pk=None):
        """Cancel a pending settlement (payer, payee or admin)."""
        try:
            settlement = get_settlement_by_id(settlement_id=pk, group_id=group_id)
            settlement = cancel_settlement(settlement_id=settlement.id, user=request.user)
        except LEDGER_ERRORS as e:
            return ledger_error_response(e)

        return Response(SettlementSerializer(settlement).data)


@extend_schema(
    responses={200: LedgerStateSerializer},
    description="Current balances of every member, with the group ledger version.",
    tags=['ledger'],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated, IsLedgerGroupMember])
def group_balances(request, group_id):
    """Get the group's balances and ledger version."""
    try:
        state = get_group_balances(group_id=group_id)
    except LEDGER_ERRORS as e:
        return ledger_error_response(e)
    return Response(LedgerStateSerializer(state).data)


@extend_schema(
    responses={200: SuggestedPaymentSerializer(many=True)},
    description="Suggested payments that would bring every balance to zero.",
    tags=['ledger'],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated, IsLedgerGroupMember])
def group_recommendations(request, group_id):
    """Get recommended settlements for the group."""
    try:
        payments = get_recommended_settlements(group_id=group_id)
    except LEDGER_ERRORS as e:
        return ledger_error_response(e)
    return Response(SuggestedPaymentSerializer(payments, many=True).data)

from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

app_name = 'ledger'

GROUP = r'groups/(?P<group_id>[0-9a-f-]{36})'

# Router for ViewSets
router = DefaultRouter()
router.register(rf'{GROUP}/expenses', views.ExpenseViewSet, basename='expense')
router.register(rf'{GROUP}/settlements', views.SettlementViewSet, basename='settlement')

urlpatterns = [
    # Expense ViewSet routes
    # GET    /api/ledger/groups/{group_id}/expenses/                 - List expenses
    # POST   /api/ledger/groups/{group_id}/expenses/                 - Create expense
    # GET    /api/ledger/groups/{group_id}/expenses/{id}/            - Get expense
    # PATCH  /api/ledger/groups/{group_id}/expenses/{id}/            - Edit expense
    # DELETE /api/ledger/groups/{group_id}/expenses/{id}/            - Delete expense
    # POST   /api/ledger/groups/{group_id}/expenses/{id}/approve/    - Approve (admin)
    # POST   /api/ledger/groups/{group_id}/expenses/{id}/reject/     - Reject (admin)
    # POST   /api/ledger/groups/{group_id}/expenses/{id}/settle/     - Mark settled

    # Settlement ViewSet routes
    # GET    /api/ledger/groups/{group_id}/settlements/               - Settlement log
    # POST   /api/ledger/groups/{group_id}/settlements/               - Record / request
    # GET    /api/ledger/groups/{group_id}/settlements/{id}/          - Get settlement
    # POST   /api/ledger/groups/{group_id}/settlements/{id}/complete/ - Complete pending
    # POST   /api/ledger/groups/{group_id}/settlements/{id}/cancel/   - Cancel pending

    path('groups/<uuid:group_id>/balances/', views.group_balances, name='group-balances'),
    path('groups/<uuid:group_id>/recommendations/', views.group_recommendations, name='group-recommendations'),

    # Include router URLs
    path('', include(router.urls)),
]

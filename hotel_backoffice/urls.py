from django.urls import path
from rest_framework.routers import DefaultRouter

from hotel_backoffice.views import (
    AccountViewSet,
    BookingViewSet,
    IncidentViewSet,
    InvoiceViewSet,
    JournalEntryViewSet,
    PaymentViewSet,
    RoomViewSet,
    TaskViewSet,
    TenantViewSet,
    cash_report,
    exchange_rate,
    overdue_debts_report,
    room_status_report,
)

router = DefaultRouter()
router.register(r'rooms', RoomViewSet)
router.register(r'tenants', TenantViewSet)
router.register(r'bookings', BookingViewSet)
router.register(r'invoices', InvoiceViewSet)
router.register(r'payments', PaymentViewSet)
router.register(r'tasks', TaskViewSet)
router.register(r'incidents', IncidentViewSet)
router.register(r'accounts', AccountViewSet)
router.register(r'journal-entries', JournalEntryViewSet, basename='journal-entry')

urlpatterns = [
    path('settings/exchange-rate/', exchange_rate, name='exchange-rate'),
    path('reports/cash/', cash_report, name='report-cash'),
    path('reports/overdue-debts/', overdue_debts_report, name='report-overdue-debts'),
    path('reports/room-status/', room_status_report, name='report-room-status'),
] + router.urls

from dataclasses import asdict
from datetime import datetime

from django.http import JsonResponse
from django.utils import timezone
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action, api_view
from rest_framework.response import Response

from . import accounting, billing, reports, room_status, services
from .models import Booking, Incident, Invoice, JournalEntry, Payment, Room, Task, Tenant
from .serializers import (
    AccountSerializer,
    BookingSerializer,
    CancelSerializer,
    DateRangeSerializer,
    DiscountSerializer,
    ExchangeRateSerializer,
    ExtendSerializer,
    ExtensionQuoteSerializer,
    IncidentSerializer,
    InvoiceSerializer,
    JournalEntrySerializer,
    MaintenanceSerializer,
    PaymentQuoteSerializer,
    PaymentSerializer,
    RoomSerializer,
    TaskSerializer,
    TenantSerializer,
)


def welcome(request):
    return JsonResponse({"message": "Welcome to the Hotel Back Office"})


def health_check(request):
    return JsonResponse({"status": "ok"})


class RoomViewSet(viewsets.ModelViewSet):
    queryset = Room.objects.all()
    serializer_class = RoomSerializer

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['at'] = timezone.now()
        return context

    def list(self, request):
        """All rooms with their effective status, or the free ones when dates are given."""
        check_in_str = request.query_params.get('check_in')
        check_out_str = request.query_params.get('check_out')
        max_price = request.query_params.get('max_price')

        if check_in_str and check_out_str:
            try:
                check_in = timezone.make_aware(datetime.strptime(check_in_str, '%Y-%m-%d'))
                check_out = timezone.make_aware(datetime.strptime(check_out_str, '%Y-%m-%d'))
                rooms = services.available_rooms_qs(check_in, check_out, max_price or None)
            except ValueError:
                return Response({'error': 'Invalid date format. Use YYYY-MM-DD'},
                                status=status.HTTP_400_BAD_REQUEST)
        else:
            rooms = Room.objects.all()

        rooms = list(rooms)
        context = self.get_serializer_context()
        bookings = Booking.objects.filter(room__in=rooms, status__in=room_status.ACTIVE_BOOKING_STATUSES + (
            Booking.Status.COMPLETED,), planned_start__lte=context['at'], planned_end__gte=context['at'])
        context['effective_statuses'] = room_status.effective_statuses(rooms, bookings, context['at'])
        serializer = self.get_serializer_class()(rooms, many=True, context=context)
        return Response(serializer.data)

    def destroy(self, request, pk=None):
        room = self.get_object()
        if room.bookings.exists():
            return Response({'error': 'Room has bookings and cannot be deleted'},
                            status=status.HTTP_409_CONFLICT)
        room.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=['get'])
    def availability(self, request, pk=None):
        """Whether the room can be booked between ``start`` and ``end`` (YYYY-MM-DD)."""
        room = self.get_object()
        params = DateRangeSerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        start, end = params.validated_data.get('start'), params.validated_data.get('end')
        if not start or not end or end <= start:
            return Response({'error': 'start and end are required, end after start'},
                            status=status.HTTP_400_BAD_REQUEST)
        start = services.checkout_datetime(start)
        end = services.checkout_datetime(end)
        conflicts = services.overlapping_bookings(room, start, end)
        return Response({
            'room_id': room.pk,
            'available': room.physical_status != Room.Status.MAINTENANCE and not conflicts.exists(),
            'conflicting_bookings': list(conflicts.values_list('pk', flat=True)),
        })

    @action(detail=True, methods=['post'])
    def maintenance(self, request, pk=None):
        room = self.get_object()
        payload = MaintenanceSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        services.set_maintenance(room, payload.validated_data['enabled'])
        return Response(self.get_serializer(room).data)

    @action(detail=False, methods=['post'])
    def flag_pending_checkouts(self, request):
        rooms = services.flag_pending_checkouts()
        return Response({'flagged': [room.number for room in rooms]})


class TenantViewSet(viewsets.ModelViewSet):
    queryset = Tenant.objects.all()
    serializer_class = TenantSerializer

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get('search')
        if search:
            qs = qs.filter(last_name__icontains=search) | qs.filter(first_name__icontains=search)
        return qs


class BookingViewSet(viewsets.ModelViewSet):
    # nested rooms resolve their effective status from the prefetched bookings
    queryset = Booking.objects.select_related('room', 'tenant').prefetch_related('room__bookings')
    serializer_class = BookingSerializer

    def get_queryset(self):
        qs = super().get_queryset()
        booking_status = self.request.query_params.get('status')
        if booking_status:
            qs = qs.filter(status=booking_status)
        room = self.request.query_params.get('room')
        if room:
            qs = qs.filter(room_id=room)
        return qs

    def destroy(self, request, pk=None):
        return Response({'error': 'Bookings are cancelled, not deleted'},
                        status=status.HTTP_405_METHOD_NOT_ALLOWED)

    @action(detail=True, methods=['post'])
    def check_in(self, request, pk=None):
        booking = services.check_in(self.get_object())
        return Response(self.get_serializer(booking).data)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        payload = CancelSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        booking = services.cancel_booking(self.get_object(), payload.validated_data['reason'])
        return Response(self.get_serializer(booking).data)

    @action(detail=True, methods=['post'])
    def depart(self, request, pk=None):
        """Confirm the guest's departure."""
        result = services.CheckoutDecision(self.get_object()).depart()
        return Response({
            'booking': self.get_serializer(result.booking).data,
            'task': TaskSerializer(result.task).data,
        })

    @action(detail=True, methods=['post'])
    def extend(self, request, pk=None):
        payload = ExtendSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        result = services.CheckoutDecision(self.get_object()).extend(
            payload.validated_data['new_end_date'],
            payload.validated_data['discount_per_night'],
            payload.validated_data.get('new_total'),
        )
        return Response({
            'booking': self.get_serializer(result.booking).data,
            'invoice': InvoiceSerializer(result.invoice).data if result.invoice else None,
            'quote': asdict(result.quote),
        })

    @action(detail=True, methods=['post'])
    def extension_quote(self, request, pk=None):
        payload = ExtensionQuoteSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        quote = services.CheckoutDecision(self.get_object()).extension_quote(
            payload.validated_data['new_end_date'],
            payload.validated_data['discount_per_night'],
        )
        return Response(asdict(quote))

    @action(detail=True, methods=['get', 'post'])
    def payments(self, request, pk=None):
        booking = self.get_object()
        if request.method == 'GET':
            return Response(PaymentSerializer(booking.payments.all(), many=True).data)
        data = request.data.copy()
        data['booking_id'] = booking.pk
        serializer = PaymentSerializer(data=data)
        serializer.is_valid(raise_exception=True)
        payment = serializer.save()
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get'])
    def financial_summary(self, request, pk=None):
        booking = self.get_object()
        return Response(reports.booking_financial_summary(booking, services.current_exchange_rate()))

    @action(detail=False, methods=['get'])
    def pending_checkouts(self, request):
        bookings = services.pending_checkouts().prefetch_related('room__bookings')
        serializer = self.get_serializer(bookings, many=True)
        return Response(serializer.data)


class InvoiceViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Invoice.objects.select_related('tenant').prefetch_related('items')
    serializer_class = InvoiceSerializer

    def get_queryset(self):
        qs = super().get_queryset()
        booking = self.request.query_params.get('booking')
        if booking:
            qs = qs.filter(booking_id=booking)
        return qs

    @action(detail=True, methods=['post'])
    def discount(self, request, pk=None):
        """Apply a discount to an invoice; an empty body removes it."""
        payload = DiscountSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        invoice = services.apply_invoice_discount(
            self.get_object(),
            payload.validated_data.get('discount_amount'),
            payload.validated_data.get('discount_percentage'),
        )
        return Response(self.get_serializer(invoice).data)


class PaymentViewSet(viewsets.ModelViewSet):
    queryset = Payment.objects.all()
    serializer_class = PaymentSerializer

    def perform_destroy(self, instance):
        services.delete_payment(instance)

    @action(detail=False, methods=['post'])
    def quote(self, request):
        """Compare an amount being entered against what is due: complete, surplus or partial."""
        payload = PaymentQuoteSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data
        balance = data['invoice'].balance_due if 'invoice' in data else data['balance_due']
        rate = data.get('exchange_rate') or services.current_exchange_rate()
        quote = billing.classify_payment(balance, data['amount_usd'], data['amount_cdf'], rate)
        return Response(asdict(quote))


class TaskViewSet(mixins.CreateModelMixin,
                  mixins.ListModelMixin,
                  mixins.RetrieveModelMixin,
                  mixins.UpdateModelMixin,
                  viewsets.GenericViewSet):
    queryset = Task.objects.select_related('room')
    serializer_class = TaskSerializer

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        task = services.complete_task(self.get_object())
        return Response(self.get_serializer(task).data)


class IncidentViewSet(viewsets.ModelViewSet):
    queryset = Incident.objects.select_related('room')
    serializer_class = IncidentSerializer

    def get_queryset(self):
        qs = super().get_queryset()
        for param in ('status', 'severity'):
            value = self.request.query_params.get(param)
            if value:
                qs = qs.filter(**{param: value})
        room = self.request.query_params.get('room')
        if room:
            qs = qs.filter(room_id=room)
        return qs

    @action(detail=True, methods=['post'])
    def resolve(self, request, pk=None):
        incident = services.resolve_incident(self.get_object())
        return Response(self.get_serializer(incident).data)


class AccountViewSet(viewsets.ModelViewSet):
    queryset = accounting.accounts_with_balances()
    serializer_class = AccountSerializer

    def destroy(self, request, pk=None):
        account = self.get_object()
        if account.journal_lines.exists() or account.children.exists():
            return Response({'error': 'Account is in use and cannot be deleted'},
                            status=status.HTTP_409_CONFLICT)
        account.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


class JournalEntryViewSet(viewsets.ModelViewSet):
    queryset = JournalEntry.objects.prefetch_related('lines__account')
    serializer_class = JournalEntrySerializer

    def get_queryset(self):
        qs = super().get_queryset()
        entry_status = self.request.query_params.get('status')
        if entry_status:
            qs = qs.filter(status=entry_status)
        params = DateRangeSerializer(data=self.request.query_params)
        params.is_valid(raise_exception=True)
        if params.validated_data.get('start'):
            qs = qs.filter(date__gte=params.validated_data['start'])
        if params.validated_data.get('end'):
            qs = qs.filter(date__lte=params.validated_data['end'])
        return qs

    def perform_destroy(self, instance):
        accounting.delete_journal_entry(instance)

    @action(detail=True, methods=['post'], url_path='post', url_name='post')
    def post_entry(self, request, pk=None):
        entry = accounting.post_journal_entry(self.get_object())
        return Response(self.get_serializer(entry).data)

    @action(detail=True, methods=['post'], url_path='reverse', url_name='reverse')
    def reverse_entry(self, request, pk=None):
        entry = accounting.reverse_journal_entry(self.get_object())
        return Response(self.get_serializer(entry).data)


@api_view(['GET', 'PUT'])
def exchange_rate(request):
    if request.method == 'PUT':
        payload = ExchangeRateSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        services.set_exchange_rate(payload.validated_data['usd_to_cdf'])
    return Response({'usd_to_cdf': services.current_exchange_rate()})


@api_view(['GET'])
def cash_report(request):
    params = DateRangeSerializer(data=request.query_params)
    params.is_valid(raise_exception=True)
    return Response(reports.cash_daily_summary(params.validated_data.get('start'),
                                               params.validated_data.get('end')))


@api_view(['GET'])
def overdue_debts_report(request):
    return Response(reports.overdue_debts())


@api_view(['GET'])
def room_status_report(request):
    return Response(reports.room_status_overview())

from rest_framework import serializers
from django.db import transaction

from . import accounting, billing, services
from .models import (
    Account,
    Booking,
    Incident,
    Invoice,
    InvoiceItem,
    JournalEntry,
    JournalEntryLine,
    Payment,
    Room,
    Task,
    Tenant,
)
from .room_status import effective_status


class RoomSerializer(serializers.ModelSerializer):
    effective_status = serializers.SerializerMethodField()

    class Meta:
        model = Room
        fields = '__all__'
        # physical status only changes through lifecycle operations
        read_only_fields = ('status',)

    def get_effective_status(self, obj):
        statuses = self.context.get('effective_statuses')
        if statuses is not None and obj.pk in statuses:
            return statuses[obj.pk]
        return effective_status(obj, obj.bookings.all(), self.context.get('at'))

    def validate_equipment(self, value):
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise serializers.ValidationError("equipment must be a list of strings")
        return value


class TenantSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(read_only=True)

    class Meta:
        model = Tenant
        fields = '__all__'


class BookingSerializer(serializers.ModelSerializer):
    room_id = serializers.PrimaryKeyRelatedField(queryset=Room.objects.all(), source='room', write_only=True)
    room = RoomSerializer(read_only=True)
    tenant_id = serializers.PrimaryKeyRelatedField(queryset=Tenant.objects.all(), source='tenant', write_only=True)
    tenant = TenantSerializer(read_only=True)
    planned_start = serializers.DateTimeField(required=False)
    total_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    status = serializers.ChoiceField(
        choices=[Booking.Status.PENDING, Booking.Status.CONFIRMED], default=Booking.Status.PENDING)

    # creation only
    discount_per_night = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0,
                                                  required=False, write_only=True)
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0, max_value=100,
                                        required=False, write_only=True)
    initial_payment_usd = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0,
                                                   required=False, write_only=True)
    initial_payment_cdf = serializers.DecimalField(max_digits=16, decimal_places=2, min_value=0,
                                                   required=False, write_only=True)
    payment_method = serializers.ChoiceField(choices=Payment.Method.choices, default=Payment.Method.CASH,
                                             write_only=True)
    check_in_now = serializers.BooleanField(default=False, write_only=True)

    CREATION_FIELDS = ('discount_per_night', 'tax_rate', 'initial_payment_usd', 'initial_payment_cdf',
                       'payment_method', 'check_in_now')

    class Meta:
        model = Booking
        fields = '__all__'
        read_only_fields = ('actual_check_in', 'actual_check_out')

    def to_representation(self, instance):
        data = super().to_representation(instance)
        data['nights'] = billing.calendar_nights(instance.planned_start, instance.planned_end)
        return data

    def validate(self, data):
        if self.instance:
            for field in ('room', 'tenant'):
                if field in data and data[field].pk != getattr(self.instance, f'{field}_id'):
                    raise serializers.ValidationError({f'{field}_id': "Cannot be changed after creation."})
            if 'status' in self.initial_data and self.initial_data['status'] != self.instance.status:
                raise serializers.ValidationError({'status': "Use the booking actions to change the status."})
            data.pop('status', None)
            for field in self.CREATION_FIELDS:
                data.pop(field, None)
            if self.instance.status not in Booking.BLOCKING_STATUSES:
                raise serializers.ValidationError(f"A {self.instance.status} booking cannot be modified.")
            planned_start = data.get('planned_start', self.instance.planned_start)
            planned_end = data.get('planned_end', self.instance.planned_end)
        else:
            planned_start = data.get('planned_start')
            planned_end = data.get('planned_end')
            if planned_start is None and not data.get('check_in_now'):
                raise serializers.ValidationError({'planned_start': "This field is required."})
            if data['tenant'].is_blacklisted:
                raise serializers.ValidationError({'tenant_id': "This tenant is blacklisted."})

        if planned_start and planned_end and planned_end <= planned_start:
            raise serializers.ValidationError("planned_end must be after planned_start")

        # Check for overlapping bookings during updates
        if self.instance and ('planned_start' in data or 'planned_end' in data):
            overlapping = services.overlapping_bookings(
                self.instance.room, planned_start, planned_end, exclude=self.instance).exists()
            if overlapping:
                raise serializers.ValidationError("Room is not available for the selected dates")

        return data

    def create(self, validated):
        return services.create_booking(
            validated['room'],
            validated['tenant'],
            validated.get('planned_start'),
            validated['planned_end'],
            status=validated.get('status', Booking.Status.PENDING),
            total_price=validated.get('total_price'),
            deposit=validated.get('deposit'),
            notes=validated.get('notes', ''),
            discount_per_night=validated.get('discount_per_night'),
            tax_rate=validated.get('tax_rate'),
            initial_payment_usd=validated.get('initial_payment_usd'),
            initial_payment_cdf=validated.get('initial_payment_cdf'),
            payment_method=validated.get('payment_method', Payment.Method.CASH),
            check_in_now=validated.get('check_in_now', False),
        )

    def update(self, instance, validated_data):
        """Update dates, prices or notes.

        Unless a total is given, a date change moves the total by the nights
        gained or lost at the nightly price, keeping earlier discounts.
        """
        with transaction.atomic():
            instance = Booking.objects.select_for_update().select_related('room', 'tenant').get(pk=instance.pk)
            validated_data.pop('room', None)
            validated_data.pop('tenant', None)

            if ('planned_start' in validated_data or 'planned_end' in validated_data) \
                    and 'total_price' not in validated_data:
                old_nights = billing.calendar_nights(instance.planned_start, instance.planned_end)
                new_nights = billing.calendar_nights(
                    validated_data.get('planned_start', instance.planned_start),
                    validated_data.get('planned_end', instance.planned_end),
                )
                delta = billing.to_decimal(instance.room.price_per_night) * (new_nights - old_nights)
                instance.total_price = max(billing.money(instance.total_price + delta), billing.ZERO)

            for attr, value in validated_data.items():
                setattr(instance, attr, value)
            instance.save()

        return instance


class InvoiceItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceItem
        exclude = ('invoice',)


class InvoiceSerializer(serializers.ModelSerializer):
    items = InvoiceItemSerializer(many=True, read_only=True)
    balance_due = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    tenant_name = serializers.CharField(source='tenant.full_name', read_only=True)

    class Meta:
        model = Invoice
        fields = '__all__'


class PaymentSerializer(serializers.ModelSerializer):
    booking_id = serializers.PrimaryKeyRelatedField(queryset=Booking.objects.all(), source='booking')
    invoice_id = serializers.PrimaryKeyRelatedField(queryset=Invoice.objects.all(), source='invoice',
                                                    required=False, allow_null=True)
    amount_usd = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    amount_cdf = serializers.DecimalField(max_digits=16, decimal_places=2, min_value=0, required=False)

    class Meta:
        model = Payment
        fields = ('id', 'booking_id', 'invoice_id', 'amount', 'amount_usd', 'amount_cdf', 'exchange_rate',
                  'method', 'payment_date', 'notes', 'created_at')
        read_only_fields = ('amount', 'exchange_rate')

    def validate(self, data):
        if self.instance and 'booking' in data and data['booking'].pk != self.instance.booking_id:
            raise serializers.ValidationError({'booking_id': "Cannot be changed after creation."})
        if not self.instance and not (billing.to_decimal(data.get('amount_usd')) > 0
                                      or billing.to_decimal(data.get('amount_cdf')) > 0):
            raise serializers.ValidationError("Enter an amount in USD or CDF.")
        return data

    def create(self, validated):
        return services.record_payment(
            validated['booking'],
            validated.get('amount_usd'),
            validated.get('amount_cdf'),
            method=validated.get('method', Payment.Method.CASH),
            invoice=validated.get('invoice'),
            payment_date=validated.get('payment_date'),
            notes=validated.get('notes', ''),
        )

    def update(self, instance, validated_data):
        validated_data.pop('booking', None)
        return services.update_payment(instance, **validated_data)


class TaskSerializer(serializers.ModelSerializer):
    room_id = serializers.PrimaryKeyRelatedField(queryset=Room.objects.all(), source='room')
    room_number = serializers.CharField(source='room.number', read_only=True)

    class Meta:
        model = Task
        fields = ('id', 'room_id', 'room_number', 'task_type', 'description', 'status', 'completed_at',
                  'created_at', 'updated_at')
        read_only_fields = ('completed_at',)

    def validate_status(self, value):
        if value == Task.Status.COMPLETED:
            raise serializers.ValidationError("Use the complete action to finish a task.")
        return value




class IncidentSerializer(serializers.ModelSerializer):
    room_id = serializers.PrimaryKeyRelatedField(queryset=Room.objects.all(), source='room')
    room_number = serializers.CharField(source='room.number', read_only=True)

    class Meta:
        model = Incident
        fields = ('id', 'room_id', 'room_number', 'description', 'severity', 'status', 'photos', 'resolved_at',
                  'created_at', 'updated_at')
        read_only_fields = ('resolved_at',)

    def validate_status(self, value):
        if value == Incident.Status.RESOLVED:
            raise serializers.ValidationError("Use the resolve action to close an incident.")
        return value

    def validate_photos(self, value):
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise serializers.ValidationError("photos must be a list of URLs")
        return value

    def update(self, instance, validated_data):
        # reopening an incident clears its resolution time
        if validated_data.get('status', instance.status) != Incident.Status.RESOLVED:
            validated_data['resolved_at'] = None
        return super().update(instance, validated_data)


class AccountSerializer(serializers.ModelSerializer):
    parent_id = serializers.PrimaryKeyRelatedField(queryset=Account.objects.all(), source='parent',
                                                   required=False, allow_null=True)
    balance = serializers.SerializerMethodField()

    class Meta:
        model = Account
        fields = ('id', 'code', 'name', 'account_type', 'category', 'description', 'parent_id', 'currency',
                  'balance', 'created_at', 'updated_at')

    def get_balance(self, obj):
        if not hasattr(obj, 'posted_debit'):
            obj = accounting.accounts_with_balances().get(pk=obj.pk)
        return obj.posted_debit - obj.posted_credit

    def validate_parent_id(self, value):
        if value is not None and self.instance and value.pk == self.instance.pk:
            raise serializers.ValidationError("An account cannot be its own parent.")
        return value


class JournalEntryLineSerializer(serializers.ModelSerializer):
    account_id = serializers.PrimaryKeyRelatedField(queryset=Account.objects.all(), source='account')
    account_code = serializers.CharField(source='account.code', read_only=True)
    account_name = serializers.CharField(source='account.name', read_only=True)
    debit = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)
    credit = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)

    class Meta:
        model = JournalEntryLine
        fields = ('id', 'account_id', 'account_code', 'account_name', 'debit', 'credit', 'description')


class JournalEntrySerializer(serializers.ModelSerializer):
    """Entry with its lines; lines are always written as a whole."""
    lines = JournalEntryLineSerializer(many=True)

    class Meta:
        model = JournalEntry
        fields = '__all__'
        read_only_fields = ('status', 'total_debit', 'total_credit')
        extra_kwargs = {'entry_number': {'required': False}}

    def create(self, validated):
        lines = validated.pop('lines')
        return accounting.create_journal_entry(lines, **validated)

    def update(self, instance, validated_data):
        lines = validated_data.pop('lines', None)
        return accounting.update_journal_entry(instance, lines, **validated_data)


# -- action payloads ---------------------------------------------------------

class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class ExtensionQuoteSerializer(serializers.Serializer):
    new_end_date = serializers.DateField()
    discount_per_night = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)


class ExtendSerializer(ExtensionQuoteSerializer):
    new_total = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)

    def validate_new_total(self, value):
        if value is not None and value <= 0:
            raise serializers.ValidationError("Total price must be greater than zero.")
        return value


class PaymentQuoteSerializer(serializers.Serializer):
    invoice_id = serializers.PrimaryKeyRelatedField(queryset=Invoice.objects.all(), source='invoice',
                                                    required=False)
    balance_due = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    amount_usd = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)
    amount_cdf = serializers.DecimalField(max_digits=16, decimal_places=2, min_value=0, default=0)
    exchange_rate = serializers.DecimalField(max_digits=12, decimal_places=4, required=False)

    def validate(self, data):
        if 'invoice' not in data and 'balance_due' not in data:
            raise serializers.ValidationError("Give either invoice_id or balance_due.")
        if 'exchange_rate' in data and data['exchange_rate'] <= 0:
            raise serializers.ValidationError({'exchange_rate': "Exchange rate must be positive."})
        return data


class DiscountSerializer(serializers.Serializer):
    discount_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    discount_percentage = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0,
                                                   max_value=100, required=False)


class MaintenanceSerializer(serializers.Serializer):
    enabled = serializers.BooleanField()


class ExchangeRateSerializer(serializers.Serializer):
    usd_to_cdf = serializers.DecimalField(max_digits=12, decimal_places=4)

    def validate_usd_to_cdf(self, value):
        if value <= 0:
            raise serializers.ValidationError("Exchange rate must be positive.")
        return value


class DateRangeSerializer(serializers.Serializer):
    start = serializers.DateField(required=False)
    end = serializers.DateField(required=False)

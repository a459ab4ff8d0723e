from django.contrib import admin
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
    Setting,
    Task,
    Tenant,
)


@admin.register(Room)
class RoomAdmin(admin.ModelAdmin):
    list_display = ('number', 'room_type', 'floor', 'capacity', 'price_per_night', 'status')
    list_filter = ('room_type', 'status', 'floor')
    search_fields = ('number',)


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ('last_name', 'first_name', 'phone', 'email', 'is_blacklisted')
    list_filter = ('is_blacklisted',)
    search_fields = ('last_name', 'first_name', 'phone', 'email', 'id_document')


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ('id', 'room', 'tenant', 'planned_start', 'planned_end', 'total_price', 'status')
    list_filter = ('status', 'room')
    search_fields = ('tenant__last_name', 'tenant__first_name', 'room__number')


class InvoiceItemInline(admin.TabularInline):
    model = InvoiceItem
    extra = 0


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'date', 'tenant', 'net_total', 'amount_paid', 'status')
    list_filter = ('status',)
    search_fields = ('invoice_number', 'tenant__last_name')
    inlines = [InvoiceItemInline]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('payment_date', 'booking', 'invoice', 'amount_usd', 'amount_cdf', 'exchange_rate', 'amount', 'method')
    list_filter = ('method', 'payment_date')


@admin.register(Task)
class TaskAdmin(admin.ModelAdmin):
    list_display = ('room', 'task_type', 'status', 'created_at', 'completed_at')
    list_filter = ('task_type', 'status')


@admin.register(Incident)
class IncidentAdmin(admin.ModelAdmin):
    list_display = ('room', 'severity', 'status', 'created_at', 'resolved_at')
    list_filter = ('severity', 'status')
    search_fields = ('room__number', 'description')


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'account_type', 'category', 'currency')
    list_filter = ('account_type',)
    search_fields = ('code', 'name')


class JournalEntryLineInline(admin.TabularInline):
    model = JournalEntryLine
    extra = 0


@admin.register(JournalEntry)
class JournalEntryAdmin(admin.ModelAdmin):
    list_display = ('entry_number', 'date', 'description', 'total_debit', 'total_credit', 'status')
    list_filter = ('status',)
    search_fields = ('entry_number', 'description', 'reference')
    inlines = [JournalEntryLineInline]


admin.site.register(Setting)

from decimal import Decimal

from django.db import models
from django.core.validators import MinValueValidator, MaxValueValidator
from django.utils import timezone

from .exceptions import InvalidTransition

MONEY = dict(max_digits=12, decimal_places=2)


class RoomStatus(models.TextChoices):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    MAINTENANCE = "MAINTENANCE"
    PENDING_CLEANING = "PENDING_CLEANING"
    PENDING_CHECKOUT = "PENDING_CHECKOUT"
    # labels still present in imported data
    LEGACY_FREE = "Libre", "Libre"
    LEGACY_OCCUPIED = "Occupé", "Occupé"
    LEGACY_CLEANING = "Nettoyage", "Nettoyage"
    LEGACY_MAINTENANCE = "Maintenance", "Maintenance"


LEGACY_ROOM_STATUSES = {
    "Libre": RoomStatus.AVAILABLE,
    "Occupé": RoomStatus.OCCUPIED,
    "Nettoyage": RoomStatus.PENDING_CLEANING,
    "Maintenance": RoomStatus.MAINTENANCE,
}


def normalize_room_status(value):
    """Map a stored physical status, legacy label or not, to its canonical value."""
    if value in LEGACY_ROOM_STATUSES:
        return LEGACY_ROOM_STATUSES[value]
    try:
        return RoomStatus(value)
    except ValueError:
        return value


class Room(models.Model):
    class Type(models.TextChoices):
        SINGLE = "SINGLE"
        DOUBLE = "DOUBLE"
        SUITE = "SUITE"
        STUDIO = "STUDIO"

    Status = RoomStatus

    number = models.CharField(max_length=20, unique=True)
    room_type = models.CharField(max_length=10, choices=Type.choices, default=Type.SINGLE)
    floor = models.IntegerField(default=0)
    capacity = models.PositiveIntegerField(default=1)
    price_per_night = models.DecimalField(**MONEY, validators=[MinValueValidator(0)])
    price_per_week = models.DecimalField(**MONEY, null=True, blank=True, validators=[MinValueValidator(0)])
    price_per_month = models.DecimalField(**MONEY, null=True, blank=True, validators=[MinValueValidator(0)])
    equipment = models.JSONField(default=list, blank=True)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=RoomStatus.choices, default=RoomStatus.AVAILABLE)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['number']

    def __str__(self):
        return f"Room {self.number} ({self.room_type})"

    @property
    def physical_status(self):
        return normalize_room_status(self.status)


class Tenant(models.Model):
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=50, blank=True)
    id_document = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)
    is_blacklisted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['last_name', 'first_name']

    def __str__(self):
        return self.full_name

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()


class Booking(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING"
        CONFIRMED = "CONFIRMED"
        IN_PROGRESS = "IN_PROGRESS"
        COMPLETED = "COMPLETED"
        CANCELLED = "CANCELLED"

    # IN_PROGRESS -> CONFIRMED only happens when a stay is extended.
    TRANSITIONS = {
        Status.PENDING: {Status.CONFIRMED, Status.IN_PROGRESS, Status.CANCELLED},
        Status.CONFIRMED: {Status.IN_PROGRESS, Status.COMPLETED, Status.CANCELLED},
        Status.IN_PROGRESS: {Status.COMPLETED, Status.CONFIRMED, Status.CANCELLED},
        Status.COMPLETED: set(),
        Status.CANCELLED: set(),
    }
    BLOCKING_STATUSES = (Status.PENDING, Status.CONFIRMED, Status.IN_PROGRESS)

    room = models.ForeignKey(Room, on_delete=models.PROTECT, related_name="bookings")
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="bookings")
    planned_start = models.DateTimeField()
    planned_end = models.DateTimeField()
    actual_check_in = models.DateTimeField(null=True, blank=True)
    actual_check_out = models.DateTimeField(null=True, blank=True)
    total_price = models.DecimalField(**MONEY, validators=[MinValueValidator(0)])
    deposit = models.DecimalField(**MONEY, default=Decimal("0.00"), validators=[MinValueValidator(0)])
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.PENDING)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-planned_start']

    def __str__(self):
        return f"Booking {self.pk} - room {self.room.number} ({self.planned_start:%Y-%m-%d} to {self.planned_end:%Y-%m-%d})"

    @property
    def guest_in_room(self):
        """Checked in and not gone yet; an extended stay is CONFIRMED again."""
        if self.status == self.Status.IN_PROGRESS:
            return True
        if self.status != self.Status.CONFIRMED:
            return False
        if self.actual_check_in is not None:
            return self.actual_check_out is None
        return (self.planned_start <= timezone.now()
                and self.room.physical_status in (RoomStatus.OCCUPIED, RoomStatus.PENDING_CHECKOUT))

    def can_transition_to(self, status):
        return status in self.TRANSITIONS.get(self.status, set())

    def transition_to(self, status):
        if not self.can_transition_to(status):
            raise InvalidTransition(f"Booking {self.pk} cannot go from {self.status} to {status}")
        self.status = status


class Invoice(models.Model):
    class Status(models.TextChoices):
        DRAFT = "DRAFT"
        ISSUED = "ISSUED"
        PARTIALLY_PAID = "PARTIALLY_PAID"
        PAID = "PAID"
        CANCELLED = "CANCELLED"

    OPEN_STATUSES = (Status.DRAFT, Status.ISSUED, Status.PARTIALLY_PAID)

    invoice_number = models.CharField(max_length=30, unique=True)
    date = models.DateTimeField(default=timezone.now)
    due_date = models.DateField(null=True, blank=True)
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="invoices")
    tenant = models.ForeignKey(Tenant, on_delete=models.PROTECT, related_name="invoices")
    status = models.CharField(max_length=15, choices=Status.choices, default=Status.ISSUED)
    subtotal = models.DecimalField(**MONEY, default=Decimal("0.00"))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"),
                                   validators=[MinValueValidator(0), MaxValueValidator(100)])
    tax_amount = models.DecimalField(**MONEY, default=Decimal("0.00"))
    total = models.DecimalField(**MONEY, default=Decimal("0.00"))
    discount_amount = models.DecimalField(**MONEY, default=Decimal("0.00"))
    discount_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))
    net_total = models.DecimalField(**MONEY, default=Decimal("0.00"))
    amount_paid = models.DecimalField(**MONEY, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="USD")
    notes = models.TextField(blank=True)
    period_start = models.DateTimeField(null=True, blank=True)
    period_end = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-date', '-id']

    def __str__(self):
        return self.invoice_number

    @property
    def balance_due(self):
        return max(self.net_total - self.amount_paid, Decimal("0.00"))


class InvoiceItem(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="items")
    description = models.CharField(max_length=255)
    quantity = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("1"))
    unit_price = models.DecimalField(**MONEY)
    total = models.DecimalField(**MONEY)

    class Meta:
        ordering = ['id']


class Payment(models.Model):
    class Method(models.TextChoices):
        CASH = "CASH"
        CARD = "CARD"
        TRANSFER = "TRANSFER"
        CHEQUE = "CHEQUE"

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="payments")
    invoice = models.ForeignKey(Invoice, on_delete=models.SET_NULL, null=True, blank=True, related_name="payments")
    # USD value of the payment at its own exchange rate
    amount = models.DecimalField(**MONEY)
    amount_usd = models.DecimalField(**MONEY, default=Decimal("0.00"), validators=[MinValueValidator(0)])
    amount_cdf = models.DecimalField(max_digits=16, decimal_places=2, default=Decimal("0.00"),
                                     validators=[MinValueValidator(0)])
    exchange_rate = models.DecimalField(max_digits=12, decimal_places=4)
    method = models.CharField(max_length=10, choices=Method.choices, default=Method.CASH)
    payment_date = models.DateField(default=timezone.localdate)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-payment_date', '-id']


class Task(models.Model):
    class Type(models.TextChoices):
        CLEANING = "CLEANING"
        REPAIR = "REPAIR"
        INVENTORY = "INVENTORY"

    class Status(models.TextChoices):
        TO_DO = "TO_DO"
        IN_PROGRESS = "IN_PROGRESS"
        COMPLETED = "COMPLETED"

    room = models.ForeignKey(Room, on_delete=models.CASCADE, related_name="tasks")
    task_type = models.CharField(max_length=10, choices=Type.choices, default=Type.CLEANING)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.TO_DO)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']


class Setting(models.Model):
    key = models.CharField(max_length=100, unique=True)
    value = models.JSONField(default=dict)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.key


class Incident(models.Model):
    class Severity(models.TextChoices):
        LOW = "LOW"
        MEDIUM = "MEDIUM"
        HIGH = "HIGH"

    class Status(models.TextChoices):
        OPEN = "OPEN"
        IN_PROGRESS = "IN_PROGRESS"
        RESOLVED = "RESOLVED"

    room = models.ForeignKey(Room, on_delete=models.PROTECT, related_name="incidents")
    description = models.TextField()
    severity = models.CharField(max_length=6, choices=Severity.choices, default=Severity.MEDIUM)
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.OPEN)
    photos = models.JSONField(default=list, blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Incident {self.pk} - room {self.room.number} ({self.severity})"


class Account(models.Model):
    class Type(models.TextChoices):
        ASSET = "ASSET"
        LIABILITY = "LIABILITY"
        EQUITY = "EQUITY"
        REVENUE = "REVENUE"
        EXPENSE = "EXPENSE"

    code = models.CharField(max_length=20, unique=True)
    name = models.CharField(max_length=100)
    account_type = models.CharField(max_length=10, choices=Type.choices)
    category = models.CharField(max_length=50, blank=True)
    description = models.TextField(blank=True)
    parent = models.ForeignKey('self', on_delete=models.PROTECT, null=True, blank=True, related_name="children")
    currency = models.CharField(max_length=3, default="USD")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['code']

    def __str__(self):
        return f"{self.code} {self.name}"


class JournalEntry(models.Model):
    class Status(models.TextChoices):
        DRAFT = "DRAFT"
        POSTED = "POSTED"
        REVERSED = "REVERSED"

    entry_number = models.CharField(max_length=30, unique=True)
    date = models.DateField(default=timezone.localdate)
    description = models.CharField(max_length=255)
    reference = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=8, choices=Status.choices, default=Status.DRAFT)
    total_debit = models.DecimalField(**MONEY, default=Decimal("0.00"))
    total_credit = models.DecimalField(**MONEY, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="USD")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-date', '-id']
        verbose_name_plural = "journal entries"

    def __str__(self):
        return self.entry_number


class JournalEntryLine(models.Model):
    entry = models.ForeignKey(JournalEntry, on_delete=models.CASCADE, related_name="lines")
    account = models.ForeignKey(Account, on_delete=models.PROTECT, related_name="journal_lines")
    debit = models.DecimalField(**MONEY, default=Decimal("0.00"), validators=[MinValueValidator(0)])
    credit = models.DecimalField(**MONEY, default=Decimal("0.00"), validators=[MinValueValidator(0)])
    description = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ['id']

"""
Pricing, invoice totals and dual-currency payment arithmetic.

Everything here is pure: amounts in, amounts out. The USD->CDF exchange rate
is always an explicit argument, never looked up.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from django.utils import timezone

from .exceptions import InvalidExtension
from .models import Invoice

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
# below this difference a balance counts as settled
TOLERANCE = Decimal("0.01")

COMPLETE = "complete"
SURPLUS = "surplus"
PARTIAL = "partial"


def to_decimal(value):
    if value is None or value == '':
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value):
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def local_day(value):
    if isinstance(value, datetime):
        if timezone.is_aware(value):
            value = timezone.localtime(value)
        return value.date()
    return value


def calendar_nights(start, end):
    """Calendar days between two instants, in the local time zone."""
    return (local_day(end) - local_day(start)).days


@dataclass
class LineItem:
    description: str
    quantity: Decimal
    unit_price: Decimal

    @property
    def total(self):
        return money(to_decimal(self.quantity) * to_decimal(self.unit_price))


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    discount_amount: Decimal
    discount_percentage: Decimal
    net_total: Decimal


def calculate_invoice_totals(items, tax_rate=None, discount_amount=None, discount_percentage=None):
    """Totals of an invoice.

    A discount percentage, when given, wins over a discount amount. The
    discount never exceeds the gross total, so ``net_total`` never goes
    negative because of a discount.
    """
    subtotal = money(sum((item.total for item in items), ZERO))
    rate = to_decimal(tax_rate)
    tax_amount = money(subtotal * rate / HUNDRED) if rate > 0 else ZERO
    total = subtotal + tax_amount

    percentage = to_decimal(discount_percentage)
    amount = to_decimal(discount_amount)
    if percentage > 0:
        applied = money(total * min(percentage, HUNDRED) / HUNDRED)
    elif amount > 0:
        applied = min(money(amount), total)
    else:
        applied = ZERO

    effective_percentage = money(applied / total * HUNDRED) if total > 0 else ZERO
    return InvoiceTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        total=total,
        discount_amount=applied,
        discount_percentage=effective_percentage,
        net_total=total - applied,
    )


def stay_items(room, start, end, deposit=None, label="Stay"):
    items = []
    nights = calendar_nights(start, end)
    if nights > 0:
        items.append(LineItem(
            description=(
                f"{label} {room.room_type} room {room.number} - {nights} nights "
                f"from {local_day(start):%d/%m/%Y} to {local_day(end):%d/%m/%Y}"
            ),
            quantity=Decimal(nights),
            unit_price=to_decimal(room.price_per_night),
        ))
    if to_decimal(deposit) > 0:
        items.append(LineItem(description="Deposit", quantity=Decimal(1), unit_price=money(deposit)))
    return items


def stay_price(nightly_price, nights, discount_per_night=None):
    """Price of ``nights`` nights at a nightly rate minus a per-night discount, floored at zero."""
    nights = Decimal(max(nights, 0))
    price = nights * to_decimal(nightly_price) - nights * to_decimal(discount_per_night)
    return max(money(price), ZERO)


@dataclass(frozen=True)
class ExtensionQuote:
    additional_nights: int
    nightly_price: Decimal
    gross_extra: Decimal
    discount_extra: Decimal
    net_extra: Decimal
    old_total: Decimal
    new_total: Decimal
    # zero-discount price offered to the operator before confirming
    suggested_total: Decimal

    @property
    def needs_invoice(self):
        return self.net_extra > 0


def calculate_extension(current_end, new_end, nightly_price, old_total, discount_per_night=None):
    """Money side of a stay extension.

    The booking total is not recomputed from scratch: the extension's net
    price is added to whatever the booking total currently is.
    """
    nights = calendar_nights(current_end, new_end)
    if nights <= 0:
        raise InvalidExtension({
            'new_end_date': f"New end date must be after the current end date "
                            f"({local_day(current_end):%Y-%m-%d})."
        })
    nightly = to_decimal(nightly_price)
    gross = money(nights * nightly)
    discount = money(nights * to_decimal(discount_per_night))
    net = gross - discount
    old = money(old_total)
    return ExtensionQuote(
        additional_nights=nights,
        nightly_price=money(nightly),
        gross_extra=gross,
        discount_extra=discount,
        net_extra=net,
        old_total=old,
        new_total=old + net,
        suggested_total=old + gross,
    )


def _raw_usd_equivalent(amount_usd, amount_cdf, rate):
    rate = to_decimal(rate)
    if rate <= 0:
        raise ValueError("exchange rate must be positive")
    return to_decimal(amount_usd) + to_decimal(amount_cdf) / rate


def usd_equivalent(amount_usd, amount_cdf, rate):
    """USD value of a payment made of physical USD and physical CDF at ``rate`` CDF per USD."""
    return money(_raw_usd_equivalent(amount_usd, amount_cdf, rate))


def to_cdf(amount_usd, rate):
    return (to_decimal(amount_usd) * to_decimal(rate)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PaymentQuote:
    status: str
    balance_due: Decimal
    paid_usd_equivalent: Decimal
    rate: Decimal
    remaining_usd: Decimal = ZERO
    remaining_cdf: Decimal = ZERO
    change_usd: Decimal = ZERO
    change_cdf: Decimal = ZERO


def classify_payment(balance_due, amount_usd, amount_cdf, rate):
    """Compare a payment being entered against the balance due.

    ``complete`` when the two agree within a cent, ``surplus`` when the
    customer handed over too much (change is due), ``partial`` otherwise.
    The comparison is made before rounding; only reported amounts are rounded.
    """
    balance = money(balance_due)
    raw_paid = _raw_usd_equivalent(amount_usd, amount_cdf, rate)
    paid = money(raw_paid)
    rate = to_decimal(rate)
    difference = balance - raw_paid
    if abs(difference) < TOLERANCE:
        return PaymentQuote(COMPLETE, balance, paid, rate)
    if raw_paid > balance:
        change = money(raw_paid - balance)
        return PaymentQuote(SURPLUS, balance, paid, rate,
                            change_usd=change, change_cdf=to_cdf(change, rate))
    remaining = money(difference)
    return PaymentQuote(PARTIAL, balance, paid, rate,
                        remaining_usd=remaining, remaining_cdf=to_cdf(remaining, rate))


def invoice_status(current, net_total, amount_paid):
    """Status an invoice should have once ``amount_paid`` has been received."""
    if current == Invoice.Status.CANCELLED:
        return current
    if to_decimal(amount_paid) > 0 and to_decimal(net_total) - to_decimal(amount_paid) < TOLERANCE:
        return Invoice.Status.PAID
    if to_decimal(amount_paid) > 0:
        return Invoice.Status.PARTIALLY_PAID
    if current in (Invoice.Status.PAID, Invoice.Status.PARTIALLY_PAID):
        return Invoice.Status.ISSUED
    return current


def journal_totals(lines):
    """Total debit and total credit of journal lines given as mappings."""
    debit = sum((money(line.get('debit')) for line in lines), ZERO)
    credit = sum((money(line.get('credit')) for line in lines), ZERO)
    return debit, credit


def is_balanced(total_debit, total_credit):
    return abs(to_decimal(total_debit) - to_decimal(total_credit)) < TOLERANCE

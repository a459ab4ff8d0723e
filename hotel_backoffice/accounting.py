"""
Journal entries and account balances.

An entry moves DRAFT -> POSTED -> REVERSED. Only posted entries count in
account balances, and only drafts can be edited or deleted.
"""

import logging

from django.db import transaction
from django.db.models import DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone
from rest_framework import serializers

from . import billing
from .exceptions import InvalidTransition
from .models import Account, JournalEntry, JournalEntryLine

logger = logging.getLogger(__name__)

POSTED_LINES = Q(journal_lines__entry__status=JournalEntry.Status.POSTED)


def next_entry_number(day=None):
    day = day or timezone.localdate()
    prefix = f"JNL-{day:%Y%m%d}-"
    last = (JournalEntry.objects.filter(entry_number__startswith=prefix)
            .order_by('-entry_number')
            .values_list('entry_number', flat=True)
            .first())
    sequence = int(last[len(prefix):]) + 1 if last else 1
    return f"{prefix}{sequence:03d}"


def accounts_with_balances():
    """Accounts annotated with posted debit, credit and balance (debit minus credit)."""
    zero = Value(billing.ZERO, output_field=DecimalField(max_digits=12, decimal_places=2))
    return Account.objects.annotate(
        posted_debit=Coalesce(Sum('journal_lines__debit', filter=POSTED_LINES), zero),
        posted_credit=Coalesce(Sum('journal_lines__credit', filter=POSTED_LINES), zero),
    )


def validate_lines(lines):
    """Check journal lines and return their (debit, credit) totals.

    Every line goes to one side only, and the entry must balance within a cent.
    """
    if len(lines) < 2:
        raise serializers.ValidationError({'lines': "An entry needs at least two lines."})
    for index, line in enumerate(lines):
        debit, credit = billing.money(line.get('debit')), billing.money(line.get('credit'))
        if (debit > 0) == (credit > 0):
            raise serializers.ValidationError(
                {'lines': f"Line {index + 1} must have either a debit or a credit."})
    total_debit, total_credit = billing.journal_totals(lines)
    if not billing.is_balanced(total_debit, total_credit):
        raise serializers.ValidationError(
            {'lines': f"Entry is not balanced: debit {total_debit} != credit {total_credit}."})
    return total_debit, total_credit


def _write_lines(entry, lines):
    JournalEntryLine.objects.bulk_create([
        JournalEntryLine(
            entry=entry,
            account=line['account'],
            debit=billing.money(line.get('debit')),
            credit=billing.money(line.get('credit')),
            description=line.get('description', ''),
        )
        for line in lines
    ])


def create_journal_entry(lines, *, description, date=None, reference='', entry_number=None,
                         currency='USD', status=JournalEntry.Status.DRAFT):
    total_debit, total_credit = validate_lines(lines)
    with transaction.atomic():
        entry = JournalEntry.objects.create(
            entry_number=entry_number or next_entry_number(date),
            date=date or timezone.localdate(),
            description=description,
            reference=reference,
            status=status,
            total_debit=total_debit,
            total_credit=total_credit,
            currency=currency,
        )
        _write_lines(entry, lines)
    logger.info("Journal entry %s created (%s, %s)", entry.entry_number, entry.status, total_debit)
    return entry


def update_journal_entry(entry, lines=None, **changes):
    """Edit a draft entry; ``lines`` replaces all of its lines."""
    if entry.status != JournalEntry.Status.DRAFT:
        raise InvalidTransition(f"Journal entry {entry.entry_number} is {entry.status} and cannot be edited.")
    with transaction.atomic():
        if lines is not None:
            entry.total_debit, entry.total_credit = validate_lines(lines)
            entry.lines.all().delete()
            _write_lines(entry, lines)
        for attr, value in changes.items():
            setattr(entry, attr, value)
        entry.save()
    return entry


def delete_journal_entry(entry):
    if entry.status != JournalEntry.Status.DRAFT:
        raise InvalidTransition(f"Journal entry {entry.entry_number} is {entry.status} and cannot be deleted.")
    entry.delete()


def post_journal_entry(entry):
    if entry.status != JournalEntry.Status.DRAFT:
        raise InvalidTransition(f"Only draft entries can be posted ({entry.entry_number} is {entry.status}).")
    entry.status = JournalEntry.Status.POSTED
    entry.save(update_fields=['status', 'updated_at'])
    logger.info("Journal entry %s posted", entry.entry_number)
    return entry


def reverse_journal_entry(entry):
    """Take a posted entry back out of the account balances."""
    if entry.status != JournalEntry.Status.POSTED:
        raise InvalidTransition(f"Only posted entries can be reversed ({entry.entry_number} is {entry.status}).")
    entry.status = JournalEntry.Status.REVERSED
    entry.save(update_fields=['status', 'updated_at'])
    logger.info("Journal entry %s reversed", entry.entry_number)
    return entry

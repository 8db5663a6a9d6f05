"""
Company balance ledger.

Every money movement against a company goes through `record_transaction`,
which inserts the MoneyTransaction row and moves the company's cached
balance in one atomic block while holding the company row lock. The lock
is keyed by company, so writers on the same company serialize and writers
on different companies do not block each other.

Invariant: for every company, `balance` equals the sum of its credits
minus the sum of its debits, and never goes below zero.
`recompute_balance` checks (and optionally repairs) that invariant.

Amounts are `decimal.Decimal` quantized to cents end to end.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import logging

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Count, Q, Sum

from backend.companies.models import Company
from backend.core.exceptions import (
    APIError, ConflictError, InsufficientFundsError, InternalError,
    NotFoundError, Unauthorized, ValidationError,
)
from .models import MoneyTransaction

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
ZERO = Decimal('0.00')
# DecimalField(max_digits=14, decimal_places=2)
MAX_AMOUNT = Decimal('999999999999.99')

TRANSACTION_TYPES = (MoneyTransaction.CREDIT, MoneyTransaction.DEBIT)
EDITABLE_FIELDS = {'description', 'order_number', 'type'}
IMMUTABLE_FIELDS = {'amount', 'company', 'company_id', 'companyId'}
ORDER_NUMBER_MAX_LENGTH = MoneyTransaction._meta.get_field('order_number').max_length


@dataclass(frozen=True)
class LedgerResult:
    transaction: MoneyTransaction
    new_balance: Decimal


@dataclass(frozen=True)
class ReconciliationReport:
    company_id: int
    company_name: str
    cached_balance: Decimal
    ledger_balance: Decimal
    transaction_count: int = 0
    repaired: bool = False

    @property
    def drift(self):
        return self.cached_balance - self.ledger_balance

    @property
    def in_sync(self):
        return self.drift == ZERO

    def as_dict(self):
        return {
            'company_id': self.company_id,
            'company_name': self.company_name,
            'cached_balance': str(self.cached_balance),
            'ledger_balance': str(self.ledger_balance),
            'drift': str(self.drift),
            'transaction_count': self.transaction_count,
            'in_sync': self.in_sync,
            'repaired': self.repaired,
        }


def parse_amount(value):
    """Coerce request input into a positive cent-precision Decimal"""
    if value is None or isinstance(value, bool):
        raise ValidationError('Amount must be a positive number')
    try:
        if isinstance(value, float):
            amount = Decimal(str(value))
        elif isinstance(value, str):
            amount = Decimal(value.strip())
        else:
            amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError('Amount must be a positive number')

    if not amount.is_finite() or amount <= 0:
        raise ValidationError('Amount must be a positive number')
    if amount > MAX_AMOUNT:
        raise ValidationError('Amount is too large')
    if amount != amount.quantize(CENT):
        raise ValidationError('Amount cannot have more than 2 decimal places')
    return amount.quantize(CENT)


def parse_type(value):
    if value not in TRANSACTION_TYPES:
        raise ValidationError('Type must be credit or debit')
    return value


def signed_amount(txn_type, amount):
    return amount if txn_type == MoneyTransaction.CREDIT else -amount


def _parse_company_id(company_id):
    try:
        return int(company_id)
    except (TypeError, ValueError):
        raise NotFoundError('Company not found')


def _lock_company(company_id):
    """Fetch the company row with a row lock; must run inside an atomic block"""
    company = Company.objects.select_for_update().filter(pk=_parse_company_id(company_id)).first()
    if company is None:
        raise NotFoundError('Company not found')
    return company


def _clean_text(value, field_name, max_length=None):
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ValidationError(f'{field_name} must be a string')
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f'{field_name} cannot exceed {max_length} characters')
    return value


def _apply_delta(company, delta):
    """Move the locked company's balance by `delta`, refusing to go below zero"""
    new_balance = company.balance + delta
    if new_balance < ZERO:
        logger.warning(
            f"Rejected ledger change for company {company.id}: "
            f"balance {company.balance} + ({delta}) would be negative"
        )
        raise InsufficientFundsError()
    if new_balance > MAX_AMOUNT:
        raise ValidationError('Resulting balance is too large')
    company.balance = new_balance
    company.save(update_fields=['balance', 'updated_at'])
    return new_balance


def record_transaction(company_id, amount, txn_type, actor, description=None, order_number=None):
    """
    Record a credit or debit against a company and move its balance.

    Input is validated before the store is touched. The balance read, the
    non-negative check, the insert and the balance update all happen under
    the company row lock inside one atomic block: either both rows change
    or neither does.

    Raises ValidationError, Unauthorized, NotFoundError,
    InsufficientFundsError, ConflictError or InternalError.
    """
    if actor is None:
        raise Unauthorized()
    amount = parse_amount(amount)
    txn_type = parse_type(txn_type)
    description = _clean_text(description, 'Description')
    order_number = _clean_text(order_number, 'Order number', ORDER_NUMBER_MAX_LENGTH)

    try:
        with transaction.atomic():
            company = _lock_company(company_id)
            new_balance = _apply_delta(company, signed_amount(txn_type, amount))
            txn = MoneyTransaction.objects.create(
                company=company,
                type=txn_type,
                amount=amount,
                description=description,
                order_number=order_number,
                created_by_id=actor.user_id,
            )
    except APIError:
        raise
    except IntegrityError as e:
        logger.warning(f"Integrity error recording transaction for company {company_id}: {e}")
        raise ConflictError() from e
    except DatabaseError as e:
        raise InternalError(f'Could not record transaction for company {company_id}') from e

    logger.info(
        f"Recorded {txn_type} of {amount} for company {company.id} "
        f"(txn {txn.id}, by user {actor.user_id}); balance now {new_balance}"
    )
    return LedgerResult(transaction=txn, new_balance=new_balance)


def update_transaction_metadata(transaction_id, fields):
    """
    Update the non-financial fields of a transaction.

    `description` and `order_number` can change freely. `amount` and the
    owning company are immutable. Changing `type` flips the sign of the
    transaction, so the company balance is moved by the difference under
    the company row lock; a flip that would make the balance negative is
    rejected with InsufficientFundsError and nothing changes.
    """
    fields = dict(fields or {})
    forbidden = IMMUTABLE_FIELDS & fields.keys()
    if forbidden:
        raise ValidationError('Amount and company cannot be changed after creation')
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unsupported field(s): {', '.join(sorted(unknown))}")

    if 'type' in fields:
        fields['type'] = parse_type(fields['type'])
    if 'description' in fields:
        fields['description'] = _clean_text(fields['description'], 'Description')
    if 'order_number' in fields:
        fields['order_number'] = _clean_text(fields['order_number'], 'Order number', ORDER_NUMBER_MAX_LENGTH)

    try:
        pk = int(transaction_id)
    except (TypeError, ValueError):
        raise NotFoundError('Transaction not found')

    company_id = MoneyTransaction.objects.filter(pk=pk).values_list('company_id', flat=True).first()
    if company_id is None:
        raise NotFoundError('Transaction not found')

    try:
        with transaction.atomic():
            # Lock order is company then transaction, same as record_transaction
            company = _lock_company(company_id)
            txn = MoneyTransaction.objects.select_for_update().filter(pk=pk).first()
            if txn is None:
                raise NotFoundError('Transaction not found')

            update_fields = []
            new_type = fields.get('type')
            if new_type is not None and new_type != txn.type:
                delta = signed_amount(new_type, txn.amount) - txn.signed_amount
                new_balance = _apply_delta(company, delta)
                logger.info(
                    f"Transaction {txn.id} type changed {txn.type} -> {new_type}; "
                    f"company {company.id} balance now {new_balance}"
                )
                txn.type = new_type
                update_fields.append('type')
            for name in ('description', 'order_number'):
                if name in fields:
                    setattr(txn, name, fields[name])
                    update_fields.append(name)
            if update_fields:
                txn.save(update_fields=update_fields)
    except APIError:
        raise
    except IntegrityError as e:
        raise ConflictError() from e
    except DatabaseError as e:
        raise InternalError(f'Could not update transaction {transaction_id}') from e

    return txn


def ledger_totals(queryset):
    """Credit, debit and net totals over a MoneyTransaction queryset"""
    totals = queryset.aggregate(
        total_credit=Sum('amount', filter=Q(type=MoneyTransaction.CREDIT)),
        total_debit=Sum('amount', filter=Q(type=MoneyTransaction.DEBIT)),
        count=Count('id'),
    )
    total_credit = totals['total_credit'] or ZERO
    total_debit = totals['total_debit'] or ZERO
    return {
        'total_credit': total_credit,
        'total_debit': total_debit,
        'net': total_credit - total_debit,
        'count': totals['count'],
    }


def recompute_balance(company_id, repair=False):
    """
    Compare a company's cached balance with the total of its ledger.

    With `repair=True` the cached balance is overwritten with the ledger
    total while holding the company row lock.
    """
    with transaction.atomic():
        if repair:
            company = _lock_company(company_id)
        else:
            company = Company.objects.filter(pk=_parse_company_id(company_id)).first()
            if company is None:
                raise NotFoundError('Company not found')

        totals = ledger_totals(MoneyTransaction.objects.filter(company_id=company.id))
        report = ReconciliationReport(
            company_id=company.id,
            company_name=company.name,
            cached_balance=company.balance,
            ledger_balance=totals['net'],
            transaction_count=totals['count'],
        )
        if report.in_sync:
            return report

        logger.warning(
            f"Balance drift for company {company.id}: cached {report.cached_balance}, "
            f"ledger {report.ledger_balance}"
        )
        if not repair:
            return report
        if report.ledger_balance < ZERO:
            raise ConflictError(f'Ledger total for company {company.id} is negative; cannot repair balance')

        company.balance = report.ledger_balance
        company.save(update_fields=['balance', 'updated_at'])
        logger.info(f"Repaired balance for company {company.id}: {report.cached_balance} -> {report.ledger_balance}")
        return ReconciliationReport(
            company_id=report.company_id,
            company_name=report.company_name,
            cached_balance=report.cached_balance,
            ledger_balance=report.ledger_balance,
            transaction_count=report.transaction_count,
            repaired=True,
        )

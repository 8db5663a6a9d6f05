from decimal import Decimal, InvalidOperation
import logging

from django.db import IntegrityError, transaction

from backend.core.exceptions import ConflictError, ValidationError
from backend.ledger import services as ledger
from backend.ledger.models import MoneyTransaction
from .models import Company

logger = logging.getLogger(__name__)

OPENING_BALANCE_DESCRIPTION = 'Opening balance'


def parse_opening_balance(value):
    """Opening balance is optional; zero or empty means no opening entry"""
    if value in (None, ''):
        return ledger.ZERO
    if isinstance(value, bool):
        raise ValidationError('Balance must be a number')
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError('Balance must be a number')
    if not amount.is_finite():
        raise ValidationError('Balance must be a number')
    if amount < 0:
        raise ValidationError('Opening balance cannot be negative')
    return amount


def create_company(name, actor, opening_balance=None):
    """
    Create a company. A positive opening balance is booked as a credit
    through the ledger so the cached balance matches the ledger from the
    first row.
    """
    opening = parse_opening_balance(opening_balance)
    try:
        with transaction.atomic():
            company = Company.objects.create(name=name)
            if opening > 0:
                ledger.record_transaction(
                    company_id=company.id,
                    amount=opening,
                    txn_type=MoneyTransaction.CREDIT,
                    actor=actor,
                    description=OPENING_BALANCE_DESCRIPTION,
                )
                company.refresh_from_db()
    except IntegrityError as e:
        raise ConflictError('A company with this name already exists') from e

    logger.info(f"Created company {company.name} (ID: {company.id}) with opening balance {company.balance}")
    return company


def rename_company(company, name):
    try:
        with transaction.atomic():
            company.name = name
            company.save(update_fields=['name', 'updated_at'])
    except IntegrityError as e:
        raise ConflictError('A company with this name already exists') from e
    return company

"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from backend.companies.models import Company
from backend.core.auth import ActorContext
from backend.ledger.models import MoneyTransaction
from decimal import Decimal
import random
import string

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', name=None, is_staff=False, is_superuser=False):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        return User.objects.create_user(
            username=username,
            email=email,
            password=password,
            name=name or username.title(),
            is_staff=is_staff,
            is_superuser=is_superuser
        )

    @staticmethod
    def actor_for(user):
        """Resolve the ActorContext the views would pass for this user"""
        return ActorContext.for_user(user)

    @staticmethod
    def create_company(name=None, balance=None):
        """
        Create a test company. A non-zero balance is seeded as an opening
        credit so the cached balance matches the ledger.
        """
        if not name:
            name = f'Company_{TestDataFactory.random_string(6)}'
        balance = Decimal(str(balance)) if balance is not None else Decimal('0.00')
        company = Company.objects.create(name=name, balance=balance)
        if balance > 0:
            MoneyTransaction.objects.create(
                company=company,
                type=MoneyTransaction.CREDIT,
                amount=balance,
                description='Opening balance',
            )
        return company

    @staticmethod
    def create_transaction(company, user=None, txn_type='credit', amount=None, description='', order_number=''):
        """
        Insert a transaction row directly, bypassing the ledger service.
        Moves nothing; use it to build ledgers for reconciliation tests.
        """
        if amount is None:
            amount = Decimal('100.00')
        return MoneyTransaction.objects.create(
            company=company,
            type=txn_type,
            amount=Decimal(str(amount)),
            description=description,
            order_number=order_number,
            created_by=user,
        )


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()

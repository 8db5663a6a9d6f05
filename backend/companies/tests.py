"""
Test suite for the Companies module
Tests: creation with opening balance, rename, delete, balance protection,
reconciliation endpoint and display caching
"""
from django.core.cache import cache
from django.test import TestCase
from rest_framework import status
from decimal import Decimal
from backend.core.exceptions import ConflictError, ValidationError
from backend.core.model_cache import (
    cache_company_data, cache_company_list, get_cached_company, get_cached_company_list,
    get_company_cache_key, get_company_list_cache_key, invalidate_company_cache,
)
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.companies import services
from backend.companies.models import Company
from backend.ledger import services as ledger
from backend.ledger.models import MoneyTransaction


class CompanyServiceTests(TestCase):
    """Test company creation and renaming"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.actor = TestDataFactory.actor_for(self.user)

    def test_opening_balance_is_booked_as_credit(self):
        company = services.create_company('Acme', self.actor, opening_balance='1000')
        self.assertEqual(company.balance, Decimal('1000.00'))
        txn = MoneyTransaction.objects.get(company=company)
        self.assertEqual(txn.type, MoneyTransaction.CREDIT)
        self.assertEqual(txn.amount, Decimal('1000.00'))
        self.assertEqual(txn.description, 'Opening balance')
        self.assertEqual(txn.created_by, self.user)

    def test_zero_or_missing_opening_balance_creates_no_entry(self):
        for index, opening in enumerate((None, '', 0, '0.00')):
            with self.subTest(opening=opening):
                company = services.create_company(f'Empty {index}', self.actor, opening_balance=opening)
                self.assertEqual(company.balance, Decimal('0.00'))
                self.assertFalse(MoneyTransaction.objects.filter(company=company).exists())

    def test_invalid_opening_balance(self):
        for opening in ('-1', 'lots', True, 'NaN'):
            with self.subTest(opening=opening):
                with self.assertRaises(ValidationError):
                    services.create_company('Bad', self.actor, opening_balance=opening)
        self.assertFalse(Company.objects.filter(name='Bad').exists())

    def test_duplicate_name_conflicts(self):
        services.create_company('Acme', self.actor)
        with self.assertRaises(ConflictError):
            services.create_company('Acme', self.actor, opening_balance=50)
        self.assertEqual(Company.objects.filter(name='Acme').count(), 1)

    def test_rename(self):
        company = services.create_company('Acme', self.actor, opening_balance=10)
        services.rename_company(company, 'Acme Ltd')
        company.refresh_from_db()
        self.assertEqual(company.name, 'Acme Ltd')
        self.assertEqual(company.balance, Decimal('10.00'))

    def test_rename_to_existing_name_conflicts(self):
        services.create_company('Acme', self.actor)
        other = services.create_company('Globex', self.actor)
        with self.assertRaises(ConflictError):
            services.rename_company(other, 'Acme')

    def test_str(self):
        company = TestDataFactory.create_company(name='Initech')
        self.assertEqual(str(company), 'Initech')


class CompanyAPITests(TestCase):
    """Test the /companies/ endpoints"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_create_company(self):
        response = self.client.post('/api/v1/companies/', {'name': 'Acme', 'balance': 250.5}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        company = response.data['company']
        self.assertEqual(company['name'], 'Acme')
        self.assertEqual(Decimal(company['balance']), Decimal('250.50'))
        self.assertEqual(company['transactionCount'], 1)

    def test_create_requires_name(self):
        response = self.client.post('/api/v1/companies/', {'name': ''}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('Company name is required', response.data['error'])

    def test_create_negative_balance(self):
        response = self.client.post('/api/v1/companies/', {'name': 'Acme', 'balance': -10}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Opening balance cannot be negative')
        self.assertFalse(Company.objects.exists())

    def test_create_duplicate_name(self):
        TestDataFactory.create_company(name='Acme')
        response = self.client.post('/api/v1/companies/', {'name': 'Acme'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'A company with this name already exists')

    def test_list_with_transaction_counts(self):
        acme = TestDataFactory.create_company(name='Acme', balance='100.00')
        TestDataFactory.create_transaction(acme, self.user, txn_type='credit', amount='5.00')
        TestDataFactory.create_company(name='Globex')

        response = self.client.get('/api/v1/companies/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        counts = {row['name']: row['transactionCount'] for row in response.data['companies']}
        self.assertEqual(counts, {'Acme': 2, 'Globex': 0})

        response = self.client.get('/api/v1/companies/?search=glob')
        self.assertEqual([row['name'] for row in response.data['companies']], ['Globex'])

    def test_detail_includes_recent_transactions(self):
        company = TestDataFactory.create_company(name='Acme', balance='100.00')
        for _ in range(12):
            TestDataFactory.create_transaction(company, self.user, amount='1.00')

        response = self.client.get(f'/api/v1/companies/{company.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['company']['transactionCount'], 13)
        self.assertEqual(len(response.data['company']['transactions']), 10)

    def test_detail_not_found(self):
        response = self.client.get('/api/v1/companies/999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'Company not found')

    def test_rename(self):
        company = TestDataFactory.create_company(name='Acme', balance='75.00')
        response = self.client.patch(f'/api/v1/companies/{company.id}/', {'name': 'Acme Ltd'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['company']['name'], 'Acme Ltd')
        self.assertEqual(Decimal(response.data['company']['balance']), Decimal('75.00'))

    def test_balance_cannot_be_edited_directly(self):
        company = TestDataFactory.create_company(name='Acme', balance='75.00')
        response = self.client.put(
            f'/api/v1/companies/{company.id}/', {'name': 'Acme', 'balance': '1000000'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Balance can only be changed by recording a transaction')
        company.refresh_from_db()
        self.assertEqual(company.balance, Decimal('75.00'))

    def test_delete_cascades_to_transactions(self):
        company = TestDataFactory.create_company(name='Acme', balance='75.00')
        TestDataFactory.create_transaction(company, self.user, amount='5.00')

        response = self.client.delete(f'/api/v1/companies/{company.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Company deleted successfully')
        self.assertFalse(Company.objects.filter(pk=company.id).exists())
        self.assertFalse(MoneyTransaction.objects.filter(company_id=company.id).exists())

        response = self.client.delete(f'/api/v1/companies/{company.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_reconcile_endpoint(self):
        company = TestDataFactory.create_company(name='Acme', balance='75.00')
        response = self.client.get(f'/api/v1/companies/{company.id}/reconcile/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['in_sync'])
        self.assertEqual(response.data['ledger_balance'], '75.00')

        Company.objects.filter(pk=company.pk).update(balance=Decimal('80.00'))
        response = self.client.get(f'/api/v1/companies/{company.id}/reconcile/')
        self.assertFalse(response.data['in_sync'])
        self.assertEqual(response.data['drift'], '5.00')
        self.assertFalse(response.data['repaired'])
        company.refresh_from_db()
        self.assertEqual(company.balance, Decimal('80.00'))

    def test_requires_authentication(self):
        self.client.logout()
        response = self.client.get('/api/v1/companies/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        response = self.client.post('/api/v1/companies/', {'name': 'Acme'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(Company.objects.exists())


class CompanyCacheTests(TestCase):
    """Test that cached company payloads are dropped when the ledger moves"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.actor = TestDataFactory.actor_for(self.user)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.company = TestDataFactory.create_company(name='Acme', balance='100.00')

    def test_detail_is_cached(self):
        self.client.get(f'/api/v1/companies/{self.company.id}/')
        self.assertIsNotNone(get_cached_company(get_company_cache_key(self.company.id)))

    def test_transaction_invalidates_cached_detail_and_list(self):
        self.client.get(f'/api/v1/companies/{self.company.id}/')
        self.client.get('/api/v1/companies/')
        self.assertIsNotNone(cache.get(get_company_list_cache_key('')))

        with self.captureOnCommitCallbacks(execute=True):
            ledger.record_transaction(self.company.id, 50, 'credit', self.actor)

        self.assertIsNone(get_cached_company(get_company_cache_key(self.company.id)))
        self.assertIsNone(cache.get(get_company_list_cache_key('')))

        response = self.client.get(f'/api/v1/companies/{self.company.id}/')
        self.assertEqual(Decimal(response.data['company']['balance']), Decimal('150.00'))

    def test_rename_invalidates_list(self):
        self.client.get('/api/v1/companies/')
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.patch(f'/api/v1/companies/{self.company.id}/', {'name': 'Acme Ltd'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.get('/api/v1/companies/')
        self.assertEqual([row['name'] for row in response.data['companies']], ['Acme Ltd'])

    def test_payload_loaded_before_invalidation_is_never_served(self):
        """A read that races a commit stores under a retired key"""
        detail_key = get_company_cache_key(self.company.id)
        list_key = get_company_list_cache_key('')

        invalidate_company_cache(self.company.id)
        cache_company_data(detail_key, {'company': {'balance': '100.00'}})
        cache_company_list(list_key, {'companies': []})

        self.assertIsNone(get_cached_company(get_company_cache_key(self.company.id)))
        self.assertIsNone(get_cached_company_list(get_company_list_cache_key('')))

    def test_every_search_list_is_invalidated(self):
        for search in ('', 'ac', 'acme', 'zzz'):
            cache_company_list(get_company_list_cache_key(search), {'companies': []})

        invalidate_company_cache(self.company.id)

        for search in ('', 'ac', 'acme', 'zzz'):
            with self.subTest(search=search):
                self.assertIsNone(get_cached_company_list(get_company_list_cache_key(search)))

    def test_invalidation_survives_evicted_generation(self):
        cache_company_data(get_company_cache_key(self.company.id), {'company': {}})
        cache.clear()
        invalidate_company_cache(self.company.id)
        self.assertIsNone(get_cached_company(get_company_cache_key(self.company.id)))

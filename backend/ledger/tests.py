"""
Test suite for the company balance ledger
Tests: recording credits/debits, balance invariants, metadata updates,
reconciliation, API contract and concurrent writers
"""
import threading
from decimal import Decimal
from io import StringIO

from django.core.cache import cache
from django.core.management import call_command
from django.db import connection
from django.test import TestCase, TransactionTestCase
from rest_framework import status

from backend.companies.models import Company
from backend.core.exceptions import (
    InsufficientFundsError, NotFoundError, Unauthorized, ValidationError,
)
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.ledger import services
from backend.ledger.models import MoneyTransaction
from backend.ledger.serializers import LedgerSummarySerializer


def ledger_total(company):
    return services.ledger_totals(MoneyTransaction.objects.filter(company=company))['net']


class RecordTransactionTests(TestCase):
    """Test record_transaction against the balance invariants"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.actor = TestDataFactory.actor_for(self.user)
        self.company = TestDataFactory.create_company(balance='1000.00')

    def test_credit_increases_balance(self):
        """Credit 500 on a 1000 balance leaves 1500"""
        result = services.record_transaction(
            self.company.id, 500, 'credit', self.actor, description='Invoice #1'
        )
        self.company.refresh_from_db()
        self.assertEqual(result.new_balance, Decimal('1500.00'))
        self.assertEqual(self.company.balance, Decimal('1500.00'))
        self.assertEqual(result.transaction.description, 'Invoice #1')
        self.assertEqual(result.transaction.created_by_id, self.user.id)
        self.assertEqual(ledger_total(self.company), self.company.balance)

    def test_debit_decreases_balance(self):
        result = services.record_transaction(self.company.id, '250.50', 'debit', self.actor)
        self.company.refresh_from_db()
        self.assertEqual(result.new_balance, Decimal('749.50'))
        self.assertEqual(self.company.balance, Decimal('749.50'))
        self.assertEqual(ledger_total(self.company), self.company.balance)

    def test_overdraw_is_rejected_without_side_effects(self):
        """Debit 2000 on 1500 is rejected; no row and no balance change"""
        services.record_transaction(self.company.id, 500, 'credit', self.actor)
        count_before = MoneyTransaction.objects.count()

        with self.assertRaises(InsufficientFundsError):
            services.record_transaction(self.company.id, 2000, 'debit', self.actor)

        self.company.refresh_from_db()
        self.assertEqual(self.company.balance, Decimal('1500.00'))
        self.assertEqual(MoneyTransaction.objects.count(), count_before)

    def test_debit_to_exactly_zero_is_allowed(self):
        services.record_transaction(self.company.id, 500, 'credit', self.actor)
        result = services.record_transaction(self.company.id, 1500, 'debit', self.actor)
        self.company.refresh_from_db()
        self.assertEqual(result.new_balance, Decimal('0.00'))
        self.assertEqual(self.company.balance, Decimal('0.00'))

    def test_debit_one_cent_below_zero_is_rejected(self):
        with self.assertRaises(InsufficientFundsError):
            services.record_transaction(self.company.id, '1000.01', 'debit', self.actor)

    def test_non_positive_amounts_rejected(self):
        for amount in (0, '0', '-5', -0.01, Decimal('-1')):
            for txn_type in ('credit', 'debit'):
                with self.subTest(amount=amount, type=txn_type):
                    with self.assertRaises(ValidationError):
                        services.record_transaction(self.company.id, amount, txn_type, self.actor)
        self.assertEqual(MoneyTransaction.objects.filter(company=self.company).count(), 1)

    def test_non_numeric_amounts_rejected(self):
        for amount in ('abc', None, 'NaN', 'Infinity', True, [], {}):
            with self.subTest(amount=amount):
                with self.assertRaises(ValidationError):
                    services.record_transaction(self.company.id, amount, 'credit', self.actor)

    def test_sub_cent_amount_rejected(self):
        with self.assertRaises(ValidationError):
            services.record_transaction(self.company.id, '10.005', 'credit', self.actor)

    def test_float_amount_is_stored_exactly(self):
        services.record_transaction(self.company.id, 0.1, 'credit', self.actor)
        services.record_transaction(self.company.id, 0.2, 'credit', self.actor)
        self.company.refresh_from_db()
        self.assertEqual(self.company.balance, Decimal('1000.30'))

    def test_invalid_type_rejected(self):
        for txn_type in ('refund', 'CREDIT', '', None, 1):
            with self.subTest(type=txn_type):
                with self.assertRaises(ValidationError):
                    services.record_transaction(self.company.id, 10, txn_type, self.actor)

    def test_missing_company_raises_not_found(self):
        count_before = MoneyTransaction.objects.count()
        for company_id in (999999, 'not-an-id'):
            with self.subTest(company_id=company_id):
                with self.assertRaises(NotFoundError):
                    services.record_transaction(company_id, 10, 'credit', self.actor)
        self.assertEqual(MoneyTransaction.objects.count(), count_before)

    def test_missing_actor_raises_unauthorized(self):
        with self.assertRaises(Unauthorized):
            services.record_transaction(self.company.id, 10, 'credit', None)

    def test_balance_matches_ledger_after_mixed_sequence(self):
        operations = [
            ('credit', '250.00'), ('debit', '100.25'), ('debit', '5000'),
            ('credit', '0.75'), ('debit', '1150.50'), ('debit', '0.01'),
        ]
        for txn_type, amount in operations:
            try:
                services.record_transaction(self.company.id, amount, txn_type, self.actor)
            except InsufficientFundsError:
                pass
            self.company.refresh_from_db()
            self.assertEqual(self.company.balance, ledger_total(self.company))
            self.assertGreaterEqual(self.company.balance, Decimal('0.00'))
        self.assertEqual(self.company.balance, Decimal('0.00'))

    def test_other_companies_untouched(self):
        other = TestDataFactory.create_company(balance='300.00')
        services.record_transaction(self.company.id, 100, 'debit', self.actor)
        other.refresh_from_db()
        self.assertEqual(other.balance, Decimal('300.00'))


class UpdateTransactionMetadataTests(TestCase):
    """Test update_transaction_metadata"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.actor = TestDataFactory.actor_for(self.user)
        self.company = TestDataFactory.create_company(balance='1000.00')
        self.txn = services.record_transaction(
            self.company.id, 200, 'credit', self.actor, description='Deposit'
        ).transaction

    def test_update_description_and_order_number(self):
        updated = services.update_transaction_metadata(
            self.txn.id, {'description': 'Corrected', 'order_number': 'ORD-42'}
        )
        self.company.refresh_from_db()
        self.assertEqual(updated.description, 'Corrected')
        self.assertEqual(updated.order_number, 'ORD-42')
        self.assertEqual(updated.amount, Decimal('200.00'))
        self.assertEqual(updated.company_id, self.company.id)
        self.assertEqual(self.company.balance, Decimal('1200.00'))

    def test_amount_and_company_are_immutable(self):
        other = TestDataFactory.create_company()
        for fields in ({'amount': 5}, {'company_id': other.id}, {'companyId': other.id}, {'company': other.id}):
            with self.subTest(fields=fields):
                with self.assertRaises(ValidationError):
                    services.update_transaction_metadata(self.txn.id, fields)
        self.txn.refresh_from_db()
        self.assertEqual(self.txn.amount, Decimal('200.00'))
        self.assertEqual(self.txn.company_id, self.company.id)

    def test_unknown_field_rejected(self):
        with self.assertRaises(ValidationError):
            services.update_transaction_metadata(self.txn.id, {'created_by': 1})

    def test_invalid_type_rejected(self):
        with self.assertRaises(ValidationError):
            services.update_transaction_metadata(self.txn.id, {'type': 'refund'})

    def test_missing_transaction(self):
        with self.assertRaises(NotFoundError):
            services.update_transaction_metadata(999999, {'description': 'x'})

    def test_type_change_recomputes_balance(self):
        """Flipping a 200 credit to a debit moves the balance by 400"""
        updated = services.update_transaction_metadata(self.txn.id, {'type': 'debit'})
        self.company.refresh_from_db()
        self.assertEqual(updated.type, 'debit')
        self.assertEqual(self.company.balance, Decimal('800.00'))
        self.assertEqual(self.company.balance, ledger_total(self.company))

    def test_same_type_leaves_balance(self):
        services.update_transaction_metadata(self.txn.id, {'type': 'credit'})
        self.company.refresh_from_db()
        self.assertEqual(self.company.balance, Decimal('1200.00'))

    def test_type_change_that_would_overdraw_is_rejected(self):
        services.record_transaction(self.company.id, 1100, 'debit', self.actor)
        with self.assertRaises(InsufficientFundsError):
            services.update_transaction_metadata(self.txn.id, {'type': 'debit', 'description': 'flip'})
        self.txn.refresh_from_db()
        self.company.refresh_from_db()
        self.assertEqual(self.txn.type, 'credit')
        self.assertEqual(self.txn.description, 'Deposit')
        self.assertEqual(self.company.balance, Decimal('100.00'))


class RecomputeBalanceTests(TestCase):
    """Test recompute_balance and the reconcile_balances command"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.company = TestDataFactory.create_company(balance='500.00')

    def test_in_sync_company(self):
        report = services.recompute_balance(self.company.id)
        self.assertTrue(report.in_sync)
        self.assertEqual(report.ledger_balance, Decimal('500.00'))
        self.assertEqual(report.transaction_count, 1)

    def test_detects_drift_without_repairing(self):
        Company.objects.filter(pk=self.company.pk).update(balance=Decimal('650.00'))
        report = services.recompute_balance(self.company.id)
        self.assertFalse(report.in_sync)
        self.assertEqual(report.drift, Decimal('150.00'))
        self.assertFalse(report.repaired)
        self.company.refresh_from_db()
        self.assertEqual(self.company.balance, Decimal('650.00'))

    def test_repair_writes_ledger_total(self):
        TestDataFactory.create_transaction(self.company, self.user, txn_type='debit', amount='125.00')
        report = services.recompute_balance(self.company.id, repair=True)
        self.company.refresh_from_db()
        self.assertTrue(report.repaired)
        self.assertEqual(self.company.balance, Decimal('375.00'))

    def test_missing_company(self):
        with self.assertRaises(NotFoundError):
            services.recompute_balance(999999)

    def test_reconcile_command_reports_and_repairs(self):
        Company.objects.filter(pk=self.company.pk).update(balance=Decimal('1.00'))

        out = StringIO()
        call_command('reconcile_balances', stdout=out)
        self.assertIn('out of sync', out.getvalue())
        self.company.refresh_from_db()
        self.assertEqual(self.company.balance, Decimal('1.00'))

        out = StringIO()
        call_command('reconcile_balances', '--repair', '--dry-run', stdout=out)
        self.company.refresh_from_db()
        self.assertEqual(self.company.balance, Decimal('1.00'))

        out = StringIO()
        call_command('reconcile_balances', '--repair', '--company', str(self.company.id), stdout=out)
        self.assertIn('repaired', out.getvalue())
        self.company.refresh_from_db()
        self.assertEqual(self.company.balance, Decimal('500.00'))


class TransactionAPITests(TestCase):
    """Test the /transactions/ endpoints"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user(name='Asha Rao')
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.company = TestDataFactory.create_company(name='Acme Traders', balance='1000.00')

    def test_create_credit(self):
        data = {'amount': 500, 'type': 'credit', 'description': 'Invoice #1', 'companyId': self.company.id}
        response = self.client.post('/api/v1/transactions/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Decimal(response.data['newBalance']), Decimal('1500.00'))
        txn = response.data['transaction']
        self.assertEqual(txn['type'], 'credit')
        self.assertEqual(Decimal(txn['amount']), Decimal('500.00'))
        self.assertEqual(txn['companyId'], self.company.id)
        self.assertEqual(txn['createdBy'], {'id': self.user.id, 'name': 'Asha Rao'})
        self.assertEqual(txn['company']['name'], 'Acme Traders')
        self.assertIn('recorded successfully', response.data['message'])

    def test_create_with_order_number(self):
        data = {'amount': '20.00', 'type': 'debit', 'companyId': str(self.company.id), 'orderNumber': 'ORD-7'}
        response = self.client.post('/api/v1/transactions/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['transaction']['orderNumber'], 'ORD-7')

    def test_create_insufficient_funds(self):
        data = {'amount': 2000, 'type': 'debit', 'companyId': self.company.id}
        response = self.client.post('/api/v1/transactions/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Insufficient balance for this transaction')
        self.company.refresh_from_db()
        self.assertEqual(self.company.balance, Decimal('1000.00'))
        self.assertEqual(MoneyTransaction.objects.filter(company=self.company).count(), 1)

    def test_create_missing_fields(self):
        response = self.client.post('/api/v1/transactions/', {'amount': 10}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Amount, type and company are required')

    def test_create_invalid_amount_and_type(self):
        bad_payloads = [
            {'amount': -5, 'type': 'credit', 'companyId': self.company.id},
            {'amount': 0, 'type': 'debit', 'companyId': self.company.id},
            {'amount': 'ten', 'type': 'credit', 'companyId': self.company.id},
            {'amount': 10, 'type': 'transfer', 'companyId': self.company.id},
        ]
        for data in bad_payloads:
            with self.subTest(data=data):
                response = self.client.post('/api/v1/transactions/', data, format='json')
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
                self.assertIn('error', response.data)

    def test_create_unknown_company(self):
        data = {'amount': 10, 'type': 'credit', 'companyId': 999999}
        response = self.client.post('/api/v1/transactions/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'Company not found')

    def test_requires_authentication(self):
        self.client.logout()
        data = {'amount': 10, 'type': 'credit', 'companyId': self.company.id}
        response = self.client.post('/api/v1/transactions/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['error'], 'Unauthorized')
        response = self.client.get('/api/v1/transactions/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(MoneyTransaction.objects.filter(company=self.company).count(), 1)

    def test_list_filters(self):
        other = TestDataFactory.create_company(balance='50.00')
        self.client.post('/api/v1/transactions/', {'amount': 5, 'type': 'debit', 'companyId': self.company.id}, format='json')

        response = self.client.get('/api/v1/transactions/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['transactions']), 3)

        response = self.client.get(f'/api/v1/transactions/?companyId={self.company.id}')
        self.assertEqual(len(response.data['transactions']), 2)

        response = self.client.get(f'/api/v1/transactions/?companyId={self.company.id}&type=debit')
        self.assertEqual(len(response.data['transactions']), 1)
        self.assertEqual(response.data['transactions'][0]['type'], 'debit')

        response = self.client.get(f'/api/v1/transactions/?company={other.id}')
        self.assertEqual(len(response.data['transactions']), 1)

    def test_list_rejects_invalid_type_filter(self):
        response = self.client.get('/api/v1/transactions/?type=refund')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_retrieve(self):
        txn = MoneyTransaction.objects.get(company=self.company)
        response = self.client.get(f'/api/v1/transactions/{txn.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['transaction']['id'], txn.id)

        response = self.client.get('/api/v1/transactions/999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_update_metadata(self):
        txn = MoneyTransaction.objects.get(company=self.company)
        response = self.client.put(
            f'/api/v1/transactions/{txn.id}/',
            {'description': 'Seed capital', 'orderNumber': 'ORD-1'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['transaction']['description'], 'Seed capital')
        self.assertEqual(response.data['transaction']['orderNumber'], 'ORD-1')
        self.company.refresh_from_db()
        self.assertEqual(self.company.balance, Decimal('1000.00'))

    def test_update_rejects_amount_and_invalid_type(self):
        txn = MoneyTransaction.objects.get(company=self.company)
        response = self.client.put(f'/api/v1/transactions/{txn.id}/', {'amount': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self.client.put(f'/api/v1/transactions/{txn.id}/', {'type': 'refund'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Type must be credit or debit')
        response = self.client.put('/api/v1/transactions/999999/', {'description': 'x'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        txn.refresh_from_db()
        self.assertEqual(txn.amount, Decimal('1000.00'))

    def test_summary(self):
        self.client.post('/api/v1/transactions/', {'amount': 300, 'type': 'debit', 'companyId': self.company.id}, format='json')
        response = self.client.get(f'/api/v1/transactions/summary/?companyId={self.company.id}')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Decimal(response.data['total_credit']), Decimal('1000.00'))
        self.assertEqual(Decimal(response.data['total_debit']), Decimal('300.00'))
        self.assertEqual(Decimal(response.data['net']), Decimal('700.00'))
        self.assertEqual(response.data['count'], 2)

    def test_summary_totals_beyond_a_single_balance(self):
        """Totals across the ledger can exceed the largest single balance"""
        MoneyTransaction.objects.bulk_create([
            MoneyTransaction(company=self.company, type='credit', amount=services.MAX_AMOUNT)
            for _ in range(150)
        ])
        response = self.client.get('/api/v1/transactions/summary/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertGreater(Decimal(response.data['total_credit']), Decimal(10) ** 14)
        self.assertEqual(response.data['count'], 151)

    def test_summary_serializer_keeps_large_totals_exact(self):
        total = services.MAX_AMOUNT * 150
        data = LedgerSummarySerializer({
            'total_credit': total,
            'total_debit': Decimal('0.01'),
            'net': total - Decimal('0.01'),
            'count': 150,
        }).data
        self.assertEqual(data['total_credit'], '149999999999998.50')
        self.assertEqual(data['net'], '149999999999998.49')


class ConcurrentLedgerTests(TransactionTestCase):
    """
    Concurrent writers against one company. Runs on PostgreSQL row locks
    and on the file-backed SQLite test database with IMMEDIATE
    transactions; any outcome other than success or an insufficient
    funds rejection is reported by exception name.
    """

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.actor = TestDataFactory.actor_for(self.user)
        self.company = TestDataFactory.create_company(balance='100.00')

    def _run_concurrently(self, operations):
        barrier = threading.Barrier(len(operations))
        outcomes = []
        lock = threading.Lock()

        def worker(amount, txn_type):
            try:
                barrier.wait()
                services.record_transaction(self.company.id, amount, txn_type, self.actor)
                result = 'ok'
            except InsufficientFundsError:
                result = 'rejected'
            except Exception as e:
                result = f'{type(e).__name__}: {e}'
            finally:
                connection.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker, args=op) for op in operations]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return outcomes

    def test_competing_debits_cannot_overdraw(self):
        """Two 60 debits on 100: exactly one wins"""
        outcomes = self._run_concurrently([('60', 'debit'), ('60', 'debit')])
        self.company.refresh_from_db()
        self.assertEqual(sorted(outcomes), ['ok', 'rejected'])
        self.assertEqual(self.company.balance, Decimal('40.00'))
        self.assertEqual(self.company.balance, ledger_total(self.company))

    def test_no_lost_updates(self):
        operations = [('10', 'credit')] * 5 + [('10', 'debit')] * 5
        outcomes = self._run_concurrently(operations)
        self.company.refresh_from_db()
        self.assertEqual(outcomes, ['ok'] * 10)
        self.assertEqual(self.company.balance, Decimal('100.00'))
        self.assertEqual(self.company.balance, ledger_total(self.company))

    def test_sqlite_writers_take_the_write_lock_at_begin(self):
        if connection.vendor != 'sqlite':
            self.skipTest('SQLite transaction mode only')
        options = connection.settings_dict.get('OPTIONS', {})
        self.assertEqual(options.get('transaction_mode'), 'IMMEDIATE')
        self.assertGreater(options.get('timeout', 0), 0)

"""
Test suite for the Core module
Tests: registration, JWT login/refresh, actor resolution and error mapping
"""
from django.db import IntegrityError
from django.http import Http404
from django.test import TestCase
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from backend.core.auth import ActorContext
from backend.core.exceptions import (
    api_exception_handler, ConflictError, InsufficientFundsError, InternalError,
    NotFoundError, Unauthorized, ValidationError,
)
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient


class AuthAPITests(TestCase):
    """Test registration and token endpoints"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()

    def test_register(self):
        data = {
            'username': 'asha',
            'email': 'asha@test.com',
            'name': 'Asha Rao',
            'password': 'Sup3r-secret-pass',
            'password_confirm': 'Sup3r-secret-pass',
        }
        response = self.client.post('/api/v1/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['user']['username'], 'asha')
        self.assertEqual(response.data['user']['role'], 'user')
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)

    def test_register_password_mismatch(self):
        data = {
            'username': 'asha',
            'email': 'asha@test.com',
            'password': 'Sup3r-secret-pass',
            'password_confirm': 'different-pass-123',
        }
        response = self.client.post('/api/v1/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("Passwords don't match", response.data['error'])

    def test_login_and_me(self):
        user = TestDataFactory.create_user(username='ravi', password='testpass123', name='Ravi')
        response = self.client.post(
            '/api/v1/auth/login/', {'username': 'ravi', 'password': 'testpass123'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['user']['id'], user.id)

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['user']['name'], 'Ravi')

    def test_login_wrong_password(self):
        TestDataFactory.create_user(username='ravi', password='testpass123')
        response = self.client.post(
            '/api/v1/auth/login/', {'username': 'ravi', 'password': 'nope'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['error'], 'Unauthorized')

    def test_refresh(self):
        TestDataFactory.create_user(username='ravi', password='testpass123')
        login = self.client.post(
            '/api/v1/auth/login/', {'username': 'ravi', 'password': 'testpass123'}, format='json'
        )
        response = self.client.post('/api/v1/auth/refresh/', {'refresh': login.data['refresh']}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)

        response = self.client.post('/api/v1/auth/refresh/', {'refresh': 'garbage'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_requires_token(self):
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data, {'error': 'Unauthorized'})

    def test_user_list(self):
        user = TestDataFactory.create_user(name='Zed')
        TestDataFactory.create_user(name='Amy')
        self.client.authenticate_user(user)
        response = self.client.get('/api/v1/users/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([u['name'] for u in response.data['users']], ['Amy', 'Zed'])


class ActorContextTests(TestCase):
    """Test resolving the acting user"""

    def test_for_user(self):
        user = TestDataFactory.create_user(name='Asha Rao')
        actor = ActorContext.for_user(user)
        self.assertEqual(actor.user_id, user.id)
        self.assertEqual(actor.name, 'Asha Rao')

    def test_missing_or_inactive_user(self):
        with self.assertRaises(Unauthorized):
            ActorContext.for_user(None)
        user = TestDataFactory.create_user()
        user.is_active = False
        user.save()
        with self.assertRaises(Unauthorized):
            ActorContext.for_user(user)


class ExceptionHandlerTests(TestCase):
    """Test mapping exceptions onto `{'error': ...}` responses"""

    def handle(self, exc):
        return api_exception_handler(exc, {'view': None})

    def test_service_errors(self):
        cases = [
            (ValidationError('Amount must be a positive number'), 400, 'Amount must be a positive number'),
            (InsufficientFundsError(), 400, 'Insufficient balance for this transaction'),
            (NotFoundError('Company not found'), 404, 'Company not found'),
            (ConflictError(), 409, 'A record with this value already exists'),
            (Unauthorized(), 401, 'Unauthorized'),
        ]
        for exc, status_code, message in cases:
            with self.subTest(exc=exc):
                response = self.handle(exc)
                self.assertEqual(response.status_code, status_code)
                self.assertEqual(response.data, {'error': message})

    def test_internal_error_hides_details(self):
        with self.assertLogs('backend.core.exceptions', level='ERROR'):
            response = self.handle(InternalError('connection reset on db-2'))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data, {'error': 'Internal server error'})

    def test_framework_errors(self):
        response = self.handle(drf_exceptions.ValidationError({'name': ['This field is required.']}))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'name: This field is required.')
        self.assertIn('details', response.data)

        self.assertEqual(self.handle(Http404()).status_code, 404)
        self.assertEqual(self.handle(drf_exceptions.NotAuthenticated()).status_code, 401)
        with self.assertLogs('backend.core.exceptions', level='WARNING'):
            self.assertEqual(self.handle(IntegrityError('duplicate key')).status_code, 409)

    def test_unexpected_error(self):
        with self.assertLogs('backend.core.exceptions', level='ERROR'):
            response = self.handle(RuntimeError('boom'))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data, {'error': 'Internal server error'})

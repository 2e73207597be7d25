"""
Test suite for the Core module
Tests: authentication, audit logs, order managers, user applications,
cache helpers, database error hints and the connection check command
"""
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.core.management import call_command
from django.db import DatabaseError, IntegrityError, OperationalError
from django.test import TestCase, RequestFactory
from rest_framework import status
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from procurement.core.cache_utils import cached_query, invalidate_cache_pattern, invalidate_report_caches
from procurement.core.errors import describe_database_error, get_error_code, is_retryable_database_error
from procurement.core.models import AuditLog, UserApplication
from procurement.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from procurement.core.utils import create_audit_log, get_client_ip, parse_bool

User = get_user_model()


class AuthenticationTests(TestCase):
    """Test login, refresh and current-user endpoints"""

    def setUp(self):
        self.client = APIClient()
        self.user = TestDataFactory.create_user(username='buyer', password='secret-pass-1', is_staff=True)

    def test_login_returns_token_pair_with_claims(self):
        response = self.client.post('/api/v1/auth/login/', {
            'username': 'buyer',
            'password': 'secret-pass-1'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('refresh', response.data)
        token = AccessToken(response.data['access'])
        self.assertEqual(token['username'], 'buyer')
        self.assertTrue(token['is_admin'])

    def test_login_with_wrong_password_rejected(self):
        response = self.client.post('/api/v1/auth/login/', {
            'username': 'buyer',
            'password': 'wrong'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_refresh_with_garbage_token_rejected(self):
        response = self.client.post('/api/v1/auth/refresh/', {'refresh': 'not-a-token'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_requires_authentication(self):
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_includes_admin_flag(self):
        client = AuthenticatedAPIClient()
        client.authenticate_user(self.user)
        response = client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['username'], 'buyer')
        self.assertTrue(response.data['is_admin'])
        self.assertEqual(response.data['groups'], [])


class AuditLogTests(TestCase):
    """Test audit log helpers and endpoints"""

    def setUp(self):
        self.staff = TestDataFactory.create_user(is_staff=True)
        self.user = TestDataFactory.create_user()
        self.other = TestDataFactory.create_user()
        self.own_log = create_audit_log(user=self.user, action='create', model_name='Product',
                                        object_id=1, object_reference='SKU-1')
        self.other_log = create_audit_log(user=self.other, action='delete', model_name='Partner',
                                          object_id=2, object_reference='P-2')
        self.client = AuthenticatedAPIClient()

    def test_missing_fields_skip_log(self):
        self.assertIsNone(create_audit_log(user=self.user, action='create', model_name='Product'))

    def test_client_ip_prefers_forwarded_header(self):
        request = RequestFactory().get('/', HTTP_X_FORWARDED_FOR='203.0.113.5, 10.0.0.1', REMOTE_ADDR='10.0.0.2')
        self.assertEqual(get_client_ip(request), '203.0.113.5')
        request = RequestFactory().get('/', REMOTE_ADDR='10.0.0.2')
        self.assertEqual(get_client_ip(request), '10.0.0.2')
        self.assertIsNone(get_client_ip(None))

    def test_non_staff_sees_only_own_logs(self):
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([log['id'] for log in response.data], [self.own_log.id])

    def test_staff_sees_all_logs_and_filters(self):
        self.client.authenticate_user(self.staff)
        response = self.client.get('/api/v1/audit-logs/')
        self.assertEqual(len(response.data), 2)
        response = self.client.get('/api/v1/audit-logs/', {'action': 'delete'})
        self.assertEqual([log['id'] for log in response.data], [self.other_log.id])
        response = self.client.get('/api/v1/audit-logs/', {'reference': 'SKU-1'})
        self.assertEqual([log['id'] for log in response.data], [self.own_log.id])

    def test_detail_of_other_users_log_forbidden(self):
        self.client.authenticate_user(self.user)
        response = self.client.get(f'/api/v1/audit-logs/{self.other_log.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        response = self.client.get(f'/api/v1/audit-logs/{self.own_log.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)


class OrderManagerTests(TestCase):
    """Test order manager CRUD and duplicate handling"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_create_manager(self):
        response = self.client.post('/api/v1/order-managers/', {
            'name': '  Sato  ',
            'department': 'Purchasing'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['name'], 'Sato')
        self.assertTrue(AuditLog.objects.filter(model_name='OrderManager', action='create').exists())

    def test_duplicate_name_is_case_insensitive(self):
        TestDataFactory.create_order_manager(name='Sato', department='Purchasing')
        response = self.client.post('/api/v1/order-managers/', {
            'name': 'SATO',
            'department': 'purchasing'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('name', response.data)

    def test_same_name_in_other_department_allowed(self):
        TestDataFactory.create_order_manager(name='Sato', department='Purchasing')
        response = self.client.post('/api/v1/order-managers/', {
            'name': 'Sato',
            'department': 'Logistics'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_inactive_manager_does_not_block_name(self):
        TestDataFactory.create_order_manager(name='Sato', department='Purchasing', is_active=False)
        response = self.client.post('/api/v1/order-managers/', {
            'name': 'Sato',
            'department': 'Purchasing'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_list_hides_duplicates_and_inactive(self):
        first = TestDataFactory.create_order_manager(name='Sato', department='Purchasing')
        TestDataFactory.create_order_manager(name='sato', department='PURCHASING')
        TestDataFactory.create_order_manager(name='Ito', department='Purchasing', is_active=False)
        response = self.client.get('/api/v1/order-managers/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([m['id'] for m in response.data], [first.id])

    def test_update_keeping_own_name_allowed(self):
        manager = TestDataFactory.create_order_manager(name='Sato', department='Purchasing')
        response = self.client.patch(f'/api/v1/order-managers/{manager.id}/', {'email': 'sato@test.com'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_rename_onto_existing_manager_rejected(self):
        TestDataFactory.create_order_manager(name='Sato', department='Purchasing')
        manager = TestDataFactory.create_order_manager(name='Ito', department='Purchasing')
        response = self.client.patch(f'/api/v1/order-managers/{manager.id}/', {'name': 'sato'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_deactivates(self):
        manager = TestDataFactory.create_order_manager()
        response = self.client.delete(f'/api/v1/order-managers/{manager.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        manager.refresh_from_db()
        self.assertFalse(manager.is_active)


class UserApplicationTests(TestCase):
    """Test the account application workflow"""

    def setUp(self):
        self.admin = TestDataFactory.create_user(is_staff=True)
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()

    def test_anyone_can_apply(self):
        response = self.client.post('/api/v1/user-applications/', {
            'email': 'New.Person@Example.com',
            'full_name': 'New Person',
            'company_name': 'Acme'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['email'], 'new.person@example.com')
        self.assertEqual(response.data['application_status'], 'pending')

    def test_duplicate_pending_application_rejected(self):
        TestDataFactory.create_user_application(email='dup@example.com')
        response = self.client.post('/api/v1/user-applications/', {
            'email': 'DUP@example.com',
            'full_name': 'Dup'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('email', response.data)

    def test_rejected_application_can_be_resubmitted(self):
        TestDataFactory.create_user_application(email='again@example.com', application_status='rejected')
        response = self.client.post('/api/v1/user-applications/', {
            'email': 'again@example.com',
            'full_name': 'Again'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_existing_user_email_rejected(self):
        response = self.client.post('/api/v1/user-applications/', {
            'email': self.user.email.upper(),
            'full_name': 'Someone'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_listing_requires_staff(self):
        TestDataFactory.create_user_application()
        response = self.client.get('/api/v1/user-applications/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/user-applications/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/v1/user-applications/', {'status': 'pending'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)

    def test_approve_creates_user_without_password(self):
        application = TestDataFactory.create_user_application(email='hanako@example.com', full_name='Hanako Yamada')
        self.client.authenticate_user(self.admin)
        response = self.client.post(f'/api/v1/user-applications/{application.id}/review/', {
            'decision': 'approved',
            'review_notes': 'Welcome'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['application_status'], 'approved')
        self.assertEqual(response.data['user']['username'], 'hanako')

        created = User.objects.get(email='hanako@example.com')
        self.assertFalse(created.has_usable_password())
        self.assertEqual(created.first_name, 'Hanako')
        self.assertEqual(created.last_name, 'Yamada')
        application.refresh_from_db()
        self.assertEqual(application.reviewed_by, self.admin)
        self.assertTrue(AuditLog.objects.filter(action='application_review', object_id=str(application.id)).exists())

    def test_username_made_unique(self):
        TestDataFactory.create_user(username='taro', email='taro@other.com')
        application = TestDataFactory.create_user_application(email='taro@example.com')
        self.client.authenticate_user(self.admin)
        response = self.client.post(f'/api/v1/user-applications/{application.id}/review/', {'decision': 'approved'}, format='json')
        self.assertEqual(response.data['user']['username'], 'taro2')

    def test_reject_creates_no_user(self):
        application = TestDataFactory.create_user_application(email='no@example.com')
        self.client.authenticate_user(self.admin)
        response = self.client.post(f'/api/v1/user-applications/{application.id}/review/', {'decision': 'rejected'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertNotIn('user', response.data)
        self.assertFalse(User.objects.filter(email='no@example.com').exists())

    def test_second_review_conflicts(self):
        application = TestDataFactory.create_user_application(application_status='rejected')
        self.client.authenticate_user(self.admin)
        response = self.client.post(f'/api/v1/user-applications/{application.id}/review/', {'decision': 'approved'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'ALREADY_REVIEWED')

    def test_approve_when_user_already_exists_conflicts(self):
        application = TestDataFactory.create_user_application(email='late@example.com')
        TestDataFactory.create_user(username='late', email='late@example.com')
        self.client.authenticate_user(self.admin)
        response = self.client.post(f'/api/v1/user-applications/{application.id}/review/', {'decision': 'approved'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'DUPLICATE_USER')
        application.refresh_from_db()
        self.assertEqual(application.application_status, 'pending')

    def test_invalid_decision_rejected(self):
        application = TestDataFactory.create_user_application()
        self.client.authenticate_user(self.admin)
        response = self.client.post(f'/api/v1/user-applications/{application.id}/review/', {'decision': 'maybe'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_review_requires_staff(self):
        application = TestDataFactory.create_user_application()
        self.client.authenticate_user(self.user)
        response = self.client.post(f'/api/v1/user-applications/{application.id}/review/', {'decision': 'approved'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(UserApplication.objects.get(pk=application.pk).application_status, 'pending')


class CacheUtilsTests(TestCase):
    """Test cached_query and invalidation"""

    def setUp(self):
        cache.clear()

    def test_cached_query_refresh_and_invalidation(self):
        calls = []

        @cached_query(cache_ttl=60, key_prefix='dashboard_stats')
        def compute(value):
            calls.append(value)
            return value * 2

        self.assertEqual(compute(2), 4)
        self.assertEqual(compute(2), 4)
        self.assertEqual(len(calls), 1)

        compute(2, refresh=True)
        self.assertEqual(len(calls), 2)

        compute(3)
        self.assertEqual(len(calls), 3)

        invalidate_report_caches()
        compute(2)
        compute(3)
        self.assertEqual(len(calls), 5)

    def test_invalidation_limited_to_prefix(self):
        calls = []

        @cached_query(cache_ttl=60, key_prefix='recent_updates')
        def recent():
            calls.append('recent')
            return ['x']

        @cached_query(cache_ttl=60, key_prefix='system_health')
        def health():
            calls.append('health')
            return {'ok': True}

        recent()
        health()
        invalidate_cache_pattern('system_health')
        recent()
        health()
        self.assertEqual(calls, ['recent', 'health', 'health'])


class ErrorHintTests(TestCase):
    """Test database error descriptions"""

    def test_sqlstate_hint(self):
        exc = OperationalError('deadlock')
        exc.pgcode = '40P01'
        self.assertEqual(get_error_code(exc), '40P01')
        self.assertIn('Deadlock', describe_database_error(exc))
        self.assertTrue(is_retryable_database_error(exc))

    def test_sqlstate_from_cause(self):
        cause = Exception('inner')
        cause.sqlstate = '42P01'
        exc = DatabaseError('outer')
        exc.__cause__ = cause
        self.assertIn('migrations', describe_database_error(exc))
        self.assertFalse(is_retryable_database_error(exc))

    def test_message_based_hints(self):
        self.assertIn('Unique', describe_database_error(IntegrityError('UNIQUE constraint failed: products.product_code')))
        self.assertIn('locked', describe_database_error(OperationalError('database is locked')))
        self.assertEqual(describe_database_error(IntegrityError('boom')), 'Data integrity rule violated')
        self.assertEqual(describe_database_error(ValueError('boom')), 'Unknown error type')

    def test_operational_errors_retryable(self):
        self.assertTrue(is_retryable_database_error(OperationalError('server closed the connection')))
        self.assertFalse(is_retryable_database_error(IntegrityError('duplicate')))


class ParseBoolTests(TestCase):

    def test_values(self):
        for value in ('true', 'True', '1', 'yes', 'on', True):
            self.assertTrue(parse_bool(value))
        for value in ('false', '0', 'no', '', False):
            self.assertFalse(parse_bool(value))
        self.assertTrue(parse_bool(None, default=True))


class CheckConnectionCommandTests(TestCase):

    def test_reports_tables_and_cache(self):
        TestDataFactory.create_partner()
        out = StringIO()
        call_command('check_connection', stdout=out)
        output = out.getvalue()
        self.assertIn('Connection: OK', output)
        self.assertIn('partners: 1 rows', output)
        self.assertIn('Cache SET/GET: OK', output)
        self.assertIn('All checks passed.', output)

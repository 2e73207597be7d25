"""
Test suite for the Parties module
"""
from django.test import TestCase
from rest_framework import status

from procurement.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from procurement.parties.models import Partner


class PartnerAPITests(TestCase):
    """Test partner CRUD, filters and the supplier picker"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_requires_authentication(self):
        self.client.logout()
        response = self.client.get('/api/v1/partners/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_create_partner(self):
        response = self.client.post('/api/v1/partners/', {
            'partner_code': 'S-001',
            'name': 'Tokyo Metals',
            'partner_type': 'supplier',
            'payment_terms': 45
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['payment_terms'], 45)
        self.assertTrue(Partner.objects.filter(partner_code='S-001').exists())

    def test_duplicate_code_rejected(self):
        TestDataFactory.create_partner(partner_code='S-001')
        response = self.client.post('/api/v1/partners/', {
            'partner_code': 'S-001',
            'name': 'Copy'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('partner_code', response.data)

    def test_filters(self):
        TestDataFactory.create_partner(name='Osaka Paper', partner_type='supplier')
        TestDataFactory.create_partner(name='Retail One', partner_type='customer')
        TestDataFactory.create_partner(name='Old Supplier', is_active=False)

        response = self.client.get('/api/v1/partners/', {'search': 'osaka'})
        self.assertEqual([p['name'] for p in response.data], ['Osaka Paper'])

        response = self.client.get('/api/v1/partners/', {'partner_type': 'customer'})
        self.assertEqual([p['name'] for p in response.data], ['Retail One'])

        response = self.client.get('/api/v1/partners/', {'active': 'false'})
        self.assertEqual([p['name'] for p in response.data], ['Old Supplier'])

    def test_update_partner(self):
        partner = TestDataFactory.create_partner()
        response = self.client.patch(f'/api/v1/partners/{partner.id}/', {'contact_person': 'Suzuki'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        partner.refresh_from_db()
        self.assertEqual(partner.contact_person, 'Suzuki')

    def test_delete_unused_partner(self):
        partner = TestDataFactory.create_partner()
        response = self.client.delete(f'/api/v1/partners/{partner.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Partner.objects.filter(pk=partner.pk).exists())

    def test_delete_partner_with_orders_conflicts(self):
        partner = TestDataFactory.create_partner()
        TestDataFactory.create_purchase_order(partner=partner)
        response = self.client.delete(f'/api/v1/partners/{partner.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'PARTNER_IN_USE')
        self.assertTrue(Partner.objects.filter(pk=partner.pk).exists())

    def test_supplier_list_only_active_suppliers(self):
        TestDataFactory.create_partner(name='B Supplier', partner_type='supplier')
        TestDataFactory.create_partner(name='A Both', partner_type='both')
        TestDataFactory.create_partner(name='Customer', partner_type='customer')
        TestDataFactory.create_partner(name='Inactive', partner_type='supplier', is_active=False)
        response = self.client.get('/api/v1/suppliers/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([p['name'] for p in response.data], ['A Both', 'B Supplier'])
        self.assertEqual(set(response.data[0].keys()), {'id', 'partner_code', 'name'})

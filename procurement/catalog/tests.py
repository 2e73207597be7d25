"""
Test suite for the Catalog module
"""
from decimal import Decimal

from django.test import TestCase
from rest_framework import status

from procurement.core.models import AuditLog
from procurement.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from procurement.catalog.models import Product


class ProductAPITests(TestCase):
    """Test product CRUD, code uniqueness and filters"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.supplier = TestDataFactory.create_partner(name='Main Supplier')

    def test_create_product(self):
        response = self.client.post('/api/v1/products/', {
            'product_code': ' SKU-100 ',
            'name': 'Steel Bolt',
            'category': 'Hardware',
            'purchase_price': '12.50',
            'selling_price': '20.00',
            'min_stock_level': '5',
            'main_supplier': self.supplier.id
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['product_code'], 'SKU-100')
        self.assertEqual(response.data['main_supplier_name'], 'Main Supplier')
        self.assertTrue(AuditLog.objects.filter(action='create', model_name='Product', object_reference='SKU-100').exists())

    def test_stock_not_writable(self):
        response = self.client.post('/api/v1/products/', {
            'product_code': 'SKU-101',
            'name': 'Nut',
            'current_stock': '500'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Product.objects.get(product_code='SKU-101').current_stock, Decimal('0'))

    def test_duplicate_code_case_insensitive(self):
        TestDataFactory.create_product(product_code='SKU-200')
        response = self.client.post('/api/v1/products/', {
            'product_code': 'sku-200',
            'name': 'Copy'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['product_code'], ['Product code is already in use. Choose a different code.'])

    def test_update_keeping_own_code(self):
        product = TestDataFactory.create_product(product_code='SKU-300')
        response = self.client.put(f'/api/v1/products/{product.id}/', {
            'product_code': 'SKU-300',
            'name': 'Renamed'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        product.refresh_from_db()
        self.assertEqual(product.name, 'Renamed')

    def test_negative_price_rejected(self):
        response = self.client.post('/api/v1/products/', {
            'product_code': 'SKU-400',
            'name': 'Bad',
            'selling_price': '-1'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('selling_price', response.data)

    def test_filters(self):
        TestDataFactory.create_product(name='Copper Wire', product_code='CW-1', main_supplier=self.supplier,
                                       current_stock=Decimal('50'), min_stock_level=Decimal('10'))
        TestDataFactory.create_product(name='Paper', product_code='PA-1', current_stock=Decimal('2'),
                                       min_stock_level=Decimal('10'))

        response = self.client.get('/api/v1/products/', {'search': 'copper'})
        self.assertEqual([p['product_code'] for p in response.data], ['CW-1'])

        response = self.client.get('/api/v1/products/', {'supplier': self.supplier.id})
        self.assertEqual([p['product_code'] for p in response.data], ['CW-1'])

        response = self.client.get('/api/v1/products/', {'low_stock': 'true'})
        self.assertEqual([p['product_code'] for p in response.data], ['PA-1'])
        self.assertTrue(response.data[0]['is_low_stock'])

    def test_delete_unused_product(self):
        product = TestDataFactory.create_product()
        response = self.client.delete(f'/api/v1/products/{product.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Product.objects.filter(pk=product.pk).exists())
        self.assertTrue(AuditLog.objects.filter(action='delete', model_name='Product', object_id=str(product.id)).exists())

    def test_delete_product_on_order_conflicts(self):
        product = TestDataFactory.create_product()
        order = TestDataFactory.create_purchase_order()
        TestDataFactory.create_order_item(order, product=product)
        response = self.client.delete(f'/api/v1/products/{product.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'PRODUCT_IN_USE')

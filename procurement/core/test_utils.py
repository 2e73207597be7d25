"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from procurement.core.models import OrderManager, UserApplication
from procurement.parties.models import Partner
from procurement.catalog.models import Product
from procurement.purchasing.models import PurchaseOrder, PurchaseOrderItem, Transaction, TransactionItem
from procurement.inventory.models import InventoryMovement
from decimal import Decimal
from django.utils import timezone
import random
import string
import uuid

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', is_staff=False, is_superuser=False):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        user = User.objects.create_user(
            username=username,
            email=email,
            password=password,
            is_staff=is_staff,
            is_superuser=is_superuser
        )
        return user

    @staticmethod
    def create_partner(name=None, partner_code=None, partner_type='supplier', is_active=True):
        """Create a test partner (supplier by default)"""
        if not name:
            name = f'Partner_{TestDataFactory.random_string(6)}'
        if not partner_code:
            partner_code = f'P-{TestDataFactory.random_string(8).upper()}'
        return Partner.objects.create(
            name=name,
            partner_code=partner_code,
            partner_type=partner_type,
            phone='0312345678',
            is_active=is_active
        )

    @staticmethod
    def create_product(name=None, product_code=None, purchase_price=Decimal('100.00'),
                       selling_price=Decimal('150.00'), current_stock=Decimal('0'),
                       min_stock_level=Decimal('0'), main_supplier=None):
        """Create a test product"""
        if not name:
            name = f'Product_{TestDataFactory.random_string(6)}'
        if not product_code:
            product_code = f'SKU-{TestDataFactory.random_string(8).upper()}'
        return Product.objects.create(
            name=name,
            product_code=product_code,
            category='General',
            purchase_price=purchase_price,
            selling_price=selling_price,
            current_stock=current_stock,
            min_stock_level=min_stock_level,
            main_supplier=main_supplier
        )

    @staticmethod
    def create_order_manager(name=None, department='Purchasing', is_active=True):
        """Create a test order manager"""
        if not name:
            name = f'Manager_{TestDataFactory.random_string(6)}'
        return OrderManager.objects.create(name=name, department=department, is_active=is_active)

    @staticmethod
    def create_user_application(email=None, full_name='Test Applicant', application_status='pending'):
        """Create a test user application"""
        if not email:
            email = f'applicant_{TestDataFactory.random_string(6).lower()}@test.com'
        return UserApplication.objects.create(
            email=email,
            full_name=full_name,
            company_name='Test Company',
            application_status=application_status
        )

    @staticmethod
    def create_purchase_order(partner=None, total_amount=Decimal('10000.00'), status='pending',
                              order_no=None, order_date=None, delivery_deadline=None, user=None):
        """Create a test purchase order without items"""
        if partner is None:
            partner = TestDataFactory.create_partner()
        if not order_no:
            order_no = f'PO{TestDataFactory.random_string(9).upper()}'
        return PurchaseOrder.objects.create(
            order_no=order_no,
            partner=partner,
            order_date=order_date or timezone.localdate(),
            delivery_deadline=delivery_deadline,
            total_amount=total_amount,
            status=status,
            created_by=user
        )

    @staticmethod
    def create_order_item(purchase_order, product=None, quantity=Decimal('10'), unit_price=Decimal('100.00')):
        """Create a test purchase order line"""
        if product is None:
            product = TestDataFactory.create_product()
        return PurchaseOrderItem.objects.create(
            purchase_order=purchase_order,
            product=product,
            quantity=quantity,
            unit_price=unit_price
        )

    @staticmethod
    def create_installment(order, amount=Decimal('1000.00'), installment_no=None, status='confirmed',
                           created_at=None, memo=None):
        """
        Create an installment row directly, bypassing the installment service.

        Lets tests build the inconsistent data the repair tools deal with
        (duplicate numbers, numbers out of creation order).
        """
        txn = Transaction.objects.create(
            transaction_no=f'PT-TEST-{uuid.uuid4().hex[:12].upper()}',
            transaction_type='purchase',
            partner=order.partner,
            parent_order=order,
            installment_no=installment_no,
            delivery_sequence=installment_no,
            transaction_date=timezone.localdate(),
            status=status,
            total_amount=amount,
            memo=memo if memo is not None else (f'第{installment_no}回' if installment_no else None)
        )
        if created_at is not None:
            Transaction.objects.filter(pk=txn.pk).update(created_at=created_at)
            txn.refresh_from_db()
        return txn

    @staticmethod
    def create_transaction(transaction_type='sale', partner=None, amount=Decimal('500.00'), status='confirmed',
                           transaction_date=None):
        """Create a standalone (non-installment) transaction"""
        return Transaction.objects.create(
            transaction_no=f'TX-TEST-{uuid.uuid4().hex[:12].upper()}',
            transaction_type=transaction_type,
            partner=partner,
            transaction_date=transaction_date or timezone.localdate(),
            status=status,
            total_amount=amount
        )

    @staticmethod
    def create_transaction_item(txn, product, quantity=Decimal('1'), unit_price=Decimal('100.00')):
        """Create a test transaction line"""
        return TransactionItem.objects.create(
            transaction=txn,
            product=product,
            quantity=quantity,
            unit_price=unit_price,
            total_amount=(quantity * unit_price).quantize(Decimal('0.01'))
        )

    @staticmethod
    def create_movement(product, quantity=Decimal('1'), movement_type='in', txn=None, created_at=None):
        """
        Create an inventory movement row directly; product stock is not touched.
        """
        movement = InventoryMovement.objects.create(
            product=product,
            transaction=txn,
            movement_type=movement_type,
            quantity=quantity
        )
        if created_at is not None:
            InventoryMovement.objects.filter(pk=movement.pk).update(created_at=created_at)
            movement.refresh_from_db()
        return movement


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

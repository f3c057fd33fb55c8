"""
Unit tests for BuiltyService
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from services.builty_service import BuiltyService
from exceptions import BusinessValidationError, DuplicateResourceError, ResourceNotFoundError
from models import Builty, BuiltyPaymentStatus, DeliveryStatus
from timezone_utils import get_ist_today
from tests.unit.conftest import BuiltyFactory, ClientFactory, CompletedTripFactory


@pytest.fixture
def builty_payload(completed_trip):
    return {
        'trip_id': completed_trip.id,
        'consignor_name': 'Bharat Forge Ltd',
        'consignee_name': 'JSW Steel Depot',
        'goods_description': 'Forged axles',
        'goods_weight': '7.5',
        'number_of_packages': 40,
        'freight_charges': '18000',
        'loading_charges': '500',
        'gst_amount': '900',
    }


class TestBuiltyCreation:
    """Test raising builties"""

    def test_create_builty_defaults(self, db_session, builty_payload, completed_trip):
        """Test client, dates and number are filled in"""
        builty = BuiltyService().create_builty(builty_payload)

        assert builty.client_id == completed_trip.client_id
        assert builty.builty_date == get_ist_today()
        assert builty.payment_due_date == get_ist_today() + timedelta(days=30)
        assert builty.builty_number == f"BL{get_ist_today():%Y%m%d}0001"
        assert builty.payment_status == BuiltyPaymentStatus.PENDING
        assert builty.delivery_status == DeliveryStatus.PENDING
        assert builty.total_amount == Decimal('19400')

    def test_payment_terms_from_config(self, app, db_session, builty_payload):
        """Test the due date uses the configured credit days"""
        app.config['STMS_PAYMENT_TERMS_DAYS'] = 45

        builty = BuiltyService().create_builty(builty_payload)

        assert builty.payment_due_date == builty.builty_date + timedelta(days=45)

    def test_create_builty_requires_completed_trip(self, db_session, builty_payload, planned_trip):
        """Test builties are only raised for completed trips"""
        builty_payload['trip_id'] = planned_trip.id

        with pytest.raises(BusinessValidationError, match="Can only create builty for completed trips"):
            BuiltyService().create_builty(builty_payload)

    def test_create_builty_unknown_trip(self, db_session, builty_payload):
        """Test referencing a missing trip"""
        builty_payload['trip_id'] = 4242

        with pytest.raises(ResourceNotFoundError):
            BuiltyService().create_builty(builty_payload)

    def test_create_builty_inactive_client(self, db_session, builty_payload):
        """Test inactive clients are refused"""
        builty_payload['client_id'] = ClientFactory(is_active=False).id

        with pytest.raises(BusinessValidationError, match="Cannot create builty for inactive client"):
            BuiltyService().create_builty(builty_payload)

    @pytest.mark.parametrize('field, value, message', [
        ('consignor_name', '', 'Consignor name is required'),
        ('consignee_name', None, 'Consignee name is required'),
        ('freight_charges', '0', 'Freight charges must be greater than zero'),
        ('goods_weight', '-1', 'Goods weight must be greater than zero'),
        ('number_of_packages', 0, 'Number of packages must be greater than zero'),
        ('loading_charges', '-10', 'Loading charges cannot be negative'),
    ])
    def test_create_builty_validation(self, db_session, builty_payload, field, value, message):
        """Test builty validation messages"""
        builty_payload[field] = value

        with pytest.raises(BusinessValidationError, match=message):
            BuiltyService().create_builty(builty_payload)

        assert Builty.query.count() == 0

    def test_create_builty_due_before_builty_date(self, db_session, builty_payload):
        """Test due date ordering"""
        builty_payload['builty_date'] = get_ist_today().isoformat()
        builty_payload['payment_due_date'] = (get_ist_today() - timedelta(days=1)).isoformat()

        with pytest.raises(BusinessValidationError, match="Payment due date cannot be before builty date"):
            BuiltyService().create_builty(builty_payload)

    def test_create_builty_duplicate_number(self, db_session, builty_payload, builty):
        """Test builty numbers are unique"""
        builty_payload['builty_number'] = builty.builty_number

        with pytest.raises(DuplicateResourceError, match="builty number"):
            BuiltyService().create_builty(builty_payload)


class TestBuiltyUpdates:
    """Test update and delete rules"""

    def test_update_builty_partial(self, db_session, builty):
        """Test partial updates are validated on the merged state"""
        updated = BuiltyService().update_builty(builty.id, {'package_type': 'Pallets'})

        assert updated.package_type == 'Pallets'
        assert updated.consignor_name == builty.consignor_name

    @pytest.mark.parametrize('body, message', [
        ({'builty_number': ''}, "Builty number is required"),
        ({'freight_charges': None}, "Freight charges is required"),
    ])
    def test_update_builty_rejects_blank_required_field(self, db_session, builty, body, message):
        """Test clearing a required column is a validation error"""
        with pytest.raises(BusinessValidationError, match=message):
            BuiltyService().update_builty(builty.id, body)

        assert db_session.get(Builty, builty.id).builty_number == builty.builty_number

    def test_update_delivered_and_paid_builty(self, db_session):
        """Test closed builties are read-only"""
        builty = BuiltyFactory(delivery_status=DeliveryStatus.DELIVERED,
                               payment_status=BuiltyPaymentStatus.PAID,
                               advance_amount=Decimal('10000'))

        with pytest.raises(BusinessValidationError, match="Cannot update delivered and paid builty"):
            BuiltyService().update_builty(builty.id, {'remarks': 'edit'})

    def test_delete_builty_with_payment(self, db_session):
        """Test builties with collections cannot be deleted"""
        builty = BuiltyFactory(advance_amount=Decimal('100'))
        service = BuiltyService()

        assert service.can_delete_builty(builty.id) is False
        with pytest.raises(BusinessValidationError, match="delivered or has payments"):
            service.delete_builty(builty.id)

    def test_delete_builty(self, db_session, builty):
        """Test unpaid undelivered builties are removed"""
        BuiltyService().delete_builty(builty.id)

        assert db_session.get(Builty, builty.id) is None


class TestBuiltyPayments:
    """Test payment collection"""

    def test_partial_then_full_payment(self, db_session, builty):
        """Test status moves PENDING to PARTIAL to PAID"""
        service = BuiltyService()

        partial = service.add_payment(builty.id, '4000', payment_method='NEFT')
        assert partial.payment_status == BuiltyPaymentStatus.PARTIAL
        assert partial.balance_amount == Decimal('6000')
        assert 'via NEFT' in partial.remarks

        paid = service.add_payment(builty.id, '6000')
        assert paid.payment_status == BuiltyPaymentStatus.PAID
        assert paid.balance_amount == Decimal('0')

    @pytest.mark.parametrize('amount', ['0', '-5', '10000.01'])
    def test_invalid_payment_amount(self, db_session, builty, amount):
        """Test payments must be positive and within the balance"""
        service = BuiltyService()

        assert service.validate_payment_amount(builty.id, amount) is False
        with pytest.raises(BusinessValidationError, match="Invalid payment amount"):
            service.add_payment(builty.id, amount)

    def test_payment_does_not_touch_client_balance(self, db_session, builty):
        """Test builty collections leave the client ledger alone"""
        client_balance = builty.client.outstanding_balance

        BuiltyService().add_payment(builty.id, '1000')

        assert builty.client.outstanding_balance == client_balance

    def test_outstanding_amount_by_client(self, db_session):
        """Test unpaid totals per client"""
        first = BuiltyFactory(advance_amount=Decimal('2500'))
        BuiltyFactory(payment_status=BuiltyPaymentStatus.PAID, advance_amount=Decimal('10000'))
        service = BuiltyService()

        assert service.calculate_outstanding_amount(first.client_id) == Decimal('7500')
        assert service.calculate_outstanding_amount() == Decimal('7500')

    def test_overdue_payments(self, db_session):
        """Test unpaid builties past their due date"""
        overdue = BuiltyFactory(builty_date=get_ist_today() - timedelta(days=40),
                                payment_due_date=get_ist_today() - timedelta(days=10))
        BuiltyFactory()

        page = BuiltyService().get_overdue_payments()

        assert [b.id for b in page.items] == [overdue.id]
        assert overdue.days_overdue == 10

    def test_send_payment_reminder(self, db_session, builty):
        """Test reminders are skipped for paid builties"""
        service = BuiltyService()
        paid = BuiltyFactory(payment_status=BuiltyPaymentStatus.PAID)

        assert service.send_payment_reminder(builty.id) is True
        assert service.send_payment_reminder(paid.id) is False

    def test_generate_invoice_pdf(self, db_session, builty):
        """Test invoice path"""
        assert BuiltyService().generate_invoice_pdf(builty.id) == f"/invoices/builty_{builty.id}.pdf"


class TestBuiltyDelivery:
    """Test delivery tracking"""

    def test_mark_as_delivered(self, db_session, builty):
        """Test delivery records receiver and date"""
        delivered = BuiltyService().mark_as_delivered(builty.id, received_by='Store keeper')

        assert delivered.delivery_status == DeliveryStatus.DELIVERED
        assert delivered.delivery_date == get_ist_today()
        assert delivered.received_by == 'Store keeper'

    def test_mark_as_delivered_before_builty_date(self, db_session, builty):
        """Test delivery cannot predate the builty"""
        with pytest.raises(BusinessValidationError, match="Delivery date cannot be before builty date"):
            BuiltyService().mark_as_delivered(builty.id, get_ist_today() - timedelta(days=1))

    def test_update_delivery_status(self, db_session, builty):
        """Test status changes by name or value"""
        updated = BuiltyService().update_delivery_status(builty.id, 'in_transit')

        assert updated.delivery_status == DeliveryStatus.IN_TRANSIT
        assert 'from PENDING to IN_TRANSIT' in updated.remarks

    def test_delivery_performance_report(self, db_session):
        """Test average transit days"""
        BuiltyFactory(builty_date=get_ist_today() - timedelta(days=4),
                      delivery_date=get_ist_today(), delivery_status=DeliveryStatus.DELIVERED)
        BuiltyFactory(builty_date=get_ist_today() - timedelta(days=2),
                      delivery_date=get_ist_today(), delivery_status=DeliveryStatus.DELIVERED)
        BuiltyFactory()

        report = BuiltyService().get_delivery_performance_report()

        assert report['total_builties'] == 3
        assert report['delivery_status_counts']['DELIVERED'] == 2
        assert report['average_delivery_days'] == Decimal('3.00')
        assert report['max_delivery_days'] == 4


class TestBuiltyCharges:
    """Test freight and additional charges"""

    def test_add_additional_charges(self, db_session, builty):
        """Test loading charges accumulate"""
        service = BuiltyService()

        service.add_additional_charges(builty.id, 'loading', '300', 'Crane')
        updated = service.add_additional_charges(builty.id, 'LOADING', '200')

        assert updated.loading_charges == Decimal('500')
        assert updated.total_charges == Decimal('10500')

    def test_add_additional_charges_invalid_type(self, db_session, builty):
        """Test unknown charge types"""
        with pytest.raises(BusinessValidationError, match="Invalid charge type: DETENTION"):
            BuiltyService().add_additional_charges(builty.id, 'DETENTION', 100)

    def test_add_additional_charges_zero(self, db_session, builty):
        """Test zero charges"""
        with pytest.raises(BusinessValidationError, match="Charge amount must be greater than zero"):
            BuiltyService().add_additional_charges(builty.id, 'OTHER', 0)

    def test_update_freight_charges(self, db_session, builty):
        """Test freight revision with reason"""
        updated = BuiltyService().update_freight_charges(builty.id, '12500', 'Extra drop point')

        assert updated.freight_charges == Decimal('12500')
        assert 'Reason: Extra drop point' in updated.remarks

    def test_calculate_gst_amount(self):
        """Test GST on total charges"""
        service = BuiltyService()

        assert service.calculate_gst_amount(1000, 18) == Decimal('180')
        assert service.calculate_gst_amount(None, 18) == Decimal('0')


class TestBuiltyReports:
    """Test builty reporting"""

    def test_aging_report_by_due_date(self, db_session):
        """Test buckets count days past the payment due date"""
        BuiltyFactory()
        BuiltyFactory(builty_date=get_ist_today() - timedelta(days=75),
                      payment_due_date=get_ist_today() - timedelta(days=45),
                      advance_amount=Decimal('4000'), payment_status=BuiltyPaymentStatus.PARTIAL)
        BuiltyFactory(builty_date=get_ist_today() - timedelta(days=200),
                      payment_due_date=get_ist_today() - timedelta(days=170))

        report = {row['bucket']: row for row in BuiltyService().get_aging_report()}

        assert list(report) == ['current', '1-30', '31-60', '61-90', '90+']
        assert report['current']['outstanding_amount'] == Decimal('10000')
        assert report['31-60']['outstanding_amount'] == Decimal('6000')
        assert report['90+']['builty_count'] == 1
        assert report['1-30']['builty_count'] == 0

    def test_client_wise_revenue(self, db_session):
        """Test revenue grouped by client"""
        builty = BuiltyFactory(advance_amount=Decimal('1000'))
        BuiltyFactory(trip=CompletedTripFactory(client=builty.client), freight_charges=Decimal('5000'))

        rows = BuiltyService().get_client_wise_revenue()

        assert rows[0]['client_id'] == builty.client_id
        assert rows[0]['builty_count'] == 2
        assert rows[0]['total_amount'] == Decimal('15000')
        assert rows[0]['outstanding_amount'] == Decimal('14000')

    def test_builty_statistics(self, db_session):
        """Test status counts"""
        BuiltyFactory()
        BuiltyFactory(payment_status=BuiltyPaymentStatus.PAID, advance_amount=Decimal('10000'))

        stats = BuiltyService().get_builty_statistics()

        assert stats['total_builties'] == 2
        assert stats['payment_status_counts']['PAID'] == 1
        assert stats['payment_status_counts']['PENDING'] == 1
        assert stats['total_revenue'] == Decimal('20000')
        assert stats['total_outstanding'] == Decimal('10000')

"""
Unit tests for ClientService
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from services.client_service import ClientService, aging_bucket
from exceptions import BusinessValidationError, DuplicateResourceError, ResourceNotFoundError
from models import Client, AuditLog, BuiltyPaymentStatus
from timezone_utils import get_ist_today
from tests.unit.conftest import ClientFactory, BuiltyFactory


class TestClientCrud:
    """Test client creation, update and soft delete"""

    def test_create_client_success(self, db_session):
        """Test successful client creation with defaults"""
        service = ClientService()

        client = service.create_client({
            'name': '  Shree Ganesh Traders ',
            'contact_number': '9822001122',
            'gst_number': '27AAAPL1234C1ZV',
            'credit_limit': '50000'
        })

        assert client.id is not None
        assert client.name == 'Shree Ganesh Traders'
        assert client.credit_limit == Decimal('50000')
        assert client.outstanding_balance == Decimal('0')
        assert client.is_active is True

    def test_create_client_writes_audit_entry(self, db_session):
        """Test that creation is recorded in the audit log"""
        service = ClientService()
        client = service.create_client({'name': 'Audit Co', 'contact_number': '9822001123'})

        entry = AuditLog.query.filter_by(entity_type='client', entity_id=client.id).one()
        assert entry.action == 'create_client'
        assert entry.performed_by == 'system'
        assert entry.get_details()['name'] == 'Audit Co'

    def test_create_client_requires_name(self, db_session):
        """Test client creation without a name"""
        service = ClientService()

        with pytest.raises(BusinessValidationError, match="Client name is required"):
            service.create_client({'name': '  ', 'contact_number': '9822001122'})

    def test_create_client_requires_contact_number(self, db_session):
        """Test client creation without a contact number"""
        service = ClientService()

        with pytest.raises(BusinessValidationError, match="Contact number is required"):
            service.create_client({'name': 'No Phone Ltd'})

    def test_create_client_duplicate_contact_number(self, db_session, transport_client):
        """Test client creation with duplicate contact number"""
        service = ClientService()

        with pytest.raises(DuplicateResourceError) as exc_info:
            service.create_client({'name': 'Copy', 'contact_number': transport_client.contact_number})

        assert exc_info.value.field == 'contact number'
        assert Client.query.count() == 1

    def test_create_client_duplicate_gst_number(self, db_session):
        """Test client creation with duplicate GST number"""
        service = ClientService()
        ClientFactory(gst_number='27AAAPL1234C1ZV')

        with pytest.raises(DuplicateResourceError, match="GST number"):
            service.create_client({'name': 'Copy', 'contact_number': '9000000001',
                                   'gst_number': '27AAAPL1234C1ZV'})

    def test_create_client_negative_credit_limit(self, db_session):
        """Test negative credit limit is rejected"""
        service = ClientService()

        with pytest.raises(BusinessValidationError, match="Credit limit cannot be negative"):
            service.create_client({'name': 'Neg', 'contact_number': '9000000002', 'credit_limit': -1})

    def test_update_client_partial(self, db_session, transport_client):
        """Test only supplied fields change on update"""
        service = ClientService()
        original_name = transport_client.name

        updated = service.update_client(transport_client.id, {'email': 'accounts@example.com'})

        assert updated.email == 'accounts@example.com'
        assert updated.name == original_name

    def test_update_client_keeps_own_contact_number(self, db_session, transport_client):
        """Test a client may resubmit its own unique values"""
        service = ClientService()

        updated = service.update_client(transport_client.id,
                                        {'contact_number': transport_client.contact_number})

        assert updated.contact_number == transport_client.contact_number

    @pytest.mark.parametrize('body, message', [
        ({'name': ''}, "Client name is required"),
        ({'contact_number': None}, "Contact number is required"),
    ])
    def test_update_client_rejects_blank_required_field(self, db_session, transport_client, body, message):
        """Test required columns cannot be cleared by an update"""
        with pytest.raises(BusinessValidationError, match=message):
            ClientService().update_client(transport_client.id, body)

        assert db_session.get(Client, transport_client.id).name == transport_client.name

    def test_update_missing_client(self, db_session):
        """Test updating a client that does not exist"""
        service = ClientService()

        with pytest.raises(ResourceNotFoundError):
            service.update_client(999, {'name': 'Ghost'})

    def test_delete_client_soft_deletes(self, db_session, transport_client):
        """Test delete marks the client inactive"""
        service = ClientService()

        service.delete_client(transport_client.id)

        assert db_session.get(Client, transport_client.id).is_active is False

    def test_delete_client_with_outstanding_balance(self, db_session):
        """Test clients that owe money cannot be deleted"""
        service = ClientService()
        client = ClientFactory(outstanding_balance=Decimal('500'))

        with pytest.raises(BusinessValidationError, match="outstanding balance"):
            service.delete_client(client.id)

        assert db_session.get(Client, client.id).is_active is True

    def test_activate_client(self, db_session):
        """Test reactivating a client"""
        service = ClientService()
        client = ClientFactory(is_active=False)

        assert service.activate_client(client.id).is_active is True

    def test_get_client_by_id_missing_returns_none(self, db_session):
        """Test lookups return None instead of raising"""
        assert ClientService().get_client_by_id(12345) is None


class TestClientSearch:
    """Test client search and lookups"""

    def test_search_clients_by_name(self, db_session):
        """Test case-insensitive name search"""
        service = ClientService()
        ClientFactory(name='Mahalaxmi Steels')
        ClientFactory(name='Om Logistics')

        result = service.search_clients(name='steel')

        assert result.total == 1
        assert result.items[0].name == 'Mahalaxmi Steels'

    def test_search_clients_by_active_flag(self, db_session):
        """Test filtering by is_active"""
        service = ClientService()
        ClientFactory(is_active=True)
        ClientFactory(is_active=False)

        assert service.search_clients(is_active=False).total == 1

    def test_find_by_gst_number(self, db_session):
        """Test lookup by GST number"""
        service = ClientService()
        client = ClientFactory(gst_number='29ABCDE1234F1Z5')

        assert service.find_by_gst_number('29ABCDE1234F1Z5').id == client.id
        assert service.find_by_gst_number('UNKNOWN') is None


class TestClientCredit:
    """Test credit limit and outstanding balance management"""

    def test_update_credit_limit_appends_remark(self, db_session, transport_client):
        """Test credit limit change is recorded in remarks"""
        service = ClientService()

        client = service.update_credit_limit(transport_client.id, '250000', reason='Annual review')

        assert client.credit_limit == Decimal('250000')
        assert 'Credit limit updated' in client.remarks
        assert 'Annual review' in client.remarks

    def test_update_credit_limit_negative(self, db_session, transport_client):
        """Test negative credit limit update"""
        with pytest.raises(BusinessValidationError):
            ClientService().update_credit_limit(transport_client.id, -10)

    def test_add_to_outstanding_balance_allows_exceeding_limit(self, db_session):
        """Test balance may go past the credit limit"""
        service = ClientService()
        client = ClientFactory(credit_limit=Decimal('1000'))

        client = service.add_to_outstanding_balance(client.id, 1500, reason='Builty BL1')

        assert client.outstanding_balance == Decimal('1500')

    def test_add_to_outstanding_balance_rejects_zero(self, db_session, transport_client):
        """Test zero amounts are rejected"""
        with pytest.raises(BusinessValidationError, match="greater than zero"):
            ClientService().add_to_outstanding_balance(transport_client.id, 0)

    def test_reduce_outstanding_balance(self, db_session):
        """Test reducing the balance"""
        service = ClientService()
        client = ClientFactory(outstanding_balance=Decimal('800'))

        client = service.reduce_outstanding_balance(client.id, '300')

        assert client.outstanding_balance == Decimal('500')

    def test_reduce_outstanding_balance_beyond_balance(self, db_session):
        """Test reduction larger than the balance"""
        service = ClientService()
        client = ClientFactory(outstanding_balance=Decimal('100'))

        with pytest.raises(BusinessValidationError, match="cannot exceed outstanding balance"):
            service.reduce_outstanding_balance(client.id, 101)

    def test_can_take_additional_credit(self, db_session):
        """Test credit headroom checks"""
        service = ClientService()
        client = ClientFactory(credit_limit=Decimal('1000'), outstanding_balance=Decimal('600'))
        no_limit = ClientFactory(credit_limit=Decimal('0'))

        assert service.can_take_additional_credit(client.id, 400) is True
        assert service.can_take_additional_credit(client.id, 401) is False
        assert service.can_take_additional_credit(no_limit.id, 1) is False

    def test_clients_exceeding_credit_limit(self, db_session):
        """Test listing clients over their limit"""
        service = ClientService()
        over = ClientFactory(credit_limit=Decimal('1000'), outstanding_balance=Decimal('1200'))
        ClientFactory(credit_limit=Decimal('1000'), outstanding_balance=Decimal('900'))

        assert [c.id for c in service.get_clients_exceeding_credit_limit()] == [over.id]

    def test_total_outstanding_ignores_inactive(self, db_session):
        """Test totals only count active clients"""
        service = ClientService()
        ClientFactory(outstanding_balance=Decimal('100'))
        ClientFactory(outstanding_balance=Decimal('900'), is_active=False)

        assert service.calculate_total_outstanding_balance() == Decimal('100')


class TestClientPaymentBehavior:
    """Test credit score and payment behaviour classification"""

    @pytest.mark.parametrize('outstanding, expected', [
        ('0', 100),
        ('4500', 90),
        ('6500', 80),
        ('9000', 70),
        ('12000', 30),
    ])
    def test_credit_score(self, db_session, outstanding, expected):
        """Test credit score deductions by utilization"""
        client = ClientFactory(credit_limit=Decimal('10000'), outstanding_balance=Decimal(outstanding))

        assert ClientService().calculate_credit_score(client.id) == expected

    @pytest.mark.parametrize('outstanding, expected', [
        ('3000', 'GOOD'),
        ('7000', 'AVERAGE'),
        ('7001', 'POOR'),
    ])
    def test_payment_behavior(self, db_session, outstanding, expected):
        """Test behaviour buckets at the 30/70 percent boundaries"""
        client = ClientFactory(credit_limit=Decimal('10000'), outstanding_balance=Decimal(outstanding))

        assert ClientService().analyze_payment_behavior(client.id) == expected

    def test_payment_behavior_without_credit_limit(self, db_session):
        """Test clients without a limit are AVERAGE"""
        client = ClientFactory(credit_limit=Decimal('0'))

        assert ClientService().analyze_payment_behavior(client.id) == 'AVERAGE'

    def test_clients_by_invalid_behavior(self, db_session):
        """Test unknown behaviour names are rejected"""
        with pytest.raises(BusinessValidationError):
            ClientService().get_clients_by_payment_behavior('EXCELLENT')


class TestClientCreditUtilization:
    """Test utilization figures and the good payment history filter"""

    @pytest.mark.parametrize('outstanding, limit, expected', [
        ('1000', '3000', '33.33'),
        ('2', '3', '66.67'),
        ('1', '20000', '0.01'),
        ('12000', '10000', '120'),
    ])
    def test_calculate_credit_utilization(self, outstanding, limit, expected):
        """Test the ratio is rounded half up to four places before scaling"""
        client = Client(name='Ratio Co', outstanding_balance=Decimal(outstanding),
                        credit_limit=Decimal(limit))

        assert ClientService().calculate_credit_utilization(client) == Decimal(expected)

    @pytest.mark.parametrize('limit', [None, Decimal('0')])
    def test_calculate_credit_utilization_without_limit(self, limit):
        """Test clients without a limit report zero"""
        client = Client(name='Cash Co', outstanding_balance=Decimal('500'), credit_limit=limit)

        assert ClientService().calculate_credit_utilization(client) == Decimal('0')

    @pytest.fixture
    def credit_book(self, db_session):
        ClientFactory(name='Amar Roadlines', credit_limit=Decimal('10000'), outstanding_balance=Decimal('5000'))
        ClientFactory(name='Balaji Cargo', credit_limit=Decimal('10000'), outstanding_balance=Decimal('5001'))
        ClientFactory(name='Chetan Freight', credit_limit=Decimal('10000'), outstanding_balance=Decimal('0'),
                      is_active=False)
        ClientFactory(name='Deepak Movers', credit_limit=Decimal('0'), outstanding_balance=Decimal('0'))

    def test_good_payment_history_boundary(self, credit_book):
        """Test half the limit still counts and inactive or unlimited clients are left out"""
        clients = ClientService().get_clients_with_good_payment_history()

        assert [c.name for c in clients] == ['Amar Roadlines']

    def test_good_payment_history_custom_ratio(self, credit_book):
        """Test a wider ratio admits more clients"""
        clients = ClientService().get_clients_with_good_payment_history('0.6')

        assert [c.name for c in clients] == ['Amar Roadlines', 'Balaji Cargo']

    @pytest.mark.parametrize('max_utilization', ['', None])
    def test_good_payment_history_blank_ratio_uses_default(self, credit_book, max_utilization):
        """Test a blank ratio falls back to half the limit"""
        clients = ClientService().get_clients_with_good_payment_history(max_utilization)

        assert [c.name for c in clients] == ['Amar Roadlines']


class TestClientReports:
    """Test client reporting"""

    @pytest.mark.parametrize('days, label', [(0, '0-30'), (30, '0-30'), (31, '31-60'),
                                             (90, '61-90'), (91, '90+')])
    def test_aging_bucket(self, days, label):
        """Test aging bucket boundaries"""
        assert aging_bucket(days) == label

    def test_convert_to_dict_includes_builty_totals(self, db_session):
        """Test the client DTO carries builty-derived figures"""
        builty = BuiltyFactory(freight_charges=Decimal('10000'), advance_amount=Decimal('2500'))
        service = ClientService()

        data = service.convert_to_dict(builty.client)

        assert data['total_builties'] == 1
        assert data['total_business_value'] == Decimal('10000')
        assert data['total_paid_amount'] == Decimal('2500')
        assert data['overdue_builties'] == 0

    def test_aging_report_buckets_unpaid_builties(self, db_session):
        """Test client aging uses the builty date"""
        builty = BuiltyFactory(builty_date=get_ist_today() - timedelta(days=45),
                               payment_due_date=get_ist_today() - timedelta(days=15))
        service = ClientService()

        report = service.get_client_aging_report()

        row = next(r for r in report if r['client_id'] == builty.client_id)
        assert row['31-60'] == Decimal('10000')

    def test_aging_summary_totals_buckets(self, db_session):
        """Test the summary adds up every client's unpaid balances"""
        today = get_ist_today()
        BuiltyFactory(builty_date=today - timedelta(days=10))
        BuiltyFactory(builty_date=today - timedelta(days=45), loading_charges=Decimal('500'))
        BuiltyFactory(builty_date=today - timedelta(days=100), advance_amount=Decimal('4000'),
                      payment_status=BuiltyPaymentStatus.PARTIAL)
        BuiltyFactory(builty_date=today - timedelta(days=100), payment_status=BuiltyPaymentStatus.PAID,
                      advance_amount=Decimal('10000'))

        summary = ClientService().get_aging_summary()

        assert summary['0-30'] == Decimal('10000')
        assert summary['31-60'] == Decimal('10500')
        assert summary['61-90'] == Decimal('0')
        assert summary['90+'] == Decimal('6000')
        assert summary['total_outstanding'] == Decimal('26500')
        assert summary['client_count'] == 3

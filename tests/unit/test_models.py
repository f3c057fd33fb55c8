"""
Unit tests for model computed values
"""

from datetime import timedelta
from decimal import Decimal

from models import Builty, Maintenance, MaintenanceStatus, Trip, BuiltyPaymentStatus, IncomePaymentStatus
from timezone_utils import get_ist_today
from tests.unit.conftest import (BuiltyFactory, ClientFactory, CompletedTripFactory, DriverFactory,
                                 IncomeFactory, MaintenanceFactory, TripFactory, TruckFactory)


class TestTripModel:
    """Test trip financial and performance values"""

    def test_expenses_and_profit(self, db_session):
        """Test expense total, profit and margin"""
        trip = CompletedTripFactory()

        assert trip.total_expenses == Decimal('4000')
        assert trip.net_profit == Decimal('16000')
        assert trip.profit_margin == Decimal('80.0000')
        assert trip.fuel_efficiency == Decimal('5.00')
        assert trip.duration_hours == 4
        assert trip.average_speed == Decimal('37.50')
        assert trip.capacity_utilization == 80.0

    def test_planned_trip_has_no_performance_values(self, db_session):
        """Test values that need actual dates or fuel"""
        trip = TripFactory()

        assert trip.total_expenses == Decimal('0')
        assert trip.fuel_efficiency == Decimal('0')
        assert trip.duration_hours is None
        assert trip.average_speed is None

    def test_profit_expression_in_query(self, db_session):
        """Test hybrid expressions filter in SQL"""
        CompletedTripFactory()
        CompletedTripFactory(fuel_cost=Decimal('25000'))

        profitable = Trip.query.filter(Trip.net_profit > 0).all()

        assert len(profitable) == 1
        assert profitable[0].net_profit == Decimal('16000')

    def test_trip_balance(self, db_session):
        """Test balance after advance"""
        trip = TripFactory(advance_amount=Decimal('5000'))

        assert trip.balance_amount == Decimal('15000')
        assert Trip.query.filter(Trip.balance_amount == 15000).count() == 1


class TestBuiltyModel:
    """Test builty amounts and overdue state"""

    def test_totals(self, db_session):
        """Test charges, GST and balance"""
        builty = BuiltyFactory(loading_charges=Decimal('300'), unloading_charges=Decimal('200'),
                               gst_amount=Decimal('525'), advance_amount=Decimal('1025'))

        assert builty.total_charges == Decimal('10500')
        assert builty.total_amount == Decimal('11025')
        assert builty.balance_amount == Decimal('10000')
        assert Builty.query.filter(Builty.total_amount > 11000).count() == 1

    def test_overdue(self, db_session):
        """Test overdue only applies to unpaid builties past due"""
        today = get_ist_today()
        late = BuiltyFactory(builty_date=today - timedelta(days=45), payment_due_date=today - timedelta(days=15))
        settled = BuiltyFactory(builty_date=today - timedelta(days=45), payment_due_date=today - timedelta(days=15),
                                payment_status=BuiltyPaymentStatus.PAID)

        assert late.is_overdue is True
        assert late.days_overdue == 15
        assert settled.is_overdue is False
        assert settled.days_overdue == 0


class TestOtherModels:
    """Test client, driver, truck, income and maintenance helpers"""

    def test_client_display_name(self, db_session):
        """Test company name wins over contact name"""
        assert ClientFactory(name='Ravi', company_name='Ravi Roadlines').display_name == 'Ravi Roadlines'
        assert ClientFactory(name='Ravi', company_name=None).display_name == 'Ravi'

    def test_driver_license_expired(self, db_session):
        """Test licence expiry flag"""
        assert DriverFactory(license_expiry_date=get_ist_today() - timedelta(days=1)).is_license_expired is True
        assert DriverFactory().is_license_expired is False

    def test_truck_expired_documents(self, db_session):
        """Test document lapse check"""
        truck = TruckFactory(insurance_expiry_date=get_ist_today() - timedelta(days=1),
                             puc_expiry_date=get_ist_today())

        assert truck.expired_documents() == ['INSURANCE']
        assert truck.expired_documents(get_ist_today() + timedelta(days=1)) == ['INSURANCE', 'PUC']

    def test_income_balance_and_overdue(self, db_session):
        """Test income balance and expected-date overdue"""
        income = IncomeFactory(received_amount=Decimal('2500'),
                               payment_status=IncomePaymentStatus.PARTIALLY_RECEIVED,
                               expected_date=get_ist_today() - timedelta(days=4))

        assert income.balance_amount == Decimal('7500')
        assert income.days_overdue == 4
        assert income.total_amount == Decimal('10000')

    def test_maintenance_cost_and_overdue(self, db_session):
        """Test cost total and overdue state"""
        maintenance = MaintenanceFactory(labor_cost=Decimal('100'), parts_cost=Decimal('200'),
                                         other_charges=Decimal('50'), gst_amount=Decimal('63'),
                                         scheduled_date=get_ist_today() - timedelta(days=2))

        assert maintenance.recalculate_total_cost() == Decimal('413')
        assert maintenance.is_overdue is True
        assert maintenance.days_overdue == 2

        maintenance.status = MaintenanceStatus.COMPLETED
        assert maintenance.is_overdue is False
        assert db_session.get(Maintenance, maintenance.id) is maintenance

"""
Unit test configuration and fixtures for STMS
"""

import pytest
import os
from datetime import datetime, timedelta
from decimal import Decimal

# Set test environment before importing app
os.environ.update({
    'FLASK_ENV': 'testing',
    'TESTING': 'true',
    'SESSION_SECRET': 'test_secret_key_for_testing_only_0123456789',
    'DATABASE_URL': 'sqlite:///:memory:',
})

from app import create_app, db
from models import (Client, Driver, Truck, Trip, Builty, Income, Maintenance,
                    TripStatus, BuiltyPaymentStatus, DeliveryStatus, IncomePaymentStatus,
                    MaintenanceStatus, MaintenancePriority)
from timezone_utils import get_ist_today, get_ist_time_naive
import factory
from factory import Faker


@pytest.fixture(scope='function')
def app():
    """Create application for testing"""
    app = create_app({'TESTING': True})

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Create test CLI runner"""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def db_session(app):
    """Create database session for testing"""
    with app.app_context():
        yield db.session
        db.session.rollback()


# Factory classes for test data generation
class BaseFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        abstract = True
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"


class ClientFactory(BaseFactory):
    class Meta:
        model = Client

    name = Faker('company')
    company_name = factory.LazyAttribute(lambda o: f"{o.name} Pvt Ltd")
    contact_number = factory.Sequence(lambda n: f"98{n:08d}")
    email = factory.Sequence(lambda n: f"client{n}@example.com")
    address = Faker('address')
    credit_limit = Decimal('100000')
    outstanding_balance = Decimal('0')
    is_active = True


class DriverFactory(BaseFactory):
    class Meta:
        model = Driver

    name = Faker('name')
    contact_number = factory.Sequence(lambda n: f"97{n:08d}")
    license_number = factory.Sequence(lambda n: f"MH12{n:011d}")
    license_expiry_date = factory.LazyFunction(lambda: get_ist_today() + timedelta(days=365))
    joining_date = factory.LazyFunction(lambda: get_ist_today() - timedelta(days=400))
    salary = Decimal('18000')
    advance_paid = Decimal('0')
    is_active = True


class TruckFactory(BaseFactory):
    class Meta:
        model = Truck

    truck_number = factory.Sequence(lambda n: f"MH12AB{n:04d}")
    model = "Tata LPT 1613"
    fuel_type = 'DIESEL'
    capacity = Decimal('10')
    mileage = Decimal('5')
    rc_book_number = factory.Sequence(lambda n: f"RC{n:06d}")
    rc_expiry_date = factory.LazyFunction(lambda: get_ist_today() + timedelta(days=730))
    insurance_expiry_date = factory.LazyFunction(lambda: get_ist_today() + timedelta(days=365))
    current_odometer_reading = Decimal('50000')
    is_active = True


class TripFactory(BaseFactory):
    class Meta:
        model = Trip

    trip_number = factory.Sequence(lambda n: f"TRT{n:05d}")
    truck = factory.SubFactory(TruckFactory)
    driver = factory.SubFactory(DriverFactory)
    client = factory.SubFactory(ClientFactory)
    source_location = "Pune"
    destination_location = "Mumbai"
    distance = Decimal('150')
    planned_start_date = factory.LazyFunction(lambda: get_ist_time_naive() + timedelta(days=1))
    planned_end_date = factory.LazyAttribute(lambda o: o.planned_start_date + timedelta(hours=5))
    load_weight = Decimal('8')
    trip_charges = Decimal('20000')
    advance_amount = Decimal('0')
    toll_charges = Decimal('0')
    other_expenses = Decimal('0')
    status = TripStatus.PLANNED


class CompletedTripFactory(TripFactory):
    planned_start_date = factory.LazyFunction(lambda: get_ist_time_naive() - timedelta(days=2))
    actual_start_date = factory.LazyAttribute(lambda o: o.planned_start_date)
    actual_end_date = factory.LazyAttribute(lambda o: o.planned_start_date + timedelta(hours=4))
    fuel_consumed = Decimal('30')
    fuel_cost = Decimal('3000')
    toll_charges = Decimal('500')
    other_expenses = Decimal('500')
    status = TripStatus.COMPLETED


class BuiltyFactory(BaseFactory):
    class Meta:
        model = Builty

    builty_number = factory.Sequence(lambda n: f"BLT{n:05d}")
    trip = factory.SubFactory(CompletedTripFactory)
    client = factory.SelfAttribute('trip.client')
    consignor_name = Faker('company')
    consignee_name = Faker('company')
    goods_description = "Steel coils"
    goods_weight = Decimal('8')
    freight_charges = Decimal('10000')
    loading_charges = Decimal('0')
    unloading_charges = Decimal('0')
    other_charges = Decimal('0')
    gst_amount = Decimal('0')
    advance_amount = Decimal('0')
    payment_status = BuiltyPaymentStatus.PENDING
    delivery_status = DeliveryStatus.PENDING
    builty_date = factory.LazyFunction(get_ist_today)
    payment_due_date = factory.LazyAttribute(lambda o: o.builty_date + timedelta(days=30))


class IncomeFactory(BaseFactory):
    class Meta:
        model = Income

    income_number = factory.Sequence(lambda n: f"INT{n:05d}")
    income_type = 'FREIGHT'
    income_category = 'TRANSPORT'
    payer_name = Faker('company')
    amount = Decimal('10000')
    gst_amount = Decimal('0')
    tds_amount = Decimal('0')
    net_amount = factory.LazyAttribute(lambda o: o.amount + o.gst_amount - o.tds_amount)
    received_amount = Decimal('0')
    income_date = factory.LazyFunction(get_ist_today)
    payment_status = IncomePaymentStatus.PENDING
    is_recurring = False


class MaintenanceFactory(BaseFactory):
    class Meta:
        model = Maintenance

    maintenance_number = factory.Sequence(lambda n: f"MTT{n:05d}")
    truck = factory.SubFactory(TruckFactory)
    maintenance_type = 'PREVENTIVE'
    service_category = 'ENGINE'
    status = MaintenanceStatus.SCHEDULED
    priority = MaintenancePriority.MEDIUM
    scheduled_date = factory.LazyFunction(lambda: get_ist_today() + timedelta(days=3))
    service_provider = "Sai Motors"
    labor_cost = Decimal('0')
    parts_cost = Decimal('0')
    other_charges = Decimal('0')
    gst_amount = Decimal('0')
    total_cost = Decimal('0')
    is_recurring = False


# Fixtures for test data
@pytest.fixture
def transport_client(db_session):
    """Create an active client with a credit limit"""
    return ClientFactory()


@pytest.fixture
def driver(db_session):
    """Create an active driver with a valid licence"""
    return DriverFactory()


@pytest.fixture
def truck(db_session):
    """Create an active truck with current documents"""
    return TruckFactory()


@pytest.fixture
def planned_trip(db_session):
    """Create a trip planned for tomorrow"""
    return TripFactory()


@pytest.fixture
def completed_trip(db_session):
    """Create a completed trip with running costs"""
    return CompletedTripFactory()


@pytest.fixture
def builty(db_session):
    """Create an unpaid builty on a completed trip"""
    return BuiltyFactory()


@pytest.fixture
def trip_payload(truck, driver, transport_client):
    """Request body for planning a trip starting tomorrow"""
    start = get_ist_time_naive().replace(microsecond=0) + timedelta(days=1)
    return {
        'truck_id': truck.id,
        'driver_id': driver.id,
        'client_id': transport_client.id,
        'source_location': 'Pune',
        'destination_location': 'Nagpur',
        'planned_start_date': start.isoformat(),
        'planned_end_date': (start + timedelta(hours=14)).isoformat(),
        'distance': '700',
        'load_weight': '9',
        'trip_charges': '45000',
    }

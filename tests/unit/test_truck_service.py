"""
Unit tests for TruckService
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from services.truck_service import TruckService, add_distance_to_odometer
from exceptions import BusinessValidationError, DuplicateResourceError, ResourceNotFoundError
from models import Truck, TripStatus, MaintenanceStatus
from timezone_utils import get_ist_today
from tests.unit.conftest import TruckFactory, TripFactory, CompletedTripFactory, MaintenanceFactory


def truck_payload(**overrides):
    data = {
        'truck_number': 'MH14GH4455',
        'model': 'Ashok Leyland 2518',
        'fuel_type': 'diesel',
        'capacity': '16',
        'mileage': '4.5',
        'rc_book_number': 'RC998877',
        'rc_expiry_date': (get_ist_today() + timedelta(days=900)).isoformat(),
        'insurance_expiry_date': (get_ist_today() + timedelta(days=200)).isoformat(),
    }
    data.update(overrides)
    return data


class TestTruckCrud:
    """Test truck registration and lifecycle"""

    def test_create_truck_success(self, db_session):
        """Test successful truck registration"""
        truck = TruckService().create_truck(truck_payload())

        assert truck.id is not None
        assert truck.fuel_type == 'DIESEL'
        assert truck.capacity == Decimal('16')
        assert truck.current_odometer_reading == Decimal('0')

    @pytest.mark.parametrize('field, message', [
        ('truck_number', 'Truck number is required'),
        ('capacity', 'Capacity is required'),
    ])
    def test_create_truck_missing_field(self, db_session, field, message):
        """Test mandatory truck fields"""
        with pytest.raises(BusinessValidationError, match=message):
            TruckService().create_truck(truck_payload(**{field: ''}))

    @pytest.mark.parametrize('field, value, message', [
        ('capacity', '0', 'Capacity must be greater than zero'),
        ('mileage', '-2', 'Mileage must be greater than zero'),
        ('current_odometer_reading', '-1', 'Odometer reading cannot be negative'),
    ])
    def test_create_truck_invalid_numbers(self, db_session, field, value, message):
        """Test numeric range checks"""
        with pytest.raises(BusinessValidationError, match=message):
            TruckService().create_truck(truck_payload(**{field: value}))

    def test_create_truck_past_document_expiry(self, db_session):
        """Test registering with an already expired insurance"""
        past = (get_ist_today() - timedelta(days=1)).isoformat()

        with pytest.raises(BusinessValidationError, match="INSURANCE expiry date cannot be in the past"):
            TruckService().create_truck(truck_payload(insurance_expiry_date=past))

    def test_create_truck_duplicates(self, db_session, truck):
        """Test truck number and RC book uniqueness"""
        service = TruckService()

        with pytest.raises(DuplicateResourceError, match="truck number"):
            service.create_truck(truck_payload(truck_number=truck.truck_number))
        with pytest.raises(DuplicateResourceError, match="RC book number"):
            service.create_truck(truck_payload(rc_book_number=truck.rc_book_number))

    def test_update_truck_partial(self, db_session, truck):
        """Test partial updates"""
        updated = TruckService().update_truck(truck.id, {'model': 'Eicher Pro 3015'})

        assert updated.model == 'Eicher Pro 3015'
        assert updated.capacity == Decimal('10')

    @pytest.mark.parametrize('body, message', [
        ({'truck_number': None}, "Truck number is required"),
        ({'capacity': ''}, "Capacity is required"),
    ])
    def test_update_truck_rejects_blank_required_field(self, db_session, truck, body, message):
        """Test required columns cannot be cleared"""
        with pytest.raises(BusinessValidationError, match=message):
            TruckService().update_truck(truck.id, body)

        assert db_session.get(Truck, truck.id).capacity == Decimal('10')

    def test_delete_truck_on_running_trip(self, db_session):
        """Test trucks out on a trip cannot be deactivated"""
        trip = TripFactory(status=TripStatus.RUNNING)

        with pytest.raises(BusinessValidationError, match="Cannot delete truck with active trips"):
            TruckService().delete_truck(trip.truck_id)

    def test_delete_truck_soft_deletes(self, db_session, truck):
        """Test delete marks the truck inactive"""
        TruckService().delete_truck(truck.id)

        assert db_session.get(Truck, truck.id).is_active is False

    def test_activate_truck_with_expired_rc(self, db_session):
        """Test trucks with a lapsed RC stay inactive"""
        truck = TruckFactory(is_active=False, rc_expiry_date=get_ist_today() - timedelta(days=1))

        with pytest.raises(BusinessValidationError, match="expired RC/insurance"):
            TruckService().activate_truck(truck.id)

    def test_get_missing_truck(self, db_session):
        """Test lookups and mutations on unknown trucks"""
        service = TruckService()

        assert service.get_truck_by_id(77) is None
        with pytest.raises(ResourceNotFoundError):
            service.update_odometer_reading(77, 100)


class TestTruckDocuments:
    """Test compliance document tracking"""

    def test_update_document_info(self, db_session, truck):
        """Test replacing the permit"""
        expiry = get_ist_today() + timedelta(days=365)

        updated = TruckService().update_document_info(truck.id, 'permit', 'NP-2024-118', expiry.isoformat())

        assert updated.permit_number == 'NP-2024-118'
        assert updated.permit_expiry_date == expiry
        assert 'PERMIT document updated' in updated.remarks

    def test_update_document_info_invalid_type(self, db_session, truck):
        """Test unknown document types"""
        with pytest.raises(BusinessValidationError, match="Invalid document type: LICENCE"):
            TruckService().update_document_info(truck.id, 'LICENCE', 'X1', get_ist_today())

    def test_update_document_info_past_expiry(self, db_session, truck):
        """Test renewals must expire in the future"""
        with pytest.raises(BusinessValidationError, match="PUC expiry date cannot be in the past"):
            TruckService().update_document_info(truck.id, 'PUC', 'PUC1',
                                                get_ist_today() - timedelta(days=2))

    def test_expired_and_expiring_documents(self, db_session):
        """Test document expiry listings"""
        service = TruckService()
        expired = TruckFactory(puc_expiry_date=get_ist_today() - timedelta(days=5))
        expiring = TruckFactory(fitness_expiry_date=get_ist_today() + timedelta(days=12))

        assert [t.id for t in service.get_trucks_with_expired_documents()] == [expired.id]
        assert [t.id for t in service.get_trucks_with_expired_puc()] == [expired.id]
        assert [t.id for t in service.get_trucks_with_documents_expiring_soon(30)] == [expiring.id]

    def test_document_expiry_report(self, db_session):
        """Test the expiry report lists each expiring document"""
        truck = TruckFactory(insurance_expiry_date=get_ist_today() + timedelta(days=10))

        report = TruckService().generate_document_expiry_report(30)

        assert report[0]['truck_id'] == truck.id
        assert report[0]['expiring_documents'] == [{
            'document_type': 'INSURANCE',
            'document_number': None,
            'expiry_date': truck.insurance_expiry_date,
            'days_remaining': 10
        }]


class TestTruckAvailability:
    """Test availability and capacity queries"""

    def test_available_trucks_exclude_running_trips(self, db_session):
        """Test trucks on running trips are unavailable"""
        service = TruckService()
        busy = TripFactory(status=TripStatus.RUNNING).truck
        free = TruckFactory()
        TruckFactory(is_active=False)

        assert [t.id for t in service.get_available_trucks()] == [free.id]
        assert [t.id for t in service.get_trucks_with_active_trips()] == [busy.id]
        assert service.is_truck_available(busy.id) is False
        assert service.is_truck_available(free.id) is True

    def test_trucks_by_capacity_smallest_first(self, db_session):
        """Test capacity matching orders by capacity"""
        service = TruckService()
        large = TruckFactory(capacity=Decimal('25'))
        medium = TruckFactory(capacity=Decimal('12'))
        TruckFactory(capacity=Decimal('6'))

        assert [t.id for t in service.get_trucks_by_capacity('10')] == [medium.id, large.id]
        assert [t.id for t in service.find_by_capacity_range(5, 12)][-1] == medium.id

    def test_find_by_fuel_type_case_insensitive(self, db_session):
        """Test fuel type lookup"""
        cng = TruckFactory(fuel_type='CNG')
        TruckFactory()

        assert [t.id for t in TruckService().find_by_fuel_type(' cng ')] == [cng.id]


class TestTruckServiceAndOdometer:
    """Test odometer and service tracking"""

    def test_update_odometer_reading(self, db_session, truck):
        """Test odometer moves forward with a remark"""
        updated = TruckService().update_odometer_reading(truck.id, '50250')

        assert updated.current_odometer_reading == Decimal('50250')
        assert 'Odometer updated from 50000' in updated.remarks

    def test_update_odometer_reading_backwards(self, db_session, truck):
        """Test odometer cannot go backwards"""
        with pytest.raises(BusinessValidationError, match="cannot be less than current reading"):
            TruckService().update_odometer_reading(truck.id, 49999)

    def test_trucks_due_for_service(self, db_session):
        """Test trucks past their next service odometer"""
        due = TruckFactory(current_odometer_reading=Decimal('60000'), next_service_due=Decimal('60000'))
        TruckFactory(current_odometer_reading=Decimal('60000'), next_service_due=Decimal('65000'))

        assert [t.id for t in TruckService().get_trucks_due_for_service()] == [due.id]

    def test_update_service_info(self, db_session, truck):
        """Test recording a service"""
        updated = TruckService().update_service_info(truck.id, get_ist_today(), '60000', 'Oil change')

        assert updated.last_service_date == get_ist_today()
        assert updated.next_service_due == Decimal('60000')
        assert 'Oil change' in updated.remarks

    def test_add_distance_to_odometer(self, db_session, truck):
        """Test odometer helper ignores empty distances"""
        add_distance_to_odometer(truck, Decimal('120'))
        add_distance_to_odometer(truck, None)

        assert truck.current_odometer_reading == Decimal('50120')


class TestTruckFuelAndCost:
    """Test fuel, maintenance and profitability figures"""

    def test_update_fuel_efficiency_rejects_zero(self, db_session, truck):
        """Test fuel efficiency must be positive"""
        with pytest.raises(BusinessValidationError, match="Fuel efficiency must be greater than zero"):
            TruckService().update_fuel_efficiency(truck.id, 0)

    def test_low_fuel_efficiency(self, db_session):
        """Test trucks below a mileage threshold"""
        thirsty = TruckFactory(mileage=Decimal('3.2'))
        TruckFactory(mileage=Decimal('6'))

        assert [t.id for t in TruckService().get_trucks_with_low_fuel_efficiency(4)] == [thirsty.id]

    def test_high_fuel_consumption_per_100_km(self, db_session):
        """Test consumption is measured in litres per 100 km"""
        trip = CompletedTripFactory()  # 30 L over 150 km
        service = TruckService()

        assert [t.id for t in service.get_trucks_with_high_fuel_consumption(19)] == [trip.truck_id]
        assert service.get_trucks_with_high_fuel_consumption(20) == []

    def test_fuel_consumption_report(self, db_session):
        """Test km per litre in the fuel report"""
        trip = CompletedTripFactory()

        row = TruckService().get_fuel_consumption_report()[0]

        assert row['truck_id'] == trip.truck_id
        assert row['fuel_efficiency'] == Decimal('5.00')

    def test_high_maintenance_cost_ignores_cancelled(self, db_session, truck):
        """Test cancelled jobs do not count towards maintenance cost"""
        service = TruckService()
        MaintenanceFactory(truck=truck, total_cost=Decimal('4000'))
        MaintenanceFactory(truck=truck, total_cost=Decimal('9000'), status=MaintenanceStatus.CANCELLED)

        assert [t.id for t in service.get_trucks_with_high_maintenance_cost(3000)] == [truck.id]
        assert service.get_trucks_with_high_maintenance_cost(5000) == []

    def test_truck_profitability(self, db_session):
        """Test trip profit less maintenance cost"""
        trip = CompletedTripFactory()  # 20000 charges, 4000 expenses
        MaintenanceFactory(truck=trip.truck, total_cost=Decimal('2500'),
                           scheduled_date=get_ist_today())

        assert TruckService().calculate_truck_profitability(trip.truck_id) == Decimal('13500')

    def test_depreciation_value(self, db_session):
        """Test straight-line depreciation over whole years"""
        service = TruckService()
        today = get_ist_today()
        three_years_ago = today.replace(year=today.year - 3, day=1)

        assert service.calculate_depreciation_value('1000000', three_years_ago, '10') == Decimal('700000')
        assert service.calculate_depreciation_value('1000000', three_years_ago, '50') == Decimal('0')

    def test_truck_statistics(self, db_session):
        """Test fleet statistics"""
        TruckFactory(capacity=Decimal('10'), mileage=Decimal('4'))
        TruckFactory(capacity=Decimal('20'), mileage=Decimal('6'))
        TruckFactory(is_active=False)

        stats = TruckService().get_truck_statistics()

        assert stats['total_trucks'] == 3
        assert stats['active_trucks'] == 2
        assert stats['total_capacity'] == Decimal('30')
        assert stats['average_mileage'] == Decimal('5.00')

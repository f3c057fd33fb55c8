"""
Unit tests for TripService
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from services.trip_service import TripService, java_string_hash
from exceptions import BusinessValidationError, DuplicateResourceError, ResourceNotFoundError
from models import Trip, TripStatus
from timezone_utils import get_ist_today, get_ist_time_naive
from utils.converters import to_datetime
from tests.unit.conftest import (TruckFactory, DriverFactory, ClientFactory,
                                 TripFactory, CompletedTripFactory)


class TestTripCreation:
    """Test trip planning"""

    def test_create_trip_success(self, db_session, trip_payload):
        """Test a trip is planned with a generated number"""
        trip = TripService().create_trip(trip_payload)

        assert trip.id is not None
        assert trip.status == TripStatus.PLANNED
        assert trip.advance_amount == Decimal('0')
        assert trip.trip_number == f"TR{get_ist_today():%Y%m%d}0001"

    def test_trip_numbers_are_sequential(self, db_session, trip_payload):
        """Test the daily sequence increments"""
        service = TripService()
        service.create_trip(trip_payload)

        second_start = to_datetime(trip_payload['planned_start_date']) + timedelta(days=2)
        payload = dict(trip_payload,
                       planned_start_date=second_start.isoformat(),
                       planned_end_date=(second_start + timedelta(hours=14)).isoformat())
        second = service.create_trip(payload)

        assert second.trip_number.endswith('0002')

    def test_create_trip_estimates_planned_end(self, db_session, trip_payload):
        """Test missing planned end is derived from distance and average speed"""
        del trip_payload['planned_end_date']

        trip = TripService().create_trip(trip_payload)

        assert trip.planned_end_date - trip.planned_start_date == timedelta(hours=14)

    def test_create_trip_duplicate_number(self, db_session, trip_payload, planned_trip):
        """Test explicit trip numbers must be unique"""
        trip_payload['trip_number'] = planned_trip.trip_number

        with pytest.raises(DuplicateResourceError, match="trip number"):
            TripService().create_trip(trip_payload)

    @pytest.mark.parametrize('field, value, message', [
        ('source_location', '', 'Source location is required'),
        ('destination_location', ' ', 'Destination location is required'),
        ('planned_start_date', None, 'Planned start date is required'),
        ('truck_id', None, 'Truck is required'),
        ('driver_id', None, 'Driver is required'),
        ('client_id', None, 'Client is required'),
        ('load_weight', '-1', 'Load weight cannot be negative'),
        ('load_weight', '10.5', 'Load weight exceeds truck capacity'),
        ('distance', '-5', 'Distance cannot be negative'),
        ('trip_charges', '0', 'Trip charges must be greater than zero'),
        ('advance_amount', '-1', 'Advance amount cannot be negative'),
        ('advance_amount', '45001', 'Advance amount cannot exceed trip charges'),
    ])
    def test_create_trip_validation(self, db_session, trip_payload, field, value, message):
        """Test trip validation messages"""
        trip_payload[field] = value

        with pytest.raises(BusinessValidationError, match=message):
            TripService().create_trip(trip_payload)

        assert Trip.query.count() == 0

    def test_create_trip_end_before_start(self, db_session, trip_payload):
        """Test planned end before planned start"""
        start = to_datetime(trip_payload['planned_start_date'])
        trip_payload['planned_end_date'] = (start - timedelta(minutes=1)).isoformat()

        with pytest.raises(BusinessValidationError, match="Planned end date cannot be before start date"):
            TripService().create_trip(trip_payload)

    def test_create_trip_unknown_truck(self, db_session, trip_payload):
        """Test referencing a missing truck"""
        trip_payload['truck_id'] = 9999

        with pytest.raises(ResourceNotFoundError):
            TripService().create_trip(trip_payload)

    def test_create_trip_inactive_resources(self, db_session, trip_payload):
        """Test inactive truck, driver and client are refused"""
        service = TripService()

        with pytest.raises(BusinessValidationError, match="Cannot assign inactive truck to trip"):
            service.create_trip(dict(trip_payload, truck_id=TruckFactory(is_active=False).id))
        with pytest.raises(BusinessValidationError, match="Cannot assign inactive driver to trip"):
            service.create_trip(dict(trip_payload, driver_id=DriverFactory(is_active=False).id))
        with pytest.raises(BusinessValidationError, match="Cannot create trip for inactive client"):
            service.create_trip(dict(trip_payload, client_id=ClientFactory(is_active=False).id))


class TestTripScheduling:
    """Test truck and driver double-booking rules"""

    def test_truck_overlap_rejected(self, db_session, trip_payload, truck):
        """Test a truck cannot take two overlapping trips"""
        start = to_datetime(trip_payload['planned_start_date'])
        TripFactory(truck=truck, planned_start_date=start + timedelta(hours=2))

        with pytest.raises(BusinessValidationError, match="Truck is not available for the planned dates"):
            TripService().create_trip(trip_payload)

    def test_driver_overlap_rejected(self, db_session, trip_payload, driver):
        """Test a driver cannot take two overlapping trips"""
        start = to_datetime(trip_payload['planned_start_date'])
        TripFactory(driver=driver, planned_start_date=start - timedelta(hours=3))

        with pytest.raises(BusinessValidationError, match="Driver is not available for the planned dates"):
            TripService().create_trip(trip_payload)

    def test_open_ended_trip_blocks_truck(self, db_session, truck):
        """Test a trip without planned end blocks everything after its start"""
        start = get_ist_time_naive() + timedelta(days=1)
        TripFactory(truck=truck, planned_start_date=start, planned_end_date=None)

        service = TripService()
        assert service.is_truck_available(truck.id, start + timedelta(days=30)) is False
        assert service.is_truck_available(truck.id, start - timedelta(hours=5),
                                          start - timedelta(hours=1)) is True

    def test_completed_and_cancelled_trips_do_not_block(self, db_session, truck):
        """Test only planned and running trips count as conflicts"""
        trip = TripFactory(truck=truck, status=TripStatus.CANCELLED)

        assert TripService().is_truck_available(truck.id, trip.planned_start_date,
                                                trip.planned_end_date) is True

    def test_update_trip_excludes_itself(self, db_session, planned_trip):
        """Test rescheduling a trip does not collide with itself"""
        new_end = planned_trip.planned_end_date + timedelta(hours=2)

        updated = TripService().update_trip(planned_trip.id, {'planned_end_date': new_end.isoformat()})

        assert updated.planned_end_date == new_end

    @pytest.mark.parametrize('body, message', [
        ({'trip_number': ''}, "Trip number is required"),
        ({'source_location': None}, "Source location is required"),
        ({'trip_charges': ''}, "Trip charges is required"),
        ({'planned_start_date': None}, "Planned start date is required"),
    ])
    def test_update_trip_rejects_blank_required_field(self, db_session, planned_trip, body, message):
        """Test clearing a required column fails validation instead of the insert"""
        trip_number = planned_trip.trip_number

        with pytest.raises(BusinessValidationError, match=message):
            TripService().update_trip(planned_trip.id, body)

        assert db_session.get(Trip, planned_trip.id).trip_number == trip_number

    def test_update_closed_trip(self, db_session, completed_trip):
        """Test completed trips are read-only"""
        with pytest.raises(BusinessValidationError, match="Cannot update completed or cancelled trip"):
            TripService().update_trip(completed_trip.id, {'remarks': 'late edit'})

    def test_delete_only_planned(self, db_session):
        """Test running trips cannot be deleted"""
        trip = TripFactory(status=TripStatus.RUNNING)

        with pytest.raises(BusinessValidationError, match="Can only delete planned trips"):
            TripService().delete_trip(trip.id)

    def test_delete_planned_trip(self, db_session, planned_trip):
        """Test planned trips are removed"""
        TripService().delete_trip(planned_trip.id)

        assert db_session.get(Trip, planned_trip.id) is None


class TestTripLifecycle:
    """Test start, complete and cancel"""

    def test_start_trip(self, db_session, planned_trip):
        """Test starting a planned trip"""
        trip = TripService().start_trip(planned_trip.id, remarks='Loaded at yard')

        assert trip.status == TripStatus.RUNNING
        assert trip.actual_start_date is not None
        assert 'Loaded at yard' in trip.remarks

    def test_start_trip_too_far_in_past(self, db_session, planned_trip):
        """Test backdating the start by more than an hour"""
        two_hours_ago = get_ist_time_naive() - timedelta(hours=2)

        with pytest.raises(BusinessValidationError, match="more than 1 hour in the past"):
            TripService().start_trip(planned_trip.id, two_hours_ago)

    def test_start_non_planned_trip(self, db_session, completed_trip):
        """Test only planned trips start"""
        with pytest.raises(BusinessValidationError, match="Can only start planned trips"):
            TripService().start_trip(completed_trip.id)

    def test_complete_trip_updates_odometer(self, db_session):
        """Test completion records expenses and advances the odometer"""
        trip = TripFactory(status=TripStatus.RUNNING,
                           actual_start_date=get_ist_time_naive() - timedelta(hours=3))

        completed = TripService().complete_trip(trip.id, fuel_consumed='40', fuel_cost='4000',
                                                toll_charges='300')

        assert completed.status == TripStatus.COMPLETED
        assert completed.total_expenses == Decimal('4300')
        assert completed.net_profit == Decimal('15700')
        assert completed.truck.current_odometer_reading == Decimal('50150')

    def test_complete_trip_end_before_start(self, db_session):
        """Test completion before the actual start"""
        started = get_ist_time_naive() - timedelta(hours=3)
        trip = TripFactory(status=TripStatus.RUNNING, actual_start_date=started)

        with pytest.raises(BusinessValidationError, match="End date cannot be before start date"):
            TripService().complete_trip(trip.id, started - timedelta(minutes=5))

    def test_complete_planned_trip(self, db_session, planned_trip):
        """Test planned trips cannot be completed directly"""
        with pytest.raises(BusinessValidationError, match="Can only complete running trips"):
            TripService().complete_trip(planned_trip.id)

    def test_cancel_trip(self, db_session, planned_trip):
        """Test cancellation records the reason"""
        trip = TripService().cancel_trip(planned_trip.id, 'Client postponed')

        assert trip.status == TripStatus.CANCELLED
        assert 'Reason: Client postponed' in trip.remarks

    def test_cancel_completed_trip(self, db_session, completed_trip):
        """Test completed trips cannot be cancelled"""
        with pytest.raises(BusinessValidationError, match="Cannot cancel completed or already cancelled trip"):
            TripService().cancel_trip(completed_trip.id)


class TestTripFinance:
    """Test charges, advances and profitability"""

    def test_add_advance_payment(self, db_session, planned_trip):
        """Test advances accumulate up to the trip charges"""
        service = TripService()

        trip = service.add_advance_payment(planned_trip.id, '5000', remarks='Cash')

        assert trip.advance_amount == Decimal('5000')
        assert trip.balance_amount == Decimal('15000')
        with pytest.raises(BusinessValidationError, match="Total advance cannot exceed trip charges"):
            service.add_advance_payment(planned_trip.id, '15001')

    def test_add_advance_payment_zero(self, db_session, planned_trip):
        """Test zero advances"""
        with pytest.raises(BusinessValidationError, match="Advance amount must be greater than zero"):
            TripService().add_advance_payment(planned_trip.id, 0)

    def test_update_trip_charges_below_advance(self, db_session):
        """Test charges may not drop below advance received"""
        trip = TripFactory(advance_amount=Decimal('8000'))

        with pytest.raises(BusinessValidationError, match="cannot be less than advance already received"):
            TripService().update_trip_charges(trip.id, '7999')

    def test_trip_profitability(self, db_session, completed_trip):
        """Test profit and margin of a completed trip"""
        result = TripService().calculate_trip_profitability(completed_trip.id)

        assert result['total_expenses'] == Decimal('4000')
        assert result['net_profit'] == Decimal('16000')
        assert result['profit_margin'] == Decimal('80')

    def test_profitable_and_loss_making_trips(self, db_session):
        """Test margin filters"""
        service = TripService()
        good = CompletedTripFactory()
        bad = CompletedTripFactory(fuel_cost=Decimal('25000'))

        assert [t.id for t in service.get_profitable_trips(80)] == [good.id]
        assert service.get_profitable_trips(81) == []
        assert [t.id for t in service.get_loss_making_trips()] == [bad.id]

    def test_total_revenue_and_net_profit(self, db_session):
        """Test period totals over completed trips"""
        service = TripService()
        CompletedTripFactory()
        CompletedTripFactory(trip_charges=Decimal('30000'))
        TripFactory()

        assert service.get_total_revenue() == Decimal('50000')
        assert service.get_net_profit() == Decimal('42000')


class TestTripPlanningHelpers:
    """Test estimation and suggestion helpers"""

    def test_calculate_estimated_duration(self):
        """Test whole-hour duration estimate"""
        service = TripService()

        assert service.calculate_estimated_duration(700, 50) == 14
        assert service.calculate_estimated_duration(120, 0) == 0

    def test_calculate_estimated_fuel_cost(self):
        """Test litres are rounded before pricing"""
        assert TripService().calculate_estimated_fuel_cost(100, 3, '95.50') == Decimal('33.33') * Decimal('95.50')

    @pytest.mark.parametrize('text, expected', [
        ('', 0),
        ('a', 97),
        ('ab', 3105),
        ('hello', 99162322),
        ('polygenelubricants', -2147483648),
    ])
    def test_java_string_hash(self, text, expected):
        """Test 32-bit overflow behaviour of the string hash"""
        assert java_string_hash(text) == expected

    def test_calculate_distance(self):
        """Test the placeholder distance"""
        service = TripService()

        assert service.calculate_distance('poly', 'genelubricants') == Decimal('698')
        assert service.calculate_distance('Pune', '') == Decimal('0')
        assert 50 <= service.calculate_distance('Pune', 'Nagpur') <= 1049

    def test_suggest_optimal_truck(self, db_session):
        """Test the tightest fit wins and mileage breaks ties"""
        TruckFactory(capacity=Decimal('20'), mileage=Decimal('8'))
        TruckFactory(capacity=Decimal('12'), mileage=Decimal('4'))
        best = TruckFactory(capacity=Decimal('12'), mileage=Decimal('6'))
        TruckFactory(capacity=Decimal('6'))

        assert TripService().suggest_optimal_truck('9').id == best.id

    def test_suggest_optimal_truck_none_fit(self, db_session, truck):
        """Test no suggestion when nothing can carry the load"""
        assert TripService().suggest_optimal_truck('50') is None


class TestTripAnalytics:
    """Test delay and overload reports"""

    def test_delayed_trips(self, db_session):
        """Test running trips past their planned end and slow completed trips"""
        now = get_ist_time_naive()
        late_running = TripFactory(status=TripStatus.RUNNING,
                                   planned_start_date=now - timedelta(hours=10),
                                   planned_end_date=now - timedelta(hours=2),
                                   actual_start_date=now - timedelta(hours=10))
        slow = CompletedTripFactory(actual_end_date=now)
        CompletedTripFactory()

        assert {t.id for t in TripService().get_delayed_trips()} == {late_running.id, slow.id}

    def test_overloaded_trips(self, db_session):
        """Test trips loaded beyond truck capacity"""
        overloaded = TripFactory(load_weight=Decimal('12'))
        TripFactory()

        assert [t.id for t in TripService().get_overloaded_trips()] == [overloaded.id]

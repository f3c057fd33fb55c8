"""
Trip Service

Handles trip planning and the PLANNED -> RUNNING -> COMPLETED lifecycle,
truck/driver scheduling conflicts, trip finances and trip analytics.
"""

from typing import Optional, Dict, Any, List
import logging
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from flask import current_app
from sqlalchemy import func, or_
from models import db, Trip, TripStatus, Truck, Driver, Client, ZERO
from exceptions import BusinessValidationError, DuplicateResourceError, ResourceNotFoundError
from utils.converters import to_decimal, to_int, to_date, to_datetime, to_enum, to_text
from utils.pagination import paginate
from timezone_utils import get_ist_time_naive, get_ist_today
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from .truck_service import add_distance_to_odometer
from .common import (generate_document_number, append_remark, apply_fields, reject_blank_required, is_value_unique,
                     month_key, date_range_conditions, as_decimal)

logger = logging.getLogger(__name__)

TRIP_NUMBER_PREFIX = 'TR'
ACTIVE_STATUSES = (TripStatus.PLANNED, TripStatus.RUNNING)
CLOSED_STATUSES = (TripStatus.COMPLETED, TripStatus.CANCELLED)
START_GRACE_PERIOD = timedelta(hours=1)

_TRIP_FIELDS = {
    'trip_number': to_text,
    'truck_id': lambda v: to_int(v, 'truck_id'),
    'driver_id': lambda v: to_int(v, 'driver_id'),
    'client_id': lambda v: to_int(v, 'client_id'),
    'source_location': to_text,
    'destination_location': to_text,
    'planned_start_date': lambda v: to_datetime(v, 'planned_start_date'),
    'planned_end_date': lambda v: to_datetime(v, 'planned_end_date'),
    'distance': lambda v: to_decimal(v, 'distance'),
    'load_weight': lambda v: to_decimal(v, 'load_weight'),
    'load_description': to_text,
    'trip_charges': lambda v: to_decimal(v, 'trip_charges'),
    'remarks': to_text,
}

# Set on creation only; lifecycle operations own the rest
_CREATE_ONLY_FIELDS = {
    'advance_amount': lambda v: to_decimal(v, 'advance_amount', ZERO),
}


def java_string_hash(text: str) -> int:
    """32-bit signed string hash over UTF-16 code units, as java.lang.String.hashCode computes it."""
    value = 0
    encoded = text.encode('utf-16-be')
    for index in range(0, len(encoded), 2):
        unit = (encoded[index] << 8) | encoded[index + 1]
        value = (31 * value + unit) & 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


class TripService:
    """Service class for trip management operations"""

    def __init__(self):
        self.audit_service = AuditService()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def create_trip(self, data: Dict[str, Any]) -> Trip:
        """
        Plan a new trip.

        The trip number is generated when blank and the planned end is
        estimated from the distance at the configured average speed when
        missing.

        Args:
            data: Trip DTO dictionary

        Returns:
            The persisted Trip in PLANNED status
        """
        trip = self.convert_to_entity(data)

        if trip.planned_end_date is None and trip.distance is not None and trip.planned_start_date:
            speed = current_app.config.get('STMS_DEFAULT_AVERAGE_SPEED_KMPH', 50)
            hours = self.calculate_estimated_duration(trip.distance, speed)
            trip.planned_end_date = trip.planned_start_date + timedelta(hours=hours)

        self.validate_trip_for_creation(self._snapshot(trip))

        if not trip.trip_number:
            trip.trip_number = self.generate_trip_number()

        db.session.add(trip)
        db.session.flush()

        self.audit_service.log_action(
            action='create_trip',
            entity_type='trip',
            entity_id=trip.id,
            details={'trip_number': trip.trip_number, 'truck_id': trip.truck_id,
                     'driver_id': trip.driver_id, 'client_id': trip.client_id}
        )

        logger.info(f"Trip {trip.trip_number} (ID: {trip.id}) created")
        return trip

    @TransactionHelper.with_transaction
    def update_trip(self, trip_id: int, data: Dict[str, Any]) -> Trip:
        """
        Update a planned or running trip.

        Completed and cancelled trips are read-only.
        """
        trip = self._get_trip_or_raise(trip_id)
        if trip.status in CLOSED_STATUSES:
            raise BusinessValidationError("Cannot update completed or cancelled trip")

        self.validate_trip_for_update(trip_id, data)
        apply_fields(trip, data, _TRIP_FIELDS)

        self.audit_service.log_action(
            action='update_trip',
            entity_type='trip',
            entity_id=trip.id,
            details={key: data[key] for key in data if key in _TRIP_FIELDS}
        )
        logger.info(f"Trip {trip.trip_number} (ID: {trip_id}) updated")
        return trip

    def get_trip_by_id(self, trip_id: int) -> Optional[Trip]:
        return db.session.get(Trip, trip_id)

    def get_all_trips(self, page: int = 1, per_page: Optional[int] = None):
        return paginate(Trip.query.order_by(Trip.planned_start_date.desc()), page, per_page)

    @TransactionHelper.with_transaction
    def delete_trip(self, trip_id: int) -> None:
        trip = self._get_trip_or_raise(trip_id)
        if trip.status != TripStatus.PLANNED:
            raise BusinessValidationError("Can only delete planned trips")

        trip_number = trip.trip_number
        db.session.delete(trip)

        self.audit_service.log_action(
            action='delete_trip',
            entity_type='trip',
            entity_id=trip_id,
            details={'trip_number': trip_number}
        )
        logger.info(f"Trip {trip_number} (ID: {trip_id}) deleted")

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_trips(self, trip_number: Optional[str] = None, truck_id: Optional[int] = None,
                     driver_id: Optional[int] = None, client_id: Optional[int] = None,
                     status: Any = None, start_date=None, end_date=None,
                     page: int = 1, per_page: Optional[int] = None):
        """
        Search trips; the date range applies to the planned start.
        """
        query = Trip.query

        if trip_number:
            query = query.filter(Trip.trip_number.ilike(f"%{trip_number}%"))
        if truck_id:
            query = query.filter(Trip.truck_id == truck_id)
        if driver_id:
            query = query.filter(Trip.driver_id == driver_id)
        if client_id:
            query = query.filter(Trip.client_id == client_id)
        if status:
            query = query.filter(Trip.status == to_enum(TripStatus, status))
        query = query.filter(*date_range_conditions(Trip.planned_start_date, start_date, end_date))

        return paginate(query.order_by(Trip.planned_start_date.desc()), page, per_page)

    def find_by_trip_number(self, trip_number: str) -> Optional[Trip]:
        return Trip.query.filter_by(trip_number=trip_number).first()

    def get_trips_by_status(self, status: Any, page: int = 1, per_page: Optional[int] = None):
        query = Trip.query.filter(Trip.status == to_enum(TripStatus, status))
        return paginate(query.order_by(Trip.planned_start_date.desc()), page, per_page)

    def get_trips_by_truck(self, truck_id: int, page: int = 1, per_page: Optional[int] = None):
        query = Trip.query.filter(Trip.truck_id == truck_id)
        return paginate(query.order_by(Trip.planned_start_date.desc()), page, per_page)

    def get_trips_by_driver(self, driver_id: int, page: int = 1, per_page: Optional[int] = None):
        query = Trip.query.filter(Trip.driver_id == driver_id)
        return paginate(query.order_by(Trip.planned_start_date.desc()), page, per_page)

    def get_trips_by_client(self, client_id: int, page: int = 1, per_page: Optional[int] = None):
        query = Trip.query.filter(Trip.client_id == client_id)
        return paginate(query.order_by(Trip.planned_start_date.desc()), page, per_page)

    def get_planned_trips(self, page: int = 1, per_page: Optional[int] = None):
        return self.get_trips_by_status(TripStatus.PLANNED, page, per_page)

    def get_running_trips(self, page: int = 1, per_page: Optional[int] = None):
        return self.get_trips_by_status(TripStatus.RUNNING, page, per_page)

    def get_completed_trips(self, page: int = 1, per_page: Optional[int] = None):
        return self.get_trips_by_status(TripStatus.COMPLETED, page, per_page)

    def get_cancelled_trips(self, page: int = 1, per_page: Optional[int] = None):
        return self.get_trips_by_status(TripStatus.CANCELLED, page, per_page)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def start_trip(self, trip_id: int, actual_start_date: Any = None, remarks: Optional[str] = None) -> Trip:
        """
        Move a planned trip to RUNNING.

        Args:
            trip_id: ID of trip
            actual_start_date: When the truck left; defaults to now and may
                not lie more than an hour in the past
            remarks: Optional note appended to the trip remarks

        Returns:
            The running Trip
        """
        trip = self._get_trip_or_raise(trip_id)
        if trip.status != TripStatus.PLANNED:
            raise BusinessValidationError("Can only start planned trips")

        now = get_ist_time_naive()
        started_at = to_datetime(actual_start_date, 'actual_start_date', now)
        if started_at < now - START_GRACE_PERIOD:
            raise BusinessValidationError("Start date cannot be more than 1 hour in the past")

        trip.status = TripStatus.RUNNING
        trip.actual_start_date = started_at

        message = f"Trip started on {started_at:%Y-%m-%d %H:%M:%S}"
        if remarks:
            message += f" - {remarks}"
        append_remark(trip, message)

        self.audit_service.log_action(
            action='start_trip',
            entity_type='trip',
            entity_id=trip.id,
            details={'actual_start_date': started_at}
        )
        logger.info(f"Trip {trip.trip_number} started")
        return trip

    @TransactionHelper.with_transaction
    def complete_trip(self, trip_id: int, actual_end_date: Any = None, fuel_consumed: Any = None,
                      fuel_cost: Any = None, toll_charges: Any = None, other_expenses: Any = None,
                      remarks: Optional[str] = None) -> Trip:
        """
        Close a running trip and record its running costs.

        The trip distance is added to the truck's odometer in the same
        transaction.
        """
        trip = self._get_trip_or_raise(trip_id)
        if trip.status != TripStatus.RUNNING:
            raise BusinessValidationError("Can only complete running trips")

        ended_at = to_datetime(actual_end_date, 'actual_end_date', get_ist_time_naive())
        if trip.actual_start_date and ended_at < trip.actual_start_date:
            raise BusinessValidationError("End date cannot be before start date")

        trip.status = TripStatus.COMPLETED
        trip.actual_end_date = ended_at
        trip.fuel_consumed = to_decimal(fuel_consumed, 'fuel_consumed')
        trip.fuel_cost = to_decimal(fuel_cost, 'fuel_cost')
        trip.toll_charges = to_decimal(toll_charges, 'toll_charges', ZERO)
        trip.other_expenses = to_decimal(other_expenses, 'other_expenses', ZERO)

        message = f"Trip completed on {ended_at:%Y-%m-%d %H:%M:%S}"
        if remarks:
            message += f" - {remarks}"
        append_remark(trip, message)

        if trip.truck is not None:
            add_distance_to_odometer(trip.truck, trip.distance)

        self.audit_service.log_action(
            action='complete_trip',
            entity_type='trip',
            entity_id=trip.id,
            details={'actual_end_date': ended_at, 'fuel_consumed': trip.fuel_consumed,
                     'total_expenses': trip.total_expenses}
        )
        logger.info(f"Trip {trip.trip_number} completed")
        return trip

    @TransactionHelper.with_transaction
    def cancel_trip(self, trip_id: int, reason: Optional[str] = None) -> Trip:
        trip = self._get_trip_or_raise(trip_id)
        if trip.status in CLOSED_STATUSES:
            raise BusinessValidationError("Cannot cancel completed or already cancelled trip")

        trip.status = TripStatus.CANCELLED
        append_remark(trip, f"Trip cancelled on {get_ist_time_naive():%Y-%m-%d %H:%M:%S}. "
                            f"Reason: {reason or 'Not specified'}")

        self.audit_service.log_action(
            action='cancel_trip',
            entity_type='trip',
            entity_id=trip.id,
            details={'reason': reason}
        )
        logger.info(f"Trip {trip.trip_number} cancelled")
        return trip

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def get_available_trucks_for_trip(self, required_capacity: Any, planned_start_date: Any) -> List[Truck]:
        """Active trucks with enough capacity and no planned or running trip at the start time."""
        capacity = to_decimal(required_capacity, 'required_capacity', ZERO)
        start = to_datetime(planned_start_date, 'planned_start_date', get_ist_time_naive())

        trucks = Truck.query.filter(
            Truck.is_active == True,
            Truck.capacity >= capacity
        ).order_by(Truck.capacity, Truck.truck_number).all()
        return [truck for truck in trucks if self.is_truck_available(truck.id, start, start)]

    def get_available_drivers_for_trip(self, planned_start_date: Any) -> List[Driver]:
        start = to_datetime(planned_start_date, 'planned_start_date', get_ist_time_naive())
        drivers = Driver.query.filter(Driver.is_active == True).order_by(Driver.name).all()
        return [driver for driver in drivers
                if not driver.is_license_expired and self.is_driver_available(driver.id, start, start)]

    def calculate_estimated_duration(self, distance: Any, average_speed: Any) -> int:
        """Whole hours needed to cover ``distance`` km at ``average_speed`` km/h."""
        distance = to_decimal(distance, 'distance')
        speed = to_decimal(average_speed, 'average_speed')
        if distance is None or speed is None or speed == 0:
            return 0
        return int((distance / speed).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))

    def calculate_estimated_fuel_cost(self, distance: Any, fuel_efficiency: Any, fuel_price: Any) -> Decimal:
        distance = to_decimal(distance, 'distance')
        efficiency = to_decimal(fuel_efficiency, 'fuel_efficiency')
        price = to_decimal(fuel_price, 'fuel_price')
        if distance is None or efficiency is None or price is None or efficiency == 0:
            return ZERO
        litres = (distance / efficiency).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        return litres * price

    def suggest_optimal_truck(self, load_weight: Any, distance: Any = None,
                              planned_start_date: Any = None) -> Optional[Truck]:
        """
        Pick the free truck that fits the load with the least spare capacity.

        Ties on capacity go to the better mileage.
        """
        candidates = self.get_available_trucks_for_trip(load_weight, planned_start_date)
        if not candidates:
            return None
        return min(candidates, key=lambda truck: (truck.capacity, -(truck.mileage or ZERO), truck.id))

    def calculate_distance(self, source_location: Optional[str], destination_location: Optional[str]) -> Decimal:
        """
        Placeholder road distance in km between two places.

        Deterministic 50 to 1049 km derived from the location names until a
        routing provider is wired in; blank locations give zero.
        """
        if not to_text(source_location) or not to_text(destination_location):
            return ZERO
        hash_value = java_string_hash(source_location + destination_location)
        return Decimal(abs(hash_value) % 1000 + 50)

    # ------------------------------------------------------------------
    # Finance
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def update_trip_charges(self, trip_id: int, new_charges: Any, reason: Optional[str] = None) -> Trip:
        charges = to_decimal(new_charges, 'trip_charges')
        if charges is None or charges <= 0:
            raise BusinessValidationError("Trip charges must be greater than zero")

        trip = self._get_trip_or_raise(trip_id)
        if charges < (trip.advance_amount or ZERO):
            raise BusinessValidationError("Trip charges cannot be less than advance already received")

        old_charges = trip.trip_charges
        trip.trip_charges = charges

        message = f"Trip charges updated from {old_charges} to {charges} on {get_ist_today()}"
        if reason:
            message += f" - Reason: {reason}"
        append_remark(trip, message)

        self.audit_service.log_action(
            action='update_trip_charges',
            entity_type='trip',
            entity_id=trip.id,
            details={'old_charges': old_charges, 'new_charges': charges, 'reason': reason}
        )
        return trip

    @TransactionHelper.with_transaction
    def add_advance_payment(self, trip_id: int, amount: Any, remarks: Optional[str] = None) -> Trip:
        value = to_decimal(amount, 'amount')
        if value is None or value <= 0:
            raise BusinessValidationError("Advance amount must be greater than zero")

        trip = self._get_trip_or_raise(trip_id)
        new_advance = (trip.advance_amount or ZERO) + value
        if trip.trip_charges is not None and new_advance > trip.trip_charges:
            raise BusinessValidationError("Total advance cannot exceed trip charges")

        trip.advance_amount = new_advance

        message = f"Advance payment of {value} added on {get_ist_today()}. Total advance: {new_advance}"
        if remarks:
            message += f" - {remarks}"
        append_remark(trip, message)

        self.audit_service.log_action(
            action='add_trip_advance',
            entity_type='trip',
            entity_id=trip.id,
            details={'amount': value, 'advance_amount': new_advance}
        )
        return trip

    def calculate_trip_profitability(self, trip_id: int) -> Dict[str, Any]:
        trip = self._get_trip_or_raise(trip_id)
        return {
            'trip_id': trip.id,
            'trip_number': trip.trip_number,
            'trip_charges': trip.trip_charges,
            'total_expenses': trip.total_expenses,
            'net_profit': trip.net_profit,
            'profit_margin': trip.profit_margin
        }

    def get_profitable_trips(self, min_profit_margin: Any = ZERO) -> List[Trip]:
        """Completed trips whose profit margin (percent) is at least ``min_profit_margin``."""
        minimum = to_decimal(min_profit_margin, 'min_profit_margin', ZERO)
        trips = Trip.query.filter(Trip.status == TripStatus.COMPLETED,
                                  Trip.net_profit > 0) \
                          .order_by(Trip.actual_end_date.desc()).all()
        return [trip for trip in trips if trip.profit_margin >= minimum]

    def get_loss_making_trips(self) -> List[Trip]:
        return Trip.query.filter(
            Trip.status == TripStatus.COMPLETED,
            Trip.net_profit < 0
        ).order_by(Trip.net_profit).all()

    def get_trips_with_outstanding_balance(self, page: int = 1, per_page: Optional[int] = None):
        query = Trip.query.filter(
            Trip.status != TripStatus.CANCELLED,
            Trip.balance_amount > 0
        ).order_by(Trip.planned_start_date.desc())
        return paginate(query, page, per_page)

    def _completed_in_range(self, start_date=None, end_date=None):
        return Trip.query.filter(
            Trip.status == TripStatus.COMPLETED,
            *date_range_conditions(Trip.actual_end_date, start_date, end_date)
        )

    def get_total_revenue(self, start_date=None, end_date=None) -> Decimal:
        total = self._completed_in_range(start_date, end_date) \
                    .with_entities(func.coalesce(func.sum(Trip.trip_charges), 0)).scalar()
        return as_decimal(total)

    def get_total_expenses(self, start_date=None, end_date=None) -> Decimal:
        total = self._completed_in_range(start_date, end_date) \
                    .with_entities(func.coalesce(func.sum(Trip.total_expenses), 0)).scalar()
        return as_decimal(total)

    def get_net_profit(self, start_date=None, end_date=None) -> Decimal:
        return self.get_total_revenue(start_date, end_date) - self.get_total_expenses(start_date, end_date)

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_delayed_trips(self) -> List[Trip]:
        """
        Trips that ran longer than planned.

        Covers completed trips whose actual duration exceeded the planned
        window and running trips already past their planned end.
        """
        now = get_ist_time_naive()
        delayed = []
        trips = Trip.query.filter(
            Trip.status.in_([TripStatus.COMPLETED, TripStatus.RUNNING]),
            Trip.planned_end_date.isnot(None)
        ).order_by(Trip.planned_start_date).all()

        for trip in trips:
            planned = trip.planned_end_date - trip.planned_start_date
            if trip.status == TripStatus.RUNNING:
                if trip.planned_end_date < now:
                    delayed.append(trip)
            elif trip.actual_start_date and trip.actual_end_date:
                if trip.actual_end_date - trip.actual_start_date > planned:
                    delayed.append(trip)
        return delayed

    def get_overloaded_trips(self) -> List[Trip]:
        return Trip.query.join(Truck, Trip.truck_id == Truck.id).filter(
            Trip.load_weight.isnot(None),
            Trip.load_weight > Truck.capacity
        ).order_by(Trip.planned_start_date.desc()).all()

    def get_trip_performance_summary(self, start_date=None, end_date=None) -> Dict[str, Any]:
        trips = Trip.query.filter(
            *date_range_conditions(Trip.planned_start_date, start_date, end_date)
        ).all()
        completed = [trip for trip in trips if trip.status == TripStatus.COMPLETED]

        revenue = sum((trip.trip_charges or ZERO for trip in completed), ZERO)
        expenses = sum((trip.total_expenses for trip in completed), ZERO)
        durations = [trip.duration_hours for trip in completed if trip.duration_hours is not None]
        margins = [trip.profit_margin for trip in completed if trip.trip_charges]

        summary = {status.name.lower() + '_trips': 0 for status in TripStatus}
        for trip in trips:
            summary[trip.status.name.lower() + '_trips'] += 1

        summary.update({
            'total_trips': len(trips),
            'total_distance': sum((trip.distance or ZERO for trip in completed), ZERO),
            'total_revenue': revenue,
            'total_expenses': expenses,
            'net_profit': revenue - expenses,
            'average_profit_margin': self._average(margins),
            'average_duration_hours': self._average([Decimal(hours) for hours in durations])
        })
        return summary

    def get_fuel_efficiency_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        trips = self._completed_in_range(start_date, end_date) \
                    .filter(Trip.fuel_consumed > 0) \
                    .order_by(Trip.actual_end_date).all()
        return [
            {
                'trip_id': trip.id,
                'trip_number': trip.trip_number,
                'truck_number': trip.truck.truck_number if trip.truck else None,
                'distance': trip.distance,
                'fuel_consumed': trip.fuel_consumed,
                'fuel_cost': trip.fuel_cost,
                'fuel_efficiency': trip.fuel_efficiency
            }
            for trip in trips
        ]

    def get_route_analysis(self, source_location: Optional[str] = None,
                           destination_location: Optional[str] = None) -> List[Dict[str, Any]]:
        """Trip count, distance and revenue per source/destination pair."""
        query = db.session.query(
            Trip.source_location,
            Trip.destination_location,
            func.count(Trip.id).label('trip_count'),
            func.avg(Trip.distance).label('average_distance'),
            func.coalesce(func.sum(Trip.trip_charges), 0).label('total_revenue'),
            func.avg(Trip.trip_charges).label('average_charges')
        ).filter(Trip.status != TripStatus.CANCELLED)

        if source_location:
            query = query.filter(Trip.source_location.ilike(f"%{source_location}%"))
        if destination_location:
            query = query.filter(Trip.destination_location.ilike(f"%{destination_location}%"))

        rows = query.group_by(Trip.source_location, Trip.destination_location) \
                    .order_by(func.count(Trip.id).desc()).all()
        return [
            {
                'source_location': row.source_location,
                'destination_location': row.destination_location,
                'trip_count': row.trip_count,
                'average_distance': self._rounded(row.average_distance),
                'total_revenue': as_decimal(row.total_revenue),
                'average_charges': self._rounded(row.average_charges)
            }
            for row in rows
        ]

    def get_capacity_utilization_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        trips = Trip.query.filter(
            Trip.status != TripStatus.CANCELLED,
            Trip.load_weight.isnot(None),
            *date_range_conditions(Trip.planned_start_date, start_date, end_date)
        ).order_by(Trip.planned_start_date).all()
        return [
            {
                'trip_id': trip.id,
                'trip_number': trip.trip_number,
                'truck_number': trip.truck.truck_number if trip.truck else None,
                'load_weight': trip.load_weight,
                'truck_capacity': trip.truck.capacity if trip.truck else None,
                'capacity_utilization': trip.capacity_utilization
            }
            for trip in trips
        ]

    def get_daily_trip_summary(self, day: Any = None) -> Dict[str, Any]:
        target = to_date(day, 'date', get_ist_today())
        planned = Trip.query.filter(*date_range_conditions(Trip.planned_start_date, target, target)).count()
        started = Trip.query.filter(*date_range_conditions(Trip.actual_start_date, target, target)).count()
        completed = self._completed_in_range(target, target).all()
        return {
            'date': target,
            'planned_trips': planned,
            'started_trips': started,
            'completed_trips': len(completed),
            'revenue': sum((trip.trip_charges or ZERO for trip in completed), ZERO),
            'distance': sum((trip.distance or ZERO for trip in completed), ZERO)
        }

    def get_monthly_trip_summary(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        trips = Trip.query.filter(
            Trip.status == TripStatus.COMPLETED,
            Trip.actual_start_date.isnot(None),
            *date_range_conditions(Trip.actual_start_date, start_date, end_date)
        ).all()

        months = defaultdict(lambda: {'trip_count': 0, 'revenue': ZERO, 'expenses': ZERO, 'distance': ZERO})
        for trip in trips:
            bucket = months[month_key(trip.actual_start_date)]
            bucket['trip_count'] += 1
            bucket['revenue'] += trip.trip_charges or ZERO
            bucket['expenses'] += trip.total_expenses
            bucket['distance'] += trip.distance or ZERO

        return [
            {
                'month': month,
                'trip_count': values['trip_count'],
                'revenue': values['revenue'],
                'expenses': values['expenses'],
                'net_profit': values['revenue'] - values['expenses'],
                'distance': values['distance']
            }
            for month, values in sorted(months.items())
        ]

    def get_trip_statistics(self) -> Dict[str, Any]:
        counts = dict(db.session.query(Trip.status, func.count(Trip.id)).group_by(Trip.status).all())
        statistics = {status.name: counts.get(status, 0) for status in TripStatus}
        statistics['TOTAL'] = sum(statistics.values())
        return statistics

    def generate_trip_report(self, start_date=None, end_date=None, status: Any = None) -> List[Dict[str, Any]]:
        query = Trip.query.filter(*date_range_conditions(Trip.planned_start_date, start_date, end_date))
        if status:
            query = query.filter(Trip.status == to_enum(TripStatus, status))
        return [self.convert_to_dict(trip) for trip in query.order_by(Trip.planned_start_date).all()]

    def generate_profitability_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        trips = self._completed_in_range(start_date, end_date).order_by(Trip.actual_end_date).all()
        return [
            {
                'trip_id': trip.id,
                'trip_number': trip.trip_number,
                'client_name': trip.client.name if trip.client else None,
                'trip_charges': trip.trip_charges,
                'total_expenses': trip.total_expenses,
                'net_profit': trip.net_profit,
                'profit_margin': trip.profit_margin
            }
            for trip in trips
        ]

    def generate_driver_performance_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        return self._group_completed(start_date, end_date, 'driver_id',
                                     lambda trip: {'driver_id': trip.driver_id,
                                                   'driver_name': trip.driver.name if trip.driver else None})

    def generate_truck_utilization_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        report = self._group_completed(start_date, end_date, 'truck_id',
                                       lambda trip: {'truck_id': trip.truck_id,
                                                     'truck_number': trip.truck.truck_number if trip.truck else None})
        trips = self._completed_in_range(start_date, end_date).all()
        utilization = defaultdict(list)
        for trip in trips:
            if trip.load_weight is not None:
                utilization[trip.truck_id].append(Decimal(str(trip.capacity_utilization)))
        for row in report:
            row['average_capacity_utilization'] = self._average(utilization[row['truck_id']])
        return report

    def _group_completed(self, start_date, end_date, key: str, header) -> List[Dict[str, Any]]:
        groups: Dict[int, Dict[str, Any]] = {}
        for trip in self._completed_in_range(start_date, end_date).all():
            row = groups.get(getattr(trip, key))
            if row is None:
                row = header(trip)
                row.update({'completed_trips': 0, 'total_distance': ZERO, 'total_revenue': ZERO,
                            'total_expenses': ZERO, 'margins': []})
                groups[getattr(trip, key)] = row
            row['completed_trips'] += 1
            row['total_distance'] += trip.distance or ZERO
            row['total_revenue'] += trip.trip_charges or ZERO
            row['total_expenses'] += trip.total_expenses
            if trip.trip_charges:
                row['margins'].append(trip.profit_margin)

        report = []
        for row in groups.values():
            margins = row.pop('margins')
            row['net_profit'] = row['total_revenue'] - row['total_expenses']
            row['average_profit_margin'] = self._average(margins)
            report.append(row)
        return sorted(report, key=lambda r: r['total_revenue'], reverse=True)

    @staticmethod
    def _average(values: List[Decimal]) -> Decimal:
        if not values:
            return ZERO
        return (sum(values, ZERO) / len(values)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

    @staticmethod
    def _rounded(value) -> Optional[Decimal]:
        if value is None:
            return None
        return as_decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_trip_for_creation(self, data: Dict[str, Any]) -> None:
        """
        Check a new trip against fleet state.

        Raises:
            ResourceNotFoundError: truck, driver or client does not exist
            BusinessValidationError: any scheduling or money rule is broken
            DuplicateResourceError: the trip number is taken
        """
        self._validate_trip(data, exclude_trip_id=None)

    def validate_trip_for_update(self, trip_id: int, data: Dict[str, Any]) -> None:
        """Validate an update against the trip as it would look afterwards."""
        trip = self._get_trip_or_raise(trip_id)
        reject_blank_required(Trip, data, _TRIP_FIELDS)
        merged = self._snapshot(trip)
        for field, converter in _TRIP_FIELDS.items():
            if field in data:
                merged[field] = converter(data[field])
        self._validate_trip(merged, exclude_trip_id=trip_id)

    def _validate_trip(self, data: Dict[str, Any], exclude_trip_id: Optional[int]) -> None:
        trip_number = to_text(data.get('trip_number'))
        if trip_number and not self.is_trip_number_unique(trip_number, exclude_trip_id):
            raise DuplicateResourceError("Trip", "trip number", trip_number)

        for field, label in (('source_location', 'Source location'),
                             ('destination_location', 'Destination location')):
            if not to_text(data.get(field)):
                raise BusinessValidationError(f"{label} is required")

        start = to_datetime(data.get('planned_start_date'), 'planned_start_date')
        end = to_datetime(data.get('planned_end_date'), 'planned_end_date')
        if start is None:
            raise BusinessValidationError("Planned start date is required")
        if end is not None and end < start:
            raise BusinessValidationError("Planned end date cannot be before start date")

        truck_id = to_int(data.get('truck_id'), 'truck_id')
        if truck_id is None:
            raise BusinessValidationError("Truck is required")
        truck = db.session.get(Truck, truck_id)
        if not truck:
            raise ResourceNotFoundError("Truck", truck_id)
        if not truck.is_active:
            raise BusinessValidationError("Cannot assign inactive truck to trip")
        if not self.is_truck_available(truck_id, start, end, exclude_trip_id):
            raise BusinessValidationError("Truck is not available for the planned dates")

        load_weight = to_decimal(data.get('load_weight'), 'load_weight')
        if load_weight is not None:
            if load_weight < 0:
                raise BusinessValidationError("Load weight cannot be negative")
            if not self.is_load_within_capacity(truck_id, load_weight):
                raise BusinessValidationError("Load weight exceeds truck capacity")

        driver_id = to_int(data.get('driver_id'), 'driver_id')
        if driver_id is None:
            raise BusinessValidationError("Driver is required")
        driver = db.session.get(Driver, driver_id)
        if not driver:
            raise ResourceNotFoundError("Driver", driver_id)
        if not driver.is_active:
            raise BusinessValidationError("Cannot assign inactive driver to trip")
        if not self.is_driver_available(driver_id, start, end, exclude_trip_id):
            raise BusinessValidationError("Driver is not available for the planned dates")

        client_id = to_int(data.get('client_id'), 'client_id')
        if client_id is None:
            raise BusinessValidationError("Client is required")
        client = db.session.get(Client, client_id)
        if not client:
            raise ResourceNotFoundError("Client", client_id)
        if not client.is_active:
            raise BusinessValidationError("Cannot create trip for inactive client")

        distance = to_decimal(data.get('distance'), 'distance')
        if distance is not None and distance < 0:
            raise BusinessValidationError("Distance cannot be negative")

        charges = to_decimal(data.get('trip_charges'), 'trip_charges')
        if charges is None or charges <= 0:
            raise BusinessValidationError("Trip charges must be greater than zero")

        advance = to_decimal(data.get('advance_amount'), 'advance_amount')
        if advance is not None:
            if advance < 0:
                raise BusinessValidationError("Advance amount cannot be negative")
            if advance > charges:
                raise BusinessValidationError("Advance amount cannot exceed trip charges")

    def is_trip_number_unique(self, trip_number: Optional[str], exclude_id: Optional[int] = None) -> bool:
        return is_value_unique(Trip, Trip.trip_number, trip_number, exclude_id)

    def _conflicting_trips(self, column, resource_id: int, start, end, exclude_trip_id: Optional[int]):
        """
        PLANNED or RUNNING trips of a truck/driver whose planned window meets [start, end].

        A missing end on either side leaves that window open-ended.
        """
        query = Trip.query.filter(column == resource_id, Trip.status.in_(ACTIVE_STATUSES))
        if exclude_trip_id is not None:
            query = query.filter(Trip.id != exclude_trip_id)
        if start is not None:
            query = query.filter(or_(Trip.planned_end_date.is_(None), Trip.planned_end_date >= start))
        if end is not None:
            query = query.filter(Trip.planned_start_date <= end)
        return query

    def is_truck_available(self, truck_id: int, planned_start_date: Any, planned_end_date: Any = None,
                           exclude_trip_id: Optional[int] = None) -> bool:
        start = to_datetime(planned_start_date, 'planned_start_date')
        end = to_datetime(planned_end_date, 'planned_end_date')
        return self._conflicting_trips(Trip.truck_id, truck_id, start, end, exclude_trip_id).first() is None

    def is_driver_available(self, driver_id: int, planned_start_date: Any, planned_end_date: Any = None,
                            exclude_trip_id: Optional[int] = None) -> bool:
        start = to_datetime(planned_start_date, 'planned_start_date')
        end = to_datetime(planned_end_date, 'planned_end_date')
        return self._conflicting_trips(Trip.driver_id, driver_id, start, end, exclude_trip_id).first() is None

    def is_load_within_capacity(self, truck_id: int, load_weight: Any) -> bool:
        truck = db.session.get(Truck, truck_id)
        load = to_decimal(load_weight, 'load_weight')
        if truck is None or truck.capacity is None or load is None:
            return False
        return load <= truck.capacity

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def convert_to_dict(self, trip: Optional[Trip]) -> Optional[Dict[str, Any]]:
        if trip is None:
            return None

        return {
            'id': trip.id,
            'trip_number': trip.trip_number,
            'truck_id': trip.truck_id,
            'driver_id': trip.driver_id,
            'client_id': trip.client_id,
            'source_location': trip.source_location,
            'destination_location': trip.destination_location,
            'planned_start_date': trip.planned_start_date,
            'planned_end_date': trip.planned_end_date,
            'actual_start_date': trip.actual_start_date,
            'actual_end_date': trip.actual_end_date,
            'distance': trip.distance,
            'load_weight': trip.load_weight,
            'load_description': trip.load_description,
            'trip_charges': trip.trip_charges,
            'advance_amount': trip.advance_amount,
            'fuel_consumed': trip.fuel_consumed,
            'fuel_cost': trip.fuel_cost,
            'toll_charges': trip.toll_charges,
            'other_expenses': trip.other_expenses,
            'status': trip.status,
            'remarks': trip.remarks,
            'truck_number': trip.truck.truck_number if trip.truck else None,
            'truck_capacity': trip.truck.capacity if trip.truck else None,
            'driver_name': trip.driver.name if trip.driver else None,
            'client_name': trip.client.name if trip.client else None,
            'total_expenses': trip.total_expenses,
            'net_profit': trip.net_profit,
            'profit_margin': trip.profit_margin,
            'fuel_efficiency': trip.fuel_efficiency,
            'duration_hours': trip.duration_hours,
            'average_speed': trip.average_speed,
            'balance_amount': trip.balance_amount,
            'capacity_utilization': trip.capacity_utilization
        }

    def convert_to_entity(self, data: Dict[str, Any]) -> Trip:
        trip = Trip()
        apply_fields(trip, data, _TRIP_FIELDS)
        apply_fields(trip, data, _CREATE_ONLY_FIELDS)
        if trip.advance_amount is None:
            trip.advance_amount = ZERO
        trip.toll_charges = ZERO
        trip.other_expenses = ZERO
        trip.status = TripStatus.PLANNED
        return trip

    def generate_trip_number(self) -> str:
        return generate_document_number(Trip.trip_number, TRIP_NUMBER_PREFIX,
                                        get_ist_today().strftime('%Y%m%d'))

    def get_trip_count(self, status: Any = None) -> int:
        query = Trip.query
        if status:
            query = query.filter(Trip.status == to_enum(TripStatus, status))
        return query.count()

    @staticmethod
    def _snapshot(trip: Trip) -> Dict[str, Any]:
        fields = list(_TRIP_FIELDS) + list(_CREATE_ONLY_FIELDS)
        return {field: getattr(trip, field) for field in fields}

    def _get_trip_or_raise(self, trip_id: int) -> Trip:
        trip = db.session.get(Trip, trip_id)
        if not trip:
            raise ResourceNotFoundError("Trip", trip_id)
        return trip

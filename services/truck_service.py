"""
Truck Service

Handles the truck fleet: registration, compliance documents, availability,
odometer and service tracking, fuel efficiency and fleet reports.
"""

from typing import Optional, Dict, Any, List
import logging
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from flask import current_app
from sqlalchemy import func, and_, or_, case
from models import db, Truck, Trip, TripStatus, Maintenance, MaintenanceStatus, ZERO
from exceptions import BusinessValidationError, DuplicateResourceError, ResourceNotFoundError
from utils.converters import to_decimal, to_date, to_bool, to_text
from utils.pagination import paginate
from timezone_utils import get_ist_today
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from .common import (append_remark, apply_fields, reject_blank_required, is_value_unique, month_key,
                     date_range_conditions, as_decimal)

logger = logging.getLogger(__name__)

DEFAULT_DEPRECIATION_RATE = Decimal('10')

_TRUCK_FIELDS = {
    'truck_number': to_text,
    'model': to_text,
    'fuel_type': lambda v: to_text(v).upper() if to_text(v) else None,
    'capacity': lambda v: to_decimal(v, 'capacity'),
    'fuel_tank_capacity': lambda v: to_decimal(v, 'fuel_tank_capacity'),
    'mileage': lambda v: to_decimal(v, 'mileage'),
    'purchase_date': lambda v: to_date(v, 'purchase_date'),
    'purchase_price': lambda v: to_decimal(v, 'purchase_price'),
    'rc_book_number': to_text,
    'rc_expiry_date': lambda v: to_date(v, 'rc_expiry_date'),
    'insurance_policy_number': to_text,
    'insurance_expiry_date': lambda v: to_date(v, 'insurance_expiry_date'),
    'permit_number': to_text,
    'permit_expiry_date': lambda v: to_date(v, 'permit_expiry_date'),
    'fitness_certificate_number': to_text,
    'fitness_expiry_date': lambda v: to_date(v, 'fitness_expiry_date'),
    'puc_certificate_number': to_text,
    'puc_expiry_date': lambda v: to_date(v, 'puc_expiry_date'),
    'current_odometer_reading': lambda v: to_decimal(v, 'current_odometer_reading', ZERO),
    'last_service_date': lambda v: to_date(v, 'last_service_date'),
    'next_service_due': lambda v: to_decimal(v, 'next_service_due'),
    'remarks': to_text,
}

EXPIRY_FIELDS = [expiry_field for _, expiry_field in Truck.DOCUMENT_FIELDS.values()]


def apply_service_info(truck: Truck, service_date: date, next_service_due: Optional[Decimal],
                       remarks: Optional[str] = None) -> None:
    """
    Record a completed service on a truck without committing.

    Shared with maintenance completion, which updates the truck inside its
    own transaction.
    """
    truck.last_service_date = service_date
    truck.next_service_due = next_service_due

    message = f"Service completed on {service_date}. Next service due at {next_service_due} km"
    if remarks:
        message += f" - {remarks}"
    append_remark(truck, message)


def add_distance_to_odometer(truck: Truck, distance: Optional[Decimal]) -> None:
    """Advance a truck's odometer by a completed trip's distance."""
    if not distance or distance <= 0:
        return
    old_reading = truck.current_odometer_reading or ZERO
    truck.current_odometer_reading = old_reading + distance
    logger.debug(f"Truck {truck.truck_number} odometer advanced from {old_reading} "
                 f"to {truck.current_odometer_reading}")


class TruckService:
    """Service class for truck fleet operations"""

    def __init__(self):
        self.audit_service = AuditService()

    @TransactionHelper.with_transaction
    def create_truck(self, data: Dict[str, Any]) -> Truck:
        """
        Register a new truck.

        Args:
            data: Truck DTO dictionary

        Returns:
            The persisted Truck
        """
        self.validate_truck_for_creation(data)

        truck = self.convert_to_entity(data)
        db.session.add(truck)
        db.session.flush()

        self.audit_service.log_action(
            action='create_truck',
            entity_type='truck',
            entity_id=truck.id,
            details={'truck_number': truck.truck_number, 'capacity': truck.capacity}
        )

        logger.info(f"Truck {truck.truck_number} (ID: {truck.id}) created")
        return truck

    @TransactionHelper.with_transaction
    def update_truck(self, truck_id: int, data: Dict[str, Any]) -> Truck:
        truck = self._get_truck_or_raise(truck_id)
        self.validate_truck_for_update(truck_id, data)

        apply_fields(truck, data, _TRUCK_FIELDS)

        self.audit_service.log_action(
            action='update_truck',
            entity_type='truck',
            entity_id=truck.id,
            details={key: data[key] for key in data if key in _TRUCK_FIELDS}
        )
        logger.info(f"Truck {truck.truck_number} (ID: {truck_id}) updated")
        return truck

    def get_truck_by_id(self, truck_id: int) -> Optional[Truck]:
        return db.session.get(Truck, truck_id)

    def get_all_active_trucks(self) -> List[Truck]:
        return Truck.query.filter(Truck.is_active == True).order_by(Truck.truck_number).all()

    def get_all_trucks(self, page: int = 1, per_page: Optional[int] = None):
        return paginate(Truck.query.order_by(Truck.truck_number), page, per_page)

    @TransactionHelper.with_transaction
    def delete_truck(self, truck_id: int) -> None:
        truck = self._get_truck_or_raise(truck_id)

        if self._has_running_trip(truck_id):
            raise BusinessValidationError("Cannot delete truck with active trips")

        truck.is_active = False

        self.audit_service.log_action(
            action='delete_truck',
            entity_type='truck',
            entity_id=truck.id,
            details={'truck_number': truck.truck_number}
        )
        logger.info(f"Truck {truck.truck_number} (ID: {truck_id}) deactivated")

    @TransactionHelper.with_transaction
    def activate_truck(self, truck_id: int) -> Truck:
        """
        Put a truck back into service.

        Trucks with a lapsed RC or insurance stay inactive.
        """
        truck = self._get_truck_or_raise(truck_id)

        today = get_ist_today()
        if ((truck.rc_expiry_date and truck.rc_expiry_date < today)
                or (truck.insurance_expiry_date and truck.insurance_expiry_date < today)):
            raise BusinessValidationError("Cannot activate truck with expired RC/insurance")

        truck.is_active = True

        self.audit_service.log_action(action='activate_truck', entity_type='truck', entity_id=truck.id)
        logger.info(f"Truck {truck.truck_number} (ID: {truck_id}) activated")
        return truck

    def search_trucks(self, truck_number: Optional[str] = None, model: Optional[str] = None,
                      fuel_type: Optional[str] = None, is_active: Optional[bool] = None,
                      page: int = 1, per_page: Optional[int] = None):
        query = Truck.query

        if truck_number:
            query = query.filter(Truck.truck_number.ilike(f"%{truck_number}%"))
        if model:
            query = query.filter(Truck.model.ilike(f"%{model}%"))
        if fuel_type:
            query = query.filter(func.upper(Truck.fuel_type) == fuel_type.strip().upper())
        if is_active is not None:
            query = query.filter(Truck.is_active == is_active)

        return paginate(query.order_by(Truck.truck_number), page, per_page)

    def find_by_truck_number(self, truck_number: str) -> Optional[Truck]:
        return Truck.query.filter_by(truck_number=truck_number).first()

    def find_by_capacity_range(self, min_capacity: Any, max_capacity: Any) -> List[Truck]:
        low = to_decimal(min_capacity, 'min_capacity', ZERO)
        high = to_decimal(max_capacity, 'max_capacity')
        query = Truck.query.filter(Truck.is_active == True, Truck.capacity >= low)
        if high is not None:
            query = query.filter(Truck.capacity <= high)
        return query.order_by(Truck.capacity).all()

    def find_by_fuel_type(self, fuel_type: str) -> List[Truck]:
        return Truck.query.filter(
            Truck.is_active == True,
            func.upper(Truck.fuel_type) == (fuel_type or '').strip().upper()
        ).order_by(Truck.truck_number).all()

    # ------------------------------------------------------------------
    # Compliance documents
    # ------------------------------------------------------------------

    def get_trucks_with_expired_documents(self) -> List[Truck]:
        today = get_ist_today()
        return Truck.query.filter(
            Truck.is_active == True,
            or_(*[getattr(Truck, field) < today for field in EXPIRY_FIELDS])
        ).order_by(Truck.truck_number).all()

    def get_trucks_with_documents_expiring_soon(self, days: Optional[int] = None) -> List[Truck]:
        """
        Active trucks with any document expiring between today and today + days.

        Args:
            days: Look-ahead window; defaults to STMS_DOCUMENT_EXPIRY_WARNING_DAYS
        """
        if days is None:
            days = current_app.config.get('STMS_DOCUMENT_EXPIRY_WARNING_DAYS', 30)
        today = get_ist_today()
        limit = today + timedelta(days=days)
        return Truck.query.filter(
            Truck.is_active == True,
            or_(*[getattr(Truck, field).between(today, limit) for field in EXPIRY_FIELDS])
        ).order_by(Truck.truck_number).all()

    def _get_trucks_with_expired(self, expiry_field: str) -> List[Truck]:
        column = getattr(Truck, expiry_field)
        return Truck.query.filter(
            Truck.is_active == True,
            column < get_ist_today()
        ).order_by(column).all()

    def get_trucks_with_expired_rc(self) -> List[Truck]:
        return self._get_trucks_with_expired('rc_expiry_date')

    def get_trucks_with_expired_insurance(self) -> List[Truck]:
        return self._get_trucks_with_expired('insurance_expiry_date')

    def get_trucks_with_expired_permits(self) -> List[Truck]:
        return self._get_trucks_with_expired('permit_expiry_date')

    def get_trucks_with_expired_fitness(self) -> List[Truck]:
        return self._get_trucks_with_expired('fitness_expiry_date')

    def get_trucks_with_expired_puc(self) -> List[Truck]:
        return self._get_trucks_with_expired('puc_expiry_date')

    @TransactionHelper.with_transaction
    def update_document_info(self, truck_id: int, document_type: str, document_number: str,
                             expiry_date: Any) -> Truck:
        """
        Replace one compliance document on a truck.

        Args:
            truck_id: ID of truck
            document_type: RC, INSURANCE, PERMIT, FITNESS or PUC (any case)
            document_number: New document number
            expiry_date: New expiry date, must not be in the past

        Returns:
            The updated Truck
        """
        doc_type = (document_type or '').strip().upper()
        if doc_type not in Truck.DOCUMENT_FIELDS:
            raise BusinessValidationError(f"Invalid document type: {document_type}")

        expiry = to_date(expiry_date, 'expiry_date')
        if expiry is None:
            raise BusinessValidationError("Document expiry date is required")
        if expiry < get_ist_today():
            raise BusinessValidationError(f"{doc_type} expiry date cannot be in the past")

        truck = self._get_truck_or_raise(truck_id)
        number = to_text(document_number)

        if doc_type == 'RC' and number and not self.is_rc_book_number_unique(number, truck_id):
            raise DuplicateResourceError("Truck", "RC book number", number)

        number_field, expiry_field = Truck.DOCUMENT_FIELDS[doc_type]
        setattr(truck, number_field, number)
        setattr(truck, expiry_field, expiry)
        append_remark(truck, f"{doc_type} document updated: {number} (expires: {expiry}) on {get_ist_today()}")

        self.audit_service.log_action(
            action='update_document_info',
            entity_type='truck',
            entity_id=truck.id,
            details={'document_type': doc_type, 'document_number': number, 'expiry_date': expiry}
        )
        logger.info(f"{doc_type} document updated for truck {truck.truck_number}")
        return truck

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def _running_truck_ids(self):
        return db.session.query(Trip.truck_id).filter(Trip.status == TripStatus.RUNNING)

    def get_available_trucks(self) -> List[Truck]:
        return Truck.query.filter(
            Truck.is_active == True,
            ~Truck.id.in_(self._running_truck_ids())
        ).order_by(Truck.truck_number).all()

    def get_trucks_with_active_trips(self) -> List[Truck]:
        return Truck.query.filter(Truck.id.in_(self._running_truck_ids())) \
                          .order_by(Truck.truck_number).all()

    def is_truck_available(self, truck_id: int) -> bool:
        truck = self._get_truck_or_raise(truck_id)
        return bool(truck.is_active) and not self._has_running_trip(truck_id)

    def get_trucks_by_capacity(self, required_capacity: Any) -> List[Truck]:
        """Available trucks that can carry at least ``required_capacity`` tons, smallest first."""
        required = to_decimal(required_capacity, 'required_capacity', ZERO)
        return Truck.query.filter(
            Truck.is_active == True,
            Truck.capacity >= required,
            ~Truck.id.in_(self._running_truck_ids())
        ).order_by(Truck.capacity, Truck.truck_number).all()

    def _has_running_trip(self, truck_id: int) -> bool:
        return Trip.query.filter(
            Trip.truck_id == truck_id,
            Trip.status == TripStatus.RUNNING
        ).first() is not None

    # ------------------------------------------------------------------
    # Service and odometer
    # ------------------------------------------------------------------

    def get_trucks_due_for_service(self) -> List[Truck]:
        return Truck.query.filter(
            Truck.is_active == True,
            Truck.next_service_due.isnot(None),
            Truck.current_odometer_reading >= Truck.next_service_due
        ).order_by(Truck.truck_number).all()

    @TransactionHelper.with_transaction
    def update_odometer_reading(self, truck_id: int, new_reading: Any) -> Truck:
        reading = to_decimal(new_reading, 'odometer_reading')
        if reading is None:
            raise BusinessValidationError("Odometer reading is required")

        truck = self._get_truck_or_raise(truck_id)
        old_reading = truck.current_odometer_reading
        if old_reading is not None and reading < old_reading:
            raise BusinessValidationError("New odometer reading cannot be less than current reading")

        truck.current_odometer_reading = reading
        append_remark(truck, f"Odometer updated from {old_reading} to {reading} km on {get_ist_today()}")

        self.audit_service.log_action(
            action='update_odometer_reading',
            entity_type='truck',
            entity_id=truck.id,
            details={'old_reading': old_reading, 'new_reading': reading}
        )
        return truck

    @TransactionHelper.with_transaction
    def update_service_info(self, truck_id: int, service_date: Any, next_service_due: Any,
                            remarks: Optional[str] = None) -> Truck:
        truck = self._get_truck_or_raise(truck_id)
        serviced_on = to_date(service_date, 'service_date', get_ist_today())
        next_due = to_decimal(next_service_due, 'next_service_due')

        apply_service_info(truck, serviced_on, next_due, remarks)

        self.audit_service.log_action(
            action='update_service_info',
            entity_type='truck',
            entity_id=truck.id,
            details={'service_date': serviced_on, 'next_service_due': next_due}
        )
        logger.info(f"Service info updated for truck {truck.truck_number}")
        return truck

    def _maintenance_cost_query(self, start_date=None, end_date=None):
        join_condition = and_(
            Maintenance.truck_id == Truck.id,
            Maintenance.status != MaintenanceStatus.CANCELLED,
            *date_range_conditions(Maintenance.scheduled_date, start_date, end_date)
        )
        cost = func.coalesce(func.sum(Maintenance.total_cost), 0)
        return db.session.query(Truck, cost.label('maintenance_cost')) \
                         .outerjoin(Maintenance, join_condition) \
                         .group_by(Truck.id), cost

    def get_trucks_with_high_maintenance_cost(self, threshold: Any) -> List[Truck]:
        """Active trucks whose non-cancelled maintenance cost totals more than ``threshold``."""
        limit = to_decimal(threshold, 'threshold', ZERO)
        query, cost = self._maintenance_cost_query()
        rows = query.filter(Truck.is_active == True) \
                    .having(cost > limit) \
                    .order_by(cost.desc()).all()
        return [truck for truck, _ in rows]

    # ------------------------------------------------------------------
    # Performance
    # ------------------------------------------------------------------

    def _trip_totals(self, start_date=None, end_date=None) -> Dict[int, Dict[str, Any]]:
        join_condition = and_(Trip.truck_id == Truck.id,
                              *date_range_conditions(Trip.planned_start_date, start_date, end_date))
        completed = Trip.status == TripStatus.COMPLETED
        rows = db.session.query(
            Truck.id,
            Truck.truck_number,
            func.count(Trip.id).label('total_trips'),
            func.coalesce(func.sum(case((completed, 1), else_=0)), 0).label('completed_trips'),
            func.coalesce(func.sum(case((completed, Trip.distance), else_=0)), 0).label('total_distance'),
            func.coalesce(func.sum(case((completed, Trip.fuel_consumed), else_=0)), 0).label('fuel_consumed'),
            func.coalesce(func.sum(case((completed, Trip.fuel_cost), else_=0)), 0).label('fuel_cost'),
            func.coalesce(func.sum(case((completed, Trip.trip_charges), else_=0)), 0).label('revenue'),
            func.coalesce(func.sum(case((completed, Trip.total_expenses), else_=0)), 0).label('expenses')
        ).outerjoin(Trip, join_condition) \
         .group_by(Truck.id, Truck.truck_number) \
         .order_by(Truck.truck_number).all()

        totals = {}
        for row in rows:
            revenue = as_decimal(row.revenue)
            expenses = as_decimal(row.expenses)
            totals[row.id] = {
                'truck_id': row.id,
                'truck_number': row.truck_number,
                'total_trips': row.total_trips,
                'completed_trips': int(row.completed_trips),
                'total_distance': as_decimal(row.total_distance),
                'fuel_consumed': as_decimal(row.fuel_consumed),
                'fuel_cost': as_decimal(row.fuel_cost),
                'revenue': revenue,
                'expenses': expenses,
                'profit': revenue - expenses
            }
        return totals

    def get_truck_performance_summary(self) -> List[Dict[str, Any]]:
        active_ids = {truck.id for truck in self.get_all_active_trucks()}
        return [row for truck_id, row in self._trip_totals().items() if truck_id in active_ids]

    def get_top_performing_trucks(self, page: int = 1, per_page: Optional[int] = None):
        """Active trucks ordered by number of completed trips."""
        query = Truck.query.outerjoin(
            Trip, and_(Trip.truck_id == Truck.id, Trip.status == TripStatus.COMPLETED)
        ).filter(Truck.is_active == True) \
         .group_by(Truck.id) \
         .order_by(func.count(Trip.id).desc(), Truck.truck_number)
        return paginate(query, page, per_page)

    def get_trucks_with_low_fuel_efficiency(self, threshold: Any) -> List[Truck]:
        limit = to_decimal(threshold, 'threshold', ZERO)
        return Truck.query.filter(
            Truck.is_active == True,
            Truck.mileage.isnot(None),
            Truck.mileage < limit
        ).order_by(Truck.mileage).all()

    def get_truck_utilization_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        """
        Trips, distance and busy days per truck for a period.

        Utilization is the share of days in the period with a completed trip
        running; without a period it is left out.
        """
        totals = self._trip_totals(start_date, end_date)
        period_days = (end_date - start_date).days + 1 if start_date and end_date else None

        busy_days = defaultdict(set)
        trips = Trip.query.filter(
            Trip.status == TripStatus.COMPLETED,
            *date_range_conditions(Trip.planned_start_date, start_date, end_date)
        ).all()
        for trip in trips:
            if trip.actual_start_date and trip.actual_end_date:
                day = trip.actual_start_date.date()
                while day <= trip.actual_end_date.date():
                    busy_days[trip.truck_id].add(day)
                    day += timedelta(days=1)

        report = []
        for truck_id, row in totals.items():
            entry = dict(row)
            entry['days_on_trip'] = len(busy_days[truck_id])
            if period_days:
                entry['utilization_percentage'] = (
                    Decimal(entry['days_on_trip'] * 100) / Decimal(period_days)
                ).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
            report.append(entry)
        return sorted(report, key=lambda r: r['total_trips'], reverse=True)

    def calculate_truck_profitability(self, truck_id: int, start_date=None, end_date=None) -> Decimal:
        """
        Trip revenue less trip expenses and maintenance cost for one truck.

        Args:
            truck_id: ID of truck
            start_date: First day of the period (inclusive)
            end_date: Last day of the period (inclusive)

        Returns:
            Net profit as Decimal
        """
        self._get_truck_or_raise(truck_id)
        trips = self._trip_totals(start_date, end_date).get(truck_id)
        query, _ = self._maintenance_cost_query(start_date, end_date)
        maintenance = query.filter(Truck.id == truck_id).one()[1]

        profit = trips['profit'] if trips else ZERO
        return profit - as_decimal(maintenance)

    # ------------------------------------------------------------------
    # Fuel
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def update_fuel_efficiency(self, truck_id: int, new_efficiency: Any) -> Truck:
        efficiency = to_decimal(new_efficiency, 'fuel_efficiency')
        if efficiency is None or efficiency <= 0:
            raise BusinessValidationError("Fuel efficiency must be greater than zero")

        truck = self._get_truck_or_raise(truck_id)
        old_efficiency = truck.mileage
        truck.mileage = efficiency
        append_remark(truck, f"Fuel efficiency updated from {old_efficiency} to {efficiency} km/l on {get_ist_today()}")

        self.audit_service.log_action(
            action='update_fuel_efficiency',
            entity_type='truck',
            entity_id=truck.id,
            details={'old_efficiency': old_efficiency, 'new_efficiency': efficiency}
        )
        return truck

    def get_fuel_consumption_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        report = []
        for row in self._trip_totals(start_date, end_date).values():
            if not row['completed_trips']:
                continue
            efficiency = ZERO
            if row['fuel_consumed'] > 0:
                efficiency = (row['total_distance'] / row['fuel_consumed']).quantize(
                    Decimal('0.01'), rounding=ROUND_HALF_UP)
            report.append({
                'truck_id': row['truck_id'],
                'truck_number': row['truck_number'],
                'completed_trips': row['completed_trips'],
                'total_distance': row['total_distance'],
                'fuel_consumed': row['fuel_consumed'],
                'fuel_cost': row['fuel_cost'],
                'fuel_efficiency': efficiency
            })
        return report

    def get_trucks_with_high_fuel_consumption(self, threshold: Any) -> List[Truck]:
        """Active trucks burning more than ``threshold`` litres per 100 km on completed trips."""
        limit = to_decimal(threshold, 'threshold', ZERO)
        consumption = {}
        for row in self._trip_totals().values():
            if row['total_distance'] > 0 and row['fuel_consumed'] > 0:
                consumption[row['truck_id']] = row['fuel_consumed'] * 100 / row['total_distance']
        return [truck for truck in self.get_all_active_trucks()
                if consumption.get(truck.id, ZERO) > limit]

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def get_monthly_truck_summary(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        trips = Trip.query.filter(
            *date_range_conditions(Trip.planned_start_date, start_date, end_date)
        ).all()

        months = defaultdict(lambda: {'trucks': set(), 'trip_count': 0, 'total_distance': ZERO,
                                      'fuel_consumed': ZERO})
        for trip in trips:
            bucket = months[month_key(trip.planned_start_date)]
            bucket['trucks'].add(trip.truck_id)
            bucket['trip_count'] += 1
            bucket['total_distance'] += trip.distance or ZERO
            bucket['fuel_consumed'] += trip.fuel_consumed or ZERO

        return [
            {
                'month': month,
                'trucks_used': len(values['trucks']),
                'trip_count': values['trip_count'],
                'total_distance': values['total_distance'],
                'fuel_consumed': values['fuel_consumed']
            }
            for month, values in sorted(months.items())
        ]

    def get_truck_statistics(self) -> Dict[str, Any]:
        total = Truck.query.count()
        active = Truck.query.filter(Truck.is_active == True).count()
        capacity = db.session.query(func.coalesce(func.sum(Truck.capacity), 0)) \
                             .filter(Truck.is_active == True).scalar()
        average_mileage = db.session.query(func.avg(Truck.mileage)) \
                                    .filter(Truck.is_active == True).scalar()
        return {
            'total_trucks': total,
            'active_trucks': active,
            'inactive_trucks': total - active,
            'available_trucks': len(self.get_available_trucks()),
            'trucks_on_trip': len(self.get_trucks_with_active_trips()),
            'trucks_due_for_service': len(self.get_trucks_due_for_service()),
            'trucks_with_expired_documents': len(self.get_trucks_with_expired_documents()),
            'total_capacity': as_decimal(capacity),
            'average_mileage': Decimal(str(average_mileage)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
                               if average_mileage is not None else ZERO
        }

    def generate_truck_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        """Active trucks with period trip totals and depreciated value."""
        totals = self._trip_totals(start_date, end_date)
        report = []
        for truck in self.get_all_active_trucks():
            entry = self.convert_to_dict(truck)
            period = totals.get(truck.id, {})
            entry['period_trips'] = period.get('total_trips', 0)
            entry['period_distance'] = period.get('total_distance', ZERO)
            entry['period_revenue'] = period.get('revenue', ZERO)
            entry['depreciated_value'] = None
            if truck.purchase_price is not None and truck.purchase_date is not None:
                entry['depreciated_value'] = self.calculate_depreciation_value(
                    truck.purchase_price, truck.purchase_date, DEFAULT_DEPRECIATION_RATE)
            report.append(entry)
        return report

    def generate_document_expiry_report(self, days: Optional[int] = None) -> List[Dict[str, Any]]:
        if days is None:
            days = current_app.config.get('STMS_DOCUMENT_EXPIRY_WARNING_DAYS', 30)
        today = get_ist_today()
        limit = today + timedelta(days=days)

        report = []
        for truck in self.get_trucks_with_documents_expiring_soon(days):
            expiring = []
            for doc_type, (number_field, expiry_field) in Truck.DOCUMENT_FIELDS.items():
                expiry = getattr(truck, expiry_field)
                if expiry is not None and today <= expiry <= limit:
                    expiring.append({
                        'document_type': doc_type,
                        'document_number': getattr(truck, number_field),
                        'expiry_date': expiry,
                        'days_remaining': (expiry - today).days
                    })
            report.append({
                'truck_id': truck.id,
                'truck_number': truck.truck_number,
                'expiring_documents': expiring
            })
        return report

    def calculate_depreciation_value(self, purchase_price: Any, purchase_date: Any, rate: Any) -> Decimal:
        """
        Straight-line depreciated value after whole years of ownership.

        Args:
            purchase_price: Original price
            purchase_date: Date of purchase
            rate: Annual depreciation percentage

        Returns:
            Remaining value, never below zero
        """
        price = to_decimal(purchase_price, 'purchase_price')
        bought = to_date(purchase_date, 'purchase_date')
        annual_rate = to_decimal(rate, 'rate', ZERO)
        if price is None or bought is None:
            return ZERO

        today = get_ist_today()
        years = today.year - bought.year
        if (today.month, today.day) < (bought.month, bought.day):
            years -= 1
        years = max(0, years)

        yearly_fraction = (annual_rate / 100).quantize(Decimal('0.0001'), rounding=ROUND_HALF_UP)
        depreciation = price * yearly_fraction * years
        return max(ZERO, price - depreciation)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_truck_for_creation(self, data: Dict[str, Any]) -> None:
        if not to_text(data.get('truck_number')):
            raise BusinessValidationError("Truck number is required")
        if to_decimal(data.get('capacity'), 'capacity') is None:
            raise BusinessValidationError("Capacity is required")
        self._validate_truck_fields(data, exclude_id=None)

    def validate_truck_for_update(self, truck_id: int, data: Dict[str, Any]) -> None:
        if 'truck_number' in data and not to_text(data.get('truck_number')):
            raise BusinessValidationError("Truck number is required")
        if 'capacity' in data and to_decimal(data.get('capacity'), 'capacity') is None:
            raise BusinessValidationError("Capacity is required")
        reject_blank_required(Truck, data, _TRUCK_FIELDS)
        self._validate_truck_fields(data, exclude_id=truck_id)

    def _validate_truck_fields(self, data: Dict[str, Any], exclude_id: Optional[int]) -> None:
        truck_number = to_text(data.get('truck_number'))
        if truck_number and not self.is_truck_number_unique(truck_number, exclude_id):
            raise DuplicateResourceError("Truck", "truck number", truck_number)

        rc_book_number = to_text(data.get('rc_book_number'))
        if rc_book_number and not self.is_rc_book_number_unique(rc_book_number, exclude_id):
            raise DuplicateResourceError("Truck", "RC book number", rc_book_number)

        today = get_ist_today()
        for doc_type, (_, expiry_field) in Truck.DOCUMENT_FIELDS.items():
            expiry = to_date(data.get(expiry_field), expiry_field)
            if expiry is not None and expiry < today:
                raise BusinessValidationError(f"{doc_type} expiry date cannot be in the past")

        capacity = to_decimal(data.get('capacity'), 'capacity')
        if capacity is not None and capacity <= 0:
            raise BusinessValidationError("Capacity must be greater than zero")

        mileage = to_decimal(data.get('mileage'), 'mileage')
        if mileage is not None and mileage <= 0:
            raise BusinessValidationError("Mileage must be greater than zero")

        odometer = to_decimal(data.get('current_odometer_reading'), 'current_odometer_reading')
        if odometer is not None and odometer < 0:
            raise BusinessValidationError("Odometer reading cannot be negative")

    def is_truck_number_unique(self, truck_number: Optional[str], exclude_id: Optional[int] = None) -> bool:
        return is_value_unique(Truck, Truck.truck_number, truck_number, exclude_id)

    def is_rc_book_number_unique(self, rc_book_number: Optional[str], exclude_id: Optional[int] = None) -> bool:
        return is_value_unique(Truck, Truck.rc_book_number, rc_book_number, exclude_id)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def convert_to_dict(self, truck: Optional[Truck]) -> Optional[Dict[str, Any]]:
        if truck is None:
            return None

        result = {
            'id': truck.id,
            'truck_number': truck.truck_number,
            'model': truck.model,
            'capacity': truck.capacity,
            'fuel_type': truck.fuel_type,
            'fuel_tank_capacity': truck.fuel_tank_capacity,
            'mileage': truck.mileage,
            'purchase_date': truck.purchase_date,
            'purchase_price': truck.purchase_price,
            'current_odometer_reading': truck.current_odometer_reading,
            'last_service_date': truck.last_service_date,
            'next_service_due': truck.next_service_due,
            'remarks': truck.remarks,
            'is_active': truck.is_active,
            'expired_documents': truck.expired_documents(),
            'is_due_for_service': (truck.next_service_due is not None
                                   and (truck.current_odometer_reading or ZERO) >= truck.next_service_due),
            'total_trips': truck.trips.count(),
            'completed_trips': truck.trips.filter(Trip.status == TripStatus.COMPLETED).count()
        }
        for number_field, expiry_field in Truck.DOCUMENT_FIELDS.values():
            result[number_field] = getattr(truck, number_field)
            result[expiry_field] = getattr(truck, expiry_field)
        return result

    def convert_to_entity(self, data: Dict[str, Any]) -> Truck:
        truck = Truck()
        apply_fields(truck, data, _TRUCK_FIELDS)
        if truck.current_odometer_reading is None:
            truck.current_odometer_reading = ZERO
        truck.is_active = to_bool(data.get('is_active'), 'is_active', True)
        return truck

    def get_truck_count(self, is_active: Optional[bool] = None) -> int:
        query = Truck.query
        if is_active is not None:
            query = query.filter(Truck.is_active == is_active)
        return query.count()

    def _get_truck_or_raise(self, truck_id: int) -> Truck:
        truck = db.session.get(Truck, truck_id)
        if not truck:
            raise ResourceNotFoundError("Truck", truck_id)
        return truck

"""
Driver Service

Handles driver records, licence tracking, salary and advance bookkeeping,
availability for trips and driver performance reports.
"""

from typing import Optional, Dict, Any, List
import logging
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal
from flask import current_app
from sqlalchemy import func, and_, case
from models import db, Driver, Trip, TripStatus, ZERO
from exceptions import BusinessValidationError, DuplicateResourceError, ResourceNotFoundError
from utils.converters import to_decimal, to_date, to_bool, to_text
from utils.pagination import paginate
from timezone_utils import get_ist_today
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from .common import (append_remark, apply_fields, reject_blank_required, is_value_unique, month_key,
                     date_range_conditions, as_decimal)

logger = logging.getLogger(__name__)

_DRIVER_FIELDS = {
    'name': to_text,
    'license_number': to_text,
    'license_expiry_date': lambda v: to_date(v, 'license_expiry_date'),
    'contact_number': to_text,
    'alternate_contact_number': to_text,
    'address': to_text,
    'date_of_birth': lambda v: to_date(v, 'date_of_birth'),
    'salary': lambda v: to_decimal(v, 'salary'),
    'advance_paid': lambda v: to_decimal(v, 'advance_paid', ZERO),
    'joining_date': lambda v: to_date(v, 'joining_date'),
    'emergency_contact_name': to_text,
    'emergency_contact_number': to_text,
    'blood_group': to_text,
    'remarks': to_text,
}


class DriverService:
    """Service class for driver management operations"""

    def __init__(self):
        self.audit_service = AuditService()

    @TransactionHelper.with_transaction
    def create_driver(self, data: Dict[str, Any]) -> Driver:
        """
        Register a new driver.

        Args:
            data: Driver DTO dictionary

        Returns:
            The persisted Driver
        """
        self.validate_driver_for_creation(data)

        driver = self.convert_to_entity(data)
        db.session.add(driver)
        db.session.flush()

        self.audit_service.log_action(
            action='create_driver',
            entity_type='driver',
            entity_id=driver.id,
            details={'name': driver.name, 'license_number': driver.license_number}
        )

        logger.info(f"Driver {driver.name} (ID: {driver.id}) created")
        return driver

    @TransactionHelper.with_transaction
    def update_driver(self, driver_id: int, data: Dict[str, Any]) -> Driver:
        driver = self._get_driver_or_raise(driver_id)
        self.validate_driver_for_update(driver_id, data)

        apply_fields(driver, data, _DRIVER_FIELDS)

        self.audit_service.log_action(
            action='update_driver',
            entity_type='driver',
            entity_id=driver.id,
            details={key: data[key] for key in data if key in _DRIVER_FIELDS}
        )
        logger.info(f"Driver {driver.name} (ID: {driver_id}) updated")
        return driver

    def get_driver_by_id(self, driver_id: int) -> Optional[Driver]:
        return db.session.get(Driver, driver_id)

    def get_all_active_drivers(self) -> List[Driver]:
        return Driver.query.filter(Driver.is_active == True).order_by(Driver.name).all()

    def get_all_drivers(self, page: int = 1, per_page: Optional[int] = None):
        return paginate(Driver.query.order_by(Driver.name), page, per_page)

    @TransactionHelper.with_transaction
    def delete_driver(self, driver_id: int) -> None:
        """
        Soft-delete a driver.

        A driver who is out on a running trip cannot be deactivated.
        """
        driver = self._get_driver_or_raise(driver_id)

        if self._has_running_trip(driver_id):
            raise BusinessValidationError("Cannot delete driver with active trips")

        driver.is_active = False

        self.audit_service.log_action(
            action='delete_driver',
            entity_type='driver',
            entity_id=driver.id,
            details={'name': driver.name}
        )
        logger.info(f"Driver {driver.name} (ID: {driver_id}) deactivated")

    @TransactionHelper.with_transaction
    def activate_driver(self, driver_id: int) -> Driver:
        driver = self._get_driver_or_raise(driver_id)
        driver.is_active = True

        self.audit_service.log_action(action='activate_driver', entity_type='driver', entity_id=driver.id)
        logger.info(f"Driver {driver.name} (ID: {driver_id}) activated")
        return driver

    def search_drivers(self, name: Optional[str] = None, license_number: Optional[str] = None,
                       contact_number: Optional[str] = None, is_active: Optional[bool] = None,
                       page: int = 1, per_page: Optional[int] = None):
        query = Driver.query

        if name:
            query = query.filter(Driver.name.ilike(f"%{name}%"))
        if license_number:
            query = query.filter(Driver.license_number.ilike(f"%{license_number}%"))
        if contact_number:
            query = query.filter(Driver.contact_number.ilike(f"%{contact_number}%"))
        if is_active is not None:
            query = query.filter(Driver.is_active == is_active)

        return paginate(query.order_by(Driver.name), page, per_page)

    def find_by_license_number(self, license_number: str) -> Optional[Driver]:
        return Driver.query.filter_by(license_number=license_number).first()

    def find_by_contact_number(self, contact_number: str) -> Optional[Driver]:
        return Driver.query.filter_by(contact_number=contact_number).first()

    # ------------------------------------------------------------------
    # Licence management
    # ------------------------------------------------------------------

    def get_drivers_with_expired_licenses(self) -> List[Driver]:
        return Driver.query.filter(
            Driver.is_active == True,
            Driver.license_expiry_date < get_ist_today()
        ).order_by(Driver.license_expiry_date).all()

    def get_drivers_with_licenses_expiring_soon(self, days: Optional[int] = None) -> List[Driver]:
        """
        Active drivers whose licence expires within ``days`` from today.

        Args:
            days: Look-ahead window; defaults to STMS_DOCUMENT_EXPIRY_WARNING_DAYS

        Returns:
            Drivers ordered by expiry date
        """
        if days is None:
            days = current_app.config.get('STMS_DOCUMENT_EXPIRY_WARNING_DAYS', 30)
        today = get_ist_today()
        return Driver.query.filter(
            Driver.is_active == True,
            Driver.license_expiry_date >= today,
            Driver.license_expiry_date <= today + timedelta(days=days)
        ).order_by(Driver.license_expiry_date).all()

    @TransactionHelper.with_transaction
    def update_license_info(self, driver_id: int, license_number: str, expiry_date: Any) -> Driver:
        driver = self._get_driver_or_raise(driver_id)

        number = to_text(license_number)
        if not number:
            raise BusinessValidationError("License number is required")
        if not self.is_license_number_unique(number, driver_id):
            raise DuplicateResourceError("Driver", "license number", number)

        expiry = to_date(expiry_date, 'license_expiry_date')
        if expiry is None:
            raise BusinessValidationError("License expiry date is required")
        if expiry < get_ist_today():
            raise BusinessValidationError("License expiry date cannot be in the past")

        old_number = driver.license_number
        driver.license_number = number
        driver.license_expiry_date = expiry
        append_remark(driver, f"License updated from {old_number} to {number} (expires: {expiry}) on {get_ist_today()}")

        self.audit_service.log_action(
            action='update_license_info',
            entity_type='driver',
            entity_id=driver.id,
            details={'license_number': number, 'license_expiry_date': expiry}
        )
        return driver

    # ------------------------------------------------------------------
    # Salary and advances
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def update_salary(self, driver_id: int, new_salary: Any) -> Driver:
        salary = to_decimal(new_salary, 'salary')
        if salary is None or salary <= 0:
            raise BusinessValidationError("Salary must be greater than zero")

        driver = self._get_driver_or_raise(driver_id)
        old_salary = driver.salary
        driver.salary = salary
        append_remark(driver, f"Salary updated from {old_salary} to {salary} on {get_ist_today()}")

        self.audit_service.log_action(
            action='update_salary',
            entity_type='driver',
            entity_id=driver.id,
            details={'old_salary': old_salary, 'new_salary': salary}
        )
        return driver

    @TransactionHelper.with_transaction
    def add_advance_payment(self, driver_id: int, amount: Any, remarks: Optional[str] = None) -> Driver:
        """
        Record an advance paid out to a driver.

        Args:
            driver_id: ID of driver
            amount: Advance amount, must be positive
            remarks: Note stored in the driver's remarks

        Returns:
            The updated Driver
        """
        value = to_decimal(amount, 'amount')
        if value is None or value <= 0:
            raise BusinessValidationError("Advance amount must be greater than zero")

        driver = self._get_driver_or_raise(driver_id)
        driver.advance_paid = (driver.advance_paid or ZERO) + value
        append_remark(driver, f"{get_ist_today()}: Advance added - {remarks or ''}")

        self.audit_service.log_action(
            action='add_advance_payment',
            entity_type='driver',
            entity_id=driver.id,
            details={'amount': value, 'advance_paid': driver.advance_paid}
        )
        logger.info(f"Advance of {value} added for driver {driver_id}")
        return driver

    @TransactionHelper.with_transaction
    def deduct_advance(self, driver_id: int, amount: Any, remarks: Optional[str] = None) -> Driver:
        value = to_decimal(amount, 'amount')
        if value is None or value <= 0:
            raise BusinessValidationError("Deduction amount must be greater than zero")

        driver = self._get_driver_or_raise(driver_id)
        current = driver.advance_paid or ZERO
        if value > current:
            raise BusinessValidationError("Deduction amount cannot exceed current advance")

        driver.advance_paid = current - value
        append_remark(driver, f"{get_ist_today()}: Advance deducted - {remarks or ''}")

        self.audit_service.log_action(
            action='deduct_advance',
            entity_type='driver',
            entity_id=driver.id,
            details={'amount': value, 'advance_paid': driver.advance_paid}
        )
        return driver

    def get_drivers_with_outstanding_advances(self) -> List[Driver]:
        return Driver.query.filter(
            Driver.is_active == True,
            Driver.advance_paid > 0
        ).order_by(Driver.advance_paid.desc()).all()

    def calculate_total_salary_expense(self) -> Decimal:
        total = db.session.query(func.coalesce(func.sum(Driver.salary), 0)) \
                          .filter(Driver.is_active == True).scalar()
        return as_decimal(total)

    def calculate_total_outstanding_advances(self) -> Decimal:
        total = db.session.query(func.coalesce(func.sum(Driver.advance_paid), 0)) \
                          .filter(Driver.is_active == True).scalar()
        return as_decimal(total)

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def get_available_drivers(self) -> List[Driver]:
        busy = db.session.query(Trip.driver_id).filter(Trip.status == TripStatus.RUNNING)
        return Driver.query.filter(
            Driver.is_active == True,
            ~Driver.id.in_(busy)
        ).order_by(Driver.name).all()

    def get_drivers_with_active_trips(self) -> List[Driver]:
        busy = db.session.query(Trip.driver_id).filter(Trip.status == TripStatus.RUNNING)
        return Driver.query.filter(Driver.id.in_(busy)).order_by(Driver.name).all()

    def is_driver_available(self, driver_id: int) -> bool:
        driver = self._get_driver_or_raise(driver_id)
        return bool(driver.is_active) and not self._has_running_trip(driver_id)

    def _has_running_trip(self, driver_id: int) -> bool:
        return Trip.query.filter(
            Trip.driver_id == driver_id,
            Trip.status == TripStatus.RUNNING
        ).first() is not None

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def _trip_totals_query(self, start_date=None, end_date=None):
        join_condition = and_(Trip.driver_id == Driver.id,
                              *date_range_conditions(Trip.planned_start_date, start_date, end_date))

        completed = Trip.status == TripStatus.COMPLETED
        return db.session.query(
            Driver.id,
            Driver.name,
            func.count(Trip.id).label('total_trips'),
            func.coalesce(func.sum(case((completed, 1), else_=0)), 0).label('completed_trips'),
            func.coalesce(func.sum(case((completed, Trip.distance), else_=0)), 0).label('total_distance'),
            func.coalesce(func.sum(case((completed, Trip.trip_charges), else_=0)), 0).label('total_revenue')
        ).outerjoin(Trip, join_condition).group_by(Driver.id, Driver.name)

    @staticmethod
    def _trip_totals_row(row) -> Dict[str, Any]:
        return {
            'driver_id': row.id,
            'driver_name': row.name,
            'total_trips': row.total_trips,
            'completed_trips': int(row.completed_trips),
            'total_distance': as_decimal(row.total_distance),
            'total_revenue': as_decimal(row.total_revenue)
        }

    def get_driver_performance_summary(self) -> List[Dict[str, Any]]:
        """Trip counts, distance and revenue per active driver."""
        rows = self._trip_totals_query().filter(Driver.is_active == True) \
                                        .order_by(Driver.name).all()
        return [self._trip_totals_row(row) for row in rows]

    def get_top_performing_drivers(self, page: int = 1, per_page: Optional[int] = None):
        completed_count = func.count(Trip.id)
        query = Driver.query.outerjoin(
            Trip, and_(Trip.driver_id == Driver.id, Trip.status == TripStatus.COMPLETED)
        ).filter(Driver.is_active == True) \
         .group_by(Driver.id) \
         .order_by(completed_count.desc(), Driver.name)
        return paginate(query, page, per_page)

    def get_driver_trip_counts(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        rows = self._trip_totals_query(start_date, end_date) \
                   .order_by(func.count(Trip.id).desc(), Driver.name).all()
        return [self._trip_totals_row(row) for row in rows]

    def get_monthly_driver_summary(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        query = Trip.query.filter(*date_range_conditions(Trip.planned_start_date, start_date, end_date))

        months = defaultdict(lambda: {'drivers': set(), 'trip_count': 0, 'total_distance': ZERO})
        for trip in query.all():
            bucket = months[month_key(trip.planned_start_date)]
            bucket['drivers'].add(trip.driver_id)
            bucket['trip_count'] += 1
            bucket['total_distance'] += trip.distance or ZERO

        return [
            {
                'month': month,
                'active_drivers': len(values['drivers']),
                'trip_count': values['trip_count'],
                'total_distance': values['total_distance']
            }
            for month, values in sorted(months.items())
        ]

    def get_driver_statistics(self) -> Dict[str, Any]:
        total = Driver.query.count()
        active = Driver.query.filter(Driver.is_active == True).count()
        return {
            'total_drivers': total,
            'active_drivers': active,
            'inactive_drivers': total - active,
            'available_drivers': len(self.get_available_drivers()),
            'drivers_on_trip': len(self.get_drivers_with_active_trips()),
            'expired_licenses': len(self.get_drivers_with_expired_licenses()),
            'licenses_expiring_soon': len(self.get_drivers_with_licenses_expiring_soon()),
            'drivers_with_advances': len(self.get_drivers_with_outstanding_advances()),
            'total_salary_expense': self.calculate_total_salary_expense(),
            'total_outstanding_advances': self.calculate_total_outstanding_advances()
        }

    def generate_driver_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        period = {row['driver_id']: row for row in self.get_driver_trip_counts(start_date, end_date)}
        report = []
        for driver in self.get_all_active_drivers():
            entry = self.convert_to_dict(driver)
            totals = period.get(driver.id)
            entry['period_trips'] = totals['total_trips'] if totals else 0
            entry['period_completed_trips'] = totals['completed_trips'] if totals else 0
            entry['period_distance'] = totals['total_distance'] if totals else ZERO
            report.append(entry)
        return report

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_driver_for_creation(self, data: Dict[str, Any]) -> None:
        for field, label in (('name', 'Driver name'), ('license_number', 'License number'),
                             ('contact_number', 'Contact number'),
                             ('license_expiry_date', 'License expiry date'), ('salary', 'Salary')):
            if not to_text(data.get(field)):
                raise BusinessValidationError(f"{label} is required")
        self._validate_driver_fields(data, exclude_id=None)

    def validate_driver_for_update(self, driver_id: int, data: Dict[str, Any]) -> None:
        for field, label in (('name', 'Driver name'), ('license_number', 'License number'),
                             ('contact_number', 'Contact number')):
            if field in data and not to_text(data.get(field)):
                raise BusinessValidationError(f"{label} is required")
        reject_blank_required(Driver, data, _DRIVER_FIELDS)
        self._validate_driver_fields(data, exclude_id=driver_id)

    def _validate_driver_fields(self, data: Dict[str, Any], exclude_id: Optional[int]) -> None:
        license_number = to_text(data.get('license_number'))
        if license_number and not self.is_license_number_unique(license_number, exclude_id):
            raise DuplicateResourceError("Driver", "license number", license_number)

        contact_number = to_text(data.get('contact_number'))
        if contact_number and not self.is_contact_number_unique(contact_number, exclude_id):
            raise DuplicateResourceError("Driver", "contact number", contact_number)

        expiry = to_date(data.get('license_expiry_date'), 'license_expiry_date')
        if expiry is not None and expiry < get_ist_today():
            raise BusinessValidationError("License expiry date cannot be in the past")

        salary = to_decimal(data.get('salary'), 'salary')
        if salary is not None and salary <= 0:
            raise BusinessValidationError("Salary must be greater than zero")

        advance = to_decimal(data.get('advance_paid'), 'advance_paid')
        if advance is not None and advance < 0:
            raise BusinessValidationError("Advance paid cannot be negative")

    def is_license_number_unique(self, license_number: Optional[str], exclude_id: Optional[int] = None) -> bool:
        return is_value_unique(Driver, Driver.license_number, license_number, exclude_id)

    def is_contact_number_unique(self, contact_number: Optional[str], exclude_id: Optional[int] = None) -> bool:
        return is_value_unique(Driver, Driver.contact_number, contact_number, exclude_id)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def convert_to_dict(self, driver: Optional[Driver]) -> Optional[Dict[str, Any]]:
        if driver is None:
            return None

        completed = Trip.status == TripStatus.COMPLETED
        totals = db.session.query(
            func.count(Trip.id),
            func.coalesce(func.sum(case((completed, 1), else_=0)), 0),
            func.coalesce(func.sum(case((completed, Trip.distance), else_=0)), 0)
        ).filter(Trip.driver_id == driver.id).one()

        return {
            'id': driver.id,
            'name': driver.name,
            'license_number': driver.license_number,
            'license_expiry_date': driver.license_expiry_date,
            'contact_number': driver.contact_number,
            'alternate_contact_number': driver.alternate_contact_number,
            'address': driver.address,
            'date_of_birth': driver.date_of_birth,
            'salary': driver.salary,
            'advance_paid': driver.advance_paid,
            'joining_date': driver.joining_date,
            'emergency_contact_name': driver.emergency_contact_name,
            'emergency_contact_number': driver.emergency_contact_number,
            'blood_group': driver.blood_group,
            'remarks': driver.remarks,
            'is_active': driver.is_active,
            'is_license_expired': driver.is_license_expired,
            'total_trips': totals[0],
            'completed_trips': int(totals[1]),
            'total_distance_covered': as_decimal(totals[2])
        }

    def convert_to_entity(self, data: Dict[str, Any]) -> Driver:
        driver = Driver()
        apply_fields(driver, data, _DRIVER_FIELDS)
        if driver.advance_paid is None:
            driver.advance_paid = ZERO
        if driver.joining_date is None:
            driver.joining_date = get_ist_today()
        driver.is_active = to_bool(data.get('is_active'), 'is_active', True)
        return driver

    def get_driver_count(self, is_active: Optional[bool] = None) -> int:
        query = Driver.query
        if is_active is not None:
            query = query.filter(Driver.is_active == is_active)
        return query.count()

    def _get_driver_or_raise(self, driver_id: int) -> Driver:
        driver = db.session.get(Driver, driver_id)
        if not driver:
            raise ResourceNotFoundError("Driver", driver_id)
        return driver

"""
Maintenance Service

Handles truck maintenance: scheduling, the SCHEDULED → IN_PROGRESS →
COMPLETED lifecycle, overdue detection, recurring services, cost tracking
and maintenance reports.
"""

from typing import Optional, Dict, Any, List
import logging
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import func, or_, and_
from models import db, Maintenance, MaintenanceStatus, MaintenancePriority, Truck, ZERO
from exceptions import BusinessValidationError, DuplicateResourceError, ResourceNotFoundError
from utils.converters import to_decimal, to_int, to_date, to_enum, to_text, to_bool
from utils.pagination import paginate
from timezone_utils import get_ist_today
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from .truck_service import apply_service_info
from .common import (generate_document_number, append_remark, apply_fields, reject_blank_required, is_value_unique,
                     month_key, date_range_conditions, as_decimal)

logger = logging.getLogger(__name__)

MAINTENANCE_NUMBER_PREFIX = 'MT'
DEFAULT_ALERT_DAYS = 7
STARTABLE_STATUSES = (MaintenanceStatus.SCHEDULED, MaintenanceStatus.OVERDUE)

COST_FIELDS = ('labor_cost', 'parts_cost', 'other_charges', 'gst_amount')

_MAINTENANCE_FIELDS = {
    'maintenance_number': to_text,
    'truck_id': lambda v: to_int(v, 'truck_id'),
    'maintenance_type': lambda v: to_text(v).upper() if to_text(v) else None,
    'service_category': lambda v: to_text(v).upper() if to_text(v) else None,
    'description': to_text,
    'priority': lambda v: to_enum(MaintenancePriority, v, 'priority', MaintenancePriority.MEDIUM),
    'scheduled_date': lambda v: to_date(v, 'scheduled_date'),
    'current_odometer': lambda v: to_decimal(v, 'current_odometer'),
    'next_service_odometer': lambda v: to_decimal(v, 'next_service_odometer'),
    'service_provider': to_text,
    'service_location': to_text,
    'labor_cost': lambda v: to_decimal(v, 'labor_cost', ZERO),
    'parts_cost': lambda v: to_decimal(v, 'parts_cost', ZERO),
    'other_charges': lambda v: to_decimal(v, 'other_charges', ZERO),
    'gst_amount': lambda v: to_decimal(v, 'gst_amount', ZERO),
    'work_performed': to_text,
    'parts_replaced': to_text,
    'recommendations': to_text,
    'remarks': to_text,
    'invoice_number': to_text,
    'invoice_date': lambda v: to_date(v, 'invoice_date'),
    'warranty_period': to_text,
    'warranty_expiry_date': lambda v: to_date(v, 'warranty_expiry_date'),
    'is_recurring': lambda v: to_bool(v, 'is_recurring', False),
    'service_interval_days': lambda v: to_int(v, 'service_interval_days'),
    'service_interval_km': lambda v: to_decimal(v, 'service_interval_km'),
    'next_service_date': lambda v: to_date(v, 'next_service_date'),
}

# Copied onto the next occurrence of a recurring maintenance
_RECURRING_TEMPLATE_FIELDS = (
    'truck_id', 'maintenance_type', 'service_category', 'description', 'priority',
    'service_provider', 'service_location', 'is_recurring', 'service_interval_days',
    'service_interval_km', 'next_service_odometer',
)


class MaintenanceService:
    """Service class for truck maintenance operations"""

    def __init__(self):
        self.audit_service = AuditService()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def create_maintenance(self, data: Dict[str, Any]) -> Maintenance:
        """
        Schedule a new maintenance job for a truck.

        Args:
            data: Maintenance DTO dictionary; type, truck and scheduled date are required

        Returns:
            The persisted Maintenance, status SCHEDULED
        """
        maintenance = self.convert_to_entity(data)
        self.validate_maintenance_for_creation(self._snapshot(maintenance))

        if not maintenance.maintenance_number:
            maintenance.maintenance_number = self.generate_maintenance_number()
        maintenance.recalculate_total_cost()

        db.session.add(maintenance)
        db.session.flush()

        self.audit_service.log_action(
            action='create_maintenance',
            entity_type='maintenance',
            entity_id=maintenance.id,
            details={'maintenance_number': maintenance.maintenance_number, 'truck_id': maintenance.truck_id,
                     'scheduled_date': maintenance.scheduled_date}
        )

        logger.info(f"Maintenance {maintenance.maintenance_number} (ID: {maintenance.id}) scheduled "
                    f"for truck {maintenance.truck_id}")
        return maintenance

    def schedule_maintenance(self, truck_id: int, maintenance_type: str, scheduled_date: Any,
                             priority: Any = None, description: Optional[str] = None,
                             service_provider: Optional[str] = None) -> Maintenance:
        data = {
            'truck_id': truck_id,
            'maintenance_type': maintenance_type,
            'scheduled_date': scheduled_date,
            'priority': priority,
            'description': description,
            'service_provider': service_provider,
        }
        return self.create_maintenance(data)

    @TransactionHelper.with_transaction
    def update_maintenance(self, maintenance_id: int, data: Dict[str, Any]) -> Maintenance:
        maintenance = self._get_maintenance_or_raise(maintenance_id)
        if maintenance.status == MaintenanceStatus.COMPLETED:
            raise BusinessValidationError("Cannot update completed maintenance")

        self.validate_maintenance_for_update(maintenance_id, data)
        apply_fields(maintenance, data, _MAINTENANCE_FIELDS)
        maintenance.recalculate_total_cost()

        self.audit_service.log_action(
            action='update_maintenance',
            entity_type='maintenance',
            entity_id=maintenance.id,
            details={key: data[key] for key in data if key in _MAINTENANCE_FIELDS}
        )
        logger.info(f"Maintenance {maintenance.maintenance_number} (ID: {maintenance_id}) updated")
        return maintenance

    def get_maintenance_by_id(self, maintenance_id: int) -> Optional[Maintenance]:
        return db.session.get(Maintenance, maintenance_id)

    def get_all_maintenances(self, page: int = 1, per_page: Optional[int] = None):
        query = Maintenance.query.order_by(Maintenance.scheduled_date.desc(), Maintenance.id.desc())
        return paginate(query, page, per_page)

    @TransactionHelper.with_transaction
    def delete_maintenance(self, maintenance_id: int) -> None:
        maintenance = self._get_maintenance_or_raise(maintenance_id)
        if not self._can_delete(maintenance):
            raise BusinessValidationError("Cannot delete maintenance in progress")

        maintenance_number = maintenance.maintenance_number
        db.session.delete(maintenance)

        self.audit_service.log_action(
            action='delete_maintenance',
            entity_type='maintenance',
            entity_id=maintenance_id,
            details={'maintenance_number': maintenance_number}
        )
        logger.info(f"Maintenance {maintenance_number} (ID: {maintenance_id}) deleted")

    def can_delete_maintenance(self, maintenance_id: int) -> bool:
        maintenance = db.session.get(Maintenance, maintenance_id)
        return maintenance is not None and self._can_delete(maintenance)

    def can_complete_maintenance(self, maintenance_id: int) -> bool:
        maintenance = db.session.get(Maintenance, maintenance_id)
        return maintenance is not None and maintenance.status == MaintenanceStatus.IN_PROGRESS

    @staticmethod
    def _can_delete(maintenance: Maintenance) -> bool:
        return maintenance.status != MaintenanceStatus.IN_PROGRESS

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_maintenances(self, maintenance_number: Optional[str] = None, truck_id: Optional[int] = None,
                            maintenance_type: Optional[str] = None, service_category: Optional[str] = None,
                            status: Any = None, priority: Any = None, service_provider: Optional[str] = None,
                            start_date=None, end_date=None, page: int = 1, per_page: Optional[int] = None):
        query = Maintenance.query

        if maintenance_number:
            query = query.filter(Maintenance.maintenance_number.ilike(f"%{maintenance_number}%"))
        if truck_id:
            query = query.filter(Maintenance.truck_id == truck_id)
        if maintenance_type:
            query = query.filter(Maintenance.maintenance_type == maintenance_type.strip().upper())
        if service_category:
            query = query.filter(Maintenance.service_category == service_category.strip().upper())
        if status:
            query = query.filter(Maintenance.status == to_enum(MaintenanceStatus, status, 'status'))
        if priority:
            query = query.filter(Maintenance.priority == to_enum(MaintenancePriority, priority, 'priority'))
        if service_provider:
            query = query.filter(Maintenance.service_provider.ilike(f"%{service_provider}%"))
        query = query.filter(*date_range_conditions(Maintenance.scheduled_date, start_date, end_date))

        return paginate(query.order_by(Maintenance.scheduled_date.desc(), Maintenance.id.desc()), page, per_page)

    def find_by_maintenance_number(self, maintenance_number: str) -> Optional[Maintenance]:
        return Maintenance.query.filter_by(maintenance_number=maintenance_number).first()

    def _paged(self, condition, page, per_page):
        query = Maintenance.query.filter(condition) \
                                 .order_by(Maintenance.scheduled_date.desc(), Maintenance.id.desc())
        return paginate(query, page, per_page)

    def get_maintenances_by_truck(self, truck_id: int, page: int = 1, per_page: Optional[int] = None):
        return self._paged(Maintenance.truck_id == truck_id, page, per_page)

    def get_maintenances_by_status(self, status: Any, page: int = 1, per_page: Optional[int] = None):
        return self._paged(Maintenance.status == to_enum(MaintenanceStatus, status, 'status'), page, per_page)

    def get_maintenances_by_type(self, maintenance_type: str, page: int = 1, per_page: Optional[int] = None):
        return self._paged(Maintenance.maintenance_type == (maintenance_type or '').strip().upper(),
                           page, per_page)

    def get_maintenances_by_category(self, service_category: str, page: int = 1, per_page: Optional[int] = None):
        return self._paged(Maintenance.service_category == (service_category or '').strip().upper(),
                           page, per_page)

    def get_maintenances_by_priority(self, priority: Any, page: int = 1, per_page: Optional[int] = None):
        return self._paged(Maintenance.priority == to_enum(MaintenancePriority, priority, 'priority'),
                           page, per_page)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def start_maintenance(self, maintenance_id: int, remarks: Optional[str] = None) -> Maintenance:
        maintenance = self._get_maintenance_or_raise(maintenance_id)
        if maintenance.status not in STARTABLE_STATUSES:
            raise BusinessValidationError("Only scheduled or overdue maintenance can be started")

        maintenance.status = MaintenanceStatus.IN_PROGRESS
        message = f"Maintenance started on {get_ist_today()}"
        if remarks:
            message += f" - {remarks}"
        append_remark(maintenance, message)

        self.audit_service.log_action(
            action='start_maintenance',
            entity_type='maintenance',
            entity_id=maintenance.id,
            details={'truck_id': maintenance.truck_id}
        )
        logger.info(f"Maintenance {maintenance.maintenance_number} started")
        return maintenance

    @TransactionHelper.with_transaction
    def complete_maintenance(self, maintenance_id: int, completed_date: Any = None,
                             costs: Optional[Dict[str, Any]] = None, work_performed: Optional[str] = None,
                             parts_replaced: Optional[str] = None, remarks: Optional[str] = None,
                             current_odometer: Any = None) -> Maintenance:
        """
        Close an in-progress maintenance job.

        Records final costs, updates the truck's service information and, for
        recurring jobs, the date and odometer of the next service.

        Args:
            maintenance_id: ID of maintenance
            completed_date: Defaults to today
            costs: Optional labor_cost / parts_cost / other_charges / gst_amount overrides
            work_performed: Work description
            parts_replaced: Parts list
            remarks: Optional note
            current_odometer: Odometer reading at the service

        Returns:
            The completed Maintenance
        """
        maintenance = self._get_maintenance_or_raise(maintenance_id)
        if maintenance.status != MaintenanceStatus.IN_PROGRESS:
            raise BusinessValidationError("Only in-progress maintenance can be completed")

        self._apply_costs(maintenance, costs or {})
        finished_on = to_date(completed_date, 'completed_date', get_ist_today())
        odometer = to_decimal(current_odometer, 'current_odometer')

        maintenance.status = MaintenanceStatus.COMPLETED
        maintenance.completed_date = finished_on
        if odometer is not None:
            maintenance.current_odometer = odometer
        if work_performed:
            maintenance.work_performed = to_text(work_performed)
        if parts_replaced:
            maintenance.parts_replaced = to_text(parts_replaced)
        maintenance.recalculate_total_cost()

        truck = maintenance.truck
        reading = maintenance.current_odometer
        if reading is None:
            reading = truck.current_odometer_reading
        elif reading > (truck.current_odometer_reading or ZERO):
            truck.current_odometer_reading = reading

        if maintenance.is_recurring:
            next_date = self.calculate_next_service_date(finished_on, maintenance.service_interval_days)
            if next_date is not None:
                maintenance.next_service_date = next_date
            next_odometer = self.calculate_next_service_odometer(reading, maintenance.service_interval_km)
            if next_odometer is not None:
                maintenance.next_service_odometer = next_odometer

        next_due = maintenance.next_service_odometer
        if next_due is None:
            next_due = truck.next_service_due
        apply_service_info(truck, finished_on, next_due, f"Maintenance {maintenance.maintenance_number}")

        message = f"Maintenance completed on {finished_on}. Total cost: {maintenance.total_cost}"
        if remarks:
            message += f" - {remarks}"
        append_remark(maintenance, message)

        self.audit_service.log_action(
            action='complete_maintenance',
            entity_type='maintenance',
            entity_id=maintenance.id,
            details={'completed_date': finished_on, 'total_cost': maintenance.total_cost,
                     'next_service_date': maintenance.next_service_date,
                     'next_service_odometer': maintenance.next_service_odometer}
        )
        logger.info(f"Maintenance {maintenance.maintenance_number} completed for truck {truck.truck_number}")
        return maintenance

    @TransactionHelper.with_transaction
    def cancel_maintenance(self, maintenance_id: int, reason: Optional[str] = None) -> Maintenance:
        maintenance = self._get_maintenance_or_raise(maintenance_id)
        if maintenance.status == MaintenanceStatus.COMPLETED:
            raise BusinessValidationError("Cannot cancel completed maintenance")
        if maintenance.status == MaintenanceStatus.CANCELLED:
            raise BusinessValidationError("Maintenance is already cancelled")

        maintenance.status = MaintenanceStatus.CANCELLED
        append_remark(maintenance, f"Maintenance cancelled on {get_ist_today()}. "
                                   f"Reason: {reason or 'Not specified'}")

        self.audit_service.log_action(
            action='cancel_maintenance',
            entity_type='maintenance',
            entity_id=maintenance.id,
            details={'reason': reason}
        )
        logger.info(f"Maintenance {maintenance.maintenance_number} cancelled")
        return maintenance

    @TransactionHelper.with_transaction
    def mark_as_overdue(self) -> int:
        """Flip SCHEDULED jobs whose date has passed to OVERDUE; returns how many changed."""
        today = get_ist_today()
        overdue = Maintenance.query.filter(
            Maintenance.status == MaintenanceStatus.SCHEDULED,
            Maintenance.scheduled_date < today
        ).all()

        for maintenance in overdue:
            maintenance.status = MaintenanceStatus.OVERDUE
            append_remark(maintenance, f"Marked overdue on {today}")
            self.audit_service.log_action(
                action='mark_maintenance_overdue',
                entity_type='maintenance',
                entity_id=maintenance.id,
                details={'scheduled_date': maintenance.scheduled_date}
            )

        if overdue:
            logger.warning(f"{len(overdue)} maintenance jobs marked overdue")
        return len(overdue)

    @TransactionHelper.with_transaction
    def reschedule_maintenance_by_date(self, maintenance_id: int, new_date: Any,
                                       reason: Optional[str] = None) -> Maintenance:
        scheduled = to_date(new_date, 'scheduled_date')
        if scheduled is None:
            raise BusinessValidationError("New scheduled date is required")

        maintenance = self._get_maintenance_or_raise(maintenance_id)
        if maintenance.status == MaintenanceStatus.COMPLETED:
            raise BusinessValidationError("Cannot reschedule completed maintenance")

        old_date = maintenance.scheduled_date
        maintenance.scheduled_date = scheduled
        if maintenance.status == MaintenanceStatus.OVERDUE and scheduled >= get_ist_today():
            maintenance.status = MaintenanceStatus.SCHEDULED

        message = f"Rescheduled from {old_date} to {scheduled} on {get_ist_today()}"
        if reason:
            message += f". Reason: {reason}"
        append_remark(maintenance, message)

        self.audit_service.log_action(
            action='reschedule_maintenance',
            entity_type='maintenance',
            entity_id=maintenance.id,
            details={'old_date': old_date, 'new_date': scheduled, 'reason': reason}
        )
        return maintenance

    @TransactionHelper.with_transaction
    def reschedule_maintenance_by_odometer(self, maintenance_id: int, new_odometer: Any,
                                           reason: Optional[str] = None) -> Maintenance:
        odometer = to_decimal(new_odometer, 'next_service_odometer')
        if odometer is None or odometer <= 0:
            raise BusinessValidationError("Next service odometer must be greater than zero")

        maintenance = self._get_maintenance_or_raise(maintenance_id)
        if maintenance.status == MaintenanceStatus.COMPLETED:
            raise BusinessValidationError("Cannot reschedule completed maintenance")

        old_odometer = maintenance.next_service_odometer
        maintenance.next_service_odometer = odometer

        message = f"Service odometer rescheduled from {old_odometer} to {odometer} km on {get_ist_today()}"
        if reason:
            message += f". Reason: {reason}"
        append_remark(maintenance, message)

        self.audit_service.log_action(
            action='reschedule_maintenance_odometer',
            entity_type='maintenance',
            entity_id=maintenance.id,
            details={'old_odometer': old_odometer, 'new_odometer': odometer, 'reason': reason}
        )
        return maintenance

    # ------------------------------------------------------------------
    # Scheduling and alerts
    # ------------------------------------------------------------------

    def get_scheduled_maintenances(self, start_date=None, end_date=None, page: int = 1,
                                   per_page: Optional[int] = None):
        query = Maintenance.query.filter(
            Maintenance.status == MaintenanceStatus.SCHEDULED,
            *date_range_conditions(Maintenance.scheduled_date, start_date, end_date)
        ).order_by(Maintenance.scheduled_date)
        return paginate(query, page, per_page)

    def _overdue_condition(self):
        return or_(
            Maintenance.status == MaintenanceStatus.OVERDUE,
            and_(Maintenance.status == MaintenanceStatus.SCHEDULED,
                 Maintenance.scheduled_date < get_ist_today())
        )

    def get_overdue_maintenances(self, page: int = 1, per_page: Optional[int] = None):
        query = Maintenance.query.filter(self._overdue_condition()).order_by(Maintenance.scheduled_date)
        return paginate(query, page, per_page)

    def _upcoming_query(self, days: int):
        today = get_ist_today()
        return Maintenance.query.filter(
            Maintenance.status == MaintenanceStatus.SCHEDULED,
            Maintenance.scheduled_date >= today,
            Maintenance.scheduled_date <= today + timedelta(days=days)
        ).order_by(Maintenance.scheduled_date)

    def get_upcoming_maintenances(self, days: int = DEFAULT_ALERT_DAYS, page: int = 1,
                                  per_page: Optional[int] = None):
        return paginate(self._upcoming_query(days), page, per_page)

    def generate_maintenance_alerts(self, days: int = DEFAULT_ALERT_DAYS) -> List[Dict[str, Any]]:
        """
        Collect maintenance alerts for the dashboard.

        Overdue jobs come first, then jobs scheduled within ``days`` and
        finally active trucks whose odometer has reached the next service
        reading.
        """
        today = get_ist_today()
        alerts = []

        overdue = Maintenance.query.filter(self._overdue_condition()).order_by(Maintenance.scheduled_date).all()
        for maintenance in overdue:
            alerts.append({
                'alert_type': 'OVERDUE',
                'priority': maintenance.priority,
                'maintenance_id': maintenance.id,
                'maintenance_number': maintenance.maintenance_number,
                'truck_id': maintenance.truck_id,
                'truck_number': maintenance.truck.truck_number,
                'due_date': maintenance.scheduled_date,
                'message': f"{maintenance.maintenance_type} maintenance for {maintenance.truck.truck_number} "
                           f"is overdue by {(today - maintenance.scheduled_date).days} days"
            })

        for maintenance in self._upcoming_query(days).all():
            alerts.append({
                'alert_type': 'UPCOMING',
                'priority': maintenance.priority,
                'maintenance_id': maintenance.id,
                'maintenance_number': maintenance.maintenance_number,
                'truck_id': maintenance.truck_id,
                'truck_number': maintenance.truck.truck_number,
                'due_date': maintenance.scheduled_date,
                'message': f"{maintenance.maintenance_type} maintenance for {maintenance.truck.truck_number} "
                           f"is due on {maintenance.scheduled_date}"
            })

        due_trucks = Truck.query.filter(
            Truck.is_active == True,
            Truck.next_service_due.isnot(None),
            Truck.current_odometer_reading >= Truck.next_service_due
        ).order_by(Truck.truck_number).all()
        for truck in due_trucks:
            alerts.append({
                'alert_type': 'SERVICE_DUE',
                'priority': MaintenancePriority.HIGH,
                'maintenance_id': None,
                'maintenance_number': None,
                'truck_id': truck.id,
                'truck_number': truck.truck_number,
                'due_date': None,
                'message': f"Truck {truck.truck_number} reached {truck.current_odometer_reading} km; "
                           f"service was due at {truck.next_service_due} km"
            })

        return alerts

    # ------------------------------------------------------------------
    # Recurring maintenance
    # ------------------------------------------------------------------

    def create_recurring_maintenance(self, data: Dict[str, Any], interval_days: Any = None,
                                     interval_km: Any = None) -> Maintenance:
        payload = dict(data, is_recurring=True)
        if interval_days is not None:
            payload['service_interval_days'] = interval_days
        if interval_km is not None:
            payload['service_interval_km'] = interval_km
        return self.create_maintenance(payload)

    @TransactionHelper.with_transaction
    def generate_recurring_maintenances(self, for_date: Any = None) -> List[Maintenance]:
        """
        Schedule the next occurrence of every recurring job whose next service date has arrived.

        The recurrence moves to the new occurrence, so each template is
        generated from once.
        """
        run_date = to_date(for_date, 'for_date', get_ist_today())
        due = Maintenance.query.filter(
            Maintenance.is_recurring.is_(True),
            Maintenance.next_service_date.isnot(None),
            Maintenance.next_service_date <= run_date,
            Maintenance.status != MaintenanceStatus.CANCELLED
        ).order_by(Maintenance.next_service_date, Maintenance.id).all()

        created = []
        for template in due:
            occurrence = Maintenance()
            for field in _RECURRING_TEMPLATE_FIELDS:
                setattr(occurrence, field, getattr(template, field))
            occurrence.maintenance_number = self.generate_maintenance_number()
            occurrence.scheduled_date = template.next_service_date
            occurrence.status = MaintenanceStatus.SCHEDULED
            for field in COST_FIELDS:
                setattr(occurrence, field, ZERO)
            occurrence.recalculate_total_cost()
            occurrence.remarks = f"Generated from recurring maintenance {template.maintenance_number}"
            db.session.add(occurrence)
            db.session.flush()
            created.append(occurrence)

            template.is_recurring = False
            template.next_service_date = None
            append_remark(template, f"Next occurrence scheduled as {occurrence.maintenance_number}")

            self.audit_service.log_action(
                action='generate_recurring_maintenance',
                entity_type='maintenance',
                entity_id=occurrence.id,
                details={'source_id': template.id, 'scheduled_date': occurrence.scheduled_date}
            )

        if created:
            logger.info(f"Generated {len(created)} recurring maintenance jobs for {run_date}")
        return created

    def get_recurring_maintenances(self, page: int = 1, per_page: Optional[int] = None):
        query = Maintenance.query.filter(Maintenance.is_recurring.is_(True)) \
                                 .order_by(Maintenance.next_service_date)
        return paginate(query, page, per_page)

    @TransactionHelper.with_transaction
    def update_maintenance_schedule(self, maintenance_id: int, is_recurring: Any, interval_days: Any = None,
                                    interval_km: Any = None, next_service_date: Any = None) -> Maintenance:
        maintenance = self._get_maintenance_or_raise(maintenance_id)
        recurring = to_bool(is_recurring, 'is_recurring', False)
        days = to_int(interval_days, 'service_interval_days')
        km = to_decimal(interval_km, 'service_interval_km')

        if recurring:
            days = days if days is not None else maintenance.service_interval_days
            km = km if km is not None else maintenance.service_interval_km
            self._validate_intervals(days, km)
            maintenance.service_interval_days = days
            maintenance.service_interval_km = km
            next_date = to_date(next_service_date, 'next_service_date')
            if next_date is None and days and maintenance.status == MaintenanceStatus.COMPLETED:
                next_date = self.calculate_next_service_date(maintenance.completed_date, days)
            maintenance.next_service_date = next_date
        else:
            maintenance.next_service_date = None
        maintenance.is_recurring = recurring

        self.audit_service.log_action(
            action='update_maintenance_schedule',
            entity_type='maintenance',
            entity_id=maintenance.id,
            details={'is_recurring': recurring, 'service_interval_days': maintenance.service_interval_days,
                     'service_interval_km': maintenance.service_interval_km,
                     'next_service_date': maintenance.next_service_date}
        )
        return maintenance

    def calculate_next_service_date(self, service_date: Any, interval_days: Any):
        base = to_date(service_date, 'service_date')
        days = to_int(interval_days, 'service_interval_days')
        if base is None or not days:
            return None
        return base + timedelta(days=days)

    def calculate_next_service_odometer(self, odometer: Any, interval_km: Any) -> Optional[Decimal]:
        reading = to_decimal(odometer, 'odometer')
        km = to_decimal(interval_km, 'service_interval_km')
        if reading is None or not km:
            return None
        return reading + km

    # ------------------------------------------------------------------
    # Costs
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def update_maintenance_costs(self, maintenance_id: int, costs: Dict[str, Any],
                                 remarks: Optional[str] = None) -> Maintenance:
        maintenance = self._get_maintenance_or_raise(maintenance_id)
        if maintenance.status == MaintenanceStatus.CANCELLED:
            raise BusinessValidationError("Cannot update costs of cancelled maintenance")

        old_total = maintenance.total_cost
        self._apply_costs(maintenance, costs)
        maintenance.recalculate_total_cost()

        message = f"Costs updated from {old_total} to {maintenance.total_cost} on {get_ist_today()}"
        if remarks:
            message += f" - {remarks}"
        append_remark(maintenance, message)

        self.audit_service.log_action(
            action='update_maintenance_costs',
            entity_type='maintenance',
            entity_id=maintenance.id,
            details={'old_total': old_total, 'new_total': maintenance.total_cost}
        )
        return maintenance

    def _apply_costs(self, maintenance: Maintenance, costs: Dict[str, Any]) -> None:
        for field in COST_FIELDS:
            if field not in costs:
                continue
            value = to_decimal(costs[field], field, ZERO)
            if value < 0:
                raise BusinessValidationError(f"{field.replace('_', ' ').capitalize()} cannot be negative")
            setattr(maintenance, field, value)

    def calculate_total_maintenance_cost(self, truck_id: Optional[int] = None, start_date=None,
                                         end_date=None) -> Decimal:
        """Total cost of non-cancelled maintenance scheduled in the period."""
        query = db.session.query(func.coalesce(func.sum(Maintenance.total_cost), 0)).filter(
            Maintenance.status != MaintenanceStatus.CANCELLED,
            *date_range_conditions(Maintenance.scheduled_date, start_date, end_date)
        )
        if truck_id is not None:
            query = query.filter(Maintenance.truck_id == truck_id)
        return as_decimal(query.scalar())

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def _billable(self, start_date=None, end_date=None):
        return Maintenance.query.filter(
            Maintenance.status != MaintenanceStatus.CANCELLED,
            *date_range_conditions(Maintenance.scheduled_date, start_date, end_date)
        )

    def get_maintenance_cost_summary(self, start_date=None, end_date=None) -> Dict[str, Any]:
        totals = {field: ZERO for field in COST_FIELDS}
        totals['total_cost'] = ZERO
        records = self._billable(start_date, end_date).all()
        for maintenance in records:
            for field in COST_FIELDS:
                totals[field] += as_decimal(getattr(maintenance, field))
            totals['total_cost'] += as_decimal(maintenance.total_cost)

        totals['maintenance_count'] = len(records)
        totals['average_cost'] = self._average(totals['total_cost'], len(records))
        return totals

    def _grouped_costs(self, key_columns, start_date=None, end_date=None, join=None):
        query = db.session.query(
            *key_columns,
            func.count(Maintenance.id).label('maintenance_count'),
            func.coalesce(func.sum(Maintenance.total_cost), 0).label('total_cost')
        ).select_from(Maintenance)
        if join is not None:
            query = query.join(*join)
        return query.filter(
            Maintenance.status != MaintenanceStatus.CANCELLED,
            *date_range_conditions(Maintenance.scheduled_date, start_date, end_date)
        ).group_by(*key_columns).order_by(func.sum(Maintenance.total_cost).desc())

    def get_truck_wise_maintenance_cost(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        rows = self._grouped_costs([Truck.id, Truck.truck_number], start_date, end_date,
                                   join=(Truck, Maintenance.truck_id == Truck.id)).all()
        return [
            {
                'truck_id': row.id,
                'truck_number': row.truck_number,
                'maintenance_count': row.maintenance_count,
                'total_cost': as_decimal(row.total_cost),
                'average_cost': self._average(as_decimal(row.total_cost), row.maintenance_count)
            }
            for row in rows
        ]

    def get_maintenance_by_type_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        rows = self._grouped_costs([Maintenance.maintenance_type], start_date, end_date).all()
        return [
            {
                'maintenance_type': row.maintenance_type,
                'maintenance_count': row.maintenance_count,
                'total_cost': as_decimal(row.total_cost),
                'average_cost': self._average(as_decimal(row.total_cost), row.maintenance_count)
            }
            for row in rows
        ]

    def get_maintenance_by_category_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        rows = self._grouped_costs([Maintenance.service_category], start_date, end_date).all()
        return [
            {
                'service_category': row.service_category or 'UNCATEGORIZED',
                'maintenance_count': row.maintenance_count,
                'total_cost': as_decimal(row.total_cost),
                'average_cost': self._average(as_decimal(row.total_cost), row.maintenance_count)
            }
            for row in rows
        ]

    def get_maintenance_statistics(self) -> Dict[str, Any]:
        status_counts = dict(db.session.query(Maintenance.status, func.count(Maintenance.id))
                             .group_by(Maintenance.status).all())
        priority_counts = dict(db.session.query(Maintenance.priority, func.count(Maintenance.id))
                               .group_by(Maintenance.priority).all())
        return {
            'total_maintenances': Maintenance.query.count(),
            'status_counts': {status.name: status_counts.get(status, 0) for status in MaintenanceStatus},
            'priority_counts': {priority.name: priority_counts.get(priority, 0) for priority in MaintenancePriority},
            'overdue_maintenances': Maintenance.query.filter(self._overdue_condition()).count(),
            'recurring_maintenances': Maintenance.query.filter(Maintenance.is_recurring.is_(True)).count(),
            'total_cost': self.calculate_total_maintenance_cost()
        }

    def get_monthly_maintenance_summary(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        months = defaultdict(lambda: {'maintenance_count': 0, 'completed_count': 0, 'total_cost': ZERO})
        for maintenance in self._billable(start_date, end_date).all():
            bucket = months[month_key(maintenance.scheduled_date)]
            bucket['maintenance_count'] += 1
            if maintenance.status == MaintenanceStatus.COMPLETED:
                bucket['completed_count'] += 1
            bucket['total_cost'] += as_decimal(maintenance.total_cost)

        return [dict(month=month, **values) for month, values in sorted(months.items())]

    def get_truck_maintenance_history(self, truck_id: int) -> List[Dict[str, Any]]:
        if db.session.get(Truck, truck_id) is None:
            raise ResourceNotFoundError("Truck", truck_id)
        records = Maintenance.query.filter(Maintenance.truck_id == truck_id) \
                                   .order_by(Maintenance.scheduled_date.desc(), Maintenance.id.desc()).all()
        return [self.convert_to_dict(maintenance) for maintenance in records]

    def get_service_provider_performance(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        """Job counts, cost and average turnaround days per service provider."""
        providers = defaultdict(lambda: {'maintenance_count': 0, 'completed_count': 0,
                                         'total_cost': ZERO, 'turnaround_days': []})
        for maintenance in self._billable(start_date, end_date).all():
            bucket = providers[maintenance.service_provider or 'Unassigned']
            bucket['maintenance_count'] += 1
            bucket['total_cost'] += as_decimal(maintenance.total_cost)
            if maintenance.status == MaintenanceStatus.COMPLETED and maintenance.completed_date:
                bucket['completed_count'] += 1
                bucket['turnaround_days'].append((maintenance.completed_date - maintenance.scheduled_date).days)

        report = []
        for provider, values in providers.items():
            days = values.pop('turnaround_days')
            report.append(dict(
                service_provider=provider,
                average_cost=self._average(values['total_cost'], values['maintenance_count']),
                average_turnaround_days=self._average(Decimal(sum(days)), len(days)),
                **values
            ))
        return sorted(report, key=lambda r: r['maintenance_count'], reverse=True)

    def get_maintenance_efficiency_report(self, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        """
        Per-truck completion and on-time rates.

        A job is on time when it was completed on or before its scheduled date.
        """
        trucks = {}
        for maintenance in self._billable(start_date, end_date).all():
            entry = trucks.setdefault(maintenance.truck_id, {
                'truck_id': maintenance.truck_id,
                'truck_number': maintenance.truck.truck_number,
                'scheduled_count': 0,
                'completed_count': 0,
                'on_time_count': 0,
                'overdue_count': 0,
                'total_cost': ZERO
            })
            entry['scheduled_count'] += 1
            entry['total_cost'] += as_decimal(maintenance.total_cost)
            if maintenance.status == MaintenanceStatus.COMPLETED:
                entry['completed_count'] += 1
                if maintenance.completed_date and maintenance.completed_date <= maintenance.scheduled_date:
                    entry['on_time_count'] += 1
            elif maintenance.is_overdue:
                entry['overdue_count'] += 1

        report = []
        for entry in trucks.values():
            entry['completion_rate'] = self._percentage(entry['completed_count'], entry['scheduled_count'])
            entry['on_time_rate'] = self._percentage(entry['on_time_count'], entry['completed_count'])
            report.append(entry)
        return sorted(report, key=lambda r: r['truck_number'])

    def generate_maintenance_report(self, maintenance_type: Optional[str] = None, status: Any = None,
                                    start_date=None, end_date=None) -> List[Dict[str, Any]]:
        query = Maintenance.query.filter(*date_range_conditions(Maintenance.scheduled_date, start_date, end_date))
        if maintenance_type:
            query = query.filter(Maintenance.maintenance_type == maintenance_type.strip().upper())
        if status:
            query = query.filter(Maintenance.status == to_enum(MaintenanceStatus, status, 'status'))
        return [self.convert_to_dict(m) for m in query.order_by(Maintenance.scheduled_date).all()]

    @staticmethod
    def _average(total: Decimal, count: int) -> Decimal:
        if not count:
            return ZERO
        return (total / count).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

    @staticmethod
    def _percentage(part: int, whole: int) -> Decimal:
        if not whole:
            return ZERO
        return (Decimal(part * 100) / whole).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_maintenance_for_creation(self, data: Dict[str, Any]) -> None:
        self._validate_maintenance(data, exclude_id=None)

    def validate_maintenance_for_update(self, maintenance_id: int, data: Dict[str, Any]) -> None:
        maintenance = self._get_maintenance_or_raise(maintenance_id)
        reject_blank_required(Maintenance, data, _MAINTENANCE_FIELDS)
        merged = self._snapshot(maintenance)
        for field, converter in _MAINTENANCE_FIELDS.items():
            if field in data:
                merged[field] = converter(data[field])
        self._validate_maintenance(merged, exclude_id=maintenance_id)

    def _validate_maintenance(self, data: Dict[str, Any], exclude_id: Optional[int]) -> None:
        number = to_text(data.get('maintenance_number'))
        if number and not self.is_maintenance_number_unique(number, exclude_id):
            raise DuplicateResourceError("Maintenance", "maintenance number", number)

        if not to_text(data.get('maintenance_type')):
            raise BusinessValidationError("Maintenance type is required")

        truck_id = to_int(data.get('truck_id'), 'truck_id')
        if truck_id is None:
            raise BusinessValidationError("Truck is required")
        if db.session.get(Truck, truck_id) is None:
            raise ResourceNotFoundError("Truck", truck_id)

        if to_date(data.get('scheduled_date'), 'scheduled_date') is None:
            raise BusinessValidationError("Scheduled date is required")

        for field in COST_FIELDS:
            value = to_decimal(data.get(field), field)
            if value is not None and value < 0:
                raise BusinessValidationError(f"{field.replace('_', ' ').capitalize()} cannot be negative")

        if to_bool(data.get('is_recurring'), 'is_recurring', False):
            self._validate_intervals(to_int(data.get('service_interval_days'), 'service_interval_days'),
                                     to_decimal(data.get('service_interval_km'), 'service_interval_km'))

    @staticmethod
    def _validate_intervals(days: Optional[int], km: Optional[Decimal]) -> None:
        if not days and not km:
            raise BusinessValidationError("Recurring maintenance needs a service interval in days or km")
        if (days is not None and days < 0) or (km is not None and km < 0):
            raise BusinessValidationError("Service interval cannot be negative")

    def is_maintenance_number_unique(self, maintenance_number: Optional[str],
                                     exclude_id: Optional[int] = None) -> bool:
        return is_value_unique(Maintenance, Maintenance.maintenance_number, maintenance_number, exclude_id)

    # ------------------------------------------------------------------
    # Conversion and helpers
    # ------------------------------------------------------------------

    def convert_to_dict(self, maintenance: Optional[Maintenance]) -> Optional[Dict[str, Any]]:
        if maintenance is None:
            return None

        truck = maintenance.truck
        return {
            'id': maintenance.id,
            'maintenance_number': maintenance.maintenance_number,
            'truck_id': maintenance.truck_id,
            'maintenance_type': maintenance.maintenance_type,
            'service_category': maintenance.service_category,
            'description': maintenance.description,
            'status': maintenance.status,
            'priority': maintenance.priority,
            'scheduled_date': maintenance.scheduled_date,
            'completed_date': maintenance.completed_date,
            'current_odometer': maintenance.current_odometer,
            'next_service_odometer': maintenance.next_service_odometer,
            'service_provider': maintenance.service_provider,
            'service_location': maintenance.service_location,
            'labor_cost': maintenance.labor_cost,
            'parts_cost': maintenance.parts_cost,
            'other_charges': maintenance.other_charges,
            'gst_amount': maintenance.gst_amount,
            'total_cost': maintenance.total_cost,
            'work_performed': maintenance.work_performed,
            'parts_replaced': maintenance.parts_replaced,
            'recommendations': maintenance.recommendations,
            'remarks': maintenance.remarks,
            'invoice_number': maintenance.invoice_number,
            'invoice_date': maintenance.invoice_date,
            'warranty_period': maintenance.warranty_period,
            'warranty_expiry_date': maintenance.warranty_expiry_date,
            'is_recurring': maintenance.is_recurring,
            'service_interval_days': maintenance.service_interval_days,
            'service_interval_km': maintenance.service_interval_km,
            'next_service_date': maintenance.next_service_date,
            'truck_number': truck.truck_number if truck else None,
            'truck_model': truck.model if truck else None,
            'is_overdue': maintenance.is_overdue,
            'days_overdue': maintenance.days_overdue
        }

    def convert_to_entity(self, data: Dict[str, Any]) -> Maintenance:
        maintenance = Maintenance()
        apply_fields(maintenance, data, _MAINTENANCE_FIELDS)
        for field in COST_FIELDS:
            if getattr(maintenance, field) is None:
                setattr(maintenance, field, ZERO)
        if maintenance.priority is None:
            maintenance.priority = MaintenancePriority.MEDIUM
        if maintenance.is_recurring is None:
            maintenance.is_recurring = False
        maintenance.status = MaintenanceStatus.SCHEDULED
        return maintenance

    def generate_maintenance_number(self) -> str:
        return generate_document_number(Maintenance.maintenance_number, MAINTENANCE_NUMBER_PREFIX,
                                        get_ist_today().strftime('%Y%m'))

    def get_maintenance_count(self, status: Any = None, maintenance_type: Optional[str] = None) -> int:
        query = Maintenance.query
        if status:
            query = query.filter(Maintenance.status == to_enum(MaintenanceStatus, status, 'status'))
        if maintenance_type:
            query = query.filter(Maintenance.maintenance_type == maintenance_type.strip().upper())
        return query.count()

    @staticmethod
    def _snapshot(maintenance: Maintenance) -> Dict[str, Any]:
        return {field: getattr(maintenance, field) for field in _MAINTENANCE_FIELDS}

    def _get_maintenance_or_raise(self, maintenance_id: int) -> Maintenance:
        maintenance = db.session.get(Maintenance, maintenance_id)
        if not maintenance:
            raise ResourceNotFoundError("Maintenance", maintenance_id)
        return maintenance

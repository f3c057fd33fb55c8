"""
Maintenance API routes
Scheduling, maintenance lifecycle, alerts, recurring service and cost reports
"""

import logging
from flask import Blueprint, request

from services import MaintenanceService
from services.maintenance_service import COST_FIELDS, DEFAULT_ALERT_DAYS
from utils.api import json_body, page_args, date_args, arg_int, arg_text, success, require_found
from utils.pagination import page_to_dict

maintenance_bp = Blueprint('maintenance', __name__)

logger = logging.getLogger(__name__)

maintenance_service = MaintenanceService()


def _paged(result):
    return success(**page_to_dict(result, maintenance_service.convert_to_dict))


def _costs(data):
    """Cost components present in a request body."""
    return {field: data[field] for field in COST_FIELDS if field in data}


@maintenance_bp.route('', methods=['GET'])
def list_maintenances():
    page, per_page = page_args()
    start_date, end_date = date_args()
    return _paged(maintenance_service.search_maintenances(
        maintenance_number=arg_text('maintenance_number'),
        truck_id=arg_int('truck_id'),
        maintenance_type=arg_text('maintenance_type'),
        service_category=arg_text('service_category'),
        status=arg_text('status'),
        priority=arg_text('priority'),
        service_provider=arg_text('service_provider'),
        start_date=start_date,
        end_date=end_date,
        page=page,
        per_page=per_page
    ))


@maintenance_bp.route('/by-truck/<int:truck_id>', methods=['GET'])
def maintenances_by_truck(truck_id):
    page, per_page = page_args()
    return _paged(maintenance_service.get_maintenances_by_truck(truck_id, page, per_page))


@maintenance_bp.route('/status/<status>', methods=['GET'])
def maintenances_by_status(status):
    page, per_page = page_args()
    return _paged(maintenance_service.get_maintenances_by_status(status, page, per_page))


@maintenance_bp.route('/type/<maintenance_type>', methods=['GET'])
def maintenances_by_type(maintenance_type):
    page, per_page = page_args()
    return _paged(maintenance_service.get_maintenances_by_type(maintenance_type, page, per_page))


@maintenance_bp.route('/category/<service_category>', methods=['GET'])
def maintenances_by_category(service_category):
    page, per_page = page_args()
    return _paged(maintenance_service.get_maintenances_by_category(service_category, page, per_page))


@maintenance_bp.route('/priority/<priority>', methods=['GET'])
def maintenances_by_priority(priority):
    page, per_page = page_args()
    return _paged(maintenance_service.get_maintenances_by_priority(priority, page, per_page))


@maintenance_bp.route('/by-number/<maintenance_number>', methods=['GET'])
def maintenance_by_number(maintenance_number):
    maintenance = require_found(maintenance_service.find_by_maintenance_number(maintenance_number),
                                'Maintenance', maintenance_number)
    return success(maintenance=maintenance_service.convert_to_dict(maintenance))


@maintenance_bp.route('', methods=['POST'])
def create_maintenance():
    maintenance = maintenance_service.create_maintenance(json_body())
    return success(201, maintenance=maintenance_service.convert_to_dict(maintenance))


@maintenance_bp.route('/schedule', methods=['POST'])
def schedule_maintenance():
    """Quick scheduling with only the truck, type, date and optional priority, description and provider."""
    data = json_body()
    maintenance = maintenance_service.schedule_maintenance(
        data.get('truck_id'),
        data.get('maintenance_type'),
        data.get('scheduled_date'),
        priority=data.get('priority'),
        description=data.get('description'),
        service_provider=data.get('service_provider')
    )
    return success(201, maintenance=maintenance_service.convert_to_dict(maintenance))


@maintenance_bp.route('/<int:maintenance_id>', methods=['GET'])
def get_maintenance(maintenance_id):
    maintenance = require_found(maintenance_service.get_maintenance_by_id(maintenance_id),
                                'Maintenance', maintenance_id)
    return success(maintenance=maintenance_service.convert_to_dict(maintenance))


@maintenance_bp.route('/<int:maintenance_id>', methods=['PUT'])
def update_maintenance(maintenance_id):
    maintenance = maintenance_service.update_maintenance(maintenance_id, json_body())
    return success(maintenance=maintenance_service.convert_to_dict(maintenance))


@maintenance_bp.route('/<int:maintenance_id>', methods=['DELETE'])
def delete_maintenance(maintenance_id):
    maintenance_service.delete_maintenance(maintenance_id)
    return success(message='Maintenance deleted')


@maintenance_bp.route('/<int:maintenance_id>/permissions', methods=['GET'])
def maintenance_permissions(maintenance_id):
    return success(
        maintenance_id=maintenance_id,
        can_delete=maintenance_service.can_delete_maintenance(maintenance_id),
        can_complete=maintenance_service.can_complete_maintenance(maintenance_id)
    )


# Lifecycle

@maintenance_bp.route('/<int:maintenance_id>/start', methods=['POST'])
def start_maintenance(maintenance_id):
    maintenance = maintenance_service.start_maintenance(maintenance_id, json_body().get('remarks'))
    return success(maintenance=maintenance_service.convert_to_dict(maintenance))


@maintenance_bp.route('/<int:maintenance_id>/complete', methods=['POST'])
def complete_maintenance(maintenance_id):
    data = json_body()
    maintenance = maintenance_service.complete_maintenance(
        maintenance_id,
        completed_date=data.get('completed_date'),
        costs=_costs(data),
        work_performed=data.get('work_performed'),
        parts_replaced=data.get('parts_replaced'),
        remarks=data.get('remarks'),
        current_odometer=data.get('current_odometer')
    )
    return success(maintenance=maintenance_service.convert_to_dict(maintenance))


@maintenance_bp.route('/<int:maintenance_id>/cancel', methods=['POST'])
def cancel_maintenance(maintenance_id):
    maintenance = maintenance_service.cancel_maintenance(maintenance_id, json_body().get('reason'))
    return success(maintenance=maintenance_service.convert_to_dict(maintenance))


@maintenance_bp.route('/<int:maintenance_id>/reschedule', methods=['POST'])
def reschedule_maintenance(maintenance_id):
    """Move a job to a new date, or set the odometer reading it falls due at."""
    data = json_body()
    if data.get('next_service_odometer') is not None:
        maintenance = maintenance_service.reschedule_maintenance_by_odometer(
            maintenance_id, data['next_service_odometer'], data.get('reason'))
    else:
        maintenance = maintenance_service.reschedule_maintenance_by_date(
            maintenance_id, data.get('scheduled_date'), data.get('reason'))
    return success(maintenance=maintenance_service.convert_to_dict(maintenance))


@maintenance_bp.route('/mark-overdue', methods=['POST'])
def mark_overdue():
    return success(updated=maintenance_service.mark_as_overdue())


@maintenance_bp.route('/<int:maintenance_id>/costs', methods=['PUT'])
def update_costs(maintenance_id):
    data = json_body()
    maintenance = maintenance_service.update_maintenance_costs(maintenance_id, _costs(data), data.get('remarks'))
    return success(maintenance=maintenance_service.convert_to_dict(maintenance))


# Scheduling and alerts

@maintenance_bp.route('/scheduled', methods=['GET'])
def scheduled_maintenances():
    page, per_page = page_args()
    start_date, end_date = date_args()
    return _paged(maintenance_service.get_scheduled_maintenances(start_date, end_date, page, per_page))


@maintenance_bp.route('/overdue', methods=['GET'])
def overdue_maintenances():
    page, per_page = page_args()
    return _paged(maintenance_service.get_overdue_maintenances(page, per_page))


@maintenance_bp.route('/upcoming', methods=['GET'])
def upcoming_maintenances():
    page, per_page = page_args()
    days = arg_int('days', DEFAULT_ALERT_DAYS)
    return _paged(maintenance_service.get_upcoming_maintenances(days, page, per_page))


@maintenance_bp.route('/alerts', methods=['GET'])
def maintenance_alerts():
    return success(alerts=maintenance_service.generate_maintenance_alerts(arg_int('days', DEFAULT_ALERT_DAYS)))


# Recurring maintenance

@maintenance_bp.route('/recurring', methods=['POST'])
def create_recurring_maintenance():
    data = json_body()
    maintenance = maintenance_service.create_recurring_maintenance(
        data, data.get('service_interval_days'), data.get('service_interval_km'))
    return success(201, maintenance=maintenance_service.convert_to_dict(maintenance))


@maintenance_bp.route('/recurring', methods=['GET'])
def list_recurring_maintenances():
    page, per_page = page_args()
    return _paged(maintenance_service.get_recurring_maintenances(page, per_page))


@maintenance_bp.route('/recurring/generate', methods=['POST'])
def generate_recurring_maintenances():
    created = maintenance_service.generate_recurring_maintenances(json_body().get('date'))
    return success(201, items=[maintenance_service.convert_to_dict(item) for item in created],
                   generated=len(created))


@maintenance_bp.route('/<int:maintenance_id>/recurring', methods=['PUT'])
def update_maintenance_schedule(maintenance_id):
    data = json_body()
    maintenance = maintenance_service.update_maintenance_schedule(
        maintenance_id,
        data.get('is_recurring'),
        interval_days=data.get('service_interval_days'),
        interval_km=data.get('service_interval_km'),
        next_service_date=data.get('next_service_date')
    )
    return success(maintenance=maintenance_service.convert_to_dict(maintenance))


# Reports

@maintenance_bp.route('/reports/total-cost', methods=['GET'])
def total_cost():
    start_date, end_date = date_args()
    total = maintenance_service.calculate_total_maintenance_cost(arg_int('truck_id'), start_date, end_date)
    return success(total_cost=total)


@maintenance_bp.route('/reports/cost-summary', methods=['GET'])
def cost_summary():
    start_date, end_date = date_args()
    return success(report=maintenance_service.get_maintenance_cost_summary(start_date, end_date))


@maintenance_bp.route('/reports/truck-costs', methods=['GET'])
def truck_wise_cost():
    start_date, end_date = date_args()
    return success(report=maintenance_service.get_truck_wise_maintenance_cost(start_date, end_date))


@maintenance_bp.route('/reports/by-type', methods=['GET'])
def by_type_report():
    start_date, end_date = date_args()
    return success(report=maintenance_service.get_maintenance_by_type_report(start_date, end_date))


@maintenance_bp.route('/reports/by-category', methods=['GET'])
def by_category_report():
    start_date, end_date = date_args()
    return success(report=maintenance_service.get_maintenance_by_category_report(start_date, end_date))


@maintenance_bp.route('/reports/statistics', methods=['GET'])
def maintenance_statistics():
    return success(report=maintenance_service.get_maintenance_statistics())


@maintenance_bp.route('/reports/monthly', methods=['GET'])
def monthly_summary():
    start_date, end_date = date_args()
    return success(report=maintenance_service.get_monthly_maintenance_summary(start_date, end_date))


@maintenance_bp.route('/reports/truck-history/<int:truck_id>', methods=['GET'])
def truck_history(truck_id):
    return success(items=maintenance_service.get_truck_maintenance_history(truck_id))


@maintenance_bp.route('/reports/service-providers', methods=['GET'])
def service_provider_performance():
    start_date, end_date = date_args()
    return success(report=maintenance_service.get_service_provider_performance(start_date, end_date))


@maintenance_bp.route('/reports/efficiency', methods=['GET'])
def efficiency_report():
    start_date, end_date = date_args()
    return success(report=maintenance_service.get_maintenance_efficiency_report(start_date, end_date))


@maintenance_bp.route('/reports/maintenances', methods=['GET'])
def maintenance_report():
    start_date, end_date = date_args()
    return success(report=maintenance_service.generate_maintenance_report(
        arg_text('maintenance_type'), arg_text('status'), start_date, end_date))


@maintenance_bp.route('/next-service', methods=['GET'])
def next_service():
    """Preview the next due date and odometer reading for an interval."""
    return success(
        next_service_date=maintenance_service.calculate_next_service_date(
            request.args.get('service_date'), request.args.get('interval_days')),
        next_service_odometer=maintenance_service.calculate_next_service_odometer(
            request.args.get('odometer'), request.args.get('interval_km'))
    )

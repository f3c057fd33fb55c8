"""
Truck API routes
Fleet CRUD, compliance documents, odometer, service and fuel tracking, truck reports
"""

import logging
from flask import Blueprint, request

from services import TruckService
from utils.api import json_body, page_args, date_args, arg_int, arg_bool, arg_text, success, require_found
from utils.pagination import page_to_dict

truck_bp = Blueprint('truck', __name__)

logger = logging.getLogger(__name__)

truck_service = TruckService()

EXPIRED_DOCUMENT_QUERIES = {
    'rc': truck_service.get_trucks_with_expired_rc,
    'insurance': truck_service.get_trucks_with_expired_insurance,
    'permit': truck_service.get_trucks_with_expired_permits,
    'fitness': truck_service.get_trucks_with_expired_fitness,
    'puc': truck_service.get_trucks_with_expired_puc,
}


def _truck_list(trucks):
    return [truck_service.convert_to_dict(truck) for truck in trucks]


@truck_bp.route('', methods=['GET'])
def list_trucks():
    page, per_page = page_args()
    result = truck_service.search_trucks(
        truck_number=arg_text('truck_number'),
        model=arg_text('model'),
        fuel_type=arg_text('fuel_type'),
        is_active=arg_bool('is_active'),
        page=page,
        per_page=per_page
    )
    return success(**page_to_dict(result, truck_service.convert_to_dict))


@truck_bp.route('/active', methods=['GET'])
def list_active_trucks():
    return success(items=_truck_list(truck_service.get_all_active_trucks()))


@truck_bp.route('/available', methods=['GET'])
def list_available_trucks():
    """Active trucks not on a running trip; ``min_capacity`` narrows to trucks big enough for a load."""
    min_capacity = request.args.get('min_capacity')
    if min_capacity:
        trucks = truck_service.get_trucks_by_capacity(min_capacity)
    else:
        trucks = truck_service.get_available_trucks()
    return success(items=_truck_list(trucks))


@truck_bp.route('/on-trip', methods=['GET'])
def list_trucks_on_trip():
    return success(items=_truck_list(truck_service.get_trucks_with_active_trips()))


@truck_bp.route('/by-capacity', methods=['GET'])
def trucks_by_capacity_range():
    trucks = truck_service.find_by_capacity_range(request.args.get('min_capacity'),
                                                  request.args.get('max_capacity'))
    return success(items=_truck_list(trucks))


@truck_bp.route('/by-fuel-type/<fuel_type>', methods=['GET'])
def trucks_by_fuel_type(fuel_type):
    return success(items=_truck_list(truck_service.find_by_fuel_type(fuel_type)))


@truck_bp.route('/by-number/<truck_number>', methods=['GET'])
def truck_by_number(truck_number):
    truck = require_found(truck_service.find_by_truck_number(truck_number), 'Truck', truck_number)
    return success(truck=truck_service.convert_to_dict(truck))


@truck_bp.route('/documents/expired', methods=['GET'])
def trucks_with_expired_documents():
    document_type = (request.args.get('document_type') or '').lower()
    query = EXPIRED_DOCUMENT_QUERIES.get(document_type, truck_service.get_trucks_with_expired_documents)
    return success(items=_truck_list(query()))


@truck_bp.route('/documents/expiring', methods=['GET'])
def trucks_with_expiring_documents():
    return success(items=_truck_list(truck_service.get_trucks_with_documents_expiring_soon(arg_int('days'))))


@truck_bp.route('/service-due', methods=['GET'])
def trucks_due_for_service():
    return success(items=_truck_list(truck_service.get_trucks_due_for_service()))


@truck_bp.route('/high-maintenance-cost', methods=['GET'])
def trucks_with_high_maintenance_cost():
    trucks = truck_service.get_trucks_with_high_maintenance_cost(request.args.get('threshold'))
    return success(items=_truck_list(trucks))


@truck_bp.route('/low-fuel-efficiency', methods=['GET'])
def trucks_with_low_fuel_efficiency():
    trucks = truck_service.get_trucks_with_low_fuel_efficiency(request.args.get('threshold'))
    return success(items=_truck_list(trucks))


@truck_bp.route('/high-fuel-consumption', methods=['GET'])
def trucks_with_high_fuel_consumption():
    trucks = truck_service.get_trucks_with_high_fuel_consumption(request.args.get('threshold'))
    return success(items=_truck_list(trucks))


@truck_bp.route('', methods=['POST'])
def create_truck():
    truck = truck_service.create_truck(json_body())
    return success(201, truck=truck_service.convert_to_dict(truck))


@truck_bp.route('/<int:truck_id>', methods=['GET'])
def get_truck(truck_id):
    truck = require_found(truck_service.get_truck_by_id(truck_id), 'Truck', truck_id)
    return success(truck=truck_service.convert_to_dict(truck))


@truck_bp.route('/<int:truck_id>', methods=['PUT'])
def update_truck(truck_id):
    truck = truck_service.update_truck(truck_id, json_body())
    return success(truck=truck_service.convert_to_dict(truck))


@truck_bp.route('/<int:truck_id>', methods=['DELETE'])
def delete_truck(truck_id):
    truck_service.delete_truck(truck_id)
    return success(message='Truck deactivated')


@truck_bp.route('/<int:truck_id>/activate', methods=['POST'])
def activate_truck(truck_id):
    truck = truck_service.activate_truck(truck_id)
    return success(truck=truck_service.convert_to_dict(truck))


@truck_bp.route('/<int:truck_id>/availability', methods=['GET'])
def truck_availability(truck_id):
    return success(truck_id=truck_id, available=truck_service.is_truck_available(truck_id))


@truck_bp.route('/<int:truck_id>/documents', methods=['PUT'])
def update_document(truck_id):
    data = json_body()
    truck = truck_service.update_document_info(truck_id, data.get('document_type'),
                                               data.get('document_number'), data.get('expiry_date'))
    return success(truck=truck_service.convert_to_dict(truck))


@truck_bp.route('/<int:truck_id>/odometer', methods=['PUT'])
def update_odometer(truck_id):
    truck = truck_service.update_odometer_reading(truck_id, json_body().get('odometer_reading'))
    return success(truck=truck_service.convert_to_dict(truck))


@truck_bp.route('/<int:truck_id>/service', methods=['PUT'])
def update_service(truck_id):
    data = json_body()
    truck = truck_service.update_service_info(truck_id, data.get('service_date'),
                                              data.get('next_service_due'), data.get('remarks'))
    return success(truck=truck_service.convert_to_dict(truck))


@truck_bp.route('/<int:truck_id>/fuel-efficiency', methods=['PUT'])
def update_fuel_efficiency(truck_id):
    truck = truck_service.update_fuel_efficiency(truck_id, json_body().get('fuel_efficiency'))
    return success(truck=truck_service.convert_to_dict(truck))


@truck_bp.route('/<int:truck_id>/profitability', methods=['GET'])
def truck_profitability(truck_id):
    start_date, end_date = date_args()
    return success(truck_id=truck_id,
                   profit=truck_service.calculate_truck_profitability(truck_id, start_date, end_date))


@truck_bp.route('/depreciation', methods=['GET'])
def depreciation():
    value = truck_service.calculate_depreciation_value(request.args.get('purchase_price'),
                                                       request.args.get('purchase_date'),
                                                       request.args.get('rate'))
    return success(depreciated_value=value)


# Reports

@truck_bp.route('/reports/performance', methods=['GET'])
def performance_summary():
    return success(report=truck_service.get_truck_performance_summary())


@truck_bp.route('/reports/top-performers', methods=['GET'])
def top_performers():
    page, per_page = page_args()
    result = truck_service.get_top_performing_trucks(page, per_page)
    return success(**page_to_dict(result, truck_service.convert_to_dict))


@truck_bp.route('/reports/utilization', methods=['GET'])
def utilization_report():
    start_date, end_date = date_args()
    return success(report=truck_service.get_truck_utilization_report(start_date, end_date))


@truck_bp.route('/reports/fuel-consumption', methods=['GET'])
def fuel_consumption_report():
    start_date, end_date = date_args()
    return success(report=truck_service.get_fuel_consumption_report(start_date, end_date))


@truck_bp.route('/reports/monthly', methods=['GET'])
def monthly_summary():
    start_date, end_date = date_args()
    return success(report=truck_service.get_monthly_truck_summary(start_date, end_date))


@truck_bp.route('/reports/statistics', methods=['GET'])
def truck_statistics():
    return success(report=truck_service.get_truck_statistics())


@truck_bp.route('/reports/trucks', methods=['GET'])
def truck_report():
    start_date, end_date = date_args()
    return success(report=truck_service.generate_truck_report(start_date, end_date))


@truck_bp.route('/reports/document-expiry', methods=['GET'])
def document_expiry_report():
    return success(report=truck_service.generate_document_expiry_report(arg_int('days')))

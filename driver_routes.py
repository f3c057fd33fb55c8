"""
Driver API routes
CRUD, licence tracking, salary and advance management, driver reports
"""

import logging
from flask import Blueprint

from services import DriverService
from utils.api import json_body, page_args, date_args, arg_int, arg_bool, arg_text, success, require_found
from utils.pagination import page_to_dict

driver_bp = Blueprint('driver', __name__)

logger = logging.getLogger(__name__)

driver_service = DriverService()


def _driver_list(drivers):
    return [driver_service.convert_to_dict(driver) for driver in drivers]


@driver_bp.route('', methods=['GET'])
def list_drivers():
    page, per_page = page_args()
    result = driver_service.search_drivers(
        name=arg_text('name'),
        license_number=arg_text('license_number'),
        contact_number=arg_text('contact_number'),
        is_active=arg_bool('is_active'),
        page=page,
        per_page=per_page
    )
    return success(**page_to_dict(result, driver_service.convert_to_dict))


@driver_bp.route('/active', methods=['GET'])
def list_active_drivers():
    return success(items=_driver_list(driver_service.get_all_active_drivers()))


@driver_bp.route('/available', methods=['GET'])
def list_available_drivers():
    """Active drivers without a PLANNED or RUNNING trip."""
    return success(items=_driver_list(driver_service.get_available_drivers()))


@driver_bp.route('/on-trip', methods=['GET'])
def list_drivers_on_trip():
    return success(items=_driver_list(driver_service.get_drivers_with_active_trips()))


@driver_bp.route('/licenses/expired', methods=['GET'])
def expired_licenses():
    return success(items=_driver_list(driver_service.get_drivers_with_expired_licenses()))


@driver_bp.route('/licenses/expiring', methods=['GET'])
def expiring_licenses():
    drivers = driver_service.get_drivers_with_licenses_expiring_soon(arg_int('days'))
    return success(items=_driver_list(drivers))


@driver_bp.route('/advances', methods=['GET'])
def drivers_with_advances():
    return success(
        items=_driver_list(driver_service.get_drivers_with_outstanding_advances()),
        total_outstanding_advances=driver_service.calculate_total_outstanding_advances()
    )


@driver_bp.route('', methods=['POST'])
def create_driver():
    driver = driver_service.create_driver(json_body())
    return success(201, driver=driver_service.convert_to_dict(driver))


@driver_bp.route('/<int:driver_id>', methods=['GET'])
def get_driver(driver_id):
    driver = require_found(driver_service.get_driver_by_id(driver_id), 'Driver', driver_id)
    return success(driver=driver_service.convert_to_dict(driver))


@driver_bp.route('/<int:driver_id>', methods=['PUT'])
def update_driver(driver_id):
    driver = driver_service.update_driver(driver_id, json_body())
    return success(driver=driver_service.convert_to_dict(driver))


@driver_bp.route('/<int:driver_id>', methods=['DELETE'])
def delete_driver(driver_id):
    driver_service.delete_driver(driver_id)
    return success(message='Driver deactivated')


@driver_bp.route('/<int:driver_id>/activate', methods=['POST'])
def activate_driver(driver_id):
    driver = driver_service.activate_driver(driver_id)
    return success(driver=driver_service.convert_to_dict(driver))


@driver_bp.route('/<int:driver_id>/availability', methods=['GET'])
def driver_availability(driver_id):
    return success(driver_id=driver_id, available=driver_service.is_driver_available(driver_id))


@driver_bp.route('/<int:driver_id>/license', methods=['PUT'])
def update_license(driver_id):
    data = json_body()
    driver = driver_service.update_license_info(driver_id, data.get('license_number'),
                                                data.get('license_expiry_date'))
    return success(driver=driver_service.convert_to_dict(driver))


@driver_bp.route('/<int:driver_id>/salary', methods=['PUT'])
def update_salary(driver_id):
    driver = driver_service.update_salary(driver_id, json_body().get('salary'))
    return success(driver=driver_service.convert_to_dict(driver))


@driver_bp.route('/<int:driver_id>/advances', methods=['POST'])
def add_advance(driver_id):
    data = json_body()
    driver = driver_service.add_advance_payment(driver_id, data.get('amount'), data.get('remarks'))
    return success(driver=driver_service.convert_to_dict(driver))


@driver_bp.route('/<int:driver_id>/advances/deduct', methods=['POST'])
def deduct_advance(driver_id):
    data = json_body()
    driver = driver_service.deduct_advance(driver_id, data.get('amount'), data.get('remarks'))
    return success(driver=driver_service.convert_to_dict(driver))


# Reports

@driver_bp.route('/reports/performance', methods=['GET'])
def performance_summary():
    return success(report=driver_service.get_driver_performance_summary())


@driver_bp.route('/reports/top-performers', methods=['GET'])
def top_performers():
    page, per_page = page_args()
    result = driver_service.get_top_performing_drivers(page, per_page)
    return success(**page_to_dict(result, driver_service.convert_to_dict))


@driver_bp.route('/reports/trip-counts', methods=['GET'])
def trip_counts():
    start_date, end_date = date_args()
    return success(report=driver_service.get_driver_trip_counts(start_date, end_date))


@driver_bp.route('/reports/monthly', methods=['GET'])
def monthly_summary():
    start_date, end_date = date_args()
    return success(report=driver_service.get_monthly_driver_summary(start_date, end_date))


@driver_bp.route('/reports/statistics', methods=['GET'])
def driver_statistics():
    return success(report=driver_service.get_driver_statistics())


@driver_bp.route('/reports/drivers', methods=['GET'])
def driver_report():
    start_date, end_date = date_args()
    return success(report=driver_service.generate_driver_report(start_date, end_date))

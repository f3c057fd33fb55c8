"""
Trip API routes
Trip lifecycle, planning helpers, financials and trip analytics
"""

import logging
from flask import Blueprint, request, current_app

from services import TripService, TruckService, DriverService
from utils.api import json_body, page_args, date_args, arg_int, arg_text, success, require_found
from utils.pagination import page_to_dict

trip_bp = Blueprint('trip', __name__)

logger = logging.getLogger(__name__)

trip_service = TripService()
truck_service = TruckService()
driver_service = DriverService()

STATUS_LISTS = {
    'planned': trip_service.get_planned_trips,
    'running': trip_service.get_running_trips,
    'completed': trip_service.get_completed_trips,
    'cancelled': trip_service.get_cancelled_trips,
}


def _trip_list(trips):
    return [trip_service.convert_to_dict(trip) for trip in trips]


@trip_bp.route('', methods=['GET'])
def list_trips():
    """Search trips by number, truck, driver, client, status and planned start range."""
    page, per_page = page_args()
    start_date, end_date = date_args()
    result = trip_service.search_trips(
        trip_number=arg_text('trip_number'),
        truck_id=arg_int('truck_id'),
        driver_id=arg_int('driver_id'),
        client_id=arg_int('client_id'),
        status=arg_text('status'),
        start_date=start_date,
        end_date=end_date,
        page=page,
        per_page=per_page
    )
    return success(**page_to_dict(result, trip_service.convert_to_dict))


@trip_bp.route('/status/<status>', methods=['GET'])
def trips_by_status(status):
    page, per_page = page_args()
    lister = STATUS_LISTS.get(status.lower())
    if lister:
        result = lister(page, per_page)
    else:
        result = trip_service.get_trips_by_status(status, page, per_page)
    return success(**page_to_dict(result, trip_service.convert_to_dict))


@trip_bp.route('/by-truck/<int:truck_id>', methods=['GET'])
def trips_by_truck(truck_id):
    page, per_page = page_args()
    result = trip_service.get_trips_by_truck(truck_id, page, per_page)
    return success(**page_to_dict(result, trip_service.convert_to_dict))


@trip_bp.route('/by-driver/<int:driver_id>', methods=['GET'])
def trips_by_driver(driver_id):
    page, per_page = page_args()
    result = trip_service.get_trips_by_driver(driver_id, page, per_page)
    return success(**page_to_dict(result, trip_service.convert_to_dict))


@trip_bp.route('/by-client/<int:client_id>', methods=['GET'])
def trips_by_client(client_id):
    page, per_page = page_args()
    result = trip_service.get_trips_by_client(client_id, page, per_page)
    return success(**page_to_dict(result, trip_service.convert_to_dict))


@trip_bp.route('/by-number/<trip_number>', methods=['GET'])
def trip_by_number(trip_number):
    trip = require_found(trip_service.find_by_trip_number(trip_number), 'Trip', trip_number)
    return success(trip=trip_service.convert_to_dict(trip))


@trip_bp.route('', methods=['POST'])
def create_trip():
    trip = trip_service.create_trip(json_body())
    return success(201, trip=trip_service.convert_to_dict(trip))


@trip_bp.route('/<int:trip_id>', methods=['GET'])
def get_trip(trip_id):
    trip = require_found(trip_service.get_trip_by_id(trip_id), 'Trip', trip_id)
    return success(trip=trip_service.convert_to_dict(trip))


@trip_bp.route('/<int:trip_id>', methods=['PUT'])
def update_trip(trip_id):
    trip = trip_service.update_trip(trip_id, json_body())
    return success(trip=trip_service.convert_to_dict(trip))


@trip_bp.route('/<int:trip_id>', methods=['DELETE'])
def delete_trip(trip_id):
    trip_service.delete_trip(trip_id)
    return success(message='Trip deleted')


# Lifecycle

@trip_bp.route('/<int:trip_id>/start', methods=['POST'])
def start_trip(trip_id):
    data = json_body()
    trip = trip_service.start_trip(trip_id, data.get('actual_start_date'), data.get('remarks'))
    return success(trip=trip_service.convert_to_dict(trip))


@trip_bp.route('/<int:trip_id>/complete', methods=['POST'])
def complete_trip(trip_id):
    data = json_body()
    trip = trip_service.complete_trip(
        trip_id,
        actual_end_date=data.get('actual_end_date'),
        fuel_consumed=data.get('fuel_consumed'),
        fuel_cost=data.get('fuel_cost'),
        toll_charges=data.get('toll_charges'),
        other_expenses=data.get('other_expenses'),
        remarks=data.get('remarks')
    )
    return success(trip=trip_service.convert_to_dict(trip))


@trip_bp.route('/<int:trip_id>/cancel', methods=['POST'])
def cancel_trip(trip_id):
    trip = trip_service.cancel_trip(trip_id, json_body().get('reason'))
    return success(trip=trip_service.convert_to_dict(trip))


# Financials

@trip_bp.route('/<int:trip_id>/charges', methods=['PUT'])
def update_trip_charges(trip_id):
    data = json_body()
    trip = trip_service.update_trip_charges(trip_id, data.get('trip_charges'), data.get('reason'))
    return success(trip=trip_service.convert_to_dict(trip))


@trip_bp.route('/<int:trip_id>/advances', methods=['POST'])
def add_trip_advance(trip_id):
    data = json_body()
    trip = trip_service.add_advance_payment(trip_id, data.get('amount'), data.get('remarks'))
    return success(trip=trip_service.convert_to_dict(trip))


@trip_bp.route('/<int:trip_id>/profitability', methods=['GET'])
def trip_profitability(trip_id):
    return success(profitability=trip_service.calculate_trip_profitability(trip_id))


@trip_bp.route('/profitable', methods=['GET'])
def profitable_trips():
    trips = trip_service.get_profitable_trips(request.args.get('min_profit_margin'))
    return success(items=_trip_list(trips))


@trip_bp.route('/loss-making', methods=['GET'])
def loss_making_trips():
    return success(items=_trip_list(trip_service.get_loss_making_trips()))


@trip_bp.route('/outstanding', methods=['GET'])
def trips_with_outstanding_balance():
    page, per_page = page_args()
    result = trip_service.get_trips_with_outstanding_balance(page, per_page)
    return success(**page_to_dict(result, trip_service.convert_to_dict))


@trip_bp.route('/financials', methods=['GET'])
def trip_financials():
    start_date, end_date = date_args()
    return success(
        total_revenue=trip_service.get_total_revenue(start_date, end_date),
        total_expenses=trip_service.get_total_expenses(start_date, end_date),
        net_profit=trip_service.get_net_profit(start_date, end_date)
    )


@trip_bp.route('/delayed', methods=['GET'])
def delayed_trips():
    return success(items=_trip_list(trip_service.get_delayed_trips()))


@trip_bp.route('/overloaded', methods=['GET'])
def overloaded_trips():
    return success(items=_trip_list(trip_service.get_overloaded_trips()))


# Planning

@trip_bp.route('/planning/available-trucks', methods=['GET'])
def available_trucks_for_trip():
    trucks = trip_service.get_available_trucks_for_trip(request.args.get('required_capacity'),
                                                        request.args.get('planned_start_date'))
    return success(items=[truck_service.convert_to_dict(truck) for truck in trucks])


@trip_bp.route('/planning/available-drivers', methods=['GET'])
def available_drivers_for_trip():
    drivers = trip_service.get_available_drivers_for_trip(request.args.get('planned_start_date'))
    return success(items=[driver_service.convert_to_dict(driver) for driver in drivers])


@trip_bp.route('/planning/suggest-truck', methods=['GET'])
def suggest_truck():
    truck = trip_service.suggest_optimal_truck(request.args.get('load_weight'),
                                               request.args.get('distance'),
                                               request.args.get('planned_start_date'))
    return success(truck=truck_service.convert_to_dict(truck))


@trip_bp.route('/planning/estimate', methods=['GET'])
def estimate_trip():
    """Distance, duration and fuel cost estimates for a planned route."""
    distance = request.args.get('distance')
    if not distance:
        distance = trip_service.calculate_distance(request.args.get('source_location'),
                                                   request.args.get('destination_location'))
    average_speed = (request.args.get('average_speed')
                     or current_app.config.get('STMS_DEFAULT_AVERAGE_SPEED_KMPH', 50))
    estimate = {
        'distance': distance,
        'estimated_duration_hours': trip_service.calculate_estimated_duration(distance, average_speed)
    }
    if request.args.get('fuel_efficiency') and request.args.get('fuel_price'):
        estimate['estimated_fuel_cost'] = trip_service.calculate_estimated_fuel_cost(
            distance, request.args['fuel_efficiency'], request.args['fuel_price'])
    return success(estimate=estimate)


@trip_bp.route('/planning/check', methods=['GET'])
def check_assignment():
    """Check truck and driver availability for a window and whether the load fits."""
    start = request.args.get('planned_start_date')
    end = request.args.get('planned_end_date')
    exclude_trip_id = arg_int('exclude_trip_id')
    result = {}

    truck_id = arg_int('truck_id')
    if truck_id:
        result['truck_available'] = trip_service.is_truck_available(truck_id, start, end, exclude_trip_id)
        if request.args.get('load_weight'):
            result['load_within_capacity'] = trip_service.is_load_within_capacity(
                truck_id, request.args['load_weight'])

    driver_id = arg_int('driver_id')
    if driver_id:
        result['driver_available'] = trip_service.is_driver_available(driver_id, start, end, exclude_trip_id)

    return success(**result)


# Reports

@trip_bp.route('/reports/performance', methods=['GET'])
def performance_summary():
    start_date, end_date = date_args()
    return success(report=trip_service.get_trip_performance_summary(start_date, end_date))


@trip_bp.route('/reports/fuel-efficiency', methods=['GET'])
def fuel_efficiency_report():
    start_date, end_date = date_args()
    return success(report=trip_service.get_fuel_efficiency_report(start_date, end_date))


@trip_bp.route('/reports/routes', methods=['GET'])
def route_analysis():
    return success(report=trip_service.get_route_analysis(arg_text('source_location'),
                                                          arg_text('destination_location')))


@trip_bp.route('/reports/capacity-utilization', methods=['GET'])
def capacity_utilization_report():
    start_date, end_date = date_args()
    return success(report=trip_service.get_capacity_utilization_report(start_date, end_date))


@trip_bp.route('/reports/daily', methods=['GET'])
def daily_summary():
    return success(report=trip_service.get_daily_trip_summary(request.args.get('date')))


@trip_bp.route('/reports/monthly', methods=['GET'])
def monthly_summary():
    start_date, end_date = date_args()
    return success(report=trip_service.get_monthly_trip_summary(start_date, end_date))


@trip_bp.route('/reports/statistics', methods=['GET'])
def trip_statistics():
    return success(report=trip_service.get_trip_statistics())


@trip_bp.route('/reports/trips', methods=['GET'])
def trip_report():
    start_date, end_date = date_args()
    return success(report=trip_service.generate_trip_report(start_date, end_date, arg_text('status')))


@trip_bp.route('/reports/profitability', methods=['GET'])
def profitability_report():
    start_date, end_date = date_args()
    return success(report=trip_service.generate_profitability_report(start_date, end_date))


@trip_bp.route('/reports/driver-performance', methods=['GET'])
def driver_performance_report():
    start_date, end_date = date_args()
    return success(report=trip_service.generate_driver_performance_report(start_date, end_date))


@trip_bp.route('/reports/truck-utilization', methods=['GET'])
def truck_utilization_report():
    start_date, end_date = date_args()
    return success(report=trip_service.generate_truck_utilization_report(start_date, end_date))

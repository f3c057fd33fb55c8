"""
Builty API routes
Consignment notes: CRUD, payments, delivery tracking, charges and billing reports
"""

import logging
from flask import Blueprint, request

from services import BuiltyService
from utils.api import json_body, page_args, date_args, arg_int, arg_text, success, require_found
from utils.pagination import page_to_dict

builty_bp = Blueprint('builty', __name__)

logger = logging.getLogger(__name__)

builty_service = BuiltyService()


def _paged(result):
    return success(**page_to_dict(result, builty_service.convert_to_dict))


@builty_bp.route('', methods=['GET'])
def list_builties():
    page, per_page = page_args()
    start_date, end_date = date_args()
    return _paged(builty_service.search_builties(
        builty_number=arg_text('builty_number'),
        trip_id=arg_int('trip_id'),
        client_id=arg_int('client_id'),
        payment_status=arg_text('payment_status'),
        delivery_status=arg_text('delivery_status'),
        start_date=start_date,
        end_date=end_date,
        page=page,
        per_page=per_page
    ))


@builty_bp.route('/by-trip/<int:trip_id>', methods=['GET'])
def builties_by_trip(trip_id):
    page, per_page = page_args()
    return _paged(builty_service.get_builties_by_trip(trip_id, page, per_page))


@builty_bp.route('/by-client/<int:client_id>', methods=['GET'])
def builties_by_client(client_id):
    page, per_page = page_args()
    return _paged(builty_service.get_builties_by_client(client_id, page, per_page))


@builty_bp.route('/payment-status/<payment_status>', methods=['GET'])
def builties_by_payment_status(payment_status):
    page, per_page = page_args()
    return _paged(builty_service.get_builties_by_payment_status(payment_status, page, per_page))


@builty_bp.route('/delivery-status/<delivery_status>', methods=['GET'])
def builties_by_delivery_status(delivery_status):
    page, per_page = page_args()
    return _paged(builty_service.get_builties_by_delivery_status(delivery_status, page, per_page))


@builty_bp.route('/by-number/<builty_number>', methods=['GET'])
def builty_by_number(builty_number):
    builty = require_found(builty_service.find_by_builty_number(builty_number), 'Builty', builty_number)
    return success(builty=builty_service.convert_to_dict(builty))


@builty_bp.route('', methods=['POST'])
def create_builty():
    builty = builty_service.create_builty(json_body())
    return success(201, builty=builty_service.convert_to_dict(builty))


@builty_bp.route('/<int:builty_id>', methods=['GET'])
def get_builty(builty_id):
    builty = require_found(builty_service.get_builty_by_id(builty_id), 'Builty', builty_id)
    return success(builty=builty_service.convert_to_dict(builty))


@builty_bp.route('/<int:builty_id>', methods=['PUT'])
def update_builty(builty_id):
    builty = builty_service.update_builty(builty_id, json_body())
    return success(builty=builty_service.convert_to_dict(builty))


@builty_bp.route('/<int:builty_id>', methods=['DELETE'])
def delete_builty(builty_id):
    builty_service.delete_builty(builty_id)
    return success(message='Builty deleted')


@builty_bp.route('/<int:builty_id>/can-delete', methods=['GET'])
def can_delete_builty(builty_id):
    return success(builty_id=builty_id, can_delete=builty_service.can_delete_builty(builty_id))


# Payments

@builty_bp.route('/<int:builty_id>/payments', methods=['POST'])
def add_payment(builty_id):
    data = json_body()
    builty = builty_service.add_payment(builty_id, data.get('amount'), data.get('payment_date'),
                                        data.get('payment_method'), data.get('remarks'))
    return success(builty=builty_service.convert_to_dict(builty))


@builty_bp.route('/<int:builty_id>/payment-status', methods=['PUT'])
def update_payment_status(builty_id):
    data = json_body()
    builty = builty_service.update_payment_status(builty_id, data.get('payment_status'), data.get('remarks'))
    return success(builty=builty_service.convert_to_dict(builty))


@builty_bp.route('/<int:builty_id>/payments/validate', methods=['GET'])
def validate_payment(builty_id):
    amount = request.args.get('amount')
    return success(builty_id=builty_id, valid=builty_service.validate_payment_amount(builty_id, amount))


@builty_bp.route('/<int:builty_id>/payment-reminder', methods=['POST'])
def send_payment_reminder(builty_id):
    return success(builty_id=builty_id, reminder_sent=builty_service.send_payment_reminder(builty_id))


@builty_bp.route('/<int:builty_id>/invoice', methods=['POST'])
def generate_invoice(builty_id):
    return success(builty_id=builty_id, invoice_path=builty_service.generate_invoice_pdf(builty_id))


@builty_bp.route('/payments/pending', methods=['GET'])
def pending_payments():
    page, per_page = page_args()
    return _paged(builty_service.get_pending_payments(page, per_page))


@builty_bp.route('/payments/partial', methods=['GET'])
def partial_payments():
    page, per_page = page_args()
    return _paged(builty_service.get_partial_payments(page, per_page))


@builty_bp.route('/payments/overdue', methods=['GET'])
def overdue_payments():
    page, per_page = page_args()
    return _paged(builty_service.get_overdue_payments(page, per_page))


@builty_bp.route('/payments/outstanding', methods=['GET'])
def outstanding_amount():
    client_id = arg_int('client_id')
    return success(client_id=client_id,
                   outstanding_amount=builty_service.calculate_outstanding_amount(client_id))


@builty_bp.route('/payments/summary', methods=['GET'])
def payment_summary():
    start_date, end_date = date_args()
    return success(report=builty_service.get_payment_summary(start_date, end_date))


# Delivery

@builty_bp.route('/<int:builty_id>/delivery-status', methods=['PUT'])
def update_delivery_status(builty_id):
    data = json_body()
    builty = builty_service.update_delivery_status(builty_id, data.get('delivery_status'),
                                                   data.get('delivery_date'), data.get('remarks'))
    return success(builty=builty_service.convert_to_dict(builty))


@builty_bp.route('/<int:builty_id>/deliver', methods=['POST'])
def mark_as_delivered(builty_id):
    data = json_body()
    builty = builty_service.mark_as_delivered(builty_id, data.get('delivery_date'),
                                              data.get('received_by'), data.get('remarks'))
    return success(builty=builty_service.convert_to_dict(builty))


@builty_bp.route('/deliveries/pending', methods=['GET'])
def pending_deliveries():
    page, per_page = page_args()
    return _paged(builty_service.get_pending_deliveries(page, per_page))


@builty_bp.route('/deliveries/in-transit', methods=['GET'])
def in_transit_builties():
    page, per_page = page_args()
    return _paged(builty_service.get_in_transit_builties(page, per_page))


@builty_bp.route('/deliveries/delivered', methods=['GET'])
def delivered_builties():
    page, per_page = page_args()
    start_date, end_date = date_args()
    return _paged(builty_service.get_delivered_builties(start_date, end_date, page, per_page))


@builty_bp.route('/deliveries/performance', methods=['GET'])
def delivery_performance():
    start_date, end_date = date_args()
    return success(report=builty_service.get_delivery_performance_report(start_date, end_date))


# Charges

@builty_bp.route('/<int:builty_id>/freight-charges', methods=['PUT'])
def update_freight_charges(builty_id):
    data = json_body()
    builty = builty_service.update_freight_charges(builty_id, data.get('freight_charges'), data.get('reason'))
    return success(builty=builty_service.convert_to_dict(builty))


@builty_bp.route('/<int:builty_id>/additional-charges', methods=['POST'])
def add_additional_charges(builty_id):
    data = json_body()
    builty = builty_service.add_additional_charges(builty_id, data.get('charge_type'), data.get('amount'),
                                                   data.get('description'))
    return success(builty=builty_service.convert_to_dict(builty))


@builty_bp.route('/gst', methods=['GET'])
def gst_amount():
    amount = builty_service.calculate_gst_amount(request.args.get('total_charges'),
                                                 request.args.get('gst_rate'))
    return success(gst_amount=amount)


# Reports

@builty_bp.route('/reports/revenue', methods=['GET'])
def revenue_report():
    start_date, end_date = date_args()
    return success(report=builty_service.get_revenue_report(start_date, end_date),
                   total_revenue=builty_service.calculate_total_revenue(start_date, end_date))


@builty_bp.route('/reports/client-revenue', methods=['GET'])
def client_wise_revenue():
    start_date, end_date = date_args()
    return success(report=builty_service.get_client_wise_revenue(start_date, end_date))


@builty_bp.route('/reports/top-clients', methods=['GET'])
def top_clients():
    start_date, end_date = date_args()
    return success(report=builty_service.get_top_clients_by_revenue(start_date, end_date,
                                                                    arg_int('limit', 10)))


@builty_bp.route('/reports/statistics', methods=['GET'])
def builty_statistics():
    return success(report=builty_service.get_builty_statistics())


@builty_bp.route('/reports/monthly', methods=['GET'])
def monthly_summary():
    start_date, end_date = date_args()
    return success(report=builty_service.get_monthly_builty_summary(start_date, end_date))


@builty_bp.route('/reports/builties', methods=['GET'])
def builty_report():
    start_date, end_date = date_args()
    return success(report=builty_service.generate_builty_report(start_date, end_date,
                                                                arg_text('payment_status'),
                                                                arg_text('delivery_status')))


@builty_bp.route('/reports/aging', methods=['GET'])
def aging_report():
    return success(report=builty_service.get_aging_report())


@builty_bp.route('/reports/goods', methods=['GET'])
def goods_analysis():
    start_date, end_date = date_args()
    return success(report=builty_service.get_goods_analysis_report(start_date, end_date))

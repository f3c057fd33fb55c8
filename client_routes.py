"""
Client API routes
CRUD, credit management and client business reports
"""

import logging
from flask import Blueprint, request

from services import ClientService
from utils.api import (json_body, page_args, date_args, arg_int, arg_bool, arg_text,
                       success, require_found)
from utils.converters import to_decimal
from utils.pagination import page_to_dict

client_bp = Blueprint('client', __name__)

logger = logging.getLogger(__name__)

client_service = ClientService()


def _client_list(clients):
    return [client_service.convert_to_dict(client) for client in clients]


@client_bp.route('', methods=['GET'])
def list_clients():
    """List clients, optionally filtered by name, company, contact, GST number or active flag."""
    page, per_page = page_args()
    result = client_service.search_clients(
        name=arg_text('name'),
        company_name=arg_text('company_name'),
        contact_number=arg_text('contact_number'),
        gst_number=arg_text('gst_number'),
        is_active=arg_bool('is_active'),
        page=page,
        per_page=per_page
    )
    return success(**page_to_dict(result, client_service.convert_to_dict))


@client_bp.route('/active', methods=['GET'])
def list_active_clients():
    return success(items=_client_list(client_service.get_all_active_clients()))


@client_bp.route('/lookup', methods=['GET'])
def lookup_client():
    """Exact lookup by contact number, GST number or PAN number."""
    if request.args.get('contact_number'):
        key, client = 'contact_number', client_service.find_by_contact_number(request.args['contact_number'])
    elif request.args.get('gst_number'):
        key, client = 'gst_number', client_service.find_by_gst_number(request.args['gst_number'])
    elif request.args.get('pan_number'):
        key, client = 'pan_number', client_service.find_by_pan_number(request.args['pan_number'])
    else:
        return success(client=None)

    require_found(client, 'Client', request.args[key])
    return success(client=client_service.convert_to_dict(client))


@client_bp.route('', methods=['POST'])
def create_client():
    client = client_service.create_client(json_body())
    return success(201, client=client_service.convert_to_dict(client))


@client_bp.route('/<int:client_id>', methods=['GET'])
def get_client(client_id):
    client = require_found(client_service.get_client_by_id(client_id), 'Client', client_id)
    return success(client=client_service.convert_to_dict(client))


@client_bp.route('/<int:client_id>', methods=['PUT'])
def update_client(client_id):
    client = client_service.update_client(client_id, json_body())
    return success(client=client_service.convert_to_dict(client))


@client_bp.route('/<int:client_id>', methods=['DELETE'])
def delete_client(client_id):
    client_service.delete_client(client_id)
    return success(message='Client deactivated')


@client_bp.route('/<int:client_id>/activate', methods=['POST'])
def activate_client(client_id):
    client = client_service.activate_client(client_id)
    return success(client=client_service.convert_to_dict(client))


# Credit management

@client_bp.route('/<int:client_id>/credit-limit', methods=['PUT'])
def update_credit_limit(client_id):
    data = json_body()
    client = client_service.update_credit_limit(client_id, data.get('credit_limit'), data.get('reason'))
    return success(client=client_service.convert_to_dict(client))


@client_bp.route('/<int:client_id>/outstanding-balance', methods=['PUT'])
def update_outstanding_balance(client_id):
    data = json_body()
    client = client_service.update_outstanding_balance(client_id, data.get('outstanding_balance'),
                                                       data.get('reason'))
    return success(client=client_service.convert_to_dict(client))


@client_bp.route('/<int:client_id>/outstanding-balance/add', methods=['POST'])
def add_to_outstanding_balance(client_id):
    data = json_body()
    client = client_service.add_to_outstanding_balance(client_id, data.get('amount'), data.get('reason'))
    return success(client=client_service.convert_to_dict(client))


@client_bp.route('/<int:client_id>/outstanding-balance/reduce', methods=['POST'])
def reduce_outstanding_balance(client_id):
    data = json_body()
    client = client_service.reduce_outstanding_balance(client_id, data.get('amount'), data.get('reason'))
    return success(client=client_service.convert_to_dict(client))


@client_bp.route('/<int:client_id>/credit-check', methods=['GET'])
def credit_check(client_id):
    amount = to_decimal(request.args.get('amount'), 'amount')
    return success(
        client_id=client_id,
        amount=amount,
        can_take_credit=client_service.can_take_additional_credit(client_id, amount)
    )


@client_bp.route('/<int:client_id>/credit-profile', methods=['GET'])
def credit_profile(client_id):
    client = require_found(client_service.get_client_by_id(client_id), 'Client', client_id)
    return success(
        client_id=client.id,
        payment_behavior=client_service.analyze_payment_behavior(client.id),
        credit_score=client_service.calculate_credit_score(client.id),
        credit_utilization=client_service.calculate_credit_utilization(client)
    )


@client_bp.route('/outstanding', methods=['GET'])
def clients_with_outstanding_balance():
    page, per_page = page_args()
    result = client_service.get_clients_with_outstanding_balance(page, per_page)
    return success(**page_to_dict(result, client_service.convert_to_dict))


@client_bp.route('/exceeding-credit-limit', methods=['GET'])
def clients_exceeding_credit_limit():
    return success(items=_client_list(client_service.get_clients_exceeding_credit_limit()))


@client_bp.route('/good-payment-history', methods=['GET'])
def clients_with_good_payment_history():
    max_utilization = request.args.get('max_utilization')
    return success(items=_client_list(client_service.get_clients_with_good_payment_history(max_utilization)))


@client_bp.route('/payment-behavior/<behavior>', methods=['GET'])
def clients_by_payment_behavior(behavior):
    return success(items=_client_list(client_service.get_clients_by_payment_behavior(behavior)))


@client_bp.route('/totals', methods=['GET'])
def client_totals():
    return success(
        total_outstanding_balance=client_service.calculate_total_outstanding_balance(),
        total_credit_limit=client_service.calculate_total_credit_limit(),
        active_clients=client_service.get_client_count(is_active=True),
        total_clients=client_service.get_client_count()
    )


# Reports

@client_bp.route('/reports/business-summary', methods=['GET'])
def business_summary():
    start_date, end_date = date_args()
    return success(report=client_service.get_client_business_summary(start_date, end_date))


@client_bp.route('/reports/top-clients', methods=['GET'])
def top_clients():
    return success(report=client_service.get_top_clients_by_business_value(arg_int('limit', 10)))


@client_bp.route('/reports/payment-statistics', methods=['GET'])
def payment_statistics():
    return success(report=client_service.get_client_payment_statistics())


@client_bp.route('/reports/aging', methods=['GET'])
def aging_report():
    return success(report=client_service.get_client_aging_report(),
                   summary=client_service.get_aging_summary())


@client_bp.route('/reports/monthly', methods=['GET'])
def monthly_summary():
    start_date, end_date = date_args()
    return success(report=client_service.get_monthly_client_summary(start_date, end_date))


@client_bp.route('/reports/statistics', methods=['GET'])
def client_statistics():
    return success(report=client_service.get_client_statistics())


@client_bp.route('/reports/clients', methods=['GET'])
def client_report():
    start_date, end_date = date_args()
    return success(report=client_service.generate_client_report(start_date, end_date))


@client_bp.route('/reports/credit-analysis', methods=['GET'])
def credit_analysis():
    return success(report=client_service.generate_credit_analysis_report())

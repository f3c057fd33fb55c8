"""
Income API routes
Income records, receipts, tax details, recurring income and income reports
"""

import logging
from flask import Blueprint, request

from services import IncomeService
from utils.api import json_body, page_args, date_args, arg_int, arg_text, success, require_found
from utils.pagination import page_to_dict

income_bp = Blueprint('income', __name__)

logger = logging.getLogger(__name__)

income_service = IncomeService()


def _paged(result):
    return success(**page_to_dict(result, income_service.convert_to_dict))


@income_bp.route('', methods=['GET'])
def list_incomes():
    page, per_page = page_args()
    start_date, end_date = date_args()
    return _paged(income_service.search_incomes(
        income_number=arg_text('income_number'),
        income_type=arg_text('income_type'),
        income_category=arg_text('income_category'),
        payment_status=arg_text('payment_status'),
        client_id=arg_int('client_id'),
        trip_id=arg_int('trip_id'),
        start_date=start_date,
        end_date=end_date,
        page=page,
        per_page=per_page
    ))


@income_bp.route('/type/<income_type>', methods=['GET'])
def incomes_by_type(income_type):
    page, per_page = page_args()
    return _paged(income_service.get_incomes_by_type(income_type, page, per_page))


@income_bp.route('/category/<income_category>', methods=['GET'])
def incomes_by_category(income_category):
    page, per_page = page_args()
    return _paged(income_service.get_incomes_by_category(income_category, page, per_page))


@income_bp.route('/by-trip/<int:trip_id>', methods=['GET'])
def incomes_by_trip(trip_id):
    page, per_page = page_args()
    return _paged(income_service.get_incomes_by_trip(trip_id, page, per_page))


@income_bp.route('/by-client/<int:client_id>', methods=['GET'])
def incomes_by_client(client_id):
    page, per_page = page_args()
    return _paged(income_service.get_incomes_by_client(client_id, page, per_page))


@income_bp.route('/by-builty/<int:builty_id>', methods=['GET'])
def incomes_by_builty(builty_id):
    page, per_page = page_args()
    return _paged(income_service.get_incomes_by_builty(builty_id, page, per_page))


@income_bp.route('/payment-status/<payment_status>', methods=['GET'])
def incomes_by_payment_status(payment_status):
    page, per_page = page_args()
    return _paged(income_service.get_incomes_by_payment_status(payment_status, page, per_page))


@income_bp.route('/by-number/<income_number>', methods=['GET'])
def income_by_number(income_number):
    income = require_found(income_service.find_by_income_number(income_number), 'Income', income_number)
    return success(income=income_service.convert_to_dict(income))


@income_bp.route('', methods=['POST'])
def create_income():
    income = income_service.create_income(json_body())
    return success(201, income=income_service.convert_to_dict(income))


@income_bp.route('/<int:income_id>', methods=['GET'])
def get_income(income_id):
    income = require_found(income_service.get_income_by_id(income_id), 'Income', income_id)
    return success(income=income_service.convert_to_dict(income))


@income_bp.route('/<int:income_id>', methods=['PUT'])
def update_income(income_id):
    income = income_service.update_income(income_id, json_body())
    return success(income=income_service.convert_to_dict(income))


@income_bp.route('/<int:income_id>', methods=['DELETE'])
def delete_income(income_id):
    income_service.delete_income(income_id)
    return success(message='Income deleted')


@income_bp.route('/<int:income_id>/can-delete', methods=['GET'])
def can_delete_income(income_id):
    return success(income_id=income_id, can_delete=income_service.can_delete_income(income_id))


# Payments

@income_bp.route('/<int:income_id>/payments', methods=['POST'])
def record_payment(income_id):
    data = json_body()
    income = income_service.record_payment(
        income_id,
        data.get('amount'),
        payment_date=data.get('payment_date'),
        payment_method=data.get('payment_method'),
        reference_number=data.get('reference_number'),
        remarks=data.get('remarks')
    )
    return success(income=income_service.convert_to_dict(income))


@income_bp.route('/<int:income_id>/receive', methods=['POST'])
def mark_as_received(income_id):
    data = json_body()
    income = income_service.mark_as_received(income_id, data.get('payment_date'),
                                             data.get('payment_method'), data.get('reference_number'))
    return success(income=income_service.convert_to_dict(income))


@income_bp.route('/<int:income_id>/payment-status', methods=['PUT'])
def update_payment_status(income_id):
    data = json_body()
    income = income_service.update_payment_status(income_id, data.get('payment_status'), data.get('remarks'))
    return success(income=income_service.convert_to_dict(income))


@income_bp.route('/<int:income_id>/payments/validate', methods=['GET'])
def validate_payment(income_id):
    valid = income_service.validate_payment_amount(income_id, request.args.get('amount'))
    return success(income_id=income_id, valid=valid)


@income_bp.route('/<int:income_id>/tax', methods=['PUT'])
def update_tax_details(income_id):
    data = json_body()
    income = income_service.update_tax_details(income_id, data.get('gst_amount'), data.get('tds_amount'),
                                               data.get('remarks'))
    return success(income=income_service.convert_to_dict(income))


@income_bp.route('/payments/pending', methods=['GET'])
def pending_payments():
    page, per_page = page_args()
    return _paged(income_service.get_pending_payments(page, per_page))


@income_bp.route('/payments/partial', methods=['GET'])
def partially_received():
    page, per_page = page_args()
    return _paged(income_service.get_partially_received_incomes(page, per_page))


@income_bp.route('/payments/overdue', methods=['GET'])
def overdue_incomes():
    page, per_page = page_args()
    return _paged(income_service.get_overdue_incomes(page, per_page))


@income_bp.route('/payments/totals', methods=['GET'])
def payment_totals():
    start_date, end_date = date_args()
    return success(
        total_pending_amount=income_service.calculate_total_pending_amount(),
        total_received_amount=income_service.calculate_total_received_amount(start_date, end_date)
    )


# Recurring income

@income_bp.route('/recurring', methods=['POST'])
def create_recurring_income():
    data = json_body()
    frequency = data.pop('recurring_frequency', None) or data.pop('frequency', None)
    income = income_service.create_recurring_income(data, frequency)
    return success(201, income=income_service.convert_to_dict(income))


@income_bp.route('/recurring', methods=['GET'])
def list_recurring_incomes():
    page, per_page = page_args()
    return _paged(income_service.get_recurring_incomes(page, per_page))


@income_bp.route('/recurring/due', methods=['GET'])
def recurring_incomes_due():
    incomes = income_service.get_recurring_incomes_due(request.args.get('date'))
    return success(items=[income_service.convert_to_dict(income) for income in incomes])


@income_bp.route('/recurring/generate', methods=['POST'])
def generate_recurring_incomes():
    created = income_service.generate_recurring_incomes(json_body().get('date'))
    return success(201, items=[income_service.convert_to_dict(income) for income in created],
                   generated=len(created))


@income_bp.route('/<int:income_id>/recurring', methods=['PUT'])
def update_recurring_schedule(income_id):
    data = json_body()
    income = income_service.update_recurring_schedule(income_id, data.get('is_recurring'),
                                                      data.get('recurring_frequency'),
                                                      data.get('next_recurring_date'))
    return success(income=income_service.convert_to_dict(income))


# Reports

@income_bp.route('/reports/statistics', methods=['GET'])
def income_statistics():
    return success(report=income_service.get_income_statistics())


@income_bp.route('/reports/by-type', methods=['GET'])
def income_by_type():
    start_date, end_date = date_args()
    return success(report=income_service.get_income_by_type_report(start_date, end_date))


@income_bp.route('/reports/by-category', methods=['GET'])
def income_by_category():
    start_date, end_date = date_args()
    return success(report=income_service.get_income_by_category_report(start_date, end_date))


@income_bp.route('/reports/by-client', methods=['GET'])
def client_wise_income():
    start_date, end_date = date_args()
    return success(report=income_service.get_client_wise_income_report(start_date, end_date))


@income_bp.route('/reports/by-trip', methods=['GET'])
def trip_wise_income():
    start_date, end_date = date_args()
    return success(report=income_service.get_trip_wise_income_report(start_date, end_date))


@income_bp.route('/reports/monthly', methods=['GET'])
def monthly_summary():
    start_date, end_date = date_args()
    return success(report=income_service.get_monthly_income_summary(start_date, end_date))


@income_bp.route('/reports/payments', methods=['GET'])
def payment_summary():
    start_date, end_date = date_args()
    return success(report=income_service.get_payment_summary(start_date, end_date))


@income_bp.route('/reports/cash-flow', methods=['GET'])
def cash_flow():
    start_date, end_date = date_args()
    return success(report=income_service.get_cash_flow_report(start_date, end_date))


@income_bp.route('/reports/aging', methods=['GET'])
def aging_report():
    return success(report=income_service.get_aging_report())


@income_bp.route('/reports/incomes', methods=['GET'])
def income_report():
    start_date, end_date = date_args()
    return success(
        report=income_service.generate_income_report(arg_text('income_type'), arg_text('payment_status'),
                                                     start_date, end_date),
        total_income=income_service.calculate_total_income(start_date, end_date)
    )

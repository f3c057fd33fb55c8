"""
Unit tests for IncomeService
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from services.income_service import IncomeService
from exceptions import BusinessValidationError, ResourceNotFoundError
from models import Income, IncomePaymentStatus, RecurringFrequency
from timezone_utils import get_ist_today
from tests.unit.conftest import IncomeFactory


def income_payload(**overrides):
    data = {
        'income_type': 'freight',
        'income_category': 'TRANSPORT',
        'payer_name': 'Kalyani Steels',
        'amount': '50000',
        'gst_amount': '9000',
        'tds_amount': '1000',
        'income_date': get_ist_today().isoformat(),
    }
    data.update(overrides)
    return data


class TestIncomeCrud:
    """Test income creation and updates"""

    def test_create_income_computes_net_amount(self, db_session):
        """Test net = amount + GST - TDS"""
        income = IncomeService().create_income(income_payload())

        assert income.income_type == 'FREIGHT'
        assert income.net_amount == Decimal('58000')
        assert income.received_amount == Decimal('0')
        assert income.payment_status == IncomePaymentStatus.PENDING
        assert income.income_number == f"IN{get_ist_today():%Y%m}0001"

    @pytest.mark.parametrize('field, value, message', [
        ('income_type', '', 'Income type is required'),
        ('amount', '0', 'Amount must be greater than zero'),
        ('income_date', None, 'Income date is required'),
        ('gst_amount', '-1', 'GST amount cannot be negative'),
        ('tds_amount', '-1', 'TDS amount cannot be negative'),
    ])
    def test_create_income_validation(self, db_session, field, value, message):
        """Test income validation messages"""
        with pytest.raises(BusinessValidationError, match=message):
            IncomeService().create_income(income_payload(**{field: value}))

    def test_create_income_unknown_link(self, db_session):
        """Test linked records must exist"""
        with pytest.raises(ResourceNotFoundError):
            IncomeService().create_income(income_payload(builty_id=31337))

    def test_create_recurring_without_frequency(self, db_session):
        """Test recurring incomes need a frequency"""
        with pytest.raises(BusinessValidationError, match="Recurring frequency is required"):
            IncomeService().create_income(income_payload(is_recurring=True))

    def test_update_income_recalculates_net(self, db_session):
        """Test amount changes flow into the net amount"""
        income = IncomeFactory()

        updated = IncomeService().update_income(income.id, {'amount': '12000', 'tds_amount': '200'})

        assert updated.net_amount == Decimal('11800')

    @pytest.mark.parametrize('body, message', [
        ({'income_number': ''}, "Income number is required"),
        ({'amount': None}, "Amount is required"),
        ({'income_date': ''}, "Income date is required"),
    ])
    def test_update_income_rejects_blank_required_field(self, db_session, body, message):
        """Test clearing a required column is a validation error"""
        income = IncomeFactory()

        with pytest.raises(BusinessValidationError, match=message):
            IncomeService().update_income(income.id, body)

        assert db_session.get(Income, income.id).amount == Decimal('10000')

    def test_delete_received_income(self, db_session):
        """Test received incomes are kept"""
        income = IncomeFactory(payment_status=IncomePaymentStatus.RECEIVED,
                               received_amount=Decimal('10000'))
        service = IncomeService()

        assert service.can_delete_income(income.id) is False
        with pytest.raises(BusinessValidationError, match="Cannot delete received income"):
            service.delete_income(income.id)

    def test_delete_pending_income(self, db_session):
        """Test pending incomes are removed"""
        income = IncomeFactory()

        IncomeService().delete_income(income.id)

        assert db_session.get(Income, income.id) is None


class TestIncomePayments:
    """Test receipts against incomes"""

    def test_record_partial_then_full_payment(self, db_session):
        """Test PENDING to PARTIALLY_RECEIVED to RECEIVED"""
        income = IncomeFactory()
        service = IncomeService()

        partial = service.record_payment(income.id, '4000', payment_method='UPI', reference_number='UTR123')
        assert partial.payment_status == IncomePaymentStatus.PARTIALLY_RECEIVED
        assert partial.balance_amount == Decimal('6000')
        assert partial.reference_number == 'UTR123'

        full = service.record_payment(income.id, '6000')
        assert full.payment_status == IncomePaymentStatus.RECEIVED

    def test_record_payment_above_balance(self, db_session):
        """Test over-collection is refused"""
        income = IncomeFactory()

        with pytest.raises(BusinessValidationError, match="Invalid payment amount"):
            IncomeService().record_payment(income.id, '10000.01')

    def test_mark_as_received(self, db_session):
        """Test settling the whole balance once"""
        income = IncomeFactory(received_amount=Decimal('2500'),
                               payment_status=IncomePaymentStatus.PARTIALLY_RECEIVED)
        service = IncomeService()

        received = service.mark_as_received(income.id, payment_method='CHEQUE')

        assert received.received_amount == Decimal('10000')
        assert received.payment_status == IncomePaymentStatus.RECEIVED
        assert 'Amount settled: 7500' in received.remarks
        with pytest.raises(BusinessValidationError, match="Income is already received"):
            service.mark_as_received(income.id)

    def test_update_tax_details(self, db_session):
        """Test tax revision recalculates net"""
        income = IncomeFactory()

        updated = IncomeService().update_tax_details(income.id, gst_amount='1800', tds_amount='100')

        assert updated.net_amount == Decimal('11700')

    def test_update_tax_details_negative(self, db_session):
        """Test negative tax values"""
        income = IncomeFactory()

        with pytest.raises(BusinessValidationError, match="TDS amount cannot be negative"):
            IncomeService().update_tax_details(income.id, tds_amount='-5')

    def test_overdue_incomes_by_expected_date(self, db_session):
        """Test overdue means past the expected date and not received"""
        overdue = IncomeFactory(expected_date=get_ist_today() - timedelta(days=3))
        IncomeFactory(expected_date=get_ist_today() - timedelta(days=3),
                      payment_status=IncomePaymentStatus.RECEIVED, received_amount=Decimal('10000'))
        IncomeFactory(income_date=get_ist_today() - timedelta(days=90))

        page = IncomeService().get_overdue_incomes()

        assert [i.id for i in page.items] == [overdue.id]

    def test_total_pending_amount(self, db_session):
        """Test pending totals use the remaining balance"""
        IncomeFactory(received_amount=Decimal('4000'), payment_status=IncomePaymentStatus.PARTIALLY_RECEIVED)
        IncomeFactory()

        assert IncomeService().calculate_total_pending_amount() == Decimal('16000')


class TestRecurringIncome:
    """Test recurring income scheduling"""

    @pytest.mark.parametrize('start, frequency, expected', [
        (date(2024, 3, 10), 'DAILY', date(2024, 3, 11)),
        (date(2024, 3, 10), 'weekly', date(2024, 3, 17)),
        (date(2024, 1, 31), 'MONTHLY', date(2024, 2, 29)),
        (date(2023, 1, 31), 'MONTHLY', date(2023, 2, 28)),
        (date(2024, 11, 30), 'QUARTERLY', date(2025, 2, 28)),
        (date(2024, 8, 31), 'HALF_YEARLY', date(2025, 2, 28)),
        (date(2024, 2, 29), 'YEARLY', date(2025, 2, 28)),
    ])
    def test_calculate_next_recurring_date(self, start, frequency, expected):
        """Test calendar arithmetic per frequency"""
        assert IncomeService().calculate_next_recurring_date(start, frequency) == expected

    def test_create_recurring_income_sets_next_date(self, db_session):
        """Test the first recurrence is scheduled on creation"""
        income = IncomeService().create_recurring_income(
            income_payload(income_date='2024-01-31'), 'monthly')

        assert income.is_recurring is True
        assert income.recurring_frequency == RecurringFrequency.MONTHLY
        assert income.next_recurring_date == date(2024, 2, 29)

    def test_generate_recurring_incomes_catches_up(self, db_session):
        """Test one occurrence per elapsed period"""
        template = IncomeFactory(is_recurring=True, recurring_frequency=RecurringFrequency.WEEKLY,
                                 income_date=date(2024, 3, 1), next_recurring_date=date(2024, 3, 8))

        created = IncomeService().generate_recurring_incomes(date(2024, 3, 22))

        assert [income.income_date for income in created] == [
            date(2024, 3, 8), date(2024, 3, 15), date(2024, 3, 22)]
        assert all(income.is_recurring is False for income in created)
        assert all(income.net_amount == Decimal('10000') for income in created)
        assert template.next_recurring_date == date(2024, 3, 29)
        assert len({income.income_number for income in created}) == 3

    def test_generate_recurring_incomes_nothing_due(self, db_session):
        """Test templates not yet due are left alone"""
        IncomeFactory(is_recurring=True, recurring_frequency=RecurringFrequency.MONTHLY,
                      next_recurring_date=get_ist_today() + timedelta(days=5))

        assert IncomeService().generate_recurring_incomes() == []

    def test_update_recurring_schedule_off(self, db_session):
        """Test switching recurrence off clears the schedule"""
        income = IncomeFactory(is_recurring=True, recurring_frequency=RecurringFrequency.MONTHLY,
                               next_recurring_date=get_ist_today())

        updated = IncomeService().update_recurring_schedule(income.id, False)

        assert updated.is_recurring is False
        assert updated.recurring_frequency is None
        assert updated.next_recurring_date is None

    def test_update_recurring_schedule_requires_frequency(self, db_session):
        """Test switching recurrence on without a frequency"""
        income = IncomeFactory()

        with pytest.raises(BusinessValidationError, match="Recurring frequency is required"):
            IncomeService().update_recurring_schedule(income.id, True)


class TestIncomeReports:
    """Test income reporting"""

    def test_income_by_type_report(self, db_session):
        """Test grouping by income type"""
        IncomeFactory(amount=Decimal('5000'))
        IncomeFactory(amount=Decimal('7000'))
        IncomeFactory(income_type='RENTAL', amount=Decimal('3000'))

        rows = IncomeService().get_income_by_type_report()

        assert rows[0]['income_type'] == 'FREIGHT'
        assert rows[0]['income_count'] == 2
        assert rows[0]['net_amount'] == Decimal('12000')

    def test_cash_flow_report(self, db_session):
        """Test billing by income date and receipts by payment date"""
        IncomeFactory(income_date=date(2024, 1, 20), payment_date=date(2024, 2, 5),
                      received_amount=Decimal('10000'), payment_status=IncomePaymentStatus.RECEIVED)

        report = {row['month']: row for row in IncomeService().get_cash_flow_report()}

        assert report['2024-01']['billed_amount'] == Decimal('10000')
        assert report['2024-01']['received_amount'] == Decimal('0')
        assert report['2024-02']['received_amount'] == Decimal('10000')
        assert report['2024-02']['cumulative_received'] == Decimal('10000')

    def test_income_statistics(self, db_session):
        """Test status counts and totals"""
        IncomeFactory()
        IncomeFactory(is_recurring=True, recurring_frequency=RecurringFrequency.YEARLY,
                      next_recurring_date=get_ist_today() + timedelta(days=300))

        stats = IncomeService().get_income_statistics()

        assert stats['total_incomes'] == 2
        assert stats['recurring_incomes'] == 1
        assert stats['payment_status_counts']['PENDING'] == 2
        assert stats['total_pending_amount'] == Decimal('20000')

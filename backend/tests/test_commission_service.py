"""
Commission accrual and payout lifecycle tests.
"""

import pytest

from vouchernet.models import AuditEvent, CommissionStatus, TransactionStatus
from vouchernet.services import commission_service, voucher_service
from vouchernet.services.commission_service import (
    CommissionAlreadyPaid,
    CommissionCancelled,
    CommissionError,
    CommissionNotFound,
    LedgerInvariantError,
)


@pytest.mark.parametrize(
    "amount_cents,rate_bps,expected",
    [
        (10000, 1000, 1000),   # 100.00 at 10%
        (12345, 1000, 1235),   # 1234.5 rounds half up
        (12344, 1000, 1234),
        (1, 5000, 1),          # 0.5 cent rounds up
        (999, 0, 0),
        (10000, 10000, 10000),
        (5000, 1250, 625),     # 12.5%
    ],
)
def test_calculate_commission_cents(amount_cents, rate_bps, expected):
    assert commission_service.calculate_commission_cents(amount_cents, rate_bps) == expected


@pytest.mark.parametrize("rate_bps", [-1, 10001])
def test_rate_out_of_range(rate_bps):
    with pytest.raises(CommissionError):
        commission_service.calculate_commission_cents(1000, rate_bps)


@pytest.fixture
def commission(voucher, active_merchant):
    return voucher_service.recharge(voucher.id, 10000, active_merchant.id).commission


class TestCancel:

    def test_cancel_pending(self, db_session, commission):
        cancelled = commission_service.cancel_commission(commission.id, user_id=None)

        assert cancelled.status == CommissionStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert db_session.query(AuditEvent).filter_by(action="commission.cancelled").count() == 1

    def test_cancel_twice(self, commission):
        commission_service.cancel_commission(commission.id)
        with pytest.raises(CommissionCancelled):
            commission_service.cancel_commission(commission.id)

    def test_paid_commission_cannot_be_cancelled(self, commission):
        commission_service.mark_commission_paid(commission.id)
        with pytest.raises(CommissionAlreadyPaid):
            commission_service.cancel_commission(commission.id)

    def test_unknown_commission(self, db_session):
        with pytest.raises(CommissionNotFound):
            commission_service.cancel_commission(424242)


class TestPayout:

    def test_mark_paid(self, commission):
        paid = commission_service.mark_commission_paid(commission.id)
        assert paid.status == CommissionStatus.PAID
        assert paid.paid_at is not None

    def test_pay_twice(self, commission):
        commission_service.mark_commission_paid(commission.id)
        with pytest.raises(CommissionAlreadyPaid):
            commission_service.mark_commission_paid(commission.id)

    def test_cancelled_commission_cannot_be_paid(self, commission):
        commission_service.cancel_commission(commission.id)
        with pytest.raises(CommissionCancelled):
            commission_service.mark_commission_paid(commission.id)

    def test_pending_commission_of_cancelled_transaction_is_refused(self, db_session, commission):
        # Corrupt the ledger on purpose: the transaction is cancelled but
        # its commission was left PENDING
        commission.transaction.status = TransactionStatus.CANCELLED
        db_session.commit()

        with pytest.raises(LedgerInvariantError):
            commission_service.mark_commission_paid(commission.id)

        db_session.refresh(commission)
        assert commission.status == CommissionStatus.PENDING
        assert db_session.query(AuditEvent).filter_by(action="commission.paid").count() == 0


def test_summary_groups_by_status(voucher, active_merchant, franchisee):
    first = voucher_service.recharge(voucher.id, 10000, active_merchant.id).commission
    second = voucher_service.recharge(voucher.id, 5000, active_merchant.id).commission
    voucher_service.recharge(voucher.id, 2000, active_merchant.id)

    commission_service.mark_commission_paid(first.id)
    commission_service.cancel_commission(second.id)

    summary = commission_service.get_commission_summary(franchisee.id)
    assert summary[CommissionStatus.PAID] == {"count": 1, "amount_cents": 1000}
    assert summary[CommissionStatus.CANCELLED] == {"count": 1, "amount_cents": 500}
    assert summary[CommissionStatus.PENDING] == {"count": 1, "amount_cents": 200}


def test_list_filters_by_franchisee(voucher, active_merchant, franchisee, other_franchisee):
    voucher_service.recharge(voucher.id, 10000, active_merchant.id)

    assert len(commission_service.list_commissions(franchisee_id=franchisee.id)) == 1
    assert commission_service.list_commissions(franchisee_id=other_franchisee.id) == []

"""
Scripted concurrency tests for the voucher and billing ledgers.

Runs against a temporary SQLite file so every thread gets its own
connection and session. Run with pytest, or directly:
    python -m unittest tests.test_concurrency
"""
import os
import tempfile
import threading
import unittest
from datetime import timedelta

from vouchernet import create_app
from vouchernet.extensions import db
from vouchernet.models import (
    AuditEvent,
    Charge,
    ChargeStatus,
    Commission,
    Merchant,
    MerchantStatus,
    Transaction,
    Voucher,
)
from vouchernet.services import network_service, reconciliation_service, voucher_service
from vouchernet.services.voucher_service import VoucherError
from vouchernet.time_utils import utcnow, utctoday


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "BCRYPT_ROUNDS": 4,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            franchisor = network_service.create_franchisor("Concurrency Network")
            franchisee = network_service.create_franchisee(
                franchisor_id=franchisor.id,
                name="Concurrency Franchisee",
                document="11222333000181",
                email="concurrency@example.com",
                commission_rate_bps=1000,
            )
            self.franchisee_id = franchisee.id

            merchant = network_service.create_merchant(franchisee_id=franchisee.id, name="Concurrent Merchant")
            merchant.status = MerchantStatus.ACTIVE
            merchant.activated_at = utcnow()
            db.session.commit()
            self.merchant_id = merchant.id

            voucher = voucher_service.issue_voucher(franchisee.id, "CONCUR-1", "QR-CONCUR-1")
            self.voucher_id = voucher.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_concurrently(self, func, count):
        results = []
        errors = []
        lock = threading.Lock()
        barrier = threading.Barrier(count)

        def worker():
            with self.app.app_context():
                try:
                    barrier.wait()
                    result = func()
                    with lock:
                        results.append(result)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results, errors

    def test_concurrent_recharges_are_not_lost(self):
        results, errors = self._run_concurrently(
            lambda: voucher_service.recharge(self.voucher_id, 5000, self.merchant_id).transaction.id,
            2,
        )

        self.assertFalse(errors)
        self.assertEqual(len(results), 2)
        with self.app.app_context():
            voucher = db.session.get(Voucher, self.voucher_id)
            self.assertEqual(voucher.balance_cents, 10000)
            self.assertEqual(db.session.query(Transaction).count(), 2)
            commissions = db.session.query(Commission).all()
            self.assertEqual(len(commissions), 2)
            self.assertEqual(sum(c.amount_cents for c in commissions), 1000)
            self.assertEqual(db.session.query(AuditEvent).filter_by(action="voucher.recharged").count(), 2)

    def test_concurrent_redeems_capture_balance_once(self):
        with self.app.app_context():
            voucher_service.recharge(self.voucher_id, 8000, self.merchant_id)

        results, errors = self._run_concurrently(
            lambda: voucher_service.redeem(self.voucher_id, None, None, self.merchant_id).transaction.amount_cents,
            2,
        )

        self.assertEqual(results, [8000])
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], VoucherError)
        with self.app.app_context():
            voucher = db.session.get(Voucher, self.voucher_id)
            self.assertEqual(voucher.balance_cents, 0)
            self.assertEqual(db.session.query(Transaction).filter_by(kind="REDEMPTION").count(), 1)

    def test_webhook_and_poll_race_activates_once(self):
        with self.app.app_context():
            merchant = network_service.create_merchant(franchisee_id=self.franchisee_id, name="Billed Merchant")
            merchant.status = MerchantStatus.PENDING_PAYMENT
            charge = Charge(
                amount_cents=15000,
                status=ChargeStatus.PENDING,
                due_date=utctoday() + timedelta(days=30),
                gateway_charge_id="pay_race",
                merchant_id=merchant.id,
                franchisee_id=self.franchisee_id,
            )
            db.session.add(charge)
            db.session.commit()
            merchant_id = merchant.id
            charge_id = charge.id

        results, errors = self._run_concurrently(
            lambda: reconciliation_service.reconcile("pay_race", "PAYMENT_RECEIVED").outcome,
            4,
        )

        self.assertFalse(errors)
        self.assertEqual(sorted(results), ["already_final"] * 3 + ["applied"])
        with self.app.app_context():
            self.assertEqual(db.session.get(Charge, charge_id).status, ChargeStatus.PAID)
            self.assertEqual(db.session.get(Merchant, merchant_id).status, MerchantStatus.ACTIVE)
            self.assertEqual(db.session.query(AuditEvent).filter_by(action="charge.paid").count(), 1)


if __name__ == "__main__":
    unittest.main()

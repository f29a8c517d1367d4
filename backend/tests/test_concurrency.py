"""
Threaded checkout tests against a file-backed SQLite database.

Each worker gets its own app context and therefore its own session and
connection, the way concurrent requests do.
"""
import os
import tempfile
import threading
import unittest

from duka import create_app
from duka.extensions import db
from duka.models import Customer, InventoryAuditEntry, Product, Sale, User
from duka.services import sales_service
from duka.services.sales_service import CartLine, CheckoutRequest
from duka.validation import InsufficientStockError


class ConcurrentCheckoutTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            user = User(username="till1", full_name="Till One", password_hash="unused", role="seller")
            db.session.add(user)
            product = Product(
                item_code="CONCUR-1",
                description="Concurrent Product",
                quantity=10,
                buying_price_cents=400,
                regular_price_cents=1000,
                discount_price_cents=900,
            )
            db.session.add(product)
            db.session.commit()
            self.user_id = user.id
            self.product_id = product.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_concurrently(self, requests):
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(len(requests))

        def worker(req):
            with self.app.app_context():
                try:
                    barrier.wait()
                    sales_service.checkout(req)
                    with lock:
                        results.append("committed")
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(req,)) for req in requests]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def _request(self, quantity, **kwargs):
        return CheckoutRequest(
            lines=[CartLine(product_id=self.product_id, quantity=quantity)],
            payment_method=kwargs.pop("payment_method", "cash"),
            seller_id=self.user_id,
            **kwargs,
        )

    def test_two_sellers_racing_for_the_same_stock(self):
        results = self._run_concurrently([self._request(6), self._request(6)])

        committed = [r for r in results if r == "committed"]
        failures = [r for r in results if r != "committed"]
        self.assertEqual(len(committed), 1, results)
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], InsufficientStockError)

        with self.app.app_context():
            self.assertEqual(db.session.get(Product, self.product_id).quantity, 4)
            self.assertEqual(db.session.query(Sale).count(), 1)
            self.assertEqual(
                db.session.query(InventoryAuditEntry).filter_by(change_type="SALE").count(), 1
            )

    def test_quantity_never_negative_under_load(self):
        results = self._run_concurrently([self._request(3) for _ in range(5)])

        self.assertEqual(results.count("committed"), 3)
        with self.app.app_context():
            self.assertEqual(db.session.get(Product, self.product_id).quantity, 1)

    def test_first_purchases_for_one_phone_share_a_customer(self):
        results = self._run_concurrently([
            self._request(1, customer_phone="0712 345 678"),
            self._request(1, customer_phone="254712345678"),
        ])

        self.assertEqual(results, ["committed", "committed"])
        with self.app.app_context():
            customer = db.session.query(Customer).one()
            self.assertEqual(customer.total_purchases_count, 2)
            self.assertEqual(customer.total_spent_cents, 2000)


if __name__ == "__main__":
    unittest.main()

"""
Duka Checkout Load Testing with Locust

Run with:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Many tills hammer a handful of products so the guarded stock decrement is
contended. A 409 (insufficient stock) is an expected outcome, not an error;
a 500 is.

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for checkout
- Error rate < 1%
"""

import random
import time
from typing import Dict, List, Optional

from locust import HttpUser, task, between, events


# =============================================================================
# CONFIGURATION
# =============================================================================

# Test credentials (from tests/conftest.py ServerManager.initialize_db)
SELLERS = [
    {"username": "seller_one", "password": "TestPass123"},
    {"username": "seller_two", "password": "TestPass123"},
]
ADMIN = {"username": "admin_test", "password": "TestPass123"}

HOT_PRODUCTS = 3
RESTOCK_QUANTITY = 50


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    """Collect and report metrics."""

    def __init__(self):
        self.request_counts: Dict[str, int] = {}
        self.error_counts: Dict[str, int] = {}
        self.response_times: Dict[str, List[float]] = {}

    def record(self, name: str, response_time: float, success: bool):
        if name not in self.request_counts:
            self.request_counts[name] = 0
            self.error_counts[name] = 0
            self.response_times[name] = []

        self.request_counts[name] += 1
        if not success:
            self.error_counts[name] += 1
        self.response_times[name].append(response_time)

    def get_summary(self) -> Dict:
        summary = {}
        for name in self.request_counts:
            times = sorted(self.response_times[name])
            count = len(times)
            if count == 0:
                continue

            p95_idx = int(count * 0.95)
            summary[name] = {
                "count": self.request_counts[name],
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / self.request_counts[name] * 100,
                "avg_ms": sum(times) / count,
                "p95_ms": times[p95_idx] if p95_idx < count else times[-1],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class DukaUser(HttpUser):
    """Base user that authenticates on start."""
    wait_time = between(0.2, 1)
    abstract = True

    credentials: Dict = ADMIN
    token: Optional[str] = None

    def on_start(self):
        response = self.client.post("/api/auth/login", json=self.credentials, name="auth/login")
        if response.status_code == 200:
            self.token = response.json().get("token")

    def get_headers(self) -> Dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def hot_product_ids(self) -> List[int]:
        response = self.client.get(
            "/api/products",
            params={"search": "LOAD-", "per_page": HOT_PRODUCTS},
            headers=self.get_headers(),
            name="products/list",
        )
        if response.status_code != 200:
            return []
        return [p["id"] for p in response.json().get("products", [])]


class TillUser(DukaUser):
    """A seller ringing up small carts against the same few products."""
    weight = 5

    def on_start(self):
        self.credentials = random.choice(SELLERS)
        super().on_start()
        self.product_ids = self.hot_product_ids()

    @task(8)
    def checkout(self):
        if not self.product_ids:
            self.product_ids = self.hot_product_ids()
            return

        payload = {
            "items": [{"product_id": random.choice(self.product_ids), "quantity": random.randint(1, 8)}],
            "payment_method": random.choice(["cash", "mpesa"]),
            "customer_phone": f"07{random.randint(10_000_000, 99_999_999)}",
        }
        start = time.time()
        with self.client.post(
            "/api/sales", json=payload, headers=self.get_headers(), name="sales/checkout", catch_response=True
        ) as response:
            ok = response.status_code in (201, 409)
            if ok:
                response.success()
            else:
                response.failure(f"HTTP {response.status_code}")
        metrics.record("sales/checkout", (time.time() - start) * 1000, ok)

    @task(2)
    def list_sales(self):
        start = time.time()
        response = self.client.get("/api/sales", params={"limit": 50}, headers=self.get_headers(), name="sales/list")
        metrics.record("sales/list", (time.time() - start) * 1000, response.status_code == 200)

    @task(1)
    def health_check(self):
        start = time.time()
        response = self.client.get("/health", name="system/health")
        metrics.record("system/health", (time.time() - start) * 1000, response.status_code == 200)


class StockKeeper(DukaUser):
    """Admin who seeds the hot products and keeps restocking them."""
    weight = 1
    credentials = ADMIN

    def on_start(self):
        super().on_start()
        if not self.hot_product_ids():
            for n in range(HOT_PRODUCTS):
                self.client.post("/api/products", json={
                    "item_code": f"LOAD-{n}",
                    "description": f"Load test product {n}",
                    "quantity": RESTOCK_QUANTITY,
                    "buying_price_cents": 6000,
                    "regular_price_cents": 10000,
                    "discount_price_cents": 8000,
                }, headers=self.get_headers(), name="products/create")

    @task(1)
    def restock(self):
        for product_id in self.hot_product_ids():
            start = time.time()
            response = self.client.post(
                f"/api/products/{product_id}/restock",
                json={"quantity": RESTOCK_QUANTITY},
                headers=self.get_headers(),
                name="products/restock",
            )
            metrics.record("products/restock", (time.time() - start) * 1000, response.status_code == 200)

    @task(1)
    def audit_trail(self):
        start = time.time()
        response = self.client.get("/api/audit", params={"type": "SALE", "limit": 100},
                                   headers=self.get_headers(), name="audit/list")
        metrics.record("audit/list", (time.time() - start) * 1000, response.status_code == 200)


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Print summary when test stops."""
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)

    summary = metrics.get_summary()

    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    total_requests = 0
    total_errors = 0
    all_pass = True

    for name, stats in sorted(summary.items()):
        total_requests += stats["count"]
        total_errors += stats["errors"]

        p95_threshold = 1000 if "checkout" in name or "restock" in name else 500
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1
        if not passed:
            all_pass = False

        status = "PASS" if passed else "FAIL"
        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% {stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{status}]")

    print("-" * 80)
    print(f"{'TOTAL':<30} {total_requests:>8} {total_errors:>8} {total_errors/max(total_requests,1)*100:>7.2f}%")
    print("=" * 80)
    print("\n[PASS] All endpoints within thresholds" if all_pass else "\n[FAIL] Some endpoints exceeded thresholds")
    print("=" * 80)

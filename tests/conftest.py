# Duka Live-Server Test Suite - Shared Configuration and Fixtures
#
# This module provides:
# - Test database provisioning (ephemeral SQLite per test run)
# - A Flask server subprocess on TEST_BACKEND_URL
# - Authentication helpers
# - Failure message formatting

import os
import sys
import time
import tempfile
import subprocess
import shutil
from pathlib import Path
from typing import Generator, Optional, Dict, Any
from dataclasses import dataclass

import pytest
import httpx

# Add backend to path for imports
REPO_ROOT = Path(__file__).parent.parent
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(BACKEND_DIR))

TEST_PASSWORD = "TestPass123"


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class TestConfig:
    """Test configuration with environment variable overrides."""
    backend_base_url: str = os.environ.get("TEST_BACKEND_URL", "http://127.0.0.1:5001")

    # Timeouts
    request_timeout: float = float(os.environ.get("TEST_REQUEST_TIMEOUT", "30"))
    server_startup_timeout: float = float(os.environ.get("TEST_SERVER_STARTUP_TIMEOUT", "30"))


# =============================================================================
# FAILURE MESSAGE HELPER
# =============================================================================

class TestFailure(Exception):
    """
    Custom exception with detailed, human-readable failure messages.

    Structure:
    1. Scenario: What was being tested
    2. Expected: What should have happened
    3. Actual: What actually happened
    4. Likely Cause: Most probable reason for failure
    5. Code Location: Where to look in the codebase
    """

    def __init__(
        self,
        scenario: str,
        expected: str,
        actual: str,
        likely_cause: str,
        code_location: str,
        response: Optional[httpx.Response] = None,
        extra_context: Optional[Dict[str, Any]] = None
    ):
        self.scenario = scenario
        self.expected = expected
        self.actual = actual
        self.likely_cause = likely_cause
        self.code_location = code_location
        self.response = response
        self.extra_context = extra_context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = [
            "",
            "=" * 80,
            "TEST FAILURE DETAILS",
            "=" * 80,
            f"SCENARIO: {self.scenario}",
            "-" * 80,
            f"EXPECTED: {self.expected}",
            f"ACTUAL: {self.actual}",
            "-" * 80,
            f"LIKELY CAUSE: {self.likely_cause}",
            f"CODE LOCATION: {self.code_location}",
        ]

        if self.response is not None:
            lines.extend([
                "-" * 80,
                f"HTTP STATUS: {self.response.status_code}",
                f"RESPONSE BODY: {self.response.text[:1000]}",
            ])

        if self.extra_context:
            lines.append("-" * 80)
            lines.append("EXTRA CONTEXT:")
            for key, value in self.extra_context.items():
                lines.append(f"  {key}: {value}")

        lines.append("=" * 80)
        return "\n".join(lines)


def assert_response(
    response: httpx.Response,
    expected_status: int,
    scenario: str,
    code_location: str,
):
    """Raises TestFailure with a detailed message when the status differs."""
    if response.status_code != expected_status:
        raise TestFailure(
            scenario=scenario,
            expected=f"HTTP {expected_status}",
            actual=f"HTTP {response.status_code}",
            likely_cause=_infer_cause(response),
            code_location=code_location,
            response=response
        )


def _infer_cause(response: httpx.Response) -> str:
    if response.status_code == 401:
        return "Authentication failed - token invalid/missing or session expired"
    elif response.status_code == 403:
        return "Admin access required for this action"
    elif response.status_code == 404:
        return "Resource not found - wrong product, customer, sale or receipt"
    elif response.status_code == 400:
        return "Invalid request - missing required field or validation failed"
    elif response.status_code == 409:
        return "Conflict - insufficient stock, duplicate item code or receipt number"
    elif response.status_code == 500:
        return "Server error - check backend logs for stack trace"
    else:
        return f"Unexpected status code {response.status_code}"


# =============================================================================
# HTTP CLIENT WITH AUTH HELPERS
# =============================================================================

class APIClient:
    """HTTP client wrapper with authentication and convenience methods."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(timeout=timeout)
        self.token: Optional[str] = None
        self.current_user: Optional[Dict] = None

    def _headers(self) -> Dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.get(f"{self.base_url}{path}", headers=self._headers(), params=params, **kwargs)

    def post(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.post(f"{self.base_url}{path}", headers=self._headers(), json=json, **kwargs)

    def put(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.put(f"{self.base_url}{path}", headers=self._headers(), json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> httpx.Response:
        return self.client.delete(f"{self.base_url}{path}", headers=self._headers(), **kwargs)

    def login(self, username: str, password: str = TEST_PASSWORD) -> bool:
        """Authenticate and store token."""
        response = self.post("/api/auth/login", json={"username": username, "password": password})
        if response.status_code == 200:
            data = response.json()
            self.token = data.get("token")
            self.current_user = data.get("user")
            return True
        return False

    def logout(self) -> bool:
        if not self.token:
            return True
        response = self.post("/api/auth/logout")
        if response.status_code == 200:
            self.token = None
            self.current_user = None
            return True
        return False

    def close(self):
        self.client.close()


# =============================================================================
# SERVER MANAGEMENT
# =============================================================================

class ServerManager:
    """Manages Flask backend server lifecycle for tests."""

    def __init__(self, config: TestConfig):
        self.config = config
        self.process: Optional[subprocess.Popen] = None
        self.db_file: Optional[Path] = None

    def start(self) -> bool:
        """Start the Flask server with a throwaway database."""
        temp_dir = tempfile.mkdtemp(prefix="duka_test_")
        self.db_file = Path(temp_dir) / "test_duka.sqlite3"
        self.initialize_db()

        env = os.environ.copy()
        env["DATABASE_URL"] = f"sqlite:///{self.db_file}"
        env["FLASK_APP"] = "wsgi.py"

        self.process = subprocess.Popen(
            [sys.executable, "-m", "flask", "run", "--port", "5001"],
            cwd=str(BACKEND_DIR),
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        return self._wait_for_server()

    def _wait_for_server(self) -> bool:
        start_time = time.time()
        while time.time() - start_time < self.config.server_startup_timeout:
            try:
                response = httpx.get(f"{self.config.backend_base_url}/health", timeout=2.0)
                if response.status_code in (200, 503):  # 503 means degraded but running
                    return True
            except (httpx.ConnectError, httpx.TimeoutException):
                pass
            time.sleep(0.5)
        return False

    def stop(self):
        if self.process:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
            self.process = None

        if self.db_file and self.db_file.parent.exists():
            shutil.rmtree(self.db_file.parent, ignore_errors=True)

    def initialize_db(self):
        """Create the schema and seed users directly through the app."""
        from duka import create_app
        from duka.extensions import db
        from duka.models.auth import ROLE_ADMIN, ROLE_SELLER
        from duka.services.auth_service import create_user

        app = create_app({"SQLALCHEMY_DATABASE_URI": f"sqlite:///{self.db_file}"})
        with app.app_context():
            db.create_all()
            create_user("admin_test", TEST_PASSWORD, full_name="Admin Test", role=ROLE_ADMIN, rounds=4)
            create_user("seller_one", TEST_PASSWORD, full_name="Seller One", role=ROLE_SELLER, rounds=4)
            create_user("seller_two", TEST_PASSWORD, full_name="Seller Two", role=ROLE_SELLER, rounds=4)
            db.session.remove()
            db.engine.dispose()


# =============================================================================
# TEST DATA FACTORY
# =============================================================================

class TestDataFactory:
    """Factory for creating test data via API calls."""

    def __init__(self, client: APIClient):
        self.client = client
        self._counter = 0

    def create_product(self, *, quantity: int = 10, regular: int = 10000, discount: int = 8000,
                       buying: int = 6000, threshold: int = 7) -> Dict:
        self._counter += 1
        code = f"LIVE-{int(time.time() * 1000)}-{self._counter}"
        response = self.client.post("/api/products", json={
            "item_code": code,
            "description": f"Live test product {self._counter}",
            "quantity": quantity,
            "buying_price_cents": buying,
            "regular_price_cents": regular,
            "discount_price_cents": discount,
            "discount_threshold": threshold,
        })
        assert_response(response, 201, "Create test product", "backend/duka/routes/products.py:create_product_route")
        return response.json()["product"]


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    return TestConfig()


@pytest.fixture(scope="session")
def server_manager(test_config: TestConfig) -> Generator[ServerManager, None, None]:
    """Server is started once per test session."""
    manager = ServerManager(test_config)

    # For CI/external server mode, don't manage server
    if os.environ.get("TEST_EXTERNAL_SERVER"):
        yield manager
    else:
        if not manager.start():
            pytest.fail("Failed to start test server")
        yield manager
        manager.stop()


@pytest.fixture
def client(test_config: TestConfig, server_manager: ServerManager) -> Generator[APIClient, None, None]:
    api = APIClient(test_config.backend_base_url, timeout=test_config.request_timeout)
    yield api
    api.close()


@pytest.fixture
def admin_client(client: APIClient) -> APIClient:
    if not client.login("admin_test"):
        pytest.fail("Failed to login as admin_test")
    return client


@pytest.fixture
def seller_client(test_config: TestConfig, server_manager: ServerManager) -> Generator[APIClient, None, None]:
    api = APIClient(test_config.backend_base_url, timeout=test_config.request_timeout)
    if not api.login("seller_one"):
        pytest.fail("Failed to login as seller_one")
    yield api
    api.close()


@pytest.fixture
def factory(admin_client: APIClient) -> TestDataFactory:
    return TestDataFactory(admin_client)


# =============================================================================
# TEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "smoke: Quick smoke tests for critical paths")
    config.addinivalue_line("markers", "sales: Checkout tests")
    config.addinivalue_line("markers", "concurrent: Concurrency tests")
    config.addinivalue_line("markers", "stress: Load/stress tests")

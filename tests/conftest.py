import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from common import secrets as secrets_module


def pytest_configure(config):
    """If pytest-socket is installed, disable sockets and allow localhost if supported."""
    try:
        import pytest_socket

        pytest_socket.disable_socket()
        if hasattr(pytest_socket, "allow_hosts"):
            pytest_socket.allow_hosts("127.0.0.1", "localhost")
    except ImportError:
        pass


# ---------------------------------------------------------------------------
# Default auth tokens for API tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _secrets() -> None:
    """Provide default secrets for tests via the secrets manager."""

    secrets_module.secrets.set_override(
        {
            "API_TOKENS": {
                "owner": "owner-token",
                "governor": "governor-token",
                "keeper": "keeper-token",
                "guardian": "guardian-token",
                "tester": "testtoken",
            },
            "JWT_SECRET": "testsecret",
        }
    )
    yield
    secrets_module.secrets.set_override({})


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def audit_engine():
    """In-memory SQLite shared across threads (deliveries run in workers)."""
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    yield engine
    engine.dispose()

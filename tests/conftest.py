import pytest

from medshare import auth
from medshare.ledger import Ledger
from helpers import FakeClock, TEST_ACCOUNTS, escrow_authority


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    return Ledger(clock=clock, emergency_escrow=escrow_authority(), authority=TEST_ACCOUNTS["authority"])


@pytest.fixture(autouse=True)
def clear_sessions():
    yield
    auth.authenticated_sessions.clear()
    auth.auth_challenges.clear()

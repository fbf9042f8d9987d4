import pytest

from app.clock import ManualClock
from app.pricing import PricingRules
from app.sessions import CafeSessionManager
from app.storage import InMemoryStorage

T0 = 1_700_000_000_000  # 2023-11-14T22:13:20Z


class FakeChargeClient:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.created = []
        self.confirmed = []

    async def create_charge(self, amount, user_id, session_id):
        self.created.append((amount, user_id, session_id))
        n = len(self.created)
        return {"reference": f"ch_{n}", "client_secret": f"ch_{n}_secret"}

    async def confirm_charge(self, reference):
        self.confirmed.append(reference)
        return self.succeed


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def rules():
    return PricingRules(base_fee=500, included_seconds=3600, per_minute_rate=8, daily_cap=2000,
                        minimum_session_seconds=900)


@pytest.fixture
def charge_client():
    return FakeChargeClient()


@pytest.fixture
async def storage():
    storage = InMemoryStorage()
    await storage.add_menu_item("Green Tea", "drinks", 100)
    await storage.add_menu_item("Cheesecake", "food", 200)
    await storage.add_menu_item("Seasonal Parfait", "food", 900, available=False)
    return storage


@pytest.fixture
def manager(storage, clock, rules, charge_client):
    return CafeSessionManager(storage, clock, rules, charge_client)

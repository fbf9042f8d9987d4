import httpx
import logging

from app import config
from app.errors import ChargeError


class ChargeClient:
    """
    Talks to the card-charge service. Charge internals (payment intents,
    customers, cards) live behind that service and are not modelled here.
    """

    def __init__(self, base_url: str = None, timeout: float = None, transport: httpx.AsyncBaseTransport = None):
        base_url = base_url or config.CHARGE_SERVICE_URL
        if not base_url:
            raise RuntimeError("CHARGE_SERVICE_URL is not set")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or config.CHARGE_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def create_charge(self, amount: int, user_id: int, session_id: int) -> dict:
        """Returns {"reference": ..., "client_secret": ...}."""
        try:
            async with self._client() as client:
                response = await client.post(
                    "/charges",
                    json={"amount": amount, "currency": "jpy", "user_id": user_id, "session_id": session_id},
                )
        except httpx.RequestError as e:
            logging.error(f"Failed to reach charge service: {str(e)}")
            raise ChargeError("Charge service unavailable")

        if response.status_code not in (200, 201):
            logging.error(f"Charge service refused charge for session {session_id}: {response.status_code}")
            raise ChargeError(f"Charge service returned {response.status_code}")

        data = response.json()
        return {"reference": data.get("reference"), "client_secret": data.get("client_secret")}

    async def confirm_charge(self, reference: str) -> bool:
        try:
            async with self._client() as client:
                response = await client.get(f"/charges/{reference}")
        except httpx.RequestError as e:
            logging.error(f"Failed to reach charge service: {str(e)}")
            raise ChargeError("Charge service unavailable")

        if response.status_code == 404:
            return False
        if response.status_code != 200:
            raise ChargeError(f"Charge service returned {response.status_code}")
        return response.json().get("status") == "succeeded"

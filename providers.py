import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from errors import BusinessError, TransportError

logger = logging.getLogger(__name__)


class LicenseProvider(ABC):
    """Upstream system of record for license validity."""

    @abstractmethod
    async def validate(self, license_key: str, variant_id: str) -> str:
        """
        Return the upstream status string for a key.

        Raises TransportError when the provider cannot be reached and
        BusinessError when it rejects the request.
        """


class LemonSqueezyProvider(LicenseProvider):
    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.lemonsqueezy.com/v1/licenses/",
        timeout: int = 15,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self.transport = transport

    async def validate(self, license_key: str, variant_id: str) -> str:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.api_url}validate",
                    json={
                        "data": {
                            "type": "licenses",
                            "attributes": {
                                "license_key": license_key,
                                "variant_id": variant_id
                            }
                        }
                    },
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Accept": "application/vnd.api+json",
                        "Content-Type": "application/vnd.api+json"
                    }
                )
        except httpx.HTTPError as e:
            logger.warning("Lemon Squeezy request failed: %s", e)
            raise TransportError("Error connecting to license server.") from e

        body = self._json_body(response)

        if response.status_code != 200:
            message = "License validation failed."
            errors = body.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                message = errors[0].get("detail") or message
            raise BusinessError(message)

        data = body.get("data")
        attributes = data.get("attributes") if isinstance(data, dict) else None
        return (attributes or {}).get("status") or "invalid"

    @staticmethod
    def _json_body(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

"""Eight Sleep cloud client covering the four calls the bridge needs.

Authenticates with an access token issued elsewhere; logging in and refreshing
tokens are not handled here.
"""

from __future__ import annotations

import json
from typing import cast

import aiohttp
from pydantic import ValidationError

from eightsleep_bridge.backend import DeviceWithUsers, UserTemperature
from eightsleep_bridge.const import EIGHTSLEEP_API_BASE, EIGHTSLEEP_API_TIMEOUT
from eightsleep_bridge.exceptions import BackendAPIError
from eightsleep_bridge.instrumentation import timed_async
from eightsleep_bridge.logging_abstraction import get_logger

logger = get_logger(__name__)

DEVICE_FILTER = "leftUserId,rightUserId,awaySides"


class EightSleepCloudAPI:
    """Implements :class:`~eightsleep_bridge.backend.BackendAPI` over aiohttp.

    Every failure, from transport errors to non-2xx replies and unparseable
    bodies, surfaces as :class:`BackendAPIError`. Nothing is retried.
    """

    lp: str = "CloudAPI:"

    def __init__(
        self,
        access_token: str,
        api_base: str = EIGHTSLEEP_API_BASE,
        api_timeout: float = EIGHTSLEEP_API_TIMEOUT,
        http_session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self.api_timeout = api_timeout
        self.http_session = http_session

    async def close(self) -> None:
        """Close the aiohttp session if it exists and is not closed."""
        lp = f"{self.lp}close:"
        if self.http_session and not self.http_session.closed:
            logger.debug("%s Closing aiohttp ClientSession", lp)
            await self.http_session.close()
        self.http_session = None

    async def _check_session(self) -> aiohttp.ClientSession:
        if not self.http_session or self.http_session.closed:
            logger.debug("%s_check_session: Creating new aiohttp ClientSession", self.lp)
            self.http_session = aiohttp.ClientSession()
        return self.http_session

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        payload: dict[str, object] | None = None,
    ) -> dict[str, object]:
        lp = f"{self.lp}{method} {path}:"
        sesh = await self._check_session()
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        }
        try:
            async with sesh.request(
                method,
                f"{self.api_base}/{path}",
                headers=headers,
                params=params,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.api_timeout),
            ) as r:
                status = r.status
                body = await r.text()
        except aiohttp.ClientError as e:
            msg = f"{method} {path} failed: {e}"
            raise BackendAPIError(msg) from e
        except TimeoutError as e:
            msg = f"{method} {path} timed out after {self.api_timeout}s"
            raise BackendAPIError(msg) from e

        if status >= 400:
            logger.debug("%s HTTP %s: %s", lp, status, body)
            raise BackendAPIError(f"{method} {path} failed", status=status, body=body)
        if not body.strip():
            return {}
        try:
            data: object = json.loads(body)
        except json.JSONDecodeError as e:
            msg = f"{method} {path} returned invalid JSON"
            raise BackendAPIError(msg) from e
        if not isinstance(data, dict):
            msg = f"{method} {path} returned {type(data).__name__}, expected object"
            raise BackendAPIError(msg)
        return cast("dict[str, object]", data)

    @timed_async("backend.fetch_device_with_users")
    async def fetch_device_with_users(self, device_id: str) -> DeviceWithUsers:
        data = await self._request("GET", f"devices/{device_id}", params={"filter": DEVICE_FILTER})
        result = data.get("result", data)
        if not isinstance(result, dict):
            msg = f"device {device_id}: unexpected result payload"
            raise BackendAPIError(msg)
        result = dict(result)
        if "id" not in result and "deviceId" not in result:
            result["id"] = device_id
        try:
            return DeviceWithUsers.model_validate(result)
        except ValidationError as e:
            msg = f"device {device_id}: {e}"
            raise BackendAPIError(msg) from e

    @timed_async("backend.fetch_user_temperature")
    async def fetch_user_temperature(self, user_id: str) -> UserTemperature:
        data = await self._request("GET", f"users/{user_id}/temperature")
        try:
            return UserTemperature.model_validate(data)
        except ValidationError as e:
            msg = f"user {user_id} temperature: {e}"
            raise BackendAPIError(msg) from e

    @timed_async("backend.set_user_temperature")
    async def set_user_temperature(self, user_id: str, level: int) -> None:
        _ = await self._request("PUT", f"users/{user_id}/temperature", payload={"currentLevel": level})

    @timed_async("backend.set_user_power")
    async def set_user_power(self, user_id: str, on: bool) -> None:
        _ = await self._request("POST", f"users/{user_id}/devices/power", payload={"on": on})

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from nook.core.config import settings
from nook.core.exceptions import ExternalServiceError
from nook.core.logging import logger, mdm_call_logger

@dataclass(frozen=True)
class GroupLink:
    profile_ref: str
    link_id: str

@dataclass(frozen=True)
class EnrollmentLink:
    """A SimpleMDM enrollment that drops newly enrolled devices into one device group."""
    enrollment_ref: str
    url: str

def _link_id(group_ref: str, profile_ref: str) -> str:
    return f"{group_ref}:{profile_ref}"

def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None

class SimpleMDMService:
    """
    Thin async client over the SimpleMDM REST API.

    Every failure surfaces as ExternalServiceError with a code and a retryable
    flag. The client never retries on its own; callers decide.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.api_key, ""),
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            logger.info("SimpleMDM client closed")
        self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        ok_statuses: tuple = (),
        already_ok: bool = False,
    ) -> Optional[httpx.Response]:
        """
        Send one request and classify the outcome.

        Returns None when the response status is listed in `ok_statuses`, or when
        `already_ok` is set and a 422 says the relationship already exists.
        """
        started = time.monotonic()
        try:
            response = await self._get_client().request(method, path, json=json)
        except httpx.TimeoutException as e:
            mdm_call_logger.warning(f"{method} {path} -> timeout after {time.monotonic() - started:.2f}s")
            logger.error(f"SimpleMDM {method} {path} timed out: {e}")
            raise ExternalServiceError(f"SimpleMDM request timed out: {method} {path}", code="timeout", retryable=True)
        except httpx.TransportError as e:
            mdm_call_logger.warning(f"{method} {path} -> {type(e).__name__}")
            logger.error(f"SimpleMDM {method} {path} transport failure: {e}")
            raise ExternalServiceError(f"SimpleMDM unreachable: {e}", code="transport", retryable=True)

        status = response.status_code
        mdm_call_logger.info(f"{method} {path} -> {status} in {time.monotonic() - started:.2f}s")
        if status in ok_statuses:
            logger.info(f"SimpleMDM {method} {path} returned {status}, treated as success")
            return None
        if already_ok and status == 422 and "already" in response.text.lower():
            logger.info(f"SimpleMDM {method} {path}: relationship already exists")
            return None
        if status < 400:
            return response

        body = response.text[:500]
        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            logger.error(f"SimpleMDM rate limited on {method} {path} (retry after {retry_after})")
            raise ExternalServiceError(
                "SimpleMDM rate limit exceeded",
                code="rate_limited",
                retryable=True,
                status_code=status,
                retry_after=retry_after,
            )
        if status >= 500:
            logger.error(f"SimpleMDM server error {status} on {method} {path}: {body}")
            raise ExternalServiceError(
                f"SimpleMDM server error ({status})", code="server_error", retryable=True, status_code=status
            )
        logger.error(f"SimpleMDM rejected {method} {path} with {status}: {body}")
        raise ExternalServiceError(
            f"SimpleMDM rejected the request ({status}): {body}",
            code="client_error",
            retryable=False,
            status_code=status,
        )

    @staticmethod
    def _data_id(response: httpx.Response, what: str) -> str:
        try:
            data_id = response.json()["data"]["id"]
        except (ValueError, KeyError, TypeError):
            data_id = None
        if data_id is None or data_id == "":
            logger.error(f"SimpleMDM returned no id for {what}: {response.text[:200]}")
            raise ExternalServiceError(
                f"SimpleMDM response for {what} is missing data.id",
                code="invalid_response",
                retryable=False,
                status_code=response.status_code,
            )
        return str(data_id)

    # Device groups

    async def create_group(self, name: str) -> str:
        response = await self._request("POST", "/device_groups", json={"name": name, "auto_deploy_enabled": True})
        group_ref = self._data_id(response, "device group")
        logger.info(f"Created SimpleMDM device group {group_ref} for '{name}'")
        return group_ref

    async def rename_group(self, group_ref: str, name: str) -> None:
        await self._request("PATCH", f"/device_groups/{group_ref}", json={"name": name})

    async def delete_group(self, group_ref: str) -> None:
        await self._request("DELETE", f"/device_groups/{group_ref}", ok_statuses=(404,))
        logger.info(f"Deleted SimpleMDM device group {group_ref}")

    async def list_group_links(self, group_ref: str) -> List[GroupLink]:
        """Profiles currently attached to a device group."""
        response = await self._request("GET", f"/device_groups/{group_ref}")
        try:
            data = response.json()["data"]
            entries = ((data.get("relationships") or {}).get("profiles") or {}).get("data") or []
        except (ValueError, KeyError, TypeError, AttributeError):
            raise ExternalServiceError(
                f"SimpleMDM response for device group {group_ref} is malformed",
                code="invalid_response",
                retryable=False,
                status_code=response.status_code,
            )
        links = []
        for entry in entries:
            profile_ref = str(entry.get("id"))
            links.append(GroupLink(profile_ref=profile_ref, link_id=_link_id(group_ref, profile_ref)))
        return links

    # Profiles

    async def create_profile(self, name: str, content: bytes) -> str:
        response = await self._request(
            "POST", "/profiles", json={"name": name, "mobileconfig": content.decode("utf-8")}
        )
        profile_ref = self._data_id(response, "profile")
        logger.info(f"Created SimpleMDM profile {profile_ref} '{name}'")
        return profile_ref

    async def update_profile(self, profile_ref: str, name: str, content: bytes) -> None:
        await self._request(
            "PATCH", f"/profiles/{profile_ref}", json={"name": name, "mobileconfig": content.decode("utf-8")}
        )

    async def delete_profile(self, profile_ref: str) -> None:
        await self._request("DELETE", f"/profiles/{profile_ref}", ok_statuses=(404,))
        logger.info(f"Deleted SimpleMDM profile {profile_ref}")

    async def link_profile_to_group(self, profile_ref: str, group_ref: str) -> str:
        await self._request(
            "POST",
            f"/profiles/{profile_ref}/relationships/device_groups",
            json={"device_group_id": group_ref},
            ok_statuses=(409,),
            already_ok=True,
        )
        return _link_id(group_ref, profile_ref)

    async def unlink_profile_from_group(self, profile_ref: str, group_ref: str) -> None:
        await self._request(
            "DELETE", f"/profiles/{profile_ref}/relationships/device_groups/{group_ref}", ok_statuses=(404,)
        )

    async def link_profile_to_device(self, profile_ref: str, device_ref: str) -> None:
        await self._request(
            "POST",
            f"/profiles/{profile_ref}/relationships/devices",
            json={"device_id": device_ref},
            ok_statuses=(409,),
            already_ok=True,
        )

    async def unlink_profile_from_device(self, profile_ref: str, device_ref: str) -> None:
        await self._request(
            "DELETE", f"/profiles/{profile_ref}/relationships/devices/{device_ref}", ok_statuses=(404,)
        )

    # Enrollments

    async def create_enrollment(self, group_ref: str) -> EnrollmentLink:
        response = await self._request("POST", "/enrollments", json={"device_group_id": group_ref})
        enrollment_ref = self._data_id(response, "enrollment")
        try:
            url = response.json()["data"]["attributes"]["url"]
        except (ValueError, KeyError, TypeError):
            url = None
        if not url:
            raise ExternalServiceError(
                f"SimpleMDM enrollment {enrollment_ref} has no url",
                code="invalid_response",
                retryable=False,
                status_code=response.status_code,
            )
        logger.info(f"Created SimpleMDM enrollment {enrollment_ref} for group {group_ref}")
        return EnrollmentLink(enrollment_ref=enrollment_ref, url=url)

    async def delete_enrollment(self, enrollment_ref: str) -> None:
        await self._request("DELETE", f"/enrollments/{enrollment_ref}", ok_statuses=(404,))

    # Devices

    async def assign_device_to_group(self, device_ref: str, group_ref: str) -> None:
        await self._request(
            "POST",
            f"/devices/{device_ref}/relationships/device_groups",
            json={"device_group_id": group_ref},
            ok_statuses=(409,),
            already_ok=True,
        )
        logger.info(f"Device {device_ref} joined device group {group_ref}")

    async def remove_device_from_group(self, device_ref: str, group_ref: str) -> None:
        await self._request(
            "DELETE", f"/devices/{device_ref}/relationships/device_groups/{group_ref}", ok_statuses=(404,)
        )
        logger.info(f"Device {device_ref} left device group {group_ref}")

    async def lock_device(self, device_ref: str, message: str) -> None:
        await self._request("POST", f"/devices/{device_ref}/lock", json={"message": message})
        logger.info(f"Sent lock command to device {device_ref}")

    async def delete_device(self, device_ref: str) -> None:
        await self._request("DELETE", f"/devices/{device_ref}", ok_statuses=(404,))
        logger.info(f"Unenrolled SimpleMDM device {device_ref}")

simplemdm_service = SimpleMDMService(
    api_key=settings.SIMPLEMDM_API_KEY,
    base_url=settings.SIMPLEMDM_BASE_URL,
    timeout=settings.SIMPLEMDM_TIMEOUT_SECONDS,
)

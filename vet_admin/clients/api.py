"""HTTP client for the clinic backend API."""

import logging
from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from vet_admin.transitions.errors import (
    RecordLookupError,
    RecordNotFoundError,
    StoreError,
)
from vet_admin.transitions.models import (
    Appointment,
    AppointmentStatus,
    Identifier,
    MedicalHistoryPayload,
    MedicalHistoryRecord,
    StatusValue,
)

logger = logging.getLogger(__name__)

_RETRYABLE = (httpx.TimeoutException, httpx.ConnectError)
_RECORD_LIST_KEYS = ("records", "histories", "items", "data")
_RECORD_KEYS = ("history", "record", "data")


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        for key in ("message", "Message", "error", "title"):
            if body.get(key):
                return str(body[key])
    return str(body)[:200]


def _extract_records(data: Any) -> list[dict[str, Any]]:
    """Pull the record list out of the several envelopes the API uses."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        lowered = {k[:1].lower() + k[1:]: v for k, v in data.items()}
        for key in _RECORD_LIST_KEYS:
            value = lowered.get(key)
            if isinstance(value, list):
                return value
    return []


def _unwrap_record(data: Any, fallback: dict[str, Any]) -> dict[str, Any]:
    """Merge a (possibly partial or wrapped) record response over *fallback*."""
    if isinstance(data, dict):
        lowered = {k[:1].lower() + k[1:]: v for k, v in data.items()}
        if "historyId" not in lowered:
            for key in _RECORD_KEYS:
                if isinstance(lowered.get(key), dict):
                    lowered = {k[:1].lower() + k[1:]: v for k, v in lowered[key].items()}
                    break
        return {**fallback, **lowered}
    return dict(fallback)


class ClinicApiClient:
    """Appointment and medical-history stores backed by the clinic REST API.

    Idempotent reads are retried on timeouts and connection failures;
    writes are sent once.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        retry_wait: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize API client.

        Args:
            base_url: API root, e.g. http://localhost:5074/api
            token: Bearer token for the admin endpoints
            timeout: Request timeout in seconds
            max_retries: Attempts for reads that time out
            retry_wait: Base backoff in seconds between read attempts
            transport: Optional transport override (tests)
        """
        self.base_url = base_url.rstrip("/") + "/"
        self.max_retries = max(1, max_retries)
        self.retry_wait = retry_wait

        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def __aenter__(self) -> "ClinicApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise StoreError(f"Clinic API unreachable ({method} {path}): {e}") from e

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> httpx.Response:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(_RETRYABLE),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_wait, max=10),
            reraise=True,
        ):
            with attempt:
                try:
                    return await self._client.get(path, params=params)
                except _RETRYABLE as e:
                    logger.warning(f"GET {path} attempt {attempt.retry_state.attempt_number} failed: {e}")
                    raise
        raise StoreError(f"GET {path} was not attempted")

    async def _get_or_raise(self, path: str, params: Optional[dict[str, Any]] = None) -> httpx.Response:
        try:
            return await self._get(path, params=params)
        except httpx.HTTPError as e:
            logger.error(f"GET {path} failed: {e}")
            raise StoreError(f"Clinic API unreachable (GET {path}): {e}") from e

    @staticmethod
    def _check(response: httpx.Response, not_found: type[StoreError] = StoreError) -> None:
        if response.is_success:
            return
        request = response.request
        message = (
            f"{request.method} {request.url.path} failed with "
            f"{response.status_code}: {_error_detail(response)}"
        )
        if response.status_code == 404:
            raise not_found(message, status_code=404)
        raise StoreError(message, status_code=response.status_code)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    async def get_appointment(self, appointment_id: Identifier) -> Appointment:
        """Fetch one appointment for the admin console."""
        response = await self._get_or_raise(f"Appointment/admin/{appointment_id}")
        self._check(response)
        data = self._json(response)
        if isinstance(data, dict) and isinstance(data.get("appointment"), dict):
            data = data["appointment"]
        return Appointment.model_validate(data)

    async def set_status(self, appointment_id: Identifier, status: StatusValue) -> None:
        """Persist a new appointment status."""
        coerced = AppointmentStatus.coerce(status)
        value = int(coerced) if coerced is not None else status
        response = await self._send(
            "PUT", f"Appointment/admin/{appointment_id}/status", json={"status": value}
        )
        self._check(response)
        logger.debug(f"Appointment {appointment_id} status set to {value}")

    # ------------------------------------------------------------------
    # Medical history
    # ------------------------------------------------------------------

    async def list_by_pet(
        self,
        pet_id: Identifier,
        page: int = 1,
        limit: int = 50,
    ) -> list[MedicalHistoryRecord]:
        """List a pet's medical-history records in API order (newest first).

        Raises:
            RecordLookupError: If the records could not be fetched
        """
        try:
            response = await self._get_or_raise(
                f"MedicalHistory/pet/{pet_id}", params={"page": page, "limit": limit}
            )
            if response.status_code == 404:
                return []
            self._check(response)
        except StoreError as e:
            raise RecordLookupError(str(e), status_code=e.status_code) from e

        return [MedicalHistoryRecord.model_validate(r) for r in _extract_records(self._json(response))]

    async def create(self, payload: MedicalHistoryPayload) -> MedicalHistoryRecord:
        body = payload.to_wire()
        response = await self._send("POST", "MedicalHistory", json=body)
        self._check(response)
        return MedicalHistoryRecord.model_validate(_unwrap_record(self._json(response), body))

    async def update(
        self,
        history_id: Identifier,
        payload: MedicalHistoryPayload,
    ) -> MedicalHistoryRecord:
        """Replace a record's contents.

        Raises:
            RecordNotFoundError: If the record no longer exists
        """
        body = payload.to_wire()
        response = await self._send("PUT", f"MedicalHistory/{history_id}", json=body)
        self._check(response, not_found=RecordNotFoundError)
        return MedicalHistoryRecord.model_validate(
            _unwrap_record(self._json(response), {**body, "historyId": history_id})
        )

    async def delete(self, history_id: Identifier) -> None:
        """Delete a record.

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        response = await self._send("DELETE", f"MedicalHistory/{history_id}")
        self._check(response, not_found=RecordNotFoundError)


def create_client_from_settings() -> ClinicApiClient:
    """Create an API client from application settings."""
    from vet_admin.config import get_settings

    settings = get_settings()
    return ClinicApiClient(
        base_url=settings.api_base_url,
        token=settings.api_token or None,
        timeout=settings.api_timeout,
        max_retries=settings.api_max_retries,
    )

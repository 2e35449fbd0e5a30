"""incident.io REST client wrapper with pacing and retries."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterator

import httpx

from retro_importer.core.config import Settings, settings as default_settings
from retro_importer.core.exceptions import (
    IncidentIoApiError,
    IncidentIoConnectionError,
    IncidentIoRateLimitError,
)
from retro_importer.core.rate_limit import RequestPacer

logger = logging.getLogger(__name__)


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = (response.headers.get("retry-after") or "").strip()
    if not raw:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return None


def _error_body(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        errors = data.get("errors")
        if isinstance(errors, list):
            messages = [str(item.get("message") or "") for item in errors if isinstance(item, dict)]
            joined = "; ".join(message for message in messages if message)
            if joined:
                return joined
    return response.text


def paginate_all(fetch_page: Callable[[str | None], dict[str, Any]], key: str) -> Iterator[dict[str, Any]]:
    """Yield every item across pages, following ``pagination_meta.after``."""
    after: str | None = None
    while True:
        page = fetch_page(after)
        for item in list(page.get(key) or []):
            if isinstance(item, dict):
                yield item
        after = str((page.get("pagination_meta") or {}).get("after") or "").strip() or None
        if not after:
            break


class IncidentIoClient:
    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        timeout: float | None = None,
        page_size: int | None = None,
        pacer: RequestPacer | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries if max_retries is not None else default_settings.MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else default_settings.RETRY_DELAY_SECONDS
        self.page_size = page_size or default_settings.PAGE_SIZE
        self.pacer = pacer or RequestPacer(default_settings.min_request_interval)
        self._sleep = sleep
        self._http = httpx.Client(
            timeout=timeout or default_settings.HTTP_TIMEOUT_SECONDS,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    @classmethod
    def for_environment(cls, environment: str, config: Settings | None = None) -> "IncidentIoClient":
        config = config or default_settings
        api_key, base_url = config.credentials(environment)
        return cls(
            api_key,
            base_url,
            max_retries=config.MAX_RETRIES,
            retry_delay=config.RETRY_DELAY_SECONDS,
            timeout=config.HTTP_TIMEOUT_SECONDS,
            page_size=config.PAGE_SIZE,
            pacer=RequestPacer(config.min_request_interval),
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "IncidentIoClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** attempt)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        query = {key: value for key, value in (params or {}).items() if value not in (None, "")}
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            self.pacer.wait()
            logger.debug("%s %s (attempt %s)", method, url, attempt + 1)
            try:
                response = self._http.request(method, url, params=query or None, json=json)
            except httpx.TransportError as exc:
                last_error = IncidentIoConnectionError(f"{method} {path} failed: {exc}")
                if attempt >= self.max_retries:
                    break
                wait = self._backoff(attempt)
                logger.warning("Request failed: %s. Retrying after %.2fs...", exc, wait)
                self._sleep(wait)
                continue

            if response.is_success:
                if not response.content:
                    return {}
                data = response.json()
                return data if isinstance(data, dict) else {}

            if response.status_code == 429:
                retry_after = _retry_after_seconds(response)
                last_error = IncidentIoRateLimitError(
                    _error_body(response), retry_after=retry_after, method=method, path=path
                )
                if attempt >= self.max_retries:
                    break
                wait = retry_after if retry_after is not None else self._backoff(attempt)
                logger.warning("Rate limited. Retrying after %.2fs...", wait)
                self._sleep(wait)
                continue

            if response.status_code >= 500:
                last_error = IncidentIoApiError(response.status_code, _error_body(response), method=method, path=path)
                if attempt >= self.max_retries:
                    break
                wait = self._backoff(attempt)
                logger.warning("Server error (%s). Retrying after %.2fs...", response.status_code, wait)
                self._sleep(wait)
                continue

            raise IncidentIoApiError(response.status_code, _error_body(response), method=method, path=path)

        raise last_error or IncidentIoConnectionError("Max retries exceeded")

    def _paginate(self, path: str, key: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        def fetch(after: str | None) -> dict[str, Any]:
            return self._request("GET", path, params={**(params or {}), "page_size": self.page_size, "after": after})

        return list(paginate_all(fetch, key))

    # configuration
    def list_severities(self) -> list[dict[str, Any]]:
        return list(self._request("GET", "/v1/severities").get("severities") or [])

    def list_incident_statuses(self) -> list[dict[str, Any]]:
        return list(self._request("GET", "/v1/incident_statuses").get("incident_statuses") or [])

    def list_incident_types(self) -> list[dict[str, Any]]:
        return list(self._request("GET", "/v1/incident_types").get("incident_types") or [])

    def list_incident_timestamps(self) -> list[dict[str, Any]]:
        return list(self._request("GET", "/v2/incident_timestamps").get("incident_timestamps") or [])

    def list_incident_roles(self) -> list[dict[str, Any]]:
        return list(self._request("GET", "/v2/incident_roles").get("incident_roles") or [])

    def list_custom_fields(self) -> list[dict[str, Any]]:
        return self._paginate("/v2/custom_fields", "custom_fields")

    def list_custom_field_options(self, custom_field_id: str) -> list[dict[str, Any]]:
        return self._paginate(
            "/v1/custom_field_options",
            "custom_field_options",
            {"custom_field_id": custom_field_id},
        )

    def list_catalog_entries(self, catalog_type_id: str) -> list[dict[str, Any]]:
        return self._paginate("/v2/catalog_entries", "catalog_entries", {"catalog_type_id": catalog_type_id})

    def list_users(self) -> list[dict[str, Any]]:
        return self._paginate("/v2/users", "users")

    # incidents
    def list_incidents_page(
        self,
        *,
        after: str | None = None,
        page_size: int | None = None,
        status_category: str | None = None,
        reference: str | None = None,
    ) -> dict[str, Any]:
        return self._request(
            "GET",
            "/v2/incidents",
            params={
                "page_size": page_size or self.page_size,
                "after": after,
                "status_category[]": status_category,
                "reference": reference,
            },
        )

    def iter_incidents(self, *, status_category: str | None = None) -> Iterator[dict[str, Any]]:
        return paginate_all(
            lambda after: self.list_incidents_page(after=after, status_category=status_category),
            "incidents",
        )

    def find_incident_by_reference(self, reference: str) -> dict[str, Any] | None:
        value = (reference or "").strip()
        if not value:
            return None
        page = self.list_incidents_page(reference=value, page_size=25)
        for incident in list(page.get("incidents") or []):
            if isinstance(incident, dict) and str(incident.get("reference") or "") == value:
                return incident
        return None

    def create_incident(self, payload: dict[str, Any]) -> dict[str, Any]:
        return dict(self._request("POST", "/v2/incidents", json=payload).get("incident") or {})

    def update_incident(self, incident_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return dict(self._request("POST", f"/v2/incidents/{incident_id}/actions/edit", json=payload).get("incident") or {})

    def create_incident_attachment(self, incident_id: str, *, external_id: str, resource_type: str) -> dict[str, Any]:
        payload = {
            "incident_id": incident_id,
            "resource": {"external_id": external_id, "resource_type": resource_type},
        }
        return dict(self._request("POST", "/v1/incident_attachments", json=payload).get("incident_attachment") or {})

    # secondary records, read during export
    def list_follow_ups(self, incident_id: str) -> list[dict[str, Any]]:
        return list(self._request("GET", "/v2/follow_ups", params={"incident_id": incident_id}).get("follow_ups") or [])

    def list_incident_updates(self, incident_id: str) -> list[dict[str, Any]]:
        return self._paginate("/v2/incident_updates", "incident_updates", {"incident_id": incident_id})

    def list_related_incidents(self, incident_id: str) -> list[dict[str, Any]]:
        return self._paginate("/v1/incident_relationships", "incident_relationships", {"incident_id": incident_id})

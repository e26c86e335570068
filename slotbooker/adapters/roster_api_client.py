"""
Client for the roster administration REST API.

Reads professionals, working periods, the service catalog and blocks of a
branch. Calls are blocking ``requests`` calls and are moved off the event
loop with ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import pendulum
import requests
from pendulum import DateTime

from ..domain.exceptions import RosterApiError, StoreUnavailableError
from ..domain.models import (
    BlockedInterval,
    Professional,
    ServiceRequirement,
    TimeWindow,
    WorkingPeriod,
)

logger = logging.getLogger(__name__)


class RosterApiClient:
    """
    Client for the roster administration API of one branch.

    Implements the roster store and service catalog protocols, plus block
    lookups. Professional endpoints are branch-scoped, hence ``branch_id``.
    """

    def __init__(
        self,
        base_url: str,
        branch_id: str,
        token: str = "",
        timeout_seconds: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url: API root, e.g. https://admin.example.com
            branch_id: Branch whose roster is read
            token: Bearer token for the admin API
            timeout_seconds: Per-request timeout
            session: Optional pre-configured requests session
        """
        self.base_url = base_url.rstrip("/")
        self.branch_id = branch_id
        self.timeout = timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    # Protocol implementations

    async def get_working_periods(self, professional_id: str) -> List[WorkingPeriod]:
        return await asyncio.to_thread(self.fetch_working_periods, professional_id)

    async def get_eligible_professionals(
        self,
        branch_id: str,
        service_ids: Sequence[str],
    ) -> List[Professional]:
        professionals = await asyncio.to_thread(self.fetch_professionals, branch_id)
        return [
            professional
            for professional in professionals
            if professional.is_active and professional.can_perform(service_ids)
        ]

    async def get_professional(self, professional_id: str) -> Optional[Professional]:
        return await asyncio.to_thread(self.fetch_professional, professional_id)

    async def get_services(self, service_ids: Sequence[str]) -> List[ServiceRequirement]:
        services = await asyncio.to_thread(self.fetch_services)
        wanted = set(service_ids)
        return [service for service in services if service.id in wanted]

    async def get_blocks(
        self,
        professional_id: str,
        day_start: DateTime,
        day_end: DateTime,
    ) -> List[BlockedInterval]:
        return await asyncio.to_thread(self.fetch_blocks, professional_id, day_start, day_end)

    # Blocking fetchers

    def fetch_professionals(self, branch_id: Optional[str] = None) -> List[Professional]:
        branch = branch_id or self.branch_id
        payload = self._get(f"/v1/admin/filiais/{branch}/professionals")
        return [self._parse_professional(item, branch) for item in self._as_list(payload)]

    def fetch_professional(self, professional_id: str) -> Optional[Professional]:
        payload = self._get(
            f"/v1/admin/filiais/{self.branch_id}/professionals/{professional_id}",
            allow_not_found=True,
        )
        if payload is None:
            return None
        return self._parse_professional(payload, self.branch_id)

    def fetch_working_periods(self, professional_id: str) -> List[WorkingPeriod]:
        payload = self._get(
            f"/v1/admin/filiais/{self.branch_id}/professionals/{professional_id}/periods"
        )
        try:
            return [
                WorkingPeriod(
                    weekday=int(item["weekday"]),
                    start_minutes=int(item["startMinutes"]),
                    end_minutes=int(item["endMinutes"]),
                )
                for item in self._as_list(payload)
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise RosterApiError(f"Malformed working periods for {professional_id}: {exc}") from exc

    def fetch_services(self) -> List[ServiceRequirement]:
        payload = self._get(f"/v1/admin/filiais/{self.branch_id}/services")
        try:
            return [
                ServiceRequirement(
                    id=str(item["id"]),
                    name=item.get("name", ""),
                    duration_minutes=int(item["durationMinutes"]),
                    buffer_minutes=int(item.get("bufferMinutes", 0)),
                    is_active=bool(item.get("isActive", True)),
                )
                for item in self._as_list(payload)
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise RosterApiError(f"Malformed service catalog: {exc}") from exc

    def fetch_blocks(
        self,
        professional_id: str,
        day_start: DateTime,
        day_end: DateTime,
    ) -> List[BlockedInterval]:
        payload = self._get(
            f"/v1/admin/professionals/{professional_id}/blocks",
            params={
                "from": day_start.in_timezone("UTC").to_iso8601_string(),
                "to": day_end.in_timezone("UTC").to_iso8601_string(),
            },
        )
        blocks: List[BlockedInterval] = []

        for item in self._as_list(payload):
            try:
                window = TimeWindow(
                    start=self._parse_datetime(item["startsAt"]),
                    end=self._parse_datetime(item["endsAt"]),
                )
            except (KeyError, ValueError) as exc:
                raise RosterApiError(f"Malformed block for {professional_id}: {exc}") from exc

            # The API filters inclusively; keep only real overlaps.
            if window.start < day_end and window.end > day_start:
                blocks.append(
                    BlockedInterval(
                        professional_id=professional_id,
                        window=window,
                        reason=item.get("reason"),
                        id=item.get("id"),
                    )
                )

        return blocks

    def sync_into(self, store) -> int:
        """
        Copy the branch roster and catalog into an ``InMemoryStore``.

        Returns:
            Number of professionals synchronized
        """
        services = self.fetch_services()
        professionals = self.fetch_professionals()
        periods = {p.id: self.fetch_working_periods(p.id) for p in professionals}

        store.replace_branch_roster(self.branch_id, professionals, periods, services)
        logger.info(
            "Synchronized %d professional(s) and %d service(s) for branch %s",
            len(professionals),
            len(services),
            self.branch_id,
        )
        return len(professionals)

    # Helpers

    def _get(self, path: str, params: Optional[Dict[str, str]] = None, allow_not_found: bool = False) -> Any:
        url = f"{self.base_url}{path}"

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise StoreUnavailableError(f"Roster API unreachable ({url}): {e}") from e

        if allow_not_found and response.status_code == 404:
            return None

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise RosterApiError(f"Roster API request failed ({url}): {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise RosterApiError(f"Roster API returned invalid JSON ({url}): {e}") from e

    @staticmethod
    def _as_list(payload: Any) -> List[Dict[str, Any]]:
        # Some endpoints wrap collections as {"data": [...]}.
        if isinstance(payload, dict) and "data" in payload:
            payload = payload["data"]
        if not isinstance(payload, list):
            raise RosterApiError(f"Expected a list from the roster API, got {type(payload).__name__}")
        return payload

    def _parse_professional(self, item: Dict[str, Any], branch_id: str) -> Professional:
        """
        Parse a professional payload.

        Capabilities arrive either as ``serviceIds`` or as
        ``professionalServices: [{"serviceId": ...}]``.
        """
        try:
            if "serviceIds" in item:
                service_ids = frozenset(str(sid) for sid in item["serviceIds"])
            else:
                service_ids = frozenset(
                    str(link["serviceId"]) for link in item.get("professionalServices", [])
                )

            return Professional(
                id=str(item["id"]),
                name=item["name"],
                branch_id=str(item.get("filialId", branch_id)),
                created_at=self._parse_datetime(item["createdAt"]),
                service_ids=service_ids,
                is_active=bool(item.get("isActive", True)),
                timezone=item.get("timezone"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise RosterApiError(f"Malformed professional payload: {exc}") from exc

    @staticmethod
    def _parse_datetime(value: str) -> DateTime:
        """
        Parse an ISO 8601 timestamp into a pendulum DateTime.

        Raises:
            ValueError: If the value is not a datetime
        """
        parsed = pendulum.parse(value)
        if isinstance(parsed, DateTime):
            return parsed
        raise ValueError(f"Could not parse datetime: {value}")

"""Snapshot providers: the boundary to the external data service."""

from __future__ import annotations

import datetime
import logging
import os
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import requests

from .errors import MalformedSnapshot, SnapshotFetchFailure
from .models import (
    CheckoutSnapshot,
    EquipmentSnapshot,
    ProviderConfig,
    SnapshotSet,
    UserSnapshot,
)
from .snapshots import parse_checkouts, parse_equipment, parse_users
from .version import __version__

logger = logging.getLogger(__name__)


def _in_due_window(
    checkout: CheckoutSnapshot,
    due_before: Optional[datetime.datetime],
    due_after: Optional[datetime.datetime],
) -> bool:
    if due_before is not None and not checkout.due_date < due_before:
        return False
    if due_after is not None and not checkout.due_date >= due_after:
        return False
    return True


class SnapshotProvider:
    """Interface the engine expects from the data service.

    Subclasses return snapshots or raise SnapshotFetchFailure /
    MalformedSnapshot. `fetch_users` may return an empty list when the
    service has no user directory; messages then fall back to ids.
    """

    def fetch_equipment(self) -> List[EquipmentSnapshot]:
        raise NotImplementedError

    def fetch_active_checkouts(
        self,
        due_before: Optional[datetime.datetime] = None,
        due_after: Optional[datetime.datetime] = None,
    ) -> List[CheckoutSnapshot]:
        raise NotImplementedError

    def fetch_users(self) -> List[UserSnapshot]:
        return []

    def fetch_snapshots(self) -> SnapshotSet:
        return SnapshotSet(
            equipment=self.fetch_equipment(),
            checkouts=self.fetch_active_checkouts(),
            users=self.fetch_users(),
        )


class StaticSnapshotProvider(SnapshotProvider):
    """In-memory provider over fixed snapshot lists."""

    def __init__(
        self,
        equipment: Sequence[EquipmentSnapshot] = (),
        checkouts: Sequence[CheckoutSnapshot] = (),
        users: Sequence[UserSnapshot] = (),
    ):
        self.equipment = list(equipment)
        self.checkouts = list(checkouts)
        self.users = list(users)

    @classmethod
    def from_rows(cls, data: Mapping[str, Any]) -> "StaticSnapshotProvider":
        """Build a provider from raw rows, e.g. a YAML fixtures file."""
        return cls(
            equipment=parse_equipment(data.get("equipment") or []),
            checkouts=parse_checkouts(data.get("checkouts") or []),
            users=parse_users(data.get("users") or []),
        )

    def fetch_equipment(self) -> List[EquipmentSnapshot]:
        return list(self.equipment)

    def fetch_active_checkouts(self, due_before=None, due_after=None) -> List[CheckoutSnapshot]:
        return [
            c
            for c in self.checkouts
            if c.on_loan and _in_due_window(c, due_before, due_after)
        ]

    def fetch_users(self) -> List[UserSnapshot]:
        return list(self.users)


class RestSnapshotProvider(SnapshotProvider):
    """Client for a PostgREST-style data service (e.g. Supabase)."""

    def __init__(self, config: ProviderConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.base_url = config.url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": f"gearwatch/{__version__}",
            "Accept": "application/json",
        })
        if config.api_key_env:
            api_key = os.environ.get(config.api_key_env)
            if not api_key:
                raise RuntimeError(
                    f"Environment variable {config.api_key_env} is required to reach {self.base_url}"
                )
            self.session.headers.update({
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
            })

    def _get_rows(self, table: str, params: List[Tuple[str, str]]) -> Any:
        """GET a table with retry on connection errors and timeouts."""
        url = f"{self.base_url}/rest/v1/{table}"
        max_retries = max(0, int(self.config.max_retries))

        for attempt in range(max_retries + 1):
            try:
                response = self.session.request(
                    "GET", url, params=params, timeout=self.config.timeout
                )
                response.raise_for_status()
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                if attempt == max_retries:
                    raise SnapshotFetchFailure(
                        f"cannot reach {url} after {max_retries + 1} attempts: {e}"
                    ) from e
                logger.debug(f"Request to {url} failed, retry {attempt + 1}/{max_retries + 1}: {e}")
                time.sleep(0.5 * (attempt + 1))
                continue
            except requests.exceptions.RequestException as e:
                raise SnapshotFetchFailure(f"request to {url} failed: {e}") from e

            try:
                return response.json()
            except ValueError as e:
                raise MalformedSnapshot(f"{table}: response is not valid JSON") from e

        raise SnapshotFetchFailure(f"cannot reach {url}")  # pragma: no cover

    def fetch_equipment(self) -> List[EquipmentSnapshot]:
        rows = self._get_rows(self.config.equipment_table, [("select", "*")])
        equipment = parse_equipment(rows)
        logger.debug(f"Fetched {len(equipment)} equipment rows")
        return equipment

    def fetch_active_checkouts(self, due_before=None, due_after=None) -> List[CheckoutSnapshot]:
        params: List[Tuple[str, str]] = [
            ("select", "*"),
            ("status", "in.(active,overdue)"),
        ]
        if due_before is not None:
            params.append(("due_date", f"lt.{due_before.isoformat()}"))
        if due_after is not None:
            params.append(("due_date", f"gte.{due_after.isoformat()}"))
        rows = self._get_rows(self.config.checkouts_table, params)
        # The server may ignore the filters; returned and lost rows are dropped here.
        checkouts = [
            c for c in parse_checkouts(rows)
            if c.on_loan and _in_due_window(c, due_before, due_after)
        ]
        logger.debug(f"Fetched {len(checkouts)} active checkout rows")
        return checkouts

    def fetch_users(self) -> List[UserSnapshot]:
        rows = self._get_rows(
            self.config.users_table,
            [("select", "id,first_name,last_name,department")],
        )
        return parse_users(rows)


def create_provider(config: Optional[ProviderConfig], fixtures: Optional[Dict[str, Any]] = None) -> SnapshotProvider:
    """Pick a provider: fixtures win over a configured service URL."""
    if fixtures is not None:
        return StaticSnapshotProvider.from_rows(fixtures)
    if config is None:
        raise ValueError("No provider configured (set provider.url or pass fixtures)")
    return RestSnapshotProvider(config)

"""Remote data source for analytics report queries.

Reports are computed server-side by Postgres functions exposed through the
Supabase PostgREST RPC endpoint. This module only ships parameters over and
returns the decoded JSON; aggregation rules live in the database.
"""

import logging
from datetime import date
from typing import Any, Protocol

import httpx

from errors import DataSourceError

logger = logging.getLogger(__name__)


class DataSource(Protocol):
    async def fetch(self, function: str, params: dict) -> Any: ...


def _encode_params(params: dict) -> dict:
    """Convert dates to ISO strings for the JSON body."""
    return {
        key: value.isoformat() if isinstance(value, date) else value
        for key, value in params.items()
    }


class SupabaseDataSource:
    """Calls remote report functions via ``POST /rest/v1/rpc/<function>``."""

    def __init__(
        self,
        url: str | None,
        api_key: str | None,
        timeout: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.rstrip("/") if url else None
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, function: str, params: dict) -> Any:
        if not self.url or not self.api_key:
            raise DataSourceError("Data source not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY.")

        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        logger.info("Calling rpc/%s (%s)", function, ", ".join(sorted(params)) or "no params")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.url}/rest/v1/rpc/{function}",
                    json=_encode_params(params),
                    headers=headers,
                )
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPError as e:
            logger.error("Data source error for rpc/%s: %s", function, e)
            raise DataSourceError(f"Data source error for {function}: {e}") from e
        except ValueError as e:
            logger.error("Invalid JSON from rpc/%s: %s", function, e)
            raise DataSourceError(f"Invalid response from {function}") from e

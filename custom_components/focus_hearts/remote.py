# File: remote.py
"""HTTP adapter for the remote heart transaction store.

Wire format (JSON):
    POST {base}/users/{user_id}/heart_transactions
        {"transactions": [HeartTransaction, ...]}
        -> {"accepted": [transaction_id, ...]}   (optional, default: all)
    GET  {base}/users/{user_id}/heart_transactions?cursor=...
        -> {"transactions": [HeartTransaction, ...], "cursor": "..."}

The remote deduplicates by transaction id, so pushing the same record twice
is harmless. Records returned by a pull are not validated here;
SyncReconciler.validate_remote() does that.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import aiohttp
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.aiohttp_client import async_get_clientsession

from . import const

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

    from .type_defs import HeartTransactionData


class RemoteLedgerError(HomeAssistantError):
    """Raised when the remote store cannot be reached or answers badly."""


class RemoteLedgerClient:
    """Push/pull client bound to one base URL."""

    def __init__(
        self,
        hass: HomeAssistant,
        base_url: str,
        timeout: float = const.REMOTE_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the client.

        Args:
            hass: Home Assistant instance (provides the shared client session)
            base_url: Remote root, without trailing slash
            timeout: Per-request timeout in seconds
        """
        self.hass = hass
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _url(self, user_id: str) -> str:
        return self.base_url + const.REMOTE_PATH_TRANSACTIONS.format(
            user_id=quote(user_id, safe="")
        )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        session = async_get_clientsession(self.hass)
        try:
            async with asyncio.timeout(self.timeout):
                async with session.request(
                    method, url, json=json_body, params=params
                ) as response:
                    if response.status >= 400:
                        raise RemoteLedgerError(
                            f"HTTP {response.status} from {method} {url}"
                        )
                    if response.status == 204:
                        return {}
                    return await response.json(content_type=None)
        except TimeoutError as err:
            raise RemoteLedgerError(f"Timeout after {self.timeout}s on {method} {url}") from err
        except aiohttp.ClientError as err:
            raise RemoteLedgerError(f"Client error on {method} {url}: {err}") from err
        except ValueError as err:
            raise RemoteLedgerError(f"Invalid JSON from {method} {url}: {err}") from err

    async def async_push(
        self, user_id: str, transactions: list[HeartTransactionData]
    ) -> list[str]:
        """Upload transactions. Returns the ids the remote acknowledged.

        Raises:
            RemoteLedgerError: Network failure or unexpected response
        """
        if not transactions:
            return []
        payload = await self._request(
            "POST",
            self._url(user_id),
            json_body={const.REMOTE_KEY_TRANSACTIONS: transactions},
        )
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise RemoteLedgerError("Unexpected push response shape")
        accepted = payload.get(const.REMOTE_KEY_ACCEPTED)
        if accepted is None:
            return [tx[const.DATA_TX_ID] for tx in transactions]
        if not isinstance(accepted, list):
            raise RemoteLedgerError("Unexpected 'accepted' field in push response")
        return [str(tx_id) for tx_id in accepted]

    async def async_pull(
        self, user_id: str, cursor: str | None = None
    ) -> tuple[list[Any], str | None]:
        """Download transactions newer than `cursor`.

        Returns:
            (raw records, next cursor). The cursor is unchanged when the remote
            omits it.

        Raises:
            RemoteLedgerError: Network failure or unexpected response
        """
        params = {const.REMOTE_KEY_CURSOR: cursor} if cursor else None
        payload = await self._request("GET", self._url(user_id), params=params)
        if not isinstance(payload, dict):
            raise RemoteLedgerError("Unexpected pull response shape")
        records = payload.get(const.REMOTE_KEY_TRANSACTIONS, [])
        if not isinstance(records, list):
            raise RemoteLedgerError("Unexpected 'transactions' field in pull response")
        next_cursor = payload.get(const.REMOTE_KEY_CURSOR, cursor)
        return records, (str(next_cursor) if next_cursor is not None else None)

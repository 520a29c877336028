"""
Exchange transports.

The pipeline only needs `post_action(payload)`. HyperliquidTransport posts to
the /exchange endpoint through the SDK's API client (blocking, so it runs in a
worker thread); DryRunTransport acknowledges everything locally.
"""

import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional, Protocol

import requests
from hyperliquid.api import API
from hyperliquid.utils.error import ClientError, Error, ServerError

from basket_engine.core.errors import SubmissionError

logger = logging.getLogger(__name__)


class ExchangeTransport(Protocol):
    async def post_action(self, payload: Dict[str, Any]) -> Any:
        ...


class HyperliquidTransport:
    """Posts signed actions to Hyperliquid's /exchange endpoint."""

    def __init__(self, base_url: str):
        self.base_url = base_url
        self._api = API(base_url)

    async def post_action(self, payload: Dict[str, Any]) -> Any:
        try:
            return await asyncio.to_thread(self._api.post, "/exchange", payload)
        except ClientError as e:
            # 4xx: the request itself is wrong, resending it cannot help
            raise SubmissionError(f"exchange rejected request: {e.error_message}", response=e.error_data, retryable=False) from e
        except ServerError as e:
            raise SubmissionError(f"exchange server error {e.status_code}: {e.message}") from e
        except (Error, requests.RequestException) as e:
            raise SubmissionError(f"transport error: {e}") from e


class DryRunTransport:
    """
    Accepts every action without sending it.

    Orders are acknowledged as resting with sequential oids; payloads are kept
    in `sent` for inspection.
    """

    def __init__(self, start_oid: int = 1):
        self.sent: List[Dict[str, Any]] = []
        self._oids = itertools.count(start_oid)

    async def post_action(self, payload: Dict[str, Any]) -> Any:
        self.sent.append(payload)
        action = payload.get("action", {})
        if action.get("type") == "order":
            statuses = [{"resting": {"oid": next(self._oids)}} for _ in action.get("orders", [])]
        else:
            statuses = ["success" for _ in action.get("cancels", [])]
        logger.info("Dry run: %s action nonce=%s not sent", action.get("type"), payload.get("nonce"))
        return {"status": "ok", "response": {"type": action.get("type"), "data": {"statuses": statuses}}}

    @property
    def last_payload(self) -> Optional[Dict[str, Any]]:
        return self.sent[-1] if self.sent else None

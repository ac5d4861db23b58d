"""JSON-RPC client for the block source node."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

import requests

__all__ = ["RpcError", "RpcClient"]

log = logging.getLogger(__name__)

_MISSING_RESULT = "missing result from JSON-RPC response"


class RpcError(Exception):
    """Raised when a JSON-RPC call fails or returns no usable result."""


def _parse_auth(auth: str) -> tuple[str, str]:
    parts = auth.split(":")
    if len(parts) < 2:
        raise ValueError("auth must have the form username:password")
    return parts[0], parts[1]


class RpcClient:
    """Posts JSON-RPC requests to a node, retrying when the transport fails."""

    def __init__(
        self,
        url: str,
        auth: str | None = None,
        *,
        session: requests.Session | None = None,
        retries: int = 11,
        retry_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.url = url
        self.credentials = _parse_auth(auth) if auth is not None else None
        self.session = session if session is not None else requests.Session()
        self.retries = retries
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.clock = clock

    def _post(self, body: str) -> requests.Response:
        failures = 0
        while True:
            try:
                return self.session.post(
                    self.url,
                    data=body,
                    headers={"Content-Type": "application/json"},
                    auth=self.credentials,
                )
            except requests.RequestException as exc:
                if failures >= self.retries:
                    raise RpcError(f"POST to node failed: {exc}") from exc
                failures += 1
                log.debug("err: retrying POST")
                self.sleep(self.retry_delay)

    def _call(self, method: str, params: Sequence[Any], request_id: int) -> Any:
        body = json.dumps(
            {
                "id": request_id,
                "jsonrpc": "2.0",
                "method": method,
                "params": list(params),
            }
        )
        response = self._post(body)
        try:
            payload = response.json()
        except ValueError as exc:
            raise RpcError(f"invalid JSON-RPC response: {exc}") from exc
        if not isinstance(payload, dict) or payload.get("result") is None:
            raise RpcError(_MISSING_RESULT)
        return payload["result"]

    def call(self, method: str, params: Sequence[Any] = ()) -> Any:
        """Call ``method`` with ``params`` and return its result."""
        return self._call(method, params, int(self.clock()))

    def block_count(self) -> int:
        """Height of the node's best chain."""
        result = self.call("getblockcount")
        if not isinstance(result, int) or isinstance(result, bool) or result < 0:
            raise RpcError(f"invalid block count: {result!r}")
        return result

    def _hex_result(self, result: Any) -> bytes:
        if not isinstance(result, str):
            raise RpcError(f"expected a hex string, got {result!r}")
        try:
            return bytes.fromhex(result)
        except ValueError as exc:
            raise RpcError(f"invalid hex in JSON-RPC result: {exc}") from exc

    def block_hash(self, height: int) -> bytes:
        """Hash of the block at ``height``, as the node reports it."""
        return self._hex_result(self.call("getblockhash", [height]))

    def raw_block(self, blockhash: bytes) -> bytes:
        """Serialised block with the given hash."""
        result = self._call(
            "getblock",
            [bytes(blockhash).hex(), 0],
            int(self.clock()) + 1,
        )
        return self._hex_result(result)
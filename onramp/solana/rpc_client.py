from typing import Any, List, Optional

from onramp.api.api_client import ApiClient, ApiClientError
from onramp.config import HTTP_TIMEOUT, SOLANA_RPC_URL


class RpcError(ApiClientError):
    """The RPC node answered with a JSON-RPC error object."""


class SolanaRpcClient(ApiClient):
    """
    Raw JSON-RPC calls for methods the typed solana client does not wrap.
    """

    def __init__(self, endpoint: str = SOLANA_RPC_URL, timeout: float = HTTP_TIMEOUT):
        super().__init__(endpoint, timeout=timeout, headers={"Content-Type": "application/json"})
        self._request_id = 0

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def call(self, method: str, params: Optional[list] = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params or []}
        data = await self._request_async("post", "", json=payload)
        if "error" in data:
            raise RpcError(f"{method} failed: {data['error']}")
        return data.get("result")

    async def get_recent_prioritization_fees(self, accounts: Optional[List[str]] = None) -> List[dict]:
        result = await self.call("getRecentPrioritizationFees", [accounts or []])
        if not isinstance(result, list):
            raise RpcError(f"Unexpected getRecentPrioritizationFees response: {result}")
        return result

from __future__ import annotations

import abc
import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import httpx

from .draw import derive_random_words
from .project_constants import DEFAULT_KEY_HASH, NUM_WORDS, REQUEST_CONFIRMATIONS

log = logging.getLogger(__name__)


@dataclass
class UnknownRequest(Exception):
    request_id: int

    def __str__(self) -> str:
        return f"UnknownRequest: no pending randomness request {self.request_id}"


class RpcError(RuntimeError):
    pass


# Transient failures talking to a remote provider.
PROVIDER_ERRORS = (RpcError, httpx.HTTPError)


@dataclass(frozen=True)
class DrawRequestParams:
    key_hash: str = DEFAULT_KEY_HASH
    min_confirmations: int = REQUEST_CONFIRMATIONS
    num_words: int = NUM_WORDS


class RandomnessConsumer(Protocol):
    address: str

    def on_random_ready(self, sender: str, request_id: int, values: Sequence[int]) -> Any:
        ...


class RandomnessProvider(abc.ABC):
    """
    Issues draw requests and later delivers exactly one set of random words
    per request by calling `consumer.on_random_ready(self.address, ...)`.
    Delivery never happens from inside `request_random`.
    """

    address: str

    @abc.abstractmethod
    def request_random(self, consumer: RandomnessConsumer, params: DrawRequestParams) -> int:
        """Register a request and return its id without waiting for the words."""


class LocalRandomnessProvider(RandomnessProvider):
    """
    In-process coordinator. Requests stay pending until `fulfill` or
    `abandon` is called for them.
    """

    def __init__(self, address: str, next_request_id: int = 1) -> None:
        self.address = address
        self._next_id = next_request_id
        self._pending: Dict[int, Tuple[RandomnessConsumer, DrawRequestParams]] = {}
        self._lock = threading.Lock()

    def request_random(self, consumer: RandomnessConsumer, params: DrawRequestParams) -> int:
        with self._lock:
            request_id = self._next_id
            self._next_id += 1
            self._pending[request_id] = (consumer, params)
        log.debug("Randomness request %d from %s", request_id, consumer.address)
        return request_id

    def pending(self) -> List[int]:
        with self._lock:
            return sorted(self._pending)

    def consumer_of(self, request_id: int) -> RandomnessConsumer:
        with self._lock:
            if request_id not in self._pending:
                raise UnknownRequest(request_id)
            return self._pending[request_id][0]

    def abandon(self, request_id: int) -> None:
        with self._lock:
            if self._pending.pop(request_id, None) is None:
                raise UnknownRequest(request_id)
        log.warning("Randomness request %d abandoned", request_id)

    def fulfill(self, request_id: int, values: Optional[Sequence[int]] = None) -> Any:
        """Deliver the words for a pending request once; returns the consumer's result."""
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is None:
            raise UnknownRequest(request_id)
        consumer, params = entry
        if values is None:
            values = derive_random_words(params.key_hash, request_id, params.num_words)
        log.info("Delivering randomness for request %d to %s", request_id, consumer.address)
        return consumer.on_random_ready(self.address, request_id, list(values))

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "address": self.address,
                "next_request_id": self._next_id,
                "pending": [
                    {"request_id": rid, "consumer": c.address, "params": asdict(p)}
                    for rid, (c, p) in sorted(self._pending.items())
                ],
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalRandomnessProvider":
        """Restores the id counter only; consumers are re-attached with load_pending()."""
        return cls(data["address"], next_request_id=int(data["next_request_id"]))

    def load_pending(
        self,
        items: List[Dict[str, Any]],
        resolve: Callable[[str], RandomnessConsumer],
    ) -> None:
        with self._lock:
            for item in items:
                self._pending[int(item["request_id"])] = (
                    resolve(item["consumer"]),
                    DrawRequestParams(**item["params"]),
                )


class HttpRandomnessProvider(RandomnessProvider):
    """
    Remote randomness service spoken to over JSON-RPC 2.0.

    `requestRandomWords` returns a request id; `getRandomWords` returns null
    until the words are ready. `poll()` pulls ready words and delivers them.
    """

    def __init__(
        self,
        rpc_url: str,
        address: str,
        timeout_s: float = 60.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.address = address
        self.client = client or httpx.Client(timeout=timeout_s)
        self._pending: Dict[int, RandomnessConsumer] = {}
        self._rpc_id = 0

    def close(self) -> None:
        self.client.close()

    def _post(self, method: str, params: List[Any]) -> Dict[str, Any]:
        self._rpc_id += 1
        payload = {"jsonrpc": "2.0", "id": self._rpc_id, "method": method, "params": params}
        resp = self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            raise RpcError(f"RPC error: {data['error']}")
        return data

    def request_random(self, consumer: RandomnessConsumer, params: DrawRequestParams) -> int:
        data = self._post(
            "requestRandomWords",
            [
                {
                    "keyHash": params.key_hash,
                    "minConfirmations": params.min_confirmations,
                    "numWords": params.num_words,
                    "consumer": consumer.address,
                }
            ],
        )
        if data.get("result") is None:
            raise RpcError("requestRandomWords returned no request id.")
        request_id = int(data["result"])
        self.track(request_id, consumer)
        return request_id

    def track(self, request_id: int, consumer: RandomnessConsumer) -> None:
        self._pending[request_id] = consumer

    def pending(self) -> List[int]:
        return sorted(self._pending)

    def get_random_words(self, request_id: int) -> Optional[List[int]]:
        """
        Supports:
        1) null result (not fulfilled yet)
        2) a plain list of integers (or decimal / 0x-hex strings)
        3) {"randomWords": [...]} or {"words": [...]}
        """
        result = self._post("getRandomWords", [request_id]).get("result")
        if result is None:
            return None
        if isinstance(result, dict):
            result = result.get("randomWords", result.get("words"))
        if not isinstance(result, list) or not result:
            raise RpcError(f"Request {request_id}: malformed random words {result!r}")
        return [int(w, 0) if isinstance(w, str) else int(w) for w in result]

    def poll(self, on_delivered: Optional[Callable[[int, Any], None]] = None) -> List[Tuple[int, Any]]:
        """
        Deliver every request whose words are ready. Each id is delivered at most once.

        `on_delivered` sees each result as soon as it is in, so results that
        were already paid are not lost if a later delivery raises.
        """
        delivered: List[Tuple[int, Any]] = []
        for request_id in self.pending():
            words = self.get_random_words(request_id)
            if words is None:
                log.debug("Request %d not fulfilled yet", request_id)
                continue
            consumer = self._pending.pop(request_id)
            log.info("Delivering randomness for request %d to %s", request_id, consumer.address)
            result = consumer.on_random_ready(self.address, request_id, words)
            delivered.append((request_id, result))
            if on_delivered is not None:
                on_delivered(request_id, result)
        return delivered

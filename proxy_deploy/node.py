"""
Node connection: JSON-RPC 2.0 over a persistent websocket.

A single reader task routes responses to waiting requests (by id) and
subscription notifications to per-subscription queues (by subscription id).
"""
import asyncio
import json
import logging
from collections import OrderedDict
from typing import Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .crypto import to_hex
from .errors import RpcError, SubscriptionLostError

logger = logging.getLogger(__name__)

MAX_MESSAGE_SIZE = 10_000_000  # 10MB
REQUEST_TIMEOUT = 30
MAX_ABANDONED = 256

RPC_NEXT_INDEX = "system_accountNextIndex"
RPC_SUBMIT_AND_WATCH = "author_submitAndWatchExtrinsic"
RPC_UNWATCH = "author_unwatchExtrinsic"
RPC_CONTRACTS_CALL = "contracts_call"


class Subscription:
    """
    A live subscription. Iterate it for notification results; release it with
    `unsubscribe()` or by using it as an async context manager.
    """

    def __init__(self, node: 'NodeConnection', subscription_id, unsubscribe_method: str,
                 queue: asyncio.Queue):
        self.node = node
        self.id = subscription_id
        self.unsubscribe_method = unsubscribe_method
        self._queue = queue
        self.released = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        if self.released:
            raise StopAsyncIteration
        item = await self._queue.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def unsubscribe(self):
        if self.released:
            return
        self.released = True
        self.node._subscriptions.pop(self.id, None)
        if self.node.closed:
            return
        try:
            await self.node.request(self.unsubscribe_method, [self.id])
            logger.debug(f"Released subscription {self.id}")
        except (RpcError, SubscriptionLostError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to release subscription {self.id}: {e}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.unsubscribe()


class NodeConnection:
    def __init__(self, url: str, request_timeout: float = REQUEST_TIMEOUT):
        self.url = url
        self.request_timeout = request_timeout
        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._next_id = 0
        # {request_id: (future, unsubscribe_method or None)}
        self._pending = {}
        # {subscription_id: asyncio.Queue}
        self._subscriptions = {}
        # {request_id: unsubscribe_method} for subscribe calls nobody waits for anymore
        self._abandoned = OrderedDict()
        self.closed = True

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def connect(self):
        logger.info(f"Connecting to node at {self.url}")
        try:
            websocket = await websockets.connect(self.url, max_size=MAX_MESSAGE_SIZE)
        except (OSError, WebSocketException) as e:
            raise SubscriptionLostError(f"Cannot connect to {self.url}: {e}") from e
        self.attach(websocket)

    def attach(self, websocket):
        """Start serving an already-open websocket."""
        self._ws = websocket
        self.closed = False
        self._reader_task = asyncio.create_task(self._reader())

    async def close(self):
        if self._ws is not None:
            await self._ws.close()
        if self._reader_task is not None:
            await self._reader_task
        self._fail_all(SubscriptionLostError("Connection closed"))

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #
    async def _send(self, method: str, params, unsubscribe_method: Optional[str] = None):
        if self.closed:
            raise SubscriptionLostError("Connection to node is closed")

        self._next_id += 1
        request_id = self._next_id
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (future, unsubscribe_method)

        message = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            self._pending.pop(request_id, None)
            raise SubscriptionLostError(f"Connection lost while sending {method}: {e}") from e

        try:
            return await asyncio.wait_for(future, timeout=self.request_timeout)
        finally:
            entry = self._pending.pop(request_id, None)
            if entry is not None and unsubscribe_method is not None:
                # A late subscribe response still has to be released
                self._abandoned[request_id] = unsubscribe_method
                while len(self._abandoned) > MAX_ABANDONED:
                    self._abandoned.popitem(last=False)

    async def request(self, method: str, params=None):
        return await self._send(method, params)

    async def subscribe(self, method: str, params, unsubscribe_method: str) -> Subscription:
        return await self._send(method, params, unsubscribe_method)

    # ------------------------------------------------------------------ #
    # Reader
    # ------------------------------------------------------------------ #
    async def _reader(self):
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError as e:
                    logger.error(f"Undecodable message from node: {e}")
                    continue
                self._handle_message(message)
        except ConnectionClosed as e:
            logger.warning(f"Connection to {self.url} lost: {e}")
        finally:
            self._fail_all(SubscriptionLostError(f"Connection to {self.url} closed"))

    def _handle_message(self, message: dict):
        if "id" in message and message["id"] is not None:
            self._handle_response(message)
        elif "params" in message:
            params = message["params"]
            queue = self._subscriptions.get(params.get("subscription"))
            if queue is None:
                logger.debug(f"Notification for unknown subscription {params.get('subscription')}")
                return
            queue.put_nowait(params.get("result"))
        else:
            logger.warning(f"Unexpected message from node: {message}")

    def _handle_response(self, message: dict):
        entry = self._pending.pop(message["id"], None)
        if entry is None:
            unsubscribe_method = self._abandoned.pop(message["id"], None)
            if unsubscribe_method is not None and "result" in message:
                self._release_late(message["result"], unsubscribe_method)
            else:
                logger.debug(f"Response for unknown request {message['id']}")
            return
        future, unsubscribe_method = entry

        if "error" in message:
            error = message["error"] or {}
            if not future.done():
                future.set_exception(RpcError(error.get("code", 0), error.get("message", ""),
                                              error.get("data")))
            return

        result = message.get("result")
        if unsubscribe_method is None:
            if not future.done():
                future.set_result(result)
            return

        if future.done():
            # The caller gave up
            self._release_late(result, unsubscribe_method)
            return
        # Register the queue here so notifications that follow are not lost
        queue = asyncio.Queue()
        self._subscriptions[result] = queue
        future.set_result(Subscription(self, result, unsubscribe_method, queue))

    def _release_late(self, subscription_id, unsubscribe_method: str):
        logger.debug(f"Releasing subscription {subscription_id} that nobody waits for")
        subscription = Subscription(self, subscription_id, unsubscribe_method, asyncio.Queue())
        asyncio.ensure_future(subscription.unsubscribe())

    def _fail_all(self, error: SubscriptionLostError):
        self.closed = True
        for future, _ in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
        self._abandoned.clear()
        for queue in self._subscriptions.values():
            queue.put_nowait(error)
        self._subscriptions.clear()

    # ------------------------------------------------------------------ #
    # Node API
    # ------------------------------------------------------------------ #
    async def account_next_index(self, address: str) -> int:
        return int(await self.request(RPC_NEXT_INDEX, [address]))

    async def submit_and_watch(self, payload: bytes) -> Subscription:
        return await self.subscribe(RPC_SUBMIT_AND_WATCH, [to_hex(payload)], RPC_UNWATCH)

    async def contracts_call(self, origin: str, dest: str, value: int, gas_limit: int,
                             input_data: bytes) -> dict:
        return await self.request(RPC_CONTRACTS_CALL, [{
            "origin": origin,
            "dest": dest,
            "value": value,
            "gasLimit": gas_limit,
            "inputData": to_hex(input_data),
        }])

"""
Signers: turn call descriptors into signed extrinsics and broadcast them.
"""
import asyncio
import logging
from typing import Optional, Protocol

from .core import CallDescriptor, Extrinsic
from .crypto import Keypair, short
from .errors import RpcError, SubmissionRejectedError, SubscriptionLostError
from .node import NodeConnection, Subscription

logger = logging.getLogger(__name__)


class Signer(Protocol):
    address: str

    async def sign(self, call: CallDescriptor, nonce: Optional[int] = None) -> Extrinsic:
        ...

    async def submit(self, extrinsic: Extrinsic) -> Subscription:
        ...


class KeyringSigner:
    """Signs with a local keypair and submits through a node connection."""

    def __init__(self, keypair: Keypair, node: NodeConnection, chain_id: int):
        self.keypair = keypair
        self.node = node
        self.chain_id = chain_id

    @property
    def address(self) -> str:
        return self.keypair.address

    async def sign(self, call: CallDescriptor, nonce: Optional[int] = None) -> Extrinsic:
        is_valid, error = call.validate_basic()
        if not is_valid:
            raise SubmissionRejectedError(f"Invalid call {call.label}: {error}")

        if nonce is None:
            try:
                nonce = await self.node.account_next_index(self.address)
            except RpcError as e:
                raise SubmissionRejectedError(f"Cannot fetch nonce: {e}") from e
            except asyncio.TimeoutError as e:
                raise SubscriptionLostError("Node did not answer the nonce request") from e

        extrinsic = Extrinsic(
            signer=self.address,
            key_type=self.keypair.key_type,
            public_key=self.keypair.public_key,
            call=call,
            nonce=nonce,
            chain_id=self.chain_id,
        )
        extrinsic.sign(self.keypair)
        return extrinsic

    async def submit(self, extrinsic: Extrinsic) -> Subscription:
        try:
            subscription = await self.node.submit_and_watch(extrinsic.encode())
        except RpcError as e:
            raise SubmissionRejectedError(str(e)) from e
        except asyncio.TimeoutError as e:
            # The extrinsic may or may not have reached the pool
            raise SubscriptionLostError(f"Node did not answer the submission of {short(extrinsic.id)}") from e
        logger.debug(f"Submitted {short(extrinsic.id)} with nonce {extrinsic.nonce}")
        return subscription

    async def sign_and_submit(self, call: CallDescriptor, nonce: Optional[int] = None) -> Subscription:
        return await self.submit(await self.sign(call, nonce))


class NonceSequencer:
    """
    Hands out strictly increasing nonces for one account, so several
    transactions can be broadcast without waiting for each to be included.
    """

    def __init__(self, node: NodeConnection, address: str, start: Optional[int] = None):
        self.node = node
        self.address = address
        self._next = start
        self._lock = asyncio.Lock()

    async def next(self) -> int:
        async with self._lock:
            if self._next is None:
                try:
                    self._next = await self.node.account_next_index(self.address)
                except asyncio.TimeoutError as e:
                    raise SubscriptionLostError("Node did not answer the nonce request") from e
                logger.info(f"Starting nonce sequence for {self.address} at {self._next}")
            nonce = self._next
            self._next += 1
            return nonce

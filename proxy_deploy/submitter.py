"""
Transaction submission and confirmation.

A PendingTransaction moves CREATED -> SUBMITTED -> (IN_BLOCK | FINALIZED) -> RESOLVED.
The ConfirmationEngine advances it one batch of chain events at a time and
resolves it exactly once, to Success(value) or Failure(reason). Within a batch
the rules are applied by priority, not by arrival order:

    1. Instantiated (creation calls only)  -> Success(contract address)
    2. ExtrinsicFailed                     -> Failure(ModuleError | OpaqueError)
    3. ExtrinsicSuccess                    -> Success(None)
    4. status InBlock / Finalized          -> Success(None)
    5. status Dropped / Invalid / Usurped  -> Failure(SubmissionRejectedError)
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from .core import CallDescriptor, Extrinsic
from .crypto import short
from .errors import (
    OpaqueError,
    SubmissionRejectedError,
    SubscriptionLostError,
    TransactionError,
)
from .events import (
    INCLUDED_PHASES,
    REJECTED_PHASES,
    ExtrinsicFailedEvent,
    ExtrinsicSucceededEvent,
    InstantiationEvent,
    StatusUpdate,
    TxPhase,
    parse_update,
)
from .node import Subscription
from .registry import MetadataRegistry, decode_dispatch_error

logger = logging.getLogger(__name__)


class TxState(Enum):
    CREATED = "created"
    SUBMITTED = "submitted"
    IN_BLOCK = "in_block"
    FINALIZED = "finalized"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class Success:
    value: Any = None
    ok = True
    kind = "success"

    def unwrap(self):
        return self.value


@dataclass(frozen=True)
class Failure:
    reason: TransactionError
    ok = False

    @property
    def kind(self) -> str:
        return self.reason.kind

    def unwrap(self):
        raise self.reason


Outcome = Union[Success, Failure]


class PendingTransaction:
    def __init__(self, call: CallDescriptor):
        self.call = call
        self.extrinsic: Optional[Extrinsic] = None
        self.subscription: Optional[Subscription] = None
        self.state = TxState.CREATED
        self.observed_events = []
        self.outcome: Optional[Outcome] = None
        self.created_at = time.time()

    @property
    def is_resolved(self) -> bool:
        return self.outcome is not None

    @property
    def nonce(self) -> Optional[int]:
        return self.extrinsic.nonce if self.extrinsic else None

    def resolve(self, outcome: Outcome) -> Outcome:
        """Record the terminal outcome. The first resolution wins."""
        if self.outcome is None:
            self.outcome = outcome
            self.state = TxState.RESOLVED
        return self.outcome

    def __repr__(self):
        return f"PendingTransaction({self.call.label}, nonce={self.nonce}, {self.state.value})"


class ConfirmationEngine:
    def __init__(self, registry: MetadataRegistry, inclusion_is_success: bool = True):
        """
        Args:
            registry: read-only registry used to decode module errors
            inclusion_is_success: treat block inclusion without an outcome event as success
        """
        self.registry = registry
        self.inclusion_is_success = inclusion_is_success

    def dispatch(self, pending: PendingTransaction, batch) -> Optional[Outcome]:
        """
        Feed one batch of events to a pending transaction.
        Returns the outcome if this batch resolved it, None otherwise.
        """
        if pending.is_resolved:
            return None

        pending.observed_events.extend(batch)
        for event in batch:
            if isinstance(event, StatusUpdate):
                if event.phase == TxPhase.IN_BLOCK:
                    pending.state = TxState.IN_BLOCK
                elif event.phase == TxPhase.FINALIZED:
                    pending.state = TxState.FINALIZED

        outcome = self.evaluate(pending.call, batch)
        if outcome is not None:
            pending.resolve(outcome)
        return outcome

    def evaluate(self, call: CallDescriptor, batch) -> Optional[Outcome]:
        """Apply the resolution rules to one batch, highest priority first."""
        if call.is_instantiation:
            for event in batch:
                if isinstance(event, InstantiationEvent):
                    return Success(event.contract)

        for event in batch:
            if isinstance(event, ExtrinsicFailedEvent):
                return Failure(decode_dispatch_error(event.error, self.registry))

        for event in batch:
            if isinstance(event, ExtrinsicSucceededEvent):
                return Success(None)

        statuses = [event.phase for event in batch if isinstance(event, StatusUpdate)]
        for phase in statuses:
            if phase in INCLUDED_PHASES:
                if self.inclusion_is_success:
                    return Success(None)
                if phase == TxPhase.FINALIZED:
                    return Failure(OpaqueError("Finalized without an outcome event"))
        for phase in statuses:
            if phase in REJECTED_PHASES:
                return Failure(SubmissionRejectedError(f"Transaction {phase.value}"))

        return None


class TransactionSubmitter:
    """Signs, broadcasts and tracks transactions until they resolve."""

    def __init__(self, registry: MetadataRegistry, monitor=None, inclusion_is_success: bool = True):
        self.engine = ConfirmationEngine(registry, inclusion_is_success)
        self.monitor = monitor

    async def submit(self, signer, call: CallDescriptor, nonce: Optional[int] = None) -> PendingTransaction:
        """
        Sign and broadcast a call. The returned transaction is SUBMITTED, or
        already resolved to a Failure if the node refused it.
        """
        pending = PendingTransaction(call)
        try:
            pending.extrinsic = await signer.sign(call, nonce)
            pending.subscription = await signer.submit(pending.extrinsic)
        except asyncio.TimeoutError as e:
            error = SubscriptionLostError(f"Node did not answer while submitting {call.label}")
            error.__cause__ = e
            return self._refused(pending, error)
        except (SubmissionRejectedError, SubscriptionLostError) as e:
            return self._refused(pending, e)

        pending.state = TxState.SUBMITTED
        logger.info(
            f"Submitted {call.label} as {short(pending.extrinsic.id)} "
            f"(nonce {pending.extrinsic.nonce})"
        )
        return pending

    async def await_outcome(self, pending: PendingTransaction) -> Outcome:
        """
        Wait until the transaction resolves. The subscription is released on
        every exit path, including cancellation by the caller.
        """
        if pending.is_resolved:
            return pending.outcome

        try:
            async with pending.subscription as updates:
                async for result in updates:
                    try:
                        batch = parse_update(result)
                    except (KeyError, TypeError, ValueError) as e:
                        logger.error(f"Ignoring malformed update for {pending.call.label}: {e}")
                        continue

                    logger.debug(f"{pending.call.label}: {batch}")
                    if self.engine.dispatch(pending, batch) is not None:
                        break
        except SubscriptionLostError as e:
            pending.resolve(Failure(e))

        if not pending.is_resolved:
            pending.resolve(Failure(SubscriptionLostError("Event stream ended before resolution")))

        self._record(pending)
        return pending.outcome

    async def submit_and_await(self, signer, call: CallDescriptor,
                               nonce: Optional[int] = None) -> Outcome:
        return await self.await_outcome(await self.submit(signer, call, nonce))

    def _refused(self, pending: PendingTransaction, error: TransactionError) -> PendingTransaction:
        logger.error(f"Submission of {pending.call.label} failed: {error}")
        pending.resolve(Failure(error))
        self._record(pending)
        return pending

    def _record(self, pending: PendingTransaction):
        outcome = pending.outcome
        if outcome.ok:
            logger.info(f"{pending.call.label} resolved: success")
        else:
            logger.error(f"{pending.call.label} resolved: {outcome.kind} failure: {outcome.reason}")
        if self.monitor:
            self.monitor.record_tx(outcome.kind, time.time() - pending.created_at)

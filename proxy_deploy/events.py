"""
Chain events reported for a watched extrinsic, and parsing of node updates.

A node update carries the transaction status plus the events emitted so far;
each update becomes one batch: a tuple of ChainEvent with the StatusUpdate last.
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Union


class TxPhase(Enum):
    FUTURE = "future"
    READY = "ready"
    BROADCAST = "broadcast"
    IN_BLOCK = "inBlock"
    RETRACTED = "retracted"
    FINALITY_TIMEOUT = "finalityTimeout"
    FINALIZED = "finalized"
    USURPED = "usurped"
    DROPPED = "dropped"
    INVALID = "invalid"


INCLUDED_PHASES = (TxPhase.IN_BLOCK, TxPhase.FINALIZED)
REJECTED_PHASES = (TxPhase.DROPPED, TxPhase.INVALID, TxPhase.USURPED)


# ------------------------------------------------------------------ #
# Dispatch error descriptors
# ------------------------------------------------------------------ #
@dataclass(frozen=True)
class ModuleDescriptor:
    section_index: int
    error_index: int
    raw: str


@dataclass(frozen=True)
class OpaqueDescriptor:
    raw: str


DispatchErrorDescriptor = Union[ModuleDescriptor, OpaqueDescriptor]


def parse_dispatch_error(value) -> DispatchErrorDescriptor:
    raw = value if isinstance(value, str) else json.dumps(value, sort_keys=True)
    if isinstance(value, dict) and isinstance(value.get("module"), dict):
        module = value["module"]
        try:
            return ModuleDescriptor(int(module["index"]), int(module["error"]), raw)
        except (KeyError, TypeError, ValueError):
            pass
    return OpaqueDescriptor(raw)


# ------------------------------------------------------------------ #
# Events
# ------------------------------------------------------------------ #
@dataclass(frozen=True)
class InstantiationEvent:
    deployer: str
    contract: str


@dataclass(frozen=True)
class ExtrinsicFailedEvent:
    error: DispatchErrorDescriptor


@dataclass(frozen=True)
class ExtrinsicSucceededEvent:
    pass


@dataclass(frozen=True)
class StatusUpdate:
    phase: TxPhase
    block: str = None


@dataclass(frozen=True)
class UnknownEvent:
    section: str
    method: str


ChainEvent = Union[InstantiationEvent, ExtrinsicFailedEvent, ExtrinsicSucceededEvent,
                   StatusUpdate, UnknownEvent]


def parse_status(status) -> StatusUpdate:
    """Parse `"ready"` or `{"inBlock": "0x..."}` style statuses."""
    if isinstance(status, str):
        return StatusUpdate(TxPhase(status))
    if isinstance(status, dict) and len(status) == 1:
        key, value = next(iter(status.items()))
        return StatusUpdate(TxPhase(key), value if isinstance(value, str) else None)
    raise ValueError(f"Unrecognised status: {status!r}")


def _field(data, key: str, position: int):
    # Some nodes report event data positionally instead of by name
    if isinstance(data, dict):
        return data.get(key)
    if isinstance(data, list):
        return data[position] if position < len(data) else None
    raise ValueError(f"Unrecognised event data: {data!r}")


def parse_event(record: dict) -> ChainEvent:
    if not isinstance(record, dict):
        raise ValueError(f"Event must be an object, got {record!r}")
    section = record.get("section", "")
    method = record.get("method", "")
    data = record.get("data") or {}

    if (section, method) == ("contracts", "Instantiated"):
        deployer, contract = _field(data, "deployer", 0), _field(data, "contract", 1)
        if not isinstance(contract, str):
            raise ValueError(f"Instantiated event without a contract address: {data!r}")
        return InstantiationEvent(deployer=deployer, contract=contract)
    if (section, method) == ("system", "ExtrinsicFailed"):
        return ExtrinsicFailedEvent(parse_dispatch_error(_field(data, "dispatchError", 0)))
    if (section, method) == ("system", "ExtrinsicSuccess"):
        return ExtrinsicSucceededEvent()
    return UnknownEvent(section, method)


def parse_update(result: dict) -> tuple:
    """Turn one `author_extrinsicUpdate` result into a batch of events."""
    if not isinstance(result, dict):
        raise ValueError(f"Update must be an object, got {result!r}")
    records = result.get("events") or []
    if not isinstance(records, list):
        raise ValueError(f"Events must be a list, got {records!r}")
    events = [parse_event(record) for record in records]
    if "status" in result:
        events.append(parse_status(result["status"]))
    return tuple(events)

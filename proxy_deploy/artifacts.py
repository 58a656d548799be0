"""
Artifact loading: resolves a contract name to its wasm code and its metadata.

Layout on disk:
    <root>/<name>/<name>.wasm
    <root>/<name>/metadata.json
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from .crypto import generate_hash, from_hex, to_hex
from .errors import NotFoundError, MalformedError
from .utils.encoding import encode_arguments, decode_value
from .wasm_runtime import WASMRuntime

logger = logging.getLogger(__name__)

CODE_EXTENSION = "wasm"
METADATA_FILE = "metadata.json"


@dataclass(frozen=True)
class MessageSpec:
    """A constructor or message as described by contract metadata."""
    label: str
    selector: bytes
    args: tuple = ()          # ((name, type), ...)
    return_type: Optional[str] = None
    mutates: bool = False
    payable: bool = False

    @property
    def arg_types(self) -> list[str]:
        return [t for _, t in self.args]


@dataclass(frozen=True)
class ContractMetadata:
    name: str
    version: str
    constructors: tuple
    messages: tuple
    source_hash: Optional[bytes] = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: dict) -> 'ContractMetadata':
        if not isinstance(data, dict):
            raise MalformedError("Metadata must be a JSON object")
        spec = data.get("spec")
        if not isinstance(spec, dict):
            raise MalformedError("Metadata has no 'spec' section")

        contract = data.get("contract") or {}
        source = data.get("source") or {}
        if not isinstance(contract, dict) or not isinstance(source, dict):
            raise MalformedError("Metadata 'contract' and 'source' must be objects")

        source_hash = None
        if source.get("hash"):
            try:
                if not isinstance(source["hash"], str):
                    raise ValueError("expected a hex string")
                source_hash = from_hex(source["hash"])
            except ValueError as e:
                raise MalformedError(f"Bad source hash {source['hash']!r}: {e}") from e

        return cls(
            name=str(contract.get("name", "")),
            version=str(contract.get("version", "")),
            constructors=_parse_entries(spec, "constructors"),
            messages=_parse_entries(spec, "messages"),
            source_hash=source_hash,
            raw=data,
        )


def _parse_entries(spec: dict, key: str) -> tuple:
    entries = spec.get(key) or []
    if not isinstance(entries, list):
        raise MalformedError(f"'{key}' must be a list")
    return tuple(_parse_message(entry) for entry in entries)


def _label(entry: dict) -> str:
    if not isinstance(entry, dict):
        raise MalformedError(f"Expected an object, got {entry!r}")
    # Older metadata versions use "name" (sometimes a path list) instead of "label"
    label = entry.get("label", entry.get("name"))
    if isinstance(label, list) and all(isinstance(part, str) for part in label):
        label = "::".join(label)
    if not isinstance(label, str) or not label:
        raise MalformedError(f"Entry without a label: {entry!r}")
    return label


def _type_name(type_spec) -> Optional[str]:
    if type_spec is None:
        return None
    if isinstance(type_spec, str):
        return type_spec
    if not isinstance(type_spec, dict):
        raise MalformedError(f"Bad type description: {type_spec!r}")
    display = type_spec.get("displayName") or type_spec.get("display_name")
    if isinstance(display, str):
        display = [display]
    if not isinstance(display, list) or not display or not isinstance(display[-1], str):
        raise MalformedError(f"Type without a display name: {type_spec!r}")
    return display[-1]


def _parse_message(entry: dict) -> MessageSpec:
    if not isinstance(entry, dict):
        raise MalformedError(f"Expected an object, got {entry!r}")
    try:
        if not isinstance(entry.get("selector"), str):
            raise ValueError("selector must be a hex string")
        selector = from_hex(entry["selector"])
    except ValueError as e:
        raise MalformedError(f"Bad selector in {entry!r}") from e
    if len(selector) != 4:
        raise MalformedError(f"Selector must be 4 bytes: {entry['selector']}")

    raw_args = entry.get("args") or []
    if not isinstance(raw_args, list):
        raise MalformedError(f"Arguments of {entry!r} must be a list")
    args = tuple((_label(arg), _type_name(arg.get("type"))) for arg in raw_args)
    return MessageSpec(
        label=_label(entry),
        selector=selector,
        args=args,
        return_type=_type_name(entry.get("returnType", entry.get("return_type"))),
        mutates=bool(entry.get("mutates", False)),
        payable=bool(entry.get("payable", False)),
    )


@dataclass(frozen=True)
class ContractArtifact:
    name: str
    code: bytes = field(repr=False)
    metadata: ContractMetadata = field(repr=False)
    code_hash: bytes = b""

    @property
    def identity_hash(self) -> str:
        return to_hex(self.code_hash)

    def constructor(self, label: Optional[str] = None) -> MessageSpec:
        """Look up a constructor; the first one when no label is given."""
        if label is None:
            if not self.metadata.constructors:
                raise MalformedError(f"{self.name} declares no constructors")
            return self.metadata.constructors[0]
        for spec in self.metadata.constructors:
            if spec.label == label:
                return spec
        raise MalformedError(f"{self.name} has no constructor '{label}'")

    def message(self, label: str) -> MessageSpec:
        for spec in self.metadata.messages:
            # Trait messages carry a "Trait::method" label
            if spec.label == label or spec.label.split("::")[-1] == label:
                return spec
        raise MalformedError(f"{self.name} has no message '{label}'")

    def encode_arguments(self, spec: MessageSpec, values) -> bytes:
        return encode_arguments(spec.arg_types, list(values))

    def decode_return(self, spec: MessageSpec, data: bytes):
        if spec.return_type is None:
            return None
        value, _ = decode_value(spec.return_type, data)
        return value


def _read(path: str, mode: str):
    try:
        with open(path, mode) as f:
            return f.read()
    except FileNotFoundError as e:
        raise NotFoundError(f"Missing artifact file: {path}") from e


def load(name: str, root: str = "target/ink", validate_code: bool = True,
         runtime: Optional[WASMRuntime] = None) -> ContractArtifact:
    """Load a contract's code and metadata from the artifacts root."""
    directory = os.path.join(root, name)
    code = _read(os.path.join(directory, f"{name}.{CODE_EXTENSION}"), 'rb')
    raw = _read(os.path.join(directory, METADATA_FILE), 'rb')

    try:
        metadata = ContractMetadata.from_dict(json.loads(raw.decode('utf-8')))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedError(f"Metadata for {name} is not valid JSON: {e}") from e

    if validate_code:
        (runtime or WASMRuntime()).validate_contract(code)

    code_hash = generate_hash(code)
    if metadata.source_hash is not None and metadata.source_hash != code_hash:
        raise MalformedError(
            f"Code hash mismatch for {name}: metadata says {to_hex(metadata.source_hash)}, "
            f"code hashes to {to_hex(code_hash)}"
        )

    logger.debug(f"Loaded artifact {name}: {len(code)} bytes, hash {to_hex(code_hash)}")
    return ContractArtifact(name=name, code=code, metadata=metadata, code_hash=code_hash)


class ArtifactLoader:
    """Loads artifacts from one root, sharing a wasm runtime and caching results."""

    def __init__(self, root: str, validate_code: bool = True):
        self.root = root
        self.validate_code = validate_code
        self.runtime = WASMRuntime()
        self._cache = {}

    def load(self, name: str) -> ContractArtifact:
        if name not in self._cache:
            self._cache[name] = load(name, self.root, self.validate_code, self.runtime)
        return self._cache[name]

"""
Read-only metadata registry used to decode module dispatch errors.

Registry JSON:
    {"modules": [{"index": 8, "name": "Contracts",
                  "errors": [{"name": "OutOfGas", "docs": ["..."]}, ...]}]}
Error indices are positions in the "errors" list unless an entry carries its own "index".
"""
import json
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Optional

from .errors import MalformedError, ModuleError, OpaqueError, TransactionError
from .events import DispatchErrorDescriptor, ModuleDescriptor

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_PATH = "data/errors.json"


@dataclass(frozen=True)
class MetaError:
    section: str
    method: str
    documentation: tuple


class MetadataRegistry:
    def __init__(self, entries: dict):
        """
        Args:
            entries: {(section_index, error_index): MetaError}
        """
        self._entries = MappingProxyType(dict(entries))

    @classmethod
    def from_dict(cls, data: dict) -> 'MetadataRegistry':
        entries = {}
        try:
            for module in data["modules"]:
                section_index = int(module["index"])
                for position, error in enumerate(module.get("errors", [])):
                    error_index = int(error.get("index", position))
                    entries[(section_index, error_index)] = MetaError(
                        section=module["name"],
                        method=error["name"],
                        documentation=tuple(error.get("docs", [])),
                    )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedError(f"Invalid error registry: {e}") from e
        return cls(entries)

    @classmethod
    def from_file(cls, path: str) -> 'MetadataRegistry':
        with open(path, 'r') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise MalformedError(f"Error registry {path} is not valid JSON: {e}") from e
        registry = cls.from_dict(data)
        logger.info(f"Loaded {len(registry)} module errors from {path}")
        return registry

    @classmethod
    def default(cls) -> 'MetadataRegistry':
        """The registry shipped with the package."""
        from importlib import resources
        text = resources.files(__package__).joinpath(DEFAULT_REGISTRY_PATH).read_text()
        return cls.from_dict(json.loads(text))

    def find_meta_error(self, section_index: int, error_index: int) -> Optional[MetaError]:
        return self._entries.get((section_index, error_index))

    def __len__(self):
        return len(self._entries)


def decode_dispatch_error(descriptor: DispatchErrorDescriptor,
                          registry: MetadataRegistry) -> TransactionError:
    """
    Translate a dispatch error into the failure reason surfaced to callers.

    Module errors found in the registry become ModuleError; everything else
    becomes OpaqueError carrying the raw text from the node.
    """
    if isinstance(descriptor, ModuleDescriptor):
        meta = registry.find_meta_error(descriptor.section_index, descriptor.error_index)
        if meta is not None:
            return ModuleError(meta.section, meta.method, meta.documentation)
        logger.warning(
            f"No registry entry for module error "
            f"({descriptor.section_index}, {descriptor.error_index})"
        )
    return OpaqueError(descriptor.raw)

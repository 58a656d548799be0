# proxy_deploy/wasm_runtime.py
import wasmtime

from .errors import MalformedError

# Entry points every contract module must export
REQUIRED_EXPORTS = ("deploy", "call")


class WASMRuntime:
    def __init__(self):
        self.engine = wasmtime.Engine()
        self.module_cache = {}

    def load(self, wasm_bytes: bytes) -> wasmtime.Module:
        if wasm_bytes not in self.module_cache:
            try:
                self.module_cache[wasm_bytes] = wasmtime.Module(self.engine, wasm_bytes)
            except wasmtime.WasmtimeError as e:
                raise MalformedError(f"Invalid wasm module: {e}") from e
        return self.module_cache[wasm_bytes]

    def exports(self, wasm_bytes: bytes) -> list[str]:
        return [export.name for export in self.load(wasm_bytes).exports]

    def validate_contract(self, wasm_bytes: bytes):
        """Compile the module and check it has the contract entry points."""
        exported = set(self.exports(wasm_bytes))
        missing = [name for name in REQUIRED_EXPORTS if name not in exported]
        if missing:
            raise MalformedError(f"Contract code does not export: {', '.join(missing)}")

"""
Shared fixtures: contract artifacts on disk, a scripted websocket and an
in-memory chain that understands the v1 / v2 / proxy contracts.
"""
import asyncio
import json
import pytest
import wasmtime

from proxy_deploy.core import Extrinsic, INSTANTIATE
from proxy_deploy.crypto import generate_hash, from_hex, to_hex
from proxy_deploy.node import NodeConnection
from proxy_deploy.utils.encoding import decode_value, encode_value

SEL_NEW = "0x9bae9d5e"
SEL_DEFAULT = "0xed4b9d1b"
SEL_INSERT = "0x2a1f0d4b"
SEL_AVERAGE = "0x5a1b8d3c"
SEL_UPGRADE = "0x1f7a3b2e"

CONTRACTS_SECTION = 18
CONTRACT_TRAPPED = 17


def contract_code(marker: str) -> bytes:
    return wasmtime.wat2wasm(
        f'(module (func (export "deploy")) (func (export "call")) (func (export "{marker}")))'
    )


def _type(name):
    return {"displayName": [name], "type": 0}


def implementation_metadata(name: str, constructor: dict, code: bytes = None) -> dict:
    data = {
        "contract": {"name": name, "version": "0.1.0"},
        "spec": {
            "constructors": [constructor],
            "messages": [
                {"label": "Averager::insert", "selector": SEL_INSERT, "mutates": True,
                 "args": [{"label": "value", "type": _type("i32")}], "returnType": None},
                {"label": "Averager::average", "selector": SEL_AVERAGE, "mutates": False,
                 "args": [], "returnType": _type("i32")},
            ],
        },
    }
    if code is not None:
        data["source"] = {"hash": to_hex(generate_hash(code))}
    return data


def proxy_metadata(reference_type: str = "Hash") -> dict:
    return {
        "contract": {"name": "proxy", "version": "0.1.0"},
        "spec": {
            "constructors": [
                {"name": ["new"], "selector": SEL_NEW,
                 "args": [{"name": "implementation", "type": _type(reference_type)}]},
            ],
            "messages": [
                {"name": ["upgrade"], "selector": SEL_UPGRADE, "mutates": True,
                 "args": [{"name": "implementation", "type": _type(reference_type)}]},
                {"label": "Averager::insert", "selector": SEL_INSERT, "mutates": True,
                 "args": [{"label": "value", "type": _type("i32")}]},
                {"label": "Averager::average", "selector": SEL_AVERAGE,
                 "args": [], "returnType": _type("i32")},
            ],
        },
    }


def write_artifact(root, name: str, code: bytes, metadata):
    directory = root / name
    directory.mkdir(parents=True, exist_ok=True)
    (directory / f"{name}.wasm").write_bytes(code)
    text = metadata if isinstance(metadata, str) else json.dumps(metadata)
    (directory / "metadata.json").write_text(text)


@pytest.fixture
def artifacts_root(tmp_path):
    """v1 takes the deployer's address, v2 takes nothing, the proxy takes a code hash."""
    v1_code = contract_code("v1")
    write_artifact(tmp_path, "v1", v1_code, implementation_metadata(
        "v1",
        {"label": "new", "selector": SEL_NEW,
         "args": [{"label": "owner", "type": _type("AccountId")}]},
        code=v1_code,
    ))
    write_artifact(tmp_path, "v2", contract_code("v2"), implementation_metadata(
        "v2", {"label": "default", "selector": SEL_DEFAULT, "args": []},
    ))
    write_artifact(tmp_path, "proxy", contract_code("proxy"), proxy_metadata())
    return tmp_path


# ------------------------------------------------------------------ #
# Websocket + chain fakes
# ------------------------------------------------------------------ #
class FakeWebSocket:
    """Feeds every sent request to a handler and queues its replies for the reader."""

    def __init__(self, handler):
        self.handler = handler
        self.sent = []
        self.incoming = asyncio.Queue()

    async def send(self, text):
        message = json.loads(text)
        self.sent.append(message)
        for reply in self.handler(message):
            self.push(reply)

    def push(self, message):
        self.incoming.put_nowait(json.dumps(message))

    def drop(self):
        """Simulate the node going away."""
        self.incoming.put_nowait(None)

    async def close(self):
        self.drop()

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


def notification(subscription_id, result):
    return {"jsonrpc": "2.0", "method": "author_extrinsicUpdate",
            "params": {"subscription": subscription_id, "result": result}}


def reply(request, result):
    return {"jsonrpc": "2.0", "id": request["id"], "result": result}


def error_reply(request, code, message, data=None):
    return {"jsonrpc": "2.0", "id": request["id"],
            "error": {"code": code, "message": message, "data": data}}


class FakeChain:
    """
    Executes extrinsics against three contract kinds:
    "v1" averages by mean, "v2" by median, "proxy" stores values and
    delegates the averaging rule to whatever implementation it points at.
    """

    def __init__(self, code_kinds: dict = None):
        self.code_kinds = dict(code_kinds or {})   # code hash hex -> kind
        self.nonces = {}
        self.contracts = {}                        # address -> state
        self.submitted = []
        self.unwatched = []
        self.trap_selectors = set()
        self.silent = False                        # accept but never report
        self._next_sub = 0

    def __call__(self, request):
        method = request["method"]
        params = request["params"]
        if method == "system_accountNextIndex":
            return [reply(request, self.nonces.get(params[0], 0))]
        if method == "author_unwatchExtrinsic":
            self.unwatched.append(params[0])
            return [reply(request, True)]
        if method == "contracts_call":
            return [self._query(request, params[0])]
        if method == "author_submitAndWatchExtrinsic":
            return self._submit(request, from_hex(params[0]))
        return [error_reply(request, -32601, "Method not found")]

    def _submit(self, request, payload):
        extrinsic = Extrinsic.decode(payload)
        assert extrinsic.verify_signature()
        expected = self.nonces.get(extrinsic.signer, 0)
        if extrinsic.nonce < expected:
            return [error_reply(request, 1010, "Invalid Transaction", "Transaction is outdated")]
        if extrinsic.nonce > expected:
            return [error_reply(request, 1010, "Invalid Transaction", "Transaction is in the future")]
        self.nonces[extrinsic.signer] = expected + 1
        self.submitted.append(extrinsic)

        self._next_sub += 1
        sub = f"sub-{self._next_sub}"
        messages = [reply(request, sub), notification(sub, {"status": "ready"})]
        if self.silent:
            return messages

        events = self._execute(extrinsic)
        block = to_hex(generate_hash(payload))
        messages.append(notification(sub, {"status": {"inBlock": block}, "events": events}))
        messages.append(notification(sub, {"status": {"finalized": block}, "events": events}))
        return messages

    def _execute(self, extrinsic):
        call = extrinsic.call
        selector = to_hex(call.selector)
        if selector in self.trap_selectors:
            failed = {"dispatchError": {"module": {"index": CONTRACTS_SECTION, "error": CONTRACT_TRAPPED}}}
            return [{"section": "system", "method": "ExtrinsicFailed", "data": failed}]

        if call.kind == INSTANTIATE:
            code_hash = to_hex(generate_hash(call.code))
            kind = self.code_kinds[code_hash]
            address = to_hex(generate_hash(extrinsic.id + call.salt))
            state = {"kind": kind, "values": [], "backend": None}
            if kind == "proxy":
                state["backend"], _ = decode_value("Hash", call.args)
            self.contracts[address] = state
            return [
                {"section": "contracts", "method": "Instantiated",
                 "data": {"deployer": extrinsic.signer, "contract": address}},
                {"section": "system", "method": "ExtrinsicSuccess", "data": {}},
            ]

        state = self.contracts[call.dest]
        if selector == SEL_INSERT:
            value, _ = decode_value("i32", call.args)
            state["values"].append(value)
        elif selector == SEL_UPGRADE:
            state["backend"], _ = decode_value("Hash", call.args)
        return [{"section": "system", "method": "ExtrinsicSuccess", "data": {}}]

    def _kind_of(self, reference):
        if reference in self.code_kinds:
            return self.code_kinds[reference]
        return self.contracts[reference]["kind"]

    def _query(self, request, params):
        state = self.contracts[params["dest"]]
        if params["inputData"] != SEL_AVERAGE:
            return reply(request, {"result": {"Err": "unsupported"}, "gasConsumed": 0})

        kind = self._kind_of(state["backend"]) if state["kind"] == "proxy" else state["kind"]
        values = sorted(state["values"])
        if not values:
            average = 0
        elif kind == "v1":
            average = int(sum(values) / len(values))
        else:
            average = values[len(values) // 2]
        data = to_hex(encode_value("i32", average))
        return reply(request, {"result": {"Ok": {"flags": 0, "data": data}}, "gasConsumed": 1})


@pytest.fixture
def chain(artifacts_root):
    kinds = {}
    for name in ("v1", "v2", "proxy"):
        code = (artifacts_root / name / f"{name}.wasm").read_bytes()
        kinds[to_hex(generate_hash(code))] = name
    return FakeChain(kinds)


@pytest.fixture
def connect():
    """Returns a function attaching a NodeConnection to a handler; call it inside a running loop."""
    def _connect(handler):
        websocket = FakeWebSocket(handler)
        node = NodeConnection("ws://fake:9944", request_timeout=5)
        node.attach(websocket)
        return node, websocket
    return _connect

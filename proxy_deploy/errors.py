"""
Error taxonomy for artifact loading, transaction submission and the workflow.
"""


class ProxyDeployError(Exception):
    """Base class for all errors raised by proxy_deploy."""
    pass


# ------------------------------------------------------------------ #
# Artifacts
# ------------------------------------------------------------------ #
class ArtifactError(ProxyDeployError):
    """Raised when contract files cannot be used. Fatal before any submission."""
    pass


class NotFoundError(ArtifactError):
    """The code blob or the metadata file of a contract is missing."""
    pass


class MalformedError(ArtifactError):
    """The metadata cannot be parsed, or the code is not a usable wasm module."""
    pass


# ------------------------------------------------------------------ #
# Transactions
# ------------------------------------------------------------------ #
class TransactionError(ProxyDeployError):
    """Base class for every terminal failure reason of a transaction."""
    kind = "error"


class SubmissionRejectedError(TransactionError):
    """The node refused the transaction before any event was seen."""
    kind = "rejected"


class SubscriptionLostError(TransactionError):
    """The event stream went away before the transaction resolved."""
    kind = "lost"


class ModuleError(TransactionError):
    """A decoded on-chain dispatch error."""
    kind = "module"

    def __init__(self, section: str, method: str, documentation=()):
        self.section = section
        self.method = method
        self.documentation = tuple(documentation)
        super().__init__(f"{section}.{method}: {' '.join(self.documentation)}")


class OpaqueError(TransactionError):
    """A dispatch error that could not be decoded; carries the raw text."""
    kind = "opaque"

    def __init__(self, raw: str):
        self.raw = raw
        super().__init__(raw)


# ------------------------------------------------------------------ #
# Node / queries / workflow
# ------------------------------------------------------------------ #
class RpcError(ProxyDeployError):
    """The node answered a JSON-RPC request with an error object."""

    def __init__(self, code: int, message: str, data=None):
        self.code = code
        self.message = message
        self.data = data
        text = f"RPC error {code}: {message}"
        if data:
            text += f" ({data})"
        super().__init__(text)


class QueryError(ProxyDeployError):
    """A read-only contract call returned an error."""
    pass


class WorkflowAssertionError(ProxyDeployError):
    """A query in the scripted workflow returned an unexpected value."""
    pass

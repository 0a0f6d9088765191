"""Domain errors raised by the query engine."""


class LibrarianError(RuntimeError):
    """Base class for query engine errors."""


class InvalidScopeError(LibrarianError):
    """Raised when a scope path resolves outside the workspace root."""

    def __init__(self, path: str, workspace_root: str):
        super().__init__(f"Scope path {path!r} lies outside workspace {workspace_root!r}")
        self.path = path
        self.workspace_root = workspace_root


class MalformedCacheEntryError(LibrarianError):
    """A cache payload could not be decoded.

    Decoders surface this as a ``None`` result; it is raised only inside
    the decoding helpers and never leaves the cache layer.
    """


class NoCandidatesError(LibrarianError):
    """Retrieval returned an empty candidate batch."""


class BootstrapRequiredError(LibrarianError):
    """The index is not ready to answer queries."""

    def __init__(self, reason: str):
        super().__init__(f"Bootstrap required: {reason}")
        self.reason = reason


class ConfigError(LibrarianError):
    """Raised when the configuration file cannot be parsed."""

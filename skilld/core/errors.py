"""Error taxonomy for the resolution-and-caching pipeline."""


class SkilldError(RuntimeError):
    """Base class for errors raised by skilld."""


class InvalidIdentifier(SkilldError, ValueError):
    """Package name or version does not match the allowed pattern."""

    def __init__(self, kind: str, value: str):
        self.kind = kind
        self.value = value
        super().__init__(f"Invalid {kind}: {value!r}")


class PathTraversal(SkilldError, ValueError):
    """A composed path escapes the directory it must live under."""

    def __init__(self, path: str, root: str):
        self.path = path
        self.root = root
        super().__init__(f"Path {path!r} is outside {root!r}")


class NotFound(SkilldError):
    """An upstream source has nothing for the requested package."""


class TransientFetchError(SkilldError):
    """Network failure or timeout talking to an upstream source."""


class PackageSyncError(SkilldError):
    """A single package's pipeline failed."""

    def __init__(self, package: str, reason: str):
        self.package = package
        self.reason = reason
        super().__init__(f"{package}: {reason}")


class InvalidTransition(SkilldError, ValueError):
    """A package sync state change that the state machine does not allow."""

    def __init__(self, package: str, current: str, target: str):
        self.package = package
        self.current = current
        self.target = target
        super().__init__(f"{package}: cannot go from {current} to {target}")

"""Exceptions raised by the refstore engine.

Every error inherits from RefstoreError so callers (the CLI, a tool-surface
server) can catch one type and still branch on the kind.
"""

from __future__ import annotations


class RefstoreError(Exception):
    """Base exception for all refstore errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(RefstoreError):
    """A reference, bundle, registry or manifest entry does not exist."""

    def __init__(self, resource: str, name: str, where: str = ""):
        message = f"{resource} '{name}' not found"
        if where:
            message += f" in {where}"
        super().__init__(message, details={"resource": resource, "name": name})
        self.resource = resource
        self.name = name


class AlreadyExistsError(RefstoreError):
    """A name is already taken."""

    def __init__(self, resource: str, name: str, where: str = ""):
        message = f"{resource} '{name}' already exists"
        if where:
            message += f" in {where}"
        super().__init__(message, details={"resource": resource, "name": name})
        self.resource = resource
        self.name = name


class InvalidNameError(RefstoreError):
    """A name fails validation."""

    def __init__(self, name: str, reason: str):
        super().__init__(
            f"invalid name '{name}': {reason}",
            details={"name": name, "reason": reason},
        )
        self.name = name
        self.reason = reason


class ResolutionFailedError(RefstoreError):
    """One or more manifest entries could not be resolved.

    ``failures`` maps each offending entry to the reason it failed, so a
    report can list all of them at once.
    """

    def __init__(self, failures: dict[str, str]):
        self.failures = dict(sorted(failures.items()))
        lines = [f"  {name}: {reason}" for name, reason in self.failures.items()]
        message = f"failed to resolve {len(self.failures)} manifest entr" + (
            "y" if len(self.failures) == 1 else "ies"
        )
        super().__init__(
            message + ":\n" + "\n".join(lines),
            details={"failures": self.failures},
        )


class SourceFetchError(RefstoreError):
    """Fetching a reference's source content failed."""

    def __init__(self, name: str, reason: str):
        super().__init__(
            f"failed to fetch source for '{name}': {reason}",
            details={"name": name, "reason": reason},
        )
        self.name = name
        self.reason = reason


class VersionControlError(RefstoreError):
    """An underlying git operation failed."""

    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"git {operation} failed: {reason.strip()}",
            details={"operation": operation, "reason": reason.strip()},
        )
        self.operation = operation
        self.reason = reason.strip()


class PinNotFoundError(RefstoreError):
    """A pinned tag or commit does not exist for the reference's registry."""

    def __init__(self, name: str, pin: str, registry: str, reason: str = ""):
        message = f"pin '{pin}' for '{name}' not found in registry '{registry}'"
        if reason:
            message += f": {reason}"
        super().__init__(
            message, details={"name": name, "pin": pin, "registry": registry}
        )
        self.name = name
        self.pin = pin
        self.registry = registry


class DependentExistsError(RefstoreError):
    """Removal is blocked because bundles still reference the name."""

    def __init__(self, name: str, dependents: list[str]):
        super().__init__(
            f"reference '{name}' is still used by bundle(s): {', '.join(dependents)}",
            details={"name": name, "dependents": dependents},
        )
        self.name = name
        self.dependents = dependents


class RegistryReadOnlyError(RefstoreError):
    """A mutation was attempted on a read-only (remote) registry."""

    def __init__(self, registry: str):
        super().__init__(
            f"registry '{registry}' is read-only", details={"registry": registry}
        )
        self.registry = registry


class ManifestError(RefstoreError):
    """An index, manifest or config document could not be parsed."""


class ConfigError(RefstoreError):
    """An unknown configuration key or an invalid value."""


class DestinationError(RefstoreError):
    """A sync job's destination could not be written."""

    def __init__(self, name: str, destination: str, reason: str):
        super().__init__(
            f"cannot write destination '{destination}' for '{name}': {reason}",
            details={"name": name, "destination": destination, "reason": reason},
        )
        self.name = name
        self.destination = destination

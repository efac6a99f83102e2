"""
Error taxonomy for the recommendation and model-lifecycle subsystem.

Operational tooling can alert on the concrete class: a corrupted artifact
(ArtifactIntegrityError) is distinct from a missing one (ModelNotFoundError)
or one that parses but lacks required fields (ArtifactValidationError).
"""

from typing import Dict, List, Optional


class RecsysError(Exception):
    """Base class for all subsystem errors."""


# ============================================================================
# Model Loading
# ============================================================================

class ModelLoadError(RecsysError):
    """A model version could not be loaded."""

    def __init__(self, name: str, version: Optional[str], message: str):
        self.name = name
        self.version = version
        super().__init__(message)


class ModelNotFoundError(ModelLoadError):
    """No artifact exists for the requested name/version."""

    def __init__(self, name: str, version: Optional[str] = None, message: Optional[str] = None):
        if message is None:
            if version is None:
                message = f"No persisted versions for model {name}"
            else:
                message = f"Model {name} version {version} not found"
        super().__init__(name, version, message)


class ArtifactParseError(ModelLoadError):
    """Artifact document is not valid JSON."""


class ArtifactValidationError(ModelLoadError):
    """Artifact parsed but failed schema validation."""

    def __init__(
        self,
        name: str,
        version: Optional[str],
        errors: List[str],
        missing_fields: Optional[List[str]] = None
    ):
        self.errors = list(errors)
        self.missing_fields = list(missing_fields or [])
        super().__init__(
            name, version,
            f"Schema validation failed for {name} v{version}: {'; '.join(self.errors)}"
        )


class ArtifactIntegrityError(ModelLoadError):
    """Stored checksum does not match the recomputed one: artifact is corrupted."""

    def __init__(
        self,
        name: str,
        version: Optional[str],
        expected: Optional[str],
        actual: str
    ):
        self.expected = expected
        self.actual = actual
        if expected is None:
            message = f"Corrupted artifact {name} v{version}: no checksum recorded"
        else:
            message = (
                f"Corrupted artifact {name} v{version}: checksum mismatch "
                f"(expected {expected[:12]}..., got {actual[:12]}...)"
            )
        super().__init__(name, version, message)


class FallbackExhaustedError(ModelLoadError):
    """Every candidate version failed and no baseline was requested."""

    def __init__(self, name: str, attempts: Dict[str, Exception]):
        self.attempts = dict(attempts)
        tried = ", ".join(f"{v} ({type(e).__name__})" for v, e in self.attempts.items())
        super().__init__(name, None, f"All versions of {name} failed to load: {tried}")


# ============================================================================
# Persistence / Registry
# ============================================================================

class VersionExistsError(RecsysError):
    """Attempt to write a version that is already persisted."""

    def __init__(self, name: str, version: str):
        self.name = name
        self.version = version
        super().__init__(f"Version {version} already exists for {name}")


class DuplicateRegistrationError(RecsysError):
    """(name, version) is already registered."""

    def __init__(self, name: str, version: str):
        self.name = name
        self.version = version
        super().__init__(f"Model {name} version {version} is already registered")


# ============================================================================
# Data Access
# ============================================================================

class RatingStoreError(RecsysError):
    """Rating store is unavailable or returned unusable data."""

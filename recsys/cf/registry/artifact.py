"""
Model Artifact Schema.

A model artifact is the self-describing JSON document the model manager
persists: name, SemVer version, model type, weights, metadata and a
checksum of the weights. This module owns the in-memory representation,
schema validation, and the migrations that lift older document layouts
into the current one.

Document layouts:
- CURRENT:       {name, version, type, weights, metadata, checksum}
- LEGACY_FIELDS: {model_type, model_weights, model_metadata,
                  model_version, model_checksum}
- LEGACY_DUMP:   flat trained-model dumps
                 {type, algorithm, parameters, trainedAt, <weight tables>...}

Example:
    >>> from recsys.cf.registry.artifact import detect_schema, migrate_artifact
    >>> doc = {'model_type': 'collaborative_filtering', 'model_weights': [0.5]}
    >>> detect_schema(doc)
    <ArtifactSchema.LEGACY_FIELDS: 'legacy_fields'>
    >>> migrate_artifact(doc, version='0.9.0')['weights']
    [0.5]
"""

from typing import Dict, Optional, Any
from dataclasses import dataclass, field, replace
from enum import Enum
import copy
import logging

from ..errors import ArtifactValidationError
from .utils import is_semver, calculate_checksum

logger = logging.getLogger(__name__)


BASELINE_VERSION = 'baseline'
REQUIRED_FIELDS = ('version', 'type', 'weights')

LEGACY_FIELD_MAP = {
    'model_type': 'type',
    'model_weights': 'weights',
    'model_metadata': 'metadata',
    'model_version': 'version',
    'model_checksum': 'checksum',
    'model_name': 'name',
}

# Keys of a flat dump that describe the model rather than hold weights
LEGACY_DUMP_DESCRIPTORS = ('type', 'algorithm', 'parameters', 'trainedAt', 'version', 'name')


class ModelType(str, Enum):
    COLLABORATIVE_FILTERING = 'collaborative_filtering'
    CONTENT_BASED = 'content_based'
    HYBRID = 'hybrid'


class ArtifactSchema(str, Enum):
    CURRENT = 'current'
    LEGACY_FIELDS = 'legacy_fields'
    LEGACY_DUMP = 'legacy_dump'


# ============================================================================
# Artifact
# ============================================================================

@dataclass(frozen=True)
class ModelArtifact:
    """
    Loaded model artifact. Never mutated after construction.

    Attributes:
        name: Model name (e.g. 'user_based_cf')
        version: SemVer string, or 'baseline' for the built-in default
        type: ModelType
        weights: Opaque weight payload (lists / dicts of numbers)
        metadata: trained_at, dataset_size, accuracy, hyperparameters, ...
        checksum: SHA-256 of weights recorded at save time
    """
    name: str
    version: str
    type: ModelType
    weights: Any
    metadata: Dict[str, Any] = field(default_factory=dict)
    checksum: Optional[str] = None

    @property
    def is_baseline(self) -> bool:
        return self.version == BASELINE_VERSION

    @property
    def hyperparameters(self) -> Dict[str, Any]:
        return dict(self.metadata.get('hyperparameters') or {})

    def detached(self) -> 'ModelArtifact':
        """Copy whose weights and metadata share no state with this one."""
        return replace(
            self,
            weights=copy.deepcopy(self.weights),
            metadata=copy.deepcopy(self.metadata)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Full persisted document (deep copy)."""
        return {
            'name': self.name,
            'version': self.version,
            'type': self.type.value,
            'weights': copy.deepcopy(self.weights),
            'metadata': copy.deepcopy(self.metadata),
            'checksum': self.checksum,
        }

    def metadata_document(self) -> Dict[str, Any]:
        """Everything except weights (sidecar contents)."""
        doc = self.to_dict()
        del doc['weights']
        return doc

    @classmethod
    def from_dict(cls, doc: Dict[str, Any], name: Optional[str] = None) -> 'ModelArtifact':
        """
        Build from a validated CURRENT-schema document.

        An explicit name (the one encoded in the filename) wins over the
        document's own name field.
        """
        return cls(
            name=name or doc.get('name'),
            version=doc['version'],
            type=ModelType(doc['type']),
            weights=copy.deepcopy(doc['weights']),
            metadata=copy.deepcopy(doc.get('metadata') or {}),
            checksum=doc.get('checksum'),
        )

    def __repr__(self) -> str:
        return (
            f"ModelArtifact(name={self.name!r}, version={self.version!r}, "
            f"type={self.type.value}, checksum={(self.checksum or '')[:12]!r})"
        )


# ============================================================================
# Validation
# ============================================================================

def validate_artifact_document(
    doc: Any,
    name: str,
    expected_version: Optional[str] = None
) -> None:
    """
    Check a parsed document against the CURRENT schema.

    Args:
        doc: Parsed JSON document
        name: Model name (for error reporting)
        expected_version: Version encoded in the filename, if any

    Raises:
        ArtifactValidationError: Listing every problem found
    """
    if not isinstance(doc, dict):
        raise ArtifactValidationError(
            name, expected_version,
            [f"document must be an object, got {type(doc).__name__}"]
        )

    missing = [f for f in REQUIRED_FIELDS if doc.get(f) is None]
    errors = [f"missing required field '{f}'" for f in missing]

    version = doc.get('version')
    if version is not None:
        if not (is_semver(version) or version == BASELINE_VERSION):
            errors.append(f"invalid version {version!r}")
        elif expected_version is not None and version != expected_version:
            errors.append(f"version {version!r} does not match file version {expected_version!r}")

    model_type = doc.get('type')
    if model_type is not None and model_type not in {t.value for t in ModelType}:
        errors.append(f"unknown model type {model_type!r}")

    metadata = doc.get('metadata')
    if metadata is not None and not isinstance(metadata, dict):
        errors.append("metadata must be an object")

    checksum = doc.get('checksum')
    if checksum is not None and not isinstance(checksum, str):
        errors.append("checksum must be a string")

    if errors:
        raise ArtifactValidationError(name, expected_version, errors, missing_fields=missing)


# ============================================================================
# Migration
# ============================================================================

def detect_schema(doc: Dict[str, Any]) -> ArtifactSchema:
    """Identify which document layout doc uses."""
    if any(key in doc for key in ('model_type', 'model_weights')):
        return ArtifactSchema.LEGACY_FIELDS
    if 'weights' not in doc and ('trainedAt' in doc or 'parameters' in doc):
        return ArtifactSchema.LEGACY_DUMP
    return ArtifactSchema.CURRENT


def _infer_model_type(raw: Any) -> str:
    values = {t.value for t in ModelType}
    if raw in values:
        return raw
    text = str(raw or '').lower()
    if 'hybrid' in text:
        return ModelType.HYBRID.value
    if 'content' in text:
        return ModelType.CONTENT_BASED.value
    return ModelType.COLLABORATIVE_FILTERING.value


def _migrate_legacy_fields(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in doc.items():
        out[LEGACY_FIELD_MAP.get(key, key)] = copy.deepcopy(value)
    return out


def _migrate_legacy_dump(doc: Dict[str, Any]) -> Dict[str, Any]:
    weights = {
        key: copy.deepcopy(value)
        for key, value in doc.items()
        if key not in LEGACY_DUMP_DESCRIPTORS
    }

    metadata = {'hyperparameters': copy.deepcopy(doc.get('parameters') or {})}
    if doc.get('trainedAt') is not None:
        metadata['trained_at'] = doc['trainedAt']
    if doc.get('algorithm') is not None:
        metadata['algorithm'] = doc['algorithm']

    out = {
        'type': _infer_model_type(doc.get('type') or doc.get('algorithm')),
        'weights': weights,
        'metadata': metadata,
    }
    if doc.get('version') is not None:
        out['version'] = doc['version']
    if doc.get('name') is not None:
        out['name'] = doc['name']
    return out


_MIGRATIONS = {
    ArtifactSchema.LEGACY_FIELDS: _migrate_legacy_fields,
    ArtifactSchema.LEGACY_DUMP: _migrate_legacy_dump,
}


def migrate_artifact(
    doc: Dict[str, Any],
    name: Optional[str] = None,
    version: Optional[str] = None
) -> Dict[str, Any]:
    """
    Lift doc into the CURRENT layout. Pure: the input is not modified.

    A CURRENT document is returned unchanged (as a copy). Legacy documents
    get their name/version from the filename when they carry none, a
    checksum computed from the migrated weights when none was recorded,
    and metadata['migrated_from'] naming the source layout.

    Args:
        doc: Parsed document in any supported layout
        name: Model name from the filename
        version: Version from the filename
    """
    schema = detect_schema(doc)
    if schema == ArtifactSchema.CURRENT:
        return copy.deepcopy(doc)

    out = _MIGRATIONS[schema](doc)

    if out.get('version') is None and version is not None:
        out['version'] = version
    if out.get('name') is None and name is not None:
        out['name'] = name

    metadata = out.get('metadata')
    if not isinstance(metadata, dict):
        metadata = {}
    metadata['migrated_from'] = schema.value
    out['metadata'] = metadata

    if out.get('checksum') is None and out.get('weights') is not None:
        out['checksum'] = calculate_checksum(out['weights'])

    logger.info(f"Migrated artifact {name} v{out.get('version')} from {schema.value}")
    return out


# ============================================================================
# Baseline
# ============================================================================

def build_baseline_artifact(name: str, model_type: Optional[ModelType] = None) -> ModelArtifact:
    """
    Built-in last-resort artifact.

    Carries no learned weights and no hyperparameter overrides, so the
    serving layer runs on its configured defaults.
    """
    if model_type is None:
        model_type = ModelType(_infer_model_type(name))

    weights: Dict[str, Any] = {}
    return ModelArtifact(
        name=name,
        version=BASELINE_VERSION,
        type=model_type,
        weights=weights,
        metadata={
            'trained_at': None,
            'dataset_size': 0,
            'accuracy': None,
            'hyperparameters': {},
            'baseline': True,
        },
        checksum=calculate_checksum(weights),
    )

"""
Model Registry & Lifecycle Module.

This module provides versioned management of trained model artifacts:
- Artifact persistence with SemVer versioning
- Checksum validation and schema migration
- Fallback loading with a built-in baseline
- In-memory registry with deprecation and audit trail

Modules:
    artifact: ModelArtifact, ModelType, schema validation and migration
    model_manager: ModelManager for saving/loading artifacts
    registry: ModelRegistry index of known versions
    utils: Utility functions (SemVer, checksums, file naming, metadata)

Example:
    >>> from recsys.cf.registry import ModelManager, ModelRegistry
    >>>
    >>> registry = ModelRegistry()
    >>> manager = ModelManager('artifacts/models', registry=registry)
    >>> version = await manager.save_model({
    ...     'name': 'item_based_cf',
    ...     'type': 'collaborative_filtering',
    ...     'weights': {'item_bias': [0.1, -0.2]},
    ... })
    >>> registry.deprecate('item_based_cf', version)
    >>> model = await manager.load_model('item_based_cf', fallback=True, baseline=True)
"""

# Artifact schema
from .artifact import (
    ModelArtifact,
    ModelType,
    ArtifactSchema,
    BASELINE_VERSION,
    REQUIRED_FIELDS,
    build_baseline_artifact,
    detect_schema,
    migrate_artifact,
    validate_artifact_document,
)

# Registry
from .registry import (
    ModelRegistry,
    RegistryEntry,
)

# Manager
from .model_manager import (
    ModelManager,
    ManagerStats,
    DEFAULT_MODEL_DIR,
)

# Utilities
from .utils import (
    parse_version,
    compare_versions,
    sort_versions,
    bump_version,
    calculate_checksum,
    artifact_filename,
    metadata_filename,
    parse_artifact_filename,
    create_model_metadata,
)


__all__ = [
    # Artifact
    'ModelArtifact',
    'ModelType',
    'ArtifactSchema',
    'BASELINE_VERSION',
    'REQUIRED_FIELDS',
    'build_baseline_artifact',
    'detect_schema',
    'migrate_artifact',
    'validate_artifact_document',

    # Registry
    'ModelRegistry',
    'RegistryEntry',

    # Manager
    'ModelManager',
    'ManagerStats',
    'DEFAULT_MODEL_DIR',

    # Utilities
    'parse_version',
    'compare_versions',
    'sort_versions',
    'bump_version',
    'calculate_checksum',
    'artifact_filename',
    'metadata_filename',
    'parse_artifact_filename',
    'create_model_metadata',
]

"""
Model Manager Module.

Persists, versions, validates, migrates, caches and serves model artifacts:
- Save with automatic SemVer bumping (never overwrites an existing version)
- Load a specific or the latest version, with checksum verification
- Fallback cascade to lower versions, then to a built-in baseline
- In-memory cache keyed by (name, version), invalidated on save
- Transparent migration of older artifact layouts
- Delete retired versions together with their sidecar

Artifacts live as self-describing JSON documents in one directory:

    <model_dir>/<name>-v<major>.<minor>.<patch>.json        full document
    <model_dir>/<name>-v<major>.<minor>.<patch>.meta.json   all but weights

Storage I/O runs in the default executor so the async API never blocks
the event loop.

Example:
    >>> from recsys.cf.registry import ModelManager
    >>> manager = ModelManager('artifacts/models')
    >>> version = await manager.save_model({
    ...     'name': 'user_based_cf',
    ...     'type': 'collaborative_filtering',
    ...     'weights': {'bias': [0.1, 0.2]},
    ...     'metadata': {'hyperparameters': {'neighborhood_size': 30}},
    ... }, update_type='minor')
    >>> model = await manager.load_model('user_based_cf', fallback=True, baseline=True)
"""

from typing import Dict, List, Optional, Any, Union, Sequence
from pathlib import Path
from dataclasses import dataclass, asdict
from datetime import datetime
import asyncio
import json
import os
import time
import threading
import logging

import pandas as pd

from ..cache import LRUCache
from ..errors import (
    ModelLoadError,
    ModelNotFoundError,
    ArtifactParseError,
    ArtifactIntegrityError,
    ArtifactValidationError,
    FallbackExhaustedError,
    VersionExistsError,
)
from .artifact import (
    ModelArtifact,
    ModelType,
    build_baseline_artifact,
    migrate_artifact,
    validate_artifact_document,
)
from .registry import ModelRegistry, RegistryEntry
from .utils import (
    _convert_numpy_types,
    artifact_filename,
    metadata_filename,
    bump_version,
    calculate_checksum,
    compare_versions,
    create_model_metadata,
    ensure_directory,
    is_semver,
    scan_versions,
    sort_versions,
)

logger = logging.getLogger(__name__)


DEFAULT_MODEL_DIR = 'artifacts/models'


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ManagerStats:
    """Model manager statistics."""
    total_loads: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    fallbacks: int = 0
    baseline_loads: int = 0
    saves: int = 0
    deletes: int = 0
    last_load_time_ms: float = 0
    last_save_at: Optional[str] = None


# ============================================================================
# Model Manager
# ============================================================================

class ModelManager:
    """
    Versioned artifact store with caching and fallback.

    Example:
        >>> manager = ModelManager(model_dir, registry=ModelRegistry())
        >>> await manager.save_model(model)            # -> '1.0.0'
        >>> await manager.save_model(model, 'major')   # -> '2.0.0'
        >>> await manager.load_model(model['name'])    # -> v2.0.0
    """

    def __init__(
        self,
        model_dir: Optional[str] = None,
        registry: Optional[ModelRegistry] = None,
        cache_enabled: bool = True,
        cache_size: int = 64
    ):
        """
        Args:
            model_dir: Artifact directory (default: $MODEL_DIR or artifacts/models)
            registry: Registry to keep in sync on save and to consult for
                deprecated versions during latest-version resolution
            cache_enabled: Keep loaded artifacts in memory
            cache_size: Maximum cached artifacts
        """
        self.model_dir = Path(model_dir or os.getenv('MODEL_DIR', DEFAULT_MODEL_DIR))
        self.registry = registry
        self.cache_enabled = cache_enabled

        self._cache = LRUCache(max_size=cache_size, name="model_artifacts")
        self._stats = ManagerStats()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------------
    # Paths & raw I/O
    # ------------------------------------------------------------------------

    def _artifact_path(self, name: str, version: str) -> Path:
        return self.model_dir / artifact_filename(name, version)

    def _metadata_path(self, name: str, version: str) -> Path:
        return self.model_dir / metadata_filename(name, version)

    def _read_document(self, path: Path) -> str:
        """Read one stored document. Every storage read goes through here."""
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()

    def _serialize(self, name: str, version: str, doc: Dict[str, Any]) -> str:
        try:
            text = json.dumps(_convert_numpy_types(doc), indent=2, ensure_ascii=False)
            text.encode('utf-8')
        except (TypeError, ValueError) as e:
            raise ArtifactValidationError(
                name, version, [f"document is not JSON-serializable: {e}"]
            ) from e
        return text

    def _write_document(self, path: Path, text: str) -> None:
        """Write a serialized document; a partial file never survives a failure."""
        created = False
        try:
            # 'x': never overwrite a persisted version
            with open(path, 'x', encoding='utf-8') as f:
                created = True
                f.write(text)
        except Exception:
            if created:
                path.unlink()
            raise

    def _parse(self, name: str, version: str, text: str) -> Any:
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ArtifactParseError(
                name, version, f"Artifact {name} v{version} is not valid JSON: {e}"
            ) from e

    # ------------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------------

    def list_versions(self, name: str) -> List[str]:
        """Persisted versions of name, ascending."""
        return scan_versions(str(self.model_dir), name)

    @staticmethod
    def compare_versions(v1: str, v2: str) -> int:
        return compare_versions(v1, v2)

    def _candidate_versions(self, name: str, version: Optional[str], fallback: bool) -> List[str]:
        """Versions to try, in order."""
        on_disk = sort_versions(self.list_versions(name), descending=True)

        def usable(v: str) -> bool:
            return self.registry is None or not self.registry.is_deprecated(name, v)

        if version is None:
            candidates = [v for v in on_disk if usable(v)]
            return candidates if fallback else candidates[:1]

        if not fallback:
            return [version]

        lower = [v for v in on_disk if compare_versions(v, version) < 0 and usable(v)]
        return [version] + lower

    # ------------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------------

    @staticmethod
    def calculate_checksum(weights: Any) -> str:
        return calculate_checksum(weights)

    def validate_checksum(self, artifact: ModelArtifact) -> bool:
        """True if the artifact's recorded checksum matches its weights."""
        if artifact.checksum is None:
            return False
        return self.calculate_checksum(artifact.weights) == artifact.checksum

    def _verify_integrity(self, artifact: ModelArtifact) -> None:
        if not self.validate_checksum(artifact):
            raise ArtifactIntegrityError(
                artifact.name, artifact.version,
                artifact.checksum, self.calculate_checksum(artifact.weights)
            )

    # ------------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------------

    def _load_version(
        self,
        name: str,
        version: str,
        validate_checksum: bool,
        auto_migrate: bool
    ) -> ModelArtifact:
        """Load one exact version, from cache when possible."""
        key = (name, version)

        if self.cache_enabled:
            cached = self._cache.get(key)
            if cached is not None:
                with self._lock:
                    self._stats.cache_hits += 1
                if validate_checksum:
                    self._verify_integrity(cached)
                logger.debug(f"Cache hit for {name} v{version}")
                return cached.detached()

        with self._lock:
            self._stats.cache_misses += 1

        path = self._artifact_path(name, version)
        if not path.exists():
            raise ModelNotFoundError(name, version)

        try:
            text = self._read_document(path)
        except FileNotFoundError as e:
            raise ModelNotFoundError(name, version) from e
        except OSError as e:
            raise ModelLoadError(name, version, f"Could not read {path}: {e}") from e

        doc = self._parse(name, version, text)

        if auto_migrate and isinstance(doc, dict):
            doc = migrate_artifact(doc, name=name, version=version)

        validate_artifact_document(doc, name, expected_version=version)
        artifact = ModelArtifact.from_dict(doc, name=name)

        if validate_checksum:
            self._verify_integrity(artifact)

        if self.cache_enabled:
            # Callers get their own copy; the cached one stays pristine
            self._cache.put(key, artifact)
            return artifact.detached()

        return artifact

    def load_model_sync(
        self,
        name: str,
        version: Optional[str] = None,
        fallback: bool = False,
        baseline: bool = False,
        validate_checksum: bool = False,
        auto_migrate: bool = False
    ) -> ModelArtifact:
        """Blocking implementation of load_model."""
        start_time = time.perf_counter()
        with self._lock:
            self._stats.total_loads += 1

        if version is not None and not is_semver(version):
            raise ModelNotFoundError(
                name, version, f"Model {name} has no version {version!r}: not a semantic version"
            )

        candidates = self._candidate_versions(name, version, fallback)
        attempts: Dict[str, Exception] = {}

        for candidate in candidates:
            try:
                artifact = self._load_version(name, candidate, validate_checksum, auto_migrate)
            except ModelLoadError as e:
                if not fallback:
                    raise
                attempts[candidate] = e
                with self._lock:
                    self._stats.fallbacks += 1
                logger.warning(
                    f"Failed to load {name} v{candidate} ({type(e).__name__}: {e}), "
                    f"falling back"
                )
                continue

            elapsed_ms = (time.perf_counter() - start_time) * 1000
            with self._lock:
                self._stats.last_load_time_ms = elapsed_ms
            logger.info(f"Loaded model {name} v{artifact.version} in {elapsed_ms:.1f}ms")
            return artifact

        if fallback and baseline:
            with self._lock:
                self._stats.baseline_loads += 1
            logger.info(f"No loadable version of {name}, using baseline model")
            return build_baseline_artifact(name)

        if not attempts or all(isinstance(e, ModelNotFoundError) for e in attempts.values()):
            raise ModelNotFoundError(name, version)

        raise FallbackExhaustedError(name, attempts)

    async def load_model(
        self,
        name: str,
        version: Optional[str] = None,
        fallback: bool = False,
        baseline: bool = False,
        validate_checksum: bool = False,
        auto_migrate: bool = False
    ) -> ModelArtifact:
        """
        Load a model artifact.

        Args:
            name: Model name
            version: Exact version (None = highest non-deprecated on disk)
            fallback: On failure log a warning and try the next-lower version
            baseline: With fallback, return the built-in baseline when every
                version failed
            validate_checksum: Recompute and compare the weights checksum
            auto_migrate: Lift older document layouts to the current one

        Raises:
            ModelNotFoundError: No such artifact
            ArtifactParseError: Document is not valid JSON
            ArtifactValidationError: Document misses required fields
            ArtifactIntegrityError: Checksum mismatch or missing checksum
            FallbackExhaustedError: Every candidate failed, no baseline
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self.load_model_sync(
                name, version,
                fallback=fallback,
                baseline=baseline,
                validate_checksum=validate_checksum,
                auto_migrate=auto_migrate
            )
        )

    # ------------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------------

    def save_model_sync(
        self,
        model: Union[ModelArtifact, Dict[str, Any]],
        update_type: str = 'patch'
    ) -> str:
        """Blocking implementation of save_model."""
        doc = model.to_dict() if isinstance(model, ModelArtifact) else dict(model)

        model_type = doc.get('type')
        name = doc.get('name') or model_type

        errors = []
        if model_type not in {t.value for t in ModelType}:
            errors.append(f"unknown model type {model_type!r}")
        if doc.get('weights') is None:
            errors.append("missing required field 'weights'")
        if errors:
            raise ArtifactValidationError(name, None, errors)

        raw_metadata = dict(doc.get('metadata') or {})
        try:
            metadata = create_model_metadata(
                dataset_size=raw_metadata.get('dataset_size'),
                accuracy=raw_metadata.get('accuracy'),
                hyperparameters=raw_metadata.get('hyperparameters'),
                trained_at=raw_metadata.get('trained_at'),
                git_commit=raw_metadata.get('git_commit'),
                extra=raw_metadata
            )
        except (TypeError, ValueError) as e:
            raise ArtifactValidationError(name, None, [f"invalid metadata: {e}"]) from e
        metadata['saved_at'] = datetime.now().isoformat()
        weights = _convert_numpy_types(doc['weights'])
        try:
            checksum = self.calculate_checksum(weights)
        except (TypeError, ValueError) as e:
            raise ArtifactValidationError(name, None, [f"weights are not JSON-serializable: {e}"]) from e

        ensure_directory(str(self.model_dir))

        with self._lock:
            version = bump_version(self.list_versions(name), update_type)

            artifact = ModelArtifact(
                name=name,
                version=version,
                type=ModelType(model_type),
                weights=weights,
                metadata=metadata,
                checksum=checksum
            )
            # Both documents are serialized before any file is created
            artifact_text = self._serialize(name, version, artifact.to_dict())
            metadata_text = self._serialize(name, version, artifact.metadata_document())

            artifact_path = self._artifact_path(name, version)
            try:
                self._write_document(artifact_path, artifact_text)
            except FileExistsError as e:
                raise VersionExistsError(name, version) from e

            try:
                self._write_document(self._metadata_path(name, version), metadata_text)
            except FileExistsError as e:
                # Stale sidecar: roll back so the version stays unused
                artifact_path.unlink()
                raise VersionExistsError(name, version) from e
            except Exception:
                artifact_path.unlink()
                raise

            removed = self._cache.invalidate(lambda key: key[0] == name)

            self._stats.saves += 1
            self._stats.last_save_at = datetime.now().isoformat()

        if self.registry is not None and self.registry.get(name, version) is None:
            self.registry.register(RegistryEntry(name, version, artifact.type))

        logger.info(
            f"Saved model {name} v{version} ({update_type}), "
            f"invalidated {removed} cached entries"
        )
        return version

    async def save_model(
        self,
        model: Union[ModelArtifact, Dict[str, Any]],
        update_type: str = 'patch'
    ) -> str:
        """
        Persist a new version of a model.

        The new version is derived from the highest persisted version of
        the model's name: patch/minor/major bump with lower components
        reset. The first save is always 1.0.0. Metadata is normalized to
        JSON-native values (datetimes become ISO strings), gains
        trained_at and git_commit when absent and a fresh saved_at.

        Args:
            model: Artifact or dict with 'type', 'weights' and optional
                'name' (defaults to the type) and 'metadata'
            update_type: 'patch', 'minor' or 'major'

        Returns:
            The assigned version
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.save_model_sync(model, update_type))

    # ------------------------------------------------------------------------
    # Deleting
    # ------------------------------------------------------------------------

    def delete_model_sync(self, name: str, version: str) -> None:
        """Blocking implementation of delete_model."""
        if not is_semver(version):
            raise ModelNotFoundError(
                name, version, f"Model {name} has no version {version!r}: not a semantic version"
            )

        with self._lock:
            removed = []
            for path in (self._artifact_path(name, version), self._metadata_path(name, version)):
                if path.exists():
                    path.unlink()
                    removed.append(path.name)

            if not removed:
                raise ModelNotFoundError(name, version)

            self._cache.delete((name, version))
            self._stats.deletes += 1

        if self.registry is not None:
            self.registry.unregister(name, version)

        logger.info(f"Deleted model {name} v{version}: removed {removed}")

    async def delete_model(self, name: str, version: str) -> None:
        """
        Remove a persisted version and its sidecar.

        The version is also dropped from the cache and the registry. Its
        number is not reused unless it was the highest version.

        Raises:
            ModelNotFoundError: Nothing is persisted for (name, version)
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: self.delete_model_sync(name, version))

    # ------------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------------

    def get_model_metadata_sync(self, name: str, version: Optional[str] = None) -> Dict[str, Any]:
        if version is None:
            versions = self._candidate_versions(name, None, fallback=False)
            if not versions:
                raise ModelNotFoundError(name)
            version = versions[0]

        if self.cache_enabled:
            cached = self._cache.get((name, version))
            if cached is not None:
                return cached.metadata_document()

        sidecar = self._metadata_path(name, version)
        if sidecar.exists():
            return self._parse(name, version, self._read_document(sidecar))

        path = self._artifact_path(name, version)
        if not path.exists():
            raise ModelNotFoundError(name, version)

        # Written without a sidecar: derive from the full document
        doc = self._parse(name, version, self._read_document(path))
        if isinstance(doc, dict):
            doc = migrate_artifact(doc, name=name, version=version)
        validate_artifact_document(doc, name, expected_version=version)
        return ModelArtifact.from_dict(doc, name=name).metadata_document()

    async def get_model_metadata(self, name: str, version: Optional[str] = None) -> Dict[str, Any]:
        """
        Metadata of a version without loading its weights.

        Returns:
            Document with name, version, type, metadata and checksum
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.get_model_metadata_sync(name, version))

    # ------------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------------

    def compare_models(
        self,
        name: str,
        versions: Optional[Sequence[str]] = None,
        metrics: Sequence[str] = ('accuracy',)
    ) -> pd.DataFrame:
        """
        Compare versions of a model side-by-side.

        Args:
            name: Model name
            versions: Versions to compare (default: all persisted)
            metrics: Metadata metrics to include; their mean is the 'score'

        Returns:
            DataFrame sorted by score descending
        """
        versions = list(versions) if versions is not None else self.list_versions(name)

        rows = []
        for version in versions:
            try:
                meta_doc = self.get_model_metadata_sync(name, version)
            except ModelLoadError as e:
                logger.warning(f"Skipping {name} v{version} in comparison: {e}")
                continue

            metadata = meta_doc.get('metadata') or {}
            row = {
                'version': version,
                'type': meta_doc.get('type'),
                'trained_at': metadata.get('trained_at'),
                'dataset_size': metadata.get('dataset_size'),
            }

            values = []
            for metric in metrics:
                value = metadata.get(metric, (metadata.get('metrics') or {}).get(metric))
                row[metric] = value
                if isinstance(value, (int, float)):
                    values.append(float(value))

            row['score'] = sum(values) / len(values) if values else None
            rows.append(row)

        if not rows:
            return pd.DataFrame(columns=['version', 'type', 'trained_at', 'dataset_size', *metrics, 'score'])

        df = pd.DataFrame(rows)
        return df.sort_values('score', ascending=False, na_position='last', kind='mergesort').reset_index(drop=True)

    # ------------------------------------------------------------------------
    # Cache & stats
    # ------------------------------------------------------------------------

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Model cache cleared")

    def is_cached(self, name: str, version: str) -> bool:
        return (name, version) in self._cache

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = asdict(self._stats)
        stats['cached_models'] = self._cache.size()
        stats['model_dir'] = str(self.model_dir)
        return stats

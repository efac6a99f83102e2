"""
Registry Utilities Module.

Helper functions for model-lifecycle operations:
- Semantic version parsing, comparison and bumping
- Weight checksums
- Artifact file naming
- Metadata construction

Example:
    >>> from recsys.cf.registry.utils import bump_version, calculate_checksum
    >>> bump_version(['1.0.0', '1.1.0'], 'minor')
    '1.2.0'
    >>> calculate_checksum({'factors': [0.1, 0.2]})
"""

from typing import Dict, List, Optional, Any, Tuple, Iterable
from pathlib import Path
from datetime import date, datetime
import os
import re
import subprocess
import hashlib
import json
import logging

import numpy as np

logger = logging.getLogger(__name__)


UPDATE_TYPES = ('patch', 'minor', 'major')
INITIAL_VERSION = '1.0.0'

_SEMVER_RE = re.compile(r'^(\d+)\.(\d+)\.(\d+)$')
_ARTIFACT_RE = re.compile(r'^(?P<name>.+)-v(?P<version>\d+\.\d+\.\d+)\.json$')


# ============================================================================
# Version Management
# ============================================================================

def is_semver(version: Any) -> bool:
    return isinstance(version, str) and _SEMVER_RE.match(version) is not None


def parse_version(version: str) -> Tuple[int, int, int]:
    """
    Parse 'major.minor.patch'.

    Raises:
        ValueError: If version is not strict SemVer
    """
    match = _SEMVER_RE.match(version) if isinstance(version, str) else None
    if match is None:
        raise ValueError(f"Invalid semantic version: {version!r}")
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def format_version(parts: Tuple[int, int, int]) -> str:
    return f"{parts[0]}.{parts[1]}.{parts[2]}"


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two version strings.

    Returns:
        -1 if v1 < v2, 0 if equal, 1 if v1 > v2
    """
    p1 = parse_version(v1)
    p2 = parse_version(v2)

    if p1 < p2:
        return -1
    elif p1 > p2:
        return 1
    return 0


def sort_versions(versions: Iterable[str], descending: bool = False) -> List[str]:
    """Sort versions numerically (not lexically: 1.10.0 > 1.9.0)."""
    return sorted(versions, key=parse_version, reverse=descending)


def bump_version(existing_versions: Iterable[str], update_type: str = 'patch') -> str:
    """
    Next version after the highest existing one.

    Lower components are reset to zero. With no existing versions the
    first version is always 1.0.0 regardless of update_type.

    Args:
        existing_versions: Versions already persisted for the model
        update_type: 'patch', 'minor' or 'major'
    """
    if update_type not in UPDATE_TYPES:
        raise ValueError(f"update_type must be one of {UPDATE_TYPES}, got {update_type!r}")

    versions = list(existing_versions)
    if not versions:
        return INITIAL_VERSION

    major, minor, patch = max(parse_version(v) for v in versions)

    if update_type == 'major':
        return format_version((major + 1, 0, 0))
    elif update_type == 'minor':
        return format_version((major, minor + 1, 0))
    return format_version((major, minor, patch + 1))


# ============================================================================
# Hash Computation
# ============================================================================

def _convert_numpy_types(obj: Any) -> Any:
    """Convert numpy and datetime values to JSON-native types."""
    if isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, dict):
        return {str(k): _convert_numpy_types(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_convert_numpy_types(v) for v in obj]
    return obj


def canonical_json(obj: Any) -> str:
    """Key-sorted, whitespace-free JSON used for hashing."""
    return json.dumps(_convert_numpy_types(obj), sort_keys=True, separators=(',', ':'))


def calculate_checksum(weights: Any) -> str:
    """
    SHA-256 of the canonical serialization of weights.

    Equal weights always hash equal regardless of dict insertion order or
    numpy vs. native number types.
    """
    return hashlib.sha256(canonical_json(weights).encode('utf-8')).hexdigest()


# ============================================================================
# Artifact Files
# ============================================================================

def artifact_filename(name: str, version: str) -> str:
    return f"{name}-v{version}.json"


def metadata_filename(name: str, version: str) -> str:
    return f"{name}-v{version}.meta.json"


def parse_artifact_filename(filename: str) -> Optional[Tuple[str, str]]:
    """
    Split '<name>-v<semver>.json' into (name, version).

    Returns None for sidecars and unrelated files.
    """
    if filename.endswith('.meta.json'):
        return None
    match = _ARTIFACT_RE.match(filename)
    if match is None:
        return None
    return match.group('name'), match.group('version')


def scan_versions(model_dir: str, name: str) -> List[str]:
    """All persisted versions of name, ascending."""
    path = Path(model_dir)
    if not path.is_dir():
        return []

    versions = []
    for entry in path.iterdir():
        parsed = parse_artifact_filename(entry.name)
        if parsed is not None and parsed[0] == name:
            versions.append(parsed[1])
    return sort_versions(versions)


def ensure_directory(dir_path: str) -> Path:
    """Ensure directory exists, create if needed."""
    path = Path(dir_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


# ============================================================================
# Metadata Utilities
# ============================================================================

def get_git_commit(repo_path: Optional[str] = None) -> Optional[str]:
    """Current git commit hash, or None outside a checkout."""
    cwd = repo_path or os.getcwd()

    try:
        result = subprocess.run(
            ['git', 'rev-parse', 'HEAD'],
            capture_output=True,
            text=True,
            cwd=cwd
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except OSError as e:
        logger.debug(f"Could not get git commit: {e}")

    return None


# Keys create_model_metadata always emits
STANDARD_METADATA_FIELDS = ('trained_at', 'dataset_size', 'accuracy', 'hyperparameters', 'git_commit')


def create_model_metadata(
    dataset_size: Optional[int] = None,
    accuracy: Optional[float] = None,
    hyperparameters: Optional[Dict[str, Any]] = None,
    trained_at: Optional[Any] = None,
    git_commit: Optional[str] = None,
    extra: Optional[Dict] = None
) -> Dict[str, Any]:
    """
    Create standard model metadata dictionary.

    Every value in the result is JSON-native, so the dictionary can be
    persisted as-is.

    Args:
        dataset_size: Number of ratings the weights were trained on
        accuracy: Offline evaluation accuracy
        hyperparameters: Serving parameters (neighborhood_size, min_similarity, ...)
        trained_at: datetime or ISO timestamp (default: now)
        git_commit: Git commit (auto-detected if None)
        extra: Additional metadata

    Returns:
        Metadata dictionary
    """
    metadata = {
        'trained_at': trained_at or datetime.now(),
        'dataset_size': int(dataset_size) if dataset_size is not None else None,
        'accuracy': float(accuracy) if accuracy is not None else None,
        'hyperparameters': dict(hyperparameters or {}),
        'git_commit': git_commit or get_git_commit(),
    }

    if extra:
        metadata.update({k: v for k, v in extra.items() if k not in STANDARD_METADATA_FIELDS})

    return _convert_numpy_types(metadata)

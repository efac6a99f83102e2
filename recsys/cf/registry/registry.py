"""
Model Registry Module.

In-memory index of known (name, version) model entries. The registry only
tracks identity, type and deprecation state; artifact contents live on
disk under the model manager.

- Register versions (duplicates are a conflict)
- Deprecate versions so latest-version resolution skips them
- List by type / by name
- Audit trail for all registry operations

Example:
    >>> from recsys.cf.registry import ModelRegistry
    >>> registry = ModelRegistry()
    >>> registry.register({'name': 'user_based_cf', 'version': '1.0.0',
    ...                    'type': 'collaborative_filtering'})
    >>> registry.deprecate('user_based_cf', '1.0.0')
    >>> registry.latest('user_based_cf')
"""

from typing import Dict, List, Optional, Union, Any, Tuple
from dataclasses import dataclass, field, asdict
from datetime import datetime
import threading
import logging

import pandas as pd

from ..errors import DuplicateRegistrationError, ModelNotFoundError
from .artifact import ModelType
from .utils import parse_version, sort_versions

logger = logging.getLogger(__name__)


# ============================================================================
# Registry Entry
# ============================================================================

@dataclass
class RegistryEntry:
    """Index entry for one model version."""
    name: str
    version: str
    type: ModelType
    deprecated: bool = False
    registered_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def key(self) -> Tuple[str, str]:
        return (self.name, self.version)

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> 'RegistryEntry':
        kwargs = {
            'name': data['name'],
            'version': data['version'],
            'type': ModelType(data['type']),
            'deprecated': bool(data.get('deprecated', False)),
        }
        if data.get('registered_at'):
            kwargs['registered_at'] = data['registered_at']
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['type'] = self.type.value
        return d


# ============================================================================
# Model Registry
# ============================================================================

class ModelRegistry:
    """
    Thread-safe in-memory model registry.

    Example:
        >>> registry = ModelRegistry()
        >>> registry.register(RegistryEntry('item_based_cf', '1.0.0',
        ...                                 ModelType.COLLABORATIVE_FILTERING))
        >>> registry.get('item_based_cf', '1.0.0').deprecated
        False
    """

    def __init__(self):
        self._entries: Dict[Tuple[str, str], RegistryEntry] = {}
        self._audit: List[Dict[str, Any]] = []
        self._lock = threading.RLock()

    def _audit_log(self, action: str, name: str, version: str, details: str = "") -> None:
        self._audit.append({
            'timestamp': datetime.now().isoformat(),
            'action': action,
            'model_id': f"{name}@{version}",
            'details': details,
        })

    def register(self, entry: Union[RegistryEntry, Dict[str, Any]]) -> RegistryEntry:
        """
        Add an entry.

        Raises:
            DuplicateRegistrationError: If (name, version) is already registered
        """
        if not isinstance(entry, RegistryEntry):
            entry = RegistryEntry.from_mapping(entry)
        parse_version(entry.version)

        with self._lock:
            if entry.key in self._entries:
                raise DuplicateRegistrationError(entry.name, entry.version)
            self._entries[entry.key] = entry
            self._audit_log('REGISTER', entry.name, entry.version, f"type={entry.type.value}")

        logger.info(f"Registered model {entry.name} v{entry.version} ({entry.type.value})")
        return entry

    def get(self, name: str, version: str) -> Optional[RegistryEntry]:
        """Entry for (name, version), or None."""
        with self._lock:
            return self._entries.get((name, version))

    def unregister(self, name: str, version: str) -> bool:
        """
        Remove an entry. Idempotent.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            removed = self._entries.pop((name, version), None)
            if removed is None:
                return False
            self._audit_log('UNREGISTER', name, version)

        logger.info(f"Unregistered model {name} v{version}")
        return True

    def deprecate(self, name: str, version: str) -> RegistryEntry:
        """
        Flag a version as deprecated; the entry stays listed.

        Raises:
            ModelNotFoundError: If (name, version) is not registered
        """
        with self._lock:
            entry = self._entries.get((name, version))
            if entry is None:
                raise ModelNotFoundError(name, version, f"Model {name} version {version} is not registered")
            if not entry.deprecated:
                entry.deprecated = True
                self._audit_log('DEPRECATE', name, version)
                logger.info(f"Deprecated model {name} v{version}")
            return entry

    def is_deprecated(self, name: str, version: str) -> bool:
        entry = self.get(name, version)
        return entry is not None and entry.deprecated

    def list_by_type(self, model_type: Union[ModelType, str]) -> List[RegistryEntry]:
        model_type = ModelType(model_type)
        with self._lock:
            return [e for e in self._entries.values() if e.type == model_type]

    def list_versions(self, name: str, include_deprecated: bool = True) -> List[str]:
        """Registered versions of name, ascending."""
        with self._lock:
            versions = [
                e.version for e in self._entries.values()
                if e.name == name and (include_deprecated or not e.deprecated)
            ]
        return sort_versions(versions)

    def latest(self, name: str, include_deprecated: bool = False) -> Optional[RegistryEntry]:
        versions = self.list_versions(name, include_deprecated=include_deprecated)
        if not versions:
            return None
        return self.get(name, versions[-1])

    def list_models(
        self,
        model_type: Optional[str] = None,
        include_deprecated: bool = True
    ) -> pd.DataFrame:
        """
        List entries as a DataFrame.

        Args:
            model_type: Filter by type
            include_deprecated: Include deprecated entries

        Returns:
            DataFrame sorted by name, then version
        """
        with self._lock:
            entries = list(self._entries.values())

        rows = []
        for entry in entries:
            if model_type and entry.type != ModelType(model_type):
                continue
            if not include_deprecated and entry.deprecated:
                continue
            rows.append(entry.to_dict())

        if not rows:
            return pd.DataFrame(columns=['name', 'version', 'type', 'deprecated', 'registered_at'])

        rows.sort(key=lambda r: (r['name'], parse_version(r['version'])))
        return pd.DataFrame(rows)

    def get_registry_stats(self) -> Dict[str, Any]:
        with self._lock:
            entries = list(self._entries.values())

        stats = {
            'total_models': len(entries),
            'active_models': sum(1 for e in entries if not e.deprecated),
            'deprecated_models': sum(1 for e in entries if e.deprecated),
            'by_type': {},
            'names': sorted({e.name for e in entries}),
        }
        for entry in entries:
            t = entry.type.value
            stats['by_type'][t] = stats['by_type'].get(t, 0) + 1

        return stats

    def get_audit_log(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._audit)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        with self._lock:
            return key in self._entries

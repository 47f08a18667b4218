from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from .tenant_models import TenantConfig

logger = logging.getLogger(__name__)

TENANT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class UnknownTenantError(LookupError):
    """Tenant id is malformed or has no valid configuration."""


@dataclass
class CachedTenant:
    config: TenantConfig
    mtime: float


class TenantRepository:
    """Read-through cache of tenant configs stored as `<configs_dir>/<id>.json`.

    A config object is never mutated after load; reloads swap in a new one.
    When a changed file fails to parse, the previous valid config stays.
    """

    def __init__(self, configs_dir: Path) -> None:
        self.configs_dir = Path(configs_dir)
        self._cache: Dict[str, CachedTenant] = {}
        self._lock = threading.Lock()

    def _path_for(self, tenant_id: str) -> Path:
        return self.configs_dir / f"{tenant_id}.json"

    def _read(self, tenant_id: str) -> Optional[TenantConfig]:
        path = self._path_for(tenant_id)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return TenantConfig.load(raw, tenant_id)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Config parse error for {tenant_id!r}: {e}")
            return None

    def _mtime(self, tenant_id: str) -> float:
        path = self._path_for(tenant_id)
        return path.stat().st_mtime if path.exists() else 0.0

    def get_config(self, tenant_id: str) -> Optional[TenantConfig]:
        tenant_id = (tenant_id or "").strip()
        if not TENANT_ID_RE.match(tenant_id):
            return None
        with self._lock:
            cached = self._cache.get(tenant_id)
            if cached is not None:
                return cached.config
        return self.invalidate(tenant_id)

    def require(self, tenant_id: str) -> TenantConfig:
        cfg = self.get_config(tenant_id)
        if cfg is None:
            raise UnknownTenantError(tenant_id)
        return cfg

    def invalidate(self, tenant_id: str) -> Optional[TenantConfig]:
        """Re-read one tenant from disk.

        Returns the config now in effect. A deleted file evicts the tenant;
        an unparsable one keeps whatever was cached before.
        """
        if not TENANT_ID_RE.match(tenant_id or ""):
            return None
        mtime = self._mtime(tenant_id)
        fresh = self._read(tenant_id)
        with self._lock:
            if fresh is not None:
                self._cache[tenant_id] = CachedTenant(config=fresh, mtime=mtime)
                logger.info(f"Config loaded: {tenant_id}")
                return fresh
            if not self._path_for(tenant_id).exists():
                self._cache.pop(tenant_id, None)
                return None
            previous = self._cache.get(tenant_id)
            if previous is not None:
                # remember the mtime so a broken file is not re-parsed every request
                previous.mtime = mtime
                return previous.config
            return None

    def refresh_stale(self) -> List[str]:
        """Reload every cached tenant whose file changed on disk."""
        with self._lock:
            snapshot = {tid: c.mtime for tid, c in self._cache.items()}
        changed = [tid for tid, mtime in snapshot.items() if self._mtime(tid) != mtime]
        for tid in changed:
            self.invalidate(tid)
        return changed

    def tenant_ids(self) -> List[str]:
        if not self.configs_dir.exists():
            return []
        return sorted(p.stem for p in self.configs_dir.glob("*.json") if TENANT_ID_RE.match(p.stem))

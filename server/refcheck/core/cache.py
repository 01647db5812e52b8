from __future__ import annotations

import datetime as dt
import hashlib
import json
import os
import threading
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from server.refcheck.core.config import Settings

_CACHE_SCHEMA_VERSION = 1


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def _sha256_hex(parts: Sequence[str]) -> str:
    h = hashlib.sha256()
    for part in parts:
        h.update(part.encode("utf-8"))
        h.update(b"\0")
    return h.hexdigest()


@dataclass
class CacheDebugStats:
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _totals: Counter[str] = field(default_factory=Counter, init=False, repr=False)
    _by_namespace: dict[str, Counter[str]] = field(default_factory=dict, init=False, repr=False)

    def increment(self, namespace: str, metric: str) -> None:
        namespace = (namespace or "").strip() or "unknown"
        metric = (metric or "").strip()
        if not metric:
            return
        with self._lock:
            self._totals[metric] += 1
            ns = self._by_namespace.get(namespace)
            if ns is None:
                ns = Counter()
                self._by_namespace[namespace] = ns
            ns[metric] += 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            totals = dict(sorted(self._totals.items()))
            namespaces = {
                namespace: dict(sorted(counter.items()))
                for namespace, counter in sorted(self._by_namespace.items())
            }
        return {"totals": totals, "namespaces": namespaces}


@dataclass(frozen=True)
class Cache:
    """
    File-backed JSON cache for registry responses.

    Each entry is one file holding ``{"expires_at": <unix ts>, "value": ...}``; expired
    entries are removed on read.
    """

    settings: Settings
    scope: str = "global"
    debug_stats: CacheDebugStats = field(default_factory=CacheDebugStats, repr=False, compare=False)

    def scoped(self, scope: str) -> "Cache":
        scope = (scope or "").strip() or "global"
        if scope == self.scope:
            return self
        return Cache(settings=self.settings, scope=scope, debug_stats=self.debug_stats)

    @property
    def enabled(self) -> bool:
        return bool(self.settings.cache_enabled)

    def ttl_seconds(self, suggested_days: int) -> float:
        days = min(int(suggested_days), int(self.settings.cache_http_ttl_days))
        return float(max(0, days)) * 86400.0

    def _key(self, namespace: str, parts: Sequence[str]) -> str:
        return _sha256_hex([str(_CACHE_SCHEMA_VERSION), self.scope, namespace, *[str(p) for p in parts]])

    def _file_path(self, namespace: str, parts: Sequence[str]) -> Path:
        key = self._key(namespace, parts)
        safe_ns = "".join(ch for ch in namespace if ch.isalnum() or ch in {"_", "-", "."})[:80] or "cache"
        return Path(self.settings.cache_dir) / safe_ns / f"{key}.json"

    def get_json(self, namespace: str, parts: Sequence[str]) -> tuple[bool, Any]:
        if not self.enabled:
            return False, None
        path = self._file_path(namespace, parts)
        try:
            envelope = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            self.debug_stats.increment(namespace, "json_get_miss")
            return False, None
        except (OSError, ValueError):
            self.debug_stats.increment(namespace, "json_get_error")
            return False, None

        expires_at = envelope.get("expires_at") if isinstance(envelope, dict) else None
        if not isinstance(expires_at, (int, float)) or expires_at < _utcnow().timestamp():
            try:
                path.unlink()
            except OSError:
                pass
            self.debug_stats.increment(namespace, "json_get_expired")
            return False, None
        self.debug_stats.increment(namespace, "json_get_hit")
        return True, envelope.get("value")

    def set_json(self, namespace: str, parts: Sequence[str], value: Any, *, ttl_seconds: float) -> None:
        if not self.enabled or ttl_seconds <= 0:
            return
        path = self._file_path(namespace, parts)
        tmp: Path | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            envelope = {"expires_at": _utcnow().timestamp() + float(ttl_seconds), "value": value}
            tmp = path.with_suffix(f".tmp.{os.getpid()}.{threading.get_ident()}")
            tmp.write_text(json.dumps(envelope, ensure_ascii=False), encoding="utf-8")
            tmp.replace(path)
            self.debug_stats.increment(namespace, "json_set_ok")
        except (OSError, TypeError, ValueError):
            self.debug_stats.increment(namespace, "json_set_error")
            try:
                if tmp is not None:
                    tmp.unlink()
            except OSError:
                pass

    def debug_snapshot(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "scope": self.scope,
            **self.debug_stats.snapshot(),
        }

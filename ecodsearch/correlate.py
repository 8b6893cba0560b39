"""Correlate search hits with ECOD domain records."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar

from sqlalchemy import bindparam, create_engine, make_url, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import DomainStoreConfig
from .errors import CorrelationFailure
from .parsers import HitRecord

logger = logging.getLogger(__name__)

HitT = TypeVar("HitT", bound=HitRecord)


@dataclass(frozen=True)
class DomainRecord:
    uid: int
    domain_id: str
    fid: Optional[str] = None
    family_name: Optional[str] = None


class DomainStore(ABC):
    @abstractmethod
    def lookup_by_uid(self, uids: Sequence[int]) -> Dict[int, DomainRecord]: ...

    @abstractmethod
    def lookup_by_domain_id(self, domain_ids: Sequence[str]) -> Dict[str, DomainRecord]: ...

    def lookup(self, key: str, values: Sequence) -> Mapping:
        if key == "uid":
            return self.lookup_by_uid(values)
        if key == "domain_id":
            return self.lookup_by_domain_id(values)
        raise ValueError(f"Unsupported correlation key {key!r}")


_LOOKUP_SQL = """
    SELECT d.uid, d.id, d.fid, c.name AS fname
    FROM domain d
    LEFT JOIN cluster c ON d.fid = c.id
    WHERE d.{column} IN :keys
"""


class SqlDomainStore(DomainStore):
    """Batch lookups against the ``domain`` / ``cluster`` tables."""

    def __init__(self, database_url: Optional[str] = None, *, engine: Optional[Engine] = None, pool_size: int = 5) -> None:
        if engine is None:
            if not database_url:
                raise ValueError("SqlDomainStore needs a database_url or an engine")
            kwargs = {} if database_url.startswith("sqlite") else {"pool_size": pool_size, "pool_pre_ping": True}
            engine = create_engine(database_url, future=True, **kwargs)
        self.engine = engine

    def _query(self, column: str, keys: Sequence) -> List[DomainRecord]:
        stmt = text(_LOOKUP_SQL.format(column=column)).bindparams(bindparam("keys", expanding=True))
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt, {"keys": list(keys)}).all()
        except SQLAlchemyError as exc:
            raise CorrelationFailure(f"Domain lookup failed: {exc}") from exc
        return [
            DomainRecord(uid=int(row.uid), domain_id=str(row.id), fid=row.fid, family_name=row.fname)
            for row in rows
        ]

    def lookup_by_uid(self, uids):
        return {record.uid: record for record in self._query("uid", uids)}

    def lookup_by_domain_id(self, domain_ids):
        return {record.domain_id: record for record in self._query("id", domain_ids)}


class StaticDomainStore(DomainStore):
    """In-memory store, for offline deployments and tests."""

    def __init__(self, records: Iterable[DomainRecord] = ()) -> None:
        self.records = list(records)
        self.calls: List[tuple[str, tuple]] = []

    def lookup_by_uid(self, uids):
        self.calls.append(("uid", tuple(uids)))
        wanted = set(uids)
        return {r.uid: r for r in self.records if r.uid in wanted}

    def lookup_by_domain_id(self, domain_ids):
        self.calls.append(("domain_id", tuple(domain_ids)))
        wanted = set(domain_ids)
        return {r.domain_id: r for r in self.records if r.domain_id in wanted}


def correlate_hits(hits: List[HitT], store: Optional[DomainStore], key: str) -> List[HitT]:
    """Merge domain id, family id and family name into hits with one batch lookup.

    Hits without a match are left as they are. A failing store is logged and
    the hits are returned uncorrelated.
    """
    if store is None or not hits:
        return hits
    keys = list(dict.fromkeys(getattr(hit, key) for hit in hits if getattr(hit, key) is not None))
    if not keys:
        return hits
    try:
        records = store.lookup(key, keys)
    except Exception as exc:
        logger.warning("[correlate] lookup failed key=%s count=%d error=%s", key, len(keys), exc)
        return hits

    for hit in hits:
        record = records.get(getattr(hit, key))
        if record is None:
            continue
        hit.uid = record.uid
        hit.domain_id = record.domain_id
        hit.fid = record.fid
        hit.family_name = record.family_name
    return hits


_default_store: Optional[DomainStore] = None


def _redact_url(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except SQLAlchemyError:
        return "<unparseable>"


def get_domain_store(cfg: Optional[DomainStoreConfig] = None) -> Optional[DomainStore]:
    """Shared SQL store, or ``None`` when no database is configured or its engine cannot be built."""
    global _default_store
    if _default_store is None:
        if cfg is None:
            from .config import load_config

            cfg = load_config().domain_store
        if not cfg.database_url:
            return None
        try:
            _default_store = SqlDomainStore(cfg.database_url, pool_size=cfg.pool_size)
        except (SQLAlchemyError, ImportError) as exc:
            logger.warning("[correlate] domain store unavailable url=%s error=%s", _redact_url(cfg.database_url), exc)
            return None
    return _default_store


__all__ = [
    "DomainRecord",
    "DomainStore",
    "SqlDomainStore",
    "StaticDomainStore",
    "correlate_hits",
    "get_domain_store",
]

"""Per-job directory store: the job directory is the only source of truth for a job."""

from __future__ import annotations

import datetime
import json
import os
import secrets
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import InvalidInput, NotFound
from .validation import validate_job_id

METADATA_NAME = "metadata.json"
COMPLETION_NAME = "completion.json"
LOG_NAME = "job.err"
SCHEDULER_ID_NAME = "slurm_job_id"
PID_NAME = "pid"

# secrets.token_urlsafe(6) -> 8 URL-safe characters.
_TOKEN_BYTES = 6


def utc_now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def generate_job_id(prefix: str = "") -> str:
    return f"{prefix}{secrets.token_urlsafe(_TOKEN_BYTES)}"


@dataclass
class JobMetadataRecord:
    job_id: str
    kind: str
    input_type: str
    source: Dict[str, Any] = field(default_factory=dict)
    evalue: str = "0.01"
    chain: Optional[str] = None
    query_length: Optional[int] = None
    backend: str = "local"
    submitted: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "JobMetadataRecord":
        query_length = payload.get("query_length")
        return cls(
            job_id=str(payload.get("job_id") or ""),
            kind=str(payload.get("kind") or "unknown"),
            input_type=str(payload.get("input_type") or "unknown"),
            source=dict(payload.get("source") or {}),
            evalue=str(payload.get("evalue") or ""),
            chain=payload.get("chain"),
            query_length=int(query_length) if query_length is not None else None,
            backend=str(payload.get("backend") or "local"),
            submitted=str(payload.get("submitted") or ""),
        )

    def submitted_at(self) -> Optional[datetime.datetime]:
        try:
            value = datetime.datetime.fromisoformat(self.submitted)
        except (TypeError, ValueError):
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return value


@dataclass
class CompletionMarker:
    """Written once when the tool exits; ``result`` names the artifact if one was produced."""

    exit_code: int
    result: Optional[str] = None
    finished_at: str = field(default_factory=utc_now_iso)

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["success"] = self.success
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CompletionMarker":
        return cls(
            exit_code=int(payload.get("exit_code", 1)),
            result=payload.get("result") or None,
            finished_at=str(payload.get("finished_at") or ""),
        )


class JobStore(ABC):
    """Job registry keyed by job id."""

    @abstractmethod
    def create(self, job_id: str) -> Path: ...

    @abstractmethod
    def exists(self, job_id: str) -> bool: ...

    @abstractmethod
    def job_dir(self, job_id: str) -> Path: ...

    @abstractmethod
    def remove(self, job_id: str) -> None: ...

    def path_for(self, job_id: str, name: str) -> Path:
        if not name or Path(name).name != name:
            raise InvalidInput(f"Invalid job artifact name {name!r}")
        return self.job_dir(job_id) / name

    def write_text(self, job_id: str, name: str, content: str) -> Path:
        path = self.path_for(job_id, name)
        path.write_text(content, encoding="utf-8")
        return path

    def read_text(self, job_id: str, name: str) -> Optional[str]:
        path = self.path_for(job_id, name)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8", errors="replace")

    # -- metadata ----------------------------------------------------------
    def write_metadata(self, record: JobMetadataRecord) -> Path:
        return self.write_text(record.job_id, METADATA_NAME, json.dumps(record.to_dict(), indent=2))

    def read_metadata(self, job_id: str) -> Optional[JobMetadataRecord]:
        text = self.read_text(job_id, METADATA_NAME)
        if text is None:
            return None
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None
        return JobMetadataRecord.from_dict(payload)

    # -- completion marker -------------------------------------------------
    def write_completion(self, job_id: str, marker: CompletionMarker) -> Path:
        path = self.path_for(job_id, COMPLETION_NAME)
        write_atomic(path, json.dumps(marker.to_dict()))
        return path

    def read_completion(self, job_id: str) -> Optional[CompletionMarker]:
        text = self.read_text(job_id, COMPLETION_NAME)
        if text is None:
            return None
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None
        return CompletionMarker.from_dict(payload)

    # -- scheduler reference -----------------------------------------------
    def write_scheduler_id(self, job_id: str, scheduler_id: str) -> Path:
        return self.write_text(job_id, SCHEDULER_ID_NAME, f"{scheduler_id}\n")

    def read_scheduler_id(self, job_id: str) -> Optional[str]:
        text = self.read_text(job_id, SCHEDULER_ID_NAME)
        if text is None:
            return None
        return text.strip() or None

    def read_log(self, job_id: str) -> str:
        return self.read_text(job_id, LOG_NAME) or ""


class FilesystemJobStore(JobStore):
    """One directory per job directly under ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def job_dir(self, job_id: str) -> Path:
        validate_job_id(job_id)
        path = (self.root / job_id).resolve()
        if path.parent != self.root:
            raise InvalidInput("Invalid job ID", code="INVALID_JOB_ID")
        return path

    def create(self, job_id: str) -> Path:
        path = self.job_dir(job_id)
        path.mkdir(parents=False, exist_ok=False)
        return path

    def exists(self, job_id: str) -> bool:
        return self.job_dir(job_id).is_dir()

    def remove(self, job_id: str) -> None:
        path = self.job_dir(job_id)
        if not path.is_dir():
            raise NotFound(f"Job {job_id} not found", code="JOB_NOT_FOUND")
        shutil.rmtree(path)


def write_atomic(path: Path, content: str) -> None:
    """Write via a temp file in the same directory so readers never see a partial file."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


_default_store: Optional[JobStore] = None


def get_job_store(root: Optional[Path] = None) -> JobStore:
    global _default_store
    if _default_store is None:
        if root is None:
            from .config import load_config

            root = load_config().paths.job_root
        _default_store = FilesystemJobStore(root)
    return _default_store


__all__ = [
    "COMPLETION_NAME",
    "LOG_NAME",
    "METADATA_NAME",
    "PID_NAME",
    "SCHEDULER_ID_NAME",
    "CompletionMarker",
    "FilesystemJobStore",
    "JobMetadataRecord",
    "JobStore",
    "generate_job_id",
    "get_job_store",
    "utc_now_iso",
    "write_atomic",
]

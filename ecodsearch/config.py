"""Runtime configuration loader for the ECOD search job backend."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


CONFIG_ENV_VAR = "ECODSEARCH_CONFIG"
PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "cfg" / "ecodsearch.yaml"
DEFAULT_LOCAL_CONFIG_PATH = PROJECT_ROOT / "cfg" / "ecodsearch.local.yaml"

_ENV_VAR_RE = re.compile(r"\$(\w+)|\${([^}]+)}")

DEFAULT_RCSB_URL = "https://files.rcsb.org/download/{pdb_id}.cif"
DEFAULT_ALPHAFOLD_URL = "https://alphafold.ebi.ac.uk/files/AF-{accession}-F1-model_v4.cif"


def _expand_env_vars(text: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        var = match.group(1) or match.group(2)
        if var and var in os.environ:
            return os.environ[var]
        return match.group(0)

    expanded = _ENV_VAR_RE.sub(_replace, text)
    return os.path.expanduser(expanded)


def _expand_env_in_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _expand_env_in_value(val) for key, val in value.items()}
    if isinstance(value, list):
        return [_expand_env_in_value(val) for val in value]
    if isinstance(value, str):
        return _expand_env_vars(value)
    return value


@dataclass(slots=True)
class PathsConfig:
    job_root: Path = field(default_factory=lambda: Path.cwd() / "tmpdata")
    log_dir: Path = field(default_factory=lambda: Path.cwd() / "logs" / "ecodsearch")

    def __post_init__(self) -> None:
        if isinstance(self.job_root, str):
            self.job_root = Path(self.job_root).expanduser()
        if not self.job_root.is_absolute():
            self.job_root = (Path.cwd() / self.job_root).resolve()
        if isinstance(self.log_dir, str):
            self.log_dir = Path(self.log_dir).expanduser()
        if not self.log_dir.is_absolute():
            self.log_dir = (Path.cwd() / self.log_dir).resolve()


@dataclass(slots=True)
class ToolsConfig:
    blastp_path: str = "/usr/bin/blastp"
    blast_db: str = "/data/ECOD0/html/blastdb/ecod100_af2_pdb"
    foldseek_path: str = "/usr/bin/foldseek"
    foldseek_db: str = "/data/ECOD0/html/foldseekdb/ECOD_foldseek_DB"
    threads: int = 4
    library_path: Optional[str] = "/usr/lib64"
    default_evalue: str = "0.01"

    def __post_init__(self) -> None:
        if isinstance(self.threads, str) and self.threads.strip():
            self.threads = int(self.threads)
        if not isinstance(self.threads, int) or self.threads < 1:
            self.threads = 1
        if isinstance(self.library_path, str):
            self.library_path = self.library_path.strip() or None
        self.default_evalue = str(self.default_evalue).strip() or "0.01"


@dataclass(slots=True)
class RunnerConfig:
    backend: str = "local"
    sbatch_path: str = "sbatch"
    squeue_path: str = "squeue"
    partition: Optional[str] = None
    account: Optional[str] = None
    time_minutes: int = 120
    mem_gb: int = 8
    cpus: int = 4
    scheduler_stale_after_hours: Optional[float] = None

    def __post_init__(self) -> None:
        self.backend = str(self.backend or "local").strip().lower()
        if self.backend not in {"local", "slurm"}:
            raise ValueError(f"Unknown runner backend {self.backend!r}; expected 'local' or 'slurm'")
        for attr in ("time_minutes", "mem_gb", "cpus"):
            value = getattr(self, attr)
            if isinstance(value, str) and value.strip():
                setattr(self, attr, int(value))
        if isinstance(self.scheduler_stale_after_hours, str):
            text = self.scheduler_stale_after_hours.strip()
            self.scheduler_stale_after_hours = float(text) if text else None
        if self.scheduler_stale_after_hours is not None and self.scheduler_stale_after_hours <= 0:
            self.scheduler_stale_after_hours = None


@dataclass(slots=True)
class FetchConfig:
    rcsb_url_template: str = DEFAULT_RCSB_URL
    alphafold_url_template: str = DEFAULT_ALPHAFOLD_URL
    timeout: float = 30.0

    def __post_init__(self) -> None:
        if isinstance(self.timeout, str) and self.timeout.strip():
            self.timeout = float(self.timeout)


@dataclass(slots=True)
class RetentionConfig:
    max_age_days: float = 7
    admin_token: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.max_age_days, str) and self.max_age_days.strip():
            self.max_age_days = float(self.max_age_days)
        if isinstance(self.admin_token, str):
            self.admin_token = self.admin_token.strip() or None


@dataclass(slots=True)
class DomainStoreConfig:
    database_url: Optional[str] = None
    pool_size: int = 5

    def __post_init__(self) -> None:
        if isinstance(self.database_url, str):
            self.database_url = self.database_url.strip() or None
        if isinstance(self.pool_size, str) and self.pool_size.strip():
            self.pool_size = int(self.pool_size)


@dataclass(slots=True)
class AppConfig:
    paths: PathsConfig = field(default_factory=PathsConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    domain_store: DomainStoreConfig = field(default_factory=DomainStoreConfig)
    background_concurrency: int = 8
    log_level: str = "INFO"

    def ensure_dirs(self) -> None:
        for path in [self.paths.job_root, self.paths.log_dir]:
            if path:
                path.mkdir(parents=True, exist_ok=True)


def _deep_update(dest: Dict[str, Any], src: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in src.items():
        if isinstance(value, dict) and isinstance(dest.get(key), dict):
            dest[key] = _deep_update(dest[key], value)
        else:
            dest[key] = value
    return dest


def _load_yaml_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return _expand_env_in_value(data)


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def config_from_dict(data: Dict[str, Any]) -> AppConfig:
    cfg = AppConfig(
        paths=PathsConfig(**_section(data, "paths")),
        tools=ToolsConfig(**_section(data, "tools")),
        runner=RunnerConfig(**_section(data, "runner")),
        fetch=FetchConfig(**_section(data, "fetch")),
        retention=RetentionConfig(**_section(data, "retention")),
        domain_store=DomainStoreConfig(**_section(data, "domain_store")),
    )
    if data.get("background_concurrency"):
        cfg.background_concurrency = max(1, int(data["background_concurrency"]))
    if data.get("log_level"):
        cfg.log_level = str(data["log_level"]).upper()
    return cfg


# (env var, section, key); the first env var found for a key wins.
_ENV_OVERRIDES = [
    ("ECODSEARCH_JOB_ROOT", "paths", "job_root"),
    ("JOB_TMP_DIR", "paths", "job_root"),
    ("ECODSEARCH_LOG_DIR", "paths", "log_dir"),
    ("BLASTP_PATH", "tools", "blastp_path"),
    ("BLAST_DB", "tools", "blast_db"),
    ("FOLDSEEK_PATH", "tools", "foldseek_path"),
    ("FOLDSEEK_DB", "tools", "foldseek_db"),
    ("ECODSEARCH_TOOL_THREADS", "tools", "threads"),
    ("ECODSEARCH_RUNNER", "runner", "backend"),
    ("ECODSEARCH_SLURM_PARTITION", "runner", "partition"),
    ("ECODSEARCH_SLURM_ACCOUNT", "runner", "account"),
    ("ECODSEARCH_SCHEDULER_STALE_HOURS", "runner", "scheduler_stale_after_hours"),
    ("ECODSEARCH_RETENTION_DAYS", "retention", "max_age_days"),
    ("ADMIN_TOKEN", "retention", "admin_token"),
    ("DATABASE_URL", "domain_store", "database_url"),
]


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_name, section, key in _ENV_OVERRIDES:
        value = os.getenv(env_name)
        if not value:
            continue
        target = overrides.setdefault(section, {})
        target.setdefault(key, value)
    if log_level := os.getenv("ECODSEARCH_LOG_LEVEL"):
        overrides["log_level"] = log_level
    return overrides


@lru_cache(maxsize=1)
def load_config() -> AppConfig:
    """Load configuration from defaults → YAML files → environment overrides."""
    cfg_path_env = os.getenv(CONFIG_ENV_VAR)
    if cfg_path_env:
        cfg_paths = [Path(cfg_path_env).expanduser()]
    else:
        cfg_paths = [DEFAULT_CONFIG_PATH, DEFAULT_LOCAL_CONFIG_PATH]

    merged: Dict[str, Any] = {}
    for path in cfg_paths:
        merged = _deep_update(merged, _load_yaml_config(path))
    merged = _deep_update(merged, _env_overrides())

    loaded = config_from_dict(merged)
    loaded.ensure_dirs()
    return loaded


__all__ = [
    "AppConfig",
    "PathsConfig",
    "ToolsConfig",
    "RunnerConfig",
    "FetchConfig",
    "RetentionConfig",
    "DomainStoreConfig",
    "config_from_dict",
    "load_config",
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_LOCAL_CONFIG_PATH",
]

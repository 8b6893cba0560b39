"""Job kinds: everything that differs between a BLAST job and a Foldseek job."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config import ToolsConfig
from .errors import InvalidInput
from .parsers import FOLDSEEK_COLUMNS, HitRecord, parse_blast_xml, parse_foldseek_m8


class JobKind(str, Enum):
    BLAST = "blast"
    FOLDSEEK = "foldseek"


def _blast_command(tools: ToolsConfig, job_dir: Path, input_path: Path, result_path: Path, evalue: str) -> List[str]:
    return [
        tools.blastp_path,
        "-query", str(input_path),
        "-db", tools.blast_db,
        "-out", str(result_path),
        "-evalue", evalue,
        "-outfmt", "5",
        "-num_threads", str(tools.threads),
    ]


def _foldseek_command(tools: ToolsConfig, job_dir: Path, input_path: Path, result_path: Path, evalue: str) -> List[str]:
    return [
        tools.foldseek_path,
        "easy-search",
        str(input_path),
        tools.foldseek_db,
        str(result_path),
        str(job_dir / "tmp"),
        "--format-output", ",".join(FOLDSEEK_COLUMNS),
        "-e", evalue,
        "--threads", str(tools.threads),
    ]


@dataclass(frozen=True)
class KindSpec:
    kind: JobKind
    label: str
    id_prefix: str
    result_name: str
    correlate_key: str
    parse: Callable[[str], List[HitRecord]]
    build_argv: Callable[[ToolsConfig, Path, Path, Path, str], List[str]]
    # Streamed formats are only complete once this closing tag has been written.
    closing_marker: Optional[str] = None
    # Environment variables the tool must not inherit.
    drop_env: tuple[str, ...] = ()

    def command(self, tools: ToolsConfig, job_dir: Path, input_path: Path, evalue: str) -> List[str]:
        return self.build_argv(tools, job_dir, input_path, job_dir / self.result_name, evalue)

    def tool_env(self, tools: ToolsConfig) -> Dict[str, str]:
        env = {key: value for key, value in os.environ.items() if key not in self.drop_env}
        if tools.library_path:
            env["LD_LIBRARY_PATH"] = tools.library_path
        return env

    def result_terminated(self, path: Path, *, require_content: bool) -> bool:
        """True when the result artifact is complete enough to parse."""
        if not path.is_file():
            return False
        if self.closing_marker is not None:
            return self.closing_marker in path.read_text(encoding="utf-8", errors="replace")
        if require_content:
            return path.stat().st_size > 0
        return True

    def owns(self, job_id: str) -> bool:
        return job_id.startswith(self.id_prefix)


BLAST = KindSpec(
    kind=JobKind.BLAST,
    label="BLAST",
    id_prefix="bl_",
    result_name="results.xml",
    correlate_key="domain_id",
    parse=parse_blast_xml,
    build_argv=_blast_command,
    closing_marker="</BlastOutput>",
)

FOLDSEEK = KindSpec(
    kind=JobKind.FOLDSEEK,
    label="Foldseek",
    id_prefix="fs_",
    result_name="results.m8",
    correlate_key="uid",
    parse=parse_foldseek_m8,
    build_argv=_foldseek_command,
    # Foldseek fails to start when OMP_PROC_BIND is set in the environment.
    drop_env=("OMP_PROC_BIND",),
)

KIND_SPECS: Dict[JobKind, KindSpec] = {BLAST.kind: BLAST, FOLDSEEK.kind: FOLDSEEK}


def get_spec(kind: JobKind | str) -> KindSpec:
    try:
        return KIND_SPECS[JobKind(kind)]
    except ValueError as exc:
        raise InvalidInput(f"Unknown job kind {kind!r}") from exc


__all__ = ["BLAST", "FOLDSEEK", "JobKind", "KIND_SPECS", "KindSpec", "get_spec"]

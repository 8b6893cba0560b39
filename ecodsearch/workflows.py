"""Job submission and result assembly invoked by API endpoints."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import AppConfig, load_config
from .correlate import DomainStore, correlate_hits, get_domain_store
from .errors import InvalidInput, NotFound, ParseFailure
from .job_store import LOG_NAME, CompletionMarker, JobMetadataRecord, JobStore, generate_job_id, get_job_store
from .kinds import BLAST, FOLDSEEK, JobKind, KindSpec, get_spec
from .parsers import HitRecord
from .runners import JobRunner, get_runner
from .status import JobState, resolve_status
from .structures import StructureFetcher, count_chain_atoms, extract_chain
from .validation import (
    validate_chain,
    validate_evalue,
    validate_job_id,
    validate_pdb_id,
    validate_sequence,
    validate_structure,
    validate_uniprot_accession,
)

logger = logging.getLogger(__name__)

# Exit code recorded when the tool could not be started at all.
LAUNCH_FAILED_EXIT_CODE = -1
_ID_ATTEMPTS = 5

_executor: ThreadPoolExecutor | None = None


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        cfg = load_config()
        _executor = ThreadPoolExecutor(max_workers=cfg.background_concurrency, thread_name_prefix="ecodsearch-launch")
    return _executor


@dataclass
class JobResult:
    job_id: str
    kind: JobKind
    state: JobState
    error: Optional[str] = None
    hits: Optional[List[HitRecord]] = None
    query_length: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def hit_count(self) -> Optional[int]:
        return None if self.hits is None else len(self.hits)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"job_id": self.job_id, "status": self.state.value}
        if self.error is not None:
            payload["error"] = self.error
        if self.hits is not None:
            payload["hit_count"] = self.hit_count
            payload["hits"] = [hit.to_dict() for hit in self.hits]
        if self.query_length is not None:
            payload["query_length"] = self.query_length
        if self.metadata is not None:
            payload["metadata"] = self.metadata
        return payload


def _create_job_dir(store: JobStore, spec: KindSpec) -> str:
    for _ in range(_ID_ATTEMPTS):
        job_id = generate_job_id(spec.id_prefix)
        try:
            store.create(job_id)
        except FileExistsError:
            logger.warning("[gateway] job id collision -> %s", job_id)
            continue
        return job_id
    raise RuntimeError(f"Could not allocate a unique {spec.label} job id")


def _persist_job(store: JobStore, spec: KindSpec, record: JobMetadataRecord, input_name: str, content: str) -> str:
    """Create the job directory and write metadata then input; nothing is left behind on failure."""
    job_id = _create_job_dir(store, spec)
    record.job_id = job_id
    try:
        store.write_metadata(record)
        store.write_text(job_id, input_name, content)
    except OSError:
        store.remove(job_id)
        raise
    return job_id


def _launch_async(
    job_id: str,
    spec: KindSpec,
    input_name: str,
    evalue: str,
    *,
    cfg: AppConfig,
    store: JobStore,
    runner: JobRunner,
    executor: Optional[Executor] = None,
) -> Future:
    job_dir = store.job_dir(job_id)
    argv = spec.command(cfg.tools, job_dir, job_dir / input_name, evalue)
    env = spec.tool_env(cfg.tools)

    def _run() -> None:
        try:
            runner.launch(job_id, argv, env=env, result_name=spec.result_name)
        except Exception as exc:
            logger.error("[gateway] launch.error -> kind=%s job=%s error=%s", spec.kind.value, job_id, exc)
            log_path = store.path_for(job_id, LOG_NAME)
            with log_path.open("a", encoding="utf-8") as handle:
                handle.write(f"Failed to start {spec.label} process: {exc}\n")
            store.write_completion(job_id, CompletionMarker(exit_code=LAUNCH_FAILED_EXIT_CODE))

    return (executor or _get_executor()).submit(_run)


def submit_sequence_search(
    request,
    *,
    cfg: AppConfig | None = None,
    store: JobStore | None = None,
    runner: JobRunner | None = None,
    executor: Executor | None = None,
) -> str:
    cfg = cfg or load_config()
    store = store or get_job_store(cfg.paths.job_root)
    runner = runner or get_runner(cfg, store)

    evalue = validate_evalue(request.evalue if request.evalue is not None else cfg.tools.default_evalue)
    sequence = validate_sequence(request.sequence)

    record = JobMetadataRecord(
        job_id="",
        kind=BLAST.kind.value,
        input_type="sequence",
        source={"type": "sequence"},
        evalue=evalue,
        query_length=len(sequence),
        backend=runner.backend,
    )
    input_name = "query.fasta"
    job_id = _persist_job(store, BLAST, record, input_name, f">query\n{sequence}\n")
    _launch_async(job_id, BLAST, input_name, evalue, cfg=cfg, store=store, runner=runner, executor=executor)
    logger.info("[gateway] submit.ok -> kind=blast job=%s length=%d evalue=%s", job_id, len(sequence), evalue)
    return job_id


def _resolve_structure_input(request, fetcher: StructureFetcher) -> tuple[str, Dict[str, Any], Optional[str]]:
    """Return structure text, source description and chain for the request's input type."""
    input_type = request.input_type
    if input_type == "pdb_file":
        return request.structure, {"type": "upload"}, request.chain

    if input_type == "pdb_id":
        pdb_id = validate_pdb_id(request.pdb_id)
        chain = validate_chain(request.chain)
        content = extract_chain(fetcher.fetch_pdb(pdb_id), chain)
        if count_chain_atoms(content) == 0:
            raise NotFound(f"Chain {chain} not found in PDB {pdb_id}", code="CHAIN_NOT_FOUND")
        return content, {"type": "pdb", "id": f"{pdb_id}_{chain}"}, chain

    if input_type == "alphafold_id":
        accession = validate_uniprot_accession(request.alphafold_id)
        return fetcher.fetch_alphafold(accession), {"type": "alphafold", "id": accession}, None

    raise InvalidInput(
        "Invalid input type. Use pdb_file, pdb_id, or alphafold_id",
        code="INVALID_INPUT_TYPE",
    )


def submit_structure_search(
    request,
    *,
    cfg: AppConfig | None = None,
    store: JobStore | None = None,
    runner: JobRunner | None = None,
    fetcher: StructureFetcher | None = None,
    executor: Executor | None = None,
) -> str:
    cfg = cfg or load_config()
    store = store or get_job_store(cfg.paths.job_root)
    runner = runner or get_runner(cfg, store)
    fetcher = fetcher or StructureFetcher(cfg.fetch)

    evalue = validate_evalue(request.evalue if request.evalue is not None else cfg.tools.default_evalue)
    content, source, chain = _resolve_structure_input(request, fetcher)
    summary = validate_structure(content)

    record = JobMetadataRecord(
        job_id="",
        kind=FOLDSEEK.kind.value,
        input_type=request.input_type,
        source=source,
        evalue=evalue,
        chain=chain,
        backend=runner.backend,
    )
    input_name = "query.cif" if summary.format == "mmcif" else "query.pdb"
    job_id = _persist_job(store, FOLDSEEK, record, input_name, content)
    _launch_async(job_id, FOLDSEEK, input_name, evalue, cfg=cfg, store=store, runner=runner, executor=executor)
    logger.info(
        "[gateway] submit.ok -> kind=foldseek job=%s source=%s atoms=%d evalue=%s",
        job_id,
        source.get("type"),
        summary.atom_count,
        evalue,
    )
    return job_id


def get_job_result(
    job_id: str,
    kind: JobKind | str,
    *,
    cfg: AppConfig | None = None,
    store: JobStore | None = None,
    runner: JobRunner | None = None,
    domain_store: DomainStore | None = None,
) -> JobResult:
    """Resolve a job's status and, once completed, its parsed and correlated hits."""
    cfg = cfg or load_config()
    spec = get_spec(kind)
    validate_job_id(job_id)
    if not spec.owns(job_id):
        raise InvalidInput("Invalid job ID format", code="INVALID_JOB_ID")
    store = store or get_job_store(cfg.paths.job_root)
    runner = runner or get_runner(cfg, store)

    report = resolve_status(store, job_id, spec, runner, stale_after_hours=cfg.runner.scheduler_stale_after_hours)
    if report.state is JobState.NOT_FOUND:
        raise NotFound(f"{spec.label} job not found", code="JOB_NOT_FOUND")

    metadata = store.read_metadata(job_id)
    result = JobResult(job_id=job_id, kind=spec.kind, state=report.state, error=report.error)
    if spec is BLAST and metadata is not None:
        result.query_length = metadata.query_length
    if report.state is not JobState.COMPLETED:
        return result

    text = store.read_text(job_id, spec.result_name) or ""
    try:
        hits = spec.parse(text)
    except ParseFailure as exc:
        logger.error("[gateway] parse.error -> kind=%s job=%s error=%s", spec.kind.value, job_id, exc)
        raise ParseFailure(f"Failed to parse {spec.label} results") from exc

    if domain_store is None:
        domain_store = get_domain_store(cfg.domain_store)
    result.hits = correlate_hits(hits, domain_store, spec.correlate_key)
    if spec is FOLDSEEK and metadata is not None:
        result.metadata = metadata.to_dict()
    return result


__all__ = [
    "JobResult",
    "get_job_result",
    "submit_sequence_search",
    "submit_structure_search",
]

"""FastAPI application entrypoint for the ECOD search job backend."""

from __future__ import annotations

import logging
import os
import secrets
import shutil
import sys
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from . import __version__
from .config import AppConfig, load_config
from .errors import JobError
from .job_store import get_job_store
from .kinds import JobKind
from .models import (
    BlastStatusResponse,
    BlastSubmitRequest,
    CleanupResponse,
    DiskUsage,
    FoldseekStatusResponse,
    FoldseekSubmitRequest,
    HealthResponse,
    SubmitResponse,
)
from .reaper import cleanup_old_jobs
from .runners import get_runner
from .workflows import get_job_result, submit_sequence_search, submit_structure_search

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_MIN_FREE_GB = 1.0
_GB = 1024 ** 3


def _configure_logging(cfg: AppConfig) -> None:
    root = logging.getLogger("ecodsearch")
    if root.handlers:
        return
    root.setLevel(cfg.log_level)
    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(logging.Formatter(fmt="%(message)s"))
    root.addHandler(stream)
    try:
        cfg.paths.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(cfg.paths.log_dir / "ecodsearch.log", encoding="utf-8")
    except OSError as exc:
        root.warning("[app] file logging disabled: %s", exc)
        return
    file_handler.setFormatter(logging.Formatter(fmt=_LOG_FORMAT))
    root.addHandler(file_handler)


app = FastAPI(title="ECOD Search Jobs API", version=__version__)

cfg = load_config()
_configure_logging(cfg)
store = get_job_store(cfg.paths.job_root)
runner = get_runner(cfg, store)

logger = logging.getLogger(__name__)


def _http_error(exc: JobError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _binary_available(path: str) -> bool:
    return os.path.isfile(path) or shutil.which(path) is not None


@app.get("/healthz", response_model=HealthResponse)
async def healthz() -> HealthResponse:
    binaries = {
        "blastp": _binary_available(cfg.tools.blastp_path),
        "foldseek": _binary_available(cfg.tools.foldseek_path),
    }
    status = "ok" if all(binaries.values()) else "degraded"
    try:
        usage = shutil.disk_usage(cfg.paths.job_root)
        disk = DiskUsage(
            path=str(cfg.paths.job_root),
            free_gb=round(usage.free / _GB, 2),
            total_gb=round(usage.total / _GB, 2),
        )
        if usage.free / _GB < _MIN_FREE_GB:
            status = "degraded"
    except OSError as exc:
        disk = DiskUsage(path=str(cfg.paths.job_root), error=f"Could not check disk space: {exc}")
    return HealthResponse(status=status, version=__version__, runner=runner.backend, binaries=binaries, disk=disk)


@app.post("/api/blast/submit", response_model=SubmitResponse)
async def api_blast_submit(payload: BlastSubmitRequest) -> SubmitResponse:
    try:
        job_id = await run_in_threadpool(submit_sequence_search, payload, cfg=cfg, store=store, runner=runner)
    except JobError as exc:
        raise _http_error(exc) from exc
    return SubmitResponse(job_id=job_id, message="BLAST job submitted successfully")


@app.get("/api/blast/{job_id}", response_model=BlastStatusResponse, response_model_exclude_none=True)
async def api_blast_status(job_id: str) -> BlastStatusResponse:
    try:
        result = await run_in_threadpool(
            get_job_result, job_id, JobKind.BLAST, cfg=cfg, store=store, runner=runner
        )
    except JobError as exc:
        raise _http_error(exc) from exc
    return BlastStatusResponse(**result.to_dict())


@app.post("/api/foldseek/submit", response_model=SubmitResponse)
async def api_foldseek_submit(payload: FoldseekSubmitRequest) -> SubmitResponse:
    try:
        job_id = await run_in_threadpool(submit_structure_search, payload, cfg=cfg, store=store, runner=runner)
    except JobError as exc:
        raise _http_error(exc) from exc
    return SubmitResponse(job_id=job_id, message="Foldseek job submitted successfully")


@app.get("/api/foldseek/{job_id}", response_model=FoldseekStatusResponse, response_model_exclude_none=True)
async def api_foldseek_status(job_id: str) -> FoldseekStatusResponse:
    try:
        result = await run_in_threadpool(
            get_job_result, job_id, JobKind.FOLDSEEK, cfg=cfg, store=store, runner=runner
        )
    except JobError as exc:
        raise _http_error(exc) from exc
    return FoldseekStatusResponse(**result.to_dict())


@app.post("/api/admin/cleanup", response_model=CleanupResponse)
async def api_admin_cleanup(request: Request) -> CleanupResponse:
    expected = cfg.retention.admin_token
    if not expected:
        raise HTTPException(status_code=503, detail="Admin endpoint not configured")
    token = _bearer_token(request)
    if token is None or not secrets.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")

    result = await run_in_threadpool(cleanup_old_jobs, cfg.paths.job_root, cfg.retention.max_age_days)
    logger.info("[admin] cleanup -> removed=%d scanned=%d", len(result.removed), result.scanned)
    return CleanupResponse(
        jobs_removed=len(result.removed),
        jobs_scanned=result.scanned,
        removed=result.removed,
        errors=result.errors,
    )

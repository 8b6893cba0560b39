"""Process launchers for search tools: a local subprocess backend and a SLURM backend."""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
import textwrap
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Mapping, Optional

from .config import AppConfig, RunnerConfig
from .errors import ToolExecutionFailure
from .job_store import COMPLETION_NAME, LOG_NAME, PID_NAME, CompletionMarker, JobStore

logger = logging.getLogger(__name__)

SUBMIT_SCRIPT_NAME = "submit.sh"
_SUBMITTED_RE = re.compile(r"Submitted batch job (\d+)")


class SchedulerQueryError(RuntimeError):
    """The scheduler could not be asked about a job."""


@dataclass
class LaunchHandle:
    backend: str
    ref: str
    command: str


class JobRunner(ABC):
    """Starts a tool for a job without waiting for it to finish."""

    backend = "base"

    def __init__(self, store: JobStore) -> None:
        self.store = store

    @abstractmethod
    def launch(
        self,
        job_id: str,
        argv: List[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        result_name: str,
    ) -> LaunchHandle: ...

    def query_state(self, scheduler_id: str) -> Optional[str]:
        """Short scheduler state code, ``""`` once the job left the queue, ``None`` without a scheduler."""
        return None


class LocalProcessRunner(JobRunner):
    backend = "local"

    def launch(self, job_id, argv, *, env=None, result_name):
        job_dir = self.store.job_dir(job_id)
        display_cmd = shlex.join(argv)
        logger.info("[runner] exec.start -> job=%s cmd=%s", job_id, display_cmd)
        err_handle = open(job_dir / LOG_NAME, "ab")
        try:
            process = subprocess.Popen(
                argv,
                cwd=job_dir,
                env=dict(env) if env is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=err_handle,
                start_new_session=True,
            )
        except OSError as exc:
            err_handle.close()
            raise ToolExecutionFailure(f"Failed to start {argv[0]}: {exc}") from exc

        self.store.write_text(job_id, PID_NAME, f"{process.pid}\n")

        def _wait() -> None:
            try:
                exit_code = process.wait()
            finally:
                err_handle.close()
            result = result_name if (job_dir / result_name).exists() else None
            self.store.write_completion(job_id, CompletionMarker(exit_code=exit_code, result=result))
            logger.info("[runner] exec.exit -> job=%s code=%s result=%s", job_id, exit_code, result)

        threading.Thread(target=_wait, name=f"watch-{job_id}", daemon=True).start()
        return LaunchHandle(backend=self.backend, ref=str(process.pid), command=display_cmd)


def _completion_snippet(result_name: str) -> str:
    """Shell lines that record the tool's exit status the same way the local watcher does."""
    result = shlex.quote(result_name)
    return textwrap.dedent(
        f"""\
        rc=$?
        result=null
        if [ -e {result} ]; then result='"'{result}'"'; fi
        if [ "$rc" -eq 0 ]; then ok=true; else ok=false; fi
        finished=$(date -u +%Y-%m-%dT%H:%M:%S+00:00)
        printf '{{"exit_code": %d, "result": %s, "finished_at": "%s", "success": %s}}\\n' \\
            "$rc" "$result" "$finished" "$ok" > .{COMPLETION_NAME}.tmp
        mv .{COMPLETION_NAME}.tmp {COMPLETION_NAME}
        """
    )


class SlurmRunner(JobRunner):
    backend = "slurm"

    def __init__(self, store: JobStore, cfg: Optional[RunnerConfig] = None) -> None:
        super().__init__(store)
        self.cfg = cfg or RunnerConfig(backend="slurm")

    def _sbatch_options(self, job_id: str) -> List[str]:
        opts = [f"--job-name=ecod_{job_id}", "--output=/dev/null", f"--error={LOG_NAME}", "--open-mode=append"]
        if self.cfg.partition:
            opts.append(f"--partition={self.cfg.partition}")
        if self.cfg.account:
            opts.append(f"--account={self.cfg.account}")
        if self.cfg.time_minutes:
            opts.append(f"--time={int(self.cfg.time_minutes)}")
        if self.cfg.mem_gb:
            opts.append(f"--mem={int(self.cfg.mem_gb)}G")
        if self.cfg.cpus:
            opts.append(f"--cpus-per-task={int(self.cfg.cpus)}")
        return opts

    def build_script(self, job_id: str, argv: List[str], result_name: str) -> str:
        job_dir = self.store.job_dir(job_id)
        lines = ["#!/bin/bash"]
        lines.extend(f"#SBATCH {opt}" for opt in self._sbatch_options(job_id))
        lines.append("set -uo pipefail")
        lines.append(f"cd {shlex.quote(str(job_dir))}")
        lines.append(f"{shlex.join(argv)} 2>> {LOG_NAME}")
        lines.append(_completion_snippet(result_name).rstrip())
        return "\n".join(lines) + "\n"

    def launch(self, job_id, argv, *, env=None, result_name):
        job_dir = self.store.job_dir(job_id)
        script_path = self.store.write_text(job_id, SUBMIT_SCRIPT_NAME, self.build_script(job_id, argv, result_name))
        cmd = [self.cfg.sbatch_path, str(script_path)]
        logger.info("[runner] submit -> job=%s sbatch opts: %s", job_id, " ".join(self._sbatch_options(job_id)))
        try:
            process = subprocess.run(
                cmd,
                cwd=job_dir,
                env=dict(env) if env is not None else None,
                capture_output=True,
                text=True,
                timeout=60,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ToolExecutionFailure(f"sbatch could not be run: {exc}") from exc
        if process.returncode != 0:
            message = (process.stderr or process.stdout or "sbatch failed").strip()
            raise ToolExecutionFailure(f"sbatch failed ({process.returncode}): {message}")
        match = _SUBMITTED_RE.search(process.stdout or "")
        if not match:
            raise ToolExecutionFailure(f"Unexpected sbatch output: {(process.stdout or '').strip()!r}")
        scheduler_id = match.group(1)
        self.store.write_scheduler_id(job_id, scheduler_id)
        logger.info("[runner] submit -> job=%s slurm_job_id=%s", job_id, scheduler_id)
        return LaunchHandle(backend=self.backend, ref=scheduler_id, command=shlex.join(argv))

    def query_state(self, scheduler_id: str) -> Optional[str]:
        cmd = [self.cfg.squeue_path, "-j", scheduler_id, "-h", "-o", "%t"]
        try:
            process = subprocess.run(cmd, capture_output=True, text=True, timeout=30)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise SchedulerQueryError(f"squeue could not be run: {exc}") from exc
        if process.returncode != 0:
            message = (process.stderr or process.stdout or "").strip()
            # squeue exits non-zero for ids it no longer tracks.
            if "Invalid job id" in message:
                return ""
            raise SchedulerQueryError(message or f"squeue exited with {process.returncode}")
        lines = [line.strip() for line in (process.stdout or "").splitlines() if line.strip()]
        return lines[0] if lines else ""


def get_runner(cfg: AppConfig, store: JobStore) -> JobRunner:
    if cfg.runner.backend == "slurm":
        return SlurmRunner(store, cfg.runner)
    return LocalProcessRunner(store)


__all__ = [
    "JobRunner",
    "LaunchHandle",
    "LocalProcessRunner",
    "SUBMIT_SCRIPT_NAME",
    "SchedulerQueryError",
    "SlurmRunner",
    "get_runner",
]

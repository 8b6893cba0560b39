"""Pydantic models shared across FastAPI endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

JobStatusLiteral = Literal["not_found", "pending", "running", "completed", "failed"]


class BlastSubmitRequest(BaseModel):
    sequence: Optional[str] = Field(None, description="Protein sequence, plain or FASTA")
    evalue: Optional[str] = Field(None, max_length=32, description="E-value threshold, e.g. 0.01 or 1e-5")


class FoldseekSubmitRequest(BaseModel):
    input_type: Literal["pdb_file", "pdb_id", "alphafold_id"] = "pdb_file"
    structure: Optional[str] = Field(None, description="Uploaded PDB or mmCIF text (input_type=pdb_file)")
    pdb_id: Optional[str] = Field(None, max_length=8, description="4-character PDB accession")
    chain: Optional[str] = Field(None, max_length=4)
    alphafold_id: Optional[str] = Field(None, max_length=32, description="UniProt accession")
    evalue: Optional[str] = Field(None, max_length=32)


class SubmitResponse(BaseModel):
    job_id: str
    message: str


class HitBase(BaseModel):
    num: int
    uid: Optional[int] = None
    domain_id: Optional[str] = None
    fid: Optional[str] = None
    family_name: Optional[str] = None
    evalue: float
    bit_score: float
    query_start: int
    query_end: int
    hit_start: int
    hit_end: int
    align_length: int


class BlastHitModel(HitBase):
    range: str = ""
    identity: int = 0
    gaps: int = 0
    qseq: str = ""
    hseq: str = ""
    midline: str = ""


class FoldseekHitModel(HitBase):
    target_id: str = ""
    pident: float = 0.0
    mismatches: int = 0
    gap_opens: int = 0
    tm_score: float = 0.0


class JobStatusBase(BaseModel):
    job_id: str
    status: JobStatusLiteral
    error: Optional[str] = None
    hit_count: Optional[int] = None


class BlastStatusResponse(JobStatusBase):
    hits: Optional[List[BlastHitModel]] = None
    query_length: Optional[int] = None


class FoldseekStatusResponse(JobStatusBase):
    hits: Optional[List[FoldseekHitModel]] = None
    metadata: Optional[Dict[str, Any]] = None


class CleanupResponse(BaseModel):
    success: bool = True
    jobs_removed: int
    jobs_scanned: int
    removed: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class DiskUsage(BaseModel):
    path: str
    free_gb: Optional[float] = None
    total_gb: Optional[float] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    version: str
    runner: str
    binaries: Dict[str, bool] = Field(default_factory=dict)
    disk: DiskUsage

"""Parsers turning raw BLAST / Foldseek output into hit lists.

Both parsers accept the artifact text and return a list of hit dataclasses.
Empty input is a valid "no hits" result; anything structurally broken raises
:class:`~ecodsearch.errors.ParseFailure`.
"""

from __future__ import annotations

import csv
import io
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional
from xml.parsers.expat import ExpatError

from Bio.Blast import NCBIXML

from .errors import ParseFailure

FOLDSEEK_COLUMNS = (
    "query",
    "target",
    "fident",
    "alnlen",
    "mismatch",
    "gapopen",
    "qstart",
    "qend",
    "tstart",
    "tend",
    "evalue",
    "bits",
    "alntmscore",
)

# Foldseek targets are named after the zero-padded domain uid, e.g. "000000003.pdb".
_UID_TARGET_RE = re.compile(r"(\d+)\.pdb")


@dataclass(slots=True)
class HitRecord:
    num: int
    evalue: float
    bit_score: float
    query_start: int
    query_end: int
    hit_start: int
    hit_end: int
    align_length: int
    uid: Optional[int] = None
    domain_id: Optional[str] = None
    fid: Optional[str] = None
    family_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class BlastHit(HitRecord):
    range: str = ""
    identity: int = 0
    gaps: int = 0
    qseq: str = ""
    hseq: str = ""
    midline: str = ""


@dataclass(slots=True)
class FoldseekHit(HitRecord):
    target_id: str = ""
    pident: float = 0.0
    mismatches: int = 0
    gap_opens: int = 0
    tm_score: float = 0.0


def _as_int(value: object) -> int:
    return value if isinstance(value, int) else 0


def _as_float(value: object) -> float:
    return float(value) if isinstance(value, (int, float)) else 0.0


def parse_blast_xml(text: str) -> List[BlastHit]:
    """Parse BLAST ``-outfmt 5`` XML; only the first iteration and first HSP per hit are used."""
    text = (text or "").lstrip()
    if not text:
        return []
    if not text.startswith("<?xml"):
        raise ParseFailure("Malformed BLAST XML: missing XML declaration")
    try:
        records = list(NCBIXML.parse(io.StringIO(text)))
    except (ValueError, AssertionError, ExpatError) as exc:
        raise ParseFailure(f"Malformed BLAST XML: {exc}") from exc
    if not records:
        return []
    first = records[0]

    hits: List[BlastHit] = []
    # NCBIXML drops Hit_num; blastp writes it as the 1-based position in this list.
    for index, alignment in enumerate(first.alignments, start=1):
        if not alignment.hsps:
            continue
        hsp = alignment.hsps[0]
        parts = (alignment.hit_def or "").split()
        domain_id = parts[0] if parts else ""
        hit_range = parts[1] if len(parts) > 1 else ""
        hits.append(
            BlastHit(
                num=index,
                domain_id=domain_id or None,
                range=hit_range,
                evalue=_as_float(hsp.expect),
                bit_score=_as_float(hsp.bits),
                identity=_as_int(hsp.identities),
                align_length=_as_int(hsp.align_length),
                gaps=_as_int(hsp.gaps),
                query_start=_as_int(hsp.query_start),
                query_end=_as_int(hsp.query_end),
                hit_start=_as_int(hsp.sbjct_start),
                hit_end=_as_int(hsp.sbjct_end),
                qseq=hsp.query or "",
                hseq=hsp.sbjct or "",
                midline=hsp.match or "",
            )
        )
    return hits


def uid_from_target(target_id: str) -> Optional[int]:
    match = _UID_TARGET_RE.fullmatch(target_id.strip())
    return int(match.group(1)) if match else None


def parse_foldseek_m8(text: str) -> List[FoldseekHit]:
    """Parse Foldseek tabular output written with the 13 ``FOLDSEEK_COLUMNS``."""
    hits: List[FoldseekHit] = []
    reader = csv.reader(io.StringIO(text or ""), delimiter="\t", quoting=csv.QUOTE_NONE)
    for fields in reader:
        if len(fields) < len(FOLDSEEK_COLUMNS):
            continue
        row = dict(zip(FOLDSEEK_COLUMNS, fields))
        try:
            hit = FoldseekHit(
                num=len(hits) + 1,
                target_id=row["target"],
                uid=uid_from_target(row["target"]),
                pident=round(float(row["fident"]) * 100, 4),
                align_length=int(row["alnlen"]),
                mismatches=int(row["mismatch"]),
                gap_opens=int(row["gapopen"]),
                query_start=int(row["qstart"]),
                query_end=int(row["qend"]),
                hit_start=int(row["tstart"]),
                hit_end=int(row["tend"]),
                evalue=float(row["evalue"]),
                bit_score=float(row["bits"]),
                tm_score=float(row["alntmscore"]),
            )
        except ValueError as exc:
            raise ParseFailure(f"Malformed Foldseek row {reader.line_num}: {exc}") from exc
        hits.append(hit)
    return hits


__all__ = [
    "BlastHit",
    "FOLDSEEK_COLUMNS",
    "FoldseekHit",
    "HitRecord",
    "parse_blast_xml",
    "parse_foldseek_m8",
    "uid_from_target",
]

"""Input validation for job submission and job-id handling.

Every value that ends up on a tool command line or in a filesystem path passes
through one of these functions first.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import InvalidInput
from .structures import count_atoms, detect_format

JOB_ID_RE = re.compile(r"[A-Za-z0-9_-]+")
MAX_JOB_ID_LENGTH = 64

# Optional digits, optional fraction, optional signed exponent. Patterns here are
# applied with ``fullmatch`` so a trailing newline cannot slip through.
EVALUE_RE = re.compile(r"\d*\.?\d+(?:[eE][+-]?\d+)?", re.ASCII)

# Standard residues plus BLAST's ambiguity (X), stop (*) and gap (-) symbols.
SEQUENCE_ALPHABET_RE = re.compile(r"[ACDEFGHIKLMNPQRSTVWXY*-]+")
MIN_SEQUENCE_LENGTH = 10
MAX_SEQUENCE_LENGTH = 10_000

MIN_ATOMS = 10
MAX_ATOMS = 100_000

PDB_ID_RE = re.compile(r"[A-Za-z0-9]{4}")
CHAIN_RE = re.compile(r"[A-Za-z0-9]+")
UNIPROT_RE = re.compile(r"[A-Z][A-Z0-9]+")


@dataclass(slots=True)
class StructureSummary:
    format: str
    atom_count: int


def is_valid_job_id(job_id: object) -> bool:
    if not isinstance(job_id, str) or not job_id:
        return False
    return len(job_id) <= MAX_JOB_ID_LENGTH and bool(JOB_ID_RE.fullmatch(job_id))


def validate_job_id(job_id: object) -> str:
    if not is_valid_job_id(job_id):
        raise InvalidInput("Invalid job ID", code="INVALID_JOB_ID")
    return job_id  # type: ignore[return-value]


def is_valid_evalue(value: object) -> bool:
    return isinstance(value, str) and EVALUE_RE.fullmatch(value) is not None


def validate_evalue(value: object) -> str:
    if not is_valid_evalue(value):
        raise InvalidInput("Invalid evalue parameter", code="INVALID_EVALUE")
    return value  # type: ignore[return-value]


def clean_sequence(text: str) -> str:
    """Drop FASTA header lines, join the rest, uppercase and strip whitespace."""
    residues = [line.strip() for line in text.strip().splitlines() if not line.strip().startswith(">")]
    return re.sub(r"\s", "", "".join(residues)).upper()


def validate_sequence(text: object) -> str:
    if not isinstance(text, str) or not text.strip():
        raise InvalidInput("No sequence provided", code="MISSING_SEQUENCE")
    sequence = clean_sequence(text)
    if not sequence:
        raise InvalidInput("No sequence provided", code="MISSING_SEQUENCE")
    if not SEQUENCE_ALPHABET_RE.fullmatch(sequence):
        raise InvalidInput(
            "Invalid characters in sequence. Only standard amino acid codes are allowed.",
            code="INVALID_SEQUENCE",
        )
    if len(sequence) < MIN_SEQUENCE_LENGTH:
        raise InvalidInput(
            f"Sequence too short. Minimum {MIN_SEQUENCE_LENGTH} amino acids required.",
            code="INVALID_SEQUENCE",
        )
    if len(sequence) > MAX_SEQUENCE_LENGTH:
        raise InvalidInput(
            f"Sequence too long. Maximum {MAX_SEQUENCE_LENGTH} amino acids allowed.",
            code="INVALID_SEQUENCE",
        )
    return sequence


def validate_structure(content: object) -> StructureSummary:
    if not isinstance(content, str) or not content.strip():
        raise InvalidInput("No structure file provided", code="MISSING_STRUCTURE")
    fmt = detect_format(content)
    atom_count = count_atoms(content)
    if atom_count == 0:
        raise InvalidInput("No ATOM records found in structure file", code="INVALID_STRUCTURE")
    if atom_count > MAX_ATOMS:
        raise InvalidInput(
            "Structure too large (>100,000 atoms). Please use a single domain or chain.",
            code="INVALID_STRUCTURE",
        )
    if atom_count < MIN_ATOMS:
        raise InvalidInput(
            "Structure too small (<10 atoms). Please provide a valid protein structure.",
            code="INVALID_STRUCTURE",
        )
    return StructureSummary(format=fmt, atom_count=atom_count)


def validate_pdb_id(pdb_id: object) -> str:
    if not isinstance(pdb_id, str) or not PDB_ID_RE.fullmatch(pdb_id):
        raise InvalidInput("Invalid PDB ID format (must be 4 characters)", code="INVALID_PDB_ID")
    return pdb_id.upper()


def validate_chain(chain: object) -> str:
    if not isinstance(chain, str) or not CHAIN_RE.fullmatch(chain):
        raise InvalidInput("Chain ID is required for PDB structures", code="MISSING_CHAIN")
    return chain.upper()


def validate_uniprot_accession(accession: object) -> str:
    text = accession.strip().upper() if isinstance(accession, str) else ""
    if not UNIPROT_RE.fullmatch(text):
        raise InvalidInput("Invalid UniProt accession format", code="INVALID_UNIPROT")
    return text


__all__ = [
    "JOB_ID_RE",
    "MAX_JOB_ID_LENGTH",
    "StructureSummary",
    "clean_sequence",
    "is_valid_evalue",
    "is_valid_job_id",
    "validate_chain",
    "validate_evalue",
    "validate_job_id",
    "validate_pdb_id",
    "validate_sequence",
    "validate_structure",
    "validate_uniprot_accession",
]

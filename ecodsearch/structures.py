"""Structure text helpers: format sniffing, atom counting, chain extraction and fetching."""

from __future__ import annotations

import io
import logging
from typing import List, Optional

import requests
from Bio.PDB.MMCIF2Dict import MMCIF2Dict

from .config import FetchConfig
from .errors import InvalidInput, UpstreamFetchFailure

logger = logging.getLogger(__name__)

_ATOM_PREFIXES = ("ATOM", "HETATM")
_AUTH_ASYM_COLUMN = "_atom_site.auth_asym_id"
# 0-based index of the chain identifier in fixed-column PDB records (column 22).
_PDB_CHAIN_COLUMN = 21


def detect_format(content: str) -> str:
    """Return ``"mmcif"`` when mmCIF markers are present, otherwise ``"pdb"``."""
    if "data_" in content or "_atom_site." in content:
        return "mmcif"
    return "pdb"


def count_atoms(content: str) -> int:
    return sum(1 for line in content.splitlines() if line.startswith(_ATOM_PREFIXES))


_CIF_RESERVED_START = ("'", '"', "_", "#", "$", ";", "[", "]")


def _cif_value(value: str) -> str:
    """Render a parsed mmCIF value so it reads back as the same token."""
    if value and not any(ch.isspace() for ch in value) and not value.startswith(_CIF_RESERVED_START):
        return value
    if "'" not in value:
        return f"'{value}'"
    return f'"{value}"'


def _is_loop_end(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith(("#", "_", "loop_", "data_"))


def extract_chain_mmcif(content: str, chain_id: str) -> str:
    """Keep only ``_atom_site`` rows whose ``auth_asym_id`` is ``chain_id``.

    Values are read with :class:`Bio.PDB.MMCIF2Dict.MMCIF2Dict` and the kept
    rows are written back one per line; every other line is left untouched.
    """
    try:
        mmcif = MMCIF2Dict(io.StringIO(content))
    except ValueError as exc:
        raise InvalidInput(f"Malformed mmCIF structure: {exc}", code="INVALID_STRUCTURE") from exc

    columns = [key for key in mmcif if key.startswith("_atom_site.")]
    chains = mmcif.get(_AUTH_ASYM_COLUMN) or []
    if any(len(mmcif[column]) != len(chains) for column in columns if chains):
        raise InvalidInput("Malformed mmCIF structure: ragged _atom_site loop", code="INVALID_STRUCTURE")
    rows = [
        " ".join(_cif_value(mmcif[column][index]) for column in columns)
        for index, chain in enumerate(chains)
        if chain == chain_id
    ]

    lines = content.split("\n")
    output: List[str] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        next_line = lines[index + 1] if index + 1 < len(lines) else ""
        if line.strip() != "loop_" or not next_line.startswith("_atom_site."):
            output.append(line)
            index += 1
            continue

        output.append(line)
        index += 1
        while index < len(lines) and lines[index].startswith("_atom_site."):
            output.append(lines[index])
            index += 1
        while index < len(lines) and not _is_loop_end(lines[index]):
            index += 1
        output.extend(rows)

    return "\n".join(output)


def extract_chain_pdb(content: str, chain_id: str) -> str:
    output: List[str] = []
    for line in content.split("\n"):
        if line.startswith(_ATOM_PREFIXES):
            if line[_PDB_CHAIN_COLUMN:_PDB_CHAIN_COLUMN + 1] == chain_id:
                output.append(line)
        elif line.startswith("TER"):
            line_chain = line[_PDB_CHAIN_COLUMN] if len(line) > _PDB_CHAIN_COLUMN else ""
            if line_chain in {chain_id, " "}:
                output.append(line)
        else:
            output.append(line)
    return "\n".join(output)


def extract_chain(content: str, chain_id: str) -> str:
    if detect_format(content) == "mmcif":
        return extract_chain_mmcif(content, chain_id)
    return extract_chain_pdb(content, chain_id)


def count_chain_atoms(content: str) -> int:
    """Count ``ATOM`` rows only; a chain of nothing but ligands is treated as missing."""
    return sum(1 for line in content.splitlines() if line.startswith("ATOM") and line[4:5].isspace())


class StructureFetcher:
    """Download reference structures from RCSB PDB and the AlphaFold DB."""

    def __init__(self, cfg: Optional[FetchConfig] = None, *, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg or FetchConfig()
        self._session = session or requests.Session()

    def _get(self, url: str, label: str, *, code: str) -> str:
        logger.info("[fetch] try url=%s", url)
        try:
            res = self._session.get(url, timeout=self.cfg.timeout)
            res.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("[fetch] fail url=%s error=%s", url, exc)
            raise UpstreamFetchFailure(f"Could not fetch {label}", code=code) from exc
        logger.info("[fetch] ok url=%s bytes=%d", url, len(res.content))
        return res.text

    def fetch_pdb(self, pdb_id: str) -> str:
        url = self.cfg.rcsb_url_template.format(pdb_id=pdb_id.lower())
        return self._get(url, f"PDB {pdb_id.upper()} from RCSB", code="PDB_FETCH_FAILED")

    def fetch_alphafold(self, accession: str) -> str:
        url = self.cfg.alphafold_url_template.format(accession=accession)
        return self._get(url, f"AlphaFold model for {accession}", code="ALPHAFOLD_FETCH_FAILED")


__all__ = [
    "StructureFetcher",
    "count_atoms",
    "count_chain_atoms",
    "detect_format",
    "extract_chain",
    "extract_chain_mmcif",
    "extract_chain_pdb",
]

import pytest

from ecodsearch.errors import InvalidInput
from ecodsearch.validation import (
    clean_sequence,
    is_valid_evalue,
    is_valid_job_id,
    validate_chain,
    validate_evalue,
    validate_pdb_id,
    validate_sequence,
    validate_structure,
    validate_uniprot_accession,
)


def _pdb_atoms(count: int, chain: str = "A") -> str:
    lines = []
    for i in range(1, count + 1):
        lines.append(f"ATOM  {i:5d}  CA  ALA {chain}{i:4d}      11.104  13.207   2.100  1.00 20.00           C")
    return "\n".join(lines) + "\nEND\n"


@pytest.mark.parametrize("value", ["0.01", "10", ".5", "1e-5", "1E+10", "0.001e-3", "5e3"])
def test_evalue_grammar_accepts_numeric_forms(value):
    assert is_valid_evalue(value)
    assert validate_evalue(value) == value


@pytest.mark.parametrize(
    "value",
    [
        "",
        "0.01; rm -rf /",
        "`id`",
        "$(reboot)",
        "1e",
        "-1",
        "0.01\n",
        "1..2",
        "１",
        "0x10",
    ],
)
def test_evalue_grammar_rejects_injection_and_garbage(value):
    assert not is_valid_evalue(value)
    with pytest.raises(InvalidInput) as excinfo:
        validate_evalue(value)
    assert excinfo.value.code == "INVALID_EVALUE"


def test_evalue_rejects_non_string():
    assert not is_valid_evalue(0.01)


def test_clean_sequence_strips_fasta_header_and_whitespace():
    text = ">sp|P69905|HBA_HUMAN\nmvls padktn\n  VKAAWGKVGA \n"
    assert clean_sequence(text) == "MVLSPADKTNVKAAWGKVGA"


def test_validate_sequence_accepts_bounds():
    assert validate_sequence("A" * 10) == "A" * 10
    assert len(validate_sequence("G" * 10_000)) == 10_000


@pytest.mark.parametrize("text", ["A" * 9, "A" * 10_001, ">hdr\nACDEFGHIK\n"])
def test_validate_sequence_rejects_out_of_bounds_length(text):
    with pytest.raises(InvalidInput) as excinfo:
        validate_sequence(text)
    assert excinfo.value.code == "INVALID_SEQUENCE"


def test_validate_sequence_rejects_bad_characters():
    with pytest.raises(InvalidInput) as excinfo:
        validate_sequence("MVKQIESKTAB1")
    assert excinfo.value.code == "INVALID_SEQUENCE"


@pytest.mark.parametrize("text", [None, "", "   ", ">header only\n"])
def test_validate_sequence_missing(text):
    with pytest.raises(InvalidInput) as excinfo:
        validate_sequence(text)
    assert excinfo.value.code == "MISSING_SEQUENCE"


def test_validate_sequence_allows_stop_gap_and_ambiguity():
    assert validate_sequence("MVKX*-QIESKTA") == "MVKX*-QIESKTA"


@pytest.mark.parametrize(
    "job_id, ok",
    [
        ("bl_AbC-12_x", True),
        ("fs_0123456", True),
        ("a" * 64, True),
        ("a" * 65, False),
        ("", False),
        ("../../etc", False),
        ("abc/def", False),
        ("abc\n", False),
        ("abc def", False),
        (None, False),
    ],
)
def test_job_id_grammar(job_id, ok):
    assert is_valid_job_id(job_id) is ok


def test_validate_structure_counts_atoms_and_detects_format():
    summary = validate_structure(_pdb_atoms(12))
    assert summary.format == "pdb"
    assert summary.atom_count == 12


def test_validate_structure_mmcif_format():
    text = "data_TEST\nloop_\n_atom_site.group_PDB\n" + "\n".join("ATOM %d" % i for i in range(20)) + "\n#\n"
    assert validate_structure(text).format == "mmcif"


@pytest.mark.parametrize(
    "text, message",
    [
        ("HEADER nothing here\n", "No ATOM records"),
        (_pdb_atoms(5), "too small"),
    ],
)
def test_validate_structure_rejects(text, message):
    with pytest.raises(InvalidInput) as excinfo:
        validate_structure(text)
    assert excinfo.value.code == "INVALID_STRUCTURE"
    assert message in excinfo.value.message


def test_validate_structure_rejects_too_many_atoms():
    text = "ATOM\n" * 100_001
    with pytest.raises(InvalidInput, match="too large"):
        validate_structure(text)


def test_validate_structure_missing():
    with pytest.raises(InvalidInput) as excinfo:
        validate_structure("")
    assert excinfo.value.code == "MISSING_STRUCTURE"


def test_reference_identifiers():
    assert validate_pdb_id("1abc") == "1ABC"
    assert validate_chain("b") == "B"
    assert validate_uniprot_accession(" p69905 ") == "P69905"
    with pytest.raises(InvalidInput):
        validate_pdb_id("1abcd")
    with pytest.raises(InvalidInput) as excinfo:
        validate_chain("")
    assert excinfo.value.code == "MISSING_CHAIN"
    with pytest.raises(InvalidInput):
        validate_uniprot_accession("9ABC")

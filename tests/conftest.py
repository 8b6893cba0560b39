import os
import tempfile
from pathlib import Path
from types import SimpleNamespace

import pytest

# ecodsearch.main loads its configuration at import time; keep it away from cfg/ and the repo tree.
_SESSION_ROOT = Path(tempfile.mkdtemp(prefix="ecodsearch-tests-"))
os.environ["ECODSEARCH_CONFIG"] = str(_SESSION_ROOT / "missing.yaml")
os.environ["ECODSEARCH_JOB_ROOT"] = str(_SESSION_ROOT / "jobs")
os.environ["ECODSEARCH_LOG_DIR"] = str(_SESSION_ROOT / "logs")
os.environ.pop("ADMIN_TOKEN", None)
os.environ.pop("DATABASE_URL", None)

from ecodsearch.config import AppConfig, PathsConfig  # noqa: E402
from ecodsearch.job_store import FilesystemJobStore  # noqa: E402
from ecodsearch.runners import JobRunner, LaunchHandle  # noqa: E402


BLAST_XML_TEMPLATE = """<?xml version="1.0"?>
<!DOCTYPE BlastOutput PUBLIC "-//NCBI//NCBI BlastOutput/EN" "http://www.ncbi.nlm.nih.gov/dtd/NCBI_BlastOutput.dtd">
<BlastOutput>
  <BlastOutput_program>blastp</BlastOutput_program>
  <BlastOutput_version>BLASTP 2.15.0+</BlastOutput_version>
  <BlastOutput_reference>Stephen F. Altschul et al.</BlastOutput_reference>
  <BlastOutput_db>ecod100_af2_pdb</BlastOutput_db>
  <BlastOutput_query-ID>Query_1</BlastOutput_query-ID>
  <BlastOutput_query-def>query</BlastOutput_query-def>
  <BlastOutput_query-len>30</BlastOutput_query-len>
  <BlastOutput_param>
    <Parameters>
      <Parameters_matrix>BLOSUM62</Parameters_matrix>
      <Parameters_expect>0.01</Parameters_expect>
      <Parameters_gap-open>11</Parameters_gap-open>
      <Parameters_gap-extend>1</Parameters_gap-extend>
      <Parameters_filter>F</Parameters_filter>
    </Parameters>
  </BlastOutput_param>
  <BlastOutput_iterations>
    <Iteration>
      <Iteration_iter-num>1</Iteration_iter-num>
      <Iteration_query-ID>Query_1</Iteration_query-ID>
      <Iteration_query-def>query</Iteration_query-def>
      <Iteration_query-len>30</Iteration_query-len>
      <Iteration_hits>
{hits}
      </Iteration_hits>
      <Iteration_stat>
        <Statistics>
          <Statistics_db-num>1000</Statistics_db-num>
          <Statistics_db-len>250000</Statistics_db-len>
          <Statistics_hsp-len>0</Statistics_hsp-len>
          <Statistics_eff-space>0</Statistics_eff-space>
          <Statistics_kappa>0.041</Statistics_kappa>
          <Statistics_lambda>0.267</Statistics_lambda>
          <Statistics_entropy>0.14</Statistics_entropy>
        </Statistics>
      </Iteration_stat>
    </Iteration>
  </BlastOutput_iterations>
</BlastOutput>
"""

BLAST_HIT_TEMPLATE = """        <Hit>
          <Hit_num>{num}</Hit_num>
          <Hit_id>{hit_id}</Hit_id>
          <Hit_def>{domain_id} {hit_range}</Hit_def>
          <Hit_accession>{hit_id}</Hit_accession>
          <Hit_len>120</Hit_len>
          <Hit_hsps>
            <Hsp>
              <Hsp_num>1</Hsp_num>
              <Hsp_bit-score>{bits}</Hsp_bit-score>
              <Hsp_score>120</Hsp_score>
              <Hsp_evalue>{evalue}</Hsp_evalue>
              <Hsp_query-from>1</Hsp_query-from>
              <Hsp_query-to>10</Hsp_query-to>
              <Hsp_hit-from>5</Hsp_hit-from>
              <Hsp_hit-to>14</Hsp_hit-to>
              <Hsp_query-frame>0</Hsp_query-frame>
              <Hsp_hit-frame>0</Hsp_hit-frame>
              <Hsp_identity>9</Hsp_identity>
              <Hsp_positive>10</Hsp_positive>
              <Hsp_gaps>1</Hsp_gaps>
              <Hsp_align-len>10</Hsp_align-len>
              <Hsp_qseq>MVKQIESKTA</Hsp_qseq>
              <Hsp_hseq>MVKQIE-KTA</Hsp_hseq>
              <Hsp_midline>MVKQIE KTA</Hsp_midline>
            </Hsp>
          </Hit_hsps>
        </Hit>"""


def blast_xml(*hits: dict) -> str:
    rendered = []
    for num, hit in enumerate(hits, start=1):
        fields = {"hit_id": f"gnl|BL_ORD_ID|{num}", "hit_range": "A:1-120", "bits": "45.2", "evalue": "1.5e-08"}
        fields.update(hit)
        rendered.append(BLAST_HIT_TEMPLATE.format(num=num, **fields))
    return BLAST_XML_TEMPLATE.format(hits="\n".join(rendered))


@pytest.fixture
def blast_xml_factory():
    return blast_xml


@pytest.fixture
def job_store(tmp_path: Path) -> FilesystemJobStore:
    return FilesystemJobStore(tmp_path / "jobs")


@pytest.fixture
def app_cfg(tmp_path: Path) -> AppConfig:
    return AppConfig(paths=PathsConfig(job_root=tmp_path / "jobs", log_dir=tmp_path / "logs"))


class RecordingRunner(JobRunner):
    """Runner that records launches instead of starting anything."""

    backend = "local"

    def __init__(self, store, states=None):
        super().__init__(store)
        self.launches = []
        self.states = dict(states or {})
        self.queries = []

    def launch(self, job_id, argv, *, env=None, result_name):
        self.launches.append(SimpleNamespace(job_id=job_id, argv=list(argv), env=env, result_name=result_name))
        return LaunchHandle(backend=self.backend, ref="0", command=" ".join(argv))

    def query_state(self, scheduler_id):
        self.queries.append(scheduler_id)
        state = self.states.get(scheduler_id)
        if isinstance(state, Exception):
            raise state
        return state


@pytest.fixture
def recording_runner(job_store):
    return RecordingRunner(job_store)


@pytest.fixture
def runner_factory(job_store):
    def _make(states=None):
        return RecordingRunner(job_store, states)

    return _make

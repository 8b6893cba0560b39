import os
import time

import pytest
from fastapi.testclient import TestClient

import ecodsearch.main as main
from ecodsearch.job_store import CompletionMarker, JobMetadataRecord

SEQUENCE = "MVKQIESKTAFQEALDAAGDKLVVVDFSAT"


@pytest.fixture
def client(monkeypatch, app_cfg, job_store, recording_runner):
    app_cfg.retention.admin_token = "s3cret"
    monkeypatch.setattr(main, "cfg", app_cfg)
    monkeypatch.setattr(main, "store", job_store)
    monkeypatch.setattr(main, "runner", recording_runner)
    return TestClient(main.app)


def test_blast_submit_then_status_is_pending(client):
    res = client.post("/api/blast/submit", json={"sequence": SEQUENCE, "evalue": "0.001"})
    assert res.status_code == 200
    body = res.json()
    assert body["job_id"].startswith("bl_")
    assert body["message"] == "BLAST job submitted successfully"

    res = client.get(f"/api/blast/{body['job_id']}")
    assert res.status_code == 200
    status = res.json()
    assert status["status"] == "pending"
    assert status["query_length"] == 30
    assert "hits" not in status


def test_blast_submit_rejects_bad_evalue_without_creating_job(client, job_store):
    res = client.post("/api/blast/submit", json={"sequence": SEQUENCE, "evalue": "1e-5 && reboot"})
    assert res.status_code == 400
    assert res.json()["detail"]["code"] == "INVALID_EVALUE"
    assert list(job_store.root.iterdir()) == []


def test_status_of_unknown_job_is_404(client):
    res = client.get("/api/blast/bl_nope0001")
    assert res.status_code == 404
    assert res.json()["detail"]["code"] == "JOB_NOT_FOUND"


def test_status_rejects_id_of_other_kind(client):
    res = client.get("/api/blast/fs_abcdefgh")
    assert res.status_code == 400
    assert res.json()["detail"]["code"] == "INVALID_JOB_ID"


def test_foldseek_completed_job_returns_hits(client, job_store):
    job_store.create("fs_done0001")
    job_store.write_metadata(
        JobMetadataRecord(job_id="fs_done0001", kind="foldseek", input_type="pdb_id", source={"type": "pdb", "id": "1ABC_A"})
    )
    row = "\t".join(["q", "000000003.pdb", "0.5", "80", "40", "1", "1", "80", "1", "80", "1e-5", "55.5", "0.61"])
    job_store.write_text("fs_done0001", "results.m8", row + "\n")
    job_store.write_completion("fs_done0001", CompletionMarker(exit_code=0, result="results.m8"))

    res = client.get("/api/foldseek/fs_done0001")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "completed"
    assert body["hit_count"] == 1
    assert body["hits"][0]["uid"] == 3
    assert body["hits"][0]["pident"] == 50
    assert body["metadata"]["source"] == {"type": "pdb", "id": "1ABC_A"}


def test_failed_job_reports_error(client, job_store):
    job_store.create("bl_fail0001")
    job_store.write_text("bl_fail0001", "job.err", "BLAST Database error: No alias or index file found\n")
    job_store.write_completion("bl_fail0001", CompletionMarker(exit_code=2))

    body = client.get("/api/blast/bl_fail0001").json()
    assert body["status"] == "failed"
    assert "No alias or index file found" in body["error"]


def test_foldseek_submit_upload(client):
    structure = "\n".join(
        f"ATOM  {i:5d}  CA  ALA A{i:4d}      11.104  13.207   2.100  1.00 20.00           C" for i in range(1, 21)
    )
    res = client.post("/api/foldseek/submit", json={"input_type": "pdb_file", "structure": structure})
    assert res.status_code == 200
    assert res.json()["job_id"].startswith("fs_")


def test_foldseek_submit_rejects_unknown_input_type(client):
    res = client.post("/api/foldseek/submit", json={"input_type": "uniprot"})
    assert res.status_code == 422


def test_admin_cleanup_requires_configured_token(client, app_cfg):
    app_cfg.retention.admin_token = None
    res = client.post("/api/admin/cleanup", headers={"Authorization": "Bearer s3cret"})
    assert res.status_code == 503


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "Basic s3cret"}])
def test_admin_cleanup_rejects_bad_credentials(client, headers):
    res = client.post("/api/admin/cleanup", headers=headers)
    assert res.status_code == 401


def test_admin_cleanup_removes_expired_jobs(client, job_store):
    old = job_store.create("bl_old00001")
    stamp = time.time() - 30 * 24 * 60 * 60
    os.utime(old, (stamp, stamp))
    job_store.create("bl_new00001")

    res = client.post("/api/admin/cleanup", headers={"Authorization": "Bearer s3cret"})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["jobs_removed"] == 1
    assert body["jobs_scanned"] == 2
    assert body["removed"] == ["bl_old00001"]
    assert job_store.exists("bl_new00001")


def test_healthz_reports_binaries_and_disk(client, app_cfg):
    app_cfg.tools.blastp_path = "sh"
    app_cfg.tools.foldseek_path = "sh"
    body = client.get("/healthz").json()
    assert body["binaries"] == {"blastp": True, "foldseek": True}
    assert body["runner"] == "local"
    assert body["disk"]["path"] == str(app_cfg.paths.job_root)


def test_healthz_degraded_when_binary_missing(client, app_cfg, tmp_path):
    app_cfg.tools.foldseek_path = str(tmp_path / "no-foldseek")
    body = client.get("/healthz").json()
    assert body["status"] == "degraded"
    assert body["binaries"]["foldseek"] is False


def test_unusable_domain_database_does_not_break_polling(client, app_cfg, job_store, monkeypatch):
    import ecodsearch.correlate as correlate

    monkeypatch.setattr(correlate, "_default_store", None)
    app_cfg.domain_store.database_url = "nosuchdialect://ecod@db/ecod"
    job_store.create("fs_wait0001")
    assert client.get("/api/foldseek/fs_wait0001").json()["status"] == "pending"

    job_store.create("fs_done0002")
    row = "\t".join(["q", "000000003.pdb", "0.5", "80", "40", "1", "1", "80", "1", "80", "1e-5", "55.5", "0.61"])
    job_store.write_text("fs_done0002", "results.m8", row + "\n")
    job_store.write_completion("fs_done0002", CompletionMarker(exit_code=0, result="results.m8"))
    res = client.get("/api/foldseek/fs_done0002")
    assert res.status_code == 200
    hit = res.json()["hits"][0]
    assert hit["uid"] == 3
    assert "domain_id" not in hit

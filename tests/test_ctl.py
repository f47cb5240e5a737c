import json

import pytest
import responses

from tunasync.ctl import (
    CtlConfig,
    CtlError,
    ManagerClient,
    load_ctl_config,
    main,
    render_format,
)
from tunasync.msg import CmdVerb, MirrorStatus, WorkerStatus
from tunasync.status import SyncStatus
from tunasync.web_status import build_web_mirror_status

BASE = "http://localhost:14242"


@pytest.fixture
def client():
    return ManagerClient(CtlConfig())


def _mock():
    return responses.RequestsMock(assert_all_requests_are_fired=False)


def test_default_config():
    cfg = load_ctl_config([], None)
    assert cfg.manager_addr == "localhost"
    assert cfg.manager_port == 14242
    assert cfg.base_url == BASE


def test_config_file_and_overrides(tmp_path):
    path = tmp_path / "ctl.conf"
    path.write_text('manager_addr = "10.0.0.1"\nmanager_port = 5000\n')
    cfg = load_ctl_config([], str(path))
    assert (cfg.manager_addr, cfg.manager_port) == ("10.0.0.1", 5000)
    cfg = load_ctl_config([], str(path), manager="127.0.0.1", port="6000")
    assert (cfg.manager_addr, cfg.manager_port) == ("127.0.0.1", 6000)


def test_missing_paths_skipped_but_config_file_required(tmp_path):
    missing = str(tmp_path / "absent.conf")
    assert load_ctl_config([missing]).manager_addr == "localhost"
    with pytest.raises(CtlError):
        load_ctl_config([], missing)


def test_ca_cert_switches_to_https():
    cfg = load_ctl_config([], None, ca_cert="/ca.crt")
    assert cfg.base_url.startswith("https://")


def test_render_format_fields():
    job = MirrorStatus(name="debian", size="5GB", is_master=True, status=SyncStatus.SUCCESS)
    out = render_format("{{.Name}}: {{ .Size }} {{.Status}} {{.IsMaster}}", job)
    assert out == "debian: 5GB success true"


def test_render_format_errors():
    job = MirrorStatus(name="debian")
    with pytest.raises(CtlError):
        render_format("{{.NoSuchField}}", job)
    with pytest.raises(CtlError):
        render_format("{{.Name", job)
    with pytest.raises(CtlError):
        render_format("{{ if }}", job)


def test_list_workers(client):
    workers = [WorkerStatus(id="w1", token="REDACTED"), WorkerStatus(id="w2", token="REDACTED")]
    with _mock() as rsps:
        rsps.add(responses.GET, BASE + "/workers", json=[w.to_dict() for w in workers])
        assert client.list_workers() == workers


def test_list_workers_failure(client):
    with _mock() as rsps:
        rsps.add(responses.GET, BASE + "/workers", status=500, json={"error": "boom"})
        with pytest.raises(CtlError):
            client.list_workers()


def test_list_all_jobs_with_status_filter(client):
    jobs = [
        build_web_mirror_status(MirrorStatus(name="a", status=SyncStatus.SUCCESS)),
        build_web_mirror_status(MirrorStatus(name="b", status=SyncStatus.FAILED)),
        build_web_mirror_status(MirrorStatus(name="c", status=SyncStatus.SYNCING)),
    ]
    with _mock() as rsps:
        rsps.add(responses.GET, BASE + "/jobs", json=[j.to_dict() for j in jobs])
        result = client.list_jobs([], all_jobs=True, statuses="success, failed")
        assert [j.name for j in result] == ["a", "b"]
        assert len(client.list_jobs([], all_jobs=True)) == 3


def test_list_all_jobs_bad_status(client):
    with _mock() as rsps:
        rsps.add(responses.GET, BASE + "/jobs", json=[])
        with pytest.raises(CtlError):
            client.list_jobs([], all_jobs=True, statuses="bogus")


def test_list_jobs_requires_workers(client):
    with pytest.raises(CtlError):
        client.list_jobs([])


def test_list_jobs_of_workers(client):
    with _mock() as rsps:
        rsps.add(
            responses.GET,
            BASE + "/workers/w1/jobs",
            json=[MirrorStatus(name="a", worker="w1").to_dict()],
        )
        rsps.add(
            responses.GET,
            BASE + "/workers/w2/jobs",
            json=[MirrorStatus(name="b", worker="w2").to_dict()],
        )
        jobs = client.list_jobs(["w1", "w2"])
    assert sorted((j.name, j.worker) for j in jobs) == [("a", "w1"), ("b", "w2")]


def test_list_jobs_worker_failure(client):
    with _mock() as rsps:
        rsps.add(responses.GET, BASE + "/workers/w1/jobs", json=[])
        rsps.add(responses.GET, BASE + "/workers/w2/jobs", status=400, json={"error": "invalid"})
        with pytest.raises(CtlError):
            client.list_jobs(["w1", "w2"])


def test_flush(client):
    with _mock() as rsps:
        rsps.add(responses.DELETE, BASE + "/jobs/disabled", json={"message": "flushed"})
        client.flush_disabled_jobs()
        assert len(rsps.calls) == 1
        rsps.replace(responses.DELETE, BASE + "/jobs/disabled", status=500, json={})
        with pytest.raises(CtlError):
            client.flush_disabled_jobs()


def test_remove_worker(client):
    with _mock() as rsps:
        rsps.add(responses.DELETE, BASE + "/workers/w1", json={"message": "deleted"})
        client.remove_worker("w1")
        assert rsps.calls[0].request.method == "DELETE"
        rsps.add(responses.DELETE, BASE + "/workers/w2", json={"message": "other"})
        with pytest.raises(CtlError, match="Failed to remove the worker"):
            client.remove_worker("w2")
        with pytest.raises(CtlError):
            client.remove_worker("")


def test_set_size(client):
    url = BASE + "/workers/w1/jobs/debian/size"
    with _mock() as rsps:
        rsps.add(responses.POST, url, json=MirrorStatus(name="debian", size="5GB").to_dict())
        status = client.set_size("w1", "debian", "5GB")
        sent = json.loads(rsps.calls[0].request.body)
    assert status.size == "5GB"
    assert sent == {"name": "debian", "size": "5GB"}


def test_set_size_mismatch(client):
    url = BASE + "/workers/w1/jobs/debian/size"
    with _mock() as rsps:
        rsps.add(responses.POST, url, json=MirrorStatus(name="debian", size="4GB").to_dict())
        with pytest.raises(CtlError, match="Mirror size error"):
            client.set_size("w1", "debian", "5GB")


def test_send_job_cmd(client):
    with _mock() as rsps:
        rsps.add(responses.POST, BASE + "/cmd", json={"message": "ok"})
        client.send_job_cmd(CmdVerb.START, "debian", "w1", ["a", "b"], force=True)
        sent = json.loads(rsps.calls[0].request.body)
        assert sent["cmd"] == "start"
        assert sent["mirror_id"] == "debian"
        assert sent["worker_id"] == "w1"
        assert sent["args"] == ["a", "b"]
        assert sent["options"] == {"force": True}
        rsps.replace(responses.POST, BASE + "/cmd", status=500, json={"error": "bad"})
        with pytest.raises(CtlError):
            client.send_job_cmd(CmdVerb.START, "debian", "w1", ["a", "b"], force=True)


def test_send_job_cmd_failure(client):
    with _mock() as rsps:
        rsps.add(responses.POST, BASE + "/cmd", status=400, json={"error": "bad"})
        with pytest.raises(CtlError, match="HTTP status code is not 200"):
            client.send_job_cmd(CmdVerb.STOP, "debian", "w1")


def test_send_worker_cmd(client):
    with pytest.raises(CtlError):
        client.send_worker_cmd(CmdVerb.RELOAD, "")
    with _mock() as rsps:
        rsps.add(responses.POST, BASE + "/cmd", json={"message": "ok"})
        client.send_worker_cmd(CmdVerb.RELOAD, "w1")
        sent = json.loads(rsps.calls[0].request.body)
    assert sent["cmd"] == "reload"
    assert sent["worker_id"] == "w1"


def test_main_workers(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("HOME", str(tmp_path))
    workers = [WorkerStatus(id="w1", token="REDACTED")]
    with _mock() as rsps:
        rsps.add(responses.GET, BASE + "/workers", json=[w.to_dict() for w in workers])
        assert main(["workers"]) == 0
    out = capsys.readouterr().out
    assert json.loads(out[out.index("["):]) == [w.to_dict() for w in workers]


def test_main_job_cmd_args(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("HOME", str(tmp_path))
    with _mock() as rsps:
        rsps.add(responses.POST, BASE + "/cmd", json={"message": "ok"})
        assert main(["start", "-w", "w1", "debian", "x, y"]) == 0
        sent = json.loads(rsps.calls[0].request.body)
    assert sent["args"] == ["x", "y"]
    assert "Successfully send the command" in capsys.readouterr().out


def test_main_usage_error(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert main(["set-size", "-w", "w1", "debian"]) == 1
    assert "Usage" in capsys.readouterr().err
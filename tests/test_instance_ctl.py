from types import SimpleNamespace

from instance_control.scripts import instance_ctl


def _wire(monkeypatch, lxd, settings, monitor) -> None:
    monkeypatch.setattr(instance_ctl, "configure_logging", lambda: None)
    monkeypatch.setattr(instance_ctl, "init_db", lambda: None)
    monkeypatch.setattr(instance_ctl, "get_settings", lambda: settings)
    monkeypatch.setattr(
        instance_ctl,
        "LXDClient",
        SimpleNamespace(from_settings=lambda _settings: lxd),
    )
    monkeypatch.setattr(instance_ctl, "DatabaseStatusMonitor", lambda: monitor)


def test_start_action_reports_starting(
    daemon, lxd, settings, monitor, monkeypatch, capsys
):
    daemon.add_instance("vm1")
    _wire(monkeypatch, lxd, settings, monitor)

    assert instance_ctl.main(["vm1", "start"]) == 0

    assert capsys.readouterr().out.strip() == "vm1 starting"
    assert daemon.instance("vm1")["status_code"] == 103


def test_create_action_creates_missing_instance(
    daemon, lxd, settings, monitor, monkeypatch, capsys
):
    _wire(monkeypatch, lxd, settings, monitor)

    assert instance_ctl.main(["vm1", "create", "--image", "abc123", "--cpus", "2"]) == 0

    assert capsys.readouterr().out.strip() == "vm1 stopped"
    row = daemon.instance("vm1")
    assert row["source"]["fingerprint"] == "abc123"
    assert row["config"]["limits.cpu"] == "2"


def test_ip_action_fails_without_lease(
    daemon, lxd, settings, monitor, monkeypatch, capsys
):
    daemon.add_instance("vm1", status_code=103)
    _wire(monkeypatch, lxd, settings, monitor)

    assert instance_ctl.main(["vm1", "ip", "--timeout", "0"]) == 1
    assert "failed to determine IP address" in capsys.readouterr().err

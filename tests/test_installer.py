import subprocess
from pathlib import Path

import pytest

from svcwatch.errors import InstallError, InstallPermissionError
from svcwatch.installer import install, monitor_command, render_env_file, render_unit, unit_name_for
from svcwatch.settings import Settings


class FakeSystemctl:
    def __init__(self, active="active", fail=None):
        self.calls = []
        self.active = active
        self.fail = fail or {}

    def __call__(self, cmd):
        self.calls.append(cmd)
        verb = cmd[1]
        if verb in self.fail:
            rc, err = self.fail[verb]
            return subprocess.CompletedProcess(cmd, rc, "", err)
        if verb == "is-active":
            return subprocess.CompletedProcess(cmd, 0 if self.active == "active" else 3, self.active + "\n", "")
        return subprocess.CompletedProcess(cmd, 0, "", "")


def test_render_unit_contains_invocation_and_policy(descriptor, tmp_path):
    cmd = monitor_command(descriptor, log_file="/var/log/svcwatch.log", python="/usr/bin/python3")
    text = render_unit(descriptor, cmd, tmp_path)

    assert "ExecStart=/usr/bin/python3 -m svcwatch --log-file /var/log/svcwatch.log monitor --name sp1-gpu" in text
    assert "--image public.ecr.aws/succinct-labs/moongate:v5.0.0" in text
    assert "--gpus all" in text
    assert "Restart=always" in text
    assert f"WorkingDirectory={tmp_path}" in text
    assert "Requires=docker.service" in text
    assert "WantedBy=multi-user.target" in text


def test_monitor_command_without_gpus(descriptor):
    d = descriptor.model_copy(update={"gpus": None})
    cmd = monitor_command(d)
    assert cmd[cmd.index("--gpus") + 1] == "none"
    assert "--log-file" not in cmd


def test_install_writes_enables_and_starts(descriptor, tmp_path):
    systemctl = FakeSystemctl()
    result = install(descriptor, unit_dir=tmp_path, runner=systemctl, working_dir="/opt/svcwatch")

    unit = unit_name_for(descriptor)
    assert result.active is True
    assert result.unit_path == tmp_path / unit
    assert result.unit_path.read_text().startswith("[Unit]")
    assert [c[1] for c in systemctl.calls] == ["daemon-reload", "enable", "restart", "is-active"]
    assert systemctl.calls[1] == ["systemctl", "enable", unit]


def test_install_twice_leaves_one_unit(descriptor, tmp_path):
    install(descriptor, unit_dir=tmp_path, runner=FakeSystemctl())
    d2 = descriptor.model_copy(update={"check_interval_s": 60})
    install(d2, unit_dir=tmp_path, runner=FakeSystemctl())

    files = sorted(p.name for p in tmp_path.iterdir())
    assert files == [unit_name_for(descriptor)]
    assert "--check-interval 60" in (tmp_path / files[0]).read_text()


def test_unwritable_unit_dir_raises_permission_error(descriptor, tmp_path, monkeypatch):
    def deny(self, *args, **kwargs):
        raise PermissionError(13, "Permission denied", str(self))

    monkeypatch.setattr(Path, "write_text", deny)
    systemctl = FakeSystemctl()

    with pytest.raises(PermissionError):
        install(descriptor, unit_dir=tmp_path, runner=systemctl)
    assert systemctl.calls == []


def test_systemctl_access_denied_raises_permission_error(descriptor, tmp_path):
    systemctl = FakeSystemctl(fail={"daemon-reload": (1, "Failed to reload daemon: Access denied")})
    with pytest.raises(InstallPermissionError):
        install(descriptor, unit_dir=tmp_path, runner=systemctl)


def test_systemctl_other_failure(descriptor, tmp_path):
    systemctl = FakeSystemctl(fail={"enable": (1, "Failed to enable unit: Unit file is masked.")})
    with pytest.raises(InstallError) as exc:
        install(descriptor, unit_dir=tmp_path, runner=systemctl)
    assert not isinstance(exc.value, PermissionError)


def test_unit_that_never_activates(descriptor, tmp_path):
    systemctl = FakeSystemctl(active="failed")
    with pytest.raises(InstallError, match="did not become active"):
        install(descriptor, unit_dir=tmp_path, runner=systemctl, confirm_attempts=2, confirm_interval_s=0)
    assert [c[1] for c in systemctl.calls].count("is-active") == 2


def test_install_carries_settings_into_unit(descriptor, tmp_path):
    settings = Settings(webhook_url="https://hooks.example/x", alarm_after_failures=3, log_level="DEBUG")
    unit_dir, env_dir = tmp_path / "units", tmp_path / "env"
    cmd = monitor_command(descriptor, log_level=settings.log_level, python="/usr/bin/python3")

    result = install(
        descriptor,
        unit_dir=unit_dir,
        command=cmd,
        runner=FakeSystemctl(),
        environment=settings.to_env(),
        env_dir=env_dir,
    )

    unit = result.unit_path.read_text()
    assert result.env_path == env_dir / "sp1-gpu-monitor.env"
    assert f"EnvironmentFile=-{result.env_path}\n" in unit
    assert "ExecStart=/usr/bin/python3 -m svcwatch --log-level DEBUG monitor" in unit

    env = result.env_path.read_text()
    assert 'SVCW_WEBHOOK_URL="https://hooks.example/x"' in env
    assert 'SVCW_ALARM_AFTER_FAILURES="3"' in env
    assert 'SVCW_LOG_LEVEL="DEBUG"' in env
    assert "SVCW_PORT" not in env
    assert result.env_path.stat().st_mode & 0o777 == 0o600


def test_reinstall_rewrites_env_file(descriptor, tmp_path):
    install(descriptor, unit_dir=tmp_path, runner=FakeSystemctl(), environment={"SVCW_WEBHOOK_URL": "https://a"}, env_dir=tmp_path)
    result = install(descriptor, unit_dir=tmp_path, runner=FakeSystemctl(), environment={}, env_dir=tmp_path)
    assert "SVCW_WEBHOOK_URL" not in result.env_path.read_text()


def test_env_file_quotes_values():
    text = render_env_file({"SVCW_SMTP_PASSWORD": 'p"a\\ss'})
    assert 'SVCW_SMTP_PASSWORD="p\\"a\\\\ss"' in text.splitlines()


def test_unit_without_environment_has_no_env_file_line(descriptor, tmp_path):
    result = install(descriptor, unit_dir=tmp_path, runner=FakeSystemctl())
    assert result.env_path is None
    assert "EnvironmentFile" not in result.unit_path.read_text()

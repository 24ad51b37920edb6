from unittest.mock import MagicMock

import pytest
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from svcwatch.docker_ops import DockerRuntime, device_requests, format_ports
from svcwatch.errors import ContainerRuntimeError, ProbeTimeout, RuntimeUnavailable


def _container(status="running", health="healthy"):
    c = MagicMock()
    c.id = "abc123def4567890"
    c.name = "sp1-gpu"
    c.status = status
    state = {"Running": status == "running"}
    if health:
        state["Health"] = {"Status": health}
    c.attrs = {
        "State": state,
        "NetworkSettings": {"Ports": {"3000/tcp": [{"HostIp": "0.0.0.0", "HostPort": "3000"}]}},
    }
    c.logs.return_value = b"line one\nline two\n"
    return c


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def rt(client):
    return DockerRuntime(timeout=2, client_factory=lambda timeout: client)


def test_inspect_running_container(rt, client):
    client.containers.get.return_value = _container()
    info = rt.inspect("sp1-gpu")
    assert info.running is True
    assert info.health == "healthy"
    assert info.ports == "0.0.0.0:3000->3000/tcp"


def test_inspect_without_healthcheck(rt, client):
    client.containers.get.return_value = _container(health=None)
    assert rt.inspect("sp1-gpu").health is None


def test_inspect_missing_container(rt, client):
    client.containers.get.side_effect = NotFound("No such container: sp1-gpu")
    assert rt.inspect("sp1-gpu") is None


def test_stop_and_remove_absent_container_are_noops(rt, client):
    client.containers.get.side_effect = NotFound("No such container: sp1-gpu")
    rt.stop("sp1-gpu")
    rt.remove("sp1-gpu")
    assert rt.logs_tail("sp1-gpu") == []


def test_remove_racing_with_removal_is_noop(rt, client):
    c = _container(status="exited")
    c.remove.side_effect = NotFound("No such container")
    client.containers.get.return_value = c
    rt.remove("sp1-gpu")


def test_stop_passes_grace_period(rt, client):
    c = _container()
    client.containers.get.return_value = c
    rt.stop("sp1-gpu", timeout=7)
    c.stop.assert_called_once_with(timeout=7)


def test_run_maps_descriptor(rt, client, descriptor):
    client.containers.run.return_value = _container()
    d = descriptor.model_copy(update={"environment": {"RUST_LOG": "info"}})

    ref = rt.run(d)

    assert ref.name == "sp1-gpu"
    args, kwargs = client.containers.run.call_args
    assert args == ("public.ecr.aws/succinct-labs/moongate:v5.0.0",)
    assert kwargs["name"] == "sp1-gpu"
    assert kwargs["detach"] is True
    assert kwargs["ports"] == {"3000/tcp": 3000}
    assert kwargs["restart_policy"] == {"Name": "unless-stopped"}
    assert kwargs["environment"] == {"RUST_LOG": "info"}
    assert kwargs["device_requests"][0]["Count"] == -1


def test_run_missing_image_is_runtime_error(rt, client, descriptor):
    client.containers.run.side_effect = ImageNotFound("manifest unknown")
    with pytest.raises(ContainerRuntimeError):
        rt.run(descriptor)


def test_api_error_is_runtime_error(rt, client, descriptor):
    client.containers.run.side_effect = APIError("Conflict", explanation="name already in use")
    with pytest.raises(ContainerRuntimeError, match="name already in use"):
        rt.run(descriptor)


def test_daemon_unreachable(client):
    def factory(timeout):
        raise DockerException("Error while fetching server API version")

    with pytest.raises(RuntimeUnavailable):
        DockerRuntime(client_factory=factory).inspect("sp1-gpu")


def test_connection_error_is_runtime_unavailable(rt, client):
    client.containers.get.side_effect = requests.exceptions.ConnectionError("refused")
    with pytest.raises(RuntimeUnavailable):
        rt.inspect("sp1-gpu")


def test_read_timeout_is_probe_timeout(rt, client):
    client.containers.get.side_effect = requests.exceptions.ReadTimeout("read timed out")
    with pytest.raises(ProbeTimeout):
        rt.inspect("sp1-gpu")


def test_logs_tail(rt, client):
    c = _container()
    client.containers.get.return_value = c
    assert rt.logs_tail("sp1-gpu", 2) == ["line one", "line two"]
    c.logs.assert_called_once_with(tail=2)


def test_device_requests():
    assert device_requests(None) == []
    assert device_requests("0,1")[0]["DeviceIDs"] == ["0", "1"]
    assert device_requests("all")[0]["Capabilities"] == [["gpu"]]


def test_format_ports_unpublished():
    assert format_ports({"8080/tcp": None}) == "8080/tcp"
    assert format_ports(None) == ""

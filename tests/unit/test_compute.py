"""Unit tests for the compute-instance provider."""

from __future__ import annotations

import itertools
from collections.abc import Mapping

import pytest
from conftest import FakeGateway

from feature_env_orchestrator.orchestrator.gateway import CommandError, CommandResult
from feature_env_orchestrator.orchestrator.remote.compute import (
    ComputeProvider,
    Instance,
    InstanceNotReady,
    InstanceSummary,
    parse_instance_list,
    parse_new_instance,
)


def test_parse_new_instance_from_json() -> None:
    instance = parse_new_instance('{"vm_name": "brave-otter", "ssh_dest": "brave-otter.exe.xyz"}')

    assert instance == Instance(name="brave-otter", remote_host="brave-otter.exe.xyz")


def test_parse_new_instance_derives_host_when_missing() -> None:
    instance = parse_new_instance('{"name": "brave-otter"}', host_domain="example.net")

    assert instance.remote_host == "brave-otter.example.net"


def test_parse_new_instance_from_text_output() -> None:
    instance = parse_new_instance("Created VM: brave-otter\nready in a moment")

    assert instance.name == "brave-otter"
    assert instance.remote_host == "brave-otter.exe.xyz"


@pytest.mark.parametrize("output", ["", "{}", "something went wrong"])
def test_parse_new_instance_rejects_unrecognized_output(output: str) -> None:
    with pytest.raises(ValueError):
        parse_new_instance(output)


def test_parse_instance_list_skips_headers() -> None:
    output = "NAME            STATUS\n-----------\nbrave-otter     running\nquiet-fox stopped\n"

    assert parse_instance_list(output) == [
        InstanceSummary(name="brave-otter", status="running"),
        InstanceSummary(name="quiet-fox", status="stopped"),
    ]


def test_allocate_uses_control_host(gateway: FakeGateway, compute: ComputeProvider) -> None:
    instance = compute.allocate()

    assert instance.name == "fortune-sprite"
    assert gateway.calls[0].target == "exe.dev"
    assert gateway.calls[0].command == "new --json"


def test_allocate_failure_raises_command_error(gateway: FakeGateway, compute: ComputeProvider) -> None:
    gateway.on_remote("new --json", exit_code=1, stderr="quota exceeded")

    with pytest.raises(CommandError):
        compute.allocate()


def test_wait_until_ready_polls_until_reachable(gateway: FakeGateway) -> None:
    attempts = iter([255, 255, 0])
    sleeps: list[float] = []

    def _reachable(
        host: str,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        return CommandResult(argv=(host, command), exit_code=next(attempts))

    gateway.run_remote = _reachable  # type: ignore[method-assign]
    provider = ComputeProvider(gateway, ready_poll_seconds=2, sleep=sleeps.append)

    provider.wait_until_ready("fortune-sprite.exe.xyz")

    assert sleeps == [2, 2]


def test_wait_until_ready_times_out(gateway: FakeGateway) -> None:
    gateway.on_remote("echo ok", exit_code=255, stderr="Connection refused")
    sleeps: list[float] = []
    clock = itertools.count(0, 6)
    provider = ComputeProvider(
        gateway,
        ready_timeout_seconds=10,
        ready_poll_seconds=5,
        sleep=sleeps.append,
        clock=lambda: next(clock),
    )

    with pytest.raises(InstanceNotReady) as exc_info:
        provider.wait_until_ready("fortune-sprite.exe.xyz")

    assert exc_info.value.host == "fortune-sprite.exe.xyz"
    assert len(gateway.commands("fortune-sprite.exe.xyz")) == 2
    assert sleeps == [5]


def test_delete_and_manual_command(gateway: FakeGateway, compute: ComputeProvider) -> None:
    compute.delete("fortune-sprite")

    assert gateway.commands("exe.dev") == ["rm fortune-sprite"]
    assert compute.manual_delete_command("fortune-sprite") == "ssh exe.dev rm fortune-sprite"


def test_list_instances(gateway: FakeGateway, compute: ComputeProvider) -> None:
    gateway.on_remote("list", stdout="fortune-sprite running\n", host="exe.dev")

    assert compute.list_instances() == [InstanceSummary(name="fortune-sprite", status="running")]

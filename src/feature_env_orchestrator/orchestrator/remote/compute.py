"""Ephemeral compute instances, managed through the provider's ssh control host."""

from __future__ import annotations

import json
import logging
import re
import shlex
import time
from collections.abc import Callable
from dataclasses import dataclass

from feature_env_orchestrator.orchestrator.gateway import CommandGateway

logger = logging.getLogger(__name__)

DEFAULT_CONTROL_HOST = "exe.dev"
DEFAULT_HOST_DOMAIN = "exe.xyz"

_TEXT_NAME_PATTERN = re.compile(r"(?:vm_name|name|VM)[:\s]+[\"']?([a-z]+-[a-z]+)[\"']?", re.I)


@dataclass(frozen=True, slots=True)
class Instance:
    name: str
    remote_host: str


@dataclass(frozen=True, slots=True)
class InstanceSummary:
    name: str
    status: str


@dataclass(frozen=True, slots=True)
class InstanceNotReady(TimeoutError):
    host: str
    timeout_seconds: float

    def __str__(self) -> str:
        return f"Instance {self.host} did not become reachable within {self.timeout_seconds:g}s"


def parse_new_instance(output: str, *, host_domain: str = DEFAULT_HOST_DOMAIN) -> Instance:
    """Parse the provider's `new --json` output.

    Expected shape: `{"vm_name": "fortune-sprite", "ssh_dest": "fortune-sprite.exe.xyz"}`.
    Plain-text output is tolerated as long as a `name: <adjective-noun>` is present.
    """

    text = output.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        name = data.get("vm_name") or data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Missing vm_name in instance provider response")
        host = data.get("ssh_dest")
        if not isinstance(host, str) or not host.strip():
            host = f"{name}.{host_domain}"
        return Instance(name=name, remote_host=host)

    match = _TEXT_NAME_PATTERN.search(text)
    if match:
        name = match.group(1)
        return Instance(name=name, remote_host=f"{name}.{host_domain}")

    raise ValueError(f"Failed to parse instance name from provider output: {text!r}")


def parse_instance_list(output: str) -> list[InstanceSummary]:
    items: list[InstanceSummary] = []
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        lowered = stripped.lower()
        if "name" in lowered and "status" in lowered:
            continue
        parts = stripped.split()
        if parts[0].startswith(("-", "=")):
            continue
        items.append(InstanceSummary(name=parts[0], status=parts[1] if len(parts) > 1 else "unknown"))
    return items


class ComputeProvider:
    """Allocate, poll for readiness, and delete instances."""

    def __init__(
        self,
        gateway: CommandGateway,
        *,
        control_host: str = DEFAULT_CONTROL_HOST,
        host_domain: str = DEFAULT_HOST_DOMAIN,
        ready_timeout_seconds: float = 120.0,
        ready_poll_seconds: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gateway = gateway
        self._control_host = control_host
        self._host_domain = host_domain
        self._ready_timeout = ready_timeout_seconds
        self._ready_poll = ready_poll_seconds
        self._sleep = sleep
        self._clock = clock

    @property
    def control_host(self) -> str:
        return self._control_host

    def allocate(self) -> Instance:
        result = self._gateway.run_remote(self._control_host, "new --json", timeout=60).check()
        instance = parse_new_instance(result.stdout, host_domain=self._host_domain)
        logger.info(
            "Instance allocated",
            extra={"instance": instance.name, "remote_host": instance.remote_host},
        )
        return instance

    def wait_until_ready(self, host: str) -> None:
        deadline = self._clock() + self._ready_timeout
        while True:
            if self._gateway.run_remote(host, "echo ok", timeout=15).ok:
                logger.info("Instance reachable", extra={"remote_host": host})
                return
            if self._clock() >= deadline:
                raise InstanceNotReady(host=host, timeout_seconds=self._ready_timeout)
            self._sleep(self._ready_poll)

    def delete(self, name: str) -> None:
        self._gateway.run_remote(self._control_host, f"rm {shlex.quote(name)}").check()
        logger.info("Instance deleted", extra={"instance": name})

    def list_instances(self) -> list[InstanceSummary]:
        result = self._gateway.run_remote(self._control_host, "list").check()
        return parse_instance_list(result.stdout)

    def manual_delete_command(self, name: str) -> str:
        return f"ssh {self._control_host} rm {name}"

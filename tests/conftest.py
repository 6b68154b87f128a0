"""
Shared pytest fixtures for the PiWifi test suite.

Provides a scripted command executor that records every invocation, so the
network managers can be exercised without touching the host, plus temporary
file locations for the config, lease and ruleset files.
"""

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from piwifi.errors import ExternalToolError
from piwifi.network.dhcp import DhcpConfigManager
from piwifi.network.executor import CommandExecutor, CommandResult
from piwifi.network.models import NetworkConfig
from piwifi.network.orchestrator import NetworkOrchestrator

# =============================================================================
# Scripted executor
# =============================================================================


@dataclass
class RecordedCall:
    """One command seen by the fake executor."""

    cmd: List[str]
    privileged: bool
    check: bool
    timeout: Optional[float]
    redact: Tuple[str, ...]
    input_text: Optional[str] = None

    @property
    def line(self) -> str:
        return " ".join(self.cmd)


@dataclass
class _Rule:
    prefix: str
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0
    exc: Optional[Exception] = None
    times: Optional[int] = None


class FakeExecutor(CommandExecutor):
    """Stand-in for CommandExecutor that returns scripted results.

    Rules match on the start of the space-joined command line. The most
    recently added matching rule wins; unmatched commands succeed with empty
    output. A rule with ``times`` is dropped after that many matches.
    """

    def __init__(self):
        self.calls: List[RecordedCall] = []
        self._rules: List[_Rule] = []
        super().__init__(use_sudo=False)

    def when(self, prefix: str, stdout: str = "", stderr: str = "", returncode: int = 0, exc=None, times=None):
        self._rules.append(_Rule(prefix, stdout, stderr, returncode, exc, times))
        return self

    @property
    def commands(self) -> List[str]:
        return [call.line for call in self.calls]

    def commands_starting(self, prefix: str) -> List[str]:
        return [line for line in self.commands if line.startswith(prefix)]

    def _match(self, line: str) -> Optional[_Rule]:
        for rule in reversed(self._rules):
            if line.startswith(rule.prefix):
                if rule.times is not None:
                    rule.times -= 1
                    if rule.times <= 0:
                        self._rules.remove(rule)
                return rule
        return None

    async def run(
        self,
        program,
        args=(),
        privileged=False,
        check=True,
        timeout=None,
        input_text=None,
        redact=(),
    ) -> CommandResult:
        cmd = [program, *args]
        call = RecordedCall(cmd, privileged, check, timeout, tuple(redact), input_text)
        self.calls.append(call)

        rule = self._match(call.line)
        if rule is None:
            return CommandResult(cmd, 0, "", "")
        if rule.exc is not None:
            raise rule.exc
        result = CommandResult(cmd, rule.returncode, rule.stdout, rule.stderr)
        if check and not result.ok:
            raise ExternalToolError(program, result.returncode, result.stderr)
        return result


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def network_config() -> NetworkConfig:
    return NetworkConfig()


@pytest.fixture
def ip_forward_file(tmp_path) -> Path:
    path = tmp_path / "ip_forward"
    path.write_text("1\n")
    return path


@pytest.fixture
def orchestrator(fake_executor, tmp_path, ip_forward_file) -> NetworkOrchestrator:
    return NetworkOrchestrator(fake_executor, rules_file=tmp_path / "rules.v4", ip_forward_file=ip_forward_file)


@pytest.fixture
def dhcp_manager(fake_executor, tmp_path) -> DhcpConfigManager:
    return DhcpConfigManager(
        fake_executor,
        config_file=tmp_path / "dnsmasq.d" / "piwifi.conf",
        lease_file=tmp_path / "dnsmasq.leases",
        static_hosts_file=tmp_path / "dnsmasq.d" / "static_hosts.conf",
    )

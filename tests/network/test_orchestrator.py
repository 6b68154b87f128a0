"""
Unit tests for the NetworkOrchestrator.

Checks the ordering of the base posture plan, the partial-failure contract,
point-rule deduplication and port-forward rollback against a scripted
executor.
"""

import os
import stat
import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from piwifi.errors import PartialApplyError, ValidationError
from piwifi.network.models import FirewallRule, NetworkConfig, Protocol, RuleAction
from piwifi.network.orchestrator import base_posture_plan, masquerade_step, port_forward_rules


def _index(lines, needle):
    return next(i for i, line in enumerate(lines) if needle in line)


# =============================================================================
# Plan construction
# =============================================================================


class TestBasePosturePlan:
    """Test the ordering of the base posture steps."""

    def test_step_ordering(self, network_config):
        """Test the order of the base posture steps."""
        lines = [" ".join((step.program, *step.args)) for step in base_posture_plan(network_config)]

        addr = _index(lines, "ip addr add 192.168.100.1/24 dev eth0")
        forwarding = _index(lines, "sysctl -w net.ipv4.ip_forward=1")
        flush = _index(lines, "iptables -F")
        policy = _index(lines, "iptables -P INPUT DROP")
        first_allow = _index(lines, "iptables -A")

        assert addr < forwarding < flush < policy < first_allow

    def test_flushes_every_table_before_policies(self, network_config):
        """Test that every table is flushed before policies are set."""
        lines = [" ".join((step.program, *step.args)) for step in base_posture_plan(network_config)]
        policy = _index(lines, "-P INPUT")
        for flush in ("iptables -t nat -F", "iptables -t nat -X", "iptables -t mangle -F", "iptables -t mangle -X"):
            assert _index(lines, flush) < policy

    def test_management_ports_allowed(self, network_config):
        """Test that the management ports are opened on the LAN."""
        lines = [" ".join((step.program, *step.args)) for step in base_posture_plan(network_config)]
        for port in (22, 80, 443, 8080):
            assert any(f"-p tcp --dport {port} " in line and "--ctstate NEW" in line for line in lines)

    def test_lan_services_and_forwarding(self, network_config):
        """Test the DNS, ICMP and forwarding rules."""
        lines = [" ".join((step.program, *step.args)) for step in base_posture_plan(network_config)]

        assert any("-p udp --dport 53" in line for line in lines)
        assert any("-p tcp --dport 53" in line for line in lines)
        assert any("--icmp-type echo-request" in line for line in lines)
        assert any("-A FORWARD -i eth0 -o wlan0" in line for line in lines)
        assert any("-A FORWARD -i wlan0 -o eth0" in line and "RELATED,ESTABLISHED" in line for line in lines)

    def test_dhcp_rule_opens_server_port_only(self, network_config):
        """Test that the LAN accepts DHCP requests on the server port and nothing wider."""
        lines = [" ".join((step.program, *step.args)) for step in base_posture_plan(network_config)]

        assert "iptables -A INPUT -i eth0 -p udp --dport 67 -j ACCEPT" in lines
        assert not any("67:68" in line for line in lines)

    def test_firewall_disabled_accepts_everything(self):
        """Test that a disabled firewall leaves ACCEPT policies and no drops."""
        steps = base_posture_plan(NetworkConfig(firewall_enabled=False))
        lines = [" ".join((step.program, *step.args)) for step in steps]

        assert "iptables -P INPUT ACCEPT" in lines
        assert "iptables -P FORWARD ACCEPT" in lines
        assert not any("DROP" in line for line in lines)
        assert not any(line.startswith("iptables -A") for line in lines)

    def test_only_interface_housekeeping_is_best_effort(self, network_config):
        """Test that only the address flush and default route may fail without aborting the plan."""
        best_effort = [step.description for step in base_posture_plan(network_config) if step.best_effort]
        assert best_effort == ["flush eth0 addresses", "add default route"]

    def test_masquerade_on_uplink(self):
        """Test that NAT masquerades on the uplink interface."""
        step = masquerade_step()
        assert step.args == ("-t", "nat", "-A", "POSTROUTING", "-o", "wlan0", "-j", "MASQUERADE")

    def test_port_forward_rules_triple(self):
        """Test the DNAT, forward and return-path rules of a port forward."""
        rules = port_forward_rules(8080, "192.168.100.50", 80, "tcp")

        assert [rule[:2] for rule in rules] == [("nat", "PREROUTING"), ("filter", "FORWARD"), ("filter", "FORWARD")]
        assert "192.168.100.50:80" in rules[0]
        assert "-d" in rules[1]
        assert "-s" in rules[2]


# =============================================================================
# Applying the posture
# =============================================================================


class TestApplyPosture:
    """Test executing the posture plan."""

    @pytest.mark.asyncio
    async def test_all_steps_privileged(self, orchestrator, fake_executor, network_config):
        """Test that every posture command runs privileged."""
        applied = await orchestrator.apply_base_network_posture(network_config)

        assert len(applied) == len(base_posture_plan(network_config))
        assert all(call.privileged for call in fake_executor.calls)

    @pytest.mark.asyncio
    async def test_invalid_config_runs_nothing(self, orchestrator, fake_executor):
        """Test that an invalid config runs no commands."""
        with pytest.raises(ValidationError):
            await orchestrator.apply_base_network_posture(NetworkConfig(lan_netmask="255.0.0.0"))
        assert fake_executor.calls == []

    @pytest.mark.asyncio
    async def test_best_effort_failure_continues(self, orchestrator, fake_executor, network_config):
        """Test that a best-effort step failure does not stop the plan."""
        fake_executor.when("ip addr flush", returncode=1, stderr="Cannot find device")

        applied = await orchestrator.apply_base_network_posture(network_config)

        assert "flush eth0 addresses" not in applied
        assert "enable IPv4 forwarding" in applied

    @pytest.mark.asyncio
    async def test_partial_failure_reports_applied_steps(self, orchestrator, fake_executor, network_config):
        """Test that a failed step reports the steps already applied."""
        fake_executor.when("iptables -P INPUT DROP", returncode=1, stderr="Permission denied")

        with pytest.raises(PartialApplyError) as exc_info:
            await orchestrator.apply_base_network_posture(network_config)

        error = exc_info.value
        assert error.failed_step == "INPUT policy DROP"
        assert "flush filter table" in error.applied
        assert "INPUT policy DROP" not in error.applied
        assert not error.rolled_back
        assert "Permission denied" in str(error)
        # Nothing after the failing step was attempted
        assert fake_executor.commands[-1] == "iptables -P INPUT DROP"

    @pytest.mark.asyncio
    async def test_enable_nat_masquerades_and_saves(self, orchestrator, fake_executor, network_config):
        """Test that enabling NAT adds masquerade and saves the ruleset."""
        fake_executor.when("iptables-save", stdout="*filter\n:INPUT DROP [0:0]\nCOMMIT\n")

        await orchestrator.enable_nat(network_config)

        commands = fake_executor.commands
        assert commands[-2] == "iptables -t nat -A POSTROUTING -o wlan0 -j MASQUERADE"
        assert commands[-1] == "iptables-save"
        assert orchestrator.rules_file.read_text() == "*filter\n:INPUT DROP [0:0]\nCOMMIT\n"
        assert stat.S_IMODE(os.stat(orchestrator.rules_file).st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_save_rules_under_sudo(self, orchestrator, fake_executor):
        """Test that a non-root process saves the ruleset through a privileged install."""
        fake_executor.use_sudo = True
        fake_executor.when("iptables-save", stdout="*filter\nCOMMIT\n")

        await orchestrator.save_rules()

        write = fake_executor.calls[-1]
        assert write.line == f"install -D -m 600 /dev/stdin {orchestrator.rules_file}"
        assert write.privileged
        assert write.input_text == "*filter\nCOMMIT\n"
        assert not orchestrator.rules_file.exists()

    @pytest.mark.asyncio
    async def test_disable_nat(self, orchestrator, fake_executor):
        """Test that disabling NAT leaves no masquerade rule."""
        await orchestrator.disable_nat()
        assert fake_executor.commands == ["iptables -F FORWARD", "iptables -t nat -F POSTROUTING"]


# =============================================================================
# Point rules
# =============================================================================


class TestPointRules:
    """Test allow/block deduplication and validation."""

    @pytest.mark.asyncio
    async def test_allow_appends_when_absent(self, orchestrator, fake_executor):
        """Test that an allow rule is appended when not present."""
        fake_executor.when("iptables -t filter -C", returncode=1)

        added = await orchestrator.allow_port("eth0", "tcp", 8443)

        assert added
        assert fake_executor.commands[-1] == (
            "iptables -t filter -A INPUT -i eth0 -p tcp --dport 8443 -m conntrack --ctstate NEW -j ACCEPT"
        )

    @pytest.mark.asyncio
    async def test_allow_is_idempotent(self, orchestrator, fake_executor):
        """Test that an existing allow rule is not added twice."""
        added = await orchestrator.allow_port("eth0", "tcp", 8443)

        assert not added
        assert fake_executor.commands_starting("iptables -t filter -A") == []

    @pytest.mark.asyncio
    async def test_block_port(self, orchestrator, fake_executor):
        """Test a block rule."""
        fake_executor.when("iptables -t filter -C", returncode=1)

        await orchestrator.block_port("wlan0", "UDP", 1900)

        assert fake_executor.commands[-1] == "iptables -t filter -A INPUT -i wlan0 -p udp --dport 1900 -j DROP"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("protocol,port", [("icmp", 22), ("tcp", 0), ("tcp", 70000)])
    async def test_invalid_rule_runs_nothing(self, orchestrator, fake_executor, protocol, port):
        """Test that an invalid rule runs no commands."""
        with pytest.raises(ValidationError):
            await orchestrator.allow_port("eth0", protocol, port)
        assert fake_executor.calls == []

    @pytest.mark.asyncio
    async def test_rate_limit(self, orchestrator, fake_executor):
        """Test the rate limit rule pair."""
        await orchestrator.enable_rate_limit("wlan0", "tcp", 22)

        assert len(fake_executor.calls) == 2
        assert "--limit 25/minute --limit-burst 100" in fake_executor.commands[0]
        assert fake_executor.commands[1].endswith("--dport 22 -j DROP")

    @pytest.mark.asyncio
    async def test_drop_logging_added_once(self, orchestrator, fake_executor):
        """Test that the drop logging rule is not duplicated."""
        fake_executor.when("iptables -t filter -C INPUT -j LOG", returncode=1, times=1)

        await orchestrator.enable_drop_logging()
        await orchestrator.enable_drop_logging()

        appended = fake_executor.commands_starting("iptables -t filter -A INPUT -j LOG")
        assert len(appended) == 1
        assert "--log-level 7" in appended[0]


class TestPortForward:
    """Test the forward triple and its rollback."""

    @pytest.mark.asyncio
    async def test_installs_three_rules(self, orchestrator, fake_executor):
        """Test that a forward installs its three rules."""
        fake_executor.when("iptables -t", returncode=1)
        fake_executor.when("iptables -t nat -A", returncode=0)
        fake_executor.when("iptables -t filter -A", returncode=0)

        await orchestrator.port_forward(8080, "192.168.100.50", 80)

        appended = [line for line in fake_executor.commands if " -A " in line]
        assert len(appended) == 3
        assert appended[0].startswith("iptables -t nat -A PREROUTING -i wlan0 -p tcp --dport 8080 -j DNAT")

    @pytest.mark.asyncio
    async def test_failure_rolls_back(self, orchestrator, fake_executor):
        """Test that a failed forward removes the rules already added."""
        fake_executor.when("iptables -t", returncode=1)
        fake_executor.when("iptables -t nat -A", returncode=0)
        fake_executor.when("iptables -t filter -A FORWARD -p tcp -d", returncode=0)
        fake_executor.when("iptables -t nat -D", returncode=0)
        fake_executor.when("iptables -t filter -D", returncode=0)

        with pytest.raises(PartialApplyError) as exc_info:
            await orchestrator.port_forward(8080, "192.168.100.50", 80)

        assert exc_info.value.rolled_back
        assert len(exc_info.value.applied) == 2
        deleted = fake_executor.commands_starting("iptables -t filter -D") + fake_executor.commands_starting(
            "iptables -t nat -D"
        )
        assert len(deleted) == 2
        # Reverse order: the FORWARD accept goes before the DNAT redirect
        delete_lines = [line for line in fake_executor.commands if " -D " in line]
        assert delete_lines[0].startswith("iptables -t filter -D FORWARD -p tcp -d 192.168.100.50")
        assert delete_lines[1].startswith("iptables -t nat -D PREROUTING")

    @pytest.mark.asyncio
    async def test_invalid_target_runs_nothing(self, orchestrator, fake_executor):
        """Test that an invalid target runs no commands."""
        with pytest.raises(ValidationError):
            await orchestrator.port_forward(8080, "not-an-ip", 80)
        assert fake_executor.calls == []

    @pytest.mark.asyncio
    async def test_apply_rule_dispatches_forward(self, orchestrator, fake_executor):
        """Test that apply_rule routes forward rules to the port forward path."""
        fake_executor.when("iptables -t", returncode=1)
        fake_executor.when("iptables -t nat -A", returncode=0)
        fake_executor.when("iptables -t filter -A", returncode=0)

        rule = FirewallRule(RuleAction.FORWARD, "wlan0", Protocol.UDP, 5000, "192.168.100.60", 5001)
        await orchestrator.apply_rule(rule)

        assert any("--to-destination 192.168.100.60:5001" in line for line in fake_executor.commands)


# =============================================================================
# Status and persistence
# =============================================================================


class TestStatus:
    """Test ruleset listing and LAN status."""

    @pytest.mark.asyncio
    async def test_show_rules(self, orchestrator, fake_executor):
        """Test listing the live ruleset."""
        fake_executor.when("iptables -L", stdout="Chain INPUT (policy DROP)\n")
        assert await orchestrator.show_rules() == "Chain INPUT (policy DROP)\n"

    @pytest.mark.asyncio
    async def test_restore_rules(self, orchestrator, fake_executor):
        """Test restoring the saved ruleset."""
        await orchestrator.restore_rules()
        assert fake_executor.commands == [f"iptables-restore {orchestrator.rules_file}"]

    @pytest.mark.asyncio
    async def test_lan_status(self, orchestrator, fake_executor):
        """Test the LAN addresses and forwarding flag."""
        fake_executor.when(
            "ip -4 addr show eth0",
            stdout="2: eth0: <UP> mtu 1500\n    inet 192.168.100.1/24 brd 192.168.100.255 scope global eth0\n",
        )

        status = await orchestrator.lan_status()

        assert status.interface == "eth0"
        assert status.addresses == ["192.168.100.1/24"]
        assert status.ip_forwarding

    @pytest.mark.asyncio
    async def test_lan_status_without_forward_file(self, orchestrator, tmp_path):
        """Test that a missing ip_forward file reads as disabled."""
        orchestrator.ip_forward_file = tmp_path / "missing"

        status = await orchestrator.lan_status()

        assert not status.ip_forwarding
        assert status.addresses == []

"""
Interface, firewall and NAT orchestration.

NetworkOrchestrator sequences ip, sysctl and iptables invocations to bring the
router to its base network posture, then layers point rules, port forwards and
masquerading on top. Multi-step changes are expressed as ordered lists of
RuleStep so the sequencing can be inspected and tested without a live system.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

from .. import const
from ..errors import ExternalToolError, PartialApplyError
from ..paths import IP_FORWARD_FILE, IPTABLES_RULES_FILE
from .executor import CommandExecutor
from .models import (
    FirewallRule,
    LanStatus,
    NetworkConfig,
    RuleAction,
    parse_ipv4,
    parse_protocol,
    validate_interface,
    validate_port,
)
from .parsers import parse_inet_addresses

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleStep:
    """One privileged command in an ordered plan.

    Best-effort steps log their failure and let the plan continue.
    """

    description: str
    program: str
    args: Tuple[str, ...]
    best_effort: bool = False


def _ipt(description: str, *args: str) -> RuleStep:
    return RuleStep(description, "iptables", tuple(args))


def base_posture_plan(config: NetworkConfig) -> List[RuleStep]:
    """Build the ordered steps that reset the router to its default posture.

    Interfaces come first, then forwarding, then a full flush of the ruleset,
    then default-deny policies, and only after that the allow rules. With the
    firewall disabled the policies are ACCEPT and no allow rules are added.
    """
    lan = const.LAN_INTERFACE
    uplink = const.UPLINK_INTERFACE
    steps = [
        RuleStep(f"flush {lan} addresses", "ip", ("addr", "flush", "dev", lan), best_effort=True),
        RuleStep(
            f"assign {config.lan_ip}/{config.lan_prefix} to {lan}",
            "ip",
            ("addr", "add", f"{config.lan_ip}/{config.lan_prefix}", "dev", lan),
        ),
        RuleStep(f"bring {lan} up", "ip", ("link", "set", lan, "up")),
        RuleStep("add default route", "ip", ("route", "add", "default", "via", config.lan_ip), best_effort=True),
        RuleStep("enable IPv4 forwarding", "sysctl", ("-w", "net.ipv4.ip_forward=1")),
        _ipt("flush filter table", "-F"),
        _ipt("delete filter chains", "-X"),
        _ipt("flush nat table", "-t", "nat", "-F"),
        _ipt("delete nat chains", "-t", "nat", "-X"),
        _ipt("flush mangle table", "-t", "mangle", "-F"),
        _ipt("delete mangle chains", "-t", "mangle", "-X"),
    ]

    if not config.firewall_enabled:
        steps += [
            _ipt("INPUT policy ACCEPT", "-P", "INPUT", "ACCEPT"),
            _ipt("OUTPUT policy ACCEPT", "-P", "OUTPUT", "ACCEPT"),
            _ipt("FORWARD policy ACCEPT", "-P", "FORWARD", "ACCEPT"),
        ]
        return steps

    steps += [
        _ipt("INPUT policy DROP", "-P", "INPUT", "DROP"),
        _ipt("OUTPUT policy ACCEPT", "-P", "OUTPUT", "ACCEPT"),
        _ipt("FORWARD policy DROP", "-P", "FORWARD", "DROP"),
        _ipt("accept loopback", "-A", "INPUT", "-i", "lo", "-j", "ACCEPT"),
        _ipt(
            "accept established inbound",
            "-A", "INPUT", "-m", "conntrack", "--ctstate", "ESTABLISHED,RELATED", "-j", "ACCEPT",
        ),
    ]
    for port in const.MANAGEMENT_PORTS:
        steps.append(
            _ipt(
                f"allow management tcp/{port} on {lan}",
                "-A", "INPUT", "-i", lan, "-p", "tcp", "--dport", str(port),
                "-m", "conntrack", "--ctstate", "NEW", "-j", "ACCEPT",
            )
        )
    steps += [
        _ipt(
            f"allow DHCP on {lan}",
            "-A", "INPUT", "-i", lan, "-p", "udp", "--dport", const.DHCP_SERVER_PORT, "-j", "ACCEPT",
        ),
        _ipt(
            f"allow DNS udp on {lan}",
            "-A", "INPUT", "-i", lan, "-p", "udp", "--dport", str(const.DNS_PORT), "-j", "ACCEPT",
        ),
        _ipt(
            f"allow DNS tcp on {lan}",
            "-A", "INPUT", "-i", lan, "-p", "tcp", "--dport", str(const.DNS_PORT), "-j", "ACCEPT",
        ),
        _ipt("allow ICMP echo", "-A", "INPUT", "-p", "icmp", "--icmp-type", "echo-request", "-j", "ACCEPT"),
        _ipt(
            f"forward {lan} to {uplink}",
            "-A", "FORWARD", "-i", lan, "-o", uplink,
            "-m", "conntrack", "--ctstate", "NEW,RELATED,ESTABLISHED", "-j", "ACCEPT",
        ),
        _ipt(
            f"forward {uplink} replies to {lan}",
            "-A", "FORWARD", "-i", uplink, "-o", lan,
            "-m", "conntrack", "--ctstate", "RELATED,ESTABLISHED", "-j", "ACCEPT",
        ),
    ]
    return steps


def masquerade_step() -> RuleStep:
    return _ipt(
        f"masquerade via {const.UPLINK_INTERFACE}",
        "-t", "nat", "-A", "POSTROUTING", "-o", const.UPLINK_INTERFACE, "-j", "MASQUERADE",
    )


def port_forward_rules(
    external_port: int, internal_ip: str, internal_port: int, protocol: str
) -> List[Tuple[str, ...]]:
    """The three coupled rule specs of a port forward, without the -A/-D verb.

    Each entry is ``(table, chain, *match)``.
    """
    return [
        (
            "nat", "PREROUTING", "-i", const.UPLINK_INTERFACE, "-p", protocol, "--dport", str(external_port),
            "-j", "DNAT", "--to-destination", f"{internal_ip}:{internal_port}",
        ),
        (
            "filter", "FORWARD", "-p", protocol, "-d", internal_ip, "--dport", str(internal_port),
            "-m", "conntrack", "--ctstate", "NEW,RELATED,ESTABLISHED", "-j", "ACCEPT",
        ),
        (
            "filter", "FORWARD", "-p", protocol, "-s", internal_ip, "--sport", str(internal_port),
            "-m", "conntrack", "--ctstate", "RELATED,ESTABLISHED", "-j", "ACCEPT",
        ),
    ]


class NetworkOrchestrator:
    """Drives the LAN interface, packet filter and NAT to a target posture."""

    def __init__(
        self,
        executor: CommandExecutor,
        rules_file: Path = IPTABLES_RULES_FILE,
        ip_forward_file: Path = IP_FORWARD_FILE,
    ):
        self.executor = executor
        self.rules_file = rules_file
        self.ip_forward_file = ip_forward_file

    async def _run_plan(self, steps: Sequence[RuleStep]) -> List[str]:
        applied: List[str] = []
        for step in steps:
            try:
                await self.executor.run(step.program, step.args, privileged=True)
            except ExternalToolError as e:
                if step.best_effort:
                    logger.debug(f"Ignoring failure of best-effort step '{step.description}': {e}")
                    continue
                logger.error(f"Network plan stopped at '{step.description}' after {len(applied)} step(s): {e}")
                raise PartialApplyError(applied, step.description, e) from e
            applied.append(step.description)
        return applied

    async def apply_base_network_posture(self, config: NetworkConfig) -> List[str]:
        """Reset interfaces and firewall to the defaults for ``config``.

        Raises:
            ValidationError: config is invalid; nothing is executed
            PartialApplyError: a step failed; earlier steps stay applied
        """
        config.validate()
        logger.info(f"Applying base network posture ({config.lan_ip}/{config.lan_prefix})")
        applied = await self._run_plan(base_posture_plan(config))
        logger.info(f"Base network posture applied ({len(applied)} steps)")
        return applied

    async def enable_nat(self, config: NetworkConfig) -> None:
        """Base posture plus masquerading on the uplink, then persist the ruleset."""
        config.validate()
        logger.info("Enabling NAT")
        await self._run_plan(base_posture_plan(config) + [masquerade_step()])
        await self.save_rules()
        logger.info(f"NAT enabled via {const.UPLINK_INTERFACE}")

    async def disable_nat(self) -> None:
        logger.info("Disabling NAT")
        await self._run_plan(
            [
                _ipt("flush FORWARD", "-F", "FORWARD"),
                _ipt("flush nat POSTROUTING", "-t", "nat", "-F", "POSTROUTING"),
            ]
        )

    # =========================================================================
    # Point rules
    # =========================================================================

    async def _rule_exists(self, table: str, chain: str, match: Sequence[str]) -> bool:
        result = await self.executor.run("iptables", ["-t", table, "-C", chain, *match], privileged=True, check=False)
        return result.ok

    async def _ensure_rule(self, table: str, chain: str, match: Sequence[str]) -> bool:
        """Append a rule unless an identical one exists. Returns True if appended."""
        if await self._rule_exists(table, chain, match):
            logger.debug(f"Rule already present in {table}/{chain}: {' '.join(match)}")
            return False
        await self.executor.run("iptables", ["-t", table, "-A", chain, *match], privileged=True)
        return True

    @staticmethod
    def _check_point_args(interface: str, protocol: str, port: int) -> str:
        validate_interface(interface)
        validate_port(port)
        return parse_protocol(protocol).value

    async def allow_port(self, interface: str, protocol: str, port: int) -> bool:
        protocol = self._check_point_args(interface, protocol, port)
        match = ["-i", interface, "-p", protocol, "--dport", str(port)]
        match += ["-m", "conntrack", "--ctstate", "NEW", "-j", "ACCEPT"]
        added = await self._ensure_rule("filter", "INPUT", match)
        logger.info(f"Allowed {protocol}/{port} on {interface}" + ("" if added else " (already present)"))
        return added

    async def block_port(self, interface: str, protocol: str, port: int) -> bool:
        protocol = self._check_point_args(interface, protocol, port)
        match = ["-i", interface, "-p", protocol, "--dport", str(port), "-j", "DROP"]
        added = await self._ensure_rule("filter", "INPUT", match)
        logger.info(f"Blocked {protocol}/{port} on {interface}" + ("" if added else " (already present)"))
        return added

    async def port_forward(
        self, external_port: int, internal_ip: str, internal_port: int, protocol: str = "tcp"
    ) -> None:
        """Install redirect, forward-accept and return-path rules as one unit.

        If the second or third rule fails, the rules appended by this call are
        deleted again in reverse order before PartialApplyError is raised.
        """
        validate_port(external_port, "external port")
        validate_port(internal_port, "internal port")
        parse_ipv4(internal_ip, "forward target")
        protocol = parse_protocol(protocol).value

        appended: List[Tuple[str, ...]] = []
        applied: List[str] = []
        for table, chain, *match in port_forward_rules(external_port, internal_ip, internal_port, protocol):
            description = f"{table}/{chain} {' '.join(match)}"
            try:
                if await self._ensure_rule(table, chain, match):
                    appended.append((table, chain, *match))
            except ExternalToolError as e:
                rolled_back = await self._rollback(appended)
                logger.error(f"Port forward {external_port} -> {internal_ip}:{internal_port} failed at {chain}: {e}")
                raise PartialApplyError(applied, description, e, rolled_back=rolled_back) from e
            applied.append(description)

        logger.info(f"Forwarding {protocol}/{external_port} to {internal_ip}:{internal_port}")

    async def _rollback(self, appended: List[Tuple[str, ...]]) -> bool:
        clean = True
        for table, chain, *match in reversed(appended):
            try:
                await self.executor.run("iptables", ["-t", table, "-D", chain, *match], privileged=True)
            except ExternalToolError as e:
                logger.error(f"Rollback of {table}/{chain} rule failed: {e}")
                clean = False
        return clean

    async def apply_rule(self, rule: FirewallRule) -> None:
        rule.validate()
        if rule.action == RuleAction.ALLOW:
            await self.allow_port(rule.interface, rule.protocol.value, rule.port)
        elif rule.action == RuleAction.BLOCK:
            await self.block_port(rule.interface, rule.protocol.value, rule.port)
        else:
            await self.port_forward(rule.port, rule.target_ip, rule.target_port, rule.protocol.value)

    async def enable_rate_limit(self, interface: str, protocol: str, port: int) -> None:
        """Accept at most 25 new connections a minute on a port, drop the rest."""
        protocol = self._check_point_args(interface, protocol, port)
        base = ["-i", interface, "-p", protocol, "--dport", str(port)]
        await self._run_plan(
            [
                _ipt(
                    f"rate limit {protocol}/{port}",
                    "-A", "INPUT", *base, "-m", "limit", "--limit", const.RATE_LIMIT,
                    "--limit-burst", str(const.RATE_LIMIT_BURST), "-j", "ACCEPT",
                ),
                _ipt(f"drop excess {protocol}/{port}", "-A", "INPUT", *base, "-j", "DROP"),
            ]
        )
        logger.info(f"Rate limiting {protocol}/{port} on {interface}")

    async def enable_drop_logging(self) -> None:
        await self._ensure_rule(
            "filter", "INPUT", ["-j", "LOG", "--log-prefix", const.DROP_LOG_PREFIX, "--log-level", "7"]
        )

    # =========================================================================
    # Ruleset persistence and status
    # =========================================================================

    async def show_rules(self) -> str:
        result = await self.executor.run("iptables", ["-L", "-n", "-v"], privileged=True)
        return result.stdout

    async def save_rules(self) -> None:
        """Dump the live ruleset to the rules file for boot-time restore."""
        dump = await self.executor.run("iptables-save", [], privileged=True)
        await self.executor.write_file(self.rules_file, dump.stdout, mode=0o600)
        logger.info(f"Firewall rules saved to {self.rules_file}")

    async def restore_rules(self) -> None:
        await self.executor.run("iptables-restore", [str(self.rules_file)], privileged=True)
        logger.info(f"Firewall rules restored from {self.rules_file}")

    async def lan_status(self) -> LanStatus:
        result = await self.executor.run("ip", ["-4", "addr", "show", const.LAN_INTERFACE], check=False)
        try:
            forwarding = self.ip_forward_file.read_text().strip() == "1"
        except OSError as e:
            logger.warning(f"Failed to read {self.ip_forward_file}: {e}")
            forwarding = False
        return LanStatus(
            interface=const.LAN_INTERFACE,
            addresses=parse_inet_addresses(result.stdout),
            ip_forwarding=forwarding,
        )

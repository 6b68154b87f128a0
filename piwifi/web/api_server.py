"""
FastAPI web API server for the PiWifi router.

Thin HTTP layer over RouterServices: request/response models, error mapping
and an optional bearer token on routes that change router state. The
connectivity monitor is started and stopped with the application.
"""

import asyncio
import logging
import os
import secrets
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..const import API_TOKEN_ENV, DEFAULT_FAVORITES_LIMIT, DEFAULT_WEB_HOST, DEFAULT_WEB_PORT, LOG_LINES_DEFAULT
from ..core.devices import Device
from ..core.system_status import get_system_status
from ..errors import (
    CommandTimeoutError,
    ConfigIOError,
    ExternalToolError,
    NotFoundError,
    PartialApplyError,
    ValidationError,
)
from ..network.models import DhcpConfig, FirewallRule, NetworkConfig, Protocol, RuleAction
from ..network.wol import send_magic_packet
from ..router import RouterServices

logger = logging.getLogger(__name__)


# =============================================================================
# Request / response models
# =============================================================================


class WifiConnectRequest(BaseModel):
    """Request model for joining a WiFi network."""

    ssid: str = Field(..., description="WiFi network SSID")
    password: str = Field("", description="WiFi passphrase (empty for open networks)")


class WifiNetworkResponse(BaseModel):
    ssid: str = Field(..., description="Network SSID")
    signal: int = Field(..., description="Signal strength in dBm")
    security: str = Field(..., description="Security label reported by the driver")
    bssid: Optional[str] = Field(None, description="Strongest access point BSSID")
    active: bool = Field(False, description="Whether the uplink is associated with this network")


class WifiStatusResponse(BaseModel):
    connected: bool = Field(..., description="Whether the uplink is associated")
    ssid: Optional[str] = Field(None, description="Connected network SSID")
    ip: Optional[str] = Field(None, description="Uplink IP address")
    signal: Optional[int] = Field(None, description="Signal strength in dBm")
    monitor_state: str = Field(..., description="Connectivity monitor state")
    reconnect_ssid: Optional[str] = Field(None, description="Network the monitor reconnects to")


class HistoryEntryResponse(BaseModel):
    ssid: str
    timestamp: datetime
    success: bool
    duration_seconds: Optional[int] = Field(None, description="Observed session length")
    disconnection_reason: Optional[str] = None


class FavoriteResponse(BaseModel):
    ssid: str
    count: int = Field(..., description="Number of successful connections")
    success_rate: Optional[float] = Field(None, description="Successful attempts in percent")


class NetworkConfigModel(BaseModel):
    """LAN, NAT and DNS configuration."""

    lan_ip: str = Field("192.168.100.1", description="LAN interface address")
    lan_netmask: str = Field("255.255.255.0", description="LAN netmask")
    lan_prefix: int = Field(24, description="LAN prefix length")
    dhcp_start: str = Field("192.168.100.50", description="First address of the DHCP pool")
    dhcp_end: str = Field("192.168.100.200", description="Last address of the DHCP pool")
    dns_upstream: List[str] = Field(["8.8.8.8", "8.8.4.4"], description="Upstream DNS resolvers")
    dns_domain: str = Field("piwifi.local", description="Local DNS domain")
    nat_enabled: bool = Field(True, description="Masquerade LAN traffic through the uplink")
    firewall_enabled: bool = Field(True, description="Default-deny firewall posture")
    dhcp_vendor_class: Optional[str] = Field("PiWifi-EdgeRouter", description="DHCP option 60")
    dhcp_client_id: Optional[str] = Field(None, description="DHCP option 61")
    vendor_name: str = Field("PiWifi", description="Vendor name")

    def to_config(self) -> NetworkConfig:
        return NetworkConfig.from_dict(self.dict())

    @classmethod
    def from_config(cls, config: NetworkConfig) -> "NetworkConfigModel":
        return cls(**config.to_dict())


class NetworkStatusResponse(BaseModel):
    interface: str = Field(..., description="LAN interface name")
    addresses: List[str] = Field(..., description="LAN IPv4 addresses in CIDR form")
    ip_forwarding: bool = Field(..., description="Kernel IPv4 forwarding flag")
    config: NetworkConfigModel


class FirewallRuleRequest(BaseModel):
    action: RuleAction = Field(..., description="allow, block or forward")
    interface: str = Field(..., description="Interface the rule applies to")
    protocol: Protocol = Field(..., description="tcp or udp")
    port: int = Field(..., description="Destination (or external, for forward) port")
    target_ip: Optional[str] = Field(None, description="Forward target address")
    target_port: Optional[int] = Field(None, description="Forward target port")


class RateLimitRequest(BaseModel):
    interface: str = Field(..., description="Interface the limit applies to")
    protocol: Protocol = Field(..., description="tcp or udp")
    port: int = Field(..., description="Destination port")


class DhcpConfigModel(BaseModel):
    dhcp_start: str = Field(..., description="First address of the pool")
    dhcp_end: str = Field(..., description="Last address of the pool")
    lease_time: int = Field(..., description="Lease duration in seconds")
    dns_servers: List[str] = Field(..., description="Upstream DNS servers, in order")
    local_domain: str = Field(..., description="Local DNS domain")

    def to_config(self) -> DhcpConfig:
        return DhcpConfig(
            dhcp_start=self.dhcp_start,
            dhcp_end=self.dhcp_end,
            lease_time=self.lease_time,
            dns_servers=tuple(self.dns_servers),
            local_domain=self.local_domain,
        )


class DhcpStatusResponse(BaseModel):
    enabled: bool
    config: Optional[DhcpConfigModel] = None
    active_leases: int


class StaticLeaseRequest(BaseModel):
    mac: str = Field(..., description="Device MAC address")
    ip: str = Field(..., description="Address to pin")
    hostname: str = Field(..., description="Hostname handed out with the lease")


class AliasRequest(BaseModel):
    alias: str = Field(..., description="Friendly device name")


class DeviceResponse(BaseModel):
    mac: str
    ip: Optional[str] = None
    hostname: Optional[str] = None
    name: str = Field(..., description="Friendly name for display")
    alias: Optional[str] = None
    vendor: Optional[str] = None
    is_static: bool = False
    first_seen: datetime
    last_seen: datetime

    @classmethod
    def from_device(cls, device: Device) -> "DeviceResponse":
        return cls(
            mac=device.mac,
            ip=device.ip,
            name=device.display_name,
            hostname=device.hostname,
            alias=device.alias,
            vendor=device.vendor,
            is_static=bool(device.is_static),
            first_seen=device.first_seen,
            last_seen=device.last_seen,
        )


class ClientResponse(BaseModel):
    mac: str
    ip: str
    hostname: Optional[str] = None
    expires: int = Field(..., description="Lease expiry (epoch seconds, 0 for infinite)")


class BandwidthResponse(BaseModel):
    ip: str
    mac: Optional[str] = None
    name: str = Field(..., description="Device alias, hostname or address")
    bytes_sent: int
    bytes_recv: int
    total_bytes: int


class LogEntryResponse(BaseModel):
    timestamp: str
    level: str = Field(..., description="error, warn, info or debug")
    message: str


class SystemStatusResponse(BaseModel):
    uptime: str
    cpu_temperature: Optional[float] = Field(None, description="CPU temperature in Celsius")
    cpu_percent: float
    memory_percent: float
    disk_percent: float


# =============================================================================
# Dependencies
# =============================================================================


def get_services(request: Request) -> RouterServices:
    return request.app.state.services


def require_token(request: Request, authorization: Optional[str] = Header(None)) -> None:
    """Reject the request unless it carries the configured bearer token."""
    expected = request.app.state.api_token
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), expected):
        raise HTTPException(status_code=401, detail="Unauthorized", headers={"WWW-Authenticate": "Bearer"})


# =============================================================================
# Application factory
# =============================================================================


def _error_response(request: Request, status_code: int, exc: Exception, **extra: Any) -> JSONResponse:
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc), **extra})


def create_app(services: RouterServices, api_token: Optional[str] = None) -> FastAPI:
    """Build the API application around an already constructed RouterServices.

    Args:
        services: Shared router state and managers
        api_token: Bearer token for state-changing routes; defaults to $PIWIFI_API_TOKEN
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.start()
        logger.info("PiWifi API started")
        try:
            yield
        finally:
            await services.stop()
            logger.info("PiWifi API stopped")

    app = FastAPI(
        title="PiWifi Router",
        description="Control interface for the PiWifi WiFi-to-Ethernet router",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.api_token = api_token if api_token is not None else os.environ.get(API_TOKEN_ENV)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error_response(request, 400, exc)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error_response(request, 404, exc)

    @app.exception_handler(CommandTimeoutError)
    async def timeout_handler(request: Request, exc: CommandTimeoutError):
        return _error_response(request, 504, exc)

    @app.exception_handler(PartialApplyError)
    async def partial_apply_handler(request: Request, exc: PartialApplyError):
        return _error_response(
            request, 500, exc, applied=exc.applied, failed_step=exc.failed_step, rolled_back=exc.rolled_back
        )

    @app.exception_handler(ExternalToolError)
    async def tool_error_handler(request: Request, exc: ExternalToolError):
        return _error_response(request, 500, exc)

    @app.exception_handler(ConfigIOError)
    async def config_io_handler(request: Request, exc: ConfigIOError):
        return _error_response(request, 500, exc)

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    auth = [Depends(require_token)]

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "version": __version__}

    # WiFi ------------------------------------------------------------------

    @app.get("/api/wifi/scan", response_model=List[WifiNetworkResponse])
    async def scan_wifi(services: RouterServices = Depends(get_services)):
        """Scan for available WiFi networks."""
        networks = await services.wifi.scan()
        return [WifiNetworkResponse(**asdict(network)) for network in networks]

    @app.get("/api/wifi/status", response_model=WifiStatusResponse)
    async def wifi_status(services: RouterServices = Depends(get_services)):
        status = await services.wifi.status()
        return WifiStatusResponse(
            connected=status.connected,
            ssid=status.ssid,
            ip=status.ip,
            signal=status.signal,
            monitor_state=services.monitor.state.value,
            reconnect_ssid=services.credentials.ssid,
        )

    @app.post("/api/wifi/connect", dependencies=auth)
    async def connect_wifi(request: WifiConnectRequest, services: RouterServices = Depends(get_services)):
        """Join a WiFi network and keep it for automatic reconnection."""
        await services.connect_wifi(request.ssid, request.password)
        return {"status": "connected", "ssid": request.ssid}

    @app.post("/api/wifi/disconnect", dependencies=auth)
    async def disconnect_wifi(services: RouterServices = Depends(get_services)):
        await services.disconnect_wifi()
        return {"status": "disconnected"}

    @app.get("/api/wifi/history", response_model=List[HistoryEntryResponse])
    async def wifi_history(ssid: Optional[str] = None, services: RouterServices = Depends(get_services)):
        entries = services.history.by_ssid(ssid) if ssid else services.history.all()
        return [HistoryEntryResponse(**asdict(entry)) for entry in entries]

    @app.get("/api/wifi/favorites", response_model=List[FavoriteResponse])
    async def wifi_favorites(
        limit: int = Query(DEFAULT_FAVORITES_LIMIT, ge=1, le=100),
        services: RouterServices = Depends(get_services),
    ):
        return [
            FavoriteResponse(ssid=ssid, count=count, success_rate=services.history.success_rate(ssid))
            for ssid, count in services.history.favorites(limit)
        ]

    @app.post("/api/wifi/history/clear", dependencies=auth)
    async def clear_history(services: RouterServices = Depends(get_services)):
        services.history.clear()
        return {"status": "cleared"}

    # Network ---------------------------------------------------------------

    @app.get("/api/network/status", response_model=NetworkStatusResponse)
    async def network_status(services: RouterServices = Depends(get_services)):
        lan = await services.orchestrator.lan_status()
        return NetworkStatusResponse(
            interface=lan.interface,
            addresses=lan.addresses,
            ip_forwarding=lan.ip_forwarding,
            config=NetworkConfigModel.from_config(services.network_config),
        )

    @app.post("/api/network/configure", dependencies=auth)
    async def configure_network(request: NetworkConfigModel, services: RouterServices = Depends(get_services)):
        """Replace the network configuration and re-apply the router posture."""
        await services.apply_network_config(request.to_config())
        return {"status": "configured"}

    @app.get("/api/network/clients", response_model=List[ClientResponse])
    async def network_clients(services: RouterServices = Depends(get_services)):
        return [
            ClientResponse(mac=lease.mac, ip=lease.ip, hostname=lease.hostname, expires=lease.expires)
            for lease in services.clients()
        ]

    @app.get("/api/network/bandwidth", response_model=List[BandwidthResponse])
    async def network_bandwidth(services: RouterServices = Depends(get_services)):
        """Per-device traffic totals from connection tracking, busiest first."""
        return [
            BandwidthResponse(
                ip=stat.ip,
                mac=stat.mac,
                name=stat.name,
                bytes_sent=stat.bytes_sent,
                bytes_recv=stat.bytes_recv,
                total_bytes=stat.total_bytes,
            )
            for stat in await services.bandwidth()
        ]

    @app.post("/api/network/wake/{mac}", dependencies=auth)
    async def wake_device(mac: str):
        try:
            await asyncio.to_thread(send_magic_packet, mac)
        except OSError as e:
            logger.error(f"Failed to send Wake-on-LAN packet: {e}")
            raise HTTPException(status_code=500, detail=str(e)) from e
        return {"status": "sent", "mac": mac}

    # Firewall --------------------------------------------------------------

    @app.get("/api/firewall/rules")
    async def firewall_rules(services: RouterServices = Depends(get_services)):
        return {"rules": await services.orchestrator.show_rules()}

    @app.post("/api/firewall/apply", dependencies=auth)
    async def apply_firewall_rule(request: FirewallRuleRequest, services: RouterServices = Depends(get_services)):
        rule = FirewallRule(
            action=request.action,
            interface=request.interface,
            protocol=request.protocol,
            port=request.port,
            target_ip=request.target_ip,
            target_port=request.target_port,
        )
        await services.apply_firewall_rule(rule)
        return {"status": "applied", "action": rule.action.value}

    @app.post("/api/firewall/rate-limit", dependencies=auth)
    async def rate_limit_port(request: RateLimitRequest, services: RouterServices = Depends(get_services)):
        await services.orchestrator.enable_rate_limit(request.interface, request.protocol.value, request.port)
        return {"status": "applied"}

    @app.post("/api/firewall/logging", dependencies=auth)
    async def enable_drop_logging(services: RouterServices = Depends(get_services)):
        await services.orchestrator.enable_drop_logging()
        return {"status": "enabled"}

    @app.post("/api/firewall/save", dependencies=auth)
    async def save_firewall_rules(services: RouterServices = Depends(get_services)):
        await services.orchestrator.save_rules()
        return {"status": "saved"}

    # DHCP ------------------------------------------------------------------

    @app.get("/api/dhcp/config", response_model=DhcpStatusResponse)
    async def get_dhcp_config(services: RouterServices = Depends(get_services)):
        status = services.dhcp.read()
        config = DhcpConfigModel(**status.config.to_dict()) if status.config else None
        return DhcpStatusResponse(enabled=status.enabled, config=config, active_leases=status.active_leases)

    @app.post("/api/dhcp/config", dependencies=auth)
    async def set_dhcp_config(request: DhcpConfigModel, services: RouterServices = Depends(get_services)):
        await services.set_dhcp_config(request.to_config())
        return {"status": "updated"}

    @app.post("/api/dhcp/restart", dependencies=auth)
    async def restart_dhcp(services: RouterServices = Depends(get_services)):
        await services.dhcp.restart()
        return {"status": "restarted"}

    @app.post("/api/dhcp/static", dependencies=auth, response_model=DeviceResponse)
    async def set_static_lease(request: StaticLeaseRequest, services: RouterServices = Depends(get_services)):
        device = await services.set_static_lease(request.mac, request.ip, request.hostname)
        return DeviceResponse.from_device(device)

    # Devices ---------------------------------------------------------------

    @app.get("/api/devices", response_model=List[DeviceResponse])
    async def list_devices(services: RouterServices = Depends(get_services)):
        return [DeviceResponse.from_device(device) for device in await services.refresh_devices()]

    @app.post("/api/devices/{mac}/alias", dependencies=auth, response_model=DeviceResponse)
    async def set_device_alias(mac: str, request: AliasRequest, services: RouterServices = Depends(get_services)):
        return DeviceResponse.from_device(services.devices.set_alias(mac, request.alias))

    # System and diagnostics -------------------------------------------------

    @app.get("/api/system/status", response_model=SystemStatusResponse)
    def system_status():
        return SystemStatusResponse(**asdict(get_system_status()))

    @app.get("/api/system/logs", response_model=List[LogEntryResponse])
    async def system_logs(
        lines: int = Query(LOG_LINES_DEFAULT, description="Number of journal lines, clamped to 1-500"),
        filter_text: Optional[str] = Query(None, alias="filter", description="Case-insensitive substring filter"),
        services: RouterServices = Depends(get_services),
    ):
        return [asdict(entry) for entry in await services.diagnostics.system_logs(lines, filter_text)]

    @app.get("/api/system/logs/dnsmasq", response_model=List[LogEntryResponse])
    def dnsmasq_logs(
        lines: int = Query(LOG_LINES_DEFAULT, description="Number of log lines, clamped to 1-500"),
        filter_text: Optional[str] = Query(None, alias="filter", description="Case-insensitive substring filter"),
        services: RouterServices = Depends(get_services),
    ):
        return [asdict(entry) for entry in services.diagnostics.dnsmasq_logs(lines, filter_text)]

    @app.post("/api/system/diagnostics/ping/{host}")
    async def diagnostic_ping(host: str, services: RouterServices = Depends(get_services)):
        return asdict(await services.diagnostics.ping(host))

    @app.post("/api/system/diagnostics/dns/{domain}")
    async def diagnostic_dns(domain: str, services: RouterServices = Depends(get_services)):
        result = await services.diagnostics.dns_lookup(domain)
        return {**asdict(result), "resolved": result.resolved}

    @app.post("/api/system/diagnostics/route/{host}")
    async def diagnostic_route(host: str, services: RouterServices = Depends(get_services)):
        return asdict(await services.diagnostics.traceroute(host))

    @app.get("/api/system/diagnostics/interfaces")
    async def diagnostic_interfaces(services: RouterServices = Depends(get_services)):
        return [asdict(interface) for interface in await services.diagnostics.interfaces()]

    @app.post("/api/speedtest/run")
    async def run_speed_test(services: RouterServices = Depends(get_services)):
        return asdict(await services.diagnostics.speed_test())

    # Backup ------------------------------------------------------------------

    @app.post("/api/config/backup", dependencies=auth)
    async def backup_config(services: RouterServices = Depends(get_services)):
        return services.backup()

    @app.post("/api/config/restore", dependencies=auth)
    async def restore_config(backup: Dict[str, Any], services: RouterServices = Depends(get_services)):
        await services.restore(backup)
        return {"status": "restored"}


def run_server(host: str = DEFAULT_WEB_HOST, port: int = DEFAULT_WEB_PORT, services: Optional[RouterServices] = None):
    """Run the API server until interrupted."""
    app = create_app(services or RouterServices())
    uvicorn.run(app, host=host, port=port, log_level="info", access_log=False)

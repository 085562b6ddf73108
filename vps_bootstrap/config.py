from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class Config:
    """Configuration for the VPS bootstrap process."""

    LOG_FILE: str = "/var/log/vps_bootstrap.log"

    # Swap
    SWAPFILE: str = "/swapfile"
    FSTAB: str = "/etc/fstab"
    MIN_SAFE_FREE_RAM_MB: int = 200
    EMERGENCY_SWAP_MB: int = 512
    EMERGENCY_SWAPFILE: str = "/swapfile.emergency"
    LOCK_FILE: str = "/run/vps-bootstrap-swap.lock"

    # System setup
    DEFAULT_TIMEZONE: str = "Asia/Shanghai"
    ZONEINFO_DIR: str = "/usr/share/zoneinfo"
    BASE_PACKAGES: List[str] = field(
        default_factory=lambda: [
            "curl",
            "wget",
            "nano",
            "htop",
            "vnstat",
            "git",
            "unzip",
            "screen",
        ]
    )
    NETWORK_PACKAGES: List[str] = field(
        default_factory=lambda: [
            "speedtest-cli",
            "traceroute",
            "ethtool",
            "net-tools",
            "dnsutils",
            "iptables-persistent",
        ]
    )

    SYSCTL_DROPIN: str = "/etc/sysctl.d/99-vps-bootstrap.conf"
    SYSCTL_SETTINGS: Dict[str, str] = field(
        default_factory=lambda: {
            "net.core.default_qdisc": "fq_codel",
            "net.ipv4.tcp_congestion_control": "bbr",
            "net.ipv4.tcp_fastopen": "3",
            "net.ipv4.tcp_slow_start_after_idle": "0",
            "net.ipv4.tcp_fin_timeout": "15",
            "net.ipv4.tcp_tw_reuse": "1",
            "net.ipv4.tcp_keepalive_time": "600",
            "net.ipv4.tcp_keepalive_intvl": "30",
            "net.ipv4.tcp_keepalive_probes": "5",
            "net.ipv4.tcp_mtu_probing": "2",
            "net.core.rmem_max": "8388608",
            "net.core.wmem_max": "8388608",
            "net.ipv4.tcp_rmem": "4096 87380 8388608",
            "net.ipv4.tcp_wmem": "4096 65536 8388608",
            "net.core.rmem_default": "262144",
            "net.core.wmem_default": "262144",
            "net.ipv4.udp_rmem_min": "32768",
            "net.ipv4.udp_wmem_min": "32768",
            "net.core.somaxconn": "4096",
            "net.core.netdev_max_backlog": "16384",
            "net.ipv4.tcp_max_syn_backlog": "8192",
            "net.ipv4.ip_local_port_range": "10240 65535",
            "net.ipv4.tcp_syncookies": "1",
            "fs.file-max": "1000000",
        }
    )

    JOURNALD_DROPIN: str = "/etc/systemd/journald.conf.d/99-vps-bootstrap.conf"
    JOURNALD_SETTINGS: Dict[str, str] = field(
        default_factory=lambda: {
            "Storage": "persistent",
            "Compress": "yes",
            "RateLimitIntervalSec": "30s",
            "RateLimitBurst": "5000",
            "SystemMaxUse": "150M",
            "SystemKeepFree": "50M",
            "SystemMaxFileSize": "10M",
            "RuntimeMaxUse": "30M",
            "RuntimeMaxFileSize": "5M",
            "MaxRetentionSec": "1month",
            "MaxFileSec": "1week",
            "ForwardToSyslog": "no",
            "ForwardToWall": "no",
        }
    )
    JOURNAL_VACUUM_SIZE: str = "50M"
    JOURNAL_VACUUM_TIME: str = "7days"

    @property
    def temp_swapfile(self) -> str:
        """Path the replacement swap file is built at before being moved into place."""
        return f"{self.SWAPFILE}.new"

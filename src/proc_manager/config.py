"""Configuration system for proc-manager."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

from proc_manager.baseline import DEFAULT_CPU_COUNT, DEFAULT_TICKS_PER_SECOND

DEFAULT_PS_COMMAND = ["ps", "-axo", "user=,pid=,comm=,state=,rss=,vsz=,pcpu=,pmem="]


@dataclass
class ServerConfig:
    """HTTP API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    request_max_bytes: int = 8192  # Max bytes for request head and body
    request_timeout: float = 5.0  # Seconds to wait for a complete request


@dataclass
class CollectorConfig:
    """Process snapshot collection configuration.

    The ticks/CPU defaults apply only when the platform query fails.
    """

    proc_root: str = "/proc"
    ps_command: list[str] = field(default_factory=lambda: list(DEFAULT_PS_COMMAND))
    ps_timeout: float = 10.0  # Seconds to wait for the fallback listing
    default_ticks_per_second: int = DEFAULT_TICKS_PER_SECOND
    default_cpu_count: int = DEFAULT_CPU_COUNT


@dataclass
class SystemConfig:
    """Server process housekeeping."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


@dataclass
class TUIConfig:
    """Dashboard configuration."""

    api_url: str = "http://127.0.0.1:8080"
    refresh_interval: float = 2.0  # Seconds between auto-refreshes
    cpu_alert: float = 20.0  # Highlight CPU% above this
    mem_alert: float = 10.0  # Highlight MEM% above this
    action_log_size: int = 5  # Entries kept in the action log
    request_timeout: float = 5.0


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    server: ServerConfig = field(default_factory=ServerConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    system: SystemConfig = field(default_factory=SystemConfig)
    tui: TUIConfig = field(default_factory=TUIConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "proc-manager"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "proc-manager"

    @property
    def runtime_dir(self) -> Path:
        """Runtime directory for the PID file, cleared on reboot."""
        return Path("/tmp/proc-manager")

    @property
    def log_path(self) -> Path:
        """Server log path (JSON Lines)."""
        return self.state_dir / "server.log"

    @property
    def pid_path(self) -> Path:
        """PID file path."""
        return self.runtime_dir / "server.pid"

    @property
    def proc_root(self) -> Path:
        """Process-table root as a Path."""
        return Path(self.collector.proc_root)

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("server", "collector", "system", "tui"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        Raises:
            ValueError: If the file cannot be parsed or holds invalid values.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            server=_load_server_config(data.get("server", {})),
            collector=_load_collector_config(data.get("collector", {})),
            system=_load_system_config(data.get("system", {})),
            tui=_load_tui_config(data.get("tui", {})),
        )


def _load_server_config(data: dict) -> ServerConfig:
    """Load server config from TOML data."""
    d = ServerConfig()
    port = data.get("port", d.port)
    request_max_bytes = data.get("request_max_bytes", d.request_max_bytes)
    request_timeout = data.get("request_timeout", d.request_timeout)

    if not 0 <= port <= 65535:
        raise ValueError(f"port must be in 0-65535, got {port}")
    if request_max_bytes < 1:
        raise ValueError(f"request_max_bytes must be >= 1, got {request_max_bytes}")
    if request_timeout <= 0:
        raise ValueError(f"request_timeout must be > 0, got {request_timeout}")

    return ServerConfig(
        host=data.get("host", d.host),
        port=port,
        request_max_bytes=request_max_bytes,
        request_timeout=request_timeout,
    )


def _load_collector_config(data: dict) -> CollectorConfig:
    """Load collector config from TOML data."""
    d = CollectorConfig()
    ps_command = data.get("ps_command", d.ps_command)
    ps_timeout = data.get("ps_timeout", d.ps_timeout)
    default_ticks = data.get("default_ticks_per_second", d.default_ticks_per_second)
    default_cpus = data.get("default_cpu_count", d.default_cpu_count)

    if not ps_command or not all(isinstance(arg, str) for arg in ps_command):
        raise ValueError(f"ps_command must be a non-empty list of strings, got {ps_command!r}")
    if ps_timeout <= 0:
        raise ValueError(f"ps_timeout must be > 0, got {ps_timeout}")
    if default_ticks < 1:
        raise ValueError(f"default_ticks_per_second must be >= 1, got {default_ticks}")
    if default_cpus < 1:
        raise ValueError(f"default_cpu_count must be >= 1, got {default_cpus}")

    return CollectorConfig(
        proc_root=data.get("proc_root", d.proc_root),
        ps_command=list(ps_command),
        ps_timeout=ps_timeout,
        default_ticks_per_second=default_ticks,
        default_cpu_count=default_cpus,
    )


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data."""
    d = SystemConfig()
    return SystemConfig(
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
        log_backup_count=data.get("log_backup_count", d.log_backup_count),
    )


def _load_tui_config(data: dict) -> TUIConfig:
    """Load TUI config from TOML data."""
    d = TUIConfig()
    refresh_interval = data.get("refresh_interval", d.refresh_interval)
    action_log_size = data.get("action_log_size", d.action_log_size)

    if refresh_interval <= 0:
        raise ValueError(f"refresh_interval must be > 0, got {refresh_interval}")
    if action_log_size < 1:
        raise ValueError(f"action_log_size must be >= 1, got {action_log_size}")

    return TUIConfig(
        api_url=data.get("api_url", d.api_url),
        refresh_interval=refresh_interval,
        cpu_alert=data.get("cpu_alert", d.cpu_alert),
        mem_alert=data.get("mem_alert", d.mem_alert),
        action_log_size=action_log_size,
        request_timeout=data.get("request_timeout", d.request_timeout),
    )

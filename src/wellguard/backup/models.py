"""Backup data models."""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from wellguard.reporting import sha256_file, timestamp_slug

ENVIRONMENTS = ("dev", "prod")
BACKUP_TYPES = ("full", "incremental")
COMPRESSION_LEVEL = 6

# kind -> (backup id prefix, log file prefix)
KIND_NAMING = {
    "database": ("wellflow", "backup"),
    "redis": ("redis", "redis-backup"),
    "application": ("wellflow-app", "app-backup"),
}


@dataclass
class BackupSettings:
    """Options shared by every backup command."""

    environment: str = "dev"
    backup_type: str = "full"
    encrypt: bool = False
    verify: bool = False
    retention_days: int = 30
    root: Path = field(default_factory=Path.cwd)
    encryption_key: str | None = None

    def __post_init__(self) -> None:
        if self.environment not in ENVIRONMENTS:
            raise ValueError(f"Invalid environment: {self.environment}. Use 'dev' or 'prod'")
        if self.backup_type not in BACKUP_TYPES:
            raise ValueError(f"Invalid backup type: {self.backup_type}. Use 'full' or 'incremental'")
        if self.retention_days < 1:
            raise ValueError("Retention days must be a positive number")
        self.root = Path(self.root)


@dataclass
class BackupFile:
    """A produced backup artifact."""

    filename: str
    path: str
    size_bytes: int
    sha256: str

    @classmethod
    def from_path(cls, path: Path) -> "BackupFile":
        return cls(
            filename=path.name,
            path=str(path),
            size_bytes=path.stat().st_size,
            sha256=sha256_file(path),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BackupRun:
    """State of one backup invocation."""

    kind: str
    settings: BackupSettings
    backup_dir: Path
    timestamp: str = field(default_factory=timestamp_slug)
    files: list[Path] = field(default_factory=list)
    encrypted: bool = False
    verified: bool = False

    @property
    def backup_id(self) -> str:
        prefix, _ = KIND_NAMING[self.kind]
        return f"{prefix}-{self.settings.environment}-{self.timestamp}"

    @property
    def log_file(self) -> Path:
        _, log_prefix = KIND_NAMING[self.kind]
        return self.backup_dir / f"{log_prefix}-{self.timestamp}.log"

"""Redis backups: RDB snapshot copy (dev) or command dump (prod)."""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse

from wellguard.config import get_redis_url
from wellguard.reporting import utc_now_iso
from wellguard.runtime import CommandRunner, MissingToolError, resolve_binary, run_command
from wellguard.tools.registry import install_hint
from wellguard.utils.logs import attach_run_log

from .common import (
    cleanup_old_backups,
    encrypt_run_files,
    gzip_file,
    verify_min_size,
    write_backup_report,
    write_checksum_file,
)
from .models import BackupRun, BackupSettings

logger = logging.getLogger(__name__)

BACKUP_SUBDIR = Path("backups") / "redis"
DEFAULT_RETENTION_DAYS = 14
MIN_BACKUP_BYTES = 100
BGSAVE_TIMEOUT = 60
CONTAINER_NAME = "wellflow-redis"
DUMP_HEADER = "# WellFlow Redis Backup"
RETENTION_PATTERNS = ("redis-*.gz*", "redis-backup-report-*.json", "redis-backup-*.log")

# redis-cli --csv quotes each reply element C-style and joins elements with commas
CSV_FIELD = re.compile(r'"((?:\\.|[^"\\])*)"|([^,\n]+)')
CSV_ESCAPE = re.compile(r"\\(x[0-9a-fA-F]{2}|.)", re.DOTALL)
CSV_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "a": "\a", "b": "\b"}


@dataclass
class RedisTarget:
    """Connection parameters for the Redis instance."""

    host: str
    port: int
    password: str = ""
    db: int = 0

    def cli_args(self) -> list[str]:
        args = ["redis-cli", "-h", self.host, "-p", str(self.port), "-n", str(self.db)]
        if self.password:
            args += ["-a", self.password, "--no-auth-warning"]
        return args


def parse_redis_url(url: str | None) -> RedisTarget:
    """Parse ``redis://[:password@]host:port[/db]``."""
    if not url:
        raise ValueError("REDIS_URL environment variable is required for production backups")
    parsed = urlparse(url)
    if parsed.scheme not in ("redis", "rediss") or not parsed.hostname:
        raise ValueError("Invalid REDIS_URL format")
    path = parsed.path.lstrip("/")
    try:
        port = parsed.port or 6379
        db = int(path) if path else 0
    except ValueError:
        raise ValueError("Invalid REDIS_URL format") from None
    return RedisTarget(
        host=parsed.hostname,
        port=port,
        password=unquote(parsed.password or ""),
        db=db,
    )


def redis_target(environment: str, project_dir: Path | None = None) -> RedisTarget:
    """Resolve connection parameters for ``environment``."""
    if environment == "prod":
        return parse_redis_url(get_redis_url(project_dir))
    return RedisTarget(host="localhost", port=6380)


def quote_redis(value: str) -> str:
    """Quote a value the way redis-cli accepts it on input."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def render_key_commands(key: str, key_type: str, ttl: int, values: list[str]) -> list[str]:
    """Render the commands that recreate one key.

    ``values`` is the raw reply for the type: the value for strings,
    alternating field/value for hashes, members for lists and sets, and
    alternating member/score for sorted sets.
    """
    lines = [f"# Key: {key} (type: {key_type}, ttl: {ttl})"]
    k = quote_redis(key)
    if key_type == "string":
        lines.append(f"SET {k} {quote_redis(values[0] if values else '')}")
    elif key_type == "hash":
        pairs = " ".join(quote_redis(v) for v in values)
        if pairs:
            lines.append(f"HSET {k} {pairs}")
    elif key_type in ("list", "set"):
        command = "RPUSH" if key_type == "list" else "SADD"
        members = " ".join(quote_redis(v) for v in values)
        if members:
            lines.append(f"{command} {k} {members}")
    elif key_type == "zset":
        scored = [
            f"{values[i + 1]} {quote_redis(values[i])}" for i in range(0, len(values) - 1, 2)
        ]
        if scored:
            lines.append(f"ZADD {k} {' '.join(scored)}")
    else:
        lines.append(f"# Unsupported type: {key_type}")
    if ttl > 0:
        lines.append(f"EXPIRE {k} {ttl}")
    return lines


def _unescape_csv(body: str) -> str:
    def replace(match: re.Match) -> str:
        code = match.group(1)
        if len(code) == 3:
            return chr(int(code[1:], 16))
        return CSV_ESCAPES.get(code, code)

    raw = CSV_ESCAPE.sub(replace, body).encode("latin-1", errors="replace")
    return raw.decode("utf-8", errors="replace")


def parse_csv_reply(output: str) -> list[str]:
    """Split ``redis-cli --csv`` output into values, undoing its quoting.

    Values may contain newlines, so the reply cannot be split on lines.
    A bare ``NULL`` (key vanished since the scan) yields no value.
    """
    values = []
    for match in CSV_FIELD.finditer(output):
        quoted, bare = match.groups()
        if quoted is not None:
            values.append(_unescape_csv(quoted))
        elif bare.strip() and bare.strip() != "NULL":
            values.append(bare.strip())
    return values


VALUE_COMMANDS = {
    "string": ["GET"],
    "hash": ["HGETALL"],
    "list": ["LRANGE", "{key}", "0", "-1"],
    "set": ["SMEMBERS"],
    "zset": ["ZRANGE", "{key}", "0", "-1", "WITHSCORES"],
}


class RedisBackup:
    """Backs up a Redis instance through redis-cli."""

    def __init__(
        self,
        settings: BackupSettings,
        target: RedisTarget,
        command_runner: CommandRunner | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.target = target
        self._runner = command_runner or run_command
        self._sleep = sleep
        self.backup_dir = settings.root / BACKUP_SUBDIR

    async def _cli(self, *args: str, timeout: float = 30) -> str:
        result = await self._runner([*self.target.cli_args(), *args], timeout=timeout)
        return result.stdout

    async def run(self) -> Path:
        """Perform the backup and return the report path."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        run = BackupRun(kind="redis", settings=self.settings, backup_dir=self.backup_dir)
        with attach_run_log(run.log_file):
            logger.info("Starting WellFlow Redis backup")
            logger.info("Environment: %s", self.settings.environment)
            logger.info("Redis: %s:%s db %s", self.target.host, self.target.port, self.target.db)

            if resolve_binary("redis-cli") is None:
                raise MissingToolError("redis-cli", install_hint("redis-cli"))
            await self._check_connectivity()
            await self._log_info()

            backup_file = None
            if self.settings.environment == "dev" and await self._container_running():
                backup_file = await self._snapshot_backup(run.timestamp)
            if backup_file is None:
                backup_file = await self._dump_backup(run.timestamp)
            run.files += [backup_file, write_checksum_file(backup_file)]

            await encrypt_run_files(run, self._runner)
            if self.settings.verify:
                for path in run.files:
                    if path.suffix != ".sha256" and not verify_min_size(path, MIN_BACKUP_BYTES):
                        raise RuntimeError(f"Backup verification failed: {path.name}")
                run.verified = True
                logger.info("Backup verification successful")

            cleanup_old_backups(self.backup_dir, RETENTION_PATTERNS, self.settings.retention_days)
            report = write_backup_report(
                run,
                "redis-backup-report",
                extra={
                    "redis": {
                        "host": self.target.host,
                        "port": self.target.port,
                        "database": self.target.db,
                    }
                },
            )
            logger.info("Redis backup completed successfully")
        return report

    async def _check_connectivity(self) -> None:
        logger.info("Testing Redis connectivity...")
        try:
            reply = await self._cli("PING")
        except RuntimeError as exc:
            raise RuntimeError(f"Cannot connect to Redis: {exc}") from exc
        if "PONG" not in reply:
            raise RuntimeError(f"Cannot connect to Redis: unexpected reply {reply.strip()!r}")
        logger.info("Redis connectivity confirmed")

    async def _log_info(self) -> None:
        wanted = ("redis_version", "used_memory_human", "connected_clients")
        for section in ("server", "memory", "keyspace"):
            try:
                info = await self._cli("INFO", section)
            except RuntimeError:
                logger.warning("Could not read INFO %s", section, exc_info=True)
                continue
            for line in info.splitlines():
                line = line.strip()
                if line.startswith(wanted) or line.startswith("db"):
                    logger.info("  %s", line)

    async def _container_running(self) -> bool:
        if resolve_binary("docker") is None:
            return False
        try:
            result = await self._runner(
                ["docker", "ps", "--filter", f"name={CONTAINER_NAME}", "--format", "{{.Names}}"],
                timeout=15,
            )
        except RuntimeError:
            logger.warning("docker ps failed", exc_info=True)
            return False
        return CONTAINER_NAME in result.stdout.split()

    async def _snapshot_backup(self, timestamp: str) -> Path | None:
        """BGSAVE, wait for LASTSAVE to move, then copy dump.rdb out of the container."""
        logger.info("Triggering background save (BGSAVE)...")
        before = (await self._cli("LASTSAVE")).strip()
        await self._cli("BGSAVE")

        waited = 0
        while waited < BGSAVE_TIMEOUT:
            await self._sleep(1)
            waited += 1
            if (await self._cli("LASTSAVE")).strip() != before:
                logger.info("Background save completed after %ds", waited)
                break
            if waited % 10 == 0:
                logger.info("Waiting for background save... (%ds)", waited)
        else:
            logger.warning("BGSAVE did not finish within %ds, falling back to DUMP", BGSAVE_TIMEOUT)
            return None

        rdb_file = self.backup_dir / f"redis-{self.settings.environment}-{timestamp}.rdb"
        try:
            await self._runner(
                ["docker", "cp", f"{CONTAINER_NAME}:/data/dump.rdb", str(rdb_file)],
                timeout=300,
            )
        except RuntimeError:
            logger.warning("docker cp failed, falling back to DUMP", exc_info=True)
            return None
        compressed = gzip_file(rdb_file)
        logger.info("RDB snapshot saved: %s", compressed.name)
        return compressed

    async def _dump_backup(self, timestamp: str) -> Path:
        """Write a replayable command file for every key, then gzip it."""
        dump_file = self.backup_dir / f"redis-dump-{self.settings.environment}-{timestamp}.txt"
        logger.info("Creating command dump: %s", dump_file.name)
        keys = [k for k in (await self._cli("--scan", timeout=300)).splitlines() if k]

        lines = [
            DUMP_HEADER,
            f"# Timestamp: {utc_now_iso()}",
            f"# Environment: {self.settings.environment}",
            f"# Redis: {self.target.host}:{self.target.port}",
            f"# Database: {self.target.db}",
            "",
        ]
        for key in keys:
            key_type = (await self._cli("TYPE", key)).strip()
            ttl_raw = (await self._cli("TTL", key)).strip()
            ttl = int(ttl_raw) if ttl_raw.lstrip("-").isdigit() else -1
            values: list[str] = []
            template = VALUE_COMMANDS.get(key_type)
            if template:
                args = [part.replace("{key}", key) for part in template]
                if len(args) == 1:
                    args.append(key)
                values = parse_csv_reply(await self._cli("--csv", *args, timeout=120))
            lines.extend(render_key_commands(key, key_type, ttl, values))
            lines.append("")

        dump_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
        logger.info("Dumped %d keys", len(keys))
        return gzip_file(dump_file)

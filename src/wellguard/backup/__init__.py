"""Backup commands for the WellFlow data stores and application."""

from .application import ApplicationBackup
from .database import DatabaseBackup, DatabaseTarget, database_target, parse_database_url
from .models import BackupFile, BackupRun, BackupSettings
from .monitor import BackupMonitor
from .redis import RedisBackup, RedisTarget, parse_redis_url, redis_target, render_key_commands
from .secure import SecureBackupSession
from .testing import BackupTestSuite

__all__ = [
    "ApplicationBackup",
    "BackupFile",
    "BackupMonitor",
    "BackupRun",
    "BackupSettings",
    "BackupTestSuite",
    "DatabaseBackup",
    "DatabaseTarget",
    "RedisBackup",
    "RedisTarget",
    "SecureBackupSession",
    "database_target",
    "parse_database_url",
    "parse_redis_url",
    "redis_target",
    "render_key_commands",
]

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import unquote, urlparse

from agency_crm import audit, events
from agency_crm.core.config import Settings, get_settings
from agency_crm.metrics import observe_backup_operation
from agency_crm.otel import get_tracer

logger = logging.getLogger("app.crm.backup")
tracer = get_tracer("agency_crm.imports")

BACKUP_FILENAME_PREFIX = "agency-crm-backup-"
BACKUP_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_BACKUP_FILENAME_RE = re.compile(r"^agency-crm-backup-(.+)\.sql$")


class BackupError(Exception):
    pass


class InvalidBackupIdError(BackupError):
    pass


class BackupNotFoundError(BackupError):
    pass


@dataclass(frozen=True)
class ConnectionParams:
    host: str
    port: str
    user: str
    password: str
    dbname: str


@dataclass(frozen=True)
class BackupArtifact:
    id: str
    filename: str
    path: Path
    size: int
    created_at: datetime

    @classmethod
    def from_path(cls, path: Path) -> BackupArtifact:
        backup_id = backup_id_from_filename(path.name)
        if backup_id is None:
            raise InvalidBackupIdError(f"Not a backup file: {path.name}")
        stat = path.stat()
        return cls(
            id=backup_id,
            filename=path.name,
            path=path,
            size=stat.st_size,
            created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def to_dict(self) -> dict[str, str | int]:
        return {
            "id": self.id,
            "filename": self.filename,
            "size": self.size,
            "created_at": self.created_at.isoformat(),
        }


def parse_database_url(database_url: str) -> ConnectionParams:
    parsed = urlparse(database_url)
    scheme = parsed.scheme.split("+", 1)[0]
    if scheme not in {"postgresql", "postgres"}:
        raise BackupError(f"Backups require a PostgreSQL database, got scheme '{parsed.scheme}'")
    return ConnectionParams(
        host=parsed.hostname or "localhost",
        port=str(parsed.port or 5432),
        user=unquote(parsed.username or "postgres"),
        password=unquote(parsed.password or ""),
        dbname=parsed.path.lstrip("/") or "postgres",
    )


def find_pg_tool(tool_name: str, bin_path: str | None = None) -> str:
    if bin_path:
        return str(Path(bin_path) / tool_name)
    return shutil.which(tool_name) or tool_name


def make_backup_id(now: datetime | None = None) -> str:
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    stamp = moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return stamp.replace(":", "-").replace(".", "-")


def validate_backup_id(backup_id: str) -> str:
    if not backup_id or not BACKUP_ID_RE.match(backup_id) or ".." in backup_id:
        raise InvalidBackupIdError("Invalid backup id")
    return backup_id


def backup_id_from_filename(filename: str) -> str | None:
    """Return the id encoded in a backup file name, or None for any other file."""
    match = _BACKUP_FILENAME_RE.match(filename)
    if match is None:
        return None
    try:
        return validate_backup_id(match.group(1))
    except InvalidBackupIdError:
        return None


class BackupService:
    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    @property
    def backup_dir(self) -> Path:
        return Path(self.settings.backup_dir)

    def _backup_path(self, backup_id: str) -> Path:
        return self.backup_dir / f"{BACKUP_FILENAME_PREFIX}{backup_id}.sql"

    def _run(self, operation: str, cmd: list[str], password: str, timeout: int) -> None:
        env = os.environ.copy()
        env["PGPASSWORD"] = password
        tool = Path(cmd[0]).name
        try:
            result = subprocess.run(cmd, env=env, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            observe_backup_operation(operation, "timeout")
            logger.error("crm.backup.timeout", extra={"command": tool, "status": operation})
            raise BackupError(f"{tool} timed out after {timeout}s") from None
        except FileNotFoundError:
            observe_backup_operation(operation, "failed")
            logger.error("crm.backup.tool_missing", extra={"command": tool, "status": operation})
            raise BackupError(f"{tool} executable not found; install the PostgreSQL client tools") from None

        if result.returncode != 0:
            observe_backup_operation(operation, "failed")
            stderr = (result.stderr or "").strip()
            logger.error(
                "crm.backup.command_failed",
                extra={"command": tool, "returncode": result.returncode, "error": stderr, "status": operation},
            )
            raise BackupError(f"{tool} exited with code {result.returncode}: {stderr[:500]}")

    def create_backup(self) -> BackupArtifact:
        settings = self.settings
        params = parse_database_url(settings.database_url)
        backup_id = make_backup_id()
        path = self._backup_path(backup_id)

        with tracer.start_as_current_span("crm.backup.create") as span:
            span.set_attribute("backup_id", backup_id)
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            cmd = [
                find_pg_tool("pg_dump", settings.pg_bin_path),
                "-h", params.host,
                "-p", params.port,
                "-U", params.user,
                "-d", params.dbname,
                "--clean",
                "--if-exists",
                "-f", str(path),
            ]
            self._run("backup", cmd, params.password, settings.backup_dump_timeout_seconds)

            if not path.is_file():
                observe_backup_operation("backup", "failed")
                raise BackupError("pg_dump reported success but produced no backup file")

            artifact = BackupArtifact.from_path(path)

        observe_backup_operation("backup", "succeeded")
        logger.info(
            "crm.backup.created",
            extra={"backup_id": artifact.id, "backup_file": artifact.filename, "size": artifact.size},
        )
        return artifact

    def list_backups(self) -> list[BackupArtifact]:
        directory = self.backup_dir
        if not directory.is_dir():
            return []
        artifacts = [
            BackupArtifact.from_path(entry)
            for entry in directory.iterdir()
            if entry.is_file() and backup_id_from_filename(entry.name) is not None
        ]
        return sorted(artifacts, key=lambda artifact: artifact.created_at, reverse=True)

    def restore(self, backup_id: str, actor_user_id: str | None = None) -> BackupArtifact:
        validate_backup_id(backup_id)
        path = self._backup_path(backup_id)
        if not path.is_file():
            raise BackupNotFoundError(f"Backup '{backup_id}' not found")

        settings = self.settings
        params = parse_database_url(settings.database_url)
        with tracer.start_as_current_span("crm.backup.restore") as span:
            span.set_attribute("backup_id", backup_id)
            cmd = [
                find_pg_tool("psql", settings.pg_bin_path),
                "-h", params.host,
                "-p", params.port,
                "-U", params.user,
                "-d", params.dbname,
                "-v", "ON_ERROR_STOP=1",
                "-f", str(path),
            ]
            self._run("restore", cmd, params.password, settings.backup_restore_timeout_seconds)

        observe_backup_operation("restore", "succeeded")
        logger.info("crm.backup.restored", extra={"backup_id": backup_id, "backup_file": path.name})
        artifact = BackupArtifact.from_path(path)
        if actor_user_id is not None:
            audit.record(
                actor_user_id=actor_user_id,
                entity_type="backup",
                entity_id=artifact.id,
                action="restore",
                before=None,
                after=artifact.to_dict(),
            )
        events.publish(events.build_envelope("crm.backup.restored", actor_user_id, artifact.to_dict()))
        return artifact

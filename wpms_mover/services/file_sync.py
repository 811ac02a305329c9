"""
Manifest-based rsync file transfer for one multisite tenant.

Each direction runs in two passes. A dry run first enumerates the files into
a manifest, which sizes the transfer and records what was in scope. The real
transfer is then restricted to that manifest, and progress is the number of
file lines rsync prints. Directory lines are skipped in both passes.

Tenant files live under ``files/sites/<blog_id>/`` on the Pantheon appserver
and are staged locally under ``<staging_root>/<blog_id>/`` between the get
and the put.
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from tqdm import tqdm

from wpms_mover.core.config import MoverConfig
from wpms_mover.exceptions import PreconditionError, TransportError
from wpms_mover.types import (
    ConnectionInfo,
    EnvironmentRef,
    TenantId,
    normalize_tenant_id,
)
from wpms_mover.utils.logging import log_with_context
from wpms_mover.utils.process import (
    CancelToken,
    LineSplitter,
    run_command,
    stream_process,
)


class SyncDirection(str, Enum):
    """Which way files move relative to the local staging area."""

    GET = "get"
    PUT = "put"


class SyncPhase(str, Enum):
    IDLE = "idle"
    ENUMERATING = "enumerating"
    COUNTING = "counting"
    TRANSFERRING = "transferring"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    SyncPhase.IDLE: {SyncPhase.ENUMERATING},
    SyncPhase.ENUMERATING: {SyncPhase.COUNTING, SyncPhase.FAILED},
    SyncPhase.COUNTING: {SyncPhase.TRANSFERRING, SyncPhase.FAILED},
    SyncPhase.TRANSFERRING: {SyncPhase.DONE, SyncPhase.FAILED},
    SyncPhase.DONE: set(),
    SyncPhase.FAILED: set(),
}


@dataclass
class SyncResult:
    """State of one get or put run."""

    direction: SyncDirection
    env: str
    tenant: str
    manifest: Path
    phase: SyncPhase = SyncPhase.IDLE
    expected: int = 0
    completed: int = 0

    def advance(self, phase: SyncPhase) -> None:
        if phase not in _TRANSITIONS[self.phase]:
            raise RuntimeError(
                f"Illegal sync transition {self.phase.value} -> {phase.value}"
            )
        self.phase = phase

    @property
    def remaining(self) -> int:
        return self.expected - self.completed


def lines_completed(chunk: str) -> int:
    """Number of files an rsync output chunk reports as done: one per newline."""
    return chunk.count("\n")


def count_manifest(path: Path) -> int:
    """Count manifest entries without loading the file into memory."""
    with open(path, "rb") as f:
        return sum(1 for _ in f)


class ProgressCounter:
    """Running file count for a transfer, rendered as a single tqdm line.

    ``get`` counts down the files remaining, ``put`` counts up the files
    uploaded. ``completed`` is exact: a chunk with k newlines records k files.
    """

    def __init__(
        self,
        direction: SyncDirection,
        expected: int,
        show: bool = True,
    ) -> None:
        self.direction = direction
        self.expected = expected
        self.completed = 0
        desc = "Files remaining" if direction == SyncDirection.GET else "Files uploaded"
        self._bar = tqdm(total=expected, desc=desc, unit="file", disable=not show)

    @property
    def remaining(self) -> int:
        return self.expected - self.completed

    def feed(self, chunk: str) -> int:
        count = lines_completed(chunk)
        if count:
            self.completed += count
            self._bar.update(count)
            if self.direction == SyncDirection.GET:
                self._bar.set_postfix(remaining=max(self.remaining, 0))
        return count

    def close(self) -> None:
        self._bar.close()


class StderrRelay:
    """Logs a tool's stderr line by line as it arrives and keeps the text."""

    def __init__(self, tool: str, tenant: str | None = None) -> None:
        self.tool = tool
        self.tenant = tenant
        self._splitter = LineSplitter()
        self._chunks: list[str] = []

    def __call__(self, chunk: str) -> None:
        self._chunks.append(chunk)
        for line in self._splitter.feed(chunk):
            self._emit(line)

    def _emit(self, line: str) -> None:
        if line.strip():
            log_with_context(
                logging.WARNING, f"ERR > {line}", tenant=self.tenant, tool=self.tool
            )

    def flush(self) -> None:
        self._emit(self._splitter.flush())

    @property
    def text(self) -> str:
        return "".join(self._chunks)


def _is_file_line(line: str) -> bool:
    # Directories are implied by the files beneath them
    return bool(line) and not line.endswith("/")


def _record_manifest_line(out, line: str) -> None:
    line = line.rstrip("\r")
    if _is_file_line(line):
        out.write(line + "\n")


class ManifestFileSync:
    """Moves a tenant's uploads between appservers through a local staging area."""

    def __init__(
        self,
        config: MoverConfig,
        connection_info: Callable[[EnvironmentRef], ConnectionInfo],
        wake: Callable[[EnvironmentRef], bool] | None = None,
        token: CancelToken | None = None,
    ) -> None:
        self.config = config
        self.connection_info = connection_info
        self.wake = wake
        self.token = token or CancelToken()
        self.runs: list[SyncResult] = []

    # ------------------------------------------------------------------
    # Paths and endpoints
    # ------------------------------------------------------------------

    def staging_dir(self, tenant_id: TenantId) -> Path:
        return Path(self.config.staging_root) / normalize_tenant_id(tenant_id)

    def manifest_path(
        self, env: EnvironmentRef, tenant_id: TenantId, direction: SyncDirection
    ) -> Path:
        tenant = normalize_tenant_id(tenant_id)
        return (
            Path(self.config.staging_root)
            / f"manifest.{env}.{tenant}.{direction.value}.txt"
        )

    def remote_address(self, env: EnvironmentRef, info: ConnectionInfo) -> str:
        """``user@host`` of the environment's appserver."""
        values = {"site": env.site, "stage": env.stage, "site_uuid": info.site_uuid}
        user = self.config.user_template.format(**values)
        host = self.config.host_template.format(**values)
        return f"{user}@{host}"

    def remote_dir(self, tenant: str) -> str:
        return f"{self.config.remote_files_root}/{tenant}"

    def rsync_options(self) -> list[str]:
        return [
            self.config.rsync_path,
            "-rlz",
            "-8",
            "--copy-unsafe-links",
            "--checksum",
            "--ipv4",
            "-e",
            f"ssh -p {self.config.ssh_port}",
        ]

    def _operation_token(self) -> CancelToken:
        return self.token.with_timeout(self.config.timeouts.file_transfer)

    def _wake(self, env: EnvironmentRef) -> None:
        if self.wake is not None:
            self.wake(env)

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _enumerate(self, src: str, dst: str, manifest: Path, tenant: str) -> None:
        argv = [*self.rsync_options(), "--dry-run", "--out-format=%n", src, dst]
        relay = StderrRelay("rsync", tenant)
        splitter = LineSplitter()

        manifest.parent.mkdir(parents=True, exist_ok=True)
        # Names are kept byte for byte, whatever their encoding on the appserver
        with open(manifest, "w", encoding="utf-8", errors="surrogateescape") as out:

            def write(chunk: str) -> None:
                for line in splitter.feed(chunk):
                    _record_manifest_line(out, line)

            returncode = stream_process(
                argv,
                write,
                relay,
                token=self._operation_token(),
                stdout_errors="surrogateescape",
            )
            _record_manifest_line(out, splitter.flush())
        relay.flush()

        if returncode != 0:
            raise TransportError("rsync", returncode, relay.text)

    def _transfer(
        self,
        direction: SyncDirection,
        src: str,
        dst: str,
        manifest: Path,
        expected: int,
        tenant: str,
    ) -> int:
        argv = [
            *self.rsync_options(),
            f"--files-from={manifest}",
            "--out-format=%n",
            src,
            dst,
        ]
        relay = StderrRelay("rsync", tenant)
        splitter = LineSplitter()
        counter = ProgressCounter(direction, expected, show=self.config.show_progress)

        def report(chunk: str) -> None:
            # rsync also names the directories it creates; the manifest lists files only
            files = [line for line in splitter.feed(chunk) if _is_file_line(line.rstrip("\r"))]
            if files:
                counter.feed("".join(f"{line}\n" for line in files))

        try:
            returncode = stream_process(
                argv, report, relay, token=self._operation_token()
            )
            tail = splitter.flush()
            if _is_file_line(tail.rstrip("\r")):
                counter.feed(f"{tail}\n")
        finally:
            counter.close()
        relay.flush()

        if returncode != 0:
            raise TransportError("rsync", returncode, relay.text)
        return counter.completed

    def _run(
        self,
        direction: SyncDirection,
        env: EnvironmentRef,
        tenant: str,
        src: str,
        dst: str,
    ) -> SyncResult:
        result = SyncResult(
            direction=direction,
            env=str(env),
            tenant=tenant,
            manifest=self.manifest_path(env, tenant, direction),
        )
        self.runs.append(result)

        try:
            result.advance(SyncPhase.ENUMERATING)
            log_with_context(
                logging.INFO, f"Building {direction.value} manifest for {env}", tenant=tenant
            )
            self._enumerate(src, dst, result.manifest, tenant)

            result.advance(SyncPhase.COUNTING)
            result.expected = count_manifest(result.manifest)
            log_with_context(
                logging.INFO,
                f"{result.expected} files listed in {result.manifest}",
                tenant=tenant,
            )

            result.advance(SyncPhase.TRANSFERRING)
            if result.expected:
                verb = "Downloading files from" if direction == SyncDirection.GET else "Uploading files to"
                log_with_context(logging.INFO, f"{verb} {env}", tenant=tenant)
                result.completed = self._transfer(
                    direction, src, dst, result.manifest, result.expected, tenant
                )
            result.advance(SyncPhase.DONE)
        except BaseException:
            result.advance(SyncPhase.FAILED)
            log_with_context(
                logging.ERROR,
                f"File {direction.value} for {env} failed",
                tenant=tenant,
                phase=direction.value,
            )
            raise

        log_with_context(
            logging.INFO,
            f"File {direction.value} complete: {result.completed} of {result.expected} files reported",
            tenant=tenant,
        )
        return result

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get(self, source: EnvironmentRef, tenant_id: TenantId) -> SyncResult:
        """Download the tenant's files from ``source`` into the staging area."""
        tenant = normalize_tenant_id(tenant_id)
        self._wake(source)
        info = self.connection_info(source)

        staging = self.staging_dir(tenant)
        staging.mkdir(parents=True, exist_ok=True)

        remote = f"{self.remote_address(source, info)}:{self.remote_dir(tenant)}/"
        return self._run(SyncDirection.GET, source, tenant, remote, f"{staging}/")

    def ensure_remote_dir(
        self, env: EnvironmentRef, info: ConnectionInfo, tenant: str
    ) -> None:
        """Create the tenant directory on the appserver; existing directories are fine."""
        parts = self.remote_dir(tenant).split("/")
        # A leading '-' makes sftp batch mode ignore the failure of that command
        batch = "".join(
            f"-mkdir {'/'.join(parts[: i + 1])}\n" for i in range(len(parts))
        )
        argv = [
            self.config.sftp_path,
            "-b",
            "-",
            "-P",
            str(self.config.ssh_port),
            self.remote_address(env, info),
        ]
        run_command(argv, token=self._operation_token(), stdin_data=batch).check()

    def put(self, dest: EnvironmentRef, tenant_id: TenantId) -> SyncResult:
        """Upload the staged tenant files to ``dest``."""
        tenant = normalize_tenant_id(tenant_id)
        staging = self.staging_dir(tenant)
        if not staging.is_dir():
            raise PreconditionError(
                f"No staged files for tenant {tenant} at {staging}; run a get first"
            )

        self._wake(dest)
        info = self.connection_info(dest)
        self.ensure_remote_dir(dest, info, tenant)

        remote = f"{self.remote_address(dest, info)}:{self.remote_dir(tenant)}/"
        return self._run(SyncDirection.PUT, dest, tenant, f"{staging}/", remote)

    def sync(
        self, source: EnvironmentRef, dest: EnvironmentRef, tenant_id: TenantId
    ) -> tuple[SyncResult, SyncResult]:
        """Get from ``source``, then put to ``dest``."""
        fetched = self.get(source, tenant_id)
        pushed = self.put(dest, tenant_id)
        return fetched, pushed

    def delete(self, env: EnvironmentRef, tenant_id: TenantId) -> None:
        """
        Remove every file under the tenant's remote directory.

        Mirrors an empty directory onto the remote path with ``--delete``.
        Destructive; only ever invoked explicitly.
        """
        tenant = normalize_tenant_id(tenant_id)
        self._wake(env)
        info = self.connection_info(env)
        remote = f"{self.remote_address(env, info)}:{self.remote_dir(tenant)}/"

        log_with_context(
            logging.WARNING, f"Deleting all files under {remote}", tenant=tenant
        )
        relay = StderrRelay("rsync", tenant)
        with tempfile.TemporaryDirectory(prefix="wpms-empty-") as empty:
            argv = [*self.rsync_options(), "--delete", f"{empty}/", remote]
            returncode = stream_process(
                argv,
                lambda chunk: None,
                relay,
                token=self._operation_token(),
            )
        relay.flush()

        if returncode != 0:
            raise TransportError("rsync", returncode, relay.text)
        log_with_context(logging.INFO, f"Deleted files for tenant {tenant} on {env}", tenant=tenant)

"""
External process helpers for the multisite tenant mover.

Every tool invocation (terminus, mysqldump, mysql, rsync, sftp) goes through
this module. Children are started in their own session so that cancellation,
a passed deadline, or Ctrl-C terminates the whole process group instead of
leaving an orphaned transfer running on the operator's machine.
"""

from __future__ import annotations

import codecs
import logging
import os
import selectors
import signal
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from typing import IO, Callable

from wpms_mover.constants import (
    POLL_INTERVAL_SECONDS,
    READ_CHUNK_SIZE,
    TERMINATE_GRACE_SECONDS,
)
from wpms_mover.exceptions import (
    OperationCancelledError,
    OperationTimeoutError,
    TransportError,
)
from wpms_mover.utils.logging import log_with_context

OutputCallback = Callable[[str], None]


class CancelToken:
    """Cancellation signal with an optional deadline.

    Tokens derived with :meth:`with_timeout` share the parent's cancel event,
    so cancelling the parent cancels every operation started from it. A
    derived deadline never extends past the parent's.
    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        _event: threading.Event | None = None,
        _deadline: float | None = None,
    ) -> None:
        self._event = _event or threading.Event()
        self._deadline = _deadline
        if timeout is not None:
            deadline = time.monotonic() + timeout
            if self._deadline is None or deadline < self._deadline:
                self._deadline = deadline

    def with_timeout(self, timeout: float | None) -> CancelToken:
        """Derive a token for one operation."""
        return CancelToken(timeout, _event=self._event, _deadline=self._deadline)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self, what: str = "operation") -> None:
        """Raise if the token has been cancelled or its deadline has passed."""
        if self._event.is_set():
            raise OperationCancelledError(f"{what} was cancelled")
        if self.expired:
            raise OperationTimeoutError(f"{what} exceeded its deadline")


@dataclass
class ProcessResult:
    """Outcome of a finished child process with captured output."""

    tool: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self) -> ProcessResult:
        """Raise TransportError on a non-zero exit, otherwise return self."""
        if self.returncode != 0:
            raise TransportError(self.tool, self.returncode, self.stderr)
        return self


@dataclass
class PipelineResult:
    """Exit status and diagnostics of a producer | consumer pair."""

    producer: ProcessResult
    consumer: ProcessResult

    @property
    def ok(self) -> bool:
        return self.producer.ok and self.consumer.ok

    def failure(self) -> ProcessResult | None:
        """
        The side whose diagnostics explain a failed pipeline, or None.

        A consumer that exits early closes the pipe, and the producer then dies
        of SIGPIPE with nothing on stderr. That producer status is a consequence,
        so the consumer is blamed. Otherwise the producer is checked first.
        """
        if not self.consumer.ok and self.producer.returncode == -signal.SIGPIPE:
            return self.consumer
        for proc in (self.producer, self.consumer):
            if not proc.ok:
                return proc
        return None


class LineSplitter:
    """Turns arbitrarily chunked text into complete lines."""

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, text: str) -> list[str]:
        data = self._pending + text
        *lines, self._pending = data.split("\n")
        return lines

    def flush(self) -> str:
        rest, self._pending = self._pending, ""
        return rest


def _tool_name(argv: list[str]) -> str:
    return os.path.basename(argv[0])


def _spawn(argv: list[str], **kwargs) -> subprocess.Popen:
    try:
        return subprocess.Popen(argv, start_new_session=True, **kwargs)
    except OSError as e:
        raise TransportError(_tool_name(argv), 127, str(e)) from e


def terminate_process_group(proc: subprocess.Popen) -> None:
    """Send SIGTERM to the child's process group, then SIGKILL after a grace period."""
    log_with_context(
        logging.WARNING,
        f"Terminating process group {proc.pid}",
        tool=_tool_name(proc.args) if isinstance(proc.args, list) else None,
    )
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.wait()


def _wait(proc: subprocess.Popen, token: CancelToken, tool: str) -> int:
    while True:
        token.check(tool)
        try:
            return proc.wait(timeout=POLL_INTERVAL_SECONDS)
        except subprocess.TimeoutExpired:
            continue


def _pump(
    streams: dict[IO[bytes], tuple[OutputCallback, str]],
    token: CancelToken,
    tool: str,
) -> None:
    """Read every stream until EOF, handing decoded chunks to their callbacks.

    Each stream maps to its callback and the codec error handler used to
    decode it.
    """
    selector = selectors.DefaultSelector()
    decoders = {}
    for stream, (callback, errors) in streams.items():
        selector.register(stream, selectors.EVENT_READ, callback)
        decoders[stream] = codecs.getincrementaldecoder("utf-8")(errors=errors)

    try:
        while selector.get_map():
            token.check(tool)
            for key, _ in selector.select(timeout=POLL_INTERVAL_SECONDS):
                data = os.read(key.fd, READ_CHUNK_SIZE)
                decoder = decoders[key.fileobj]
                if not data:
                    selector.unregister(key.fileobj)
                    text = decoder.decode(b"", final=True)
                else:
                    text = decoder.decode(data)
                if text:
                    key.data(text)
    finally:
        selector.close()


def stream_process(
    argv: list[str],
    on_stdout: OutputCallback,
    on_stderr: OutputCallback,
    token: CancelToken | None = None,
    env: dict[str, str] | None = None,
    stdin_data: str | None = None,
    stdout_errors: str = "replace",
) -> int:
    """
    Run a child process, streaming stdout and stderr to separate callbacks.

    The two channels are never mixed: callers rely on stdout being pure data.

    Args:
        argv: Program and arguments; never passed through a shell
        on_stdout: Called with each decoded stdout chunk as it arrives
        on_stderr: Called with each decoded stderr chunk as it arrives
        token: Cancellation token; on cancel or deadline the process group is terminated
        env: Optional environment for the child
        stdin_data: Optional text written to the child's stdin before streaming
        stdout_errors: Codec error handler for stdout; ``surrogateescape`` keeps
            undecodable bytes so they can be written back out unchanged

    Returns:
        The child's exit status
    """
    token = token or CancelToken()
    tool = _tool_name(argv)
    token.check(tool)
    log_with_context(logging.DEBUG, f"Running {' '.join(argv)}", tool=tool)

    proc = _spawn(
        argv,
        stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env,
    )
    try:
        if stdin_data is not None:
            try:
                proc.stdin.write(stdin_data.encode("utf-8"))
            except BrokenPipeError:
                pass
            finally:
                proc.stdin.close()
        _pump(
            {
                proc.stdout: (on_stdout, stdout_errors),
                proc.stderr: (on_stderr, "replace"),
            },
            token,
            tool,
        )
        return _wait(proc, token, tool)
    finally:
        if proc.poll() is None:
            terminate_process_group(proc)
        proc.stdout.close()
        proc.stderr.close()


def run_command(
    argv: list[str],
    token: CancelToken | None = None,
    env: dict[str, str] | None = None,
    stdin_data: str | None = None,
) -> ProcessResult:
    """Run a child process to completion and capture its output."""
    stdout: list[str] = []
    stderr: list[str] = []
    returncode = stream_process(
        argv, stdout.append, stderr.append, token=token, env=env, stdin_data=stdin_data
    )
    return ProcessResult(
        tool=_tool_name(argv),
        returncode=returncode,
        stdout="".join(stdout),
        stderr="".join(stderr),
    )


def _read_spooled(spool: IO[bytes]) -> str:
    spool.seek(0)
    return spool.read().decode("utf-8", errors="replace")


def run_pipeline(
    producer_argv: list[str],
    consumer_argv: list[str],
    token: CancelToken | None = None,
    producer_env: dict[str, str] | None = None,
    consumer_env: dict[str, str] | None = None,
) -> PipelineResult:
    """
    Run ``producer | consumer`` as two children joined by an OS pipe.

    Data never passes through this process, so memory use is bounded by the
    pipe buffer rather than the size of the stream. Both children are started
    before waiting. Each child's stderr is spooled to a temporary file.

    Returns:
        PipelineResult with both exit statuses and diagnostics
    """
    token = token or CancelToken()
    producer_tool = _tool_name(producer_argv)
    consumer_tool = _tool_name(consumer_argv)
    token.check(producer_tool)
    log_with_context(
        logging.DEBUG,
        f"Running {' '.join(producer_argv)} | {' '.join(consumer_argv)}",
        tool=producer_tool,
    )

    with tempfile.TemporaryFile() as producer_err, tempfile.TemporaryFile() as consumer_err:
        producer = _spawn(
            producer_argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=producer_err,
            env=producer_env,
        )
        try:
            consumer = _spawn(
                consumer_argv,
                stdin=producer.stdout,
                stdout=subprocess.DEVNULL,
                stderr=consumer_err,
                env=consumer_env,
            )
        except TransportError:
            terminate_process_group(producer)
            producer.stdout.close()
            raise
        # The consumer holds the read end now; the producer sees SIGPIPE if it exits early
        producer.stdout.close()

        try:
            consumer_rc = _wait(consumer, token, consumer_tool)
            producer_rc = _wait(producer, token, producer_tool)
        finally:
            for proc in (consumer, producer):
                if proc.poll() is None:
                    terminate_process_group(proc)

        return PipelineResult(
            producer=ProcessResult(
                producer_tool, producer_rc, "", _read_spooled(producer_err)
            ),
            consumer=ProcessResult(
                consumer_tool, consumer_rc, "", _read_spooled(consumer_err)
            ),
        )

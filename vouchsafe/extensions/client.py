"""Core side of the extension protocol: one adapter subprocess per session.

The subprocess's stdout is drained by a reader thread into a queue so
every read can honour a deadline.  ``kill()`` may be called from any
thread; it terminates the process and the pending call fails with
``ExtensionError``.  Partial output from a killed process is discarded.
"""

from __future__ import annotations

import collections
import logging
import queue
import subprocess
import threading
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from vouchsafe.extensions.protocol import (
    CAPABILITY_DISCOVER,
    PROTOCOL_VERSION,
    ExtensionError,
    HandshakeRequest,
    HandshakeResponse,
    Request,
    Response,
    ShutdownRequest,
    encode_frame,
    read_frame,
)

logger = logging.getLogger(__name__)

_STDERR_TAIL_LINES = 20
_SHUTDOWN_GRACE_SECONDS = 2.0


class ExtensionSession:
    """A handshaken connection to one extension process.

    Parameters
    ----------
    command:
        argv used to launch the extension.
    timeout:
        Seconds allowed for the handshake and for each call.
    cwd:
        Working directory for the child process.

    Examples
    --------
    >>> with ExtensionSession(["python", "-m", "vouchsafe.extensions.builtin.npm"],
    ...                       timeout=10.0) as session:  # doctest: +SKIP
    ...     session.handshake.ecosystem_id
    'npm'
    """

    def __init__(
        self,
        command: list[str],
        *,
        timeout: float,
        cwd: Path | None = None,
    ) -> None:
        if not command:
            raise ExtensionError("Empty extension command")
        self._command = list(command)
        self._timeout = timeout
        self._cwd = cwd
        self._process: subprocess.Popen[bytes] | None = None
        self._frames: queue.Queue[tuple[str, Any]] = queue.Queue()
        self._stderr_tail: collections.deque[str] = collections.deque(maxlen=_STDERR_TAIL_LINES)
        self._next_id = 1
        self._killed = threading.Event()
        self._lock = threading.Lock()
        self.handshake: HandshakeResponse | None = None

    # -- Lifecycle ----------------------------------------------------------

    def open(self) -> HandshakeResponse:
        """Spawn the process and perform the handshake.

        Raises
        ------
        ExtensionError
            If the process cannot be spawned, does not answer in time,
            answers with an invalid handshake, speaks another protocol
            version, or lacks the ``discover`` capability.
        """
        try:
            self._process = subprocess.Popen(
                self._command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self._cwd,
            )
        except OSError as exc:
            raise ExtensionError(f"Cannot launch {self._command[0]!r}: {exc}") from exc

        threading.Thread(target=self._pump_stdout, daemon=True).start()
        threading.Thread(target=self._pump_stderr, daemon=True).start()

        try:
            self._send(HandshakeRequest().model_dump())
            raw = self._receive()
        except ExtensionError:
            self.kill()
            raise
        try:
            handshake = HandshakeResponse.model_validate(raw)
        except ValidationError as exc:
            self.kill()
            raise ExtensionError(f"Invalid handshake: {exc.error_count()} schema error(s)") from exc

        if handshake.protocol_version != PROTOCOL_VERSION:
            self.kill()
            raise ExtensionError(
                f"Protocol version mismatch: extension speaks "
                f"{handshake.protocol_version}, core speaks {PROTOCOL_VERSION}"
            )
        if CAPABILITY_DISCOVER not in handshake.capabilities:
            self.kill()
            raise ExtensionError(
                f"Extension '{handshake.ecosystem_id}' lacks the "
                f"'{CAPABILITY_DISCOVER}' capability"
            )
        self.handshake = handshake
        logger.debug(
            "Handshake with %s: ecosystem=%s capabilities=%s",
            self._command[0], handshake.ecosystem_id, handshake.capabilities,
        )
        return handshake

    def close(self) -> None:
        """Send ``shutdown`` and reap the process, killing it if it lingers."""
        process = self._process
        if process is None:
            return
        if process.poll() is None and not self._killed.is_set():
            try:
                self._send(ShutdownRequest().model_dump())
                process.stdin.close()
                process.wait(timeout=_SHUTDOWN_GRACE_SECONDS)
            except (ExtensionError, OSError, subprocess.TimeoutExpired):
                logger.debug("Extension %s did not exit politely.", self._command[0])
        self.kill()

    def kill(self) -> None:
        """Terminate the process immediately.  Safe from any thread."""
        self._killed.set()
        process = self._process
        if process is None:
            return
        if process.poll() is None:
            process.kill()
        try:
            process.wait(timeout=_SHUTDOWN_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("Extension process %d did not die after kill.", process.pid)
        for stream in (process.stdin, process.stdout, process.stderr):
            if stream is not None:
                try:
                    stream.close()
                except OSError:
                    pass

    def __enter__(self) -> ExtensionSession:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- Calls --------------------------------------------------------------

    def call(self, method: str, params: dict[str, Any]) -> Any:
        """Issue one request and return its ``result``.

        Raises
        ------
        ExtensionError
            On timeout, process death, a malformed response, a response
            for another request id, or an error response.
        """
        with self._lock:
            request_id = self._next_id
            self._next_id += 1
        request = Request(id=request_id, method=method, params=params)
        self._send(request.model_dump())
        raw = self._receive()
        try:
            response = Response.model_validate(raw)
        except ValidationError as exc:
            self.kill()
            raise ExtensionError(f"Malformed response to {method}: {exc.error_count()} schema error(s)") from exc
        if response.id != request_id:
            self.kill()
            raise ExtensionError(f"Response id {response.id} does not match request id {request_id}")
        if response.error is not None:
            raise ExtensionError(
                f"{method} failed: [{response.error.code}] {response.error.message}"
            )
        return response.result

    # -- Internals ----------------------------------------------------------

    def _send(self, message: dict[str, Any]) -> None:
        process = self._process
        if process is None or process.stdin is None or self._killed.is_set():
            raise ExtensionError("Extension session is not running")
        try:
            process.stdin.write(encode_frame(message))
            process.stdin.flush()
        except (BrokenPipeError, OSError, ValueError) as exc:
            raise ExtensionError(f"Extension closed its input: {self._describe_exit()}") from exc

    def _receive(self) -> dict[str, Any]:
        try:
            kind, payload = self._frames.get(timeout=self._timeout)
        except queue.Empty:
            self.kill()
            raise ExtensionError(f"Timed out after {self._timeout:g}s") from None
        if self._killed.is_set():
            raise ExtensionError("Extension call cancelled")
        if kind == "frame":
            return payload
        if kind == "error":
            self.kill()
            raise ExtensionError(f"Protocol violation: {payload}")
        # eof
        raise ExtensionError(f"Extension exited early: {self._describe_exit()}")

    def _pump_stdout(self) -> None:
        process = self._process
        assert process is not None and process.stdout is not None
        try:
            while True:
                frame = read_frame(process.stdout)
                if frame is None:
                    self._frames.put(("eof", None))
                    return
                self._frames.put(("frame", frame))
        except ExtensionError as exc:
            self._frames.put(("error", str(exc)))
        except (OSError, ValueError):
            self._frames.put(("eof", None))

    def _pump_stderr(self) -> None:
        process = self._process
        assert process is not None and process.stderr is not None
        try:
            for line in process.stderr:
                self._stderr_tail.append(line.decode("utf-8", errors="replace").rstrip())
        except (OSError, ValueError):
            return

    def _describe_exit(self) -> str:
        process = self._process
        code = None
        if process is not None:
            try:
                code = process.wait(timeout=_SHUTDOWN_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                code = None
        tail = " | ".join(list(self._stderr_tail)[-3:])
        detail = f"exit code {code}" if code is not None else "still running"
        return f"{detail}; stderr: {tail}" if tail else detail

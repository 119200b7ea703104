"""JSON-RPC 2.0 client that talks to an agent subprocess over stdio."""

from __future__ import annotations

import codecs
import io
import itertools
import json
import logging
import os
import queue
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import IO, Any, Callable, Optional

log = logging.getLogger(__name__)

CLOSE_TIMEOUT = 3.0
"""Seconds ``Client.close`` waits for the subprocess before killing it."""

MAX_MESSAGE_SIZE = 1024 * 1024
"""Largest single line accepted from the subprocess, in bytes."""

RequestHandler = Callable[[str, Any], Any]
NotificationHandler = Callable[[str, Any], None]


class ClientError(Exception):
    """Raised when talking to the agent subprocess fails."""


class RPCError(ClientError):
    """A JSON-RPC 2.0 error object returned by the peer."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(code, message)
        self.code = code
        self.message = message
        self.data = data

    def __str__(self) -> str:
        return f"rpc error {self.code}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Return the wire form of the error."""
        obj: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            obj["data"] = self.data
        return obj


@dataclass
class ClientConfig:
    """How to spawn the agent subprocess."""

    command: str
    args: list[str] = field(default_factory=list)
    dir: str = ""
    env: list[str] = field(default_factory=list)
    timeout: float = 0.0
    stderr: Optional[IO[Any]] = None


def _encode(message: dict[str, Any]) -> bytes:
    return (json.dumps(message, separators=(",", ":"), ensure_ascii=False) + "\n").encode("utf-8")


def _parse_error(raw: Any) -> Optional[RPCError]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError("error is not an object")
    code = raw.get("code", 0)
    message = raw.get("message", "")
    if isinstance(code, bool) or not isinstance(code, int) or not isinstance(message, str):
        raise ValueError("malformed error object")
    return RPCError(code, message, raw.get("data"))


class Client:
    """A JSON-RPC 2.0 connection to an agent subprocess over its stdin/stdout."""

    def __init__(self, config: ClientConfig) -> None:
        self.config = config
        self.read_error: Optional[BaseException] = None
        self._proc: Optional[subprocess.Popen] = None
        self._ids = itertools.count(1)
        self._pending: dict[int, queue.SimpleQueue] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._handler: Optional[RequestHandler] = None
        self._notify_handler: Optional[NotificationHandler] = None
        self._done = threading.Event()
        self._reader: Optional[threading.Thread] = None
        self._stderr_pump: Optional[threading.Thread] = None
        self._started = False
        self._closed = False

    def __enter__(self) -> "Client":
        if not self._started:
            self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        exc_type = args[0] if args else None
        try:
            self.close()
        except ClientError:
            if exc_type is None:
                raise

    def start(self) -> None:
        """Spawn the subprocess and begin reading its stdout."""
        with self._lock:
            if self._started:
                raise ClientError("agent: client already started")
            self._started = True

        cfg = self.config
        env = None
        if cfg.env:
            env = dict(os.environ)
            for entry in cfg.env:
                key, _, value = entry.partition("=")
                env[key] = value

        stderr_target, pump_into = self._stderr_target()
        try:
            proc = subprocess.Popen(
                [cfg.command, *cfg.args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=stderr_target,
                cwd=cfg.dir or None,
                env=env,
            )
        except (OSError, ValueError) as exc:
            raise ClientError(f"agent: starting subprocess: {exc}") from exc

        self._proc = proc
        if pump_into is not None:
            self._stderr_pump = threading.Thread(
                target=self._pump_stderr, args=(proc.stderr, pump_into), daemon=True
            )
            self._stderr_pump.start()
        self._reader = threading.Thread(target=self._read_loop, daemon=True)
        self._reader.start()

    def set_request_handler(self, handler: Optional[RequestHandler]) -> None:
        """Register the callable that answers requests sent by the subprocess."""
        with self._lock:
            self._handler = handler

    def set_notification_handler(self, handler: Optional[NotificationHandler]) -> None:
        """Register the callable that receives notifications from the subprocess."""
        with self._lock:
            self._notify_handler = handler

    def send_request(self, method: str, params: Any = None, timeout: Optional[float] = None) -> Any:
        """Send a request and wait for its result; raises RPCError on an error reply."""
        if self._proc is None:
            raise ClientError("agent: client not started")
        with self._lock:
            msg_id = next(self._ids)
        message: dict[str, Any] = {"jsonrpc": "2.0", "id": msg_id, "method": method}
        if params is not None:
            message["params"] = params
        try:
            data = _encode(message)
        except (TypeError, ValueError) as exc:
            raise ClientError(f"agent: marshaling params: {exc}") from exc

        slot: queue.SimpleQueue = queue.SimpleQueue()
        with self._lock:
            self._pending[msg_id] = slot
            already_done = self._done.is_set()
        try:
            log.debug("agent: sending request id=%s method=%s", msg_id, method)
            try:
                self._write(data)
            except (OSError, ValueError) as exc:
                raise ClientError(f"agent: sending request: {exc}") from exc
            if already_done:
                raise ClientError(
                    f"agent: connection closed while waiting for response to {method!r}"
                )
            try:
                reply = slot.get(timeout=timeout)
            except queue.Empty:
                raise ClientError(
                    f"agent: request {method!r}: timed out after {timeout}s"
                ) from None
        finally:
            with self._lock:
                self._pending.pop(msg_id, None)

        if reply is None:
            raise ClientError(f"agent: connection closed while waiting for response to {method!r}")
        result, error = reply
        if error is not None:
            raise error
        return result

    def send_notification(self, method: str, params: Any = None) -> None:
        """Send a notification; no response is expected."""
        if self._proc is None:
            raise ClientError("agent: client not started")
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        try:
            data = _encode(message)
        except (TypeError, ValueError) as exc:
            raise ClientError(f"agent: marshaling params: {exc}") from exc
        try:
            self._write(data)
        except (OSError, ValueError) as exc:
            raise ClientError(f"agent: sending notification: {exc}") from exc

    def close(self) -> None:
        """Close stdin, wait briefly for the subprocess to exit, and kill it if needed."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        proc = self._proc
        if proc is None:
            return
        try:
            proc.stdin.close()
        except (OSError, ValueError):
            pass

        deadline = time.monotonic() + CLOSE_TIMEOUT
        assert self._reader is not None
        self._reader.join(CLOSE_TIMEOUT)
        try:
            if self._reader.is_alive():
                raise subprocess.TimeoutExpired(proc.args, CLOSE_TIMEOUT)
            returncode = proc.wait(timeout=max(0.0, deadline - time.monotonic()))
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
            self._reader.join(CLOSE_TIMEOUT)
            self._finish_streams()
            raise ClientError("agent: subprocess killed after timeout") from None

        self._finish_streams()
        if returncode < 0:
            raise ClientError(f"agent: subprocess exited: signal {-returncode}")
        if returncode != 0:
            raise ClientError(f"agent: subprocess exited: exit status {returncode}")

    def _stderr_target(self) -> tuple[Any, Optional[IO[Any]]]:
        target = self.config.stderr
        if target is None:
            return subprocess.DEVNULL, None
        try:
            fd = target.fileno()
        except (AttributeError, OSError, ValueError):
            return subprocess.PIPE, target
        try:
            target.flush()
        except (AttributeError, OSError, ValueError):
            pass
        return fd, None

    @staticmethod
    def _pump_stderr(source: IO[bytes], target: IO[Any]) -> None:
        binary = isinstance(target, (io.RawIOBase, io.BufferedIOBase))
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            for chunk in iter(lambda: source.read1(4096), b""):
                target.write(chunk if binary else decoder.decode(chunk))
            if not binary:
                tail = decoder.decode(b"", final=True)
                if tail:
                    target.write(tail)
        except (OSError, ValueError) as exc:
            log.debug("agent: stderr pump stopped: %s", exc)

    def _finish_streams(self) -> None:
        if self._stderr_pump is not None:
            self._stderr_pump.join(CLOSE_TIMEOUT)
        proc = self._proc
        if proc is None:
            return
        for stream in (proc.stdout, proc.stderr):
            if stream is not None:
                try:
                    stream.close()
                except (OSError, ValueError):
                    pass

    def _write(self, data: bytes) -> None:
        assert self._proc is not None
        with self._write_lock:
            self._proc.stdin.write(data)
            self._proc.stdin.flush()

    def _send_message(self, message: dict[str, Any]) -> None:
        try:
            self._write(_encode(message))
        except (OSError, ValueError, TypeError) as exc:
            log.debug("agent: failed to send response id=%s: %s", message.get("id"), exc)

    def _read_loop(self) -> None:
        assert self._proc is not None
        stdout = self._proc.stdout
        try:
            while True:
                line = stdout.readline(MAX_MESSAGE_SIZE + 1)
                if not line:
                    break
                if len(line) > MAX_MESSAGE_SIZE and not line.endswith(b"\n"):
                    self.read_error = ClientError("agent: message exceeds 1MB limit")
                    break
                line = line.strip()
                if not line:
                    continue
                try:
                    msg = json.loads(line)
                except ValueError as exc:
                    log.debug("agent: readLoop: skipping non-JSON line: %s", exc)
                    continue
                self._route(msg)
        except (OSError, ValueError) as exc:
            self.read_error = exc
        finally:
            with self._lock:
                self._done.set()
                waiters = list(self._pending.values())
            for waiter in waiters:
                waiter.put(None)

    def _route(self, msg: Any) -> None:
        if not isinstance(msg, dict):
            return
        msg_id = msg.get("id")
        method = msg.get("method")
        if method is None:
            method = ""
        if msg_id is not None and (isinstance(msg_id, bool) or not isinstance(msg_id, int)):
            return
        if not isinstance(method, str):
            return
        try:
            error = _parse_error(msg.get("error"))
        except ValueError:
            return
        params = msg.get("params")

        if msg_id is not None and not method:
            log.debug("agent: received response id=%s has_error=%s", msg_id, error is not None)
            with self._lock:
                slot = self._pending.get(msg_id)
            if slot is not None:
                slot.put((msg.get("result"), error))
            return

        if msg_id is not None:
            log.debug("agent: received request from agent id=%s method=%s", msg_id, method)
            with self._lock:
                handler = self._handler
            threading.Thread(
                target=self._serve, args=(msg_id, method, params, handler), daemon=True
            ).start()
            return

        if method:
            log.debug("agent: received notification method=%s", method)
        with self._lock:
            notify = self._notify_handler
        if notify is not None:
            try:
                notify(method, params)
            except Exception:
                log.exception("agent: notification handler failed for %s", method)

    def _serve(
        self, msg_id: int, method: str, params: Any, handler: Optional[RequestHandler]
    ) -> None:
        if handler is None:
            self._send_error(msg_id, RPCError(-32601, "method not found"))
            return
        try:
            result = handler(method, params)
        except Exception as exc:
            self._send_error(msg_id, RPCError(-32000, str(exc)))
            return
        try:
            data = _encode({"jsonrpc": "2.0", "id": msg_id, "result": result})
        except (TypeError, ValueError) as exc:
            self._send_error(msg_id, RPCError(-32603, f"internal error: {exc}"))
            return
        try:
            self._write(data)
        except (OSError, ValueError) as exc:
            log.debug("agent: failed to send response id=%s: %s", msg_id, exc)

    def _send_error(self, msg_id: int, error: RPCError) -> None:
        self._send_message({"jsonrpc": "2.0", "id": msg_id, "error": error.to_dict()})
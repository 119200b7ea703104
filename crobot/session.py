"""ACP session lifecycle on top of a JSON-RPC client: handshake, prompts, streaming."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import IO, Any, Callable, Optional

from crobot.fs import FSHandler
from crobot.rpc import Client, ClientError
from crobot.updates import (
    DIM_END,
    DIM_START,
    MAX_TOOL_OUTPUT_LINES,
    cap_lines,
    extract_response_text,
    extract_tool_input,
    extract_tool_name,
    extract_tool_output,
    parse_content,
)

log = logging.getLogger(__name__)

ACP_PROTOCOL_VERSION = 1
CLIENT_NAME = "crobot"
CLIENT_VERSION = "dev"
STOP_TIMEOUT = 3.0
"""Seconds ``Session.close`` waits for the best-effort ``session/stop``."""

_ALLOW_KINDS = frozenset({"allow_always", "always_allow", "allow_once", "allow"})
_FS_METHODS = frozenset({"fs/read_text_file", "fs/write_text_file", "terminal/run"})


class SessionError(Exception):
    """Raised when an ACP session step fails."""


@dataclass(frozen=True)
class ModelInfo:
    """A model the agent offers."""

    id: str = ""
    name: str = ""
    description: str = ""


@dataclass(frozen=True)
class SessionResult:
    """What one prompt turn produced."""

    final_text: str = ""
    stop_reason: str = ""


def _object(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("expected a JSON object")
    return value


def _string(obj: dict[str, Any], key: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _model_info(item: Any) -> ModelInfo:
    obj = _object(item)
    return ModelInfo(
        id=_string(obj, "modelId"),
        name=_string(obj, "name"),
        description=_string(obj, "description"),
    )


def _text_blocks(raw_content: Any) -> str:
    return "".join(block.text for block in parse_content(raw_content) if block.type == "text")


class Session:
    """One ACP session with an agent subprocess.

    Registers itself as the client's request and notification handler, so
    streamed ``session/update`` text is collected and written to
    ``stream_writer`` as it arrives.
    """

    def __init__(
        self,
        client: Optional[Client] = None,
        fs_handler: Optional[FSHandler] = None,
        model_id: str = "",
        stream_writer: Optional[IO[str]] = None,
        activity_func: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.client = client
        self.fs_handler = fs_handler
        self.model_id = model_id
        self.stream_writer = stream_writer
        self.activity_func = activity_func
        self.session_id = ""
        self.current_model = ""
        self.available_models: list[ModelInfo] = []
        self._lock = threading.Lock()
        self._agent_text: list[str] = []
        self._last_stream_was_tool = False
        self._trailing_newlines = 0
        if client is not None:
            client.set_request_handler(self.handle_request)
            client.set_notification_handler(self.handle_notification)

    def _call(self, method: str, params: Any, timeout: Optional[float], context: str) -> Any:
        if self.client is None:
            raise SessionError(f"agent: {context}: no client configured")
        try:
            return self.client.send_request(method, params, timeout)
        except ClientError as exc:
            raise SessionError(f"agent: {context}: {exc}") from exc

    def initialize(self, timeout: Optional[float] = None) -> dict[str, Any]:
        """Perform the ACP ``initialize`` handshake and return the agent's reply."""
        params = {
            "protocolVersion": ACP_PROTOCOL_VERSION,
            "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
            "clientCapabilities": {"fs": {"readTextFile": True}},
        }
        result = self._call("initialize", params, timeout, "initialize")
        log.debug("agent: initialize response: %r", result)
        try:
            return _object(result)
        except ValueError as exc:
            raise SessionError(f"agent: initialize: parsing server capabilities: {exc}") from exc

    def create_session(self, timeout: Optional[float] = None) -> None:
        """Open a new ACP session and record the models the agent reports."""
        params: dict[str, Any] = {"cwd": os.getcwd(), "mcpServers": []}
        if self.model_id:
            params["modelId"] = self.model_id
        result = self._call("session/new", params, timeout, "session/new")
        log.debug("agent: session/new response: %r", result)
        try:
            body = _object(result)
            session_id = _string(body, "sessionId")
            models = _object(body.get("models"))
            current = _string(models, "currentModelId")
            raw_available = models.get("availableModels")
            if raw_available is None:
                available = []
            elif isinstance(raw_available, list):
                available = [_model_info(item) for item in raw_available]
            else:
                raise ValueError("availableModels must be a list")
        except ValueError as exc:
            raise SessionError(f"agent: session/new: parsing response: {exc}") from exc

        self.session_id = session_id
        self.current_model = current
        self.available_models = available
        log.debug(
            "agent: session created id=%s model=%s available=%d",
            session_id,
            current,
            len(available),
        )

    def set_model(self, model_id: str) -> None:
        """Request ``model_id`` for sessions created from now on."""
        self.model_id = model_id

    def prompt(self, prompt: str, timeout: Optional[float] = None) -> SessionResult:
        """Send one prompt turn and return the text the agent produced."""
        if not self.session_id:
            self.create_session(timeout)

        with self._lock:
            self._agent_text.clear()

        params = {"sessionId": self.session_id, "prompt": [{"type": "text", "text": prompt}]}
        result = self._call("session/prompt", params, timeout, "prompt")
        log.debug("agent: prompt response: %r", result)
        try:
            body = _object(result)
            stop_reason = _string(body, "stopReason")
            direct_text = _string(body, "text")
        except ValueError as exc:
            raise SessionError(f"agent: prompt: parsing result: {exc}") from exc

        with self._lock:
            final_text = "".join(self._agent_text)

        if not final_text:
            embedded = extract_response_text(body.get("content"), body.get("messages"), direct_text)
            if embedded:
                final_text = embedded
                if self.stream_writer is not None:
                    self.stream_writer.write(embedded)

        log.debug("agent: final text length=%d", len(final_text))
        return SessionResult(final_text=final_text, stop_reason=stop_reason)

    def close(self) -> None:
        """End the session; ``session/stop`` is optional, so its failure is only logged."""
        if not self.session_id:
            return
        if self.client is not None:
            try:
                self.client.send_request(
                    "session/stop", {"sessionId": self.session_id}, STOP_TIMEOUT
                )
            except ClientError as exc:
                log.debug("agent: session/stop not supported or failed: %s", exc)
        self.session_id = ""

    def handle_notification(self, method: str, params: Any) -> None:
        """Process a ``session/update`` notification; other methods are ignored."""
        if method != "session/update":
            return
        if not isinstance(params, dict):
            log.debug("agent: session/update parse error: params is not an object")
            return
        try:
            _string(params, "sessionId")
            flat_kind = _string(params, "sessionUpdate")
            delta = _string(params, "delta")
            legacy_text = _string(params, "text")
        except ValueError as exc:
            log.debug("agent: session/update parse error: %s", exc)
            return

        raw_update = params.get("update")
        kind = ""
        raw_content = None
        if isinstance(raw_update, dict):
            nested_kind = raw_update.get("sessionUpdate")
            if isinstance(nested_kind, str):
                kind = nested_kind
            raw_content = raw_update.get("content")
        if not kind:
            kind = flat_kind
            raw_content = params.get("content")
            raw_update = None

        log.debug("agent: session/update type=%s", kind)

        if kind == "agent_message_chunk":
            text = _text_blocks(raw_content)
        elif kind == "agent_thought_chunk":
            self._activity("thinking...")
            thought = _text_blocks(raw_content)
            if thought:
                self._emit(thought, accumulate=False)
            return
        elif kind in ("tool_call", "tool_call_update"):
            self._tool_activity(kind, raw_update)
            return
        elif kind == "tool_result":
            log.debug("agent: tool result")
            return
        else:
            text = delta or legacy_text

        if text:
            self._emit(text, accumulate=True)

    def _tool_activity(self, kind: str, raw_update: Any) -> None:
        tool_name = extract_tool_name(raw_update)
        log.debug("agent: tool activity type=%s tool=%s", kind, tool_name)
        self._activity(f"tool: {tool_name}" if tool_name else "using tool...")

        tool_input = extract_tool_input(raw_update)
        if tool_input:
            label = tool_name or "tool call"
            with self._lock:
                if not self._last_stream_was_tool:
                    self._ensure_blank_line()
                    self._last_stream_was_tool = True
                self._write_stream(f"{DIM_START} │ {label}({tool_input}){DIM_END}\n")

        output = extract_tool_output(raw_update)
        if output:
            output = cap_lines(output.strip(), MAX_TOOL_OUTPUT_LINES)
            log.debug("agent: tool output tool=%s output=%s", tool_name, output)

    def _activity(self, activity: str) -> None:
        if self.activity_func is not None:
            self.activity_func(activity)

    def _emit(self, text: str, *, accumulate: bool) -> None:
        with self._lock:
            if accumulate:
                self._agent_text.append(text)
            if self._last_stream_was_tool:
                display = text.lstrip("\n")
                if not display:
                    return
                self._ensure_blank_line()
                self._last_stream_was_tool = False
                text = display
            self._write_stream(text)

    def _write_stream(self, data: str) -> None:
        if not data or self.stream_writer is None:
            return
        self.stream_writer.write(data)
        trailing = len(data) - len(data.rstrip("\n"))
        if trailing == len(data):
            self._trailing_newlines += trailing
        else:
            self._trailing_newlines = trailing

    def _ensure_blank_line(self) -> None:
        needed = 2 - self._trailing_newlines
        if needed > 0:
            self._write_stream("\n" * needed)

    def handle_request(self, method: str, params: Any) -> Any:
        """Answer a request sent by the agent."""
        log.debug("agent: handling request from agent method=%s", method)
        if method == "session/request_permission":
            return self.handle_permission(params)
        if method in _FS_METHODS:
            if self.fs_handler is None:
                raise SessionError("agent: no filesystem handler configured")
            return self.fs_handler.handle_request(method, params)
        log.debug("agent: unknown method from agent method=%s params=%r", method, params)
        raise SessionError(f"agent: unknown method: {method}")

    def handle_permission(self, params: Any) -> dict[str, Any]:
        """Approve the first allow-like option, or cancel when there is none."""
        try:
            request = _object(params)
            _string(request, "sessionId")
            raw_options = request.get("options")
            if raw_options is None:
                raw_options = []
            if not isinstance(raw_options, list):
                raise ValueError("options must be a list")
            options = [
                (_string(opt, "kind"), _string(opt, "name"), _string(opt, "optionId"))
                for opt in map(_object, raw_options)
            ]
        except ValueError as exc:
            raise SessionError(f"agent: parsing permission request: {exc}") from exc

        for kind, name, option_id in options:
            if kind in _ALLOW_KINDS and option_id:
                log.debug("agent: auto-approving permission kind=%s name=%s", kind, name)
                return {"outcome": {"outcome": "selected", "optionId": option_id}}

        log.warning(
            "agent: no allow/always_allow option found, cancelling permission request (%d options)",
            len(options),
        )
        return {"outcome": {"outcome": "cancelled"}}
"""Read-only filesystem access for agents, served from a fixed commit."""

from __future__ import annotations

import json
import posixpath
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any

_VALID_COMMIT_HASH = re.compile(r"[0-9a-f]{4,40}")

_LOCAL_PREFIX = ".crobot/"


class FSError(Exception):
    """Raised when a filesystem request from the agent cannot be served."""


@dataclass(frozen=True)
class FSHandler:
    """Serves ``fs/*`` requests by reading files at ``head_commit`` with git.

    Files under ``.crobot/`` are not tracked by git and are read straight
    from disk below ``repo_dir``.
    """

    head_commit: str
    repo_dir: str

    def __post_init__(self) -> None:
        if not _VALID_COMMIT_HASH.fullmatch(self.head_commit):
            raise FSError(
                f"agent: fs: invalid commit hash {json.dumps(self.head_commit)}: "
                "must be 4-40 lowercase hex characters"
            )

    def handle_request(self, method: str, params: Any) -> dict[str, str]:
        """Answer one request from the agent; only reads are permitted."""
        if method == "fs/read_text_file":
            return self._read_text_file(params)
        if method == "fs/write_text_file":
            raise FSError("agent: fs: write operations are not permitted")
        if method == "terminal/run":
            raise FSError("agent: fs: terminal operations are not permitted")
        raise FSError(f"agent: fs: unknown method: {method}")

    def _read_text_file(self, params: Any) -> dict[str, str]:
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise FSError("agent: fs: parsing read params: expected a JSON object")
        path = params.get("path")
        if path is None:
            path = ""
        if not isinstance(path, str):
            raise FSError("agent: fs: parsing read params: path must be a string")
        if not path:
            raise FSError("agent: fs: path must not be empty")

        cleaned = posixpath.normpath(path)
        if cleaned in ("..", ".") or cleaned.startswith("/") or cleaned.startswith("../"):
            raise FSError(f"agent: fs: invalid path {json.dumps(path)}")

        if cleaned.startswith(_LOCAL_PREFIX):
            try:
                content = (Path(self.repo_dir) / cleaned).read_bytes()
            except OSError as exc:
                raise FSError(f"agent: fs: reading {cleaned}: {exc}") from exc
            return {"content": content.decode("utf-8", errors="replace")}

        try:
            proc = subprocess.run(
                ["git", "show", f"{self.head_commit}:{cleaned}"],
                cwd=self.repo_dir or None,
                capture_output=True,
                check=True,
            )
        except subprocess.CalledProcessError as exc:
            detail = exc.stderr.decode("utf-8", errors="replace").strip()
            reason = f"exit status {exc.returncode}"
            if detail:
                reason = f"{reason}: {detail}"
            raise FSError(f"agent: fs: reading {cleaned}: {reason}") from exc
        except OSError as exc:
            raise FSError(f"agent: fs: reading {cleaned}: {exc}") from exc
        return {"content": proc.stdout.decode("utf-8", errors="replace")}
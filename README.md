# crobot

crobot runs an AI coding agent as a subprocess and talks to it over the Agent
Client Protocol (newline-delimited JSON-RPC 2.0 on stdin/stdout). It asks the
agent to review a pull request and turns the answer into structured review
findings.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `crobot.rpc`: the JSON-RPC client. `Client(ClientConfig(...))` starts the
  agent process with `start()` (or on entering a `with` block), sends requests
  with `send_request(method, params, timeout)` and notifications with
  `send_notification(method, params)`, answers the agent's own requests through
  the handler given to `set_request_handler`, passes notifications to the
  handler given to `set_notification_handler`, and shuts the process down with
  `close()`. An error reply from the agent is raised as `RPCError`; transport
  failures, timeouts and a closed connection are raised as `ClientError`.
- `crobot.agent_config`: `Config`, `AgentConfig` and `AgentDef` describe the
  configured agents. `resolve_agent_config(cfg, agent_name)` picks one by name,
  or the default when the name is empty, and returns a `RunConfig` with the
  command, arguments and a timeout in seconds (600 unless configured).
  `AgentConfigError` is raised when no agent can be resolved.
- `crobot.fs`: `FSHandler(head_commit, repo_dir)` serves the agent's
  `fs/read_text_file` requests at a given commit using `git show`; files under
  `.crobot/` are read straight from disk. Write and terminal requests, empty
  paths and paths leaving the repository raise `FSError`.
- `crobot.review_prompt`: `PRContext`, `PRRequest`, `ChangedFile` and
  `DiffHunk` describe a pull request; `build_review_prompt(pr_ctx, ref,
  diff_dir)` renders the review prompt, with the diff either inline or as a
  pointer to a directory of per-file diffs. A `PRRequest` with `pr_number` 0
  is rendered as a local, pre-push review.
- `crobot.findings`: `ReviewFinding`, `parse_findings` and
  `extract_findings`, which pulls a JSON array of findings out of free-form
  agent output: a raw array, a fenced code block, or an array embedded in
  prose. Failures raise `FindingsError`.
- `crobot.updates`: helpers for reading the agent's `session/update`
  notifications and prompt responses (`parse_content`,
  `extract_response_text`, `extract_tool_name`, `extract_tool_input`,
  `extract_tool_output`, `summarize_json`, `cap_lines`).
- `crobot.session`: `Session` runs the ACP `initialize` handshake, creates a
  session (recording `current_model` and `available_models`), sends prompts
  and returns a `SessionResult` with `final_text` and `stop_reason`. It writes
  the agent's streamed output to `stream_writer`, routes file requests to an
  `FSHandler`, and auto-approves permission requests by choosing the first
  allow-like option.

## Example

```python
import sys

from crobot.findings import extract_findings
from crobot.review_prompt import ChangedFile, PRContext, build_review_prompt
from crobot.rpc import Client, ClientConfig
from crobot.session import Session

pr = PRContext(
    title="Add auth",
    author="alice",
    source_branch="feat/auth",
    target_branch="main",
    state="OPEN",
    files=[ChangedFile(path="auth.py", status="added")],
)

with Client(ClientConfig(command="my-acp-agent")) as client:
    session = Session(client, stream_writer=sys.stderr)
    session.initialize(timeout=30)
    result = session.prompt(build_review_prompt(pr), timeout=600)
    session.close()

for finding in extract_findings(result.final_text):
    print(finding.path, finding.line, finding.severity, finding.message)
```

Replace `my-acp-agent` with the command of an agent that speaks ACP.

## What it does not do

crobot is a library only: it has no command-line program. It does not load
configuration files, fetch pull requests or diffs from a hosting service, write
per-file diffs to disk, or post findings back as comments; the caller builds
the `PRContext` and decides what to do with the findings.
"""
Unit tests for ClaudeCLIQuery
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from utils.agent.cli_executor import CLIConfig, ClaudeCLIQuery
from workflow_engine.types import QueryOptions, QueryRequest


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process fed from canned output"""

    def __init__(self, lines=None, stderr=b"", returncode=0, eof=True):
        self.stdout = asyncio.StreamReader()
        for line in lines or []:
            data = line if isinstance(line, bytes) else json.dumps(line).encode()
            self.stdout.feed_data(data + b"\n")
        if eof:
            self.stdout.feed_eof()
        self.stderr = asyncio.StreamReader()
        self.stderr.feed_data(stderr)
        self.stderr.feed_eof()
        self._exit_code = returncode
        self.returncode = None
        self.killed = False

    async def wait(self):
        if self.returncode is None:
            self.returncode = self._exit_code
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9


async def collect(query, request):
    return [message async for message in query(request)]


class TestBuildCommand:
    """Tests for command construction"""

    def test_minimal_command(self):
        """Test the flags every invocation carries"""
        query = ClaudeCLIQuery()
        cmd = query.build_command(QueryRequest(prompt="do it"))

        assert cmd == ["claude", "-p", "do it", "--output-format", "stream-json", "--verbose"]

    def test_full_options(self):
        """Test that every option maps to its CLI flag"""
        query = ClaudeCLIQuery(CLIConfig(cli_path="/usr/local/bin/claude", additional_cli_args=["--x"]))
        schema = {"type": "object"}
        request = QueryRequest(
            prompt="p",
            options=QueryOptions(
                system_prompt="sys",
                allowed_tools=["Read", "Grep"],
                output_format={"type": "json_schema", "schema": schema},
                model="opus",
                permission_mode="bypassPermissions",
                allow_dangerously_skip_permissions=True,
                mcp_servers={"issues": {"command": "issues-server"}},
                setting_sources=["project", "user"],
            ),
        )

        cmd = query.build_command(request)

        assert cmd[0] == "/usr/local/bin/claude"
        assert cmd[cmd.index("--model") + 1] == "opus"
        assert cmd[cmd.index("--system-prompt") + 1] == "sys"
        assert cmd[cmd.index("--allowedTools") + 1] == "Read,Grep"
        assert cmd[cmd.index("--permission-mode") + 1] == "bypassPermissions"
        assert "--dangerously-skip-permissions" in cmd
        assert cmd[cmd.index("--setting-sources") + 1] == "project,user"
        assert json.loads(cmd[cmd.index("--mcp-config") + 1]) == {
            "mcpServers": {"issues": {"command": "issues-server"}}
        }
        assert json.loads(cmd[cmd.index("--json-schema") + 1]) == schema
        assert cmd[-1] == "--x"


class TestExecute:
    """Tests for running the CLI"""

    @pytest.mark.asyncio
    async def test_yields_messages(self):
        """Test that each JSON line is yielded in order, skipping noise"""
        process = FakeProcess(
            [
                {"type": "system", "subtype": "init"},
                b"not json",
                {"type": "result", "subtype": "success", "structured_output": {"ok": True}},
            ]
        )

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            messages = await collect(ClaudeCLIQuery(), QueryRequest(prompt="p"))

        assert [m["type"] for m in messages] == ["system", "result"]
        assert messages[-1]["structured_output"] == {"ok": True}

    @pytest.mark.asyncio
    async def test_parses_json_result_text(self):
        """Test that a JSON result string fills structured_output when a schema was requested"""
        process = FakeProcess([{"type": "result", "subtype": "success", "result": '{"n": 1}'}])
        request = QueryRequest(
            prompt="p", options=QueryOptions(output_format={"type": "json_schema", "schema": {}})
        )

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            messages = await collect(ClaudeCLIQuery(), request)

        assert messages[0]["structured_output"] == {"n": 1}

    @pytest.mark.asyncio
    async def test_plain_result_text_left_alone(self):
        process = FakeProcess([{"type": "result", "subtype": "success", "result": "done"}])
        request = QueryRequest(
            prompt="p", options=QueryOptions(output_format={"type": "json_schema", "schema": {}})
        )

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            messages = await collect(ClaudeCLIQuery(), request)

        assert "structured_output" not in messages[0]

    @pytest.mark.asyncio
    async def test_nonzero_exit_without_result(self):
        """Test that a crash becomes an error result message"""
        process = FakeProcess([], stderr=b"boom", returncode=2)

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            messages = await collect(ClaudeCLIQuery(), QueryRequest(prompt="p"))

        assert len(messages) == 1
        assert messages[0]["type"] == "result"
        assert messages[0]["subtype"] == "error_during_execution"
        assert "exit code 2" in messages[0]["errors"][0]
        assert "boom" in messages[0]["errors"][0]

    @pytest.mark.asyncio
    async def test_nonzero_exit_after_result(self):
        """Test that the CLI's own result is not followed by a synthetic one"""
        process = FakeProcess(
            [{"type": "result", "subtype": "error_max_turns", "errors": ["too long"]}], returncode=1
        )

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            messages = await collect(ClaudeCLIQuery(), QueryRequest(prompt="p"))

        assert [m["subtype"] for m in messages] == ["error_max_turns"]

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        """Test that a hung CLI is killed and reported"""
        process = FakeProcess([{"type": "system"}], eof=False)

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            messages = await collect(ClaudeCLIQuery(CLIConfig(timeout=0.05)), QueryRequest(prompt="p"))

        assert process.killed
        assert messages[-1]["subtype"] == "error_during_execution"
        assert "timed out" in messages[-1]["errors"][0]

    @pytest.mark.asyncio
    async def test_missing_cli(self):
        """Test that a missing executable raises FileNotFoundError"""
        with patch("asyncio.create_subprocess_exec", new=AsyncMock(side_effect=FileNotFoundError())):
            with pytest.raises(FileNotFoundError, match="CLI not found"):
                await collect(ClaudeCLIQuery(CLIConfig(cli_path="nope")), QueryRequest(prompt="p"))

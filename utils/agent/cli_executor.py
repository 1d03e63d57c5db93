"""
CLI Executor Module

Runs agent steps through the Claude CLI. ClaudeCLIQuery is a query function:
calling it with a QueryRequest starts the CLI in stream-json mode and yields
each message it prints.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from workflow_engine.types import Message, QueryRequest, is_result_message

logger = logging.getLogger(__name__)

ERROR_SUBTYPE = "error_during_execution"


@dataclass
class CLIConfig:
    """Configuration for CLI execution"""

    cli_path: str = "claude"
    """Path to the CLI executable"""

    timeout: Optional[float] = None
    """Timeout for one CLI invocation in seconds (None for no timeout)"""

    additional_cli_args: List[str] = field(default_factory=list)
    """Additional CLI arguments to pass"""

    env: Optional[Dict[str, str]] = None
    """Environment for the CLI process (None to inherit)"""


def error_result(message: str) -> Message:
    """A terminal error message in the shape the CLI itself emits."""
    return {"type": "result", "subtype": ERROR_SUBTYPE, "is_error": True, "errors": [message]}


class ClaudeCLIQuery:
    """
    Query function backed by the Claude CLI.

    Example:
        query_fn = ClaudeCLIQuery(CLIConfig(timeout=1800))
        async for message in query_fn(request):
            ...
    """

    def __init__(self, config: Optional[CLIConfig] = None):
        """
        Initialize the CLI query function.

        Args:
            config: CLI configuration
        """
        self.config = config or CLIConfig()

    def build_command(self, request: QueryRequest) -> List[str]:
        """
        Build the CLI command for a request.

        Args:
            request: Prompt and options of one dispatch

        Returns:
            List of command arguments
        """
        options = request.options
        cmd = [
            self.config.cli_path,
            "-p",
            request.prompt,
            "--output-format",
            "stream-json",
            "--verbose",
        ]

        if options.model:
            cmd.extend(["--model", options.model])
        if options.system_prompt:
            cmd.extend(["--system-prompt", options.system_prompt])
        if options.allowed_tools:
            cmd.extend(["--allowedTools", ",".join(options.allowed_tools)])
        if options.permission_mode:
            cmd.extend(["--permission-mode", options.permission_mode])
        if options.allow_dangerously_skip_permissions:
            cmd.append("--dangerously-skip-permissions")
        if options.setting_sources:
            cmd.extend(["--setting-sources", ",".join(options.setting_sources)])
        if options.mcp_servers:
            cmd.extend(["--mcp-config", json.dumps({"mcpServers": options.mcp_servers})])
        if options.output_format and options.output_format.get("schema") is not None:
            cmd.extend(["--json-schema", json.dumps(options.output_format["schema"])])

        cmd.extend(self.config.additional_cli_args)
        return cmd

    async def __call__(self, request: QueryRequest) -> AsyncIterator[Message]:
        """
        Run the CLI and yield its messages.

        Raises:
            FileNotFoundError: If the CLI executable is not installed
        """
        cmd = self.build_command(request)
        wants_structured = bool(request.options.output_format)
        logger.debug(f"Executing: {' '.join(cmd[:2])} [prompt...] ({len(request.prompt)} chars)")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=request.options.cwd,
                env=self.config.env,
            )
        except FileNotFoundError as e:
            raise FileNotFoundError(
                f"CLI not found at: {self.config.cli_path}. Please ensure claude is installed."
            ) from e

        stderr_task = asyncio.ensure_future(process.stderr.read())
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.timeout if self.config.timeout else None
        saw_result = False

        try:
            while True:
                remaining = None if deadline is None else max(deadline - loop.time(), 0)
                try:
                    line = await asyncio.wait_for(process.stdout.readline(), timeout=remaining)
                except asyncio.TimeoutError:
                    logger.error(f"CLI execution timed out after {self.config.timeout} seconds")
                    yield error_result(f"CLI execution timed out after {self.config.timeout} seconds")
                    return
                if not line:
                    break

                message = self._parse_line(line)
                if message is None:
                    continue
                if is_result_message(message):
                    saw_result = True
                    if wants_structured:
                        self._fill_structured_output(message)
                yield message

            await process.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace").strip()

            if process.returncode != 0 and not saw_result:
                error_msg = f"CLI failed with exit code {process.returncode}"
                if stderr:
                    error_msg += f"\nStderr: {stderr}"
                logger.error(error_msg)
                yield error_result(error_msg)
            elif stderr:
                logger.warning(f"CLI stderr: {stderr}")
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()
            if not stderr_task.done():
                stderr_task.cancel()

    @staticmethod
    def _parse_line(line: bytes) -> Optional[Message]:
        text = line.decode("utf-8", errors="replace").strip()
        if not text:
            return None
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            logger.debug(f"Ignoring non-JSON CLI output: {text[:200]}")
            return None
        return message if isinstance(message, dict) else None

    @staticmethod
    def _fill_structured_output(message: Dict[str, Any]):
        """Parse a JSON ``result`` string into structured_output when it is missing."""
        if message.get("structured_output") is not None:
            return
        result = message.get("result")
        if not isinstance(result, str):
            return
        try:
            message["structured_output"] = json.loads(result)
        except json.JSONDecodeError:
            logger.debug("Result text is not JSON; leaving structured_output unset")

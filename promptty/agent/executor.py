"""Claude Code CLI subprocess executor.

Spawns the agent CLI as an async subprocess and parses its
``--output-format stream-json`` output.

Features:
- Async subprocess execution with streaming JSON output
- Memory-bounded output reading (64KB chunks)
- Process lifecycle management (tracking, timeout, cleanup)
- Session resume via ``--resume <session_id>``
- Callback routing through ``PROMPTTY_SESSION_ID``

Every failure, including a timeout, is returned as an unsuccessful
``ExecuteResult`` rather than raised, so callers have one delivery path.
"""

import asyncio
import json
import os
import sys
import time
import uuid
from asyncio.subprocess import Process
from collections import deque
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

from ..exceptions import ExecutorProcessError, ExecutorTimeoutError
from ..utils.constants import (
    CALLBACK_URL_ENV_VAR,
    DEFAULT_AGENT_TIMEOUT_SECONDS,
    DEFAULT_ALLOWED_TOOLS,
    MCP_SERVER_NAME,
    SESSION_ENV_VAR,
)
from .parser import extract_final_result, extract_tools, parse_stream_line, to_stream_update
from .prompt import build_context_prompt
from .types import ExecuteOptions, ExecuteResult, UpdateSink

logger = structlog.get_logger()

# Buffer limits
_MAX_MESSAGE_BUFFER = 1000
_STREAM_CHUNK_SIZE = 65536  # 64 KB

TIMEOUT_OUTPUT = "Execution timed out"
TIMEOUT_ERROR = "Timeout"


class ClaudeExecutor:
    """Run agent prompts via CLI subprocesses."""

    def __init__(
        self,
        callback_url: Optional[str] = None,
        default_timeout_seconds: float = DEFAULT_AGENT_TIMEOUT_SECONDS,
        enable_mcp_bridge: bool = False,
    ) -> None:
        self.callback_url = callback_url
        self.default_timeout_seconds = default_timeout_seconds
        self.enable_mcp_bridge = enable_mcp_bridge
        self.active_processes: Dict[str, Process] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, prompt: str, options: ExecuteOptions) -> ExecuteResult:
        """Run one prompt to completion (or timeout) and return the result."""
        start_time = time.monotonic()
        execution_id = str(uuid.uuid4())[:8]
        timeout = options.timeout_seconds or self.default_timeout_seconds

        logger.info(
            "Starting agent execution",
            execution_id=execution_id,
            working_directory=str(options.working_directory),
            resume_session_id=options.session_id,
            prompt_preview=prompt[:100],
        )

        cmd = self._build_command(prompt, options)
        try:
            process = await self._start_process(
                cmd, options.working_directory, self._build_env(options)
            )
        except ExecutorProcessError as e:
            logger.error(
                "Failed to start agent process",
                execution_id=execution_id,
                command=cmd[0],
                error=str(e),
            )
            return ExecuteResult(
                success=False,
                output="",
                error=str(e),
                duration_ms=self._elapsed_ms(start_time),
            )

        self.active_processes[execution_id] = process
        try:
            return await self._run_with_timeout(
                process, options.on_update, start_time, timeout
            )
        except ExecutorTimeoutError:
            logger.warning(
                "Agent execution timed out, killing process",
                execution_id=execution_id,
                timeout=timeout,
            )
            await self._kill(process)
            return ExecuteResult(
                success=False,
                output=TIMEOUT_OUTPUT,
                error=TIMEOUT_ERROR,
                duration_ms=self._elapsed_ms(start_time),
            )
        except Exception as e:
            await self._kill(process)
            logger.error(
                "Agent execution failed", execution_id=execution_id, error=str(e)
            )
            return ExecuteResult(
                success=False,
                output="",
                error=str(e) or type(e).__name__,
                duration_ms=self._elapsed_ms(start_time),
            )
        finally:
            self.active_processes.pop(execution_id, None)

    async def kill_all(self) -> None:
        """Kill every tracked subprocess."""
        for eid, proc in list(self.active_processes.items()):
            await self._kill(proc)
            logger.info("Killed agent process", execution_id=eid)
        self.active_processes.clear()

    def get_active_process_count(self) -> int:
        return len(self.active_processes)

    # ------------------------------------------------------------------
    # Command building
    # ------------------------------------------------------------------

    def _build_command(self, prompt: str, options: ExecuteOptions) -> List[str]:
        """Build the CLI argument list."""
        cmd: List[str] = [
            options.command,
            "-p",
            prompt,
            "--output-format",
            "stream-json",
            "--verbose",
        ]

        if options.session_id:
            cmd.extend(["--resume", options.session_id])

        if options.skip_permissions:
            cmd.append("--dangerously-skip-permissions")
        else:
            tools = (
                options.allowed_tools
                if options.allowed_tools is not None
                else DEFAULT_ALLOWED_TOOLS
            )
            if tools:
                cmd.extend(["--allowedTools", ",".join(tools)])

        system_parts: List[str] = []
        if options.message_context:
            system_parts.append(build_context_prompt(options.message_context))
        if options.system_prompt:
            system_parts.append(options.system_prompt)
        if system_parts:
            cmd.extend(["--system-prompt", "\n".join(system_parts)])

        if self.enable_mcp_bridge and options.callback_session_id:
            cmd.extend(["--mcp-config", json.dumps(self._mcp_config(options))])

        return cmd

    def _mcp_config(self, options: ExecuteOptions) -> Dict[str, Any]:
        return {
            "mcpServers": {
                MCP_SERVER_NAME: {
                    "command": sys.executable,
                    "args": ["-m", "promptty.mcp"],
                    "env": {
                        SESSION_ENV_VAR: options.callback_session_id or "",
                        CALLBACK_URL_ENV_VAR: self.callback_url or "",
                    },
                }
            }
        }

    def _build_env(self, options: ExecuteOptions) -> Dict[str, str]:
        env = dict(os.environ)
        # A parent Claude Code session would otherwise leak into the child.
        env.pop("CLAUDECODE", None)
        env[SESSION_ENV_VAR] = options.callback_session_id or ""
        if self.callback_url:
            env[CALLBACK_URL_ENV_VAR] = self.callback_url
        return env

    # ------------------------------------------------------------------
    # Subprocess management
    # ------------------------------------------------------------------

    async def _start_process(
        self, cmd: List[str], cwd: Path, env: Dict[str, str]
    ) -> Process:
        """Start the CLI subprocess with stdout/stderr pipes."""
        logger.debug("Starting agent process", command=cmd[0], cwd=str(cwd))
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
                env=env,
            )
        except OSError as e:
            raise ExecutorProcessError(f"Failed to start {cmd[0]}: {e}") from e

    async def _run_with_timeout(
        self,
        process: Process,
        on_update: Optional[UpdateSink],
        start_time: float,
        timeout: float,
    ) -> ExecuteResult:
        try:
            return await asyncio.wait_for(
                self._handle_process_output(process, on_update, start_time),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExecutorTimeoutError(f"Agent did not finish within {timeout}s") from e

    @staticmethod
    async def _kill(process: Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()

    # ------------------------------------------------------------------
    # Output handling
    # ------------------------------------------------------------------

    async def _handle_process_output(
        self,
        process: Process,
        on_update: Optional[UpdateSink],
        start_time: float,
    ) -> ExecuteResult:
        """Read streaming JSON from the process, invoke the sink, return result."""
        messages: deque[Dict[str, Any]] = deque(maxlen=_MAX_MESSAGE_BUFFER)

        assert process.stdout is not None  # guaranteed by _start_process
        assert process.stderr is not None

        stderr_task = asyncio.create_task(process.stderr.read())
        try:
            async for line in self._read_stream_bounded(process.stdout):
                msg = parse_stream_line(line)
                if msg is None:
                    continue
                messages.append(msg)

                if msg.get("type") == "result" or on_update is None:
                    continue
                update = to_stream_update(msg)
                if update is not None:
                    await self._deliver_update(on_update, update)

            stderr_bytes = await stderr_task
        finally:
            if not stderr_task.done():
                stderr_task.cancel()
        await process.wait()

        duration_ms = self._elapsed_ms(start_time)
        collected = list(messages)
        final = extract_final_result(collected)
        stderr_text = stderr_bytes.decode("utf-8", errors="replace").strip()

        if process.returncode and not final.is_error:
            logger.error(
                "Agent exited with error",
                returncode=process.returncode,
                stderr=stderr_text[:500],
            )
            return ExecuteResult(
                success=False,
                output=stderr_text or f"Process exited with code {process.returncode}",
                error=stderr_text or f"exit code {process.returncode}",
                external_session_id=final.session_id,
                duration_ms=duration_ms,
            )

        logger.info(
            "Agent execution completed",
            duration_ms=duration_ms,
            session_id=final.session_id,
            is_error=final.is_error,
            output_length=len(final.output),
        )
        return ExecuteResult(
            success=not final.is_error,
            output=final.output,
            error=final.output if final.is_error else None,
            external_session_id=final.session_id,
            duration_ms=duration_ms,
            num_turns=final.num_turns,
            cost=final.cost,
            tools_used=extract_tools(collected),
        )

    @staticmethod
    async def _deliver_update(on_update: UpdateSink, update: Any) -> None:
        try:
            outcome = on_update(update)
            if asyncio.iscoroutine(outcome):
                await outcome
        except Exception as cb_err:
            logger.warning("Stream callback error", error=str(cb_err))

    async def _read_stream_bounded(
        self, stream: asyncio.StreamReader
    ) -> AsyncIterator[str]:
        """Yield decoded lines from an async stream with bounded reads.

        Lines are split on raw bytes and decoded whole, so a multi-byte
        character straddling two reads is not mangled.
        """
        buffer = b""
        while True:
            chunk = await stream.read(_STREAM_CHUNK_SIZE)
            if not chunk:
                if buffer:
                    yield buffer.decode("utf-8", errors="replace")
                break

            buffer += chunk
            while b"\n" in buffer:
                line, buffer = buffer.split(b"\n", 1)
                yield line.decode("utf-8", errors="replace")

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)

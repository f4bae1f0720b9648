"""External command execution with line-by-line progress streaming."""

import asyncio
import re
import shlex
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from deployer.core.events import EventSink, ProgressEvent
from deployer.core.exceptions import CommandFailure, CommandTimeoutError, LaunchError
from deployer.utils.logging import get_logger

logger = get_logger(__name__)

REDACTED = "***"
READ_CHUNK_SIZE = 64 * 1024

# CLIs redraw progress with a bare carriage return
_LINE_BREAK = re.compile(rb"\r\n|\r|\n")


@dataclass(frozen=True)
class CommandResult:
    """Output of a command that exited successfully."""

    stdout: str
    stderr: str
    exit_code: int


def mask(text: str, secrets: Iterable[str]) -> str:
    """Replace every secret value in ``text`` with a placeholder.

    Only whole tokens are replaced, so a short value such as ``k`` does not
    eat the letters of unrelated words.
    """
    for secret in secrets:
        if secret:
            pattern = rf"(?<![A-Za-z0-9_]){re.escape(secret)}(?![A-Za-z0-9_])"
            text = re.sub(pattern, REDACTED, text)
    return text


def format_command(program: str, args: Sequence[str], secrets: Sequence[str] = ()) -> str:
    """Quote a command line for display with secret arguments masked.

    An argument equal to a secret shows as ``***``, a ``KEY=secret`` pair as
    ``KEY=***``; secrets embedded elsewhere are masked as in ``mask``.
    """
    shown = []
    for arg in [program, *args]:
        key, sep, value = arg.partition("=")
        if arg in secrets:
            shown.append(REDACTED)
        elif sep and value and value in secrets:
            shown.append(f"{shlex.quote(key)}={REDACTED}")
        else:
            shown.append(shlex.quote(arg))
    return mask(" ".join(shown), secrets)


async def _emit_line(
    raw: bytes,
    label: str,
    lines: list[str],
    sink: EventSink,
    secrets: Sequence[str],
    log,
) -> None:
    line = raw.decode(errors="replace").strip()
    if not line:
        return
    lines.append(line)
    shown = mask(line, secrets)
    log.debug("command.output", stream=label, line=shown[:200])
    await sink.emit(ProgressEvent(message=f"[{label}] {shown}"))


async def _pump(
    stream: asyncio.StreamReader,
    label: str,
    lines: list[str],
    sink: EventSink,
    secrets: Sequence[str],
    log,
) -> None:
    # Chunked reads: readline() gives up on lines longer than the stream limit
    pending = b""
    while chunk := await stream.read(READ_CHUNK_SIZE):
        *complete, pending = _LINE_BREAK.split(pending + chunk)
        for raw in complete:
            await _emit_line(raw, label, lines, sink, secrets, log)
    if pending:
        await _emit_line(pending, label, lines, sink, secrets, log)


async def _reap(process: asyncio.subprocess.Process) -> None:
    """Kill the child if it is still running and wait for it to exit."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


async def run_command(
    program: str,
    args: Sequence[str],
    sink: EventSink,
    *,
    redact: Sequence[str] = (),
    timeout: float | None = None,
    log_context: dict[str, str] | None = None,
) -> CommandResult:
    """Run ``program`` with ``args`` and stream its output into ``sink``.

    Both pipes are read concurrently and every non-empty line is emitted as
    informational progress tagged with its stream. Writing to stderr is not
    treated as a failure; only the exit status is.

    Args:
        program: Executable name or path
        args: Arguments passed to the program
        sink: Receives one event per output line
        redact: Secret values masked in the command string, output and errors
        timeout: Kill the child after this many seconds; None waits forever
        log_context: Extra key/values bound to log lines

    Returns:
        The captured output of a zero-exit run

    Raises:
        LaunchError: The program could not be started
        CommandFailure: The program exited non-zero
        CommandTimeoutError: ``timeout`` elapsed before the program exited
    """
    log = logger.bind(**(log_context or {}))
    command = format_command(program, args, redact)

    await sink.emit(ProgressEvent(message=f"Executing: {command}..."))
    log.info("command.started", command=command)

    try:
        process = await asyncio.create_subprocess_exec(
            program,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        log.error("command.launch_failed", command=command, error=str(e))
        raise LaunchError(command, mask(str(e), redact)) from e

    stdout_lines: list[str] = []
    stderr_lines: list[str] = []

    async def communicate() -> int:
        await asyncio.gather(
            _pump(process.stdout, "stdout", stdout_lines, sink, redact, log),
            _pump(process.stderr, "stderr", stderr_lines, sink, redact, log),
        )
        return await process.wait()

    exit_code: int | None = None
    try:
        exit_code = await asyncio.wait_for(communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        log.error("command.timed_out", command=command, timeout=timeout)
        raise CommandTimeoutError(
            command, timeout, mask("\n".join(stderr_lines), redact)
        ) from None
    finally:
        # Timeout, cancellation or a failing sink: never leave the child running
        if exit_code is None:
            await _reap(process)

    stdout = "\n".join(stdout_lines)
    stderr = "\n".join(stderr_lines)

    log.info("command.exited", command=command, exit_code=exit_code)
    if exit_code != 0:
        raise CommandFailure(command, exit_code, mask(stderr, redact))

    await sink.emit(
        ProgressEvent(message=f'Command "{command}" completed successfully.')
    )
    return CommandResult(stdout=stdout, stderr=stderr, exit_code=exit_code)

# src/tools/scanner_process.py
from .base import ScanRunner, ScanReporter
from api.schemas import StatusUpdate
from pydantic import ValidationError
import asyncio
import json
import logging

# Exit code reported when the scanner executable cannot be found, as a shell would.
COMMAND_NOT_FOUND = 127
READ_CHUNK = 64 * 1024
# Seconds a terminated scanner gets before it is killed.
TERMINATE_GRACE = 5


class SubprocessScanRunner(ScanRunner):
    """
    Runs the external flow scanner and translates its stdout:
      {"status": {"text": [...], "percentage": n}}  -> progress update
      {"flow": {...}}                                -> collected result record
      anything else                                  -> log text
    stderr always goes to the log. Lines longer than scanner.max_line_bytes are
    dropped with an error in the log.
    """

    def __init__(self, settings):
        super().__init__()
        self.command = list(settings.scanner.command) + ["--cores", str(settings.cores)]
        self.max_line_bytes = settings.scanner.max_line_bytes
        self.process = None
        self._cancelled = False

    async def run(self, reporter: ScanReporter) -> int:
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.max_line_bytes,
            )
        except FileNotFoundError:
            await reporter.append_log(f"Scanner command not found: {self.command[0]}\n")
            return COMMAND_NOT_FOUND
        logging.info(f"[scan] Scanner started pid={self.process.pid} cmd={self.command}")
        if self._cancelled:
            self._terminate()
        readers = [
            asyncio.ensure_future(self._read_stdout(reporter)),
            asyncio.ensure_future(self._read_stderr(reporter)),
        ]
        try:
            await asyncio.gather(*readers)
        except BaseException as e:
            logging.error(f"[scan] Reading scanner output failed, stopping pid={self.process.pid}: {e!r}")
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)
            await self._reap()
            raise
        return await self.process.wait()

    async def _read_stdout(self, reporter: ScanReporter) -> None:
        async for raw in self._lines(self.process.stdout, reporter):
            await self._handle_line(raw.decode(errors="replace"), reporter)

    async def _read_stderr(self, reporter: ScanReporter) -> None:
        async for raw in self._lines(self.process.stderr, reporter):
            await reporter.append_log(raw.decode(errors="replace"))

    async def _lines(self, stream, reporter: ScanReporter):
        """Yield complete lines of `stream`, skipping any longer than max_line_bytes."""
        pending = bytearray()
        dropping = False
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            pending.extend(chunk)
            while True:
                end = pending.find(b"\n")
                if end < 0:
                    break
                line = bytes(pending[:end + 1])
                del pending[:end + 1]
                if dropping:
                    # tail of a line already reported as too long
                    dropping = False
                elif len(line) > self.max_line_bytes:
                    await self._report_long_line(len(line), reporter)
                else:
                    yield line
            if len(pending) > self.max_line_bytes:
                if not dropping:
                    await self._report_long_line(len(pending), reporter)
                    dropping = True
                pending.clear()
        if pending and not dropping:
            yield bytes(pending)

    async def _report_long_line(self, size: int, reporter: ScanReporter) -> None:
        logging.error(f"[scan] Dropped scanner output line over {self.max_line_bytes} bytes (read {size})")
        await reporter.append_log(f"Scanner output line dropped: longer than {self.max_line_bytes} bytes\n")

    async def _handle_line(self, line: str, reporter: ScanReporter) -> None:
        message = None
        if line.lstrip().startswith("{"):
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                message = None
        if isinstance(message, dict) and "status" in message:
            try:
                status = StatusUpdate.model_validate(message["status"])
            except ValidationError as e:
                logging.error(f"[scan] Ignoring malformed status update: {e}")
                await reporter.append_log(f"Ignored malformed status update: {line.strip()[:200]}\n")
                return
            await reporter.update_status(status.text, status.percentage)
        elif isinstance(message, dict) and isinstance(message.get("flow"), dict):
            self.flows.append(message["flow"])
        else:
            await reporter.append_log(line)

    def cancel(self) -> None:
        self._cancelled = True
        if self.process is not None:
            self._terminate()

    def _terminate(self) -> None:
        if self.process.returncode is not None:
            return
        try:
            self.process.terminate()
        except ProcessLookupError:
            # exited between the returncode check and the signal
            pass

    async def _reap(self) -> None:
        self._terminate()
        try:
            await asyncio.wait_for(self.process.wait(), TERMINATE_GRACE)
        except asyncio.TimeoutError:
            logging.error(f"[scan] Scanner pid={self.process.pid} ignored SIGTERM, killing it")
            self.process.kill()
            await self.process.wait()

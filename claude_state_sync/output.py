"""NDJSON stream output for the watch command.

Writes one JSON object per line to stdout or a named pipe, for consumers such
as an editor job or a status bar's listen command.

Output formats:
- StatusUpdate: the visible status changed (state, icon, colour, text)
- ReconcileSignal: buffers should be re-read from disk
"""

import asyncio
import json
import logging
import os
import stat
import sys
from pathlib import Path
from typing import Optional, TextIO

from pydantic import BaseModel

from .models import ReconcileSignal, StatusUpdate

logger = logging.getLogger(__name__)


class OutputWriter:
    """NDJSON writer with named pipe support.

    A pipe without a reader drops messages instead of blocking the loop.
    """

    def __init__(self, pipe_path: Optional[Path] = None, stream: Optional[TextIO] = None) -> None:
        """Initialize the output writer.

        Args:
            pipe_path: Path to named pipe (FIFO). If None, writes to stream.
            stream: Output stream when no pipe is used (default stdout)
        """
        self.pipe_path = pipe_path
        self._stream = stream
        self._output: Optional[TextIO] = None
        self._lock = asyncio.Lock()
        self._running = False

    async def start(self) -> None:
        """Create the named pipe if one is configured, else use the stream."""
        self._running = True

        if self.pipe_path:
            self._setup_pipe()
        else:
            self._output = self._stream or sys.stdout
            logger.debug("Output writer using stdout")

    async def stop(self) -> None:
        self._running = False

        if self.pipe_path and self._output is not None:
            try:
                self._output.close()
            except OSError as e:
                logger.debug(f"Error closing pipe: {e}")
            self._output = None

        logger.debug("Output writer stopped")

    def _setup_pipe(self) -> None:
        if not self.pipe_path:
            return

        self.pipe_path.parent.mkdir(parents=True, exist_ok=True)

        # Reuse an existing FIFO; recreating it would orphan connected readers
        if self.pipe_path.exists():
            if stat.S_ISFIFO(self.pipe_path.stat().st_mode):
                logger.info(f"Reusing existing named pipe at {self.pipe_path}")
                return
            self.pipe_path.unlink()

        os.mkfifo(self.pipe_path)
        logger.info(f"Created named pipe at {self.pipe_path}")

    def _ensure_pipe_open(self) -> bool:
        if not self.pipe_path:
            return self._output is not None

        if self._output is not None:
            return True

        try:
            # O_RDWR so open() never blocks waiting for a reader
            fd = os.open(str(self.pipe_path), os.O_RDWR | os.O_NONBLOCK)
            self._output = os.fdopen(fd, "w")
            logger.info(f"Opened pipe for writing: {self.pipe_path}")
            return True
        except OSError as e:
            logger.warning(f"Error opening pipe: {e}")
            return False

    async def write_update(self, update: StatusUpdate) -> None:
        await self._write_model(update)

    async def write_reconcile(self, signal: ReconcileSignal) -> None:
        await self._write_model(signal)

    async def _write_model(self, model: BaseModel) -> None:
        await self._write_json(model.model_dump(mode="json"))

    async def _write_json(self, data: dict) -> None:
        async with self._lock:
            if not self._running:
                return

            if self.pipe_path and not self._ensure_pipe_open():
                logger.debug("No pipe reader, dropping message")
                return

            if self._output is None:
                return

            try:
                line = json.dumps(data, separators=(",", ":"), ensure_ascii=False) + "\n"
                # A full pipe buffer must not stall the event loop
                await asyncio.wait_for(
                    asyncio.to_thread(self._sync_write, line),
                    timeout=1.0,
                )
            except asyncio.TimeoutError:
                logger.warning("Output write timed out, dropping message")
            except BrokenPipeError:
                logger.warning("Output reader disconnected")
                if self.pipe_path:
                    self._output = None
            except OSError as e:
                logger.error(f"Error writing output: {e}")

    def _sync_write(self, line: str) -> None:
        if self._output is not None:
            self._output.write(line)
            self._output.flush()

"""
Archive Extractor
=================
Streams submission PDFs out of a submissions export zip.

Zip members can only be decoded one after another, while PDF analysis wants
to fan out. ArchiveReader therefore runs the extraction on one dedicated
thread and hands members to the event loop through a bounded asyncio queue,
decoupling read order from processing order.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import io
import logging
import os
import shutil
import tempfile
import threading
import zipfile
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional, Union

from .errors import ArchiveError, EntryError

logger = logging.getLogger(__name__)

ArchiveSource = Union[str, "os.PathLike[str]", bytes, BinaryIO]

PDF_SUFFIX = ".pdf"
METADATA_SUFFIXES = (".yml", ".yaml")
IGNORED_PREFIXES = ("__MACOSX/",)

# Exceptions zipfile raises while decompressing a single damaged member
_ENTRY_READ_ERRORS = (
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    OSError,
    NotImplementedError,
    RuntimeError,
)

SPOOL_MAX_MEMORY = 64 * 1024 * 1024


@dataclass(frozen=True)
class ArchiveEntry:
    """One PDF member of the export."""
    filename: str
    data: bytes


ArchiveItem = Union[ArchiveEntry, EntryError]


# ─── Synchronous Extraction ───────────────────────────────────────────────────


def iter_pdf_entries(source: ArchiveSource) -> Iterator[ArchiveItem]:
    """
    Yield every PDF member of a zip archive.

    Non-PDF members are skipped and logged. A member that cannot be read is
    yielded as an EntryError so the remaining members are still processed.

    Args:
        source: Path, raw bytes, or a binary file object.

    Raises:
        ArchiveError: The container itself cannot be opened.
    """
    owned: Optional[BinaryIO] = None
    try:
        if isinstance(source, (str, os.PathLike)):
            zf = zipfile.ZipFile(source)
        else:
            owned = _as_seekable(source)
            zf = zipfile.ZipFile(owned)
    except (zipfile.BadZipFile, OSError, ValueError) as e:
        if owned is not None and owned is not source:
            owned.close()
        raise ArchiveError(f"cannot open submissions export: {e}") from e

    try:
        with zf:
            yield from _iter_members(zf)
    finally:
        if owned is not None and owned is not source:
            owned.close()


def _iter_members(zf: zipfile.ZipFile) -> Iterator[ArchiveItem]:
    for info in zf.infolist():
        filename = info.filename.replace("\\", "/")
        if info.is_dir() or filename.startswith(IGNORED_PREFIXES):
            continue

        if not filename.lower().endswith(PDF_SUFFIX):
            if filename.lower().endswith(METADATA_SUFFIXES):
                logger.info(f"Skipping metadata file: {filename}")
            else:
                logger.info(f"Skipping non-PDF zip entry: {filename}")
            continue

        try:
            data = zf.read(info)
        except _ENTRY_READ_ERRORS as e:
            logger.warning(f"Cannot read zip entry {filename}: {e}")
            yield EntryError(filename, f"cannot read zip entry file data: {e}")
            continue

        yield ArchiveEntry(filename=filename, data=data)


def _as_seekable(source: Union[bytes, BinaryIO]) -> BinaryIO:
    """Wrap bytes or a non-seekable stream into a seekable file object."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return io.BytesIO(source)
    if getattr(source, "seekable", None) and source.seekable():
        return source

    # Network responses and pipes: spool to memory, overflowing to disk
    spooled = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
    shutil.copyfileobj(source, spooled)
    spooled.seek(0)
    return spooled


# ─── Threaded Reader ──────────────────────────────────────────────────────────


class _Fatal:
    """Queue wrapper for an exception that ends the stream."""

    def __init__(self, error: BaseException):
        self.error = error


_END = object()


class ArchiveReader:
    """
    Reads archive members on a dedicated thread into a bounded asyncio queue.

    Usage:
        async with ArchiveReader(source, maxsize=32) as reader:
            async for item in reader:
                ...
    """

    def __init__(
        self,
        source: ArchiveSource,
        maxsize: int = 32,
        poll_interval: float = 0.1,
    ):
        self.source = source
        self.maxsize = maxsize
        self.poll_interval = poll_interval
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._finished = False

    def start(self):
        """Spawn the reader thread. Must be called from the event loop."""
        if self._thread is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="archive-reader",
        )
        self._thread.start()
        logger.debug("Spawned archive reader thread")

    def close(self):
        """Ask the reader thread to stop; does not wait for it."""
        self._stop.set()

    async def aclose(self):
        """
        Stop the reader thread and wait for it to exit.

        Must run on the reader's event loop while it is still open, so a
        put the thread abandons is cancelled there instead of being left
        pending on a closed loop.
        """
        self.close()
        if self._thread is None:
            return
        await self._loop.run_in_executor(None, self._thread.join)
        # Let the cancelled put task finish unwinding
        await asyncio.sleep(0)

    async def get(self) -> Optional[ArchiveItem]:
        """
        Next archive item, or None once the archive is exhausted.

        Raises:
            ArchiveError: The archive could not be opened.
        """
        if self._finished:
            return None
        self.start()
        item = await self._queue.get()
        if item is _END:
            self._finished = True
            return None
        if isinstance(item, _Fatal):
            self._finished = True
            raise item.error
        return item

    async def __aenter__(self) -> ArchiveReader:
        self.start()
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    def __aiter__(self) -> ArchiveReader:
        return self

    async def __anext__(self) -> ArchiveItem:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def _run(self):
        try:
            for item in iter_pdf_entries(self.source):
                if self._stop.is_set() or not self._put(item):
                    logger.debug("Archive reader stopped early")
                    return
        except Exception as e:
            self._put(_Fatal(e))
            return
        self._put(_END)

    def _put(self, item) -> bool:
        """Block until the loop accepts the item; False if the reader was closed."""
        try:
            future = asyncio.run_coroutine_threadsafe(
                self._queue.put(item), self._loop
            )
        except RuntimeError:
            # Event loop already closed
            return False

        while True:
            try:
                future.result(timeout=self.poll_interval)
                return True
            except concurrent.futures.TimeoutError:
                if self._stop.is_set():
                    if not self._loop.is_closed():
                        future.cancel()
                    return False
            except concurrent.futures.CancelledError:
                return False

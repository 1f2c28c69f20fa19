"""
jobs.py - Run scans and header decodes off the caller's thread.

Every request becomes a job executed on a worker thread.  The caller
talks to a job only through messages keyed by its job id:

- ``start_scan`` returns a job id immediately.  The job then posts zero or
  more :class:`ProgressMessage` followed by exactly one terminal message,
  either :class:`ResultMessage` or :class:`ErrorMessage`.
- ``get_headers`` blocks until its job finishes and returns the header
  tree, or ``{"error": "<message>"}`` if the decode failed.  It never
  raises for a bad file.

Jobs share nothing except the read-only :class:`TagDictionary`, which is
loaded on the first header request.
"""

import logging
import queue
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Union

from dicom_catalog.config import CONFIG
from dicom_catalog.header_tree import HeaderNode, HeaderTreeBuilder
from dicom_catalog.index_builder import CatalogIndex, scan_directory
from dicom_catalog.options import ScanOptions
from dicom_catalog.tag_dictionary import TagDictionary

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

@dataclass
class ProgressMessage:
    job_id: str
    percent: float
    current_path: Optional[str]
    type: str = field(default="progress", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "job_id": self.job_id,
                "percent": self.percent, "current_path": self.current_path}


@dataclass
class ResultMessage:
    job_id: str
    index: CatalogIndex
    type: str = field(default="result", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "job_id": self.job_id, "index": self.index.to_dict()}


@dataclass
class ErrorMessage:
    job_id: str
    error: str
    type: str = field(default="error", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "job_id": self.job_id, "error": self.error}


Message = Union[ProgressMessage, ResultMessage, ErrorMessage]
TERMINAL_TYPES = ("result", "error")


def new_job_id(prefix: str = "job") -> str:
    """``<prefix>_<epoch millis>_<6 hex chars>``"""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class JobRunner:
    """
    Thread-pool backed job executor.

    Parameters
    ----------
    max_workers : int, optional
        Worker threads.  Defaults to config value.
    dictionary : TagDictionary, optional
        Tag dictionary for header decodes.  When omitted the process-wide
        shared dictionary is loaded on first use.
    on_message : callable, optional
        Called with every scan message as it is posted, from the worker
        thread.  When set, scan messages are delivered only to the
        callback and :meth:`messages` / :meth:`wait` are unavailable.
    """

    def __init__(
        self,
        max_workers: Optional[int] = None,
        dictionary: Optional[TagDictionary] = None,
        on_message: Optional[Callable[[Message], None]] = None,
    ):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or CONFIG["jobs"]["max_workers"],
            thread_name_prefix="dicom-job",
        )
        self._dictionary = dictionary
        self._on_message = on_message
        self._queues: dict[str, "queue.Queue[Message]"] = {}
        self._lock = threading.Lock()

    # -- context manager ----------------------------------------------------

    def __enter__(self) -> "JobRunner":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # -- scans --------------------------------------------------------------

    def start_scan(self, root_path: str, options: Optional[ScanOptions] = None) -> str:
        """Start indexing *root_path*; returns the job id at once."""
        job_id = new_job_id("job")
        # With a callback nobody drains a queue, so none is kept.
        if self._on_message is None:
            with self._lock:
                self._queues[job_id] = queue.Queue()
        self._executor.submit(self._run_scan, job_id, root_path, options)
        logger.info("Started scan %s of %s", job_id, root_path)
        return job_id

    def messages(self, job_id: str, timeout: Optional[float] = None) -> Iterator[Message]:
        """
        Yield the messages of *job_id* in order, ending with the terminal one.

        Raises
        ------
        KeyError
            If *job_id* is unknown, its messages were already consumed, or
            the runner delivers to an ``on_message`` callback instead.
        queue.Empty
            If *timeout* seconds pass without a new message.
        """
        with self._lock:
            q = self._queues[job_id]
        try:
            while True:
                msg = q.get(timeout=timeout)
                yield msg
                if msg.type in TERMINAL_TYPES:
                    return
        finally:
            with self._lock:
                self._queues.pop(job_id, None)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Message:
        """Drain *job_id* and return its terminal message."""
        last = None
        for last in self.messages(job_id, timeout=timeout):
            pass
        return last

    def _post(self, msg: Message) -> None:
        if self._on_message is not None:
            try:
                self._on_message(msg)
            except Exception:
                logger.exception("on_message callback failed for %s", msg.job_id)
        with self._lock:
            q = self._queues.get(msg.job_id)
        if q is not None:
            q.put(msg)

    def _run_scan(self, job_id: str, root_path: str, options: Optional[ScanOptions]) -> None:
        def on_progress(percent: float, current_path: Optional[str]) -> None:
            self._post(ProgressMessage(job_id=job_id, percent=percent, current_path=current_path))

        try:
            index = scan_directory(root_path, on_progress=on_progress, options=options)
        except Exception as exc:
            logger.exception("Scan %s failed: %s", job_id, exc)
            self._post(ErrorMessage(job_id=job_id, error=str(exc) or type(exc).__name__))
            return
        self._post(ResultMessage(job_id=job_id, index=index))

    # -- headers ------------------------------------------------------------

    def _shared_dictionary(self) -> TagDictionary:
        if self._dictionary is None:
            self._dictionary = TagDictionary.shared()
        return self._dictionary

    def submit_headers(
        self, file_path: str, options: Optional[ScanOptions] = None
    ) -> "Future[Union[list[HeaderNode], dict[str, str]]]":
        """Queue a header decode; the future resolves to a tree or an error dict."""
        job_id = new_job_id("headers")
        return self._executor.submit(self._run_headers, job_id, file_path, options)

    def get_headers(
        self,
        file_path: str,
        options: Optional[ScanOptions] = None,
        timeout: Optional[float] = None,
    ) -> Union[list[HeaderNode], dict[str, str]]:
        """Decode *file_path* on a worker; returns the tree or ``{"error": ...}``."""
        return self.submit_headers(file_path, options).result(timeout=timeout)

    def _run_headers(
        self, job_id: str, file_path: str, options: Optional[ScanOptions]
    ) -> Union[list[HeaderNode], dict[str, str]]:
        try:
            builder = HeaderTreeBuilder(self._shared_dictionary(), options=options)
            headers = builder.decode(file_path)
        except Exception as exc:
            logger.warning("Header job %s failed for %s: %s", job_id, file_path, exc)
            return {"error": str(exc) or type(exc).__name__}
        logger.debug("Header job %s decoded %d top-level elements", job_id, len(headers))
        return headers

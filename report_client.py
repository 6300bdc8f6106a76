"""
Report lifecycle client for a MapFish print service.

A report is submitted, its status polled until the document is ready and
the download URL handed back:

    SUBMITTED -> POLLING -> DONE | ERRORED | TIMED_OUT | CANCELLED

Terminal states never change again. Waiting blocks the calling thread;
cancel() may be called from another thread and wakes the waiting one.

Usage:
    from print_config import PrintServiceConfig
    from report_client import ReportClient

    client = ReportClient(PrintServiceConfig(print_url="https://example.com/print/default"))
    job = client.request_report(spec)
    url = client.get_download_url(job)
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import requests

from print_config import PrintServiceConfig
from print_errors import (
    ReportCancelledError,
    ReportError,
    ReportFailedError,
    ReportTimeoutError,
    SubmissionError,
)

logger = logging.getLogger(__name__)


class ReportState(Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    DONE = "done"
    ERRORED = "errored"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({
    ReportState.DONE,
    ReportState.ERRORED,
    ReportState.TIMED_OUT,
    ReportState.CANCELLED,
})


@dataclass(eq=False)
class ReportJob:
    """One submitted report.

    Attributes:
        ref: Reference assigned by the print service
        status_url: Status URL as returned by the service, if any
        download_url: Set once the report is done
        state: Current lifecycle state
        error: Error message of a failed job
    """
    ref: str
    status_url: Optional[str] = None
    download_url: Optional[str] = None
    state: ReportState = ReportState.SUBMITTED
    error: Optional[str] = None
    _stop: threading.Event = field(default_factory=threading.Event, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


def _is_success(response) -> bool:
    return 200 <= response.status_code < 300


class ReportClient:
    """Submits print specs and follows the resulting report jobs.

    Args:
        config: Service URL and timing, read from the environment if omitted
        session: requests session to use (one is created if omitted)
    """

    def __init__(self, config: Optional[PrintServiceConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or PrintServiceConfig.from_env()
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": self.config.user_agent})

    @property
    def url(self) -> str:
        return self.config.print_url

    def request_report(self, spec: Dict[str, Any]) -> ReportJob:
        """POST a print spec and return the created job.

        Raises:
            SubmissionError: Transport failure, non-2xx answer or no ref in the answer
        """
        report_url = f"{self.url}/report.{spec['format']}"
        try:
            response = self.session.post(report_url, json=spec, timeout=self.config.request_timeout_s)
        except requests.RequestException as e:
            raise SubmissionError(f"Could not submit report to {report_url}: {e}")

        if not _is_success(response):
            raise SubmissionError(
                f"Print service rejected the report: HTTP {response.status_code}",
                status_code=response.status_code,
                response_text=response.text,
            )

        try:
            data = response.json()
        except ValueError:
            raise SubmissionError(
                "Print service answered with invalid JSON",
                status_code=response.status_code,
                response_text=response.text,
            )
        if not data.get("ref"):
            raise SubmissionError(
                "Print service answer has no report reference",
                status_code=response.status_code,
                response_text=response.text,
            )

        job = ReportJob(ref=data["ref"], status_url=data.get("statusURL"))
        logger.info("Report %s submitted to %s", job.ref, report_url)
        return job

    def get_status(self, ref: str) -> Dict[str, Any]:
        """Fetch the status document of a report.

        Raises:
            ReportError: Transport failure, non-2xx answer or invalid JSON
        """
        status_url = f"{self.url}/status/{ref}.json"
        try:
            response = self.session.get(status_url, timeout=self.config.request_timeout_s)
        except requests.RequestException as e:
            raise ReportError(f"Could not fetch report status: {e}", ref=ref)
        if not _is_success(response):
            raise ReportError(
                f"Status request failed: HTTP {response.status_code}",
                ref=ref,
                details={"status_code": response.status_code},
            )
        try:
            return response.json()
        except ValueError:
            raise ReportError("Status response is not valid JSON", ref=ref)

    def get_download_url(
        self,
        job: ReportJob,
        interval: Optional[float] = None,
        timeout: Optional[float] = None
    ) -> str:
        """Poll the job status until the report can be downloaded.

        The status is requested every `interval` seconds. Elapsed time is
        counted in intervals, starting after the first status request.

        Args:
            job: Job returned by request_report()
            interval: Seconds between status requests (config default)
            timeout: Seconds after which the job times out (config default)

        Returns:
            Download URL of the report

        Raises:
            ReportFailedError: The service reported an error for the job
            ReportError: A status request failed
            ReportTimeoutError: Not done before the timeout
            ReportCancelledError: cancel() was called while waiting
            ValueError: interval or timeout is not positive
        """
        interval = self.config.poll_interval_s if interval is None else interval
        timeout = self.config.timeout_s if timeout is None else timeout
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        with job._lock:
            if job.state == ReportState.SUBMITTED:
                job.state = ReportState.POLLING
        if job.is_terminal:
            return self._terminal_result(job, timeout)

        logger.info("Waiting for report %s (timeout=%ss, interval=%ss)", job.ref, timeout, interval)
        total_duration = -interval
        while True:
            if job._stop.wait(interval):
                return self._terminal_result(job, timeout)

            try:
                status = self.get_status(job.ref)
            except ReportError as e:
                self._settle(job, ReportState.ERRORED, error=str(e))
                return self._terminal_result(job, timeout, cause=e)

            if status.get("error"):
                self._settle(job, ReportState.ERRORED, error=str(status["error"]))
                return self._terminal_result(job, timeout)

            if status.get("done"):
                self._settle(job, ReportState.DONE, download_url=f"{self.url}/report/{job.ref}")
                return self._terminal_result(job, timeout)

            total_duration += interval
            if total_duration >= timeout:
                self._settle(job, ReportState.TIMED_OUT)
                return self._terminal_result(job, timeout)

    def cancel(self, job: ReportJob) -> bool:
        """Ask the service to cancel a job.

        Returns:
            True if the job was cancelled, False if it was already finished
            or the service refused

        Raises:
            ReportError: Transport failure
        """
        if job.is_terminal:
            logger.debug("Report %s already %s, not cancelling", job.ref, job.state.value)
            return False

        cancel_url = f"{self.url}/cancel/{job.ref}"
        try:
            response = self.session.delete(cancel_url, timeout=self.config.request_timeout_s)
        except requests.RequestException as e:
            raise ReportError(f"Could not cancel report: {e}", ref=job.ref)

        if not _is_success(response):
            logger.warning("Cancel of report %s refused: HTTP %s", job.ref, response.status_code)
            return False
        return self._settle(job, ReportState.CANCELLED)

    def print_report(
        self,
        spec: Dict[str, Any],
        interval: Optional[float] = None,
        timeout: Optional[float] = None
    ) -> str:
        """Submit a spec and wait for its download URL."""
        job = self.request_report(spec)
        return self.get_download_url(job, interval=interval, timeout=timeout)

    def _settle(self, job: ReportJob, state: ReportState, error: Optional[str] = None,
                download_url: Optional[str] = None) -> bool:
        """Move a job to a terminal state and wake its poller.

        Returns False if the job had already settled.
        """
        with job._lock:
            if job.is_terminal:
                return False
            job.state = state
            job.error = error
            job.download_url = download_url
            job._stop.set()
        logger.info("Report %s %s%s", job.ref, state.value, f": {error}" if error else "")
        return True

    @staticmethod
    def _terminal_result(job: ReportJob, timeout: float, cause: Optional[Exception] = None) -> str:
        if job.state == ReportState.DONE:
            return job.download_url
        if job.state == ReportState.CANCELLED:
            raise ReportCancelledError(ref=job.ref)
        if job.state == ReportState.TIMED_OUT:
            raise ReportTimeoutError(timeout, ref=job.ref)
        if cause is not None:
            raise cause
        raise ReportFailedError(job.error, ref=job.ref)

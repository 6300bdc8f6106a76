"""
Tests for report_client module.

The HTTP session is mocked, no print service is needed.

Run with: pytest tests/test_report_client.py -v
"""

import threading
import time
from unittest.mock import MagicMock, Mock

import pytest
import requests

from print_config import PrintServiceConfig
from print_errors import (
    ReportCancelledError,
    ReportError,
    ReportFailedError,
    ReportTimeoutError,
    SubmissionError,
)
from report_client import ReportClient, ReportJob, ReportState

PRINT_URL = "https://print.example.com/print/default"
SPEC = {"attributes": {"map": {}}, "format": "pdf", "layout": "A4 portrait"}

# Powers of two keep the elapsed time arithmetic exact
INTERVAL = 2 ** -7
TIMEOUT = 2 ** -5


def response(status_code=200, json_data=None, text=""):
    resp = Mock()
    resp.status_code = status_code
    resp.json.return_value = json_data
    resp.text = text
    return resp


@pytest.fixture
def session():
    mock_session = MagicMock()
    mock_session.headers = {}
    return mock_session


@pytest.fixture
def client(session):
    config = PrintServiceConfig(print_url=PRINT_URL + "/", poll_interval_s=INTERVAL, timeout_s=TIMEOUT)
    return ReportClient(config, session=session)


class TestRequestReport:
    """Tests for request_report."""

    def test_submit(self, client, session):
        """The spec is posted to report.<format>."""
        session.post.return_value = response(json_data={"ref": "abc-123", "statusURL": "/status/abc-123.json"})
        job = client.request_report(SPEC)

        session.post.assert_called_once()
        assert session.post.call_args[0][0] == f"{PRINT_URL}/report.pdf"
        assert session.post.call_args[1]["json"] == SPEC
        assert job.ref == "abc-123"
        assert job.status_url == "/status/abc-123.json"
        assert job.state == ReportState.SUBMITTED

    def test_user_agent(self, client, session):
        """The configured user agent is sent."""
        assert session.headers["User-Agent"] == client.config.user_agent

    def test_http_error(self, client, session):
        """A non-2xx answer is a submission error."""
        session.post.return_value = response(status_code=500, text="Internal Server Error")
        with pytest.raises(SubmissionError) as exc_info:
            client.request_report(SPEC)
        assert exc_info.value.status_code == 500
        assert "Internal Server Error" in str(exc_info.value)

    def test_transport_error(self, client, session):
        """A connection failure is a submission error."""
        session.post.side_effect = requests.ConnectionError("connection refused")
        with pytest.raises(SubmissionError):
            client.request_report(SPEC)

    def test_missing_ref(self, client, session):
        """An answer without reference is a submission error."""
        session.post.return_value = response(json_data={})
        with pytest.raises(SubmissionError):
            client.request_report(SPEC)


class TestGetDownloadUrl:
    """Tests for polling a job."""

    def test_done(self, client, session):
        """The download URL is returned once the report is done."""
        session.get.side_effect = [
            response(json_data={"done": False}),
            response(json_data={"done": True}),
        ]
        job = ReportJob(ref="abc")
        url = client.get_download_url(job)

        assert url == f"{PRINT_URL}/report/abc"
        assert job.state == ReportState.DONE
        assert job.download_url == url
        assert session.get.call_args[0][0] == f"{PRINT_URL}/status/abc.json"

    def test_application_error(self, client, session):
        """An error in the status fails the job."""
        session.get.return_value = response(json_data={"done": False, "error": "Out of memory"})
        job = ReportJob(ref="abc")
        with pytest.raises(ReportFailedError) as exc_info:
            client.get_download_url(job)
        assert "Out of memory" in str(exc_info.value)
        assert job.state == ReportState.ERRORED
        assert job.error == "Out of memory"

    def test_status_transport_error(self, client, session):
        """A failed status request fails the job."""
        session.get.side_effect = requests.ConnectionError("reset")
        job = ReportJob(ref="abc")
        with pytest.raises(ReportError):
            client.get_download_url(job)
        assert job.state == ReportState.ERRORED

    def test_timeout(self, client, session):
        """A report that is never done times out instead of hanging."""
        session.get.return_value = response(json_data={"done": False})
        job = ReportJob(ref="abc")
        with pytest.raises(TimeoutError) as exc_info:
            client.get_download_url(job)
        assert isinstance(exc_info.value, ReportTimeoutError)
        assert job.state == ReportState.TIMED_OUT
        # First poll at zero elapsed time, then one per interval up to the timeout
        assert session.get.call_count == TIMEOUT / INTERVAL + 1

    def test_explicit_interval_and_timeout(self, client, session):
        """Arguments override the configured timing."""
        session.get.return_value = response(json_data={"done": False})
        with pytest.raises(ReportTimeoutError):
            client.get_download_url(ReportJob(ref="abc"), interval=INTERVAL, timeout=2 * INTERVAL)
        assert session.get.call_count == 3

    @pytest.mark.parametrize("interval, timeout", [(0, 1), (-1, 1), (INTERVAL, 0)])
    def test_non_positive_timing_rejected(self, client, session, interval, timeout):
        """Zero or negative timing would poll forever, it is rejected up front."""
        job = ReportJob(ref="abc")
        with pytest.raises(ValueError):
            client.get_download_url(job, interval=interval, timeout=timeout)
        session.get.assert_not_called()
        assert job.state == ReportState.SUBMITTED

    def test_terminal_job_not_polled(self, client, session):
        """A finished job returns its result without new requests."""
        job = ReportJob(ref="abc", state=ReportState.DONE, download_url=f"{PRINT_URL}/report/abc")
        assert client.get_download_url(job) == f"{PRINT_URL}/report/abc"
        session.get.assert_not_called()


class TestCancel:
    """Tests for cancel."""

    def test_cancel(self, client, session):
        """A cancelled job fails the next wait."""
        session.delete.return_value = response(status_code=200)
        job = ReportJob(ref="abc")
        assert client.cancel(job) is True
        assert job.state == ReportState.CANCELLED
        assert session.delete.call_args[0][0] == f"{PRINT_URL}/cancel/abc"
        with pytest.raises(ReportCancelledError):
            client.get_download_url(job)
        session.get.assert_not_called()

    def test_cancel_wakes_poller(self, session):
        """Cancelling from another thread stops a running wait."""
        config = PrintServiceConfig(print_url=PRINT_URL, poll_interval_s=0.01, timeout_s=10)
        client = ReportClient(config, session=session)
        session.get.return_value = response(json_data={"done": False})
        session.delete.return_value = response(status_code=200)
        job = ReportJob(ref="abc")
        errors = []

        def wait():
            try:
                client.get_download_url(job)
            except ReportError as e:
                errors.append(e)

        poller = threading.Thread(target=wait)
        poller.start()
        time.sleep(0.05)
        assert client.cancel(job) is True
        poller.join(timeout=2)

        assert not poller.is_alive()
        assert len(errors) == 1
        assert isinstance(errors[0], ReportCancelledError)
        assert job.state == ReportState.CANCELLED

    def test_cancel_finished_job(self, client, session):
        """A finished job cannot be cancelled."""
        job = ReportJob(ref="abc", state=ReportState.DONE)
        assert client.cancel(job) is False
        session.delete.assert_not_called()
        assert job.state == ReportState.DONE

    def test_cancel_refused(self, client, session):
        """A refused cancel leaves the job running."""
        session.delete.return_value = response(status_code=404)
        job = ReportJob(ref="abc")
        assert client.cancel(job) is False
        assert job.state == ReportState.SUBMITTED


class TestPrintReport:
    """Tests for print_report."""

    def test_submit_and_wait(self, client, session):
        """Submit then poll until done."""
        session.post.return_value = response(json_data={"ref": "xyz"})
        session.get.return_value = response(json_data={"done": True})
        assert client.print_report(SPEC) == f"{PRINT_URL}/report/xyz"

"""Polling loops for scan runs (SOAP) and report generation (REST)."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Optional, Union

from .domain import CurrentStatus, ReportRequest, ReportStatusResponse, ScanStatus
from .rest_client import CxRestClient
from .soap_client import CxSoapClient

logger = logging.getLogger(__name__)

PROGRESS_MARKERS = {
    CurrentStatus.QUEUED: "X",
    CurrentStatus.UNZIPPING: "E",
    CurrentStatus.WORKING: ".",
    CurrentStatus.WAITING_TO_PROCESS: ".",
    CurrentStatus.UNKNOWN: "[U]",
}


class ScanWatcher:
    """Poll a scan run until it reaches a terminal status."""

    def __init__(self, soap: CxSoapClient, interval: float = 5.0, max_unknown: int = 2,
                 sleep: Callable[[float], None] = time.sleep,
                 on_progress: Optional[Callable[[str], None]] = None) -> None:
        self.soap = soap
        self.interval = interval
        self.max_unknown = max_unknown
        self._sleep = sleep
        self._on_progress = on_progress

    def _progress(self, marker: str) -> None:
        if self._on_progress:
            self._on_progress(marker)

    def wait(self, run_id: str) -> Optional[ScanStatus]:
        """Return the terminal status, or the last one seen once ``max_unknown`` polls were Unknown."""
        unknown = 0
        last: Optional[ScanStatus] = None
        while True:
            status = self.soap.get_scan_status(run_id)
            if status is not None:
                last = status
            current = status.current_status if status else CurrentStatus.UNKNOWN
            if current.is_terminal:
                logger.info("Run %s ended with status %s", run_id, current.value)
                return status

            if current is CurrentStatus.UNKNOWN:
                unknown += 1
                if unknown >= self.max_unknown:
                    logger.warning("Giving up on run %s after %d unknown statuses", run_id, unknown)
                    self._progress(PROGRESS_MARKERS[current])
                    return last
            self._progress(PROGRESS_MARKERS.get(current, "."))
            logger.debug(f"Run {run_id}: {current.value} {status.total_percent if status else 0}%")
            self._sleep(self.interval)


class ReportWatcher:
    """Register a report, wait for it to be generated, then download it."""

    def __init__(self, rest: CxRestClient, interval: float = 5.0, timeout: float = 600,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.rest = rest
        self.interval = interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    def wait(self, report_id: int) -> Optional[ReportStatusResponse]:
        deadline = self._clock() + self.timeout
        while True:
            status = self.rest.get_report_status(report_id)
            if status is not None and (status.is_ready or status.is_failed):
                return status
            if self._clock() >= deadline:
                logger.error("Report %s was not generated within %ss", report_id, self.timeout)
                return None
            self._sleep(self.interval)

    def download(self, request: ReportRequest, destination: Union[str, Path]) -> Optional[Path]:
        response = self.rest.register_report(request)
        if response is None or not response.report_id:
            return None
        logger.info("Report %s requested for scan %s", response.report_id, request.scan_id)

        status = self.wait(response.report_id)
        if status is None:
            return None
        if status.is_failed:
            logger.error("Report %s failed to generate", response.report_id)
            return None

        content = self.rest.get_report(response.report_id)
        if content is None:
            return None
        path = Path(destination)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.info("Report saved to %s (%d bytes)", path, len(content))
        return path

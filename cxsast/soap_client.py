"""
Client for the legacy SOAP SDK web service.

The SDK endpoint is discovered through the resolver service on first use and
cached together with the session id until ``logout()``. Use it as a context
manager so the session is closed on exit::

    with CxSoapClient(cfg) as soap:
        if soap.login(user, password):
            for preset in soap.get_presets():
                print(preset.preset_name)
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import requests

from .config import CxConfig
from .domain import (
    ConfigurationSet,
    Group,
    ProjectDisplayData,
    ProjectScannedDisplayData,
    ProjectSettings,
    ReportStatus,
    ReportType,
    ScanStatus,
    ScanSummary,
    SoapPreset,
    SourceCodeSettings,
    UserData,
    decode_report,
)
from .errors import ResponseError, SessionExpiredError
from .session import build_session
from .soap_envelope import SoapList, as_list, build_envelope, parse_envelope

logger = logging.getLogger(__name__)

API_VERSION = 1
LCID_EN_US = 1033
RESOLVER_PATH = "/CxWebInterface/CxWsResolver.asmx"
RESOLVER_NS = "http://Checkmarx.com"
SDK_NS = "http://Checkmarx.com/v7"


class CxSoapClient:
    def __init__(self, cfg: CxConfig) -> None:
        self.cfg = cfg
        self.base = cfg.url.rstrip("/")
        self.session = build_session(cfg)
        self._endpoint: Optional[str] = None
        self._session_id: Optional[str] = None

    def __enter__(self) -> "CxSoapClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._session_id is None:
            return
        try:
            self.logout()
        except (ResponseError, requests.RequestException) as e:
            logger.warning("Logout failed: %s", e)

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def host(self) -> str:
        return urlparse(self._endpoint or self.base).hostname or ""

    # ---------- transport ----------
    def _post_envelope(self, url: str, namespace: str, operation: str, params: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": f'"{namespace}/{operation}"',
        }
        logger.debug(f"Calling SOAP {operation} at {url}")
        r = self.session.post(url, data=build_envelope(namespace, operation, params),
                              headers=headers, timeout=self.cfg.timeout)
        # SOAP 1.1 faults arrive as HTTP 500 with an envelope body
        if r.status_code == 500 and b"Fault" in r.content:
            parse_envelope(r.content, operation, url)
        r.raise_for_status()
        return parse_envelope(r.content, operation, url)

    @property
    def endpoint(self) -> str:
        if self._endpoint is None:
            logger.debug("Discovering endpoint...")
            result = self._post_envelope(f"{self.base}{RESOLVER_PATH}", RESOLVER_NS, "GetWebServiceUrl",
                                         {"ClientType": "SDK", "APIVersion": API_VERSION})
            if str(result.get("IsSuccesfull", "")).lower() != "true" or not result.get("ServiceURL"):
                raise ResponseError(result.get("ErrorMessage") or "Endpoint discovery failed",
                                    f"{self.base}{RESOLVER_PATH}")
            self._endpoint = result["ServiceURL"]
            logger.debug(f"Caching endpoint: {self._endpoint}")
        return self._endpoint

    def _call(self, operation: str, **params: Any) -> Dict[str, Any]:
        """Invoke an SDK operation; raises ResponseError unless IsSuccesfull is true."""
        endpoint = self.endpoint
        result = self._post_envelope(endpoint, SDK_NS, operation, params)
        if str(result.get("IsSuccesfull", "")).lower() != "true":
            raise ResponseError(result.get("ErrorMessage") or f"{operation} failed", endpoint)
        return result

    def _require_session(self) -> str:
        if self._session_id is None:
            raise SessionExpiredError()
        return self._session_id

    def _log_failure(self, what: str, e: Exception) -> None:
        if isinstance(e, ResponseError):
            logger.error("Error, unable to %s: %s", what, e)
        else:
            logger.error("Unable to communicate to SOAP API at endpoint %s: %s %s",
                         self.host, type(e).__name__, e)

    # ---------- authentication ----------
    def login(self, username: str, password: str) -> bool:
        """Open a session. Domain users must pass ``DOMAIN\\username``."""
        creds = {"User": username, "Pass": password}
        try:
            result = self._call("Login", applicationCredentials=creds, lcid=LCID_EN_US)
            self._session_id = result.get("SessionId")
            logger.info("Successfully logged into SOAP API at %s", self.host)
            return bool(self._session_id)
        except (ResponseError, requests.RequestException) as e:
            logger.error("Error, unable to log on at %s as %s: %s", self.host, username, e)
        return False

    def logout(self) -> None:
        """Close the session and forget the cached endpoint."""
        if self._session_id is not None:
            logger.debug(f"Closing session on server {self.host}")
            try:
                self._call("Logout", sessionID=self._session_id)
            finally:
                self._session_id = None
                self._endpoint = None
            logger.debug("Successfully logged out")

    # ---------- projects ----------
    def get_projects_to_display(self) -> List[ProjectDisplayData]:
        sid = self._require_session()
        try:
            result = self._call("GetProjectsDisplayData", sessionID=sid)
            return [ProjectDisplayData.from_soap(p) for p in as_list(result.get("projectList"), "ProjectDisplayData")]
        except (ResponseError, requests.RequestException) as e:
            self._log_failure("get projects to display", e)
        return []

    def get_project_configuration(self, project_id: int) -> Optional[Dict[str, Any]]:
        sid = self._require_session()
        try:
            return self._call("GetProjectConfiguration", sessionID=sid, projectID=project_id).get("ProjectConfig")
        except (ResponseError, requests.RequestException) as e:
            self._log_failure(f"get configuration of project {project_id}", e)
        return None

    def update_project_incremental_configuration(self, project_id: int, configuration: Dict[str, Any]) -> bool:
        """Push back a (modified) configuration from ``get_project_configuration``."""
        sid = self._require_session()
        try:
            self._call("UpdateProjectIncrementalConfiguration", sessionID=sid, projectID=project_id,
                       projectConfiguration=configuration)
            return True
        except (ResponseError, requests.RequestException) as e:
            self._log_failure(f"update configuration of project {project_id}", e)
        return False

    def get_project_scanned_display_data(self) -> List[ProjectScannedDisplayData]:
        sid = self._require_session()
        try:
            result = self._call("GetProjectScannedDisplayData", sessionID=sid)
            return [ProjectScannedDisplayData.from_soap(p)
                    for p in as_list(result.get("ProjectScannedList"), "ProjectScannedDisplayData")]
        except (ResponseError, requests.RequestException) as e:
            self._log_failure("get list of public projects", e)
        return []

    def delete_projects(self, project_ids: Iterable[int]) -> bool:
        """Delete projects with all their scans. One undeletable scan fails the whole call."""
        sid = self._require_session()
        try:
            self._call("DeleteProjects", sessionID=sid, projectIDs=SoapList("long", list(project_ids)))
            return True
        except (ResponseError, requests.RequestException) as e:
            self._log_failure("delete project(s)", e)
        return False

    def delete_project(self, project_id: int) -> bool:
        return self.delete_projects([project_id])

    def get_presets(self) -> List[SoapPreset]:
        sid = self._require_session()
        try:
            result = self._call("GetPresetList", SessionID=sid)
            return [SoapPreset.from_soap(p) for p in as_list(result.get("PresetList"), "Preset")]
        except (ResponseError, requests.RequestException) as e:
            self._log_failure("get list of presets", e)
        return []

    def get_configuration_set_list(self) -> List[ConfigurationSet]:
        sid = self._require_session()
        try:
            result = self._call("GetConfigurationSetList", SessionID=sid)
            return [ConfigurationSet.from_soap(c)
                    for c in as_list(result.get("ConfigSetList"), "ConfigurationSet")]
        except (ResponseError, requests.RequestException) as e:
            self._log_failure("get list of configuration sets", e)
        return []

    # ---------- scans ----------
    def scan(self, project_settings: ProjectSettings, source_code_settings: SourceCodeSettings,
             is_incremental: bool = False, is_private: bool = False, cron_string: str = "",
             utc_epoch_start_time: int = 0, utc_epoch_end_time: int = 0) -> Optional[str]:
        """
        Start a scan and return its run id (None on failure).

        A project id in ``project_settings`` scans an existing project, otherwise a
        new project is created from the name, preset and configuration. A cron
        string schedules a repeating scan between the two epoch times (0 = now /
        forever).
        """
        sid = self._require_session()
        args = {
            "PrjSettings": project_settings.to_soap(),
            "SrcCodeSettings": source_code_settings.to_soap(),
            "IsPrivateScan": is_private,
            "IsIncremental": is_incremental,
        }
        try:
            if cron_string:
                result = self._call("ScanWithSchedulingWithCron", sessionId=sid, args=args,
                                    cronString=cron_string, utcEpochStartTime=utc_epoch_start_time,
                                    utcEpochEndTime=utc_epoch_end_time)
            else:
                result = self._call("Scan", sessionId=sid, args=args)
            run_id = result.get("RunId")
            logger.info("Scan started, run id %s", run_id)
            return run_id
        except (ResponseError, requests.RequestException) as e:
            self._log_failure("start scan", e)
        return None

    def get_scan_status(self, run_id: str) -> Optional[ScanStatus]:
        sid = self._require_session()
        try:
            return ScanStatus.from_soap(self._call("GetStatusOfSingleScan", sessionID=sid, runId=run_id))
        except (ResponseError, requests.RequestException) as e:
            self._log_failure(f"get scan status of run {run_id}", e)
        return None

    def get_scan_summary(self, scan_id: int) -> Optional[ScanSummary]:
        sid = self._require_session()
        try:
            return ScanSummary.from_soap(self._call("GetScanSummary", SessionID=sid, ScanID=scan_id,
                                                    includeUnvisited=False))
        except (ResponseError, requests.RequestException) as e:
            self._log_failure(f"get summary of scan {scan_id}", e)
        return None

    def update_scan_comment(self, scan_id: int, comment: str) -> bool:
        """Set (overwrite) the comment on a scan's results."""
        sid = self._require_session()
        try:
            self._call("UpdateScanComment", sessionID=sid, ScanID=scan_id, Comment=comment)
            return True
        except (ResponseError, requests.RequestException) as e:
            self._log_failure(f"update comment for scan {scan_id}", e)
        return False

    def cancel_scan(self, run_id: str) -> bool:
        """Cancel a scan that is queued or running."""
        sid = self._require_session()
        try:
            self._call("CancelScan", sessionID=sid, RunId=run_id)
            return True
        except (ResponseError, requests.RequestException) as e:
            self._log_failure(f"cancel scan {run_id}", e)
        return False

    def delete_scans(self, scan_ids: Iterable[int]) -> bool:
        sid = self._require_session()
        try:
            self._call("DeleteScans", sessionID=sid, scanIDs=SoapList("long", list(scan_ids)))
            return True
        except (ResponseError, requests.RequestException) as e:
            self._log_failure("delete scan(s)", e)
        return False

    def delete_scan(self, scan_id: int) -> bool:
        return self.delete_scans([scan_id])

    # ---------- reports ----------
    def create_scan_report(self, scan_id: int, report_type: ReportType = ReportType.PDF) -> int:
        """Request report generation; returns the report id or 0."""
        sid = self._require_session()
        request = {"Type": ReportType(report_type).value, "ScanID": scan_id}
        try:
            result = self._call("CreateScanReport", SessionID=sid, Report=request)
            return int(result.get("ID") or 0)
        except (ResponseError, requests.RequestException) as e:
            self._log_failure("create scan report", e)
        except ValueError as e:
            logger.error("Unexpected report id for scan %s: %s", scan_id, e)
        return 0

    def get_scan_report_status(self, report_id: int) -> Optional[ReportStatus]:
        sid = self._require_session()
        try:
            return ReportStatus.from_soap(self._call("GetScanReportStatus", SessionID=sid, ReportID=report_id))
        except (ResponseError, requests.RequestException) as e:
            self._log_failure(f"get scan report status for {report_id}", e)
        return None

    def get_scan_report(self, report_id: int) -> Optional[bytes]:
        sid = self._require_session()
        try:
            return decode_report(self._call("GetScanReport", SessionID=sid, ReportID=report_id).get("ScanResults"))
        except (ResponseError, requests.RequestException) as e:
            self._log_failure(f"get scan report {report_id}", e)
        return None

    # ---------- groups / users ----------
    def get_associated_groups_list(self) -> Optional[List[Group]]:
        sid = self._require_session()
        try:
            result = self._call("GetAssociatedGroupsList", SessionID=sid)
            return [Group.from_soap(g) for g in as_list(result.get("GroupList"), "Group")]
        except (ResponseError, requests.RequestException) as e:
            self._log_failure("get associated groups list (teams)", e)
        return None

    def find_group_id(self, group_name: str) -> Optional[str]:
        for group in self.get_associated_groups_list() or []:
            # full paths look like CxServer\SP\Company\Users
            if group.group_name == group_name or group.group_name.rsplit("\\", 1)[-1] == group_name:
                return group.id
        return None

    def get_all_users(self) -> List[UserData]:
        """Users visible to the caller. Server and company managers see everyone."""
        sid = self._require_session()
        try:
            result = self._call("GetAllUsers", SessionID=sid)
            return [UserData.from_soap(u) for u in as_list(result.get("UserDataList"), "UserData")]
        except (ResponseError, requests.RequestException) as e:
            self._log_failure("get list of users", e)
        return []

    def delete_user(self, user_id: int) -> bool:
        """Delete a user. Reassign their projects, scans and reports first."""
        sid = self._require_session()
        logger.warning(f"Deleting user {user_id}")
        try:
            self._call("DeleteUser", SessionID=sid, UserID=user_id)
            return True
        except (ResponseError, requests.RequestException) as e:
            self._log_failure(f"delete user {user_id}", e)
        return False

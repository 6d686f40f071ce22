from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import requests

from .config import CxConfig
from .domain import (
    EngineConfiguration,
    EngineServer,
    Preset,
    Project,
    ReportRequest,
    ReportResponse,
    ReportStatusResponse,
    Scan,
    ScanInQueue,
    ScanSettings,
    Team,
)
from .errors import SessionExpiredError
from .session import build_session

logger = logging.getLogger(__name__)

CX_COOKIE = "CxCookie"
CX_CSRF_TOKEN = "CXCSRFToken"
JSON_V1 = "application/json;v=1.0"


class CxRestClient:
    """REST API client (server v8.6+). Session state lives in the auth cookies."""

    def __init__(self, cfg: CxConfig) -> None:
        self.cfg = cfg
        self.base = f"{cfg.url.rstrip('/')}/cxrestapi"
        self.session = build_session(cfg)
        self.session.headers.update({"Accept": JSON_V1})

    # ---------- session ----------
    @property
    def is_session_good(self) -> bool:
        found_cookie = found_csrf = False
        for cookie in self.session.cookies:
            name = cookie.name.lower()
            if name == CX_COOKIE.lower():
                logger.debug(f"Cookie check: {CX_COOKIE}")
                found_cookie = True
            elif name == CX_CSRF_TOKEN.lower():
                logger.debug(f"Cookie check: {CX_CSRF_TOKEN}")
                found_csrf = True
            else:
                continue
            if cookie.is_expired():
                return False
        return found_cookie and found_csrf

    def _require_session(self) -> None:
        if not self.is_session_good:
            raise SessionExpiredError(
                "Session is expired. Use login() to establish a new session before calling this method."
            )

    def _csrf_token(self) -> Optional[str]:
        for cookie in self.session.cookies:
            if cookie.name.lower() == CX_CSRF_TOKEN.lower():
                return cookie.value
        return None

    def login(self, username: str, password: str) -> bool:
        payload = {"userName": username, "password": password}
        try:
            self._post("/auth/login", json=payload)
        except requests.RequestException as e:
            logger.error("Failed to login as %s: %s", username, e)
        token = self._csrf_token()
        if token:
            self.session.headers[CX_CSRF_TOKEN] = token
        return self.is_session_good

    # ---------- core HTTP ----------
    def _url(self, path: str) -> str:
        return f"{self.base}/{path.lstrip('/')}"

    def _get(self, path: str, **params: Any) -> requests.Response:
        url = self._url(path)
        logger.debug(f"Sending HTTP GET request to {url}")
        r = self.session.get(url, params=params or None, timeout=self.cfg.timeout)
        r.raise_for_status()
        return r

    def _get_list(self, path: str, **params: Any) -> List[Dict[str, Any]]:
        data = self._get(path, **params).json()
        if not isinstance(data, list):
            raise ValueError(f"expected a JSON array from {path}, got {type(data).__name__}")
        return data

    def _post(self, path: str, **kwargs: Any) -> requests.Response:
        url = self._url(path)
        logger.debug(f"Sending HTTP POST request to {url}")
        r = self.session.post(url, timeout=self.cfg.timeout, **kwargs)
        r.raise_for_status()
        return r

    def _put(self, path: str, payload: Dict[str, Any]) -> requests.Response:
        url = self._url(path)
        logger.debug(f"Sending HTTP PUT request to {url}")
        r = self.session.put(url, json=payload, timeout=self.cfg.timeout)
        r.raise_for_status()
        return r

    def _patch(self, path: str, payload: Dict[str, Any]) -> requests.Response:
        url = self._url(path)
        logger.debug(f"Sending HTTP PATCH request to {url}")
        r = self.session.patch(url, json=payload, timeout=self.cfg.timeout)
        r.raise_for_status()
        return r

    def _delete(self, path: str) -> requests.Response:
        url = self._url(path)
        logger.debug(f"Sending HTTP DELETE request to {url}")
        r = self.session.delete(url, timeout=self.cfg.timeout)
        r.raise_for_status()
        return r

    # ---------- engines ----------
    def register_engine(self, name: str, uri: str, min_loc: int = 0,
                        max_loc: int = 999999999, blocked: bool = False) -> int:
        """Register a scan engine; returns its id or -1."""
        self._require_session()
        payload = {"name": name, "uri": uri, "minLoc": min_loc, "maxLoc": max_loc, "isBlocked": blocked}
        logger.debug(f"Registering engine {name}")
        try:
            engine_id = int(self._post("/sast/engineServers", json=payload).json()["id"])
            logger.debug(f"Successfully registered engine as ID {engine_id}")
            return engine_id
        except (requests.RequestException, KeyError, TypeError, ValueError) as e:
            logger.error("Failed to register engine %s: %s", name, e)
        return -1

    def unregister_engine(self, engine_id: int) -> bool:
        self._require_session()
        logger.debug(f"Unregistering engine {engine_id}")
        try:
            self._delete(f"/sast/engineServers/{engine_id}")
            return True
        except requests.RequestException as e:
            logger.error("Unable to unregister engine %s: %s", engine_id, e)
        return False

    def get_all_engine_details(self) -> Optional[List[EngineServer]]:
        self._require_session()
        logger.debug("Attempting to get information for all scan engines")
        try:
            return [EngineServer.from_json(e) for e in self._get_list("/sast/engineServers")]
        except (requests.RequestException, ValueError) as e:
            logger.error("Unable to get information regarding scan engines: %s", e)
        return None

    def get_engine_details(self, engine_id: int) -> Optional[EngineServer]:
        self._require_session()
        logger.debug(f"Getting scan engine information: {engine_id}")
        try:
            return EngineServer.from_json(self._get(f"/sast/engineServers/{engine_id}").json())
        except (requests.RequestException, ValueError) as e:
            logger.error("Unable to get information regarding scan engine %s: %s", engine_id, e)
        return None

    def update_engine(self, engine_id: int, name: str = "", uri: str = "",
                      min_loc: int = -1, max_loc: int = -1, is_blocked: bool = False) -> bool:
        """Update an engine. Only ``is_blocked`` is always sent; other fields when set."""
        self._require_session()
        payload: Dict[str, Any] = {"isBlocked": is_blocked}
        if name:
            payload["name"] = name
        if uri:
            payload["uri"] = uri
        if min_loc > -1:
            payload["minLoc"] = min_loc
        if max_loc > -1:
            payload["maxLoc"] = max_loc

        logger.debug(f"Attempting to update scan engine {engine_id}: {payload}")
        try:
            self._put(f"/sast/engineServers/{engine_id}", payload)
            return True
        except requests.RequestException as e:
            logger.error("Failed to update scan engine %s: %s", engine_id, e)
        return False

    # ---------- scan queue / lifecycle ----------
    def get_all_scans_in_queue(self, project_id: int = -1) -> Optional[List[ScanInQueue]]:
        self._require_session()
        params: Dict[str, Any] = {}
        if project_id > 0:
            params["projectId"] = project_id
        logger.debug(f"Getting scan queue for project: {project_id}")
        try:
            return [ScanInQueue.from_json(s) for s in self._get_list("/sast/scansQueue", **params)]
        except (requests.RequestException, ValueError) as e:
            logger.error("Unable to get list of scans: %s", e)
        return None

    def get_scan_in_queue(self, scan_id: int) -> Optional[ScanInQueue]:
        self._require_session()
        try:
            return ScanInQueue.from_json(self._get(f"/sast/scansQueue/{scan_id}").json())
        except (requests.RequestException, ValueError) as e:
            logger.error("Unable to get queue entry for scan %s: %s", scan_id, e)
        return None

    def define_scan_settings(self, settings: ScanSettings) -> bool:
        self._require_session()
        try:
            self._post("/sast/scanSettings", json=settings.to_json())
            return True
        except requests.RequestException as e:
            logger.error("Unable to define scan settings for project %s: %s", settings.project_id, e)
        return False

    def upload_source_code(self, project_id: int, zip_path: str) -> bool:
        self._require_session()
        if not os.path.isfile(zip_path):
            raise FileNotFoundError(f"Source archive does not exist: {zip_path}")
        logger.info("Uploading %s to project %s", zip_path, project_id)
        with open(zip_path, "rb") as fh:
            files = {"zippedSource": (os.path.basename(zip_path), fh, "application/zip")}
            try:
                self._post(f"/projects/{project_id}/sourceCode/attachments", files=files)
                return True
            except requests.RequestException as e:
                logger.error("Unable to upload sources for project %s: %s", project_id, e)
        return False

    def create_scan(self, scan: Scan) -> int:
        self._require_session()
        try:
            scan_id = int(self._post("/sast/scans", json=scan.to_json()).json()["id"])
            logger.info("Created scan %s for project %s", scan_id, scan.project_id)
            return scan_id
        except (requests.RequestException, KeyError, TypeError, ValueError) as e:
            logger.error("Unable to create scan for project %s: %s", scan.project_id, e)
        return -1

    def cancel_scan(self, scan_id: int) -> bool:
        self._require_session()
        try:
            self._patch(f"/sast/scansQueue/{scan_id}", {"status": "Canceled"})
            return True
        except requests.RequestException as e:
            logger.error("Unable to cancel scan %s: %s", scan_id, e)
        return False

    def delete_scan(self, scan_id: int) -> bool:
        self._require_session()
        logger.warning(f"Deleting scan {scan_id}")
        try:
            self._delete(f"/sast/scans/{scan_id}")
            return True
        except requests.RequestException as e:
            logger.error("Unable to delete scan %s: %s", scan_id, e)
        return False

    # ---------- projects / presets / teams ----------
    def get_projects(self) -> List[Project]:
        try:
            return [Project.from_json(p) for p in self._get_list("/projects")]
        except (requests.RequestException, ValueError) as e:
            logger.error("Unable to get a list of projects: %s", e)
        return []

    def get_project(self, project_id: int) -> Optional[Project]:
        try:
            return Project.from_json(self._get(f"/projects/{project_id}").json())
        except (requests.RequestException, ValueError) as e:
            logger.error("Unable to get details for project %s: %s", project_id, e)
        return None

    def add_project(self, name: str, team_id: str, is_public: bool = True) -> int:
        """Create a project with default settings; returns its id or -1."""
        payload = {"name": name, "owningTeam": team_id, "isPublic": is_public}
        try:
            return int(self._post("/projects", json=payload).json()["id"])
        except (requests.RequestException, KeyError, TypeError, ValueError) as e:
            logger.error("Unable to add project '%s': %s", name, e)
        return -1

    def get_presets(self) -> List[Preset]:
        try:
            return [Preset.from_json(p) for p in self._get_list("/sast/presets")]
        except (requests.RequestException, ValueError) as e:
            logger.error("Unable to get presets: %s", e)
        return []

    def get_engine_configurations(self) -> List[EngineConfiguration]:
        try:
            return [EngineConfiguration.from_json(c) for c in self._get_list("/sast/engineConfigurations")]
        except (requests.RequestException, ValueError) as e:
            logger.error("Unable to get engine configurations: %s", e)
        return []

    def get_teams(self) -> List[Team]:
        try:
            return [Team.from_json(t) for t in self._get_list("/auth/teams")]
        except (requests.RequestException, ValueError) as e:
            logger.error("Unable to get teams: %s", e)
        return []

    # ---------- reports ----------
    def register_report(self, request: ReportRequest) -> Optional[ReportResponse]:
        self._require_session()
        try:
            return ReportResponse.from_json(self._post("/reports/sastScan", json=request.to_json()).json())
        except (requests.RequestException, ValueError) as e:
            logger.error("Unable to request %s report for scan %s: %s", request.report_type, request.scan_id, e)
        return None

    def get_report_status(self, report_id: int) -> Optional[ReportStatusResponse]:
        self._require_session()
        try:
            return ReportStatusResponse.from_json(self._get(f"/reports/sastScan/{report_id}/status").json())
        except (requests.RequestException, ValueError) as e:
            logger.error("Unable to get status of report %s: %s", report_id, e)
        return None

    def get_report(self, report_id: int) -> Optional[bytes]:
        self._require_session()
        try:
            return self._get(f"/reports/sastScan/{report_id}").content
        except requests.RequestException as e:
            logger.error("Unable to download report %s: %s", report_id, e)
        return None

"""
Records mirroring the scanning service's REST (JSON) and SOAP (XML) schemas.

REST records are built with ``from_json`` from decoded response bodies.
SOAP records are built with ``from_soap`` from the dicts produced by
``soap_envelope.parse_envelope`` (all leaves are strings there).
"""
from __future__ import annotations

import base64
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .soap_envelope import SoapList


def _int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() == "true"


def from_cx_datetime(d: Optional[Dict[str, Any]]) -> Optional[datetime]:
    """Convert a SOAP CxDateTime record (Year, Month, ...) to a naive datetime."""
    if not d:
        return None
    try:
        return datetime(_int(d.get("Year")), _int(d.get("Month")), _int(d.get("Day")),
                        _int(d.get("Hour")), _int(d.get("Minute")), _int(d.get("Second")))
    except ValueError:
        return None


_FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)


def from_filetime(ticks: Any) -> Optional[datetime]:
    """Windows FILETIME (100ns ticks since 1601-01-01 UTC) to an aware datetime."""
    t = _int(ticks, -1)
    if t < 0:
        return None
    return _FILETIME_EPOCH + timedelta(microseconds=t // 10)


# ---------------- REST ----------------

@dataclass
class Link:
    rel: Optional[str] = None
    uri: Optional[str] = None

    @classmethod
    def from_json(cls, d: Optional[Dict[str, Any]]) -> Optional["Link"]:
        if not d:
            return None
        return cls(rel=d.get("rel"), uri=d.get("uri"))


@dataclass
class Engine:
    """The engine a queued scan runs on."""
    id: int
    link: Optional[Link] = None

    @classmethod
    def from_json(cls, d: Optional[Dict[str, Any]]) -> Optional["Engine"]:
        if not d:
            return None
        return cls(id=_int(d.get("id")), link=Link.from_json(d.get("link")))


@dataclass
class EngineServer:
    id: int
    name: str
    uri: str = ""
    min_loc: int = 0
    max_loc: int = 0
    is_alive: bool = False
    max_scans: int = 0
    # A blocked engine receives no new scans; running scans continue to completion.
    is_blocked: bool = False
    cx_version: Optional[str] = None

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "EngineServer":
        return cls(
            id=_int(d.get("id")),
            name=d.get("name") or "",
            uri=d.get("uri") or "",
            min_loc=_int(d.get("minLoc")),
            max_loc=_int(d.get("maxLoc")),
            is_alive=bool(d.get("isAlive", False)),
            max_scans=_int(d.get("maxScans")),
            is_blocked=bool(d.get("isBlocked", False)),
            cx_version=d.get("cxVersion"),
        )


@dataclass
class Language:
    id: int
    name: str

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "Language":
        return cls(id=_int(d.get("id")), name=d.get("name") or "")


@dataclass
class Preset:
    """A named grouping of queries executed during a scan."""
    id: int
    name: str
    owner_name: Optional[str] = None
    link: Optional[Link] = None

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "Preset":
        return cls(id=_int(d.get("id")), name=d.get("name") or "",
                   owner_name=d.get("ownerName"), link=Link.from_json(d.get("link")))


@dataclass
class Project:
    id: int
    name: str
    team_id: Optional[str] = None
    is_public: bool = True
    links: List[Link] = field(default_factory=list)

    @classmethod
    def from_json(cls, d: Optional[Dict[str, Any]]) -> Optional["Project"]:
        if not d:
            return None
        return cls(
            id=_int(d.get("id")),
            name=d.get("name") or "",
            team_id=d.get("teamId"),
            is_public=bool(d.get("isPublic", True)),
            links=[Link.from_json(x) for x in d.get("links") or [] if x],
        )


@dataclass
class Team:
    id: str
    name: str

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "Team":
        return cls(id=str(d.get("id") or ""), name=d.get("fullName") or "")


@dataclass
class Stage:
    """Stage of a scan within the queue."""
    id: int
    value: str

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_json(cls, d: Optional[Dict[str, Any]]) -> Optional["Stage"]:
        if not d:
            return None
        return cls(id=_int(d.get("id")), value=d.get("value") or "")


@dataclass
class Status:
    id: int
    value: str

    @classmethod
    def from_json(cls, d: Optional[Dict[str, Any]]) -> Optional["Status"]:
        if not d:
            return None
        return cls(id=_int(d.get("id")), value=d.get("value") or "")


@dataclass
class ScanInQueue:
    id: int
    stage: Optional[Stage] = None
    team_id: Optional[str] = None
    project: Optional[Project] = None
    engine: Optional[Engine] = None
    loc: int = 0
    languages: List[Language] = field(default_factory=list)
    date_created: Optional[str] = None
    queued_on: Optional[str] = None
    engine_started_on: Optional[str] = None
    is_incremental: bool = False
    is_public: bool = True
    origin: Optional[str] = None

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "ScanInQueue":
        return cls(
            id=_int(d.get("id")),
            stage=Stage.from_json(d.get("stage")),
            team_id=d.get("teamId"),
            project=Project.from_json(d.get("project")),
            engine=Engine.from_json(d.get("engine")),
            loc=_int(d.get("loc")),
            languages=[Language.from_json(x) for x in d.get("languages") or []],
            date_created=d.get("dateCreated"),
            queued_on=d.get("queuedOn"),
            engine_started_on=d.get("engineStartedOn"),
            is_incremental=bool(d.get("isIncremental", False)),
            is_public=bool(d.get("isPublic", True)),
            origin=d.get("origin"),
        )


@dataclass
class Scan:
    """Body of a create-scan request."""
    project_id: int
    is_incremental: bool = False
    is_public: bool = True
    force_scan: bool = False
    comment: str = ""

    def to_json(self) -> Dict[str, Any]:
        return {
            "projectId": self.project_id,
            "isIncremental": self.is_incremental,
            "isPublic": self.is_public,
            "forceScan": self.force_scan,
            "comment": self.comment,
        }


@dataclass
class ScanSettings:
    project_id: int
    preset_id: int
    engine_configuration_id: int

    def to_json(self) -> Dict[str, Any]:
        return {
            "projectId": self.project_id,
            "presetId": self.preset_id,
            "engineConfigurationId": self.engine_configuration_id,
        }


@dataclass
class EngineConfiguration:
    id: int
    name: str

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "EngineConfiguration":
        return cls(id=_int(d.get("id")), name=d.get("name") or "")


class ReportType(str, Enum):
    PDF = "PDF"
    RTF = "RTF"
    CSV = "CSV"
    XML = "XML"


@dataclass
class ReportRequest:
    report_type: ReportType
    scan_id: int

    def to_json(self) -> Dict[str, Any]:
        return {"reportType": ReportType(self.report_type).value, "scanId": self.scan_id}


@dataclass
class ReportResponse:
    report_id: int
    status: Optional[Link] = None
    report: Optional[Link] = None

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "ReportResponse":
        links = d.get("links") or {}
        return cls(
            report_id=_int(d.get("reportId")),
            status=Link.from_json(links.get("status")),
            report=Link.from_json(links.get("report")),
        )


REPORT_IN_PROCESS = 1
REPORT_CREATED = 2
REPORT_FAILED = 3


@dataclass
class ReportStatusResponse:
    location: Optional[str] = None
    content_type: Optional[str] = None
    status: Optional[Status] = None

    @property
    def is_ready(self) -> bool:
        return bool(self.status) and self.status.id == REPORT_CREATED

    @property
    def is_failed(self) -> bool:
        return bool(self.status) and self.status.id == REPORT_FAILED

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "ReportStatusResponse":
        link = d.get("link") or {}
        return cls(location=link.get("uri") or d.get("location"),
                   content_type=d.get("contentType"),
                   status=Status.from_json(d.get("status")))


# ---------------- SOAP ----------------

class CurrentStatus(str, Enum):
    QUEUED = "Queued"
    WORKING = "Working"
    FINISHED = "Finished"
    FAILED = "Failed"
    CANCELED = "Canceled"
    DELETED = "Deleted"
    UNKNOWN = "Unknown"
    UNZIPPING = "Unzipping"
    WAITING_TO_PROCESS = "WaitingToProcess"

    @classmethod
    def parse(cls, v: Any) -> "CurrentStatus":
        try:
            return cls(v)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in (CurrentStatus.FINISHED, CurrentStatus.FAILED,
                        CurrentStatus.CANCELED, CurrentStatus.DELETED)


@dataclass
class ProjectDisplayData:
    project_id: int
    project_name: str
    preset_name: str = ""
    group: str = ""
    owner: str = ""
    last_scan_date: Optional[datetime] = None
    total_scans: int = 0

    @classmethod
    def from_soap(cls, d: Dict[str, Any]) -> "ProjectDisplayData":
        return cls(
            project_id=_int(d.get("projectID")),
            project_name=d.get("ProjectName") or "",
            preset_name=d.get("PresetName") or "",
            group=d.get("Group") or "",
            owner=d.get("Owner") or "",
            last_scan_date=from_cx_datetime(d.get("LastScanDate")),
            total_scans=_int(d.get("TotalScans")),
        )


@dataclass
class ProjectScannedDisplayData:
    project_id: int
    project_name: str
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0
    last_scan_date: Optional[datetime] = None

    @classmethod
    def from_soap(cls, d: Dict[str, Any]) -> "ProjectScannedDisplayData":
        return cls(
            project_id=_int(d.get("ProjectID")),
            project_name=d.get("ProjectName") or "",
            high=_int(d.get("HighVulnerabilities")),
            medium=_int(d.get("MediumVulnerabilities")),
            low=_int(d.get("LowVulnerabilities")),
            info=_int(d.get("InfoVulnerabilities")),
            last_scan_date=from_filetime(d.get("LastScanDate")),
        )


@dataclass
class SoapPreset:
    id: int
    preset_name: str

    @classmethod
    def from_soap(cls, d: Dict[str, Any]) -> "SoapPreset":
        return cls(id=_int(d.get("ID")), preset_name=d.get("PresetName") or "")


@dataclass
class ConfigurationSet:
    id: int
    config_set_name: str

    @classmethod
    def from_soap(cls, d: Dict[str, Any]) -> "ConfigurationSet":
        return cls(id=_int(d.get("ID")), config_set_name=d.get("ConfigSetName") or "")


@dataclass
class UserData:
    id: int
    user_name: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    last_login_date: Optional[datetime] = None

    @classmethod
    def from_soap(cls, d: Dict[str, Any]) -> "UserData":
        return cls(
            id=_int(d.get("ID")),
            user_name=d.get("UserName") or "",
            first_name=d.get("FirstName") or "",
            last_name=d.get("LastName") or "",
            email=d.get("Email") or "",
            last_login_date=from_cx_datetime(d.get("LastLoginDate")),
        )


@dataclass
class Group:
    id: str
    group_name: str

    @classmethod
    def from_soap(cls, d: Dict[str, Any]) -> "Group":
        return cls(id=d.get("ID") or "", group_name=d.get("GroupName") or "")


@dataclass
class ScanStatus:
    run_id: str
    current_status: CurrentStatus
    project_id: int = 0
    scan_id: int = 0
    stage_name: str = ""
    stage_message: str = ""
    total_percent: int = 0
    error_message: str = ""
    time_finished: Optional[datetime] = None

    @classmethod
    def from_soap(cls, d: Dict[str, Any]) -> "ScanStatus":
        return cls(
            run_id=d.get("RunId") or "",
            current_status=CurrentStatus.parse(d.get("CurrentStatus")),
            project_id=_int(d.get("ProjectId")),
            scan_id=_int(d.get("ScanId")),
            stage_name=d.get("StageName") or "",
            stage_message=d.get("StageMessage") or "",
            total_percent=_int(d.get("TotalPercent")),
            error_message=d.get("ErrorMessage") or "",
            time_finished=from_cx_datetime(d.get("TimeFinished")),
        )


@dataclass
class ScanSummary:
    loc: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0

    @classmethod
    def from_soap(cls, d: Dict[str, Any]) -> "ScanSummary":
        return cls(loc=_int(d.get("LOC")), high=_int(d.get("High")), medium=_int(d.get("Medium")),
                   low=_int(d.get("Low")), info=_int(d.get("Info")))


@dataclass
class ReportStatus:
    is_ready: bool = False
    is_failed: bool = False

    @classmethod
    def from_soap(cls, d: Dict[str, Any]) -> "ReportStatus":
        return cls(is_ready=_bool(d.get("IsReady")), is_failed=_bool(d.get("IsFailed")))


@dataclass
class ProjectSettings:
    """Either an existing ``project_id`` or the fields needed to create a project."""
    project_id: int = 0
    project_name: str = ""
    preset_id: int = 0
    associated_group_id: str = ""
    scan_configuration_id: int = 0
    description: str = ""
    owner: str = ""
    is_public: bool = True

    def to_soap(self) -> Dict[str, Any]:
        return {
            "projectID": self.project_id,
            "ProjectName": self.project_name,
            "PresetID": self.preset_id,
            "AssociatedGroupID": self.associated_group_id,
            "ScanConfigurationID": self.scan_configuration_id,
            "Description": self.description,
            "Owner": self.owner,
            "IsPublic": self.is_public,
        }


@dataclass
class SourceCodeSettings:
    source_origin: str = "Local"
    file_name: Optional[str] = None
    zipped_file: Optional[bytes] = None
    paths: List[str] = field(default_factory=list)
    include_sub_tree: bool = True

    @classmethod
    def from_zip(cls, zip_path: str) -> "SourceCodeSettings":
        with open(zip_path, "rb") as fh:
            content = fh.read()
        return cls(source_origin="Local", file_name=os.path.basename(zip_path), zipped_file=content)

    @classmethod
    def from_path(cls, location_path: str) -> "SourceCodeSettings":
        return cls(source_origin="SharedPath", paths=[location_path])

    def to_soap(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"SourceOrigin": self.source_origin}
        if self.zipped_file is not None:
            out["PackagedCode"] = {"ZippedFile": self.zipped_file, "FileName": self.file_name}
        if self.paths:
            out["PathList"] = SoapList("ScanPath", [
                {"Path": p, "IncludeSubTree": self.include_sub_tree} for p in self.paths
            ])
        return out


def decode_report(v: Optional[str]) -> Optional[bytes]:
    if v is None:
        return None
    return base64.b64decode(v)

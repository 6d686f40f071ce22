from __future__ import annotations

import base64
import xml.etree.ElementTree as ET

import pytest

from cxsast.domain import CurrentStatus, ProjectSettings, ReportType, SourceCodeSettings
from cxsast.errors import SessionExpiredError
from cxsast.soap_client import CxSoapClient


def _texts(body, tag):
    """All texts of elements named ``tag`` in a request envelope, namespace ignored."""
    root = ET.fromstring(body.encode("utf-8"))
    return [el.text for el in root.iter() if el.tag.rsplit("}", 1)[-1] == tag]


def _ops(server):
    return [op for op, _ in server.calls]


@pytest.fixture()
def soap(cx_config, soap_server):
    client = CxSoapClient(cx_config)
    assert client.login("admin", "secret") is True
    return client


def test_login_discovers_endpoint_and_keeps_session(cx_config, soap_server):
    client = CxSoapClient(cx_config)
    assert client.login("admin", "secret") is True
    assert client.session_id == "sess-1"
    assert client.endpoint.endswith("/CxWebInterface/SDK/CxSDKWebService.asmx")

    op, body = soap_server.calls[0]
    assert op == "Login"
    assert _texts(body, "User") == ["admin"]
    assert _texts(body, "Pass") == ["secret"]
    assert _texts(body, "lcid") == ["1033"]


def test_login_rejected_returns_false(cx_config, soap_server):
    soap_server.on("Login", "<IsSuccesfull>false</IsSuccesfull><ErrorMessage>bad credentials</ErrorMessage>")
    client = CxSoapClient(cx_config)
    assert client.login("admin", "wrong") is False
    assert client.session_id is None


def test_calls_without_session_raise(cx_config):
    client = CxSoapClient(cx_config)
    with pytest.raises(SessionExpiredError):
        client.get_presets()
    with pytest.raises(SessionExpiredError):
        client.get_scan_status("run-1")


def test_context_manager_logs_out(cx_config, soap_server):
    with CxSoapClient(cx_config) as client:
        client.login("admin", "secret")
    assert _ops(soap_server) == ["Login", "Logout"]
    assert _texts(soap_server.calls[1][1], "sessionID") == ["sess-1"]
    assert client.session_id is None


def test_context_manager_without_login_does_nothing(cx_config, soap_server):
    with CxSoapClient(cx_config):
        pass
    assert soap_server.calls == []


def test_get_presets_single_and_many(soap, soap_server):
    soap_server.on("GetPresetList", "<IsSuccesfull>true</IsSuccesfull><PresetList>"
                                    "<Preset><ID>36</ID><PresetName>Checkmarx Default</PresetName></Preset>"
                                    "</PresetList>")
    presets = soap.get_presets()
    assert [(p.id, p.preset_name) for p in presets] == [(36, "Checkmarx Default")]

    soap_server.on("GetPresetList", "<IsSuccesfull>true</IsSuccesfull><PresetList>"
                                    "<Preset><ID>1</ID><PresetName>All</PresetName></Preset>"
                                    "<Preset><ID>2</ID><PresetName>OWASP</PresetName></Preset>"
                                    "</PresetList>")
    assert [p.preset_name for p in soap.get_presets()] == ["All", "OWASP"]


def test_get_projects_to_display(soap, soap_server):
    soap_server.on("GetProjectsDisplayData", "<IsSuccesfull>true</IsSuccesfull><projectList>"
                   "<ProjectDisplayData><projectID>7</projectID><ProjectName>webgoat</ProjectName>"
                   "<PresetName>Default</PresetName><Group>CxServer</Group><Owner>admin</Owner>"
                   "<LastScanDate><Year>2020</Year><Month>3</Month><Day>4</Day><Hour>5</Hour>"
                   "<Minute>6</Minute><Second>7</Second></LastScanDate><TotalScans>12</TotalScans>"
                   "</ProjectDisplayData></projectList>")
    projects = soap.get_projects_to_display()
    assert len(projects) == 1
    assert projects[0].project_id == 7
    assert projects[0].last_scan_date.year == 2020 and projects[0].last_scan_date.second == 7
    assert projects[0].total_scans == 12


def test_failure_returns_empty_list(soap, soap_server):
    soap_server.on("GetAllUsers", "<IsSuccesfull>false</IsSuccesfull><ErrorMessage>denied</ErrorMessage>")
    assert soap.get_all_users() == []


def test_soap_fault_is_logged_not_raised(soap, soap_server, caplog):
    soap_server.fault("GetConfigurationSetList", "Server was unable to process request.")
    with caplog.at_level("ERROR"):
        assert soap.get_configuration_set_list() == []
    assert "Server was unable to process request." in caplog.text


def test_scan_from_zip_uses_scan_operation(soap, soap_server, tmp_path):
    soap_server.on("Scan", "<IsSuccesfull>true</IsSuccesfull><RunId>run-42</RunId><ProjectID>7</ProjectID>")
    archive = tmp_path / "src.zip"
    archive.write_bytes(b"zipdata")

    run_id = soap.scan(ProjectSettings(project_id=7), SourceCodeSettings.from_zip(str(archive)),
                       is_incremental=True)
    assert run_id == "run-42"
    op, body = soap_server.calls[-1]
    assert op == "Scan"
    assert _texts(body, "sessionId") == ["sess-1"]
    assert _texts(body, "ZippedFile") == [base64.b64encode(b"zipdata").decode("ascii")]
    assert _texts(body, "FileName") == ["src.zip"]
    assert _texts(body, "IsIncremental") == ["true"]
    assert _texts(body, "IsPrivateScan") == ["false"]


def test_scan_with_cron_uses_scheduling_operation(soap, soap_server):
    soap_server.on("ScanWithSchedulingWithCron", "<IsSuccesfull>true</IsSuccesfull><RunId>run-7</RunId>")
    run_id = soap.scan(ProjectSettings(project_name="new", preset_id=36, associated_group_id="g-1"),
                       SourceCodeSettings.from_path("\\\\share\\src"), cron_string="0 0 * * *",
                       utc_epoch_start_time=100)
    assert run_id == "run-7"
    op, body = soap_server.calls[-1]
    assert op == "ScanWithSchedulingWithCron"
    assert _texts(body, "cronString") == ["0 0 * * *"]
    assert _texts(body, "utcEpochStartTime") == ["100"]
    assert _texts(body, "Path") == ["\\\\share\\src"]
    assert _texts(body, "SourceOrigin") == ["SharedPath"]
    assert _texts(body, "AssociatedGroupID") == ["g-1"]


def test_scan_failure_returns_none(soap, soap_server):
    soap_server.on("Scan", "<IsSuccesfull>false</IsSuccesfull><ErrorMessage>no license</ErrorMessage>")
    assert soap.scan(ProjectSettings(project_id=1), SourceCodeSettings.from_path("/src")) is None


def test_get_scan_status(soap, soap_server):
    soap_server.on("GetStatusOfSingleScan", "<IsSuccesfull>true</IsSuccesfull><RunId>run-42</RunId>"
                   "<CurrentStatus>Finished</CurrentStatus><ProjectId>7</ProjectId><ScanId>1001</ScanId>"
                   "<TotalPercent>100</TotalPercent>")
    status = soap.get_scan_status("run-42")
    assert status.current_status is CurrentStatus.FINISHED
    assert status.scan_id == 1001
    assert _texts(soap_server.calls[-1][1], "runId") == ["run-42"]


def test_delete_scans_sends_id_list(soap, soap_server):
    soap_server.on("DeleteScans", "<IsSuccesfull>true</IsSuccesfull>")
    assert soap.delete_scans([1, 2]) is True
    assert _texts(soap_server.calls[-1][1], "long") == ["1", "2"]


def test_report_flow(soap, soap_server):
    soap_server.on("CreateScanReport", "<IsSuccesfull>true</IsSuccesfull><ID>55</ID>")
    soap_server.on("GetScanReportStatus", "<IsSuccesfull>true</IsSuccesfull><IsReady>true</IsReady>"
                                          "<IsFailed>false</IsFailed>")
    encoded = base64.b64encode(b"<xml/>").decode("ascii")
    soap_server.on("GetScanReport", f"<IsSuccesfull>true</IsSuccesfull><ScanResults>{encoded}</ScanResults>")

    assert soap.create_scan_report(1001, ReportType.XML) == 55
    assert _texts(soap_server.calls[-1][1], "Type") == ["XML"]
    assert soap.get_scan_report_status(55).is_ready is True
    assert soap.get_scan_report(55) == b"<xml/>"


def test_find_group_id_matches_full_or_short_name(soap, soap_server):
    soap_server.on("GetAssociatedGroupsList", "<IsSuccesfull>true</IsSuccesfull><GroupList>"
                   "<Group><ID>g-1</ID><GroupName>CxServer</GroupName></Group>"
                   "<Group><ID>g-2</ID><GroupName>CxServer\\SP\\Company\\Users</GroupName></Group>"
                   "</GroupList>")
    assert soap.find_group_id("CxServer") == "g-1"
    assert soap.find_group_id("Users") == "g-2"
    assert soap.find_group_id("CxServer\\SP\\Company\\Users") == "g-2"
    assert soap.find_group_id("Nobody") is None


def test_project_configuration_round_trip(soap, soap_server):
    soap_server.on("GetProjectConfiguration", "<IsSuccesfull>true</IsSuccesfull><ProjectConfig>"
                   "<ProjectSettings><ProjectName>webgoat</ProjectName><PresetID>36</PresetID></ProjectSettings>"
                   "<SourceCodeSettings><SourceOrigin>SharedPath</SourceOrigin><PathList>"
                   "<ScanPath><Path>/a</Path><IncludeSubTree>true</IncludeSubTree></ScanPath>"
                   "<ScanPath><Path>/b</Path><IncludeSubTree>false</IncludeSubTree></ScanPath>"
                   "</PathList></SourceCodeSettings></ProjectConfig>")
    soap_server.on("UpdateProjectIncrementalConfiguration", "<IsSuccesfull>true</IsSuccesfull>")

    config = soap.get_project_configuration(7)
    assert config["ProjectSettings"]["PresetID"] == "36"
    config["ProjectSettings"]["PresetID"] = "100"

    assert soap.update_project_incremental_configuration(7, config) is True
    op, body = soap_server.calls[-1]
    assert op == "UpdateProjectIncrementalConfiguration"
    assert _texts(body, "projectID") == ["7"]
    assert _texts(body, "PresetID") == ["100"]
    assert _texts(body, "Path") == ["/a", "/b"]
    assert _texts(body, "IncludeSubTree") == ["true", "false"]


def test_get_project_configuration_failure(soap, soap_server):
    soap_server.on("GetProjectConfiguration", "<IsSuccesfull>false</IsSuccesfull><ErrorMessage>no such project</ErrorMessage>")
    assert soap.get_project_configuration(99) is None


def test_get_project_scanned_display_data(soap, soap_server):
    soap_server.on("GetProjectScannedDisplayData", "<IsSuccesfull>true</IsSuccesfull><ProjectScannedList>"
                   "<ProjectScannedDisplayData><ProjectID>3</ProjectID><ProjectName>alpha</ProjectName>"
                   "<HighVulnerabilities>4</HighVulnerabilities><MediumVulnerabilities>5</MediumVulnerabilities>"
                   "<LowVulnerabilities>6</LowVulnerabilities><InfoVulnerabilities>7</InfoVulnerabilities>"
                   "<LastScanDate>132539328000000000</LastScanDate></ProjectScannedDisplayData>"
                   "</ProjectScannedList>")
    scanned = soap.get_project_scanned_display_data()
    assert len(scanned) == 1
    row = scanned[0]
    assert (row.project_id, row.project_name, row.high, row.medium, row.low, row.info) == (3, "alpha", 4, 5, 6, 7)
    assert row.last_scan_date.year == 2021


def test_get_scan_summary(soap, soap_server):
    soap_server.on("GetScanSummary", "<IsSuccesfull>true</IsSuccesfull><LOC>1200</LOC><High>1</High>"
                                     "<Medium>2</Medium><Low>3</Low><Info>4</Info>")
    summary = soap.get_scan_summary(1001)
    assert (summary.loc, summary.high, summary.medium, summary.low, summary.info) == (1200, 1, 2, 3, 4)
    body = soap_server.calls[-1][1]
    assert _texts(body, "ScanID") == ["1001"]
    assert _texts(body, "includeUnvisited") == ["false"]


def test_update_scan_comment_and_cancel(soap, soap_server):
    soap_server.on("UpdateScanComment", "<IsSuccesfull>true</IsSuccesfull>")
    soap_server.on("CancelScan", "<IsSuccesfull>true</IsSuccesfull>")

    assert soap.update_scan_comment(1001, "nightly") is True
    assert _texts(soap_server.calls[-1][1], "Comment") == ["nightly"]

    assert soap.cancel_scan("run-42") is True
    op, body = soap_server.calls[-1]
    assert op == "CancelScan"
    assert _texts(body, "RunId") == ["run-42"]


def test_cancel_scan_failure(soap, soap_server):
    soap_server.on("CancelScan", "<IsSuccesfull>false</IsSuccesfull><ErrorMessage>already finished</ErrorMessage>")
    assert soap.cancel_scan("run-42") is False


def test_delete_project_and_user(soap, soap_server):
    soap_server.on("DeleteProjects", "<IsSuccesfull>true</IsSuccesfull>")
    soap_server.on("DeleteUser", "<IsSuccesfull>true</IsSuccesfull>")

    assert soap.delete_project(7) is True
    assert _texts(soap_server.calls[-1][1], "long") == ["7"]
    assert soap.delete_projects([8, 9]) is True
    assert _texts(soap_server.calls[-1][1], "long") == ["8", "9"]

    assert soap.delete_user(12) is True
    assert _texts(soap_server.calls[-1][1], "UserID") == ["12"]


def test_get_all_users(soap, soap_server):
    soap_server.on("GetAllUsers", "<IsSuccesfull>true</IsSuccesfull><UserDataList>"
                   "<UserData><ID>1</ID><UserName>admin</UserName><FirstName>Ada</FirstName>"
                   "<LastName>Lovelace</LastName><Email>ada@example.com</Email>"
                   "<LastLoginDate><Year>2021</Year><Month>6</Month><Day>1</Day><Hour>0</Hour>"
                   "<Minute>0</Minute><Second>0</Second></LastLoginDate></UserData>"
                   "</UserDataList>")
    users = soap.get_all_users()
    assert [(u.id, u.user_name, u.first_name, u.last_name, u.email) for u in users] == [
        (1, "admin", "Ada", "Lovelace", "ada@example.com")]
    assert users[0].last_login_date.month == 6
    assert _texts(soap_server.calls[-1][1], "SessionID") == ["sess-1"]


def test_get_configuration_set_list(soap, soap_server):
    soap_server.on("GetConfigurationSetList", "<IsSuccesfull>true</IsSuccesfull><ConfigSetList>"
                   "<ConfigurationSet><ID>1</ID><ConfigSetName>Default Configuration</ConfigSetName></ConfigurationSet>"
                   "<ConfigurationSet><ID>2</ID><ConfigSetName>Japanese</ConfigSetName></ConfigurationSet>"
                   "</ConfigSetList>")
    sets = soap.get_configuration_set_list()
    assert [(c.id, c.config_set_name) for c in sets] == [(1, "Default Configuration"), (2, "Japanese")]

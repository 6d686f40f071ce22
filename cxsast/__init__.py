"""
Client library for a SAST scanning server.
- CxRestClient: JSON REST API (cookie session; engines, queue, projects, teams, reports)
- CxSoapClient: legacy SOAP SDK (session id; scans, projects, presets, users, groups)
- ScanWatcher / ReportWatcher: polling loops on top of both
"""
from .config import CxConfig, load_cx_config
from .errors import CxError, ResponseError, SessionExpiredError
from .rest_client import CxRestClient
from .soap_client import CxSoapClient
from .watcher import ReportWatcher, ScanWatcher

__version__ = "1.6.0"

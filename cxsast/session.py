from __future__ import annotations

import logging

import requests
from requests.adapters import HTTPAdapter
import urllib3

from .config import CxConfig

logger = logging.getLogger(__name__)


def build_session(cfg: CxConfig) -> requests.Session:
    s = requests.Session()
    s.headers.update({"User-Agent": cfg.user_agent})
    s.verify = cfg.verify_ssl
    if not cfg.verify_ssl:
        # self-signed certificates are the norm on on-prem scanners
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    retry = urllib3.Retry(total=3, backoff_factor=0.3, status_forcelist=(429, 500, 502, 503, 504))
    adapter = HTTPAdapter(pool_connections=10, pool_maxsize=10, max_retries=retry)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    logger.debug("HTTP session ready (verify_ssl=%s)", cfg.verify_ssl)
    return s

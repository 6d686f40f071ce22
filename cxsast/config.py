from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "cxsast-py/1.6"


@dataclass
class CxConfig:
    url: str
    username: Optional[str] = None
    password: Optional[str] = None
    verify_ssl: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    timeout: int = 60
    poll_interval: float = 5.0
    max_unknown_polls: int = 2
    report_timeout: int = 600

    def __repr__(self) -> str:
        # keep the password out of debug logs
        return (f"CxConfig(url={self.url!r}, username={self.username!r}, "
                f"verify_ssl={self.verify_ssl}, poll_interval={self.poll_interval})")


def _parse_bool(v: Optional[str], default: bool) -> bool:
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


def load_cx_config(config_path: Optional[str] = None, url: Optional[str] = None) -> CxConfig:
    """
    Load the ``checkmarx:`` section of a YAML file, then apply CX_* env overrides.
    An explicit ``url`` (e.g. from the command line) wins over both.
    """
    data = {}
    if config_path:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    cx = data.get("checkmarx", {}) or {}
    url = url or os.environ.get("CX_URL") or cx.get("url") or ""
    if not url:
        raise ValueError("Missing server URL (checkmarx.url, CX_URL or --server).")

    verify_ssl = _parse_bool(os.environ.get("CX_VERIFY_SSL"), bool(cx.get("verify_ssl", True)))
    poll_interval = float(os.environ.get("CX_POLL_INTERVAL") or cx.get("poll_interval", 5.0))
    cfg = CxConfig(
        url=url.rstrip("/"),
        username=os.environ.get("CX_USERNAME") or cx.get("username"),
        password=os.environ.get("CX_PASSWORD") or cx.get("password"),
        verify_ssl=verify_ssl,
        user_agent=cx.get("user_agent", DEFAULT_USER_AGENT),
        timeout=int(cx.get("timeout", 60)),
        poll_interval=poll_interval,
        max_unknown_polls=int(cx.get("max_unknown_polls", 2)),
        report_timeout=int(cx.get("report_timeout", 600)),
    )
    logger.debug(f"Loaded config {cfg!r}")
    return cfg

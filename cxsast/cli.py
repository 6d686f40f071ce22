from __future__ import annotations

import argparse
import getpass
import logging
import logging.handlers
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .config import CxConfig, load_cx_config
from .domain import CurrentStatus, ProjectSettings, ReportRequest, ReportType, SourceCodeSettings
from .rest_client import CxRestClient
from .soap_client import CxSoapClient
from .watcher import ReportWatcher, ScanWatcher

logger = logging.getLogger(__name__)

LOGIN_FAILED = "Error: User/Pass was invalid. Please try again."


def setup_logging(verbose: bool, log_file: Optional[str] = None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.handlers.TimedRotatingFileHandler(
            log_file, when="midnight", backupCount=7, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cxsast",
        description="Drive a SAST scanning server through its SOAP and REST APIs.",
    )
    parser.add_argument("--server", help="Server URI (e.g. https://checkmarx.server). Env: CX_URL.")
    parser.add_argument("--user", help="Username; prefix with DOMAIN\\ for domain logins. Env: CX_USERNAME.")
    parser.add_argument("--password", help="Password. Env: CX_PASSWORD. Prompted for when omitted.")
    parser.add_argument("--config", help="Path to a YAML file with a 'checkmarx:' section.")
    parser.add_argument("--no-verify-ssl", action="store_true", help="Do not verify the server certificate.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug/verbose output.")
    parser.add_argument("--log", metavar="FILE", help="Also log to FILE (rotated daily, 7 kept).")

    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Start a scan and wait for it to finish.")
    src = scan.add_mutually_exclusive_group(required=True)
    src.add_argument("--location-path", help="Shared path the server reads sources from.")
    src.add_argument("--zip", help="Local zip archive with the sources.")
    proj = scan.add_mutually_exclusive_group(required=True)
    proj.add_argument("--project-id", type=int, help="Existing project to scan.")
    proj.add_argument("--project-name", help="Create a new project with this name.")
    scan.add_argument("--preset-id", type=int, help="Preset for a new project.")
    scan.add_argument("--configuration-id", type=int, default=0, help="Scan configuration for a new project.")
    scan.add_argument("--team", default="CxServer", help="Owning team of a new project.")
    scan.add_argument("--incremental", action="store_true")
    scan.add_argument("--private", action="store_true")
    scan.add_argument("--cron", default="", help="Cron expression for a scheduled scan.")
    scan.add_argument("--utc-start", type=int, default=0, help="Schedule start (UTC epoch, 0 = now).")
    scan.add_argument("--utc-end", type=int, default=0, help="Schedule end (UTC epoch, 0 = never).")

    lst = sub.add_parser("list", help="List server objects.")
    what = lst.add_mutually_exclusive_group(required=True)
    for name in ("projects", "scans", "presets", "configurations", "users", "teams", "engines", "queue"):
        what.add_argument(f"--{name}", dest="what", action="store_const", const=name)

    rpt = sub.add_parser("report", help="Generate and download a scan report.")
    rpt.add_argument("--scan-id", type=int, required=True)
    rpt.add_argument("--type", dest="report_type", choices=[t.value for t in ReportType], default="PDF")
    rpt.add_argument("--output", help="Destination file (default: scan-<id>.<type>).")

    reg = sub.add_parser("register", help="Register a scan engine.")
    reg.add_argument("--name", required=True)
    reg.add_argument("--url", required=True, help="Engine URI, e.g. http://engine/CxSourceAnalyzerEngineWCF/...")
    reg.add_argument("--min-loc", type=int, default=0)
    reg.add_argument("--max-loc", type=int, default=999999999)
    reg.add_argument("--blocked", action="store_true")

    unreg = sub.add_parser("unregister", help="Unregister (or only block) a scan engine.")
    unreg.add_argument("--engine-id", type=int, required=True)
    unreg.add_argument("--block-only", action="store_true")
    return parser


def resolve_config(args: argparse.Namespace) -> CxConfig:
    """CLI options override environment, which overrides the YAML file."""
    cfg = load_cx_config(args.config, url=args.server)
    if args.user:
        cfg.username = args.user
    if args.password:
        cfg.password = args.password
    if args.no_verify_ssl:
        cfg.verify_ssl = False
    if cfg.username and not cfg.password and sys.stdin.isatty():
        cfg.password = getpass.getpass(f"Password for {cfg.username}: ")
    if not cfg.username or not cfg.password:
        raise ValueError("Both a username and a password are required.")
    return cfg


def _progress(marker: str) -> None:
    sys.stdout.write(marker)
    sys.stdout.flush()


def cmd_scan(args: argparse.Namespace, cfg: CxConfig) -> int:
    if args.project_name and args.preset_id is None:
        print("Error: --preset-id is required with --project-name.", file=sys.stderr)
        return 2

    with CxSoapClient(cfg) as soap:
        if not soap.login(cfg.username, cfg.password):
            print(LOGIN_FAILED, file=sys.stderr)
            return 1

        if args.project_id is not None:
            project = ProjectSettings(project_id=args.project_id)
        else:
            group_id = soap.find_group_id(args.team)
            if group_id is None:
                print(f"Error: team '{args.team}' was not found.", file=sys.stderr)
                return 1
            project = ProjectSettings(project_name=args.project_name, preset_id=args.preset_id,
                                      scan_configuration_id=args.configuration_id,
                                      associated_group_id=group_id, owner=cfg.username)

        if args.zip:
            try:
                source = SourceCodeSettings.from_zip(args.zip)
            except OSError as e:
                print(f"Error: cannot read {args.zip}: {e}", file=sys.stderr)
                return 1
        else:
            source = SourceCodeSettings.from_path(args.location_path)

        _progress(f"Scanning {args.zip or args.location_path}, please wait...")
        run_id = soap.scan(project, source, args.incremental, args.private,
                           args.cron, args.utc_start, args.utc_end)
        if not run_id:
            print("failed: the scan could not be started")
            return 1

        watcher = ScanWatcher(soap, interval=cfg.poll_interval, max_unknown=cfg.max_unknown_polls,
                              on_progress=_progress)
        status = watcher.wait(run_id)
        if status is None or not status.current_status.is_terminal:
            print(" gave up: scan status is unknown")
            return 1
        if status.current_status in (CurrentStatus.CANCELED, CurrentStatus.DELETED):
            print(f"scan cancelled or deleted! {status.error_message}")
            return 1
        if status.current_status is CurrentStatus.FAILED:
            print(f"failed: {status.error_message}")
            return 1

        print(f"done: {status.time_finished or ''}")
        if args.verbose:
            summary = soap.get_scan_summary(status.scan_id)
            if summary:
                print(f"{summary.loc}loc, {summary.high} high, {summary.medium} medium, "
                      f"{summary.low} low, {summary.info} info vulnerabilities.")
        return 0


def _rest_login(cfg: CxConfig) -> Optional[CxRestClient]:
    rest = CxRestClient(cfg)
    if not rest.login(cfg.username, cfg.password):
        print(LOGIN_FAILED, file=sys.stderr)
        return None
    return rest


def _list_soap(what: str, soap: CxSoapClient) -> None:
    if what == "projects":
        for p in soap.get_projects_to_display():
            print(f"[{p.project_id}] {p.project_name} was last scanned on {p.last_scan_date} "
                  f"({p.total_scans} total scans)")
    elif what == "scans":
        for s in soap.get_project_scanned_display_data():
            print(f"[{s.project_id}] {s.project_name} scanned at {s.last_scan_date}: "
                  f"{s.high} high, {s.medium} medium, {s.low} low, {s.info} info")
    elif what == "presets":
        for p in soap.get_presets():
            print(f"[{p.id}] {p.preset_name}")
    elif what == "configurations":
        for c in soap.get_configuration_set_list():
            print(f"[{c.id}] {c.config_set_name}")
    elif what == "users":
        for u in soap.get_all_users():
            print(f"[{u.id}] {u.user_name} {u.last_name}, {u.first_name} {u.email} {u.last_login_date}")


def _list_rest(what: str, rest: CxRestClient) -> None:
    if what == "teams":
        for t in rest.get_teams():
            print(f"[{t.id}] {t.name}")
    elif what == "engines":
        for e in rest.get_all_engine_details() or []:
            state = "alive" if e.is_alive else "down"
            if e.is_blocked:
                state += ", blocked"
            print(f"[{e.id}] {e.name} {e.uri} ({state})")
    elif what == "queue":
        for q in rest.get_all_scans_in_queue() or []:
            project = q.project.name if q.project else ""
            print(f"[{q.id}] {project} {q.stage or ''}")


def cmd_list(args: argparse.Namespace, cfg: CxConfig) -> int:
    if args.what in ("teams", "engines", "queue"):
        rest = _rest_login(cfg)
        if rest is None:
            return 1
        _list_rest(args.what, rest)
        return 0

    with CxSoapClient(cfg) as soap:
        if not soap.login(cfg.username, cfg.password):
            print(LOGIN_FAILED, file=sys.stderr)
            return 1
        _list_soap(args.what, soap)
    return 0


def cmd_report(args: argparse.Namespace, cfg: CxConfig) -> int:
    rest = _rest_login(cfg)
    if rest is None:
        return 1
    report_type = ReportType(args.report_type)
    output = args.output or f"scan-{args.scan_id}.{report_type.value.lower()}"
    watcher = ReportWatcher(rest, interval=cfg.poll_interval, timeout=cfg.report_timeout)
    path = watcher.download(ReportRequest(report_type=report_type, scan_id=args.scan_id), output)
    if path is None:
        logger.error("Report for scan %s could not be generated", args.scan_id)
        return 1
    print(path)
    return 0


def cmd_register(args: argparse.Namespace, cfg: CxConfig) -> int:
    rest = _rest_login(cfg)
    if rest is None:
        return 1
    logger.info(f"Registering scan engine: {args.name}")
    engine_id = rest.register_engine(args.name, args.url, args.min_loc, args.max_loc, args.blocked)
    if engine_id < 0:
        logger.warning(f"Unable to register scan engine: {args.name}")
        return 1
    logger.info(f"Registration completed: {engine_id}")
    return 0


def cmd_unregister(args: argparse.Namespace, cfg: CxConfig) -> int:
    rest = _rest_login(cfg)
    if rest is None:
        return 1
    logger.info(f"Unregistering scan engine: {args.engine_id}")
    if args.block_only:
        done = rest.update_engine(args.engine_id, is_blocked=True)
    else:
        done = rest.unregister_engine(args.engine_id)
    if done:
        logger.info(f"Successfully updated/unregistered scan engine: {args.engine_id}")
        return 0
    logger.warning(f"Unable to update/unregister scan engine: {args.engine_id}")
    return 1


COMMANDS = {
    "scan": cmd_scan,
    "list": cmd_list,
    "report": cmd_report,
    "register": cmd_register,
    "unregister": cmd_unregister,
}


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.log)

    try:
        cfg = resolve_config(args)
    except (ValueError, FileNotFoundError) as e:
        parser.print_usage(sys.stderr)
        print(f"Error: {e}", file=sys.stderr)
        return 2

    return COMMANDS[args.command](args, cfg)


if __name__ == "__main__":
    sys.exit(main())

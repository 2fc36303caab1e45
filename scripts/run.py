#!/usr/bin/env python3
"""Entry point for speakermigrate."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Mapping

# Ensure src/ is on sys.path for local imports when running as a script
ROOT_DIR = Path(__file__).resolve().parent.parent
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from speakermigrate.core.certs import CertificateAuthority  # noqa: E402
from speakermigrate.core.config import DevicesConfigError, load_devices, load_service_settings  # noqa: E402
from speakermigrate.core.logging import setup_logging  # noqa: E402
from speakermigrate.core.models import Device, DNSSettings, MigrationMethod  # noqa: E402
from speakermigrate.core.secrets import SecretNotFoundError, SecretsConfigError, get_password, load_secrets  # noqa: E402
from speakermigrate.core.storage import DeviceStore, load_local_config  # noqa: E402
from speakermigrate.migration.codec import SUBSYSTEMS  # noqa: E402
from speakermigrate.migration.errors import MigrationError  # noqa: E402
from speakermigrate.migration.manager import MigrationManager  # noqa: E402
from speakermigrate.speaker.client import make_shell_factory  # noqa: E402
from speakermigrate.speaker.info import DeviceInfoError  # noqa: E402


def _route(value: str) -> tuple[str, str]:
    subsystem, separator, mode = value.partition("=")
    if not separator or subsystem not in SUBSYSTEMS:
        allowed = ", ".join(SUBSYSTEMS)
        raise argparse.ArgumentTypeError(f"expected SUBSYSTEM=MODE with SUBSYSTEM one of: {allowed}")
    return subsystem, mode


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""

    device_parent = argparse.ArgumentParser(add_help=False)
    device_parent.add_argument("device", help="Speaker address (IP or hostname)")

    target_parent = argparse.ArgumentParser(add_help=False)
    target_parent.add_argument(
        "--target",
        default=None,
        help="Service base URL the speaker should use. Defaults to server.url from config/local.yml.",
    )

    routing_parent = argparse.ArgumentParser(add_help=False)
    routing_parent.add_argument("--proxy", default="", help="Proxy base URL for upstream passthrough")
    routing_parent.add_argument(
        "--route",
        type=_route,
        action="append",
        default=None,
        metavar="SUBSYSTEM=MODE",
        help="Route a subsystem (marge, stats, sw_update, bmx); MODE 'upstream' wraps the current URL",
    )

    parser = argparse.ArgumentParser(
        description=(
            "Redirect SoundTouch speakers to a local service over SSH. "
            "Use this CLI to preview, migrate, back up and revert speakers."
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=ROOT_DIR / "config" / "devices.yml",
        help="Path to the speaker inventory file (YAML)",
    )
    parser.add_argument(
        "--secrets",
        type=Path,
        default=ROOT_DIR / "config" / "secrets.yml",
        help="Path to the secrets file (YAML)",
    )
    parser.add_argument(
        "--local-config",
        type=Path,
        default=ROOT_DIR / "config" / "local.yml",
        help="Path to local.yml with server, data, ssh, dns and logging settings",
    )
    parser.add_argument(
        "--server-url",
        default=None,
        help="Base service URL. Overrides config/local.yml server.url.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting. Overrides config/local.yml logging.level.",
    )

    subcommands = parser.add_subparsers(dest="command", title="commands")

    summary_parser = subcommands.add_parser(
        "summary", help="Dry run: show current and planned state", parents=[device_parent, target_parent, routing_parent]
    )
    summary_parser.add_argument("--json", action="store_true", help="Print the summary as JSON")

    migrate_parser = subcommands.add_parser(
        "migrate", help="Redirect a speaker to the service", parents=[device_parent, target_parent, routing_parent]
    )
    migrate_parser.add_argument(
        "--method",
        choices=[method.value for method in MigrationMethod],
        default=MigrationMethod.XML.value,
        help="Redirection technique (default: xml)",
    )

    subcommands.add_parser("revert", help="Restore the original configuration", parents=[device_parent])
    subcommands.add_parser("backup", help="Back up the private config on the speaker", parents=[device_parent])
    subcommands.add_parser(
        "backup-offline", help="Copy the private config and hosts file to the data directory", parents=[device_parent]
    )
    subcommands.add_parser("trust-ca", help="Add the local CA to the speaker trust bundle", parents=[device_parent])

    services_parser = subcommands.add_parser("remote-services", help="Manage the remote_services marker")
    services_parser.add_argument("action", choices=["enable", "disable"])
    services_parser.add_argument("device", help="Speaker address (IP or hostname)")

    subcommands.add_parser("reboot", help="Reboot the speaker", parents=[device_parent])
    subcommands.add_parser(
        "test-hosts", help="Check hosts-file redirection with a test domain", parents=[device_parent, target_parent]
    )
    connection_parser = subcommands.add_parser(
        "test-connection", help="Fetch the target URL from the speaker", parents=[device_parent, target_parent]
    )
    connection_parser.add_argument(
        "--explicit-ca", action="store_true", help="Pass the local CA to curl instead of the trust bundle"
    )
    subcommands.add_parser(
        "test-dns", help="Query the service DNS from the speaker", parents=[device_parent, target_parent]
    )

    resolve_parser = subcommands.add_parser("resolve", help="Resolve a hostname from this machine")
    resolve_parser.add_argument("host")

    dns_parser = subcommands.add_parser("dns-settings", help="Show or change DNS redirection settings")
    toggle = dns_parser.add_mutually_exclusive_group()
    toggle.add_argument("--enable", dest="dns_enabled", action="store_const", const=True, default=None)
    toggle.add_argument("--disable", dest="dns_enabled", action="store_const", const=False)
    dns_parser.add_argument("--bind-addr", default=None, help="Listen address, e.g. ':53'")

    return parser


def build_manager(
    args: argparse.Namespace, logger: logging.Logger, local_config: Mapping[str, Any] | None
) -> MigrationManager:
    """Wire config, inventory, secrets and the SSH transport into a manager."""

    settings = load_service_settings(local_config)
    server_url = (args.server_url or settings.server_url).rstrip("/")

    devices: list[Device] = []
    if Path(args.config).exists():
        devices = load_devices(Path(args.config), logger)
    else:
        logger.debug("devices inventory not found at %s", args.config)

    store = DeviceStore(settings.data_dir, devices, Path(args.local_config), logger)
    secrets_path = Path(args.secrets)

    def password_for(host: str) -> str:
        device = store.find_device(host)
        secret_ref = device.secret_ref if device else None
        if not secret_ref:
            return ""
        return get_password(secret_ref, load_secrets(secrets_path, logger))

    def port_for(host: str) -> int | None:
        device = store.find_device(host)
        return device.ssh_port if device else None

    shell_factory = make_shell_factory(
        username=settings.ssh_username,
        port=settings.ssh_port,
        timeout=settings.ssh_timeout,
        password_for=password_for,
        port_for=port_for,
    )
    logger.debug(
        "manager configured server_url=%s data_dir=%s certs_dir=%s devices=%d",
        server_url,
        settings.data_dir,
        settings.certs_dir,
        len(devices),
    )
    return MigrationManager(
        server_url=server_url,
        store=store,
        authority=CertificateAuthority(settings.certs_dir),
        shell_factory=shell_factory,
        https_port=settings.https_port,
    )


def _options(args: argparse.Namespace) -> dict[str, str] | None:
    routes = getattr(args, "route", None)
    return dict(routes) if routes else None


def _print_summary(manager: MigrationManager, args: argparse.Namespace) -> str:
    summary = manager.get_migration_summary(args.device, args.target, args.proxy, _options(args))
    if args.json:
        return json.dumps(summary.to_dict(), indent=2)

    lines = [
        f"device:            {summary.device_name or '-'} ({summary.device_model or '-'})",
        f"serial:            {summary.device_serial or '-'}",
        f"firmware:          {summary.firmware_version or '-'}",
        f"ssh reachable:     {summary.ssh_success}",
        f"migrated:          {summary.is_migrated}",
        f"ca trusted:        {summary.ca_cert_trusted}",
        f"remote services:   {', '.join(summary.remote_services_found) or 'none'}",
        f"https check url:   {summary.server_https_url or '-'}",
        "",
        "current config:",
        summary.current_config,
        "",
        "planned config:",
        summary.planned_config,
    ]
    if summary.planned_hosts:
        lines.extend(["", "planned hosts entries:", summary.planned_hosts])
    return "\n".join(lines)


def _dns_settings(manager: MigrationManager, args: argparse.Namespace) -> str:
    settings = manager.store.get_dns_settings()
    if args.dns_enabled is not None or args.bind_addr:
        settings = DNSSettings(
            enabled=settings.enabled if args.dns_enabled is None else args.dns_enabled,
            bind_addr=args.bind_addr or settings.bind_addr,
        )
        manager.store.set_dns_settings(settings)
    return f"enabled={settings.enabled} bind_addr={settings.bind_addr}"


COMMANDS: dict[str, Callable[[MigrationManager, argparse.Namespace], str]] = {
    "summary": _print_summary,
    "migrate": lambda m, a: m.migrate_speaker(a.device, a.target, a.proxy, _options(a), MigrationMethod.parse(a.method)),
    "revert": lambda m, a: m.revert_migration(a.device),
    "backup": lambda m, a: m.backup_config(a.device),
    "backup-offline": lambda m, a: "\n".join(m.backup_config_off_device(a.device)),
    "trust-ca": lambda m, a: m.trust_ca_cert(a.device),
    "remote-services": lambda m, a: (
        m.ensure_remote_services(a.device) if a.action == "enable" else m.remove_remote_services(a.device)
    ),
    "reboot": lambda m, a: m.reboot(a.device),
    "test-hosts": lambda m, a: m.test_hosts_redirection(a.device, a.target),
    "test-connection": lambda m, a: m.test_connection(a.device, a.target, a.explicit_ca),
    "test-dns": lambda m, a: m.test_dns_redirection(a.device, a.target),
    "resolve": lambda m, a: m.get_resolved_ip(a.host),
    "dns-settings": _dns_settings,
}


def main(argv: list[str] | None = None) -> int:
    """Run the CLI."""

    parser = build_parser()
    args = parser.parse_args(argv)
    local_config = load_local_config(args.local_config)
    logger = setup_logging(local_config, cli_level=logging.DEBUG if args.debug else None)

    if args.command is None:
        parser.print_help()
        return 0

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.error(f"Unknown command: {args.command}")
        return 2

    log_extra = {"device": getattr(args, "device", "-")}
    try:
        manager = build_manager(args, logger, local_config)
        output = handler(manager, args)
    except MigrationError as exc:
        if exc.log:
            print(exc.log, end="" if exc.log.endswith("\n") else "\n")
        logger.error("%s failed: %s", args.command, exc, extra=log_extra)
        return 1
    except (DevicesConfigError, SecretsConfigError, SecretNotFoundError, DeviceInfoError, OSError) as exc:
        logger.error("%s failed: %s", args.command, exc, extra=log_extra)
        return 1

    if output:
        print(output, end="" if output.endswith("\n") else "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

"""Heuristic "already migrated" detection from a migration summary."""

from __future__ import annotations

from speakermigrate.core.models import MigrationSummary
from speakermigrate.migration.patching import mentions_vendor_domain
from speakermigrate.migration.resolver import target_hostname


def _config_points_at(summary: MigrationSummary, host: str) -> bool:
    config = summary.parsed_current_config
    if config is None or not host:
        return False
    return any(host in url for url in config.urls())


def _hosts_redirected(summary: MigrationSummary) -> bool:
    return summary.ca_cert_trusted and mentions_vendor_domain(summary.current_hosts)


def _dns_redirected(summary: MigrationSummary, host: str) -> bool:
    if not summary.ca_cert_trusted:
        return False
    if summary.dns_hook_installed:
        return True
    return bool(host) and host in summary.current_resolv_conf


def is_migrated(summary: MigrationSummary) -> bool:
    """Infer migration state from config URLs, hosts/resolv content and CA trust.

    This is an approximation: a speaker pointed manually at a similarly
    named host is reported as migrated.
    """

    if not summary.ssh_success:
        return False

    host = target_hostname(summary.target_url)
    return _config_points_at(summary, host) or _hosts_redirected(summary) or _dns_redirected(summary, host)

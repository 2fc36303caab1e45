"""Pure text transformations applied to files read from a speaker.

Nothing here talks to a device: every function takes the current file text
and returns the new text, so the same logic is used for migration, revert
and the dry-run preview.
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass

HOSTS_PATH = "/etc/hosts"
RESOLV_CONF_PATH = "/etc/resolv.conf"
PRIORITY_RESOLV_PATH = "/mnt/nv/aftertouch.resolv.conf"
BOOT_SCRIPT_PATH = "/mnt/nv/rc.local"

HOOK_MARKER = PRIORITY_RESOLV_PATH
HOOK_COMMENT = "# Aftertouch DNS hook"
SHEBANG = "#!/bin/sh"

# BusyBox cat writes this when asked for a missing file; older releases
# uploaded it back as the boot script.
STORED_ERROR_TEXT = "cat: can't open"

VENDOR_DOMAINS: tuple[str, ...] = (
    "streaming.bose.com",
    "updates.bose.com",
    "stats.bose.com",
    "bmx.bose.com",
    "content.api.bose.io",
    "events.api.bosecm.com",
    "bose-prod.apigee.net",
    "worldwide.bose.com",
    "music.api.bose.com",
)


@dataclass(frozen=True, slots=True)
class DhcpHook:
    """Where and what to insert into one DHCP client script."""

    path: str
    anchor: str
    line: str


DHCP_HOOKS: tuple[DhcpHook, ...] = (
    DhcpHook(
        path="/etc/udhcpc.d/50default",
        anchor='echo "search $domain"',
        line=f'        [ -f {HOOK_MARKER} ] && cat {HOOK_MARKER} && dns=""',
    ),
    DhcpHook(
        path="/opt/Bose/udhcpc.script",
        anchor='echo "search $search_list # $interface" >> $RESOLV_CONF',
        line=f'                [ -f {HOOK_MARKER} ] && cat {HOOK_MARKER} >> $RESOLV_CONF && dns=""',
    ),
)


def priority_resolv_content(ip: str) -> str:
    return (
        "# Created by Aftertouch/SoundTouch-Service\n"
        "# Priority nameserver for Bose service redirection\n"
        f"nameserver {ip}\n"
    )


def hosts_entry(ip: str, domain: str) -> str:
    return f"{ip}\t{domain}"


def planned_hosts(ip: str, domains: tuple[str, ...] = VENDOR_DOMAINS) -> str:
    return "\n".join(hosts_entry(ip, domain) for domain in domains)


def _split_lines(text: str) -> list[str]:
    body = text[:-1] if text.endswith("\n") else text
    return body.split("\n") if body else []


def rewrite_hosts(current: str, ip: str, domains: tuple[str, ...] = VENDOR_DOMAINS) -> str:
    """Point every vendor domain at ``ip``.

    Existing vendor entries get the new address, every other line (blank
    lines and comments included) is kept verbatim, and vendor domains that
    were missing are appended.
    """

    wanted = set(domains)
    found: set[str] = set()
    lines: list[str] = []

    for line in _split_lines(current):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            lines.append(line)
            continue

        fields = stripped.split()
        if len(fields) >= 2 and fields[1] in wanted:
            lines.append(hosts_entry(ip, fields[1]))
            found.add(fields[1])
            continue

        lines.append(line)

    lines.extend(hosts_entry(ip, domain) for domain in domains if domain not in found)
    return "\n".join(lines) + "\n"


def mentions_vendor_domain(text: str, domains: tuple[str, ...] = VENDOR_DOMAINS) -> bool:
    return any(domain in text for domain in domains)


def add_hosts_entry(current: str, domain: str, entry: str) -> str:
    """Append ``entry`` after dropping stale lines for ``domain``."""

    lines = [line for line in _split_lines(current) if domain not in line]
    lines.append(entry)
    return "\n".join(lines) + "\n"


def remove_hosts_entries(current: str, domain: str) -> str:
    """Drop lines for ``domain``; blank lines and comments are kept."""

    lines = [line for line in _split_lines(current) if domain not in line]
    return "\n".join(lines) + "\n" if lines else ""


def is_stored_error(text: str) -> bool:
    return STORED_ERROR_TEXT in text


def patch_dhcp_script(text: str, hook: DhcpHook) -> tuple[str, bool]:
    """Insert the hook line after each anchor line, unless already present."""

    if HOOK_MARKER in text:
        return text, False

    patched: list[str] = []
    changed = False
    for line in text.split("\n"):
        patched.append(line)
        if hook.anchor in line:
            patched.append(hook.line)
            changed = True

    if not changed:
        return text, False
    return "\n".join(patched), True


_SED_SPECIAL = re.compile(r"([\\/.*\[\]^$])")


def _sed_pattern(text: str) -> str:
    return _SED_SPECIAL.sub(r"\\\1", text)


def _sed_append(hook: DhcpHook) -> str:
    script = f"/{_sed_pattern(hook.anchor)}/a \\{hook.line}"
    return f"sed -i {shlex.quote(script)} {shlex.quote(hook.path)}"


def boot_hook_block() -> str:
    """Shell block re-installing the DHCP hooks on every boot.

    The firmware restores ``/etc`` and ``/opt`` on updates, so the boot
    script re-applies the same line :func:`patch_dhcp_script` inserts.
    """

    lines = [
        f"{HOOK_COMMENT}: prioritizes our custom nameserver if it exists",
        f'if [ -f "{HOOK_MARKER}" ]; then',
    ]
    for hook in DHCP_HOOKS:
        lines.extend(
            [
                f'    if [ -f "{hook.path}" ] && ! grep -q "{HOOK_MARKER}" "{hook.path}"; then',
                f'        logger -t "aftertouch" "Patching {hook.path} with Aftertouch DNS hook"',
                f"        {_sed_append(hook)}",
                "    fi",
            ]
        )
    lines.append("fi")
    return "\n".join(lines) + "\n"


def patch_boot_script(current: str) -> tuple[str, bool]:
    """Append the hook block to the boot script if its marker is absent."""

    if HOOK_MARKER in current:
        return current, False

    base = "" if is_stored_error(current) else current
    if not base.startswith(SHEBANG):
        base = f"{SHEBANG}\n{base}"
    if not base.endswith("\n"):
        base += "\n"

    return f"{base}\n{boot_hook_block()}", True


def strip_boot_hook(current: str) -> tuple[str, bool]:
    """Remove the hook block: its comment line through the matching ``fi``."""

    if HOOK_COMMENT not in current:
        return current, False

    kept: list[str] = []
    skipping = False
    depth = 0
    changed = False

    for line in current.split("\n"):
        stripped = line.strip()
        if not skipping and HOOK_COMMENT in line:
            if kept and not kept[-1].strip():
                kept.pop()
            skipping = True
            depth = 0
            changed = True
            continue

        if skipping:
            if stripped == "if" or stripped.startswith("if "):
                depth += 1
            elif stripped == "fi":
                depth -= 1
                if depth <= 0:
                    skipping = False
            continue

        kept.append(line)

    return "\n".join(kept), changed

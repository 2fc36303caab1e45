"""The ``remote_services`` marker that keeps SSH enabled across reboots."""

from __future__ import annotations

from speakermigrate.migration.oplog import OperationLog
from speakermigrate.speaker import commands
from speakermigrate.speaker.remote import RemoteShell, try_run

# Order of preference; /tmp does not survive a reboot.
REMOTE_SERVICES_LOCATIONS: tuple[str, ...] = (
    "/etc/remote_services",
    "/mnt/nv/remote_services",
    "/tmp/remote_services",
)
VOLATILE_LOCATION = "/tmp/remote_services"


def find_remote_services(shell: RemoteShell) -> list[str]:
    found = []
    for location in REMOTE_SERVICES_LOCATIONS:
        ok, _ = try_run(shell, commands.exists_test(location))
        if ok:
            found.append(location)
    return found


def is_persistent(locations: list[str]) -> bool:
    return any(location != VOLATILE_LOCATION for location in locations)


def enable_remote_services(shell: RemoteShell, log: OperationLog) -> bool:
    """Create the marker at the first location that accepts it."""

    for location in REMOTE_SERVICES_LOCATIONS:
        ok, output = try_run(shell, commands.privileged(commands.touch(location)))
        log.command(f"touch {location} (with rw)", output)
        if ok:
            return True

        ok, output = try_run(shell, commands.touch(location))
        log.command(f"touch {location}", output)
        if ok:
            return True
    return False


def disable_remote_services(shell: RemoteShell, log: OperationLog) -> bool:
    """Remove the marker everywhere; true unless every location failed."""

    failures = 0
    for location in REMOTE_SERVICES_LOCATIONS:
        ok, output = try_run(shell, commands.privileged(commands.remove(location, verbose=True)))
        log.command(f"Removing {location}", output)
        if ok:
            continue

        ok, output = try_run(shell, commands.remove(location, verbose=True))
        log.command(f"Fallback removing {location}", output)
        if not ok:
            failures += 1

    return failures < len(REMOTE_SERVICES_LOCATIONS)

"""Live device information from the speaker's local ``:8090/info`` endpoint."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass

import requests

INFO_PORT = 8090
DEFAULT_TIMEOUT = 5.0


class DeviceInfoError(RuntimeError):
    """Raised when ``/info`` cannot be fetched or decoded."""


@dataclass(slots=True)
class DeviceInfo:
    """Identity fields reported by a speaker."""

    device_id: str = ""
    name: str = ""
    type: str = ""
    mac_address: str = ""
    software_version: str = ""
    serial_number: str = ""
    account_uuid: str = ""


def info_url(address: str) -> str:
    """Build the info URL; addresses that already carry a port are used as-is."""

    host, _, port = address.rpartition(":")
    if host and port.isdigit() and not host.endswith(":"):
        return f"http://{address}/info"
    return f"http://{address}:{INFO_PORT}/info"


def _text(element: ET.Element, tag: str) -> str:
    child = element.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def parse_device_info(xml_text: str) -> DeviceInfo:
    """Decode an ``<info>`` document.

    Firmware comes from the ``SCM`` component; the serial number prefers the
    first component that reports one (``SCM`` then ``PackagedProduct``).
    """

    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise DeviceInfoError(f"invalid info XML: {exc}") from exc

    info = DeviceInfo(
        device_id=root.get("deviceID", ""),
        name=_text(root, "name"),
        type=_text(root, "type"),
        mac_address=_text(root, "maccAddress"),
        account_uuid=_text(root, "margeAccountUUID"),
    )

    for component in root.findall("components/component"):
        category = _text(component, "componentCategory")
        if category == "SCM":
            info.software_version = _text(component, "softwareVersion")
            if not info.serial_number:
                info.serial_number = _text(component, "serialNumber")
        elif category == "PackagedProduct" and not info.serial_number:
            info.serial_number = _text(component, "serialNumber")

    return info


def fetch_device_info(address: str, timeout: float = DEFAULT_TIMEOUT) -> DeviceInfo:
    """Fetch and decode live device information."""

    url = info_url(address)
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise DeviceInfoError(f"failed to fetch info from {url}: {exc}") from exc

    return parse_device_info(response.text)

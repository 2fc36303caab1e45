"""Marshal and unmarshal the speaker's private configuration document."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import fields
from typing import Mapping

from speakermigrate.core.models import PrivateConfig

PRIVATE_CONFIG_PATH = "/opt/Bose/etc/SoundTouchSdkPrivateCfg.xml"
XML_HEADER = '<?xml version="1.0" encoding="utf-8"?>\n'
ROOT_TAG = "SoundTouchSdkPrivateCfg"

# Element order matches the document shipped on the speaker.
_ELEMENTS: tuple[tuple[str, str], ...] = (
    ("marge_server_url", "margeServerUrl"),
    ("stats_server_url", "statsServerUrl"),
    ("sw_update_url", "swUpdateUrl"),
    ("use_pandora_production_server", "usePandoraProductionServer"),
    ("is_zeroconf_enabled", "isZeroconfEnabled"),
    ("save_marge_customer_report", "saveMargeCustomerReport"),
    ("bmx_registry_url", "bmxRegistryUrl"),
)

_BOOL_FIELDS = {item.name for item in fields(PrivateConfig) if item.type in ("bool", bool)}

# Routing option name -> PrivateConfig attribute.
SUBSYSTEMS: dict[str, str] = {
    "marge": "marge_server_url",
    "stats": "stats_server_url",
    "sw_update": "sw_update_url",
    "bmx": "bmx_registry_url",
}
UPSTREAM = "upstream"


class ConfigCodecError(ValueError):
    """Raised when a configuration document cannot be encoded or decoded."""


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("true", "1")


def unmarshal(xml_text: str) -> PrivateConfig:
    """Decode the XML document; unknown elements are ignored."""

    try:
        root = ET.fromstring(xml_text.strip())
    except ET.ParseError as exc:
        raise ConfigCodecError(f"invalid private config: {exc}") from exc

    if root.tag != ROOT_TAG:
        raise ConfigCodecError(f"unexpected root element <{root.tag}>")

    config = PrivateConfig()
    for attribute, tag in _ELEMENTS:
        element = root.find(tag)
        if element is None:
            continue
        text = (element.text or "").strip()
        if attribute in _BOOL_FIELDS:
            setattr(config, attribute, _parse_bool(text))
        else:
            setattr(config, attribute, text)
    return config


def marshal(config: PrivateConfig) -> str:
    """Encode the config with the XML header and two-space indentation."""

    root = ET.Element(ROOT_TAG)
    for attribute, tag in _ELEMENTS:
        value = getattr(config, attribute)
        if attribute in _BOOL_FIELDS:
            if not isinstance(value, bool):
                raise ConfigCodecError(f"{attribute} must be a boolean")
            text = "true" if value else "false"
        else:
            if not isinstance(value, str):
                raise ConfigCodecError(f"{attribute} must be a string")
            text = value
        ET.SubElement(root, tag).text = text

    ET.indent(root, space="  ")
    return XML_HEADER + ET.tostring(root, encoding="unicode")


def apply_routing_options(
    planned: PrivateConfig,
    current: PrivateConfig | None,
    proxy_url: str,
    options: Mapping[str, str] | None,
) -> PrivateConfig:
    """Wrap current URLs behind ``proxy_url`` for subsystems routed upstream.

    With ``options`` set to ``None`` nothing changes; callers that want to
    proxy every subsystem use :func:`proxy_all`.
    """

    if not proxy_url or current is None or options is None:
        return planned

    for option, attribute in SUBSYSTEMS.items():
        current_value = getattr(current, attribute)
        if options.get(option) == UPSTREAM and current_value:
            setattr(planned, attribute, proxied_url(proxy_url, current_value))
    return planned


def proxy_all(planned: PrivateConfig, current: PrivateConfig, proxy_url: str) -> PrivateConfig:
    for attribute in SUBSYSTEMS.values():
        setattr(planned, attribute, proxied_url(proxy_url, getattr(current, attribute)))
    return planned


def proxied_url(proxy_url: str, upstream_url: str) -> str:
    return f"{proxy_url}/proxy/{upstream_url}"

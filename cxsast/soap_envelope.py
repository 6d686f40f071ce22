"""SOAP 1.1 envelope building and parsing for the legacy SDK web service."""
from __future__ import annotations

import base64
import xml.etree.ElementTree as ET
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from .errors import ResponseError

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"

ET.register_namespace("soap", SOAP_ENV_NS)


class SoapList(NamedTuple):
    """A sequence rendered as repeated ``item_tag`` children of its parent element."""
    item_tag: str
    items: Iterable[Any]


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _append(parent: ET.Element, ns: str, name: str, value: Any) -> None:
    if isinstance(value, list):
        # repeated siblings, as decoded by element_to_value
        for item in value:
            _append(parent, ns, name, item)
        return
    el = ET.SubElement(parent, f"{{{ns}}}{name}")
    if value is None:
        return
    if isinstance(value, SoapList):
        for item in value.items:
            _append(el, ns, value.item_tag, item)
    elif isinstance(value, dict):
        for k, v in value.items():
            _append(el, ns, k, v)
    elif isinstance(value, bool):
        el.text = "true" if value else "false"
    elif isinstance(value, (bytes, bytearray)):
        el.text = base64.b64encode(bytes(value)).decode("ascii")
    else:
        el.text = str(value)


def build_envelope(namespace: str, operation: str, params: Dict[str, Any]) -> bytes:
    envelope = ET.Element(f"{{{SOAP_ENV_NS}}}Envelope")
    body = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
    _append(body, namespace, operation, params)
    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def element_to_value(el: ET.Element) -> Any:
    children = list(el)
    if not children:
        return el.text
    out: Dict[str, Any] = {}
    for child in children:
        key = _local(child.tag)
        value = element_to_value(child)
        if key in out:
            if not isinstance(out[key], list):
                out[key] = [out[key]]
            out[key].append(value)
        else:
            out[key] = value
    return out


def parse_envelope(content: bytes, operation: str, endpoint: Optional[str] = None) -> Dict[str, Any]:
    """Return the ``<operation>Result`` element of a response envelope as a dict."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise ResponseError(f"Malformed SOAP response for {operation}: {e}", endpoint) from e

    body = root.find(f"{{{SOAP_ENV_NS}}}Body")
    if body is None:
        raise ResponseError(f"SOAP response for {operation} has no Body", endpoint)

    fault = body.find(f"{{{SOAP_ENV_NS}}}Fault")
    if fault is not None:
        reason = fault.findtext("faultstring") or "SOAP fault"
        raise ResponseError(reason, endpoint)

    for response in body:
        if _local(response.tag) != f"{operation}Response":
            continue
        for result in response:
            if _local(result.tag) == f"{operation}Result":
                value = element_to_value(result)
                return value if isinstance(value, dict) else {}
        return {}
    raise ResponseError(f"SOAP response does not contain {operation}Response", endpoint)


def as_list(container: Any, item_tag: str) -> List[Any]:
    """Items of an ArrayOf* container, which decodes to None, one dict or a list."""
    if not isinstance(container, dict):
        return []
    items = container.get(item_tag)
    if items is None:
        return []
    if isinstance(items, list):
        return items
    return [items]

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING

from assembler.framework.errors import ArchiverError
from assembler.handlers.base import AggregatingHandler, normalize_name, register_handler

if TYPE_CHECKING:
    from assembler.archive.writers import ArchiveWriter, FileInfo

COMPONENTS_XML_PATH = "META-INF/plexus/components.xml"


def _child_text(element: ET.Element, tag: str) -> str | None:
    child = element.find(tag)
    if child is None or child.text is None:
        return None
    return child.text.strip()


@register_handler
class ComponentsXmlHandler(AggregatingHandler):
    """Merges plexus `components.xml` descriptors.

    Components are keyed by role + role-hint; the first definition of a key
    wins.
    """

    name = "plexus"

    def __init__(self) -> None:
        super().__init__()
        self.components: dict[str, ET.Element] = {}

    def add_components_xml(self, content: bytes, source: str = "<components.xml>") -> None:
        try:
            root = ET.fromstring(content)
        except ET.ParseError as exc:
            raise ArchiverError(f"Error reading {source}: {exc}") from exc

        for component in root.iter("component"):
            role = _child_text(component, "role")
            if not role:
                continue
            key = role + (_child_text(component, "role-hint") or "")
            self.components.setdefault(key, component)

    def select(self, info: "FileInfo") -> bool:
        if not info.is_file or normalize_name(info) != COMPONENTS_XML_PATH:
            return True
        self.add_components_xml(info.read(), info.source)
        return False

    def render(self) -> bytes:
        component_set = ET.Element("component-set")
        components = ET.SubElement(component_set, "components")
        for component in self.components.values():
            components.append(component)
        ET.indent(component_set)
        return ET.tostring(component_set, encoding="utf-8", xml_declaration=True)

    def finalize_creation(self, writer: "ArchiveWriter") -> None:
        writer.resources()
        if not self.components:
            return
        self.add_generated(writer, COMPONENTS_XML_PATH, self.render())

    def virtual_paths(self) -> list[str]:
        if self.components:
            return [COMPONENTS_XML_PATH]
        return []

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from .errors import ConfigParseError
from .graph import Component, ComponentGraph, TaskRef

logger = logging.getLogger(__name__)


COMPONENTS_KEY = "components"
PROFILES_KEY = "profiles"

_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_LIST_SPLIT_RE = re.compile(r"[,\s]+")


def _line(node: yaml.Node) -> int:
    return node.start_mark.line + 1


def _mapping_items(
    node: yaml.MappingNode, *, source: str, what: str
) -> List[Tuple[str, yaml.ScalarNode, yaml.Node]]:
    """Return (key, key_node, value_node) triples, rejecting duplicate or non-scalar keys."""

    seen: Dict[str, int] = {}
    items: List[Tuple[str, yaml.ScalarNode, yaml.Node]] = []
    for key_node, value_node in node.value:
        if not isinstance(key_node, yaml.ScalarNode):
            raise ConfigParseError(f"{what}: keys must be plain names", line=_line(key_node), source=source)
        key = key_node.value
        if key in seen:
            raise ConfigParseError(
                f"{what}: duplicate key '{key}' (first defined at line {seen[key]})",
                line=_line(key_node),
                source=source,
            )
        seen[key] = _line(key_node)
        items.append((key, key_node, value_node))
    return items


def _scalar(node: yaml.Node, *, source: str, component_id: str, key: str) -> str:
    if not isinstance(node, yaml.ScalarNode):
        raise ConfigParseError(
            f"component '{component_id}': '{key}' must be a single value",
            line=_line(node),
            component_id=component_id,
            source=source,
        )
    return str(node.value).strip()


def _id_list(node: yaml.Node, *, source: str, component_id: str, key: str) -> List[str]:
    """Parse a requirement list in any of its accepted spellings.

    - ["a", "b"]  (flow or block sequence)
    - a, b  /  a b  (bare scalar list)
    - []  or empty
    """

    raw: List[Tuple[str, int]] = []
    if isinstance(node, yaml.SequenceNode):
        for item in node.value:
            if not isinstance(item, yaml.ScalarNode):
                raise ConfigParseError(
                    f"component '{component_id}': '{key}' entries must be component ids",
                    line=_line(item),
                    component_id=component_id,
                    source=source,
                )
            raw.append((item.value, _line(item)))
    elif isinstance(node, yaml.ScalarNode):
        # Null and "[]" both mean no requirements.
        if node.tag == "tag:yaml.org,2002:null" or node.value.strip() in {"", "[]"}:
            return []
        for part in _LIST_SPLIT_RE.split(node.value.strip()):
            raw.append((part, _line(node)))
    else:
        raise ConfigParseError(
            f"component '{component_id}': '{key}' must be a list of component ids",
            line=_line(node),
            component_id=component_id,
            source=source,
        )

    ids: List[str] = []
    for value, line in raw:
        value = value.strip().strip("\"'")
        if not value:
            continue
        if not _ID_RE.match(value):
            raise ConfigParseError(
                f"component '{component_id}': invalid component id '{value}' in '{key}'",
                line=line,
                component_id=component_id,
                source=source,
            )
        if value not in ids:
            ids.append(value)
    return ids


def _parse_component(
    key_node: yaml.ScalarNode, value_node: yaml.Node, *, source: str
) -> Component:
    cid = key_node.value
    line = _line(key_node)

    if not _ID_RE.match(cid):
        raise ConfigParseError(f"invalid component id '{cid}'", line=line, component_id=cid, source=source)

    if isinstance(value_node, yaml.ScalarNode) and value_node.tag == "tag:yaml.org,2002:null":
        fields: List[Tuple[str, yaml.ScalarNode, yaml.Node]] = []
    elif isinstance(value_node, yaml.MappingNode):
        fields = _mapping_items(value_node, source=source, what=f"component '{cid}'")
    else:
        # A field written at component indentation ends up here as its own "component".
        raise ConfigParseError(
            f"'{cid}' is not a component block; check indentation of the line",
            line=line,
            component_id=cid,
            source=source,
        )

    requires: Optional[List[str]] = None
    script: Optional[str] = None
    description: Optional[str] = None

    for key, fkey_node, fvalue in fields:
        if key == "requires":
            if requires is not None:
                raise ConfigParseError(
                    f"component '{cid}': declares both 'requires' and 'dependencies.required'",
                    line=_line(fkey_node),
                    component_id=cid,
                    source=source,
                )
            requires = _id_list(fvalue, source=source, component_id=cid, key=key)
        elif key == "dependencies":
            if not isinstance(fvalue, yaml.MappingNode):
                continue
            for dkey, dkey_node, dvalue in _mapping_items(fvalue, source=source, what=f"component '{cid}'"):
                if dkey != "required":
                    continue
                if requires is not None:
                    raise ConfigParseError(
                        f"component '{cid}': declares both 'requires' and 'dependencies.required'",
                        line=_line(dkey_node),
                        component_id=cid,
                        source=source,
                    )
                requires = _id_list(dvalue, source=source, component_id=cid, key="dependencies.required")
        elif key == "script":
            script = _scalar(fvalue, source=source, component_id=cid, key=key)
        elif key == "description":
            description = _scalar(fvalue, source=source, component_id=cid, key=key)
        else:
            logger.debug("Ignoring key %s of component %s (line %d)", key, cid, _line(fkey_node))

    try:
        task = TaskRef.from_script(script or f"setup-{cid}.sh")
    except ValueError as e:
        raise ConfigParseError(
            f"component '{cid}': cannot parse script reference: {e}",
            line=line,
            component_id=cid,
            source=source,
        ) from e

    return Component(
        id=cid,
        requires=tuple(requires or ()),
        task=task,
        description=description or cid,
        line=line,
    )


def _parse_profiles(node: yaml.Node, *, source: str) -> Dict[str, Tuple[str, ...]]:
    if not isinstance(node, yaml.MappingNode):
        raise ConfigParseError("'profiles' must be a mapping", line=_line(node), source=source)

    profiles: Dict[str, Tuple[str, ...]] = {}
    for name, _, body in _mapping_items(node, source=source, what="profiles"):
        members: List[str] = []
        if isinstance(body, yaml.MappingNode):
            for key, _, value in _mapping_items(body, source=source, what=f"profile '{name}'"):
                if key == "components":
                    members = _id_list(value, source=source, component_id=name, key=key)
        else:
            members = _id_list(body, source=source, component_id=name, key="components")
        profiles[name] = tuple(members)
    return profiles


def parse_graph(text: str, *, source: str = "<string>", base_dir: Optional[str] = None) -> ComponentGraph:
    """Parse configuration text into a ComponentGraph.

    Only the `components` section (and the optional `profiles` section) is
    interpreted; other top-level sections are ignored.
    """

    try:
        root = yaml.compose(text, Loader=yaml.SafeLoader)
    except yaml.MarkedYAMLError as e:
        mark = e.problem_mark or e.context_mark
        line = mark.line + 1 if mark is not None else None
        problem = e.problem or e.context or "malformed configuration"
        raise ConfigParseError(problem, line=line, source=source) from e
    except yaml.YAMLError as e:
        raise ConfigParseError(str(e), source=source) from e

    if root is None:
        raise ConfigParseError("configuration is empty", source=source)
    if not isinstance(root, yaml.MappingNode):
        raise ConfigParseError("configuration must be a mapping", line=_line(root), source=source)

    components_node: Optional[yaml.Node] = None
    profiles: Dict[str, Tuple[str, ...]] = {}
    for key, key_node, value in _mapping_items(root, source=source, what="configuration"):
        if key == COMPONENTS_KEY:
            components_node = value
        elif key == PROFILES_KEY:
            profiles = _parse_profiles(value, source=source)

    if components_node is None:
        raise ConfigParseError(f"missing '{COMPONENTS_KEY}:' section", source=source)
    if isinstance(components_node, yaml.ScalarNode) and components_node.tag == "tag:yaml.org,2002:null":
        entries: List[Tuple[str, yaml.ScalarNode, yaml.Node]] = []
    elif isinstance(components_node, yaml.MappingNode):
        entries = _mapping_items(components_node, source=source, what="components")
    else:
        raise ConfigParseError(
            f"'{COMPONENTS_KEY}' must be a mapping of component ids",
            line=_line(components_node),
            source=source,
        )

    components = [_parse_component(key_node, value, source=source) for _, key_node, value in entries]

    graph = ComponentGraph.build(components, profiles=profiles, base_dir=base_dir)
    logger.debug("Parsed %d components from %s", len(graph), source)
    return graph


def load_graph(path: str) -> ComponentGraph:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigParseError(f"cannot read configuration: {e.strerror or e}", source=str(p)) from e

    graph = parse_graph(text, source=str(p), base_dir=str(p.resolve().parent))
    logger.info("Loaded %d components from %s", len(graph), p)
    return graph

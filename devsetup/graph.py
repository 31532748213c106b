from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from .errors import ConfigParseError, UnknownComponentError


@dataclass(frozen=True)
class TaskRef:
    """Opaque reference to an external action: an argument vector, never a shell string."""

    argv: Tuple[str, ...]

    @classmethod
    def from_script(cls, script: str) -> "TaskRef":
        argv = tuple(shlex.split(script))
        if not argv:
            raise ValueError("empty task reference")
        return cls(argv=argv)

    def __str__(self) -> str:
        return " ".join(shlex.quote(a) for a in self.argv)


@dataclass(frozen=True)
class Component:
    id: str
    requires: Tuple[str, ...] = ()
    task: Optional[TaskRef] = None
    description: str = ""
    line: Optional[int] = None


@dataclass(frozen=True)
class ComponentGraph:
    components: Mapping[str, Component]
    dependents: Mapping[str, Tuple[str, ...]]
    profiles: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    base_dir: Optional[str] = None

    @classmethod
    def build(
        cls,
        components: List[Component],
        *,
        profiles: Optional[Mapping[str, Tuple[str, ...]]] = None,
        base_dir: Optional[str] = None,
    ) -> "ComponentGraph":
        """Index components by id and derive the reverse (dependents) map.

        Every required id must be defined in the same graph.
        """

        by_id: Dict[str, Component] = {}
        for c in components:
            if c.id in by_id:
                raise ConfigParseError(f"duplicate component id: {c.id}", line=c.line, component_id=c.id)
            by_id[c.id] = c

        dependents: Dict[str, List[str]] = {cid: [] for cid in by_id}
        for c in by_id.values():
            for dep in c.requires:
                if dep not in by_id:
                    raise UnknownComponentError(dep, referenced_by=c.id, line=c.line)
                dependents[dep].append(c.id)

        return cls(
            components=by_id,
            dependents={k: tuple(v) for k, v in dependents.items()},
            profiles=dict(profiles or {}),
            base_dir=base_dir,
        )

    @property
    def ids(self) -> List[str]:
        return list(self.components)

    def __contains__(self, component_id: object) -> bool:
        return component_id in self.components

    def __getitem__(self, component_id: str) -> Component:
        return self.components[component_id]

    def __iter__(self) -> Iterator[Component]:
        return iter(self.components.values())

    def __len__(self) -> int:
        return len(self.components)

    def to_dot(self) -> str:
        lines = ["digraph G {"]
        for c in self:
            if not c.requires:
                lines.append(f'  "{c.id}";')
            else:
                for dep in c.requires:
                    lines.append(f'  "{dep}" -> "{c.id}";')
        lines.append("}")
        return "\n".join(lines) + "\n"

"""Template registry: named subtrees and ``use`` instancing."""
from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import DuplicateTemplateError, TemplateCycleError, UnresolvedTemplateError
from .model import GridPlacement, Node, NodeKind, validate_attributes, walk

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 50


class TemplateRegistry:
    """Owns template subtrees for one defs scope.

    A registry may sit on top of a parent registry (for example templates
    loaded from shared files); local definitions shadow the parent's.
    """

    def __init__(
        self,
        parent: Optional["TemplateRegistry"] = None,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._templates: Dict[str, Node] = {}
        self._parent = parent
        self.max_depth = max_depth

    def define(self, name: str, subtree: Node) -> None:
        if name in self._templates:
            raise DuplicateTemplateError(f'template "{name}" is already defined')
        self._templates[name] = deepcopy(subtree)

    def define_all(self, templates: Iterable[Node]) -> None:
        for template in templates:
            self.define(template.id or "", template)

    def lookup(self, name: str) -> Optional[Node]:
        if name in self._templates:
            return self._templates[name]
        if self._parent is not None:
            return self._parent.lookup(name)
        return None

    def __contains__(self, name: str) -> bool:
        return self.lookup(name) is not None

    def names(self) -> List[str]:
        names = set(self._templates)
        if self._parent is not None:
            names.update(self._parent.names())
        return sorted(names)

    def expand(self, tree: Node) -> Node:
        """Return a new tree with every ``use`` node replaced by its instance."""
        return self._expand(tree, ())

    def _expand(self, node: Node, stack: Tuple[str, ...]) -> Node:
        if node.kind is NodeKind.USE:
            return self._instantiate(node, stack)
        return replace(
            node,
            attributes=dict(node.attributes),
            style=dict(node.style),
            children=[self._expand(child, stack) for child in node.children],
        )

    def _instantiate(self, use: Node, stack: Tuple[str, ...]) -> Node:
        name = use.attributes["ref"]
        if name in stack:
            chain = " -> ".join(stack + (name,))
            raise TemplateCycleError(f"template reference cycle: {chain}", node_path=use.label())
        if len(stack) >= self.max_depth:
            raise TemplateCycleError(
                f"maximum template depth of {self.max_depth} reached - recursive use?",
                node_path=use.label(),
            )
        blueprint = self.lookup(name)
        if blueprint is None:
            raise UnresolvedTemplateError(
                f'use references undefined template "{name}"', node_path=use.label()
            )

        instance = deepcopy(blueprint)
        if use.id:
            for descendant in walk(instance):
                if descendant is not instance and descendant.id:
                    descendant.id = f"{use.id}.{descendant.id}"
        instance.id = use.id
        for key, value in use.attributes.items():
            if key != "ref":
                instance.attributes[key] = value
        instance.classes = tuple(dict.fromkeys(instance.classes + use.classes))
        # a placement on the use replaces whichever placement mode the template had
        if use.placed:
            instance.placement = use.placement
            instance.placed = True
            instance.attributes.pop("place", None)
        elif "place" in use.attributes:
            instance.placement = GridPlacement()
            instance.placed = False
        logger.debug("instantiated template %s as %s", name, instance.label())

        expanded = self._expand(instance, stack + (name,))
        validate_attributes(expanded)
        return expanded


__all__ = ["TemplateRegistry", "DEFAULT_MAX_DEPTH"]

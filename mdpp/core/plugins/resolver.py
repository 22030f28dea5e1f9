"""Plugin dependency resolution.

Builds the transitive dependency graph of a requested plugin set, detects
missing dependencies, cycles and declared conflicts, and computes an
activation order in which every dependency precedes its dependents.

The graph is rebuilt on every call; nothing is cached between resolutions.
"""

from __future__ import annotations

import bisect
import logging
from collections import deque
from typing import Callable, Dict, Iterable, List, Optional, Set

from .manifest import PluginManifest
from .models import Conflict, MissingDependency, ResolutionResult

logger = logging.getLogger(__name__)

ManifestLookup = Callable[[str], Optional[PluginManifest]]


class DependencyResolver:
    """Resolves plugin dependencies and determines activation order.

    Args:
        lookup: returns the registered manifest for an id, or ``None``
        active_ids: returns the ids of currently active plugins
    """

    def __init__(self, lookup: ManifestLookup,
                 active_ids: Optional[Callable[[], Iterable[str]]] = None) -> None:
        self._lookup = lookup
        self._active_ids = active_ids or (lambda: ())

    def resolve(self, plugin_ids: Iterable[str]) -> ResolutionResult:
        requested = list(dict.fromkeys(plugin_ids))
        result = ResolutionResult(resolved=True)

        graph = self._build_graph(requested, result)

        result.circular = self._detect_cycles(graph)
        if result.circular:
            result.resolved = False

        result.conflicts = self._detect_conflicts(graph)
        if result.conflicts:
            result.resolved = False

        if result.missing_required:
            result.resolved = False

        result.order = self._activation_order(graph)

        logger.debug(
            "Resolved %s -> order=%s resolved=%s (missing=%d, conflicts=%d, cycles=%d)",
            requested, result.order, result.resolved,
            len(result.missing), len(result.conflicts), len(result.circular),
        )
        return result

    def would_conflict(self, plugin_id: str) -> List[str]:
        """Ids of active plugins that conflict with *plugin_id*, in either direction."""
        manifest = self._lookup(plugin_id)
        declared = set(manifest.conflicts) if manifest else set()
        hits: List[str] = []
        for active_id in self._active_ids():
            if active_id == plugin_id:
                continue
            active = self._lookup(active_id)
            if active_id in declared or (active is not None and plugin_id in active.conflicts):
                hits.append(active_id)
        return hits

    def get_all_dependencies(self, plugin_id: str) -> List[str]:
        """Transitive required dependencies of *plugin_id* (registered only)."""
        found: List[str] = []
        queue = deque([plugin_id])
        seen = {plugin_id}
        while queue:
            manifest = self._lookup(queue.popleft())
            if manifest is None:
                continue
            for dep in manifest.dependencies:
                if dep in seen or self._lookup(dep) is None:
                    continue
                seen.add(dep)
                found.append(dep)
                queue.append(dep)
        return found

    def get_missing_dependencies(self, plugin_id: str) -> List[str]:
        """Required dependencies of *plugin_id* that are not registered."""
        manifest = self._lookup(plugin_id)
        if manifest is None:
            return []
        return [dep for dep in manifest.dependencies if self._lookup(dep) is None]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_graph(self, requested: List[str], result: ResolutionResult) -> Dict[str, List[str]]:
        """Breadth-first expansion: node -> registered dependencies (required + optional)."""
        graph: Dict[str, List[str]] = {}
        queue = deque(requested)
        seen: Set[str] = set(requested)

        while queue:
            plugin_id = queue.popleft()
            manifest = self._lookup(plugin_id)
            if manifest is None:
                if plugin_id in requested:
                    result.missing.append(MissingDependency(plugin_id, plugin_id, required=True))
                continue

            edges: List[str] = []
            for deps, required in ((manifest.dependencies, True), (manifest.optional_dependencies, False)):
                for dep in deps:
                    if self._lookup(dep) is None:
                        result.missing.append(MissingDependency(plugin_id, dep, required=required))
                        continue
                    if dep not in edges:
                        edges.append(dep)
                    if dep not in seen:
                        seen.add(dep)
                        queue.append(dep)
            graph[plugin_id] = edges

        return graph

    @staticmethod
    def _detect_cycles(graph: Dict[str, List[str]]) -> List[List[str]]:
        """Depth-first search with an explicit recursion stack."""
        cycles: List[List[str]] = []
        visited: Set[str] = set()

        for root in sorted(graph):
            if root in visited:
                continue
            path: List[str] = [root]
            on_stack: Set[str] = {root}
            stack = [iter(graph.get(root, ()))]
            visited.add(root)
            while stack:
                dep = next(stack[-1], None)
                if dep is None:
                    stack.pop()
                    on_stack.discard(path.pop())
                    continue
                if dep in on_stack:
                    cycles.append(path[path.index(dep):] + [dep])
                elif dep not in visited:
                    visited.add(dep)
                    path.append(dep)
                    on_stack.add(dep)
                    stack.append(iter(graph.get(dep, ())))
        return cycles

    def _detect_conflicts(self, graph: Dict[str, List[str]]) -> List[Conflict]:
        conflicts: List[Conflict] = []
        seen_pairs: Set[frozenset] = set()
        for plugin_id in graph:
            manifest = self._lookup(plugin_id)
            for other in manifest.conflicts if manifest else ():
                pair = frozenset((plugin_id, other))
                if other in graph and pair not in seen_pairs:
                    seen_pairs.add(pair)
                    conflicts.append(Conflict(plugin_id, other))
        return conflicts

    @staticmethod
    def _activation_order(graph: Dict[str, List[str]]) -> List[str]:
        """Kahn's algorithm over the dependents relation, reversed at the end.

        In-degree counts how many nodes depend on a node, so plugins nothing
        depends on are emitted first. Ties are broken alphabetically.
        """
        in_degree: Dict[str, int] = {node: 0 for node in graph}
        for deps in graph.values():
            for dep in deps:
                in_degree[dep] += 1

        ready = sorted(node for node, degree in in_degree.items() if degree == 0)
        emitted: List[str] = []
        while ready:
            node = ready.pop(0)
            emitted.append(node)
            for dep in graph[node]:
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    bisect.insort(ready, dep)

        emitted.reverse()
        return emitted

"""Deterministic directed graph over record identities."""

from __future__ import annotations

from collections import deque
from collections.abc import Collection, Iterable, Iterator, Sequence
from heapq import heapify, heappop, heappush


class CycleError(ValueError):
    """Raised when an ordering is requested from a graph that contains a cycle."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        normalized: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycles = normalized

        if not normalized:
            message = "Graph contains at least one cycle."
        else:
            preview = ", ".join(" -> ".join(path) for path in normalized[:3])
            suffix = "..." if len(normalized) > 3 else ""
            message = f"Graph contains cycle(s): {preview}{suffix}"
        super().__init__(message)


class IdentityGraph:
    """Adjacency-list graph; an edge ``a -> b`` reads "a depends on b".

    Edges may point at identities that were never added as nodes. Those are
    dangling edges: they are reported by :meth:`dangling_edges` and ignored by
    traversal.
    """

    __slots__ = ("_nodes", "_children", "_parents", "_dangling")

    def __init__(
        self,
        nodes: Iterable[str] | None = None,
        edges: Iterable[tuple[str, str]] | None = None,
    ) -> None:
        self._nodes: set[str] = set()
        self._children: dict[str, set[str]] = {}
        self._parents: dict[str, set[str]] = {}
        self._dangling: set[tuple[str, str]] = set()

        if nodes is not None:
            for node_id in nodes:
                self.add_node(node_id)

        if edges is not None:
            for source, target in edges:
                self.add_edge(source, target)

    @property
    def nodes(self) -> tuple[str, ...]:
        """All node IDs in deterministic order."""
        return tuple(sorted(self._nodes))

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        """Resolved edges as ``(source, target)`` pairs in deterministic order."""
        ordered_edges: list[tuple[str, str]] = []
        for source in sorted(self._nodes):
            for target in sorted(self._children[source]):
                ordered_edges.append((source, target))
        return tuple(ordered_edges)

    def add_node(self, node_id: str) -> None:
        """Add a node if it does not already exist; pending dangling edges resolve."""
        self._validate_node_id(node_id)
        if node_id in self._nodes:
            return

        self._nodes.add(node_id)
        self._children[node_id] = set()
        self._parents[node_id] = set()

        for source, target in tuple(self._dangling):
            if target == node_id and source in self._nodes:
                self._dangling.discard((source, target))
                self._link(source, target)

    def add_edge(self, source: str, target: str) -> None:
        """Add ``source -> target``; ``source`` is created, an unknown ``target`` dangles."""
        self._validate_node_id(source)
        self._validate_node_id(target)

        if source not in self._nodes:
            self.add_node(source)
        if target not in self._nodes:
            self._dangling.add((source, target))
            return
        self._link(source, target)

    def dangling_edges(self, known: Collection[str] = ()) -> tuple[tuple[str, str], ...]:
        """Edges whose target is neither a node nor in ``known``."""
        return tuple(sorted(edge for edge in self._dangling if edge[1] not in known))

    def successors(self, node_id: str) -> tuple[str, ...]:
        self._assert_node_exists(node_id)
        return tuple(sorted(self._children[node_id]))

    def predecessors(self, node_id: str) -> tuple[str, ...]:
        self._assert_node_exists(node_id)
        return tuple(sorted(self._parents[node_id]))

    def topological_sort(self) -> tuple[str, ...]:
        """Dependencies first; deterministic; raises ``CycleError`` on cycles."""
        return tuple(node for layer in self.topological_layers() for node in layer)

    def topological_layers(self) -> tuple[tuple[str, ...], ...]:
        """Group nodes so each layer only depends on earlier layers."""
        outdegree: dict[str, int] = {node: len(self._children[node]) for node in self._nodes}
        ready: list[str] = [node for node, degree in outdegree.items() if degree == 0]
        heapify(ready)

        layers: list[tuple[str, ...]] = []
        placed = 0
        while ready:
            layer: list[str] = []
            while ready:
                layer.append(heappop(ready))
            layers.append(tuple(layer))
            placed += len(layer)

            next_ready: list[str] = []
            for node in layer:
                for parent in sorted(self._parents[node]):
                    outdegree[parent] -= 1
                    if outdegree[parent] == 0:
                        next_ready.append(parent)
            for node in next_ready:
                heappush(ready, node)

        if placed != len(self._nodes):
            raise CycleError(self.detect_cycles())

        return tuple(layers)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """
        Detect directed cycles with an iterative white/gray/black traversal.

        Returns each distinct cycle once as a closed, rotation-canonical path,
        e.g. ``("A", "B", "C", "A")``.
        Every node of a cyclic strongly connected component lies on at least
        one returned cycle, including cycles that close through a node the
        traversal had already finished.
        """
        white, gray, black = 0, 1, 2
        color: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in sorted(self._nodes):
            if color.get(start, white) != white:
                continue

            color[start] = gray
            stack.append(start)
            stack_index[start] = 0
            frames: list[tuple[str, Iterator[str]]] = [(start, iter(sorted(self._children[start])))]

            while frames:
                node, child_iter = frames[-1]

                try:
                    child = next(child_iter)
                except StopIteration:
                    frames.pop()
                    color[node] = black
                    stack.pop()
                    del stack_index[node]
                    continue

                child_color = color.get(child, white)
                if child_color == white:
                    color[child] = gray
                    stack_index[child] = len(stack)
                    stack.append(child)
                    frames.append((child, iter(sorted(self._children[child]))))
                    continue

                if child_color == gray:
                    cycle = tuple(stack[stack_index[child] :] + [child])
                    cycles[self._canonicalize_cycle(cycle)] = None

        covered = {node for cycle in cycles for node in cycle}
        for component in self.strongly_connected_components():
            members = frozenset(component)
            for node in component:
                if node in covered:
                    continue
                cycle = self._cycle_through(node, members)
                cycles[self._canonicalize_cycle(cycle)] = None
                covered.update(cycle)

        return tuple(sorted(cycles))

    def strongly_connected_components(self) -> tuple[tuple[str, ...], ...]:
        """Cyclic strongly connected components (iterative Tarjan), sorted.

        Single nodes are included only when they carry a self-loop.
        """
        index_of: dict[str, int] = {}
        low: dict[str, int] = {}
        stack: list[str] = []
        on_stack: set[str] = set()
        components: list[tuple[str, ...]] = []

        for root in sorted(self._nodes):
            if root in index_of:
                continue
            index_of[root] = low[root] = len(index_of)
            stack.append(root)
            on_stack.add(root)
            frames: list[tuple[str, Iterator[str]]] = [(root, iter(sorted(self._children[root])))]

            while frames:
                node, child_iter = frames[-1]
                descended = False
                for child in child_iter:
                    if child not in index_of:
                        index_of[child] = low[child] = len(index_of)
                        stack.append(child)
                        on_stack.add(child)
                        frames.append((child, iter(sorted(self._children[child]))))
                        descended = True
                        break
                    if child in on_stack:
                        low[node] = min(low[node], index_of[child])
                if descended:
                    continue

                frames.pop()
                if frames:
                    parent = frames[-1][0]
                    low[parent] = min(low[parent], low[node])
                if low[node] != index_of[node]:
                    continue
                members: list[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    members.append(member)
                    if member == node:
                        break
                if len(members) > 1 or node in self._children[node]:
                    components.append(tuple(sorted(members)))

        return tuple(sorted(components))

    def nodes_on_cycles(self) -> frozenset[str]:
        return frozenset(node for cycle in self.detect_cycles() for node in cycle)

    def _link(self, source: str, target: str) -> None:
        self._children[source].add(target)
        self._parents[target].add(source)

    def _cycle_through(self, node: str, members: Collection[str]) -> tuple[str, ...]:
        """Shortest closed path from ``node`` back to itself inside ``members``."""
        parent: dict[str, str] = {}
        queue: deque[str] = deque([node])
        while queue:
            current = queue.popleft()
            for child in sorted(self._children[current]):
                if child == node:
                    path = [current]
                    while path[-1] != node:
                        path.append(parent[path[-1]])
                    return tuple(reversed(path)) + (node,)
                if child in members and child not in parent:
                    parent[child] = current
                    queue.append(child)
        raise ValueError(f"no cycle passes through {node!r}")

    @staticmethod
    def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
        if len(cycle) < 2:
            raise ValueError("Cycle path must contain at least two nodes.")

        core = tuple(cycle[:-1])
        if len(core) == 1:
            return (core[0], core[0])

        best = core
        for offset in range(1, len(core)):
            rotated = core[offset:] + core[:offset]
            if rotated < best:
                best = rotated

        return best + (best[0],)

    @staticmethod
    def _validate_node_id(node_id: str) -> None:
        if not isinstance(node_id, str) or not node_id:
            raise ValueError("Node ID must be a non-empty string.")

    def _assert_node_exists(self, node_id: str) -> None:
        if node_id not in self._nodes:
            raise KeyError(f"Unknown node: {node_id}")


__all__ = ["CycleError", "IdentityGraph"]

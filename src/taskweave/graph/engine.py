"""Dependency graph engine.

Pure functions over a task snapshot. ``DependencyGraph`` indexes a snapshot
once (task arena plus id -> position index, forward and reverse adjacency)
and every traversal runs iteratively over that index, so large or
malformed graphs never hit the recursion limit.

``detect_cycles`` is the only authority on acyclicity. Anything that needs
an acyclic graph (critical path, topological order) asks it first.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import replace
from datetime import datetime, timezone

from taskweave.errors import CycleDetected, TaskNotFound, ValidationError
from taskweave.graph.schema import (
    DanglingDependency,
    GraphNode,
    GraphView,
    StartCheck,
    Task,
    TaskStatus,
)
from taskweave.logging import get_logger

_log = get_logger("graph")

# DFS colours
_WHITE, _GRAY, _BLACK = 0, 1, 2

_DOT_STYLES = {
    TaskStatus.COMPLETED: "style=filled,fillcolor=green",
    TaskStatus.IN_PROGRESS: "style=filled,fillcolor=yellow",
    TaskStatus.READY: "style=filled,fillcolor=lightblue",
    TaskStatus.BLOCKED: "style=filled,fillcolor=lightgray",
    TaskStatus.FAILED: "style=filled,fillcolor=red",
}


class DependencyGraph:
    """An immutable, indexed view over one task snapshot.

    Edges point from a task to the tasks it depends on. Dependencies on ids
    that are not in the snapshot are kept out of the adjacency lists and
    reported through ``dangling``.
    """

    def __init__(self, tasks: Iterable[Task]) -> None:
        self._tasks: tuple[Task, ...] = tuple(tasks)
        self._index: dict[str, int] = {}
        for pos, task in enumerate(self._tasks):
            if task.id in self._index:
                raise ValidationError(f"Duplicate task id in snapshot: {task.id}")
            self._index[task.id] = pos

        self._deps: list[list[int]] = []
        self._dependents: list[list[int]] = [[] for _ in self._tasks]
        self._dangling: list[DanglingDependency] = []
        for pos, task in enumerate(self._tasks):
            edges: list[int] = []
            for dep_id in dict.fromkeys(task.depends_on):
                dep_pos = self._index.get(dep_id)
                if dep_pos is None:
                    self._dangling.append(DanglingDependency(task.id, dep_id))
                    continue
                edges.append(dep_pos)
                self._dependents[dep_pos].append(pos)
            self._deps.append(edges)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._index

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks)

    @property
    def dangling(self) -> list[DanglingDependency]:
        return list(self._dangling)

    def get(self, task_id: str) -> Task:
        pos = self._index.get(task_id)
        if pos is None:
            raise TaskNotFound(task_id)
        return self._tasks[pos]

    def _pos(self, task_id: str) -> int:
        pos = self._index.get(task_id)
        if pos is None:
            raise TaskNotFound(task_id)
        return pos

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _status_at(self, pos: int) -> TaskStatus:
        task = self._tasks[pos]
        if task.status.is_terminal:
            return task.status
        if task.locked_by and task.status is TaskStatus.IN_PROGRESS:
            return TaskStatus.IN_PROGRESS
        if not task.depends_on:
            return TaskStatus.READY
        if self._has_dangling(pos):
            return TaskStatus.BLOCKED
        # Terminal statuses pass through, so a dependency's derived status is
        # COMPLETED exactly when its stored status is.
        if all(self._tasks[d].status is TaskStatus.COMPLETED for d in self._deps[pos]):
            return TaskStatus.READY
        return TaskStatus.BLOCKED

    def _has_dangling(self, pos: int) -> bool:
        return len(self._deps[pos]) < len(set(self._tasks[pos].depends_on))

    def calculate_status(self, task_id: str) -> TaskStatus:
        """Derive a task's status from its dependencies.

        Raises:
            TaskNotFound: If the task is not in the snapshot.
        """
        return self._status_at(self._pos(task_id))

    def blocked_by(self, task_id: str) -> list[str]:
        """Dependency ids of ``task_id`` that are not completed (unknown ids included)."""
        task = self.get(task_id)
        result = []
        for dep_id in dict.fromkeys(task.depends_on):
            dep_pos = self._index.get(dep_id)
            if dep_pos is None or self._tasks[dep_pos].status is not TaskStatus.COMPLETED:
                result.append(dep_id)
        return result

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def would_create_cycle(self, task_id: str, candidate_id: str) -> bool:
        """Check whether ``task_id -> candidate_id`` would close a loop.

        True iff ``task_id`` is reachable from ``candidate_id`` by following
        existing ``depends_on`` edges, or the two ids are the same.
        """
        if task_id == candidate_id:
            return True
        start = self._index.get(candidate_id)
        if start is None:
            return False

        visited = {start}
        queue = deque([start])
        while queue:
            pos = queue.popleft()
            if self._tasks[pos].id == task_id:
                return True
            for dep in self._deps[pos]:
                if dep not in visited:
                    visited.add(dep)
                    queue.append(dep)
        return False

    def detect_cycles(self) -> list[list[str]]:
        """Find cycles with a three-colour depth-first search.

        Each back edge to a grey task reports the stack slice from that task
        to the current one, closed by repeating the first id
        (``["a", "b", "a"]``).
        """
        color = [_WHITE] * len(self._tasks)
        cycles: list[list[str]] = []

        for root in range(len(self._tasks)):
            if color[root] != _WHITE:
                continue
            color[root] = _GRAY
            stack: list[tuple[int, Iterator[int]]] = [(root, iter(self._deps[root]))]
            stack_at: dict[int, int] = {root: 0}

            while stack:
                pos, edges = stack[-1]
                nxt = next(edges, None)
                if nxt is None:
                    stack.pop()
                    del stack_at[pos]
                    color[pos] = _BLACK
                    continue
                if color[nxt] == _GRAY:
                    path = [self._tasks[p].id for p, _ in stack[stack_at[nxt] :]]
                    cycles.append(path + [self._tasks[nxt].id])
                elif color[nxt] == _WHITE:
                    color[nxt] = _GRAY
                    stack_at[nxt] = len(stack)
                    stack.append((nxt, iter(self._deps[nxt])))

        if cycles:
            _log.warning("Dependency cycles detected: %s", cycles)
        return cycles

    def _require_acyclic(self) -> None:
        cycles = self.detect_cycles()
        if cycles:
            cycle = cycles[0]
            raise CycleDetected(cycle[0], cycle[1], cycle)

    # ------------------------------------------------------------------
    # Ordering, depth and critical path
    # ------------------------------------------------------------------

    def _postorder(self) -> list[int]:
        """Positions with dependencies before dependents (snapshot order for ties).

        Back edges are skipped, so on cyclic input the order is only partial.
        """
        color = [_WHITE] * len(self._tasks)
        order: list[int] = []
        for root in range(len(self._tasks)):
            if color[root] != _WHITE:
                continue
            color[root] = _GRAY
            stack: list[tuple[int, Iterator[int]]] = [(root, iter(self._deps[root]))]
            while stack:
                pos, edges = stack[-1]
                nxt = next(edges, None)
                if nxt is None:
                    stack.pop()
                    color[pos] = _BLACK
                    order.append(pos)
                elif color[nxt] == _WHITE:
                    color[nxt] = _GRAY
                    stack.append((nxt, iter(self._deps[nxt])))
        return order

    def topological_order(self) -> list[Task]:
        """Tasks ordered so every task comes after its dependencies.

        Raises:
            CycleDetected: If the snapshot contains a cycle.
        """
        self._require_acyclic()
        return [self._tasks[pos] for pos in self._postorder()]

    def depths(self) -> dict[str, int]:
        """Longest ``depends_on`` chain below each task, counting the task itself.

        Roots have depth 1. On cyclic input back edges are ignored.
        """
        depth = [0] * len(self._tasks)
        done = [False] * len(self._tasks)
        for pos in self._postorder():
            depth[pos] = 1 + max((depth[d] for d in self._deps[pos] if done[d]), default=0)
            done[pos] = True
        return {task.id: depth[pos] for pos, task in enumerate(self._tasks)}

    def _tainted(self) -> set[int]:
        """Tasks with unknown dependencies plus everything downstream of them."""
        seeds = [self._index[d.task_id] for d in self._dangling]
        tainted = set(seeds)
        queue = deque(seeds)
        while queue:
            pos = queue.popleft()
            for dependent in self._dependents[pos]:
                if dependent not in tainted:
                    tainted.add(dependent)
                    queue.append(dependent)
        return tainted

    def _critical_positions(self) -> list[int]:
        tainted = self._tainted()
        best: dict[int, float] = {}
        pred: dict[int, int | None] = {}

        for pos in self._postorder():
            if pos in tainted:
                continue
            weight = self._tasks[pos].estimated_duration or 0
            chosen: int | None = None
            for dep in self._deps[pos]:
                if chosen is None or best[dep] > best[chosen]:
                    chosen = dep
            best[pos] = weight + (best[chosen] if chosen is not None else 0)
            pred[pos] = chosen

        end: int | None = None
        for pos in range(len(self._tasks)):
            if pos in tainted:
                continue
            is_leaf = all(d in tainted for d in self._dependents[pos])
            if is_leaf and (end is None or best[pos] > best[end]):
                end = pos

        path: list[int] = []
        while end is not None:
            path.append(end)
            end = pred[end]
        path.reverse()
        return path

    def critical_path(self) -> list[Task]:
        """Longest duration-weighted chain from a root to a leaf.

        Each task weighs its ``estimated_duration`` (0 when unset). Tasks with
        unknown dependencies, and their dependents, are left out.

        Raises:
            CycleDetected: If the snapshot contains a cycle.
        """
        self._require_acyclic()
        return [self._tasks[pos] for pos in self._critical_positions()]

    def affected_tasks(self, task_id: str) -> set[str]:
        """Every task that transitively depends on ``task_id``."""
        start = self._pos(task_id)
        seen: set[int] = set()
        queue = deque(self._dependents[start])
        while queue:
            pos = queue.popleft()
            if pos in seen:
                continue
            seen.add(pos)
            queue.extend(self._dependents[pos])
        return {self._tasks[pos].id for pos in seen}

    # ------------------------------------------------------------------
    # Full build
    # ------------------------------------------------------------------

    def build(self) -> GraphView:
        """Derive statuses, ready/blocked sets, cycles and the critical path."""
        cycles = self.detect_cycles()
        depths = self.depths()
        critical = [] if cycles else self._critical_positions()
        dangling_positions = {self._index[d.task_id] for d in self._dangling}

        view = GraphView(cycles=cycles, validation_errors=list(self._dangling))
        derived_tasks: list[Task] = []
        for pos, task in enumerate(self._tasks):
            status = self._status_at(pos)
            dependents = [self._tasks[d].id for d in self._dependents[pos]]
            derived = replace(
                task,
                dependents=dependents,
                blocked_by=self.blocked_by(task.id),
            )
            derived_tasks.append(derived)
            view.nodes.append(
                GraphNode(
                    task=derived,
                    status=status,
                    dependencies=[self._tasks[d].id for d in self._deps[pos]],
                    dependents=dependents,
                    depth=depths[task.id],
                )
            )
            if status is TaskStatus.READY and pos not in dangling_positions:
                view.ready_to_work.append(derived)
            elif status is TaskStatus.BLOCKED:
                view.blocked.append(derived)

        view.critical_path = [derived_tasks[pos] for pos in critical]

        if self._dangling:
            _log.warning(
                "Snapshot references unknown tasks: %s",
                ", ".join(str(d) for d in self._dangling),
            )
        _log.debug(
            "Built graph: %d tasks, %d ready, %d blocked, %d cycles",
            len(self._tasks),
            len(view.ready_to_work),
            len(view.blocked),
            len(cycles),
        )
        return view

    def to_dot(self) -> str:
        """Render the graph in Graphviz DOT format, coloured by derived status."""
        lines = ["digraph TaskDependencies {", "  rankdir=TB;", "  node [shape=box];"]
        for pos, task in enumerate(self._tasks):
            status = self._status_at(pos)
            title = task.title.replace('"', '\\"')
            style = _DOT_STYLES.get(status, "")
            suffix = f",{style}" if style else ""
            lines.append(f'  "{task.id}" [label="{title}\\n({status.value})"{suffix}];')
        for pos, task in enumerate(self._tasks):
            for dep in self._deps[pos]:
                lines.append(f'  "{self._tasks[dep].id}" -> "{task.id}";')
        lines.append("}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Snapshot-level functions
# ----------------------------------------------------------------------


def build_graph(tasks: Iterable[Task]) -> GraphView:
    return DependencyGraph(tasks).build()


def calculate_status(tasks: Iterable[Task], task_id: str) -> TaskStatus:
    return DependencyGraph(tasks).calculate_status(task_id)


def would_create_cycle(tasks: Iterable[Task], task_id: str, candidate_id: str) -> bool:
    return DependencyGraph(tasks).would_create_cycle(task_id, candidate_id)


def detect_cycles(tasks: Iterable[Task]) -> list[list[str]]:
    return DependencyGraph(tasks).detect_cycles()


def critical_path(tasks: Iterable[Task]) -> list[Task]:
    return DependencyGraph(tasks).critical_path()


def topological_order(tasks: Iterable[Task]) -> list[Task]:
    return DependencyGraph(tasks).topological_order()


def affected_tasks(tasks: Iterable[Task], task_id: str) -> set[str]:
    return DependencyGraph(tasks).affected_tasks(task_id)


def to_dot(tasks: Iterable[Task]) -> str:
    return DependencyGraph(tasks).to_dot()


def validate(tasks: Iterable[Task]) -> None:
    """Fail closed on malformed snapshots.

    Raises:
        ValidationError: If any task depends on an id not in the snapshot.
    """
    DependencyGraph(tasks).build().raise_for_errors()


def can_start(tasks: Sequence[Task], task_id: str) -> StartCheck:
    """Check whether a pending task has all of its dependencies completed."""
    graph = DependencyGraph(tasks)
    if task_id not in graph:
        return StartCheck(False, "Task not found")
    task = graph.get(task_id)
    if task.status is not TaskStatus.PENDING:
        return StartCheck(False, f"Task is already {task.status.value}")
    blockers = graph.blocked_by(task_id)
    if blockers:
        return StartCheck(False, f"Blocked by {len(blockers)} uncompleted dependencies")
    return StartCheck(True)


def add_dependency(
    tasks: Sequence[Task],
    task_id: str,
    depends_on_id: str,
    now: datetime | None = None,
) -> list[Task]:
    """Return a new task list with ``task_id`` depending on ``depends_on_id``.

    Everything is validated before any task is copied, so a rejected edge
    leaves the snapshot untouched.

    Raises:
        TaskNotFound: If either id is unknown.
        ValidationError: If the edge already exists.
        CycleDetected: If the edge would close a cycle (including a self edge).
    """
    graph = DependencyGraph(tasks)
    task = graph.get(task_id)
    graph.get(depends_on_id)

    if depends_on_id in task.depends_on:
        raise ValidationError(f"Dependency already exists: {task_id} -> {depends_on_id}")
    if graph.would_create_cycle(task_id, depends_on_id):
        _log.info("Rejected dependency %s -> %s: would create a cycle", task_id, depends_on_id)
        raise CycleDetected(task_id, depends_on_id, _cycle_path(graph, task_id, depends_on_id))

    stamp = now or datetime.now(timezone.utc)
    return [
        replace(t, depends_on=[*t.depends_on, depends_on_id], updated_at=stamp)
        if t.id == task_id
        else t
        for t in tasks
    ]


def remove_dependency(
    tasks: Sequence[Task],
    task_id: str,
    depends_on_id: str,
    now: datetime | None = None,
) -> list[Task]:
    """Return a new task list without the ``task_id -> depends_on_id`` edge.

    Raises:
        TaskNotFound: If ``task_id`` is unknown.
    """
    DependencyGraph(tasks).get(task_id)
    stamp = now or datetime.now(timezone.utc)
    return [
        replace(t, depends_on=[d for d in t.depends_on if d != depends_on_id], updated_at=stamp)
        if t.id == task_id
        else t
        for t in tasks
    ]


def _cycle_path(graph: DependencyGraph, task_id: str, depends_on_id: str) -> list[str]:
    """The loop the new edge would close: task -> dependency -> ... -> task."""
    if task_id == depends_on_id:
        return [task_id, task_id]
    parents: dict[str, str | None] = {depends_on_id: None}
    queue = deque([depends_on_id])
    while queue:
        current = queue.popleft()
        if current == task_id:
            break
        for dep_id in graph.get(current).depends_on:
            if dep_id in graph and dep_id not in parents:
                parents[dep_id] = current
                queue.append(dep_id)
    path = [task_id]
    node: str | None = task_id
    while node is not None and node != depends_on_id:
        node = parents.get(node)
        if node is not None:
            path.append(node)
    path.reverse()
    return [task_id, *path]

"""
# Dependency Graph Service

This module maintains the **prerequisite graph** between a user's academic tasks and
propagates availability and completion state along it.

## Domain Overview

Tasks (assignments, lectures, study sessions) can require other tasks first.
- **Blocking edges** gate availability: a task stays `blocked` until every blocking
  prerequisite is `completed`.
- **Suggested / parallel edges** are informational only.
- **Auto-complete edges** cascade completion from the dependent to its prerequisite.

## Key Features

### 1. Validation
- Rejects self-dependencies, missing or foreign-owned prerequisites and cycles.
- Cycles are detected with a depth-first search over the user's persisted edges merged
  with the proposed ones. Only cycles that run through a proposed edge are reported, as
  ordered node sequences (`["A", "B", "C"]` for A -> B -> C -> A).
- Validation never raises; store failures become error entries.

### 2. Creation
- Persists a task and its edges, computing the initial `blocked` / `available` status.
- Writes are not transactional: if the edges fail after the task was stored a
  `PartialWriteError` names the stored task and nothing is rolled back.

### 3. Completion Propagation
- Completing a task re-evaluates each dependent (`blocked -> available`) and then cascades
  into its auto-complete prerequisites, guarding against re-entry within one cascade.

## Usage Example

```python
graph = DependencyGraphManager(store)
session = StudySession(title="Review chapter 4", topic="Graphs")
created = await graph.create_with_dependencies(
    session,
    [DependencyEdge(task_id=session.id, depends_on_id="task_lecture4")],
    owner_id="user_1",
)
await graph.complete("task_lecture4", "lecture")
```
"""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

from study_scheduler.database.store import StudyStore
from study_scheduler.exceptions import NotFoundError, PartialWriteError, PersistenceError, ValidationError
from study_scheduler.managers.logging_manager import get_logger
from study_scheduler.models.base import utcnow
from study_scheduler.models.task_models import (
    TASK_COLLECTIONS,
    DependencyEdge,
    DependencyType,
    DependencyValidationResult,
    TaskStatus,
    TaskType,
    task_from_document,
)

logger = get_logger(prefix="[DependencyGraph]")

# task_id -> (task type, stored document)
Located = Dict[str, Tuple[TaskType, dict]]


def find_cycles(adjacency: Dict[str, List[str]], start_nodes: List[str]) -> List[List[str]]:
    """
    Depth-first search with a recursion stack.

    Every back edge closes a cycle, reported as the stack slice from the revisited node,
    e.g. `["A", "B", "C"]` for A -> B -> C -> A. Rotations of an already reported cycle are
    not repeated.
    """
    visited: Set[str] = set()
    stack: List[str] = []
    on_stack: Set[str] = set()
    cycles: List[List[str]] = []
    seen: Set[Tuple[str, ...]] = set()

    def visit(node: str):
        visited.add(node)
        stack.append(node)
        on_stack.add(node)
        for neighbor in adjacency.get(node, []):
            if neighbor in on_stack:
                cycle = stack[stack.index(neighbor):]
                pivot = cycle.index(min(cycle))
                key = tuple(cycle[pivot:] + cycle[:pivot])
                if key not in seen:
                    seen.add(key)
                    cycles.append(cycle)
            elif neighbor not in visited:
                visit(neighbor)
        stack.pop()
        on_stack.discard(node)

    for node in list(start_nodes) + list(adjacency):
        if node not in visited:
            visit(node)
    return cycles


class DependencyGraphManager:
    """
    Service for validating and maintaining task prerequisite graphs.

    **Invariants:**
    - No edge has `task_id == depends_on_id`.
    - Each user's edge set is acyclic.
    - `completed` is terminal; only blocking edges gate availability.
    """

    def __init__(self, store: StudyStore):
        self.store = store
        self.dependencies_collection = "task_dependencies"

    # --- Lookups ---

    async def _locate(self, task_ids: List[str], owner_id: Optional[str] = None) -> Located:
        """Probe all task collections concurrently for the given ids."""
        if not task_ids:
            return {}
        filters = {"id": {"$in": list(task_ids)}}
        if owner_id is not None:
            filters["user_id"] = owner_id
        task_types = list(TASK_COLLECTIONS)
        results = await asyncio.gather(
            *(self.store.get(TASK_COLLECTIONS[task_type], filters) for task_type in task_types)
        )
        located: Located = {}
        for task_type, documents in zip(task_types, results):
            for document in documents:
                located[document["id"]] = (task_type, document)
        return located

    async def get_task(self, task_id: str, task_type: Optional[str] = None):
        """
        Load a task by id.

        Raises:
            NotFoundError: If no task collection holds `task_id`.
        """
        if task_type:
            document = await self.store.get_one(TASK_COLLECTIONS[TaskType(task_type)], {"id": task_id})
        else:
            located = await self._locate([task_id])
            document = located[task_id][1] if task_id in located else None
        if not document:
            raise NotFoundError("Task", task_id)
        return task_from_document(document)

    async def get_task_dependencies(self, task_id: str) -> List[DependencyEdge]:
        """Outgoing edges: the prerequisites of `task_id`."""
        documents = await self.store.get(self.dependencies_collection, {"task_id": task_id})
        return [DependencyEdge(**doc) for doc in documents]

    async def get_dependent_tasks(self, task_id: str) -> List[DependencyEdge]:
        """Incoming edges: tasks that list `task_id` as a prerequisite."""
        documents = await self.store.get(self.dependencies_collection, {"depends_on_id": task_id})
        return [DependencyEdge(**doc) for doc in documents]

    # --- Validation ---

    async def validate(self, edges: List[DependencyEdge], owner_id: str) -> DependencyValidationResult:
        """
        Validate a proposed set of edges for `owner_id`.

        Returns:
            DependencyValidationResult: `is_valid` is `False` when any error was found.
            Never raises.
        """
        result, _ = await self._validate(edges, owner_id)
        return result

    async def _validate(
        self, edges: List[DependencyEdge], owner_id: str
    ) -> Tuple[DependencyValidationResult, Located]:
        errors: List[str] = []
        warnings: List[str] = []

        for edge in edges:
            if edge.task_id == edge.depends_on_id:
                errors.append(f"Task {edge.task_id} cannot depend on itself")
            if edge.dependency_type != DependencyType.BLOCKING.value and edge.auto_complete:
                warnings.append(
                    f"{edge.dependency_type} dependency {edge.task_id} -> {edge.depends_on_id} "
                    "is marked auto_complete; completion will still cascade"
                )

        targets = list(dict.fromkeys(edge.depends_on_id for edge in edges if edge.task_id != edge.depends_on_id))
        try:
            located, persisted = await asyncio.gather(
                self._locate(targets, owner_id),
                self.store.get(self.dependencies_collection, {"user_id": owner_id}),
            )
        except PersistenceError as e:
            logger.error(f"Dependency validation for user {owner_id} could not read the store: {e}", exc_info=True)
            errors.append(f"Could not verify dependencies: {e}")
            return DependencyValidationResult(is_valid=False, errors=errors, warnings=warnings), {}

        for target in targets:
            if target not in located:
                errors.append(f"Prerequisite task {target} does not exist or is not owned by user {owner_id}")

        existing_pairs = {(doc["task_id"], doc["depends_on_id"]) for doc in persisted}
        proposed_pairs: Set[Tuple[str, str]] = set()
        adjacency: Dict[str, List[str]] = {}
        for edge in edges:
            pair = (edge.task_id, edge.depends_on_id)
            if edge.task_id == edge.depends_on_id:
                continue
            if pair in proposed_pairs or pair in existing_pairs:
                warnings.append(f"Duplicate dependency {edge.task_id} -> {edge.depends_on_id}")
                continue
            proposed_pairs.add(pair)
            adjacency.setdefault(edge.task_id, []).append(edge.depends_on_id)

        # proposed edges are walked before stored ones
        for doc in persisted:
            adjacency.setdefault(doc["task_id"], []).append(doc["depends_on_id"])

        # only cycles through a proposed edge count
        start_nodes = [edge.task_id for edge in edges]
        cycles = [
            cycle for cycle in find_cycles(adjacency, start_nodes)
            if any(pair in proposed_pairs for pair in zip(cycle, cycle[1:] + cycle[:1]))
        ]
        for cycle in cycles:
            errors.append(f"Circular dependency detected: {' -> '.join(cycle + [cycle[0]])}")

        result = DependencyValidationResult(
            is_valid=not errors, errors=errors, warnings=warnings, cycles=cycles
        )
        return result, located

    # --- Creation ---

    async def create_with_dependencies(self, task, edges: List[DependencyEdge], owner_id: str):
        """
        Persist `task` and its prerequisite edges.

        Every edge is rebound to `task.id` before validation. The initial status is
        `blocked` when any blocking prerequisite is not yet completed, else `available`.

        Raises:
            ValidationError: The edges are invalid; carries the validation result.
            PersistenceError: The task could not be stored.
            PartialWriteError: The task was stored but its edges were not.
        """
        task = task.model_copy(update={"user_id": owner_id})
        bound = [
            edge.model_copy(update={"task_id": task.id, "task_type": task.task_type, "user_id": owner_id})
            for edge in edges
        ]

        result, located = await self._validate(bound, owner_id)
        if not result.is_valid:
            logger.warning(f"Rejected dependencies for task {task.id}: {result.errors}")
            raise ValidationError(result.errors, result)

        unique: Dict[Tuple[str, str], DependencyEdge] = {}
        for edge in bound:
            key = (edge.task_id, edge.depends_on_id)
            if key not in unique:
                target_type = located[edge.depends_on_id][0]
                unique[key] = edge.model_copy(update={"depends_on_type": TaskType(target_type).value})

        blocked = any(
            edge.dependency_type == DependencyType.BLOCKING.value
            and located[edge.depends_on_id][1].get("status") != TaskStatus.COMPLETED.value
            for edge in unique.values()
        )
        status = TaskStatus.BLOCKED.value if blocked else TaskStatus.AVAILABLE.value
        task = task.model_copy(update={"status": status})

        await self.store.insert(task.collection, [task.to_document()])

        if unique:
            try:
                await self.store.insert(
                    self.dependencies_collection, [edge.to_document() for edge in unique.values()]
                )
            except PersistenceError as e:
                logger.error(f"Task {task.id} stored but its dependencies failed: {e}", exc_info=True)
                raise PartialWriteError(
                    f"Task {task.id} was created but its dependencies were not saved: {e}",
                    persisted_id=task.id,
                    collection=self.dependencies_collection,
                ) from e

        logger.info(f"Created task {task.id} ({task.task_type}) with {len(unique)} dependencies, status {status}")
        return task

    # --- State transitions ---

    async def refresh_status(self, task_id: str, task_type: Optional[str] = None) -> str:
        """Move a blocked task to available once every blocking prerequisite is completed."""
        task = await self.get_task(task_id, task_type)
        if task.status != TaskStatus.BLOCKED.value:
            return task.status

        blocking = [
            edge for edge in await self.get_task_dependencies(task_id)
            if edge.dependency_type == DependencyType.BLOCKING.value
        ]
        located = await self._locate([edge.depends_on_id for edge in blocking])
        unmet = [
            edge.depends_on_id for edge in blocking
            if edge.depends_on_id in located
            and located[edge.depends_on_id][1].get("status") != TaskStatus.COMPLETED.value
        ]
        if unmet:
            return task.status

        await self.store.update(task.collection, {"id": task_id}, {"status": TaskStatus.AVAILABLE.value})
        logger.info(f"Task {task_id} unblocked")
        return TaskStatus.AVAILABLE.value

    async def start_task(self, task_id: str, task_type: Optional[str] = None):
        """
        Move an available task to in_progress.

        Raises:
            ValidationError: The task is blocked, already in progress or completed.
        """
        task = await self.get_task(task_id, task_type)
        if task.status != TaskStatus.AVAILABLE.value:
            raise ValidationError([f"Task {task_id} is {task.status} and cannot be started"])
        await self.store.update(task.collection, {"id": task_id}, {"status": TaskStatus.IN_PROGRESS.value})
        return task.model_copy(update={"status": TaskStatus.IN_PROGRESS.value})

    async def complete(self, task_id: str, task_type: Optional[str] = None) -> None:
        """
        Mark a task completed and propagate.

        Raises:
            NotFoundError: If the task does not exist.
        """
        await self._complete(task_id, task_type, set())

    async def _complete(self, task_id: str, task_type: Optional[str], visited: Set[str]) -> None:
        if task_id in visited:
            return
        visited.add(task_id)

        task = await self.get_task(task_id, task_type)
        if task.status == TaskStatus.COMPLETED.value:
            logger.debug(f"Task {task_id} already completed")
            return

        await self.store.update(
            task.collection,
            {"id": task_id},
            {"status": TaskStatus.COMPLETED.value, "completed_at": utcnow()},
        )
        logger.info(f"Completed task {task_id}")

        for edge in await self.get_dependent_tasks(task_id):
            if edge.dependency_type != DependencyType.BLOCKING.value:
                continue
            try:
                await self.refresh_status(edge.task_id, edge.task_type)
            except NotFoundError:
                logger.warning(f"Dependent task {edge.task_id} of {task_id} no longer exists")

        for edge in await self.get_task_dependencies(task_id):
            if not edge.auto_complete:
                continue
            try:
                await self._complete(edge.depends_on_id, edge.depends_on_type, visited)
            except NotFoundError:
                logger.warning(f"Auto-complete target {edge.depends_on_id} of {task_id} no longer exists")

    async def delete_task(self, task_id: str, task_type: Optional[str] = None) -> None:
        """Delete a task with every edge touching it, then re-evaluate its former dependents."""
        task = await self.get_task(task_id, task_type)
        dependents = await self.get_dependent_tasks(task_id)

        await self.store.delete(task.collection, {"id": task_id})
        await self.store.delete(self.dependencies_collection, {"task_id": task_id})
        await self.store.delete(self.dependencies_collection, {"depends_on_id": task_id})

        for edge in dependents:
            try:
                await self.refresh_status(edge.task_id, edge.task_type)
            except NotFoundError:
                continue
        logger.info(f"Deleted task {task_id} and {len(dependents)} incoming dependencies")

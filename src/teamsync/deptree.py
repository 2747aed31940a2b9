"""Dependency ordering for newly discovered tasks.

New tasks are created on GitHub parents-first so a child's parent issue
already exists when the child is created. Tasks are grouped into levels:
everything in one level can be created in parallel, levels run in order.

Only dependencies inside the batch count. Edges to tasks that are already
synced, or to IDs that don't exist, are ignored here.
"""

from typing import Dict, List, Optional

from .models import Task


def parent_task_id(task: Task) -> Optional[str]:
    """The task whose issue becomes this task's parent issue.

    GitHub supports a single parent, so only the first blockedBy entry is
    used; the rest are only listed in the issue body and Blocked By field.
    """
    return task.blocked_by[0] if task.blocked_by else None


def sort_by_dependency(tasks: List[Task]) -> List[Task]:
    """Topologically sort tasks so in-batch dependencies come first.

    Depth-first visit in input order. A task is marked visited before its
    dependencies are visited, so cycles terminate instead of recursing
    forever (the cycle is broken at the first task reached).
    """
    by_id: Dict[str, Task] = {}
    for task in tasks:
        by_id.setdefault(task.id, task)

    ordered: List[Task] = []
    visited: set[str] = set()

    def visit(task: Task) -> None:
        if task.id in visited:
            return
        visited.add(task.id)

        for dep_id in task.blocked_by:
            dep = by_id.get(dep_id)
            if dep is not None:
                visit(dep)

        ordered.append(task)

    for task in tasks:
        visit(task)

    return ordered


def compute_levels(ordered: List[Task]) -> Dict[str, int]:
    """Assign a creation level to each task of a dependency-sorted batch.

    level = 1 + max(level of in-batch dependencies), or 0 without any.
    Dependencies not yet placed (outside the batch, or the back edge of a
    cycle) don't count.
    """
    levels: Dict[str, int] = {}
    for task in ordered:
        level = 0
        for dep_id in task.blocked_by:
            dep_level = levels.get(dep_id)
            if dep_level is not None:
                level = max(level, dep_level + 1)
        levels[task.id] = level
    return levels


def group_by_level(tasks: List[Task]) -> List[List[Task]]:
    """Sort tasks and split them into creation levels.

    Returns:
        List of levels, level 0 first. Within a level, tasks keep their
        dependency-sorted order.
    """
    ordered = sort_by_dependency(tasks)
    levels = compute_levels(ordered)

    groups: List[List[Task]] = []
    for task in ordered:
        level = levels[task.id]
        while len(groups) <= level:
            groups.append([])
        groups[level].append(task)
    return groups


def detect_circular_dependencies(tasks: List[Task]) -> List[List[str]]:
    """Detect dependency cycles among tasks.

    Returns:
        List of cycles found (each cycle is a list of task IDs, first ID
        repeated at the end)
    """
    by_id = {task.id: task for task in tasks}
    cycles: List[List[str]] = []
    visited: set[str] = set()
    rec_stack: set[str] = set()

    def dfs(task_id: str, path: List[str]) -> None:
        if task_id in rec_stack:
            cycle_start = path.index(task_id)
            cycles.append(path[cycle_start:] + [task_id])
            return

        if task_id in visited:
            return

        visited.add(task_id)
        rec_stack.add(task_id)
        path.append(task_id)

        task = by_id.get(task_id)
        if task:
            for dep_id in task.blocked_by:
                if dep_id in by_id:
                    dfs(dep_id, path.copy())

        rec_stack.remove(task_id)

    for task_id in by_id:
        dfs(task_id, [])

    return cycles

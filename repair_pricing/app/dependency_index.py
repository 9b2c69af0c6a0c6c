"""In-process reverse index of catalog references.

Built from a catalog snapshot; answers "who depends on this?" for the
cascade and for the finder endpoints without another trip to the store.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Set

from .domain import Process, Task


class DependencyIndex:
    def __init__(self, processes: Iterable[Process] = (), tasks: Iterable[Task] = ()):
        self._processes_by_material: Dict[str, Set[str]] = defaultdict(set)
        self._tasks_by_material: Dict[str, Set[str]] = defaultdict(set)
        self._tasks_by_process: Dict[str, Set[str]] = defaultdict(set)
        for process in processes:
            self.add_process(process)
        for task in tasks:
            self.add_task(task)

    def add_process(self, process: Process) -> None:
        for usage in process.materials:
            self._processes_by_material[usage.material_id].add(process.id)

    def add_task(self, task: Task) -> None:
        for usage in task.materials:
            self._tasks_by_material[usage.material_id].add(task.id)
        for usage in task.processes:
            self._tasks_by_process[usage.process_id].add(task.id)

    def processes_using_materials(self, material_ids: Iterable[str]) -> List[str]:
        found: Set[str] = set()
        for material_id in material_ids:
            found |= self._processes_by_material.get(material_id, set())
        return sorted(found)

    def tasks_using_materials_or_processes(self, material_ids: Iterable[str] = (),
                                           process_ids: Iterable[str] = ()) -> List[str]:
        found: Set[str] = set()
        for material_id in material_ids:
            found |= self._tasks_by_material.get(material_id, set())
        for process_id in process_ids:
            found |= self._tasks_by_process.get(process_id, set())
        return sorted(found)

    def tasks_affected_by_materials(self, material_ids: Iterable[str]) -> List[str]:
        """Tasks using the materials directly or through any process."""
        material_ids = list(material_ids)
        return self.tasks_using_materials_or_processes(
            material_ids, self.processes_using_materials(material_ids)
        )

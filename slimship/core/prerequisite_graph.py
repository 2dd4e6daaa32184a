"""Stage prerequisite DAG with cascade blocking.

A stage may only start once every prerequisite has PASSED. When a stage
fails, everything downstream that has not started yet is BLOCKED.
"""

from __future__ import annotations

from graphlib import CycleError, TopologicalSorter

from slimship.models.stages import StageDefinition, StageState


class PrerequisiteNotMetError(RuntimeError):
    """Raised when a stage cannot run because prerequisites are not met."""


class CyclicDependencyError(ValueError):
    """Raised when the prerequisite graph contains a cycle."""


class PrerequisiteGraph:
    """Directed acyclic graph of stage prerequisites."""

    def __init__(self, stage_definitions: list[StageDefinition]) -> None:
        self._stages = {sd.stage_id: sd for sd in stage_definitions}
        self._dependents: dict[str, list[str]] = {sid: [] for sid in self._stages}
        for sd in sorted(stage_definitions, key=lambda s: s.ordinal):
            for prereq in sd.prerequisites:
                if prereq not in self._stages:
                    raise ValueError(
                        f"Stage {sd.stage_id!r} depends on unknown stage {prereq!r}"
                    )
                self._dependents[prereq].append(sd.stage_id)
        self._order = self._execution_order()

    def _execution_order(self) -> list[str]:
        sorter = TopologicalSorter(
            {sid: sd.prerequisites for sid, sd in self._stages.items()}
        )
        try:
            sorter.prepare()
        except CycleError as exc:
            raise CyclicDependencyError(
                f"Prerequisite graph has a cycle: {' -> '.join(exc.args[1])}"
            ) from exc

        order: list[str] = []
        while sorter.is_active():
            ready = sorted(sorter.get_ready(), key=lambda s: self._stages[s].ordinal)
            order.extend(ready)
            sorter.done(*ready)
        return order

    @property
    def stage_ids(self) -> list[str]:
        """All stage_ids in execution order."""
        return list(self._order)

    def get_prerequisites(self, stage_id: str) -> list[str]:
        return list(self._stages[stage_id].prerequisites)

    def get_dependents(self, stage_id: str) -> list[str]:
        """Transitive dependents of *stage_id*, nearest first."""
        found: list[str] = []
        frontier = list(self._dependents.get(stage_id, []))
        while frontier:
            node = frontier.pop(0)
            if node not in found:
                found.append(node)
                frontier.extend(self._dependents[node])
        return found

    def are_prerequisites_met(
        self, stage_id: str, states: dict[str, StageState]
    ) -> bool:
        return not self.get_blocking_reasons(stage_id, states)

    def get_blocking_reasons(
        self, stage_id: str, states: dict[str, StageState]
    ) -> list[str]:
        """One line per prerequisite that has not PASSED."""
        reasons = []
        for prereq in self._stages[stage_id].prerequisites:
            state = states.get(prereq, StageState.NOT_STARTED)
            if state != StageState.PASSED:
                name = self._stages[prereq].display_name
                reasons.append(f"{name} ({prereq}) is {state.value}")
        return reasons

    def cascade_block(
        self, failed_stage_id: str, states: dict[str, StageState]
    ) -> list[str]:
        """Mark every NOT_STARTED dependent of a failed stage as BLOCKED.

        Mutates *states* and returns the stage_ids that were newly blocked.
        """
        blocked = [
            sid
            for sid in self.get_dependents(failed_stage_id)
            if states.get(sid, StageState.NOT_STARTED) == StageState.NOT_STARTED
        ]
        for sid in blocked:
            states[sid] = StageState.BLOCKED
        return blocked

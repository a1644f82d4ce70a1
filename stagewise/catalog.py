"""Static definition of the delivery pipeline stages."""

from __future__ import annotations

from typing import Iterable, Iterator, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .errors import CatalogError, UnknownStage


class StageDefinition(BaseModel):
    """One stage of the pipeline: what it needs and what it produces."""

    id: int = Field(..., ge=1)
    name: str
    description: str = ""
    prerequisites: frozenset[int] = Field(default_factory=frozenset)
    expected_outputs: tuple[str, ...] = Field(default_factory=tuple)
    validation_criteria: tuple[str, ...] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)


class StageCatalog:
    """Ordered, read-only collection of stage definitions.

    Stage ids must run ``1..N`` in catalog order. Prerequisites form a
    directed acyclic graph over those ids and every prerequisite has to
    precede its dependent, so catalog order is a valid execution order.
    """

    def __init__(self, stages: Iterable[StageDefinition]):
        self._stages: tuple[StageDefinition, ...] = tuple(stages)
        self._by_id = {stage.id: stage for stage in self._stages}
        self._check()

    # ------------------------------------------------------------------
    # Construction checks
    def _check(self) -> None:
        if not self._stages:
            raise CatalogError("Stage catalog must define at least one stage")
        ids = [stage.id for stage in self._stages]
        if len(set(ids)) != len(ids):
            raise CatalogError(f"Duplicate stage ids in catalog: {ids}")
        if ids != list(range(1, len(ids) + 1)):
            raise CatalogError(f"Stage ids must run 1..{len(ids)} in order, got {ids}")
        for stage in self._stages:
            unknown = sorted(p for p in stage.prerequisites if p not in self._by_id)
            if unknown:
                raise CatalogError(
                    f"Stage {stage.id} references unknown prerequisites: {unknown}"
                )
        self._check_acyclic()
        for stage in self._stages:
            later = sorted(p for p in stage.prerequisites if p >= stage.id)
            if later:
                raise CatalogError(
                    f"Stage {stage.id} depends on stages that do not precede it: {later}"
                )

    def _check_acyclic(self) -> None:
        visiting: set[int] = set()
        done: set[int] = set()

        def visit(stage_id: int, path: list[int]) -> None:
            if stage_id in done:
                return
            if stage_id in visiting:
                cycle = path[path.index(stage_id) :] + [stage_id]
                raise CatalogError(
                    "Stage prerequisites form a cycle: "
                    + " -> ".join(str(s) for s in cycle)
                )
            visiting.add(stage_id)
            for prereq in sorted(self._by_id[stage_id].prerequisites):
                visit(prereq, path + [stage_id])
            visiting.discard(stage_id)
            done.add(stage_id)

        for stage in self._stages:
            visit(stage.id, [])

    # ------------------------------------------------------------------
    # Lookup
    def __iter__(self) -> Iterator[StageDefinition]:
        return iter(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._by_id

    @property
    def ids(self) -> list[int]:
        return [stage.id for stage in self._stages]

    @property
    def first(self) -> StageDefinition:
        return self._stages[0]

    @property
    def last(self) -> StageDefinition:
        return self._stages[-1]

    def get(self, stage_id: int) -> Optional[StageDefinition]:
        return self._by_id.get(stage_id)

    def require(self, stage_id: int) -> StageDefinition:
        """Return the stage with ``stage_id`` or raise :class:`UnknownStage`."""
        stage = self._by_id.get(stage_id)
        if stage is None:
            raise UnknownStage(stage_id, self.ids)
        return stage

    def next_after(self, stage_id: int) -> Optional[StageDefinition]:
        """Return the stage following ``stage_id`` in catalog order."""
        return self._by_id.get(stage_id + 1)

    def downstream_of(self, stage_id: int) -> list[int]:
        """Return ids of all stages that transitively depend on ``stage_id``."""
        self.require(stage_id)
        found: set[int] = set()
        frontier = [stage_id]
        while frontier:
            current = frontier.pop()
            for stage in self._stages:
                if current in stage.prerequisites and stage.id not in found:
                    found.add(stage.id)
                    frontier.append(stage.id)
        return sorted(found)


def _linear(definitions: Sequence[dict]) -> list[StageDefinition]:
    stages = []
    for index, data in enumerate(definitions, start=1):
        prerequisites = frozenset({index - 1}) if index > 1 else frozenset()
        stages.append(StageDefinition(id=index, prerequisites=prerequisites, **data))
    return stages


DEFAULT_STAGES = _linear(
    [
        {
            "name": "Architecture Decomposition",
            "description": "Define system boundaries and components",
            "expected_outputs": (
                "architecture.md",
                "components.json",
                "integration-points.md",
            ),
            "validation_criteria": (
                "All major components identified",
                "Component boundaries clearly defined",
                "Integration points documented",
                "Technical approach validated",
            ),
        },
        {
            "name": "Story Mapping",
            "description": "Map user journeys and create stories",
            "expected_outputs": (
                "personas.json",
                "journey-maps.md",
                "stories.json",
                "story-map.md",
            ),
            "validation_criteria": (
                "All user journeys documented",
                "Stories written with acceptance criteria",
                "Stories organized by priority",
                "Dependencies identified",
            ),
        },
        {
            "name": "Prioritization",
            "description": "Sequence work by value and dependencies",
            "expected_outputs": (
                "prioritized-backlog.json",
                "risk-matrix.md",
                "dependency-graph.md",
                "execution-plan.md",
            ),
            "validation_criteria": (
                "All stories prioritized",
                "Dependencies mapped",
                "Execution phases defined",
                "Critical path identified",
            ),
        },
        {
            "name": "Enhanced Task Breakdown",
            "description": "Create atomic, executable tasks",
            "expected_outputs": (
                ".tmp/tasks/{feature}/task.json",
                ".tmp/tasks/{feature}/subtask_*.json",
            ),
            "validation_criteria": (
                "All tasks defined with clear objectives",
                "Dependencies mapped correctly",
                "Parallel batches identified",
                "Task JSON validated",
            ),
        },
        {
            "name": "Contract Definition",
            "description": "Define interfaces before implementation",
            "expected_outputs": (
                "contracts/*.ts",
                "api-contracts.md",
                "data-schemas.ts",
            ),
            "validation_criteria": (
                "All integration points have contracts",
                "Contracts validated against architecture",
                "Type definitions complete",
                "Documentation written",
            ),
        },
        {
            "name": "Parallel Execution",
            "description": "Execute independent work simultaneously",
            "expected_outputs": (
                "Implemented deliverables",
                "Completed tasks",
                "Self-review reports",
            ),
            "validation_criteria": (
                "All tasks completed successfully",
                "Deliverables verified",
                "Acceptance criteria met",
                "No blocking failures",
            ),
        },
        {
            "name": "Integration & Validation",
            "description": "Integrate and validate components",
            "expected_outputs": (
                "Integrated system",
                "Integration test results",
                "Validation report",
            ),
            "validation_criteria": (
                "All components integrated",
                "Integration tests passing",
                "Acceptance criteria met",
                "System validated end-to-end",
            ),
        },
        {
            "name": "Release & Learning",
            "description": "Deploy and capture insights",
            "expected_outputs": (
                "Deployed feature",
                "Release notes",
                "Lessons learned",
                "Updated standards",
            ),
            "validation_criteria": (
                "Feature deployed successfully",
                "Production validated",
                "Insights documented",
                "Team aligned on learnings",
            ),
        },
    ]
)

DEFAULT_CATALOG = StageCatalog(DEFAULT_STAGES)

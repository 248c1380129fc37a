"""
Stage-flow aggregation for the job-application funnel diagram.

Each job item contributes at most one (from, to) transition. Identical pairs
are merged into a single counted edge, and edges come out sorted by stage
label so the rendered diagram is stable between refreshes.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping

from decluttr.classification.models import (
    DEFAULT_START_STAGE,
    NO_PROGRESS_SINK,
    ClassificationResult,
    Item,
    Stage,
    StageFlowEdge,
)
from decluttr.observability.telemetry import log_event
from decluttr.storage.repository import MailboxRepository, is_job

EMPTY_DIAGRAM = "// No stage transitions found"


def resolve_transition(result: ClassificationResult) -> tuple[Stage, Stage] | None:
    """The single edge an item contributes, or None if it has no stage at all."""
    to_stage = result.user_override_stage or result.transition_to or result.job_stage
    # A job item the model never staged contributes no edge; one that is still
    # at ApplicationsSent is the NoResponse case below
    if to_stage is None:
        return None
    from_stage = result.transition_from or DEFAULT_START_STAGE
    # Still at the first stage means nobody answered
    if to_stage is Stage.APPLICATIONS_SENT:
        to_stage = NO_PROGRESS_SINK
    return from_stage, to_stage


def aggregate_transitions(
    items: Iterable[Item],
    classifications: Mapping[str, ClassificationResult],
    job_label_id: str | None = None,
) -> list[StageFlowEdge]:
    """Count transitions across job-bucket items."""
    counts: Counter[tuple[Stage, Stage]] = Counter()
    for item in items:
        result = classifications.get(item.id)
        if result is None or not is_job(result, item, job_label_id):
            continue
        pair = resolve_transition(result)
        if pair is not None:
            counts[pair] += 1

    edges = [
        StageFlowEdge(from_stage=from_stage, to_stage=to_stage, count=count)
        for (from_stage, to_stage), count in counts.items()
    ]
    edges.sort(key=lambda edge: (edge.from_stage.value.casefold(), edge.to_stage.value.casefold()))
    return edges


def aggregate_stage_flow(repository: MailboxRepository) -> list[StageFlowEdge]:
    """Edges for everything the repository currently holds."""
    snapshot = repository.snapshot()
    edges = aggregate_transitions(snapshot.items, snapshot.classifications, snapshot.job_label_id)
    log_event("stage_flow.aggregated", edges=len(edges), items=sum(edge.count for edge in edges))
    return edges


def _node_name(stage: Stage) -> str:
    # [ and ] delimit the amount in SankeyMATIC
    return stage.value.replace("[", "").replace("]", "").strip()


def render_sankeymatic(edges: Iterable[StageFlowEdge]) -> str:
    """SankeyMATIC source: one ``From [count] To`` line per edge."""
    lines = [
        f"{_node_name(edge.from_stage)} [{edge.count}] {_node_name(edge.to_stage)}"
        for edge in edges
    ]
    if not lines:
        return EMPTY_DIAGRAM
    return "\n".join(lines)

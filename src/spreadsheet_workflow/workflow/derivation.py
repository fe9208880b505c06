"""One-hop propagation rules between adjacent workflow steps.

When a step's data changes, the step after it is recomputed from the new
rows. Recomputation keeps work the user already has: sub-sheets are matched
to their previous version by origin value, and LLM outputs by row content.
Matching is by identity, never by position, so inserting or deleting a
source row does not shift results onto the wrong row.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Sequence
from dataclasses import replace

from spreadsheet_workflow.sheets.grid import DEFAULT_HEADERS, Cell, Grid
from spreadsheet_workflow.sheets.llm_pipe import LLM_HEADERS, format_row_content
from spreadsheet_workflow.sheets.three_d import SubSheet, build_sub_sheets
from spreadsheet_workflow.workflow.steps import StepKind

SourceRows = tuple[Sequence[str], Sequence[Sequence[Cell]]]


def merge_sub_sheets(
    fresh: Sequence[SubSheet], previous: Sequence[SubSheet] | None
) -> list[SubSheet]:
    """Carry previous sub-sheets over to freshly derived ones.

    A fresh sub-sheet whose origin value matches a previous one takes that
    sub-sheet's rows (and storage entity); duplicates match in order.
    """
    pool: dict[str, deque[SubSheet]] = {}
    for sub in previous or ():
        pool.setdefault(sub.identity, deque()).append(sub)

    merged: list[SubSheet] = []
    for sub in fresh:
        candidates = pool.get(sub.identity)
        if candidates:
            kept = candidates.popleft().copy()
            merged.append(replace(kept, name=sub.name, origin=list(sub.origin)))
        else:
            merged.append(sub)
    return merged


def merge_llm_outputs(fresh: Grid, previous: Grid | None) -> Grid:
    """Copy previous outputs onto rows with the same content."""
    if previous is None:
        return fresh

    pool: dict[str, deque[str]] = {}
    for values in previous.values():
        if len(values) > 1 and values[1]:
            pool.setdefault(values[0], deque()).append(values[1])

    merged = fresh
    for row, content in enumerate(fresh.column_values(0)):
        outputs = pool.get(content)
        if outputs:
            merged = merged.with_cell(row, 1, outputs.popleft())
    return merged


def derive_llm_rows(
    headers: Sequence[str],
    rows: Sequence[Sequence[Cell]],
    previous: Grid | None = None,
) -> Grid:
    """Build LLM-pipe rows: content in column 0, kept outputs in column 1."""
    fresh = Grid.from_values(
        LLM_HEADERS, [[format_row_content(headers, row), ""] for row in rows]
    )
    return merge_llm_outputs(fresh, previous)


def derive_next(
    current_kind: StepKind,
    next_kind: StepKind,
    data: SourceRows,
    previous: Grid | Sequence[SubSheet] | None = None,
    next_headers: Sequence[str] | None = None,
) -> Grid | list[SubSheet] | None:
    """Recompute the data of the step that follows a changed step.

    Args:
        current_kind: Kind of the step that changed.
        next_kind: Kind of the step after it.
        data: Headers and rows of the changed step.
        previous: Current data of the next step, used to keep its work.
        next_headers: Headers of the next step (3D stacks only).

    Returns:
        New data for the next step, or None when that pair of kinds does
        not propagate.
    """
    headers, rows = data

    if next_kind is StepKind.THREE_D and current_kind in (
        StepKind.SINGLE,
        StepKind.AGGREGATION,
    ):
        fresh = build_sub_sheets(rows, next_headers or DEFAULT_HEADERS)
        kept = previous if isinstance(previous, Sequence) else None
        return merge_sub_sheets(fresh, kept)

    if next_kind is StepKind.LLM_PIPE:
        kept_grid = previous if isinstance(previous, Grid) else None
        return derive_llm_rows(headers, rows, kept_grid)

    return None

"""Apply assistant tool calls to a 3D stack."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from spreadsheet_workflow.models import ToolCall
from spreadsheet_workflow.utils.logging import get_logger

if TYPE_CHECKING:
    from spreadsheet_workflow.services.collaborators import Collaborators
    from spreadsheet_workflow.sheets.three_d import ThreeDStack

logger = get_logger(__name__)

NO_RESULTS_MESSAGE = "I couldn't find any matching results to create sheets from."
FIND_ERROR_MESSAGE = (
    "Sorry, there was an error while trying to create sheets from the search results."
)
HEADERS_UPDATED_MESSAGE = "I've updated the column headers for you."
HEADERS_ERROR_MESSAGE = (
    "Sorry, there was an error while trying to update the column headers."
)


async def _create_sheets(
    stack: ThreeDStack, collaborators: Collaborators, query: str
) -> str:
    try:
        names = await collaborators.find(query, sheet_level=True)
    except Exception as e:
        logger.error("Sheet search failed", query=query, error=str(e))
        return FIND_ERROR_MESSAGE

    if not names:
        return NO_RESULTS_MESSAGE

    for name in names:
        stack.add_sheet(name)
    return f"I've created {len(names)} new sheets based on the search results."


async def apply_tool_calls(
    stack: ThreeDStack,
    tool_calls: Sequence[ToolCall],
    collaborators: Collaborators,
) -> list[str]:
    """Run each tool call against ``stack`` in order.

    Returns:
        One assistant message per handled tool call.
    """
    messages: list[str] = []
    for call in tool_calls:
        if call.type == "findall_sheets":
            messages.append(
                await _create_sheets(stack, collaborators, call.params.query or "")
            )
        elif call.type == "update_headers" and call.params.headers:
            try:
                stack.set_headers(call.params.headers)
            except Exception as e:
                logger.error("Header update failed", error=str(e))
                messages.append(HEADERS_ERROR_MESSAGE)
            else:
                messages.append(HEADERS_UPDATED_MESSAGE)
    return messages

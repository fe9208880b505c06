"""Chat assistant that turns a conversation into sheet tool calls.

The planner is keyword based: it looks at the last user message only and
never calls the completion client.
"""

import re

from spreadsheet_workflow.models import (
    ChatMessage,
    OrchestrateResponse,
    ToolCall,
    ToolCallParams,
)
from spreadsheet_workflow.utils.logging import get_logger

logger = get_logger(__name__)

FIND_TRIGGERS = ("find sheets", "search sheets")
HEADERS_PATTERN = re.compile(r"headers\s*:\s*(.+)", re.IGNORECASE | re.DOTALL)

FIND_REPLY = "I'll help you find those sheets. Let me search for them..."
HEADERS_REPLY = "I'll update the column headers."
PLACEHOLDER_REPLY = (
    "This is a placeholder response. Implement your orchestration logic here."
)


def parse_headers(text: str) -> list[str]:
    """Comma-separated header names after ``headers:``, blanks dropped."""
    match = HEADERS_PATTERN.search(text)
    if not match:
        return []
    return [name.strip() for name in match.group(1).split(",") if name.strip()]


def plan(messages: list[ChatMessage]) -> OrchestrateResponse:
    """Build the assistant reply and tool calls for a conversation."""
    user_messages = [m for m in messages if m.role == "user"]
    if not user_messages:
        return OrchestrateResponse(response=PLACEHOLDER_REPLY)

    content = user_messages[-1].content
    lowered = content.lower()

    if any(trigger in lowered for trigger in FIND_TRIGGERS):
        logger.info("Planned sheet search", query=content)
        return OrchestrateResponse(
            response=FIND_REPLY,
            tool_calls=[
                ToolCall(type="findall_sheets", params=ToolCallParams(query=content))
            ],
        )

    headers = parse_headers(content)
    if headers:
        logger.info("Planned header update", headers=headers)
        return OrchestrateResponse(
            response=HEADERS_REPLY,
            tool_calls=[
                ToolCall(type="update_headers", params=ToolCallParams(headers=headers))
            ],
        )

    return OrchestrateResponse(response=PLACEHOLDER_REPLY)

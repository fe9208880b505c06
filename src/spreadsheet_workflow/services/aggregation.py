"""Aggregate collaborator: summarize one sub-sheet into a single row.

The model is asked for a JSON list with one string per aggregation column,
column 0 being the sub-sheet's name. A JSON object keyed by column name is
accepted too; anything else degrades to empty insights.
"""

import json
from datetime import UTC, datetime

from langchain_core.prompts import PromptTemplate

from spreadsheet_workflow.config import settings
from spreadsheet_workflow.models import AggregateRequest, AggregateResponse
from spreadsheet_workflow.services.llm_client import LLMClient, get_llm_client
from spreadsheet_workflow.utils.logging import get_logger
from spreadsheet_workflow.utils.response_parser import parse_string_mapping

logger = get_logger(__name__)

AGGREGATION_PROMPT = PromptTemplate.from_template(
    """Analyze this data follow the provided instructions to aggregate the data:
User Prompt: {instruction}

The below table's headers are: {prev_headers}

Data:
{cells}

Here are the columns you should return: {columns}
You should return {column_count} values.

The value to return for the Sheet Name (first column) is: {sheet_name}
Return the other values after that.

Return the data as a list of strings in the above order.
You should return a list of length equal to the number of columns. That means you should aggregate the data into one row.
Make sure all values are strings.

Return only the JSON list."""
)


def resolve_sheet_name(request: AggregateRequest) -> str:
    """Column-0 value of the origin row, else the request's sheet name."""
    if request.data.prev_row and request.data.prev_row[0].value:
        return request.data.prev_row[0].value
    return request.sheet_name


class AggregationService:
    """Answers Aggregate requests with the completion client."""

    def __init__(
        self, llm_client: LLMClient | None = None, model: str | None = None
    ) -> None:
        self._llm_client = llm_client
        self.model = model or settings.aggregation_model

    @property
    def llm_client(self) -> LLMClient:
        return self._llm_client or get_llm_client()

    def build_prompt(self, request: AggregateRequest, sheet_name: str) -> str:
        cells = [
            [cell.model_dump() for cell in row] for row in request.data.cells
        ]
        return AGGREGATION_PROMPT.format(
            instruction=request.aggregation_prompt,
            prev_headers=", ".join(request.prev_table_headers),
            cells=json.dumps(cells, indent=2),
            columns=", ".join(request.columns),
            column_count=len(request.columns),
            sheet_name=sheet_name,
        )

    async def aggregate(self, request: AggregateRequest) -> AggregateResponse:
        sheet_name = resolve_sheet_name(request)
        response = await self.llm_client.complete(
            self.build_prompt(request, sheet_name), model=self.model
        )
        insights = parse_string_mapping(
            response.text, keys=list(request.columns), source="aggregate"
        )
        logger.info(
            "Aggregation completed",
            sheet_name=sheet_name,
            sheet_index=request.sheet_index,
            rows=len(request.data.cells),
            insights=len(insights),
        )
        return AggregateResponse(
            success=True,
            sheet_name=sheet_name,
            count=len(request.data.cells),
            last_updated=datetime.now(UTC),
            aggregated_insights=insights,
        )

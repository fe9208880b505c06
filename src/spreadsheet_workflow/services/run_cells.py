"""RunCells collaborator: fill a row's columns from its identifying value."""

import json

from langchain_core.prompts import PromptTemplate

from spreadsheet_workflow.services.llm_client import LLMClient, get_llm_client
from spreadsheet_workflow.utils.logging import get_logger
from spreadsheet_workflow.utils.response_parser import parse_string_mapping

logger = get_logger(__name__)

RUN_CELLS_PROMPT = PromptTemplate.from_template(
    """Fill in the columns of a spreadsheet row.

The row is about: {input}

Columns with their current values (blank values are unknown):
{columns}

Return a JSON object whose keys are exactly these column names: {column_names}
Every value must be a string. Keep values short enough to fit in a cell."""
)


class RunCellsService:
    """Answers RunCells requests with the completion client."""

    def __init__(self, llm_client: LLMClient | None = None) -> None:
        self._llm_client = llm_client

    @property
    def llm_client(self) -> LLMClient:
        return self._llm_client or get_llm_client()

    def build_prompt(self, input_value: str, columns: dict[str, str]) -> str:
        return RUN_CELLS_PROMPT.format(
            input=input_value,
            columns=json.dumps(columns, indent=2),
            column_names=", ".join(columns),
        )

    async def run_cells(
        self, input_value: str, columns: dict[str, str]
    ) -> dict[str, str]:
        """Return one value per requested column.

        Columns the model leaves out come back blank; keys the model invents
        are dropped.
        """
        if not columns:
            return {}

        response = await self.llm_client.complete(self.build_prompt(input_value, columns))
        parsed = parse_string_mapping(
            response.text, keys=list(columns), source="run_cells"
        )
        results = {name: parsed.get(name, "") for name in columns}
        logger.debug(
            "RunCells completed",
            input=input_value,
            filled=sum(1 for value in results.values() if value),
            from_cache=response.from_cache,
        )
        return results

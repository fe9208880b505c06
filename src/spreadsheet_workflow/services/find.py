"""Find collaborator: list entity names matching a free-text query."""

from langchain_core.prompts import PromptTemplate

from spreadsheet_workflow.services.llm_client import LLMClient, get_llm_client
from spreadsheet_workflow.utils.logging import get_logger
from spreadsheet_workflow.utils.response_parser import parse_string_list

logger = get_logger(__name__)

FIND_PROMPT = PromptTemplate.from_template(
    """Find the entities that match the search below.

Search: {query}

{scope}

Return the names as a JSON list of strings, one name per entity, most relevant
first. Return an empty JSON list when nothing matches."""
)

SHEET_SCOPE = "Each result will become a row of a spreadsheet, so return one short name per result."
ROW_SCOPE = "Each result will fill a single cell, so keep every name short."


class FindService:
    """Answers Find requests with the completion client."""

    def __init__(self, llm_client: LLMClient | None = None) -> None:
        self._llm_client = llm_client

    @property
    def llm_client(self) -> LLMClient:
        return self._llm_client or get_llm_client()

    def build_prompt(self, query: str, sheet_level: bool = True) -> str:
        return FIND_PROMPT.format(
            query=query, scope=SHEET_SCOPE if sheet_level else ROW_SCOPE
        )

    async def find(self, query: str, sheet_level: bool = True) -> list[str]:
        """Return entity names for ``query``; malformed output yields []."""
        response = await self.llm_client.complete(self.build_prompt(query, sheet_level))
        results = parse_string_list(response.text, source="find")
        logger.info(
            "Find completed",
            query=query,
            results=len(results),
            from_cache=response.from_cache,
        )
        return results

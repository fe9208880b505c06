"""LLM collaborator: apply one instruction to many inputs concurrently."""

import asyncio

from spreadsheet_workflow.models import LLMOutput
from spreadsheet_workflow.services.llm_client import LLMClient, get_llm_client
from spreadsheet_workflow.utils.logging import get_logger, timed_operation

logger = get_logger(__name__)


def build_input_prompt(prompt: str, input_text: str) -> str:
    return (
        f"{prompt}\n\n"
        f"Inputs:\n{input_text}\n\n"
        "Follow the instructions in the prompt and return the response using "
        "the context as described."
    )


class LLMPipeService:
    """Runs one completion per input, all at once."""

    def __init__(self, llm_client: LLMClient | None = None) -> None:
        self._llm_client = llm_client

    @property
    def llm_client(self) -> LLMClient:
        return self._llm_client or get_llm_client()

    async def _complete_one(self, index: int, prompt: str, input_text: str) -> LLMOutput | None:
        try:
            response = await self.llm_client.complete(build_input_prompt(prompt, input_text))
        except Exception as e:
            logger.error("LLM input failed", index=index, error=str(e))
            return None
        return LLMOutput(text=response.text, from_cache=response.from_cache)

    async def run(self, inputs: list[str], prompt: str) -> list[LLMOutput | None]:
        """Return one output per input, in input order.

        A failed input yields None in its slot; the other inputs still
        complete.
        """
        with timed_operation(logger, "llm_pipe") as metrics:
            outputs = await asyncio.gather(
                *(
                    self._complete_one(index, prompt, input_text)
                    for index, input_text in enumerate(inputs)
                )
            )
            metrics.rows_processed = len(inputs)
            metrics.api_calls = len(inputs)
            metrics.failures = sum(1 for output in outputs if output is None)
        return list(outputs)

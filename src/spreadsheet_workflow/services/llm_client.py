"""Disk-cached text completion client.

Every collaborator service sends its prompt through :class:`LLMClient`.
Completions are cached on disk, one JSON file per ``md5(prompt + model)``
key, so identical prompts against the same model are answered without a
network call.
"""

import hashlib
import json
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI

from spreadsheet_workflow.config import settings
from spreadsheet_workflow.utils.exceptions import LLMConfigurationError, LLMError
from spreadsheet_workflow.utils.logging import get_logger
from spreadsheet_workflow.utils.response_parser import extract_tagged_response

logger = get_logger(__name__)

RESPONSE_INSTRUCTION = (
    "Return your response as described inside <response></response> tags. "
    "Only return the response inside these tags, no other text."
)


@dataclass
class LLMResponse:
    """Completion text and whether it was served from the cache."""

    text: str
    from_cache: bool = False


def cache_key(prompt: str, model: str) -> str:
    return hashlib.md5(f"{prompt}{model}".encode()).hexdigest()


class LLMClient:
    """Completion client backed by LangChain's ChatOpenAI.

    Args:
        api_key: OpenAI API key. Defaults to settings.
        model: Default model name. Defaults to settings.openai_model.
        cache_dir: Cache directory. Defaults to settings.cache_dir.
        chat_model: Chat model used for every request instead of building a
            ChatOpenAI per model name.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        cache_dir: str | Path | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        chat_model: BaseChatModel | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.get_openai_api_key()
        self.model = model or settings.openai_model
        self.cache_dir = Path(cache_dir or settings.cache_dir)
        self.temperature = (
            temperature if temperature is not None else settings.openai_temperature
        )
        self.max_tokens = max_tokens or settings.openai_max_tokens
        self._chat_model = chat_model
        self._models: dict[str, BaseChatModel] = {}

    def llm(self, model: str | None = None) -> BaseChatModel:
        """Get or create the chat model for ``model``.

        Raises:
            LLMConfigurationError: If no chat model was injected and the API
                key is not configured.
        """
        if self._chat_model is not None:
            return self._chat_model

        name = model or self.model
        if name not in self._models:
            if not self.api_key:
                raise LLMConfigurationError()
            self._models[name] = ChatOpenAI(
                api_key=self.api_key,  # type: ignore[arg-type]
                model=name,
                temperature=self.temperature,
                max_completion_tokens=self.max_tokens,
            )
        return self._models[name]

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _cache_path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def read_cache(self, prompt: str, model: str) -> str | None:
        """Return the cached completion text, or None on a miss."""
        path = self._cache_path(cache_key(prompt, model))
        if not path.exists():
            return None
        try:
            data: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable cache entry", path=str(path), error=str(e))
            return None
        text = data.get("text")
        return text if isinstance(text, str) else None

    def write_cache(self, prompt: str, model: str, text: str) -> None:
        path = self._cache_path(cache_key(prompt, model))
        payload = {
            "text": text,
            "prompt": prompt,
            "model": model,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to write cache entry", path=str(path), error=str(e))

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def complete(self, prompt: str, model: str | None = None) -> LLMResponse:
        """Complete a prompt, reading and filling the disk cache.

        The prompt is sent with an instruction to wrap the answer in
        ``<response>`` tags; only the tagged section is returned (``""``
        when the model omits the tags).

        Raises:
            LLMConfigurationError: If the API key is missing.
            LLMError: If the model call fails.
        """
        model_name = model or self.model

        cached = self.read_cache(prompt, model_name)
        if cached is not None:
            logger.log_collaborator_call("llm", 0.0, success=True, from_cache=True)
            return LLMResponse(text=cached, from_cache=True)

        chat = self.llm(model_name)
        message = HumanMessage(content=f"{prompt}\n\n{RESPONSE_INSTRUCTION}")

        start_time = time.time()
        try:
            response = await chat.ainvoke([message])
        except Exception as e:
            logger.log_collaborator_call(
                "llm",
                time.time() - start_time,
                success=False,
                error_message=str(e),
            )
            raise LLMError(
                f"Completion failed: {e}",
                model=model_name,
                details={"original_error": str(e)},
            ) from e

        content = response.content
        if not isinstance(content, str):
            content = str(content)

        text = extract_tagged_response(content)
        self.write_cache(prompt, model_name, text)
        logger.log_collaborator_call(
            "llm", time.time() - start_time, success=True, from_cache=False
        )
        return LLMResponse(text=text, from_cache=False)


_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    """Get the process-wide LLM client."""
    global _client
    if _client is None:
        _client = LLMClient()
    return _client


def reset_llm_client() -> None:
    global _client
    _client = None

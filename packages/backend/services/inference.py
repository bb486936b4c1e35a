"""Inference orchestration against the lifecycle manager's loaded model.

Every call borrows the current chat session (or model handle) from the
lifecycle manager under its inference lock and re-checks readiness each
time, since a competing request may unload the model between calls.
"""

import inspect
import json
import logging
import re
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import aclosing
from typing import Any

from core.exceptions import LLMServiceError, ParseError
from core.interfaces import ChatOptions
from services.lifecycle import LifecycleManager
from services.text_shaping import (
    chunk_text,
    cosine_similarity,
    estimate_tokens,
    truncate_for_context,
)

logger = logging.getLogger(__name__)

UNKNOWN_CATEGORY = "unknown"

# Summarization tiers
DIRECT_SUMMARY_TOKEN_LIMIT = 700
SUMMARY_CHUNK_TOKENS = 500
MAX_SUMMARY_CHUNKS = 5

BATCH_SIZE = 3

SUMMARY_OPTIONS = ChatOptions(max_tokens=256, temperature=0.3)
CHUNK_SUMMARY_OPTIONS = ChatOptions(max_tokens=100, temperature=0.3)
CATEGORIZE_OPTIONS = ChatOptions(max_tokens=32, temperature=0.1)
BATCH_CATEGORIZE_OPTIONS = ChatOptions(max_tokens=64, temperature=0.1)
PARSE_COMMAND_OPTIONS = ChatOptions(max_tokens=128, temperature=0.1)
ANSWER_OPTIONS = ChatOptions(max_tokens=512, temperature=0.5)

_SUMMARY_PROMPT = """Summarize the following text in {max_sentences} sentences or less. Be concise and capture the main points:

{text}

Summary:"""

_CHUNK_SUMMARY_PROMPT = """Summarize this text section in 1-2 sentences:

{text}

Summary:"""

_COMBINE_PROMPT = """Combine these summaries into a coherent {max_sentences}-sentence summary:

{summaries}

Final summary:"""

_CATEGORIZE_PROMPT = """Categorize the following webpage into one of these categories: {categories}

Title: {title}
URL: {url}

Respond with ONLY the category name, nothing else.

Category:"""

_BATCH_CATEGORIZE_PROMPT = """Categorize each URL into one of: {categories}

URLs:
{items}

Reply with ONLY the category for each, one per line (e.g., "1. Work"):"""

_PARSE_COMMAND_PROMPT = """Parse the following command and return a JSON object with the action and parameters.

Available actions:
- open_url: Open a URL (params: url)
- close_tab: Close a tab (params: tabId or title match)
- search: Search for something (params: query, type: tabs|history|bookmarks)
- create_workspace: Create a workspace (params: name)
- summarize: Summarize a page (params: tabId or url)
- switch_workspace: Switch to a workspace (params: name)

Command: "{command}"

Return ONLY valid JSON, no explanation:"""

_ANSWER_PROMPT = """Based on the following content, answer the question.

Content:
{content}

Question: {question}

Answer:"""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_NUMBERED_LINE = re.compile(r"(?:\d+[.)]\s*)?(.+)")


def extract_json_object(response: str) -> dict[str, Any]:
    """Parse the brace-delimited JSON object embedded in a model response.

    Raises:
        ParseError: No object found, or it is not valid JSON
    """
    match = _JSON_OBJECT.search(response)
    if not match:
        raise ParseError("No JSON object in response")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in response: {e}") from e
    if not isinstance(parsed, dict):
        raise ParseError("Response JSON is not an object")
    return parsed


def match_category(response: str, categories: list[str]) -> str:
    """Case-insensitive exact match of a response against the category set."""
    label = response.strip().strip("\"'.").strip().lower()
    for category in categories:
        if category.lower() == label:
            return category
    return UNKNOWN_CATEGORY


def match_category_line(line: str, categories: list[str]) -> str:
    """Tolerant match for one line of a batch reply like ``"2. Work"``.

    Accepts an exact label or any line that contains a category name.
    """
    match = _NUMBERED_LINE.match(line.strip())
    if not match:
        return UNKNOWN_CATEGORY
    label = match.group(1).strip().lower()
    for category in categories:
        name = category.lower()
        if name == label or name in label:
            return category
    return UNKNOWN_CATEGORY


class InferenceOrchestrator:
    """Shapes requests for the loaded model and interprets its replies."""

    def __init__(self, manager: LifecycleManager, defaults: ChatOptions):
        """Initialize the orchestrator.

        Args:
            manager: Lifecycle manager that owns the loaded model.
            defaults: Generation defaults for options a caller leaves unset.
        """
        self._manager = manager
        self._defaults = defaults

    def _resolve(self, options: ChatOptions | None) -> ChatOptions:
        return (options or ChatOptions()).resolved(self._defaults)

    def require_ready(self) -> None:
        """Raise ModelNotLoadedError unless a chat session is available."""
        self._manager.require_session()

    # ── Chat ────────────────────────────────────────────────────────────

    async def chat(self, prompt: str, options: ChatOptions | None = None) -> str:
        """Single request/response through the bound chat session.

        Raises:
            ModelNotLoadedError: No model is Ready
            EngineError: Generation failed
        """
        resolved = self._resolve(options)
        async with self._manager.inference_lock:
            session = self._manager.require_session()
            return await session.prompt(prompt, resolved)

    async def stream(
        self,
        prompt: str,
        options: ChatOptions | None = None,
    ) -> AsyncIterator[str]:
        """Yield reply fragments in order as the engine produces them.

        The engine stays locked until the stream is exhausted or closed.
        """
        resolved = self._resolve(options)
        async with self._manager.inference_lock:
            session = self._manager.require_session()
            async for fragment in session.prompt_stream(prompt, resolved):
                yield fragment

    async def chat_stream(
        self,
        prompt: str,
        on_token: Callable[[str], Any] | None = None,
        options: ChatOptions | None = None,
    ) -> str:
        """Stream a reply to ``on_token`` and return the full concatenation.

        ``on_token`` may be a plain function or a coroutine function. If it
        raises, the stream is closed and the engine released before the
        error propagates.
        """
        pieces: list[str] = []
        async with aclosing(self.stream(prompt, options)) as fragments:
            async for fragment in fragments:
                pieces.append(fragment)
                if on_token is not None:
                    result = on_token(fragment)
                    if inspect.isawaitable(result):
                        await result
        return "".join(pieces)

    # ── Summarization ───────────────────────────────────────────────────

    async def summarize(self, text: str, max_sentences: int = 3) -> str:
        """Summarize text of any length.

        Short text is summarized directly. Longer text goes through a
        map-reduce pass over at most MAX_SUMMARY_CHUNKS paragraph chunks;
        anything past the last chunk is dropped.
        """
        if not text or not text.strip():
            return ""

        if estimate_tokens(text) < DIRECT_SUMMARY_TOKEN_LIMIT:
            return await self._summarize_direct(text, max_sentences)

        chunks = chunk_text(text, SUMMARY_CHUNK_TOKENS)

        if len(chunks) == 1:
            # Single chunk but still long - keep the start and the end
            truncated = truncate_for_context(text, DIRECT_SUMMARY_TOKEN_LIMIT)
            return await self._summarize_direct(truncated, max_sentences)

        # --- MAP phase ---
        selected = chunks[:MAX_SUMMARY_CHUNKS]
        if len(chunks) > MAX_SUMMARY_CHUNKS:
            logger.info(
                "Summarize: %d chunks, only the first %d are processed",
                len(chunks),
                MAX_SUMMARY_CHUNKS,
            )
        else:
            logger.info("Summarize: map-reduce over %d chunks", len(chunks))

        chunk_summaries = []
        for i, chunk in enumerate(selected):
            logger.debug("Summarizing chunk %d/%d", i + 1, len(selected))
            summary = await self.chat(_CHUNK_SUMMARY_PROMPT.format(text=chunk), CHUNK_SUMMARY_OPTIONS)
            chunk_summaries.append(summary.strip())

        # --- REDUCE phase ---
        prompt = _COMBINE_PROMPT.format(
            max_sentences=max_sentences,
            summaries=" ".join(chunk_summaries),
        )
        return await self.chat(prompt, SUMMARY_OPTIONS)

    async def _summarize_direct(self, text: str, max_sentences: int) -> str:
        prompt = _SUMMARY_PROMPT.format(max_sentences=max_sentences, text=text)
        return await self.chat(prompt, SUMMARY_OPTIONS)

    # ── Classification ──────────────────────────────────────────────────

    async def categorize(self, title: str, url: str, categories: list[str]) -> str:
        """Pick one of ``categories`` for a page, or ``"unknown"``."""
        prompt = _CATEGORIZE_PROMPT.format(
            categories=", ".join(categories),
            title=title,
            url=url,
        )
        response = await self.chat(prompt, CATEGORIZE_OPTIONS)
        return match_category(response, categories)

    async def batch_categorize(
        self,
        items: list[Mapping[str, Any]],
        categories: list[str],
    ) -> list[dict[str, Any]]:
        """Categorize ``{title, url}`` items, BATCH_SIZE per prompt.

        Returns each item with a ``category`` key added, in input order. A
        failed batch resolves all of its items to ``"unknown"``.
        """
        if not items:
            return []

        self.require_ready()

        results: list[dict[str, Any]] = []
        for start in range(0, len(items), BATCH_SIZE):
            batch = items[start:start + BATCH_SIZE]
            listing = "\n".join(
                f'{idx + 1}. "{item.get("title", "")}" - {item.get("url", "")}'
                for idx, item in enumerate(batch)
            )
            prompt = _BATCH_CATEGORIZE_PROMPT.format(
                categories=", ".join(categories),
                items=listing,
            )

            try:
                response = await self.chat(prompt, BATCH_CATEGORIZE_OPTIONS)
            except LLMServiceError:
                logger.warning("Batch categorization failed for items %d-%d", start + 1, start + len(batch), exc_info=True)
                results.extend({**item, "category": UNKNOWN_CATEGORY} for item in batch)
                continue

            lines = response.strip().split("\n")
            for idx, item in enumerate(batch):
                line = lines[idx] if idx < len(lines) else ""
                results.append({**item, "category": match_category_line(line, categories)})

        return results

    # ── Structured output ───────────────────────────────────────────────

    async def parse_command(self, command: str) -> dict[str, Any]:
        """Turn a natural-language command into ``{"action": ..., ...}``.

        Unparseable replies resolve to ``{"action": "unknown", "raw": command}``.
        """
        response = await self.chat(_PARSE_COMMAND_PROMPT.format(command=command), PARSE_COMMAND_OPTIONS)
        try:
            return extract_json_object(response)
        except ParseError as e:
            logger.warning("Failed to parse command response (%s): %r", e, response)
            return {"action": UNKNOWN_CATEGORY, "raw": command}

    async def answer_question(self, question: str, content: str) -> str:
        """Answer a question grounded in ``content``. The caller sizes content."""
        prompt = _ANSWER_PROMPT.format(content=content, question=question)
        return await self.chat(prompt, ANSWER_OPTIONS)

    # ── Embeddings ──────────────────────────────────────────────────────

    async def get_embedding(self, text: str) -> list[float]:
        """Embed ``text`` through a short-lived embedding context.

        Only needs a loaded model, not a chat session.
        """
        async with self._manager.inference_lock:
            model = self._manager.require_model()
            context = await model.create_embedding_context()
            try:
                return await context.embed(text)
            finally:
                await context.dispose()

    @staticmethod
    def similarity(a: list[float], b: list[float]) -> float:
        return cosine_similarity(a, b)

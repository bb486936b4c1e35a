"""AI inference endpoints."""

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from api.dependencies import get_orchestrator
from api.errors import to_http_exception
from core.exceptions import LLMServiceError
from core.interfaces import ChatOptions
from services.inference import InferenceOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/ai", tags=["ai"])

Orchestrator = Annotated[InferenceOrchestrator, Depends(get_orchestrator)]


class ChatRequest(BaseModel):
    """Request model for chat."""

    prompt: str
    max_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0, le=2)
    top_p: float | None = Field(default=None, gt=0, le=1)

    def options(self) -> ChatOptions:
        return ChatOptions(
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
        )


class TextResponse(BaseModel):
    content: str


class SummarizeRequest(BaseModel):
    text: str
    max_sentences: int = Field(default=3, ge=1, le=20)


class CategorizeRequest(BaseModel):
    title: str
    url: str
    categories: list[str] = Field(min_length=1)


class CategorizeResponse(BaseModel):
    category: str


class CategorizeItem(BaseModel):
    title: str
    url: str


class BatchCategorizeRequest(BaseModel):
    items: list[CategorizeItem]
    categories: list[str] = Field(min_length=1)


class BatchCategorizeResponse(BaseModel):
    results: list[dict[str, Any]]


class CommandRequest(BaseModel):
    command: str


class AskRequest(BaseModel):
    question: str
    content: str


class EmbedRequest(BaseModel):
    text: str


class EmbedResponse(BaseModel):
    embedding: list[float]
    dimensions: int


class SimilarityRequest(BaseModel):
    a: list[float]
    b: list[float]


class SimilarityResponse(BaseModel):
    similarity: float


@router.post("/chat", response_model=TextResponse)
async def chat(request: ChatRequest, orchestrator: Orchestrator) -> TextResponse:
    """Send a prompt to the loaded model."""
    try:
        content = await orchestrator.chat(request.prompt, request.options())
    except LLMServiceError as e:
        raise to_http_exception(e) from e
    return TextResponse(content=content)


@router.post("/chat/stream")
async def chat_stream(request: ChatRequest, orchestrator: Orchestrator) -> StreamingResponse:
    """Stream a reply as server-sent events, ending with [DONE]."""
    # Fail before the stream opens so the caller gets a proper status code
    try:
        orchestrator.require_ready()
    except LLMServiceError as e:
        raise to_http_exception(e) from e

    async def generate():
        try:
            async for fragment in orchestrator.stream(request.prompt, request.options()):
                yield f"data: {json.dumps({'token': fragment})}\n\n"
            yield "data: [DONE]\n\n"
        except LLMServiceError as e:
            logger.exception("Stream chat failed")
            yield f"data: [ERROR] {e}\n\n"

    return StreamingResponse(generate(), media_type="text/event-stream")


@router.post("/summarize", response_model=TextResponse)
async def summarize(request: SummarizeRequest, orchestrator: Orchestrator) -> TextResponse:
    try:
        content = await orchestrator.summarize(request.text, request.max_sentences)
    except LLMServiceError as e:
        raise to_http_exception(e) from e
    return TextResponse(content=content)


@router.post("/categorize", response_model=CategorizeResponse)
async def categorize(request: CategorizeRequest, orchestrator: Orchestrator) -> CategorizeResponse:
    try:
        category = await orchestrator.categorize(request.title, request.url, request.categories)
    except LLMServiceError as e:
        raise to_http_exception(e) from e
    return CategorizeResponse(category=category)


@router.post("/categorize/batch", response_model=BatchCategorizeResponse)
async def batch_categorize(
    request: BatchCategorizeRequest,
    orchestrator: Orchestrator,
) -> BatchCategorizeResponse:
    items = [item.model_dump() for item in request.items]
    try:
        results = await orchestrator.batch_categorize(items, request.categories)
    except LLMServiceError as e:
        raise to_http_exception(e) from e
    return BatchCategorizeResponse(results=results)


@router.post("/parse-command")
async def parse_command(request: CommandRequest, orchestrator: Orchestrator) -> dict[str, Any]:
    """Parse a natural-language command into an action object."""
    try:
        return await orchestrator.parse_command(request.command)
    except LLMServiceError as e:
        raise to_http_exception(e) from e


@router.post("/ask", response_model=TextResponse)
async def ask(request: AskRequest, orchestrator: Orchestrator) -> TextResponse:
    """Answer a question about the supplied content."""
    try:
        content = await orchestrator.answer_question(request.question, request.content)
    except LLMServiceError as e:
        raise to_http_exception(e) from e
    return TextResponse(content=content)


@router.post("/embed", response_model=EmbedResponse)
async def embed(request: EmbedRequest, orchestrator: Orchestrator) -> EmbedResponse:
    try:
        vector = await orchestrator.get_embedding(request.text)
    except LLMServiceError as e:
        raise to_http_exception(e) from e
    return EmbedResponse(embedding=vector, dimensions=len(vector))


@router.post("/similarity", response_model=SimilarityResponse)
async def similarity(request: SimilarityRequest) -> SimilarityResponse:
    """Cosine similarity of two vectors; 0 when their lengths differ."""
    return SimilarityResponse(similarity=InferenceOrchestrator.similarity(request.a, request.b))

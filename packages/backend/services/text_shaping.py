"""Fit arbitrary-length text into a small context window.

Token counts here are a character heuristic (~4 chars per token) so that
requests can be sized before touching the engine. When precision matters,
count with the model's own tokenizer and treat this as the fallback.
"""

import math
import re

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "\n\n[... content truncated for length ...]\n\n"

# Room left for the truncation marker on each side of the splice
_MARKER_ALLOWANCE = 50

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def truncate_for_context(text: str, max_tokens: int = 800) -> str:
    """Trim text to roughly ``max_tokens``, keeping its beginning and end.

    Intros and conclusions carry most of a document's framing, so the
    middle is dropped and replaced with TRUNCATION_MARKER.
    """
    if estimate_tokens(text) <= max_tokens:
        return text

    half_chars = max((max_tokens * CHARS_PER_TOKEN) // 2 - _MARKER_ALLOWANCE, 0)
    beginning = text[:half_chars]
    end = text[len(text) - half_chars:] if half_chars else ""
    return f"{beginning}{TRUNCATION_MARKER}{end}"


def chunk_text(text: str, max_tokens_per_chunk: int = 600) -> list[str]:
    """Split text on blank lines into chunks of at most the character budget.

    Paragraphs are accumulated greedily and never split, so a single
    paragraph larger than the budget becomes a chunk of its own.
    """
    max_chars = max_tokens_per_chunk * CHARS_PER_TOKEN
    chunks: list[str] = []
    current: list[str] = []
    current_len = 0

    for para in _PARAGRAPH_BREAK.split(text):
        para = para.strip()
        if not para:
            continue

        added = len(para) + (2 if current else 0)
        if current and current_len + added > max_chars:
            chunks.append("\n\n".join(current))
            current = [para]
            current_len = len(para)
        else:
            current.append(para)
            current_len += added

    if current:
        chunks.append("\n\n".join(current))

    return chunks


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity; 0.0 for mismatched dimensions or zero vectors."""
    if len(a) != len(b):
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)

"""Curated model catalog for on-device inference.

Defines the GGUF models that can be downloaded from HuggingFace. Model ids
double as the artifact filename inside the models directory.
"""

from dataclasses import dataclass

from huggingface_hub import hf_hub_url

from core.exceptions import UnknownModelError


@dataclass(frozen=True)
class ModelDescriptor:
    """Immutable catalog entry for one downloadable model."""

    id: str
    repo: str
    filename: str  # Filename inside the HuggingFace repo
    expected_size_bytes: int
    display_name: str
    size_label: str
    ram_estimate: str
    quality_tier: str
    speed_tier: str
    description: str
    is_default: bool = False

    @property
    def source_url(self) -> str:
        """Resolve URL for the artifact on the HuggingFace hub."""
        return hf_hub_url(repo_id=self.repo, filename=self.filename)


MODEL_CATALOG: dict[str, ModelDescriptor] = {
    "llama-3.2-1b-instruct.Q4_K_M.gguf": ModelDescriptor(
        id="llama-3.2-1b-instruct.Q4_K_M.gguf",
        repo="bartowski/Llama-3.2-1B-Instruct-GGUF",
        filename="Llama-3.2-1B-Instruct-Q4_K_M.gguf",
        expected_size_bytes=800_000_000,
        display_name="Llama 3.2 1B",
        size_label="800 MB",
        ram_estimate="2-3 GB",
        quality_tier="Good",
        speed_tier="Fast",
        description="Recommended - Good balance",
        is_default=True,
    ),
    "qwen2.5-1.5b-instruct.Q4_K_M.gguf": ModelDescriptor(
        id="qwen2.5-1.5b-instruct.Q4_K_M.gguf",
        repo="Qwen/Qwen2.5-1.5B-Instruct-GGUF",
        filename="qwen2.5-1.5b-instruct-q4_k_m.gguf",
        expected_size_bytes=1_000_000_000,
        display_name="Qwen2.5 1.5B",
        size_label="1 GB",
        ram_estimate="2-4 GB",
        quality_tier="Good",
        speed_tier="Fast",
        description="Strong reasoning ability",
    ),
    "smollm2-1.7b-instruct.Q4_K_M.gguf": ModelDescriptor(
        id="smollm2-1.7b-instruct.Q4_K_M.gguf",
        repo="bartowski/SmolLM2-1.7B-Instruct-GGUF",
        filename="SmolLM2-1.7B-Instruct-Q4_K_M.gguf",
        expected_size_bytes=1_000_000_000,
        display_name="SmolLM2 1.7B",
        size_label="1 GB",
        ram_estimate="2-4 GB",
        quality_tier="Good",
        speed_tier="Fast",
        description="Efficient and capable",
    ),
    "qwen2.5-0.5b-instruct.Q4_K_M.gguf": ModelDescriptor(
        id="qwen2.5-0.5b-instruct.Q4_K_M.gguf",
        repo="Qwen/Qwen2.5-0.5B-Instruct-GGUF",
        filename="qwen2.5-0.5b-instruct-q4_k_m.gguf",
        expected_size_bytes=400_000_000,
        display_name="Qwen2.5 0.5B",
        size_label="400 MB",
        ram_estimate="1-2 GB",
        quality_tier="Basic",
        speed_tier="Ultra Fast",
        description="Ultra light, simple tasks",
    ),
}


def get_model(model_id: str) -> ModelDescriptor:
    """Look up a catalog entry, raising UnknownModelError if absent."""
    descriptor = MODEL_CATALOG.get(model_id)
    if descriptor is None:
        raise UnknownModelError(model_id)
    return descriptor


def list_descriptors() -> list[ModelDescriptor]:
    """Return every catalog entry in catalog order."""
    return list(MODEL_CATALOG.values())


def default_model_id() -> str:
    """Return the id of the entry flagged as default."""
    for descriptor in MODEL_CATALOG.values():
        if descriptor.is_default:
            return descriptor.id
    return next(iter(MODEL_CATALOG))

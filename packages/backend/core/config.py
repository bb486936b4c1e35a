"""Application configuration."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings


def _default_data_dir() -> Path:
    """Return the default data directory shared with the desktop app."""
    return Path.home() / ".cooldesk"


DEFAULT_SYSTEM_PROMPT = """You are CoolDesk AI, a helpful desktop assistant integrated into a productivity application. Your role is to assist users with questions, tasks, and information needs.

Guidelines:
- Provide accurate, concise, and relevant answers
- Be direct and get to the point quickly
- If you don't know something, admit it honestly instead of guessing
- Refuse requests for harmful, illegal, or unethical content
- Keep responses brief (2-3 sentences) unless more detail is specifically requested
- Use simple language and avoid unnecessary jargon
- For code or technical questions, provide practical, working solutions

Remember: You're a local AI assistant focused on being helpful, honest, and efficient."""


class Settings(BaseSettings):
    """Application settings."""

    # API settings
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 52790

    # Data paths
    DATA_DIR: Path = _default_data_dir()
    MODELS_DIR: Path | None = None

    # Model selection
    DEFAULT_MODEL: str = "llama-3.2-1b-instruct.Q4_K_M.gguf"

    # Inference engine (llama.cpp)
    AI_ENGINE: Literal["llama_cpp"] = "llama_cpp"
    AI_N_CTX: int = 1024  # Context window size, kept small for low-RAM machines
    AI_N_GPU_LAYERS: int = -1  # -1 = offload every layer, 0 = CPU only
    AI_MAX_TOKENS: int = 256
    AI_TEMPERATURE: float = 0.7
    AI_TOP_P: float = 0.9
    AI_SYSTEM_PROMPT: str = DEFAULT_SYSTEM_PROMPT

    # Timeouts in seconds. Callers wanting hard limits wrap calls themselves.
    LOAD_TIMEOUT: float = 120.0
    INFERENCE_TIMEOUT: float = 60.0

    # Artifact integrity
    MODEL_MIN_BYTES: int = 100_000_000
    MODEL_SIZE_RATIO: float = 0.9

    # Downloads
    DOWNLOAD_MAX_REDIRECTS: int = 5
    DOWNLOAD_CHUNK_SIZE: int = 256 * 1024
    DOWNLOAD_CONNECT_TIMEOUT: float = 30.0

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Set derived paths
        if self.MODELS_DIR is None:
            self.MODELS_DIR = self.DATA_DIR / "models"

    def ensure_directories(self) -> None:
        """Create required directories."""
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)
        self.MODELS_DIR.mkdir(parents=True, exist_ok=True)

    model_config = {"env_prefix": "COOLDESK_", "env_file": ".env"}


settings = Settings()

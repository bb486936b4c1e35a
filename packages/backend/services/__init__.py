"""Services layer.

Note: the llama.cpp engine is NOT imported here so the backend can start
without llama-cpp-python installed. The engine is created through
core.factory when the lifecycle manager is built.
"""

from .downloader import ModelDownloader
from .inference import InferenceOrchestrator
from .integrity import IntegrityChecker, ModelFileState
from .lifecycle import LifecycleManager, LifecycleState, LifecycleStatus, ModelListing

__all__ = [
    "InferenceOrchestrator",
    "IntegrityChecker",
    "LifecycleManager",
    "LifecycleState",
    "LifecycleStatus",
    "ModelDownloader",
    "ModelFileState",
    "ModelListing",
]

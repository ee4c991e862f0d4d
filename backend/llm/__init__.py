"""LLM package: re-exports for convenience.

For new code, import from submodules directly::

    from llm.client import GenerationClient, DeliveryMode
    from llm.prompt_orchestrator import build_turns
"""

from .client import DeliveryMode, GenerationClient, GenerationResult

__all__ = [
    "DeliveryMode",
    "GenerationClient",
    "GenerationResult",
]

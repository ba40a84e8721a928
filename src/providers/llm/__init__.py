"""LLM provider adapters.

One concrete implementation of ILLMProvider (src/interfaces/llm_provider.py):
    - OpenAILLMProvider: gpt-4o-mini by default; also any OpenAI-compatible API

src/main.py builds it from Settings and injects it into the summarizer and
the chunking agent.
"""

from src.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["OpenAILLMProvider"]

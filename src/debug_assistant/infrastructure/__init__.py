"""Infrastructure layer for the debug assistant.

Re-exports the public API surface for convenience::

    from debug_assistant.infrastructure import (
        AsyncEventBus, CacheManager, KnowledgeBase,
        InMemoryStorage, JSONFileStorage,
        AssistantConfig, CacheConfig, load_config_from_json,
    )
"""

from debug_assistant.infrastructure.cache import CacheManager, LRUCache, make_cache_key
from debug_assistant.infrastructure.config import (
    AssistantConfig,
    CacheConfig,
    CacheTierConfig,
    ContextConfig,
    ExecutorConfig,
    FixGeneratorConfig,
    KnowledgeBaseConfig,
    load_config_from_json,
)
from debug_assistant.infrastructure.event_bus import AsyncEventBus
from debug_assistant.infrastructure.knowledge_base import KnowledgeBase
from debug_assistant.infrastructure.llm import (
    LLMConfig,
    LLMEngine,
    LLMError,
    LLMResponse,
)
from debug_assistant.infrastructure.storage import (
    InMemoryStorage,
    JSONFileStorage,
    KeyValueStorage,
)

__all__ = [
    # Config
    "AssistantConfig",
    "CacheConfig",
    "CacheTierConfig",
    "ContextConfig",
    "ExecutorConfig",
    "FixGeneratorConfig",
    "KnowledgeBaseConfig",
    "load_config_from_json",
    # Caching
    "CacheManager",
    "LRUCache",
    "make_cache_key",
    # Knowledge
    "KnowledgeBase",
    "KeyValueStorage",
    "InMemoryStorage",
    "JSONFileStorage",
    # Events
    "AsyncEventBus",
    # LLM
    "LLMConfig",
    "LLMEngine",
    "LLMError",
    "LLMResponse",
]

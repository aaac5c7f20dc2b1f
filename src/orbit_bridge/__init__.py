"""
Orbit Bridge - provider-neutral chat completions with tool calling.
"""

import logging

from ._exceptions import (
    MalformedResponseError,
    OrbitBridgeError,
    ProviderAuthError,
    ProviderError,
    ProviderNetworkError,
    ProviderQuotaError,
    ProviderSafetyBlockError,
    ToolExecutionError,
    UnsupportedLanguageError,
    UnsupportedProviderError,
    UsageLimitExceededError,
)
from .config import Settings
from .dispatcher import ProviderDispatcher, create_adapter
from .loop import FunctionCallingLoop, LoopResult
from .model_policy import ModelPolicy, sanitize_model
from .provider import Provider, get_api_key
from .providers import BaseProviderAdapter, EnterpriseAdapter, HostedAdapter, LocalAdapter
from .sandbox import Sandbox, SandboxResult
from .service import ChatReply, ChatService
from .tools import ToolExecutor, ToolProgressEvent
from .types import (
    CompletionRequest,
    CompletionResult,
    ConversationTurn,
    GenerationOptions,
    Role,
    SpecialMode,
    ToolCall,
    ToolContext,
    ToolResult,
)

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "BaseProviderAdapter",
    "ChatReply",
    "ChatService",
    "CompletionRequest",
    "CompletionResult",
    "ConversationTurn",
    "EnterpriseAdapter",
    "FunctionCallingLoop",
    "GenerationOptions",
    "HostedAdapter",
    "LocalAdapter",
    "LoopResult",
    "MalformedResponseError",
    "ModelPolicy",
    "OrbitBridgeError",
    "Provider",
    "ProviderAuthError",
    "ProviderDispatcher",
    "ProviderError",
    "ProviderNetworkError",
    "ProviderQuotaError",
    "ProviderSafetyBlockError",
    "Role",
    "Sandbox",
    "SandboxResult",
    "Settings",
    "SpecialMode",
    "ToolCall",
    "ToolContext",
    "ToolExecutionError",
    "ToolExecutor",
    "ToolProgressEvent",
    "ToolResult",
    "UnsupportedLanguageError",
    "UnsupportedProviderError",
    "UsageLimitExceededError",
    "create_adapter",
    "get_api_key",
    "sanitize_model",
]

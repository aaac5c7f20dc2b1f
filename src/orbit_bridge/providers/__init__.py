"""Provider adapters, one per backend family."""

from .base import BaseProviderAdapter
from .enterprise import EnterpriseAdapter
from .hosted import HostedAdapter
from .local import LocalAdapter
from .openai_compat import OpenAICompatibleAdapter

__all__ = [
    "BaseProviderAdapter",
    "EnterpriseAdapter",
    "HostedAdapter",
    "LocalAdapter",
    "OpenAICompatibleAdapter",
]

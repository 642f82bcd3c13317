"""Provider wire-format adapters."""

from sandcoder.providers.base import ProviderAdapter
from sandcoder.providers.factory import create_adapter, create_adapter_chain

__all__ = ["ProviderAdapter", "create_adapter", "create_adapter_chain"]

"""
Upstream backends for codeyaar.

Usage:
    from codeyaar.backends import make_backend
    backend = make_backend(cfg["upstream"])
"""
from codeyaar.backends.base import BackendError, BackendResponse, BackendStream, BaseBackend
from codeyaar.backends.openai_compat import OpenAICompatibleBackend

# Provider name -> backend class
PROVIDERS: dict[str, type[BaseBackend]] = {
    "openai_compat": OpenAICompatibleBackend,
}


def make_backend(cfg: dict, **kwargs) -> BaseBackend:
    """
    Instantiate the upstream backend from its config block.

    Raises:
        ValueError: If the provider is not registered.
    """
    provider = cfg.get("provider", "openai_compat")
    cls = PROVIDERS.get(provider)
    if cls is None:
        available = ", ".join(PROVIDERS)
        raise ValueError(f"Unknown upstream provider: '{provider}'. Available: {available}")
    return cls(
        name=cfg.get("name", provider),
        url=cfg.get("url", ""),
        timeout=cfg.get("timeout", 60),
        api_key=cfg.get("api_key", ""),
        **kwargs,
    )


__all__ = [
    "BackendError",
    "BackendResponse",
    "BackendStream",
    "BaseBackend",
    "OpenAICompatibleBackend",
    "PROVIDERS",
    "make_backend",
]

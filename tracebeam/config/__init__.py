from .settings import ClientConfig, get_common_release_env

__all__ = [
    "ClientConfig",
    "get_common_release_env",
]

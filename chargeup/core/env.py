"""
Environment name helpers. Only the ENV variable is consulted.
"""
import os
from functools import lru_cache


@lru_cache(maxsize=1)
def get_env_name() -> str:
    """Lowercased ENV: 'local', 'dev', 'test', 'staging' or 'prod' (default 'dev')."""
    return os.getenv("ENV", "dev").lower()


@lru_cache(maxsize=1)
def is_local_env() -> bool:
    """Local, dev and test runs: no Sentry, verbose 500 bodies."""
    return get_env_name() in {"local", "dev", "test"}

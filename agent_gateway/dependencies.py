from __future__ import annotations

from .config import get_settings
from .gateway import Resolver, resolve, resolve_stub


def get_resolver() -> Resolver:
    """
    Dependency returning the provider resolver for the current request.

    PROVIDER=stub routes every client type to the offline stub provider.
    Tests override this function through FastAPI's dependency_overrides.
    """

    if get_settings().provider_name == "stub":
        return resolve_stub
    return resolve

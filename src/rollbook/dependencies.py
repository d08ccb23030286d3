"""FastAPI dependency injection container.

This module provides dependency injection functions for use with FastAPI's
Depends() pattern. Services are created once in the application lifespan and
registered with their ``set_*`` function, so tests can swap them out.
"""

from typing import Annotated

from fastapi import Depends

from rollbook.services.key_router import KeyRouter, key_router
from rollbook.services.search import StudentSearchService, get_search_service

# Type aliases for common dependency patterns
SearchServiceDep = Annotated[StudentSearchService, Depends(get_search_service)]


# ========================================
# Routing Dependencies
# ========================================
def get_key_router() -> KeyRouter:
    """Get the admission number router.

    Returns:
        KeyRouter: The shared, stateless router
    """
    return key_router


KeyRouterDep = Annotated[KeyRouter, Depends(get_key_router)]

"""FastAPI dependencies shared by the route modules."""

from coachflow.container import ServiceContainer, get_container


def container_dependency() -> ServiceContainer:
    """Resolve the process container; tests override this dependency."""
    return get_container()

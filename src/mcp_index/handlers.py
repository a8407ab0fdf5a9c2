"""Imports every tool module so its handlers are registered."""

_registered = False


def register_all() -> None:
    global _registered
    if _registered:
        return
    from . import (  # noqa: F401
        diagnostics,
        dispatcher,
        feedback,
        gates,
        graph,
        instructions,
        integrity,
        manifest,
        prompt_review,
        search,
        tool_registry,
        usage,
    )

    _registered = True

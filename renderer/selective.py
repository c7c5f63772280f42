"""
Routes each target to the renderer for its mode.
"""

from typing import Dict

from patrol.errors import UnknownFetchError
from patrol.models import RenderMode, Target
from patrol.ports import PageRenderer


class SelectiveRenderer:
    """PageRenderer dispatching on Target.mode."""

    def __init__(self, renderers: Dict[RenderMode, PageRenderer]):
        self.renderers = dict(renderers)

    async def fetch(self, target: Target) -> str:
        renderer = self.renderers.get(target.mode)
        if renderer is None:
            raise UnknownFetchError(f"No renderer configured for {target.mode.value} mode")
        return await renderer.fetch(target)

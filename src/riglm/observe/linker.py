"""RiglmEventLinker: isolated event namespace for riglm observability.

All riglm subscribers register here, separate from any other
pyventus usage in the process.
"""

from __future__ import annotations

from pyventus.events import EventLinker


class RiglmEventLinker(EventLinker):
    """Isolated event namespace for riglm observability."""

    pass

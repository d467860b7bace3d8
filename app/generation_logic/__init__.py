"""Generation logic package.

Bridges the generation services to HTTP clients: callbacks from the section
generator and the multi-section orchestrator are turned into NDJSON events so
`app/api/routes.py` can stay focused on HTTP routing.
"""

from .stream_events import create_stream_event  # noqa: F401
from .stream_events import stream_batch_generation  # noqa: F401
from .stream_events import stream_section_generation  # noqa: F401

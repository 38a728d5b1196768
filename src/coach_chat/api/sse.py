"""Server-sent event framing for streamed API responses."""

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

KEEP_ALIVE = ": keep-alive\n\n"


@dataclass
class SSEEvent:
    """An SSE event to send to clients."""

    event: str
    data: Any
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    def encode(self) -> str:
        lines = [
            f"id: {self.id}",
            f"event: {self.event}",
            f"data: {json.dumps(self.data, ensure_ascii=False)}",
            "",
        ]
        return "\n".join(lines) + "\n"

"""
services/client_classifier.py

User-Agent heuristic that decides how a caller gets its answer.
  - CONSTRAINED: WeChat mini-program runtime, can't read chunked bodies
  - STANDARD:    everything else (browsers, apps, curl)

It's a guess. A wrong answer only costs latency or streaming,
so classify() never raises.
"""

from enum import Enum
from typing import Iterable, Optional

from note_relay.core.config import settings
from note_relay.core.logger import get_logger
from note_relay.models.request import ResponseMode

logger = get_logger(__name__)


class ClientCategory(str, Enum):
    CONSTRAINED = "constrained"
    STANDARD = "standard"

    @property
    def response_mode(self) -> ResponseMode:
        return "blocking" if self is ClientCategory.CONSTRAINED else "streaming"


def classify(
    user_agent: Optional[str],
    markers: Optional[Iterable[str]] = None,
) -> ClientCategory:
    """Substring match, case-sensitive, first marker wins."""
    if not user_agent or not isinstance(user_agent, str):
        return ClientCategory.STANDARD

    markers = settings.CONSTRAINED_CLIENT_MARKERS if markers is None else markers
    for marker in markers:
        if marker and marker in user_agent:
            logger.debug(f"Constrained client marker '{marker}' in UA '{user_agent[:80]}'")
            return ClientCategory.CONSTRAINED

    return ClientCategory.STANDARD

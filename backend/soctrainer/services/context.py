"""Per-session generation context: seeded randomness, counters and clock."""
import random
import secrets
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from soctrainer.settings import settings


class SessionClock:
    """Wall clock anchored once and advanced by a monotonic source.

    Reads never go backwards even if the system clock is adjusted while a
    session is running.
    """

    def __init__(
        self,
        start: Optional[datetime] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        if start is None:
            start = datetime.now(timezone.utc)
        elif start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._anchor_wall = start
        self._monotonic = monotonic
        self._anchor_mono = monotonic()

    @property
    def anchor(self) -> datetime:
        return self._anchor_wall

    def elapsed_seconds(self) -> float:
        return max(0.0, self._monotonic() - self._anchor_mono)

    def now(self) -> datetime:
        return self._anchor_wall + timedelta(seconds=self.elapsed_seconds())


class SessionContext:
    """Everything mutable a generator needs, owned by exactly one session.

    Pass the same context to every generator call of a session; never share
    one between sessions.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        seed: Optional[int] = None,
        clock: Optional[SessionClock] = None,
        ticket_prefix: Optional[str] = None,
    ):
        self.seed = seed if seed is not None else secrets.randbits(32)
        self.rng = random.Random(self.seed)
        self.clock = clock or SessionClock()
        self.session_id = session_id or self.new_id("session")
        self.ticket_prefix = ticket_prefix or settings.TICKET_PREFIX
        self._ticket_counter = 0

    def new_id(self, prefix: str) -> str:
        """Reproducible id drawn from the session RNG."""
        return f"{prefix}-{uuid.UUID(int=self.rng.getrandbits(128), version=4).hex[:16]}"

    def next_ticket_number(self) -> str:
        self._ticket_counter += 1
        year = self.clock.anchor.year
        return f"{self.ticket_prefix}-{year}-{self._ticket_counter:06d}"

    @property
    def tickets_issued(self) -> int:
        return self._ticket_counter

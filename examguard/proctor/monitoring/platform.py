"""
Platform Fullscreen - Host fullscreen capability

The browser owns the real fullscreen API, so the server only sees what the
client reports and can only ask the client to enter or leave fullscreen.
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, List, Optional

logger = logging.getLogger(__name__)


class PlatformFullscreen(ABC):
    """Fullscreen control for one host"""

    @abstractmethod
    def enter(self) -> None:
        """Request fullscreen"""

    @abstractmethod
    def exit(self) -> None:
        """Leave fullscreen"""

    @abstractmethod
    def is_active(self) -> bool:
        """True while the host is fullscreen"""


class ClientReportedFullscreen(PlatformFullscreen):
    """
    Fullscreen state as last reported by the client.

    enter()/exit() queue commands that the client picks up with its next
    request (see pop_command / drain_commands).
    """

    ENTER = "enter"
    EXIT = "exit"

    def __init__(self, initially_active: bool = False):
        self._active = initially_active
        self._commands: Deque[str] = deque()

    def report(self, active: bool) -> None:
        self._active = bool(active)

    def enter(self) -> None:
        self._commands.append(self.ENTER)

    def exit(self) -> None:
        self._commands.append(self.EXIT)

    def is_active(self) -> bool:
        return self._active

    def pop_command(self) -> Optional[str]:
        return self._commands.popleft() if self._commands else None

    def drain_commands(self) -> List[str]:
        commands = list(self._commands)
        self._commands.clear()
        return commands

"""Interface of long-running agent components."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod


class Manager(ABC):
    """A named component that runs in the background until stopped."""

    @abstractmethod
    def name(self) -> str:
        """Return the component's name."""

    @abstractmethod
    def run(self, stop: threading.Event) -> None:
        """Start the component; it stops once ``stop`` is set."""
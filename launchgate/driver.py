"""Automation driver interface.

The driver performs the actual launch/attach, window enumeration and script
evaluation. The orchestrator only sequences calls to it.
"""

from abc import ABC, abstractmethod
from typing import Any, List

from .models import DriverAttachConfig, DriverLaunchConfig, DriverSession, DriverWindow


class AutomationDriver(ABC):
    """Base class for automation drivers.

    Drivers that can run scripts in a renderer set ``supports_evaluate`` and
    override ``evaluate``; without it DOM and app-marker probes report not
    ready.
    """

    supports_evaluate: bool = False

    @abstractmethod
    async def launch(self, config: DriverLaunchConfig) -> DriverSession:
        """Launch the application.

        Raises:
            DriverLaunchError: When the process fails to come up (may carry
                captured stdout/stderr)
        """
        pass

    @abstractmethod
    async def attach(self, config: DriverAttachConfig) -> DriverSession:
        """Attach to a running application over its DevTools endpoint."""
        pass

    @abstractmethod
    async def get_windows(self, session: DriverSession) -> List[DriverWindow]:
        """Windows currently open in the session."""
        pass

    async def evaluate(self, window: DriverWindow, script: str) -> Any:
        """Evaluate a function expression in a renderer window."""
        raise NotImplementedError(f"{self.__class__.__name__} does not support evaluate")

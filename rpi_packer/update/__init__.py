"""Remote A/B update of a running device.

This module handles:
- Resolving the update URL and credentials
- HTTP requests to the on-device update agent
- Sequencing root transfer, boot transfer, slot switch and reboot
"""

from rpi_packer.update.client import (
    DEFAULT_USERNAME,
    HttpUpdateClient,
    UpdateRequestError,
    UpdateTarget,
    resolve_update_url,
)
from rpi_packer.update.orchestrator import (
    BootTransferError,
    RebootRequestError,
    RootTransferError,
    SwitchError,
    UpdateClient,
    UpdateError,
    UpdateOrchestrator,
    UpdateResult,
    run_update,
)

__all__ = [
    "DEFAULT_USERNAME",
    "BootTransferError",
    "HttpUpdateClient",
    "RebootRequestError",
    "RootTransferError",
    "SwitchError",
    "UpdateClient",
    "UpdateError",
    "UpdateOrchestrator",
    "UpdateRequestError",
    "UpdateResult",
    "UpdateTarget",
    "resolve_update_url",
    "run_update",
]

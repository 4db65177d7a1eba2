"""Remote A/B update sequencing.

An update runs four steps strictly in order:

    TRANSFER_ROOT -> TRANSFER_BOOT -> SWITCH -> REBOOT -> DONE

The root region goes first: until SWITCH succeeds the device keeps booting
the old slot, so a failure before then leaves it running the old system.
A failed step stops the sequence; nothing is retried or rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from rpi_packer.types import UpdateStep

if TYPE_CHECKING:
    from rpi_packer.image.sources import TransferSource

logger = logging.getLogger(__name__)


class UpdateClient(Protocol):
    def upload_root(self, source: TransferSource) -> None: ...

    def upload_boot(self, source: TransferSource) -> None: ...

    def switch(self) -> None: ...

    def reboot(self) -> None: ...


class UpdateError(Exception):
    """Base exception for a failed update step.

    Attributes:
        step: The step that failed.
        completed: Steps that finished before the failure.
    """

    error_code = "UPDATE_FAILED"
    verb = "update"

    def __init__(
        self, step: UpdateStep, completed: tuple[UpdateStep, ...], cause: Exception
    ) -> None:
        message = f"Failed to {self.verb}: {getattr(cause, 'message', cause)}"
        super().__init__(message)
        self.message = message
        self.step = step
        self.completed = completed


class RootTransferError(UpdateError):
    error_code = "ROOT_TRANSFER_FAILED"
    verb = "transfer root file system"


class BootTransferError(UpdateError):
    error_code = "BOOT_TRANSFER_FAILED"
    verb = "transfer boot file system"


class SwitchError(UpdateError):
    error_code = "SWITCH_FAILED"
    verb = "switch to the new root partition"


class RebootRequestError(UpdateError):
    error_code = "REBOOT_FAILED"
    verb = "request reboot"


@dataclass
class UpdateResult:
    """Outcome of a completed update."""

    completed: list[UpdateStep] = field(default_factory=list)
    root_bytes: int = 0
    boot_bytes: int = 0
    state: UpdateStep = UpdateStep.DONE


class UpdateOrchestrator:
    """Run the update steps against a client, tracking the current state."""

    def __init__(self, client: UpdateClient) -> None:
        self.client = client
        self.state = UpdateStep.TRANSFER_ROOT
        self.completed: list[UpdateStep] = []

    def _steps(
        self, boot: TransferSource, root: TransferSource
    ) -> list[tuple[UpdateStep, Callable[[], None], type[UpdateError]]]:
        client = self.client
        return [
            (UpdateStep.TRANSFER_ROOT, lambda: client.upload_root(root), RootTransferError),
            (UpdateStep.TRANSFER_BOOT, lambda: client.upload_boot(boot), BootTransferError),
            (UpdateStep.SWITCH, client.switch, SwitchError),
            (UpdateStep.REBOOT, client.reboot, RebootRequestError),
        ]

    def run(self, boot: TransferSource, root: TransferSource) -> UpdateResult:
        """Run all steps.

        Raises:
            UpdateError: A step failed; later steps were not attempted.
        """
        if self.completed:
            raise RuntimeError("update already ran")

        for step, action, error_class in self._steps(boot, root):
            self.state = step
            logger.info("Update step: %s", step.value)
            try:
                action()
            except Exception as e:
                logger.error("Update step %s failed: %s", step.value, e)
                raise error_class(step, tuple(self.completed), e) from e
            self.completed.append(step)

        self.state = UpdateStep.DONE
        logger.info("Update complete, device is rebooting")
        return UpdateResult(
            completed=list(self.completed),
            root_bytes=root.length,
            boot_bytes=boot.length,
        )


def run_update(
    client: UpdateClient, boot: TransferSource, root: TransferSource
) -> UpdateResult:
    """Update a device with the given boot and root regions."""
    return UpdateOrchestrator(client).run(boot, root)


__all__ = [
    "BootTransferError",
    "RebootRequestError",
    "RootTransferError",
    "SwitchError",
    "UpdateClient",
    "UpdateError",
    "UpdateOrchestrator",
    "UpdateResult",
    "run_update",
]

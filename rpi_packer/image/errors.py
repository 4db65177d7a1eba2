"""Errors raised while materializing an image on local storage."""


class PackIOError(Exception):
    """Base exception for local write failures."""

    def __init__(self, message: str, error_code: str) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class DeviceIOError(PackIOError):
    """Writing to or preparing a block device failed."""

    def __init__(self, message: str, error_code: str = "DEVICE_IO_ERROR") -> None:
        super().__init__(message, error_code=error_code)


class DeviceNodeTimeoutError(DeviceIOError):
    """Partition device nodes did not appear after partitioning."""

    def __init__(self, device_path: str, missing: list[str], timeout: float) -> None:
        super().__init__(
            f"Partition nodes of {device_path} did not become writable within "
            f"{timeout:g}s: {', '.join(missing)}",
            error_code="DEVICE_NODE_TIMEOUT",
        )
        self.device_path = device_path
        self.missing = missing
        self.timeout = timeout


class FileIOError(PackIOError):
    """Writing an image or region file failed."""

    def __init__(self, message: str, error_code: str = "FILE_IO_ERROR") -> None:
        super().__init__(message, error_code=error_code)


class RegionOverflowError(PackIOError):
    """A serialized region is larger than the space reserved for it."""

    def __init__(self, region: str, size: int, capacity: int) -> None:
        super().__init__(
            f"{region} region is {size} bytes, only {capacity} bytes are reserved",
            error_code="REGION_OVERFLOW",
        )
        self.region = region
        self.size = size
        self.capacity = capacity


__all__ = [
    "DeviceIOError",
    "DeviceNodeTimeoutError",
    "FileIOError",
    "PackIOError",
    "RegionOverflowError",
]

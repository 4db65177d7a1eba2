"""rpi-packer - bootable SD card images and A/B updates for Raspberry Pi appliances.

This package lays out the boot and root regions of an SD card image, writes
them to a block device or an image file, and pushes freshly built regions to
a running device over HTTP.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]

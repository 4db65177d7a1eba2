"""Host-side runtime files injected into every root file system.

This module handles:
- Locating a CA certificate bundle on the host
- Creating or reading the HTTP password shared with the on-device update agent
"""

import logging
import os
import secrets
from pathlib import Path

from rpi_packer.manifest.builder import ManifestError

logger = logging.getLogger(__name__)

PASSWORD_FILE_NAME = "http-password.txt"
CA_BUNDLE_FILE_NAME = "cacert.pem"

# Well-known CA bundle locations across distributions
SYSTEM_CA_BUNDLES = (
    Path("/etc/ssl/certs/ca-certificates.crt"),  # Debian/Ubuntu/Gentoo
    Path("/etc/pki/tls/certs/ca-bundle.crt"),  # Fedora/RHEL 6
    Path("/etc/ssl/ca-bundle.pem"),  # OpenSUSE
    Path("/etc/pki/tls/cacert.pem"),  # OpenELEC
    Path("/etc/pki/ca-trust/extracted/pem/tls-ca-bundle.pem"),  # CentOS/RHEL 7
    Path("/etc/ssl/cert.pem"),  # Alpine, macOS
)


def find_ca_bundle(
    config_dir: Path,
    override: Path | None = None,
    candidates: tuple[Path, ...] = SYSTEM_CA_BUNDLES,
) -> Path:
    """Find the CA bundle to embed.

    Order: explicit override, <config_dir>/cacert.pem, system locations.

    Raises:
        ManifestError: No bundle found.
    """
    if override is not None:
        if not override.is_file():
            raise ManifestError(f"CA bundle not found: {override}", code="ca_bundle_missing")
        return override

    searched = [config_dir / CA_BUNDLE_FILE_NAME, *candidates]
    for path in searched:
        if path.is_file():
            logger.debug("Using CA bundle %s", path)
            return path

    raise ManifestError(
        "did not find any of: " + ", ".join(str(p) for p in searched),
        code="ca_bundle_missing",
    )


def ensure_password_file(config_dir: Path) -> tuple[str, Path]:
    """Return the HTTP password, generating and storing one if needed.

    Returns:
        Tuple of (password, path to the password file).
    """
    path = config_dir / PASSWORD_FILE_NAME
    if path.is_file():
        password = path.read_text().strip()
        if password:
            return password, path
        logger.warning("%s is empty, generating a new password", path)

    config_dir.mkdir(parents=True, exist_ok=True)
    password = secrets.token_urlsafe(18)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(password)
    logger.info("Stored new HTTP password in %s", path)
    return password, path


__all__ = [
    "CA_BUNDLE_FILE_NAME",
    "PASSWORD_FILE_NAME",
    "SYSTEM_CA_BUNDLES",
    "ensure_password_file",
    "find_ca_bundle",
]

"""
Input validation utilities for the bitcoind regtest harness.

This module validates container names, image references, image digests and
RPC URLs before any of them reach the Docker API.
"""

import re
import urllib.parse

from .image_utils import split_image_reference, split_registry

_CONTAINER_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]+$")
_IMAGE_HASH_RE = re.compile(r"^sha256:[0-9a-f]{64}$")
_DANGEROUS_CHARS = ['<', '>', '"', "'", ';', '|', '&', '$', '`', '\\']


class ValidationError(Exception):
    """Exception raised when input validation fails."""
    pass


def validate_container_name(name: str) -> str:
    """
    Validate a Docker container name.

    Args:
        name: The container name to validate

    Returns:
        The validated container name

    Raises:
        ValidationError: If the name is not accepted by Docker
    """
    if not name or not name.strip():
        raise ValidationError("Container name cannot be empty")

    name = name.strip()

    if len(name) > 255:
        raise ValidationError("Container name is too long (maximum 255 characters)")

    if not _CONTAINER_NAME_RE.match(name):
        raise ValidationError(
            f"Invalid container name '{name}'. "
            "Only alphanumeric characters, underscores, dots and hyphens are allowed, "
            "and the name must start with an alphanumeric character."
        )

    return name


def validate_image_reference(image: str) -> str:
    """
    Validate a Docker image reference such as ``bitcoin/bitcoin:29.1``.

    Args:
        image: The image reference to validate

    Returns:
        The validated image reference

    Raises:
        ValidationError: If the reference is malformed
    """
    if not image or not image.strip():
        raise ValidationError("Image reference cannot be empty")

    image = image.strip()

    if any(char.isspace() for char in image):
        raise ValidationError("Image reference cannot contain whitespace")

    if any(char in image for char in _DANGEROUS_CHARS):
        raise ValidationError("Image reference contains invalid characters")

    if image.endswith((":", "/", "@")) or image.startswith(("/", ":", "@")):
        raise ValidationError(f"Invalid image reference format: '{image}'")

    # Everything after the registry host must be lowercase
    repository, _ = split_image_reference(image)
    _, path = split_registry(repository)
    if not path or path != path.lower():
        raise ValidationError(f"Image repository must be lowercase: '{image}'")

    return image


def validate_image_hash(image_hash: str) -> str:
    """
    Validate a pinned image digest.

    Args:
        image_hash: Digest in ``sha256:<64 hex>`` form

    Returns:
        The validated digest, lowercased

    Raises:
        ValidationError: If the digest is malformed
    """
    if not image_hash or not image_hash.strip():
        raise ValidationError("Image hash cannot be empty")

    normalized = image_hash.strip().lower()
    if not _IMAGE_HASH_RE.match(normalized):
        raise ValidationError(
            f"Invalid image hash '{image_hash}'. Expected 'sha256:' followed by 64 hex characters."
        )

    return normalized


def validate_rpc_url(url: str) -> str:
    """
    Validate the RPC URL a test suite will use to reach the node.

    Args:
        url: The URL to validate

    Returns:
        The validated URL

    Raises:
        ValidationError: If the URL is invalid
    """
    if not url or not url.strip():
        raise ValidationError("RPC URL cannot be empty")

    url = url.strip()

    if not url.startswith(('http://', 'https://')):
        raise ValidationError("RPC URL must start with 'http://' or 'https://'")

    try:
        parsed = urllib.parse.urlparse(url)
        # Accessing .port raises ValueError for out-of-range ports
        parsed.port
    except ValueError as e:
        raise ValidationError(f"Invalid RPC URL format: {e}")

    if not parsed.hostname:
        raise ValidationError("RPC URL must include a valid host")

    return url

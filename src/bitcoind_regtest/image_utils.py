"""
Helpers for Docker image references and content digests.

An image reference has the shape ``[registry/]path[:tag][@digest]``. The
registry component is only recognised when it contains a dot or a port, or
is ``localhost``, which is the rule Docker itself applies.
"""

from typing import Iterable, List, Optional, Tuple

DEFAULT_TAG = "latest"


def split_image_reference(image: str) -> Tuple[str, Optional[str]]:
    """
    Split an image reference into its repository and tag.

    Any ``@digest`` suffix is discarded. A colon only starts the tag when it
    comes after the last slash, so ``localhost:5000/bitcoin`` has no tag.

    Returns:
        (repository, tag) where tag is None when the reference has none
    """
    reference = image.split("@", 1)[0]
    slash = reference.rfind("/")
    colon = reference.rfind(":")
    if colon > slash:
        return reference[:colon], reference[colon + 1:]
    return reference, None


def split_registry(repository: str) -> Tuple[Optional[str], str]:
    """Split ``registry/path`` into (registry, path); registry is None for Docker Hub."""
    first, sep, rest = repository.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return first, rest
    return None, repository


def qualify_digest(image: str, digest: str) -> str:
    """
    Build the fully qualified ``repository@digest`` reference for an image.

    Example:
        >>> qualify_digest("bitcoin/bitcoin:29.1", "sha256:abcd")
        'bitcoin/bitcoin@sha256:abcd'
    """
    repository, _ = split_image_reference(image)
    return f"{repository}@{digest}"


def pull_arguments(image: str) -> Tuple[str, str]:
    """Return the (repository, tag) pair to pull, defaulting the tag to ``latest``."""
    repository, tag = split_image_reference(image)
    return repository, tag or DEFAULT_TAG


def digest_matches(repo_digests: Iterable[str], qualified: str) -> bool:
    """
    Check whether a qualified ``repository@digest`` reference is among an image's repo digests.

    Docker Hub images may be listed with or without the ``docker.io/`` prefix,
    so an entry also matches when its digest part is identical.
    """
    digest = qualified.split("@", 1)[-1]
    for entry in repo_digests:
        if entry == qualified or entry.split("@", 1)[-1] == digest:
            return True
    return False


def list_repo_digests(image_attrs: dict) -> List[str]:
    """Extract the ``RepoDigests`` list from an image inspect payload."""
    return list(image_attrs.get("RepoDigests") or [])

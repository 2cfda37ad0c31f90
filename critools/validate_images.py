"""Checks of a runtime's image service: pulling, status, listing and removal."""

from __future__ import annotations

import logging
from typing import Callable, Hashable, Iterable, Sequence, TypeVar

from .context import TestContext
from .cri import Image, ImageManagerService, ImageSpec, PodSandboxConfig
from .framework import image_status, pull_public_image

__all__ = [
    "ValidationError",
    "remove_duplicates",
    "remove_image",
    "remove_image_list",
    "pull_image_list",
    "check_remove_image",
    "check_pull_public_image",
]

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)


class ValidationError(AssertionError):
    """Raised when the runtime does not behave as a check expects."""


def remove_duplicates(items: Iterable[T]) -> list[T]:
    """Return *items* without repeats, keeping the order of first appearance."""
    return list(dict.fromkeys(items))


def remove_image(c: ImageManagerService, image_name: str) -> None:
    """Remove the image named *image_name* by its id, if it is present."""
    logger.info("Remove image : %s", image_name)
    image = c.image_status(ImageSpec(image=image_name), False)
    if image is not None:
        logger.info("Remove image by ID : %s", image.id)
        c.remove_image(ImageSpec(image=image.id))


def remove_image_list(c: ImageManagerService, image_list: Iterable[str]) -> None:
    """Remove every image named in *image_list*."""
    for image_name in image_list:
        remove_image(c, image_name)


def pull_image_list(
    c: ImageManagerService,
    image_list: Iterable[str],
    pod_config: PodSandboxConfig | None,
    context: TestContext,
) -> list[str]:
    """Pull every image in *image_list* and return their ids in order."""
    return [pull_public_image(c, name, pod_config, context) for name in image_list]


def check_remove_image(c: ImageManagerService, image_name: str) -> None:
    """Remove an image and make sure the runtime no longer reports it."""
    logger.info("Remove image : %s", image_name)
    remove_image(c, image_name)

    logger.info("Check image list empty")
    if image_status(c, image_name) is not None:
        raise ValidationError(f"image {image_name!r} should have been removed")


def check_pull_public_image(
    c: ImageManagerService,
    image_name: str,
    pod_config: PodSandboxConfig | None,
    context: TestContext,
    status_check: Callable[[Image], None] | None = None,
) -> Image:
    """Pull an image, check its status, then remove it again.

    Returns the status seen after pulling.
    """
    remove_image(c, image_name)

    pull_public_image(c, image_name, pod_config, context)

    logger.info("Check image list to make sure pulling image success : %s", image_name)
    status = image_status(c, image_name)
    if status is None:
        raise ValidationError(f"image {image_name!r} should be present after pulling")
    if status_check is not None:
        status_check(status)

    check_remove_image(c, image_name)
    return status


def _sorted_tags(tags: Sequence[str]) -> list[str]:
    return sorted(tags)
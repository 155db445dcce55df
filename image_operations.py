"""
Image Operations Module

Listing, pulling, removing and searching images.
"""

from typing import Optional, List, Dict, Any

from docker.errors import NotFound

from config import IMAGE_SEARCH_LIMIT
from error_classifier import RUNTIME_FAILURES, runtime_error
from runtime_gateway import runtime_session
from utils import (
    logger,
    log_container_operation,
    ClientInputError,
    ResourceNotFoundError,
)


def list_images():
    with runtime_session() as gateway:
        try:
            images = gateway.list_images()
        except RUNTIME_FAILURES as e:
            raise runtime_error("listing images", e)

    if not images:
        return {"message": "No images found", "images": []}
    return images


def pull_image(name: Optional[str], tag: Optional[str] = None):
    """Pull `name[:tag]` and wait for the pull to finish"""
    name = (name or "").strip()
    if not name:
        raise ClientInputError("Image name is required")
    image_ref = f"{name}:{tag.strip()}" if tag and tag.strip() else name

    with runtime_session() as gateway:
        logger.info("Pulling image", image=image_ref)
        try:
            gateway.pull_image(image_ref)
        except RUNTIME_FAILURES as e:
            log_container_operation("pull", image_ref, "failed", {"error": str(e)})
            raise runtime_error("pulling image", e)

    log_container_operation("pull", image_ref, "success")
    return {"message": "Image pulled successfully", "image": image_ref}


def match_image(images: List[Dict[str, Any]], reference: str) -> Optional[str]:
    """Find the id of the image best described by `reference`.

    Tries exact ids, sha256-prefixed ids, id prefixes, exact tags and
    finally any tag containing the reference.
    """
    for img in images:
        image_id = img.get("Id", "")
        if image_id == reference or image_id == f"sha256:{reference}":
            return image_id
        if image_id.startswith(f"sha256:{reference}") or image_id.startswith(reference):
            return image_id
        for tag in img.get("RepoTags") or []:
            if tag == reference or reference in tag:
                return image_id
    return None


def _available_images(images: List[Dict[str, Any]]) -> List[str]:
    available = []
    for img in images:
        available.extend(img.get("RepoTags") or [])
        available.append(img.get("Id", "").replace("sha256:", "")[:12])
    return available


def remove_image(reference: str):
    """Remove an image by name, tag or (partial) id"""
    with runtime_session() as gateway:
        try:
            gateway.remove_image(reference, force=True)
            log_container_operation("remove_image", reference, "success")
            return {"message": f"Image {reference} removed successfully"}
        except NotFound:
            logger.info("Image not found by reference, searching", image=reference)
        except RUNTIME_FAILURES as e:
            raise runtime_error("removing image", e)

        try:
            images = gateway.list_images()
        except RUNTIME_FAILURES as e:
            raise runtime_error("listing images", e)

        target = match_image(images, reference)
        if target is None:
            raise ResourceNotFoundError(
                f"Image not found: {reference}",
                {
                    "available_images": _available_images(images),
                    "suggestion": "Try using the exact image name from the list or the image ID",
                },
            )

        try:
            gateway.remove_image(target, force=True)
        except RUNTIME_FAILURES as e:
            raise runtime_error("removing image", e)

    log_container_operation("remove_image", reference, "success", {"image_id": target})
    return {"message": f"Image {reference} removed successfully"}


def search_images(term: str):
    term = (term or "").strip()
    if not term:
        raise ClientInputError("Search term is required")

    with runtime_session() as gateway:
        try:
            results = gateway.search_images(term, IMAGE_SEARCH_LIMIT)
        except RUNTIME_FAILURES as e:
            raise runtime_error("searching images", e)

    if not results:
        return {"message": "No images found", "results": []}
    return {"results": results}

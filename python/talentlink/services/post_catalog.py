"""PostCatalog: read-only view of the external talent-post service.

Only what LinkU needs is exposed: a post's title and owner, for
validating an explicit post reference and for labelling completed
collaborations.

Implementations:
- HttpPostCatalog: `GET {base_url}/posts/{id}` over a shared httpx.Client
- StaticPostCatalog: in-memory map for local runs and tests
"""

from dataclasses import dataclass
from typing import Protocol

import httpx

from talentlink.errors import ApiError, ApiErrorCode
from talentlink.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PostSummary:
    post_ref: int
    title: str | None = None
    owner_uid: int | None = None


class PostCatalog(Protocol):
    def get_post(self, post_ref: int) -> PostSummary | None:
        """Return the post, or None if the catalog doesn't know it.

        Raises:
            ApiError(E_TRANSIENT): The catalog could not be reached.
        """
        ...


class StaticPostCatalog:
    """Catalog backed by a dict; unknown refs resolve to None."""

    def __init__(self, posts: dict[int, PostSummary] | None = None):
        self.posts = dict(posts or {})

    def get_post(self, post_ref: int) -> PostSummary | None:
        return self.posts.get(post_ref)


class HttpPostCatalog:
    """Catalog backed by the talent-post service's HTTP API.

    Accepts either a bare post object or one wrapped in a `data` envelope.

    Args:
        client: Shared httpx.Client (owned by the app; closed at shutdown).
        base_url: Service base URL, e.g. "http://posts.internal".
        timeout_s: Per-request timeout in seconds.
    """

    def __init__(self, client: httpx.Client, base_url: str, timeout_s: float = 5.0):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def get_post(self, post_ref: int) -> PostSummary | None:
        url = f"{self.base_url}/posts/{post_ref}"
        try:
            response = self.client.get(url, timeout=self.timeout_s)
        except httpx.HTTPError as e:
            logger.warning("post_catalog_unreachable", post_ref=post_ref, error=str(e))
            raise ApiError(ApiErrorCode.E_TRANSIENT, "Post service unavailable") from e

        if response.status_code == 404:
            return None
        if response.status_code >= 500:
            logger.warning(
                "post_catalog_error", post_ref=post_ref, status_code=response.status_code
            )
            raise ApiError(ApiErrorCode.E_TRANSIENT, "Post service unavailable")
        if response.status_code >= 400:
            logger.warning(
                "post_catalog_rejected", post_ref=post_ref, status_code=response.status_code
            )
            return None

        try:
            body = response.json()
        except ValueError as e:
            logger.warning("post_catalog_bad_payload", post_ref=post_ref)
            raise ApiError(ApiErrorCode.E_TRANSIENT, "Post service returned bad payload") from e

        post = body.get("data", body) if isinstance(body, dict) else None
        if not isinstance(post, dict):
            logger.warning("post_catalog_bad_payload", post_ref=post_ref)
            raise ApiError(ApiErrorCode.E_TRANSIENT, "Post service returned bad payload")

        owner = post.get("ownerUid", post.get("owner_uid"))
        return PostSummary(
            post_ref=post_ref,
            title=post.get("title"),
            owner_uid=int(owner) if owner is not None else None,
        )


def title_or_none(catalog: PostCatalog, post_ref: int | None) -> str | None:
    """Best-effort title lookup for display; catalog outages yield None."""
    if post_ref is None:
        return None
    try:
        post = catalog.get_post(post_ref)
    except ApiError:
        return None
    return post.title if post else None

from typing import List, Optional

import structlog
from pymongo.errors import PyMongoError

from ..database import PostStore
from ..models.post import Post, derive_post_type, utcnow
from ..utils.uploads import remove_image

logger = structlog.get_logger(__name__)


def _preview(content: str, limit: int = 50) -> str:
    return content[:limit] + ("..." if len(content) > limit else "")


class PostService:
    """
    Post lifecycle on top of PostStore.

    Reads degrade to empty results when the store fails. Writes let the
    pydantic ValidationError or pymongo error propagate so the route can pick
    the page to send the user back to. Image files are removed best effort and
    are never transactional with the store write.
    """

    def __init__(self, store: PostStore, static_dir: str):
        self.store = store
        self.static_dir = static_dir

    def count(self) -> int:
        try:
            return self.store.count_posts()
        except PyMongoError as exc:
            logger.error("post_count_failed", error=str(exc))
            return 0

    def list(self) -> List[Post]:
        try:
            return self.store.list_posts()
        except PyMongoError as exc:
            logger.error("post_list_failed", error=str(exc))
            return []

    def get(self, post_id: str) -> Optional[Post]:
        return self.store.find_post_by_id(post_id)

    def create(self, username: str, content: str, image: Optional[str] = None,
               user_ip: Optional[str] = None, user_agent: Optional[str] = None) -> Post:
        post = Post(
            username=username,
            content=content,
            image=image,
            postType=derive_post_type((content or "").strip(), image),
            userIP=user_ip,
            userAgent=user_agent,
        )
        post = self.store.save_post(post)
        logger.info(
            "post_created",
            post_id=post.id,
            username=post.username,
            content=_preview(post.content),
            post_type=post.postType,
            has_image=bool(post.image),
            user_ip=post.userIP,
        )
        return post

    def view(self, post_id: str) -> Optional[Post]:
        # read-increment-write: concurrent views of the same post can lose increments
        post = self.store.find_post_by_id(post_id)
        if post is None:
            return None
        post.viewCount = (post.viewCount or 0) + 1
        post.lastViewedAt = utcnow()
        return self.store.save_post(post)

    def update(self, post_id: str, content: str, image: Optional[str] = None) -> Optional[Post]:
        post = self.store.find_post_by_id(post_id)
        if post is None:
            return None

        post.content = content
        if image:
            if post.image:
                remove_image(self.static_dir, post.image)
            post.image = image
        post.refresh_post_type()

        post = self.store.save_post(post)
        logger.info("post_updated", post_id=post.id, username=post.username, post_type=post.postType)
        return post

    def delete(self, post_id: str) -> bool:
        post = self.store.find_post_by_id(post_id)
        if post is None:
            return False

        logger.info(
            "post_deleted",
            post_id=post.id,
            username=post.username,
            content=_preview(post.content),
            created_at=post.createdAt.isoformat(),
            total_views=post.viewCount,
        )
        if post.image:
            remove_image(self.static_dir, post.image)
        self.store.delete_post(post_id)
        return True

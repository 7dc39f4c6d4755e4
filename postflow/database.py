from typing import List, Optional

import structlog
from bson.errors import InvalidId
from bson.objectid import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient

from .config import redact_uri
from .models.post import Post, utcnow

logger = structlog.get_logger(__name__)

COLLECTION_NAME = "posts"
CHECK_COLLECTION_NAME = "connection_checks"


def _object_id(post_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(post_id)
    except (InvalidId, TypeError):
        return None


class PostStore:
    """
    Document store for Post documents.

    Holds one MongoClient for the lifetime of the process. Nothing here retries:
    pymongo errors propagate and the callers decide how to degrade.
    """

    def __init__(self, client: MongoClient, db_name: str):
        self.client = client
        self.db = client[db_name]
        self.posts = self.db[COLLECTION_NAME]

    @classmethod
    def connect(cls, uri: str, db_name: str) -> "PostStore":
        logger.info("store_connecting", uri=redact_uri(uri), is_srv=uri.startswith("mongodb+srv://"))
        client = MongoClient(uri, tz_aware=True)
        client.admin.command("ping")
        store = cls(client, db_name)
        store.ensure_indexes()
        logger.info("store_connected", database=db_name, collection=COLLECTION_NAME)
        return store

    def ensure_indexes(self):
        self.posts.create_index([("username", ASCENDING), ("createdAt", DESCENDING)])
        self.posts.create_index([("createdAt", DESCENDING)])

    def count_posts(self) -> int:
        return self.posts.count_documents({})

    def list_posts(self) -> List[Post]:
        cursor = self.posts.find().sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
        return [Post.from_document(doc) for doc in cursor]

    def find_post_by_id(self, post_id: str) -> Optional[Post]:
        oid = _object_id(post_id)
        if oid is None:
            return None
        doc = self.posts.find_one({"_id": oid})
        return Post.from_document(doc) if doc else None

    def save_post(self, post: Post) -> Post:
        post.updatedAt = utcnow()
        doc = post.to_document()
        if post.id is None:
            result = self.posts.insert_one(doc)
            post.id = str(result.inserted_id)
        else:
            self.posts.replace_one({"_id": ObjectId(post.id)}, doc)
        return post

    def delete_post(self, post_id: str) -> bool:
        oid = _object_id(post_id)
        if oid is None:
            return False
        result = self.posts.delete_one({"_id": oid})
        return result.deleted_count == 1

    def check_round_trip(self) -> str:
        """Insert and delete a throwaway document; returns its id."""
        checks = self.db[CHECK_COLLECTION_NAME]
        result = checks.insert_one({"name": "Connection Test", "timestamp": utcnow()})
        checks.delete_one({"_id": result.inserted_id})
        return str(result.inserted_id)

    def close(self):
        self.client.close()
        logger.info("store_closed")

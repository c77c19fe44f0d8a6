import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import ValidationError
from pymongo import DESCENDING, ReturnDocument

import uploads
from database import create_document, get_collection, get_documents, to_public
from errors import Forbidden, InvalidInput, NotFound, internal_error
from schemas import Comment, CommentRequest, Post, PostUpdate, RelatedRequest
from security import get_current_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/posts", tags=["posts"])
# Alternate mount used by older clients for the like toggle
legacy_router = APIRouter(prefix="/api/post", tags=["posts"])

OWNER_FIELDS = {"name": 1, "username": 1, "email": 1}
AUTHOR_FIELDS = {"name": 1, "username": 1}
RELATED_LIMIT = 5
NEWEST_FIRST = [("created_at", DESCENDING)]
UPDATABLE_FIELDS = ("title", "categories", "description", "links", "tags")


# ----------------- Helpers -----------------
def _now():
    return datetime.now(timezone.utc)


def _object_id(value: Optional[str], what: str = "post") -> ObjectId:
    if not value or not ObjectId.is_valid(value):
        raise InvalidInput(f"Invalid {what} ID format")
    return ObjectId(value)


def _find_post(post_id: ObjectId) -> dict:
    post = get_collection("post").find_one({"_id": post_id})
    if not post:
        raise NotFound("Post not found")
    return post


def _load_users(ids, fields: dict) -> dict:
    ids = list({i for i in ids if isinstance(i, ObjectId)})
    if not ids:
        return {}
    users = get_collection("user").find({"_id": {"$in": ids}}, fields)
    return {u["_id"]: u for u in users}


def _with_owner(posts: List[dict], fields: dict = OWNER_FIELDS) -> List[dict]:
    """Replace each post's owner id with the owner's display fields (None if the user is gone)."""
    users = _load_users([p.get("user") for p in posts], fields)
    out = []
    for p in posts:
        d = dict(p)
        d["user"] = users.get(p.get("user"))
        out.append(d)
    return out


def _with_authors(comments: List[dict]) -> List[dict]:
    users = _load_users([c.get("user") for c in comments], AUTHOR_FIELDS)
    return [{**c, "user": users.get(c.get("user"))} for c in comments]


def _parse_json_list(raw: Optional[str], field: str) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        raise InvalidInput(f"Invalid JSON in '{field}'")
    if not isinstance(value, list):
        raise InvalidInput(f"'{field}' must be a JSON array")
    return value


def _update_post(post_id: str, payload: Optional[PostUpdate], owner_id: Optional[str] = None) -> dict:
    """Partial update; a field is replaced only when the new value is truthy.

    When owner_id is given the caller must own the post.
    """
    oid = _object_id(post_id)
    post = _find_post(oid)
    if owner_id is not None and str(post.get("user")) != owner_id:
        raise Forbidden("Unauthorized: You can only update your own posts")

    data = (payload or PostUpdate()).model_dump()
    changes = {k: data[k] for k in UPDATABLE_FIELDS if data.get(k)}
    changes["updated_at"] = _now()

    query = {"_id": oid}
    if owner_id is not None:
        query["user"] = post["user"]
    updated = get_collection("post").find_one_and_update(
        query, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise NotFound("Post not found")
    return updated


def _delete_post(post_id: str, owner_id: Optional[str] = None) -> dict:
    oid = _object_id(post_id)
    post = _find_post(oid)
    if owner_id is not None and str(post.get("user")) != owner_id:
        raise Forbidden("Unauthorized: You can only delete your own posts")

    query = {"_id": oid}
    if owner_id is not None:
        query["user"] = post["user"]
    result = get_collection("post").delete_one(query)
    if result.deleted_count == 0:
        raise NotFound("Post not found")
    get_collection("user").update_many({"saved_posts": oid}, {"$pull": {"saved_posts": oid}})
    uploads.discard(post.get("images", []))
    return post


def _toggle_like(post_id: str, user_id: str):
    """Atomically add or remove the user from the post's likes.

    Returns (post, liked).
    """
    oid = _object_id(post_id)
    uid = ObjectId(user_id)
    posts = get_collection("post")
    for _ in range(3):
        post = posts.find_one_and_update(
            {"_id": oid, "likes": {"$ne": uid}},
            {"$push": {"likes": uid}, "$set": {"updated_at": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        if post:
            return post, True
        post = posts.find_one_and_update(
            {"_id": oid, "likes": uid},
            {"$pull": {"likes": uid}, "$set": {"updated_at": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        if post:
            return post, False
        if posts.count_documents({"_id": oid}, limit=1) == 0:
            raise NotFound("Post not found")
    raise RuntimeError(f"Like state of post {post_id} kept changing")


# ----------------- Admin -----------------
@router.get("/admin/all", dependencies=[Depends(require_admin)])
def admin_list_posts():
    try:
        docs = get_documents("post")
        return to_public(_with_owner(docs))
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error fetching posts for admin")
        raise internal_error("Server error while fetching posts", e)


@router.put("/admin/update/{post_id}")
def admin_update_post(post_id: str, payload: Optional[PostUpdate] = None, admin: dict = Depends(require_admin)):
    try:
        post = _update_post(post_id, payload)
        logger.info("Admin %s updated post %s", admin["_id"], post_id)
        return {"message": "Post updated successfully by admin", "post": to_public(post)}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error updating post %s", post_id)
        raise internal_error("Server error while updating post", e)


@router.delete("/admin/delete/{post_id}")
def admin_delete_post(post_id: str, admin: dict = Depends(require_admin)):
    try:
        _delete_post(post_id)
        logger.info("Admin %s deleted post %s", admin["_id"], post_id)
        return {"message": "Post deleted successfully by admin"}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error deleting post %s", post_id)
        raise internal_error("Server error while deleting post", e)


# ----------------- Owner operations -----------------
@router.post("/create", status_code=201)
def create_post(
    title: str = Form(""),
    description: str = Form(""),
    categories: Optional[str] = Form(None),
    links: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    claims: dict = Depends(get_current_user),
):
    try:
        try:
            post = Post(
                user=ObjectId(claims["id"]),
                title=title or "",
                description=description or "",
                categories=_parse_json_list(categories, "categories"),
                links=_parse_json_list(links, "links"),
                tags=_parse_json_list(tags, "tags"),
            )
        except ValidationError as e:
            raise InvalidInput(f"Invalid post data: {e.errors()[0]['msg']}")

        saved = uploads.save_images(images)
        post.images = saved
        try:
            post_id = create_document("post", post)
        except Exception:
            # Don't leave files behind for a post that was never stored
            uploads.discard(saved)
            raise
        logger.info("User %s created post %s with %d image(s)", claims["id"], post_id, len(saved))
        created = get_collection("post").find_one({"_id": ObjectId(post_id)})
        return {"message": "Post created successfully", "post": to_public(created)}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error creating post")
        raise internal_error("Server error while creating post", e)


@router.put("/update/{post_id}")
def update_post(post_id: str, payload: Optional[PostUpdate] = None, claims: dict = Depends(get_current_user)):
    try:
        post = _update_post(post_id, payload, owner_id=claims["id"])
        return {"message": "Post updated successfully", "post": to_public(post)}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error updating post %s", post_id)
        raise internal_error("Server error while updating post", e)


@router.delete("/delete/{post_id}")
def delete_post(post_id: str, claims: dict = Depends(get_current_user)):
    try:
        _delete_post(post_id, owner_id=claims["id"])
        logger.info("User %s deleted post %s", claims["id"], post_id)
        return {"message": "Post deleted successfully"}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error deleting post %s", post_id)
        raise internal_error("Server error while deleting post", e)


@router.post("/like/{post_id}")
def like_post(post_id: str, claims: dict = Depends(get_current_user)):
    try:
        post, liked = _toggle_like(post_id, claims["id"])
        return {
            "message": "Post liked" if liked else "Post unliked",
            "liked": liked,
            "likes": to_public(post.get("likes", [])),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error updating like on post %s", post_id)
        raise internal_error("Server error while updating like", e)


legacy_router.add_api_route("/like/{post_id}", like_post, methods=["PUT"])


@router.post("/comment/{post_id}", status_code=201)
def add_comment(post_id: str, payload: Optional[CommentRequest] = None, claims: dict = Depends(get_current_user)):
    try:
        oid = _object_id(post_id)
        text = ((payload.text if payload else None) or "").strip()
        if not text:
            raise InvalidInput("Comment text is required")

        comment = Comment(user=ObjectId(claims["id"]), text=text).model_dump()
        post = get_collection("post").find_one_and_update(
            {"_id": oid},
            {"$push": {"comments": comment}, "$set": {"updated_at": _now()}},
            projection={"_id": 1},
        )
        if not post:
            raise NotFound("Post not found")
        return {"message": "Comment added successfully", "comment": to_public(_with_authors([comment])[0])}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error adding comment to post %s", post_id)
        raise internal_error("Server error while adding comment", e)


@router.get("/comments/{post_id}")
def list_comments(post_id: str):
    try:
        post = _find_post(_object_id(post_id))
        return {"comments": to_public(_with_authors(post.get("comments", [])))}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error fetching comments for post %s", post_id)
        raise internal_error("Server error while fetching comments", e)


# ----------------- Saved posts -----------------
@router.post("/save/{post_id}")
def save_post(post_id: str, claims: dict = Depends(get_current_user)):
    try:
        oid = _object_id(post_id)
        _find_post(oid)
        uid = ObjectId(claims["id"])
        users = get_collection("user")
        result = users.update_one(
            {"_id": uid, "saved_posts": {"$ne": oid}},
            {"$push": {"saved_posts": oid}, "$set": {"updated_at": _now()}},
        )
        if result.matched_count == 0:
            if users.count_documents({"_id": uid}, limit=1) == 0:
                raise NotFound("User not found")
            raise InvalidInput("Post already saved")
        return {"message": "Post saved successfully"}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error saving post %s", post_id)
        raise internal_error("Server error while saving post", e)


@router.delete("/unsave/{post_id}")
def unsave_post(post_id: str, claims: dict = Depends(get_current_user)):
    try:
        oid = _object_id(post_id)
        result = get_collection("user").update_one(
            {"_id": ObjectId(claims["id"])},
            {"$pull": {"saved_posts": oid}, "$set": {"updated_at": _now()}},
        )
        if result.matched_count == 0:
            raise NotFound("User not found")
        return {"message": "Post removed from saved posts"}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error unsaving post %s", post_id)
        raise internal_error("Server error while unsaving post", e)


@router.get("/saved/posts")
def list_saved_posts(claims: dict = Depends(get_current_user)):
    try:
        user = get_collection("user").find_one({"_id": ObjectId(claims["id"])}, {"saved_posts": 1})
        if not user:
            raise NotFound("User not found")
        ids = user.get("saved_posts", [])
        found = {p["_id"]: p for p in get_documents("post", {"_id": {"$in": ids}})}
        # keep bookmark order, skip posts deleted since
        return to_public([found[i] for i in ids if i in found])
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error fetching saved posts")
        raise internal_error("Server error while fetching saved posts", e)


# ----------------- Public reads -----------------
@router.post("/related")
def related_posts(
    payload: Optional[RelatedRequest] = None,
    exclude_post_id: Optional[str] = Query(None, alias="excludePostId"),
):
    try:
        categories = payload.categories if payload else None
        if not isinstance(categories, list) or not categories:
            raise InvalidInput("Categories array is required")

        query = {"categories": {"$in": categories}}
        if exclude_post_id:
            query["_id"] = {"$ne": _object_id(exclude_post_id)}
        docs = get_documents("post", query, limit=RELATED_LIMIT, sort=NEWEST_FIRST)
        return {"posts": to_public(_with_owner(docs, AUTHOR_FIELDS))}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error fetching related posts")
        raise internal_error("Server error while fetching related posts", e)


@router.get("/")
def list_posts(category: Optional[str] = None):
    try:
        query = {}
        if category:
            query["categories"] = category
        docs = get_documents("post", query, sort=NEWEST_FIRST)
        return to_public(_with_owner(docs))
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error fetching posts")
        raise internal_error("Server error while fetching posts", e)


@router.get("/{post_id}")
def get_post(post_id: str):
    try:
        post = _find_post(_object_id(post_id))
        return to_public(_with_owner([post])[0])
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error fetching post %s", post_id)
        raise internal_error("Server error while fetching post", e)

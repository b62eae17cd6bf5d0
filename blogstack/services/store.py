from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError
from fastapi import HTTPException

from blogstack.core.cursor import decode_cursor, encode_cursor
from blogstack.core.indexes import INDEXES, is_index_not_ready_error, is_missing_index_error
from blogstack.core.keys import (
    ALL_POSTS,
    ENTITY_POST,
    ENTITY_USER,
    gsi_author,
    gsi_email,
    gsi_username,
    new_numeric_id,
    normalize_id,
    pk_post,
    pk_user,
    post_key,
    user_key,
)
from blogstack.core.settings import S
from blogstack.core.tables import T
from blogstack.core.time import now_iso
from blogstack.metrics import COUNTER_DECREMENTS_SKIPPED, SCAN_FALLBACKS, VERSION_CONFLICTS

logger = logging.getLogger(__name__)

UserId = Union[str, int]

# friendsCount is not here: add_friend/remove_friend keep it equal to len(friends) under the version check.
USER_COUNTERS = ("postCount", "likesCount", "commentsCount")
OAUTH_FIELDS = {"github": "githubId", "google": "googleId"}


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _is_conditional_failure(exc: ClientError) -> bool:
    return _error_code(exc) == "ConditionalCheckFailedException"


# -----------------------------
# Paging helpers
# -----------------------------
def _drain(op: Callable[..., Dict[str, Any]], **kwargs) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    while True:
        resp = op(**kwargs)
        items.extend(resp.get("Items", []))
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


def _scan_all(filter_expression) -> List[Dict[str, Any]]:
    return _drain(T.blog.scan, FilterExpression=filter_expression, Limit=S.scan_page_size)


def _query_index_all(index_name: str, pk_attr: str, pk_value: str, *, newest_first: bool) -> List[Dict[str, Any]]:
    return _drain(
        T.blog.query,
        IndexName=index_name,
        KeyConditionExpression=Key(pk_attr).eq(pk_value),
        ScanIndexForward=not newest_first,
    )


def _note_index_error(index_name: str, exc: ClientError) -> bool:
    """Record what a failed index query says about the index; False if the error is unrelated."""
    if is_missing_index_error(exc):
        INDEXES.mark_missing(index_name)
        return True
    if is_index_not_ready_error(exc):
        INDEXES.mark_creating(index_name)
        return True
    return False


def _lookup(
    index_name: str,
    pk_attr: str,
    pk_value: str,
    fallback_filter,
    *,
    newest_first: bool = False,
    sort_attr: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Query a GSI partition, or scan with ``fallback_filter`` when the index is
    not ready. Scan results are sorted by ``sort_attr`` to mimic the index order.
    """
    if INDEXES.should_query(index_name, T.blog):
        try:
            return _query_index_all(index_name, pk_attr, pk_value, newest_first=newest_first)
        except ClientError as exc:
            if not _note_index_error(index_name, exc):
                raise

    logger.warning("Index %s not ready, falling back to scan for %s", index_name, pk_value)
    SCAN_FALLBACKS.labels(index=index_name).inc()
    items = _scan_all(fallback_filter)
    if sort_attr:
        items.sort(key=lambda it: str(it.get(sort_attr) or ""), reverse=newest_first)
    return items


# -----------------------------
# Versioned read-modify-write
# -----------------------------
Mutation = Callable[[Dict[str, Any]], Tuple[Optional[Dict[str, Any]], Any]]


def _versioned_update(key: Dict[str, Any], entity: str, mutate: Mutation) -> Optional[Tuple[Dict[str, Any], Any]]:
    """
    Read the item, let ``mutate`` compute changed attributes, and write them
    back only if nobody else bumped ``version`` in between. ``mutate`` returns
    ``(updates, outcome)``; ``updates`` of None means nothing to write.

    Returns ``(item_after, outcome)`` or None when the item does not exist.
    Raises 409 when every attempt lost the race.
    """
    attempts = max(1, S.version_retry_attempts)
    for attempt in range(1, attempts + 1):
        current = T.blog.get_item(Key=key, ConsistentRead=True).get("Item")
        if not current or current.get("entity") != entity:
            return None

        updates, outcome = mutate(dict(current))
        if updates is None:
            return current, outcome

        has_version = "version" in current
        expected = int(current.get("version", 0))
        names: Dict[str, str] = {"#ver": "version"}
        values: Dict[str, Any] = {":ver": expected + 1}
        sets = ["#ver = :ver"]
        for i, (attr, value) in enumerate(updates.items()):
            names[f"#a{i}"] = attr
            values[f":a{i}"] = value
            sets.append(f"#a{i} = :a{i}")
        condition = Attr("version").eq(expected) if has_version else Attr("PK").exists() & Attr("version").not_exists()

        try:
            T.blog.update_item(
                Key=key,
                UpdateExpression="SET " + ", ".join(sets),
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except ClientError as exc:
            if not _is_conditional_failure(exc):
                raise
            VERSION_CONFLICTS.labels(entity=entity).inc()
            logger.info("Version conflict on %s (attempt %d/%d)", key.get("PK"), attempt, attempts)
            continue

        return {**current, **updates, "version": expected + 1}, outcome

    raise HTTPException(409, "Concurrent update, please retry")


# -----------------------------
# Users
# -----------------------------
def create_user(data: Dict[str, Any]) -> Dict[str, Any]:
    ts = now_iso()
    user_id = new_numeric_id()
    username = data["username"]
    email = data["email"]
    item = {
        "PK": pk_user(user_id),
        "entity": ENTITY_USER,
        "userId": user_id,
        "username": username,
        "fullName": data.get("fullName") or "",
        "email": email,
        "passwordHash": data.get("passwordHash") or "",
        "avatarUrl": data.get("avatarUrl") or "",
        "githubId": data.get("githubId") or "",
        "googleId": data.get("googleId") or "",
        "dateJoined": ts,
        "postCount": 0,
        "likesCount": 0,
        "commentsCount": 0,
        "friendsCount": 0,
        "friends": [],
        "version": 1,
        "GSI1PK": gsi_username(username),
        "GSI1SK": ts,
        "GSI2PK": gsi_email(email),
        "GSI2SK": ts,
    }
    try:
        T.blog.put_item(Item=item, ConditionExpression=Attr("PK").not_exists())
    except ClientError as exc:
        if _is_conditional_failure(exc):
            raise HTTPException(409, "User id already taken, please retry") from exc
        raise
    logger.info("Created user %s (%s)", username, user_id)
    return item


def get_user_by_username(username: str) -> Optional[Dict[str, Any]]:
    items = _lookup(
        S.gsi1_name,
        "GSI1PK",
        gsi_username(username),
        Attr("entity").eq(ENTITY_USER) & Attr("username").eq(username),
    )
    return items[0] if items else None


def get_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    items = _lookup(
        S.gsi2_name,
        "GSI2PK",
        gsi_email(email),
        Attr("entity").eq(ENTITY_USER) & Attr("email").eq(email),
    )
    return items[0] if items else None


def get_user_by_id(user_id: UserId) -> Optional[Dict[str, Any]]:
    item = T.blog.get_item(Key=user_key(user_id)).get("Item")
    if item and item.get("entity") == ENTITY_USER:
        return item
    return None


def list_users() -> List[Dict[str, Any]]:
    return _scan_all(Attr("entity").eq(ENTITY_USER))


def _set_user_attr(user_id: UserId, attr: str, value: Any) -> Optional[Dict[str, Any]]:
    try:
        resp = T.blog.update_item(
            Key=user_key(user_id),
            UpdateExpression="SET #a0 = :a0",
            ConditionExpression=Attr("entity").eq(ENTITY_USER),
            ExpressionAttributeNames={"#a0": attr},
            ExpressionAttributeValues={":a0": value},
            ReturnValues="ALL_NEW",
        )
    except ClientError as exc:
        if _is_conditional_failure(exc):
            return None
        raise
    return resp.get("Attributes")


def update_user_avatar(user_id: UserId, avatar_url: str) -> Optional[Dict[str, Any]]:
    return _set_user_attr(user_id, "avatarUrl", avatar_url)


def update_user_oauth_id(user_id: UserId, provider: str, external_id: str) -> Optional[Dict[str, Any]]:
    attr = OAUTH_FIELDS.get(provider)
    if not attr:
        raise HTTPException(400, f"Unsupported identity provider: {provider}")
    return _set_user_attr(user_id, attr, external_id)


def delete_user_item(user_id: UserId) -> None:
    T.blog.delete_item(Key=user_key(user_id))


# -----------------------------
# User counters
# -----------------------------
def _check_counter(counter: str) -> None:
    if counter not in USER_COUNTERS:
        raise ValueError(f"unknown user counter: {counter}")


def increment_user_counter(user_id: UserId, counter: str) -> bool:
    _check_counter(counter)
    uid = normalize_id(user_id)
    try:
        T.blog.update_item(
            Key=user_key(uid),
            UpdateExpression="ADD #c :one",
            ConditionExpression=Attr("entity").eq(ENTITY_USER),
            ExpressionAttributeNames={"#c": counter},
            ExpressionAttributeValues={":one": 1},
        )
    except ClientError as exc:
        if _is_conditional_failure(exc):
            logger.warning("Cannot increment %s: user %s does not exist", counter, uid)
            return False
        raise
    return True


def decrement_user_counter(user_id: UserId, counter: str) -> bool:
    """Decrement unless the counter is already zero; the zero case is a no-op, not an error."""
    _check_counter(counter)
    uid = normalize_id(user_id)
    try:
        T.blog.update_item(
            Key=user_key(uid),
            UpdateExpression="SET #c = #c - :one",
            ConditionExpression=Attr(counter).gt(0),
            ExpressionAttributeNames={"#c": counter},
            ExpressionAttributeValues={":one": 1},
        )
    except ClientError as exc:
        if _is_conditional_failure(exc):
            logger.warning("Could not decrement %s for user %s; count is likely already at 0", counter, uid)
            COUNTER_DECREMENTS_SKIPPED.labels(counter=counter).inc()
            return False
        raise
    return True


def increment_user_post_count(user_id: UserId) -> bool:
    return increment_user_counter(user_id, "postCount")


def decrement_user_post_count(user_id: UserId) -> bool:
    return decrement_user_counter(user_id, "postCount")


def increment_user_likes_count(user_id: UserId) -> bool:
    return increment_user_counter(user_id, "likesCount")


def decrement_user_likes_count(user_id: UserId) -> bool:
    return decrement_user_counter(user_id, "likesCount")


def increment_user_comments_count(user_id: UserId) -> bool:
    return increment_user_counter(user_id, "commentsCount")


def decrement_user_comments_count(user_id: UserId) -> bool:
    return decrement_user_counter(user_id, "commentsCount")


# -----------------------------
# Posts
# -----------------------------
def create_post(post: Dict[str, Any]) -> Dict[str, Any]:
    post_id = normalize_id(post["postId"])
    item = {
        **post,
        "PK": pk_post(post_id),
        "entity": ENTITY_POST,
        "postId": post_id,
        "version": 1,
        "GSI1PK": gsi_author(post["authorId"]),
        "GSI1SK": post["createdAt"],
        "GSI2PK": ALL_POSTS,
        "GSI2SK": post["createdAt"],
    }
    try:
        T.blog.put_item(Item=item, ConditionExpression=Attr("PK").not_exists())
    except ClientError as exc:
        if _is_conditional_failure(exc):
            raise HTTPException(409, "Post id already taken, please retry") from exc
        raise
    logger.info("Created post %s by %s", post_id, item["authorId"])
    return item


def get_post(post_id: UserId) -> Optional[Dict[str, Any]]:
    item = T.blog.get_item(Key=post_key(post_id)).get("Item")
    if item and item.get("entity") == ENTITY_POST:
        return item
    return None


def list_posts_by_author(author_id: UserId) -> List[Dict[str, Any]]:
    aid = normalize_id(author_id)
    return _lookup(
        S.gsi1_name,
        "GSI1PK",
        gsi_author(aid),
        Attr("entity").eq(ENTITY_POST) & Attr("authorId").eq(aid),
        newest_first=True,
        sort_attr="createdAt",
    )


def list_all_posts(*, limit: Optional[int] = None, cursor: Optional[str] = None) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """
    Newest-first global feed. With ``limit`` a single index page is returned
    together with the cursor for the next one. In scan fallback mode the
    whole feed is sorted in memory and no cursor is returned.
    """
    if limit is None:
        items = _lookup(
            S.gsi2_name,
            "GSI2PK",
            ALL_POSTS,
            Attr("entity").eq(ENTITY_POST),
            newest_first=True,
            sort_attr="createdAt",
        )
        return items, None

    if INDEXES.should_query(S.gsi2_name, T.blog):
        kwargs: Dict[str, Any] = {
            "IndexName": S.gsi2_name,
            "KeyConditionExpression": Key("GSI2PK").eq(ALL_POSTS),
            "ScanIndexForward": False,
            "Limit": limit,
        }
        start_key = decode_cursor(cursor)
        if start_key:
            kwargs["ExclusiveStartKey"] = start_key
        try:
            resp = T.blog.query(**kwargs)
            return resp.get("Items", []), encode_cursor(resp.get("LastEvaluatedKey"))
        except ClientError as exc:
            if not _note_index_error(S.gsi2_name, exc):
                raise

    items, _ = list_all_posts()
    return items[:limit], None


def delete_post(post_id: UserId) -> Optional[Dict[str, Any]]:
    post = get_post(post_id)
    if not post:
        return None
    T.blog.delete_item(Key=post_key(post_id))
    logger.info("Deleted post %s", post["postId"])
    return post


# -----------------------------
# Likes
# -----------------------------
def _liked_by(post: Dict[str, Any]) -> List[str]:
    return [str(uid) for uid in post.get("likedBy") or []]


def like_post(post_id: UserId, user_id: UserId) -> Dict[str, Any]:
    uid = normalize_id(user_id)

    def mutate(post: Dict[str, Any]):
        liked_by = _liked_by(post)
        if uid in liked_by:
            return None, False
        liked_by.append(uid)
        return {"likedBy": liked_by, "likesCount": len(liked_by)}, True

    result = _versioned_update(post_key(post_id), ENTITY_POST, mutate)
    if result is None:
        raise HTTPException(404, "Post not found")
    post, changed = result
    return {"liked": True, "likesCount": int(post.get("likesCount", 0)), "changed": changed}


def unlike_post(post_id: UserId, user_id: UserId) -> Dict[str, Any]:
    uid = normalize_id(user_id)

    def mutate(post: Dict[str, Any]):
        liked_by = _liked_by(post)
        if uid not in liked_by:
            return None, False
        liked_by = [other for other in liked_by if other != uid]
        return {"likedBy": liked_by, "likesCount": len(liked_by)}, True

    result = _versioned_update(post_key(post_id), ENTITY_POST, mutate)
    if result is None:
        raise HTTPException(404, "Post not found")
    post, changed = result
    return {"liked": False, "likesCount": int(post.get("likesCount", 0)), "changed": changed}


def is_post_liked_by(post_id: UserId, user_id: UserId) -> bool:
    post = get_post(post_id)
    if not post:
        return False
    return normalize_id(user_id) in _liked_by(post)


# -----------------------------
# Comments (embedded in the post item)
# -----------------------------
def create_comment(post_id: UserId, user_id: UserId, author: Dict[str, Any], content: str) -> Dict[str, Any]:
    ts = now_iso()
    comment = {
        "commentId": new_numeric_id(),
        "postId": normalize_id(post_id),
        "authorId": normalize_id(user_id),
        "authorUsername": author.get("username") or "",
        "authorFullName": author.get("fullName") or "",
        "authorAvatarUrl": author.get("avatarUrl") or "",
        "content": content,
        "createdAt": ts,
        "updatedAt": ts,
    }

    def mutate(post: Dict[str, Any]):
        comments = list(post.get("comments") or [])
        comments.append(comment)
        return {"comments": comments, "commentsCount": len(comments)}, None

    result = _versioned_update(post_key(post_id), ENTITY_POST, mutate)
    if result is None:
        raise HTTPException(404, "Post not found")
    post, _ = result
    logger.info("Comment %s added to post %s", comment["commentId"], comment["postId"])
    return {"comment": comment, "commentsCount": int(post["commentsCount"])}


def list_comments(post_id: UserId) -> List[Dict[str, Any]]:
    post = get_post(post_id)
    if not post:
        return []
    return list(post.get("comments") or [])


def delete_comment(post_id: UserId, comment_id: str, user_id: UserId) -> Dict[str, Any]:
    uid = normalize_id(user_id)
    cid = normalize_id(comment_id)

    def mutate(post: Dict[str, Any]):
        comments = list(post.get("comments") or [])
        target = next((c for c in comments if str(c.get("commentId")) == cid), None)
        if target is None:
            raise HTTPException(404, "Comment not found")
        if normalize_id(target.get("authorId", "")) != uid:
            raise HTTPException(403, "You are not authorized to delete this comment")
        remaining = [c for c in comments if str(c.get("commentId")) != cid]
        return {"comments": remaining, "commentsCount": len(remaining)}, target

    result = _versioned_update(post_key(post_id), ENTITY_POST, mutate)
    if result is None:
        raise HTTPException(404, "Post not found")
    post, removed = result
    logger.info("Comment %s deleted from post %s", cid, post["postId"])
    return {"comment": removed, "commentsCount": int(post["commentsCount"])}


# -----------------------------
# Friends
# -----------------------------
def _friends_of(user: Dict[str, Any]) -> List[str]:
    return [str(fid) for fid in user.get("friends") or []]


def add_friend(user_id: UserId, friend_id: UserId) -> bool:
    uid = normalize_id(user_id)
    fid = normalize_id(friend_id)
    if uid == fid:
        return False

    def mutate(user: Dict[str, Any]):
        friends = _friends_of(user)
        if fid in friends:
            return None, False
        friends.append(fid)
        return {"friends": friends, "friendsCount": len(friends)}, True

    result = _versioned_update(user_key(uid), ENTITY_USER, mutate)
    if result is None:
        logger.warning("Cannot add friend %s: user %s not found", fid, uid)
        return False
    return result[1]


def remove_friend(user_id: UserId, friend_id: UserId) -> bool:
    uid = normalize_id(user_id)
    fid = normalize_id(friend_id)

    def mutate(user: Dict[str, Any]):
        friends = _friends_of(user)
        if fid not in friends:
            return None, False
        friends = [other for other in friends if other != fid]
        return {"friends": friends, "friendsCount": len(friends)}, True

    result = _versioned_update(user_key(uid), ENTITY_USER, mutate)
    if result is None:
        logger.warning("Cannot remove friend %s: user %s not found", fid, uid)
        return False
    return result[1]


def list_friends(user_id: UserId) -> List[Dict[str, Any]]:
    user = get_user_by_id(user_id)
    if not user:
        return []
    friends: List[Dict[str, Any]] = []
    for fid in _friends_of(user):
        friend = get_user_by_id(fid)
        if friend:
            friends.append(
                {
                    "userId": friend["userId"],
                    "username": friend.get("username"),
                    "fullName": friend.get("fullName"),
                    "avatarUrl": friend.get("avatarUrl"),
                    "postCount": int(friend.get("postCount", 0)),
                    "dateJoined": friend.get("dateJoined"),
                }
            )
    return friends


def is_friend(user_id: UserId, friend_id: UserId) -> bool:
    user = get_user_by_id(user_id)
    if not user:
        return False
    return normalize_id(friend_id) in _friends_of(user)

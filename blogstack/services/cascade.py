from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError
from fastapi import HTTPException

from blogstack.core.keys import (
    ENTITY_CASCADE,
    ENTITY_CASCADE_STEP,
    cascade_key,
    cascade_step_key,
    normalize_id,
    pk_cascade,
)
from blogstack.core.settings import S
from blogstack.core.tables import T
from blogstack.core.time import now_iso
from blogstack.metrics import CASCADE_STEP_FAILURES
from blogstack.services import store

logger = logging.getLogger(__name__)

STEP_DELETE_POST = "delete_post"
STEP_REMOVE_LIKE = "remove_like"
STEP_REMOVE_FRIEND = "remove_friend"
STEP_DELETE_USER = "delete_user"

STATUS_PENDING = "pending"
STATUS_DONE = "done"
STATUS_FAILED = "failed"
STATUS_COMPLETED = "completed"
STATUS_PARTIAL = "partial"


def _delete_post(target: str, user_id: str) -> None:
    store.delete_post(target)


def _remove_like(target: str, user_id: str) -> None:
    try:
        store.unlike_post(target, user_id)
    except HTTPException as exc:
        # A post deleted since planning no longer holds the like.
        if exc.status_code != 404:
            raise


def _remove_friend(target: str, user_id: str) -> None:
    store.remove_friend(target, user_id)


def _delete_user(target: str, user_id: str) -> None:
    store.delete_user_item(target)


_HANDLERS: Dict[str, Callable[[str, str], None]] = {
    STEP_DELETE_POST: _delete_post,
    STEP_REMOVE_LIKE: _remove_like,
    STEP_REMOVE_FRIEND: _remove_friend,
    STEP_DELETE_USER: _delete_user,
}


def _step(name: str, target: Any) -> Dict[str, Any]:
    return {"name": name, "target": normalize_id(target), "status": STATUS_PENDING, "attempts": 0, "error": ""}


def plan_user_deletion(user_id: str) -> List[Dict[str, Any]]:
    """List every write needed to remove a user, their posts and their traces in other items."""
    uid = normalize_id(user_id)
    steps: List[Dict[str, Any]] = []

    for post in store.list_posts_by_author(uid):
        steps.append(_step(STEP_DELETE_POST, post["postId"]))

    all_posts, _ = store.list_all_posts()
    for post in all_posts:
        if normalize_id(post.get("authorId", "")) == uid:
            continue
        if uid in [str(liker) for liker in post.get("likedBy") or []]:
            steps.append(_step(STEP_REMOVE_LIKE, post["postId"]))

    for user in store.list_users():
        if normalize_id(user.get("userId", "")) == uid:
            continue
        if uid in [str(fid) for fid in user.get("friends") or []]:
            steps.append(_step(STEP_REMOVE_FRIEND, user["userId"]))

    steps.append(_step(STEP_DELETE_USER, uid))
    return steps


def load_cascade(user_id: str) -> Optional[Dict[str, Any]]:
    item = T.blog.get_item(Key=cascade_key(user_id), ConsistentRead=True).get("Item")
    if item and item.get("entity") == ENTITY_CASCADE:
        return item
    return None


def load_steps(record: Dict[str, Any]) -> List[Dict[str, Any]]:
    uid = record["userId"]
    steps: List[Dict[str, Any]] = []
    for index in range(int(record.get("totalSteps", 0))):
        item = T.blog.get_item(Key=cascade_step_key(uid, index), ConsistentRead=True).get("Item")
        if not item or item.get("entity") != ENTITY_CASCADE_STEP:
            logger.warning("Cascade step %d for user %s is missing; skipping it", index, uid)
            continue
        steps.append(item)
    return steps


def _save_step(uid: str, index: int, step: Dict[str, Any]) -> None:
    step.update(cascade_step_key(uid, index))
    step.update({"entity": ENTITY_CASCADE_STEP, "userId": uid, "index": index, "updatedAt": now_iso()})
    T.blog.put_item(Item=step)


def _save(record: Dict[str, Any]) -> None:
    record["updatedAt"] = now_iso()
    T.blog.put_item(Item=record)


def _drop_steps(steps: List[Dict[str, Any]]) -> None:
    for step in steps:
        try:
            T.blog.delete_item(Key={"PK": step["PK"]})
        except ClientError as exc:
            logger.warning("Could not remove cascade step %s: %s", step["PK"], exc)


def _report(record: Dict[str, Any], steps: List[Dict[str, Any]]) -> Dict[str, Any]:
    failed = [
        {"name": s["name"], "target": s["target"], "error": s.get("error", ""), "attempts": int(s.get("attempts", 0))}
        for s in steps
        if s.get("status") != STATUS_DONE
    ]
    total = int(record.get("totalSteps", len(steps)))
    return {
        "userId": record["userId"],
        "status": record["status"],
        "totalSteps": total,
        "completedSteps": total - len(failed),
        "failedSteps": failed,
    }


def _run(record: Dict[str, Any], steps: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    uid = record["userId"]
    if steps is None:
        steps = load_steps(record)
    max_attempts = max(1, S.cascade_max_attempts)
    for step in steps:
        if step.get("status") == STATUS_DONE:
            continue
        attempts = int(step.get("attempts", 0))
        if attempts >= max_attempts:
            continue
        step["attempts"] = attempts + 1
        try:
            _HANDLERS[step["name"]](step["target"], uid)
        except Exception as exc:  # one failed step must not stop the rest of the cascade
            step["status"] = STATUS_FAILED
            step["error"] = str(getattr(exc, "detail", None) or exc)[:500]
            CASCADE_STEP_FAILURES.labels(step=step["name"]).inc()
            logger.error("Cascade step %s(%s) failed for user %s: %s", step["name"], step["target"], uid, exc)
        else:
            step["status"] = STATUS_DONE
            step["error"] = ""
        _save_step(uid, int(step["index"]), step)

    done = all(s.get("status") == STATUS_DONE for s in steps)
    record["status"] = STATUS_COMPLETED if done else STATUS_PARTIAL
    record["completedSteps"] = sum(1 for s in steps if s.get("status") == STATUS_DONE)
    _save(record)
    if done:
        _drop_steps(steps)
        logger.info("Deleted user %s (%d steps)", uid, len(steps))
    else:
        logger.warning("User %s deletion is partial; resume to retry failed steps", uid)
    return _report(record, steps)


def delete_user(user_id: str) -> Dict[str, Any]:
    """
    Delete a user and everything that references them. Progress is written to a
    cascade record so an interrupted or partially failed run can be resumed.
    An unfinished earlier run for the same user is resumed instead of re-planned.
    """
    uid = normalize_id(user_id)
    existing = load_cascade(uid)
    if existing and existing.get("status") != STATUS_COMPLETED:
        return _run(existing)

    steps = plan_user_deletion(uid)
    for index, step in enumerate(steps):
        _save_step(uid, index, step)
    ts = now_iso()
    record = {
        "PK": pk_cascade(uid),
        "entity": ENTITY_CASCADE,
        "userId": uid,
        "status": STATUS_PENDING,
        "totalSteps": len(steps),
        "completedSteps": 0,
        "createdAt": ts,
        "updatedAt": ts,
    }
    # The header goes last: once it exists every step item does too.
    _save(record)
    return _run(record, steps)


def resume_user_deletion(user_id: str) -> Dict[str, Any]:
    record = load_cascade(user_id)
    if not record:
        raise HTTPException(404, "No deletion in progress for this user")
    if record.get("status") == STATUS_COMPLETED:
        return _report(record, [])
    return _run(record)


def list_incomplete_cascades() -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    kwargs: Dict[str, Any] = {
        "FilterExpression": Attr("entity").eq(ENTITY_CASCADE) & Attr("status").ne(STATUS_COMPLETED),
    }
    while True:
        resp = T.blog.scan(**kwargs)
        items.extend(resp.get("Items", []))
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


def resume_all() -> List[Dict[str, Any]]:
    reports = []
    for record in list_incomplete_cascades():
        reports.append(_run(record))
    return reports

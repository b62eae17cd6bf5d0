import unittest
from dataclasses import replace
from unittest.mock import patch

from botocore.exceptions import ClientError
from fastapi import HTTPException

from blogstack.services import store
from tests.fakes import FakeTableCase, client_error


class TestUserStore(FakeTableCase):
    def test_create_user_is_found_by_username_email_and_id(self):
        user = self.make_user("alice", "alice@example.com")
        self.assertEqual(user["PK"], f"USER#{user['userId']}")
        self.assertEqual(user["entity"], "User")
        self.assertEqual(user["GSI1PK"], "USERNAME#alice")
        self.assertEqual(user["GSI2PK"], "EMAIL#alice@example.com")

        self.assertEqual(store.get_user_by_username("alice")["userId"], user["userId"])
        self.assertEqual(store.get_user_by_email("alice@example.com")["userId"], user["userId"])
        self.assertEqual(store.get_user_by_id(int(user["userId"]))["username"], "alice")

    def test_lookups_return_none_when_absent(self):
        self.assertIsNone(store.get_user_by_username("nobody"))
        self.assertIsNone(store.get_user_by_email("nobody@example.com"))
        self.assertIsNone(store.get_user_by_id("42"))

    def test_id_collision_is_a_conflict(self):
        with patch.object(store, "new_numeric_id", return_value="7"):
            self.make_user("first")
            with self.assertRaises(HTTPException) as ctx:
                self.make_user("second")
        self.assertEqual(ctx.exception.status_code, 409)

    def test_user_and_post_ids_do_not_collide(self):
        with patch.object(store, "new_numeric_id", return_value="55"):
            user = self.make_user("alice")
        self.make_post(user, "55", "2024-01-01T00:00:00")
        self.assertEqual(store.get_user_by_id("55")["username"], "alice")
        self.assertEqual(store.get_post("55")["title"], "post 55")
        self.assertIsNone(store.get_user_by_id("56"))

    def test_list_users_only_returns_users(self):
        alice = self.make_user("alice")
        self.make_user("bob")
        self.make_post(alice, "900", "2024-01-01T00:00:00")
        names = sorted(u["username"] for u in store.list_users())
        self.assertEqual(names, ["alice", "bob"])

    def test_list_users_follows_scan_pages(self):
        for i in range(5):
            self.make_user(f"user{i}")
        with patch.object(store, "S", replace(store.S, scan_page_size=2)):
            users = store.list_users()
        self.assertEqual(len(users), 5)
        self.assertGreaterEqual(self.table.calls.count("scan"), 3)

    def test_update_avatar_and_oauth_id(self):
        user = self.make_user("alice")
        updated = store.update_user_avatar(user["userId"], "uploads/1/a.png")
        self.assertEqual(updated["avatarUrl"], "uploads/1/a.png")
        linked = store.update_user_oauth_id(user["userId"], "github", "gh-1")
        self.assertEqual(linked["githubId"], "gh-1")

    def test_update_avatar_missing_user_returns_none(self):
        self.assertIsNone(store.update_user_avatar("404", "x"))
        self.assertNotIn("USER#404", self.table.items)

    def test_unsupported_oauth_provider(self):
        with self.assertRaises(HTTPException) as ctx:
            store.update_user_oauth_id("1", "myspace", "x")
        self.assertEqual(ctx.exception.status_code, 400)


class TestUserCounters(FakeTableCase):
    def test_increment_is_atomic_add(self):
        user = self.make_user("alice")
        self.assertTrue(store.increment_user_post_count(user["userId"]))
        self.assertTrue(store.increment_user_post_count(user["userId"]))
        self.assertEqual(store.get_user_by_id(user["userId"])["postCount"], 2)

    def test_increment_missing_user_does_not_create_item(self):
        self.assertFalse(store.increment_user_likes_count("999"))
        self.assertNotIn("USER#999", self.table.items)

    def test_decrement_at_zero_is_a_noop(self):
        user = self.make_user("alice")
        for decrement in (
            store.decrement_user_post_count,
            store.decrement_user_likes_count,
            store.decrement_user_comments_count,
        ):
            with self.assertLogs("blogstack.services.store", level="WARNING"):
                self.assertFalse(decrement(user["userId"]))
        fresh = store.get_user_by_id(user["userId"])
        for counter in store.USER_COUNTERS:
            self.assertEqual(fresh[counter], 0)

    def test_friends_count_is_not_a_free_counter(self):
        user = self.make_user("alice")
        with self.assertRaises(ValueError):
            store.increment_user_counter(user["userId"], "friendsCount")
        with self.assertRaises(ValueError):
            store.decrement_user_counter(user["userId"], "friendsCount")
        self.assertFalse(hasattr(store, "increment_user_friends_count"))

    def test_decrement_above_zero(self):
        user = self.make_user("alice")
        store.increment_user_comments_count(user["userId"])
        self.assertTrue(store.decrement_user_comments_count(user["userId"]))
        self.assertEqual(store.get_user_by_id(user["userId"])["commentsCount"], 0)

    def test_other_store_errors_propagate(self):
        user = self.make_user("alice")
        self.table.fail_next("update_item", user["PK"])
        with self.assertRaises(Exception) as ctx:
            store.decrement_user_post_count(user["userId"])
        self.assertEqual(ctx.exception.response["Error"]["Code"], "InternalServerError")

    def test_unknown_counter_rejected(self):
        with self.assertRaises(ValueError):
            store.increment_user_counter("1", "karma")


class TestPostsAndLikes(FakeTableCase):
    def setUp(self):
        super().setUp()
        self.alice = self.make_user("alice")
        self.bob = self.make_user("bob")
        self.carol = self.make_user("carol")
        self.post = self.make_post(self.alice, "100", "2024-01-01T00:00:00")

    def test_create_post_projections(self):
        self.assertEqual(self.post["PK"], "POST#100")
        self.assertEqual(self.post["GSI1PK"], f"AUTHOR#{self.alice['userId']}")
        self.assertEqual(self.post["GSI2PK"], "ALL_POSTS")
        self.assertEqual(self.post["version"], 1)

    def test_like_increments_once(self):
        first = store.like_post("100", self.bob["userId"])
        self.assertEqual(first["likesCount"], 1)
        self.assertTrue(first["changed"])
        again = store.like_post("100", self.bob["userId"])
        self.assertEqual(again["likesCount"], 1)
        self.assertFalse(again["changed"])
        post = store.get_post("100")
        self.assertEqual(post["likedBy"], [self.bob["userId"]])
        self.assertTrue(store.is_post_liked_by("100", int(self.bob["userId"])))

    def test_unlike_not_liked_is_noop(self):
        result = store.unlike_post("100", self.bob["userId"])
        self.assertFalse(result["changed"])
        self.assertEqual(result["likesCount"], 0)
        self.assertEqual(store.get_post("100")["version"], 1)

    def test_unlike_removes_liker(self):
        store.like_post("100", self.bob["userId"])
        result = store.unlike_post("100", self.bob["userId"])
        self.assertTrue(result["changed"])
        self.assertEqual(result["likesCount"], 0)
        self.assertFalse(store.is_post_liked_by("100", self.bob["userId"]))

    def test_like_missing_post_is_404(self):
        with self.assertRaises(HTTPException) as ctx:
            store.like_post("404", self.bob["userId"])
        self.assertEqual(ctx.exception.status_code, 404)

    def test_interleaved_likes_are_both_recorded(self):
        # Bob reads the post, Carol likes it before Bob writes back.
        # Bob's stale write must fail its version check and be retried.
        def carol_likes(_):
            store.like_post("100", self.carol["userId"])

        self.table.after_get = carol_likes
        store.like_post("100", self.bob["userId"])

        post = store.get_post("100")
        self.assertEqual(sorted(post["likedBy"]), sorted([self.bob["userId"], self.carol["userId"]]))
        self.assertEqual(post["likesCount"], 2)
        self.assertEqual(post["likesCount"], len(post["likedBy"]))
        self.assertEqual(self.table.conditional_failures, 1)

    def test_persistent_conflict_raises_409(self):
        conflict = client_error("ConditionalCheckFailedException", "The conditional request failed")
        with patch.object(self.table, "update_item", side_effect=conflict) as update_mock:
            with self.assertRaises(HTTPException) as ctx:
                store.like_post("100", self.bob["userId"])
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(update_mock.call_count, store.S.version_retry_attempts)

    def test_posts_by_author_newest_first(self):
        self.make_post(self.alice, "101", "2024-02-01T00:00:00")
        self.make_post(self.bob, "102", "2024-03-01T00:00:00")
        ids = [p["postId"] for p in store.list_posts_by_author(self.alice["userId"])]
        self.assertEqual(ids, ["101", "100"])

    def test_feed_pages_with_cursor(self):
        self.make_post(self.alice, "101", "2024-02-01T00:00:00")
        self.make_post(self.bob, "102", "2024-03-01T00:00:00")
        page1, cursor = store.list_all_posts(limit=2)
        self.assertEqual([p["postId"] for p in page1], ["102", "101"])
        self.assertIsNotNone(cursor)
        page2, cursor2 = store.list_all_posts(limit=2, cursor=cursor)
        self.assertEqual([p["postId"] for p in page2], ["100"])
        self.assertIsNone(cursor2)

    def test_delete_post(self):
        deleted = store.delete_post("100")
        self.assertEqual(deleted["postId"], "100")
        self.assertIsNone(store.get_post("100"))
        self.assertIsNone(store.delete_post("100"))


class TestComments(FakeTableCase):
    def setUp(self):
        super().setUp()
        self.alice = self.make_user("alice")
        self.bob = self.make_user("bob")
        self.make_post(self.alice, "100", "2024-01-01T00:00:00")

    def test_create_and_list_comments(self):
        result = store.create_comment("100", self.bob["userId"], self.bob, "nice")
        self.assertEqual(result["commentsCount"], 1)
        self.assertEqual(result["comment"]["authorUsername"], "bob")
        comments = store.list_comments("100")
        self.assertEqual([c["content"] for c in comments], ["nice"])

    def test_list_comments_of_missing_post(self):
        self.assertEqual(store.list_comments("404"), [])

    def test_delete_comment_checks_author(self):
        comment = store.create_comment("100", self.bob["userId"], self.bob, "nice")["comment"]
        with self.assertRaises(HTTPException) as ctx:
            store.delete_comment("100", comment["commentId"], self.alice["userId"])
        self.assertEqual(ctx.exception.status_code, 403)

        result = store.delete_comment("100", comment["commentId"], self.bob["userId"])
        self.assertEqual(result["commentsCount"], 0)
        self.assertEqual(store.list_comments("100"), [])

    def test_delete_missing_comment_is_404(self):
        with self.assertRaises(HTTPException) as ctx:
            store.delete_comment("100", "nope", self.bob["userId"])
        self.assertEqual(ctx.exception.status_code, 404)


class TestFriends(FakeTableCase):
    def setUp(self):
        super().setUp()
        self.alice = self.make_user("alice")
        self.bob = self.make_user("bob")

    def test_add_friend_once(self):
        self.assertTrue(store.add_friend(self.alice["userId"], self.bob["userId"]))
        self.assertFalse(store.add_friend(self.alice["userId"], self.bob["userId"]))
        user = store.get_user_by_id(self.alice["userId"])
        self.assertEqual(user["friends"], [self.bob["userId"]])
        self.assertEqual(user["friendsCount"], 1)
        self.assertTrue(store.is_friend(self.alice["userId"], self.bob["userId"]))
        self.assertFalse(store.is_friend(self.bob["userId"], self.alice["userId"]))

    def test_cannot_befriend_self(self):
        self.assertFalse(store.add_friend(self.alice["userId"], self.alice["userId"]))

    def test_remove_friend(self):
        self.assertFalse(store.remove_friend(self.alice["userId"], self.bob["userId"]))
        store.add_friend(self.alice["userId"], self.bob["userId"])
        self.assertTrue(store.remove_friend(self.alice["userId"], self.bob["userId"]))
        self.assertEqual(store.get_user_by_id(self.alice["userId"])["friendsCount"], 0)

    def test_list_friends_returns_public_fields(self):
        store.add_friend(self.alice["userId"], self.bob["userId"])
        friends = store.list_friends(self.alice["userId"])
        self.assertEqual(len(friends), 1)
        self.assertEqual(friends[0]["username"], "bob")
        self.assertNotIn("passwordHash", friends[0])
        self.assertNotIn("email", friends[0])

    def test_add_friend_to_missing_owner(self):
        self.assertFalse(store.add_friend("404", self.bob["userId"]))


class TestIndexFallback(FakeTableCase):
    missing_indexes = {"GSI1", "GSI2"}

    def test_username_lookup_scans_when_index_missing(self):
        user = self.make_user("alice")
        with self.assertLogs("blogstack.services.store", level="WARNING"):
            found = store.get_user_by_username("alice")
        self.assertEqual(found["userId"], user["userId"])
        self.assertEqual(self.indexes.status("GSI1").value, "missing")

    def test_known_missing_index_skips_query(self):
        self.make_user("alice")
        store.get_user_by_email("alice@example.com")
        self.table.calls.clear()
        store.get_user_by_email("alice@example.com")
        self.assertNotIn("query:GSI2", self.table.calls)
        self.assertIn("scan", self.table.calls)

    def test_feed_fallback_is_sorted_without_cursor(self):
        alice = self.make_user("alice")
        self.make_post(alice, "1", "2024-01-01T00:00:00")
        self.make_post(alice, "2", "2024-03-01T00:00:00")
        self.make_post(alice, "3", "2024-02-01T00:00:00")
        posts, cursor = store.list_all_posts(limit=2)
        self.assertEqual([p["postId"] for p in posts], ["2", "3"])
        self.assertIsNone(cursor)
        by_author = store.list_posts_by_author(alice["userId"])
        self.assertEqual([p["postId"] for p in by_author], ["2", "3", "1"])


class TestBackfillingIndexFallback(FakeTableCase):
    def test_lookup_scans_while_index_backfills(self):
        user = self.make_user("alice")
        self.table.backfilling_indexes = {"GSI1"}
        with self.assertLogs("blogstack.services.store", level="WARNING"):
            found = store.get_user_by_username("alice")
        self.assertEqual(found["userId"], user["userId"])
        self.assertEqual(self.indexes.status("GSI1").value, "creating")

    def test_feed_page_scans_while_index_backfills(self):
        alice = self.make_user("alice")
        self.make_post(alice, "1", "2024-01-01T00:00:00")
        self.make_post(alice, "2", "2024-02-01T00:00:00")
        self.table.backfilling_indexes = {"GSI2"}
        posts, cursor = store.list_all_posts(limit=1)
        self.assertEqual([p["postId"] for p in posts], ["2"])
        self.assertIsNone(cursor)
        self.assertEqual(self.indexes.status("GSI2").value, "creating")

    def test_unrelated_validation_error_still_raises(self):
        with patch.object(self.table, "query", side_effect=client_error("ValidationException", "bad key")):
            with self.assertRaises(ClientError):
                store.get_user_by_username("alice")


if __name__ == "__main__":
    unittest.main()

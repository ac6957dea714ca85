"""Tests for the post service."""

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from blogcore.errors import InvalidReferenceError, NotFoundError, ValidationError
from blogcore.services.categories import CategoryService
from blogcore.services.comments import CommentThreadBuilder
from blogcore.services.posts import PostService


@pytest.fixture
def categories(store):
    return CategoryService(store)


@pytest.fixture
def posts(store, joins, categories):
    return PostService(store, joins, categories, CommentThreadBuilder(store, joins))


def post_data(author, **overrides):
    data = {
        "title": "A post about queries",
        "content": "Some words about databases and queries.",
        "author": author,
        "categories": ["Database"],
    }
    data.update(overrides)
    return data


class TestWrites:
    @pytest.mark.asyncio
    async def test_create_requires_existing_author(self, posts):
        with pytest.raises(NotFoundError):
            await posts.create_post(post_data(ObjectId()))

    @pytest.mark.asyncio
    async def test_create_update_delete_keep_category_counts(self, posts, store, make_user):
        author = await make_user()
        await store.categories.create({"name": "Database", "color": "#000000"})
        await store.categories.create({"name": "Travel", "color": "#ffffff"})

        async def counts():
            return {c["name"]: c["postCount"] for c in await store.categories.find({})}

        post = await posts.create_post(post_data(str(author["_id"])))
        assert await counts() == {"Database": 1, "Travel": 0}

        await posts.update_post(post["_id"], {"categories": ["Travel"]})
        assert await counts() == {"Database": 0, "Travel": 1}

        await posts.delete_post(post["_id"])
        assert await counts() == {"Database": 0, "Travel": 0}

    @pytest.mark.asyncio
    async def test_update_missing_post(self, posts):
        with pytest.raises(NotFoundError):
            await posts.update_post(ObjectId(), {"title": "x"})

    @pytest.mark.asyncio
    async def test_publish_then_archive(self, posts, make_user, make_post):
        author = await make_user()
        post = await make_post(author["_id"])
        published = await posts.publish_post(post["_id"])
        assert published["status"] == "published"
        assert published["publishedAt"] is not None

        archived = await posts.archive_post(post["_id"])
        assert archived["status"] == "archived"
        with pytest.raises(ValidationError):
            await posts.publish_post(post["_id"])

    @pytest.mark.asyncio
    async def test_like_and_unlike(self, posts, store, make_user, make_post):
        author = await make_user()
        fan = await make_user()
        post = await make_post(author["_id"])
        await posts.like_post(post["_id"], fan["_id"])
        await posts.like_post(post["_id"], fan["_id"])
        assert (await store.posts.find_by_id(post["_id"]))["likesCount"] == 1
        await posts.unlike_post(post["_id"], fan["_id"])
        assert (await store.posts.find_by_id(post["_id"]))["likesCount"] == 0

    @pytest.mark.asyncio
    async def test_like_missing_post(self, posts):
        with pytest.raises(NotFoundError):
            await posts.like_post(ObjectId(), ObjectId())


class TestGetPostBySlug:
    @pytest.mark.asyncio
    async def test_resolves_author_and_counts_view(self, posts, store, make_user, make_post):
        author = await make_user()
        post = await make_post(author["_id"], title="Hello World", status="published")

        found = await posts.get_post_by_slug("hello-world")
        assert found["author"]["username"] == author["username"]
        assert "email" not in found["author"]
        assert found["views"] == 0
        assert (await store.posts.find_by_id(post["_id"]))["views"] == 1

    @pytest.mark.asyncio
    async def test_drafts_are_not_found(self, posts, store, make_user, make_post):
        author = await make_user()
        post = await make_post(author["_id"], title="Hidden")
        assert await posts.get_post_by_slug("hidden") is None
        assert (await store.posts.find_by_id(post["_id"]))["views"] == 0

    @pytest.mark.asyncio
    async def test_inactive_author_is_hidden(self, posts, store, make_user, make_post):
        author = await make_user()
        await make_post(author["_id"], title="Orphan", status="published")
        await store.users.soft_delete(author["_id"])
        found = await posts.get_post_by_slug("orphan")
        assert found["author"] is None

    @pytest.mark.asyncio
    async def test_like_preview_is_capped(self, posts, make_user, make_post):
        author = await make_user()
        post = await make_post(author["_id"], title="Liked", status="published")
        for _ in range(12):
            fan = await make_user()
            await posts.like_post(post["_id"], fan["_id"])

        found = await posts.get_post_by_slug("liked")
        assert len(found["likes"]) == 10
        assert found["likesCount"] == 12
        assert set(found["likes"][0]) == {"_id", "username"}


class TestGetPostWithComments:
    @pytest.mark.asyncio
    async def test_post_with_threads(self, posts, make_user, make_post, insert_comment):
        author = await make_user()
        post = await make_post(author["_id"])
        when = datetime(2026, 1, 1, tzinfo=timezone.utc)
        top = await insert_comment(post["_id"], author["_id"], when)
        await insert_comment(post["_id"], author["_id"], when + timedelta(minutes=1), parent=top)

        found, threads = await posts.get_post_with_comments(str(post["_id"]))
        assert found["author"]["username"] == author["username"]
        assert [t["_id"] for t in threads] == [top]
        assert len(threads[0]["replies"]) == 1

    @pytest.mark.asyncio
    async def test_missing_post(self, posts):
        assert await posts.get_post_with_comments(ObjectId()) == (None, [])

    @pytest.mark.asyncio
    async def test_malformed_id(self, posts):
        with pytest.raises(InvalidReferenceError):
            await posts.get_post_with_comments("nope")


class TestGetPostsByCategory:
    @pytest.mark.asyncio
    async def test_paginates_published_posts_without_content(self, posts, make_user, make_post):
        author = await make_user()
        for _ in range(5):
            await make_post(author["_id"], status="published", categories=["Database"])
        await make_post(author["_id"], categories=["Database"])
        await make_post(author["_id"], status="published", categories=["Travel"])

        page = await posts.get_posts_by_category("Database", page=2, limit=2)
        assert page.total_count == 5
        assert page.total_pages == 3
        assert page.current_page == 2
        assert len(page.items) == 2
        assert all("content" not in p for p in page.items)
        assert page.items[0]["author"]["username"] == author["username"]

    @pytest.mark.asyncio
    async def test_future_publication_is_excluded(self, posts, make_user, make_post):
        author = await make_user()
        await make_post(
            author["_id"],
            status="published",
            publishedAt=datetime.now(timezone.utc) + timedelta(days=1),
        )
        page = await posts.get_posts_by_category("Technology")
        assert page.total_count == 0
        assert page.items == []

    @pytest.mark.asyncio
    async def test_sort_by_likes(self, posts, make_user, make_post):
        author = await make_user()
        fans = [await make_user() for _ in range(3)]
        few = await make_post(author["_id"], status="published")
        many = await make_post(author["_id"], status="published")
        await posts.like_post(few["_id"], fans[0]["_id"])
        for fan in fans:
            await posts.like_post(many["_id"], fan["_id"])

        desc = await posts.get_posts_by_category("Technology", sort_by="likes")
        asc = await posts.get_posts_by_category("Technology", sort_by="likes", sort_order="asc")
        assert [p["_id"] for p in desc.items] == [many["_id"], few["_id"]]
        assert [p["_id"] for p in asc.items] == [few["_id"], many["_id"]]
        assert desc.items[0]["likesCount"] == 3

    @pytest.mark.asyncio
    async def test_sort_by_views(self, posts, make_user, make_post):
        author = await make_user()
        a = await make_post(author["_id"], status="published")
        b = await make_post(author["_id"], status="published")
        await posts.increment_views(a["_id"])
        page = await posts.get_posts_by_category("Technology", sort_by="views")
        assert [p["_id"] for p in page.items] == [a["_id"], b["_id"]]

    @pytest.mark.asyncio
    async def test_rejects_unknown_sort(self, posts):
        with pytest.raises(ValidationError) as exc:
            await posts.get_posts_by_category("Technology", sort_by="title", page=0)
        assert set(exc.value.errors) == {"sortBy", "page"}

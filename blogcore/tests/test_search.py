"""Tests for the search engine."""

from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError as PydanticValidationError

from blogcore.services.search import DateRange, SearchCriteria, SearchEngine


def day(n: int) -> datetime:
    return datetime(2026, 1, n, tzinfo=timezone.utc)


@pytest.fixture
def engine(store, joins):
    return SearchEngine(store, joins)


@pytest.fixture
def publish(make_post):
    """Create a published post with a fixed publication date."""

    async def _publish(author, published_on=1, **overrides):
        return await make_post(
            author, status="published", publishedAt=day(published_on), **overrides
        )

    return _publish


class TestSearchPosts:
    """Tests for SearchEngine.search_posts()."""

    @pytest.mark.asyncio
    async def test_category_filter_excludes_drafts(self, engine, make_user, make_post, publish):
        author = await make_user()
        db_post = await publish(author["_id"], categories=["Database", "Technology"])
        await publish(author["_id"], categories=["Travel"])
        await make_post(author["_id"], categories=["Database"])

        results = await engine.search_posts(SearchCriteria(categories=["Database"]))
        assert [p["_id"] for p in results] == [db_post["_id"]]

    @pytest.mark.asyncio
    async def test_results_exclude_content_and_resolve_author(self, engine, make_user, publish):
        author = await make_user()
        await publish(author["_id"])
        [result] = await engine.search_posts(SearchCriteria())
        assert "content" not in result
        assert result["author"] == {
            "_id": author["_id"],
            "username": author["username"],
            "firstName": author["firstName"],
            "lastName": author["lastName"],
        }

    @pytest.mark.asyncio
    async def test_text_ranks_title_matches_first(self, engine, make_user, publish):
        author = await make_user()
        body_hit = await publish(
            author["_id"], published_on=5, title="Weekly notes", content="we tried mongodb"
        )
        title_hit = await publish(
            author["_id"], published_on=1, title="MongoDB aggregation", content="pipelines"
        )
        await publish(author["_id"], title="Unrelated", content="gardening tips")

        results = await engine.search_posts(SearchCriteria(text="mongodb"))
        assert [p["_id"] for p in results] == [title_hit["_id"], body_hit["_id"]]
        assert results[0]["score"] > results[1]["score"]

    @pytest.mark.asyncio
    async def test_without_text_newest_first(self, engine, make_user, publish):
        author = await make_user()
        old = await publish(author["_id"], published_on=1)
        new = await publish(author["_id"], published_on=9)
        results = await engine.search_posts(SearchCriteria())
        assert [p["_id"] for p in results] == [new["_id"], old["_id"]]

    @pytest.mark.asyncio
    async def test_author_name_without_match_is_empty(self, engine, make_user, publish):
        author = await make_user()
        await publish(author["_id"])
        assert await engine.search_posts(SearchCriteria(author="nobody")) == []

    @pytest.mark.asyncio
    async def test_author_name_is_case_insensitive_substring(self, engine, make_user, publish):
        ada = await make_user(firstName="Ada", lastName="Lovelace")
        other = await make_user(firstName="Grace", lastName="Hopper")
        mine = await publish(ada["_id"])
        await publish(other["_id"])
        results = await engine.search_posts(SearchCriteria(author="LOVE"))
        assert [p["_id"] for p in results] == [mine["_id"]]

    @pytest.mark.asyncio
    async def test_author_name_is_not_a_pattern(self, engine, make_user, publish):
        author = await make_user()
        await publish(author["_id"])
        assert await engine.search_posts(SearchCriteria(author=".*")) == []

    @pytest.mark.asyncio
    async def test_tags_views_and_dates(self, engine, make_user, publish):
        author = await make_user()
        hit = await publish(author["_id"], published_on=5, tags=["python"])
        await publish(author["_id"], published_on=5, tags=["rust"])
        await publish(author["_id"], published_on=20, tags=["python"])
        await engine._store.db.update_one("posts", {"_id": hit["_id"]}, {"$set": {"views": 3}})

        results = await engine.search_posts(
            SearchCriteria(
                tags=["python"],
                min_views=3,
                date_range=DateRange(start=day(1), end=day(10)),
            )
        )
        assert [p["_id"] for p in results] == [hit["_id"]]

    @pytest.mark.asyncio
    async def test_min_views_zero_is_applied(self, engine, make_user, publish):
        author = await make_user()
        await publish(author["_id"])
        assert len(await engine.search_posts(SearchCriteria(min_views=0))) == 1

    @pytest.mark.asyncio
    async def test_has_image(self, engine, make_user, publish):
        author = await make_user()
        with_image = await publish(author["_id"], featuredImage="https://example.com/cover.JPG")
        without = await publish(author["_id"])

        yes = await engine.search_posts(SearchCriteria(has_image=True))
        no = await engine.search_posts(SearchCriteria(has_image=False))
        assert [p["_id"] for p in yes] == [with_image["_id"]]
        assert [p["_id"] for p in no] == [without["_id"]]

    @pytest.mark.asyncio
    async def test_capped_at_fifty(self, engine, make_user, publish):
        author = await make_user()
        for _ in range(55):
            await publish(author["_id"])
        assert len(await engine.search_posts(SearchCriteria())) == 50

    def test_date_range_must_be_ordered(self):
        with pytest.raises(PydanticValidationError):
            DateRange(start=day(5), end=day(1))


class TestSimilarPosts:
    """Tests for SearchEngine.find_similar_posts()."""

    @pytest.mark.asyncio
    async def test_shares_category_or_tag_and_excludes_source(self, engine, make_user, make_post, publish):
        author = await make_user()
        source = await publish(author["_id"], categories=["Database"], tags=["mongo"])
        by_category = await publish(author["_id"], published_on=3, categories=["Database"])
        by_tag = await publish(author["_id"], published_on=2, categories=["Other"], tags=["mongo"])
        await publish(author["_id"], categories=["Travel"])
        await make_post(author["_id"], categories=["Database"])

        results = await engine.find_similar_posts(source["_id"])
        assert [p["_id"] for p in results] == [by_category["_id"], by_tag["_id"]]
        assert results[0]["author"]["username"] == author["username"]

    @pytest.mark.asyncio
    async def test_limit(self, engine, make_user, publish):
        author = await make_user()
        source = await publish(author["_id"])
        for _ in range(4):
            await publish(author["_id"])
        assert len(await engine.find_similar_posts(source["_id"], limit=2)) == 2

    @pytest.mark.asyncio
    async def test_missing_source(self, engine):
        assert await engine.find_similar_posts(ObjectId()) == []


class TestPostsWithApprovedComments:
    """Tests for SearchEngine.find_posts_with_approved_comments()."""

    @pytest.mark.asyncio
    async def test_only_published_posts_with_approved_comments(
        self, engine, make_user, make_post, publish, insert_comment
    ):
        author = await make_user()
        approved = await publish(author["_id"], published_on=2)
        pending = await publish(author["_id"], published_on=3)
        draft = await make_post(author["_id"])
        await insert_comment(approved["_id"], author["_id"], day(4))
        await insert_comment(pending["_id"], author["_id"], day(4), approved=False)
        await insert_comment(draft["_id"], author["_id"], day(4))

        results = await engine.find_posts_with_approved_comments()
        assert [p["_id"] for p in results] == [approved["_id"]]
        assert set(results[0]) == {"_id", "title", "slug", "author", "publishedAt", "views"}

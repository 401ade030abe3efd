"""Tests for webhook verification and push reconciliation."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from content_mirror.identity import StoreIdentityResolver
from content_mirror.sync.pipeline import ImportPipeline
from content_mirror.sync.reconciler import (
    WebhookReconciler,
    collect_changes,
    verify_signature,
)
from content_mirror.upstream import SourceClientPool

from conftest import SECRET, delivery, make_post, push_payload, sign


@pytest.fixture
def resolver(store):
    resolver = StoreIdentityResolver(store)
    resolver.link_owner("1001", "alice", "token-alice")
    return resolver


@pytest.fixture
def pool(blog_repository):
    pool = SourceClientPool(lambda credential: pytest.fail(f"unexpected credential {credential}"))
    pool.register("token-alice", blog_repository)
    return pool


@pytest.fixture
def reconciler(mapper, resolver, pool):
    return WebhookReconciler(
        secret=SECRET,
        resolver=resolver,
        mapper=mapper,
        pipeline=ImportPipeline(mapper),
        client_pool=pool,
    )


@pytest_asyncio.fixture
async def imported(mapper, repo, blog_repository):
    await ImportPipeline(mapper).import_all("alice", repo, blog_repository)
    blog_repository.calls.clear()


class TestVerifySignature:
    """Test cases for verify_signature."""

    def test_known_signature(self):
        body = b"Hello, World!"
        signature = "sha256=757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17"

        assert verify_signature(SECRET, body, signature)

    def test_mismatch(self):
        assert not verify_signature(SECRET, b"Hello, World!", sign(b"Hello, World!", "other"))
        assert not verify_signature(SECRET, b"Hello, World!", "sha256=deadbeef")

    def test_non_ascii_signature(self):
        assert not verify_signature(SECRET, b"Hello, World!", "sha256=éé")


class TestCollectChanges:
    """Test cases for collect_changes."""

    def test_dedupes_across_commits(self):
        changed, removed = collect_changes([
            {"added": ["a.md"], "modified": ["b.md"], "removed": ["c.md"]},
            {"added": [], "modified": ["a.md", "b.md"], "removed": ["c.md", "d.md"]},
        ])

        assert changed == ["a.md", "b.md"]
        assert removed == ["c.md", "d.md"]

    def test_later_commit_wins(self):
        changed, removed = collect_changes([
            {"added": ["a.md"], "removed": ["b.md"]},
            {"added": ["b.md"], "removed": ["a.md"]},
        ])

        assert changed == ["b.md"]
        assert removed == ["a.md"]

    def test_missing_lists(self):
        assert collect_changes([{}]) == ([], [])


class TestVerification:
    """Test cases for transport-level checks."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "missing", ["X-Hub-Signature-256", "X-GitHub-Event", "X-GitHub-Delivery"]
    )
    async def test_missing_header(self, reconciler, missing):
        body, headers = delivery(push_payload())
        del headers[missing]

        response = await reconciler.handle(body, headers)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_bad_signature_processes_nothing(self):
        mapper = MagicMock()
        resolver = MagicMock()
        pipeline = MagicMock()
        reconciler = WebhookReconciler(SECRET, resolver, mapper, pipeline, MagicMock())
        body, headers = delivery(push_payload(), secret="wrong secret")

        response = await reconciler.handle(body, headers)

        assert response.status_code == 401
        assert mapper.mock_calls == []
        assert resolver.mock_calls == []
        assert pipeline.mock_calls == []

    @pytest.mark.asyncio
    async def test_non_ascii_signature_rejected(self, reconciler, mapper):
        body, headers = delivery(push_payload(), signature="sha256=éé")

        response = await reconciler.handle(body, headers)

        assert response.status_code == 401
        assert mapper.list_posts("alice") == []

    @pytest.mark.asyncio
    async def test_unconfigured_secret(self, mapper, resolver, pool):
        reconciler = WebhookReconciler("", resolver, mapper, ImportPipeline(mapper), pool)
        body, headers = delivery(push_payload())

        response = await reconciler.handle(body, headers)

        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_invalid_json(self, reconciler):
        body = b"not json"
        headers = {
            "x-hub-signature-256": sign(body),
            "x-github-event": "push",
            "x-github-delivery": "1",
        }

        response = await reconciler.handle(body, headers)

        assert response.status_code == 400


class TestDispatch:
    """Test cases for event dispatch."""

    @pytest.mark.asyncio
    async def test_ping(self, reconciler):
        body, headers = delivery({"zen": "Keep it logically awesome."}, event="ping")

        response = await reconciler.handle(body, headers)

        assert response.status_code == 200
        assert response.body["status"] == "pong"

    @pytest.mark.asyncio
    async def test_unknown_event(self, reconciler):
        body, headers = delivery({"action": "opened"}, event="pull_request")

        response = await reconciler.handle(body, headers)

        assert response.status_code == 200
        assert response.body["status"] == "ignored"

    @pytest.mark.asyncio
    async def test_installation(self, reconciler, mapper):
        payload = {
            "action": "created",
            "installation": {"id": 77, "account": {"login": "octo"}},
        }
        body, headers = delivery(payload, event="installation")

        response = await reconciler.handle(body, headers)

        assert response.status_code == 200
        assert mapper.get_installation("77")["status"] == "created"

    @pytest.mark.asyncio
    async def test_handler_failure_still_acknowledged(self, mapper, resolver, pool, imported):
        pipeline = MagicMock()
        pipeline.sync_files = AsyncMock(side_effect=RuntimeError("boom"))
        reconciler = WebhookReconciler(SECRET, resolver, mapper, pipeline, pool)
        body, headers = delivery(
            push_payload(commits=[{"modified": ["src/content/blog/first.md"]}])
        )

        response = await reconciler.handle(body, headers)

        assert response.status_code == 200
        assert response.body["status"] == "error"


class TestPush:
    """Test cases for push reconciliation."""

    @pytest.mark.asyncio
    async def test_non_default_branch_touches_nothing(self):
        mapper = MagicMock()
        resolver = MagicMock()
        pipeline = MagicMock()
        reconciler = WebhookReconciler(SECRET, resolver, mapper, pipeline, MagicMock())
        body, headers = delivery(
            push_payload(
                ref="refs/heads/feature",
                commits=[{"modified": ["src/content/blog/first.md"], "removed": ["x.md"]}],
            )
        )

        response = await reconciler.handle(body, headers)

        assert response.status_code == 200
        assert response.body["status"] == "ignored"
        assert mapper.mock_calls == []
        assert resolver.mock_calls == []
        assert pipeline.mock_calls == []

    @pytest.mark.asyncio
    async def test_unmapped_owner(self, reconciler, mapper, blog_repository, imported):
        body, headers = delivery(
            push_payload(owner_id=999, commits=[{"modified": ["src/content/blog/first.md"]}])
        )

        response = await reconciler.handle(body, headers)

        assert response.status_code == 200
        assert response.body["reason"] == "unmapped owner"
        assert blog_repository.calls == []

    @pytest.mark.asyncio
    async def test_project_not_imported(self, reconciler, mapper, blog_repository):
        body, headers = delivery(
            push_payload(commits=[{"modified": ["src/content/blog/first.md"]}])
        )

        response = await reconciler.handle(body, headers)

        assert response.status_code == 200
        assert response.body["reason"] == "unknown project"
        assert mapper.list_posts("alice") == []

    @pytest.mark.asyncio
    async def test_reconciles_changes(self, reconciler, mapper, blog_repository, imported):
        blog_repository.set_file("src/content/blog/first.md", make_post(title="First v2"))
        blog_repository.set_file("src/content/blog/fourth.md", make_post(title="Fourth"))
        blog_repository.remove_file("src/content/blog/second.md")
        body, headers = delivery(
            push_payload(
                commits=[
                    {"added": ["src/content/blog/fourth.md"], "modified": ["README.md"]},
                    {
                        "modified": ["src/content/blog/first.md"],
                        "removed": ["src/content/blog/second.md"],
                    },
                ]
            )
        )

        response = await reconciler.handle(body, headers)

        assert response.status_code == 200
        assert response.body["synced"] == 2
        assert response.body["deleted"] == 1
        posts = {doc.file_path: doc for doc in mapper.list_posts("alice", "octo/site")}
        assert set(posts) == {"src/content/blog/first.md", "src/content/blog/fourth.md"}
        assert posts["src/content/blog/first.md"].metadata["title"] == "First v2"
        assert mapper.get_project("alice", "octo/site").posts_count == 2

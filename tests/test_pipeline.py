"""Tests for the import pipeline."""

import pytest

from content_mirror.db import SyncStatus
from content_mirror.errors import EnumerationError
from content_mirror.sync.pipeline import ImportPipeline, ProgressStep

from conftest import BLOG_CONFIG, FakeSourceRepository, make_post


@pytest.fixture
def pipeline(mapper):
    return ImportPipeline(mapper, fetch_concurrency=4, timeout=10.0)


def _many_posts(count):
    files = {"src/content/config.ts": BLOG_CONFIG}
    for i in range(count):
        files[f"src/content/blog/post-{i:02d}.md"] = make_post(title=f"Post {i}")
    return files


class TestImportAll:
    """Test cases for ImportPipeline.import_all."""

    @pytest.mark.asyncio
    async def test_example_scenario(self, pipeline, mapper, repo):
        """One valid and one untitled post: one imported, one error."""
        client = FakeSourceRepository(
            files={
                "src/content/config.ts": BLOG_CONFIG,
                "src/content/blog/hello.md": make_post(title="Hello", tags=["intro"]),
                "src/content/blog/untitled.md": make_post(tags=["draft"]),
            }
        )

        summary = await pipeline.import_all("alice", repo, client)

        assert summary.imported_count == 1
        assert summary.total_count == 2
        assert summary.errors == [
            "Invalid metadata in src/content/blog/untitled.md: missing required field: title"
        ]
        [post] = mapper.list_posts("alice", "octo/site")
        assert post.file_path == "src/content/blog/hello.md"
        assert post.collection_name == "blog"
        assert post.metadata == {"title": "Hello", "tags": ["intro"]}
        assert post.sync_status == SyncStatus.SYNCED
        assert post.source_revision == client.revisions["src/content/blog/hello.md"]

    @pytest.mark.asyncio
    async def test_writes_schemas_and_project(self, pipeline, mapper, repo, blog_repository):
        summary = await pipeline.import_all(
            "alice", repo, blog_repository, name="My site", description="Posts"
        )

        project = mapper.get_project("alice", "octo/site")
        assert project.name == "My site"
        assert project.description == "Posts"
        assert project.posts_count == summary.imported_count == 2
        assert project.last_sync is not None
        [schema] = mapper.list_schemas("alice", "octo/site")
        assert schema.collection_name == "blog"
        assert schema.fields["title"] == {"type": "string", "optional": False}

    @pytest.mark.asyncio
    async def test_idempotent(self, pipeline, mapper, repo, blog_repository):
        """Importing twice without changes yields the same documents."""
        await pipeline.import_all("alice", repo, blog_repository)
        first = {doc.file_path: doc for doc in mapper.list_posts("alice", "octo/site")}

        await pipeline.import_all("alice", repo, blog_repository)
        second = {doc.file_path: doc for doc in mapper.list_posts("alice", "octo/site")}

        assert set(first) == set(second)
        for path, doc in first.items():
            assert second[path].id == doc.id
            assert second[path].created_at == doc.created_at
        assert mapper.get_project("alice", "octo/site").posts_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failing_index", [0, 2, 4])
    async def test_partial_failure_isolated(self, pipeline, mapper, repo, failing_index):
        """An unfetchable file never prevents the others from being stored."""
        files = _many_posts(5)
        failing = f"src/content/blog/post-{failing_index:02d}.md"
        client = FakeSourceRepository(files=files, fail_paths={failing})

        summary = await pipeline.import_all("alice", repo, client)

        assert summary.imported_count == 4
        assert summary.total_count == 5
        assert len(summary.errors) == 1
        assert failing in summary.errors[0]
        stored = {doc.file_path for doc in mapper.list_posts("alice", "octo/site")}
        assert len(stored) == 4
        assert failing not in stored

    @pytest.mark.asyncio
    async def test_unparseable_front_matter(self, pipeline, mapper, repo):
        client = FakeSourceRepository(
            files={
                "src/content/config.ts": BLOG_CONFIG,
                "src/content/blog/bad.md": "---\ntitle: [unclosed\n---\nBody\n",
                "src/content/blog/good.md": make_post(title="Good"),
            }
        )

        summary = await pipeline.import_all("alice", repo, client)

        assert summary.imported_count == 1
        assert summary.errors[0].startswith("Could not parse src/content/blog/bad.md")

    @pytest.mark.asyncio
    async def test_date_keys_and_binary_values(self, pipeline, mapper, repo):
        """Date-keyed mappings are stored, binary values fail only their own file."""
        client = FakeSourceRepository(
            files={
                "src/content/config.ts": BLOG_CONFIG,
                "src/content/blog/good.md": make_post(title="Good"),
                "src/content/blog/changelog.md": (
                    "---\ntitle: Changelog\nhistory:\n  2024-01-01: launched\n---\nBody\n"
                ),
                "src/content/blog/blob.md": "---\ntitle: Blob\nraw: !!binary aGVsbG8=\n---\n",
            }
        )

        summary = await pipeline.import_all("alice", repo, client)

        assert summary.imported_count == 2
        assert summary.total_count == 3
        assert summary.errors == [
            "Invalid metadata in src/content/blog/blob.md: bytes values are not supported"
        ]
        changelog = mapper.get_post("alice", "octo/site", "src/content/blog/changelog.md")
        assert changelog.metadata["history"] == {"2024-01-01": "launched"}
        assert mapper.get_project("alice", "octo/site").posts_count == 2

    @pytest.mark.asyncio
    async def test_fetch_concurrency_is_bounded(self, mapper, repo):
        client = FakeSourceRepository(files=_many_posts(20), fetch_delay=0.01)
        pipeline = ImportPipeline(mapper, fetch_concurrency=3)

        summary = await pipeline.import_all("alice", repo, client)

        assert summary.imported_count == 20
        assert 1 <= client.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_default_schema_without_config(self, pipeline, mapper, repo):
        """Without a config file the default schema requires title and slug."""
        client = FakeSourceRepository(
            files={
                "src/content/blog/a.md": make_post(title="A", slug="a"),
                "src/content/blog/b.md": make_post(title="B"),
            }
        )

        summary = await pipeline.import_all("alice", repo, client)

        assert summary.imported_count == 1
        assert summary.errors == [
            "Invalid metadata in src/content/blog/b.md: missing required field: slug"
        ]

    @pytest.mark.asyncio
    async def test_collection_from_path(self, pipeline, mapper, repo):
        config = BLOG_CONFIG.replace(
            "export const collections = { blog };",
            "const notes = defineCollection({ schema: z.object({ topic: z.string() }) });",
        )
        client = FakeSourceRepository(
            files={
                "src/content/config.ts": config,
                "src/content/notes/n.md": make_post(topic="Python"),
                "src/content/misc/m.md": make_post(title="Falls back to blog"),
            }
        )

        summary = await pipeline.import_all("alice", repo, client)

        assert summary.errors == []
        collections = {
            doc.file_path: doc.collection_name for doc in mapper.list_posts("alice")
        }
        assert collections == {
            "src/content/notes/n.md": "notes",
            "src/content/misc/m.md": "misc",
        }

    @pytest.mark.asyncio
    async def test_no_content_files(self, pipeline, mapper, repo):
        client = FakeSourceRepository(files={"src/content/config.ts": BLOG_CONFIG})

        summary = await pipeline.import_all("alice", repo, client)

        assert summary.imported_count == 0
        assert summary.total_count == 0
        assert client.fetched() == ["src/content/config.ts"]

    @pytest.mark.asyncio
    async def test_enumeration_failure_is_fatal(self, pipeline, mapper, repo):
        client = FakeSourceRepository(files={"README.md": "# site"})

        with pytest.raises(EnumerationError):
            await pipeline.import_all("alice", repo, client)

        assert mapper.get_project("alice", "octo/site") is None
        assert mapper.list_posts("alice") == []

    @pytest.mark.asyncio
    async def test_timeout_keeps_partial_results(self, mapper, repo):
        """Files still pending at the deadline are reported; finished ones are saved."""
        files = _many_posts(3)
        hanging = "src/content/blog/post-01.md"
        client = FakeSourceRepository(files=files, hang_paths={hanging})
        pipeline = ImportPipeline(mapper, timeout=0.5)

        summary = await pipeline.import_all("alice", repo, client)

        assert summary.timed_out
        assert summary.imported_count == 2
        assert summary.total_count == 3
        assert summary.errors == [f"Timed out processing {hanging}"]
        assert mapper.count_posts("alice", "octo/site") == 2
        assert mapper.get_project("alice", "octo/site").posts_count == 2

    @pytest.mark.asyncio
    async def test_progress_sink(self, pipeline, repo, blog_repository):
        events = []

        await pipeline.import_all("alice", repo, blog_repository, progress=events.append)

        steps = [event.step for event in events]
        assert steps[0] == ProgressStep.CONFIG_PARSED
        assert steps[-1] == ProgressStep.COMPLETE


class TestStreamImport:
    """Test cases for ImportPipeline.stream_import."""

    @pytest.mark.asyncio
    async def test_event_order(self, pipeline, repo, blog_repository):
        events = [event async for event in pipeline.stream_import("alice", repo, blog_repository)]

        steps = [event.step for event in events]
        assert steps == [
            ProgressStep.CONFIG_PARSED,
            ProgressStep.FILES_LISTED,
            ProgressStep.FILE_PROCESSED,
            ProgressStep.FILE_PROCESSED,
            ProgressStep.FILE_PROCESSED,
            ProgressStep.SAVING,
            ProgressStep.COMPLETE,
        ]
        assert events[0].schemas_count == 1
        assert events[1].files_count == 3
        assert [event.completed for event in events[2:5]] == [1, 2, 3]
        assert all(event.total == 3 for event in events[2:5])
        complete = events[-1]
        assert complete.imported == 2
        assert complete.total == 3
        assert len(complete.errors) == 1

    @pytest.mark.asyncio
    async def test_enumeration_failure_event(self, pipeline, repo):
        client = FakeSourceRepository(files={"src/content/config.ts": BLOG_CONFIG}, fail_dirs={"src/content"})

        events = [event async for event in pipeline.stream_import("alice", repo, client)]

        assert [event.step for event in events] == [ProgressStep.CONFIG_PARSED, ProgressStep.ERROR]
        assert "src/content" in events[-1].message
        assert events[-1].to_dict()["step"] == "error"


class TestSyncFiles:
    """Test cases for ImportPipeline.sync_files."""

    @pytest.mark.asyncio
    async def test_resyncs_only_given_files(self, pipeline, mapper, repo, blog_repository):
        await pipeline.import_all("alice", repo, blog_repository)
        blog_repository.set_file("src/content/blog/first.md", make_post("Edited.", title="First v2"))
        blog_repository.set_file("src/content/blog/third.md", make_post(title="Third"))
        blog_repository.calls.clear()

        summary = await pipeline.sync_files(
            "alice",
            repo,
            blog_repository,
            ["src/content/blog/first.md", "src/content/blog/third.md", "README.md"],
        )

        assert summary.imported_count == 2
        assert summary.total_count == 2
        assert sorted(blog_repository.fetched()) == [
            "src/content/blog/first.md",
            "src/content/blog/third.md",
            "src/content/config.ts",
        ]
        first = mapper.get_post("alice", "octo/site", "src/content/blog/first.md")
        assert first.metadata["title"] == "First v2"
        assert first.body_text.strip() == "Edited."
        assert mapper.get_project("alice", "octo/site").posts_count == 3

    @pytest.mark.asyncio
    async def test_nothing_to_sync(self, pipeline, mapper, repo, blog_repository):
        summary = await pipeline.sync_files("alice", repo, blog_repository, ["package.json"])

        assert summary.total_count == 0
        assert blog_repository.calls == []

# tests/test_storage_keys.py
import storage_keys


def test_chapter_identity_combines_story_and_chapter():
    assert storage_keys.chapter_identity("s", "c") == "s::c"
    assert storage_keys.chapter_identity("s", "c") != storage_keys.chapter_identity("s", "d")


def test_local_keys_use_prefixes():
    assert storage_keys.story_state_key("s") == "story_state_s"
    assert storage_keys.read_chapters_key("s") == "readChapters_s"
    assert storage_keys.chapter_cache_key("s", "c").startswith("chapter_cache_s::")


def test_remote_collections():
    assert storage_keys.REMOTE_COLLECTIONS == {
        "story-history",
        "cumulative-story-state",
        "chapter-content",
        "chapter-ai-delta",
    }

from src.ingestion.models import ContentSignals
from src.topics.extractor import (
    MAX_FINAL_TOPICS,
    MIN_FINAL_TOPICS,
    extract_topics,
    normalize_phrase,
    tokenize,
)


def test_normalize_drops_stop_words_and_generic_terms():
    assert normalize_phrase("The") is None
    assert normalize_phrase("API") is None
    assert normalize_phrase("a b c d") is None
    assert normalize_phrase("  Borrow   Checker! ") == "borrow checker"


def test_tokenize_skips_short_and_stop_words():
    assert tokenize("Why the Go GC is fast") == ["why", "fast"]


def test_title_only_extraction_is_bounded():
    result = extract_topics(
        "Rust compiler internals explained", "https://www.example.com/rust-compiler", None
    )
    assert MIN_FINAL_TOPICS <= len(result.final_topics) <= MAX_FINAL_TOPICS
    assert set(result.final_topics) <= set(result.candidates)
    assert "rust compiler internals" in result.final_topics
    assert result.added == []


def test_content_confirms_prunes_and_adds_topics():
    content = ContentSignals(
        page_title="Rust compiler internals",
        headings=["Borrow checker deep dive"],
        body_text=(
            "The rust compiler runs the borrow checker. "
            "The borrow checker enforces rules. Each rust compiler pass is small."
        ),
    )
    result = extract_topics("Rust compiler internals explained", "https://example.com/x", content)

    assert MIN_FINAL_TOPICS <= len(result.final_topics) <= MAX_FINAL_TOPICS
    assert "borrow checker" in result.final_topics
    assert "borrow checker" in result.added
    assert "explained" not in result.final_topics
    assert "explained" in result.removed


def test_short_titles_still_produce_minimum_topics():
    result = extract_topics("Postgres vacuum", "https://db.example.org/postgres-vacuum", None)
    assert len(result.final_topics) >= MIN_FINAL_TOPICS

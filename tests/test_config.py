import pytest

from semantic_index.config import IndexSettings


def test_defaults_are_valid() -> None:
    settings = IndexSettings()
    assert settings.default_limit == 5
    assert settings.max_limit == 50
    assert settings.chunk_overlap_chars < settings.chunk_max_chars


def test_from_env_overlays_prefixed_variables() -> None:
    settings = IndexSettings.from_env(
        {
            "SEMANTIC_INDEX_MAX_WORKERS": "2",
            "SEMANTIC_INDEX_QUERY_TIMEOUT": "2.5",
            "SEMANTIC_INDEX_EMBEDDING_MODEL": "nomic-embed-text",
            "SEMANTIC_INDEX_MIN_SCORE": "",
            "UNRELATED": "ignored",
        }
    )
    assert settings.max_workers == 2
    assert settings.query_timeout == pytest.approx(2.5)
    assert settings.embedding_model == "nomic-embed-text"
    assert settings.min_score == IndexSettings().min_score


def test_from_env_keyword_overrides_win() -> None:
    settings = IndexSettings.from_env({"SEMANTIC_INDEX_MAX_WORKERS": "2"}, max_workers=8)
    assert settings.max_workers == 8


def test_from_env_rejects_bad_numbers() -> None:
    with pytest.raises(ValueError, match="SEMANTIC_INDEX_MAX_WORKERS"):
        IndexSettings.from_env({"SEMANTIC_INDEX_MAX_WORKERS": "many"})


@pytest.mark.parametrize(
    "overrides",
    [
        {"chunk_max_chars": 0},
        {"chunk_overlap_chars": 1_500},
        {"max_workers": 0},
        {"default_limit": 0},
        {"default_limit": 10, "max_limit": 5},
        {"converter_backend": "pandoc"},
    ],
)
def test_invalid_settings_raise(overrides) -> None:
    with pytest.raises(ValueError):
        IndexSettings(**overrides)


def test_with_overrides_returns_new_instance() -> None:
    base = IndexSettings()
    changed = base.with_overrides(max_workers=1)
    assert changed.max_workers == 1
    assert base.max_workers == 4

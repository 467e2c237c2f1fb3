import pytest
from processing.post_processing import (
    PhraseCleanupPostProcessor,
    replace_ai_words,
    replace_stock_phrases,
    strip_response_artifacts,
)


def test_strip_think_blocks_fences_and_sign_offs():
    raw = (
        "<think>plan the scene</think>```text\nMara waited by the rope.\n```\n"
        "Let me know if you need anything else!"
    )
    assert strip_response_artifacts(raw) == "Mara waited by the rope."


def test_strip_preamble():
    assert strip_response_artifacts("Here is the next scene: Rain fell.") == "Rain fell."


def test_replace_ai_words_keeps_case():
    text, count = replace_ai_words("Moreover, she would delve into the REALM of ledgers.")
    assert text == "Also, she would dig into the WORLD of ledgers."
    assert count == 3


def test_clean_text_is_untouched():
    text = "Mara counted the crates.\n\nTovin kept watch."
    assert replace_ai_words(text) == (text, 0)
    assert replace_stock_phrases(text) == (text, 0)


def test_stock_phrase_replaced_within_paragraphs():
    text = (
        "Mara stepped inside. The air was thick with smoke.\n\n"
        "Little did they know the guard was awake."
    )
    cleaned, count = replace_stock_phrases(text)

    assert count == 2
    assert "air was thick with" not in cleaned
    assert "Little did they know" not in cleaned
    assert cleaned.count("\n\n") == 1
    assert cleaned.startswith("Mara stepped inside.")


@pytest.mark.parametrize(
    "text",
    [
        "Mara nodded. They didn't.",
        "The air was thick. Mara left.",
        "Mara laughed. The least.",
        "Little did. Tovin shrugged.",
    ],
)
def test_short_sentences_inside_a_stock_phrase_are_kept(text):
    assert replace_stock_phrases(text) == (text, 0)


def test_closing_punctuation_survives_replacement():
    cleaned, count = replace_stock_phrases(
        "It was cold, to say the least! Needless to say, the rope held."
    )
    assert count == 2
    assert cleaned == "It was cold! The rope held."


@pytest.mark.asyncio
async def test_post_processor_chains_every_cleanup():
    processor = PhraseCleanupPostProcessor()
    cleaned = await processor.process(
        "<think>x</think>Here is the scene: Needless to say, Mara would utilize the rope."
    )
    assert cleaned == "Mara would use the rope."

"""
Unit tests for topic normalization and file naming.
"""

import pytest

from speccorpus.utils.naming import TopicNormalizer


@pytest.fixture
def normalizer():
    return TopicNormalizer(["the", "a", "of", "for"], max_file_words=3)


def test_normalize_lowercases_and_hyphenates(normalizer):
    assert normalizer.normalize("Coupon Redemption") == "coupon-redemption"


def test_normalize_drops_stopwords_and_punctuation(normalizer):
    assert normalizer.normalize("The redemption of a coupon!") == "redemption-coupon"
    assert normalizer.normalize("  coupon---redemption  ") == "coupon-redemption"


def test_normalize_is_idempotent(normalizer):
    topic_id = normalizer.normalize("Discount calculation for loyalty members")
    assert normalizer.normalize(topic_id) == topic_id


def test_normalize_rejects_empty_statement(normalizer):
    with pytest.raises(ValueError, match="no content words"):
        normalizer.normalize("the of a")


def test_file_name_is_at_most_three_words(normalizer):
    assert normalizer.file_name("Coupon redemption") == "coupon-redemption"
    assert normalizer.file_name("Discount calculation for loyalty members") == \
        "discount-calculation-loyalty"


def test_file_name_word_limit_is_configurable():
    normalizer = TopicNormalizer([], max_file_words=1)
    assert normalizer.file_name("Password reset") == "password"

    with pytest.raises(ValueError):
        TopicNormalizer([], max_file_words=0)


# Run tests if executed directly
if __name__ == "__main__":
    pytest.main([__file__, "-v"])

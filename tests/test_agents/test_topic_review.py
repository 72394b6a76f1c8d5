"""
Unit tests for the Topic Review Agent.
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from speccorpus.agents.topic_review import TopicReviewAgent
from speccorpus.exceptions import AmbiguousTopic
from speccorpus.utils.naming import TopicNormalizer


@pytest.fixture
def reviewer():
    return TopicReviewAgent(TopicNormalizer(["the", "a", "of", "for"]))


def test_single_capability_accepted(reviewer):
    reviewer.review("Coupon redemption")
    reviewer.review("Discount and tax calculation")
    reviewer.review("Read and write permission checks")


def test_compound_statement_rejected(reviewer):
    """Test two independent capabilities joined by a conjunction are rejected."""
    with pytest.raises(AmbiguousTopic):
        reviewer.review("validates tokens and sends email notifications")

    with pytest.raises(AmbiguousTopic) as exc_info:
        reviewer.review("Token validation and email notification delivery")

    assert "Token validation" in exc_info.value.reason
    assert "email notification delivery" in exc_info.value.reason


def test_other_conjunctions(reviewer):
    assert reviewer.compound_clauses("Password reset; session expiry") == [
        "Password reset", "session expiry"
    ]
    assert reviewer.compound_clauses("Coupon redemption as well as refund issuance") == [
        "Coupon redemption", "refund issuance"
    ]


def test_statement_without_content_words(reviewer):
    with pytest.raises(ValueError):
        reviewer.review("the of a")


@pytest.fixture
def llm_reviewer():
    """Create agent with mocked Gemini API."""
    with patch('speccorpus.agents.topic_review.genai'):
        agent = TopicReviewAgent(
            TopicNormalizer(["the"]),
            api_key="test-key",
            use_llm=True
        )
    agent.model = MagicMock()
    return agent


def test_llm_rejection(llm_reviewer):
    llm_reviewer.model.generate_content.return_value = MagicMock(text=json.dumps({
        "single_capability": False,
        "reason": "Checkout flow covers payment capture and shipping quotes"
    }))

    with pytest.raises(AmbiguousTopic, match="payment capture"):
        llm_reviewer.review("Checkout flow")


def test_llm_error_falls_back_to_heuristic(llm_reviewer):
    llm_reviewer.model.generate_content.side_effect = RuntimeError("quota exceeded")

    llm_reviewer.review("Coupon redemption")


def test_llm_requires_api_key():
    with pytest.raises(ValueError):
        TopicReviewAgent(TopicNormalizer([]), use_llm=True)


# Run tests if executed directly
if __name__ == "__main__":
    pytest.main([__file__, "-v"])

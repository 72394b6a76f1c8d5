"""
Topic Review Agent.

Admission check for topic statements: a statement must describe a single
capability. Compound statements are rejected with AmbiguousTopic before
any investigation job is submitted.
"""

import json
import logging
import re
from typing import List, Optional

import google.generativeai as genai

from speccorpus.exceptions import AmbiguousTopic
from speccorpus.utils.naming import TopicNormalizer

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You review topic statements for a behavioral specification corpus.

A topic statement must describe exactly ONE capability. Reject a statement that
joins two capabilities which could change independently of each other
(e.g. "validates tokens and sends email notifications").

Accept statements whose conjunctions name parts of one capability
(e.g. "read and write permission checks").

Output valid JSON only."""


def _construct_user_prompt(statement: str) -> str:
    return f"""Topic statement: "{statement}"

Respond in JSON:
{{
  "single_capability": true | false,
  "reason": "Brief explanation (1 sentence)"
}}"""


_CONJUNCTION = re.compile(r"\s*(?:\band\b|\bas well as\b|\bplus\b|;|&)\s*", re.IGNORECASE)


class TopicReviewAgent:
    """
    Two-stage review:
    1. Heuristic: reject statements whose conjunction joins two clauses of
       at least two content words each
    2. Optional LLM adjudication for statements the heuristic accepts
    """

    def __init__(
        self,
        normalizer: TopicNormalizer,
        api_key: Optional[str] = None,
        model_name: str = "gemini-1.5-flash",
        use_llm: bool = False,
        temperature: float = 0.0
    ):
        """
        Args:
            normalizer: Supplies content-word tokenization
            api_key: Gemini API key (required when use_llm is True)
            model_name: Model for LLM adjudication
            use_llm: Enable the LLM stage
            temperature: LLM temperature
        """
        self.normalizer = normalizer
        self.use_llm = use_llm
        self.model = None

        if use_llm:
            if not api_key:
                raise ValueError("api_key is required when use_llm is True")
            genai.configure(api_key=api_key)
            self.model = genai.GenerativeModel(
                model_name=model_name,
                generation_config={
                    "temperature": temperature,
                    "response_mime_type": "application/json"
                },
                system_instruction=SYSTEM_PROMPT
            )

        logger.info(f"Initialized TopicReviewAgent (llm={'on' if use_llm else 'off'})")

    def compound_clauses(self, statement: str) -> List[str]:
        """Clauses of a compound statement, or [] if it reads as one capability."""
        parts = [p.strip() for p in _CONJUNCTION.split(statement) if p.strip()]
        if len(parts) < 2:
            return []
        if all(len(self.normalizer.tokens(p)) >= 2 for p in parts):
            return parts
        return []

    def review(self, statement: str) -> None:
        """
        Raises:
            AmbiguousTopic: If the statement joins independently-variable capabilities
            ValueError: If the statement has no content words
        """
        if not self.normalizer.tokens(statement):
            raise ValueError(f"Topic statement has no content words: '{statement}'")

        clauses = self.compound_clauses(statement)
        if clauses:
            raise AmbiguousTopic(
                statement, f"joins {len(clauses)} capabilities: " + " | ".join(clauses)
            )

        if self.model is not None:
            self._llm_review(statement)

    def _llm_review(self, statement: str) -> None:
        try:
            response = self.model.generate_content(_construct_user_prompt(statement))
            data = json.loads(response.text)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse topic review JSON for '{statement}': {e}")
            logger.warning(f"Accepting '{statement}' on heuristic review only")
            return
        except Exception as e:
            logger.error(f"Topic review API error for '{statement}': {e}")
            logger.warning(f"Accepting '{statement}' on heuristic review only")
            return

        if data.get("single_capability") is False:
            raise AmbiguousTopic(statement, data.get("reason", "reviewer rejected statement"))

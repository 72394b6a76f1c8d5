"""
Investigation Agent.

Default investigation collaborator: sends a topic plus corpus material
to Gemini and parses the structured trace it returns. The orchestrator
treats this as a black box behind `investigate(request) -> Trace`.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

import google.generativeai as genai

from speccorpus.exceptions import InvestigationFailure
from speccorpus.models.trace import SPEC_STUDY, InvestigationRequest, Trace

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a behavior investigator for a specification corpus.

Your task: trace ONE topic (a single capability) through the material you are given
and report its observable behavior.

Report:
1. entry_points: where the behavior is triggered
2. branches: decision points that change the outcome
3. side_effects: externally visible effects (writes, messages, calls)
4. data_shapes: shapes of data crossing the topic's edges
5. behaviors: an ordered tree of named steps, each with an "effect" and optional
   "notable" (surprising or inconsistent) and "unreachable" (no live path) flags
6. boundaries: interfaces to adjacent concerns - what is sent, what comes back,
   and what the topic assumes about the response; never the other side's internals
7. shared_topics: statements of other topics whose behavior this topic reuses

Rules:
- Describe behavior, not implementation
- Keep step names stable and short; siblings must have distinct names
- Output valid JSON only."""


def _construct_user_prompt(request: InvestigationRequest, material: str) -> str:
    """Construct user prompt for one investigation job."""
    label = "Existing spec document" if request.phase == SPEC_STUDY else "Source corpus"
    context = request.context or "(none)"
    return f"""Topic: "{request.statement}"
Topic ID: {request.topic_id}

Planning notes:
{context}

{label}:
{material}

Respond in JSON:
{{
  "entry_points": ["..."],
  "branches": ["..."],
  "side_effects": ["..."],
  "data_shapes": ["..."],
  "behaviors": [
    {{"name": "...", "effect": "...", "notable": false, "unreachable": false, "children": []}}
  ],
  "boundaries": [
    {{"name": "...", "sends": "...", "receives": "...", "assumption": "..."}}
  ],
  "shared_topics": ["..."]
}}"""


class InvestigationAgent:
    """
    Produces a Trace for a topic from a corpus (source study) or from an
    existing spec document (spec study).

    Errors, timeouts and unparseable output all surface as
    InvestigationFailure. There is no retry here; the caller decides.
    """

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-1.5-flash",
        temperature: float = 0.0,
        timeout_seconds: int = 120,
        file_patterns: Optional[List[str]] = None,
        max_chars: int = 200_000
    ):
        """
        Initialize investigation agent.

        Args:
            api_key: Gemini API key
            model_name: Gemini model to use
            temperature: LLM temperature (0.0 for deterministic)
            timeout_seconds: API request timeout
            file_patterns: Glob patterns of corpus files to include
            max_chars: Upper bound on corpus characters sent per job
        """
        self.model_name = model_name
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self.file_patterns = file_patterns or ["**/*.py"]
        self.max_chars = max_chars

        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(
            model_name=model_name,
            generation_config={
                "temperature": temperature,
                "response_mime_type": "application/json"
            },
            system_instruction=SYSTEM_PROMPT
        )

        logger.info(f"Initialized InvestigationAgent with model={model_name}, temp={temperature}")

    def __call__(self, request: InvestigationRequest) -> Trace:
        return self.investigate(request)

    def investigate(self, request: InvestigationRequest) -> Trace:
        """
        Investigate one topic.

        Raises:
            InvestigationFailure: On API error, timeout, or malformed output
        """
        if request.phase == SPEC_STUDY:
            if not request.document_text:
                raise InvestigationFailure(request.topic_id, "spec-study job without document text")
            material = request.document_text
        else:
            material = self._read_corpus(request)

        user_prompt = _construct_user_prompt(request, material)
        try:
            response = self.model.generate_content(
                user_prompt,
                request_options={"timeout": self.timeout_seconds}
            )
            text = response.text
        except Exception as e:
            raise InvestigationFailure(request.topic_id, f"LLM API error: {e}") from e

        return self._parse_llm_response(text, request)

    def _read_corpus(self, request: InvestigationRequest) -> str:
        """Concatenate corpus files matching the configured patterns, bounded by max_chars."""
        root = Path(request.corpus.root)
        if not root.is_dir():
            raise InvestigationFailure(request.topic_id, f"corpus root not found: {root}")

        paths = set()
        for pattern in self.file_patterns:
            paths.update(p for p in root.glob(pattern) if p.is_file())

        chunks = []
        used = 0
        for path in sorted(paths):
            try:
                text = path.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError) as e:
                logger.debug(f"Skipping unreadable corpus file {path}: {e}")
                continue
            chunk = f"### {path.relative_to(root)}\n{text}\n"
            if used + len(chunk) > self.max_chars:
                logger.warning(
                    f"Corpus for {request.topic_id} truncated at {used} chars "
                    f"({len(chunks)} of {len(paths)} files)"
                )
                break
            chunks.append(chunk)
            used += len(chunk)

        if not chunks:
            raise InvestigationFailure(request.topic_id, f"no corpus files matched under {root}")
        return "\n".join(chunks)

    def _parse_llm_response(self, response_text: str, request: InvestigationRequest) -> Trace:
        """
        Parse LLM JSON response into a Trace.

        Raises:
            InvestigationFailure: If the response is not a valid trace
        """
        try:
            data = json.loads(response_text)
        except json.JSONDecodeError as e:
            raise InvestigationFailure(request.topic_id, f"unparseable trace JSON: {e}") from e

        if not isinstance(data, dict) or "behaviors" not in data:
            raise InvestigationFailure(request.topic_id, "trace is missing 'behaviors'")

        data["topic_id"] = request.topic_id
        data["revision"] = request.corpus.revision
        try:
            trace = Trace.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise InvestigationFailure(request.topic_id, f"malformed trace: {e}") from e

        logger.debug(
            f"Traced {request.topic_id}: {len(trace.behaviors)} behaviors, "
            f"{len(trace.boundaries)} boundaries, {len(trace.shared_topics)} shared topics"
        )
        return trace

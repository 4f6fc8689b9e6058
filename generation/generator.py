"""LLM answer generation from assembled course context."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import openai

from core.config import settings
from core.errors import ProviderUnavailable
from core.fallback import Deadline, FallbackPolicy
from core.models import ChatTurn
from ingestion.embedder import create_openai_client, translate_openai_error

if TYPE_CHECKING:
    from openai import OpenAI

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert teaching assistant for the "Physical AI & Humanoid Robotics" course. Your role is to help students understand robotics concepts, from basic hardware to advanced AI integration.

Key guidelines:
1. Answer ONLY from the course material provided in the context. Do not invent facts.
2. If the context does not contain enough information, say so plainly and point the student to the most relevant module instead of guessing.
3. Be encouraging and supportive; this course is for beginners to intermediate learners.
4. Explain technical concepts in simple terms, using analogies when helpful.
5. When you use a source, mention its title.
6. Always prioritize safety when discussing physical robotics projects.
7. Be concise but thorough.

Course modules:
- Module 1: Foundations (Introduction, Hardware, Software Setup)
- Module 2: Sensors (Types, Data Acquisition, Computer Vision)
- Module 3: Actuators (Motors, Kinematics, Motion Planning)
- Module 4: Integration (System Integration, Capstone Project, Advanced Topics)"""

NO_CONTEXT_NOTE = "No course material matched this question."


def build_messages(
    question: str, context: str, history: list[ChatTurn]
) -> list[dict[str, str]]:
    """System role, prior turns, then the context-bearing question."""
    context_block = context or NO_CONTEXT_NOTE
    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    messages.extend({"role": t.role, "content": t.content} for t in history)
    messages.append(
        {
            "role": "user",
            "content": (
                f"Context from course materials:\n{context_block}\n\n---\n\n"
                f"Student question: {question}"
            ),
        }
    )
    return messages


class AnswerGenerator:
    """Calls the chat model with the assembled context; returns free text."""

    def __init__(
        self,
        openai_client: OpenAI | None = None,
        model: str | None = None,
        policy: FallbackPolicy | None = None,
    ):
        self.openai_client = openai_client or create_openai_client()
        self.model = model or settings.llm_model
        self.policy = policy or FallbackPolicy(
            timeout=settings.generation_timeout, backoff=settings.retry_backoff
        )

    def generate(
        self,
        question: str,
        context: str,
        history: list[ChatTurn] | None = None,
        deadline: Deadline | None = None,
    ) -> str:
        messages = build_messages(question, context, history or [])
        logger.info("Generating answer (%d context chars)", len(context))
        return self.policy.call(
            "generate", lambda timeout: self._complete(messages, timeout), deadline
        )

    def _complete(self, messages: list[dict[str, str]], timeout: float) -> str:
        try:
            response = self.openai_client.with_options(timeout=timeout).chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
            )
        except openai.OpenAIError as e:
            raise translate_openai_error(e) from e

        if not response.choices:
            raise ProviderUnavailable("Generation returned no choices")
        answer_text = response.choices[0].message.content or ""
        if not answer_text.strip():
            raise ProviderUnavailable("Generation returned an empty answer")
        logger.debug("Generated answer: %s", answer_text[:100])
        return answer_text

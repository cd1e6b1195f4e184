"""
Tutoring features on top of the resilient call layer.

Explanations, question generation, answer evaluation and context-grounded
chat. Every backend call goes through the shared ResilientCaller.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from ...models import (
    ChatMessage,
    ChatRole,
    ContentChunk,
    EvaluationResult,
    Explanation,
    GenerateOptions,
    GenerationResponse,
    Question,
    Topic,
)
from .extraction import parse_evaluation, parse_questions
from .resilience import ResilientCaller

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n[... truncated ...]"

EXPLAIN_CONTENT_LIMIT = 8000
QUESTIONS_CONTENT_LIMIT = 6000
CHAT_CONTEXT_LIMIT = 6000

MIN_ANSWER_LENGTH = 3


# =============================================================================
# Prompts
# =============================================================================

EXPLAIN_SYSTEM_PROMPT = (
    "You are a patient tutor for learners with little prior knowledge. "
    "Explain from the ground up, keep paragraphs short, "
    "put technical terms in bold and explain them."
)

EXPLAIN_PROMPT = """Explain the following topic clearly and step by step.

Topic: {name}
Description: {description}

Material (use it as the main source, explain prerequisites where needed):
{content}

Rules:
- Put ALL technical terms in **bold**
- Short paragraphs (2-3 sentences at most)
- Bullet points for enumerations
- Key takeaways as a blockquote: > **Remember:** ...

Structure your answer in markdown with these sections:
## What is it about?
## Key terms
## Prerequisites
## How it works, step by step
## Common misconceptions
## Practical example
## Summary"""

QUESTIONS_SYSTEM_PROMPT = (
    "You are an examiner. Questions test KNOWLEDGE, not where it is written. "
    "Hints are content-based thinking aids, never page references. JSON format."
)

QUESTIONS_PROMPT = """Create {kind} about the topic "{name}".

Material:
{content}

Create exactly {count} question(s) with difficulty {difficulty}.

Answer ONLY in JSON:
{{"questions": [{{"question": "The question", "expected_answer": "The direct answer", "hints": ["Thinking aid", "Another hint"], "type": "open"}}]}}

Rules:
- expected_answer is the actual answer, never "see chapter X"
- hints help thinking about the content, never point to pages or chapters"""

DIFFICULTY_KINDS = {
    1: "simple comprehension questions",
    2: "basic knowledge questions",
    3: "application questions",
    4: "analysis and connection questions",
    5: "complex transfer and synthesis questions",
}

EVALUATE_SYSTEM_PROMPT = (
    "You are a FAIR examiner. Accept answers when the core idea is right. "
    "Empty, very short or plainly wrong answers are incorrect. "
    "Ignore typos. JSON format."
)

EVALUATE_PROMPT = """Evaluate this answer fairly but not generously.

Question: {question}
Expected key points: {expected}
Student answer: {answer}

Answer in JSON:
{{"is_correct": true/false, "feedback": "Short feedback"}}

The answer is correct when most key points are covered, even with typos,
synonyms or different wording. It is incorrect when it is off-topic, too
vague or misses important key points. Keep the feedback to two sentences."""

CHAT_SYSTEM_PROMPT = """You are a helpful study assistant.
You help the student learn and answer their questions.

IMPORTANT: Only use information from the context below.
If a question cannot be answered from the context, say so honestly.

Current topic: {name}
Description: {description}

Available context from the study material:
{context}"""

SHORT_ANSWER_FEEDBACK = "You did not enter a real answer. Give it another try!"

_POSITIVE_MARKERS = ("correct", "richtig")
_NEGATIVE_MARKERS = ("incorrect", "not correct", "falsch", "wrong")


def limit_content(content: str, limit: int) -> str:
    """Cut ``content`` to ``limit`` characters, marking the cut."""
    if len(content) <= limit:
        return content
    return content[:limit] + TRUNCATION_MARKER


def judge_free_text(text: str) -> bool:
    """Best-effort verdict when the evaluation payload could not be decoded."""
    lowered = text.lower()
    if any(marker in lowered for marker in _NEGATIVE_MARKERS):
        return False
    return any(marker in lowered for marker in _POSITIVE_MARKERS)


class Tutor:
    """Interactive study features using the main model."""

    def __init__(self, caller: ResilientCaller):
        self.caller = caller

    async def explain_topic(self, topic: Topic, content: str = "") -> Explanation:
        """Explain a topic in markdown, grounded in ``content``."""
        logger.info("Explaining topic: %s", topic.name)
        response = await self.caller.generate(
            self._explain_prompt(topic, content),
            GenerateOptions(system=EXPLAIN_SYSTEM_PROMPT, temperature=0.5),
        )
        return Explanation(title=topic.name, content=response.content)

    async def stream_explanation(self, topic: Topic, content: str = "") -> AsyncIterator[ContentChunk]:
        """
        Stream an explanation chunk by chunk.

        The backend slot is held until the stream is exhausted or closed.
        """
        logger.info("Streaming explanation for topic: %s", topic.name)
        stream = self.caller.stream(
            self._explain_prompt(topic, content),
            GenerateOptions(system=EXPLAIN_SYSTEM_PROMPT, temperature=0.5),
        )
        async with aclosing(stream) as chunks:
            async for chunk in chunks:
                yield chunk

    async def generate_questions(
        self,
        topic: Topic,
        content: str = "",
        difficulty: int = 3,
        count: int = 3,
    ) -> list[Question]:
        """
        Generate study questions for a topic.

        Returns:
            The questions; an empty list when the answer held no valid
            question payload.
        """
        if count <= 0:
            count = 3
        difficulty = max(1, min(5, difficulty))

        prompt = QUESTIONS_PROMPT.format(
            kind=DIFFICULTY_KINDS[difficulty],
            name=topic.name,
            content=limit_content(content, QUESTIONS_CONTENT_LIMIT),
            count=count,
            difficulty=difficulty,
        )
        response = await self.caller.generate(
            prompt,
            GenerateOptions(system=QUESTIONS_SYSTEM_PROMPT, temperature=0.4),
        )

        questions = parse_questions(response.content, difficulty=difficulty, topic_name=topic.name)
        if questions is None:
            logger.warning("No usable questions generated for topic: %s", topic.name)
            return []

        logger.info("Generated %d question(s) for topic: %s", len(questions), topic.name)
        return questions

    async def evaluate_answer(self, question: Question, answer: str) -> EvaluationResult:
        """
        Evaluate a learner's answer.

        Answers shorter than three non-blank characters are rejected
        without asking the backend.
        """
        if len(answer.strip()) < MIN_ANSWER_LENGTH:
            return EvaluationResult(is_correct=False, feedback=SHORT_ANSWER_FEEDBACK)

        prompt = EVALUATE_PROMPT.format(
            question=question.question,
            expected=question.expected_answer,
            answer=answer,
        )
        response = await self.caller.generate(
            prompt,
            GenerateOptions(system=EVALUATE_SYSTEM_PROMPT, temperature=0.1),
        )

        result = parse_evaluation(response.content)
        if result is None:
            logger.warning("Evaluation payload missing, judging free text")
            return EvaluationResult(
                is_correct=judge_free_text(response.content),
                feedback=response.content,
            )
        return result

    async def chat_with_context(
        self,
        messages: list[ChatMessage],
        context: str,
        topic: Topic,
    ) -> GenerationResponse:
        """Answer the last message using only the study context."""
        system = ChatMessage(
            role=ChatRole.SYSTEM,
            content=CHAT_SYSTEM_PROMPT.format(
                name=topic.name,
                description=topic.description,
                context=limit_content(context, CHAT_CONTEXT_LIMIT),
            ),
        )
        return await self.caller.chat([system, *messages], GenerateOptions(temperature=0.5))

    @staticmethod
    def _explain_prompt(topic: Topic, content: str) -> str:
        return EXPLAIN_PROMPT.format(
            name=topic.name,
            description=topic.description,
            content=limit_content(content, EXPLAIN_CONTENT_LIMIT),
        )

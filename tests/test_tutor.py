"""Tests for tutoring features."""

import json

import pytest

from app.backend.models import ChatMessage, ChatRole, Question, QuestionType, Topic
from app.backend.services.llm.providers import MockProvider
from app.backend.services.llm.resilience import ResilientCaller
from app.backend.services.llm.tutor import (
    SHORT_ANSWER_FEEDBACK,
    TRUNCATION_MARKER,
    Tutor,
    judge_free_text,
    limit_content,
)


@pytest.fixture
def tutor(provider: MockProvider, recording_sleep) -> Tutor:
    return Tutor(ResilientCaller(provider, max_attempts=2, sleep=recording_sleep))


@pytest.fixture
def topic() -> Topic:
    return Topic(name="Supply Chains", description="Flows of goods from supplier to customer")


@pytest.fixture
def question() -> Question:
    return Question(
        question="Which three levels does a supply chain have?",
        expected_answer="Goods, finance and information",
    )


class TestLimitContent:
    """Tests for prompt content limits."""

    def test_short_content_unchanged(self):
        """Test that content under the limit is passed through."""
        assert limit_content("short", 10) == "short"

    def test_long_content_marked(self):
        """Test that cut content carries a truncation marker."""
        limited = limit_content("a" * 20, 10)
        assert limited == "a" * 10 + TRUNCATION_MARKER


class TestJudgeFreeText:
    """Tests for the evaluation fallback heuristic."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Correct! Well done.", True),
            ("Richtig, gut gemacht.", True),
            ("That is incorrect.", False),
            ("Not correct, the answer is missing finance.", False),
            ("Leider falsch.", False),
            ("Hard to say.", False),
        ],
    )
    def test_verdicts(self, text: str, expected: bool):
        """Test positive and negative wording."""
        assert judge_free_text(text) is expected


class TestExplainTopic:
    """Tests for explanations."""

    @pytest.mark.asyncio
    async def test_explanation(self, tutor: Tutor, provider: MockProvider, topic: Topic):
        """Test that the answer becomes the explanation body."""
        provider.queue("## What is it about?\nA **supply chain** is ...")

        explanation = await tutor.explain_topic(topic, "Lecture notes on supply chains.")

        assert explanation.title == "Supply Chains"
        assert explanation.content.startswith("## What is it about?")
        request = provider.requests[0]
        assert request.temperature == 0.5
        assert request.system
        assert "Lecture notes on supply chains." in request.prompt
        assert topic.description in request.prompt

    @pytest.mark.asyncio
    async def test_content_is_limited(self, tutor: Tutor, provider: MockProvider, topic: Topic):
        """Test that material beyond 8000 characters is cut."""
        provider.queue("ok")

        await tutor.explain_topic(topic, "§" * 9000)

        prompt = provider.requests[0].prompt
        assert "§" * 8000 + TRUNCATION_MARKER in prompt
        assert "§" * 8001 not in prompt

    @pytest.mark.asyncio
    async def test_stream_explanation(self, tutor: Tutor, provider: MockProvider, topic: Topic):
        """Test that a streamed explanation ends with a done chunk."""
        provider.queue("Supply chains move goods")

        chunks = [chunk async for chunk in tutor.stream_explanation(topic, "notes")]

        assert "".join(c.content for c in chunks).strip() == "Supply chains move goods"
        assert chunks[-1].done
        assert tutor.caller.gate.in_use == 0


class TestGenerateQuestions:
    """Tests for question generation."""

    @pytest.mark.asyncio
    async def test_questions(self, tutor: Tutor, provider: MockProvider, topic: Topic):
        """Test that generated questions carry topic and difficulty."""
        provider.queue(
            "Here are your questions:\n"
            + json.dumps(
                {
                    "questions": [
                        {"question": "What is a supply chain?", "expected_answer": "A network", "hints": ["Think of suppliers"]},
                        {"question": "Is transport optional?", "expected_answer": "No", "type": "true_false"},
                    ]
                }
            )
        )

        questions = await tutor.generate_questions(topic, "notes", difficulty=2, count=2)

        assert [q.type for q in questions] == [QuestionType.OPEN, QuestionType.TRUE_FALSE]
        assert all(q.difficulty == 2 and q.topic_name == "Supply Chains" for q in questions)
        request = provider.requests[0]
        assert "exactly 2 question(s)" in request.prompt
        assert "basic knowledge questions" in request.prompt

    @pytest.mark.asyncio
    async def test_unreadable_answer_gives_empty_list(self, tutor: Tutor, provider: MockProvider, topic: Topic):
        """Test that a missing payload is not an error."""
        provider.queue("Sorry, I cannot help with that.")

        assert await tutor.generate_questions(topic, "notes") == []

    @pytest.mark.asyncio
    async def test_default_count(self, tutor: Tutor, provider: MockProvider, topic: Topic):
        """Test that a non-positive count falls back to three questions."""
        provider.queue('{"questions": []}')

        await tutor.generate_questions(topic, "notes", count=0)

        assert "exactly 3 question(s)" in provider.requests[0].prompt


class TestEvaluateAnswer:
    """Tests for answer evaluation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer", ["", "  ", "ab", " x "])
    async def test_short_answer_rejected_without_call(
        self, tutor: Tutor, provider: MockProvider, question: Question, answer: str
    ):
        """Test that near-empty answers never reach the backend."""
        result = await tutor.evaluate_answer(question, answer)

        assert result.is_correct is False
        assert result.feedback == SHORT_ANSWER_FEEDBACK
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_structured_verdict(self, tutor: Tutor, provider: MockProvider, question: Question):
        """Test that the decoded verdict is returned."""
        provider.queue('{"is_correct": true, "feedback": "Correct! All three levels named."}')

        result = await tutor.evaluate_answer(question, "goods, money, information")

        assert result.is_correct is True
        assert result.feedback == "Correct! All three levels named."
        assert provider.requests[0].temperature == 0.1

    @pytest.mark.asyncio
    async def test_free_text_fallback(self, tutor: Tutor, provider: MockProvider, question: Question):
        """Test that an answer without a payload is judged by its wording."""
        provider.queue("That is incorrect, finance is missing.")

        result = await tutor.evaluate_answer(question, "goods and information")

        assert result.is_correct is False
        assert result.feedback == "That is incorrect, finance is missing."


class TestChatWithContext:
    """Tests for context-grounded chat."""

    @pytest.mark.asyncio
    async def test_system_message_prepended(self, tutor: Tutor, provider: MockProvider, topic: Topic):
        """Test that the topic and context lead the conversation."""
        provider.queue("Procurement is buying inputs.")
        messages = [ChatMessage(role=ChatRole.USER, content="What is procurement?")]

        response = await tutor.chat_with_context(messages, "Procurement: buying inputs.", topic)

        assert response.content == "Procurement is buying inputs."
        sent = provider.chats[0]
        assert sent[0].role is ChatRole.SYSTEM
        assert "Supply Chains" in sent[0].content
        assert "Procurement: buying inputs." in sent[0].content
        assert sent[1:] == messages

    @pytest.mark.asyncio
    async def test_chat_is_retried(self, tutor: Tutor, provider: MockProvider, topic: Topic, sleeps):
        """Test that chat goes through the retry loop."""
        provider.queue(RuntimeError("connection reset"), "Second try.")
        messages = [ChatMessage(role=ChatRole.USER, content="Hello?")]

        response = await tutor.chat_with_context(messages, "", topic)

        assert response.content == "Second try."
        assert len(provider.chats) == 2
        assert len(sleeps) == 1

"""
Document analysis pipeline: study documents in, ordered topic list out.

Stages (linear, no branching back):

1. Normalize: drop documents whose name was already seen.
2. Categorize: exam/exercise material becomes reference, the rest primary.
3. Analyze primary documents one after another with the fast model, each
   truncated to a fixed character budget. A failing document is logged and
   skipped.
4. Prioritize: when reference documents and topics exist, ask the model to
   rank topic names by exam relevance and reorder. Any failure keeps the
   discovery order.
5. Finalize: drop topics whose name (case-insensitive) was already seen.

Documents are analyzed one at a time, matching the admission gate which
admits one backend call at a time.
"""

import asyncio
import logging
import time
from collections.abc import Sequence

from ...models import Document, DocumentCategory, GenerateOptions, Topic
from .exceptions import NoUsableDocumentsError
from .extraction import parse_priority, parse_topics
from .resilience import ResilientCaller

logger = logging.getLogger(__name__)


# =============================================================================
# Prompts
# =============================================================================

ANALYSIS_SYSTEM_PROMPT = "You are a study assistant. Answer briefly and only in JSON."

ANALYSIS_PROMPT = """Analyze this document and list its 3-5 most important study topics.

Document: {name}
---
{content}
---

Answer ONLY in JSON:
{{"topics": [{{"name": "Topic", "description": "Short description", "difficulty": 1-5, "est_minutes": 30}}]}}"""

RANKING_SYSTEM_PROMPT = "You are an exam expert. Answer only in JSON."

RANKING_PROMPT = """Based on these exam questions, which of the following topics matter most?
Sort them by exam relevance (most important first).

Topics: {topics}

Exam content:
{content}

Answer ONLY with the sorted list as JSON:
{{"priority": ["Most important topic", "Second most important", ...]}}"""


# =============================================================================
# Pure Stages
# =============================================================================


def deduplicate_documents(documents: Sequence[Document]) -> list[Document]:
    """Keep the first document per exact name, preserving order."""
    seen: set[str] = set()
    unique: list[Document] = []
    for doc in documents:
        if doc.name not in seen:
            seen.add(doc.name)
            unique.append(doc)
    return unique


def categorize_documents(
    documents: Sequence[Document],
    reference_markers: list[str],
) -> tuple[list[Document], list[Document]]:
    """
    Split documents into primary and reference material by name.

    Returns:
        (primary, reference), each in input order.
    """
    primary: list[Document] = []
    reference: list[Document] = []
    for doc in documents:
        if doc.category(reference_markers) is DocumentCategory.REFERENCE:
            reference.append(doc)
        else:
            primary.append(doc)
    return primary, reference


def deduplicate_topics(topics: Sequence[Topic]) -> list[Topic]:
    """Keep the first topic per case-insensitive name, preserving order."""
    seen: set[str] = set()
    unique: list[Topic] = []
    for topic in topics:
        key = topic.name.lower()
        if key not in seen:
            seen.add(key)
            unique.append(topic)
    return unique


def rank_topics(topics: Sequence[Topic], ranking: Sequence[str]) -> list[Topic]:
    """
    Reorder topics by a ranking of names (most important first).

    Ranked topics come first in rank order; unranked topics follow in their
    original order. Name matching is case-insensitive and the first
    occurrence of a name in the ranking wins.
    """
    positions: dict[str, int] = {}
    for index, name in enumerate(ranking):
        positions.setdefault(name.lower(), index)

    unranked = len(positions)
    # sorted() is stable, so ties keep discovery order
    return sorted(topics, key=lambda t: positions.get(t.name.lower(), unranked))


def build_reference_digest(
    documents: Sequence[Document],
    per_document_cap: int,
    total_cap: int,
) -> str:
    """Concatenate reference content, each document and the total capped."""
    parts: list[str] = []
    length = 0
    for doc in documents:
        excerpt = doc.content[:per_document_cap] + "\n"
        parts.append(excerpt)
        length += len(excerpt)
        if length >= total_cap:
            break
    return "".join(parts)[:total_cap]


def _short_name(name: str, limit: int = 35) -> str:
    return name if len(name) <= limit else name[: limit - 3] + "..."


# =============================================================================
# Pipeline
# =============================================================================


class DocumentAnalyzer:
    """
    Turns a set of study documents into an ordered, deduplicated topic list.

    All backend calls go through the shared ResilientCaller and use the
    fast model, leaving the main model for interactive features.
    """

    def __init__(
        self,
        caller: ResilientCaller,
        fast_model: str | None = None,
        reference_markers: list[str] | None = None,
        primary_char_budget: int = 4000,
        reference_char_cap: int = 2000,
        reference_total_cap: int = 10000,
        document_timeout: float | None = None,
        ranking_timeout: float | None = 60.0,
    ):
        """
        Initialize the analyzer.

        Args:
            caller: Single-flight, retrying backend access.
            fast_model: Model override for analysis and ranking calls.
            reference_markers: Name markers of exam/exercise material.
            primary_char_budget: Characters of each primary document sent.
            reference_char_cap: Characters of each reference document used.
            reference_total_cap: Characters of reference material in total.
            document_timeout: Seconds allowed per document analysis.
            ranking_timeout: Seconds allowed for the ranking call.
        """
        self.caller = caller
        self.fast_model = fast_model
        if reference_markers is None:
            reference_markers = ["exam", "exercise", "klausur", "übung"]
        self.reference_markers = reference_markers
        self.primary_char_budget = primary_char_budget
        self.reference_char_cap = reference_char_cap
        self.reference_total_cap = reference_total_cap
        self.document_timeout = document_timeout
        self.ranking_timeout = ranking_timeout

    async def analyze(self, documents: Sequence[Document]) -> list[Topic]:
        """
        Run the full pipeline.

        Only cancellation of the caller's task aborts the run. Individual
        document or ranking failures degrade the result instead.

        Raises:
            NoUsableDocumentsError: If no document was given or none of the
                analyzed documents produced a usable answer.
        """
        if not documents:
            raise NoUsableDocumentsError("No documents to analyze")

        start = time.perf_counter()
        unique = deduplicate_documents(documents)
        primary, reference = categorize_documents(unique, self.reference_markers)
        logger.info(
            "Analyzing %d document(s): %d primary, %d reference (%d duplicate(s) dropped)",
            len(unique),
            len(primary),
            len(reference),
            len(documents) - len(unique),
        )

        if not primary:
            logger.warning("No primary documents, analyzing reference material instead")
            primary, reference = reference, []

        topics, analyzed = await self._analyze_sequentially(primary)
        if analyzed == 0:
            raise NoUsableDocumentsError(
                f"None of the {len(primary)} document(s) could be analyzed"
            )

        if reference and topics:
            topics = await self._prioritize(topics, reference)

        final = deduplicate_topics(topics)
        logger.info(
            "Analysis finished in %.1fs: %d unique topic(s)",
            time.perf_counter() - start,
            len(final),
        )
        return final

    async def _analyze_sequentially(self, documents: list[Document]) -> tuple[list[Topic], int]:
        """Analyze documents in order; returns (topics, successful document count)."""
        topics: list[Topic] = []
        succeeded = 0

        for i, doc in enumerate(documents, start=1):
            name = _short_name(doc.name)
            logger.info("[%d/%d] Analyzing: %s", i, len(documents), name)
            doc_start = time.perf_counter()

            try:
                async with asyncio.timeout(self.document_timeout):
                    found = await self.analyze_document(doc)
            except TimeoutError:
                logger.warning(
                    "[%d/%d] Timed out after %.1fs: %s",
                    i,
                    len(documents),
                    time.perf_counter() - doc_start,
                    name,
                )
                continue
            except Exception as e:
                logger.warning(
                    "[%d/%d] Failed after %.1fs: %s",
                    i,
                    len(documents),
                    time.perf_counter() - doc_start,
                    e,
                )
                continue

            if found is None:
                logger.warning("[%d/%d] No usable topic list in answer, skipping", i, len(documents))
                continue

            succeeded += 1
            topics.extend(found)
            logger.info(
                "[%d/%d] Done in %.1fs (%d topic(s))",
                i,
                len(documents),
                time.perf_counter() - doc_start,
                len(found),
            )

        logger.info("%d/%d document(s) analyzed successfully", succeeded, len(documents))
        return topics, succeeded

    async def analyze_document(self, document: Document) -> list[Topic] | None:
        """
        Ask the backend for the topics of one document.

        Returns:
            The topics, or None if the answer held no valid topic list.

        Raises:
            LLMServiceError: If the backend call failed for good.
        """
        prompt = ANALYSIS_PROMPT.format(
            name=document.name,
            content=document.content[: self.primary_char_budget],
        )
        response = await self.caller.generate(
            prompt,
            GenerateOptions(
                model=self.fast_model,
                system=ANALYSIS_SYSTEM_PROMPT,
                temperature=0.3,
            ),
        )
        return parse_topics(response.content)

    async def _prioritize(self, topics: list[Topic], reference: list[Document]) -> list[Topic]:
        """Reorder topics by exam relevance; keep the order on any failure."""
        logger.info("Prioritizing %d topic(s) with %d reference document(s)", len(topics), len(reference))

        prompt = RANKING_PROMPT.format(
            topics=", ".join(t.name for t in topics),
            content=build_reference_digest(
                reference,
                self.reference_char_cap,
                self.reference_total_cap,
            ),
        )

        try:
            async with asyncio.timeout(self.ranking_timeout):
                response = await self.caller.generate(
                    prompt,
                    GenerateOptions(
                        model=self.fast_model,
                        system=RANKING_SYSTEM_PROMPT,
                        temperature=0.2,
                    ),
                )
        except TimeoutError:
            logger.warning("Prioritization skipped: timed out after %.0fs", self.ranking_timeout)
            return topics
        except Exception as e:
            logger.warning("Prioritization skipped: %s", e)
            return topics

        ranking = parse_priority(response.content)
        if ranking is None:
            logger.warning("Prioritization skipped: no usable ranking in answer")
            return topics

        logger.info("Topics sorted by exam relevance (%d ranked)", len(ranking))
        return rank_topics(topics, ranking)

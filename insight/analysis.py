"""
Paper analysis operations built on the dispatcher.

Operations
──────────
analyze_paper          free-form markdown analysis (errors propagate)
check_timeliness       JSON report + concurrent link verification (never raises)
check_venue_quality    JSON report (never raises)
check_author_integrity JSON report (never raises)
ask_follow_up          self-critiqued chat answer (errors propagate)
synthesize_trends      markdown trend report over history (errors propagate)

The secondary checks are best-effort: any failure, including unparseable
model output, yields the documented "unavailable" report. The one exception
is cancellation: an aborted call never returns a partial or default result.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from typing import Optional

from pydantic import ValidationError

from insight import prompts
from insight.cancellation import CancellationToken, ensure_token
from insight.dispatcher import Dispatcher
from insight.errors import AbortedError, ParseError
from insight.extractor import extract_json
from insight.models import (
    AnalysisResult,
    ChatMessage,
    FileAttachment,
    HistoryItem,
    IntegrityReport,
    Recommendation,
    TimelinessReport,
    VenueReport,
)

logger = logging.getLogger(__name__)

STOPPED_MESSAGE = "Analysis process was stopped by the user."
NO_HISTORY_MESSAGE = "No history available to analyze."

_FINAL_ANSWER = re.compile(
    re.escape(prompts.FINAL_ANSWER_OPEN) + r"(.*?)" + re.escape(prompts.FINAL_ANSWER_CLOSE),
    re.DOTALL,
)
_STRAY_TAGS = re.compile(
    re.escape(prompts.FINAL_ANSWER_OPEN) + "|" + re.escape(prompts.FINAL_ANSWER_CLOSE)
)
_TITLE_LINE = re.compile(r"^\s*(?:\*\*)?(?:Title|标题)(?:\*\*)?\s*[:：]\s*(.+?)\s*$", re.MULTILINE)


def extract_final_answer(raw_text: str) -> str:
    """Return the content of the first ``<final_answer>`` pair, de-emphasised.

    Falls back to the whole text (minus any stray tags) when the model did
    not use the delimiters.
    """
    match = _FINAL_ANSWER.search(raw_text)
    text = match.group(1) if match else _STRAY_TAGS.sub("", raw_text)
    return text.replace("**", "").strip()


def extract_title(markdown: str, fallback: str = "") -> str:
    """Pull the paper title from the ``Title:`` line of an analysis."""
    match = _TITLE_LINE.search(markdown or "")
    if match:
        title = match.group(1).strip().strip("*").strip()
        if title:
            return title
    return fallback


def _parse_report(text: str, label: str) -> dict:
    data = extract_json(text)
    if not isinstance(data, dict):
        raise ParseError(f"{label}: model output is not a JSON object")
    return data


class PaperAnalyst:
    """High-level research operations.

    All methods take an optional :class:`CancellationToken`; one is created
    when omitted.
    """

    def __init__(self, dispatcher: Optional[Dispatcher] = None) -> None:
        self.dispatcher = dispatcher or Dispatcher()

    # ── Primary analysis ───────────────────────────────────────────────

    async def analyze_paper(
        self,
        query: str,
        token: Optional[CancellationToken] = None,
        attachment: Optional[FileAttachment] = None,
        enable_search: bool = True,
    ) -> AnalysisResult:
        """Analyze a paper named by *query*, or the attached document.

        Raises:
            ValueError: If neither a query nor an attachment is given.
            AbortedError: With :data:`STOPPED_MESSAGE` if cancelled.
            InsightError: Any provider or configuration failure.
        """
        query = (query or "").strip()
        if not query and attachment is None:
            raise ValueError("Query must not be empty.")

        token = ensure_token(token)
        if attachment is not None:
            prompt = prompts.document_analysis_prompt(query)
            attachments = [attachment]
        else:
            prompt = prompts.search_analysis_prompt(query)
            attachments = []

        try:
            response = await self.dispatcher.dispatch(
                prompt,
                prompts.ANALYSIS_SYSTEM,
                json_mode=False,
                token=token,
                allow_search=enable_search,
                temperature=0.3,
                attachments=attachments,
            )
            token.raise_if_cancelled()
        except AbortedError as exc:
            raise AbortedError(STOPPED_MESSAGE) from exc

        markdown = response.text or "Analysis generation failed."
        return AnalysisResult(markdown=markdown, sources=response.sources)

    # ── Secondary checks ───────────────────────────────────────────────

    async def check_timeliness(
        self,
        title: str,
        author_year: str,
        token: Optional[CancellationToken] = None,
    ) -> TimelinessReport:
        """Judge whether a paper is outdated and suggest verified successors."""
        token = ensure_token(token)
        try:
            dispatcher = self.dispatcher.pinned()
            response = await dispatcher.dispatch(
                prompts.timeliness_prompt(title, author_year),
                prompts.JSON_SYSTEM,
                json_mode=True,
                token=token,
                temperature=0.2,
            )
            report = TimelinessReport.model_validate(
                _parse_report(response.text, "Timeliness")
            )
        except AbortedError:
            raise
        except (ParseError, ValidationError):
            logger.warning("Timeliness report for %r was not parseable", title)
            return TimelinessReport.unavailable()
        except Exception:
            logger.exception("Timeliness check failed for %r", title)
            return TimelinessReport.unavailable()

        if not report.recommendations:
            return report
        enriched = await self.verify_links(report.recommendations, token, dispatcher)
        return report.model_copy(update={"recommendations": enriched})

    async def verify_links(
        self,
        recommendations: Sequence[Recommendation],
        token: Optional[CancellationToken] = None,
        dispatcher: Optional[Dispatcher] = None,
    ) -> list[Recommendation]:
        """Look up a canonical link for every recommendation concurrently.

        Results are joined positionally; a failed lookup leaves ``link=None``.
        All lookups share one settings snapshot.
        """
        token = ensure_token(token)
        dispatcher = dispatcher or self.dispatcher.pinned()
        links = await asyncio.gather(
            *(self._find_link(rec, token, dispatcher) for rec in recommendations)
        )
        token.raise_if_cancelled()
        return [
            rec.model_copy(update={"link": link})
            for rec, link in zip(recommendations, links)
        ]

    async def _find_link(
        self,
        rec: Recommendation,
        token: CancellationToken,
        dispatcher: Dispatcher,
    ) -> Optional[str]:
        try:
            response = await dispatcher.dispatch(
                prompts.link_lookup_prompt(rec.title, rec.year),
                prompts.JSON_SYSTEM,
                json_mode=True,
                token=token,
                temperature=0.1,
            )
        except AbortedError:
            return None
        except Exception as exc:
            logger.warning("Link lookup failed for %r: %s", rec.title, exc)
            return None

        data = extract_json(response.text)
        link = data.get("link") if isinstance(data, dict) else None
        if isinstance(link, str) and link.startswith(("http://", "https://")):
            return link
        return None

    async def check_venue_quality(
        self,
        venue_text: str,
        token: Optional[CancellationToken] = None,
    ) -> VenueReport:
        """Rate the reputation of a publication venue."""
        try:
            response = await self.dispatcher.dispatch(
                prompts.venue_prompt(venue_text),
                prompts.JSON_SYSTEM,
                json_mode=True,
                token=ensure_token(token),
                temperature=0.1,
            )
            data = _parse_report(response.text, "Venue")
            data.setdefault("name", venue_text)
            return VenueReport.model_validate(data)
        except AbortedError:
            raise
        except Exception:
            logger.exception("Venue check failed for %r", venue_text)
            return VenueReport.unavailable(venue_text)

    async def check_author_integrity(
        self,
        authors: str,
        token: Optional[CancellationToken] = None,
    ) -> IntegrityReport:
        """Search public records for misconduct by the given authors."""
        try:
            response = await self.dispatcher.dispatch(
                prompts.integrity_prompt(authors),
                prompts.JSON_SYSTEM,
                json_mode=True,
                token=ensure_token(token),
                temperature=0.1,
            )
            return IntegrityReport.model_validate(_parse_report(response.text, "Integrity"))
        except AbortedError:
            raise
        except Exception:
            logger.exception("Integrity check failed for %r", authors)
            return IntegrityReport.unavailable()

    # ── Conversation ───────────────────────────────────────────────────

    async def ask_follow_up(
        self,
        question: str,
        original_context: str,
        chat_history: Sequence[ChatMessage] = (),
        token: Optional[CancellationToken] = None,
    ) -> str:
        """Answer a follow-up question about an analysed paper."""
        response = await self.dispatcher.dispatch(
            prompts.follow_up_prompt(question, original_context, chat_history),
            prompts.CHAT_SYSTEM,
            json_mode=False,
            token=ensure_token(token),
            allow_search=False,
            temperature=0.5,
        )
        return extract_final_answer(response.text)

    # ── Trends ─────────────────────────────────────────────────────────

    async def synthesize_trends(
        self,
        history_items: Sequence[HistoryItem],
        token: Optional[CancellationToken] = None,
    ) -> str:
        """Write a markdown trend report across past analyses.

        Raises:
            ValueError: If *history_items* is empty.
        """
        if not history_items:
            raise ValueError(NO_HISTORY_MESSAGE)

        response = await self.dispatcher.dispatch(
            prompts.trends_prompt(prompts.trends_context(history_items)),
            prompts.TRENDS_SYSTEM,
            json_mode=False,
            token=ensure_token(token),
            allow_search=True,
            temperature=0.4,
            max_tokens=8192,
        )
        return response.text or "Failed to generate trend report."

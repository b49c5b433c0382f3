"""
Prompt templates for the analysis operations.

System instructions are fixed per operation; the ``*_prompt`` builders fill
in the caller-supplied fields.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from insight.models import ChatMessage, HistoryItem

# ── Paper analysis ─────────────────────────────────────────────────────────

ANALYSIS_SYSTEM = """\
Role: You are a senior research assistant in computer science, skilled at \
quickly dissecting academic papers and extracting their core logic.
Task: Find and read the requested paper or topic. Do not only summarise it: \
apply critical thinking that helps the reader do research.
Keep mathematical notation, technical terms, algorithm and model names \
(Transformer, ResNet, NP-hard, ...) in their original form.
Output Format: follow this Markdown structure exactly. Do not wrap the \
output in a code fence.

📄 Paper Overview
Title: [paper title]
Authors: [main authors]
Year / Venue: [e.g. 2024 / IEEE INFOCOM]
Link: [arXiv / DOI link]

🔍 Core Content
Research Problem: [which concrete pain point or challenge, in 1-2 sentences]
Main Method: [the proposed algorithm, architecture or proof]
Key Contributions:
1. [contribution 1]
2. [contribution 2]
3. [contribution 3]

💡 Insights & Critique
Highlights: [the most elegant design or most convincing result]
Limitations: [weaknesses in setup, assumptions or scalability]
Transferable Ideas: [techniques, metrics or tools that can be reused \
elsewhere, with concrete, actionable suggestions and example applications]
Open Problems: [future work stated by the authors or that you observe]
Notes: [an expert assessment in light of current trends such as LLMs or \
edge computing]
"""


def search_analysis_prompt(query: str) -> str:
    return (
        f'Search for and analyze the paper related to: "{query}". '
        "If multiple papers match, choose the most relevant or influential one. "
        "Strictly follow the defined output format."
    )


def document_analysis_prompt(query: str) -> str:
    focus = f' Focus on this context: "{query.strip()}".' if query.strip() else ""
    return (
        f"Please analyze the attached paper.{focus} "
        "Strictly follow the defined output format."
    )


# ── Secondary checks ───────────────────────────────────────────────────────

JSON_SYSTEM = "You are a helpful assistant. Output valid JSON only."


def timeliness_prompt(title: str, author_year: str, today: date | None = None) -> str:
    year = (today or date.today()).year
    return f"""\
Role: Technical Research Auditor.
Task: Analyze the timeliness of the paper "{title}" ({author_year}).
1. Determine whether this paper is "Outdated" or "Legacy" (typically more \
than 3-5 years old in fast-moving CS fields such as AI, or superseded by \
newer architectures).
2. Suggest 3 State-of-the-Art (SOTA) papers or direct successors.

STRICT REQUIREMENT:
- At least ONE recommendation MUST be published in {year - 1}-{year}. This is \
mandatory. Search for the very latest preprints if necessary.
- The other recommendations can be seminal papers from the last 1-3 years.
- Do not format the JSON with Markdown.

Output JSON only:
{{
    "isOutdated": boolean,
    "status": "Legacy" | "Current" | "Seminal Classic",
    "summary": "Short explanation (max 1 sentence) of why it is or isn't outdated.",
    "recommendations": [
        {{ "title": "Paper Title", "year": "YYYY", "reason": "Why it's better" }}
    ]
}}
"""


def link_lookup_prompt(title: str, year: str) -> str:
    return f"""\
Find the canonical, publicly accessible URL for the paper "{title}" ({year or "recent"}).
Prefer arXiv abstract pages, DOI links or the official proceedings page.
Verify that the page exists and is about this exact paper. Do not guess.

Output JSON only:
{{ "link": "https://..." }}
Use {{ "link": null }} if you cannot verify a link.
"""


def venue_prompt(venue_text: str) -> str:
    return f"""\
Role: Academic Evaluator.
Task: Analyze the academic reputation and quality of this publication venue: "{venue_text}".

Instructions:
1. Identify the canonical name (e.g. "CVPR" for "Conf. on Computer Vision...").
2. Rate its quality / tier, focusing on reputation and word of mouth \
(e.g. "Top-tier conference", "CCF A", "Q1 Journal").
3. Give a concise summary (1-2 sentences) of its community standing and \
review rigor.

Output JSON only:
{{
    "name": "Canonical Name",
    "type": "Conference" | "Journal" | "Unknown",
    "quality": "Short rating (e.g. 'CCF A / Top Tier')",
    "summary": "Concise summary of reputation."
}}
"""


def integrity_prompt(authors: str) -> str:
    return f"""\
Role: Academic Integrity Officer.
Task: Perform a background check on these authors/institutions: "{authors}".
Search specifically for: "academic misconduct", "paper retraction", \
"data fabrication", "fraud".

Rules:
- Be conservative. Only flag verified public records of misconduct.
- If clear, state "No public records of academic misconduct found."
- Keep it very concise.

Output JSON only:
{{
    "hasIssues": boolean,
    "summary": "Concise findings."
}}
"""


# ── Follow-up chat ─────────────────────────────────────────────────────────

CHAT_SYSTEM = "You are a helpful research assistant."
FINAL_ANSWER_OPEN = "<final_answer>"
FINAL_ANSWER_CLOSE = "</final_answer>"


def follow_up_prompt(
    question: str,
    original_context: str,
    chat_history: Sequence[ChatMessage],
) -> str:
    history = "\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}"
        for m in chat_history
    )
    return f"""\
Context (Original Analysis):
{original_context}

Conversation History:
{history}

Current User Question:
{question}

INTERNAL INSTRUCTION (CRITICAL):
You must perform an internal critique before answering.
1. Draft an initial answer based on the paper analysis and your knowledge.
2. Critique your draft: does it directly address the question? Is the tone \
professional and academic? Is it accurate?
3. Refine the answer based on the critique.
4. Do not use Markdown bold (no **asterisks**) in the final answer.

OUTPUT FORMAT:
Wrap your FINAL, polished answer inside {FINAL_ANSWER_OPEN} tags. Do not show \
the critique, only the result inside the tags.

Example:
{FINAL_ANSWER_OPEN}
The paper uses a Transformer-based architecture...
{FINAL_ANSWER_CLOSE}
"""


# ── Trend synthesis ────────────────────────────────────────────────────────

TRENDS_SYSTEM = CHAT_SYSTEM
EXCERPT_CHARS = 1500


def trends_context(items: Sequence[HistoryItem], excerpt_chars: int = EXCERPT_CHARS) -> str:
    blocks = []
    for index, item in enumerate(items, start=1):
        markdown = item.analysis.markdown if item.analysis else ""
        blocks.append(
            f"--- PAPER {index} ---\n"
            f"Title: {item.title}\n"
            f"Analysis Content (Excerpt):\n"
            f"{markdown[:excerpt_chars]}...\n"
            f"-------------------------"
        )
    return "\n".join(blocks)


def trends_prompt(aggregated_context: str) -> str:
    return f"""\
Role: Domain Expert & Research Director.

Task: You are reviewing a collection of paper analyses. Generate a \
Domain-Specific Trend Report.

Input Data:
{aggregated_context}

CRITICAL INSTRUCTIONS:
1. Cluster by domain first (e.g. "Computer Vision", "LLMs", "Distributed \
Systems"). Do NOT force connections between unrelated papers; analyze \
unrelated papers as separate clusters.
2. Within each cluster, analyze the chronological evolution and technical \
shifts. Only mention cross-domain connections that are genuinely meaningful.
3. Use your search tool to find 3-5 real, recent papers that match the \
current trends, and verify each exists before listing it as \
"- **Title** (Year) - [Link Title](URL)".

Output Format (Markdown):

# 🧬 Comprehensive Research Trend Report

## 1. 🔍 Domain Clustering
## 2. ⏳ Deep Dive per Domain
### 2.1 [Domain Name A]
- **Evolution**
- **Turning Points**
- **Current SOTA**
## 3. 💡 Cross-Domain Insights & Gaps
## 4. 🚀 Future Directions
## 5. 📚 Recommended Reading (Verified Recent Papers)
"""

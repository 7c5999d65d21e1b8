"""Locally generated HTML reports.

`FallbackGenerator.generate` is the known-good substitute used when a provider
stream breaks policy; `instant_report` backs the provider-free instant
endpoint. Figures are illustrative and drawn from a RNG seeded by the request,
so identical requests give identical reports (only the embedded date moves).
"""

from __future__ import annotations

import hashlib
import html
import random
import re
from collections.abc import Callable
from datetime import UTC, datetime

from services.streaming.models import ChatRequest


DEFAULT_SUBJECT = "Market Analysis"
MAX_SUBJECT_CHARS = 60

_KEYWORD_SUBJECT = re.compile(
    r"\b(?i:analy[sz]e|report\s+on|report|about|for|show|get)\s+"
    r"([A-Z][\w&.\-]*(?:\s+[A-Z][\w&.\-]*)*)"
)
_CAPITALIZED = re.compile(r"\b[A-Z][\w&.\-]+(?:\s+[A-Z][\w&.\-]+)*")
_STOP_WORDS = {
    "I",
    "The",
    "A",
    "An",
    "What",
    "How",
    "Why",
    "Please",
    "Can",
    "Could",
    "Would",
    "Give",
    "Show",
    "Tell",
    "Write",
    "Create",
    "Make",
    "Analyze",
    "Analyse",
    "Report",
}


def extract_subject(text: str) -> str:
    """Pick a short subject for the report from a user message."""
    match = _KEYWORD_SUBJECT.search(text)
    if match:
        return _trim(match.group(1))
    for candidate in _CAPITALIZED.findall(text):
        words = [w for w in candidate.split() if w not in _STOP_WORDS]
        if words:
            return _trim(" ".join(words))
    return DEFAULT_SUBJECT


def _trim(subject: str) -> str:
    subject = subject.strip().rstrip(".&-").strip()
    if len(subject) > MAX_SUBJECT_CHARS:
        subject = subject[:MAX_SUBJECT_CHARS].rsplit(" ", 1)[0]
    return subject or DEFAULT_SUBJECT


def _seed_for(request: ChatRequest) -> int:
    digest = hashlib.sha256()
    for message in request.messages:
        digest.update(message.role.value.encode())
        digest.update(b"\x00")
        digest.update(message.content.encode("utf-8"))
        digest.update(b"\x00")
    return int.from_bytes(digest.digest()[:8], "big")


class FallbackGenerator:
    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))

    def generate(self, request: ChatRequest, prose: str | None = None) -> str:
        """Build the substitute report for a non-compliant stream.

        When `prose` is given the provider's narrative is kept and wrapped in
        the report layout instead of the stock summary.
        """
        subject = extract_subject(request.latest_user_message)
        rng = random.Random(_seed_for(request))
        price = rng.uniform(50, 550)
        change = rng.uniform(-3, 5)
        market_cap = rng.randint(100, 600)
        pe_ratio = rng.uniform(10, 40)
        cards = "".join(
            (
                _metric_card("Current Price", f"${price:,.2f}", _signed_pct(change)),
                _metric_card("Market Cap", f"${market_cap}B"),
                _metric_card("P/E Ratio", f"{pe_ratio:.1f}"),
            )
        )
        if prose and prose.strip():
            paragraphs = [p.strip() for p in prose.strip().split("\n\n") if p.strip()]
            summary = "".join(
                f"<p class=\"mb-3\">{html.escape(p)}</p>" for p in paragraphs
            )
        else:
            summary = (
                f"<p>Overview of {html.escape(subject)} based on recent market "
                "performance. Momentum indicators are positive and key "
                "resistance levels are being tested. Figures shown are "
                "illustrative.</p>"
            )
        body = f"""
      <div class="grid grid-cols-1 md:grid-cols-3 gap-6">{cards}</div>
      <section class="mt-8 p-6 bg-slate-50 rounded-xl">
        <h2 class="text-xl font-bold mb-4">Analysis Summary</h2>
        {summary}
      </section>"""
        return self._page(subject, f"{subject} Report", body)

    def instant_report(self, request: ChatRequest) -> str:
        """Full report with metrics, quarterly table and outlook; no provider."""
        subject = extract_subject(request.latest_user_message)
        rng = random.Random(_seed_for(request))
        revenue = rng.uniform(5, 120)
        growth = rng.uniform(-5, 25)
        margin = rng.uniform(5, 35)
        cards = "".join(
            (
                _metric_card(
                    "Revenue (TTM)", f"${revenue:,.1f}B", _signed_pct(growth)
                ),
                _metric_card("Operating Margin", f"{margin:.1f}%"),
                _metric_card(
                    "Analyst Rating", rng.choice(("Buy", "Hold", "Outperform"))
                ),
                _metric_card("Volatility", rng.choice(("Low", "Moderate", "High"))),
            )
        )
        rows = []
        quarterly = revenue / 4
        for quarter in ("Q1", "Q2", "Q3", "Q4"):
            quarterly *= 1 + rng.uniform(-0.04, 0.08)
            rows.append(
                f"<tr><td class=\"py-2\">{quarter}</td>"
                f"<td class=\"py-2 text-right\">${quarterly:,.2f}B</td>"
                f"<td class=\"py-2 text-right\">{rng.uniform(3, 30):.1f}%</td></tr>"
            )
        body = f"""
      <div class="grid grid-cols-2 md:grid-cols-4 gap-6">{cards}</div>
      <section class="mt-8 p-6 bg-slate-50 rounded-xl">
        <h2 class="text-xl font-bold mb-4">Quarterly Performance</h2>
        <table class="w-full text-sm">
          <thead><tr><th class="text-left">Quarter</th>
            <th class="text-right">Revenue</th><th class="text-right">Margin</th></tr></thead>
          <tbody>{"".join(rows)}</tbody>
        </table>
      </section>
      <section class="mt-8 p-6 bg-slate-50 rounded-xl">
        <h2 class="text-xl font-bold mb-4">Outlook</h2>
        <p>{html.escape(subject)} shows {"expanding" if growth >= 0 else "contracting"}
          revenue with margins near {margin:.0f}%. Figures are illustrative and
          generated without a live data feed.</p>
      </section>"""
        return self._page(subject, f"{subject} Instant Report", body)

    def _page(self, subject: str, title: str, body: str) -> str:
        generated = self._clock().strftime("%Y-%m-%d")
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{html.escape(title)}</title>
  <script src="https://cdn.tailwindcss.com"></script>
</head>
<body class="p-8 bg-gradient-to-br from-slate-900 to-blue-900 font-sans">
  <main class="max-w-6xl mx-auto">
    <div class="bg-white rounded-2xl shadow-2xl p-8">
      <h1 class="text-4xl font-bold mb-2">{html.escape(subject)}</h1>
      <p class="text-sm text-slate-500 mb-6">Generated {generated}</p>{body}
    </div>
  </main>
</body>
</html>"""


def _signed_pct(value: float) -> str:
    return f"{value:+.2f}%"


def _metric_card(label: str, value: str, note: str | None = None) -> str:
    note_html = ""
    if note is not None:
        color = "text-red-600" if note.startswith("-") else "text-green-600"
        note_html = f'<div class="{color} text-sm mt-2">{html.escape(note)}</div>'
    return (
        '<div class="bg-blue-50 p-6 rounded-xl">'
        f'<div class="text-sm text-slate-500 mb-2">{html.escape(label)}</div>'
        f'<div class="text-3xl font-bold">{html.escape(value)}</div>'
        f"{note_html}</div>"
    )

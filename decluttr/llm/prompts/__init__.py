"""Prompt templates for the three classifier modes."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

SYSTEM_INSTRUCTION = (
    "You are an email analysis assistant. Always respond with valid JSON only, "
    "no additional text."
)

SUMMARIZE_PROMPT = """You are an automated classifier for someone tracking their JOB APPLICATIONS during a job search.

Output exactly two things that matter:
1. Is this email a direct response or notification about a JOB APPLICATION the user submitted? If yes, category = "Job" and set the correct stage below. Otherwise category = "Other" and set transitionFrom/transitionTo to null.
2. Does this email contain or reference an unsubscribe option (link, "unsubscribe", "manage preferences", "opt out", etc.)? Set hasUnsubscribe true or false.

Use category "Job" ONLY when the email is clearly from a company about an application the user sent (e.g. "We received your application", "Your application status", "Interview invite", rejection, offer letter). If there is any doubt, use "Other".

NEVER use "Job" for: one-time passcodes, login verification, school/university applications, job boards, job alerts or listing digests, recruiter cold outreach, emails the user sent, general newsletters.

When category is "Job", use ONLY these stages (exact spelling):
- Applications Sent
- OA / Screening
- Interview
- Offer
- Accepted
- Rejected
- No Response
- Declined

Stage rules:
- Applications Sent: application received or confirmed. Also use this when an interview is only mentioned as a future possibility ("should you be selected to interview, we will reach out").
- OA / Screening: online assessment, recruiter phone screen, initial screening call, technical assessment before a formal interview round.
- Interview: ONLY when the company is inviting or scheduling an interview in this email.
- Offer: offer letter or verbal offer.
- Accepted: the offer was accepted.
- Rejected: explicit or polite rejection ("we will not be moving forward with your candidacy").
- No Response: no response after a long delay.
- Declined: the user declined an offer.

Email content:
{content}

Respond ONLY with valid JSON:
{{
  "summary": "2-3 sentence summary here",
  "category": "Job or Other",
  "hasUnsubscribe": true or false,
  "transitionFrom": "exact stage name or null",
  "transitionTo": "exact stage name or null"
}}"""

CATEGORIZE_PROMPT = """Categorize the following email into one of these categories: "Personal", "Promotional", "Spam", "Newsletter", "Job", or "Other".

The "Job" category is ONLY for tracking job applications during a job search. Use "Job" ONLY when the email is clearly a direct response from a company about a specific job application the user submitted. When in doubt, use "Other" - never "Job".

Do NOT use "Job" for: verification codes, school applications, job boards or job alerts, recruiter cold outreach, non-job interviews, emails the user sent, career events or general newsletters.

Email content:
{content}

Respond ONLY with valid JSON in this exact format:
{{
  "category": "one of the categories above",
  "confidence": 0.0 to 1.0
}}"""

MATCH_LABEL_PROMPT = """You are an email classifier. The user has created a label called "{label_name}" and described what kind of emails should get this label:

"{label_description}"

Use BOTH the label name and the description to decide. The description may be imprecise, so let the label name narrow it. Only say match: true if the email clearly fits; when in doubt, say no.

Email content:
{content}

Respond ONLY with valid JSON in this exact format:
{{
  "match": true or false
}}"""


def build_prompt(mode: str, content: str, params: Mapping[str, Any] | None = None) -> str:
    """Render the prompt for a classifier mode."""
    params = params or {}
    if mode == "summarize":
        return SUMMARIZE_PROMPT.format(content=content)
    if mode == "categorize":
        return CATEGORIZE_PROMPT.format(content=content)
    if mode == "matchLabel":
        return MATCH_LABEL_PROMPT.format(
            content=content,
            label_name=params.get("labelName", ""),
            label_description=params.get("labelDescription", ""),
        )
    raise ValueError(f"Unknown classifier mode: {mode}")

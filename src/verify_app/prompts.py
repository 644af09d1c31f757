import re
from typing import Dict, Iterable, Mapping, Optional, Union

VERDICTS = ("true", "false", "questionable", "inconclusive")

_BASE_PROMPT = (
    "You are an AI assistant specialized in news verification and content "
    "credibility assessment."
)

_RESPONSE_FORMAT = """Provide your response in this exact format:
VERDICT: [true|false|questionable|inconclusive]
CONFIDENCE: [0-100]
EXPLANATION: [{explanation_hint}]

IMPORTANT: Be accurate and evidence-based. If you cannot determine the truth with confidence, use "questionable" or "inconclusive"."""

_VERDICT_RE = re.compile(r"VERDICT:\s*(true|false|questionable|inconclusive)", re.IGNORECASE)
_CONFIDENCE_RE = re.compile(r"CONFIDENCE:\s*(\d+)", re.IGNORECASE)
_EXPLANATION_RE = re.compile(r"EXPLANATION:\s*", re.IGNORECASE)


def generate_system_prompt(sources: Optional[Iterable[Mapping[str, str]]] = None) -> str:
    """
    Builds the verification system prompt. `sources` are {"title", "url"}
    mappings to cite; without them the model is told it has no web context.
    """
    source_list = list(sources or [])
    if source_list:
        sources_text = "\n".join(
            f"{i}. {s.get('title', '')} ({s.get('url', '')})"
            for i, s in enumerate(source_list, start=1)
        )
        return (
            f"{_BASE_PROMPT}\n\n"
            f"You have access to web search results for additional context:\n"
            f"{sources_text}\n\n"
            "Use these sources to provide evidence-based verification. "
            "Always cite your sources when making claims.\n\n"
            + _RESPONSE_FORMAT.format(explanation_hint="Detailed analysis with citations")
        )

    return (
        f"{_BASE_PROMPT}\n\n"
        "You are analyzing content without access to real-time web search. "
        "Provide your best assessment based on the content provided.\n\n"
        + _RESPONSE_FORMAT.format(explanation_hint="Detailed analysis")
    )


def parse_ai_response(response: str) -> Dict[str, Union[str, int]]:
    """
    Extracts verdict, confidence and explanation from a model reply.

    Missing or unrecognised fields fall back to "questionable", 50 and the
    whole reply respectively.
    """
    verdict = "questionable"
    confidence = 50
    explanation = response

    for line in response.split("\n"):
        trimmed = line.strip()
        upper = trimmed.upper()
        if upper.startswith("VERDICT:"):
            match = _VERDICT_RE.match(trimmed)
            if match:
                verdict = match.group(1).lower()
        elif upper.startswith("CONFIDENCE:"):
            match = _CONFIDENCE_RE.match(trimmed)
            if match:
                confidence = max(0, min(100, int(match.group(1))))
        elif upper.startswith("EXPLANATION:"):
            explanation = _EXPLANATION_RE.sub("", trimmed, count=1)

    return {"verdict": verdict, "confidence": confidence, "explanation": explanation}

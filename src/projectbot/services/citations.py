from __future__ import annotations

import re
from typing import Tuple


NO_SOURCE = "No specific source available"

# [From X], [Source: X], [Slack message, X], [Slack, X] or a bare [X].
CITATION_PATTERN = re.compile(r"\[(?:From |Source: |Slack(?: message)?,? )?(.*?)\]")
ATTRIBUTION_PATTERN = re.compile(r"according to ([^\.]+)", re.IGNORECASE)


def extract_citation(text: str, include_source_details: bool = False) -> Tuple[str, str]:
    """Split a completion into ``(content, citation)``.

    The first bracketed source is removed from the content and returned as the
    citation. Text without one is returned unchanged with ``NO_SOURCE``, so
    running this over its own output is a no-op.
    """
    content = text or ""
    citation = ""
    match = CITATION_PATTERN.search(content)
    if match:
        citation = match.group(1)
        content = (content[: match.start()] + content[match.end():]).strip()
    if not citation and include_source_details:
        attribution = ATTRIBUTION_PATTERN.search(content)
        if attribution:
            citation = attribution.group(1).strip()
    return content, citation or NO_SOURCE

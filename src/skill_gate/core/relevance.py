"""Relevance matching between a user query and gated skills."""

import re
from typing import Protocol, Sequence

from .manifest import Manifest


class RelevanceMatcher(Protocol):
    """Picks the skills relevant to a query, most relevant first."""

    def match(self, query: str, manifests: Sequence[Manifest]) -> list[str]:
        ...


class KeywordMatcher:
    """
    Default matcher: case-insensitive token overlap with skill metadata.

    Scores each skill by how many query tokens occur in its id, description
    or tags, and returns the skill ids with a positive score ordered by
    score (descending) then id.
    """

    TOKEN_PATTERN = re.compile(r"[a-z0-9]+")

    def __init__(self, min_token_length: int = 3):
        self.min_token_length = min_token_length

    def _tokens(self, text: str) -> set[str]:
        return {
            token
            for token in self.TOKEN_PATTERN.findall(text.lower())
            if len(token) >= self.min_token_length
        }

    def match(self, query: str, manifests: Sequence[Manifest]) -> list[str]:
        query_tokens = self._tokens(query)
        if not query_tokens:
            return []

        scored = []
        for manifest in manifests:
            haystack = self._tokens(
                " ".join([manifest.skill_id, manifest.description, *manifest.tags])
            )
            score = len(query_tokens & haystack)
            if score:
                scored.append((-score, manifest.skill_id))

        return [skill_id for _, skill_id in sorted(scored)]

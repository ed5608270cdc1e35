"""
Signal Extraction for the qualification funnel.

Extracts lead signals from visitor messages:
- Name ("my name is", "I'm", "call me", bare names when asked)
- Email address
- Pain-point phrases
"""

import re
import logging
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class ExtractedSignals:
    """Container for signals extracted from a message."""

    name: Optional[str] = None
    email: Optional[str] = None
    pain_points: List[str] = field(default_factory=list)
    raw_text: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "email": self.email,
            "pain_points": self.pain_points,
        }


class EntityExtractor:
    """
    Extracts lead signals from visitor messages.

    Pattern based; no external calls.
    """

    # Words that follow "I'm" / "I am" but are not names
    NON_NAME_WORDS = {
        "a", "an", "the", "and", "or", "but", "so", "just", "very", "really",
        "not", "also", "still", "here", "there", "interested", "looking",
        "curious", "trying", "working", "wondering", "thinking", "hoping",
        "good", "fine", "great", "ok", "okay", "well", "happy", "glad", "sure",
        "sorry", "new", "currently", "from", "with", "at", "in", "on", "for",
        "hi", "hello", "hey", "thanks", "thank", "yes", "no", "yeah", "nope",
        "ready", "able", "going", "busy", "back", "the", "your", "my", "our",
        "we", "i", "you", "it", "this", "that", "what", "who", "how", "why",
        "please", "need", "want", "like", "help", "ai", "is", "am", "are",
    }

    # Words that end a captured name ("John from Acme")
    NAME_TERMINATORS = {
        "and", "from", "at", "with", "of", "here", "i", "im", "i'm", "my",
        "we", "our", "the", "a", "an", "by", "in", "on", "for", "to", "but",
        "so", "who", "working", "calling",
    }

    PAIN_KEYWORDS = [
        "manual", "slow", "error", "mistake", "bottleneck", "backlog", "delay",
        "inefficien", "time-consuming", "time consuming", "waste", "wasting",
        "struggl", "difficult", "hard to", "challenge", "problem", "issue",
        "pain", "costly", "expensive", "legacy", "outdated", "redundant",
        "repetitive", "complex", "complicated", "confusing", "silo",
        "scattered", "disconnected", "can't scale", "cannot scale",
        "compliance", "complaint", "lack of", "frustrat", "tedious",
    ]

    PAIN_CATEGORIES = {
        "manual": "process automation",
        "time": "efficiency",
        "slow": "efficiency",
        "error": "accuracy",
        "mistake": "accuracy",
        "silo": "data integration",
        "scattered": "data integration",
        "customer": "customer experience",
        "complaint": "customer experience",
        "scale": "growth",
        "compliance": "regulatory",
    }

    MAX_PAIN_POINTS_PER_MESSAGE = 5
    MAX_PAIN_POINT_CHARS = 200

    def __init__(self):
        """Initialize the extractor."""
        self._build_patterns()

    def _build_patterns(self):
        """Build regex patterns for signal extraction."""
        name_words = r"([A-Za-z][A-Za-z'\-]*(?:\s+[A-Za-z][A-Za-z'\-]*){0,4})"

        # Explicit introductions, strongest first
        self.name_patterns = [
            re.compile(r"\bmy name is\s+" + name_words, re.IGNORECASE),
            re.compile(r"\bname\s*:\s*" + name_words, re.IGNORECASE),
            re.compile(r"\bcall me\s+" + name_words, re.IGNORECASE),
        ]

        # Ambiguous introductions ("this is slow"): need a capitalized name
        # unless the assistant just asked for the name
        self.weak_name_patterns = [
            re.compile(r"\bthis is\s+" + name_words, re.IGNORECASE),
            re.compile(r"\bi(?:'|’)?m\s+" + name_words, re.IGNORECASE),
            re.compile(r"\bi am\s+" + name_words, re.IGNORECASE),
        ]

        # A message that is only a name, e.g. "John Smith"
        self.bare_name_pattern = re.compile(
            r"^\s*([A-Za-z][A-Za-z'\-]*(?:\s+[A-Za-z][A-Za-z'\-]*){0,2})\s*[.!]?\s*$"
        )

        # Email pattern
        self.email_pattern = re.compile(
            r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'
        )

        # Clause boundaries for pain-point phrases
        self.clause_split_pattern = re.compile(
            r"[.!?;\n]+|,\s*(?:and|but)\s+|\s+but\s+"
        )
        self.leading_filler_pattern = re.compile(
            r"^(?:and|but|also|so|well|honestly|basically)\s+", re.IGNORECASE
        )

    def extract(self, message: str, allow_bare_name: bool = False) -> ExtractedSignals:
        """
        Extract all signals from a message.

        Args:
            message: Visitor message
            allow_bare_name: Accept a message consisting only of a name
                (used when the assistant has just asked for the name)

        Returns:
            ExtractedSignals
        """
        signals = ExtractedSignals(raw_text=message)
        signals.email = self.extract_email(message)
        signals.name = self.extract_name(message, allow_bare_name=allow_bare_name)
        signals.pain_points = self.extract_pain_points(message)
        return signals

    def extract_email(self, message: str) -> Optional[str]:
        """First email address in the message, lower-cased."""
        match = self.email_pattern.search(message)
        return match.group(0).lower() if match else None

    def extract_name(self, message: str, allow_bare_name: bool = False) -> Optional[str]:
        """Extract a person's name, or None."""
        # Emails contain "@" words that confuse the patterns
        text = self.email_pattern.sub(" ", message)

        for pattern in self.name_patterns:
            match = pattern.search(text)
            if match:
                name = self._clean_name(match.group(1))
                if name:
                    return name

        for pattern in self.weak_name_patterns:
            match = pattern.search(text)
            if match and (allow_bare_name or match.group(1)[:1].isupper()):
                name = self._clean_name(match.group(1))
                if name:
                    return name

        if allow_bare_name:
            match = self.bare_name_pattern.match(text)
            if match:
                return self._clean_name(match.group(1))

        return None

    def _clean_name(self, candidate: str) -> Optional[str]:
        words = []
        for word in candidate.split():
            if word.lower() in self.NAME_TERMINATORS:
                break
            words.append(word)
            if len(words) == 3:
                break

        if not words or words[0].lower() in self.NON_NAME_WORDS:
            return None
        if any(w.lower() in self.NON_NAME_WORDS for w in words):
            words = words[:1]

        return " ".join(w[:1].upper() + w[1:] for w in words)

    def extract_pain_points(self, message: str) -> List[str]:
        """
        Clauses that mention a pain keyword.

        De-duplicated case-insensitively, in message order.
        """
        pain_points: List[str] = []
        seen = set()

        for clause in self.clause_split_pattern.split(message):
            clause = " ".join(clause.split())
            clause = self.leading_filler_pattern.sub("", clause).strip(" ,")
            if not clause:
                continue

            lower = clause.lower()
            if not any(k in lower for k in self.PAIN_KEYWORDS):
                continue
            if lower in seen:
                continue

            seen.add(lower)
            pain_points.append(clause[: self.MAX_PAIN_POINT_CHARS])
            if len(pain_points) >= self.MAX_PAIN_POINTS_PER_MESSAGE:
                break

        return pain_points

    def categorize_pain_point(self, pain_point: str) -> str:
        lower = pain_point.lower()
        for key, category in self.PAIN_CATEGORIES.items():
            if key in lower:
                return category
        return "operational"

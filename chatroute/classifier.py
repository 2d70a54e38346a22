"""
Message analysis for chatroute.

Three cheap, deterministic text heuristics feed the router:

* :class:`ComplexityClassifier` places a message in one of five complexity
  tiers (CASUAL, SIMPLE, MEDIUM, COMPLEX, EXPERT).
* :class:`SpecializationDetector` tags a message as code, business,
  writing or reasoning work (first match wins).
* :class:`HighStakesDetector` flags legal, medical, financial and other
  professional content that should not be routed on cost alone.

All patterns come from the configuration's ``classification_rules``,
``specialization_patterns`` and ``high_stakes_patterns`` sections.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern

from .config import Config
from .registry import SPECIALIZATIONS

CASUAL = "CASUAL"
SIMPLE = "SIMPLE"
MEDIUM = "MEDIUM"
COMPLEX = "COMPLEX"
EXPERT = "EXPERT"

COMPLEXITY_TIERS = (CASUAL, SIMPLE, MEDIUM, COMPLEX, EXPERT)


def _word_pattern(term: str) -> Pattern:
    return re.compile(r'\b' + re.escape(term.lower()) + r'\b')


@dataclass
class ClassificationResult:
    """Result of complexity classification."""
    tier: str
    reasoning: List[str]
    signals: Dict[str, Any] = field(default_factory=dict)


class ComplexityClassifier:
    """Classifies messages into complexity tiers using fixed-priority rules."""

    def __init__(self, config: Config):
        """Initialize classifier with configuration.

        Args:
            config: Configuration instance with classification rules
        """
        self.config = config
        self._code_patterns = [re.compile(p) for p in config.get_code_indicators()]
        self._technical = [_word_pattern(t) for t in config.get_technical_terms()]
        self._analysis = [_word_pattern(p) for p in config.get_analysis_phrases()]

    def classify(self, text: str) -> ClassificationResult:
        """Classify a message into a complexity tier.

        Rules, in priority order:

        1. at most 5 words with no code or analysis signal → CASUAL
        2. code, technical vocabulary and more than 100 words → EXPERT
        3. code with more than 50 words, or analysis with technical
           vocabulary → COMPLEX
        4. code, analysis, or more than 50 words → MEDIUM
        5. a question, or at most 20 words → SIMPLE
        6. otherwise MEDIUM

        Args:
            text: Raw message text

        Returns:
            ClassificationResult with tier, reasoning, and the raw signals
        """
        signals = self._analyze_signals(text or "")
        words = signals['word_count']
        code = signals['has_code']
        technical = signals['has_technical']
        analysis = signals['has_analysis']

        if words <= 5 and not code and not analysis:
            tier = CASUAL
        elif code and technical and words > 100:
            tier = EXPERT
        elif (code and words > 50) or (analysis and technical):
            tier = COMPLEX
        elif code or analysis or words > 50:
            tier = MEDIUM
        elif signals['is_question'] or words <= 20:
            tier = SIMPLE
        else:
            tier = MEDIUM

        return ClassificationResult(
            tier=tier,
            reasoning=self._generate_reasoning(signals, tier),
            signals=signals,
        )

    def _analyze_signals(self, text: str) -> Dict[str, Any]:
        lowered = text.lower()
        return {
            'word_count': len(text.split()),
            'has_code': any(p.search(text) for p in self._code_patterns),
            'has_technical': any(p.search(lowered) for p in self._technical),
            'has_analysis': any(p.search(lowered) for p in self._analysis),
            'is_question': text.rstrip().endswith('?'),
        }

    def _generate_reasoning(self, signals: Dict[str, Any], tier: str) -> List[str]:
        reasoning = [f"{signals['word_count']} word(s)"]
        if signals['has_code']:
            reasoning.append("Contains code blocks or programming syntax")
        if signals['has_technical']:
            reasoning.append("Uses technical vocabulary")
        if signals['has_analysis']:
            reasoning.append("Requests analysis")
        if signals['is_question']:
            reasoning.append("Phrased as a question")
        reasoning.append(f"Classified as '{tier}'")
        return reasoning


class SpecializationDetector:
    """Tags a message with at most one specialization."""

    def __init__(self, config: Config):
        patterns = config.get_specialization_patterns()
        # Fixed scan order; first matching category wins.
        self._patterns = [
            (tag, [re.compile(p, re.IGNORECASE) for p in patterns.get(tag, [])])
            for tag in SPECIALIZATIONS
        ]

    def detect(self, text: str, context: Optional[str] = None) -> Optional[str]:
        """Return 'code', 'business', 'writing', 'reasoning', or None."""
        combined = f"{text or ''} {context or ''}"
        for tag, patterns in self._patterns:
            if any(p.search(combined) for p in patterns):
                return tag
        return None


class HighStakesDetector:
    """Flags legal, medical, financial and otherwise sensitive requests."""

    def __init__(self, config: Config):
        self._patterns = [re.compile(p, re.IGNORECASE) for p in config.get_high_stakes_patterns()]

    def detect(self, text: str, explicit: bool = False) -> bool:
        """Heuristic scan ORed with the caller's explicit flag."""
        if explicit:
            return True
        return any(p.search(text or "") for p in self._patterns)


def detect_complexity(text: str, config: Optional[Config] = None) -> str:
    """Tier name for *text*, using the packaged defaults unless *config* is given."""
    return ComplexityClassifier(config or Config()).classify(text).tier

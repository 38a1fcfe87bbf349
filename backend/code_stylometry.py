"""
Code stylometry feature extraction.

This module computes deterministic stylometric features from a single code text:
- Line / character statistics and comment ratio
- Ternary, direct-return and duplicate-line flags
- Control-flow complexity and nesting depth
- AI-generation likelihood and a pattern-based perplexity proxy
- Structural summary (functions, classes, imports, naming convention)

Language-specific detection is driven by LANGUAGE_PATTERNS, a table of regex sets
keyed by language tag. Unknown languages fall back to the JavaScript set.
"""
import re
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from keystroke_features import AnomalyVerdict

logger = logging.getLogger(__name__)


DEFAULT_LANGUAGE = "javascript"

_C_LIKE_COMMENT = r'^\s*//|/\*|\*/|^\s*\*\s'
_C_LIKE_TERNARY = r'(?<!\?)\?(?![:.?])[^:\n]*:'
_C_LIKE_RETURN = r'^\s*return\s+[^;{\n]+;?\s*$'
_C_LIKE_CONTROL = r'\b(?:if|for|while|switch|catch)\s*\('

LANGUAGE_PATTERNS: Dict[str, Dict[str, object]] = {
    'javascript': {
        'comment': _C_LIKE_COMMENT,
        'ternary': _C_LIKE_TERNARY,
        'direct_return': _C_LIKE_RETURN,
        'control': _C_LIKE_CONTROL,
        'function': r'\bfunction\s+\w+\s*\(|\b\w+\s*=\s*(?:async\s*)?\([^)]*\)\s*=>',
        'class': r'\bclass\s+\w+',
        'import': r'\bimport\s+.*\bfrom\b|\brequire\s*\(',
        'unusual': [_C_LIKE_RETURN, r'\?\s*.*\s*:', r'=>\s*\{', r'\.map\s*\(', r'\.filter\s*\(', r'\.reduce\s*\('],
    },
    'python': {
        'comment': r'^\s*#',
        'ternary': r'^[ \t]*(?!if\b|elif\b)\S.*[ \t]if[ \t].+[ \t]else\b',
        'direct_return': r'^\s*return\s+[^:\n]+$',
        'control': r'\b(?:if|elif|for|while)\s|\btry:|\bexcept\b',
        'function': r'\bdef\s+\w+',
        'class': r'\bclass\s+\w+',
        'import': r'^\s*import\s+\w+|^\s*from\s+[\w.]+\s+import\b',
        'unusual': [r'^\s*return\s+[^:\n]+$', r'\sif\s.+\selse\s', r'\blambda\b', r'\bmap\s*\(', r'\bfilter\s*\(', r'\breduce\s*\('],
    },
    'java': {
        'comment': _C_LIKE_COMMENT,
        'ternary': _C_LIKE_TERNARY,
        'direct_return': _C_LIKE_RETURN,
        'control': _C_LIKE_CONTROL,
        'function': r'\b(?:public|private|protected)\s+(?:static\s+)?[\w<>\[\]]+\s+\w+\s*\(',
        'class': r'\bclass\s+\w+',
        'import': r'^\s*import\s+[\w.]+',
        'unusual': [_C_LIKE_RETURN, r'\?\s*.*\s*:', r'->', r'\.map\s*\(', r'\.filter\s*\(', r'\.reduce\s*\('],
    },
    'cpp': {
        'comment': _C_LIKE_COMMENT,
        'ternary': _C_LIKE_TERNARY,
        'direct_return': _C_LIKE_RETURN,
        'control': _C_LIKE_CONTROL,
        'function': r'\b\w+\s+\w+\s*\([^)]*\)\s*\{',
        'class': r'\bclass\s+\w+',
        'import': r'#include\s*[<"]',
        'unusual': [_C_LIKE_RETURN, r'\?\s*.*\s*:', r'\[[^\]]*\]\s*\([^)]*\)\s*\{', r'std::transform\s*\(', r'std::copy_if\s*\(', r'std::accumulate\s*\('],
    },
}

LANGUAGE_ALIASES = {
    'js': 'javascript',
    'typescript': 'javascript',
    'ts': 'javascript',
    'py': 'python',
    'c++': 'cpp',
    'c': 'cpp',
}

# Identifier names that AI assistants reach for by default
AI_TYPICAL_NAMES = {
    'result', 'output', 'response', 'data', 'value', 'item', 'element',
    'temp', 'tmp', 'arr', 'list', 'dict', 'obj', 'str', 'num',
}

AI_PROBABILITY_WEIGHTS = {
    'ternary': 0.2,
    'direct_returns': 0.3,
    'no_duplicates': 0.1,
    'low_comments': 0.1,
    'ai_names': 0.2,
    'long_lines': 0.1,
}

CODE_ANOMALY_WEIGHTS = {
    'high_ai_probability': 0.4,
    'ternary_and_returns': 0.3,
    'minimal_comments': 0.2,
    'too_simple': 0.2,
    'camel_case_functions': 0.1,
}

PERPLEXITY_MATCH_WEIGHT = 0.1
DUPLICATE_MIN_LINE_LEN = 10
DIRECT_RETURN_MIN_COUNT = 3
SUSPICIOUS_CONFIDENCE = 0.3

_IDENTIFIER = re.compile(r'\b[A-Za-z_][A-Za-z0-9_]*\b')
_CAMEL = re.compile(r'^[a-z]+[a-z0-9]*[A-Z][A-Za-z0-9]*$')
_SNAKE = re.compile(r'^[a-z][a-z0-9]*(?:_[a-z0-9]+)+$')
_PASCAL = re.compile(r'^[A-Z][a-z0-9]+(?:[A-Z][a-z0-9]*)*$')


@dataclass
class StructuralPatterns:
    """Structural summary of a code sample."""
    function_count: int = 0
    class_count: int = 0
    import_count: int = 0
    variable_naming_pattern: str = "mixed"


@dataclass
class CodeStylometryFeatures:
    """Static features derived from one code text."""
    language: str
    line_count: int = 0
    character_count: int = 0
    has_ternary_operators: bool = False
    has_direct_returns: bool = False
    direct_return_count: int = 0
    has_duplicate_expressions: bool = False
    average_line_length: float = 0.0
    comment_ratio: float = 0.0
    complexity_score: int = 0
    ai_generated_probability: float = 0.0
    perplexity_score: float = 0.0
    structural_patterns: StructuralPatterns = field(default_factory=StructuralPatterns)


def resolve_language(language: Optional[str]) -> str:
    """Map a language tag onto a LANGUAGE_PATTERNS key."""
    if not language:
        return DEFAULT_LANGUAGE
    tag = language.strip().lower()
    tag = LANGUAGE_ALIASES.get(tag, tag)
    return tag if tag in LANGUAGE_PATTERNS else DEFAULT_LANGUAGE


class CodeStyleAnalyzer:
    """Extract code stylometry features for one language."""

    def __init__(self, language: str = DEFAULT_LANGUAGE):
        """
        Initialize the analyzer.

        Args:
            language: Language tag (aliases and unknown tags are resolved)
        """
        self.language = resolve_language(language)
        patterns = LANGUAGE_PATTERNS[self.language]
        self.comment_re = re.compile(patterns['comment'])
        self.ternary_re = re.compile(patterns['ternary'], re.MULTILINE)
        self.direct_return_re = re.compile(patterns['direct_return'], re.MULTILINE)
        self.control_re = re.compile(patterns['control'], re.MULTILINE)
        self.function_re = re.compile(patterns['function'], re.MULTILINE)
        self.class_re = re.compile(patterns['class'])
        self.import_re = re.compile(patterns['import'], re.MULTILINE)
        self.unusual_res = [re.compile(p, re.MULTILINE) for p in patterns['unusual']]

    def has_ternary(self, code: str) -> bool:
        return self.ternary_re.search(code) is not None

    def count_direct_returns(self, code: str) -> int:
        return len(self.direct_return_re.findall(code))

    def has_duplicate_lines(self, code: str) -> bool:
        """True if any substantial line (after whitespace collapse) repeats verbatim."""
        counts = Counter()
        for line in code.split('\n'):
            clean = re.sub(r'\s+', ' ', line).strip()
            if len(clean) > DUPLICATE_MIN_LINE_LEN:
                counts[clean] += 1
        return any(count > 1 for count in counts.values())

    def comment_ratio(self, lines: List[str]) -> float:
        if not lines:
            return 0.0
        comment_lines = sum(1 for line in lines if self.comment_re.search(line))
        return comment_lines / len(lines)

    def nesting_depth(self, code: str) -> int:
        """Maximum nesting of brace / parenthesis pairs."""
        depth = 0
        max_depth = 0
        for char in code:
            if char in '{(':
                depth += 1
                max_depth = max(max_depth, depth)
            elif char in '})':
                depth = max(0, depth - 1)
        return max_depth

    def complexity_score(self, code: str) -> int:
        control = len(self.control_re.findall(code))
        functions = len(self.function_re.findall(code))
        return control + 2 * self.nesting_depth(code) + functions

    def ai_name_ratio(self, code: str) -> float:
        identifiers = _IDENTIFIER.findall(code)
        if not identifiers:
            return 0.0
        hits = sum(1 for name in identifiers if name.lower() in AI_TYPICAL_NAMES)
        return hits / len(identifiers)

    def perplexity_score(self, code: str, non_blank_lines: int) -> float:
        if non_blank_lines == 0:
            return 0.0
        matches = sum(len(p.findall(code)) for p in self.unusual_res)
        return min(matches * PERPLEXITY_MATCH_WEIGHT / non_blank_lines, 1.0)

    def naming_pattern(self, code: str) -> str:
        """
        Dominant naming convention among classified identifiers.

        Single lower-case words fit both camelCase and snake_case and are left
        unclassified, as are ALL_CAPS constants.
        """
        counts = Counter()
        for name in _IDENTIFIER.findall(code):
            if _CAMEL.match(name):
                counts['camelCase'] += 1
            elif _SNAKE.match(name):
                counts['snake_case'] += 1
            elif _PASCAL.match(name):
                counts['PascalCase'] += 1

        total = sum(counts.values())
        if total == 0:
            return "mixed"
        for pattern in ('camelCase', 'snake_case', 'PascalCase'):
            if counts[pattern] / total > 0.5:
                return pattern
        return "mixed"

    def structural_patterns(self, code: str) -> StructuralPatterns:
        return StructuralPatterns(
            function_count=len(self.function_re.findall(code)),
            class_count=len(self.class_re.findall(code)),
            import_count=len(self.import_re.findall(code)),
            variable_naming_pattern=self.naming_pattern(code),
        )

    def extract_features(self, code: str) -> CodeStylometryFeatures:
        """
        Extract all stylometry features from a code text.

        Args:
            code: Source text

        Returns:
            CodeStylometryFeatures (pure function of the text and language)
        """
        lines = code.split('\n')
        non_blank = [line for line in lines if line.strip()]

        average_line_length = (
            sum(len(line) for line in non_blank) / len(non_blank) if non_blank else 0.0
        )
        comment_ratio = self.comment_ratio(lines)
        has_ternary = self.has_ternary(code)
        direct_returns = self.count_direct_returns(code)
        has_direct_returns = direct_returns >= DIRECT_RETURN_MIN_COUNT
        has_duplicates = self.has_duplicate_lines(code)

        probability = 0.0
        if has_ternary:
            probability += AI_PROBABILITY_WEIGHTS['ternary']
        if has_direct_returns:
            probability += AI_PROBABILITY_WEIGHTS['direct_returns']
        if not has_duplicates:
            probability += AI_PROBABILITY_WEIGHTS['no_duplicates']
        if comment_ratio < 0.05:
            probability += AI_PROBABILITY_WEIGHTS['low_comments']
        if self.ai_name_ratio(code) > 0.3:
            probability += AI_PROBABILITY_WEIGHTS['ai_names']
        if average_line_length > 80:
            probability += AI_PROBABILITY_WEIGHTS['long_lines']

        return CodeStylometryFeatures(
            language=self.language,
            line_count=len(lines),
            character_count=len(code),
            has_ternary_operators=has_ternary,
            has_direct_returns=has_direct_returns,
            direct_return_count=direct_returns,
            has_duplicate_expressions=has_duplicates,
            average_line_length=average_line_length,
            comment_ratio=comment_ratio,
            complexity_score=self.complexity_score(code),
            ai_generated_probability=round(min(probability, 1.0), 4),
            perplexity_score=self.perplexity_score(code, len(non_blank)),
            structural_patterns=self.structural_patterns(code),
        )


# Analyzer cache, one per resolved language
_analyzers: Dict[str, CodeStyleAnalyzer] = {}


def get_analyzer(language: Optional[str] = None) -> CodeStyleAnalyzer:
    """Get or create the analyzer for a language."""
    resolved = resolve_language(language)
    analyzer = _analyzers.get(resolved)
    if analyzer is None:
        analyzer = CodeStyleAnalyzer(resolved)
        _analyzers[resolved] = analyzer
    return analyzer


def analyze_code(code: str, language: Optional[str] = None) -> CodeStylometryFeatures:
    """
    Convenience function to extract code stylometry features.

    Args:
        code: Source text
        language: Language tag (defaults to javascript)

    Returns:
        CodeStylometryFeatures
    """
    return get_analyzer(language).extract_features(code)


def detect_code_anomalies(features: CodeStylometryFeatures) -> AnomalyVerdict:
    """
    Apply the fixed code-anomaly rules to extracted features.

    Rules (confidence contributions):
        AI probability >= 0.7                         -> +0.4
        ternary and direct returns both present       -> +0.3
        comment ratio < 0.02 with more than 20 lines  -> +0.2
        complexity < 2 with more than 30 lines        -> +0.2
        camelCase naming with more than 5 functions   -> +0.1
    """
    anomalies = []
    confidence = 0.0

    if features.ai_generated_probability >= 0.7:
        anomalies.append('High probability of AI-generated code')
        confidence += CODE_ANOMALY_WEIGHTS['high_ai_probability']

    if features.has_ternary_operators and features.has_direct_returns:
        anomalies.append('Code exhibits assistant-like patterns (ternary operators + direct returns)')
        confidence += CODE_ANOMALY_WEIGHTS['ternary_and_returns']

    if features.comment_ratio < 0.02 and features.line_count > 20:
        anomalies.append('Unusually clean code with minimal comments')
        confidence += CODE_ANOMALY_WEIGHTS['minimal_comments']

    if features.complexity_score < 2 and features.line_count > 30:
        anomalies.append('Unusually simple code for its length')
        confidence += CODE_ANOMALY_WEIGHTS['too_simple']

    patterns = features.structural_patterns
    if patterns.variable_naming_pattern == 'camelCase' and patterns.function_count > 5:
        anomalies.append('Consistent camelCase naming across many functions')
        confidence += CODE_ANOMALY_WEIGHTS['camel_case_functions']

    confidence = round(min(max(confidence, 0.0), 1.0), 4)
    logger.debug(f"Code verdict: confidence={confidence:.2f}, anomalies={anomalies}")

    return AnomalyVerdict(
        is_suspicious=confidence > SUSPICIOUS_CONFIDENCE,
        anomalies=anomalies,
        confidence=confidence,
    )

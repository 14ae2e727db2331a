"""
Sensitivity classification for OCR text regions.

Deterministic rules run first (user literals, then structured PII patterns);
whatever is left goes to the external text classifier in a single batch.
"""

import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from .config import Category, ClassificationConfig, Region, RegionSource, Verdict
from .exceptions import AnonymizerError, ClassificationFailed
from .logger import LoggerMixin, preview_text
from .text_classifier import TextClassifier


EMAIL_RE = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
PHONE_CANDIDATE_RE = re.compile(r'(?<![\w+])\+?\(?\d[\d\s().-]{5,}\d(?!\w)')
PHONE_SEPARATOR_RE = re.compile(r'[\s().-]')
DATE_SHAPE_RE = re.compile(r'\d{4}[-.]\d{1,2}[-.]\d{1,2}|\d{1,2}[-.]\d{1,2}[-.]\d{2,4}')
IPV4_SHAPE_RE = re.compile(r'\d{1,3}(?:\.\d{1,3}){3}')
CARD_CANDIDATE_RE = re.compile(r'(?<!\d)(?:\d[ -]?){12,18}\d(?!\d)')
NON_DIGIT_RE = re.compile(r'\D')


def luhn_valid(digits: str) -> bool:
    """Check a digit string against the Luhn checksum."""
    if not digits or not digits.isdigit():
        return False
    total = 0
    for i, char in enumerate(reversed(digits)):
        value = int(char)
        if i % 2 == 1:
            value *= 2
            if value > 9:
                value -= 9
        total += value
    return total % 10 == 0


def shannon_entropy(text: str) -> float:
    """Shannon entropy in bits per character."""
    if not text:
        return 0.0
    length = len(text)
    return -sum(
        (count / length) * math.log2(count / length)
        for count in Counter(text).values()
    )


def match_email(text: str) -> bool:
    return EMAIL_RE.search(text) is not None


def match_phone(text: str) -> bool:
    for match in PHONE_CANDIDATE_RE.finditer(text):
        candidate = match.group().strip()
        digits = NON_DIGIT_RE.sub('', candidate)
        if not 7 <= len(digits) <= 15:
            continue
        separated = PHONE_SEPARATOR_RE.search(candidate) is not None
        # Unseparated numbers without a country code: 10-11 digits only
        if not candidate.startswith('+') and not separated and not 10 <= len(digits) <= 11:
            continue
        if DATE_SHAPE_RE.fullmatch(candidate) or IPV4_SHAPE_RE.fullmatch(candidate):
            continue
        # Long checksum-valid runs belong to the card rule
        if len(digits) >= 13 and luhn_valid(digits):
            continue
        return True
    return False


def match_credit_card(text: str) -> bool:
    for match in CARD_CANDIDATE_RE.finditer(text):
        digits = NON_DIGIT_RE.sub('', match.group())
        if 13 <= len(digits) <= 19 and luhn_valid(digits):
            return True
    return False


def _char_class(char: str) -> str:
    if char.isdigit():
        return "digit"
    if char.islower():
        return "lower"
    if char.isupper():
        return "upper"
    return "other"


def class_run_ratio(token: str) -> float:
    """Runs of same-class characters (lower, upper, digit, other) per character."""
    if not token:
        return 0.0
    classes = [_char_class(c) for c in token]
    runs = 1 + sum(1 for prev, cur in zip(classes, classes[1:]) if prev != cur)
    return runs / len(token)


def make_api_key_matcher(min_length: int, min_entropy: float, min_run_ratio: float) -> Callable[[str], bool]:
    """Build a matcher for long, high-entropy tokens mixing letters and digits."""
    token_re = re.compile(r'[A-Za-z0-9_\-]{%d,}' % min_length)

    def match_api_key(text: str) -> bool:
        for token in token_re.findall(text):
            if not any(c.isdigit() for c in token) or not any(c.isalpha() for c in token):
                continue
            if shannon_entropy(token) >= min_entropy and class_run_ratio(token) >= min_run_ratio:
                return True
        return False

    return match_api_key


@dataclass
class PatternRule:
    """Structured-PII rule."""
    category: Category
    matcher: Callable[[str], bool]
    description: str = ""


class RuleDetector(LoggerMixin):
    """Applies structured-PII rules in fixed priority order."""

    def __init__(self, config: Optional[ClassificationConfig] = None):
        self.config = config or ClassificationConfig()
        self.rules = self._compile_rules()

    def _compile_rules(self) -> List[PatternRule]:
        available = [
            PatternRule(Category.EMAIL, match_email, "Email address"),
            PatternRule(Category.PHONE, match_phone, "Phone number, 7-15 digits"),
            PatternRule(Category.CREDIT_CARD, match_credit_card, "Luhn-valid card number"),
            PatternRule(
                Category.API_KEY,
                make_api_key_matcher(
                    self.config.api_key_min_length,
                    self.config.api_key_min_entropy,
                    self.config.api_key_min_run_ratio
                ),
                "High-entropy token"
            ),
        ]
        enabled = set(self.config.enabled_categories)
        rules = [rule for rule in available if rule.category in enabled]
        self.log_debug(f"Enabled {len(rules)} pattern rules")
        return rules

    def detect(self, text: str) -> Optional[Category]:
        """Return the category of the first matching rule, if any."""
        for rule in self.rules:
            if rule.matcher(text):
                return rule.category
        return None


class SensitivityClassifier(LoggerMixin):
    """
    Marks OCR regions sensitive or not.

    Policy per region, first match wins: user literal, structured pattern,
    external classifier verdict. Non-OCR regions pass through untouched.
    """

    def __init__(
        self,
        config: Optional[ClassificationConfig] = None,
        text_classifier: Optional[TextClassifier] = None
    ):
        self.config = config or ClassificationConfig()
        self.text_classifier = text_classifier
        self.rule_detector = RuleDetector(self.config)

    def classify(self, regions: Sequence[Region], literals: Optional[Sequence[str]] = None) -> List[Region]:
        """
        Classify every OCR region.

        Args:
            regions: Candidates from the aggregator
            literals: User-supplied substrings (case-insensitive)

        Returns:
            New region list in input order with ``sensitive`` resolved

        Raises:
            ClassificationFailed: If the external batch call fails or is malformed;
                no region is returned as classified in that case
        """
        lowered = [literal.lower() for literal in literals or [] if literal]
        result: List[Optional[Region]] = []
        pending: Dict[str, List[int]] = {}
        by_rule = 0

        for index, region in enumerate(regions):
            if region.source is not RegionSource.OCR_TEXT:
                result.append(region)
                continue

            text = region.text or ""
            if any(literal in text.lower() for literal in lowered):
                self.log_debug(f"User literal matched {preview_text(text)}")
                result.append(region.classified(True, Category.USER_LITERAL))
                by_rule += 1
                continue

            category = self.rule_detector.detect(text)
            if category is not None:
                self.log_debug(f"Rule {category.value} matched {preview_text(text)}")
                result.append(region.classified(True, category))
                by_rule += 1
                continue

            result.append(None)
            pending.setdefault(text, []).append(index)

        if pending:
            verdicts = self._resolve(list(pending))
            for text, verdict in zip(pending, verdicts):
                sensitive = self._is_sensitive(verdict)
                for index in pending[text]:
                    result[index] = regions[index].classified(sensitive)

        sensitive_count = sum(1 for r in result if r.source is RegionSource.OCR_TEXT and r.sensitive)
        self.log_info(
            f"Classified {sum(len(v) for v in pending.values()) + by_rule} text regions: "
            f"{by_rule} by rule, {sensitive_count} sensitive in total"
        )
        return result

    def _resolve(self, texts: List[str]) -> List[Verdict]:
        if not self.config.use_external_classifier or self.text_classifier is None:
            self.log_warning(
                f"External classifier disabled; treating {len(texts)} unresolved strings as not sensitive"
            )
            return [Verdict.NEITHER] * len(texts)

        try:
            verdicts = self.text_classifier.classify(texts)
        except AnonymizerError:
            raise
        except Exception as e:
            raise ClassificationFailed(f"Text classifier raised {type(e).__name__}: {e}") from e

        if not isinstance(verdicts, (list, tuple)) or len(verdicts) != len(texts):
            received = len(verdicts) if isinstance(verdicts, (list, tuple)) else None
            raise ClassificationFailed(
                f"Text classifier returned {received} verdicts for {len(texts)} strings",
                details={"expected": len(texts), "received": received}
            )
        if not all(isinstance(v, Verdict) for v in verdicts):
            raise ClassificationFailed("Text classifier returned malformed verdicts")
        return list(verdicts)

    def _is_sensitive(self, verdict: Verdict) -> bool:
        if verdict is Verdict.PERSON_NAME:
            return self.config.mask_personal_names
        if verdict is Verdict.COMPANY_NAME:
            return self.config.mask_company_names
        return False

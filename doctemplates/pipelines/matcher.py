# doctemplates/pipelines/matcher.py
"""
Template Matcher

Scores documents against templates and ranks the results.

Scoring uses six weighted factors:
- Format (exact, or doc/docx and xls/xlsx compatibility)
- Keyword overlap with the template's expected keywords
- Pattern overlap (named shapes and template regexes)
- Structure (pages, layout class, tables, scanned)
- Metadata (title/author patterns)
- File name (regex or keyword hits in the file stem)

Weights come from the template's MatchingCriteria (or a caller override).
"""

import logging
import time
from difflib import SequenceMatcher
from typing import Iterable, List, Optional, Tuple

from ..config.matching_config import MatchingSettings
from ..exceptions import OperationCancelled
from ..schemas.document import DocumentStructure, ProcessedDocument
from ..schemas.enums import ExtractionMethod
from ..schemas.results import (
    ConfidenceScore,
    MatchOutcome,
    TemplateMatchResult,
    TemplatePerformanceAnalysis,
)
from ..schemas.template import MatchingCriteria, Template
from .cancellation import check_cancelled
from .fingerprint import (
    DOCUMENT_PATTERNS,
    DocumentFingerprint,
    DocumentFingerprinter,
    TemplateFingerprint,
    TemplateFingerprinter,
)
from .regex_cache import RegexCache

logger = logging.getLogger(__name__)

COMPATIBLE_FORMATS = {
    frozenset({"doc", "docx"}),
    frozenset({"xls", "xlsx"}),
}
COMPATIBLE_FORMAT_SCORE = 0.8
NEUTRAL_METADATA_SCORE = 0.5

LEARNED_KEYWORDS_PER_FIELD = 5


class ConfidenceScorer:
    """Weighted similarity between one document and one template."""

    def __init__(
        self,
        settings: Optional[MatchingSettings] = None,
        regex_cache: Optional[RegexCache] = None,
    ):
        self.settings = settings or MatchingSettings()
        self.regex_cache = regex_cache or RegexCache()

    def score(
        self,
        document: DocumentFingerprint,
        template: Template,
        template_fp: TemplateFingerprint,
        criteria: Optional[MatchingCriteria] = None,
    ) -> ConfidenceScore:
        """
        Compute the confidence score.

        Args:
            document: Document fingerprint
            template: Template definition (for metadata / file name hints)
            template_fp: Fingerprint of ``template``
            criteria: Weight override; defaults to the template's own criteria

        Returns:
            ConfidenceScore with six sub-scores, overall and detailed scores
        """
        criteria = criteria or template.matching_criteria
        score = ConfidenceScore(
            format_match=self.format_similarity(document.format, template_fp.supported_formats),
            keyword_match=self.keyword_similarity(document.keyword_set, template_fp.expected_keywords),
            pattern_match=self.pattern_similarity(document, template_fp.expected_patterns),
            structure_match=self.structure_similarity(document.structure, template_fp.expected_structure),
            metadata_match=self.metadata_similarity(document, template.matching_criteria),
            filename_match=self.filename_similarity(document, template.matching_criteria, template_fp),
        )
        score.compute_overall(criteria.weights)
        score.detailed_scores = {
            "RequiredKeywordMatch": self.required_keyword_match(
                document.keyword_set, template_fp.required_keywords
            ),
            "ComplexityMatch": self.complexity_match(document, template_fp),
            "LanguageMatch": 1.0 if document.language == "en" else 0.8,
        }
        return score

    # ------------------------------------------------------------------
    # Sub-scores
    # ------------------------------------------------------------------

    @staticmethod
    def format_similarity(document_format: str, supported_formats: Iterable[str]) -> float:
        doc_format = document_format.lower()
        supported = {f.lower() for f in supported_formats}
        if doc_format in supported:
            return 1.0
        for fmt in supported:
            if frozenset({doc_format, fmt}) in COMPATIBLE_FORMATS:
                return COMPATIBLE_FORMAT_SCORE
        return 0.0

    def _keyword_present(self, keyword: str, document_keywords: frozenset) -> bool:
        keyword = keyword.lower()
        if keyword in document_keywords:
            return True
        # parts under 3 characters never reach the keyword set
        long_parts = [p for p in keyword.split() if len(p) >= 3]
        if len(keyword.split()) > 1 and long_parts and all(p in document_keywords for p in long_parts):
            return True
        if self.settings.enable_fuzzy_matching:
            threshold = self.settings.fuzzy_matching_threshold
            return any(
                SequenceMatcher(None, keyword, candidate).ratio() >= threshold
                for candidate in document_keywords
            )
        return False

    def keyword_similarity(self, document_keywords: frozenset, expected: frozenset) -> float:
        if not expected:
            return 1.0
        if not document_keywords:
            return 0.0
        hits = sum(1 for k in expected if self._keyword_present(k, document_keywords))
        return hits / len(expected)

    def required_keyword_match(self, document_keywords: frozenset, required: frozenset) -> float:
        if not required:
            return 1.0
        hits = sum(1 for k in required if self._keyword_present(k, document_keywords))
        return hits / len(required)

    def pattern_similarity(self, document: DocumentFingerprint, expected: Tuple[str, ...]) -> float:
        """Named shapes compare by name; regex sources are searched in the text."""
        if not expected:
            return 1.0
        shapes = {p.lower() for p in document.patterns}
        hits = 0
        for pattern in expected:
            name = pattern.lower()
            if name in shapes:
                hits += 1
            elif name in DOCUMENT_PATTERNS:
                continue
            else:
                compiled = self.regex_cache.try_get(pattern)
                if compiled is not None and compiled.search(document.text):
                    hits += 1
        return hits / len(expected)

    @staticmethod
    def structure_similarity(document: DocumentStructure, expected: DocumentStructure) -> float:
        parts = []
        if expected.page_count > 0:
            doc_pages = max(1, document.page_count)
            parts.append(min(doc_pages, expected.page_count) / max(doc_pages, expected.page_count))
        parts.append(1.0 if document.layout_type == expected.layout_type else 0.5)
        parts.append(1.0 if document.has_tables == expected.has_tables else 0.0)
        parts.append(1.0 if document.is_scanned == expected.is_scanned else 0.0)
        return sum(parts) / len(parts)

    def metadata_similarity(self, document: DocumentFingerprint, criteria: MatchingCriteria) -> float:
        checks = [("title", p) for p in criteria.title_patterns]
        checks += [("author", p) for p in criteria.author_patterns]
        if not checks:
            return NEUTRAL_METADATA_SCORE
        hits = 0
        for key, pattern in checks:
            values = [document.metadata.get(key, "")]
            if key == "author":
                values.append(document.metadata.get("creator", ""))
            compiled = self.regex_cache.try_get(pattern)
            if compiled is not None and any(compiled.search(v) for v in values if v):
                hits += 1
        return hits / len(checks)

    def filename_similarity(
        self,
        document: DocumentFingerprint,
        criteria: MatchingCriteria,
        template_fp: TemplateFingerprint,
    ) -> float:
        stem = document.file_stem.lower()
        for pattern in criteria.file_name_patterns:
            compiled = self.regex_cache.try_get(pattern)
            if compiled is not None and compiled.search(stem):
                return 1.0
        if not template_fp.expected_keywords:
            return 0.0
        hits = sum(1 for k in template_fp.expected_keywords if k.lower() in stem)
        return hits / len(template_fp.expected_keywords)

    @staticmethod
    def complexity_match(document: DocumentFingerprint, template_fp: TemplateFingerprint) -> float:
        doc_complexity = (
            document.structure.word_count / 100.0
            + len(document.keywords) / 10.0
            + document.structure.page_count
        )
        high = max(doc_complexity, template_fp.complexity_score)
        if high <= 0:
            return 1.0
        return min(doc_complexity, template_fp.complexity_score) / high


def match_reasons(score: ConfidenceScore) -> List[str]:
    reasons = []
    if score.format_match > 0.8:
        reasons.append("Document format matches template requirements")
    if score.keyword_match > 0.6:
        reasons.append("High keyword similarity detected")
    if score.pattern_match > 0.7:
        reasons.append("Text patterns match template expectations")
    if score.structure_match > 0.5:
        reasons.append("Document structure is compatible")
    return reasons


def match_warnings(score: ConfidenceScore) -> List[str]:
    warnings = []
    if score.format_match < 0.5:
        warnings.append("Document format may not be fully supported")
    if score.keyword_match < 0.3:
        warnings.append("Low keyword match - manual verification recommended")
    if score.overall < 0.6:
        warnings.append("Low overall confidence - consider manual template selection")
    return warnings


class MatchRanker:
    """
    Scores a document against a template library and ranks the results.

    Owns the fingerprint caches; callers that mutate a template should call
    ``invalidate_template`` (the template store does this through
    ``learn_from_match`` and its own update hooks).
    """

    def __init__(
        self,
        settings: Optional[MatchingSettings] = None,
        document_fingerprinter: Optional[DocumentFingerprinter] = None,
        template_fingerprinter: Optional[TemplateFingerprinter] = None,
        scorer: Optional[ConfidenceScorer] = None,
    ):
        self.settings = settings or MatchingSettings()
        self.document_fingerprinter = document_fingerprinter or DocumentFingerprinter(self.settings)
        self.template_fingerprinter = template_fingerprinter or TemplateFingerprinter(self.settings)
        self.scorer = scorer or ConfidenceScorer(self.settings)

    def fingerprint(self, document: ProcessedDocument) -> DocumentFingerprint:
        return self.document_fingerprinter.fingerprint(document)

    def score_template(
        self,
        document: DocumentFingerprint,
        template: Template,
        criteria: Optional[MatchingCriteria] = None,
    ) -> TemplateMatchResult:
        """Score one template against an already fingerprinted document."""
        start = time.perf_counter()
        template_fp = self.template_fingerprinter.fingerprint(template)
        score = self.scorer.score(document, template, template_fp, criteria)
        return TemplateMatchResult(
            template=template,
            confidence=score,
            matching_time=time.perf_counter() - start,
            match_reasons=match_reasons(score),
            warnings=match_warnings(score),
            metadata={
                "document_format": document.format,
                "word_count": document.structure.word_count,
                "page_count": document.structure.page_count,
                "template_complexity": template_fp.complexity_score,
            },
        )

    def get_all_matches(
        self,
        document: ProcessedDocument,
        templates: Iterable[Template],
        minimum_confidence: Optional[float] = None,
        max_results: Optional[int] = None,
        criteria: Optional[MatchingCriteria] = None,
        cancel_token=None,
    ) -> List[TemplateMatchResult]:
        """
        Rank templates for a document.

        Args:
            document: Processed document
            templates: Candidate templates (inactive ones are skipped)
            minimum_confidence: Drop results below this overall score
            max_results: Keep at most this many results
            criteria: Weight override applied to every template
            cancel_token: Checked between templates

        Returns:
            Results sorted by overall confidence (descending), ties by template id
        """
        if minimum_confidence is None:
            minimum_confidence = self.settings.minimum_confidence
        if max_results is None:
            max_results = self.settings.max_results

        doc_fp = self.fingerprint(document)
        results: List[TemplateMatchResult] = []
        for template in templates:
            check_cancelled(cancel_token, "template matching")
            if not template.is_active:
                continue
            try:
                result = self.score_template(doc_fp, template, criteria)
            except OperationCancelled:
                raise
            except Exception as e:
                logger.warning(
                    f"Scoring template {template.name} ({template.template_id}) failed: {e}"
                )
                continue
            if result.overall >= minimum_confidence:
                results.append(result)

        results.sort(key=lambda r: (-r.overall, r.template_id))
        results = results[:max(0, max_results)]
        logger.info(f"Found {len(results)} template matches for {document.document_id}")
        return results

    def find_best_match(
        self,
        document: ProcessedDocument,
        templates: Iterable[Template],
        minimum_confidence: Optional[float] = None,
        criteria: Optional[MatchingCriteria] = None,
        cancel_token=None,
    ) -> MatchOutcome:
        """
        Top-ranked template for a document.

        Args:
            document: Processed document
            templates: Candidate templates
            minimum_confidence: Threshold (defaults to the best-match criteria)
            criteria: Weight override applied to every template
            cancel_token: Checked between templates

        Returns:
            MatchOutcome; when nothing reaches the threshold it is unsuccessful,
            with overall 0.0 and a reason naming the closest candidate
        """
        if minimum_confidence is None:
            minimum_confidence = self.settings.default_criteria.minimum_confidence
        candidates = self.get_all_matches(document, templates, 0.0, 1, criteria, cancel_token)
        if not candidates:
            reason = "No active template could be scored"
            logger.info(f"{reason} for {document.document_id}")
            return MatchOutcome.failure(document.document_id, reason)

        best = candidates[0]
        if best.overall < minimum_confidence:
            reason = (
                f"No template reached {minimum_confidence:.2f}; best was "
                f"{best.template.name} at {best.overall:.2f}"
            )
            logger.info(f"{reason} for {document.document_id}")
            return MatchOutcome.failure(document.document_id, reason, best_candidate=best)

        logger.info(
            f"Best template for {document.document_id}: {best.template.name} "
            f"({best.overall:.3f})"
        )
        return MatchOutcome(
            document_id=document.document_id,
            match=best,
            reason=f"Matched {best.template.name} at {best.overall:.2f}",
        )

    def calculate_confidence_score(
        self,
        document: ProcessedDocument,
        template: Template,
        criteria: Optional[MatchingCriteria] = None,
    ) -> ConfidenceScore:
        return self.score_template(self.fingerprint(document), template, criteria).confidence

    def invalidate_template(self, template_id: str) -> None:
        self.template_fingerprinter.invalidate(template_id)

    # ------------------------------------------------------------------
    # Learning and analysis
    # ------------------------------------------------------------------

    def learn_from_match(
        self,
        template: Template,
        document: DocumentFingerprint,
        user_confirmed: bool,
    ) -> Template:
        """
        Enrich a template with keywords from a confirmed match.

        Returns a new template (the input is not modified). Unconfirmed
        matches return the template unchanged.
        """
        if not user_confirmed:
            return template

        learned = template.copy()
        for f in learned.fields:
            known = {k.lower() for k in f.keywords}
            new_keywords = [k for k in document.keywords if k.lower() not in known]
            f.keywords.extend(new_keywords[:LEARNED_KEYWORDS_PER_FIELD])
        self.invalidate_template(template.template_id)
        logger.info(f"Learned keywords for template {template.name} from {document.document_id}")
        return learned

    def analyze_performance(self, template: Template) -> TemplatePerformanceAnalysis:
        stats = template.usage_stats
        suggestions = []
        if stats.success_rate < 0.7:
            suggestions.append("Consider adding more specific keywords to improve matching accuracy")
        if stats.average_confidence < 0.6:
            suggestions.append("Review extraction patterns for better confidence scoring")
        if len(template.fields) > 10:
            suggestions.append("Consider simplifying template by reducing non-essential fields")

        return TemplatePerformanceAnalysis(
            template_id=template.template_id,
            template_name=template.name,
            total_uses=stats.total_uses,
            success_rate=stats.success_rate,
            average_confidence=stats.average_confidence,
            average_extraction_time=stats.average_extraction_time,
            performance_score=stats.success_rate * 0.6 + stats.average_confidence * 0.4,
            optimization_suggestions=suggestions,
            category_metrics={
                "complexity": self.template_fingerprinter.complexity(template),
                "field_count": float(len(template.fields)),
                "required_fields": float(sum(1 for f in template.fields if f.is_required)),
                "coordinate_fields": float(sum(
                    1 for f in template.fields
                    if f.extraction_method == ExtractionMethod.COORDINATES
                )),
            },
        )

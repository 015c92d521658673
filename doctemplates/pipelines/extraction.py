# doctemplates/pipelines/extraction.py
"""
Field Extraction Pipeline

Extracts every active field of a template from a processed document.

Per field:
1. Run the primary method (text / coordinates / OCR / metadata / hybrid)
2. Accept it when it is successful and meets the field's confidence threshold
3. Otherwise try the declared fallback methods, then the fallback patterns
   (a candidate replaces the best result only with strictly higher confidence)
4. Transform the accepted value
5. Validate: a required field without a value fails; any other rule violation
   caps confidence and marks the value invalid
6. Substitute the default value (low confidence) if still unsuccessful

Document confidence is the weighted mean of field confidences, with required
fields weighted double.
"""

import logging
import re
import time
from typing import Callable, Dict, Iterable, List, Optional

from ..config.matching_config import ExtractionSettings
from ..exceptions import ExtractionError, NotFoundError, OperationCancelled
from ..schemas.document import ProcessedDocument
from ..schemas.enums import ExtractionMethod, FieldType, ZoneType
from ..schemas.results import FieldExtractionResult, TemplateExtractionResult
from ..schemas.template import Template, TemplateField
from .cancellation import check_cancelled
from .regex_cache import RegexCache
from .transforms import apply_transformation, validate_value
from .zones import OcrProvider, TokenZoneExtractor, ZoneExtraction, ZoneExtractor

logger = logging.getLogger(__name__)

# Value shapes searched for right after a keyword, per field type
KEYWORD_VALUE_PATTERNS = {
    FieldType.USERNAME: re.compile(r"[\s:]*([a-zA-Z0-9._-]+@[a-zA-Z0-9.-]+|[a-zA-Z0-9._-]+)"),
    FieldType.TICKET_NUMBER: re.compile(r"[\s:#]*([A-Z0-9-]+)"),
    FieldType.DATE: re.compile(r"[\s:]*(\d{1,2}[/-]\d{1,2}[/-]\d{2,4}|\d{4}-\d{2}-\d{2})"),
}
GENERIC_KEYWORD_VALUE = re.compile(r"[\s:]*([^\r\n]{1,100})")

HYBRID_METHODS = (
    ExtractionMethod.TEXT,
    ExtractionMethod.COORDINATES,
    ExtractionMethod.METADATA,
)


def _distinct(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


class FieldExtractionPipeline:
    """
    Extracts template fields from processed documents.

    Args:
        settings: Confidence constants
        regex_cache: Shared compiled-pattern cache
        zone_extractor: Collaborator for coordinate zones
        ocr_provider: Collaborator for OCR; OCR fails explicitly without one
        template_store: When given, usage statistics are reported after each run
    """

    def __init__(
        self,
        settings: Optional[ExtractionSettings] = None,
        regex_cache: Optional[RegexCache] = None,
        zone_extractor: Optional[ZoneExtractor] = None,
        ocr_provider: Optional[OcrProvider] = None,
        template_store=None,
    ):
        self.settings = settings or ExtractionSettings()
        self.regex_cache = regex_cache or RegexCache()
        self.zone_extractor = zone_extractor or TokenZoneExtractor()
        self.ocr_provider = ocr_provider
        self.template_store = template_store
        self._handlers: Dict[ExtractionMethod, Callable[..., FieldExtractionResult]] = {
            ExtractionMethod.TEXT: self._extract_text,
            ExtractionMethod.COORDINATES: self._extract_coordinates,
            ExtractionMethod.OCR: self._extract_ocr,
            ExtractionMethod.METADATA: self._extract_metadata,
            ExtractionMethod.HYBRID: self._extract_hybrid,
        }

    # ------------------------------------------------------------------
    # Template / field entry points
    # ------------------------------------------------------------------

    def extract(
        self,
        document: ProcessedDocument,
        template: Template,
        cancel_token=None,
    ) -> TemplateExtractionResult:
        """
        Extract all active fields of ``template`` from ``document``.

        Raises:
            OperationCancelled: if ``cancel_token`` is cancelled between fields
        """
        start = time.perf_counter()
        result = TemplateExtractionResult(
            template_id=template.template_id,
            template_version=template.version,
            document_id=document.document_id,
        )

        for field in template.active_fields():
            check_cancelled(cancel_token, "field extraction")
            try:
                field_result = self.extract_field(document, field, cancel_token)
            except OperationCancelled:
                raise
            except Exception as e:
                logger.warning(f"Field {field.name} extraction failed: {e}")
                field_result = FieldExtractionResult.failure(
                    field.name, f"Field extraction failed: {e}", field.extraction_method
                )
                field_result.is_required = field.is_required
            result.field_results[field.name] = field_result

        result.overall_confidence = self.overall_confidence(result.field_results.values())
        result.success = any(r.success for r in result.field_results.values())
        if not result.success:
            result.error_message = "No field could be extracted"
        result.extraction_time = time.perf_counter() - start

        logger.info(
            f"Extracted {result.successful_fields}/{len(result.field_results)} fields from "
            f"{document.document_id} with template {template.name}: "
            f"confidence={result.overall_confidence:.2f}"
        )
        self._report_usage(template, result)
        return result

    def extract_field(
        self,
        document: ProcessedDocument,
        field: TemplateField,
        cancel_token=None,
    ) -> FieldExtractionResult:
        start = time.perf_counter()
        logger.debug(f"Extracting field {field.name} using {field.extraction_method.value}")

        primary = self._run_method(document, field, field.extraction_method, cancel_token=cancel_token)
        attempts = [self._describe(primary, field.extraction_method)]

        if primary.success and primary.confidence >= field.confidence_threshold:
            best = primary
        elif field.fallback.enable_fallback:
            best = self._try_fallbacks(document, field, primary, attempts, cancel_token)
        else:
            best = primary

        if best.success:
            self._transform(best, field)

        validation = validate_value(
            best.value if best.success else None,
            field.validation_rules,
            field.is_required,
            self.regex_cache,
        )
        best.validation = validation
        if validation.metadata.get("required_missing"):
            best.success = False
            best.confidence = 0.0
            best.error_message = best.error_message or "Required field is empty"
        elif not validation.is_valid and best.success:
            best.is_valid = False
            best.confidence = min(best.confidence, self.settings.invalid_value_confidence_cap)
            logger.warning(f"Field {field.name} validation failed: {', '.join(validation.errors)}")

        if not best.success and field.default_value:
            logger.debug(f"Using default value for field {field.name}")
            best.success = True
            best.value = field.default_value
            best.all_values = [field.default_value]
            best.confidence = self.settings.default_value_confidence
            best.method = ExtractionMethod.DEFAULT
            best.is_valid = True
            attempts.append("default: value substituted")

        best.field_name = field.name
        best.is_required = field.is_required
        best.attempts = attempts
        best.extraction_time = time.perf_counter() - start
        return best

    def overall_confidence(self, results: Iterable[FieldExtractionResult]) -> float:
        results = list(results)
        if not any(r.success for r in results):
            return 0.0
        total_weight = 0.0
        weighted = 0.0
        for r in results:
            weight = (
                self.settings.required_field_weight if r.is_required
                else self.settings.optional_field_weight
            )
            total_weight += weight
            if r.success:
                weighted += r.confidence * weight
        return weighted / total_weight if total_weight > 0 else 0.0

    # ------------------------------------------------------------------
    # Fallback chain
    # ------------------------------------------------------------------

    def _try_fallbacks(
        self,
        document: ProcessedDocument,
        field: TemplateField,
        primary: FieldExtractionResult,
        attempts: List[str],
        cancel_token,
    ) -> FieldExtractionResult:
        best = primary
        for method in field.fallback.fallback_methods:
            candidate = self._run_method(document, field, method, cancel_token=cancel_token)
            attempts.append(f"fallback {self._describe(candidate, method)}")
            if candidate.success and candidate.confidence > best.confidence:
                best = candidate

        if field.fallback.fallback_patterns and not best.success:
            candidate = self._run_method(
                document,
                field,
                ExtractionMethod.TEXT,
                patterns=field.fallback.fallback_patterns,
                use_keywords=False,
                cancel_token=cancel_token,
            )
            attempts.append(f"fallback patterns {self._describe(candidate, ExtractionMethod.TEXT)}")
            if candidate.success and candidate.confidence > best.confidence:
                best = candidate
        return best

    @staticmethod
    def _describe(result: FieldExtractionResult, method: ExtractionMethod) -> str:
        if result.success:
            return f"{method.value}: {result.confidence:.2f}"
        return f"{method.value}: failed ({result.error_message})"

    def _run_method(
        self,
        document: ProcessedDocument,
        field: TemplateField,
        method: ExtractionMethod,
        patterns: Optional[List[str]] = None,
        use_keywords: bool = True,
        cancel_token=None,
    ) -> FieldExtractionResult:
        handler = self._handlers.get(method)
        if handler is None:
            return FieldExtractionResult.failure(
                field.name, f"Unsupported extraction method: {method.value}", method
            )
        try:
            if method == ExtractionMethod.TEXT:
                return handler(document, field, patterns=patterns, use_keywords=use_keywords)
            return handler(document, field, cancel_token=cancel_token)
        except ExtractionError as e:
            logger.debug(f"Field {field.name} via {method.value}: {e}")
            return FieldExtractionResult.failure(field.name, str(e), method)

    def _success(
        self,
        field: TemplateField,
        values: List[str],
        confidence: float,
        method: ExtractionMethod,
        source_zone_id: Optional[str] = None,
    ) -> FieldExtractionResult:
        distinct = _distinct(values)
        value = field.multi_value_separator.join(distinct) if field.allow_multiple_values else values[0]
        return FieldExtractionResult(
            field_name=field.name,
            success=True,
            value=value,
            all_values=distinct,
            confidence=confidence,
            method=method,
            is_required=field.is_required,
            source_zone_id=source_zone_id,
        )

    def _transform(self, result: FieldExtractionResult, field: TemplateField) -> None:
        transformation = field.transformation
        result.all_values = _distinct(
            apply_transformation(v, transformation) for v in result.all_values
        )
        if field.allow_multiple_values:
            result.value = field.multi_value_separator.join(v for v in result.all_values if v)
        else:
            result.value = apply_transformation(result.value, transformation)

    # ------------------------------------------------------------------
    # Method handlers
    # ------------------------------------------------------------------

    def _extract_text(
        self,
        document: ProcessedDocument,
        field: TemplateField,
        patterns: Optional[List[str]] = None,
        use_keywords: bool = True,
    ) -> FieldExtractionResult:
        text = document.text
        if not text:
            raise ExtractionError("Document has no extracted text content", ExtractionMethod.TEXT.value)

        values: List[str] = []
        for pattern in field.text_patterns if patterns is None else patterns:
            compiled = self.regex_cache.try_get(pattern)
            if compiled is None:
                continue
            for match in compiled.finditer(text):
                value = match.group(1) if compiled.groups >= 1 else match.group(0)
                if value and value.strip():
                    values.append(value.strip())
        if values:
            return self._success(field, values, self.settings.regex_confidence, ExtractionMethod.TEXT)

        if use_keywords:
            for keyword in field.keywords:
                values.extend(self._keyword_values(text, keyword, field.field_type))
        if values:
            return self._success(field, values, self.settings.keyword_confidence, ExtractionMethod.TEXT)

        raise ExtractionError("No matches found for text patterns or keywords", ExtractionMethod.TEXT.value)

    def _keyword_values(self, text: str, keyword: str, field_type: FieldType) -> List[str]:
        if not keyword:
            return []
        found = self.regex_cache.get(re.escape(keyword)).search(text)
        if found is None:
            return []
        after = text[found.end():]
        value_re = KEYWORD_VALUE_PATTERNS.get(field_type, GENERIC_KEYWORD_VALUE)
        match = value_re.search(after)
        if match is None:
            return []
        value = match.group(1).strip()
        return [value] if value else []

    def _extract_coordinates(self, document: ProcessedDocument, field: TemplateField, cancel_token=None) -> FieldExtractionResult:
        if not field.extraction_zones:
            raise ExtractionError(
                "No extraction zones defined for coordinate-based extraction",
                ExtractionMethod.COORDINATES.value,
            )

        values: List[str] = []
        confidence = 0.0
        source_zone = None
        errors: List[str] = []
        for zone in sorted((z for z in field.extraction_zones if z.is_active), key=lambda z: z.priority):
            check_cancelled(cancel_token, "zone extraction")
            try:
                if zone.zone_type == ZoneType.OCR:
                    extraction = self._ocr(document, zone)
                else:
                    extraction = self.zone_extractor.extract(document, zone)
            except ExtractionError as e:
                logger.warning(f"Zone {zone.name or zone.zone_id} failed for field {field.name}: {e}")
                errors.append(str(e))
                continue
            if extraction.success:
                values.extend(extraction.values)
                if source_zone is None or extraction.confidence > confidence:
                    source_zone = zone.zone_id
                confidence = max(confidence, extraction.confidence)

        if not values:
            detail = f": {'; '.join(errors)}" if errors else ""
            raise ExtractionError(
                f"No text extracted from coordinate zones{detail}", ExtractionMethod.COORDINATES.value
            )
        return self._success(field, values, confidence, ExtractionMethod.COORDINATES, source_zone)

    def _ocr(self, document: ProcessedDocument, zone=None) -> ZoneExtraction:
        if self.ocr_provider is None:
            raise ExtractionError("OCR provider is not available", ExtractionMethod.OCR.value)
        return self.ocr_provider.recognize(document, zone)

    def _extract_ocr(self, document: ProcessedDocument, field: TemplateField, cancel_token=None) -> FieldExtractionResult:
        zones = sorted((z for z in field.extraction_zones if z.is_active), key=lambda z: z.priority)
        if zones:
            values: List[str] = []
            confidence = 0.0
            for zone in zones:
                check_cancelled(cancel_token, "OCR extraction")
                extraction = self._ocr(document, zone)
                if extraction.success:
                    values.extend(extraction.values)
                    confidence = max(confidence, extraction.confidence)
            if not values:
                raise ExtractionError("OCR produced no text in the field zones", ExtractionMethod.OCR.value)
            return self._success(field, values, confidence, ExtractionMethod.OCR)

        check_cancelled(cancel_token, "OCR extraction")
        page = self._ocr(document)
        if not page.success:
            raise ExtractionError("OCR produced no text", ExtractionMethod.OCR.value)
        ocr_document = ProcessedDocument(document_id=document.document_id, text="\n".join(page.values))
        result = self._extract_text(ocr_document, field)
        result.method = ExtractionMethod.OCR
        result.confidence = min(result.confidence, page.confidence)
        return result

    def _extract_metadata(self, document: ProcessedDocument, field: TemplateField, cancel_token=None) -> FieldExtractionResult:
        values: List[str] = []
        if field.field_type == FieldType.USERNAME:
            values += [v for v in (document.author, document.creator) if v]
        elif field.field_type == FieldType.DATE:
            values += [d.strftime("%Y-%m-%d") for d in (document.document_date, document.creation_date) if d]
        elif field.field_type == FieldType.TEXT:
            values += [v for v in (document.title, document.subject) if v]

        keywords = [k.lower() for k in field.keywords if k]
        for source in (document.custom_properties, document.extracted_fields):
            for key, value in source.items():
                if value is None or str(value) == "":
                    continue
                if any(k in str(key).lower() for k in keywords):
                    values.append(str(value))

        if not values:
            raise ExtractionError("No matching metadata found", ExtractionMethod.METADATA.value)
        return self._success(field, values, self.settings.metadata_confidence, ExtractionMethod.METADATA)

    def _extract_hybrid(self, document: ProcessedDocument, field: TemplateField, cancel_token=None) -> FieldExtractionResult:
        candidates = []
        for method in HYBRID_METHODS:
            result = self._run_method(document, field, method, cancel_token=cancel_token)
            if result.success:
                candidates.append(result)
        if not candidates:
            raise ExtractionError("No successful extraction from any hybrid method", ExtractionMethod.HYBRID.value)
        # max() keeps the first of equal candidates, i.e. text before coordinates before metadata
        return max(candidates, key=lambda r: r.confidence)

    # ------------------------------------------------------------------

    def _report_usage(self, template: Template, result: TemplateExtractionResult) -> None:
        if self.template_store is None:
            return
        try:
            self.template_store.update_usage_statistics(
                template.template_id,
                result.success,
                result.extraction_time,
                result.overall_confidence,
            )
        except NotFoundError as e:
            logger.warning(f"Usage statistics not recorded: {e}")

#!/usr/bin/env python3
"""
Match and extract documents against a template directory.

Usage:
    # Best template and extracted fields for each text file
    python scripts/match_documents.py --templates templates/ doc1.txt doc2.txt

    # Show every candidate above 0.3
    python scripts/match_documents.py --templates templates/ --all --min-confidence 0.3 doc.txt

    # Emit upload records instead of raw results
    python scripts/match_documents.py --templates templates/ --records doc.txt
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from doctemplates.config.matching_config import ExtractionSettings, MatchingSettings
from doctemplates.export.record import compose_record
from doctemplates.pipelines.extraction import FieldExtractionPipeline
from doctemplates.pipelines.inheritance import InheritanceResolver
from doctemplates.pipelines.matcher import MatchRanker
from doctemplates.repository.template_loader import TemplateLoader
from doctemplates.repository.template_store import InMemoryTemplateStore
from doctemplates.schemas.document import ProcessedDocument

logger = logging.getLogger("match_documents")


def read_document(path: Path) -> ProcessedDocument:
    text = path.read_text(encoding="utf-8", errors="ignore")
    page_count = text.count("\f") + 1
    return ProcessedDocument(document_id=path.name, text=text, page_count=page_count)


def process(path: Path, store, resolver, ranker, pipeline, args) -> dict:
    document = read_document(path)
    templates = []
    for template in store.list_templates(active_only=True):
        resolved = resolver.resolve(template.template_id)
        if resolved.success:
            templates.append(resolved.template)
        else:
            logger.warning(f"Skipping {template.name}: {'; '.join(resolved.errors)}")

    if args.all:
        matches = ranker.get_all_matches(document, templates, minimum_confidence=args.min_confidence)
        return {"document": path.name, "matches": [m.to_dict() for m in matches]}

    outcome = ranker.find_best_match(document, templates, minimum_confidence=args.min_confidence)
    if not outcome.success:
        print(f"✗ {path.name}: {outcome.reason}", file=sys.stderr)
        return {"document": path.name, "match": outcome.to_dict()}

    result = pipeline.extract(document, outcome.template)
    if args.records:
        return compose_record(document, result, outcome.template)
    return {"document": path.name, "match": outcome.to_dict(), "extraction": result.to_dict()}


def main():
    parser = argparse.ArgumentParser(description="Match documents to templates and extract fields")
    parser.add_argument("documents", nargs="+", type=Path, help="Plain text document files")
    parser.add_argument("--templates", type=Path, required=True, help="Template directory (YAML/JSON)")
    parser.add_argument("--min-confidence", type=float, default=None, help="Match threshold")
    parser.add_argument("--all", action="store_true", help="List all candidate matches")
    parser.add_argument("--records", action="store_true", help="Print upload records")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = MatchingSettings.from_env()
    store = InMemoryTemplateStore()
    resolver = InheritanceResolver(store, settings)
    report = TemplateLoader(args.templates).load_into_store(store, resolver)
    for source, error in report.errors.items():
        print(f"✗ {source}: {error}", file=sys.stderr)
    if not report.templates:
        print(f"Error: no templates loaded from {args.templates}", file=sys.stderr)
        return 1

    ranker = MatchRanker(settings)
    store.add_change_listener(ranker.invalidate_template)
    pipeline = FieldExtractionPipeline(ExtractionSettings.from_env(), template_store=store)

    outputs = []
    for path in args.documents:
        if not path.exists():
            print(f"Error: File not found: {path}", file=sys.stderr)
            continue
        outputs.append(process(path, store, resolver, ranker, pipeline, args))

    print(json.dumps(outputs, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())

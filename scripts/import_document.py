#!/usr/bin/env python3
"""
Run one document through the import pipeline from the command line.

This script provides a command-line interface to:
1. Upload a PDF or photo for a pet
2. Classify it and extract candidate health records
3. Optionally approve every candidate into the pet's health records

Usage:
    # Classify and extract with the mock LLM against a local SQLite database
    DATABASE_URL=sqlite+aiosqlite:///./dev.db python scripts/import_document.py card.jpg --provider mock --init-db

    # Use Claude and approve everything that was found
    python scripts/import_document.py labs.pdf --pet-id <uuid> --approve-all

    # Confirm the document type up front
    python scripts/import_document.py rx.pdf --document-type prescription

Requirements:
    - Database reachable (or --init-db with SQLite)
    - API keys configured in .env (for claude/gemini)
"""

import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path
from uuid import UUID

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from uuid6 import uuid7  # noqa: E402

from src.core.config import settings  # noqa: E402
from src.core.exceptions import DocumentImportError  # noqa: E402
from src.core.logging import setup_logging  # noqa: E402
from src.db import AsyncSessionLocal, DocumentType, ReviewDecision, get_db_context, init_db  # noqa: E402
from src.schemas import CandidateDecision  # noqa: E402
from src.services.audit import RequestMeta  # noqa: E402
from src.services.classification import classification_view  # noqa: E402
from src.services.llm_client import get_llm_client  # noqa: E402
from src.services.merge import ReviewMergeEngine  # noqa: E402
from src.services.pipeline import DocumentPipeline  # noqa: E402
from src.services.registry import UploadRegistry  # noqa: E402
from src.services.storage import get_blob_store  # noqa: E402


async def run_import(
    path: Path,
    pet_id: UUID,
    user_id: UUID,
    provider: str,
    document_type: DocumentType | None,
    approve_all: bool,
    create_tables: bool,
) -> int:
    """Upload, classify, extract and optionally approve one file."""
    if create_tables:
        await init_db()

    blobs = get_blob_store()
    pipeline = DocumentPipeline(
        AsyncSessionLocal,
        blobs,
        llm_factory=lambda: get_llm_client(provider),
    )
    mime_type = mimetypes.guess_type(path.name)[0]

    async with get_db_context() as db:
        registry = UploadRegistry(db, blobs)

        upload = await registry.create_upload(pet_id, user_id, path.name, mime_type, path.read_bytes())
        print(f"\n📄 Uploaded {path.name} as {upload.id} ({upload.media_type.value}, {upload.file_size_bytes} bytes)")

        # Classification
        await registry.begin_classification(pet_id, upload.id)
        await pipeline.run_classification(upload.id)
        upload = await registry.get_upload(pet_id, upload.id)
        classification = classification_view(upload)
        if classification is None:
            print(f"❌ Classification failed: {upload.error_message}")
            return 1
        print(
            f"🔎 {classification.document_type_label} "
            f"({classification.confidence}%, {classification.confidence_band.value})"
        )
        if classification.warning:
            print(f"   ⚠️  {classification.warning}")
        if classification.explanation:
            print(f"   {classification.explanation}")

        # Extraction
        await registry.begin_processing(pet_id, upload.id, confirmed_type=document_type)
        await pipeline.run_processing(upload.id)
        upload, candidates = await registry.get_candidates(pet_id, upload.id)
        if upload.error_message:
            print(f"❌ Extraction failed: {upload.error_message}")
            return 1

        print(f"\n🧾 {len(candidates)} candidate record(s):")
        for candidate in candidates:
            flag = " [review]" if candidate.needs_review else ""
            print(f"   - {candidate.record_kind.value}: {candidate.display_name} ({candidate.confidence:.2f}){flag}")

        if not approve_all or not candidates:
            return 0

        # Approval
        decisions = [CandidateDecision(candidate_id=c.id, decision=ReviewDecision.APPROVE) for c in candidates]
        result = await ReviewMergeEngine(db, blobs).approve(pet_id, upload.id, decisions, RequestMeta(user_id=user_id))
        print(f"\n✅ {result.message}")
        for conflict in result.conflicts:
            print(f"   ⚠️  {conflict.message}")
        return 0 if result.status == "merged" else 2


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Import a pet health document through the pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("path", type=Path, help="PDF or image file to import")

    parser.add_argument(
        "--pet-id",
        type=UUID,
        default=None,
        help="Pet to import into (default: a new random pet)",
    )

    parser.add_argument(
        "--user-id",
        type=UUID,
        default=None,
        help="Acting user recorded in the audit log (default: random)",
    )

    parser.add_argument(
        "--provider", "-p",
        type=str,
        default=settings.llm_provider,
        choices=["claude", "gemini", "mock"],
        help=f"LLM provider to use (default: {settings.llm_provider})",
    )

    parser.add_argument(
        "--document-type", "-t",
        type=DocumentType,
        default=None,
        choices=list(DocumentType),
        help="Confirm the document type instead of relying on classification",
    )

    parser.add_argument(
        "--approve-all",
        action="store_true",
        help="Approve every extracted record",
    )

    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create tables first (local SQLite development)",
    )

    args = parser.parse_args()
    setup_logging()

    if not args.path.is_file():
        parser.error(f"{args.path} is not a file")

    try:
        code = asyncio.run(
            run_import(
                path=args.path,
                pet_id=args.pet_id or uuid7(),
                user_id=args.user_id or uuid7(),
                provider=args.provider,
                document_type=args.document_type,
                approve_all=args.approve_all,
                create_tables=args.init_db,
            )
        )
    except DocumentImportError as e:
        print(f"❌ {e.message}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()

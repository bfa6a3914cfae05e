#!/usr/bin/env python3
"""Rebuild a running search service's index from a document export.

The index is in-memory, so after a restart it has to be repopulated from the
document store. This script reads an export (a JSON list of documents, or an
object with a ``documents`` list) and posts it to ``/api/v1/index/rebuild``.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
import httpx
import structlog

from libs.common.config import SearchConfig
from libs.common.logging import configure_logging
from service_search.app.models import Document

logger = structlog.get_logger("rebuild_index")


def load_documents(path: Path) -> List[Document]:
    """Load and validate documents from a JSON export."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("documents", [])
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a list of documents")
    return [Document.model_validate(item) for item in payload]


async def rebuild_index(
    documents: List[Document],
    service_url: str,
    timeout: float = 300.0,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> Dict[str, Any]:
    """Post ``documents`` to the rebuild endpoint and return its summary."""
    body = {"documents": [document.model_dump(mode="json") for document in documents]}
    async with httpx.AsyncClient(base_url=service_url, timeout=timeout, transport=transport) as client:
        response = await client.post("/api/v1/index/rebuild", json=body)
        response.raise_for_status()
        summary = response.json()

    logger.info(
        "Index rebuild finished",
        service_url=service_url,
        indexed=summary.get("indexed"),
        failed=summary.get("failed")
    )
    return summary


def main():
    """Main function for CLI."""
    parser = argparse.ArgumentParser(description="Rebuild the knowledge search index from a document export")
    parser.add_argument("export", type=Path, help="JSON file with the documents to index")
    parser.add_argument(
        "--service-url",
        default=None,
        help="Search service base URL (default: http://localhost:<ML_SEARCH_PORT>)"
    )
    parser.add_argument("--timeout", type=float, default=300.0, help="Request timeout in seconds")

    args = parser.parse_args()

    config = SearchConfig()
    configure_logging("rebuild_index", config.ml_log_level, config.ml_log_format)
    service_url = args.service_url or f"http://localhost:{config.ml_search_port}"

    try:
        documents = load_documents(args.export)
        summary = asyncio.run(rebuild_index(documents, service_url, timeout=args.timeout))
    except (OSError, ValueError, httpx.HTTPError) as e:
        logger.error("Index rebuild failed", export=str(args.export), error=str(e))
        print(f"Failed to rebuild index: {e}")
        sys.exit(1)

    print(f"Rebuilt index: {summary['indexed']} indexed, {summary['failed']} failed")
    sys.exit(0 if not summary["failed"] else 2)


if __name__ == "__main__":
    main()

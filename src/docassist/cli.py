"""Command line entry point: run the API server or ask questions locally."""
from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
import sys
from pathlib import Path

from docassist.errors import DocAssistError
from docassist.logging_config import configure_logging


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="docassist", description=__doc__)
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    ask = subparsers.add_parser("ask", help="Ingest files and answer a question in-process.")
    ask.add_argument("question", help="Question to answer.")
    ask.add_argument("files", nargs="+", type=Path, help="Documents to ingest first.")
    ask.add_argument("--top-k", type=int, default=None)
    ask.add_argument("--caller", default=None, help="Caller identity recorded as document owner.")
    return parser.parse_args(argv)


async def _ask(args: argparse.Namespace) -> int:
    from docassist.service import IngestRequest, get_assistant

    assistant = get_assistant()
    requests = [
        IngestRequest(
            file_name=path.name,
            content=path.read_bytes(),
            content_type=mimetypes.guess_type(path.name)[0],
            owner_id=args.caller,
        )
        for path in args.files
    ]
    documents = await assistant.ingest_many(requests)
    for document in documents:
        if document.error:
            print(f"{document.file_name}: {document.status.value} ({document.error})", file=sys.stderr)

    answer = await assistant.query(args.question, top_k=args.top_k, owner_id=args.caller)
    payload = {
        "answer": answer.text,
        "fallback": answer.fallback,
        "citations": [
            {
                "document": citation.document_id,
                "sequence": citation.sequence,
                "score": citation.score,
                "snippet": citation.snippet,
            }
            for citation in answer.citations
        ],
    }
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging()

    if args.command == "serve":
        import uvicorn

        uvicorn.run("docassist.main:app", host=args.host, port=args.port)
        return 0

    try:
        return asyncio.run(_ask(args))
    except DocAssistError as error:
        print(json.dumps({"error": error.to_dict()}, ensure_ascii=False), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

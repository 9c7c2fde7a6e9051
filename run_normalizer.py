#!/usr/bin/env python3
"""
CLI script to run the content pipeline.

Reads HTML files, segments and normalizes them, and prints the cleaned text
and normalization metadata as JSON.

With --embed (-e), the normalized text is also embedded using the provider
named by EMBEDDING_PROVIDER (openai, azure, ollama, huggingface, cohere, http).
"""

import argparse
import asyncio
import json
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

from scrape_embed.main import ContentProcessor
from scrape_embed.providers import create_embedding_provider_from_env
from scrape_embed.schemas import EmbeddingOptions, NormalizeOptions


def build_options(args) -> NormalizeOptions:
    return NormalizeOptions(
        mode=args.mode,
        max_chars=args.max_chars,
        drop_selectors=args.drop or [],
        debug=args.debug,
    )


async def run(args) -> list:
    processor = ContentProcessor(options=build_options(args), parser=args.parser, log_level=args.log_level)
    # Only build a provider (which may need an API key) if --embed was requested
    embedding_options = EmbeddingOptions(provider=create_embedding_provider_from_env()) if args.embed else None

    results = []

    for filepath in args.files:
        path = Path(filepath)
        print(f"Normalizing: {path.name}")

        try:
            # Raw bytes so the parser can pick up a declared charset
            document = await processor.process(
                path.read_bytes(),
                url=path.resolve().as_uri(),
                embeddings=embedding_options,
            )

            entry = {
                "file": path.name,
                "status": "success",
                "text": document.normalized.text,
                "meta": document.normalized.meta.model_dump(),
            }
            if document.normalized.blocks is not None:
                entry["blocks"] = [b.model_dump() for b in document.normalized.blocks]
            if document.embeddings is not None:
                entry["embeddings"] = document.embeddings.model_dump()
            results.append(entry)

            meta = document.normalized.meta
            print(f"  ✓ {meta.blocks_accepted}/{meta.blocks_total} blocks, {meta.char_count} chars")
            if document.embeddings is not None and document.embeddings.status == "skipped":
                print(f"  ! Embedding skipped: {document.embeddings.reason}")

        except Exception as e:
            results.append({
                "file": path.name,
                "status": "error",
                "error": str(e)
            })
            print(f"  ✗ Error: {e}")

    return results


def main():
    parser = argparse.ArgumentParser(description="Normalize HTML files into embedding-ready text")
    parser.add_argument("files", nargs="+", help="HTML files to process")
    parser.add_argument("--output", "-o", help="Output JSON file")
    parser.add_argument("--mode", choices=["full", "summary"], default="full", help="Normalization mode")
    parser.add_argument("--max-chars", type=int, help="Truncate normalized text to this length")
    parser.add_argument("--drop", action="append", help="Extra CSS selector to drop (repeatable)")
    parser.add_argument("--parser", default="html5lib", help="BeautifulSoup tree builder")
    parser.add_argument("--debug", action="store_true", help="Include scored blocks in the output")
    parser.add_argument("--embed", "-e", action="store_true", help="Embed the normalized text")
    parser.add_argument("--log-level", help="Logging level name, e.g. DEBUG (default: $SCRAPE_EMBED_LOG_LEVEL or INFO)")
    args = parser.parse_args()

    results = asyncio.run(run(args))

    # ensure_ascii=False preserves unicode characters in the JSON
    output = json.dumps(results, indent=2, ensure_ascii=False)

    if args.output:
        Path(args.output).write_text(output)
        print(f"\nSaved to: {args.output}")
    else:
        print("\n" + output)


if __name__ == "__main__":
    main()

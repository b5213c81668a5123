"""
Command-line interface for the Fatura QC Service.

Provides two commands:
- validate: Cross-check every invoice in a directory and print a summary
- version: Show version information
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer

from .config import DEFAULT_TOLERANCE_PERCENT, logger, media_type_for
from .extractor import DEFAULT_TOTAL_SELECTOR, TOTAL_SELECTORS, get_total_selector
from .pipeline import PipelineCoordinator, build_default_coordinator
from .reconciler import format_summary_text, summarize_results
from .schemas import DocumentResult, DocumentStatus, SourceDocument


# Create Typer app
app = typer.Typer(
    name="fatura-qc",
    help="Portuguese invoice QR code / OCR cross-check CLI",
    add_completion=False,
)


def load_documents(input_dir: Path) -> list[SourceDocument]:
    """
    Load every supported PDF or image in a directory, sorted by name.

    Raises:
        FileNotFoundError: If the directory does not exist
    """
    if not input_dir.exists():
        raise FileNotFoundError(f"Directory not found: {input_dir}")

    documents = []
    for path in sorted(input_dir.iterdir()):
        media_type = media_type_for(path.name)
        if not path.is_file() or media_type is None:
            continue
        documents.append(SourceDocument(
            name=path.name,
            content=path.read_bytes(),
            media_type=media_type,
        ))

    logger.info(f"Found {len(documents)} documents to process in {input_dir}")
    return documents


async def _write_validated_copies(
    coordinator: PipelineCoordinator,
    documents: list[SourceDocument],
    results: list[DocumentResult],
    output_dir: Path,
) -> int:
    output_dir.mkdir(parents=True, exist_ok=True)
    written = 0
    for document, result in zip(documents, results):
        if result.status != DocumentStatus.VALIDATED or result.new_name is None:
            continue
        content = await coordinator.write_validated_copy(document, result)
        (output_dir / result.new_name).write_bytes(content)
        written += 1
    return written


@app.command()
def validate(
    input_dir: Path = typer.Option(
        ...,
        "--input-dir",
        "-i",
        help="Directory containing invoice PDFs or images",
        exists=True,
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
    ),
    tolerance: float = typer.Option(
        DEFAULT_TOLERANCE_PERCENT,
        "--tolerance",
        "-t",
        min=0.0,
        max=100.0,
        help="Accepted total deviation, in percent of the QR total",
    ),
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir",
        "-o",
        help="Write renamed copies of validated documents to this directory",
    ),
    total_selector: str = typer.Option(
        DEFAULT_TOTAL_SELECTOR,
        "--total-selector",
        help=f"How to pick the total from OCR text ({', '.join(sorted(TOTAL_SELECTORS))})",
    ),
    fail_on_review: bool = typer.Option(
        False,
        "--fail-on-review",
        help="Exit with non-zero status if any document is not validated",
    ),
) -> None:
    """
    Cross-check the QR code of each invoice against its visible text.
    """
    typer.echo(f"Validating documents from: {input_dir} (tolerance {tolerance:g}%)")

    try:
        selector = get_total_selector(total_selector)
        documents = load_documents(input_dir)

        if not documents:
            typer.echo("No PDF or image files found.", err=True)
            raise typer.Exit(code=1)

        coordinator = build_default_coordinator(total_selector=selector)

        def report_progress(completed: int, total: int) -> None:
            typer.echo(f"  [{completed}/{total}] {documents[completed - 1].name}")

        results = asyncio.run(
            coordinator.process_batch(documents, tolerance, on_progress=report_progress)
        )

        summary = summarize_results(results)
        typer.echo("\n" + format_summary_text(summary))

        not_validated = [r for r in results if r.status != DocumentStatus.VALIDATED]
        if not_validated:
            typer.echo("\nDocuments needing attention:")
            for r in not_validated[:10]:
                typer.echo(f"  {r.original_name}: {r.status.value}")
                for divergence in r.divergences:
                    typer.echo(f"    - {divergence}")
            if len(not_validated) > 10:
                typer.echo(f"  ... and {len(not_validated) - 10} more")

        if output_dir is not None:
            written = asyncio.run(
                _write_validated_copies(coordinator, documents, results, output_dir)
            )
            typer.echo(f"\n[OK] Wrote {written} validated document(s) to: {output_dir}")

        if fail_on_review and not_validated:
            raise typer.Exit(code=1)

    except typer.Exit:
        raise
    except (FileNotFoundError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    except Exception as e:
        typer.echo(f"Error during validation: {e}", err=True)
        logger.exception("Validation failed")
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__
    typer.echo(f"Fatura QC Service v{__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

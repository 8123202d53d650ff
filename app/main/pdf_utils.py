"""Render report HTML to PDF via WeasyPrint, falling back to wkhtmltopdf."""
from __future__ import annotations

import os


class PdfGenerationError(RuntimeError):
    """Raised when no PDF renderer is available for an export."""


_WEASYPRINT_MESSAGE = (
    "Unable to generate PDF reports because WeasyPrint's native dependencies "
    "are missing. Install the Pango and Cairo libraries to enable PDF export."
)

_WKHTMLTOPDF_MESSAGE = (
    "Unable to generate PDF reports using the wkhtmltopdf fallback because the "
    "binary is not installed or configured. Set the WKHTMLTOPDF_CMD environment "
    "variable to the wkhtmltopdf command."
)


def _render_with_weasyprint(html: str, base_url: str | None = None) -> bytes:
    try:
        from weasyprint import HTML
    except (ImportError, OSError) as exc:  # pragma: no cover - depends on host libraries
        raise PdfGenerationError(_WEASYPRINT_MESSAGE) from exc

    try:
        return HTML(string=html, base_url=base_url).write_pdf()
    except OSError as exc:  # pragma: no cover - depends on host libraries
        raise PdfGenerationError(_WEASYPRINT_MESSAGE) from exc


def _configured_wkhtmltopdf_command() -> str | None:
    """Return the wkhtmltopdf command from the environment or app config."""

    env_value = os.environ.get("WKHTMLTOPDF_CMD")
    if env_value:
        return env_value

    from flask import current_app, has_app_context

    if not has_app_context():
        return None
    return current_app.config.get("WKHTMLTOPDF_CMD")


def _render_with_wkhtmltopdf(html: str, base_url: str | None = None) -> bytes:
    try:
        import pdfkit
    except ImportError as exc:  # pragma: no cover - optional renderer
        raise PdfGenerationError(_WKHTMLTOPDF_MESSAGE) from exc

    command = _configured_wkhtmltopdf_command()
    try:
        configuration = (
            pdfkit.configuration(wkhtmltopdf=command)
            if command
            else pdfkit.configuration()
        )
    except OSError as exc:  # pragma: no cover - binary missing
        raise PdfGenerationError(_WKHTMLTOPDF_MESSAGE) from exc

    options: dict[str, str] = {
        "encoding": "UTF-8",
        "page-size": "A4",
        "orientation": "Landscape",
        "quiet": "",
    }
    if base_url:
        options["enable-local-file-access"] = ""

    try:
        return pdfkit.from_string(html, False, options=options, configuration=configuration)
    except Exception as exc:  # pragma: no cover - binary failures
        raise PdfGenerationError(_WKHTMLTOPDF_MESSAGE) from exc


def render_html_to_pdf(html: str, base_url: str | None = None) -> bytes:
    """Render HTML content to PDF bytes.

    WeasyPrint is tried first; wkhtmltopdf is used when WeasyPrint cannot load.
    When both fail the raised error carries both messages.
    """

    try:
        return _render_with_weasyprint(html, base_url=base_url)
    except PdfGenerationError as exc:
        weasyprint_error = exc

    try:
        return _render_with_wkhtmltopdf(html, base_url=base_url)
    except PdfGenerationError as exc:
        raise PdfGenerationError(f"{weasyprint_error} {exc}") from exc

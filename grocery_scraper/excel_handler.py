"""Excel export of scrape runs with security hardening."""
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

import pandas as pd

from .models import CategoryOutcome, OutcomeStatus

PRODUCT_COLUMNS = [
    "store",
    "category",
    "name",
    "price",
    "old_price",
    "product_url",
    "image_url",
    "category_url",
    "last_updated",
]

SUMMARY_COLUMNS = [
    "site",
    "category",
    "status",
    "found",
    "attempted",
    "skipped",
    "saved",
    "has_next_page",
    "url",
    "error",
]

# Scraped text is untrusted; these patterns are never written to a workbook
DDE_PATTERNS = [
    r"=\s*CMD\s*\|",
    r"=\s*EXEC\s*\(",
    r"=\s*HYPERLINK\s*\(",
    r"=\s*WEBSERVICE\s*\(",
]


def sanitize_cell_value(value: Any) -> Any:
    """Sanitize cell values to prevent formula injection.

    Excel formulas can execute commands when prefixed with certain characters.
    Product names come straight from retail pages, so every string is
    neutralized before export.

    Args:
        value: Cell value to sanitize.

    Returns:
        Sanitized value, or original if safe.

    Raises:
        ValueError: If malicious DDE pattern detected.
    """
    if isinstance(value, str):
        for pattern in DDE_PATTERNS:
            if re.search(pattern, value, re.IGNORECASE):
                raise ValueError(
                    f"Potentially malicious formula detected: {value[:50]}..."
                )

        dangerous_prefixes = ("=", "+", "-", "@", "\t", "\r", "\n")
        if value.startswith(dangerous_prefixes):
            # Prefix with single quote to neutralize formula
            return f"'{value}"

    return value


def _safe_cell(value: Any) -> Any:
    try:
        return sanitize_cell_value(value)
    except ValueError:
        return "[removed]"


def build_products_frame(outcomes: Sequence[CategoryOutcome]) -> pd.DataFrame:
    """All products from successful categories as a sanitized DataFrame."""
    rows = [
        product.to_dict()
        for outcome in outcomes
        if outcome.result is not None
        for product in outcome.result.products
    ]
    df = pd.DataFrame(rows, columns=PRODUCT_COLUMNS)
    for col in ("store", "category", "name", "product_url", "image_url", "category_url"):
        df[col] = df[col].apply(_safe_cell)
    return df


def build_summary_frame(outcomes: Sequence[CategoryOutcome]) -> pd.DataFrame:
    """One row per category job."""
    df = pd.DataFrame([o.to_dict() for o in outcomes], columns=SUMMARY_COLUMNS)
    for col in ("site", "category", "url", "error"):
        df[col] = df[col].apply(_safe_cell)
    return df


def save_run_results(
    outcomes: Sequence[CategoryOutcome],
    output_dir: Path,
    timing_info: dict | None = None,
) -> Path:
    """Save a scrape run to Excel.

    Args:
        outcomes: Category outcomes returned by the orchestrator.
        output_dir: Directory to save the output file.
        timing_info: Optional dictionary with execution timing data.
            Contains started_at, ended_at, elapsed_seconds.

    Returns:
        Path to the created output file.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_path = output_dir / f"scrape_{timestamp}.xlsx"

    summary_df = build_summary_frame(outcomes)
    products_df = build_products_frame(outcomes)

    # Use xlsxwriter for faster writing of large files
    with pd.ExcelWriter(output_path, engine="xlsxwriter") as writer:
        workbook = writer.book

        header_format = workbook.add_format(
            {"bold": True, "bg_color": "#4F81BD", "font_color": "white"}
        )
        pass_format = workbook.add_format({"bg_color": "#C6EFCE"})
        warn_format = workbook.add_format({"bg_color": "#FFEB9C"})
        fail_format = workbook.add_format({"bg_color": "#FFC7CE"})
        price_format = workbook.add_format({"num_format": "#,##0.00"})

        # Summary sheet
        summary_df.to_excel(writer, sheet_name="Summary", index=False)
        worksheet = writer.sheets["Summary"]
        for col_num, value in enumerate(summary_df.columns.values):
            worksheet.write(0, col_num, value, header_format)

        status_col = summary_df.columns.get_loc("status")
        for status, fmt in (
            (OutcomeStatus.SUCCESS, pass_format),
            (OutcomeStatus.EMPTY, warn_format),
            (OutcomeStatus.FAILED, fail_format),
        ):
            worksheet.conditional_format(
                1,
                status_col,
                len(summary_df) + 1,
                status_col,
                {"type": "text", "criteria": "containing", "value": str(status), "format": fmt},
            )

        # Execution Info sheet (timing data)
        if timing_info:
            elapsed = timing_info.get("elapsed_seconds", 0)
            elapsed_str = f"{int(elapsed // 60)}m {int(elapsed % 60)}s"

            exec_df = pd.DataFrame(
                {
                    "Metric": [
                        "Start Time",
                        "End Time",
                        "Duration",
                        "Duration (seconds)",
                        "Sites",
                        "Categories",
                        "Products",
                    ],
                    "Value": [
                        timing_info.get("started_at", "N/A"),
                        timing_info.get("ended_at", "N/A"),
                        elapsed_str,
                        f"{elapsed:.1f}",
                        str(len({o.site for o in outcomes})),
                        str(len(outcomes)),
                        str(len(products_df)),
                    ],
                }
            )
            exec_df.to_excel(writer, sheet_name="Execution Info", index=False)
            worksheet = writer.sheets["Execution Info"]
            for col_num, value in enumerate(exec_df.columns.values):
                worksheet.write(0, col_num, value, header_format)
            # Widen columns for readability
            worksheet.set_column(0, 0, 22)
            worksheet.set_column(1, 1, 30)

        # Products sheet
        products_df.to_excel(writer, sheet_name="Products", index=False)
        worksheet = writer.sheets["Products"]
        for col_num, value in enumerate(products_df.columns.values):
            worksheet.write(0, col_num, value, header_format)
        for col_name in ("price", "old_price"):
            col_idx = products_df.columns.get_loc(col_name)
            worksheet.set_column(col_idx, col_idx, 12, price_format)

    return output_path

"""Excel workbook with one row per audit result."""

import io
from typing import Dict, List

import pandas as pd
from openpyxl.styles import Font, PatternFill

from vale_audit.ocr_models import FIELDS

SHEET_NAME = "Vale Audit"

FIELD_LABELS = {
    "numero_vale": "Vale",
    "placa": "Plate",
    "m3": "M3",
    "fecha": "Date",
}

HEADER_FILL = PatternFill("solid", fgColor="4472C4")
HEADER_FONT = Font(bold=True, color="FFFFFF")
ROW_FILLS = {
    "error": PatternFill("solid", fgColor="FFC7CE"),
    "rejected": PatternFill("solid", fgColor="FFEB9C"),
    "approved": PatternFill("solid", fgColor="C6EFCE"),
}
MATCH_FONTS = {
    "YES": Font(bold=True, color="006100"),
    "NO": Font(bold=True, color="9C0006"),
}


def _format_discrepancies(discrepancies: List[Dict]) -> str:
    return " | ".join(
        f'{d.get("field")}: expected="{d.get("expected")}", extracted="{d.get("extracted")}" ({d.get("reason")})'
        for d in discrepancies or []
    )


def result_row(result: Dict) -> Dict:
    row = {"ID": result.get("row_id"), "Status": result.get("status")}
    if result.get("status") == "error":
        row["Status"] = "ERROR"
        row["Approved"] = "N/A"
        row["Error"] = result.get("error") or ""
        return row

    reference = result.get("reference_values") or {}
    extraction = result.get("extraction") or {}
    comparisons = result.get("comparisons") or {}
    row["Approved"] = "YES" if result.get("approved") else "NO"
    for name in FIELDS:
        label = FIELD_LABELS[name]
        row[label] = reference.get(name) or ""
        row[f"{label} (extracted)"] = extraction.get(name) or ""
        row[f"{label} matches"] = "YES" if (comparisons.get(name) or {}).get("matches") else "NO"
    row["Discrepancies"] = _format_discrepancies(result.get("discrepancies"))
    row["Manual review reason"] = result.get("manual_review_reason") or ""
    row["Error"] = result.get("error") or ""
    return row


def columns() -> List[str]:
    cols = ["ID", "Status", "Approved"]
    for name in FIELDS:
        label = FIELD_LABELS[name]
        cols += [label, f"{label} (extracted)", f"{label} matches"]
    return cols + ["Discrepancies", "Manual review reason", "Error"]


def _style_sheet(ws, df: pd.DataFrame):
    for cell in ws[1]:
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT

    match_cols = [i + 1 for i, c in enumerate(df.columns) if c.endswith(" matches")]
    for offset, (_, row) in enumerate(df.iterrows()):
        excel_row = offset + 2
        if row["Status"] == "ERROR":
            fill = ROW_FILLS["error"]
        elif row["Approved"] == "NO":
            fill = ROW_FILLS["rejected"]
        else:
            fill = ROW_FILLS["approved"]
        for cell in ws[excel_row]:
            cell.fill = fill
        for col in match_cols:
            cell = ws.cell(row=excel_row, column=col)
            if cell.value in MATCH_FONTS:
                cell.font = MATCH_FONTS[cell.value]

    for i, col in enumerate(df.columns, 1):
        width = 50 if col in ("Discrepancies", "Manual review reason", "Error") else max(12, len(col) + 2)
        ws.column_dimensions[ws.cell(row=1, column=i).column_letter].width = width


def build_audit_workbook(results: List[Dict]) -> bytes:
    df = pd.DataFrame([result_row(r) for r in results], columns=columns()).fillna("")
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=SHEET_NAME)
        _style_sheet(writer.sheets[SHEET_NAME], df)
    return buffer.getvalue()

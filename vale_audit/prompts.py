"""Prompts sent to the vision model."""

from datetime import date
from typing import Dict, Iterable, Optional


def build_extraction_prompt(valid_plates: Iterable[str], reference_values: Dict[str, str],
                            today: Optional[date] = None) -> str:
    today = today or date.today()
    plates = list(valid_plates or [])
    year = today.year
    return f"""You are an OCR expert extracting data from construction material transport documents (vales).

Extract these 4 fields exactly as you see them:

1. numeroVale: the large PRINTED/STAMPED number (usually red, top of the document, 5-6 digits).
   Extract exactly what you see; do NOT use any reference value for it.

2. placa: the HANDWRITTEN vehicle plate next to "PLACA:".
   Format: 3 letters + 3 digits (e.g. "ABC123") or 1 letter + 5 digits (e.g. "C144789").
   Registered plates ({len(plates)}): {", ".join(plates) if plates else "N/A"}
   Reference value: {reference_values.get("placa") or "N/A"}
   When a character is ambiguous ("4"/"9", "1"/"7", "S"/"5", "3"/"8"), prefer the reference value.

3. m3: the HANDWRITTEN quantity next to "CANTIDAD:" and before "M3" (usually between 6 and 20).
   Extract exactly what you see; do NOT use any reference value for it.

4. fecha: the HANDWRITTEN date after "FECHA:", written DD-MM-YY or DD/MM/YY.
   Return it as DD/MM/YYYY. Valid years: {year - 1}-{year}.
   Reference value: {reference_values.get("fecha") or "N/A"}
   If the year or month looks impossible, prefer the reference value.

CONFIDENCE measures READABILITY only (how clearly you can read the field):
1.0 crystal clear, 0.8-0.9 very clear, 0.6-0.7 readable but messy,
0.4-0.5 barely readable, 0.0-0.3 illegible.
If a field cannot be read at all, return "" with confidence 0.0. Do NOT make up values.

Return ONLY this JSON:
{{
  "numeroVale": {{"valor": "...", "confianza": 0.0}},
  "placa": {{"valor": "...", "confianza": 0.0}},
  "m3": {{"valor": "...", "confianza": 0.0}},
  "fecha": {{"valor": "DD/MM/YYYY", "confianza": 0.0}}
}}"""


def build_quality_prompt(min_score: int = 7) -> str:
    return f"""You are an image quality assessor for document scanning.

Rate the legibility of this vale (transport document) image from 0 to 10:
- 0-3: severely illegible (heavy blur, extreme over/under exposure)
- 4-5: poor, most text difficult to read
- 6-7: acceptable, printed and handwritten text readable
- 8-10: good to excellent

Check the printed number (usually red, top right) and the handwritten PLACA, CANTIDAD and FECHA fields.

Return ONLY this JSON:
{{"qualityScore": 0, "isReadable": true, "reason": "brief explanation of quality issues"}}

Set "isReadable" to true only if qualityScore >= {min_score}."""

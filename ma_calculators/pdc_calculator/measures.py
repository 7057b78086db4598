"""MA measure classification by RxNorm ingredient code.

This is the working subset of the Medication Adherence drug list; a
production deployment should back it with an RxClass lookup.
"""

from __future__ import annotations

from ma_calculators.pdc_calculator.models import MAMeasure

RXNORM_SYSTEM = "http://www.nlm.nih.gov/research/umls/rxnorm"

MEASURE_DISPLAY: dict[MAMeasure, str] = {
    MAMeasure.MAC: "Medication Adherence for Cholesterol",
    MAMeasure.MAD: "Medication Adherence for Diabetes",
    MAMeasure.MAH: "Medication Adherence for Hypertension",
}

MA_RXNORM_CODES: dict[MAMeasure, frozenset[str]] = {
    # Statins (HMG-CoA reductase inhibitors)
    MAMeasure.MAC: frozenset(
        {
            "83367",  # atorvastatin
            "36567",  # simvastatin
            "301542",  # rosuvastatin
            "42463",  # pravastatin
            "6472",  # lovastatin
            "41127",  # fluvastatin
            "861634",  # pitavastatin
        }
    ),
    # Biguanides, sulfonylureas, TZDs, DPP-4 and SGLT2 inhibitors
    MAMeasure.MAD: frozenset(
        {
            "6809",  # metformin
            "4821",  # glipizide
            "4815",  # glyburide
            "593411",  # sitagliptin
            "33738",  # pioglitazone
            "25789",  # glimepiride
            "614348",  # saxagliptin
            "857974",  # linagliptin
            "1368001",  # canagliflozin
            "1545653",  # empagliflozin
        }
    ),
    # ACE inhibitors and ARBs
    MAMeasure.MAH: frozenset(
        {
            "310965",  # lisinopril
            "52175",  # losartan
            "3827",  # enalapril
            "69749",  # valsartan
            "35296",  # ramipril
            "29046",  # benazepril
            "50166",  # fosinopril
            "83515",  # irbesartan
            "73494",  # olmesartan
            "321064",  # telmisartan
        }
    ),
}


def classify_rxnorm_code(rxnorm_code: str | None) -> MAMeasure | None:
    """Return the MA measure an RxNorm code belongs to, or None."""
    if not rxnorm_code:
        return None
    code = str(rxnorm_code).strip()
    for measure, codes in MA_RXNORM_CODES.items():
        if code in codes:
            return measure
    return None

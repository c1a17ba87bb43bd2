"""
Shared records for the store tests.
"""

CAFFEINE = {
    "compound_id": "1",
    "name": "Caffeine",
    "formula": "C8H10N4O2",
    "inchikey": "RYYVLZVUVIJVGH-UHFFFAOYSA-N",
    "exactmass": 194.080375584,
    "synonyms": ["Guaranine", "Methyltheobromine"],
}

GLUCOSE = {
    "compound_id": "2",
    "name": "Glucose",
    "formula": "C6H12O6",
    "inchikey": "WQZGKKKJIJFFOK-GASJEMHNSA-N",
    "exactmass": 180.063388116,
}


def ion(compound_id="1", adduct="[M+H]+", mz=195.087652, rt=120.0, **extra):
    return {"compound_id": compound_id, "ion_adduct": adduct, "ion_mz": mz, "ion_rt": rt, **extra}


def spectrum(compound_id="1", ms_level=2, precursor=195.0877, **extra):
    return {
        "compound_id": compound_id,
        "msLevel": ms_level,
        "precursorMz": precursor,
        "mz": [110.0713, 138.0662],
        "intensity": [20.0, 100.0],
        **extra,
    }

"""
PawScript Ingestion Module

Normalization of portal store documents into engine values:
- Discharges (visits) and their medications
- Dose logs, with or without embedded symptoms
- Standalone symptom logs
"""

from pawscript.ingestion.normalization import (
    DocumentNormalizer,
    normalize_dose_event,
    normalize_symptom_entry,
    normalize_visit,
    parse_date,
    parse_timestamp,
)

__all__ = [
    "DocumentNormalizer",
    "normalize_dose_event",
    "normalize_symptom_entry",
    "normalize_visit",
    "parse_date",
    "parse_timestamp",
]

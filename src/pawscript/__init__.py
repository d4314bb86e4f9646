"""
PawScript: Medication Schedule & Adherence Analytics Engine

Turns veterinary discharge prescriptions into expected dose schedules,
reconciles them against doses logged by pet owners, and rolls the result
up into adherence and symptom metrics for the clinic dashboard.
"""

__version__ = "0.1.0"
__author__ = "PawScript Team"

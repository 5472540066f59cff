"""Data Quality configuration"""
import os

# Allowed absolute difference between fact and staged line amounts
DQ_RECONCILIATION_TOLERANCE = float(os.getenv("DQ_RECONCILIATION_TOLERANCE", "0.005"))

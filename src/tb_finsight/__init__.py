# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
TB FinSight
-----------

A Python-based reporting toolkit that turns trial balances into Schedule III
financial statements and ratio analysis.

Main capabilities:
- trial balance ingestion from CSV exports or AI-extracted rows,
- rule-based mapping suggestions against the Schedule III taxonomy,
  with confidence scoring and bulk auto-apply,
- balance sheet, profit & loss and cash-flow aggregation with
  period-over-period variance and a materiality filter,
- ratio computation against targets and industry benchmarks, with
  per-user overrides, performance tiers and an overall health score,
- data quality checks (mapping completion, stock/COGS reconciliation),
- a database-first architecture (SQLite).

Pipeline stages run strictly forward:
    io / ingestion -> classifier / mapping_service -> engine -> ratios

Version: 0.2.0

Usage:
    python -m tb_finsight.cli --help
"""

__all__ = ["classifier", "engine", "io", "ratios", "views"]

__version__ = "0.2.0"

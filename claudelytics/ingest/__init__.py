"""
Log ingestion.

Discovery, parsing and the parallel driver that feeds the aggregators.
"""

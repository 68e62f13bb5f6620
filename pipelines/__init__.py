"""
Data pipelines for the commute traffic tracker

This directory contains the command-line jobs that run on schedules:
- collect_measurements.py: Collect travel times (every 15 minutes)
- generate_predictions.py: Fetch forecast travel times (weekly / daily)
- reconcile_predictions.py: Link past predictions to actual measurements (hourly)
"""

"""
QA Insights: test execution analytics service.

Computes health, staleness, flakiness, coverage, automation trend and
milestone progress metrics from test execution history.
"""
__version__ = "1.0.0"

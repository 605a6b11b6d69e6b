# fleetsafety/__init__.py
"""Driver-behavior scoring, accident-risk prediction, alerting and safety reports."""

__version__ = "0.1.0"

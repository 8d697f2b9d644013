"""
ExamGuard - integrity monitoring for online assessments
"""

__version__ = "1.0.0"

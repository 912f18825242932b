"""
Oncology Assist Backend

AI-assisted clinical decision support for oncology: structured diagnosis,
prognosis and radiation-plan generation, patient monitoring views and a
conversational assistant.
"""

__version__ = "1.0.0"

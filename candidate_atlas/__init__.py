"""
Candidate Atlas: resumable ingestion of candidate spreadsheets into a
deduplicated candidate store.
"""

__version__ = "0.1.0"

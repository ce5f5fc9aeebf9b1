"""
Scheduling domain - holds, finalization and professional-facing appointment changes.
"""

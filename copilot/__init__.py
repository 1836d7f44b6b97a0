"""
calendar-copilot: natural-language scheduling over a calendar backend
"""

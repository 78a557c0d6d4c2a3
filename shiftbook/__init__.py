"""Earnings tracking for shift-based healthcare work, local first with cloud sync."""

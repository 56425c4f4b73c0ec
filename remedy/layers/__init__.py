"""Repair pipeline layers."""

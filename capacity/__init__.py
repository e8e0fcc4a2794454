"""Temporal analytics core for a personal symptom and activity tracker.

This package contains the load model, statistical analyses and biometric
caching, isolated from storage and platform integrations for easy testing
and reasoning.
"""

"""Core domain logic for handoff symptom pattern surfacing.

This package contains the detection pipeline and domain models,
isolated from storage and transport for easy testing and reasoning.
"""

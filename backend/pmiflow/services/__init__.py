"""Workflow runtime, scheduler, and the analysis / recalculation workflows."""

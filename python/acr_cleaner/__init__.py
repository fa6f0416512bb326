"""
Retention cleanup for Azure Container Registry repositories.

The package is split into the retention window parser, the cluster inventory
collector, the manifest metadata source, the eligibility filter, the live-usage
safety checker and the deletion orchestrator that drives them.
"""

__version__ = "0.3.0"

"""
Provision GKE GPU clusters and deploy NVIDIA Cosmos inference on them.
"""

__version__ = "0.1.0"

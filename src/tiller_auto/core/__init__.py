"""Core infrastructure subpackage.

This package contains the TillerClient facade, which wires the control
plane supervisor, the release reconciler and the repository syncer
together.
"""

from tiller_auto.core.client import TillerClient, delete_tiller

__all__ = [
    "TillerClient",
    "delete_tiller",
]

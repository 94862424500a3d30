"""
garm-provider-linode: Linode external provider for GARM.

Creates, lists and tears down GitHub runner instances on Linode.
Ownership and pool membership live in instance tags; nothing is
stored locally.
"""

__version__ = "0.1.0"

DEFAULT_REGION = "us-ord"

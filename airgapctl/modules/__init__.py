"""
Infrastructure modules for airgapctl.
"""
from .ssh import SSHConnection, connect_node

__all__ = [
    'SSHConnection',
    'connect_node',
]

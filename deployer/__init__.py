"""Chat deployer: provisions identities and deploys chat app instances."""

__version__ = "0.1.0"

"""Wallet authentication."""
from .authenticator import WalletAuthenticator
from .verifiers import SignatureVerifier, SimpleKeyVerifier, SmartContractVerifier

__all__ = [
    "SignatureVerifier",
    "SimpleKeyVerifier",
    "SmartContractVerifier",
    "WalletAuthenticator",
]

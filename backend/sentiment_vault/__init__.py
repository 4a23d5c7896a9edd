"""
SENTIMENT-VAULT — encrypted sentiment ledger.

Submissions are scored, encrypted under the ledger contract's context,
and committed as records whose emotion category can be disclosed exactly
once through a proof-checked, on-ledger attested decryption.
"""

__version__ = "0.1.0"

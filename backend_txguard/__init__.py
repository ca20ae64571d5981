"""
Backend TxGuard: pre-flight transaction risk evaluation for a multi-chain hot wallet.

Runs a battery of independent checks against a proposed transfer (address
syntax, scam reputation, balance coverage, amount sanity, recipient
familiarity, fee spikes, dry run) and folds them into an auditable verdict
that gates the send. Also owns the scam/suspicious address reputation store.
"""

__version__ = "0.1.0"

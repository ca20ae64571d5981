"""
Chain clients: EVM JSON-RPC and Bitcoin Esplora implementations of ChainClient.
"""

from backend_txguard.chains.bitcoin_esplora import EsploraClient
from backend_txguard.chains.evm_rpc import EvmRpcClient

__all__ = ["EsploraClient", "EvmRpcClient"]

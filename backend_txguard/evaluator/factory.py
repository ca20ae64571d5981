"""
Wire a TransactionRiskEvaluator from the environment.

Database URL, chain endpoints and thresholds come from config.env and
config.settings; tests build the pieces directly instead.
"""

from __future__ import annotations

from sqlalchemy.engine import Engine

from backend_txguard.chains.bitcoin_esplora import EsploraClient
from backend_txguard.chains.evm_rpc import EvmRpcClient
from backend_txguard.config.settings import EvaluatorSettings, get_settings
from backend_txguard.database.connection import get_engine
from backend_txguard.database.readers import SqlAddressBookReader, SqlTransactionHistoryReader
from backend_txguard.evaluator.address_book import AddressBookLookup
from backend_txguard.evaluator.addresses import SimilarityFn, is_visually_similar
from backend_txguard.evaluator.chain_probe import ChainProbe
from backend_txguard.evaluator.history import HistoryOracle
from backend_txguard.evaluator.models import ChainKind
from backend_txguard.evaluator.runner import CheckRunner
from backend_txguard.evaluator.service import TransactionRiskEvaluator
from backend_txguard.reputation.ingestor import ReportIngestor
from backend_txguard.reputation.store import ReputationStore
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)


def build_evaluator(
    settings: EvaluatorSettings | None = None,
    engine: Engine | None = None,
    *,
    similarity: SimilarityFn = is_visually_similar,
    ensure_schema: bool = True,
) -> TransactionRiskEvaluator:
    """
    Assemble an evaluator from the environment (or the given settings/engine).

    The default lookalike rule compares the first 6 and last 4 characters, so
    two addresses that differ only inside the last four (…5678 vs …5679) are
    not flagged as a typosquat. To catch those too, pass

        build_evaluator(similarity=any_similarity(is_visually_similar, is_near_duplicate))
    """
    settings = settings or get_settings()
    engine = engine or get_engine()

    store = ReputationStore(engine)
    if ensure_schema:
        store.ensure_schema()

    probe = ChainProbe(
        {
            ChainKind.EVM_LIKE: EvmRpcClient(request_timeout_sec=settings.probe_timeout_sec),
            ChainKind.BITCOIN_LIKE: EsploraClient(request_timeout_sec=settings.probe_timeout_sec),
        },
        fee_spike_gwei_threshold=settings.fee_spike_gwei_threshold,
        timeout_sec=settings.probe_timeout_sec,
    )
    runner = CheckRunner(
        store,
        AddressBookLookup(SqlAddressBookReader(engine)),
        HistoryOracle(
            SqlTransactionHistoryReader(engine),
            window_days=settings.history_window_days,
            sample_count=settings.history_sample_count,
        ),
        probe,
        settings,
        similarity=similarity,
    )
    logger.info("evaluator_built", **probe.describe())
    return TransactionRiskEvaluator(runner, ReportIngestor(store, settings), settings)

"""
DocMind - Component Wiring
===========================
Builds the object graph from ``settings``.  The single place that
decides which implementation backs each capability:

    ==================  ==============================  ==========================
    Capability          Configured                      Fallback
    ==================  ==============================  ==========================
    Embeddings          Gemini (``GOOGLE_API_KEY``)     hash pseudo-embeddings
    Generation          Gemini (``GOOGLE_API_KEY``)     fixed notice
    Memory store        MongoDB (``MONGO_URI``)         in-process store
    Long-term memory    ``LONG_TERM_ENABLED``           ``NullLongTermMemory``
    Key info            ``KEY_INFO_ENABLED``            ``NullKeyInfoExtractor``
    Reranker            ``RERANKER_MODE``               ``NoOpReranker``
    ==================  ==============================  ==========================

Every ``build_*`` helper takes its collaborators as optional arguments so
scripts and tests can share one instance of the expensive pieces.
"""

from __future__ import annotations

from docmind.config.settings import settings
from docmind.src.core.embedder import EmbeddingService, build_embedding_provider
from docmind.src.core.generator import build_generator
from docmind.src.core.ingestor import IngestionPipeline
from docmind.src.core.rag_engine import RAGManager
from docmind.src.core.reranker import build_reranker
from docmind.src.core.retrieval import Deduplicator, HybridRetriever, RelevanceGate, RetrievalFanout
from docmind.src.database.keyword_store import LanceKeywordStore
from docmind.src.database.memory_store import InMemoryMemoryStore, MemoryStore, MongoMemoryStore
from docmind.src.database.vector_store import ConversationVectorStore, DocumentVectorStore
from docmind.src.memory.key_info import KeyInfoExtractor, NullKeyInfoExtractor
from docmind.src.memory.layered_context import LayeredContextManager
from docmind.src.memory.long_term import LongTermMemory, NullLongTermMemory
from docmind.src.memory.short_term import ShortTermMemory
from docmind.src.utils.logger import get_logger

logger = get_logger(__name__)


def build_embedding_service() -> EmbeddingService:
    return EmbeddingService(build_embedding_provider())


def build_memory_store() -> MemoryStore:
    if settings.MONGO_URI is None:
        logger.warning("[MEMORY] MONGO_URI not set — conversation memory is process-local and lost on restart.")
        return InMemoryMemoryStore()
    return MongoMemoryStore()


def build_retriever(embedder: EmbeddingService | None = None, document_store: DocumentVectorStore | None = None) -> HybridRetriever:
    embedder = embedder or build_embedding_service()
    document_store = document_store or DocumentVectorStore(dimension=embedder.dimension)
    fanout = RetrievalFanout(document_store, LanceKeywordStore(document_store), embedder)
    return HybridRetriever(fanout, build_reranker(), Deduplicator(), RelevanceGate())


def build_context_manager(embedder: EmbeddingService | None = None, store: MemoryStore | None = None) -> LayeredContextManager:
    store = store or build_memory_store()
    short_term = ShortTermMemory(store)

    if settings.LONG_TERM_ENABLED:
        embedder = embedder or build_embedding_service()
        long_term: LongTermMemory | NullLongTermMemory = LongTermMemory(ConversationVectorStore(dimension=embedder.dimension), embedder)
    else:
        long_term = NullLongTermMemory()

    key_info: KeyInfoExtractor | NullKeyInfoExtractor = KeyInfoExtractor(store) if settings.KEY_INFO_ENABLED else NullKeyInfoExtractor()

    logger.info("[MEMORY] Tiers: short-term(window=%d), long-term=%s, key-info=%s", short_term.window_size, type(long_term).__name__, type(key_info).__name__)
    return LayeredContextManager(short_term, long_term, key_info)


def build_ingestion_pipeline(embedder: EmbeddingService | None = None, document_store: DocumentVectorStore | None = None) -> IngestionPipeline:
    embedder = embedder or build_embedding_service()
    document_store = document_store or DocumentVectorStore(dimension=embedder.dimension)
    return IngestionPipeline(document_store, LanceKeywordStore(document_store), embedder)


def build_rag_manager() -> RAGManager:
    """Fully wired ``RAGManager`` sharing one embedder across retrieval and memory."""
    embedder = build_embedding_service()
    return RAGManager(build_retriever(embedder), build_context_manager(embedder), build_generator())

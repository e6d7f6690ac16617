"""Multi-source crawl orchestration and record fusion.

Provides prioritized fallback across data sources, bounded async retries,
deduplication of records from several sources, and request/batch metrics.

Key modules:
    config          -- CrawlConfig tree and ConfigManager
    errors          -- CrawlFusionError and its subclasses
    models          -- Query, Record, EquipmentRecord, FallbackResult, stats dataclasses
    backoff         -- BackoffStrategy for exponential retry delays
    retry           -- RetryExecutor with per-key bookkeeping
    base            -- Strategy, FunctionStrategy and HttpStrategy base classes
    adapters        -- JsonApiStrategy generic JSON endpoint adapter
    factory         -- StrategyFactory for building adapters from config
    orchestrator    -- FallbackOrchestrator for prioritized source fallback
    validators      -- RecordValidator and per-kind implementations
    fusion          -- DataFusionEngine for deduplication and quality scoring
    metrics         -- MetricsCollector for request-level statistics
    monitor         -- PerformanceMonitor for batch-level statistics
    policies        -- BatchPolicy and concrete batch-size policies
    scheduler       -- BatchProcessor for adaptive batch runs
    storage         -- StorageBase and JsonlStorage for persistence
"""

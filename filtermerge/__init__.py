"""
filtermerge package - Filter List Classifier, Store and Deduplicator

Modules:
    classifier: Assign each filter-list line a rule kind
    normalizer: Canonical keys for cross-source deduplication
    metadata: StoredRule records and provenance metadata
    store: Per-kind rule store with merge/overwrite policy
    deduplicator: Score-based cross-source deduplication
    parser: Parse downloaded lists into StoredRule records
    downloader: Fetch lists with ETag/Last-Modified caching
    exporter: Write hosts, dnsmasq, AdGuard, ... output files
    pipeline: Main processing pipeline
"""

__version__ = "1.0.0"

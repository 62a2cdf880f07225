from prometheus_client import Counter, Histogram

DOCUMENTS_WRITTEN = Counter(
    "vsearch_documents_written_total", "Documents written to the store", ["operation"]
)
DOCUMENTS_INDEXED = Counter(
    "vsearch_documents_indexed_total", "Document index updates committed", ["index"]
)
INDEXING_FAILURES = Counter(
    "vsearch_indexing_failures_total", "Document index updates rolled back", ["index"]
)
SEARCH_REQUESTS = Counter(
    "vsearch_search_requests_total", "Search requests by outcome", ["index", "status"]
)
SEARCH_LATENCY = Histogram(
    "vsearch_search_latency_seconds", "Search latency in seconds", ["index"]
)

"""Shared failure code constants for store, query and investigation error handling."""

SOURCE_UNAVAILABLE = "source_unavailable"
EMPTY_SOURCE = "empty_source"
MALFORMED_HEADER = "malformed_header"

DIMENSION_NOT_FOUND = "dimension_not_found"
NO_MATCHING_ROWS = "no_matching_rows"
UNKNOWN_QUERY = "unknown_query"
QUERY_ERROR = "query_error"

EXTRACTION_FAILED = "extraction_failed"
ITERATION_BUDGET_EXCEEDED = "iteration_budget_exceeded"
ENDPOINT_UNAVAILABLE = "endpoint_unavailable"

# Raised to the caller: no segmentation can be computed without data.
PROPAGATED_FAILURES = [
    SOURCE_UNAVAILABLE,
    EMPTY_SOURCE,
    MALFORMED_HEADER,
]

# Contained per query or per finding; reported as values.
CONTAINED_FAILURES = [
    DIMENSION_NOT_FOUND,
    NO_MATCHING_ROWS,
    UNKNOWN_QUERY,
    QUERY_ERROR,
    EXTRACTION_FAILED,
    ITERATION_BUDGET_EXCEEDED,
    ENDPOINT_UNAVAILABLE,
]

ANALYSIS_FAILED_MARKER = "analysis failed, retry"

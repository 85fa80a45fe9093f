from enum import StrEnum


class DocumentStatus(StrEnum):
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    DELETED = "deleted"


# Sentinel accepted by the file type and status filters meaning "no restriction"
FILTER_ALL = "all"

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20

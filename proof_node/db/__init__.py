from .persistence import with_retries
from .repositories import (
    DBDocumentRepository,
    DBMerkleBatchRepository,
    DBTimestampProofRepository,
    DBVerificationLogRepository,
)
from .session import build_engine, create_session, database_url

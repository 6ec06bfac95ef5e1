"""
Document store abstraction shared by the MongoDB and in-memory backends.

Logical collections ("profiles", "reports") are mapped to physical names under
the configured namespace, so deployments sharing one database never see each
other's documents.

Watches are async iterators: they register nothing until first iterated, yield
an initial snapshot and then a fresh snapshot after every committed write, and
release their subscription when the consumer stops iterating.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar

PROFILES = "profiles"
REPORTS = "reports"

T = TypeVar("T")


def namespaced(namespace: str, collection: str) -> str:
    """Physical collection name for a logical collection."""
    return f"artifacts.{namespace}.{collection}"


@dataclass(frozen=True)
class DocumentSnapshot:
    collection: str
    id: str
    data: Optional[Dict[str, Any]] = None

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, key: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return self.data.get(key, default)


@dataclass
class QuerySnapshot:
    collection: str
    documents: List[DocumentSnapshot] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.documents)

    def __iter__(self):
        return iter(self.documents)


def matches_expected(data: Optional[Mapping[str, Any]], expected: Optional[Mapping[str, Any]]) -> bool:
    """Compare-and-swap check. A tuple/list/set value means "any of"."""
    if not expected:
        return True
    if data is None:
        return False
    for key, wanted in expected.items():
        current = data.get(key)
        if isinstance(wanted, (tuple, list, set, frozenset)):
            if current not in wanted:
                return False
        elif current != wanted:
            return False
    return True


class Transaction:
    """Read-then-write unit of work. Reads see committed state; writes are staged."""

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        raise NotImplementedError

    def set(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError


TransactionBody = Callable[[Transaction], Awaitable[T]]


class DocumentStore:
    """Interface implemented by every store backend."""

    namespace: str

    async def open(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "ok"}

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        raise NotImplementedError

    async def set(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def add(self, collection: str, fields: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> None:
        raise NotImplementedError

    async def list(self, collection: str) -> List[DocumentSnapshot]:
        raise NotImplementedError

    async def run_transaction(self, body: TransactionBody, max_attempts: int = 5) -> Any:
        raise NotImplementedError

    def watch_document(self, collection: str, doc_id: str) -> AsyncIterator[DocumentSnapshot]:
        raise NotImplementedError

    def watch_collection(self, collection: str) -> AsyncIterator[QuerySnapshot]:
        raise NotImplementedError

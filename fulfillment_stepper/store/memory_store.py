"""In-process status store."""

from __future__ import annotations

from fulfillment_stepper.store.document import DocumentStatusStore, OrderStatusDocument


class InMemoryStatusStore(DocumentStatusStore):
    """Keeps one status document per order in a dict.

    Documents are replaced wholesale on every write, so a reader never sees a
    partially applied commit.
    """

    def __init__(self) -> None:
        super().__init__()
        self._docs: dict[str, OrderStatusDocument] = {}

    def _read(self, order_key: str) -> OrderStatusDocument:
        doc = self._docs.get(order_key)
        if doc is None:
            return OrderStatusDocument(order_key=order_key)
        return doc

    def _write(self, doc: OrderStatusDocument) -> None:
        self._docs[doc.order_key] = doc

    def order_keys(self) -> list[str]:
        return sorted(self._docs)

from .document_store import DocumentStore

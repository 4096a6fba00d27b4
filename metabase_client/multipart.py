"""Multipart form builder for upload endpoints.

Parts are encoded in a fixed order: text fields in insertion order, then
files in insertion order. Servers that depend on part order (and tests that
inspect the raw body) see the same layout on every attempt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class FilePart:
    """One file part of a multipart form."""

    name: str
    filename: str
    content: bytes
    content_type: str | None = None


@dataclass
class MultipartForm:
    """Ordered text fields and file parts.

    Builder methods return the form so calls can be chained:

        form = MultipartForm().add_field("collection_id", "5").add_file(
            "file", "data.csv", csv_bytes, content_type="text/csv"
        )
    """

    fields: list[tuple[str, str]] = field(default_factory=list)
    files: list[FilePart] = field(default_factory=list)

    def add_field(self, name: str, value: str) -> MultipartForm:
        self.fields.append((name, value))
        return self

    def add_file(
        self,
        name: str,
        filename: str,
        content: bytes,
        content_type: str | None = None,
    ) -> MultipartForm:
        self.files.append(FilePart(name, filename, bytes(content), content_type))
        return self

    @property
    def is_empty(self) -> bool:
        return not self.fields and not self.files

    def httpx_files(self) -> list[tuple[str, tuple[Any, ...]]]:
        """All parts in the shape httpx expects for ``files=``, in encoding order.

        Text fields are passed as parts without a filename, which keeps the
        body multipart/form-data even when the form has no files.
        """
        parts: list[tuple[str, tuple[Any, ...]]] = [
            (name, (None, value.encode("utf-8"))) for name, value in self.fields
        ]
        for part in self.files:
            if part.content_type is None:
                parts.append((part.name, (part.filename, part.content)))
            else:
                parts.append((part.name, (part.filename, part.content, part.content_type)))
        return parts

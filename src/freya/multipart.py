"""
Multipart form-data parser for Freya framework.

``parse_multipart`` splits a buffered ``multipart/form-data`` body into
plain form fields and :class:`UploadFile` objects.
"""

import io
import os
from dataclasses import dataclass, field


@dataclass
class UploadFile:
    """
    A single uploaded file from a multipart request.

    Attributes:
        field_name: Form field the file was posted under.
        filename: Original filename from the client.
        content_type: MIME type declared by the client.
        headers: Raw headers for this part.
        file: In-memory buffer holding the upload.
    """

    filename: str
    field_name: str = ""
    content_type: str = "application/octet-stream"
    headers: dict[str, str] = field(default_factory=dict)
    file: io.BytesIO = field(default_factory=io.BytesIO, repr=False)

    def read(self, size: int = -1) -> bytes:
        return self.file.read(size)

    def seek(self, offset: int) -> None:
        self.file.seek(offset)

    @property
    def size(self) -> int:
        """Total size of the upload in bytes."""
        return len(self.file.getbuffer())

    def save(self, directory: str, filename: str | None = None) -> str:
        """
        Write the upload into *directory* and return the written path.

        Only the base name of the client-supplied filename is used.
        """
        name = os.path.basename(filename or self.filename)
        if not name or name in (".", ".."):
            raise ValueError(f"Unsafe upload filename: {self.filename!r}")

        target = os.path.join(directory, name)
        with open(target, "wb") as out:
            out.write(self.file.getvalue())
        return target

    def close(self) -> None:
        self.file.close()


def _parse_content_disposition(header: str) -> dict[str, str]:
    """``form-data; name="a"; filename="b.txt"`` -> ``{"name": "a", "filename": "b.txt"}``."""
    params: dict[str, str] = {}
    for part in header.split(";")[1:]:
        key, sep, value = part.strip().partition("=")
        if sep:
            params[key.strip().lower()] = value.strip().strip('"')
    return params


def _parse_part_headers(raw_headers: bytes) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in raw_headers.split(b"\r\n"):
        name, sep, value = line.decode("utf-8", errors="replace").partition(":")
        if sep:
            headers[name.strip().lower()] = value.strip()
    return headers


def parse_multipart(
    body: bytes,
    boundary: str,
) -> tuple[dict[str, str | list[str]], list[UploadFile]]:
    """
    Parse a ``multipart/form-data`` body.

    Returns ``(form_fields, files)``. Repeated field names collect their
    values into a list, in order of appearance.
    """
    form_fields: dict[str, str | list[str]] = {}
    files: list[UploadFile] = []
    delimiter = f"--{boundary}".encode()

    for part in body.split(delimiter):
        if part.startswith(b"--"):
            # Closing delimiter; the epilogue is ignored
            break

        header_end = part.find(b"\r\n\r\n")
        if header_end == -1:
            continue

        part_headers = _parse_part_headers(part[:header_end].strip(b"\r\n"))
        content = part[header_end + 4:]
        if content.endswith(b"\r\n"):
            content = content[:-2]

        disposition = _parse_content_disposition(part_headers.get("content-disposition", ""))
        field_name = disposition.get("name", "")

        if "filename" in disposition:
            files.append(UploadFile(
                filename=disposition["filename"],
                field_name=field_name,
                content_type=part_headers.get("content-type", "application/octet-stream"),
                headers=part_headers,
                file=io.BytesIO(content),
            ))
            continue

        value = content.decode("utf-8", errors="replace")
        existing = form_fields.get(field_name)
        if existing is None:
            form_fields[field_name] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            form_fields[field_name] = [existing, value]

    return form_fields, files

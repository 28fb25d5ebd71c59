"""Normalisers turning raw connector bytes into plain text, selected by MIME type."""

from __future__ import annotations

import email.utils
import io
import mimetypes
from datetime import datetime
from email import message_from_bytes, policy
from email.message import EmailMessage
from pathlib import PurePosixPath

import langid
import yaml
from markdown_it import MarkdownIt

from localdex.core.errors import UnsupportedTypeError
from localdex.ingest.types import NormalisedContent
from localdex.models.entities import RawDocument
from localdex.utils.text import normalize

_MD = MarkdownIt()

_SUFFIX_MIME = {
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".mdx": "text/markdown",
    ".txt": "text/plain",
    ".text": "text/plain",
    ".log": "text/plain",
    ".eml": "message/rfc822",
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def guess_mime(name: str) -> str:
    """Best-effort MIME type for a file name, defaulting to plain text."""
    suffix = PurePosixPath(name).suffix.lower()
    if suffix in _SUFFIX_MIME:
        return _SUFFIX_MIME[suffix]
    guessed, _ = mimetypes.guess_type(name)
    return guessed or "text/plain"


class BaseNormaliser:
    """Common normaliser interface."""

    mime_types: tuple[str, ...] = ()

    def can_handle(self, mime_type: str) -> bool:
        return mime_type.split(";", 1)[0].strip().lower() in self.mime_types

    def normalise(self, raw: RawDocument) -> NormalisedContent:  # pragma: no cover - interface
        raise NotImplementedError


class MarkdownNormaliser(BaseNormaliser):
    mime_types = ("text/markdown", "text/x-markdown")

    def normalise(self, raw: RawDocument) -> NormalisedContent:
        text = _decode(raw.content)
        front_matter, body = _split_front_matter(text)
        normalized = _markdown_to_text(body)
        metadata = {"lang": _detect_lang(normalized)}
        title = _default_title(raw)
        if front_matter:
            metadata["front_matter"] = front_matter
            title = str(front_matter.get("title") or title)
            if front_matter.get("author"):
                metadata["author"] = str(front_matter["author"])
            created = _to_unix_ms(front_matter.get("created"))
            if created is not None:
                metadata["created_ts"] = created
        return NormalisedContent(title=title, text=normalized, mime_type="text/markdown", metadata=metadata)


class TextNormaliser(BaseNormaliser):
    mime_types = ("text/plain",)

    def normalise(self, raw: RawDocument) -> NormalisedContent:
        text = normalize(_decode(raw.content))
        return NormalisedContent(
            title=_default_title(raw),
            text=text,
            mime_type="text/plain",
            metadata={"lang": _detect_lang(text)},
        )


class PDFNormaliser(BaseNormaliser):
    mime_types = ("application/pdf",)

    def normalise(self, raw: RawDocument) -> NormalisedContent:
        try:
            import fitz
        except ImportError as exc:
            raise UnsupportedTypeError("PDF support requires the 'pdf' extra (PyMuPDF)") from exc
        with fitz.open(stream=raw.content, filetype="pdf") as doc:
            pages = [page.get_text("text", sort=True) for page in doc]
        text = normalize("\n\n".join(pages))
        return NormalisedContent(
            title=_default_title(raw),
            text=text,
            mime_type="application/pdf",
            metadata={"page_count": len(pages), "lang": _detect_lang(text)},
        )


class DocxNormaliser(BaseNormaliser):
    mime_types = ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",)

    def normalise(self, raw: RawDocument) -> NormalisedContent:
        try:
            from docx import Document as DocxDocument
        except ImportError as exc:
            raise UnsupportedTypeError("DOCX support requires the 'docx' extra (python-docx)") from exc
        document = DocxDocument(io.BytesIO(raw.content))
        paragraphs = [para.text for para in document.paragraphs if para.text.strip()]
        text = normalize("\n".join(paragraphs))
        core = document.core_properties
        metadata: dict[str, object] = {"lang": _detect_lang(text)}
        if core.author:
            metadata["author"] = core.author
        if core.category:
            metadata["category"] = core.category
        return NormalisedContent(
            title=core.title or _default_title(raw),
            text=text,
            mime_type=self.mime_types[0],
            metadata=metadata,
        )


class EmailNormaliser(BaseNormaliser):
    mime_types = ("message/rfc822",)

    def normalise(self, raw: RawDocument) -> NormalisedContent:
        message = message_from_bytes(raw.content, policy=policy.default)
        return _email_to_content(raw, message)


class NormaliserRegistry:
    """Registry that selects an appropriate normaliser for a MIME type."""

    def __init__(self) -> None:
        self._normalisers: list[BaseNormaliser] = [
            MarkdownNormaliser(),
            TextNormaliser(),
            PDFNormaliser(),
            DocxNormaliser(),
            EmailNormaliser(),
        ]

    def register(self, normaliser: BaseNormaliser) -> None:
        self._normalisers.insert(0, normaliser)

    def for_mime(self, mime_type: str) -> BaseNormaliser | None:
        for normaliser in self._normalisers:
            if normaliser.can_handle(mime_type):
                return normaliser
        return None

    def normalise(self, raw: RawDocument) -> NormalisedContent:
        normaliser = self.for_mime(raw.mime_type)
        if normaliser is None:
            if raw.mime_type.startswith("text/"):
                normaliser = TextNormaliser()
            else:
                raise UnsupportedTypeError(f"no normaliser registered for {raw.mime_type}")
        return normaliser.normalise(raw)


def _decode(content: bytes) -> str:
    return content.decode("utf-8", errors="ignore")


def _default_title(raw: RawDocument) -> str:
    title = raw.metadata.get("title")
    if title:
        return str(title)
    stem = PurePosixPath(raw.uri).stem
    return stem or raw.uri


def _split_front_matter(text: str) -> tuple[dict[str, object] | None, str]:
    if text.startswith("---"):
        parts = text.split("---", 2)
        if len(parts) >= 3:
            try:
                front_matter = yaml.safe_load(parts[1]) or {}
            except yaml.YAMLError:
                return None, text
            if isinstance(front_matter, dict):
                return front_matter, parts[2]
    return None, text


def _markdown_to_text(text: str) -> str:
    tokens = _MD.parse(text)
    parts: list[str] = []
    for token in tokens:
        content = token.content.strip()
        if content:
            parts.append(content)
    return normalize("\n".join(parts) if parts else text)


def _detect_lang(text: str) -> str:
    if not text.strip():
        return ""
    lang, _ = langid.classify(text)
    return lang


def _to_unix_ms(value: object | None) -> int | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, (int, float)):
        return int(float(value) * 1000)
    if isinstance(value, str):
        try:
            return int(datetime.fromisoformat(value).timestamp() * 1000)
        except ValueError:
            return None
    return None


def _email_to_content(raw: RawDocument, message: EmailMessage) -> NormalisedContent:
    subject = message.get("subject", "")
    if message.is_multipart():
        parts: list[str] = []
        for part in message.walk():
            if part.get_content_type() == "text/plain":
                payload = part.get_payload(decode=True)
                if payload:
                    parts.append(payload.decode(part.get_content_charset() or "utf-8", errors="ignore"))
        body = "\n".join(parts)
    else:
        body_part = message.get_body(preferencelist=("plain",))
        if body_part is not None:
            payload = body_part.get_content()
        else:
            payload = message.get_payload(decode=True) or b""
        body = payload if isinstance(payload, str) else payload.decode("utf-8", errors="ignore")

    normalized = normalize(body)
    metadata: dict[str, object] = {"lang": _detect_lang(normalized)}
    if message.get("message-id"):
        metadata["message_id"] = str(message.get("message-id"))
    if message.get("from"):
        metadata["author"] = str(message.get("from"))
    date_header = message.get("date")
    if date_header:
        try:
            metadata["created_ts"] = int(email.utils.parsedate_to_datetime(str(date_header)).timestamp() * 1000)
        except (TypeError, ValueError):
            pass
    return NormalisedContent(
        title=str(subject) or _default_title(raw),
        text=normalized,
        mime_type="message/rfc822",
        metadata=metadata,
    )


__all__ = [
    "BaseNormaliser",
    "MarkdownNormaliser",
    "TextNormaliser",
    "PDFNormaliser",
    "DocxNormaliser",
    "EmailNormaliser",
    "NormaliserRegistry",
    "guess_mime",
]

"""
Clinical Text Splitter

Recursive character splitting of the combined transcript + SOAP note text.
The transcript and the note are split separately, then separators are tried
in order (paragraph, line, sentence, word, character) so chunks end on the
largest semantic unit that fits.

The splitter is configured lossless: separators are kept and whitespace is
not stripped, so removing overlaps and concatenating chunks in order gives
back the original text.
"""

from dataclasses import dataclass
from typing import List

from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..common.schemas import SECTION_SEPARATOR, NOTE_HEADERS, ChunkKind

# The section separator is handled before these apply
SEPARATORS = [
    "\n\n",
    "\n",
    ". ",
    "! ",
    "? ",
    " ",
    "",
]

_SECTION_MARKER = SECTION_SEPARATOR.strip()


@dataclass
class TextSpan:
    """A chunk of text and where it starts in the source"""
    text: str
    start_index: int

    @property
    def end_index(self) -> int:
        return self.start_index + len(self.text)


def classify_chunk(text: str) -> ChunkKind:
    """NOTE if the chunk carries the section marker or a SOAP header"""
    if _SECTION_MARKER in text:
        return ChunkKind.NOTE
    lowered = text.lower()
    if any(header in lowered for header in NOTE_HEADERS):
        return ChunkKind.NOTE
    return ChunkKind.TRANSCRIPT


class ClinicalTextSplitter:
    """Splits encounter text into overlapping spans of about chunk_size characters."""

    def __init__(self, chunk_size: int = 800, chunk_overlap: int = 100):
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=SEPARATORS,
            keep_separator=True,
            strip_whitespace=False,
            add_start_index=True,
        )

        # Note body chunks leave room for the separator prepended to the first one
        note_size = max(chunk_size - len(SECTION_SEPARATOR), chunk_overlap + 1)
        self._note_splitter = RecursiveCharacterTextSplitter(
            chunk_size=note_size,
            chunk_overlap=chunk_overlap,
            separators=SEPARATORS,
            keep_separator=True,
            strip_whitespace=False,
            add_start_index=True,
        )

    def split(self, text: str) -> List[TextSpan]:
        """
        Split text into ordered, lossless spans.

        Text before the section separator and text after it are split
        independently. The whole separator opens the first note span, so
        no boundary ever falls inside it.
        """
        if not text:
            return []

        boundary = text.find(SECTION_SEPARATOR)
        if boundary < 0:
            return self._split_part(self._splitter, text, 0)

        body_start = boundary + len(SECTION_SEPARATOR)
        spans = self._split_part(self._splitter, text[:boundary], 0)

        note_spans = self._split_part(self._note_splitter, text[body_start:], body_start)
        if note_spans:
            first = note_spans[0]
            note_spans[0] = TextSpan(text=SECTION_SEPARATOR + first.text, start_index=boundary)
        else:
            note_spans = [TextSpan(text=SECTION_SEPARATOR, start_index=boundary)]

        return spans + note_spans

    @staticmethod
    def _split_part(
        splitter: RecursiveCharacterTextSplitter,
        text: str,
        offset: int,
    ) -> List[TextSpan]:
        if not text:
            return []
        documents = splitter.create_documents([text])
        return [
            TextSpan(text=doc.page_content, start_index=offset + doc.metadata["start_index"])
            for doc in documents
        ]

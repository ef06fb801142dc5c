"""
Word-based text chunking with overlap.

Splits raw text into chunks of roughly ``chunk_size`` characters. Chunks are
built from whole words; the trailing ``overlap`` words of each chunk are
repeated at the start of the next one so that context spanning a boundary is
retrievable from either side.
"""


def chunk_text(
    text: str,
    chunk_size: int = 1000,
    overlap: int = 200,
) -> list[str]:
    """
    Split text into overlapping chunks of whole words.

    The running length of a chunk is the sum of its word lengths plus one
    separator per word. A chunk is closed when the next word would push the
    running length past ``chunk_size``; a word is never split, so a single word
    longer than ``chunk_size`` becomes its own chunk.

    Args:
        text: Raw text to chunk; any run of whitespace separates words
        chunk_size: Character budget per chunk
        overlap: Number of words carried over from one chunk to the next

    Returns:
        Chunk strings in document order, words joined by single spaces

    Raises:
        ValueError: If chunk_size <= 0 or overlap < 0
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0:
        raise ValueError(f"overlap must be non-negative, got {overlap}")

    words = text.split()
    if not words:
        return []

    chunks: list[str] = []
    current: list[str] = []
    current_length = 0

    for word in words:
        if current and current_length + len(word) > chunk_size:
            chunks.append(" ".join(current))

            current = current[-overlap:] if overlap else []
            current_length = len(" ".join(current))

        current.append(word)
        current_length += len(word) + 1

    if current:
        chunks.append(" ".join(current))

    return chunks

"""
Pruning Filter

Drops low-value Markdown blocks (navigation, link farms, legal boilerplate)
based on word count, text density and link density.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from crawler_engine.core.base import PruningOptions
from crawler_engine.core.logging import get_logger


HEADER_RE = re.compile(r'^#{1,6}\s')
LINK_RE = re.compile(r'\[([^\]]+)\]\([^)]+\)')

# Applied in order to turn Markdown into plain text
_PLAIN_TEXT_RULES = [
    (re.compile(r'!\[[^\]]*\]\([^)]+\)'), ''),        # images
    (re.compile(r'#{1,6}\s+'), ''),                    # headers
    (re.compile(r'\*\*([^*]+)\*\*'), r'\1'),           # bold
    (re.compile(r'\*([^*]+)\*'), r'\1'),               # italic
    (re.compile(r'__([^_]+)__'), r'\1'),               # bold
    (re.compile(r'_([^_]+)_'), r'\1'),                 # italic
    (LINK_RE, r'\1'),                                  # links
    (re.compile(r'`{1,3}[^`]*`{1,3}'), ''),            # code
    (re.compile(r'^\s*[-*+]\s+', re.MULTILINE), ''),   # list markers
    (re.compile(r'^\s*\d+\.\s+', re.MULTILINE), ''),   # numbered lists
    (re.compile(r'^\s*>\s+', re.MULTILINE), ''),       # blockquotes
    (re.compile(r'\|[^|]*\|'), ''),                    # tables
]


@dataclass
class BlockAnalysis:
    """Measurements of one Markdown block"""
    content: str
    word_count: int
    text_density: float
    link_density: float
    is_header: bool


def extract_plain_text(markdown: str) -> str:
    text = markdown
    for pattern, replacement in _PLAIN_TEXT_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


def _strip_whitespace(text: str) -> str:
    return re.sub(r'\s+', '', text)


class PruningFilter:
    """
    Keeps a block iff it matches no removal pattern and either contains a
    keep keyword or passes the word count, text density and link density
    thresholds. Header blocks are always kept.
    """

    def __init__(self, options: Optional[PruningOptions] = None):
        self.options = options or PruningOptions()
        self.logger = get_logger(__name__)

    def filter(self, markdown: str) -> str:
        """
        Remove low-quality blocks from Markdown.

        Args:
            markdown: Markdown document

        Returns:
            The surviving blocks joined by blank lines, or the input unchanged
            when pruning is disabled
        """
        if not self.options.enabled:
            return markdown

        blocks = self.split_into_blocks(markdown)
        kept = self.filter_blocks(blocks)
        self.logger.debug(f"Pruning kept {len(kept)} of {len(blocks)} blocks")
        return '\n\n'.join(kept)

    def filter_blocks(self, blocks: List[str]) -> List[str]:
        """Apply the keep rule to already split blocks"""
        if not self.options.enabled:
            return list(blocks)
        return [block for block in blocks if self.should_keep(self.analyze_block(block))]

    def split_into_blocks(self, markdown: str) -> List[str]:
        """Split on blank lines, attaching each heading to the paragraph after it"""
        blocks: List[str] = []
        current = ''

        for raw_block in re.split(r'\n{2,}', markdown):
            trimmed = raw_block.strip()
            if not trimmed:
                continue

            if HEADER_RE.match(trimmed):
                if current:
                    blocks.append(current)
                current = trimmed
            elif current and HEADER_RE.match(current.split('\n')[0]):
                blocks.append(f"{current}\n\n{trimmed}")
                current = ''
            else:
                if current:
                    blocks.append(current)
                current = trimmed

        if current:
            blocks.append(current)

        return blocks

    def analyze_block(self, content: str) -> BlockAnalysis:
        text = extract_plain_text(content)
        return BlockAnalysis(
            content=content,
            word_count=len(text.split()),
            text_density=self._text_density(content, text),
            link_density=self._link_density(content, text),
            is_header=bool(HEADER_RE.match(content)),
        )

    def should_keep(self, block: BlockAnalysis) -> bool:
        if block.is_header:
            return True

        for pattern in self.options.remove_patterns:
            if pattern.search(block.content):
                return False

        if self.options.keep_keywords:
            lowered = block.content.lower()
            if any(keyword.lower() in lowered for keyword in self.options.keep_keywords):
                return True

        return (
            block.word_count >= self.options.min_word_count
            and block.text_density >= self.options.min_text_density
            and block.link_density <= self.options.max_link_density
        )

    @staticmethod
    def _text_density(markdown: str, plain_text: str) -> float:
        total = len(_strip_whitespace(markdown))
        if total == 0:
            return 0.0
        return len(_strip_whitespace(plain_text)) / total

    @staticmethod
    def _link_density(markdown: str, plain_text: str) -> float:
        if not plain_text:
            return 0.0
        link_chars = sum(len(match.group(1)) for match in LINK_RE.finditer(markdown))
        return link_chars / len(plain_text)

"""
Markdown Converter

Converts cleaned HTML into Markdown for LLM processing using html2text.
"""

import re
from dataclasses import dataclass
from typing import Optional

import html2text

from crawler_engine.core.base import ProcessingError
from crawler_engine.core.logging import get_logger


@dataclass
class MarkdownOptions:
    """html2text behaviour"""
    keep_images: bool = True
    keep_links: bool = True
    bullet_list_marker: str = '-'


class MarkdownConverter:
    """
    HTML to Markdown conversion with no wrapping, inline links and
    blank-line normalisation.
    """

    def __init__(self, options: Optional[MarkdownOptions] = None):
        self.options = options or MarkdownOptions()
        self.logger = get_logger(__name__)

        self.html2text_config = {
            'unicode_snob': True,
            'body_width': 0,  # No wrapping
            'protect_links': False,
            'ignore_images': not self.options.keep_images,
            'ignore_links': not self.options.keep_links,
            'ignore_tables': False,
            'ignore_emphasis': False,
            'escape_snob': False,
            'images_to_alt': False,
            'reference_links': False,
            'inline_links': True,
            'default_image_alt': '',
            'ul_item_mark': self.options.bullet_list_marker,
            'mark_code': False,
        }

    def _converter(self) -> html2text.HTML2Text:
        # HTML2Text instances keep parser state, so use a fresh one per document
        h2t = html2text.HTML2Text()
        for key, value in self.html2text_config.items():
            if hasattr(h2t, key):
                setattr(h2t, key, value)
        return h2t

    def convert(self, html: str) -> str:
        """
        Convert HTML to Markdown

        Args:
            html: HTML content

        Returns:
            Markdown content
        """
        try:
            markdown = self._converter().handle(html or "")
        except Exception as e:
            self.logger.error(f"Error converting HTML to markdown: {e}")
            raise ProcessingError(f"HTML to markdown conversion failed: {e}") from e

        return self._post_process(markdown)

    def _post_process(self, markdown: str) -> str:
        # Inline data: images are noise for the LLM
        markdown = re.sub(r'!\[([^\]]*)\]\(data:[^)]*\)', lambda m: f"[Image: {m.group(1)}]" if m.group(1) else '', markdown)

        markdown = '\n'.join(line.rstrip() for line in markdown.split('\n'))
        markdown = re.sub(r'\n{3,}', '\n\n', markdown)
        markdown = re.sub(r'(?<=\S) {2,}', ' ', markdown)

        # Links without text
        markdown = re.sub(r'(?<!!)\[\s*\]\([^)]*\)', '', markdown)

        return markdown.strip()

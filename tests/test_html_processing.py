"""
Tests for HTMLCleaner and MarkdownConverter
"""

import pytest

from crawler_engine.processors.html_cleaner import CleanerOptions, HTMLCleaner, _name_matches
from crawler_engine.processors.markdown import MarkdownConverter, MarkdownOptions


SAMPLE_PAGE = """
<html>
<head><script>var a = 1;</script><style>p { color: red }</style></head>
<body>
<nav><a href="/">Home</a></nav>
<!-- tracking comment -->
<main>
  <h1>Products</h1>
  <p class="download" onclick="track()" style="color: red">Download the brochure</p>
  <div class="top-ad">Buy now</div>
  <div id="sidebar">Related links</div>
  <div style="display: none">Hidden text</div>
  <div hidden>Also hidden</div>
  <ins class="adsbygoogle"></ins>
  <div><span></span></div>
  <img src="photo.png" alt="Photo">
</main>
<footer>Footer text</footer>
</body>
</html>
"""


class TestHTMLCleaner:
    """Test suite for HTMLCleaner"""

    @pytest.fixture
    def cleaner(self):
        return HTMLCleaner()

    def test_clean_body_keeps_content(self, cleaner):
        cleaned = cleaner.clean_body(SAMPLE_PAGE)

        assert "Products" in cleaned
        assert "Download the brochure" in cleaned
        assert '<img' in cleaned

    @pytest.mark.parametrize("unwanted", [
        "var a", "color", "tracking comment", "Home", "Footer text", "Buy now",
        "Related links", "Hidden text", "Also hidden", "adsbygoogle", "onclick", "<span",
    ])
    def test_clean_body_removes_noise(self, cleaner, unwanted):
        assert unwanted not in cleaner.clean_body(SAMPLE_PAGE)

    def test_clean_body_without_body(self, cleaner):
        assert cleaner.clean_body("<p>Hi</p>") == "<p>Hi</p>"

    def test_keep_main_content_only(self):
        cleaner = HTMLCleaner(CleanerOptions(keep_main_content_only=True))
        html = (
            "<html><body><div class='intro'>Intro words</div>"
            "<article><p>" + "Long text. " * 20 + "</p></article></body></html>"
        )

        cleaned = cleaner.clean_body(html)

        assert "Intro words" not in cleaned
        assert "Long text." in cleaned

    def test_custom_exclusions(self):
        cleaner = HTMLCleaner(CleanerOptions(excluded_tags=['table'], excluded_classes=['legal']))
        html = "<body><table><tr><td>Cell</td></tr></table><p class='legal-note'>Small print</p><nav>Nav</nav></body>"

        cleaned = cleaner.clean_body(html)

        assert "Cell" not in cleaned
        assert "Small print" not in cleaned
        assert "Nav" in cleaned

    @pytest.mark.parametrize("value,pattern,expected", [
        ("ad", "ad", True),
        ("top-ad", "ad", True),
        ("ad_slot", "ad", True),
        ("header", "ad", False),
        ("download", "ad", False),
        ("Sidebar", "sidebar", True),
    ])
    def test_name_matches(self, value, pattern, expected):
        assert _name_matches(value, pattern) is expected


class TestMarkdownConverter:
    """Test suite for MarkdownConverter"""

    @pytest.fixture
    def converter(self):
        return MarkdownConverter()

    def test_headings_and_inline_links(self, converter):
        markdown = converter.convert('<h1>Title</h1><p>Hello <a href="https://example.com">link</a></p>')
        assert markdown == "# Title\n\nHello [link](https://example.com)"

    def test_bullet_marker(self, converter):
        markdown = converter.convert("<ul><li>One</li><li>Two</li></ul>")
        assert "- One" in markdown
        assert "- Two" in markdown

    def test_data_images_replaced_by_alt(self, converter):
        markdown = converter.convert('<p><img src="data:image/png;base64,AAAA" alt="Logo"></p>')
        assert markdown == "[Image: Logo]"

    def test_images_dropped_when_disabled(self):
        converter = MarkdownConverter(MarkdownOptions(keep_images=False))
        markdown = converter.convert('<img src="photo.png" alt="Photo"><p>Text</p>')

        assert "photo.png" not in markdown
        assert "Text" in markdown

    def test_empty_links_removed(self, converter):
        markdown = converter.convert('<p><a href="/x"></a>Text</p>')

        assert "](/x)" not in markdown
        assert "Text" in markdown

    def test_no_wrapping(self, converter):
        sentence = "word " * 100
        markdown = converter.convert(f"<p>{sentence}</p>")
        assert "\n" not in markdown

    def test_post_process_normalises_whitespace(self, converter):
        assert converter._post_process("a\n\n\n\nb   c  \n") == "a\n\nb c"

    def test_empty_input(self, converter):
        assert converter.convert("") == ""

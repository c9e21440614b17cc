from markdown_it import MarkdownIt
from markdown_it.token import Token
from mdit_py_plugins.front_matter import front_matter_plugin

from ..core.ports import Slugifier, TextDocument, Tokenizer
from ..core.slugify import default_slugifier


class MarkdownItTokenizer(Tokenizer):
    """
    CommonMark tokenizer backed by markdown-it-py.

    Tables and strikethrough are enabled. YAML front matter becomes a single
    ``front_matter`` token instead of a thematic break followed by a setext
    heading.
    """

    def __init__(self, slugifier: Slugifier = default_slugifier):
        self.slugifier = slugifier
        self._md = (
            MarkdownIt("commonmark")
            .enable("table")
            .enable("strikethrough")
            .use(front_matter_plugin)
        )

    async def tokenize(self, document: TextDocument) -> list[Token]:
        return self._md.parse(document.get_text())
